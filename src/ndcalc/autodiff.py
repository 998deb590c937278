"""Forward-mode automatic differentiation over compiled bytecode.

Each stack slot holds a `Jet`: the primal value, its gradient with respect
to every declared variable and, for Hessian sweeps, its matrix of second
derivatives. A single pass over the instructions yields exact first (and
second) derivatives at the evaluation point.

Every propagation rule builds the second-order part from terms of the form
``s * H``, ``s * outer(g, g)`` and ``outer(g, h) + outer(h, g)``, each of
which is exactly symmetric in floating point, so the resulting Hessian is
symmetric without any averaging.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np

from .bytecode import BytecodeProgram, OpCode
from .errors import DomainError, EvaluationError
from .vm import arity_mismatch, host_cos, host_exp, host_pow, host_sin, host_tan, underflow


class Jet:
    """Truncated Taylor expansion of one intermediate value."""

    __slots__ = ("value", "grad", "hess")

    def __init__(self, value: float, grad: np.ndarray, hess: np.ndarray | None = None) -> None:
        self.value = value
        self.grad = grad
        self.hess = hess

    @property
    def is_constant(self) -> bool:
        if self.grad.any():
            return False
        return self.hess is None or not self.hess.any()

    def __repr__(self) -> str:
        return f"Jet(value={self.value!r}, grad={self.grad!r})"


def _sym_outer(g: np.ndarray, h: np.ndarray) -> np.ndarray:
    return np.outer(g, h) + np.outer(h, g)


def _chain(a: Jet, value: float, d1: float, d2: float) -> Jet:
    """Apply a scalar function with derivatives `d1`, `d2` at `a.value`."""
    grad = d1 * a.grad
    hess = None
    if a.hess is not None:
        hess = d1 * a.hess + d2 * np.outer(a.grad, a.grad)
    return Jet(value, grad, hess)


def jet_add(a: Jet, b: Jet) -> Jet:
    hess = None if a.hess is None else a.hess + b.hess
    return Jet(a.value + b.value, a.grad + b.grad, hess)


def jet_sub(a: Jet, b: Jet) -> Jet:
    hess = None if a.hess is None else a.hess - b.hess
    return Jet(a.value - b.value, a.grad - b.grad, hess)


def jet_mul(a: Jet, b: Jet) -> Jet:
    grad = b.value * a.grad + a.value * b.grad
    hess = None
    if a.hess is not None:
        hess = b.value * a.hess + a.value * b.hess + _sym_outer(a.grad, b.grad)
    return Jet(a.value * b.value, grad, hess)


def jet_div(a: Jet, b: Jet) -> Jet | EvaluationError:
    if b.value == 0.0:
        return DomainError("Division by zero")
    r = 1.0 / b.value
    recip = _chain(b, r, -r * r, 2.0 * r * r * r)
    quotient = jet_mul(a, recip)
    # Primal must match the VM bit for bit.
    quotient.value = a.value / b.value
    return quotient


def jet_neg(a: Jet) -> Jet:
    return Jet(-a.value, -a.grad, None if a.hess is None else -a.hess)


def jet_pow(a: Jet, b: Jet) -> Jet | EvaluationError:
    value = host_pow(a.value, b.value)
    if b.is_constant:
        c = b.value
        d1 = 0.0 if c == 0.0 else c * host_pow(a.value, c - 1.0)
        d2 = 0.0 if c in (0.0, 1.0) else c * (c - 1.0) * host_pow(a.value, c - 2.0)
        if not math.isfinite(d1) or (a.hess is not None and not math.isfinite(d2)):
            return EvaluationError(f"Non-finite derivative in POW at base {a.value!r}")
        return _chain(a, value, d1, d2)

    if a.value <= 0.0:
        return DomainError("POW with a non-constant exponent requires a positive base")
    # a^b = exp(b * log(a))
    log_a = _chain(a, math.log(a.value), 1.0 / a.value, -1.0 / (a.value * a.value))
    product = jet_mul(b, log_a)
    result = _chain(product, value, value, value)
    return result


def jet_unary(op: OpCode, a: Jet) -> Jet | EvaluationError:
    x = a.value
    if op is OpCode.NEG:
        return jet_neg(a)
    if op is OpCode.SIN:
        s = host_sin(x)
        return _chain(a, s, host_cos(x), -s)
    if op is OpCode.COS:
        c = host_cos(x)
        return _chain(a, c, -host_sin(x), -c)
    if op is OpCode.TAN:
        t = host_tan(x)
        d1 = 1.0 + t * t
        return _chain(a, t, d1, 2.0 * t * d1)
    if op is OpCode.EXP:
        e = host_exp(x)
        return _chain(a, e, e, e)
    if op is OpCode.LOG:
        if x <= 0.0:
            return DomainError(f"Logarithm of non-positive number ({x!r})")
        return _chain(a, math.log(x), 1.0 / x, -1.0 / (x * x))
    if op is OpCode.SQRT:
        if x < 0.0:
            return DomainError(f"Square root of negative number ({x!r})")
        if x == 0.0:
            return EvaluationError("Derivative of SQRT is undefined at 0")
        s = math.sqrt(x)
        d1 = 0.5 / s
        return _chain(a, s, d1, -0.5 * d1 / x)
    if op is OpCode.ABS:
        # abs'(0) taken as +1
        return _chain(a, abs(x), 1.0 if x >= 0.0 else -1.0, 0.0)
    return EvaluationError(f"Unknown opcode {op!r}")


class AutoDiff:
    """Forward-mode differentiation context with a reusable jet stack."""

    def __init__(self) -> None:
        self._stack: list[Jet] = []

    def execute(
        self,
        program: BytecodeProgram,
        point: Sequence[float],
        *,
        second_order: bool = False,
    ) -> Jet | EvaluationError:
        n = len(point)
        if n != program.num_variables:
            return arity_mismatch(program.num_variables, n)

        zero_grad = np.zeros(n)
        zero_hess = np.zeros((n, n)) if second_order else None
        basis = np.eye(n)

        stack = self._stack
        stack.clear()

        for inst in program.instructions:
            op = inst.opcode

            if op is OpCode.PUSH_CONST:
                stack.append(Jet(inst.operand, zero_grad, zero_hess))
                continue

            if op is OpCode.LOAD_VAR:
                idx = inst.operand
                if not 0 <= idx < n:
                    return EvaluationError(f"Variable index {idx} out of bounds")
                stack.append(Jet(point[idx], basis[idx], zero_hess))
                continue

            if op is OpCode.RETURN:
                if len(stack) != 1:
                    return EvaluationError(f"Invalid stack size at return: {len(stack)}")
                result = stack[0]
                if not np.all(np.isfinite(result.grad)):
                    return EvaluationError("Non-finite derivative at evaluation point")
                return result

            if op in _BINARY_RULES:
                if len(stack) < 2:
                    return underflow(op)
                b = stack.pop()
                a = stack.pop()
                combined = _BINARY_RULES[op](a, b)
            else:
                if not stack:
                    return underflow(op)
                combined = jet_unary(op, stack.pop())

            if isinstance(combined, EvaluationError):
                return combined
            stack.append(combined)

        return EvaluationError("Missing return instruction")

    def gradient(self, program: BytecodeProgram, point: Sequence[float]) -> np.ndarray | EvaluationError:
        result = self.execute(program, point)
        if isinstance(result, EvaluationError):
            return result
        return np.array(result.grad, dtype=float)

    def hessian(self, program: BytecodeProgram, point: Sequence[float]) -> np.ndarray | EvaluationError:
        """Return the (n, n) Hessian from one second-order sweep."""
        result = self.execute(program, point, second_order=True)
        if isinstance(result, EvaluationError):
            return result
        hess = np.array(result.hess, dtype=float)
        if not np.all(np.isfinite(hess)):
            return EvaluationError("Non-finite second derivative at evaluation point")
        return hess


_BINARY_RULES = {
    OpCode.ADD: jet_add,
    OpCode.SUB: jet_sub,
    OpCode.MUL: jet_mul,
    OpCode.DIV: jet_div,
    OpCode.POW: jet_pow,
}
