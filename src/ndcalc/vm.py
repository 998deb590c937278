"""Stack-machine execution of compiled bytecode."""

from __future__ import annotations

import math
from collections.abc import MutableSequence, Sequence

from .bytecode import BytecodeProgram, OpCode
from .errors import DomainError, EvaluationError

# Host math with IEEE results (inf/nan) where Python's math module would raise.


def host_pow(a: float, b: float) -> float:
    try:
        return math.pow(a, b)
    except OverflowError:
        return -math.inf if a < 0.0 and _is_odd_integer(b) else math.inf
    except ValueError:
        if a == 0.0:
            return math.copysign(math.inf, a) if _is_odd_integer(b) else math.inf
        return math.nan


def _is_odd_integer(value: float) -> bool:
    return math.isfinite(value) and value.is_integer() and int(value) % 2 == 1


def host_exp(x: float) -> float:
    try:
        return math.exp(x)
    except OverflowError:
        return math.inf


def host_sin(x: float) -> float:
    try:
        return math.sin(x)
    except ValueError:
        return math.nan


def host_cos(x: float) -> float:
    try:
        return math.cos(x)
    except ValueError:
        return math.nan


def host_tan(x: float) -> float:
    try:
        return math.tan(x)
    except ValueError:
        return math.nan


def underflow(opcode: OpCode) -> EvaluationError:
    return EvaluationError(f"Stack underflow in {opcode.name}")


def arity_mismatch(expected: int, got: int) -> EvaluationError:
    return EvaluationError(f"Input count mismatch: expected {expected}, got {got}")


_UNARY_MATH = {
    OpCode.SIN: host_sin,
    OpCode.COS: host_cos,
    OpCode.TAN: host_tan,
    OpCode.EXP: host_exp,
    OpCode.ABS: abs,
}


class VM:
    """Evaluation context owning a reusable operand stack.

    One instance must not be used from several threads at once; the
    programs it runs are read-only and may be shared freely.
    """

    def __init__(self) -> None:
        self._stack: list[float] = []

    def execute(self, program: BytecodeProgram, inputs: Sequence[float]) -> float | EvaluationError:
        n = len(inputs)
        if n != program.num_variables:
            return arity_mismatch(program.num_variables, n)

        stack = self._stack
        stack.clear()

        for inst in program.instructions:
            op = inst.opcode

            if op is OpCode.PUSH_CONST:
                stack.append(inst.operand)
                continue

            if op is OpCode.LOAD_VAR:
                idx = inst.operand
                if not 0 <= idx < n:
                    return EvaluationError(f"Variable index {idx} out of bounds")
                stack.append(inputs[idx])
                continue

            if op is OpCode.RETURN:
                if len(stack) != 1:
                    return EvaluationError(f"Invalid stack size at return: {len(stack)}")
                return stack[0]

            if op in _BINARY_HANDLERS:
                if len(stack) < 2:
                    return underflow(op)
                b = stack.pop()
                a = stack.pop()
                result = _BINARY_HANDLERS[op](a, b)
                if isinstance(result, EvaluationError):
                    return result
                stack.append(result)
                continue

            if not stack:
                return underflow(op)
            x = stack[-1]

            if op is OpCode.NEG:
                stack[-1] = -x
            elif op is OpCode.LOG:
                if x <= 0.0:
                    return DomainError(f"Logarithm of non-positive number ({x!r})")
                stack[-1] = math.log(x)
            elif op is OpCode.SQRT:
                if x < 0.0:
                    return DomainError(f"Square root of negative number ({x!r})")
                stack[-1] = math.sqrt(x)
            elif op in _UNARY_MATH:
                stack[-1] = _UNARY_MATH[op](x)
            else:
                return EvaluationError(f"Unknown opcode {op!r}")

        return EvaluationError("Missing return instruction")

    def execute_batch(
        self,
        program: BytecodeProgram,
        columns: Sequence[Sequence[float]],
        num_points: int,
        out: MutableSequence[float],
    ) -> EvaluationError | None:
        """Evaluate `num_points` points laid out as one column per variable.

        Stops at the first failing point: `out[:i]` already holds valid
        results, `out[i:]` is left as it was.
        """
        if len(columns) != program.num_variables:
            return arity_mismatch(program.num_variables, len(columns))

        point = [0.0] * len(columns)
        for i in range(num_points):
            for v, column in enumerate(columns):
                point[v] = column[i]
            result = self.execute(program, point)
            if isinstance(result, EvaluationError):
                return result.at_point(i)
            out[i] = result
        return None


def _div(a: float, b: float) -> float | EvaluationError:
    if b == 0.0:
        return DomainError("Division by zero")
    return a / b


_BINARY_HANDLERS = {
    OpCode.ADD: lambda a, b: a + b,
    OpCode.SUB: lambda a, b: a - b,
    OpCode.MUL: lambda a, b: a * b,
    OpCode.DIV: _div,
    OpCode.POW: host_pow,
}
