"""Central finite-difference gradients and Hessians on top of the VM."""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np

from . import config
from .bytecode import BytecodeProgram
from .errors import EvaluationError
from .vm import VM, arity_mismatch


def coerce_epsilon(epsilon: object) -> float | None:
    """Return `epsilon` as a usable step, or None if it is not finite and positive."""
    try:
        value = float(epsilon)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0.0:
        return None
    return value


def _failed_at(err: EvaluationError, label: str) -> EvaluationError:
    wrapped = type(err)(f"Failed to evaluate at {label}: {err.message}", kind=err.kind)
    wrapped.__cause__ = err
    return wrapped


class FiniteDiff:
    """Finite-difference context; perturbs a private copy of each point."""

    def __init__(self, epsilon: float | None = None) -> None:
        self._epsilon = config.fd_epsilon()
        if epsilon is not None:
            self.set_epsilon(epsilon)
        self._work: list[float] = []

    @property
    def epsilon(self) -> float:
        return self._epsilon

    def set_epsilon(self, epsilon: float) -> bool:
        """Set the step `h`; non-finite or non-positive steps are refused."""
        value = coerce_epsilon(epsilon)
        if value is None:
            return False
        self._epsilon = value
        return True

    def _eval(self, program: BytecodeProgram, vm: VM, label: str) -> float | EvaluationError:
        result = vm.execute(program, self._work)
        if isinstance(result, EvaluationError):
            return _failed_at(result, label)
        return result

    def _reset(self, point: Sequence[float]) -> None:
        self._work[:] = [float(v) for v in point]

    def gradient(self, program: BytecodeProgram, vm: VM, point: Sequence[float]) -> np.ndarray | EvaluationError:
        """grad[i] = (f(x + h e_i) - f(x - h e_i)) / 2h, using 2n evaluations."""
        n = len(point)
        if n != program.num_variables:
            return arity_mismatch(program.num_variables, n)

        h = self._epsilon
        self._reset(point)
        grad = np.empty(n)
        for i in range(n):
            xi = self._work[i]

            self._work[i] = xi + h
            f_plus = self._eval(program, vm, f"perturbed point x + h*e_{i}")
            if isinstance(f_plus, EvaluationError):
                return f_plus

            self._work[i] = xi - h
            f_minus = self._eval(program, vm, f"perturbed point x - h*e_{i}")
            if isinstance(f_minus, EvaluationError):
                return f_minus

            self._work[i] = xi
            grad[i] = (f_plus - f_minus) / (2.0 * h)
        return grad

    def hessian(self, program: BytecodeProgram, vm: VM, point: Sequence[float]) -> np.ndarray | EvaluationError:
        """Return the (n, n) Hessian.

        Diagonal entries use the three-point second difference. Each
        off-diagonal entry ``i < j`` uses the forward mixed difference and is
        mirrored into ``[j, i]``; the lower triangle is never computed.
        """
        n = len(point)
        if n != program.num_variables:
            return arity_mismatch(program.num_variables, n)

        h = self._epsilon
        h2 = h * h
        self._reset(point)

        f_base = self._eval(program, vm, "base point x")
        if isinstance(f_base, EvaluationError):
            return f_base

        f_plus = np.empty(n)
        hess = np.empty((n, n))
        for i in range(n):
            xi = self._work[i]

            self._work[i] = xi + h
            fp = self._eval(program, vm, f"perturbed point x + h*e_{i}")
            if isinstance(fp, EvaluationError):
                return fp

            self._work[i] = xi - h
            fm = self._eval(program, vm, f"perturbed point x - h*e_{i}")
            if isinstance(fm, EvaluationError):
                return fm

            self._work[i] = xi
            f_plus[i] = fp
            hess[i, i] = (fp - 2.0 * f_base + fm) / h2

        for i in range(n):
            xi = self._work[i]
            self._work[i] = xi + h
            for j in range(i + 1, n):
                xj = self._work[j]
                self._work[j] = xj + h
                f_ij = self._eval(program, vm, f"perturbed point x + h*e_{i} + h*e_{j}")
                if isinstance(f_ij, EvaluationError):
                    return f_ij
                self._work[j] = xj

                mixed = (f_ij - f_plus[i] - f_plus[j] + f_base) / h2
                hess[i, j] = mixed
                hess[j, i] = mixed
            self._work[i] = xi
        return hess
