"""Public boundary: contexts, compiled programs and derivative mode dispatch.

Every call here returns a `Result`; expected failures (bad expression text,
wrong input shapes, domain errors) never escape as exceptions.
"""

from __future__ import annotations

import logging
import operator
from collections.abc import MutableSequence, Sequence
from enum import IntEnum
from typing import TYPE_CHECKING

import numpy as np

from . import config
from .autodiff import AutoDiff
from .bytecode import BytecodeProgram
from .compiler import compile_ast
from .errors import CompileError, DimensionError, EvaluationError, NDCalcError, ParseError, Result
from .finite_diff import FiniteDiff, coerce_epsilon
from .parser import parse
from .vm import VM

if TYPE_CHECKING:
    from .lowering import JaxKernel

logger = logging.getLogger(__name__)


class ADMode(IntEnum):
    AUTO = 0
    FORWARD = 1
    FINITE_DIFF = 2


def _coerce_mode(mode: ADMode | int | str) -> ADMode | None:
    if isinstance(mode, ADMode):
        return mode
    if isinstance(mode, str):
        return ADMode.__members__.get(mode.strip().upper().replace("-", "_"))
    try:
        return ADMode(mode)
    except ValueError:
        return None


def _as_point(values: Sequence[float]) -> list[float] | EvaluationError:
    try:
        arr = np.asarray(values, dtype=float)
    except (TypeError, ValueError):
        return EvaluationError("Inputs must be real numbers")
    if arr.ndim != 1:
        return DimensionError(f"Inputs must be a flat sequence of numbers, got shape {arr.shape}")
    return arr.tolist()


class Program:
    """A compiled expression bound to its own VM, AutoDiff and FiniteDiff.

    Mode and epsilon are copied from the originating `Context` at compile
    time and can be overridden per program afterwards. The scratch
    instances are reused across calls, so a single `Program` must not be
    driven from several threads at once; use `clone()` per worker.
    """

    def __init__(
        self,
        bytecode: BytecodeProgram,
        *,
        expression: str = "",
        variable_names: Sequence[str] = (),
        ad_mode: ADMode = ADMode.AUTO,
        fd_epsilon: float | None = None,
    ) -> None:
        self._bytecode = bytecode
        self._expression = expression
        self._variable_names = tuple(variable_names)
        self._ad_mode = ad_mode
        self._vm = VM()
        self._autodiff = AutoDiff()
        self._finite_diff = FiniteDiff(fd_epsilon)
        self._kernel: JaxKernel | None = None

    @property
    def bytecode(self) -> BytecodeProgram:
        return self._bytecode

    @property
    def num_variables(self) -> int:
        return self._bytecode.num_variables

    @property
    def expression(self) -> str:
        return self._expression

    @property
    def variable_names(self) -> tuple[str, ...]:
        return self._variable_names

    @property
    def ad_mode(self) -> ADMode:
        return self._ad_mode

    @property
    def fd_epsilon(self) -> float:
        return self._finite_diff.epsilon

    def set_ad_mode(self, mode: ADMode | int | str) -> bool:
        coerced = _coerce_mode(mode)
        if coerced is None:
            return False
        self._ad_mode = coerced
        return True

    def set_fd_epsilon(self, epsilon: float) -> bool:
        return self._finite_diff.set_epsilon(epsilon)

    def clone(self) -> "Program":
        """Same immutable bytecode and settings, fresh scratch state."""
        return Program(
            self._bytecode,
            expression=self._expression,
            variable_names=self._variable_names,
            ad_mode=self._ad_mode,
            fd_epsilon=self.fd_epsilon,
        )

    def disassemble(self) -> str:
        return self._bytecode.disassemble()

    def evaluate(self, inputs: Sequence[float] = ()) -> Result[float]:
        point = _as_point(inputs)
        if isinstance(point, EvaluationError):
            return Result.failure(point)
        value = self._vm.execute(self._bytecode, point)
        if isinstance(value, EvaluationError):
            return Result.failure(value)
        return Result.success(value)

    def evaluate_batch(
        self,
        columns: Sequence[Sequence[float]],
        out: MutableSequence[float] | None = None,
        *,
        num_points: int | None = None,
    ) -> Result[np.ndarray]:
        """Evaluate many points given as one column per variable.

        Evaluation stops at the first failing point and the failure reports
        its index in `error.point_index`. Every point before it has already
        been written to the output: the caller's `out` when given, otherwise
        a NaN-initialised array returned as the failing result's `value`.
        """
        n = self.num_variables
        try:
            arr = np.asarray(columns, dtype=float)
        except (TypeError, ValueError):
            return Result.failure(DimensionError("Columns must be equal-length sequences of real numbers"))
        if arr.size == 0 and n == 0:
            arr = arr.reshape(0, 0)
        if arr.ndim != 2:
            return Result.failure(DimensionError(f"Columns must form a 2-D array, got shape {arr.shape}"))
        if arr.shape[0] != n:
            return Result.failure(DimensionError(f"Expected {n} columns, got {arr.shape[0]}"))

        if num_points is None:
            count = arr.shape[1]
        else:
            try:
                count = operator.index(num_points)
            except TypeError:
                return Result.failure(DimensionError(f"Point count must be an integer, got {num_points!r}"))
        if count < 0:
            return Result.failure(DimensionError(f"Point count must be non-negative, got {count}"))
        if n > 0 and count > arr.shape[1]:
            return Result.failure(DimensionError(f"Columns hold {arr.shape[1]} points, {count} requested"))
        if out is None:
            out = np.full(count, np.nan)
        elif len(out) < count:
            return Result.failure(DimensionError(f"Output holds {len(out)} slots, {count} required"))

        err = self._vm.execute_batch(self._bytecode, arr.tolist(), count, out)
        if err is not None:
            return Result.failure(err, partial=out)
        return Result.success(out)

    def gradient(self, point: Sequence[float]) -> Result[np.ndarray]:
        coords = _as_point(point)
        if isinstance(coords, EvaluationError):
            return Result.failure(coords)
        return self._dispatch(
            "gradient",
            lambda: self._autodiff.gradient(self._bytecode, coords),
            lambda: self._finite_diff.gradient(self._bytecode, self._vm, coords),
        )

    def hessian(self, point: Sequence[float]) -> Result[np.ndarray]:
        """Row-major flattened Hessian of length ``num_variables ** 2``."""
        coords = _as_point(point)
        if isinstance(coords, EvaluationError):
            return Result.failure(coords)
        result = self._dispatch(
            "hessian",
            lambda: self._autodiff.hessian(self._bytecode, coords),
            lambda: self._finite_diff.hessian(self._bytecode, self._vm, coords),
        )
        if not result.ok:
            return result
        return Result.success(result.value.reshape(-1))

    def _dispatch(self, what: str, forward, finite_diff) -> Result[np.ndarray]:
        mode = self._ad_mode
        if mode is ADMode.FORWARD:
            value = forward()
        elif mode is ADMode.FINITE_DIFF:
            value = finite_diff()
        else:
            value = forward()
            if isinstance(value, EvaluationError):
                logger.debug("forward-mode %s failed (%s); retrying with finite differences", what, value)
                value = finite_diff()
        if isinstance(value, EvaluationError):
            return Result.failure(value)
        return Result.success(value)

    def lower(self) -> "JaxKernel":
        """Return (and cache) the JAX kernel for this program's bytecode."""
        if self._kernel is None:
            from .lowering import lower_program

            self._kernel = lower_program(self._bytecode)
        return self._kernel

    def __repr__(self) -> str:
        return (
            f"Program(expression={self._expression!r}, variables={self._variable_names!r}, "
            f"mode={self._ad_mode.name}, instructions={len(self._bytecode)})"
        )


class Context:
    """Holds compile-time defaults and the last compile diagnostic."""

    def __init__(
        self,
        *,
        ad_mode: ADMode | int | str | None = None,
        fd_epsilon: float | None = None,
        max_depth: int | None = None,
    ) -> None:
        self._ad_mode = _coerce_mode(ad_mode if ad_mode is not None else config.ad_mode_name()) or ADMode.AUTO
        self._fd_epsilon = config.fd_epsilon()
        if fd_epsilon is not None:
            self.set_fd_epsilon(fd_epsilon)
        self._max_depth = max_depth if max_depth is not None and max_depth > 0 else config.max_depth()
        self._last_error = ""

    @property
    def ad_mode(self) -> ADMode:
        return self._ad_mode

    @property
    def fd_epsilon(self) -> float:
        return self._fd_epsilon

    @property
    def max_depth(self) -> int:
        return self._max_depth

    def set_ad_mode(self, mode: ADMode | int | str) -> bool:
        coerced = _coerce_mode(mode)
        if coerced is None:
            return False
        self._ad_mode = coerced
        return True

    def set_fd_epsilon(self, epsilon: float) -> bool:
        value = coerce_epsilon(epsilon)
        if value is None:
            return False
        self._fd_epsilon = value
        return True

    def last_error_message(self) -> str:
        """Message of the most recent failed compile; empty after a success."""
        return self._last_error

    def compile(self, expression: str, variable_names: Sequence[str] = ()) -> Result[Program]:
        result = self._compile(expression, variable_names)
        if isinstance(result, NDCalcError):
            self._last_error = str(result)
            logger.debug("compile failed for %r: %s", expression, result)
            return Result.failure(result)
        self._last_error = ""
        logger.debug(
            "compiled %r over %d variables into %d instructions",
            expression,
            result.num_variables,
            len(result.bytecode),
        )
        return Result.success(result)

    def _compile(self, expression: str, variable_names: Sequence[str]) -> Program | NDCalcError:
        if not isinstance(expression, str):
            return ParseError("Expression must be a string", 0, 0, found=type(expression).__name__)
        if isinstance(variable_names, str):
            variable_names = (variable_names,)
        names = tuple(variable_names)
        for name in names:
            if not isinstance(name, str):
                return ParseError("Variable names must be strings", 0, 0, found=type(name).__name__)

        expr = parse(expression, names, max_depth=self._max_depth)
        if isinstance(expr, ParseError):
            return expr

        bytecode = compile_ast(expr, len(names), max_depth=self._max_depth)
        if isinstance(bytecode, CompileError):
            return bytecode

        return Program(
            bytecode,
            expression=expression,
            variable_names=names,
            ad_mode=self._ad_mode,
            fd_epsilon=self._fd_epsilon,
        )


def compile_expression(
    expression: str,
    variable_names: Sequence[str] = (),
    *,
    context: Context | None = None,
) -> Result[Program]:
    ctx = context if context is not None else Context()
    return ctx.compile(expression, variable_names)


def evaluate(program: Program, inputs: Sequence[float] = ()) -> Result[float]:
    return program.evaluate(inputs)


def evaluate_batch(
    program: Program,
    columns: Sequence[Sequence[float]],
    out: MutableSequence[float] | None = None,
) -> Result[np.ndarray]:
    return program.evaluate_batch(columns, out)


def gradient(program: Program, point: Sequence[float]) -> Result[np.ndarray]:
    return program.gradient(point)


def hessian(program: Program, point: Sequence[float]) -> Result[np.ndarray]:
    return program.hessian(point)


def set_mode(target: Context | Program, mode: ADMode | int | str) -> bool:
    return target.set_ad_mode(mode)


def set_epsilon(target: Context | Program, epsilon: float) -> bool:
    return target.set_fd_epsilon(epsilon)


def last_error_message(context: Context) -> str:
    return context.last_error_message()
