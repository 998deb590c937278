"""Structured error types and the result envelope returned at the public boundary."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    LEXICAL = "lexical"
    SYNTAX = "syntax"
    SEMANTIC = "semantic"
    RESOURCE = "resource"
    EVALUATION = "evaluation"
    DOMAIN = "domain"


class ErrorCode(IntEnum):
    OK = 0
    PARSE = 1
    INVALID_EXPR = 2
    EVAL = 3
    INVALID_DIMENSION = 5


_ERROR_STRINGS = {
    ErrorCode.OK: "Success",
    ErrorCode.PARSE: "Parse error",
    ErrorCode.INVALID_EXPR: "Invalid expression",
    ErrorCode.EVAL: "Evaluation error",
    ErrorCode.INVALID_DIMENSION: "Invalid dimension",
}


def error_string(code: ErrorCode | int) -> str:
    try:
        return _ERROR_STRINGS[ErrorCode(code)]
    except ValueError:
        return "Unknown error"


class NDCalcError(Exception):
    """Base class for structured ndcalc errors."""

    code: ErrorCode = ErrorCode.EVAL
    default_kind: ErrorKind = ErrorKind.EVALUATION

    def __init__(self, message: str, *, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind if kind is not None else self.default_kind

    def __str__(self) -> str:
        return self.message


class ParseError(NDCalcError):
    """Lexer or parser failure, located by a half-open source span."""

    code = ErrorCode.PARSE
    default_kind = ErrorKind.SYNTAX

    def __init__(
        self,
        message: str,
        start: int,
        end: int,
        *,
        kind: ErrorKind | None = None,
        expected: tuple[str, ...] = (),
        found: str | None = None,
    ) -> None:
        super().__init__(message, kind=kind)
        self.start = start
        self.end = end
        self.expected = expected
        self.found = found

    def __str__(self) -> str:
        expected_text = ""
        if self.expected:
            expected_text = f"; expected {', '.join(self.expected)}"
        found_text = ""
        if self.found is not None:
            found_text = f"; found {self.found}"
        return f"{self.message} at span [{self.start}, {self.end}){expected_text}{found_text}"


class CompileError(NDCalcError):
    """AST to bytecode failure (arity, unknown function/operator, nesting)."""

    code = ErrorCode.INVALID_EXPR
    default_kind = ErrorKind.SEMANTIC


class EvaluationError(NDCalcError):
    """Runtime failure while executing bytecode."""

    def __init__(self, message: str, *, kind: ErrorKind | None = None, point_index: int | None = None) -> None:
        super().__init__(message, kind=kind)
        self.point_index = point_index

    def at_point(self, index: int) -> "EvaluationError":
        err = type(self)(f"{self.message} (at point {index})", kind=self.kind, point_index=index)
        err.__cause__ = self
        return err


class DomainError(EvaluationError):
    """Operand outside the mathematical domain of an operation."""

    default_kind = ErrorKind.DOMAIN


class DimensionError(EvaluationError):
    """Input arrays whose shapes do not match the program."""

    code = ErrorCode.INVALID_DIMENSION


@dataclass(frozen=True)
class Result(Generic[T]):
    """Value-or-error envelope; boundary calls never raise for expected failures.

    A failure's `value` is None except for batch evaluation, where it holds
    the partially written output.
    """

    value: T | None = None
    error: NDCalcError | None = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: NDCalcError, *, partial: T | None = None) -> "Result[T]":
        return cls(value=partial, error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def code(self) -> ErrorCode:
        return ErrorCode.OK if self.error is None else self.error.code

    @property
    def message(self) -> str:
        return "" if self.error is None else str(self.error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def __bool__(self) -> bool:
        return self.ok
