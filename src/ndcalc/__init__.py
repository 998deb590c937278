"""ndcalc public API."""

import logging

from .api import (
    ADMode,
    Context,
    Program,
    compile_expression,
    evaluate,
    evaluate_batch,
    gradient,
    hessian,
    last_error_message,
    set_epsilon,
    set_mode,
)
from .bytecode import BytecodeProgram, Instruction, OpCode
from .errors import (
    CompileError,
    DimensionError,
    DomainError,
    ErrorCode,
    ErrorKind,
    EvaluationError,
    NDCalcError,
    ParseError,
    Result,
    error_string,
)
from .parser import parse

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "ADMode",
    "Context",
    "Program",
    "compile_expression",
    "evaluate",
    "evaluate_batch",
    "gradient",
    "hessian",
    "set_mode",
    "set_epsilon",
    "last_error_message",
    "parse",
    "BytecodeProgram",
    "Instruction",
    "OpCode",
    "NDCalcError",
    "ParseError",
    "CompileError",
    "EvaluationError",
    "DomainError",
    "DimensionError",
    "ErrorCode",
    "ErrorKind",
    "Result",
    "error_string",
]
