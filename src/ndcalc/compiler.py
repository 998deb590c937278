"""AST to bytecode compilation.

The compiler re-validates everything it is handed (function names and
arity, operators, variable indices, nesting depth) instead of trusting the
parser, so hand-built trees get the same checks as parsed ones.
"""

from __future__ import annotations

from . import config
from .ast import BinaryOp, Call, Expr, Number, UnaryOp, Variable
from .bytecode import BytecodeProgram, OpCode, ProgramBuilder
from .errors import CompileError, ErrorKind

_BINARY_OPS = {
    "+": OpCode.ADD,
    "-": OpCode.SUB,
    "*": OpCode.MUL,
    "/": OpCode.DIV,
    "^": OpCode.POW,
}
_CHAIN_OPS = frozenset({"+", "-", "*", "/"})
_UNARY_OPS = {"-": OpCode.NEG}
_UNARY_FUNCTIONS = {
    "sin": OpCode.SIN,
    "cos": OpCode.COS,
    "tan": OpCode.TAN,
    "exp": OpCode.EXP,
    "log": OpCode.LOG,
    "sqrt": OpCode.SQRT,
    "abs": OpCode.ABS,
}
_BINARY_FUNCTIONS = {"pow": OpCode.POW}


class _Compiler:
    def __init__(self, *, num_variables: int, max_depth: int) -> None:
        self.num_variables = num_variables
        self.max_depth = max_depth
        self.builder = ProgramBuilder()

    def compile_node(self, node: Expr, depth: int) -> CompileError | None:
        if depth >= self.max_depth:
            return CompileError(
                f"Expression too deeply nested (max depth: {self.max_depth})",
                kind=ErrorKind.RESOURCE,
            )

        if isinstance(node, Number):
            self.builder.emit(OpCode.PUSH_CONST, float(node.value))
            return None

        if isinstance(node, Variable):
            if not 0 <= node.index < self.num_variables:
                return CompileError(
                    f"Variable index {node.index} out of range for {self.num_variables} variables"
                )
            self.builder.emit(OpCode.LOAD_VAR, node.index)
            return None

        if isinstance(node, BinaryOp):
            if node.op in _CHAIN_OPS:
                return self._compile_chain(node, depth)
            opcode = _BINARY_OPS.get(node.op)
            if opcode is None:
                return CompileError(f"Unknown binary operator: {node.op}")
            return self._emit_after(opcode, (node.left, node.right), depth)

        if isinstance(node, UnaryOp):
            opcode = _UNARY_OPS.get(node.op)
            if opcode is None:
                return CompileError(f"Unknown unary operator: {node.op}")
            return self._emit_after(opcode, (node.operand,), depth)

        if isinstance(node, Call):
            if node.name in _UNARY_FUNCTIONS:
                if len(node.args) != 1:
                    return CompileError(f"{node.name}() requires exactly 1 argument")
                return self._emit_after(_UNARY_FUNCTIONS[node.name], node.args, depth)
            if node.name in _BINARY_FUNCTIONS:
                if len(node.args) != 2:
                    return CompileError(f"{node.name}() requires exactly 2 arguments")
                return self._emit_after(_BINARY_FUNCTIONS[node.name], node.args, depth)
            return CompileError(f"Unknown function: {node.name}")

        return CompileError(f"Unknown node type {type(node).__name__}")

    def _compile_chain(self, node: BinaryOp, depth: int) -> CompileError | None:
        """Compile a left-nested `+ - * /` chain such as `a + b - c * d`.

        The parser reads such chains in a loop, so their length does not
        count toward nesting depth; the left spine is walked iteratively and
        every operand sits one level below the chain.
        """
        spine: list[BinaryOp] = []
        current: Expr = node
        while isinstance(current, BinaryOp) and current.op in _CHAIN_OPS:
            spine.append(current)
            current = current.left

        err = self.compile_node(current, depth + 1)
        if err is not None:
            return err
        for link in reversed(spine):
            err = self.compile_node(link.right, depth + 1)
            if err is not None:
                return err
            self.builder.emit(_BINARY_OPS[link.op])
        return None

    def _emit_after(self, opcode: OpCode, children: tuple[Expr, ...], depth: int) -> CompileError | None:
        # Post-order: operands first, left before right.
        for child in children:
            err = self.compile_node(child, depth + 1)
            if err is not None:
                return err
        self.builder.emit(opcode)
        return None


def compile_ast(
    expr: Expr,
    num_variables: int,
    *,
    max_depth: int | None = None,
) -> BytecodeProgram | CompileError:
    """Compile an AST into a program ending in exactly one RETURN.

    On failure the error is returned and no partial program escapes.
    """
    compiler = _Compiler(
        num_variables=num_variables,
        max_depth=max_depth if max_depth is not None else config.max_depth(),
    )
    err = compiler.compile_node(expr, 0)
    if err is not None:
        return err
    compiler.builder.emit(OpCode.RETURN)
    return compiler.builder.build(num_variables)
