"""Recursive-descent parser for scalar expressions.

Grammar, lowest precedence first::

    Expr    := Term (('+' | '-') Term)*
    Term    := Factor (('*' | '/') Factor)*
    Factor  := Primary ('^' Factor)?
    Primary := ('-' | '+') Primary
             | NUMBER | VARIABLE
             | FUNCTION '(' [Expr (',' Expr)*] ')'
             | '(' Expr ')'

A leading sign binds to the following primary only, before `^` is applied,
so `-2^2` is `(-2)^2`. Every production returns either a node or the
`ParseError` that stopped it; nothing is raised.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from . import config
from .ast import BinaryOp, Call, Expr, Number, UnaryOp, Variable
from .errors import ErrorKind, ParseError
from .lexer import Token, tokenize

_ADDITIVE = {"+", "-"}
_MULTIPLICATIVE = {"*", "/"}


@dataclass
class _Parser:
    tokens: list[Token]
    variable_indices: dict[str, int]
    max_depth: int
    index: int = 0

    def parse_expression_only(self) -> Expr | ParseError:
        expr = self._parse_expression(0)
        if isinstance(expr, ParseError):
            return expr
        tok = self._peek()
        if tok.kind != "END":
            return self._error(tok, message="Unexpected tokens after expression", expected=("END",))
        return expr

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        tok = self.tokens[self.index]
        if tok.kind != "END":
            self.index += 1
        return tok

    def _at_operator(self, ops: set[str]) -> bool:
        tok = self._peek()
        return tok.kind == "OPERATOR" and tok.text in ops

    def _error(
        self,
        tok: Token | None = None,
        *,
        message: str = "Unexpected token",
        kind: ErrorKind = ErrorKind.SYNTAX,
        expected: tuple[str, ...] = (),
    ) -> ParseError:
        token = tok if tok is not None else self._peek()
        if token.kind == "END":
            found = "END"
        else:
            found = f"{token.kind}({token.text})"
        return ParseError(
            message,
            token.pos,
            max(token.end, token.pos + 1),
            kind=kind,
            expected=tuple(dict.fromkeys(expected)),
            found=found,
        )

    def _check_depth(self, depth: int) -> ParseError | None:
        if depth >= self.max_depth:
            return self._error(
                message=f"Expression too deeply nested (max depth: {self.max_depth})",
                kind=ErrorKind.RESOURCE,
            )
        return None

    def _parse_expression(self, depth: int) -> Expr | ParseError:
        err = self._check_depth(depth)
        if err is not None:
            return err

        left = self._parse_term(depth + 1)
        if isinstance(left, ParseError):
            return left

        while self._at_operator(_ADDITIVE):
            op = self._advance().text
            right = self._parse_term(depth + 1)
            if isinstance(right, ParseError):
                return right
            left = BinaryOp(op, left, right)
        return left

    def _parse_term(self, depth: int) -> Expr | ParseError:
        err = self._check_depth(depth)
        if err is not None:
            return err

        left = self._parse_factor(depth + 1)
        if isinstance(left, ParseError):
            return left

        while self._at_operator(_MULTIPLICATIVE):
            op = self._advance().text
            right = self._parse_factor(depth + 1)
            if isinstance(right, ParseError):
                return right
            left = BinaryOp(op, left, right)
        return left

    def _parse_factor(self, depth: int) -> Expr | ParseError:
        err = self._check_depth(depth)
        if err is not None:
            return err

        base = self._parse_primary(depth + 1)
        if isinstance(base, ParseError):
            return base

        if self._at_operator({"^"}):
            self._advance()
            # Right-associative: the exponent re-enters Factor.
            exponent = self._parse_factor(depth + 1)
            if isinstance(exponent, ParseError):
                return exponent
            return BinaryOp("^", base, exponent)
        return base

    def _parse_primary(self, depth: int) -> Expr | ParseError:
        err = self._check_depth(depth)
        if err is not None:
            return err

        tok = self._peek()

        if tok.kind == "OPERATOR" and tok.text in _ADDITIVE:
            self._advance()
            operand = self._parse_primary(depth + 1)
            if isinstance(operand, ParseError):
                return operand
            if tok.text == "-":
                return UnaryOp("-", operand)
            return operand

        if tok.kind == "NUMBER":
            self._advance()
            return Number(tok.value if tok.value is not None else float(tok.text))

        if tok.kind == "VARIABLE":
            index = self.variable_indices.get(tok.text)
            if index is None:
                return self._error(tok, message=f"Unknown variable: {tok.text}", kind=ErrorKind.SEMANTIC)
            self._advance()
            return Variable(index, tok.text)

        if tok.kind == "FUNCTION":
            return self._parse_call(depth)

        if tok.kind == "LPAREN":
            self._advance()
            inner = self._parse_expression(depth + 1)
            if isinstance(inner, ParseError):
                return inner
            if self._peek().kind != "RPAREN":
                return self._error(message="Expected closing parenthesis", expected=("RPAREN",))
            self._advance()
            return inner

        if tok.kind == "END":
            return self._error(tok, message="Unexpected end of expression")
        return self._error(tok)

    def _parse_call(self, depth: int) -> Expr | ParseError:
        name = self._advance().text
        if self._peek().kind != "LPAREN":
            return self._error(message="Expected '(' after function name", expected=("LPAREN",))
        self._advance()

        args: list[Expr] = []
        if self._peek().kind == "RPAREN":
            self._advance()
            return Call(name, ())

        while True:
            arg = self._parse_expression(depth + 1)
            if isinstance(arg, ParseError):
                return arg
            args.append(arg)

            tok = self._peek()
            if tok.kind == "RPAREN":
                self._advance()
                return Call(name, tuple(args))
            if tok.kind != "COMMA":
                return self._error(tok, message="Expected ',' or ')' in function call", expected=("COMMA", "RPAREN"))
            self._advance()
            if self._peek().kind in {"COMMA", "RPAREN"}:
                return self._error(message=f"Missing argument in call to {name}()")


def _variable_indices(variable_names: Sequence[str]) -> dict[str, int]:
    # Last declaration wins for duplicated names.
    return {name: i for i, name in enumerate(variable_names)}


def parse(
    source: str,
    variable_names: Sequence[str] = (),
    *,
    max_depth: int | None = None,
) -> Expr | ParseError:
    """Parse `source` against the ordered declared variables.

    A variable's position in `variable_names` is its bytecode index.
    """
    tokens = tokenize(source)
    if isinstance(tokens, ParseError):
        return tokens
    limit = max_depth if max_depth is not None else config.max_depth()
    parser = _Parser(tokens=tokens, variable_indices=_variable_indices(variable_names), max_depth=limit)
    return parser.parse_expression_only()
