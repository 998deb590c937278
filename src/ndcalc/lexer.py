"""Tokenization for plain-text scalar expressions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from .errors import ErrorKind, ParseError


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    pos: int
    end: int
    value: float | None = None


BUILTIN_FUNCTIONS: Final[frozenset[str]] = frozenset({"sin", "cos", "tan", "exp", "log", "sqrt", "abs", "pow"})

_SINGLE_TOKENS = {
    "(": "LPAREN",
    ")": "RPAREN",
    ",": "COMMA",
}
_OPERATORS = set("+-*/^")
_WHITESPACE = set(" \t\n\r\f\v")
_DIGITS = set("0123456789")


def _is_ident_start(ch: str) -> bool:
    return ch == "_" or ("a" <= ch <= "z") or ("A" <= ch <= "Z")


def _is_ident_continue(ch: str) -> bool:
    return _is_ident_start(ch) or ch in _DIGITS


def _scan_digits(source: str, start: int) -> int:
    i = start
    while i < len(source) and source[i] in _DIGITS:
        i += 1
    return i


def _scan_number(source: str, start: int) -> tuple[float, int] | ParseError:
    i = _scan_digits(source, start)
    mantissa_digits = i - start
    if i < len(source) and source[i] == ".":
        frac_start = i + 1
        i = _scan_digits(source, frac_start)
        mantissa_digits += i - frac_start
    if mantissa_digits == 0:
        return _bad_number(source, start, i)
    if i < len(source) and source[i] in {"e", "E"}:
        j = i + 1
        if j < len(source) and source[j] in {"+", "-"}:
            j += 1
        exp_end = _scan_digits(source, j)
        # Without exponent digits the "e" starts the next token instead.
        if exp_end > j:
            i = exp_end
    if i < len(source) and source[i] == ".":
        # "1.2.3"
        end = i
        while end < len(source) and (source[end] == "." or source[end] in _DIGITS):
            end += 1
        return _bad_number(source, start, end)

    return float(source[start:i]), i


def _bad_number(source: str, start: int, end: int) -> ParseError:
    text = source[start:end]
    return ParseError(
        f"Invalid numeric literal {text!r} at position {start}",
        start,
        end,
        kind=ErrorKind.LEXICAL,
        found=text,
    )


def tokenize(source: str) -> list[Token] | ParseError:
    """Split `source` into tokens, or return the first lexical error.

    The token list always ends with a single END token.
    """
    tokens: list[Token] = []
    i = 0

    while i < len(source):
        ch = source[i]

        if ch in _WHITESPACE:
            i += 1
            continue

        if ch in _DIGITS or ch == ".":
            scanned = _scan_number(source, i)
            if isinstance(scanned, ParseError):
                return scanned
            value, end = scanned
            tokens.append(Token("NUMBER", source[i:end], i, end, value))
            i = end
            continue

        if _is_ident_start(ch):
            start = i
            i += 1
            while i < len(source) and _is_ident_continue(source[i]):
                i += 1
            ident = source[start:i]
            kind = "FUNCTION" if ident in BUILTIN_FUNCTIONS else "VARIABLE"
            tokens.append(Token(kind, ident, start, i))
            continue

        if ch in _OPERATORS:
            tokens.append(Token("OPERATOR", ch, i, i + 1))
            i += 1
            continue

        if ch in _SINGLE_TOKENS:
            tokens.append(Token(_SINGLE_TOKENS[ch], ch, i, i + 1))
            i += 1
            continue

        return ParseError(
            f"Unexpected character {ch!r} at position {i}",
            i,
            i + 1,
            kind=ErrorKind.LEXICAL,
            found=ch,
        )

    tokens.append(Token("END", "", len(source), len(source)))
    return tokens
