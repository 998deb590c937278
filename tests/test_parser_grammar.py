from __future__ import annotations

import os
import unittest
from unittest import mock

from ndcalc.ast import BinaryOp, Call, Number, UnaryOp, Variable
from ndcalc.errors import ErrorKind, ParseError
from ndcalc.parser import parse


class ParserGrammarTests(unittest.TestCase):
    def _parse(self, source: str, names=("x", "y", "z"), **kwargs):
        expr = parse(source, names, **kwargs)
        self.assertNotIsInstance(expr, ParseError, msg=str(expr))
        return expr

    def _error(self, source: str, names=("x", "y", "z"), **kwargs) -> ParseError:
        err = parse(source, names, **kwargs)
        self.assertIsInstance(err, ParseError)
        return err

    def test_additive_and_multiplicative_are_left_associative(self) -> None:
        self.assertEqual(
            self._parse("2 + 3 - 1"),
            BinaryOp("-", BinaryOp("+", Number(2.0), Number(3.0)), Number(1.0)),
        )
        self.assertEqual(
            self._parse("2 * 3 / 4"),
            BinaryOp("/", BinaryOp("*", Number(2.0), Number(3.0)), Number(4.0)),
        )

    def test_power_is_right_associative(self) -> None:
        self.assertEqual(
            self._parse("2 ^ 3 ^ 2"),
            BinaryOp("^", Number(2.0), BinaryOp("^", Number(3.0), Number(2.0))),
        )

    def test_precedence_layers(self) -> None:
        self.assertEqual(
            self._parse("2 + 3 * 4 ^ 2"),
            BinaryOp("+", Number(2.0), BinaryOp("*", Number(3.0), BinaryOp("^", Number(4.0), Number(2.0)))),
        )

    def test_unary_minus_binds_before_power(self) -> None:
        self.assertEqual(self._parse("-2 ^ 2"), BinaryOp("^", UnaryOp("-", Number(2.0)), Number(2.0)))
        self.assertEqual(self._parse("2 ^ -1"), BinaryOp("^", Number(2.0), UnaryOp("-", Number(1.0))))
        self.assertEqual(self._parse("2 * -3"), BinaryOp("*", Number(2.0), UnaryOp("-", Number(3.0))))

    def test_unary_plus_is_dropped_and_minus_nests(self) -> None:
        self.assertEqual(self._parse("+x"), Variable(0, "x"))
        self.assertEqual(self._parse("--x"), UnaryOp("-", UnaryOp("-", Variable(0, "x"))))

    def test_variables_resolve_to_declaration_order(self) -> None:
        self.assertEqual(
            self._parse("y + x", ("x", "y")),
            BinaryOp("+", Variable(1, "y"), Variable(0, "x")),
        )

    def test_duplicate_declarations_use_last_index(self) -> None:
        self.assertEqual(self._parse("a", ("a", "b", "a")), Variable(2, "a"))

    def test_calls_keep_argument_lists_unchecked(self) -> None:
        self.assertEqual(self._parse("sin(x, y)"), Call("sin", (Variable(0, "x"), Variable(1, "y"))))
        self.assertEqual(self._parse("pow(x)"), Call("pow", (Variable(0, "x"),)))
        self.assertEqual(self._parse("cos()"), Call("cos", ()))
        self.assertEqual(
            self._parse("pow(x + 1, 2)"),
            Call("pow", (BinaryOp("+", Variable(0, "x"), Number(1.0)), Number(2.0))),
        )

    def test_unknown_variable_is_semantic_error(self) -> None:
        err = self._error("x + w")
        self.assertEqual(err.message, "Unknown variable: w")
        self.assertEqual(err.kind, ErrorKind.SEMANTIC)
        self.assertEqual((err.start, err.end), (4, 5))

    def test_syntax_diagnostics(self) -> None:
        cases = {
            "(x + 1": "Expected closing parenthesis",
            "x +": "Unexpected end of expression",
            "": "Unexpected end of expression",
            "x y": "Unexpected tokens after expression",
            "sin x": "Expected '(' after function name",
            "pow(x y)": "Expected ',' or ')' in function call",
            "pow(x,)": "Missing argument in call to pow()",
            ")": "Unexpected token",
            "x * , y": "Unexpected token",
        }
        for source, message in cases.items():
            with self.subTest(source=source):
                err = self._error(source)
                self.assertEqual(err.message, message)
                self.assertEqual(err.kind, ErrorKind.SYNTAX)

    def test_error_rendering_includes_span_and_found_token(self) -> None:
        err = self._error("(x + 1")
        self.assertEqual(str(err), "Expected closing parenthesis at span [6, 7); expected RPAREN; found END")

    def test_lexical_errors_pass_through(self) -> None:
        err = self._error("x # 1")
        self.assertEqual(err.kind, ErrorKind.LEXICAL)

    def test_nesting_depth_limit(self) -> None:
        shallow = "(" * 20 + "x" + ")" * 20
        self.assertEqual(self._parse(shallow, max_depth=100), Variable(0, "x"))

        deep = "(" * 30 + "x" + ")" * 30
        err = self._error(deep, max_depth=100)
        self.assertEqual(err.kind, ErrorKind.RESOURCE)
        self.assertIn("too deeply nested", err.message)
        self.assertIn("max depth: 100", err.message)

    def test_long_flat_chains_do_not_count_toward_depth(self) -> None:
        expr = self._parse(" + ".join(["x"] * 200), max_depth=10)
        self.assertIsInstance(expr, BinaryOp)
        self._parse(" * ".join(["y"] * 200), max_depth=10)

    def test_number_followed_by_name_is_a_syntax_error(self) -> None:
        err = self._error("2x")
        self.assertEqual(err.kind, ErrorKind.SYNTAX)
        self.assertEqual(err.message, "Unexpected tokens after expression")
        self.assertEqual((err.start, err.end), (1, 2))

    def test_unary_chain_counts_toward_depth(self) -> None:
        err = self._error("-" * 200 + "x")
        self.assertEqual(err.kind, ErrorKind.RESOURCE)

    def test_right_associative_power_chain_counts_toward_depth(self) -> None:
        err = self._error(" ^ ".join(["2"] * 80), max_depth=50)
        self.assertEqual(err.kind, ErrorKind.RESOURCE)

    def test_default_depth_follows_environment(self) -> None:
        source = "(" * 3 + "x" + ")" * 3
        with mock.patch.dict(os.environ, {"NDCALC_MAX_DEPTH": "8"}):
            err = self._error(source)
        self.assertIn("max depth: 8", err.message)
        with mock.patch.dict(os.environ, {"NDCALC_MAX_DEPTH": "100"}):
            self._parse(source)


if __name__ == "__main__":
    unittest.main()
