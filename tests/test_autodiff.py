from __future__ import annotations

import math
import unittest

import numpy as np

from ndcalc.autodiff import AutoDiff, Jet
from ndcalc.bytecode import BytecodeProgram
from ndcalc.compiler import compile_ast
from ndcalc.errors import DomainError, EvaluationError
from ndcalc.finite_diff import FiniteDiff
from ndcalc.parser import parse
from ndcalc.vm import VM


def _program(source: str, names=("x", "y", "z")) -> BytecodeProgram:
    return compile_ast(parse(source, names), len(names))


class ForwardGradientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.ad = AutoDiff()

    def _grad(self, source: str, names, point) -> np.ndarray:
        grad = self.ad.gradient(_program(source, names), point)
        self.assertNotIsInstance(grad, EvaluationError, msg=str(grad))
        return grad

    def test_sum_of_squares_is_exact(self) -> None:
        self.assertEqual(self._grad("x^2 + y^2", ("x", "y"), [3.0, 4.0]).tolist(), [6.0, 8.0])

    def test_product_and_quotient_rules(self) -> None:
        self.assertEqual(self._grad("x * y", ("x", "y"), [2.0, 5.0]).tolist(), [5.0, 2.0])
        self.assertEqual(self._grad("x / y", ("x", "y"), [3.0, 2.0]).tolist(), [0.5, -0.75])

    def test_matches_closed_form(self) -> None:
        grad = self._grad("sin(x) * exp(y) + z^2", ("x", "y", "z"), [1.0, 0.5, 2.0])
        expected = [math.cos(1.0) * math.exp(0.5), math.sin(1.0) * math.exp(0.5), 4.0]
        np.testing.assert_allclose(grad, expected, rtol=1e-14)

    def test_elementary_function_derivatives(self) -> None:
        x = 0.3
        cases = {
            "sin(x)": math.cos(x),
            "cos(x)": -math.sin(x),
            "tan(x)": 1.0 / math.cos(x) ** 2,
            "exp(x)": math.exp(x),
            "log(x)": 1.0 / x,
            "sqrt(x)": 0.5 / math.sqrt(x),
            "abs(x)": 1.0,
            "abs(x - 1)": -1.0,
            "-x": -1.0,
        }
        for source, expected in cases.items():
            with self.subTest(source=source):
                self.assertAlmostEqual(self._grad(source, ("x",), [x])[0], expected, places=12)

    def test_abs_derivative_at_zero_is_one(self) -> None:
        self.assertEqual(self._grad("abs(x)", ("x",), [0.0]).tolist(), [1.0])

    def test_constant_exponent_power_rule(self) -> None:
        self.assertEqual(self._grad("x^3", ("x",), [2.0]).tolist(), [12.0])
        self.assertEqual(self._grad("x^3", ("x",), [-2.0]).tolist(), [12.0])
        self.assertEqual(self._grad("x^0", ("x",), [0.0]).tolist(), [0.0])
        self.assertEqual(self._grad("x^1", ("x",), [0.0]).tolist(), [1.0])
        # Exponent built from constants is still constant.
        self.assertEqual(self._grad("x^(1 + 1)", ("x",), [-3.0]).tolist(), [-6.0])

    def test_variable_exponent_uses_log_form(self) -> None:
        grad = self._grad("x^y", ("x", "y"), [2.0, 3.0])
        self.assertAlmostEqual(grad[0], 12.0, places=12)
        self.assertAlmostEqual(grad[1], 8.0 * math.log(2.0), places=12)

    def test_variable_exponent_requires_positive_base(self) -> None:
        err = self.ad.gradient(_program("x^y", ("x", "y")), [-2.0, 2.0])
        self.assertIsInstance(err, DomainError)

    def test_domain_errors_match_vm(self) -> None:
        for source, x in (("log(x)", -1.0), ("1/x", 0.0), ("sqrt(x)", -1.0)):
            with self.subTest(source=source):
                self.assertIsInstance(self.ad.gradient(_program(source, ("x",)), [x]), DomainError)

    def test_sqrt_derivative_undefined_at_zero(self) -> None:
        err = self.ad.gradient(_program("sqrt(x^2)", ("x",)), [0.0])
        self.assertIsInstance(err, EvaluationError)
        self.assertNotIsInstance(err, DomainError)
        self.assertIn("SQRT", err.message)

    def test_non_finite_power_derivative_fails(self) -> None:
        err = self.ad.gradient(_program("x^0.5", ("x",)), [0.0])
        self.assertIsInstance(err, EvaluationError)
        self.assertIn("Non-finite", err.message)

    def test_primal_matches_vm(self) -> None:
        program = _program("x / y + sin(z) ^ 2 - exp(x * z)")
        point = [0.7, 3.0, -1.1]
        jet = self.ad.execute(program, point)
        self.assertIsInstance(jet, Jet)
        self.assertEqual(jet.value, VM().execute(program, point))

    def test_arity_mismatch(self) -> None:
        err = self.ad.gradient(_program("x + y", ("x", "y")), [1.0])
        self.assertIsInstance(err, EvaluationError)
        self.assertIn("Input count mismatch", err.message)

    def test_zero_variable_program(self) -> None:
        self.assertEqual(self._grad("2 + 3", (), []).shape, (0,))


class ForwardHessianTests(unittest.TestCase):
    def setUp(self) -> None:
        self.ad = AutoDiff()

    def _hess(self, source: str, names, point) -> np.ndarray:
        hess = self.ad.hessian(_program(source, names), point)
        self.assertNotIsInstance(hess, EvaluationError, msg=str(hess))
        return hess

    def test_sum_of_squares_hessian_is_exact(self) -> None:
        hess = self._hess("x^2 + y^2 + z^2", ("x", "y", "z"), [1.0, 2.0, 3.0])
        np.testing.assert_array_equal(hess, 2.0 * np.eye(3))

    def test_polynomial_hessian_is_exact(self) -> None:
        hess = self._hess("x^2*y + 3*x*y^2 - 2*y", ("x", "y"), [1.0, 2.0])
        np.testing.assert_array_equal(hess, np.array([[4.0, 14.0], [14.0, 6.0]]))

    def test_bilinear_hessian(self) -> None:
        np.testing.assert_array_equal(self._hess("x * y", ("x", "y"), [2.0, 5.0]), [[0.0, 1.0], [1.0, 0.0]])

    def test_hessian_is_exactly_symmetric(self) -> None:
        sources = [
            "sin(x*y) + exp(x - z) / (1 + y^2) + x^z",
            "log(x + y + z) * sqrt(x*z) - tan(y/3)",
            "cos(x)^3 * (y - z)^2 / exp(y*z)",
        ]
        point = [0.7, 1.3, 2.1]
        for source in sources:
            with self.subTest(source=source):
                hess = self._hess(source, ("x", "y", "z"), point)
                np.testing.assert_array_equal(hess, hess.T)

    def test_hessian_agrees_with_finite_differences(self) -> None:
        program = _program("sin(x*y) + exp(x - z) / (1 + y^2) + x^z")
        point = [0.7, 1.3, 2.1]
        exact = self.ad.hessian(program, point)
        approx = FiniteDiff(1e-5).hessian(program, VM(), point)
        np.testing.assert_allclose(exact, approx, atol=1e-3)

    def test_gradient_part_of_second_order_sweep_matches_first_order(self) -> None:
        program = _program("sin(x) * exp(y) + z^2")
        point = [1.0, 0.5, 2.0]
        first = self.ad.execute(program, point)
        first_grad = first.grad.copy()
        second = self.ad.execute(program, point, second_order=True)
        self.assertIsNone(first.hess)
        np.testing.assert_array_equal(second.grad, first_grad)


if __name__ == "__main__":
    unittest.main()
