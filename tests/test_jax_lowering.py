from __future__ import annotations

import importlib.util
import math
import unittest

from ndcalc import Context
from ndcalc.bytecode import BytecodeProgram, Instruction, OpCode
from ndcalc.errors import EvaluationError


JAX_AVAILABLE = importlib.util.find_spec("jax") is not None


def _compile(expression: str, names=("x", "y")):
    return Context(ad_mode="forward").compile(expression, names).unwrap()


@unittest.skipUnless(JAX_AVAILABLE, "jax is required for lowering tests")
class JaxLoweringTests(unittest.TestCase):
    def test_kernel_matches_vm(self) -> None:
        program = _compile("sin(x) * exp(y) + x^2 / (1 + abs(y))")
        kernel = program.lower()
        for point in ([0.5, -1.0], [1.5, 2.0], [-0.3, 0.1]):
            with self.subTest(point=point):
                expected = program.evaluate(point).value
                self.assertAlmostEqual(float(kernel(*point)), expected, delta=1e-5 * max(1.0, abs(expected)))

    def test_jit_is_cached(self) -> None:
        kernel = _compile("x * y + 1").lower()
        first = kernel.jit()
        self.assertIs(kernel.jit(), first)
        self.assertAlmostEqual(float(first(3.0, 4.0)), 13.0, places=5)
        stats = kernel.transform_stats()
        self.assertEqual(stats["jit_misses"], 1)
        self.assertEqual(stats["jit_hits"], 1)

    def test_program_caches_its_kernel(self) -> None:
        program = _compile("x - y")
        self.assertIs(program.lower(), program.lower())
        self.assertIsNot(program.clone().lower(), program.lower())

    def test_column_evaluation_matches_batch(self) -> None:
        import numpy as np

        program = _compile("x * y - sin(x)")
        xs = np.linspace(0.0, 1.0, 16)
        ys = np.linspace(-1.0, 1.0, 16)
        kernel = program.lower()
        lowered = np.asarray(kernel.evaluate_columns([xs, ys]))
        reference = program.evaluate_batch([xs, ys]).unwrap()
        np.testing.assert_allclose(lowered, reference, atol=1e-5)
        kernel.vmap()
        self.assertEqual(kernel.transform_stats()["vmap_hits"], 1)

    def test_derivatives_agree_with_forward_mode(self) -> None:
        import jax.numpy as jnp
        import numpy as np

        program = _compile("sin(x*y) + exp(x - y) / (1 + y^2) + x^3", ("x", "y"))
        point = [0.7, 1.3]
        kernel = program.lower()

        np.testing.assert_allclose(
            np.asarray(kernel.grad()(jnp.asarray(point))),
            program.gradient(point).value,
            rtol=1e-4,
            atol=1e-4,
        )
        np.testing.assert_allclose(
            np.asarray(kernel.hessian()(jnp.asarray(point))).reshape(-1),
            program.hessian(point).value,
            rtol=1e-3,
            atol=1e-3,
        )

    def test_kernel_has_no_domain_guards(self) -> None:
        kernel = _compile("1 / x", ("x",)).lower()
        self.assertTrue(math.isinf(float(kernel(0.0))))

    def test_malformed_bytecode_is_rejected(self) -> None:
        from ndcalc.lowering import lower_program

        bad = [
            BytecodeProgram((Instruction(OpCode.ADD), Instruction(OpCode.RETURN)), 0),
            BytecodeProgram((Instruction(OpCode.PUSH_CONST, 1.0),), 0),
            BytecodeProgram((Instruction(OpCode.LOAD_VAR, 2), Instruction(OpCode.RETURN)), 1),
        ]
        for program in bad:
            with self.subTest(program=program.disassemble()):
                with self.assertRaises(EvaluationError):
                    lower_program(program)

    def test_zero_variable_columns_are_rejected(self) -> None:
        kernel = _compile("2 + 3", ()).lower()
        self.assertAlmostEqual(float(kernel()), 5.0, places=6)
        with self.assertRaises(EvaluationError):
            kernel.evaluate_columns([])


if __name__ == "__main__":
    unittest.main()
