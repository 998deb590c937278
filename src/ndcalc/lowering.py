"""JAX lowering of compiled bytecode for bulk evaluation and cross-checks.

The bytecode is replayed once under tracing with `jax.numpy` primitives,
producing a pure function of `num_variables` positional arguments. Unlike
the VM, the kernel has no domain guards: division by zero, logarithms of
non-positive values and the like produce inf/nan as JAX does.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import jax
import jax.numpy as jnp

from .bytecode import BytecodeProgram, OpCode
from .errors import EvaluationError

_UNARY_PRIMITIVES = {
    OpCode.NEG: jnp.negative,
    OpCode.SIN: jnp.sin,
    OpCode.COS: jnp.cos,
    OpCode.TAN: jnp.tan,
    OpCode.EXP: jnp.exp,
    OpCode.LOG: jnp.log,
    OpCode.SQRT: jnp.sqrt,
    OpCode.ABS: jnp.abs,
}
_BINARY_PRIMITIVES = {
    OpCode.ADD: jnp.add,
    OpCode.SUB: jnp.subtract,
    OpCode.MUL: jnp.multiply,
    OpCode.DIV: jnp.divide,
    OpCode.POW: jnp.power,
}


def check_stack_discipline(program: BytecodeProgram) -> None:
    """Statically replay stack depths; raise on malformed bytecode."""
    depth = 0
    for inst in program.instructions:
        op = inst.opcode
        if op in (OpCode.PUSH_CONST, OpCode.LOAD_VAR):
            if op is OpCode.LOAD_VAR and not 0 <= inst.operand < program.num_variables:
                raise EvaluationError(f"Variable index {inst.operand} out of bounds")
            depth += 1
        elif op in _BINARY_PRIMITIVES:
            if depth < 2:
                raise EvaluationError(f"Stack underflow in {op.name}")
            depth -= 1
        elif op in _UNARY_PRIMITIVES:
            if depth < 1:
                raise EvaluationError(f"Stack underflow in {op.name}")
        elif op is OpCode.RETURN:
            if depth != 1:
                raise EvaluationError(f"Invalid stack size at return: {depth}")
            return
        else:
            raise EvaluationError(f"Unknown opcode {op!r}")
    raise EvaluationError("Missing return instruction")


def evaluate_bytecode(program: BytecodeProgram, args: tuple[object, ...]):
    """Replay `program` with JAX operations on `args`."""
    if len(args) != program.num_variables:
        raise EvaluationError(f"Input count mismatch: expected {program.num_variables}, got {len(args)}")

    stack: list[object] = []
    for inst in program.instructions:
        op = inst.opcode
        if op is OpCode.PUSH_CONST:
            stack.append(jnp.asarray(inst.operand))
        elif op is OpCode.LOAD_VAR:
            stack.append(jnp.asarray(args[inst.operand]))
        elif op in _BINARY_PRIMITIVES:
            b = stack.pop()
            a = stack.pop()
            stack.append(_BINARY_PRIMITIVES[op](a, b))
        elif op in _UNARY_PRIMITIVES:
            stack.append(_UNARY_PRIMITIVES[op](stack.pop()))
        elif op is OpCode.RETURN:
            return stack.pop()
    raise EvaluationError("Missing return instruction")


@dataclass(eq=False)
class JaxKernel:
    """Callable wrapper around lowered bytecode with cached JAX transforms."""

    program: BytecodeProgram
    _jit_fn: object | None = field(default=None, init=False, repr=False)
    _vmap_cache: dict[str, object] = field(default_factory=dict, init=False, repr=False)
    _grad_fn: object | None = field(default=None, init=False, repr=False)
    _hessian_fn: object | None = field(default=None, init=False, repr=False)
    _transform_stats: dict[str, int] = field(
        default_factory=lambda: {"jit_hits": 0, "jit_misses": 0, "vmap_hits": 0, "vmap_misses": 0},
        init=False,
        repr=False,
    )

    def __post_init__(self) -> None:
        check_stack_discipline(self.program)

    @property
    def num_variables(self) -> int:
        return self.program.num_variables

    def __call__(self, *args):
        return evaluate_bytecode(self.program, args)

    def _call_vector(self, x):
        return evaluate_bytecode(self.program, tuple(x[i] for i in range(self.num_variables)))

    def jit(self):
        if self._jit_fn is not None:
            self._transform_stats["jit_hits"] += 1
            return self._jit_fn
        self._transform_stats["jit_misses"] += 1
        self._jit_fn = jax.jit(self.__call__)
        return self._jit_fn

    def vmap(self, *, in_axes=0):
        """Vectorize over aligned per-variable columns (SoA)."""
        key = repr(in_axes)
        cached = self._vmap_cache.get(key)
        if cached is not None:
            self._transform_stats["vmap_hits"] += 1
            return cached
        self._transform_stats["vmap_misses"] += 1
        fn = jax.jit(jax.vmap(self.__call__, in_axes=in_axes))
        self._vmap_cache[key] = fn
        return fn

    def grad(self):
        """Gradient as a function of one point vector."""
        if self._grad_fn is None:
            self._grad_fn = jax.jit(jax.grad(self._call_vector))
        return self._grad_fn

    def hessian(self):
        """(n, n) Hessian as a function of one point vector."""
        if self._hessian_fn is None:
            self._hessian_fn = jax.jit(jax.hessian(self._call_vector))
        return self._hessian_fn

    def evaluate_columns(self, columns):
        """Unchecked batch evaluation; one output per point."""
        if self.num_variables == 0:
            raise EvaluationError("Column evaluation needs at least one variable")
        return self.vmap()(*(jnp.asarray(col) for col in columns))

    def transform_stats(self) -> dict[str, int]:
        return dict(self._transform_stats)


def lower_program(program: BytecodeProgram) -> JaxKernel:
    return JaxKernel(program=program)
