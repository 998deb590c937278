"""Stack-machine instruction set and the immutable compiled program."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class OpCode(IntEnum):
    PUSH_CONST = 0
    LOAD_VAR = 1
    ADD = 2
    SUB = 3
    MUL = 4
    DIV = 5
    NEG = 6
    POW = 7
    SIN = 8
    COS = 9
    TAN = 10
    EXP = 11
    LOG = 12
    SQRT = 13
    ABS = 14
    RETURN = 15


BINARY_OPCODES = frozenset({OpCode.ADD, OpCode.SUB, OpCode.MUL, OpCode.DIV, OpCode.POW})
UNARY_OPCODES = frozenset(
    {OpCode.NEG, OpCode.SIN, OpCode.COS, OpCode.TAN, OpCode.EXP, OpCode.LOG, OpCode.SQRT, OpCode.ABS}
)


@dataclass(frozen=True)
class Instruction:
    """One opcode plus its operand.

    `operand` is the constant for PUSH_CONST, the variable index for
    LOAD_VAR, and None otherwise.
    """

    opcode: OpCode
    operand: float | int | None = None

    def __str__(self) -> str:
        if self.opcode is OpCode.PUSH_CONST:
            return f"PUSH_CONST {self.operand!r}"
        if self.opcode is OpCode.LOAD_VAR:
            return f"LOAD_VAR {self.operand}"
        return self.opcode.name


@dataclass(frozen=True)
class BytecodeProgram:
    """Compiled instruction stream with its declared arity.

    Never mutated after compilation, so one program may be shared by any
    number of VM / AutoDiff / FiniteDiff instances.
    """

    instructions: tuple[Instruction, ...]
    num_variables: int

    def __len__(self) -> int:
        return len(self.instructions)

    def __iter__(self):
        return iter(self.instructions)

    def disassemble(self) -> str:
        lines = [f"Bytecode (variables: {self.num_variables}):"]
        for i, inst in enumerate(self.instructions):
            lines.append(f"  {i}: {inst}")
        return "\n".join(lines) + "\n"


class ProgramBuilder:
    """Append-only instruction buffer used while compiling."""

    def __init__(self) -> None:
        self._instructions: list[Instruction] = []

    def emit(self, opcode: OpCode, operand: float | int | None = None) -> None:
        self._instructions.append(Instruction(opcode, operand))

    def build(self, num_variables: int) -> BytecodeProgram:
        return BytecodeProgram(instructions=tuple(self._instructions), num_variables=num_variables)
