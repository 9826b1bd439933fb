"""Bytecode chunks and the instruction set."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

UINT8_COUNT = 256


class OpCode(IntEnum):
    """Bytecode instructions."""

    CONSTANT = 0
    NIL = 1
    TRUE = 2
    FALSE = 3
    POP = 4
    GET_LOCAL = 5
    SET_LOCAL = 6
    GET_GLOBAL = 7
    DEFINE_GLOBAL = 8
    SET_GLOBAL = 9
    GET_UPVALUE = 10
    SET_UPVALUE = 11
    GET_PROPERTY = 12
    SET_PROPERTY = 13
    GET_SUPER = 14
    EQUAL = 15
    GREATER = 16
    LESS = 17
    ADD = 18
    SUBTRACT = 19
    MULTIPLY = 20
    DIVIDE = 21
    NOT = 22
    NEGATE = 23
    PRINT = 24
    JUMP = 25
    JUMP_IF_FALSE = 26
    LOOP = 27
    CALL = 28
    INVOKE = 29
    SUPER_INVOKE = 30
    CLOSURE = 31
    CLOSE_UPVALUE = 32
    RETURN = 33
    CLASS = 34
    INHERIT = 35
    METHOD = 36


@dataclass
class Chunk:
    """A sequence of bytecode with per-byte line numbers and a constant pool."""

    code: bytearray = field(default_factory=bytearray)
    lines: list[int] = field(default_factory=list)
    constants: list[Any] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.code)

    def write(self, byte: int, line: int) -> None:
        """Append one byte (0-255) that came from source line ``line``."""
        self.code.append(byte)
        self.lines.append(line)

    def add_constant(self, value: Any) -> int:
        """Add ``value`` to the constant pool and return its index."""
        self.constants.append(value)
        return len(self.constants) - 1