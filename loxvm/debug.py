"""Human-readable disassembly of bytecode chunks."""

from __future__ import annotations

from typing import Iterator

from loxvm.chunk import Chunk, OpCode
from loxvm.value import format_value

_BYTE_OPS = frozenset(
    {
        OpCode.GET_LOCAL,
        OpCode.SET_LOCAL,
        OpCode.GET_UPVALUE,
        OpCode.SET_UPVALUE,
        OpCode.CALL,
    }
)

_CONSTANT_OPS = frozenset(
    {
        OpCode.CONSTANT,
        OpCode.GET_GLOBAL,
        OpCode.DEFINE_GLOBAL,
        OpCode.SET_GLOBAL,
        OpCode.GET_PROPERTY,
        OpCode.SET_PROPERTY,
        OpCode.GET_SUPER,
        OpCode.CLASS,
        OpCode.METHOD,
    }
)

_INVOKE_OPS = frozenset({OpCode.INVOKE, OpCode.SUPER_INVOKE})

_JUMP_SIGNS = {OpCode.JUMP: 1, OpCode.JUMP_IF_FALSE: 1, OpCode.LOOP: -1}


def _instructions(chunk: Chunk) -> Iterator[str]:
    offset = 0
    while offset < len(chunk):
        text, offset = disassemble_instruction(chunk, offset)
        yield text


def disassemble_chunk(chunk: Chunk, name: str) -> str:
    """Return the listing of every instruction in ``chunk`` under a header."""
    lines = [f"== {name} =="]
    lines.extend(_instructions(chunk))
    return "\n".join(lines) + "\n"


def disassemble_instruction(chunk: Chunk, offset: int) -> tuple[str, int]:
    """Describe the instruction at ``offset``.

    Returns the text (one line, or several for a closure) and the offset of
    the next instruction.
    """
    code = chunk.code
    prefix = f"{offset:04d} "
    if offset > 0 and chunk.lines[offset] == chunk.lines[offset - 1]:
        prefix += "   | "
    else:
        prefix += f"{chunk.lines[offset]:4d} "

    instruction = code[offset]
    try:
        op = OpCode(instruction)
    except ValueError:
        return f"{prefix}Unknown opcode {instruction}", offset + 1
    name = f"OP_{op.name}"

    if op in _CONSTANT_OPS:
        constant = code[offset + 1]
        value = format_value(chunk.constants[constant])
        return f"{prefix}{name:<16} {constant:4d} '{value}'", offset + 2

    if op in _BYTE_OPS:
        return f"{prefix}{name:<16} {code[offset + 1]:4d}", offset + 2

    if op in _INVOKE_OPS:
        constant = code[offset + 1]
        arg_count = code[offset + 2]
        value = format_value(chunk.constants[constant])
        text = f"{prefix}{name:<16} ({arg_count} args) {constant:4d} '{value}'"
        return text, offset + 3

    if op in _JUMP_SIGNS:
        jump = (code[offset + 1] << 8) | code[offset + 2]
        target = offset + 3 + _JUMP_SIGNS[op] * jump
        return f"{prefix}{name:<16} {offset:4d} -> {target}", offset + 3

    if op is OpCode.CLOSURE:
        constant = code[offset + 1]
        function = chunk.constants[constant]
        lines = [f"{prefix}{name:<16} {constant:4d} {format_value(function)}"]
        position = offset + 2
        for _ in range(function.upvalue_count):
            is_local, index = code[position], code[position + 1]
            kind = "local" if is_local else "upvalue"
            lines.append(f"{position:04d}      |                     {kind} {index}")
            position += 2
        return "\n".join(lines), position

    return f"{prefix}{name}", offset + 1