import re

import pytest

from loxvm.chunk import Chunk, OpCode
from loxvm.debug import disassemble_chunk, disassemble_instruction
from loxvm.objects import LoxFunction


def _chunk(*pairs, constants=()):
    chunk = Chunk()
    for value in constants:
        chunk.add_constant(value)
    for byte, line in pairs:
        chunk.write(byte, line)
    return chunk


def _target(text):
    return int(re.search(r"-> (-?\d+)$", text).group(1))


def test_constant_instruction_listing():
    chunk = _chunk((OpCode.CONSTANT, 123), (0, 123), constants=[1.2])
    text, next_offset = disassemble_instruction(chunk, 0)
    assert text == "0000  123 OP_CONSTANT         0 '1.2'"
    assert next_offset == 2


def test_same_line_uses_bar_marker():
    chunk = _chunk((OpCode.CONSTANT, 123), (0, 123), (OpCode.RETURN, 123), constants=[1.2])
    text, next_offset = disassemble_instruction(chunk, 2)
    assert text == "0002    | OP_RETURN"
    assert next_offset == 3


def test_new_line_shows_line_number():
    chunk = _chunk((OpCode.NIL, 1), (OpCode.RETURN, 2))
    text, _ = disassemble_instruction(chunk, 1)
    assert "|" not in text
    assert text.endswith("OP_RETURN")


def test_chunk_listing_has_header_and_every_instruction():
    chunk = _chunk(
        (OpCode.CONSTANT, 1), (0, 1), (OpCode.NEGATE, 1), (OpCode.RETURN, 2),
        constants=[3.0],
    )
    listing = disassemble_chunk(chunk, "test chunk")
    lines = listing.splitlines()
    assert lines[0] == "== test chunk =="
    assert len(lines) == 4
    assert "OP_NEGATE" in lines[2]
    assert listing.endswith("\n")


def test_empty_chunk_has_only_header():
    assert disassemble_chunk(Chunk(), "<script>") == "== <script> ==\n"


def test_string_constant_shown_raw():
    chunk = _chunk((OpCode.GET_GLOBAL, 1), (0, 1), constants=["name"])
    text, _ = disassemble_instruction(chunk, 0)
    assert text.endswith("'name'")
    assert "OP_GET_GLOBAL" in text


@pytest.mark.parametrize(
    "op", [OpCode.GET_LOCAL, OpCode.SET_LOCAL, OpCode.GET_UPVALUE, OpCode.SET_UPVALUE, OpCode.CALL]
)
def test_byte_instructions_take_two_bytes(op):
    chunk = _chunk((op, 1), (7, 1))
    text, next_offset = disassemble_instruction(chunk, 0)
    assert next_offset == 2
    assert text.split()[-1] == "7"
    assert f"OP_{op.name}" in text


@pytest.mark.parametrize("op", [OpCode.INVOKE, OpCode.SUPER_INVOKE])
def test_invoke_instructions_show_arg_count(op):
    chunk = _chunk((op, 1), (0, 1), (2, 1), constants=["method"])
    text, next_offset = disassemble_instruction(chunk, 0)
    assert next_offset == 3
    assert "(2 args)" in text
    assert text.endswith("'method'")


def test_jump_and_loop_are_mirrored():
    forward = _chunk((OpCode.NIL, 1), (OpCode.JUMP, 1), (0, 1), (5, 1))
    backward = _chunk((OpCode.NIL, 1), (OpCode.LOOP, 1), (0, 1), (5, 1))
    jump_text, jump_next = disassemble_instruction(forward, 1)
    loop_text, loop_next = disassemble_instruction(backward, 1)
    assert jump_next == loop_next == 4
    assert _target(jump_text) + _target(loop_text) == 2 * jump_next


def test_jump_uses_big_endian_offset():
    low = _chunk((OpCode.JUMP_IF_FALSE, 1), (0, 1), (1, 1))
    high = _chunk((OpCode.JUMP_IF_FALSE, 1), (1, 1), (0, 1))
    assert _target(disassemble_instruction(high, 0)[0]) - 3 == 256 * (
        _target(disassemble_instruction(low, 0)[0]) - 3
    )


def test_closure_lists_captured_variables():
    function = LoxFunction(name="inner", upvalue_count=2)
    chunk = _chunk(
        (OpCode.CLOSURE, 1), (0, 1), (1, 1), (3, 1), (0, 1), (1, 1),
        constants=[function],
    )
    text, next_offset = disassemble_instruction(chunk, 0)
    lines = text.splitlines()
    assert next_offset == len(chunk)
    assert len(lines) == 3
    assert lines[0].endswith("<fn inner>")
    assert lines[1].startswith("0002") and lines[1].endswith("local 3")
    assert lines[2].startswith("0004") and lines[2].endswith("upvalue 1")


def test_unknown_opcode():
    chunk = _chunk((255, 1))
    text, next_offset = disassemble_instruction(chunk, 0)
    assert text.endswith("Unknown opcode 255")
    assert next_offset == 1