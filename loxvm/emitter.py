"""Per-function compilation state: bytecode emission, scopes and variable resolution."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Optional

from loxvm.chunk import UINT8_COUNT, Chunk, OpCode
from loxvm.objects import LoxFunction

_UINT8_MAX = UINT8_COUNT - 1
_UINT16_MAX = 0xFFFF


class FunctionType(Enum):
    """What kind of code a function body is compiled for."""

    FUNCTION = auto()
    INITIALIZER = auto()
    METHOD = auto()
    SCRIPT = auto()


@dataclass
class Local:
    """A local variable slot. ``depth`` is -1 until the variable is initialized."""

    name: str
    depth: int = -1
    is_captured: bool = False


@dataclass(frozen=True)
class UpvalueRef:
    """Where a closure captures a variable from: an enclosing local or upvalue."""

    index: int
    is_local: bool


class ScopeError(Exception):
    """A compile-time error found while emitting code or resolving names.

    The state is left as the compiler would leave it after reporting the
    error; ``result`` holds the value the operation falls back to, so that
    compilation can carry on and find further errors.
    """

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.result = result


class FunctionState:
    """Compilation state of one function body, linked to the enclosing one."""

    def __init__(
        self,
        function_type: FunctionType,
        name: Optional[str] = None,
        enclosing: Optional[FunctionState] = None,
    ) -> None:
        self.function_type = function_type
        self.enclosing = enclosing
        self.function = LoxFunction()
        if function_type is not FunctionType.SCRIPT:
            self.function.name = name
        self.locals: list[Local] = []
        self.upvalues: list[UpvalueRef] = []
        self.scope_depth = 0
        # Slot zero holds the receiver in methods and the callee otherwise.
        slot_zero = "" if function_type is FunctionType.FUNCTION else "this"
        self.locals.append(Local(slot_zero, depth=0))

    @property
    def chunk(self) -> Chunk:
        return self.function.chunk

    # Emission ---------------------------------------------------------------

    def emit(self, line: int, *args: int) -> None:
        """Append each byte in ``args``, attributed to source line ``line``."""
        for byte in args:
            self.chunk.write(int(byte), line)

    def emit_return(self, line: int) -> None:
        """Emit the implicit return: ``this`` from initializers, nil otherwise."""
        if self.function_type is FunctionType.INITIALIZER:
            self.emit(line, OpCode.GET_LOCAL, 0)
        else:
            self.emit(line, OpCode.NIL)
        self.emit(line, OpCode.RETURN)

    def make_constant(self, value: Any) -> int:
        """Add ``value`` to the constant pool and return its one-byte index."""
        index = self.chunk.add_constant(value)
        if index > _UINT8_MAX:
            raise ScopeError("Too many constants in one chunk.", result=0)
        return index

    def emit_jump(self, instruction: int, line: int) -> int:
        """Emit a jump with a placeholder operand; return the operand's offset."""
        self.emit(line, instruction, 0xFF, 0xFF)
        return len(self.chunk) - 2

    def patch_jump(self, offset: int) -> None:
        """Point the jump whose operand is at ``offset`` to the current end."""
        jump = len(self.chunk) - offset - 2
        code = self.chunk.code
        code[offset] = (jump >> 8) & 0xFF
        code[offset + 1] = jump & 0xFF
        if jump > _UINT16_MAX:
            raise ScopeError("Too much code to jump over.")

    def emit_loop(self, loop_start: int, line: int) -> None:
        """Emit a backward jump to ``loop_start``."""
        self.emit(line, OpCode.LOOP)
        offset = len(self.chunk) - loop_start + 2
        self.emit(line, (offset >> 8) & 0xFF, offset & 0xFF)
        if offset > _UINT16_MAX:
            raise ScopeError("Loop body too large.")

    # Scopes -----------------------------------------------------------------

    def begin_scope(self) -> None:
        self.scope_depth += 1

    def end_scope(self, line: int) -> None:
        """Leave a block, discarding or closing the locals declared in it."""
        self.scope_depth -= 1
        while self.locals and self.locals[-1].depth > self.scope_depth:
            local = self.locals.pop()
            self.emit(line, OpCode.CLOSE_UPVALUE if local.is_captured else OpCode.POP)

    # Variables --------------------------------------------------------------

    def resolve_local(self, name: str) -> Optional[int]:
        """Return the slot of the innermost local called ``name``, or None."""
        for slot in range(len(self.locals) - 1, -1, -1):
            local = self.locals[slot]
            if local.name == name:
                if local.depth == -1:
                    raise ScopeError(
                        "Can't read local variable in its own initializer.",
                        result=slot,
                    )
                return slot
        return None

    def _add_upvalue(self, index: int, is_local: bool) -> int:
        ref = UpvalueRef(index, is_local)
        for position, existing in enumerate(self.upvalues):
            if existing == ref:
                return position
        if len(self.upvalues) == UINT8_COUNT:
            raise ScopeError("Too many closure variables in function.", result=0)
        self.upvalues.append(ref)
        self.function.upvalue_count = len(self.upvalues)
        return len(self.upvalues) - 1

    def resolve_upvalue(self, name: str) -> Optional[int]:
        """Capture ``name`` from an enclosing function; return the upvalue index."""
        if self.enclosing is None:
            return None

        pending: Optional[ScopeError] = None
        try:
            local = self.enclosing.resolve_local(name)
        except ScopeError as exc:
            pending = exc
            local = exc.result
        if local is not None:
            self.enclosing.locals[local].is_captured = True
            index = self._add_upvalue(local & 0xFF, True)
            if pending is not None:
                raise ScopeError(pending.message, result=index)
            return index

        try:
            upvalue = self.enclosing.resolve_upvalue(name)
        except ScopeError as exc:
            index = self._add_upvalue(exc.result & 0xFF, False)
            raise ScopeError(exc.message, result=index) from None
        if upvalue is not None:
            return self._add_upvalue(upvalue & 0xFF, False)
        return None

    def add_local(self, name: str) -> None:
        """Add an uninitialized local called ``name`` to the current scope."""
        if len(self.locals) == UINT8_COUNT:
            raise ScopeError("Too many local variables in function.")
        self.locals.append(Local(name))

    def declare_variable(self, name: str) -> None:
        """Declare ``name`` as a local of the current scope (no-op at top level)."""
        if self.scope_depth == 0:
            return
        duplicate = False
        for local in reversed(self.locals):
            if local.depth != -1 and local.depth < self.scope_depth:
                break
            if local.name == name:
                duplicate = True
                break
        if not duplicate:
            self.add_local(name)
            return
        try:
            self.add_local(name)
        except ScopeError:
            pass
        raise ScopeError("Already a variable with this name in this scope.")

    def mark_initialized(self) -> None:
        """Mark the most recent local as ready for use."""
        if self.scope_depth == 0:
            return
        self.locals[-1].depth = self.scope_depth