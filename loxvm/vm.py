"""The bytecode virtual machine that runs compiled Lox programs."""

from __future__ import annotations

import math
import sys
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Iterator, Optional, TextIO

from loxvm.chunk import OpCode
from loxvm.compiler import CompileError, compile
from loxvm.debug import disassemble_chunk, disassemble_instruction
from loxvm.objects import (
    BoundMethod,
    LoxClass,
    LoxClosure,
    LoxFunction,
    LoxInstance,
    NativeFunction,
    Upvalue,
)
from loxvm.value import format_value, is_falsey, values_equal

__all__ = ["InterpretResult", "VM", "FRAMES_MAX"]

FRAMES_MAX = 64
_INIT = "init"


class InterpretResult(Enum):
    """Outcome of running a piece of source."""

    OK = auto()
    COMPILE_ERROR = auto()
    RUNTIME_ERROR = auto()


class _LoxRuntimeError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


@dataclass
class _CallFrame:
    closure: LoxClosure
    slots: int
    ip: int = 0

    @property
    def function(self) -> LoxFunction:
        return self.closure.function

    def read_byte(self) -> int:
        byte = self.closure.function.chunk.code[self.ip]
        self.ip += 1
        return byte

    def read_short(self) -> int:
        code = self.closure.function.chunk.code
        value = (code[self.ip] << 8) | code[self.ip + 1]
        self.ip += 2
        return value

    def read_constant(self) -> Any:
        return self.closure.function.chunk.constants[self.read_byte()]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _divide(a: float, b: float) -> float:
    try:
        return a / b
    except ZeroDivisionError:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(1.0, a) * math.copysign(1.0, b) * math.inf


def _clock_native(args: list[Any]) -> float:
    return time.process_time()


def _compiled_functions(function: LoxFunction) -> Iterator[LoxFunction]:
    for constant in function.chunk.constants:
        if isinstance(constant, LoxFunction):
            yield from _compiled_functions(constant)
    yield function


class VM:
    """A Lox virtual machine; globals persist between calls to ``interpret``."""

    def __init__(
        self,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
        trace: bool = False,
    ) -> None:
        self._stdout = stdout
        self._stderr = stderr
        self._trace = trace
        self._stack: list[Any] = []
        self._frames: list[_CallFrame] = []
        self._open_upvalues: dict[int, Upvalue] = {}
        self.globals: dict[str, Any] = {}
        self._define_native("clock", _clock_native)

    # Output -----------------------------------------------------------------

    def _out(self, text: str) -> None:
        (self._stdout or sys.stdout).write(text)

    def _err(self, text: str) -> None:
        (self._stderr or sys.stderr).write(text)

    # Setup ------------------------------------------------------------------

    def _define_native(self, name: str, function: Any) -> None:
        self.globals[name] = NativeFunction(function, name)

    def _reset_stack(self) -> None:
        self._stack.clear()
        self._frames.clear()
        self._open_upvalues.clear()

    def _report_runtime_error(self, message: str) -> None:
        lines = [message]
        for frame in reversed(self._frames):
            function = frame.function
            line = function.chunk.lines[frame.ip - 1]
            where = "script" if function.name is None else f"{function.name}()"
            lines.append(f"[line {line}] in {where}")
        self._err("\n".join(lines) + "\n")
        self._reset_stack()

    # Stack ------------------------------------------------------------------

    def _push(self, value: Any) -> None:
        self._stack.append(value)

    def _pop(self) -> Any:
        return self._stack.pop()

    def _peek(self, distance: int) -> Any:
        return self._stack[-1 - distance]

    # Calls ------------------------------------------------------------------

    def _call(self, closure: LoxClosure, arg_count: int) -> None:
        if arg_count != closure.function.arity:
            raise _LoxRuntimeError(
                f"Expected {closure.function.arity} arguments but got {arg_count}."
            )
        if len(self._frames) == FRAMES_MAX:
            raise _LoxRuntimeError("Stack overflow.")
        self._frames.append(_CallFrame(closure, len(self._stack) - arg_count - 1))

    def _call_value(self, callee: Any, arg_count: int) -> None:
        stack = self._stack
        if isinstance(callee, BoundMethod):
            stack[-arg_count - 1] = callee.receiver
            self._call(callee.method, arg_count)
        elif isinstance(callee, LoxClass):
            stack[-arg_count - 1] = LoxInstance(callee)
            initializer = callee.methods.get(_INIT)
            if initializer is not None:
                self._call(initializer, arg_count)
            elif arg_count != 0:
                raise _LoxRuntimeError(f"Expected 0 arguments but got {arg_count}.")
        elif isinstance(callee, LoxClosure):
            self._call(callee, arg_count)
        elif isinstance(callee, NativeFunction):
            base = len(stack) - arg_count
            result = callee(stack[base:])
            del stack[base - 1:]
            stack.append(result)
        else:
            raise _LoxRuntimeError("Can only call functions and classes.")

    def _invoke_from_class(self, klass: LoxClass, name: str, arg_count: int) -> None:
        method = klass.methods.get(name)
        if method is None:
            raise _LoxRuntimeError(f"Undefined property '{name}'.")
        self._call(method, arg_count)

    def _invoke(self, name: str, arg_count: int) -> None:
        receiver = self._peek(arg_count)
        if not isinstance(receiver, LoxInstance):
            raise _LoxRuntimeError("Only instances have methods.")
        if name in receiver.fields:
            value = receiver.fields[name]
            self._stack[-arg_count - 1] = value
            self._call_value(value, arg_count)
            return
        self._invoke_from_class(receiver.klass, name, arg_count)

    def _bind_method(self, klass: LoxClass, name: str) -> None:
        method = klass.methods.get(name)
        if method is None:
            raise _LoxRuntimeError(f"Undefined property '{name}'.")
        bound = BoundMethod(self._peek(0), method)
        self._pop()
        self._push(bound)

    # Upvalues ---------------------------------------------------------------

    def _capture_upvalue(self, slot: int) -> Upvalue:
        upvalue = self._open_upvalues.get(slot)
        if upvalue is None:
            upvalue = Upvalue(self._stack, slot)
            self._open_upvalues[slot] = upvalue
        return upvalue

    def _close_upvalues(self, last: int) -> None:
        for slot in [s for s in self._open_upvalues if s >= last]:
            self._open_upvalues.pop(slot).close()

    # Execution --------------------------------------------------------------

    def _numeric_operands(self) -> tuple[float, float]:
        b, a = self._peek(0), self._peek(1)
        if not (_is_number(a) and _is_number(b)):
            raise _LoxRuntimeError("Operands must be numbers.")
        del self._stack[-2:]
        return a, b

    def _trace_instruction(self, frame: _CallFrame) -> None:
        slots = "".join(f"[ {format_value(value)} ]" for value in self._stack)
        text, _ = disassemble_instruction(frame.function.chunk, frame.ip)
        self._out(f"          {slots}\n{text}\n")

    def _run(self) -> InterpretResult:
        frame = self._frames[-1]
        stack = self._stack

        while True:
            if self._trace:
                self._trace_instruction(frame)

            instruction = frame.read_byte()
            match instruction:
                case OpCode.CONSTANT:
                    stack.append(frame.read_constant())
                case OpCode.NIL:
                    stack.append(None)
                case OpCode.TRUE:
                    stack.append(True)
                case OpCode.FALSE:
                    stack.append(False)
                case OpCode.POP:
                    stack.pop()
                case OpCode.GET_LOCAL:
                    stack.append(stack[frame.slots + frame.read_byte()])
                case OpCode.SET_LOCAL:
                    stack[frame.slots + frame.read_byte()] = stack[-1]
                case OpCode.GET_GLOBAL:
                    name = frame.read_constant()
                    if name not in self.globals:
                        raise _LoxRuntimeError(f"Undefined variable '{name}'.")
                    stack.append(self.globals[name])
                case OpCode.DEFINE_GLOBAL:
                    name = frame.read_constant()
                    self.globals[name] = stack.pop()
                case OpCode.SET_GLOBAL:
                    name = frame.read_constant()
                    if name not in self.globals:
                        raise _LoxRuntimeError(f"Undefined variable '{name}'.")
                    self.globals[name] = stack[-1]
                case OpCode.GET_UPVALUE:
                    stack.append(frame.closure.upvalues[frame.read_byte()].value)
                case OpCode.SET_UPVALUE:
                    frame.closure.upvalues[frame.read_byte()].value = stack[-1]
                case OpCode.GET_PROPERTY:
                    instance = stack[-1]
                    if not isinstance(instance, LoxInstance):
                        raise _LoxRuntimeError("Only instances have properties.")
                    name = frame.read_constant()
                    if name in instance.fields:
                        stack[-1] = instance.fields[name]
                    else:
                        self._bind_method(instance.klass, name)
                case OpCode.SET_PROPERTY:
                    instance = stack[-2]
                    if not isinstance(instance, LoxInstance):
                        raise _LoxRuntimeError("Only instances have fields.")
                    instance.fields[frame.read_constant()] = stack[-1]
                    value = stack.pop()
                    stack[-1] = value
                case OpCode.GET_SUPER:
                    name = frame.read_constant()
                    superclass = stack.pop()
                    self._bind_method(superclass, name)
                case OpCode.EQUAL:
                    b = stack.pop()
                    a = stack.pop()
                    stack.append(values_equal(a, b))
                case OpCode.GREATER:
                    a, b = self._numeric_operands()
                    stack.append(a > b)
                case OpCode.LESS:
                    a, b = self._numeric_operands()
                    stack.append(a < b)
                case OpCode.ADD:
                    b, a = stack[-1], stack[-2]
                    if isinstance(a, str) and isinstance(b, str):
                        del stack[-2:]
                        stack.append(a + b)
                    elif _is_number(a) and _is_number(b):
                        del stack[-2:]
                        stack.append(a + b)
                    else:
                        raise _LoxRuntimeError(
                            "Operands must be two numbers or two strings."
                        )
                case OpCode.SUBTRACT:
                    a, b = self._numeric_operands()
                    stack.append(a - b)
                case OpCode.MULTIPLY:
                    a, b = self._numeric_operands()
                    stack.append(a * b)
                case OpCode.DIVIDE:
                    a, b = self._numeric_operands()
                    stack.append(_divide(a, b))
                case OpCode.NOT:
                    stack.append(is_falsey(stack.pop()))
                case OpCode.NEGATE:
                    if not _is_number(stack[-1]):
                        raise _LoxRuntimeError("Operand must be a number.")
                    stack.append(-stack.pop())
                case OpCode.PRINT:
                    self._out(format_value(stack.pop()) + "\n")
                case OpCode.JUMP:
                    offset = frame.read_short()
                    frame.ip += offset
                case OpCode.JUMP_IF_FALSE:
                    offset = frame.read_short()
                    if is_falsey(stack[-1]):
                        frame.ip += offset
                case OpCode.LOOP:
                    offset = frame.read_short()
                    frame.ip -= offset
                case OpCode.CALL:
                    arg_count = frame.read_byte()
                    self._call_value(self._peek(arg_count), arg_count)
                    frame = self._frames[-1]
                case OpCode.INVOKE:
                    method = frame.read_constant()
                    arg_count = frame.read_byte()
                    self._invoke(method, arg_count)
                    frame = self._frames[-1]
                case OpCode.SUPER_INVOKE:
                    method = frame.read_constant()
                    arg_count = frame.read_byte()
                    superclass = stack.pop()
                    self._invoke_from_class(superclass, method, arg_count)
                    frame = self._frames[-1]
                case OpCode.CLOSURE:
                    closure = LoxClosure(frame.read_constant())
                    stack.append(closure)
                    for i in range(closure.upvalue_count):
                        is_local = frame.read_byte()
                        index = frame.read_byte()
                        if is_local:
                            closure.upvalues[i] = self._capture_upvalue(
                                frame.slots + index
                            )
                        else:
                            closure.upvalues[i] = frame.closure.upvalues[index]
                case OpCode.CLOSE_UPVALUE:
                    self._close_upvalues(len(stack) - 1)
                    stack.pop()
                case OpCode.RETURN:
                    result = stack.pop()
                    self._close_upvalues(frame.slots)
                    self._frames.pop()
                    if not self._frames:
                        stack.pop()
                        return InterpretResult.OK
                    del stack[frame.slots:]
                    stack.append(result)
                    frame = self._frames[-1]
                case OpCode.CLASS:
                    stack.append(LoxClass(frame.read_constant()))
                case OpCode.INHERIT:
                    superclass = stack[-2]
                    if not isinstance(superclass, LoxClass):
                        raise _LoxRuntimeError("Superclass must be a class.")
                    subclass = stack[-1]
                    subclass.methods.update(superclass.methods)
                    stack.pop()
                case OpCode.METHOD:
                    name = frame.read_constant()
                    klass = stack[-2]
                    klass.methods[name] = stack.pop()
                case _:
                    raise _LoxRuntimeError(f"Unknown opcode {instruction}.")

    def interpret(self, source: str) -> InterpretResult:
        """Compile and run ``source``; errors are reported on stderr."""
        try:
            function = compile(source)
        except CompileError as exc:
            self._err("".join(f"{line}\n" for line in exc.errors))
            return InterpretResult.COMPILE_ERROR

        if self._trace:
            for compiled in _compiled_functions(function):
                name = compiled.name if compiled.name is not None else "<script>"
                self._out(disassemble_chunk(compiled.chunk, name))

        closure = LoxClosure(function)
        self._push(closure)
        try:
            self._call(closure, 0)
            return self._run()
        except _LoxRuntimeError as exc:
            self._report_runtime_error(exc.message)
            return InterpretResult.RUNTIME_ERROR