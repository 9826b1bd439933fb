"""Heap objects of the Lox runtime.

Strings are plain Python ``str`` values and hash tables are plain ``dict``
objects keyed by name, so only the callable and class-related objects have
their own types here. Every object renders itself through ``__str__`` in the
form that ``print`` shows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from loxvm.chunk import Chunk


@dataclass(eq=False)
class LoxFunction:
    """A compiled function: its bytecode, arity and captured-variable count."""

    name: Optional[str] = None
    arity: int = 0
    upvalue_count: int = 0
    chunk: Chunk = field(default_factory=Chunk)

    def __str__(self) -> str:
        if self.name is None:
            return "<script>"
        return f"<fn {self.name}>"


@dataclass(eq=False)
class NativeFunction:
    """A function implemented in Python, called with the list of arguments."""

    function: Callable[[list[Any]], Any]
    name: str = ""

    def __call__(self, args: list[Any]) -> Any:
        return self.function(args)

    def __str__(self) -> str:
        return "<native fn>"


class Upvalue:
    """A variable captured by a closure.

    While open it refers to a slot of the VM's value stack; once closed it
    holds the value itself.
    """

    __slots__ = ("slot", "_stack", "_closed")

    def __init__(self, stack: list[Any], slot: int) -> None:
        self.slot = slot
        self._stack: Optional[list[Any]] = stack
        self._closed: Any = None

    @property
    def is_open(self) -> bool:
        return self._stack is not None

    @property
    def value(self) -> Any:
        if self._stack is not None:
            return self._stack[self.slot]
        return self._closed

    @value.setter
    def value(self, new_value: Any) -> None:
        if self._stack is not None:
            self._stack[self.slot] = new_value
        else:
            self._closed = new_value

    def close(self) -> None:
        """Copy the stack slot's value into the upvalue and detach it."""
        if self._stack is None:
            return
        self._closed = self._stack[self.slot]
        self._stack = None

    def __str__(self) -> str:
        return "upvalue"

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"Upvalue(slot={self.slot}, {state})"


@dataclass(eq=False)
class LoxClosure:
    """A function together with the variables it captured."""

    function: LoxFunction
    upvalues: list[Optional[Upvalue]] = field(init=False)

    def __post_init__(self) -> None:
        self.upvalues = [None] * self.function.upvalue_count

    @property
    def upvalue_count(self) -> int:
        return len(self.upvalues)

    def __str__(self) -> str:
        return str(self.function)


@dataclass(eq=False)
class LoxClass:
    """A class: its name and its methods by name."""

    name: str
    methods: dict[str, LoxClosure] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.name


@dataclass(eq=False)
class LoxInstance:
    """An instance of a class, with its own fields by name."""

    klass: LoxClass
    fields: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.klass.name} instance"


@dataclass(eq=False)
class BoundMethod:
    """A method closure bound to the receiver it was read from."""

    receiver: Any
    method: LoxClosure

    def __str__(self) -> str:
        return str(self.method.function)