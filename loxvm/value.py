"""Runtime values: formatting, equality and truthiness.

Values are plain Python objects: ``None`` is nil, ``bool`` is a boolean,
``float`` is a number, ``str`` is a string, and heap objects format
themselves through ``__str__``.
"""

from __future__ import annotations

from typing import Any


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def format_value(value: Any) -> str:
    """Render a value the way ``print`` shows it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "nil"
    if _is_number(value):
        return "%g" % value
    return str(value)


def values_equal(a: Any, b: Any) -> bool:
    """Lox equality: numbers and strings by value, everything else by identity."""
    if _is_number(a) and _is_number(b):
        return a == b
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    return a is b


def is_falsey(value: Any) -> bool:
    """Only nil and false are falsey."""
    return value is None or value is False