"""Lexical analysis of Lox source text."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator


class TokenType(Enum):
    """Kinds of tokens produced by the scanner."""

    # Single-character tokens.
    LEFT_PAREN = auto()
    RIGHT_PAREN = auto()
    LEFT_BRACE = auto()
    RIGHT_BRACE = auto()
    COMMA = auto()
    DOT = auto()
    MINUS = auto()
    PLUS = auto()
    SEMICOLON = auto()
    SLASH = auto()
    STAR = auto()
    # One or two character tokens.
    BANG = auto()
    BANG_EQUAL = auto()
    EQUAL = auto()
    EQUAL_EQUAL = auto()
    GREATER = auto()
    GREATER_EQUAL = auto()
    LESS = auto()
    LESS_EQUAL = auto()
    # Literals.
    IDENTIFIER = auto()
    STRING = auto()
    NUMBER = auto()
    # Keywords.
    AND = auto()
    CLASS = auto()
    ELSE = auto()
    FALSE = auto()
    FOR = auto()
    FUN = auto()
    IF = auto()
    NIL = auto()
    OR = auto()
    PRINT = auto()
    RETURN = auto()
    SUPER = auto()
    THIS = auto()
    TRUE = auto()
    VAR = auto()
    WHILE = auto()

    ERROR = auto()
    EOF = auto()


@dataclass(frozen=True)
class Token:
    """A scanned token.

    For ``ERROR`` tokens the lexeme holds the error message.
    """

    type: TokenType
    lexeme: str
    line: int


_KEYWORDS = {
    "and": TokenType.AND,
    "class": TokenType.CLASS,
    "else": TokenType.ELSE,
    "false": TokenType.FALSE,
    "for": TokenType.FOR,
    "fun": TokenType.FUN,
    "if": TokenType.IF,
    "nil": TokenType.NIL,
    "or": TokenType.OR,
    "print": TokenType.PRINT,
    "return": TokenType.RETURN,
    "super": TokenType.SUPER,
    "this": TokenType.THIS,
    "true": TokenType.TRUE,
    "var": TokenType.VAR,
    "while": TokenType.WHILE,
}

_SINGLE = {
    "(": TokenType.LEFT_PAREN,
    ")": TokenType.RIGHT_PAREN,
    "{": TokenType.LEFT_BRACE,
    "}": TokenType.RIGHT_BRACE,
    ";": TokenType.SEMICOLON,
    ",": TokenType.COMMA,
    ".": TokenType.DOT,
    "-": TokenType.MINUS,
    "+": TokenType.PLUS,
    "/": TokenType.SLASH,
    "*": TokenType.STAR,
}

# Characters that may be followed by '=' to form a two-character token.
_WITH_EQUAL = {
    "!": (TokenType.BANG_EQUAL, TokenType.BANG),
    "=": (TokenType.EQUAL_EQUAL, TokenType.EQUAL),
    "<": (TokenType.LESS_EQUAL, TokenType.LESS),
    ">": (TokenType.GREATER_EQUAL, TokenType.GREATER),
}


def _is_alpha(c: str) -> bool:
    return ("a" <= c <= "z") or ("A" <= c <= "Z") or c == "_"


def _is_digit(c: str) -> bool:
    return "0" <= c <= "9"


class Scanner:
    """Produces tokens from source text one at a time, on demand."""

    def __init__(self, source: str) -> None:
        self._source = source
        self._start = 0
        self._current = 0
        self._line = 1

    def _at_end(self) -> bool:
        return self._current >= len(self._source)

    def _advance(self) -> str:
        c = self._source[self._current]
        self._current += 1
        return c

    def _peek(self) -> str:
        return "" if self._at_end() else self._source[self._current]

    def _peek_next(self) -> str:
        nxt = self._current + 1
        return self._source[nxt] if nxt < len(self._source) else ""

    def _match(self, expected: str) -> bool:
        if self._peek() != expected or self._at_end():
            return False
        self._current += 1
        return True

    def _make_token(self, token_type: TokenType) -> Token:
        return Token(token_type, self._source[self._start:self._current], self._line)

    def _error_token(self, message: str) -> Token:
        return Token(TokenType.ERROR, message, self._line)

    def _skip_whitespace(self) -> None:
        while True:
            c = self._peek()
            if c in (" ", "\r", "\t"):
                self._advance()
            elif c == "\n":
                self._line += 1
                self._advance()
            elif c == "/" and self._peek_next() == "/":
                while self._peek() != "\n" and not self._at_end():
                    self._advance()
            else:
                return

    def _identifier(self) -> Token:
        while _is_alpha(self._peek()) or _is_digit(self._peek()):
            self._advance()
        text = self._source[self._start:self._current]
        return self._make_token(_KEYWORDS.get(text, TokenType.IDENTIFIER))

    def _number(self) -> Token:
        while _is_digit(self._peek()):
            self._advance()
        if self._peek() == "." and _is_digit(self._peek_next()):
            self._advance()
            while _is_digit(self._peek()):
                self._advance()
        return self._make_token(TokenType.NUMBER)

    def _string(self) -> Token:
        while self._peek() != '"' and not self._at_end():
            if self._peek() == "\n":
                self._line += 1
            self._advance()
        if self._at_end():
            return self._error_token("Unterminated string.")
        self._advance()  # The closing quote.
        return self._make_token(TokenType.STRING)

    def scan_token(self) -> Token:
        """Return the next token; ``EOF`` is returned repeatedly at the end."""
        self._skip_whitespace()
        self._start = self._current
        if self._at_end():
            return self._make_token(TokenType.EOF)

        c = self._advance()
        if _is_alpha(c):
            return self._identifier()
        if _is_digit(c):
            return self._number()
        if c in _SINGLE:
            return self._make_token(_SINGLE[c])
        if c in _WITH_EQUAL:
            two, one = _WITH_EQUAL[c]
            return self._make_token(two if self._match("=") else one)
        if c == '"':
            return self._string()
        return self._error_token("Unexpected character.")


def tokenize(source: str) -> Iterator[Token]:
    """Yield every token of ``source``, ending with the ``EOF`` token."""
    scanner = Scanner(source)
    while True:
        token = scanner.scan_token()
        yield token
        if token.type is TokenType.EOF:
            return