"""Single-pass compiler from Lox source text to bytecode functions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Iterable, Optional

from loxvm.chunk import OpCode
from loxvm.emitter import FunctionState, FunctionType, ScopeError
from loxvm.objects import LoxFunction
from loxvm.scanner import Scanner, Token, TokenType

__all__ = ["CompileError", "compile"]


class CompileError(Exception):
    """Raised when the source has one or more compile errors.

    ``errors`` holds every reported error, one line of text each.
    """

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors = list(errors)
        super().__init__("\n".join(self.errors))


class _Precedence(IntEnum):
    NONE = 0
    ASSIGNMENT = 1  # =
    OR = 2  # or
    AND = 3  # and
    EQUALITY = 4  # == !=
    COMPARISON = 5  # < > <= >=
    TERM = 6  # + -
    FACTOR = 7  # * /
    UNARY = 8  # ! -
    CALL = 9  # . ()
    PRIMARY = 10


_ParseFn = Callable[["_Compiler", bool], None]


@dataclass(frozen=True)
class _Rule:
    prefix: Optional[_ParseFn]
    infix: Optional[_ParseFn]
    precedence: _Precedence


@dataclass
class _ClassState:
    enclosing: Optional[_ClassState]
    has_superclass: bool = False


_SYNC_TOKENS = frozenset(
    {
        TokenType.CLASS,
        TokenType.FUN,
        TokenType.VAR,
        TokenType.FOR,
        TokenType.IF,
        TokenType.WHILE,
        TokenType.PRINT,
        TokenType.RETURN,
    }
)

_BINARY_OPS = {
    TokenType.BANG_EQUAL: (OpCode.EQUAL, OpCode.NOT),
    TokenType.EQUAL_EQUAL: (OpCode.EQUAL,),
    TokenType.GREATER: (OpCode.GREATER,),
    TokenType.GREATER_EQUAL: (OpCode.LESS, OpCode.NOT),
    TokenType.LESS: (OpCode.LESS,),
    TokenType.LESS_EQUAL: (OpCode.GREATER, OpCode.NOT),
    TokenType.PLUS: (OpCode.ADD,),
    TokenType.MINUS: (OpCode.SUBTRACT,),
    TokenType.STAR: (OpCode.MULTIPLY,),
    TokenType.SLASH: (OpCode.DIVIDE,),
}

_LITERAL_OPS = {
    TokenType.FALSE: OpCode.FALSE,
    TokenType.NIL: OpCode.NIL,
    TokenType.TRUE: OpCode.TRUE,
}


class _Compiler:
    """Parser and code generator working over one source text."""

    def __init__(self, source: str) -> None:
        self._scanner = Scanner(source)
        self._current = Token(TokenType.EOF, "", 1)
        self._previous = self._current
        self._errors: list[str] = []
        self._panic = False
        self._state: Optional[FunctionState] = None
        self._class: Optional[_ClassState] = None

    # Error reporting --------------------------------------------------------

    def _error_at(self, token: Token, message: str) -> None:
        if self._panic:
            return
        self._panic = True
        text = f"[line {token.line}] Error"
        if token.type is TokenType.EOF:
            text += " at end"
        elif token.type is not TokenType.ERROR:
            text += f" at '{token.lexeme}'"
        self._errors.append(f"{text}: {message}")

    def _error(self, message: str) -> None:
        self._error_at(self._previous, message)

    def _error_at_current(self, message: str) -> None:
        self._error_at(self._current, message)

    def _attempt(self, operation: Callable[..., Any], *args: Any) -> Any:
        try:
            return operation(*args)
        except ScopeError as exc:
            self._error(exc.message)
            return exc.result

    # Token handling ---------------------------------------------------------

    def _advance(self) -> None:
        self._previous = self._current
        while True:
            self._current = self._scanner.scan_token()
            if self._current.type is not TokenType.ERROR:
                break
            self._error_at_current(self._current.lexeme)

    def _consume(self, token_type: TokenType, message: str) -> None:
        if self._current.type is token_type:
            self._advance()
            return
        self._error_at_current(message)

    def _check(self, token_type: TokenType) -> bool:
        return self._current.type is token_type

    def _match(self, token_type: TokenType) -> bool:
        if not self._check(token_type):
            return False
        self._advance()
        return True

    # Emission helpers -------------------------------------------------------

    @property
    def _line(self) -> int:
        return self._previous.line

    def _emit(self, *code: int) -> None:
        self._state.emit(self._line, *code)

    def _make_constant(self, value: Any) -> int:
        return self._attempt(self._state.make_constant, value)

    def _emit_constant(self, value: Any) -> None:
        self._emit(OpCode.CONSTANT, self._make_constant(value))

    def _emit_jump(self, instruction: OpCode) -> int:
        return self._state.emit_jump(instruction, self._line)

    def _patch_jump(self, offset: int) -> None:
        self._attempt(self._state.patch_jump, offset)

    def _emit_loop(self, loop_start: int) -> None:
        self._attempt(self._state.emit_loop, loop_start, self._line)

    def _begin_function(self, function_type: FunctionType) -> FunctionState:
        self._state = FunctionState(function_type, self._previous.lexeme, self._state)
        return self._state

    def _end_function(self) -> LoxFunction:
        state = self._state
        state.emit_return(self._line)
        self._state = state.enclosing
        return state.function

    # Variables --------------------------------------------------------------

    def _identifier_constant(self, name: str) -> int:
        return self._make_constant(name)

    def _add_local(self, name: str) -> None:
        self._attempt(self._state.add_local, name)

    def _declare_variable(self) -> None:
        self._attempt(self._state.declare_variable, self._previous.lexeme)

    def _parse_variable(self, message: str) -> int:
        self._consume(TokenType.IDENTIFIER, message)
        self._declare_variable()
        if self._state.scope_depth > 0:
            return 0
        return self._identifier_constant(self._previous.lexeme)

    def _mark_initialized(self) -> None:
        self._state.mark_initialized()

    def _define_variable(self, global_index: int) -> None:
        if self._state.scope_depth > 0:
            self._mark_initialized()
            return
        self._emit(OpCode.DEFINE_GLOBAL, global_index)

    def _named_variable(self, name: str, can_assign: bool) -> None:
        arg = self._attempt(self._state.resolve_local, name)
        if arg is not None:
            get_op, set_op = OpCode.GET_LOCAL, OpCode.SET_LOCAL
        else:
            arg = self._attempt(self._state.resolve_upvalue, name)
            if arg is not None:
                get_op, set_op = OpCode.GET_UPVALUE, OpCode.SET_UPVALUE
            else:
                arg = self._identifier_constant(name)
                get_op, set_op = OpCode.GET_GLOBAL, OpCode.SET_GLOBAL

        if can_assign and self._match(TokenType.EQUAL):
            self._expression()
            self._emit(set_op, arg & 0xFF)
        else:
            self._emit(get_op, arg & 0xFF)

    def _argument_list(self) -> int:
        count = 0
        if not self._check(TokenType.RIGHT_PAREN):
            while True:
                self._expression()
                if count == 255:
                    self._error("Can't have more than 255 arguments.")
                count += 1
                if not self._match(TokenType.COMMA):
                    break
        self._consume(TokenType.RIGHT_PAREN, "Expect ')' after arguments.")
        return count & 0xFF

    # Parse functions --------------------------------------------------------

    def _and(self, can_assign: bool) -> None:
        end_jump = self._emit_jump(OpCode.JUMP_IF_FALSE)
        self._emit(OpCode.POP)
        self._parse_precedence(_Precedence.AND)
        self._patch_jump(end_jump)

    def _or(self, can_assign: bool) -> None:
        else_jump = self._emit_jump(OpCode.JUMP_IF_FALSE)
        end_jump = self._emit_jump(OpCode.JUMP)
        self._patch_jump(else_jump)
        self._emit(OpCode.POP)
        self._parse_precedence(_Precedence.OR)
        self._patch_jump(end_jump)

    def _binary(self, can_assign: bool) -> None:
        operator = self._previous.type
        rule = _rule(operator)
        self._parse_precedence(_Precedence(rule.precedence + 1))
        self._emit(*_BINARY_OPS[operator])

    def _call(self, can_assign: bool) -> None:
        arg_count = self._argument_list()
        self._emit(OpCode.CALL, arg_count)

    def _dot(self, can_assign: bool) -> None:
        self._consume(TokenType.IDENTIFIER, "Expect property name after '.'.")
        name = self._identifier_constant(self._previous.lexeme)
        if can_assign and self._match(TokenType.EQUAL):
            self._expression()
            self._emit(OpCode.SET_PROPERTY, name)
        elif self._match(TokenType.LEFT_PAREN):
            arg_count = self._argument_list()
            self._emit(OpCode.INVOKE, name, arg_count)
        else:
            self._emit(OpCode.GET_PROPERTY, name)

    def _literal(self, can_assign: bool) -> None:
        self._emit(_LITERAL_OPS[self._previous.type])

    def _grouping(self, can_assign: bool) -> None:
        self._expression()
        self._consume(TokenType.RIGHT_PAREN, "Expect ')' after expression.")

    def _number(self, can_assign: bool) -> None:
        self._emit_constant(float(self._previous.lexeme))

    def _string(self, can_assign: bool) -> None:
        self._emit_constant(self._previous.lexeme[1:-1])

    def _variable(self, can_assign: bool) -> None:
        self._named_variable(self._previous.lexeme, can_assign)

    def _super(self, can_assign: bool) -> None:
        if self._class is None:
            self._error("Can't use 'super' outside of a class.")
        elif not self._class.has_superclass:
            self._error("Can't use 'super' in a class with no superclass.")

        self._consume(TokenType.DOT, "Expect '.' after 'super'.")
        self._consume(TokenType.IDENTIFIER, "Expect superclass method name.")
        name = self._identifier_constant(self._previous.lexeme)

        self._named_variable("this", False)
        if self._match(TokenType.LEFT_PAREN):
            arg_count = self._argument_list()
            self._named_variable("super", False)
            self._emit(OpCode.SUPER_INVOKE, name, arg_count)
        else:
            self._named_variable("super", False)
            self._emit(OpCode.GET_SUPER, name)

    def _this(self, can_assign: bool) -> None:
        if self._class is None:
            self._error("Can't use 'this' outside of a class.")
            return
        self._variable(False)

    def _unary(self, can_assign: bool) -> None:
        operator = self._previous.type
        self._parse_precedence(_Precedence.UNARY)
        if operator is TokenType.BANG:
            self._emit(OpCode.NOT)
        elif operator is TokenType.MINUS:
            self._emit(OpCode.NEGATE)

    def _parse_precedence(self, precedence: _Precedence) -> None:
        self._advance()
        prefix = _rule(self._previous.type).prefix
        if prefix is None:
            self._error("Expect expression.")
            return

        can_assign = precedence <= _Precedence.ASSIGNMENT
        prefix(self, can_assign)

        while precedence <= _rule(self._current.type).precedence:
            self._advance()
            infix = _rule(self._previous.type).infix
            infix(self, can_assign)

        if can_assign and self._match(TokenType.EQUAL):
            self._error("Invalid assignment target.")

    def _expression(self) -> None:
        self._parse_precedence(_Precedence.ASSIGNMENT)

    # Declarations -----------------------------------------------------------

    def _block(self) -> None:
        while not self._check(TokenType.RIGHT_BRACE) and not self._check(TokenType.EOF):
            self._declaration()
        self._consume(TokenType.RIGHT_BRACE, "Expect '}' after block.")

    def _function(self, function_type: FunctionType) -> None:
        state = self._begin_function(function_type)
        state.begin_scope()

        self._consume(TokenType.LEFT_PAREN, "Expect '(' after function name.")
        if not self._check(TokenType.RIGHT_PAREN):
            while True:
                state.function.arity += 1
                if state.function.arity > 255:
                    self._error_at_current("Can't have more than 255 parameters.")
                constant = self._parse_variable("Expect parameter name.")
                self._define_variable(constant)
                if not self._match(TokenType.COMMA):
                    break
        self._consume(TokenType.RIGHT_PAREN, "Expect ')' after parameters.")
        self._consume(TokenType.LEFT_BRACE, "Expect '{' before function body.")
        self._block()

        function = self._end_function()
        self._emit(OpCode.CLOSURE, self._make_constant(function))
        for ref in state.upvalues:
            self._emit(1 if ref.is_local else 0, ref.index)

    def _method(self) -> None:
        self._consume(TokenType.IDENTIFIER, "Expect method name.")
        constant = self._identifier_constant(self._previous.lexeme)
        if self._previous.lexeme == "init":
            function_type = FunctionType.INITIALIZER
        else:
            function_type = FunctionType.METHOD
        self._function(function_type)
        self._emit(OpCode.METHOD, constant)

    def _class_declaration(self) -> None:
        self._consume(TokenType.IDENTIFIER, "Expect class name.")
        class_name = self._previous.lexeme
        name_constant = self._identifier_constant(class_name)
        self._declare_variable()

        self._emit(OpCode.CLASS, name_constant)
        self._define_variable(name_constant)

        class_state = _ClassState(enclosing=self._class)
        self._class = class_state

        if self._match(TokenType.LESS):
            self._consume(TokenType.IDENTIFIER, "Expect superclass name.")
            self._variable(False)
            if class_name == self._previous.lexeme:
                self._error("A class can't inherit from itself.")
            self._state.begin_scope()
            self._add_local("super")
            self._define_variable(0)

            self._named_variable(class_name, False)
            self._emit(OpCode.INHERIT)
            class_state.has_superclass = True

        self._named_variable(class_name, False)
        self._consume(TokenType.LEFT_BRACE, "Expect '{' before class body.")
        while not self._check(TokenType.RIGHT_BRACE) and not self._check(TokenType.EOF):
            self._method()
        self._consume(TokenType.RIGHT_BRACE, "Expect '}' after class body.")
        self._emit(OpCode.POP)

        if class_state.has_superclass:
            self._state.end_scope(self._line)

        self._class = class_state.enclosing

    def _fun_declaration(self) -> None:
        global_index = self._parse_variable("Expect function name.")
        self._mark_initialized()
        self._function(FunctionType.FUNCTION)
        self._define_variable(global_index)

    def _var_declaration(self) -> None:
        global_index = self._parse_variable("Expect variable name.")
        if self._match(TokenType.EQUAL):
            self._expression()
        else:
            self._emit(OpCode.NIL)
        self._consume(TokenType.SEMICOLON, "Expect ';' after variable declaration.")
        self._define_variable(global_index)

    # Statements -------------------------------------------------------------

    def _expression_statement(self) -> None:
        self._expression()
        self._consume(TokenType.SEMICOLON, "Expect ';' after expression.")
        self._emit(OpCode.POP)

    def _for_statement(self) -> None:
        self._state.begin_scope()
        self._consume(TokenType.LEFT_PAREN, "Expect '(' after 'for'.")
        if self._match(TokenType.SEMICOLON):
            pass
        elif self._match(TokenType.VAR):
            self._var_declaration()
        else:
            self._expression_statement()

        loop_start = len(self._state.chunk)
        exit_jump: Optional[int] = None
        if not self._match(TokenType.SEMICOLON):
            self._expression()
            self._consume(TokenType.SEMICOLON, "Expect ';' after loop condition.")
            exit_jump = self._emit_jump(OpCode.JUMP_IF_FALSE)
            self._emit(OpCode.POP)

        if not self._match(TokenType.RIGHT_PAREN):
            body_jump = self._emit_jump(OpCode.JUMP)
            increment_start = len(self._state.chunk)
            self._expression()
            self._emit(OpCode.POP)
            self._consume(TokenType.RIGHT_PAREN, "Expect ')' after for clauses.")
            self._emit_loop(loop_start)
            loop_start = increment_start
            self._patch_jump(body_jump)

        self._statement()
        self._emit_loop(loop_start)

        if exit_jump is not None:
            self._patch_jump(exit_jump)
            self._emit(OpCode.POP)

        self._state.end_scope(self._line)

    def _if_statement(self) -> None:
        self._consume(TokenType.LEFT_PAREN, "Expect '(' after 'if'.")
        self._expression()
        self._consume(TokenType.RIGHT_PAREN, "Expect ')' after condition.")

        then_jump = self._emit_jump(OpCode.JUMP_IF_FALSE)
        self._emit(OpCode.POP)
        self._statement()

        else_jump = self._emit_jump(OpCode.JUMP)
        self._patch_jump(then_jump)
        self._emit(OpCode.POP)

        if self._match(TokenType.ELSE):
            self._statement()
        self._patch_jump(else_jump)

    def _print_statement(self) -> None:
        self._expression()
        self._consume(TokenType.SEMICOLON, "Expect ';' after value.")
        self._emit(OpCode.PRINT)

    def _return_statement(self) -> None:
        if self._state.function_type is FunctionType.SCRIPT:
            self._error("Can't return from top-level code.")

        if self._match(TokenType.SEMICOLON):
            self._state.emit_return(self._line)
        else:
            if self._state.function_type is FunctionType.INITIALIZER:
                self._error("Can't return a value from an initializer.")
            self._expression()
            self._consume(TokenType.SEMICOLON, "Expect ';' after return value.")
            self._emit(OpCode.RETURN)

    def _while_statement(self) -> None:
        loop_start = len(self._state.chunk)
        self._consume(TokenType.LEFT_PAREN, "Expect '(' after 'while'.")
        self._expression()
        self._consume(TokenType.RIGHT_PAREN, "Expect ')' after condition.")

        exit_jump = self._emit_jump(OpCode.JUMP_IF_FALSE)
        self._emit(OpCode.POP)
        self._statement()
        self._emit_loop(loop_start)

        self._patch_jump(exit_jump)
        self._emit(OpCode.POP)

    def _synchronize(self) -> None:
        self._panic = False
        while self._current.type is not TokenType.EOF:
            if self._previous.type is TokenType.SEMICOLON:
                return
            if self._current.type in _SYNC_TOKENS:
                return
            self._advance()

    def _declaration(self) -> None:
        if self._match(TokenType.CLASS):
            self._class_declaration()
        elif self._match(TokenType.FUN):
            self._fun_declaration()
        elif self._match(TokenType.VAR):
            self._var_declaration()
        else:
            self._statement()

        if self._panic:
            self._synchronize()

    def _statement(self) -> None:
        if self._match(TokenType.PRINT):
            self._print_statement()
        elif self._match(TokenType.FOR):
            self._for_statement()
        elif self._match(TokenType.IF):
            self._if_statement()
        elif self._match(TokenType.RETURN):
            self._return_statement()
        elif self._match(TokenType.WHILE):
            self._while_statement()
        elif self._match(TokenType.LEFT_BRACE):
            self._state.begin_scope()
            self._block()
            self._state.end_scope(self._line)
        else:
            self._expression_statement()

    # Entry point ------------------------------------------------------------

    def run(self) -> LoxFunction:
        self._state = FunctionState(FunctionType.SCRIPT)
        self._advance()
        while not self._match(TokenType.EOF):
            self._declaration()
        function = self._end_function()
        if self._errors:
            raise CompileError(self._errors)
        return function


_C = _Compiler
_P = _Precedence
_T = TokenType

_RULES = {
    _T.LEFT_PAREN: _Rule(_C._grouping, _C._call, _P.CALL),
    _T.DOT: _Rule(None, _C._dot, _P.CALL),
    _T.MINUS: _Rule(_C._unary, _C._binary, _P.TERM),
    _T.PLUS: _Rule(None, _C._binary, _P.TERM),
    _T.SLASH: _Rule(None, _C._binary, _P.FACTOR),
    _T.STAR: _Rule(None, _C._binary, _P.FACTOR),
    _T.BANG: _Rule(_C._unary, None, _P.NONE),
    _T.BANG_EQUAL: _Rule(None, _C._binary, _P.EQUALITY),
    _T.EQUAL_EQUAL: _Rule(None, _C._binary, _P.EQUALITY),
    _T.GREATER: _Rule(None, _C._binary, _P.COMPARISON),
    _T.GREATER_EQUAL: _Rule(None, _C._binary, _P.COMPARISON),
    _T.LESS: _Rule(None, _C._binary, _P.COMPARISON),
    _T.LESS_EQUAL: _Rule(None, _C._binary, _P.COMPARISON),
    _T.IDENTIFIER: _Rule(_C._variable, None, _P.NONE),
    _T.STRING: _Rule(_C._string, None, _P.NONE),
    _T.NUMBER: _Rule(_C._number, None, _P.NONE),
    _T.AND: _Rule(None, _C._and, _P.AND),
    _T.FALSE: _Rule(_C._literal, None, _P.NONE),
    _T.NIL: _Rule(_C._literal, None, _P.NONE),
    _T.OR: _Rule(None, _C._or, _P.OR),
    _T.SUPER: _Rule(_C._super, None, _P.NONE),
    _T.THIS: _Rule(_C._this, None, _P.NONE),
    _T.TRUE: _Rule(_C._literal, None, _P.NONE),
}

_NO_RULE = _Rule(None, None, _P.NONE)


def _rule(token_type: TokenType) -> _Rule:
    return _RULES.get(token_type, _NO_RULE)


def compile(source: str) -> LoxFunction:
    """Compile ``source`` into the top-level script function.

    Raises CompileError listing every error found.
    """
    return _Compiler(source).run()