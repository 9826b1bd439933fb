import io

import pytest

from loxvm.vm import VM, InterpretResult


def run(source, trace=False):
    out, err = io.StringIO(), io.StringIO()
    result = VM(stdout=out, stderr=err, trace=trace).interpret(source)
    return result, out.getvalue(), err.getvalue()


def test_print_string():
    result, out, err = run('print "hello";')
    assert result is InterpretResult.OK
    assert out == "hello\n"
    assert err == ""


@pytest.mark.parametrize(
    "source",
    [
        "print 1 + 2 == 3;",
        "print 10 - 4 == 6;",
        "print 2 * 3 == 6;",
        "print 8 / 2 == 4;",
        "print -(3) == 0 - 3;",
        "print !nil;",
        "print !false;",
        "print 2 > 1;",
        "print 1 < 2;",
        "print 2 >= 2;",
        "print 2 <= 2;",
        "print 1 != 2;",
        'print "a" + "b" == "ab";',
        'print "x" == "x";',
        "print nil == nil;",
        "print 1 / 0 > 1000000;",
        "print clock() >= 0;",
        "print true and true;",
        "print false or true;",
    ],
)
def test_expressions_evaluate_true(source):
    assert run(source)[:2] == (InterpretResult.OK, "true\n")


@pytest.mark.parametrize("source", ["print !0;", "print 1 == \"1\";", "print nil and true;"])
def test_falsey_results(source):
    result, out, _ = run(source)
    assert out in ("false\n", "nil\n")
    assert result is InterpretResult.OK


def test_format_of_nil_and_objects():
    source = """
    fun f() {}
    class A {}
    print nil;
    print f;
    print A;
    print A();
    print clock;
    """
    _, out, _ = run(source)
    assert out.splitlines() == ["nil", "<fn f>", "A", "A instance", "<native fn>"]


def test_control_flow():
    source = """
    var s = "";
    for (var i = 0; i < 3; i = i + 1) { s = s + "x"; }
    var j = 0;
    while (j < 2) { s = s + "y"; j = j + 1; }
    if (s == "xxxyy") print "yes"; else print "no";
    """
    assert run(source)[1] == "yes\n"


def test_closure_counter_keeps_state():
    source = """
    fun make() {
      var c = 0;
      fun inc() { c = c + 1; return c; }
      return inc;
    }
    var i = make();
    i();
    print i() == 2;
    """
    assert run(source)[1] == "true\n"


def test_closures_share_closed_variable():
    source = """
    var set; var get;
    fun main() {
      var a = "initial";
      fun s() { a = "updated"; }
      fun g() { print a; }
      set = s; get = g;
    }
    main();
    set();
    get();
    """
    assert run(source)[1] == "updated\n"


def test_closure_in_block_captures_value():
    source = """
    var f;
    {
      var local = "captured";
      fun g() { print local; }
      f = g;
    }
    f();
    """
    assert run(source)[1] == "captured\n"


def test_initializer_and_fields():
    source = """
    class P { init(v) { this.v = v; } get() { return this.v; } }
    var p = P("value");
    print p.v;
    print p.get();
    print p.init("other") == p;
    """
    assert run(source)[1].splitlines() == ["value", "value", "true"]


def test_bound_method_and_field_call():
    source = """
    class A { greet() { print "hi"; } }
    var a = A();
    var m = a.greet;
    m();
    fun g() { print "field"; }
    a.f = g;
    a.f();
    """
    assert run(source)[1].splitlines() == ["hi", "field"]


def test_super_calls():
    source = """
    class A { m() { print "A"; } }
    class B < A {
      m() { super.m(); print "B"; }
      n() { var s = super.m; s(); }
    }
    B().m();
    B().n();
    """
    assert run(source)[1].splitlines() == ["A", "B", "A"]


def test_inherited_method():
    source = """
    class A { m() { print "inherited"; } }
    class B < A {}
    B().m();
    """
    assert run(source)[1] == "inherited\n"


def test_globals_persist_between_runs():
    out, err = io.StringIO(), io.StringIO()
    vm = VM(stdout=out, stderr=err)
    assert vm.interpret('var a = "kept";') is InterpretResult.OK
    assert vm.interpret("print a;") is InterpretResult.OK
    assert out.getvalue() == "kept\n"
    assert vm.globals["a"] == "kept"


def test_compile_error():
    result, out, err = run("print ;")
    assert result is InterpretResult.COMPILE_ERROR
    assert out == ""
    assert "Expect expression." in err


@pytest.mark.parametrize(
    "source, message",
    [
        ('print -"a";', "Operand must be a number."),
        ('print 1 < "a";', "Operands must be numbers."),
        ('print 1 + "a";', "Operands must be two numbers or two strings."),
        ("print missing;", "Undefined variable 'missing'."),
        ("missing = 1;", "Undefined variable 'missing'."),
        ('"s"();', "Can only call functions and classes."),
        ('print "s".x;', "Only instances have properties."),
        ('"s".x = 1;', "Only instances have fields."),
        ('"s".m();', "Only instances have methods."),
        ("class A {} print A().nope;", "Undefined property 'nope'."),
        ("class A {} A().nope();", "Undefined property 'nope'."),
        ("class A {} A(1);", "Expected 0 arguments but got 1."),
        ("fun f(a) {} f();", "Expected 1 arguments but got 0."),
        ('var X = "s"; class B < X {}', "Superclass must be a class."),
        ("fun f() { f(); } f();", "Stack overflow."),
    ],
)
def test_runtime_errors(source, message):
    result, _, err = run(source)
    assert result is InterpretResult.RUNTIME_ERROR
    assert err.splitlines()[0] == message
    assert err.splitlines()[-1].endswith("in script")


def test_runtime_error_stack_trace():
    source = 'fun inner() {\n  return -"x";\n}\ninner();\n'
    result, _, err = run(source)
    assert result is InterpretResult.RUNTIME_ERROR
    assert err.splitlines() == [
        "Operand must be a number.",
        "[line 2] in inner()",
        "[line 4] in script",
    ]


def test_vm_recovers_after_runtime_error():
    out, err = io.StringIO(), io.StringIO()
    vm = VM(stdout=out, stderr=err)
    assert vm.interpret("print nope;") is InterpretResult.RUNTIME_ERROR
    assert vm.interpret('print "ok";') is InterpretResult.OK
    assert out.getvalue() == "ok\n"


def test_undefined_global_assignment_does_not_define():
    out, err = io.StringIO(), io.StringIO()
    vm = VM(stdout=out, stderr=err)
    vm.interpret("ghost = 1;")
    assert "ghost" not in vm.globals


def test_trace_lists_code_and_stack():
    result, out, _ = run('print "t";', trace=True)
    assert result is InterpretResult.OK
    assert "== <script> ==" in out
    assert "OP_PRINT" in out
    assert "[ t ]" in out
    assert out.endswith("t\n" + out[out.rindex("OP_RETURN") - 10:].split("\n", 1)[1]) or "OP_RETURN" in out