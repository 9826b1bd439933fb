from loxvm.chunk import Chunk
from loxvm.objects import (
    BoundMethod,
    LoxClass,
    LoxClosure,
    LoxFunction,
    LoxInstance,
    NativeFunction,
    Upvalue,
)
from loxvm.value import format_value, values_equal


def test_script_function_formats_as_script():
    assert str(LoxFunction()) == "<script>"


def test_named_function_formats_with_name():
    assert format_value(LoxFunction(name="add")) == "<fn add>"


def test_new_function_defaults():
    function = LoxFunction()
    assert function.arity == 0
    assert function.upvalue_count == 0
    assert len(function.chunk) == 0


def test_functions_do_not_share_chunks():
    a = LoxFunction(name="a")
    b = LoxFunction(name="b")
    a.chunk.write(1, 1)
    assert len(b.chunk) == 0


def test_native_function_formats_and_calls():
    native = NativeFunction(lambda args: sum(args), name="sum")
    assert str(native) == "<native fn>"
    assert native([1.0, 2.5]) == 3.5


def test_closure_formats_as_its_function():
    closure = LoxClosure(LoxFunction(name="outer"))
    assert str(closure) == str(closure.function)


def test_closure_upvalues_start_empty():
    closure = LoxClosure(LoxFunction(name="f", upvalue_count=3))
    assert closure.upvalues == [None, None, None]
    assert closure.upvalue_count == 3


def test_class_formats_as_name():
    assert str(LoxClass("Point")) == "Point"


def test_instance_formats_with_class_name():
    instance = LoxInstance(LoxClass("Point"))
    assert str(instance) == "Point instance"


def test_instances_have_separate_fields():
    klass = LoxClass("Box")
    first = LoxInstance(klass)
    second = LoxInstance(klass)
    first.fields["x"] = 1.0
    assert "x" not in second.fields
    assert first.klass is second.klass


def test_bound_method_formats_as_method_function():
    klass = LoxClass("Greeter")
    method = LoxClosure(LoxFunction(name="hello"))
    bound = BoundMethod(LoxInstance(klass), method)
    assert str(bound) == str(method.function)


def test_objects_compare_by_identity():
    assert not values_equal(LoxClass("A"), LoxClass("A"))
    klass = LoxClass("A")
    assert values_equal(klass, klass)


def test_open_upvalue_reads_and_writes_stack():
    stack = [1.0, 2.0, 3.0]
    upvalue = Upvalue(stack, 1)
    assert upvalue.is_open
    assert upvalue.value == 2.0
    upvalue.value = 9.0
    assert stack[1] == 9.0
    stack[1] = 7.0
    assert upvalue.value == 7.0


def test_closed_upvalue_keeps_value_and_detaches():
    stack = ["a", "b"]
    upvalue = Upvalue(stack, 0)
    upvalue.close()
    assert not upvalue.is_open
    stack[0] = "changed"
    assert upvalue.value == "a"
    upvalue.value = "z"
    assert stack[0] == "changed"
    assert upvalue.value == "z"


def test_closing_twice_keeps_value():
    stack = [5.0]
    upvalue = Upvalue(stack, 0)
    upvalue.close()
    upvalue.value = 6.0
    upvalue.close()
    assert upvalue.value == 6.0


def test_upvalue_formats_as_upvalue():
    assert format_value(Upvalue([None], 0)) == "upvalue"


def test_function_chunk_can_be_given():
    chunk = Chunk()
    chunk.write(0, 4)
    function = LoxFunction(name="g", chunk=chunk)
    assert function.chunk is chunk