# loxvm

A bytecode compiler and stack-based virtual machine for Lox, a small
dynamically typed scripting language with closures, classes and single
inheritance.

Source text is scanned into tokens, compiled in a single pass into bytecode
chunks, and then run on a virtual machine with a value stack and call frames.
The package has no dependencies beyond the Python standard library.

## Installation

```
pip install .
```

## Running programs

Run a script file:

```
loxvm path/to/script.lox
```

Start an interactive prompt by giving no arguments:

```
loxvm
```

Each line typed at the `> ` prompt is compiled and run on its own; globals
stay defined from one line to the next. End the session with end-of-file
(Ctrl-D). Giving more than one argument prints `Usage: loxvm [path]`.

The exit status follows the usual conventions:

| Status | Meaning                                      |
|--------|----------------------------------------------|
| 0      | success                                      |
| 64     | wrong command-line usage                     |
| 65     | the script did not compile                   |
| 70     | a runtime error occurred                     |
| 74     | the script file could not be opened or read  |

Script files are read as UTF-8.

## The language

```lox
class Greeter {
  init(name) { this.name = name; }
  greet() { print "Hello, " + this.name + "!"; }
}

class Shouter < Greeter {
  greet() {
    super.greet();
    print "HELLO!";
  }
}

fun counter() {
  var count = 0;
  fun next() {
    count = count + 1;
    return count;
  }
  return next;
}

Shouter("world").greet();
var c = counter();
print c();   // 1
print c();   // 2
print clock() >= 0;   // true
```

Supported features: numbers, strings, `true`, `false`, `nil`; arithmetic and
comparison operators; `and` / `or`; `var`, `if`/`else`, `while`, `for`;
functions with closures; classes with `init`, fields, methods, `this`, and
inheritance with `super`. The only built-in function is `clock()`, which
returns processor time in seconds.

`print` shows numbers the way C's `%g` format does (for example `3`, `0.5`,
`1e+06`), strings without quotes, functions as `<fn name>`, the top-level
script as `<script>`, built-ins as `<native fn>`, classes by name and
instances as `Name instance`.

Compile errors are reported on standard error as
`[line N] Error at 'token': message` (or `Error at end` at the end of input),
and every error in the source is listed. Runtime errors print the message
followed by one `[line N] in name()` line per active call frame, innermost
first, ending with `[line N] in script`.

Limits: at most 256 constants per function, 256 local variables and 256
captured variables per function, 255 parameters or arguments per call, and
a call depth of 64 frames (deeper calls fail with `Stack overflow.`).

## Using it from Python

```python
import io
from loxvm.vm import VM, InterpretResult

out = io.StringIO()
vm = VM(stdout=out)
result = vm.interpret('print 1 + 2;')
assert result is InterpretResult.OK
assert out.getvalue() == "3\n"
```

`VM(stdout, stderr, trace)` takes the streams for program output and error
messages (the process's own streams when left out). With `trace=True` it
writes the disassembly of every compiled function before running, and the
value stack and current instruction before each instruction executes.
`VM.interpret(source)` returns `InterpretResult.OK`,
`InterpretResult.COMPILE_ERROR` or `InterpretResult.RUNTIME_ERROR`; its
`globals` dictionary holds the global variables.

Lower-level pieces are available too:

- `loxvm.scanner.tokenize(source)` yields the `Token`s of a source string,
  ending with an `EOF` token; `loxvm.scanner.Scanner` gives them one at a
  time through `scan_token()`.
- `loxvm.compiler.compile(source)` returns the compiled top-level
  `LoxFunction`, or raises `CompileError`, whose `errors` attribute lists
  every error message.
- `loxvm.chunk.Chunk` and `loxvm.chunk.OpCode` describe compiled bytecode.
- `loxvm.debug.disassemble_chunk(chunk, name)` returns a readable listing of
  a chunk as a string; `disassemble_instruction(chunk, offset)` returns the
  text of one instruction and the offset of the next.
- `loxvm.cli.main(argv)` runs the command line and returns the exit status.

## What it does not do

Memory is left to Python's own garbage collection; there are no tuning
options or collection logs. There is no standard library beyond `clock()`:
no input, file access or string functions.