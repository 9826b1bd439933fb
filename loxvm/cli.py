"""Command-line entry point: run a script file or an interactive prompt."""

from __future__ import annotations

import sys
from typing import Optional, Sequence

from loxvm.vm import VM, InterpretResult

EXIT_USAGE = 64
EXIT_COMPILE_ERROR = 65
EXIT_RUNTIME_ERROR = 70
EXIT_IO_ERROR = 74


def _repl(vm: VM) -> None:
    while True:
        sys.stdout.write("> ")
        sys.stdout.flush()
        line = sys.stdin.readline()
        if not line:
            sys.stdout.write("\n")
            return
        vm.interpret(line)


def _read_file(path: str) -> Optional[str]:
    try:
        with open(path, "rb") as handle:
            data = handle.read()
    except OSError:
        sys.stderr.write(f'Could not open file "{path}".\n')
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        sys.stderr.write(f'Could not read file "{path}".\n')
        return None


def _run_file(vm: VM, path: str) -> int:
    source = _read_file(path)
    if source is None:
        return EXIT_IO_ERROR
    result = vm.interpret(source)
    if result is InterpretResult.COMPILE_ERROR:
        return EXIT_COMPILE_ERROR
    if result is InterpretResult.RUNTIME_ERROR:
        return EXIT_RUNTIME_ERROR
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the file named in ``argv``, or a prompt if none; return the exit code."""
    args = list(sys.argv[1:] if argv is None else argv)
    vm = VM()
    if not args:
        _repl(vm)
        return 0
    if len(args) == 1:
        return _run_file(vm, args[0])
    sys.stderr.write("Usage: loxvm [path]\n")
    return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())