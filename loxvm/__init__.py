"""A bytecode compiler, disassembler and virtual machine for the Lox language."""

__version__ = "0.1.0"