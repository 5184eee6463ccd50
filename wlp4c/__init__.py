"""
wlp4c - WLP4 to MIPS compiler

A table-driven LR parser, a type checker and an optimizing code generator
for the WLP4 teaching language, following the classic three-stage compiler
architecture.
"""

__version__ = "0.1.0"
__author__ = "wlp4c Contributors"
__license__ = "MIT"

from .errors import CompileError, ErrorKind
from .lexer import Lexer, Token
from .grammar import GrammarTable, Production
from .parser import Parser
from .semantics import SemanticAnalyzer
from .optimizer import Optimizer
from .codegen import CodeGenerator
from .compiler import Compiler

__all__ = [
    'CompileError',
    'ErrorKind',
    'Lexer',
    'Token',
    'GrammarTable',
    'Production',
    'Parser',
    'SemanticAnalyzer',
    'Optimizer',
    'CodeGenerator',
    'Compiler',
]
