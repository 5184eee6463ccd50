"""
Main Compiler Driver

Orchestrates the compilation pipeline:

    source -> Lexer -> Parser -> SemanticAnalyzer -> Optimizer -> CodeGenerator

Every stage fails fast; the driver turns the first stage error into a failed
CompilationResult instead of letting it escape.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from wlp4c.codegen import CodeGenerator, find_dereferenced_variables
from wlp4c.errors import CompileError, ErrorKind
from wlp4c.grammar import GrammarTable, default_table
from wlp4c.lexer import Lexer, LexerError, Token
from wlp4c.optimizer import Optimizer
from wlp4c.parse_tree import Internal
from wlp4c.parser import Parser
from wlp4c.semantics import SemanticAnalyzer, SemanticContext


LOGGER = logging.getLogger("wlp4c.compiler")

TABLE_ENV = "WLP4C_TABLE"


def _too_deep() -> CompileError:
    # The semantic and code generation walks recurse once per nested expression.
    return CompileError("Expression nesting exceeds the Python recursion limit", ErrorKind.INTERNAL)


@dataclass
class CompilationResult:
    """Result of compilation"""
    success: bool
    output_file: Optional[str] = None
    errors: List[str] = None
    warnings: List[str] = None
    assembly: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    tree: Optional[Internal] = None
    context: Optional[SemanticContext] = None

    def __post_init__(self):
        if self.errors is None:
            self.errors = []
        if self.warnings is None:
            self.warnings = []


class Compiler:
    """Main compiler class orchestrating all compilation stages"""

    def __init__(
        self,
        optimize: bool = True,
        *,
        table_path: Optional[str] = None,
        comments: bool = True,
    ):
        self.optimize = optimize
        self.comments = comments
        # An explicit table file wins over the environment; otherwise the
        # table is built from the grammar.
        self.table_path = table_path or os.environ.get(TABLE_ENV) or None
        self._table: Optional[GrammarTable] = None

    @property
    def table(self) -> GrammarTable:
        if self._table is None:
            if self.table_path:
                LOGGER.debug("loading parse table from %s", self.table_path)
                self._table = GrammarTable.load(self.table_path)
            else:
                self._table = default_table()
        return self._table

    def compile_file(self, source_file: str, output_file: Optional[str] = None) -> CompilationResult:
        """Compile a source file; the assembly is written to output_file when given."""
        try:
            with open(source_file, "r") as f:
                source_code = f.read()
        except IOError as e:
            return CompilationResult(
                success=False,
                errors=[f"Failed to read source file: {e}"]
            )
        return self.compile_code(source_code, output_file)

    def compile_code(self, source_code: str, output_file: Optional[str] = None) -> CompilationResult:
        """Compile source code"""
        # Phase 1: Lexical Analysis
        try:
            tokens = self.get_tokens(source_code)
        except LexerError as e:
            return self._failure("Lexical analysis failed", e)
        return self.compile_tokens(tokens, output_file)

    def compile_tokens(self, tokens: List[Token], output_file: Optional[str] = None) -> CompilationResult:
        """Compile an already scanned token stream (BOF ... EOF)"""
        warnings: List[str] = []

        # Phase 2: Syntax Analysis
        try:
            tree = self.get_tree(tokens)
        except (OSError, CompileError) as e:
            return self._failure("Syntax analysis failed", e)

        # Phase 3: Semantic Analysis
        try:
            sema_ctx = self.analyze_semantics(tree)
        except CompileError as e:
            return self._failure("Semantic analysis failed", e, tree=tree)
        except RecursionError:
            return self._failure("Semantic analysis failed", _too_deep(), tree=tree)

        # Phase 4: Optimization
        dereferenced = find_dereferenced_variables(tree)
        LOGGER.debug("address-taken variables: %s", dereferenced)
        if self.optimize:
            warnings.extend(self.optimize_tree(tree, dereferenced))

        # Phase 5: Code Generation
        try:
            assembly = self.get_assembly(tree, dereferenced)
        except CompileError as e:
            return self._failure("Code generation failed", e, tree=tree)
        except RecursionError:
            return self._failure("Code generation failed", _too_deep(), tree=tree)

        if output_file:
            try:
                with open(output_file, "w") as f:
                    f.write(assembly)
            except IOError as e:
                return CompilationResult(success=False, errors=[f"Failed to write output file: {e}"])

        return CompilationResult(
            success=True,
            output_file=output_file,
            warnings=warnings,
            assembly=assembly,
            tree=tree,
            context=sema_ctx,
        )

    def _failure(self, phase: str, error: Exception, tree: Optional[Internal] = None) -> CompilationResult:
        kind = error.kind if isinstance(error, CompileError) else ErrorKind.INTERNAL
        LOGGER.debug("%s (%s): %s", phase, kind.value, error)
        return CompilationResult(
            success=False,
            errors=[f"{phase}: {error}"],
            error_kind=kind,
            tree=tree,
        )

    def get_tokens(self, source_code: str) -> List[Token]:
        """Get tokens from source code"""
        lexer = Lexer(source_code)
        tokens = lexer.tokenize()
        if lexer.has_errors():
            # Report the first problem; the rest are usually fallout from it.
            raise lexer.get_errors()[0]
        LOGGER.debug("scanned %d tokens", len(tokens))
        return tokens

    def get_tree(self, tokens: List[Token]) -> Internal:
        """Get parse tree from tokens"""
        parser = Parser(tokens, self.table)
        tree = parser.parse()
        LOGGER.debug("parsed %d tokens", len(tokens))
        return tree

    def analyze_semantics(self, tree: Internal) -> SemanticContext:
        """Perform semantic analysis"""
        analyzer = SemanticAnalyzer()
        sema_ctx = analyzer.analyze(tree)
        LOGGER.debug("procedures: %s", ", ".join(sema_ctx.signatures))
        return sema_ctx

    def optimize_tree(self, tree: Internal, dereferenced: Dict[str, Set[str]]) -> List[str]:
        """Fold and propagate constants in place; returns warnings"""
        optimizer = Optimizer(dereferenced)
        optimizer.optimize(tree)
        LOGGER.debug("optimizer reached a fixpoint after %d passes", optimizer.passes)
        return optimizer.warnings

    def get_assembly(self, tree: Internal, dereferenced: Optional[Dict[str, Set[str]]] = None) -> str:
        """Generate assembly from the parse tree"""
        generator = CodeGenerator(comments=self.comments)
        asm = generator.generate(tree, dereferenced)
        LOGGER.debug("emitted %d lines", len(generator.assembly_lines))
        return asm
