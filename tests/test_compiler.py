"""
Tests for the compiler driver and its stage-by-stage error reporting
"""

import pytest

from wlp4c import Compiler, ErrorKind
from wlp4c.parse_tree import Type


GOOD = "int wain(int a, int b) { int x = 3; return a + x; }"


class TestCompilationResult:
    def test_success(self):
        result = Compiler().compile_code(GOOD)
        assert result.success
        assert result.errors == []
        assert result.warnings == []
        assert result.error_kind is None
        assert result.assembly.startswith(".import print\n")
        assert result.context.signatures["wain"].locals["x"] is Type.INT

    @pytest.mark.parametrize("source,kind,phase", [
        ("int wain(int a, int b) { return a @ b; }", ErrorKind.LEXICAL, "Lexical"),
        ("int wain(int a, int b) { return 007; }", ErrorKind.LEXICAL, "Lexical"),
        ("int wain(int a, int b) { return a; ", ErrorKind.SYNTAX, "Syntax"),
        ("int wain(int a, int b) { int a = 1; return a; }", ErrorKind.DECLARATION, "Semantic"),
        ("int wain(int a, int b) { return c; }", ErrorKind.SCOPE, "Semantic"),
        ("int wain(int* a, int b) { return a; }", ErrorKind.TYPE, "Semantic"),
    ])
    def test_failure_kinds(self, source, kind, phase):
        result = Compiler().compile_code(source)
        assert not result.success
        assert result.error_kind is kind
        assert len(result.errors) == 1
        assert result.errors[0].startswith(f"{phase} analysis failed: ")
        assert result.assembly is None

    def test_semantic_failure_keeps_tree(self):
        result = Compiler().compile_code("int wain(int a, int b) { return c; }")
        assert result.tree is not None

    def test_warnings_are_collected(self):
        result = Compiler().compile_code("int wain(int a, int b) { return a + 1 % 0; }")
        assert result.success
        assert len(result.warnings) == 1
        assert "1 % 0" in result.warnings[0]

    def test_no_optimization_no_warnings(self):
        result = Compiler(optimize=False).compile_code("int wain(int a, int b) { return a + 1 % 0; }")
        assert result.success
        assert result.warnings == []


class TestFiles:
    def test_compile_file(self, tmp_path):
        src = tmp_path / "prog.wlp4"
        out = tmp_path / "prog.asm"
        src.write_text(GOOD)
        result = Compiler().compile_file(str(src), str(out))
        assert result.success
        assert result.output_file == str(out)
        assert out.read_text() == result.assembly

    def test_missing_file(self, tmp_path):
        result = Compiler().compile_file(str(tmp_path / "missing.wlp4"))
        assert not result.success
        assert "Failed to read source file" in result.errors[0]

    def test_table_from_environment(self, tmp_path, monkeypatch):
        table = tmp_path / "wlp4.lr1"
        table.write_text(Compiler().table.dumps())
        expected = Compiler().compile_code(GOOD).assembly
        monkeypatch.setenv("WLP4C_TABLE", str(table))
        compiler = Compiler()
        assert compiler.table_path == str(table)
        assert compiler.compile_code(GOOD).assembly == expected

    def test_unreadable_table_is_a_failure(self, tmp_path):
        result = Compiler(table_path=str(tmp_path / "missing.lr1")).compile_code(GOOD)
        assert not result.success
        assert result.errors[0].startswith("Syntax analysis failed")


class TestProgramShape:
    def test_wain_return_expression_is_compiled(self):
        result = Compiler().compile_code("int wain(int a, int b) { return a + b; }")
        assert result.success, result.errors
        assert "add $3, $1, $2" in result.assembly

    def test_deeply_nested_expression_is_reported(self):
        expr = " + ".join(["a"] * 5000)
        result = Compiler().compile_code(f"int wain(int a, int b) {{ return {expr}; }}")
        assert not result.success
        assert result.error_kind is ErrorKind.INTERNAL
        assert "nesting" in result.errors[0]
        assert result.assembly is None
