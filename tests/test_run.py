"""
End-to-end tests: compile WLP4 programs and run them on the MIPS simulator
"""

import pytest

from wlp4c.compiler import Compiler

from mips_sim import STACK_TOP, Machine, MipsError


def _machine(source, optimize=True):
    result = Compiler(optimize=optimize).compile_code(source)
    assert result.success, result.errors
    return Machine(result.assembly)


def _twoints(source, a, b, optimize=True):
    return _machine(source, optimize).run_twoints(a, b)


def _wain(body, params="int a, int b"):
    return f"int wain({params}) {{ {body} }}"


FACT = """
int fact(int n) {
  int r = 1;
  if (n > 1) { r = n * fact(n - 1); } else {}
  return r;
}
int wain(int a, int b) { return fact(a); }
"""

FIB = """
int fib(int n) {
  int r = 0;
  if (n < 2) { r = n; } else { r = fib(n - 1) + fib(n - 2); }
  return r;
}
int wain(int a, int b) { return fib(a); }
"""

PRESERVE = """
int g(int n) {
  int x = 100;
  int y = 200;
  x = x + n;
  return x + y;
}
int wain(int a, int b) {
  int x = 1;
  int y = 2;
  int z = 0;
  z = g(a);
  return x + y + z;
}
"""

ARRAY_SUM = """
int wain(int* a, int n) {
  int i = 0;
  int s = 0;
  while (i < n) {
    s = s + *(a + i);
    i = i + 1;
  }
  return s;
}
"""

HEAP = """
int wain(int a, int b) {
  int* p = NULL;
  int s = 0;
  p = new int[a];
  *p = 7;
  *(p + 1) = b;
  s = *p + *(p + 1);
  delete [] p;
  return s;
}
"""


class TestTwoInts:
    def test_sum(self):
        assert _twoints(_wain("return a + b;"), 3, 4).result == 7

    def test_arithmetic_on_negatives(self):
        assert _twoints(_wain("return a / b;"), -7, 2).result == -3
        assert _twoints(_wain("return a % b;"), -7, 2).result == -1
        assert _twoints(_wain("return a * b - 1;"), -6, 7).result == -43

    def test_long_sum(self):
        expr = " + ".join(["a"] * 100)
        assert _twoints(_wain(f"return {expr};"), 3, 0).result == 300

    def test_procedure_call(self):
        source = "int f(int a, int b) { return a - b; }" + _wain("return f(a, b) * 2;")
        assert _twoints(source, 10, 3).result == 14

    def test_nested_calls(self):
        source = "int add(int x, int y) { return x + y; }" + _wain("return add(add(a, 1), add(b, 2));")
        assert _twoints(source, 1, 2).result == 6

    def test_recursion(self):
        assert _twoints(FACT, 5, 0).result == 120
        assert _twoints(FIB, 12, 0).result == 144

    @pytest.mark.parametrize("optimize", [True, False])
    def test_registers_survive_calls(self, optimize):
        assert _twoints(PRESERVE, 5, 0, optimize).result == 308

    @pytest.mark.parametrize("optimize", [True, False])
    def test_many_locals_in_a_procedure(self, optimize):
        decls = " ".join(f"int v{i} = {i};" for i in range(20))
        source = (
            f"int f(int n) {{ {decls} v19 = v19 + n; return v0 + v17 + v18 + v19; }}"
            + _wain("int k = 3; return f(a) + k;")
        )
        assert _twoints(source, 10, 0, optimize).result == 17 + 18 + 19 + 10 + 3

    def test_println_loop(self):
        run = _twoints(_wain("int i = 0; while (i < a) { println(i); i = i + 1; } return i;"), 3, 0)
        assert run.output == ["0", "1", "2"]
        assert run.result == 3

    def test_println_keeps_argument_registers(self):
        run = _twoints(_wain("println(b); println(a); return a;"), -4, 9)
        assert run.output == ["9", "-4"]
        assert run.result == -4

    def test_division_by_zero_is_a_runtime_failure(self):
        result = Compiler().compile_code(_wain("int x = 0; x = 1 / 0; return x;"))
        assert result.success
        assert len(result.warnings) == 1
        with pytest.raises(MipsError, match="division by zero"):
            Machine(result.assembly).run_twoints(1, 2)

    def test_stack_is_restored(self):
        run = _twoints(FACT, 6, 0)
        assert run.registers[30] == STACK_TOP


class TestComparisons:
    PAIRS = [(1, 2), (2, 1), (2, 2), (-5, 3), (3, -5), (-2147483648, 2147483647)]
    OPS = {
        "<": lambda x, y: x < y,
        ">": lambda x, y: x > y,
        "<=": lambda x, y: x <= y,
        ">=": lambda x, y: x >= y,
        "==": lambda x, y: x == y,
        "!=": lambda x, y: x != y,
    }

    @pytest.mark.parametrize("op", sorted(OPS))
    def test_integer_comparisons(self, op):
        machine = _machine(_wain(f"int r = 0; if (a {op} b) {{ r = 1; }} else {{ r = 2; }} return r;"))
        for x, y in self.PAIRS:
            expected = 1 if self.OPS[op](x, y) else 2
            assert machine.run_twoints(x, y).result == expected, (x, op, y)

    def test_pointer_comparisons(self):
        body = (
            "int* b = NULL; int r = 0; b = a + 1; "
            "if (a < b) { r = r + 1; } else {} "
            "if (b > a) { r = r + 10; } else {} "
            "if (a != b) { r = r + 100; } else {} "
            "if (a == a) { r = r + 1000; } else {} "
            "if (b <= a) { r = r + 10000; } else {} "
            "return r;"
        )
        run = _machine(_wain(body, "int* a, int n")).run_array([1, 2])
        assert run.result == 1111


class TestPointers:
    def test_array_sum(self):
        assert _machine(ARRAY_SUM).run_array([1, 2, 3, 4]).result == 10
        assert _machine(ARRAY_SUM).run_array([]).result == 0

    def test_int_plus_pointer(self):
        assert _machine(_wain("return *(1 + a);", "int* a, int n")).run_array([4, 9]).result == 9

    def test_pointer_difference(self):
        source = _wain("int* end = NULL; end = a + n; return end - a;", "int* a, int n")
        assert _machine(source).run_array([5, 6, 7]).result == 3

    def test_store_through_address_of_local(self):
        assert _twoints(_wain("int x = 0; int* p = NULL; p = &x; *p = 5; return x;"), 1, 2).result == 5

    def test_address_of_procedure_local(self):
        source = "int f(int n) { int x = 0; int* p = NULL; p = &x; *p = n + 1; return x; }" + _wain("return f(a);")
        assert _twoints(source, 41, 0).result == 42

    def test_address_of_procedure_parameter(self):
        source = "int f(int n) { int* p = NULL; p = &n; *p = *p * 2; return n; }" + _wain("return f(a);")
        assert _twoints(source, 21, 0).result == 42

    def test_address_of_wain_parameter(self):
        source = _wain("int* p = NULL; p = &b; *p = *p + a; return b;")
        assert _twoints(source, 3, 4).result == 7

    def test_writes_into_the_input_array(self):
        source = _wain("*(a + 1) = 9; return *(a + 1) + *a;", "int* a, int n")
        assert _machine(source).run_array([1, 2]).result == 10


class TestHeap:
    def test_new_and_delete(self):
        run = _twoints(HEAP, 2, 5)
        assert run.result == 12
        assert run.live_allocations == 0

    def test_delete_null_is_skipped(self):
        for optimize in (True, False):
            run = _twoints(_wain("int* p = NULL; delete [] p; return a;"), 7, 0, optimize)
            assert run.result == 7

    def test_failed_new_yields_null(self):
        source = _wain("int* p = NULL; int r = 0; p = new int[a]; if (p == NULL) { r = 1; } else { r = 2; } return r;")
        assert _twoints(source, 0, 0).result == 1
        assert _twoints(source, 3, 0).result == 2


class TestOptimizerAgreement:
    PROGRAMS = [
        (_wain("int x = 6; int y = 7; return x * y + a - b;"), (1, 2)),
        (_wain("int x = 5; while (a < x) { a = a + 1; } return a * x;"), (2, 0)),
        (_wain("int x = 2; int y = 0; y = x * 10; println(y); return y + x + b;"), (0, 3)),
        (FACT, (6, 0)),
        (PRESERVE, (-1, 0)),
        (HEAP, (2, -3)),
    ]

    @pytest.mark.parametrize("source,args", PROGRAMS)
    def test_same_behaviour(self, source, args):
        plain = _twoints(source, *args, optimize=False)
        optimized = _twoints(source, *args, optimize=True)
        assert optimized.result == plain.result
        assert optimized.output == plain.output
