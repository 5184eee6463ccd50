"""wlp4c.codegen

MIPS code generator (CS241 dialect) for type-checked WLP4 parse trees.

Register conventions:
- $0 zero, $3 result, $4 holds 4, $11 holds 1 (also the value of NULL)
- $1/$2 wain arguments and runtime-call argument
- $5, $6, $7 scratch
- $29 frame pointer, $30 stack pointer, $31 return address
- $8, $9, $13 ... $28 hold local variables, first come first served

Stack discipline: a push stores below $30 and moves $30 down one word. Frame
slots are addressed from $29: locals at 0, -4, -8, ... in declaration order,
procedure arguments (pushed by the caller) at positive offsets.

Variables whose address is taken always live in the frame. Procedures save
every pool register they bind and restore it before returning, so register
locals survive calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from wlp4c.errors import CompileError, ErrorKind
from wlp4c.grammar import Production
from wlp4c.parse_tree import (
    Internal,
    Node,
    Terminal,
    Type,
    arglist_chain,
    dcls_chain,
    find_all,
    paramlist_chain,
    procedure_name,
    procedure_parts,
    procedures,
    statements_chain,
    unwrap,
    variable_of,
)


P = Production

WORD = 4

# Popped from the end: $8 is handed out first.
REGISTER_POOL = ["$%d" % r for r in range(28, 12, -1)] + ["$9", "$8"]

RUNTIME_IMPORTS = ("print", "init", "new", "delete")


class CodegenError(CompileError):
    """Code generation error"""
    kind = ErrorKind.INTERNAL


@dataclass
class FrameSlot:
    type: Type
    offset: int


@dataclass
class Allocation:
    """Where every variable of one procedure lives"""
    frame: Dict[str, FrameSlot] = field(default_factory=dict)
    registers: Dict[str, str] = field(default_factory=dict)
    # wain parameters copied from $1/$2 into the frame, as (register, name)
    spilled: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def saved(self) -> List[str]:
        return [reg for reg in self.registers.values() if reg in REGISTER_POOL]


def find_dereferenced_variables(tree: Internal) -> Dict[str, Set[str]]:
    """Map each procedure name to the variables whose address it takes."""
    result: Dict[str, Set[str]] = {}
    for proc in procedures(tree):
        names: Set[str] = set()
        for amp in find_all(proc, P.FACTOR_AMP):
            target = unwrap(amp.children[1])
            if isinstance(target, Internal) and target.rule is P.LVALUE_ID:
                names.add(target.children[0].lexeme)
        result[procedure_name(proc)] = names
    return result


class CodeGenerator:
    """Generates MIPS assembly from a type-checked parse tree"""

    def __init__(self, comments: bool = True):
        self.comments = comments
        self.assembly_lines: List[str] = []
        self.allocations: Dict[str, Allocation] = {}
        self._labels = 0

        # per-procedure
        self._alloc = Allocation()
        self._dereferenced: Set[str] = set()

    def generate(self, tree: Internal, dereferenced: Optional[Dict[str, Set[str]]] = None) -> str:
        """Generate assembly for a whole program"""
        self.assembly_lines = []
        self.allocations = {}
        self._labels = 0
        if dereferenced is None:
            dereferenced = find_dereferenced_variables(tree)

        procs = procedures(tree)
        main = procs[-1]
        self._begin(main, dereferenced.get("wain", set()))
        self._prologue(main)
        self._procedure_body(main)
        if len(procs) > 1:
            self._emit("beq $0, $0, epilogue")
        for proc in procs[:-1]:
            self._begin(proc, dereferenced.get(procedure_name(proc), set()))
            self._procedure(proc)
        self._epilogue()
        return "\n".join(self.assembly_lines) + "\n"

    # -----------------
    # Emission helpers
    # -----------------

    def _emit(self, line: str) -> None:
        self.assembly_lines.append(line)

    def _comment(self, text: str) -> None:
        if self.comments:
            self._emit(f"; {text}")

    def _push(self, reg: str) -> None:
        self._emit(f"sw {reg}, -4($30)")
        self._emit("sub $30, $30, $4")

    def _pop(self, reg: str) -> None:
        self._emit("add $30, $30, $4")
        self._emit(f"lw {reg}, -4($30)")

    def _load_word(self, reg: str, value: object) -> None:
        self._emit(f"lis {reg}")
        self._emit(f".word {value}")

    def _next_label(self) -> int:
        n = self._labels
        self._labels += 1
        return n

    def _call_runtime(self, routine: str) -> None:
        """Call print/new/delete with $3 as the argument; $1 is preserved."""
        self._push("$1")
        self._emit("add $1, $3, $0")
        self._push("$31")
        self._load_word("$5", routine)
        self._emit("jalr $5")
        self._pop("$31")

    # -----------------
    # Allocation
    # -----------------

    def _begin(self, proc: Internal, dereferenced: Set[str]) -> None:
        name = procedure_name(proc)
        self._dereferenced = dereferenced
        self._alloc = self._allocate(proc)
        self.allocations[name] = self._alloc

    def _allocate(self, proc: Internal) -> Allocation:
        alloc = Allocation()
        pool = list(REGISTER_POOL)
        next_offset = 0

        if proc.rule is P.MAIN:
            for reg, dcl in (("$1", proc.children[3]), ("$2", proc.children[5])):
                ident = dcl.children[1]
                if ident.lexeme in self._dereferenced:
                    alloc.frame[ident.lexeme] = FrameSlot(ident.type, next_offset)
                    alloc.spilled.append((reg, ident.lexeme))
                    next_offset -= WORD
                else:
                    alloc.registers[ident.lexeme] = reg
        else:
            params = paramlist_chain(proc.children[3])
            for i, dcl in enumerate(params, start=1):
                ident = dcl.children[1]
                alloc.frame[ident.lexeme] = FrameSlot(ident.type, WORD * (len(params) - i + 1))

        for entry in dcls_chain(procedure_parts(proc)[0]):
            ident = entry.children[1].children[1]
            if pool and ident.lexeme not in self._dereferenced:
                alloc.registers[ident.lexeme] = pool.pop()
            else:
                alloc.frame[ident.lexeme] = FrameSlot(ident.type, next_offset)
                next_offset -= WORD
        return alloc

    def _declarations(self, dcls: Internal) -> None:
        """Push frame locals in declaration order; their slots follow from that."""
        entries = dcls_chain(dcls)
        for entry in entries:
            name = entry.children[1].children[1].lexeme
            if name in self._alloc.frame:
                self._comment(f"{name} -> frame {self._alloc.frame[name].offset}")
                self._literal(entry.children[3], "$3")
                self._push("$3")

    def _load_register_locals(self, dcls: Internal) -> None:
        for entry in dcls_chain(dcls):
            name = entry.children[1].children[1].lexeme
            reg = self._alloc.registers.get(name)
            if reg is not None:
                self._comment(f"{name} -> {reg}")
                self._literal(entry.children[3], reg)

    def _literal(self, literal: Terminal, reg: str) -> None:
        if literal.kind == "NULL":
            self._emit(f"add {reg}, $0, $11")
        else:
            self._load_word(reg, literal.lexeme)

    # -----------------
    # Program structure
    # -----------------

    def _prologue(self, main: Internal) -> None:
        for routine in RUNTIME_IMPORTS:
            self._emit(f".import {routine}")
        self._load_word("$4", WORD)
        self._load_word("$11", 1)
        self._emit("sub $29, $30, $4")
        for reg, name in self._alloc.spilled:
            self._comment(f"{name} -> frame {self._alloc.frame[name].offset}")
            self._push(reg)
        for name, reg in self._alloc.registers.items():
            if reg in ("$1", "$2"):
                self._comment(f"{name} -> {reg}")

        self._comment("heap")
        self._push("$31")
        self._push("$2")
        # init takes an array in $1/$2; for two integers the length must be 0.
        if main.children[3].type is Type.INT:
            self._emit("add $2, $0, $0")
        self._load_word("$5", "init")
        self._emit("jalr $5")
        self._pop("$2")
        self._pop("$31")
        self._emit("wain:")

    def _epilogue(self) -> None:
        self._emit("epilogue:")
        main = self.allocations["wain"]
        for reg, name in main.spilled:
            self._emit(f"lw {reg}, {main.frame[name].offset}($29)")
        self._emit("add $30, $29, $4")
        self._emit("jr $31")

    def _procedure_body(self, proc: Internal) -> None:
        dcls, stmts, result = procedure_parts(proc)
        self._declarations(dcls)
        if proc.rule is not P.MAIN:
            for reg in self._alloc.saved:
                self._push(reg)
        self._load_register_locals(dcls)
        for stmt in statements_chain(stmts):
            self._statement(stmt)
        self._comment("return")
        self._code(result)

    def _procedure(self, proc: Internal) -> None:
        name = procedure_name(proc)
        self._emit(f"F{name}:")
        self._emit("sub $29, $30, $4")
        for pname, slot in self._alloc.frame.items():
            if slot.offset > 0:
                self._comment(f"{pname} -> frame {slot.offset}")
        self._procedure_body(proc)
        for reg in reversed(self._alloc.saved):
            self._pop(reg)
        self._emit("add $30, $29, $4")
        self._emit("jr $31")

    # -----------------
    # Statements
    # -----------------

    def _statement(self, stmt: Internal) -> None:
        rule = stmt.rule
        if rule is P.STATEMENT_ASSIGN:
            self._assign(stmt.children[0], stmt.children[2])
        elif rule is P.STATEMENT_IF:
            n = self._next_label()
            self._test(stmt.children[2])
            self._emit(f"beq $3, $0, else{n}")
            for inner in statements_chain(stmt.children[5]):
                self._statement(inner)
            self._emit(f"beq $0, $0, endif{n}")
            self._emit(f"else{n}:")
            for inner in statements_chain(stmt.children[9]):
                self._statement(inner)
            self._emit(f"endif{n}:")
        elif rule is P.STATEMENT_WHILE:
            n = self._next_label()
            self._emit(f"loop{n}:")
            self._test(stmt.children[2])
            self._emit(f"beq $3, $0, endWhile{n}")
            for inner in statements_chain(stmt.children[5]):
                self._statement(inner)
            self._emit(f"beq $0, $0, loop{n}")
            self._emit(f"endWhile{n}:")
        elif rule is P.STATEMENT_PRINTLN:
            self._code(stmt.children[2])
            self._call_runtime("print")
            self._pop("$1")
        elif rule is P.STATEMENT_DELETE:
            n = self._next_label()
            self._code(stmt.children[3])
            self._emit(f"beq $3, $11, skipDelete{n}")
            self._call_runtime("delete")
            self._pop("$1")
            self._emit(f"skipDelete{n}:")
        else:
            raise CodegenError(f"Unexpected statement '{rule}'")

    def _assign(self, lvalue: Node, expr: Node) -> None:
        target = unwrap(lvalue)
        if target.rule is P.LVALUE_ID:
            name = target.children[0].lexeme
            self._code(expr)
            reg = self._alloc.registers.get(name)
            if reg is not None:
                self._emit(f"add {reg}, $3, $0")
            else:
                self._emit(f"sw $3, {self._slot(name).offset}($29)")
        else:
            value, address = self._operands(expr, target.children[1])
            self._emit(f"sw {value}, 0({address})")

    def _test(self, test: Internal) -> None:
        left, right = self._operands(test.children[0], test.children[2])
        slt = "sltu" if test.children[0].type is Type.INT_STAR else "slt"
        rule = test.rule
        if rule is P.TEST_LT:
            self._emit(f"{slt} $3, {left}, {right}")
        elif rule is P.TEST_GT:
            self._emit(f"{slt} $3, {right}, {left}")
        elif rule is P.TEST_LE:
            self._emit(f"{slt} $3, {right}, {left}")
            self._emit("sub $3, $11, $3")
        elif rule is P.TEST_GE:
            self._emit(f"{slt} $3, {left}, {right}")
            self._emit("sub $3, $11, $3")
        else:
            self._emit(f"{slt} $6, {left}, {right}")
            self._emit(f"{slt} $7, {right}, {left}")
            self._emit("add $3, $6, $7")
            if rule is P.TEST_EQ:
                self._emit("sub $3, $11, $3")

    # -----------------
    # Expressions
    # -----------------

    def _slot(self, name: str) -> FrameSlot:
        slot = self._alloc.frame.get(name)
        if slot is None:
            raise CodegenError(f"Variable '{name}' has no storage")
        return slot

    def _register_of(self, node: Node) -> Optional[str]:
        name = variable_of(node)
        if name is None:
            return None
        return self._alloc.registers.get(name)

    def _operands(self, left: Node, right: Node) -> Tuple[str, str]:
        """Evaluate both operands; return the registers holding them.

        Register-bound variables are used in place.
        """
        left_reg = self._register_of(left)
        right_reg = self._register_of(right)
        if left_reg is None and right_reg is None:
            self._code(left)
            self._push("$3")
            self._code(right)
            self._pop("$5")
            return "$5", "$3"
        if left_reg is None:
            self._code(left)
            return "$3", right_reg
        if right_reg is None:
            self._code(right)
            return left_reg, "$3"
        return left_reg, right_reg

    def _code(self, node: Node) -> None:
        """Evaluate an expression-like node into $3"""
        rule = node.rule
        if rule in (P.EXPR_TERM, P.TERM_FACTOR):
            self._code(node.children[0])
        elif rule is P.FACTOR_PAREN:
            self._code(node.children[1])
        elif rule is P.FACTOR_NUM:
            self._load_word("$3", node.children[0].lexeme)
        elif rule is P.FACTOR_NULL:
            self._emit("add $3, $0, $11")
        elif rule is P.FACTOR_ID:
            name = node.children[0].lexeme
            reg = self._alloc.registers.get(name)
            if reg is not None:
                self._emit(f"add $3, {reg}, $0")
            else:
                self._emit(f"lw $3, {self._slot(name).offset}($29)")
        elif rule in (P.EXPR_PLUS, P.EXPR_MINUS):
            self._additive(node)
        elif rule in (P.TERM_STAR, P.TERM_SLASH, P.TERM_PCT):
            left, right = self._operands(node.children[0], node.children[2])
            if rule is P.TERM_STAR:
                self._emit(f"mult {left}, {right}")
                self._emit("mflo $3")
            else:
                self._emit(f"div {left}, {right}")
                self._emit("mflo $3" if rule is P.TERM_SLASH else "mfhi $3")
        elif rule is P.FACTOR_AMP:
            self._address_of(node.children[1])
        elif rule is P.FACTOR_STAR:
            self._code(node.children[1])
            self._emit("lw $3, 0($3)")
        elif rule is P.FACTOR_NEW:
            self._code(node.children[3])
            self._call_runtime("new")
            # new returns 0 on failure; NULL is 1.
            self._emit("bne $3, $0, 1")
            self._emit("add $3, $11, $0")
            self._pop("$1")
        elif rule in (P.FACTOR_CALL, P.FACTOR_CALL_ARGS):
            self._call(node)
        else:
            raise CodegenError(f"Cannot generate code for '{rule}'")

    def _additive(self, node: Internal) -> None:
        left_node, right_node = node.children[0], node.children[2]
        left, right = self._operands(left_node, right_node)
        left_t, right_t = left_node.type, right_node.type
        op = "add" if node.rule is P.EXPR_PLUS else "sub"

        if left_t is Type.INT and right_t is Type.INT:
            self._emit(f"{op} $3, {left}, {right}")
        elif left_t is Type.INT_STAR and right_t is Type.INT:
            self._emit(f"mult {right}, $4")
            self._emit("mflo $6")
            self._emit(f"{op} $3, {left}, $6")
        elif left_t is Type.INT and right_t is Type.INT_STAR:
            self._emit(f"mult {left}, $4")
            self._emit("mflo $6")
            self._emit(f"add $3, $6, {right}")
        else:
            self._emit(f"sub $3, {left}, {right}")
            self._emit("div $3, $4")
            self._emit("mflo $3")

    def _address_of(self, lvalue: Node) -> None:
        target = unwrap(lvalue)
        if target.rule is P.LVALUE_STAR:
            self._code(target.children[1])
            return
        name = target.children[0].lexeme
        if name in self._alloc.registers:
            raise CodegenError(f"Address of register variable '{name}' requested")
        self._load_word("$3", self._slot(name).offset)
        self._emit("add $3, $3, $29")

    def _call(self, node: Internal) -> None:
        name = node.children[0].lexeme
        args = arglist_chain(node.children[2]) if node.rule is P.FACTOR_CALL_ARGS else []
        self._push("$29")
        self._push("$31")
        for arg in args:
            self._code(arg)
            self._push("$3")
        self._load_word("$5", f"F{name}")
        self._emit("jalr $5")
        for _ in args:
            self._emit("add $30, $30, $4")
        self._pop("$31")
        self._pop("$29")
