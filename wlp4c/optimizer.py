"""
Optimizer Module

Tree-level optimizations run between semantic analysis and code generation:

- constant folding of ``* / % + -`` on two integer literals, with 32-bit
  two's complement wraparound and truncating division
- constant propagation of literal-valued locals at nesting depth 0

Both passes rewrite nodes in place and are repeated until neither changes
anything.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Set

from wlp4c.grammar import Production
from wlp4c.lexer import Token, TokenKind
from wlp4c.parse_tree import (
    Internal,
    Node,
    Terminal,
    Type,
    dcls_chain,
    literal_of,
    procedure_name,
    procedure_parts,
    procedures,
    statements_chain,
    variable_of,
    walk,
)


P = Production

FOLDABLE = (P.TERM_STAR, P.TERM_SLASH, P.TERM_PCT, P.EXPR_PLUS, P.EXPR_MINUS)


def wrap32(value: int) -> int:
    """Reduce ``value`` to a signed 32-bit integer."""
    return ((value + 2 ** 31) % 2 ** 32) - 2 ** 31


def evaluate(rule: Production, left: int, right: int) -> int:
    """Compute ``left <op> right`` the way the target machine does."""
    if rule is P.EXPR_PLUS:
        return wrap32(left + right)
    if rule is P.EXPR_MINUS:
        return wrap32(left - right)
    if rule is P.TERM_STAR:
        return wrap32(left * right)
    # Truncate toward zero; the remainder takes the sign of the dividend.
    quotient = abs(left) // abs(right)
    if (left < 0) != (right < 0):
        quotient = -quotient
    if rule is P.TERM_SLASH:
        return wrap32(quotient)
    return wrap32(left - right * quotient)


def literal_node(lhs: str, literal: Terminal) -> Internal:
    """Build the unit chain ``lhs -> ... -> factor -> NUM|NULL`` around ``literal``."""
    if literal.kind == TokenKind.NUM.value:
        node = Internal(P.FACTOR_NUM, [literal], Type.INT, True)
    else:
        node = Internal(P.FACTOR_NULL, [literal], Type.INT_STAR, True)
    if lhs in ("term", "expr"):
        node = Internal(P.TERM_FACTOR, [node], node.type, True)
    if lhs == "expr":
        node = Internal(P.EXPR_TERM, [node], node.type, True)
    return node


def _copy_literal(literal: Terminal, at: Optional[Token] = None) -> Terminal:
    where = at if at is not None else literal.token
    token = Token(literal.kind, literal.lexeme, where.line, where.column)
    return Terminal(token, literal.type, True)


class Optimizer:
    """Constant folding and propagation over a type-checked parse tree"""

    def __init__(self, dereferenced: Optional[Dict[str, Set[str]]] = None):
        self.dereferenced = dereferenced or {}
        self.warnings: List[str] = []
        self.passes = 0
        self._skip: Set[str] = set()
        self._known: Dict[str, Terminal] = {}
        self._dirty: Set[str] = set()

    def optimize(self, tree: Internal) -> Internal:
        """Run both passes to a fixpoint; returns ``tree`` (rewritten in place)."""
        self.passes = 0
        while True:
            self.passes += 1
            changed = self.fold(tree)
            changed = self.propagate(tree) or changed
            if not changed:
                return tree

    def _warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)

    # -----------------
    # Folding
    # -----------------

    def fold(self, tree: Node) -> bool:
        changed = False
        # Reversed preorder visits every child before its parent.
        for node in reversed(list(walk(tree))):
            if not isinstance(node, Internal):
                continue
            if node.rule in FOLDABLE:
                changed = self._fold_binary(node) or changed
            elif node.rule is P.FACTOR_PAREN:
                literal = literal_of(node)
                if literal is not None:
                    node.replace(literal_node("factor", literal))
                    changed = True
        return changed

    def _fold_binary(self, node: Internal) -> bool:
        left = literal_of(node.children[0])
        right = literal_of(node.children[2])
        if left is None or right is None:
            return False
        if left.kind != TokenKind.NUM.value or right.kind != TokenKind.NUM.value:
            return False
        lhs_value = int(left.lexeme)
        rhs_value = int(right.lexeme)
        if rhs_value == 0 and node.rule in (P.TERM_SLASH, P.TERM_PCT):
            op = node.children[1]
            self._warn(f"{op.token.line}:{op.token.column}: division by zero in '{lhs_value} {op.lexeme} 0'")
            return False

        value = evaluate(node.rule, lhs_value, rhs_value)
        token = Token(TokenKind.NUM.value, str(value), left.token.line, left.token.column)
        node.replace(literal_node(node.lhs, Terminal(token, Type.INT, True)))
        return True

    # -----------------
    # Propagation
    # -----------------

    def propagate(self, tree: Internal) -> bool:
        changed = False
        for proc in procedures(tree):
            changed = self._propagate_procedure(proc) or changed
        return changed

    def _propagate_procedure(self, proc: Internal) -> bool:
        name = procedure_name(proc)
        self._skip = self.dereferenced.get(name, set())
        self._known = {}
        self._dirty = set()

        dcls, stmts, result = procedure_parts(proc)

        for entry in dcls_chain(dcls):
            var = entry.children[1].children[1].lexeme
            if var not in self._skip:
                self._known[var] = entry.children[3]

        changed = False
        for stmt in statements_chain(stmts):
            changed = self._statement(stmt, 0) or changed
        return self._substitute(result, 0) or changed

    def _statement(self, stmt: Internal, depth: int) -> bool:
        rule = stmt.rule
        if rule is P.STATEMENT_ASSIGN:
            changed = self._substitute(stmt.children[2], depth)
            target = variable_of(stmt.children[0])
            if target is not None and target not in self._skip:
                literal = literal_of(stmt.children[2])
                if depth > 0 or literal is None:
                    self._dirty.add(target)
                    self._known.pop(target, None)
                elif target not in self._dirty:
                    self._known[target] = literal
            return changed
        if rule is P.STATEMENT_IF:
            changed = self._substitute(stmt.children[2], depth + 1)
            for inner in statements_chain(stmt.children[5]) + statements_chain(stmt.children[9]):
                changed = self._statement(inner, depth + 1) or changed
            return changed
        if rule is P.STATEMENT_WHILE:
            changed = self._substitute(stmt.children[2], depth + 1)
            for inner in statements_chain(stmt.children[5]):
                changed = self._statement(inner, depth + 1) or changed
            return changed
        if rule is P.STATEMENT_PRINTLN:
            return self._substitute(stmt.children[2], depth)
        if rule is P.STATEMENT_DELETE:
            return self._substitute(stmt.children[3], depth)
        return False

    def _substitute(self, expr: Node, depth: int) -> bool:
        """Replace reads of clean, known variables in ``expr`` by their literal."""
        if depth > 0:
            return False
        changed = False
        for node in list(walk(expr)):
            if not (isinstance(node, Internal) and node.rule is P.FACTOR_ID):
                continue
            var = node.children[0].lexeme
            literal = self._known.get(var)
            if literal is None or var in self._dirty:
                continue
            node.replace(literal_node("factor", _copy_literal(literal, node.children[0].token)))
            changed = True
        return changed
