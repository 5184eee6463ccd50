"""
Parse Tree Node Definitions

The LR parser builds a concrete parse tree: terminals wrap tokens, internal
nodes record the production they were reduced by. The semantic analyzer
annotates nodes in place (``type`` and ``well_typed``); the optimizer
rewrites internal nodes in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Tuple, Union

from wlp4c.grammar import Production
from wlp4c.lexer import Token


class Type(Enum):
    """The two WLP4 value types"""
    INT = "int"
    INT_STAR = "int*"

    def __str__(self) -> str:
        return self.value


@dataclass
class Terminal:
    """Leaf wrapping one token"""
    token: Token
    type: Optional[Type] = None
    well_typed: bool = False

    @property
    def kind(self) -> str:
        return self.token.kind

    @property
    def lexeme(self) -> str:
        return self.token.lexeme

    @property
    def symbol(self) -> str:
        return self.token.kind


@dataclass
class Internal:
    """Node created by a reduction"""
    rule: Production
    children: List["Node"] = field(default_factory=list)
    type: Optional[Type] = None
    well_typed: bool = False

    @property
    def lhs(self) -> str:
        return self.rule.lhs

    @property
    def rhs(self) -> Tuple[str, ...]:
        return self.rule.rhs

    @property
    def symbol(self) -> str:
        return self.rule.lhs

    def replace(self, other: "Internal") -> None:
        """Overwrite this node with ``other``'s rule, children and annotations."""
        self.rule = other.rule
        self.children = other.children
        self.type = other.type
        self.well_typed = other.well_typed


Node = Union[Terminal, Internal]


def walk(root: Node) -> Iterator[Node]:
    """Preorder traversal without recursion."""
    stack: List[Node] = [root]
    while stack:
        node = stack.pop()
        yield node
        if isinstance(node, Internal):
            stack.extend(reversed(node.children))


def leaves(root: Node) -> List[Token]:
    return [node.token for node in walk(root) if isinstance(node, Terminal)]


def find_all(root: Node, *rules: Production) -> List[Internal]:
    return [n for n in walk(root) if isinstance(n, Internal) and n.rule in rules]


def unwrap(node: Node) -> Node:
    """Follow single-child chains (expr -> term -> factor, factor -> (expr), ...).

    Stops at the first node that is not a plain wrapper.
    """
    while isinstance(node, Internal):
        if len(node.children) == 1 and isinstance(node.children[0], Internal):
            node = node.children[0]
        elif node.rule in (Production.FACTOR_PAREN, Production.LVALUE_PAREN):
            node = node.children[1]
        else:
            break
    return node


def literal_of(node: Node) -> Optional[Terminal]:
    """Return the NUM or NULL terminal ``node`` reduces to, if it is a bare literal."""
    inner = unwrap(node)
    if isinstance(inner, Internal) and inner.rule in (Production.FACTOR_NUM, Production.FACTOR_NULL):
        return inner.children[0]
    return None


def variable_of(node: Node) -> Optional[str]:
    """Return the variable name ``node`` reduces to (factor/lvalue -> ID), if any."""
    inner = unwrap(node)
    if isinstance(inner, Internal) and inner.rule in (Production.FACTOR_ID, Production.LVALUE_ID):
        return inner.children[0].lexeme
    return None


def format_tree(root: Node) -> str:
    """Preorder dump, one node per line, in the classic ``.wlp4ti`` shape.

    Internal nodes print their production, terminals print ``KIND lexeme``;
    typed nodes get a `` : type`` suffix.
    """
    lines: List[str] = []
    for node in walk(root):
        if isinstance(node, Terminal):
            text = f"{node.kind} {node.lexeme}"
        else:
            text = str(node.rule)
        if node.type is not None:
            text += f" : {node.type}"
        lines.append(text)
    return "\n".join(lines) + "\n"


def procedures(root: Internal) -> List[Internal]:
    """Procedure and main nodes of a ``start`` tree, in source order."""
    result: List[Internal] = []
    node = root.children[1]
    while True:
        if node.rule is Production.PROCEDURES_MORE:
            result.append(node.children[0])
            node = node.children[1]
        else:
            result.append(node.children[0])
            return result


def procedure_name(proc: Internal) -> str:
    """``wain`` for main, otherwise the declared ID."""
    return proc.children[1].lexeme


def procedure_parts(proc: Internal) -> Tuple[Internal, Internal, Node]:
    """(dcls, statements, return expr) of a procedure or main node."""
    if proc.rule is Production.MAIN:
        # INT WAIN LPAREN dcl COMMA dcl RPAREN LBRACE dcls statements RETURN expr SEMI RBRACE
        return proc.children[8], proc.children[9], proc.children[11]
    # INT ID LPAREN params RPAREN LBRACE dcls statements RETURN expr SEMI RBRACE
    return proc.children[6], proc.children[7], proc.children[9]


def dcls_chain(dcls: Internal) -> List[Internal]:
    """Flatten a left-recursive ``dcls`` chain into source-ordered DCLS_NUM/NULL nodes."""
    result: List[Internal] = []
    node = dcls
    while node.rule is not Production.DCLS_EMPTY:
        result.append(node)
        node = node.children[0]
    result.reverse()
    return result


def statements_chain(stmts: Internal) -> List[Internal]:
    """Flatten a left-recursive ``statements`` chain into source-ordered statements."""
    result: List[Internal] = []
    node = stmts
    while node.rule is not Production.STATEMENTS_EMPTY:
        result.append(node.children[1])
        node = node.children[0]
    result.reverse()
    return result


def paramlist_chain(params: Internal) -> List[Internal]:
    """``dcl`` nodes of a ``params`` node, in order."""
    result: List[Internal] = []
    if params.rule is Production.PARAMS_EMPTY:
        return result
    node = params.children[0]
    while True:
        result.append(node.children[0])
        if node.rule is Production.PARAMLIST_ONE:
            return result
        node = node.children[2]


def arglist_chain(arglist: Internal) -> List[Internal]:
    result: List[Internal] = []
    node = arglist
    while True:
        result.append(node.children[0])
        if node.rule is Production.ARGLIST_ONE:
            return result
        node = node.children[2]
