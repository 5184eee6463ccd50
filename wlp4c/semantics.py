"""wlp4c.semantics

Context-sensitive analysis for WLP4.

- one signature per procedure (``wain`` included): parameter types plus a
  symbol table of every parameter and local
- every expression-like node is annotated with ``int`` or ``int*``
- every node whose checks pass is marked ``well_typed``

Analysis stops at the first error. Procedures become visible when their own
analysis begins, so a procedure may call itself and any procedure above it,
but not one declared further down.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from wlp4c.errors import CompileError, ErrorKind
from wlp4c.grammar import Production
from wlp4c.parse_tree import (
    Internal,
    Node,
    Terminal,
    Type,
    arglist_chain,
    paramlist_chain,
    procedure_parts,
)


@dataclass
class ProcedureSignature:
    params: List[Type] = field(default_factory=list)
    locals: Dict[str, Type] = field(default_factory=dict)


@dataclass
class SemanticContext:
    """Result of analysis, handed to the later stages"""
    signatures: Dict[str, ProcedureSignature]


class SemanticError(CompileError):
    """Semantic analysis error"""
    kind = ErrorKind.TYPE

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.TYPE, node: Optional[Node] = None):
        super().__init__(message, kind)
        self.node = node


P = Production


class SemanticAnalyzer:
    """Type checker for WLP4 parse trees"""

    def __init__(self):
        self.signatures: Dict[str, ProcedureSignature] = {}
        self._current: Optional[str] = None
        self._handlers: Dict[Production, Callable[[Internal], Optional[Type]]] = {
            P.START: self._start,
            P.PROCEDURES_MORE: self._procedures,
            P.PROCEDURES_MAIN: self._procedures,
            P.PROCEDURE: self._procedure,
            P.MAIN: self._main,
            P.PARAMS_EMPTY: self._nothing,
            P.PARAMS_LIST: self._children,
            P.PARAMLIST_ONE: self._children,
            P.PARAMLIST_MORE: self._children,
            P.TYPE_INT: lambda node: Type.INT,
            P.TYPE_INT_STAR: lambda node: Type.INT_STAR,
            P.DCLS_EMPTY: self._nothing,
            P.DCLS_NUM: self._dcls,
            P.DCLS_NULL: self._dcls,
            P.DCL: self._dcl,
            P.STATEMENTS_EMPTY: self._nothing,
            P.STATEMENTS_MORE: self._statements,
            P.STATEMENT_ASSIGN: self._assign,
            P.STATEMENT_IF: self._children,
            P.STATEMENT_WHILE: self._children,
            P.STATEMENT_PRINTLN: self._println,
            P.STATEMENT_DELETE: self._delete,
            P.TEST_EQ: self._test,
            P.TEST_NE: self._test,
            P.TEST_LT: self._test,
            P.TEST_LE: self._test,
            P.TEST_GE: self._test,
            P.TEST_GT: self._test,
            P.EXPR_TERM: self._passthrough,
            P.EXPR_PLUS: self._plus,
            P.EXPR_MINUS: self._minus,
            P.TERM_FACTOR: self._passthrough,
            P.TERM_STAR: self._arith,
            P.TERM_SLASH: self._arith,
            P.TERM_PCT: self._arith,
            P.FACTOR_ID: self._variable,
            P.FACTOR_NUM: self._literal,
            P.FACTOR_NULL: self._literal,
            P.FACTOR_PAREN: self._paren,
            P.FACTOR_AMP: self._address_of,
            P.FACTOR_STAR: self._dereference,
            P.FACTOR_NEW: self._new,
            P.FACTOR_CALL: self._call,
            P.FACTOR_CALL_ARGS: self._call,
            P.ARGLIST_ONE: self._children,
            P.ARGLIST_MORE: self._children,
            P.LVALUE_ID: self._variable,
            P.LVALUE_STAR: self._dereference,
            P.LVALUE_PAREN: self._paren,
        }

    @property
    def handled_rules(self):
        return set(self._handlers)

    def analyze(self, tree: Internal) -> SemanticContext:
        """Type-check ``tree`` in place and return the procedure signatures."""
        self.signatures = {}
        self._current = None
        self.check(tree)
        return SemanticContext(signatures=self.signatures)

    # -----------------
    # Dispatch
    # -----------------

    def check(self, node: Node) -> Optional[Type]:
        if isinstance(node, Terminal):
            node.well_typed = True
            return node.type
        handler = self._handlers.get(node.rule)
        if handler is None:
            raise SemanticError(f"No semantic rule for '{node.rule}'", ErrorKind.INTERNAL, node)
        self._mark(node, handler(node))
        return node.type

    @staticmethod
    def _mark(node: Internal, node_type: Optional[Type] = None) -> None:
        node.type = node_type
        node.well_typed = True
        for child in node.children:
            if isinstance(child, Terminal):
                child.well_typed = True

    def _expect(self, node: Node, expected: Type, message: str) -> None:
        actual = self.check(node)
        if actual is not expected:
            raise SemanticError(f"{message} (expected {expected}, got {actual})", ErrorKind.TYPE, node)

    @property
    def _locals(self) -> Dict[str, Type]:
        return self.signatures[self._current].locals

    # -----------------
    # Structure
    # -----------------

    def _nothing(self, node: Internal) -> None:
        return None

    def _children(self, node: Internal) -> None:
        for child in node.children:
            self.check(child)
        return None

    def _start(self, node: Internal) -> None:
        self.check(node.children[1])
        return None

    def _procedures(self, node: Internal) -> None:
        # procedures -> procedure procedures is right-recursive; walk it in a loop.
        chain = [node]
        while chain[-1].rule is P.PROCEDURES_MORE:
            chain.append(chain[-1].children[1])
        for link in chain:
            self.check(link.children[0])
        for link in reversed(chain[1:]):
            self._mark(link)
        return None

    def _enter(self, name: str, name_node: Terminal) -> ProcedureSignature:
        if name in self.signatures:
            raise SemanticError(f"Procedure '{name}' already declared", ErrorKind.DECLARATION, name_node)
        signature = ProcedureSignature()
        self.signatures[name] = signature
        self._current = name
        return signature

    def _procedure(self, node: Internal) -> None:
        name_node = node.children[1]
        signature = self._enter(name_node.lexeme, name_node)
        params = node.children[3]
        self.check(params)
        signature.params = [dcl.type for dcl in paramlist_chain(params)]
        dcls, stmts, result = procedure_parts(node)
        self.check(dcls)
        self.check(stmts)
        self._expect(result, Type.INT,
                     f"Return expression of '{name_node.lexeme}' must be int")
        return None

    def _main(self, node: Internal) -> None:
        signature = self._enter("wain", node.children[1])
        first = self.check(node.children[3])
        second = self.check(node.children[5])
        signature.params = [first, second]
        if second is not Type.INT:
            raise SemanticError("The second parameter of wain must be int", ErrorKind.TYPE, node.children[5])
        dcls, stmts, result = procedure_parts(node)
        self.check(dcls)
        self.check(stmts)
        self._expect(result, Type.INT, "Return expression of wain must be int")
        return None

    # -----------------
    # Declarations
    # -----------------

    def _dcl(self, node: Internal) -> Type:
        declared = self.check(node.children[0])
        ident = node.children[1]
        if ident.lexeme in self._locals:
            raise SemanticError(
                f"Duplicate variable '{ident.lexeme}' in '{self._current}'", ErrorKind.DECLARATION, ident
            )
        self._locals[ident.lexeme] = declared
        ident.type = declared
        return declared

    def _dcls(self, node: Internal) -> None:
        # dcls is left-recursive; collect the chain and check it in source order.
        chain = []
        link = node
        while link.rule is not P.DCLS_EMPTY:
            chain.append(link)
            link = link.children[0]
        self._mark(link)
        for link in reversed(chain):
            declared = self.check(link.children[1])
            literal = link.children[3]
            if link.rule is P.DCLS_NUM:
                literal.type = Type.INT
            else:
                literal.type = Type.INT_STAR
            if declared is not literal.type:
                name = link.children[1].children[1].lexeme
                raise SemanticError(
                    f"Variable '{name}' declared {declared} but initialized with {literal.type}",
                    ErrorKind.TYPE, link,
                )
            if link is not node:
                self._mark(link)
        return None

    # -----------------
    # Statements
    # -----------------

    def _statements(self, node: Internal) -> None:
        chain = []
        link = node
        while link.rule is not P.STATEMENTS_EMPTY:
            chain.append(link)
            link = link.children[0]
        self._mark(link)
        for link in reversed(chain):
            self.check(link.children[1])
            if link is not node:
                self._mark(link)
        return None

    def _assign(self, node: Internal) -> None:
        target = self.check(node.children[0])
        value = self.check(node.children[2])
        if target is not value:
            raise SemanticError(f"Cannot assign {value} to {target}", ErrorKind.TYPE, node)
        return None

    def _println(self, node: Internal) -> None:
        self._expect(node.children[2], Type.INT, "println requires int")
        return None

    def _delete(self, node: Internal) -> None:
        self._expect(node.children[3], Type.INT_STAR, "delete [] requires int*")
        return None

    def _test(self, node: Internal) -> None:
        left = self.check(node.children[0])
        right = self.check(node.children[2])
        if left is not right:
            raise SemanticError(f"Cannot compare {left} with {right}", ErrorKind.TYPE, node)
        return None

    # -----------------
    # Expressions
    # -----------------

    def _passthrough(self, node: Internal) -> Type:
        return self.check(node.children[0])

    def _paren(self, node: Internal) -> Type:
        return self.check(node.children[1])

    def _plus(self, node: Internal) -> Type:
        left = self.check(node.children[0])
        right = self.check(node.children[2])
        if left is Type.INT and right is Type.INT:
            return Type.INT
        if left is not right:
            return Type.INT_STAR
        raise SemanticError("Cannot add int* and int*", ErrorKind.TYPE, node)

    def _minus(self, node: Internal) -> Type:
        left = self.check(node.children[0])
        right = self.check(node.children[2])
        if left is right:
            return Type.INT
        if left is Type.INT_STAR:
            return Type.INT_STAR
        raise SemanticError("Cannot subtract int* from int", ErrorKind.TYPE, node)

    def _arith(self, node: Internal) -> Type:
        op = node.children[1].lexeme
        self._expect(node.children[0], Type.INT, f"Left operand of '{op}' must be int")
        self._expect(node.children[2], Type.INT, f"Right operand of '{op}' must be int")
        return Type.INT

    def _variable(self, node: Internal) -> Type:
        ident = node.children[0]
        declared = self._locals.get(ident.lexeme)
        if declared is None:
            raise SemanticError(
                f"Variable '{ident.lexeme}' used without declaration in '{self._current}'",
                ErrorKind.SCOPE, ident,
            )
        ident.type = declared
        return declared

    def _literal(self, node: Internal) -> Type:
        literal = node.children[0]
        literal.type = Type.INT if node.rule is P.FACTOR_NUM else Type.INT_STAR
        return literal.type

    def _address_of(self, node: Internal) -> Type:
        self._expect(node.children[1], Type.INT, "Cannot take the address of a non-int")
        return Type.INT_STAR

    def _dereference(self, node: Internal) -> Type:
        self._expect(node.children[1], Type.INT_STAR, "Cannot dereference a non-pointer")
        return Type.INT

    def _new(self, node: Internal) -> Type:
        self._expect(node.children[3], Type.INT, "Array size must be int")
        return Type.INT_STAR

    def _call(self, node: Internal) -> Type:
        ident = node.children[0]
        name = ident.lexeme
        if name in self._locals:
            raise SemanticError(f"'{name}' is a variable, not a procedure", ErrorKind.SCOPE, ident)
        signature = self.signatures.get(name)
        if signature is None:
            raise SemanticError(f"Procedure '{name}' used without declaration", ErrorKind.SCOPE, ident)

        args: List[Internal] = []
        if node.rule is P.FACTOR_CALL_ARGS:
            self.check(node.children[2])
            args = arglist_chain(node.children[2])
        if len(args) != len(signature.params):
            raise SemanticError(
                f"Procedure '{name}' called with {len(args)} arguments, expected {len(signature.params)}",
                ErrorKind.TYPE, node,
            )
        for position, (arg, param) in enumerate(zip(args, signature.params), start=1):
            if arg.type is not param:
                raise SemanticError(
                    f"Argument {position} of '{name}' must be {param}, got {arg.type}", ErrorKind.TYPE, arg
                )
        return Type.INT
