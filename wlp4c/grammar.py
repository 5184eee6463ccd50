"""wlp4c.grammar

The WLP4 context-free grammar and the LR parse table driving the parser.

Productions form a closed enumeration so every later stage can dispatch on
them directly. The table can be built in-process (see ``wlp4c.lr``) or read
from the classic text format:

    .CFG
    start BOF procedures EOF
    ...
    .TRANSITIONS
    0 BOF 1
    ...
    .REDUCTIONS
    5 12 RPAREN
    1 0 .ACCEPT
    ...
    .END
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from wlp4c.errors import CompileError, ErrorKind


EMPTY = ".EMPTY"
ACCEPT = ".ACCEPT"


class GrammarError(CompileError):
    """Malformed grammar or parse table"""
    kind = ErrorKind.INTERNAL


class Production(Enum):
    """Grammar rules, in their canonical numbering order"""
    START = ("start", ("BOF", "procedures", "EOF"))
    PROCEDURES_MORE = ("procedures", ("procedure", "procedures"))
    PROCEDURES_MAIN = ("procedures", ("main",))
    PROCEDURE = ("procedure", ("INT", "ID", "LPAREN", "params", "RPAREN", "LBRACE",
                               "dcls", "statements", "RETURN", "expr", "SEMI", "RBRACE"))
    MAIN = ("main", ("INT", "WAIN", "LPAREN", "dcl", "COMMA", "dcl", "RPAREN", "LBRACE",
                     "dcls", "statements", "RETURN", "expr", "SEMI", "RBRACE"))
    PARAMS_EMPTY = ("params", (EMPTY,))
    PARAMS_LIST = ("params", ("paramlist",))
    PARAMLIST_ONE = ("paramlist", ("dcl",))
    PARAMLIST_MORE = ("paramlist", ("dcl", "COMMA", "paramlist"))
    TYPE_INT = ("type", ("INT",))
    TYPE_INT_STAR = ("type", ("INT", "STAR"))
    DCLS_EMPTY = ("dcls", (EMPTY,))
    DCLS_NUM = ("dcls", ("dcls", "dcl", "BECOMES", "NUM", "SEMI"))
    DCLS_NULL = ("dcls", ("dcls", "dcl", "BECOMES", "NULL", "SEMI"))
    DCL = ("dcl", ("type", "ID"))
    STATEMENTS_EMPTY = ("statements", (EMPTY,))
    STATEMENTS_MORE = ("statements", ("statements", "statement"))
    STATEMENT_ASSIGN = ("statement", ("lvalue", "BECOMES", "expr", "SEMI"))
    STATEMENT_IF = ("statement", ("IF", "LPAREN", "test", "RPAREN", "LBRACE", "statements",
                                  "RBRACE", "ELSE", "LBRACE", "statements", "RBRACE"))
    STATEMENT_WHILE = ("statement", ("WHILE", "LPAREN", "test", "RPAREN", "LBRACE",
                                     "statements", "RBRACE"))
    STATEMENT_PRINTLN = ("statement", ("PRINTLN", "LPAREN", "expr", "RPAREN", "SEMI"))
    STATEMENT_DELETE = ("statement", ("DELETE", "LBRACK", "RBRACK", "expr", "SEMI"))
    TEST_EQ = ("test", ("expr", "EQ", "expr"))
    TEST_NE = ("test", ("expr", "NE", "expr"))
    TEST_LT = ("test", ("expr", "LT", "expr"))
    TEST_LE = ("test", ("expr", "LE", "expr"))
    TEST_GE = ("test", ("expr", "GE", "expr"))
    TEST_GT = ("test", ("expr", "GT", "expr"))
    EXPR_TERM = ("expr", ("term",))
    EXPR_PLUS = ("expr", ("expr", "PLUS", "term"))
    EXPR_MINUS = ("expr", ("expr", "MINUS", "term"))
    TERM_FACTOR = ("term", ("factor",))
    TERM_STAR = ("term", ("term", "STAR", "factor"))
    TERM_SLASH = ("term", ("term", "SLASH", "factor"))
    TERM_PCT = ("term", ("term", "PCT", "factor"))
    FACTOR_ID = ("factor", ("ID",))
    FACTOR_NUM = ("factor", ("NUM",))
    FACTOR_NULL = ("factor", ("NULL",))
    FACTOR_PAREN = ("factor", ("LPAREN", "expr", "RPAREN"))
    FACTOR_AMP = ("factor", ("AMP", "lvalue"))
    FACTOR_STAR = ("factor", ("STAR", "factor"))
    FACTOR_NEW = ("factor", ("NEW", "INT", "LBRACK", "expr", "RBRACK"))
    FACTOR_CALL = ("factor", ("ID", "LPAREN", "RPAREN"))
    FACTOR_CALL_ARGS = ("factor", ("ID", "LPAREN", "arglist", "RPAREN"))
    ARGLIST_ONE = ("arglist", ("expr",))
    ARGLIST_MORE = ("arglist", ("expr", "COMMA", "arglist"))
    LVALUE_ID = ("lvalue", ("ID",))
    LVALUE_STAR = ("lvalue", ("STAR", "factor"))
    LVALUE_PAREN = ("lvalue", ("LPAREN", "lvalue", "RPAREN"))

    @property
    def lhs(self) -> str:
        return self.value[0]

    @property
    def rhs(self) -> Tuple[str, ...]:
        return self.value[1]

    @property
    def symbols(self) -> Tuple[str, ...]:
        """Right-hand side without the .EMPTY marker"""
        return tuple(s for s in self.value[1] if s != EMPTY)

    def __str__(self) -> str:
        return " ".join((self.lhs,) + self.rhs)

    @classmethod
    def parse(cls, line: str) -> "Production":
        parts = line.split()
        if not parts:
            raise GrammarError("Empty production line")
        try:
            return cls((parts[0], tuple(parts[1:])))
        except ValueError:
            raise GrammarError(f"Unknown production '{line.strip()}'") from None


NONTERMINALS = frozenset(p.lhs for p in Production)


def is_terminal(symbol: str) -> bool:
    return symbol not in NONTERMINALS and symbol != EMPTY


@dataclass
class GrammarTable:
    """LR(1) parse table: rules plus transition and reduction maps"""
    rules: List[Production]
    transitions: Dict[int, Dict[str, int]] = field(default_factory=dict)
    reductions: Dict[int, Dict[str, int]] = field(default_factory=dict)
    start_state: int = 0

    def transition(self, state: int, symbol: str) -> Optional[int]:
        return self.transitions.get(state, {}).get(symbol)

    def reduction(self, state: int, lookahead: str) -> Optional[int]:
        return self.reductions.get(state, {}).get(lookahead)

    def accepts(self, state: int) -> Optional[int]:
        return self.reduction(state, ACCEPT)

    @property
    def state_count(self) -> int:
        states = set(self.transitions) | set(self.reductions)
        for row in self.transitions.values():
            states.update(row.values())
        return len(states)

    # -----------------
    # Text format
    # -----------------

    def dumps(self) -> str:
        lines = [".CFG"]
        lines += [str(rule) for rule in self.rules]
        lines.append(".TRANSITIONS")
        for src in sorted(self.transitions):
            for symbol, dst in sorted(self.transitions[src].items()):
                lines.append(f"{src} {symbol} {dst}")
        lines.append(".REDUCTIONS")
        for state in sorted(self.reductions):
            for lookahead, rule in sorted(self.reductions[state].items()):
                lines.append(f"{state} {rule} {lookahead}")
        lines.append(".END")
        return "\n".join(lines) + "\n"

    @classmethod
    def loads(cls, text: str) -> "GrammarTable":
        rules: List[Production] = []
        transitions: Dict[int, Dict[str, int]] = {}
        reductions: Dict[int, Dict[str, int]] = {}
        section = None

        for lineno, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip()
            if not line:
                continue
            if line.startswith("."):
                section = line
                if section == ".END":
                    break
                if section not in (".CFG", ".TRANSITIONS", ".REDUCTIONS"):
                    raise GrammarError(f"Unknown section '{line}' on line {lineno}")
                continue

            if section == ".CFG":
                rules.append(Production.parse(line))
                continue

            parts = line.split()
            if section not in (".TRANSITIONS", ".REDUCTIONS") or len(parts) != 3:
                raise GrammarError(f"Malformed table line {lineno}: '{line}'")
            try:
                if section == ".TRANSITIONS":
                    transitions.setdefault(int(parts[0]), {})[parts[1]] = int(parts[2])
                else:
                    rule = int(parts[1])
                    if not 0 <= rule < len(rules):
                        raise GrammarError(f"Reduction by unknown rule {rule} on line {lineno}")
                    reductions.setdefault(int(parts[0]), {})[parts[2]] = rule
            except ValueError:
                raise GrammarError(f"Malformed table line {lineno}: '{line}'") from None

        if not rules:
            raise GrammarError("Parse table has no rules")
        return cls(rules=rules, transitions=transitions, reductions=reductions)

    @classmethod
    def load(cls, path: str) -> "GrammarTable":
        with open(path, "r") as f:
            return cls.loads(f.read())


@lru_cache(maxsize=1)
def default_table() -> GrammarTable:
    """Build (once per process) the canonical LR(1) table for WLP4."""
    from wlp4c.lr import build_table
    return build_table(list(Production))
