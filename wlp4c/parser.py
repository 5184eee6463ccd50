"""
Shift-reduce Parser for WLP4

Drives the LR(1) table from ``wlp4c.grammar`` over a BOF/EOF-bracketed token
stream and produces the concrete parse tree.
"""

from __future__ import annotations

from typing import List, Optional

from wlp4c.errors import CompileError, ErrorKind
from wlp4c.grammar import GrammarTable, default_table
from wlp4c.lexer import Token, TokenKind
from wlp4c.parse_tree import Internal, Node, Terminal


class ParserError(CompileError):
    """Parser error"""
    kind = ErrorKind.SYNTAX

    def __init__(self, message: str, token: Optional[Token] = None, index: Optional[int] = None):
        self.token = token
        self.index = index
        if token is not None:
            text = f"{message} at token {index} ({token.kind} {token.lexeme!r}"
            if token.line:
                text += f", {token.line}:{token.column}"
            text += ")"
        else:
            text = message
        super().__init__(text)
        self.message = message


class Parser:
    """LR parser for WLP4 token streams"""

    def __init__(self, tokens: List[Token], table: Optional[GrammarTable] = None):
        self.tokens = tokens
        self.table = table if table is not None else default_table()
        self.position = 0

    def current_token(self) -> Optional[Token]:
        if self.position < len(self.tokens):
            return self.tokens[self.position]
        return None

    def parse(self) -> Internal:
        """Parse the whole token stream and return the ``start`` node."""
        if not self.tokens or self.tokens[0].kind != TokenKind.BOF.value:
            raise ParserError("Token stream must begin with BOF", self.current_token(), 0)
        if self.tokens[-1].kind != TokenKind.EOF.value:
            raise ParserError("Token stream must end with EOF", self.tokens[-1], len(self.tokens) - 1)

        table = self.table
        states: List[int] = [table.start_state]
        symbols: List[str] = []
        nodes: List[Node] = []
        self.position = 0

        while True:
            state = states[-1]
            token = self.current_token()
            rule_idx = None
            accepting = False
            if token is not None:
                rule_idx = table.reduction(state, token.kind)
            if rule_idx is None:
                rule_idx = table.accepts(state)
                accepting = rule_idx is not None

            if rule_idx is not None:
                rule = table.rules[rule_idx]
                children: List[Node] = []
                for expected in reversed(rule.symbols):
                    states.pop()
                    actual = symbols.pop()
                    if actual != expected:
                        raise ParserError(
                            f"Parse table mismatch reducing '{rule}': expected {expected}, found {actual}",
                            token, self.position,
                        )
                    children.append(nodes.pop())
                children.reverse()
                node = Internal(rule, children)
                if accepting:
                    if states != [table.start_state] or symbols:
                        raise ParserError("Input accepted with unreduced symbols", token, self.position)
                    return node
                target = table.transition(states[-1], rule.lhs)
                if target is None:
                    raise ParserError(f"No goto on {rule.lhs} after reducing '{rule}'", token, self.position)
                states.append(target)
                symbols.append(rule.lhs)
                nodes.append(node)
                continue

            if token is None:
                raise ParserError("Unexpected end of input", self.tokens[-1], len(self.tokens) - 1)
            target = table.transition(state, token.kind)
            if target is None:
                raise ParserError(f"Unexpected {token.kind}", token, self.position)
            states.append(target)
            symbols.append(token.kind)
            nodes.append(Terminal(token))
            self.position += 1
