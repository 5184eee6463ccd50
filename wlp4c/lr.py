"""wlp4c.lr

Canonical LR(1) construction for the grammar in ``wlp4c.grammar``.

Items are ``(rule, dot, lookahead)`` triples. The augmented start item is
rule 0 with the ``.ACCEPT`` lookahead, so the reduction that completes the
start rule after EOF has been shifted carries the ``.ACCEPT`` tag, which is
exactly what the parser looks for to stop.
"""

from __future__ import annotations

from collections import deque
from typing import Dict, FrozenSet, Iterable, List, Set, Tuple

from wlp4c.grammar import ACCEPT, GrammarError, GrammarTable, Production


Item = Tuple[int, int, str]


class _Grammar:
    def __init__(self, rules: List[Production]):
        self.rules = rules
        self.bodies = [r.symbols for r in rules]
        self.by_lhs: Dict[str, List[int]] = {}
        for idx, rule in enumerate(rules):
            self.by_lhs.setdefault(rule.lhs, []).append(idx)

        self.nullable: Set[str] = set()
        self.first: Dict[str, Set[str]] = {nt: set() for nt in self.by_lhs}
        self._compute_first()
        self._suffix_cache: Dict[Tuple[int, int], Tuple[FrozenSet[str], bool]] = {}

    def is_nonterminal(self, symbol: str) -> bool:
        return symbol in self.by_lhs

    def _compute_first(self) -> None:
        changed = True
        while changed:
            changed = False
            for idx, rule in enumerate(self.rules):
                target = self.first[rule.lhs]
                before = len(target)
                all_nullable = True
                for sym in self.bodies[idx]:
                    if self.is_nonterminal(sym):
                        target |= self.first[sym]
                        if sym not in self.nullable:
                            all_nullable = False
                            break
                    else:
                        target.add(sym)
                        all_nullable = False
                        break
                if len(target) != before:
                    changed = True
                if all_nullable and rule.lhs not in self.nullable:
                    self.nullable.add(rule.lhs)
                    changed = True

    def first_of_suffix(self, rule: int, start: int) -> Tuple[FrozenSet[str], bool]:
        """FIRST of ``bodies[rule][start:]`` and whether that suffix is nullable."""
        key = (rule, start)
        cached = self._suffix_cache.get(key)
        if cached is not None:
            return cached
        result: Set[str] = set()
        nullable = True
        for sym in self.bodies[rule][start:]:
            if self.is_nonterminal(sym):
                result |= self.first[sym]
                if sym not in self.nullable:
                    nullable = False
                    break
            else:
                result.add(sym)
                nullable = False
                break
        cached = (frozenset(result), nullable)
        self._suffix_cache[key] = cached
        return cached

    def closure(self, kernel: Iterable[Item]) -> FrozenSet[Item]:
        items: Set[Item] = set(kernel)
        work = list(items)
        while work:
            rule, dot, lookahead = work.pop()
            body = self.bodies[rule]
            if dot >= len(body) or not self.is_nonterminal(body[dot]):
                continue
            first, nullable = self.first_of_suffix(rule, dot + 1)
            lookaheads = set(first)
            if nullable:
                lookaheads.add(lookahead)
            for sub in self.by_lhs[body[dot]]:
                for la in lookaheads:
                    item = (sub, 0, la)
                    if item not in items:
                        items.add(item)
                        work.append(item)
        return frozenset(items)


def build_table(rules: List[Production]) -> GrammarTable:
    """Construct the canonical LR(1) table for ``rules`` (rule 0 is the start rule).

    Raises GrammarError on any shift/reduce or reduce/reduce conflict.
    """
    if not rules:
        raise GrammarError("Cannot build a table for an empty grammar")
    grammar = _Grammar(rules)

    start_kernel = frozenset([(0, 0, ACCEPT)])
    state_ids: Dict[FrozenSet[Item], int] = {start_kernel: 0}
    queue = deque([start_kernel])
    transitions: Dict[int, Dict[str, int]] = {}
    reductions: Dict[int, Dict[str, int]] = {}

    while queue:
        kernel = queue.popleft()
        state = state_ids[kernel]
        items = grammar.closure(kernel)

        moves: Dict[str, Set[Item]] = {}
        for rule, dot, lookahead in items:
            body = grammar.bodies[rule]
            if dot < len(body):
                moves.setdefault(body[dot], set()).add((rule, dot + 1, lookahead))
                continue
            row = reductions.setdefault(state, {})
            existing = row.get(lookahead)
            if existing is not None and existing != rule:
                raise GrammarError(
                    f"Reduce/reduce conflict in state {state} on {lookahead}: "
                    f"'{rules[existing]}' vs '{rules[rule]}'"
                )
            row[lookahead] = rule

        for symbol in sorted(moves):
            target = frozenset(moves[symbol])
            if target not in state_ids:
                state_ids[target] = len(state_ids)
                queue.append(target)
            transitions.setdefault(state, {})[symbol] = state_ids[target]

    for state, row in reductions.items():
        for lookahead, rule in row.items():
            if lookahead in transitions.get(state, {}):
                raise GrammarError(
                    f"Shift/reduce conflict in state {state} on {lookahead}: '{rules[rule]}'"
                )

    return GrammarTable(rules=list(rules), transitions=transitions, reductions=reductions)
