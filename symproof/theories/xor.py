"""Exclusive-or theory: AC ``xor`` with unit ``zero`` and nilpotence.

Normal form is the multiset normal form with pairs of equal elements
cancelled (x xor x = zero).

Unification solves ``s xor t = zero``: a variable occurring once at the
top level is eliminated by binding it to the xor of the other elements;
otherwise two non-variable elements are paired and the equation re-solved.
"""

from __future__ import annotations

from collections import Counter
from typing import Callable

from symproof.core.signature import XOR
from symproof.core.terms import App, Sort, Term, Var, occurs
from symproof.theories.ac import ACTheory
from symproof.theories.base import Alternative


class XorTheory(ACTheory):
    name = XOR
    op = "xor"
    unit = "zero"

    def normalize(self, term: App) -> Term:
        if term.symbol == self.unit:
            return term
        counts = Counter(self.flatten(term))
        survivors = [t for t, n in counts.items() if n % 2 == 1]
        return self.build(survivors)

    def unify(self, s: Term, t: Term, fresh_var: Callable[[], Var]) -> list[Alternative]:
        combined = self.normalize(App(symbol=self.op, args=(s, t)))
        items = self.elements(combined)
        if not items:
            return [[]]
        alternatives: list[Alternative] = []
        for i, x in enumerate(items):
            if not isinstance(x, Var) or x.sort != Sort.MSG:
                continue
            others = items[:i] + items[i + 1:]
            if any(occurs(x, o) for o in others):
                continue
            alternatives.append([(x, self.build(others))])
        non_vars = [x for x in items if not isinstance(x, Var)]
        for i, a in enumerate(non_vars):
            for b in non_vars[i + 1:]:
                if isinstance(a, App) and isinstance(b, App) and a.symbol != b.symbol:
                    continue
                alternatives.append([(a, b), (s, t)])
        return alternatives
