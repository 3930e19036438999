"""Multiset theory: associative-commutative ``union`` with unit ``empty``.

Normal form: nested unions are flattened into one variadic ``union``
application, unit elements are removed and the remaining arguments are
sorted by ``sort_key``. A union of one element is that element.

Unification is bounded AC unification by pairing and variable absorption:
pick an element of one side, pair it with each element of the other side
or let a variable of the other side absorb it, then re-solve the original
equation. Each alternative cancels at least one element, so the
recursion terminates; the oracle caps the number of unifiers.
"""

from __future__ import annotations

from typing import Callable

from symproof.core.signature import MULTISET, Destructor
from symproof.core.terms import App, Sort, Term, Var, const, occurs, sort_key
from symproof.theories.base import Alternative


class ACTheory:
    """Shared flattening and element bookkeeping for AC symbols."""

    name = "ac"
    op = ""
    unit = ""

    def __init__(self) -> None:
        self.symbols = frozenset({self.op, self.unit})

    def unit_term(self) -> App:
        return const(self.unit)

    def elements(self, term: Term) -> list[Term]:
        if isinstance(term, App) and term.symbol == self.op:
            return list(term.args)
        if isinstance(term, App) and term.symbol == self.unit and not term.args:
            return []
        return [term]

    def build(self, elements: list[Term]) -> Term:
        if not elements:
            return self.unit_term()
        if len(elements) == 1:
            return elements[0]
        return App(symbol=self.op, args=tuple(sorted(elements, key=sort_key)))

    def flatten(self, term: App) -> list[Term]:
        items: list[Term] = []
        for a in term.args:
            items.extend(self.elements(a))
        return items

    def normalize(self, term: App) -> Term:
        if term.symbol == self.unit:
            return term
        return self.build(self.flatten(term))

    def decompose(self, term: Term) -> list[Destructor]:
        return []


def _cancel(left: list[Term], right: list[Term]) -> tuple[list[Term], list[Term]]:
    right = list(right)
    rest_left: list[Term] = []
    for a in left:
        if a in right:
            right.remove(a)
        else:
            rest_left.append(a)
    return rest_left, right


class MultisetTheory(ACTheory):
    name = MULTISET
    op = "union"
    unit = "empty"

    def unify(self, s: Term, t: Term, fresh_var: Callable[[], Var]) -> list[Alternative]:
        left, right = _cancel(self.elements(s), self.elements(t))
        if not left and not right:
            return [[]]
        if not left or not right:
            rest = left or right
            if all(isinstance(x, Var) and x.sort == Sort.MSG for x in rest):
                return [[(x, self.unit_term()) for x in rest]]
            return []
        for side, other in ((left, right), (right, left)):
            if len(side) == 1 and isinstance(side[0], Var):
                v = side[0]
                if v.sort == Sort.MSG and not any(occurs(v, o) for o in other):
                    return [[(v, self.build(other))]]
        if all(isinstance(x, Var) for x in left) and not all(isinstance(x, Var) for x in right):
            left, right = right, left
        pick = next((x for x in left if not isinstance(x, Var)), left[0])
        alternatives: list[Alternative] = []
        for b in right:
            alternatives.append([(pick, b), (s, t)])
        for y in right:
            if isinstance(y, Var) and y.sort == Sort.MSG and y != pick:
                absorbed = self.build([pick, fresh_var()])
                alternatives.append([(y, absorbed), (s, t)])
        return alternatives
