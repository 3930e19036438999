"""Facts and the multiset fact store.

A Fact is a predicate over terms. Names starting with ``!`` are
persistent: once produced they can satisfy any number of premises.
All other facts are linear and are consumed by exactly one premise.

The store keeps linear facts as a multiset (``collections.Counter``) and
persistent facts as an append-only set keyed by content. Iteration follows
first production, which is a stable enumeration order only; no semantic
order is attached to it.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Iterator

from pydantic import BaseModel

from symproof.core.subst import Subst
from symproof.core.terms import App, Term, as_term

FRESH = "Fr"
IN = "In"
OUT = "Out"
KNOWS = "K"

# Facts are unified as terms headed by this prefix plus the fact name.
FACT_PREFIX = "fact:"


class Fact(BaseModel):
    """A predicate applied to terms."""

    model_config = {"frozen": True}

    name: str
    args: tuple[Term, ...] = ()

    @property
    def persistent(self) -> bool:
        return self.name.startswith("!")

    @property
    def arity(self) -> int:
        return len(self.args)

    def as_term(self) -> App:
        return App(symbol=FACT_PREFIX + self.name, args=self.args)

    @classmethod
    def from_term(cls, term: App) -> "Fact":
        if not term.symbol.startswith(FACT_PREFIX):
            raise ValueError(f"{term} does not encode a fact")
        return cls(name=term.symbol[len(FACT_PREFIX):], args=term.args)

    def apply(self, subst: Subst) -> "Fact":
        if not len(subst):
            return self
        return Fact(name=self.name, args=tuple(subst.apply(a) for a in self.args))

    def __str__(self) -> str:
        return f"{self.name}(" + ", ".join(str(a) for a in self.args) + ")"


def fact(name: str, *args: Any) -> Fact:
    """Builder shorthand: ``fact("Out", "x")``."""
    return Fact(name=name, args=tuple(as_term(a) for a in args))


class FactStore:
    """Multiset of linear facts plus the set of persistent facts."""

    def __init__(self) -> None:
        self._linear: Counter[Fact] = Counter()
        self._persistent: dict[Fact, None] = {}

    def clone(self) -> "FactStore":
        """Shallow copy. Facts are immutable so sharing is safe."""
        new = FactStore()
        new._linear = Counter(self._linear)
        new._persistent = dict(self._persistent)
        return new

    def produce(self, f: Fact) -> None:
        if f.persistent:
            self._persistent.setdefault(f, None)
        else:
            self._linear[f] += 1

    def consume(self, f: Fact) -> bool:
        """Consume one instance. Persistent facts are checked, never removed."""
        if f.persistent:
            return f in self._persistent
        if self._linear[f] <= 0:
            self._linear.pop(f, None)
            return False
        self._linear[f] -= 1
        if self._linear[f] == 0:
            del self._linear[f]
        return True

    def __contains__(self, f: Fact) -> bool:
        if f.persistent:
            return f in self._persistent
        return self._linear[f] > 0 if f in self._linear else False

    def count(self, f: Fact) -> int:
        if f.persistent:
            return 1 if f in self._persistent else 0
        return self._linear.get(f, 0)

    def linear(self) -> Counter[Fact]:
        return Counter(self._linear)

    def persistent(self) -> set[Fact]:
        return set(self._persistent)

    def facts(self) -> Iterator[Fact]:
        yield from self._persistent
        yield from self._linear

    def __len__(self) -> int:
        return sum(self._linear.values()) + len(self._persistent)

    def match_pattern(self, pattern: Fact, oracle: Any, subst: Subst | None = None) -> Iterator[tuple[Subst, Fact]]:
        """Every (unifier, stored fact) for facts unifiable with ``pattern``."""
        subst = subst or Subst.empty()
        for stored in list(self.facts()):
            if stored.name != pattern.name or stored.arity != pattern.arity:
                continue
            for sigma in oracle.unify_all(zip(pattern.args, stored.args), subst):
                yield sigma, stored
