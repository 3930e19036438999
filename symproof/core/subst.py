"""Substitutions in solved form.

A Subst maps variables to terms and is kept idempotent: no variable in
its domain occurs in its range. Application is purely syntactic; callers
that need results modulo the equational theory normalize afterwards
(``EquationalOracle.apply``).
"""

from __future__ import annotations

from typing import Iterable, Iterator

from symproof.core.frozen_collections import FrozenDict
from symproof.core.terms import App, Name, NameKind, Sort, Term, Var, occurs


class Subst:
    """Immutable variable-to-term mapping."""

    __slots__ = ("_mapping",)

    def __init__(self, mapping: dict[Var, Term] | None = None) -> None:
        self._mapping = FrozenDict(mapping or {})

    @classmethod
    def empty(cls) -> "Subst":
        return _EMPTY

    @property
    def mapping(self) -> FrozenDict:
        return self._mapping

    def __contains__(self, v: Var) -> bool:
        return v in self._mapping

    def __getitem__(self, v: Var) -> Term:
        return self._mapping[v]

    def __len__(self) -> int:
        return len(self._mapping)

    def __iter__(self) -> Iterator[Var]:
        return iter(self._mapping)

    def items(self) -> Iterable[tuple[Var, Term]]:
        return self._mapping.items()

    def get(self, v: Var, default: Term | None = None) -> Term | None:
        return self._mapping.get(v, default)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Subst) and self._mapping == other._mapping

    def __hash__(self) -> int:
        return hash(self._mapping)

    def __repr__(self) -> str:
        inner = ", ".join(f"{k} -> {v}" for k, v in self._mapping.items())
        return f"Subst({{{inner}}})"

    def apply(self, term: Term) -> Term:
        """Replace bound variables. Total and pure."""
        if not self._mapping:
            return term
        if isinstance(term, Var):
            return self._mapping.get(term, term)
        if isinstance(term, App) and term.args:
            new_args = tuple(self.apply(a) for a in term.args)
            if new_args == term.args:
                return term
            return App(symbol=term.symbol, args=new_args)
        return term

    def bind(self, v: Var, term: Term) -> "Subst":
        """Extend with ``v -> term``, keeping solved form.

        Raises ValueError on an occurs-check or sort violation; the
        unifiers catch it and drop the branch.
        """
        term = self.apply(term)
        if term == v:
            return self
        if v in self._mapping:
            raise ValueError(f"{v} is already bound")
        if not sort_compatible(v, term):
            raise ValueError(f"Sort clash binding {v} to {term}")
        if occurs(v, term):
            raise ValueError(f"Occurs check: {v} in {term}")
        single = Subst({v: term})
        mapping = {k: single.apply(t) for k, t in self._mapping.items()}
        mapping[v] = term
        return Subst(mapping)

    def compose(self, other: "Subst") -> "Subst":
        """``self`` then ``other``: ``x -> other(self(x))``."""
        mapping = {k: other.apply(t) for k, t in self._mapping.items()}
        for k, t in other.items():
            if k not in mapping:
                mapping[k] = t
        return Subst({k: t for k, t in mapping.items() if t != k})

    def restrict(self, variables: Iterable[Var]) -> "Subst":
        keep = set(variables)
        return Subst({k: t for k, t in self._mapping.items() if k in keep})


_EMPTY = Subst()


def sort_compatible(v: Var, term: Term) -> bool:
    """Sort discipline for bindings.

    msg variables take any non-temporal term, fresh variables only fresh
    names or fresh variables, pub variables only public names or pub
    variables, temporal variables only temporal variables.
    """
    if v.sort == Sort.TEMPORAL:
        return isinstance(term, Var) and term.sort == Sort.TEMPORAL
    if isinstance(term, Var) and term.sort == Sort.TEMPORAL:
        return False
    if v.sort == Sort.MSG:
        return True
    if v.sort == Sort.FRESH:
        if isinstance(term, Var):
            return term.sort == Sort.FRESH
        return isinstance(term, Name) and term.kind == NameKind.FRESH
    if isinstance(term, Var):
        return term.sort == Sort.PUB
    return isinstance(term, Name) and term.kind == NameKind.PUB
