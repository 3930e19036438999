"""User equations as a convergent rewrite system.

Normalization is innermost rewriting: the oracle normalizes arguments
first and then asks this theory to rewrite the root. Left-hand sides
contain no AC symbols, so syntactic matching is enough.

Unification modulo the equations is basic narrowing, driven by the oracle
with the redex candidates reported by ``narrowing_sites``.
"""

from __future__ import annotations

from typing import Iterator

from symproof.core.signature import Destructor, Equation, Signature
from symproof.core.subst import Subst, sort_compatible
from symproof.core.terms import App, Name, Term, Var, rename, subterms


def match_syntactic(pattern: Term, term: Term, subst: Subst | None = None) -> Subst | None:
    """Syntactic matching; binds only pattern variables."""
    subst = subst if subst is not None else Subst.empty()
    if isinstance(pattern, Var):
        bound = subst.get(pattern)
        if bound is not None:
            return subst if bound == term else None
        if not sort_compatible(pattern, term):
            return None
        return Subst(dict(subst.mapping) | {pattern: term})
    if isinstance(pattern, Name):
        return subst if pattern == term else None
    if not isinstance(term, App) or term.symbol != pattern.symbol or len(term.args) != len(pattern.args):
        return None
    for p, t in zip(pattern.args, term.args):
        subst = match_syntactic(p, t, subst)
        if subst is None:
            return None
    return subst


class RewritingTheory:
    """Rewrite rules taken from the signature's equations."""

    name = "rewriting"

    def __init__(self, signature: Signature) -> None:
        self.equations: tuple[Equation, ...] = signature.equations
        self.symbols = frozenset(signature.defined_symbols())
        self._by_head: dict[str, list[Equation]] = {}
        for eq in self.equations:
            if isinstance(eq.lhs, App):
                self._by_head.setdefault(eq.lhs.symbol, []).append(eq)
        self._destructors: dict[str, list[Destructor]] = {}
        for d in signature.destructors():
            self._destructors.setdefault(d.constructor, []).append(d)

    def rewrite_root(self, term: App) -> Term | None:
        """One rewrite step at the root, or None if the root is irreducible."""
        for eq in self._by_head.get(term.symbol, ()):
            sigma = match_syntactic(eq.lhs, term)
            if sigma is not None:
                return sigma.apply(eq.rhs)
        return None

    def narrowing_sites(self, term: Term, suffix: str) -> Iterator[tuple[tuple[int, ...], Term, Term, Term]]:
        """(position, subterm, renamed lhs, renamed rhs) for every narrowing candidate."""
        for path, sub in subterms(term):
            if not isinstance(sub, App) or sub.symbol not in self._by_head:
                continue
            for i, eq in enumerate(self._by_head[sub.symbol]):
                tag = f"{suffix}.{i}"
                yield path, sub, rename(eq.lhs, tag), rename(eq.rhs, tag)

    def narrowable(self, term: Term) -> bool:
        """Whether some subterm is headed by a symbol with a rewrite rule."""
        return any(isinstance(sub, App) and sub.symbol in self._by_head for _, sub in subterms(term))

    def decompose(self, term: Term) -> list[Destructor]:
        if not isinstance(term, App):
            return []
        return list(self._destructors.get(term.symbol, ()))


def unify_syntactic(s: Term, t: Term, subst: Subst | None = None) -> Subst | None:
    """Most general syntactic unifier, or None."""
    subst = subst if subst is not None else Subst.empty()
    s, t = subst.apply(s), subst.apply(t)
    if s == t:
        return subst
    if isinstance(s, Var) or isinstance(t, Var):
        v, other = (s, t) if isinstance(s, Var) else (t, s)
        try:
            return subst.bind(v, other)
        except ValueError:
            if isinstance(other, Var):
                try:
                    return subst.bind(other, v)
                except ValueError:
                    return None
            return None
    if not isinstance(s, App) or not isinstance(t, App):
        return None
    if s.symbol != t.symbol or len(s.args) != len(t.args):
        return None
    for a, b in zip(s.args, t.args):
        subst = unify_syntactic(a, b, subst)
        if subst is None:
            return None
    return subst
