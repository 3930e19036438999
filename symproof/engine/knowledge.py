"""Dolev-Yao adversary knowledge.

The adversary knows every term sent on the network, every public name
and every fresh name it generated itself. Knowledge is kept closed under
analysis: whenever a term is learned, destructor equations are applied
(projections, decryption with a known key, message extraction from
signatures) until nothing new appears. Derivability of a ground term is
then decided by composition with public function symbols over the
analyzed set, plus the Diffie-Hellman quotient rule: ``exp(b, x*y)`` is
derivable from a known ``exp(b, x)`` and a derivable ``y``.

Knowledge is monotone: terms are only ever added.
"""

from __future__ import annotations

import logging
from typing import Iterator

from symproof.core.subst import Subst
from symproof.core.terms import App, Name, Sort, Term, Var, is_ground
from symproof.theories.oracle import EquationalOracle
from symproof.theories.rewriting import match_syntactic

logger = logging.getLogger(__name__)


class AdversaryKnowledge:
    """Analyzed set of terms the adversary has observed."""

    def __init__(self, oracle: EquationalOracle) -> None:
        self.oracle = oracle
        self._known: dict[Term, None] = {}
        self.honest_fresh: set[Name] = set()

    def clone(self) -> "AdversaryKnowledge":
        new = AdversaryKnowledge(self.oracle)
        new._known = dict(self._known)
        new.honest_fresh = set(self.honest_fresh)
        return new

    def __contains__(self, term: Term) -> bool:
        return self.oracle.normalize(term) in self._known

    def __len__(self) -> int:
        return len(self._known)

    def terms(self) -> list[Term]:
        return list(self._known)

    def mark_honest(self, name: Name) -> None:
        """Register a fresh name drawn by a protocol role."""
        self.honest_fresh.add(name)

    def add(self, term: Term) -> None:
        """Learn ``term`` and close the knowledge under analysis."""
        term = self.oracle.normalize(term)
        if term in self._known:
            return
        self._known[term] = None
        self._analyze()

    def _analyze(self) -> None:
        changed = True
        while changed:
            changed = False
            for t in list(self._known):
                for d in self.oracle.decompose(t):
                    sigma = match_syntactic(d.pattern, t)
                    if sigma is None:
                        continue
                    if not all(self.derivable(sigma.apply(s)) for s in d.side):
                        continue
                    part = self.oracle.normalize(sigma.apply(d.pattern.args[d.index]))
                    if part not in self._known:
                        logger.debug("Adversary extracts %s from %s via %s", part, t, d.destructor)
                        self._known[part] = None
                        changed = True

    def derivable(self, term: Term) -> bool:
        """Whether the ground ``term`` can be computed by the adversary."""
        return self._derivable(self.oracle.normalize(term), 0)

    def _derivable(self, term: Term, depth: int) -> bool:
        if term in self._known:
            return True
        if isinstance(term, Var):
            return False
        if isinstance(term, Name):
            return not term.is_fresh or term not in self.honest_fresh
        if depth > 12:
            return False
        sig = self.oracle.signature
        if not sig.is_private(term.symbol) and term.symbol in sig.symbols:
            if all(self._derivable(a, depth + 1) for a in term.args):
                return True
        return self._dh_quotient(term, depth)

    def _dh_quotient(self, term: App, depth: int) -> bool:
        dh = self.oracle.theory_for("exp")
        if dh is None or term.symbol != "exp" or len(term.args) != 2:
            return False
        base, exponent = term.args
        for known in self._known:
            if not isinstance(known, App) or known.symbol != "exp" or known.args[0] != base:
                continue
            rest = self.oracle.normalize(App(symbol="mult", args=(exponent, App(symbol="inv", args=(known.args[1],)))))
            if rest != term.args[1] and self._derivable(rest, depth + 1):
                return True
        return False

    def instances(self, pattern: Term, subst: Subst | None = None) -> Iterator[Subst]:
        """Extensions of ``subst`` making ``pattern`` derivable.

        Ground patterns are checked directly. Otherwise candidates come
        from unification with known terms and from composing the pattern's
        public head over instances of its arguments.
        """
        subst = subst or Subst.empty()
        seen: set[Subst] = set()
        for sigma in self._instances(pattern, subst, 0):
            if sigma not in seen:
                seen.add(sigma)
                yield sigma

    def _instances(self, pattern: Term, subst: Subst, depth: int) -> Iterator[Subst]:
        t = self.oracle.apply(subst, pattern)
        if is_ground(t):
            if self.derivable(t):
                yield subst
            return
        if isinstance(t, Var) and t.sort == Sort.PUB:
            candidates = [k for k in self._known if isinstance(k, Name) and not k.is_fresh]
        elif isinstance(t, Var) and t.sort == Sort.FRESH:
            candidates = [k for k in self._known if isinstance(k, Name) and k.is_fresh]
        else:
            candidates = list(self._known)
        for k in candidates:
            yield from self.oracle.unify_all([(t, k)], subst)
        if depth > 4 or not isinstance(t, App) or not t.args:
            return
        sig = self.oracle.signature
        if sig.is_private(t.symbol) or self.oracle.theory_for(t.symbol) is not None:
            return
        yield from self._compose(t.args, 0, subst, depth)

    def _compose(self, args: tuple[Term, ...], i: int, subst: Subst, depth: int) -> Iterator[Subst]:
        if i == len(args):
            yield subst
            return
        for sigma in self._instances(args[i], subst, depth + 1):
            yield from self._compose(args, i + 1, sigma, depth)
