"""EquationalOracle: normalization and unification modulo all active theories.

The oracle is the single entry point the rest of the engine uses for
equality modulo the equational theory:

  normalize(t)           canonical form (innermost, theory roots first)
  unify(s, t)            list of unifiers, empty when there is none
  match(pattern, term)   unifiers binding only pattern variables
  unify_all(eqs, subst)  simultaneous unifiers extending ``subst``

Unification is a bounded search over equation lists. Free symbols are
decomposed syntactically, theory-headed problems are delegated to the
owning plug-in, and user equations are handled by basic narrowing up to
``narrowing_depth`` steps. Every unifier is checked before it is returned
(``normalize(s sigma) == normalize(t sigma)``), and at most ``ac_bound``
unifiers are produced per call. The returned ``Solutions`` carries
``complete=False`` whenever one of these bounds (or the solver step cap)
cut the enumeration short, or a theory could not enumerate every
alternative; the search then refuses to call the branch exhausted.

Results are memoized per oracle; the memo is shared by search workers,
guarded by a lock and dropped once it grows past a fixed size. Solver
variables in memoized unifiers are renamed apart on every hit.
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Iterable, Iterator

from symproof.core.signature import DH, MULTISET, XOR, Destructor, Signature
from symproof.core.subst import Subst, sort_compatible
from symproof.core.terms import App, Sort, Term, Var, is_ground, occurs, replace_at, sort_key, term_vars
from symproof.theories.ac import MultisetTheory
from symproof.theories.base import Alternative, Solutions, Theory
from symproof.theories.dh import DHTheory
from symproof.theories.rewriting import RewritingTheory
from symproof.theories.xor import XorTheory

logger = logging.getLogger(__name__)

_THEORY_CLASSES = {MULTISET: MultisetTheory, XOR: XorTheory, DH: DHTheory}

# Upper bound on solver steps per unification call.
_MAX_SOLVER_STEPS = 20000

# Memo entries kept before the unification memo is dropped.
_MEMO_LIMIT = 50000

_SOLVER_PREFIX = "_u"


class EquationalOracle:
    """Normalization and unification for one signature."""

    def __init__(
        self,
        signature: Signature,
        narrowing_depth: int = 2,
        ac_bound: int = 32,
    ) -> None:
        self.signature = signature
        self.narrowing_depth = narrowing_depth
        self.ac_bound = ac_bound
        self.rewriting = RewritingTheory(signature)
        self.theories: list[Theory] = []
        active = {s.theory for s in signature.symbols.values()}
        for name, cls in _THEORY_CLASSES.items():
            if name in active:
                self.theories.append(cls())
        self._by_symbol: dict[str, Theory] = {}
        for th in self.theories:
            for sym in th.symbols:
                self._by_symbol[sym] = th
        self._norm_memo: dict[Term, Term] = {}
        self._unify_memo: dict[tuple, Solutions] = {}
        self._lock = threading.Lock()
        self._fresh = itertools.count()

    # -- normalization ----------------------------------------------------

    def normalize(self, term: Term) -> Term:
        if not isinstance(term, App):
            return term
        with self._lock:
            cached = self._norm_memo.get(term)
        if cached is not None:
            return cached
        result = self._normalize(term)
        with self._lock:
            if len(self._norm_memo) >= _MEMO_LIMIT:
                self._norm_memo.clear()
            self._norm_memo[term] = result
        return result

    def _normalize(self, term: App) -> Term:
        args = tuple(self.normalize(a) for a in term.args)
        current: Term = App(symbol=term.symbol, args=args) if args != term.args else term
        theory = self._by_symbol.get(current.symbol)
        if theory is not None:
            current = theory.normalize(current)
        if isinstance(current, App) and current.symbol in self.rewriting.symbols:
            rewritten = self.rewriting.rewrite_root(current)
            if rewritten is not None:
                return self.normalize(rewritten)
        return current

    def apply(self, subst: Subst, term: Term) -> Term:
        return self.normalize(subst.apply(term))

    def equal(self, s: Term, t: Term) -> bool:
        return self.normalize(s) == self.normalize(t)

    def theory_for(self, symbol: str) -> Theory | None:
        return self._by_symbol.get(symbol)

    def decompose(self, term: Term) -> list[Destructor]:
        """Adversary extraction steps applicable to ``term``."""
        if isinstance(term, App):
            theory = self._by_symbol.get(term.symbol)
            if theory is not None:
                return theory.decompose(term)
        return self.rewriting.decompose(term)

    def fresh_var(self) -> Var:
        return Var(name=f"{_SOLVER_PREFIX}{next(self._fresh)}", sort=Sort.MSG)

    # -- unification ------------------------------------------------------

    def unify(self, s: Term, t: Term, protected: frozenset[Var] = frozenset()) -> Solutions:
        """Complete set of unifiers within the configured bounds."""
        s, t = self.normalize(s), self.normalize(t)
        key = (s, t, protected)
        with self._lock:
            cached = self._unify_memo.get(key)
        if cached is not None:
            return self._rename_apart(cached)
        result = self._collect([(s, t)], Subst.empty(), protected)
        with self._lock:
            if len(self._unify_memo) >= _MEMO_LIMIT:
                self._unify_memo.clear()
            self._unify_memo[key] = result
        return Solutions(result, complete=result.complete)

    def unify_all(
        self,
        equations: Iterable[tuple[Term, Term]],
        subst: Subst | None = None,
        protected: frozenset[Var] = frozenset(),
    ) -> Solutions:
        """Unifiers of all equations at once, extending ``subst``."""
        return self._collect(list(equations), subst or Subst.empty(), protected)

    def match(self, pattern: Term, term: Term, protected: frozenset[Var] = frozenset()) -> Solutions:
        """Unifiers that leave every variable of ``term`` untouched."""
        return self.unify(pattern, term, protected | frozenset(term_vars(term)))

    def _rename_apart(self, unifiers: Solutions) -> Solutions:
        """Copy of memoized unifiers with their solver variables made fresh."""
        renamed = Solutions(complete=unifiers.complete)
        for sigma in unifiers:
            found = {
                v for pair in sigma.items() for term in pair
                for v in term_vars(term) if v.name.startswith(_SOLVER_PREFIX)
            }
            fresh = Subst({v: self.fresh_var() for v in sorted(found, key=sort_key)})
            renamed.append(Subst({fresh.apply(v): fresh.apply(t) for v, t in sigma.items()}))
        return renamed

    def _collect(
        self,
        equations: list[tuple[Term, Term]],
        subst: Subst,
        protected: frozenset[Var],
    ) -> Solutions:
        results = Solutions()
        seen: set[Subst] = set()
        run = _Run()
        for sigma in self._solve(equations, subst, self.narrowing_depth, protected, run):
            if sigma in seen:
                continue
            seen.add(sigma)
            if not all(self.equal(sigma.apply(a), sigma.apply(b)) for a, b in equations):
                logger.debug("Dropping unsound unifier %r", sigma)
                continue
            if len(results) >= self.ac_bound:
                logger.debug("Unifier bound %d reached", self.ac_bound)
                run.truncated = True
                break
            results.append(sigma)
        if run.steps > _MAX_SOLVER_STEPS:
            logger.debug("Solver step limit %d reached", _MAX_SOLVER_STEPS)
        results.complete = not run.truncated
        return results

    def _solve(
        self,
        equations: list[tuple[Term, Term]],
        subst: Subst,
        depth: int,
        protected: frozenset[Var],
        run: _Run,
    ) -> Iterator[Subst]:
        run.steps += 1
        if run.steps > _MAX_SOLVER_STEPS:
            run.truncated = True
            return
        if not equations:
            yield subst
            return
        (s, t), rest = equations[0], equations[1:]
        s, t = self.apply(subst, s), self.apply(subst, t)
        if s == t:
            yield from self._solve(rest, subst, depth, protected, run)
            return
        for new_subst, new_eqs, new_depth in self._step(s, t, subst, depth, protected, run):
            yield from self._solve(new_eqs + rest, new_subst, new_depth, protected, run)

    def _bind(self, v: Var, term: Term, subst: Subst, protected: frozenset[Var]) -> Subst | None:
        if v in protected or not sort_compatible(v, term) or occurs(v, term):
            return None
        try:
            return subst.bind(v, term)
        except ValueError:
            return None

    def _delegate(self, theory: Theory, s: Term, t: Term, run: _Run) -> list[Alternative]:
        alternatives = theory.unify(s, t, self.fresh_var)
        if isinstance(alternatives, Solutions) and not alternatives.complete:
            logger.debug("Theory %s gave partial alternatives for %s = %s", theory.name, s, t)
            run.truncated = True
        return alternatives

    def _step(
        self,
        s: Term,
        t: Term,
        subst: Subst,
        depth: int,
        protected: frozenset[Var],
        run: _Run,
    ) -> Iterator[tuple[Subst, list[tuple[Term, Term]], int]]:
        if isinstance(s, Var) or isinstance(t, Var):
            options = [(s, t), (t, s)] if isinstance(s, Var) else [(t, s)]
            for v, other in options:
                if not isinstance(v, Var):
                    continue
                bound = self._bind(v, other, subst, protected)
                if bound is not None:
                    yield bound, [], depth
                    return
            if isinstance(s, Var) and isinstance(t, Var):
                return
            # Unbindable variable: a theory or narrowing the other side can help.
            other = t if isinstance(s, Var) else s
            theory = self._by_symbol.get(other.symbol) if isinstance(other, App) else None
            if theory is not None and not is_ground(other):
                run.truncated = True
                for alt in self._delegate(theory, s, t, run):
                    yield subst, list(alt), depth
        elif isinstance(s, App) and isinstance(t, App):
            theory = self._by_symbol.get(s.symbol) or self._by_symbol.get(t.symbol)
            if theory is not None:
                for alt in self._delegate(theory, s, t, run):
                    yield subst, list(alt), depth
            elif s.symbol == t.symbol and len(s.args) == len(t.args):
                yield subst, list(zip(s.args, t.args)), depth
        elif isinstance(s, App) or isinstance(t, App):
            head = s if isinstance(s, App) else t
            theory = self._by_symbol.get(head.symbol)
            if theory is not None:
                for alt in self._delegate(theory, s, t, run):
                    yield subst, list(alt), depth
        if depth <= 0:
            if self.rewriting.narrowable(s) or self.rewriting.narrowable(t):
                run.truncated = True
            return
        for side, other in ((s, t), (t, s)):
            suffix = f"n{next(self._fresh)}"
            for path, sub, lhs, rhs in self.rewriting.narrowing_sites(side, suffix):
                # The redex meets the lhs argument-wise: the lhs itself is reducible.
                narrowed = replace_at(side, path, rhs)
                yield subst, list(zip(sub.args, lhs.args)) + [(narrowed, other)], depth - 1


class _Run:
    """Mutable state of one unification call."""

    __slots__ = ("steps", "truncated")

    def __init__(self) -> None:
        self.steps = 0
        self.truncated = False
