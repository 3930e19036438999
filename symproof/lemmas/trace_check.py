"""Evaluate guarded formulas on a concrete trace.

A concrete trace is a sequence of action lists, one per timepoint.
Quantified variables are guarded, so their candidate values are exactly
the matches of the guard's action atoms against the trace; everything
else is checked directly. Term equality is decided modulo the equational
theory by the oracle.
"""

from __future__ import annotations

from typing import Iterator, Sequence

from symproof.core.facts import Fact
from symproof.core.formulas import (
    Action,
    And,
    Bottom,
    Exists,
    Formula,
    Implies,
    Less,
    Not,
    Or,
    TermEq,
    TimeEq,
    Top,
    flatten_and,
    split_guard,
)
from symproof.core.subst import Subst
from symproof.core.terms import Var
from symproof.theories.oracle import EquationalOracle

Timepoints = dict[Var, int]


def holds(
    formula: Formula,
    actions: Sequence[Sequence[Fact]],
    oracle: EquationalOracle,
    env: Subst | None = None,
    times: Timepoints | None = None,
) -> bool:
    """Whether ``formula`` is true on the trace under the given bindings."""
    return _TraceChecker(actions, oracle).sat(formula, env or Subst.empty(), dict(times or {}))


class _TraceChecker:
    def __init__(self, actions: Sequence[Sequence[Fact]], oracle: EquationalOracle) -> None:
        self.actions = actions
        self.oracle = oracle

    def sat(self, f: Formula, env: Subst, times: Timepoints) -> bool:
        if isinstance(f, Top):
            return True
        if isinstance(f, Bottom):
            return False
        if isinstance(f, Action):
            return next(self.matches(f, env, times), None) is not None
        if isinstance(f, Less):
            return self._time(f.left, times) < self._time(f.right, times)
        if isinstance(f, TimeEq):
            return self._time(f.left, times) == self._time(f.right, times)
        if isinstance(f, TermEq):
            return self.oracle.equal(env.apply(f.left), env.apply(f.right))
        if isinstance(f, Not):
            return not self.sat(f.body, env, times)
        if isinstance(f, And):
            return all(self.sat(i, env, times) for i in f.items)
        if isinstance(f, Or):
            return any(self.sat(i, env, times) for i in f.items)
        if isinstance(f, Implies):
            return not self.sat(f.left, env, times) or self.sat(f.right, env, times)
        if isinstance(f, Exists):
            parts = flatten_and(f.body)
            for env2, times2 in self.assignments(parts, _unbind(env, f.vars), _untime(times, f.vars)):
                if all(self.sat(p, env2, times2) for p in parts if not isinstance(p, Action)):
                    return True
            return False
        guard, body = split_guard(f)
        for env2, times2 in self.assignments(guard, _unbind(env, f.vars), _untime(times, f.vars)):
            if all(self.sat(p, env2, times2) for p in guard if not isinstance(p, Action)):
                if not self.sat(body, env2, times2):
                    return False
        return True

    def assignments(self, parts: list[Formula], env: Subst, times: Timepoints) -> Iterator[tuple[Subst, Timepoints]]:
        """Bindings satisfying every action atom among ``parts``."""
        atoms = [p for p in parts if isinstance(p, Action)]
        yield from self._assign(atoms, 0, env, times)

    def _assign(self, atoms: list[Action], i: int, env: Subst, times: Timepoints) -> Iterator[tuple[Subst, Timepoints]]:
        if i == len(atoms):
            yield env, times
            return
        for env2, times2 in self.matches(atoms[i], env, times):
            yield from self._assign(atoms, i + 1, env2, times2)

    def matches(self, atom: Action, env: Subst, times: Timepoints) -> Iterator[tuple[Subst, Timepoints]]:
        if atom.time in times:
            indices = [times[atom.time]]
        else:
            indices = list(range(len(self.actions)))
        pattern = [env.apply(a) for a in atom.fact.args]
        for idx in indices:
            if idx >= len(self.actions):
                continue
            for action in self.actions[idx]:
                if action.name != atom.fact.name or action.arity != atom.fact.arity:
                    continue
                for sigma in self.oracle.unify_all(zip(pattern, action.args), env):
                    bound = dict(times)
                    bound[atom.time] = idx
                    yield sigma, bound

    def _time(self, v: Var, times: Timepoints) -> int:
        if v not in times:
            raise ValueError(f"Unbound timepoint {v}")
        return times[v]


def _unbind(env: Subst, variables: tuple[Var, ...]) -> Subst:
    if not any(v in env for v in variables):
        return env
    return Subst({k: t for k, t in env.items() if k not in variables})


def _untime(times: Timepoints, variables: tuple[Var, ...]) -> Timepoints:
    return {k: t for k, t in times.items() if k not in variables}
