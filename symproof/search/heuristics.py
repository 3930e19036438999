"""Goal selection.

The default ranking solves cheap, deterministic goals first:

  0  equalities (term and timepoint)
  1  actions and disjunctions
  2  premises
  3  adversary knowledge of a compound term
  4  adversary knowledge of a variable

Ties go to the oldest goal. A tactic moves goals whose rendering matches
one of its ``prio`` patterns ahead of everything else, and goals matching
a ``deprio`` pattern behind everything else.
"""

from __future__ import annotations

import re

from symproof.core.model import Tactic
from symproof.core.terms import Var
from symproof.search.goals import (
    ActionGoal,
    DisjunctionGoal,
    EqualityGoal,
    Goal,
    KnowledgeGoal,
    PremiseGoal,
    TemporalEqualityGoal,
    render,
)
from symproof.search.system import ConstraintSystem


def default_rank(goal: Goal, system: ConstraintSystem) -> int:
    if isinstance(goal, (EqualityGoal, TemporalEqualityGoal)):
        return 0
    if isinstance(goal, (ActionGoal, DisjunctionGoal)):
        return 1
    if isinstance(goal, PremiseGoal):
        return 2
    if isinstance(goal, KnowledgeGoal):
        return 4 if isinstance(system.resolve(goal.term), Var) else 3
    return 5


class GoalRanker:
    """Picks the next goal of a system, optionally steered by a tactic."""

    def __init__(self, tactic: Tactic | None = None) -> None:
        self.tactic = tactic
        self._prio = [re.compile(p) for p in tactic.prio] if tactic else []
        self._deprio = [re.compile(p) for p in tactic.deprio] if tactic else []

    def band(self, goal: Goal, system: ConstraintSystem) -> int:
        if not self._prio and not self._deprio:
            return 1
        text = render(goal, system.subst)
        if any(p.search(text) for p in self._prio):
            return 0
        if any(p.search(text) for p in self._deprio):
            return 2
        return 1

    def select(self, system: ConstraintSystem) -> tuple[int, Goal] | None:
        """The (goal id, goal) to solve next, or None if no goal is open."""
        if not system.goals:
            return None
        return min(
            system.goals,
            key=lambda item: (self.band(item[1], system), default_rank(item[1], system), item[0]),
        )
