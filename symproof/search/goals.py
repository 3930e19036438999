"""Open goals of a constraint system.

Each goal is a small frozen record. Goals are stored unsubstituted; the
system's global substitution is applied whenever a goal is rendered or
solved, so a goal never goes stale when variables get bound.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from symproof.core.facts import Fact
from symproof.core.formulas import Formula, substitute
from symproof.core.subst import Subst
from symproof.core.terms import Term, Var


@dataclass(frozen=True)
class ActionGoal:
    """``fact @ time`` must occur in the trace."""

    fact: Fact
    time: Var


@dataclass(frozen=True)
class PremiseGoal:
    """Premise ``index`` of node ``node`` needs a source conclusion."""

    node: int
    index: int
    fact: Fact


@dataclass(frozen=True)
class KnowledgeGoal:
    """The adversary must derive ``term`` strictly before ``before``."""

    term: Term
    before: Var


@dataclass(frozen=True)
class EqualityGoal:
    left: Term
    right: Term


@dataclass(frozen=True)
class TemporalEqualityGoal:
    left: Var
    right: Var


@dataclass(frozen=True)
class DisjunctionGoal:
    items: tuple[Formula, ...]


Goal = Union[ActionGoal, PremiseGoal, KnowledgeGoal, EqualityGoal, TemporalEqualityGoal, DisjunctionGoal]


def render(goal: Goal, subst: Subst | None = None) -> str:
    """Human-readable goal under ``subst``; tactics match against this text."""
    s = subst or Subst.empty()
    if isinstance(goal, ActionGoal):
        return f"Action: {goal.fact.apply(s)} @ {s.apply(goal.time)}"
    if isinstance(goal, PremiseGoal):
        return f"Premise: {goal.fact.apply(s)} of node {goal.node}#{goal.index}"
    if isinstance(goal, KnowledgeGoal):
        return f"KU: {s.apply(goal.term)} before {s.apply(goal.before)}"
    if isinstance(goal, EqualityGoal):
        return f"Eq: {s.apply(goal.left)} = {s.apply(goal.right)}"
    if isinstance(goal, TemporalEqualityGoal):
        return f"TEq: {s.apply(goal.left)} = {s.apply(goal.right)}"
    return "Disj: " + " | ".join(str(substitute(i, s)) for i in goal.items)
