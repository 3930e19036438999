"""Concrete traces: the witnesses reported for lemmas.

A Trace is an ordered list of rule applications. Each step records the
rule name, the timepoint label it had in the search, the substitution
and the instantiated premises, actions and conclusions. Traces are
frozen Pydantic models and round-trip through JSON.
"""

from __future__ import annotations

from pydantic import BaseModel

from symproof.core.facts import Fact
from symproof.core.subst import Subst
from symproof.core.terms import Term, Var


class TraceStep(BaseModel):
    model_config = {"frozen": True}

    index: int
    rule: str
    timepoint: str = ""
    substitution: tuple[tuple[Var, Term], ...] = ()
    premises: tuple[Fact, ...] = ()
    actions: tuple[Fact, ...] = ()
    conclusions: tuple[Fact, ...] = ()

    def subst(self) -> Subst:
        return Subst(dict(self.substitution))

    def format(self) -> str:
        acts = ", ".join(str(a) for a in self.actions)
        label = f" {self.timepoint}" if self.timepoint else ""
        line = f"{self.index:>3}. {self.rule}{label}"
        return f"{line} --[{acts}]->" if acts else line


class Trace(BaseModel):
    """An ordered list of rule applications."""

    model_config = {"frozen": True}

    steps: tuple[TraceStep, ...] = ()

    def __len__(self) -> int:
        return len(self.steps)

    def actions(self) -> list[tuple[Fact, ...]]:
        """Action lists by timepoint, the shape trace_check.holds expects."""
        return [s.actions for s in self.steps]

    def rule_names(self) -> list[str]:
        return [s.rule for s in self.steps]

    def format(self) -> str:
        if not self.steps:
            return "(empty trace)"
        return "\n".join(s.format() for s in self.steps)
