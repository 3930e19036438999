"""Multiset rewriting rules.

A rule ``premises --[actions]-> conclusions`` consumes its linear
premises, emits its actions into the trace and produces its conclusions.
``lets`` are ordered term definitions (each visible to the following
ones) and ``restrict`` holds inline formulas that must hold for an
instance to fire.

Rule variants form a closed enumeration (RuleKind) dispatched by the
forward engine and the backward search through one interface:

  PROTOCOL   honest protocol step
  ADVERSARY  adversary rule (knowledge learning, model-specific attacks)
  CHANNEL    secure-channel leak / inject rules, usually flag-gated
  FRESH      the builtin source of fresh names
"""

from __future__ import annotations

import enum

from pydantic import BaseModel

from symproof.core.facts import FRESH, IN, KNOWS, OUT, Fact, fact
from symproof.core.formulas import Formula, free_vars, substitute
from symproof.core.frozen_collections import DeepFreezeModel
from symproof.core.subst import Subst
from symproof.core.terms import Term, Var, ordered_vars


class RuleKind(str, enum.Enum):
    PROTOCOL = "protocol"
    ADVERSARY = "adversary"
    CHANNEL = "channel"
    FRESH = "fresh"


class LetBinding(BaseModel):
    model_config = {"frozen": True}

    var: Var
    term: Term


class Rule(DeepFreezeModel):
    """A named transition. Static and read-only once the model is loaded."""

    model_config = {"frozen": True}

    name: str
    premises: tuple[Fact, ...] = ()
    actions: tuple[Fact, ...] = ()
    conclusions: tuple[Fact, ...] = ()
    lets: tuple[LetBinding, ...] = ()
    restrict: tuple[Formula, ...] = ()
    kind: RuleKind = RuleKind.PROTOCOL
    flag: str = ""
    unless_flag: str = ""

    def all_facts(self) -> tuple[Fact, ...]:
        return self.premises + self.actions + self.conclusions

    def variables(self) -> list[Var]:
        terms = [a for f in self.all_facts() for a in f.args]
        found = ordered_vars(terms)
        for r in self.restrict:
            for v in sorted(free_vars(r), key=str):
                if v not in found:
                    found.append(v)
        return found

    def premise_vars(self) -> set[Var]:
        return set(ordered_vars(a for f in self.premises for a in f.args))

    def in_vars(self) -> set[Var]:
        """Variables the adversary supplied through In premises."""
        return set(ordered_vars(a for f in self.premises if f.name == IN for a in f.args))

    def expanded(self) -> "Rule":
        """Inline the let bindings left to right."""
        if not self.lets:
            return self
        subst = Subst.empty()
        for binding in self.lets:
            subst = subst.compose(Subst({binding.var: subst.apply(binding.term)}))
        return self.substituted(subst).model_copy(update={"lets": ()})

    def substituted(self, subst: Subst) -> "Rule":
        return Rule(
            name=self.name,
            premises=tuple(f.apply(subst) for f in self.premises),
            actions=tuple(f.apply(subst) for f in self.actions),
            conclusions=tuple(f.apply(subst) for f in self.conclusions),
            lets=self.lets,
            restrict=tuple(substitute(r, subst) for r in self.restrict),
            kind=self.kind,
            flag=self.flag,
            unless_flag=self.unless_flag,
        )

    def renamed(self, suffix: str) -> "Rule":
        """Copy with every variable renamed apart."""
        mapping = {v: Var(name=f"{v.name}.{suffix}", sort=v.sort) for v in self.variables()}
        return self.substituted(Subst(mapping))

    def __str__(self) -> str:
        def show(facts: tuple[Fact, ...]) -> str:
            return ", ".join(str(f) for f in facts)

        return f"{self.name}: [{show(self.premises)}] --[{show(self.actions)}]-> [{show(self.conclusions)}]"


FRESH_RULE = Rule(name="Fresh", conclusions=(fact(FRESH, "~n"),), kind=RuleKind.FRESH)

LEARN_RULE = Rule(
    name="Learn",
    premises=(fact(IN, "x"),),
    actions=(fact(KNOWS, "x"),),
    kind=RuleKind.ADVERSARY,
)


def secure_channel(fact_name: str = "Sec", leak_flag: str = "", inject_flag: str = "") -> list[Rule]:
    """Leak and inject rules for a secure channel fact ``Sec(A, B, m)``.

    Without the rules the channel is confidential and authentic; each rule
    is gated by its flag when one is given.
    """
    return [
        Rule(
            name=f"{fact_name}_Leak",
            premises=(fact(fact_name, "a", "b", "x"),),
            actions=(fact("ChanLeak", "a", "b", "x"),),
            conclusions=(fact(OUT, "x"),),
            kind=RuleKind.CHANNEL,
            flag=leak_flag,
        ),
        Rule(
            name=f"{fact_name}_Inject",
            premises=(fact(IN, ("a", "b", "x")),),
            actions=(fact("ChanInject", "a", "b", "x"),),
            conclusions=(fact(fact_name, "a", "b", "x"),),
            kind=RuleKind.CHANNEL,
            flag=inject_flag,
        ),
    ]
