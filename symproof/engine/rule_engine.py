"""Forward execution of multiset rewriting rules.

ForwardState is a concrete protocol state: the fact store, the adversary
knowledge, the fresh names drawn so far and the trace that led here.
Transitions never mutate a state; ``fire`` computes the successor on a
copy, so a linear fact instance is consumed by exactly one step.

Firing a rule instance:
1. Premises are checked in order. ``Fr`` premises consume a fact produced
   by the Fresh rule or draw a name never used before. ``In`` premises
   must be derivable by the adversary. Other premises are consumed from
   the store (persistent ones are only checked).
2. Let bindings are inlined (Rule.expanded).
3. Inline restrictions must hold, otherwise the instance is discarded.
4. Conclusions are produced; ``Out`` conclusions extend the adversary
   knowledge.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterator

from symproof.core.facts import FRESH, IN, OUT, Fact, FactStore
from symproof.core.formulas import substitute
from symproof.core.model import ProtocolModel
from symproof.core.rules import FRESH_RULE, LEARN_RULE, Rule
from symproof.core.subst import Subst
from symproof.core.terms import Name, Sort, fresh, is_ground, pub
from symproof.engine.knowledge import AdversaryKnowledge
from symproof.lemmas.trace_check import holds
from symproof.reports.trace import Trace, TraceStep
from symproof.theories.oracle import EquationalOracle

logger = logging.getLogger(__name__)

BUILTIN_RULES = {FRESH_RULE.name: FRESH_RULE, LEARN_RULE.name: LEARN_RULE}


class ForwardError(ValueError):
    """Raised when a rule instance cannot fire in a state."""


class ForwardState:
    """A concrete state reached by a sequence of rule applications."""

    def __init__(self, model: ProtocolModel, oracle: EquationalOracle | None = None) -> None:
        self.model = model
        self.oracle = oracle or EquationalOracle(model.signature)
        self.store = FactStore()
        self.knowledge = AdversaryKnowledge(self.oracle)
        self.steps: list[TraceStep] = []
        self.used_fresh: set[Name] = set()
        self.used_public: set[Name] = set()
        self._rules = [r.expanded() for r in model.rules]

    def clone(self) -> "ForwardState":
        new = ForwardState.__new__(ForwardState)
        new.model = self.model
        new.oracle = self.oracle
        new.store = self.store.clone()
        new.knowledge = self.knowledge.clone()
        new.steps = list(self.steps)
        new.used_fresh = set(self.used_fresh)
        new.used_public = set(self.used_public)
        new._rules = self._rules
        return new

    @property
    def trace(self) -> Trace:
        return Trace(steps=tuple(self.steps))

    def rule(self, name: str) -> Rule:
        if name in BUILTIN_RULES:
            return BUILTIN_RULES[name]
        for r in self._rules:
            if r.name == name:
                return r
        raise KeyError(f"Unknown rule '{name}'")

    def _normal(self, f: Fact, subst: Subst) -> Fact:
        return Fact(name=f.name, args=tuple(self.oracle.normalize(subst.apply(a)) for a in f.args))

    def fire(self, rule: Rule, subst: Subst, timepoint: str = "") -> "ForwardState":
        """The successor state after firing ``rule`` under ``subst``."""
        rule = rule.expanded()
        new = self.clone()
        premises = [self._normal(p, subst) for p in rule.premises]
        actions = [self._normal(a, subst) for a in rule.actions]
        conclusions = [self._normal(c, subst) for c in rule.conclusions]
        for f in premises + actions + conclusions:
            if not all(is_ground(a) for a in f.args):
                raise ForwardError(f"{rule.name}: {f} is not ground")

        for p in premises:
            if p.name == FRESH:
                name = p.args[0]
                if not isinstance(name, Name) or not name.is_fresh:
                    raise ForwardError(f"{rule.name}: {p} does not carry a fresh name")
                if not new.store.consume(p):
                    if name in new.used_fresh:
                        raise ForwardError(f"{rule.name}: fresh name {name} reused")
                    new.used_fresh.add(name)
                new.knowledge.mark_honest(name)
            elif p.name == IN:
                if not new.knowledge.derivable(p.args[0]):
                    raise ForwardError(f"{rule.name}: adversary cannot derive {p.args[0]}")
            elif not new.store.consume(p):
                raise ForwardError(f"{rule.name}: premise {p} not available")

        for r in rule.restrict:
            if not holds(substitute(r, subst), [], self.oracle):
                raise ForwardError(f"{rule.name}: restriction {r} violated")

        for c in conclusions:
            if c.name == OUT:
                new.knowledge.add(c.args[0])
                continue
            if c.name == FRESH:
                name = c.args[0]
                if name in new.used_fresh:
                    raise ForwardError(f"{rule.name}: fresh name {name} reused")
                new.used_fresh.add(name)
                new.knowledge.mark_honest(name)
            new.store.produce(c)

        for _, t in subst.items():
            if isinstance(t, Name) and not t.is_fresh:
                new.used_public.add(t)
        bindings = tuple(sorted(subst.items(), key=lambda kv: str(kv[0])))
        new.steps.append(TraceStep(
            index=len(new.steps),
            rule=rule.name,
            timepoint=timepoint,
            substitution=bindings,
            premises=tuple(premises),
            actions=tuple(actions),
            conclusions=tuple(conclusions),
        ))
        return new

    # -- enumeration ------------------------------------------------------

    def applicable_instances(self) -> Iterator[tuple[Rule, Subst, "ForwardState"]]:
        """Every (rule, substitution, successor) enabled in this state."""
        for rule in self._rules:
            for subst in self._premise_matches(rule, 0, Subst.empty(), Counter()):
                subst = self._complete(rule, subst)
                try:
                    successor = self.fire(rule, subst)
                except ForwardError as exc:
                    logger.debug("Discarding instance: %s", exc)
                    continue
                yield rule, subst, successor

    def _premise_matches(self, rule: Rule, i: int, subst: Subst, used: Counter) -> Iterator[Subst]:
        if i == len(rule.premises):
            yield subst
            return
        p = rule.premises[i]
        if p.name == FRESH:
            yield from self._premise_matches(rule, i + 1, subst, used)
        elif p.name == IN:
            for sigma in self.knowledge.instances(p.args[0], subst):
                yield from self._premise_matches(rule, i + 1, sigma, used)
        else:
            for sigma, stored in self.store.match_pattern(p, self.oracle, subst):
                if not stored.persistent and used[stored] >= self.store.count(stored):
                    continue
                used[stored] += 1
                yield from self._premise_matches(rule, i + 1, sigma, used)
                used[stored] -= 1

    def _complete(self, rule: Rule, subst: Subst) -> Subst:
        """Bind fresh variables to new names and leftover pub variables to new agents."""
        taken = set(self.used_fresh) | set(self.used_public)
        for v in rule.variables():
            if v in subst:
                continue
            if v.sort == Sort.FRESH:
                name = self._new_name(fresh, taken, v.name)
            elif v.sort == Sort.PUB:
                name = self._new_name(pub, taken, v.name)
            else:
                continue
            taken.add(name)
            subst = subst.bind(v, name)
        return subst

    def _new_name(self, make, used: set[Name], hint: str) -> Name:
        k = 1
        while make(f"{hint}{k}") in used:
            k += 1
        return make(f"{hint}{k}")


def simulate(model: ProtocolModel, steps: int, oracle: EquationalOracle | None = None) -> Trace:
    """Run up to ``steps`` transitions, preferring the least-fired rule."""
    state = ForwardState(model, oracle)
    fired: Counter[str] = Counter()
    order = {r.name: i for i, r in enumerate(model.rules)}
    for _ in range(steps):
        options = list(state.applicable_instances())
        if not options:
            logger.info("No rule applicable after %d step(s)", len(state.steps))
            break
        rule, _, successor = min(options, key=lambda o: (fired[o[0].name], order.get(o[0].name, 0)))
        fired[rule.name] += 1
        state = successor
    return state.trace
