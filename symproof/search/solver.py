"""Goal solving: the successor systems of one open goal.

For every kind of goal the solver enumerates the alternatives in a fixed
order, cheapest first, and yields simplified child systems lazily so the
prover can stop as soon as a witness turns up:

  ActionGoal        an action of an existing node, then a new rule instance
  PremiseGoal       a conclusion of an existing node, then a new producer
  KnowledgeGoal     public and already derived terms are solved directly;
                    otherwise extraction from an existing output, extraction
                    from a new output, construction, and extraction through
                    a variable position, in that order
  EqualityGoal      one child per unifier
  DisjunctionGoal   one child per disjunct
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator

from symproof.core.facts import FRESH, KNOWS, OUT
from symproof.core.model import ProtocolModel
from symproof.core.rules import LEARN_RULE, Rule
from symproof.core.signature import Signature
from symproof.core.subst import Subst
from symproof.core.terms import PAIR, App, Name, Sort, Term, Var
from symproof.search.goals import (
    ActionGoal,
    DisjunctionGoal,
    EqualityGoal,
    Goal,
    KnowledgeGoal,
    PremiseGoal,
    TemporalEqualityGoal,
)
from symproof.search.system import ConstraintSystem
from symproof.theories.base import Solutions
from symproof.theories.oracle import EquationalOracle
from symproof.theories.rewriting import match_syntactic

logger = logging.getLogger(__name__)

# An extraction site: a subterm of an output and the side terms needed to reach it.
Site = tuple[Term, tuple[Term, ...]]


def extraction_sites(oracle: EquationalOracle, term: Term) -> list[Site]:
    """Every subterm the adversary can reach from ``term`` by destructors."""
    out: list[Site] = []

    def walk(t: Term, sides: tuple[Term, ...]) -> None:
        out.append((t, sides))
        if not isinstance(t, App):
            return
        for d in oracle.decompose(t):
            if d.constructor != t.symbol:
                continue
            sigma = match_syntactic(d.pattern, t)
            if sigma is None:
                continue
            walk(t.args[d.index], sides + tuple(sigma.apply(s) for s in d.side))

    walk(term, ())
    return out


def _is_pair(t: Term) -> bool:
    return isinstance(t, App) and t.symbol == PAIR


class GoalSolver:
    """Successor generation for one resolved model."""

    def __init__(self, model: ProtocolModel, oracle: EquationalOracle) -> None:
        self.model = model
        self.oracle = oracle
        self.signature: Signature = model.signature
        rules = [r.expanded() for r in model.rules]
        self._producers: dict[str, list[tuple[Rule, int]]] = {}
        self._actors: dict[str, list[Rule]] = {KNOWS: [LEARN_RULE]}
        self._outputs: list[tuple[Rule, int, list[tuple[bool, bool]]]] = []
        for rule in rules:
            for j, c in enumerate(rule.conclusions):
                if c.name == OUT:
                    self._outputs.append((rule, j, self._site_kinds(rule, c.args[0])))
                elif c.name != FRESH:
                    self._producers.setdefault(c.name, []).append((rule, j))
            for name in dict.fromkeys(a.name for a in rule.actions):
                self._actors.setdefault(name, []).append(rule)

    def _site_kinds(self, rule: Rule, term: Term) -> list[tuple[bool, bool]]:
        """Per site: (usable, at a variable position)."""
        inputs = rule.in_vars()
        kinds = []
        for sub, _ in extraction_sites(self.oracle, term):
            usable = not _is_pair(sub) and not (isinstance(sub, Var) and sub in inputs)
            kinds.append((usable, isinstance(sub, Var)))
        return kinds

    # -- dispatch ---------------------------------------------------------

    def children(self, system: ConstraintSystem, gid: int, goal: Goal) -> Iterator[ConstraintSystem]:
        """Simplified successors of ``system`` after solving goal ``gid``."""
        base = system.clone()
        base.remove_goal(gid)
        if isinstance(goal, ActionGoal):
            yield from self._action(system, base, goal)
        elif isinstance(goal, PremiseGoal):
            yield from self._premise(system, base, goal)
        elif isinstance(goal, KnowledgeGoal):
            yield from self._knowledge(system, base, goal)
        elif isinstance(goal, (EqualityGoal, TemporalEqualityGoal)):
            for sigma in self._unifiers(system, [(goal.left, goal.right)], base.subst):
                child = base.clone()
                child.subst = sigma
                yield from self._settle(system, child)
        elif isinstance(goal, DisjunctionGoal):
            for item in goal.items:
                child = base.clone()
                child.add_formula(item)
                yield from self._settle(system, child)
        else:
            raise TypeError(f"Unknown goal {goal!r}")

    def finalize(self, system: ConstraintSystem) -> list[ConstraintSystem] | None:
        """Re-open deferred knowledge goals whose variables got constrained.

        Returns None when the system is solved as it stands.
        """
        reopened = system.clone()
        reopened.deferred = []
        changed = False
        for g in system.deferred:
            t = system.resolve(g.term)
            if self._unconstrained(system, t):
                reopened.deferred.append(g)
            else:
                reopened.add_goal(g)
                changed = True
        if not changed:
            return None
        logger.debug("Reopened deferred knowledge goals of a solved system")
        return self._settle(system, reopened)

    def _settle(self, parent: ConstraintSystem, child: ConstraintSystem) -> list[ConstraintSystem]:
        """Simplify a successor; dropped merge variants make ``parent`` incomplete."""
        variants = child.simplify()
        if child.lost_unifiers:
            parent.incomplete = True
        return variants

    def _unifiers(
        self,
        parent: ConstraintSystem,
        equations: Iterable[tuple[Term, Term]],
        subst: Subst,
    ) -> Solutions:
        unifiers = self.oracle.unify_all(equations, subst)
        if not unifiers.complete:
            logger.debug("Unifier set truncated; branch is not exhaustive")
            parent.incomplete = True
        return unifiers

    # -- actions and premises ---------------------------------------------

    def _action(
        self,
        parent: ConstraintSystem,
        base: ConstraintSystem,
        goal: ActionGoal,
    ) -> Iterator[ConstraintSystem]:
        f = goal.fact
        for nid in sorted(base.nodes):
            node = base.nodes[nid]
            for act in node.rule.actions:
                if act.name != f.name or act.arity != f.arity:
                    continue
                eqs = list(zip(f.args, act.args)) + [(goal.time, node.time)]
                for sigma in self._unifiers(parent, eqs, base.subst):
                    child = base.clone()
                    child.subst = sigma
                    yield from self._settle(parent, child)
        for rule in self._actors.get(f.name, ()):
            for j, act in enumerate(rule.actions):
                if act.name != f.name or act.arity != f.arity:
                    continue
                start = base.clone()
                inst, renaming = start.instance(rule)
                node = start.add_node(inst, renaming)
                if start.dead:
                    continue
                eqs = list(zip(f.args, inst.actions[j].args)) + [(goal.time, node.time)]
                for sigma in self._unifiers(parent, eqs, start.subst):
                    child = start.clone()
                    child.subst = sigma
                    yield from self._settle(parent, child)

    def _premise(
        self,
        parent: ConstraintSystem,
        base: ConstraintSystem,
        goal: PremiseGoal,
    ) -> Iterator[ConstraintSystem]:
        target = base.nodes[goal.node]
        f = goal.fact
        used = base.used_conclusions()
        for nid in sorted(base.nodes):
            if nid == goal.node:
                continue
            src = base.nodes[nid]
            for j, c in enumerate(src.rule.conclusions):
                if c.name != f.name or c.arity != f.arity:
                    continue
                if not c.persistent and (nid, j) in used:
                    continue
                for sigma in self._unifiers(parent, zip(f.args, c.args), base.subst):
                    child = base.clone()
                    child.subst = sigma
                    child.edges.add((nid, j, goal.node, goal.index))
                    child.less.add((src.time, target.time))
                    yield from self._settle(parent, child)
        for rule, j in self._producers.get(f.name, ()):
            if rule.conclusions[j].arity != f.arity:
                continue
            start = base.clone()
            inst, renaming = start.instance(rule)
            src = start.add_node(inst, renaming)
            if start.dead:
                continue
            for sigma in self._unifiers(parent, zip(f.args, inst.conclusions[j].args), start.subst):
                child = start.clone()
                child.subst = sigma
                child.edges.add((src.id, j, goal.node, goal.index))
                child.less.add((src.time, target.time))
                yield from self._settle(parent, child)

    # -- adversary knowledge ----------------------------------------------

    def _public(self, system: ConstraintSystem, t: Term) -> bool:
        if isinstance(t, Name):
            return not (t.is_fresh and system.is_honest(t))
        if isinstance(t, Var):
            return t.sort == Sort.PUB
        return isinstance(t, App) and not t.args and not self.signature.is_private(t.symbol)

    def _unconstrained(self, system: ConstraintSystem, t: Term) -> bool:
        if not isinstance(t, Var):
            return False
        return t.sort == Sort.MSG or (t.sort == Sort.FRESH and not system.is_honest(t))

    def _knowledge(
        self,
        parent: ConstraintSystem,
        base: ConstraintSystem,
        goal: KnowledgeGoal,
    ) -> Iterator[ConstraintSystem]:
        t = base.resolve(goal.term)
        before = goal.before
        for known, when in base.kderiv:
            if base.resolve(known) == t:
                base.less.add((when, before))
                yield from self._settle(parent, base)
                return
        if self._public(base, t):
            yield from self._settle(parent, base)
            return
        if self._unconstrained(base, t):
            base.deferred.append(KnowledgeGoal(term=t, before=before))
            yield from self._settle(parent, base)
            return
        if _is_pair(t):
            for a in t.args:
                base.add_goal(KnowledgeGoal(term=a, before=before))
            yield from self._settle(parent, base)
            return

        k = base.new_time("k")
        base.kderiv.append((t, k))
        base.less.add((k, before))
        if isinstance(t, App) and self.oracle.theory_for(t.symbol) is not None:
            # Theory-headed targets are only searched syntactically.
            parent.incomplete = True
            base.incomplete = True

        yield from self._extract_existing(parent, base, t, k)
        yield from self._extract_new(parent, base, t, k, at_vars=False)
        if isinstance(t, App) and t.args and not self.signature.is_private(t.symbol):
            child = base.clone()
            for a in t.args:
                child.add_goal(KnowledgeGoal(term=a, before=k))
            yield from self._settle(parent, child)
        yield from self._extract_new(parent, base, t, k, at_vars=True)

    def _extract_existing(
        self,
        parent: ConstraintSystem,
        base: ConstraintSystem,
        t: Term,
        k: Var,
    ) -> Iterator[ConstraintSystem]:
        for nid in sorted(base.nodes):
            node = base.nodes[nid]
            inputs = {base.resolve(v) for v in node.rule.in_vars()}
            for c in node.rule.conclusions:
                if c.name != OUT:
                    continue
                for sub, sides in extraction_sites(self.oracle, base.resolve(c.args[0])):
                    if _is_pair(sub) or (isinstance(sub, Var) and sub in inputs):
                        continue
                    for sigma in self._unifiers(parent, [(sub, t)], base.subst):
                        child = base.clone()
                        child.subst = sigma
                        child.less.add((node.time, k))
                        for s in sides:
                            child.add_goal(KnowledgeGoal(term=s, before=k))
                        yield from self._settle(parent, child)

    def _extract_new(
        self,
        parent: ConstraintSystem,
        base: ConstraintSystem,
        t: Term,
        k: Var,
        at_vars: bool,
    ) -> Iterator[ConstraintSystem]:
        for rule, j, kinds in self._outputs:
            wanted = [i for i, (usable, is_var) in enumerate(kinds) if usable and is_var == at_vars]
            if not wanted:
                continue
            start = base.clone()
            inst, renaming = start.instance(rule)
            node = start.add_node(inst, renaming)
            if start.dead:
                continue
            sites = extraction_sites(self.oracle, inst.conclusions[j].args[0])
            for i in wanted:
                sub, sides = sites[i]
                for sigma in self._unifiers(parent, [(sub, t)], start.subst):
                    child = start.clone()
                    child.subst = sigma
                    child.less.add((node.time, k))
                    for s in sides:
                        child.add_goal(KnowledgeGoal(term=s, before=k))
                    yield from self._settle(parent, child)

