"""Constraint systems of the backward search.

A ConstraintSystem describes a set of partial traces:

  nodes        rule instances, each with its own temporal variable
  edges        (source, conclusion, target, premise) links
  less         ordering constraints between temporal variables
  subst        the global substitution
  neqs/tneqs   term and timepoint disequalities
  universals   pending guarded formulas ``All x. guard ==> body``
  goals        open goals, numbered in creation order
  kderiv       (term, time) of every adversary derivation in the system
  deferred     knowledge goals on unconstrained variables

Systems are mutated only while they are being built; every search step
works on a ``clone()``. ``simplify`` brings a system to a normal form and
returns the surviving variants (none when the system is contradictory,
several when merging two nodes has several unifiers).
"""

from __future__ import annotations

import heapq
import itertools
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable

from symproof.core.facts import FRESH, IN, Fact
from symproof.core.formulas import (
    Action,
    And,
    Bottom,
    Exists,
    Forall,
    Formula,
    Implies,
    Less,
    Not,
    Or,
    TermEq,
    TimeEq,
    Top,
    conj,
    implies,
    nnf,
    rename_bound,
    split_guard,
    substitute,
)
from symproof.core.rules import FRESH_RULE, Rule
from symproof.core.subst import Subst
from symproof.core.terms import Sort, Term, Var, fresh, map_vars, ordered_vars, pub
from symproof.reports.trace import Trace, TraceStep
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
from symproof.theories.oracle import EquationalOracle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Node:
    """A rule instance. ``renaming`` maps the rule's own variables to this instance."""

    id: int
    rule: Rule
    time: Var
    renaming: tuple[tuple[Var, Term], ...] = ()


class ConstraintSystem:
    """One state of the backward search."""

    def __init__(self, oracle: EquationalOracle) -> None:
        self.oracle = oracle
        self.nodes: dict[int, Node] = {}
        self.subst = Subst.empty()
        self.goals: list[tuple[int, Goal]] = []
        self.edges: set[tuple[int, int, int, int]] = set()
        self.less: set[tuple[Var, Var]] = set()
        self.neqs: list[tuple[Term, Term]] = []
        self.tneqs: list[tuple[Var, Var]] = []
        self.universals: list[Forall] = []
        self.instantiated: set[tuple] = set()
        self.kderiv: list[tuple[Term, Var]] = []
        self.deferred: list[KnowledgeGoal] = []
        self.incomplete = False
        self.lost_unifiers = False
        self.dead: str | None = None
        self._counter = 0

    def clone(self) -> "ConstraintSystem":
        new = ConstraintSystem.__new__(ConstraintSystem)
        new.oracle = self.oracle
        new.nodes = dict(self.nodes)
        new.subst = self.subst
        new.goals = list(self.goals)
        new.edges = set(self.edges)
        new.less = set(self.less)
        new.neqs = list(self.neqs)
        new.tneqs = list(self.tneqs)
        new.universals = list(self.universals)
        new.instantiated = set(self.instantiated)
        new.kderiv = list(self.kderiv)
        new.deferred = list(self.deferred)
        new.incomplete = self.incomplete
        new.lost_unifiers = False
        new.dead = self.dead
        new._counter = self._counter
        return new

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    def kill(self, reason: str) -> None:
        if self.dead is None:
            logger.debug("Pruned: %s", reason)
        self.dead = reason

    # -- resolution -------------------------------------------------------

    def resolve(self, term: Term) -> Term:
        return self.oracle.apply(self.subst, term)

    def resolve_time(self, v: Var) -> Var:
        t = self.subst.apply(v)
        if not isinstance(t, Var):
            raise ValueError(f"Timepoint {v} bound to non-variable {t}")
        return t

    def resolve_fact(self, f: Fact) -> Fact:
        return Fact(name=f.name, args=tuple(self.resolve(a) for a in f.args))

    def new_time(self, hint: str = "k") -> Var:
        return Var(name=f"{hint}{self._next()}", sort=Sort.TEMPORAL)

    # -- building ---------------------------------------------------------

    def add_goal(self, goal: Goal) -> None:
        self.goals.append((self._next(), goal))

    def remove_goal(self, gid: int) -> None:
        self.goals = [(i, g) for i, g in self.goals if i != gid]

    def instance(self, rule: Rule) -> tuple[Rule, tuple[tuple[Var, Term], ...]]:
        """A copy of ``rule`` with variables renamed apart for this system."""
        rule = rule.expanded()
        suffix = str(self._next())
        renaming = {v: Var(name=f"{v.name}.{suffix}", sort=v.sort) for v in rule.variables()}
        return rule.substituted(Subst(renaming)), tuple(renaming.items())

    def add_node(self, rule: Rule, renaming: tuple[tuple[Var, Term], ...] = ()) -> Node:
        """Add an instance produced by ``instance`` together with its goals."""
        nid = self._next()
        node = Node(id=nid, rule=rule, time=Var(name=f"t{nid}", sort=Sort.TEMPORAL), renaming=renaming)
        self.nodes[nid] = node
        for i, p in enumerate(rule.premises):
            if p.name == FRESH:
                self._add_fresh_source(node, i, p.args[0])
            elif p.name == IN:
                self.add_goal(KnowledgeGoal(term=p.args[0], before=node.time))
            else:
                self.add_goal(PremiseGoal(node=nid, index=i, fact=p))
        for r in rule.restrict:
            self.add_formula(nnf(r))
        return node

    def _add_fresh_source(self, node: Node, index: int, value: Term) -> None:
        n = FRESH_RULE.conclusions[0].args[0]
        src = self.add_node(FRESH_RULE.substituted(Subst({n: value})), ((n, value),))
        self.edges.add((src.id, 0, node.id, index))
        self.less.add((src.time, node.time))

    def add_formula(self, f: Formula) -> None:
        """Add a formula in negation normal form."""
        if isinstance(f, Action):
            self.add_goal(ActionGoal(fact=f.fact, time=f.time))
        elif isinstance(f, Less):
            self.less.add((f.left, f.right))
        elif isinstance(f, TimeEq):
            self.add_goal(TemporalEqualityGoal(left=f.left, right=f.right))
        elif isinstance(f, TermEq):
            self.add_goal(EqualityGoal(left=f.left, right=f.right))
        elif isinstance(f, Top):
            return
        elif isinstance(f, Bottom):
            self.kill("false")
        elif isinstance(f, Not):
            if isinstance(f.body, TermEq):
                self.neqs.append((f.body.left, f.body.right))
            elif isinstance(f.body, TimeEq):
                self.tneqs.append((f.body.left, f.body.right))
            else:
                raise ValueError(f"Formula not in negation normal form: {f}")
        elif isinstance(f, And):
            for item in f.items:
                self.add_formula(item)
        elif isinstance(f, Or):
            self.add_goal(DisjunctionGoal(items=f.items))
        elif isinstance(f, Implies):
            self.add_formula(nnf(f))
        elif isinstance(f, Exists):
            _, body = rename_bound(f, str(self._next()))
            self.add_formula(body)
        elif isinstance(f, Forall):
            self.universals.append(f)

    # -- queries ----------------------------------------------------------

    def fresh_values(self) -> list[Term]:
        return [
            self.resolve(n.rule.conclusions[0].args[0])
            for n in self.nodes.values()
            if n.rule.name == FRESH_RULE.name
        ]

    def is_honest(self, term: Term) -> bool:
        """Whether ``term`` is a fresh value drawn by some node."""
        return term in self.fresh_values()

    def used_conclusions(self) -> set[tuple[int, int]]:
        return {(s, c) for s, c, _, _ in self.edges}

    def premise_sources(self, node: int) -> dict[int, tuple[int, int]]:
        return {p: (s, c) for s, c, d, p in self.edges if d == node}

    # -- simplification ---------------------------------------------------

    def simplify(self) -> list["ConstraintSystem"]:
        """Normal form: merged nodes, checked constraints, instantiated universals.

        Sets ``lost_unifiers`` when a bounded unification dropped variants,
        even if none of the returned systems survives.
        """
        work = [self]
        done: list[ConstraintSystem] = []
        while work:
            s = work.pop()
            if s.dead:
                continue
            merged = s._merge_collision()
            self.lost_unifiers = self.lost_unifiers or s.lost_unifiers
            if merged is not None:
                work.extend(reversed(merged))
                continue
            if s._violated():
                continue
            instantiated = s._instantiate_universals()
            self.lost_unifiers = self.lost_unifiers or s.lost_unifiers
            if instantiated:
                work.append(s)
                continue
            done.append(s)
        return done

    def _merge_collision(self) -> list["ConstraintSystem"] | None:
        by_time: dict[Var, int] = {}
        for nid in sorted(self.nodes):
            t = self.resolve_time(self.nodes[nid].time)
            if t in by_time:
                return self._merge(by_time[t], nid)
            by_time[t] = nid
        return None

    def _merge(self, keep: int, drop: int) -> list["ConstraintSystem"]:
        a, b = self.nodes[keep], self.nodes[drop]
        fa, fb = a.rule.all_facts(), b.rule.all_facts()
        if a.rule.name != b.rule.name or len(fa) != len(fb):
            self.kill(f"nodes {keep} and {drop} share a timepoint")
            return []
        eqs: list[tuple[Term, Term]] = []
        for x, y in zip(fa, fb):
            eqs.extend(zip(x.args, y.args))
        sources_a = self.premise_sources(keep)
        for prem, (src_b, _) in self.premise_sources(drop).items():
            if prem in sources_a and sources_a[prem][0] != src_b:
                eqs.append((self.nodes[src_b].time, self.nodes[sources_a[prem][0]].time))
        unifiers = self.oracle.unify_all(eqs, self.subst)
        if not unifiers.complete:
            self._lose_unifiers()
        results = []
        for sigma in unifiers:
            child = self.clone()
            child.subst = sigma
            child._absorb(keep, drop)
            results.append(child)
        return results

    def _lose_unifiers(self) -> None:
        logger.debug("Bounded unification dropped variants; marking system incomplete")
        self.incomplete = True
        self.lost_unifiers = True

    def _absorb(self, keep: int, drop: int) -> None:
        del self.nodes[drop]
        self.edges = {
            (keep if s == drop else s, c, keep if d == drop else d, p)
            for s, c, d, p in self.edges
        }
        solved = set(self.premise_sources(keep))
        pending = {g.index for _, g in self.goals if isinstance(g, PremiseGoal) and g.node == keep}
        goals: list[tuple[int, Goal]] = []
        for gid, g in self.goals:
            if isinstance(g, PremiseGoal) and g.node == drop:
                if g.index in solved or g.index in pending:
                    continue
                g = PremiseGoal(node=keep, index=g.index, fact=self.nodes[keep].rule.premises[g.index])
                pending.add(g.index)
            goals.append((gid, g))
        self.goals = goals

    def _violated(self) -> bool:
        for a, b in self.neqs:
            if self.resolve(a) == self.resolve(b):
                self.kill(f"disequality {a} != {b} violated")
                return True
        for a, b in self.tneqs:
            if self.resolve_time(a) == self.resolve_time(b):
                self.kill(f"timepoints {a} and {b} must differ")
                return True
        graph: dict[Var, set[Var]] = {}
        for a, b in self.less:
            ra, rb = self.resolve_time(a), self.resolve_time(b)
            if ra == rb:
                self.kill(f"{ra} < {ra}")
                return True
            graph.setdefault(ra, set()).add(rb)
        if _has_cycle(graph):
            self.kill("ordering cycle")
            return True
        values = self.fresh_values()
        if len(set(values)) != len(values):
            self.kill("fresh value drawn twice")
            return True
        uses = Counter(
            (s, c) for s, c, _, _ in self.edges
            if s in self.nodes and not self.nodes[s].rule.conclusions[c].persistent
        )
        if any(n > 1 for n in uses.values()):
            self.kill("linear conclusion consumed twice")
            return True
        return False

    def _instantiate_universals(self) -> bool:
        changed = False
        for ui, u in enumerate(self.universals):
            guard, body = split_guard(u)
            atoms = [g for g in guard if isinstance(g, Action)]
            conds = [g for g in guard if not isinstance(g, Action)]
            candidates: list[list[int]] = []
            for atom in atoms:
                cands = [
                    nid for nid in sorted(self.nodes)
                    if any(_same_head(a, atom.fact) for a in self.nodes[nid].rule.actions)
                ]
                candidates.append(cands)
            for combo in itertools.product(*candidates):
                key = (ui, combo)
                if key in self.instantiated:
                    continue
                self.instantiated.add(key)
                formula = self._instance_formula(u, atoms, conds, body, combo)
                if formula is None:
                    continue
                self.add_formula(formula)
                changed = True
                if self.dead:
                    return True
        return changed

    def _instance_formula(
        self,
        u: Forall,
        atoms: list[Action],
        conds: list[Formula],
        body: Formula,
        combo: tuple[int, ...],
    ) -> Formula | None:
        suffix = str(self._next())
        bound = tuple(Var(name=f"{v.name}.{suffix}", sort=v.sort) for v in u.vars)
        bound_set = set(bound)
        ren = Subst(dict(zip(u.vars, bound)))
        choices = [
            [a for a in self.nodes[nid].rule.actions if _same_head(a, atom.fact)]
            for atom, nid in zip(atoms, combo)
        ]
        instances: list[Formula] = []
        for picked in itertools.product(*choices):
            eqs: list[tuple[Term, Term]] = []
            for atom, nid, act in zip(atoms, combo, picked):
                renamed = substitute(atom, ren)
                eqs.extend(zip(renamed.fact.args, act.args))
                eqs.append((renamed.time, self.nodes[nid].time))
            unifiers = self.oracle.unify_all(eqs, self.subst)
            if not unifiers.complete:
                self._lose_unifiers()
            for sigma in unifiers:
                conditions = [
                    (v, t) for v, t in sigma.items()
                    if v not in bound_set and v not in self.subst
                ]
                if any(set(ordered_vars([t])) & bound_set for _, t in conditions):
                    self.incomplete = True
                    continue
                inst = Subst({v: sigma.apply(v) for v in bound})
                body_i = substitute(substitute(body, ren), inst)
                premise: list[Formula] = [substitute(substitute(c, ren), inst) for c in conds]
                for v, t in conditions:
                    if v.sort == Sort.TEMPORAL:
                        premise.append(TimeEq(left=v, right=t))
                    else:
                        premise.append(TermEq(left=v, right=t))
                if premise:
                    instances.append(nnf(implies(conj(*premise), body_i)))
                else:
                    instances.append(nnf(body_i))
        if not instances:
            return None
        return conj(*instances)

    # -- identity ---------------------------------------------------------

    def canonical_key(self) -> str:
        """Text identifying the system up to variable renaming and node numbering."""
        order = sorted(self.nodes)
        ids = {nid: i for i, nid in enumerate(order)}
        terms: list[Term] = []
        for nid in order:
            node = self.nodes[nid]
            terms.append(self.resolve_time(node.time))
            for f in node.rule.all_facts():
                terms.extend(self.resolve(a) for a in f.args)
        canon = Subst({v: Var(name=f"v{i}", sort=v.sort) for i, v in enumerate(ordered_vars(terms))})

        def show(t: Term) -> str:
            return str(canon.apply(self.resolve(t)))

        parts = []
        for nid in order:
            node = self.nodes[nid]
            facts = ";".join(
                f.name + "(" + ",".join(show(a) for a in f.args) + ")" for f in node.rule.all_facts()
            )
            parts.append(f"N{ids[nid]}:{node.rule.name}[{facts}]@{show(node.time)}")
        parts.append("E" + ",".join(sorted(f"{ids[s]}.{c}>{ids[d]}.{p}" for s, c, d, p in self.edges)))
        parts.append("L" + ",".join(sorted(f"{show(a)}<{show(b)}" for a, b in self.less)))
        parts.append("D" + ",".join(sorted(f"{show(a)}!={show(b)}" for a, b in self.neqs + self.tneqs)))
        parts.append("K" + ",".join(sorted(f"{show(t)}@{show(k)}" for t, k in self.kderiv)))
        parts.append("F" + ",".join(sorted(f"{show(g.term)}<{show(g.before)}" for g in self.deferred)))
        goal_text = []
        for _, g in self.goals:
            if isinstance(g, PremiseGoal):
                goal_text.append(f"P{ids.get(g.node, -1)}.{g.index}")
            else:
                goal_text.append(render(g, Subst({v: canon.apply(self.resolve(v)) for v in _goal_vars(g)})))
        parts.append("G" + "|".join(sorted(goal_text)))
        parts.append(f"U{len(self.universals)}")
        return "\n".join(parts)

    # -- witnesses --------------------------------------------------------

    def linearize(self) -> list[int]:
        """Node ids in a topological order of the ordering constraints.

        Ties are broken by node creation order.
        """
        node_of = {self.resolve_time(n.time): nid for nid, n in self.nodes.items()}
        succ: dict[Var, set[Var]] = {t: set() for t in node_of}
        indeg: Counter[Var] = Counter()
        for a, b in self.less:
            ra, rb = self.resolve_time(a), self.resolve_time(b)
            succ.setdefault(ra, set())
            succ.setdefault(rb, set())
            if rb not in succ[ra]:
                succ[ra].add(rb)
                indeg[rb] += 1

        def priority(t: Var) -> tuple:
            if t in node_of:
                return (1, node_of[t], "")
            return (0, 0, t.name)

        heap = [(priority(t), t.name, t) for t in succ if indeg[t] == 0]
        heapq.heapify(heap)
        order: list[int] = []
        seen = 0
        while heap:
            _, _, t = heapq.heappop(heap)
            seen += 1
            if t in node_of:
                order.append(node_of[t])
            for nxt in sorted(succ[t], key=lambda v: v.name):
                indeg[nxt] -= 1
                if indeg[nxt] == 0:
                    heapq.heappush(heap, (priority(nxt), nxt.name, nxt))
        if seen != len(succ):
            raise ValueError("ordering constraints are cyclic")
        return order

    def concretize(self) -> Trace:
        """The trace of a solved system with every variable replaced by a name."""

        def ground(v: Var) -> Term:
            if v.sort == Sort.FRESH:
                return fresh(v.name)
            return pub(v.name)

        def concrete(t: Term) -> Term:
            return self.oracle.normalize(map_vars(self.resolve(t), ground))

        def concrete_fact(f: Fact) -> Fact:
            return Fact(name=f.name, args=tuple(concrete(a) for a in f.args))

        steps = []
        for idx, nid in enumerate(self.linearize()):
            node = self.nodes[nid]
            steps.append(TraceStep(
                index=idx,
                rule=node.rule.name,
                timepoint=str(self.resolve_time(node.time)),
                substitution=tuple((v, concrete(t)) for v, t in node.renaming),
                premises=tuple(concrete_fact(f) for f in node.rule.premises),
                actions=tuple(concrete_fact(f) for f in node.rule.actions),
                conclusions=tuple(concrete_fact(f) for f in node.rule.conclusions),
            ))
        return Trace(steps=tuple(steps))


def _same_head(a: Fact, b: Fact) -> bool:
    return a.name == b.name and a.arity == b.arity


def _goal_vars(goal: Goal) -> list[Var]:
    if isinstance(goal, ActionGoal):
        return ordered_vars(list(goal.fact.args) + [goal.time])
    if isinstance(goal, KnowledgeGoal):
        return ordered_vars([goal.term, goal.before])
    if isinstance(goal, (EqualityGoal, TemporalEqualityGoal)):
        return ordered_vars([goal.left, goal.right])
    return []


def _has_cycle(graph: dict[Var, set[Var]]) -> bool:
    white, grey, black = 0, 1, 2
    color: dict[Var, int] = {}
    for start in graph:
        if color.get(start, white) != white:
            continue
        stack: list[tuple[Var, Iterable[Var]]] = [(start, iter(graph.get(start, ())))]
        color[start] = grey
        while stack:
            v, it = stack[-1]
            nxt = next(it, None)
            if nxt is None:
                color[v] = black
                stack.pop()
                continue
            c = color.get(nxt, white)
            if c == grey:
                return True
            if c == white:
                color[nxt] = grey
                stack.append((nxt, iter(graph.get(nxt, ()))))
    return False
