"""Backward search for a trace satisfying a formula.

The prover starts from a constraint system holding the formula and every
restriction, then repeatedly picks an open goal and branches over its
solutions, depth first. The DFS keeps an explicit stack of choice points
(a system plus the lazy iterator over its children) so memory stays
proportional to the depth.

Pruning:
- a system whose canonical key is in the subsumption cache is skipped;
  keys enter the cache only when their whole subtree was searched without
  a witness and without cut-offs, so the cache never hides a witness
- a system equal to one of its ancestors on the current path is a loop
- a system with more than ``max_nodes`` rule instances is cut off

A solved system is concretized and replayed with the forward engine
before it is accepted as a witness.

With ``parallel_workers > 1`` the first levels of the tree are expanded
and the resulting subtrees are searched on a thread pool. The subsumption
cache and the budget are shared; results are read in branch order and the
first witness cancels the remaining workers.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterator

from symproof.core.formulas import Formula, nnf
from symproof.core.model import ProtocolModel, Tactic
from symproof.engine.replay import TraceReplayer
from symproof.reports.trace import Trace
from symproof.search.budget import BudgetExceeded, SearchBudget
from symproof.search.heuristics import GoalRanker
from symproof.search.solver import GoalSolver
from symproof.search.system import ConstraintSystem
from symproof.settings import ProverSettings
from symproof.theories.oracle import EquationalOracle

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    """Outcome of one search.

    ``exhaustive`` is True only when no witness exists within the model:
    every branch was closed without cut-offs or approximations.
    """

    witness: Trace | None = None
    exhaustive: bool = False
    steps: int = 0
    systems: int = 0
    open_goals: int = 0
    rejected: int = 0
    reason: str = ""


@dataclass
class ChoicePoint:
    system: ConstraintSystem | None
    key: str
    children: Iterator[ConstraintSystem]
    complete: bool = True


@dataclass
class _Stats:
    systems: int = 0
    rejected: int = 0
    cut: list[str] = field(default_factory=list)


class Prover:
    """Searches one resolved model."""

    def __init__(
        self,
        model: ProtocolModel,
        settings: ProverSettings | None = None,
        oracle: EquationalOracle | None = None,
    ) -> None:
        self.model = model
        self.settings = settings or ProverSettings()
        self.oracle = oracle or EquationalOracle(
            model.signature,
            narrowing_depth=self.settings.narrowing_depth,
            ac_bound=self.settings.ac_bound,
        )
        self.solver = GoalSolver(model, self.oracle)
        self.replayer = TraceReplayer(model, self.oracle)
        self._cache: set[str] = set()
        self._cache_lock = threading.Lock()

    def initial_systems(self, formula: Formula) -> list[ConstraintSystem]:
        return self._initial(formula)[0]

    def _initial(self, formula: Formula) -> tuple[list[ConstraintSystem], bool]:
        """Root systems, and whether simplifying them kept every variant."""
        system = ConstraintSystem(self.oracle)
        for r in self.model.restrictions:
            system.add_formula(nnf(r.formula))
        system.add_formula(nnf(formula))
        roots = system.simplify()
        return roots, not system.lost_unifiers

    def search(
        self,
        formula: Formula,
        budget: SearchBudget | None = None,
        tactic: Tactic | None = None,
    ) -> SearchResult:
        """Look for a trace of the model satisfying ``formula``."""
        budget = budget or self.settings.budget()
        budget.start()
        ranker = GoalRanker(tactic)
        with self._cache_lock:
            self._cache.clear()
        roots, complete = self._initial(formula)
        if self.settings.parallel_workers > 1:
            result = self._parallel(roots, formula, ranker, budget, complete)
        else:
            result = self._dfs(roots, formula, ranker, budget, complete)
        result.steps = budget.steps
        return result

    # -- sequential -------------------------------------------------------

    def _dfs(
        self,
        roots: list[ConstraintSystem],
        formula: Formula,
        ranker: GoalRanker,
        budget: SearchBudget,
        complete: bool = True,
    ) -> SearchResult:
        stats = _Stats()
        root = ChoicePoint(system=None, key="", children=iter(roots), complete=complete)
        stack = [root]
        path: set[str] = set()
        try:
            while stack:
                budget.charge(open_systems=len(stack))
                frame = stack[-1]
                child = next(frame.children, None)
                if child is None:
                    stack.pop()
                    path.discard(frame.key)
                    if frame.system is not None and frame.system.incomplete:
                        frame.complete = False
                    if frame.complete and frame.key:
                        with self._cache_lock:
                            self._cache.add(frame.key)
                    elif not frame.complete and stack:
                        stack[-1].complete = False
                    continue
                stats.systems += 1
                key = child.canonical_key()
                with self._cache_lock:
                    cached = key in self._cache
                if cached or key in path:
                    continue
                if len(child.nodes) > self.settings.max_nodes:
                    frame.complete = False
                    stats.cut.append(f"node limit {self.settings.max_nodes} reached")
                    continue
                picked = ranker.select(child)
                if picked is None:
                    reopened = self.solver.finalize(child)
                    if reopened is not None:
                        stack.append(ChoicePoint(child, key, iter(reopened)))
                        path.add(key)
                        continue
                    trace = self._witness(child, formula, stats)
                    if trace is not None:
                        return SearchResult(
                            witness=trace,
                            exhaustive=False,
                            systems=stats.systems,
                            rejected=stats.rejected,
                        )
                    frame.complete = False
                    continue
                gid, goal = picked
                stack.append(ChoicePoint(child, key, self.solver.children(child, gid, goal)))
                path.add(key)
        except BudgetExceeded as exc:
            open_goals = sum(len(f.system.goals) for f in stack if f.system is not None)
            return SearchResult(
                exhaustive=False,
                systems=stats.systems,
                open_goals=open_goals,
                rejected=stats.rejected,
                reason=exc.reason,
            )
        reason = stats.cut[0] if stats.cut else ""
        if not root.complete and not reason:
            reason = "search space approximated"
        return SearchResult(
            exhaustive=root.complete,
            systems=stats.systems,
            rejected=stats.rejected,
            reason=reason,
        )

    def _witness(self, system: ConstraintSystem, formula: Formula, stats: _Stats) -> Trace | None:
        trace = system.concretize()
        if not self.settings.validate_witnesses:
            return trace
        violations = self.replayer.violations(trace, formula)
        if violations:
            stats.rejected += 1
            logger.warning("Discarding witness that does not replay: %s", "; ".join(violations))
            return None
        return trace

    # -- parallel ---------------------------------------------------------

    def _branches(
        self,
        roots: list[ConstraintSystem],
        ranker: GoalRanker,
        budget: SearchBudget,
    ) -> tuple[list[ConstraintSystem], bool]:
        """Expand the top of the tree until there is work for every worker."""
        frontier = roots
        complete = True
        for _ in range(3):
            if len(frontier) >= self.settings.parallel_workers:
                break
            expanded: list[ConstraintSystem] = []
            for system in frontier:
                picked = ranker.select(system)
                if picked is None:
                    expanded.append(system)
                    continue
                budget.charge(open_systems=len(frontier))
                gid, goal = picked
                expanded.extend(self.solver.children(system, gid, goal))
                if system.incomplete:
                    complete = False
            frontier = expanded
        return frontier, complete

    def _parallel(
        self,
        roots: list[ConstraintSystem],
        formula: Formula,
        ranker: GoalRanker,
        budget: SearchBudget,
        complete: bool = True,
    ) -> SearchResult:
        try:
            branches, frontier_complete = self._branches(roots, ranker, budget)
        except BudgetExceeded as exc:
            return SearchResult(exhaustive=False, reason=exc.reason)
        logger.debug("Searching %d branch(es) on %d worker(s)", len(branches), self.settings.parallel_workers)
        results: list[SearchResult] = []
        with ThreadPoolExecutor(max_workers=self.settings.parallel_workers) as pool:
            futures = [pool.submit(self._dfs, [b], formula, ranker, budget) for b in branches]
            for future in futures:
                result = future.result()
                results.append(result)
                if result.witness is not None:
                    budget.cancel()
                    break
        systems = sum(r.systems for r in results)
        rejected = sum(r.rejected for r in results)
        winner = next((r for r in results if r.witness is not None), None)
        if winner is not None:
            winner.systems = systems
            winner.rejected = rejected
            return winner
        reasons = [r.reason for r in results if r.reason]
        exhaustive = complete and frontier_complete and all(r.exhaustive for r in results)
        if not exhaustive and not reasons:
            reasons.append("search space approximated")
        return SearchResult(
            exhaustive=exhaustive,
            systems=systems,
            open_goals=sum(r.open_goals for r in results),
            rejected=rejected,
            reason=reasons[0] if reasons else "",
        )
