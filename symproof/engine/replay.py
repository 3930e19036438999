"""Concrete replay of witness traces.

Every trace the search reports is replayed step by step with the forward
engine before it is trusted: premises must be present, adversary inputs
derivable, fresh names unique, and every restriction plus the searched
formula must hold on the resulting action sequence.
"""

from __future__ import annotations

import logging
from typing import Iterator

from symproof.core.facts import Fact
from symproof.core.formulas import Formula
from symproof.core.model import ProtocolModel
from symproof.engine.rule_engine import ForwardError, ForwardState
from symproof.lemmas.trace_check import holds
from symproof.reports.trace import Trace
from symproof.theories.oracle import EquationalOracle

logger = logging.getLogger(__name__)


class ReplayError(Exception):
    """Raised when a witness trace does not replay."""

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__("Trace replay failed:\n" + "\n".join(violations))


class TraceReplayer:
    """Replays traces of one (resolved) model."""

    def __init__(self, model: ProtocolModel, oracle: EquationalOracle | None = None) -> None:
        self.model = model
        self.oracle = oracle or EquationalOracle(model.signature)

    def violations(self, trace: Trace, formula: Formula | None = None) -> list[str]:
        """Problems found while replaying ``trace``; empty when it is valid."""
        state = ForwardState(self.model, self.oracle)
        for step in trace.steps:
            try:
                rule = state.rule(step.rule)
            except KeyError as exc:
                return [f"step {step.index}: {exc}"]
            try:
                state = state.fire(rule, step.subst(), step.timepoint)
            except ForwardError as exc:
                return [f"step {step.index}: {exc}"]
            replayed = state.steps[-1]
            expected = tuple(self._normal_facts(step.actions))
            if replayed.actions != expected:
                return [f"step {step.index}: actions {expected} do not match rule instance {replayed.actions}"]

        violations: list[str] = []
        actions = state.trace.actions()
        for r in self.model.restrictions:
            if not holds(r.formula, actions, self.oracle):
                violations.append(f"restriction {r.name} does not hold")
        if formula is not None and not holds(formula, actions, self.oracle):
            violations.append(f"formula {formula} does not hold")
        return violations

    def validate(self, trace: Trace, formula: Formula | None = None) -> Trace:
        """Return the replayed trace, or raise ReplayError."""
        violations = self.violations(trace, formula)
        if violations:
            logger.debug("Replay of %d step(s) failed: %s", len(trace), violations[0])
            raise ReplayError(violations)
        return trace

    def _normal_facts(self, facts: tuple[Fact, ...]) -> Iterator[Fact]:
        for f in facts:
            yield Fact(name=f.name, args=tuple(self.oracle.normalize(a) for a in f.args))
