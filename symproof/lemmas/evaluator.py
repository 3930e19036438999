"""Lemma evaluation: verdicts from searches.

| lemma        | witness found     | exhaustive, none | budget hit   |
|--------------|-------------------|------------------|--------------|
| exists-trace | verified + trace  | falsified        | inconclusive |
| all-traces   | falsified + trace | verified         | inconclusive |

An all-traces lemma is decided by searching for a trace of its negation.
Restrictions are part of every search. Each lemma gets a fresh budget;
an error in one lemma yields ``Verdict.ERROR`` for that lemma only.
"""

from __future__ import annotations

import enum
import logging
import time
from typing import Iterable

from pydantic import BaseModel

from symproof.core.formulas import Formula, guard_violations, neg
from symproof.core.invariants import ModelError
from symproof.core.model import Lemma, LemmaKind, ProtocolModel
from symproof.reports.trace import Trace
from symproof.search.budget import SearchBudget
from symproof.search.prover import Prover, SearchResult
from symproof.settings import ProverSettings

logger = logging.getLogger(__name__)


class Verdict(str, enum.Enum):
    VERIFIED = "verified"
    FALSIFIED = "falsified"
    INCONCLUSIVE = "inconclusive"
    ERROR = "error"


class SearchStats(BaseModel):
    model_config = {"frozen": True}

    steps: int = 0
    systems: int = 0
    open_goals: int = 0
    exhaustive: bool = False
    rejected_witnesses: int = 0
    seconds: float = 0.0
    reason: str = ""


class LemmaResult(BaseModel):
    """Verdict, witness trace and statistics for one lemma."""

    model_config = {"frozen": True}

    lemma: str
    kind: LemmaKind
    verdict: Verdict
    trace: Trace | None = None
    stats: SearchStats = SearchStats()
    error: str = ""


def search_formula(lemma: Lemma) -> Formula:
    """The formula whose satisfying trace decides ``lemma``."""
    if lemma.kind == LemmaKind.EXISTS_TRACE:
        return lemma.formula
    return neg(lemma.formula)


def verdict_for(kind: LemmaKind, result: SearchResult) -> Verdict:
    if result.witness is not None:
        return Verdict.VERIFIED if kind == LemmaKind.EXISTS_TRACE else Verdict.FALSIFIED
    if result.exhaustive:
        return Verdict.FALSIFIED if kind == LemmaKind.EXISTS_TRACE else Verdict.VERIFIED
    return Verdict.INCONCLUSIVE


class LemmaEvaluator:
    """Evaluates the lemmas of one resolved model."""

    def __init__(self, model: ProtocolModel, settings: ProverSettings | None = None) -> None:
        self.model = model
        self.settings = settings or ProverSettings()
        self.prover = Prover(model, self.settings)

    def evaluate(self, lemma: Lemma, budget: SearchBudget | None = None) -> LemmaResult:
        violations = guard_violations(lemma.formula, f"lemma {lemma.name}")
        tactic_name = lemma.tactic or self.settings.default_tactic
        tactic = self.model.tactic(tactic_name)
        if tactic is None and tactic_name != "default":
            violations.append(f"lemma {lemma.name}: unknown tactic '{tactic_name}'")
        if violations:
            return self._error(lemma, str(ModelError(f"lemma {lemma.name}", violations)))

        budget = budget or self.settings.budget()
        started = time.monotonic()
        try:
            result = self.prover.search(search_formula(lemma), budget, tactic)
        except (ModelError, ValueError) as exc:
            logger.error("Lemma %s failed: %s", lemma.name, exc)
            return self._error(lemma, str(exc))
        except Exception as exc:
            logger.exception("Lemma %s aborted by an internal error", lemma.name)
            return self._error(lemma, f"internal error: {type(exc).__name__}: {exc}")

        verdict = verdict_for(lemma.kind, result)
        stats = SearchStats(
            steps=result.steps,
            systems=result.systems,
            open_goals=result.open_goals,
            exhaustive=result.exhaustive,
            rejected_witnesses=result.rejected,
            seconds=round(time.monotonic() - started, 3),
            reason=result.reason,
        )
        if verdict == Verdict.INCONCLUSIVE:
            logger.info("%s: %s (%s)", lemma.name, verdict.value, result.reason or "search incomplete")
        else:
            logger.info("%s: %s after %d step(s)", lemma.name, verdict.value, result.steps)
        return LemmaResult(
            lemma=lemma.name,
            kind=lemma.kind,
            verdict=verdict,
            trace=result.witness,
            stats=stats,
        )

    def _error(self, lemma: Lemma, message: str) -> LemmaResult:
        logger.info("%s: %s", lemma.name, Verdict.ERROR.value)
        return LemmaResult(lemma=lemma.name, kind=lemma.kind, verdict=Verdict.ERROR, error=message)


def evaluate(
    model: ProtocolModel,
    lemma: Lemma | str,
    settings: ProverSettings | None = None,
    budget: SearchBudget | None = None,
) -> LemmaResult:
    """Evaluate one lemma of ``model`` (already resolved)."""
    if isinstance(lemma, str):
        lemma = model.lemma(lemma)
    return LemmaEvaluator(model, settings).evaluate(lemma, budget)


def evaluate_model(
    model: ProtocolModel,
    settings: ProverSettings | None = None,
    lemmas: Iterable[str] | None = None,
) -> list[LemmaResult]:
    """Evaluate the selected lemmas (all by default), each with its own budget."""
    evaluator = LemmaEvaluator(model, settings)
    selected = list(model.lemmas) if lemmas is None else [model.lemma(n) for n in lemmas]
    return [evaluator.evaluate(lm) for lm in selected]
