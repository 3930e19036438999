"""End-to-end lemma verdicts on the builtin example models and small ad-hoc ones."""

from __future__ import annotations

import pytest

from symproof.core.facts import FRESH, IN, OUT, fact
from symproof.core.formulas import FALSE, at, conj, eq, ex, fa
from symproof.core.model import LemmaKind
from symproof.core.terms import app
from symproof.engine.replay import TraceReplayer
from symproof.lemmas.evaluator import (
    LemmaEvaluator,
    Verdict,
    evaluate,
    evaluate_model,
    search_formula,
)
from symproof.models.builder import ModelBuilder
from symproof.models.dkg import dkg_pop_model, dkg_rogue_model
from symproof.models.threshold import (
    accountability_model,
    group_once_model,
    threshold_reveal_model,
    threshold_sign_model,
)
from symproof.search.budget import SearchBudget
from symproof.search.prover import Prover
from symproof.settings import ProverSettings


def _actions(trace) -> set[str]:
    return {a.name for step in trace.steps for a in step.actions}


class TestThresholdSigning:
    def test_group_signature_reachable(self) -> None:
        model = threshold_sign_model().resolve()
        result = evaluate(model, "group_signature_reachable")
        assert result.verdict == Verdict.VERIFIED
        assert result.trace is not None
        assert "GroupSig" in _actions(result.trace)
        formula = search_formula(model.lemma("group_signature_reachable"))
        assert TraceReplayer(model).violations(result.trace, formula) == []

    def test_reveal_is_reachable(self) -> None:
        result = evaluate(threshold_reveal_model().resolve(), "reveal_reachable")
        assert result.verdict == Verdict.VERIFIED

    def test_revealed_signer_never_counts(self) -> None:
        result = evaluate(threshold_reveal_model().resolve(), "revealed_signer_counts")
        assert result.verdict == Verdict.FALSIFIED
        assert result.trace is None
        assert result.stats.exhaustive


class TestAccountability:
    def test_compromised_channel_breaks_accountability(self) -> None:
        model = accountability_model().resolve()
        result = evaluate(model, "signers_were_requested")
        assert result.verdict == Verdict.FALSIFIED
        assert result.trace is not None
        assert "Sec_Inject" in result.trace.rule_names()
        formula = search_formula(model.lemma("signers_were_requested"))
        assert TraceReplayer(model).violations(result.trace, formula) == []

    def test_secure_channel_keeps_accountability(self) -> None:
        result = evaluate(accountability_model().resolve([]), "signers_were_requested")
        assert result.verdict == Verdict.VERIFIED
        assert result.trace is None


class TestKeyAggregation:
    def test_rogue_key_forges(self) -> None:
        model = dkg_rogue_model().resolve()
        result = evaluate(model, "no_forgery")
        assert result.verdict == Verdict.FALSIFIED
        assert result.trace is not None
        assert "Accepted" in _actions(result.trace)

    def test_proof_of_possession_prevents_forgery(self) -> None:
        result = evaluate(dkg_pop_model().resolve(), "no_forgery")
        assert result.verdict == Verdict.VERIFIED


class TestRestrictions:
    def test_group_created_once(self) -> None:
        results = {r.lemma: r for r in evaluate_model(group_once_model().resolve())}
        assert results["created_once"].verdict == Verdict.FALSIFIED
        assert results["never_duplicated"].verdict == Verdict.VERIFIED
        assert results["never_duplicated"].kind == LemmaKind.ALL_TRACES


class TestParallelSearch:
    @pytest.mark.parametrize(
        "factory, lemma, verdict",
        [
            (threshold_sign_model, "group_signature_reachable", Verdict.VERIFIED),
            (group_once_model, "never_duplicated", Verdict.VERIFIED),
            (dkg_rogue_model, "no_forgery", Verdict.FALSIFIED),
        ],
    )
    def test_same_verdicts(self, parallel_settings, factory, lemma, verdict) -> None:
        assert evaluate(factory().resolve(), lemma, parallel_settings).verdict == verdict

    @pytest.mark.parametrize(
        "factory, lemma",
        [
            (threshold_sign_model, "group_signature_reachable"),
            (dkg_rogue_model, "no_forgery"),
        ],
    )
    def test_same_witness(self, parallel_settings, factory, lemma) -> None:
        model = factory().resolve()
        sequential = evaluate(model, lemma).trace
        assert sequential is not None
        for _ in range(3):
            parallel = evaluate(model, lemma, parallel_settings).trace
            assert parallel is not None
            assert parallel.model_dump_json() == sequential.model_dump_json()


class TestErrorsAndBudgets:
    def test_unknown_tactic_is_an_error(self) -> None:
        model = (
            ModelBuilder("bad")
            .rule("R", actions=[fact("A")])
            .lemma("l", fa("#i", at(fact("A"), "#i"), FALSE), tactic="missing")
            .build(validate=False)
        )
        result = LemmaEvaluator(model).evaluate(model.lemma("l"))
        assert result.verdict == Verdict.ERROR
        assert "unknown tactic" in result.error

    def test_unguarded_lemma_is_an_error(self) -> None:
        model = (
            ModelBuilder("bad")
            .lemma("l", ex("x", eq("x", "'a'")), kind=LemmaKind.EXISTS_TRACE)
            .build(validate=False)
        )
        result = evaluate(model, "l")
        assert result.verdict == Verdict.ERROR
        assert "unguarded" in result.error

    def test_errors_are_per_lemma(self) -> None:
        model = (
            ModelBuilder("mixed")
            .rule("R", actions=[fact("A")])
            .lemma("bad", ex("x", eq("x", "'a'")), kind=LemmaKind.EXISTS_TRACE)
            .lemma("good", ex("#i", at(fact("A"), "#i")), kind=LemmaKind.EXISTS_TRACE)
            .build(validate=False)
        )
        verdicts = [r.verdict for r in evaluate_model(model)]
        assert verdicts == [Verdict.ERROR, Verdict.VERIFIED]

    def test_budget_exhaustion_is_inconclusive(self) -> None:
        model = threshold_sign_model().resolve()
        result = evaluate(model, "group_signature_reachable", budget=SearchBudget(max_steps=1))
        assert result.verdict == Verdict.INCONCLUSIVE
        assert "step limit" in result.stats.reason
        assert not result.stats.exhaustive

    def test_unknown_lemma(self) -> None:
        with pytest.raises(KeyError):
            evaluate(group_once_model(), "missing")

    def test_internal_errors_are_per_lemma(self, monkeypatch) -> None:
        search = Prover.search
        calls: list[str] = []

        def failing_first(prover, *args, **kwargs):
            calls.append("search")
            if len(calls) == 1:
                raise RecursionError("maximum recursion depth exceeded")
            return search(prover, *args, **kwargs)

        monkeypatch.setattr(Prover, "search", failing_first)
        results = {r.lemma: r for r in evaluate_model(group_once_model().resolve())}
        assert results["created_once"].verdict == Verdict.ERROR
        assert "RecursionError" in results["created_once"].error
        assert results["never_duplicated"].verdict == Verdict.VERIFIED


def _nested_decryption_model(layers: int):
    """A receiver that decrypts its input ``layers`` times under a public key."""
    term = app("sdec", "x", "'k'")
    for _ in range(layers - 1):
        term = app("sdec", term, "'k'")
    return (
        ModelBuilder("nested-decryption", builtins=["symmetric-encryption"])
        .rule("Recv", premises=[fact(IN, "x")], actions=[fact("Got", "y")], lets={"y": term})
        .lemma("never_secret", fa("#i", at(fact("Got", "'secret'"), "#i"), FALSE))
        .build()
        .resolve()
    )


def _dh_share_model():
    """A responder raising any received element to its own fresh exponent."""
    share = app("exp", "'g'", "~b")
    return (
        ModelBuilder("dh-share", builtins=["diffie-hellman"])
        .rule("Gen", premises=[fact(FRESH, "~b")], actions=[fact("Share", share)], conclusions=[fact(OUT, share)])
        .rule(
            "Resp",
            premises=[fact(IN, "x"), fact(FRESH, "~a")],
            actions=[fact("Key", app("exp", "x", "~a"), "~a")],
        )
        .lemma(
            "no_shared_key",
            fa(
                "y a #i #j",
                conj(at(fact("Share", "y"), "#i"), at(fact("Key", app("exp", "y", "a"), "a"), "#j")),
                FALSE,
            ),
        )
        .build()
        .resolve()
    )


class TestBoundedTheories:
    def test_decryption_found_by_narrowing(self) -> None:
        result = evaluate(_nested_decryption_model(1), "never_secret")
        assert result.verdict == Verdict.FALSIFIED
        assert result.trace is not None
        assert "Got" in _actions(result.trace)

    def test_no_narrowing_is_inconclusive(self) -> None:
        settings = ProverSettings(narrowing_depth=0)
        result = evaluate(_nested_decryption_model(1), "never_secret", settings)
        assert result.verdict == Verdict.INCONCLUSIVE
        assert not result.stats.exhaustive
        assert result.stats.reason

    @pytest.mark.parametrize("depth", [0, 2])
    def test_deep_decryption_is_never_verified(self, depth: int) -> None:
        settings = ProverSettings(narrowing_depth=depth)
        result = evaluate(_nested_decryption_model(3), "never_secret", settings)
        assert result.verdict != Verdict.VERIFIED
        assert not result.stats.exhaustive

    def test_dh_variable_base_is_never_verified(self) -> None:
        result = evaluate(_dh_share_model(), "no_shared_key")
        assert result.verdict in (Verdict.FALSIFIED, Verdict.INCONCLUSIVE)
        assert not result.stats.exhaustive
