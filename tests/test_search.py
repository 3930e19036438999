"""Tests for constraint systems, goal selection and the backward search."""

from __future__ import annotations

from symproof.core.facts import fact
from symproof.core.formulas import FALSE, at, conj, eq, ex, fa, lt
from symproof.core.model import LemmaKind, Tactic
from symproof.core.signature import Signature
from symproof.core.terms import app, pair, pub, var
from symproof.engine.replay import TraceReplayer
from symproof.lemmas.evaluator import Verdict, verdict_for
from symproof.reports.trace import Trace
from symproof.search.budget import SearchBudget
from symproof.search.goals import ActionGoal, EqualityGoal, render
from symproof.search.heuristics import GoalRanker
from symproof.search.prover import Prover, SearchResult
from symproof.search.solver import extraction_sites
from symproof.search.system import ConstraintSystem
from symproof.theories.oracle import EquationalOracle

RECEIVED = ex("x #i", at(fact("Received", "x"), "#i"))


def _send_system(model, offset: int = 0) -> ConstraintSystem:
    system = ConstraintSystem(EquationalOracle(model.signature))
    for _ in range(offset):
        system.new_time()
    system.add_node(*system.instance(model.rule("Send")))
    return system


class TestConstraintSystem:
    def test_false_kills_the_system(self, signing_oracle) -> None:
        system = ConstraintSystem(signing_oracle)
        system.add_formula(FALSE)
        assert system.simplify() == []

    def test_clone_is_independent(self, signing_oracle) -> None:
        system = ConstraintSystem(signing_oracle)
        system.add_formula(at(fact("A"), "#i"))
        copy = system.clone()
        copy.add_formula(eq("x", "'a'"))
        assert len(system.goals) == 1
        assert len(copy.goals) == 2

    def test_fresh_premise_gets_a_source(self, ping_model) -> None:
        system = _send_system(ping_model)
        assert sorted(n.rule.name for n in system.nodes.values()) == ["Fresh", "Send"]
        assert len(system.edges) == 1
        assert len(system.less) == 1
        assert system.goals == []

    def test_canonical_key_ignores_numbering(self, ping_model) -> None:
        assert _send_system(ping_model).canonical_key() == _send_system(ping_model, offset=5).canonical_key()

    def test_canonical_key_separates_systems(self, ping_model) -> None:
        other = _send_system(ping_model)
        other.add_node(*other.instance(ping_model.rule("Recv")))
        assert other.canonical_key() != _send_system(ping_model).canonical_key()

    def test_linearize_respects_ordering(self, ping_model) -> None:
        system = _send_system(ping_model)
        order = system.linearize()
        assert [system.nodes[n].rule.name for n in order] == ["Fresh", "Send"]

    def test_concretized_system_replays(self, ping_model) -> None:
        trace = _send_system(ping_model).concretize()
        assert trace.rule_names() == ["Fresh", "Send"]
        assert TraceReplayer(ping_model).violations(trace) == []

    def test_ordering_cycle_is_pruned(self, signing_oracle) -> None:
        system = ConstraintSystem(signing_oracle)
        system.add_formula(conj(lt("#i", "#j"), lt("#j", "#i")))
        assert system.simplify() == []


class TestGoalRanker:
    def _system(self, signing_oracle) -> ConstraintSystem:
        system = ConstraintSystem(signing_oracle)
        system.add_formula(at(fact("Reveal", "x"), "#i"))
        system.add_formula(eq("x", "'a'"))
        return system

    def test_equalities_first(self, signing_oracle) -> None:
        _, goal = GoalRanker().select(self._system(signing_oracle))
        assert isinstance(goal, EqualityGoal)

    def test_tactic_priority(self, signing_oracle) -> None:
        ranker = GoalRanker(Tactic(name="t", prio=(r"^Action: Reveal",)))
        _, goal = ranker.select(self._system(signing_oracle))
        assert isinstance(goal, ActionGoal)

    def test_tactic_deprioritizes(self, signing_oracle) -> None:
        system = ConstraintSystem(signing_oracle)
        system.add_formula(at(fact("Reveal", "x"), "#i"))
        system.add_formula(at(fact("Other"), "#j"))
        ranker = GoalRanker(Tactic(name="t", deprio=(r"Reveal",)))
        _, goal = ranker.select(system)
        assert goal.fact.name == "Other"

    def test_no_goals(self, signing_oracle) -> None:
        assert GoalRanker().select(ConstraintSystem(signing_oracle)) is None

    def test_render_applies_substitution(self, signing_oracle) -> None:
        system = self._system(signing_oracle)
        _, goal = system.goals[0]
        assert render(goal).startswith("Action: Reveal(")


class TestExtractionSites:
    def test_nested_destructors(self, signing_oracle) -> None:
        sites = extraction_sites(signing_oracle, pair(app("sign", "m", "k"), "'a'"))
        terms = [t for t, _ in sites]
        assert terms == [pair(app("sign", "m", "k"), "'a'"), app("sign", "m", "k"), var("m"), pub("a")]
        assert all(sides == () for _, sides in sites)

    def test_side_conditions(self) -> None:
        oracle = EquationalOracle(Signature.with_builtins("symmetric-encryption"))
        sites = extraction_sites(oracle, app("senc", "m", "k"))
        assert sites[1] == (var("m"), (var("k"),))


class TestProver:
    def test_reachable_action(self, ping_model) -> None:
        result = Prover(ping_model).search(RECEIVED)
        assert result.witness is not None
        assert result.witness.rule_names() == ["Fresh", "Send", "Recv"]
        assert TraceReplayer(ping_model).violations(result.witness, RECEIVED) == []

    def test_exhaustive_search(self, ping_model) -> None:
        formula = ex(
            "x #i",
            conj(at(fact("Received", "x"), "#i"), fa("#j", at(fact("Sent", "x"), "#j"), lt("#i", "#j"))),
        )
        result = Prover(ping_model).search(formula)
        assert result.witness is None
        assert result.exhaustive

    def test_budget_cut(self, ping_model) -> None:
        result = Prover(ping_model).search(RECEIVED, SearchBudget(max_steps=1))
        assert result.witness is None
        assert not result.exhaustive
        assert "step limit" in result.reason


class TestVerdicts:
    def test_verdict_table(self) -> None:
        witness = SearchResult(witness=Trace())
        exhaustive = SearchResult(exhaustive=True)
        cut = SearchResult(reason="step limit 1 reached")
        assert verdict_for(LemmaKind.EXISTS_TRACE, witness) == Verdict.VERIFIED
        assert verdict_for(LemmaKind.EXISTS_TRACE, exhaustive) == Verdict.FALSIFIED
        assert verdict_for(LemmaKind.ALL_TRACES, witness) == Verdict.FALSIFIED
        assert verdict_for(LemmaKind.ALL_TRACES, exhaustive) == Verdict.VERIFIED
        assert verdict_for(LemmaKind.ALL_TRACES, cut) == Verdict.INCONCLUSIVE