"""Tests for formulas: negation normal form, guardedness and trace evaluation."""

from __future__ import annotations

import pytest

from symproof.core.facts import fact
from symproof.core.formulas import (
    FALSE,
    Action,
    Exists,
    Forall,
    Implies,
    Less,
    Or,
    TimeEq,
    at,
    conj,
    eq,
    ex,
    fa,
    free_vars,
    guard_violations,
    lt,
    neg,
    negate,
    nnf,
    split_guard,
    substitute,
    teq,
)
from symproof.core.subst import Subst
from symproof.core.terms import app, pair, pub, var
from symproof.lemmas.trace_check import holds


class TestBuilders:
    def test_action_needs_temporal_variable(self) -> None:
        with pytest.raises(ValueError):
            at(fact("A", "x"), "x")

    def test_conj_flattens(self) -> None:
        a, b, c = (at(fact(n), "#i") for n in "ABC")
        assert conj(a, conj(b, c)).items == (a, b, c)
        assert conj(a) == a

    def test_forall_is_guarded_implication(self) -> None:
        f = fa("x #i", at(fact("A", "x"), "#i"), FALSE)
        assert isinstance(f.body, Implies)
        guard, body = split_guard(f)
        assert guard == [at(fact("A", "x"), "#i")]
        assert body == FALSE

    def test_free_vars(self) -> None:
        assert free_vars(at(fact("A", "x"), "#i")) == {var("x"), var("#i")}
        assert free_vars(fa("x #i", at(fact("A", "x"), "#i"), eq("x", "y"))) == {var("y")}

    def test_substitute_skips_bound_variables(self) -> None:
        f = conj(eq("x", "y"), ex("x #i", at(fact("A", "x"), "#i")))
        g = substitute(f, Subst({var("x"): pub("a")}))
        assert g.items[0] == eq("'a'", "y")
        assert g.items[1] == f.items[1]


class TestNegation:
    def test_negated_existential_becomes_guarded_universal(self) -> None:
        f = nnf(neg(ex("#i", at(fact("A"), "#i"))))
        assert isinstance(f, Forall)
        assert f.body == Implies(left=at(fact("A"), "#i"), right=FALSE)

    def test_negated_universal_becomes_existential(self) -> None:
        f = negate(fa("x #i", at(fact("A", "x"), "#i"), eq("x", "'a'")))
        assert isinstance(f, Exists)
        assert f.body.items[0] == at(fact("A", "x"), "#i")
        assert f.body.items[1] == neg(eq("x", "'a'"))

    def test_negated_ordering(self) -> None:
        f = negate(lt("#i", "#j"))
        assert isinstance(f, Or)
        assert f.items == (Less(left=var("#j"), right=var("#i")), TimeEq(left=var("#i"), right=var("#j")))

    def test_negated_action_is_universal(self) -> None:
        f = negate(at(fact("A"), "#i"))
        assert isinstance(f, Forall)
        assert f.vars == ()

    def test_double_negation(self) -> None:
        atom = at(fact("A"), "#i")
        assert nnf(neg(neg(atom))) == atom


class TestGuardedness:
    def test_guarded_formulas(self) -> None:
        assert guard_violations(ex("x #i", at(fact("A", "x"), "#i"))) == []
        assert guard_violations(fa("x #i", at(fact("A", "x"), "#i"), FALSE)) == []

    def test_unguarded_existential(self) -> None:
        violations = guard_violations(ex("x", eq("x", "'a'")), "lemma l")
        assert len(violations) == 1
        assert "unguarded" in violations[0]
        assert "lemma l" in violations[0]

    def test_unguarded_nested_variable(self) -> None:
        f = fa("#i", at(fact("A"), "#i"), ex("y", eq("y", "'a'")))
        assert any("y" in v for v in guard_violations(f))


ACTIONS = [
    [fact("A", "'a'")],
    [fact("B", "'a'")],
    [fact("B", "'b'")],
]


class TestTraceCheck:
    def test_ordered_existential(self, signing_oracle) -> None:
        f = ex("x #i #j", conj(at(fact("A", "x"), "#i"), at(fact("B", "x"), "#j"), lt("#i", "#j")))
        assert holds(f, ACTIONS, signing_oracle)

    def test_wrong_order(self, signing_oracle) -> None:
        f = ex("x #i #j", conj(at(fact("A", "x"), "#i"), at(fact("B", "x"), "#j"), lt("#j", "#i")))
        assert not holds(f, ACTIONS, signing_oracle)

    def test_universal_with_counterexample(self, signing_oracle) -> None:
        f = fa("x #j", at(fact("B", "x"), "#j"), ex("#i", conj(at(fact("A", "x"), "#i"), lt("#i", "#j"))))
        assert not holds(f, ACTIONS, signing_oracle)
        assert holds(f, ACTIONS[:2], signing_oracle)

    def test_timepoint_equality(self, signing_oracle) -> None:
        f = fa("x y #i #j", conj(at(fact("B", "x"), "#i"), at(fact("B", "y"), "#j")), teq("#i", "#j"))
        assert not holds(f, ACTIONS, signing_oracle)
        assert holds(f, ACTIONS[:2], signing_oracle)

    def test_equality_modulo_theory(self, signing_oracle) -> None:
        f = ex("x #i", conj(at(fact("A", "x"), "#i"), eq(app("fst", pair("x", "'b'")), "'a'")))
        assert holds(f, ACTIONS, signing_oracle)

    def test_empty_trace(self, signing_oracle) -> None:
        assert not holds(ex("#i", at(fact("A", "'a'"), "#i")), [], signing_oracle)
        assert holds(fa("#i", at(fact("A", "'a'"), "#i"), FALSE), [], signing_oracle)

    def test_unbound_timepoint(self, signing_oracle) -> None:
        with pytest.raises(ValueError):
            holds(lt("#i", "#j"), ACTIONS, signing_oracle)

    def test_action_atom_is_an_action(self) -> None:
        assert isinstance(at(fact("A"), "#i"), Action)
