"""Tests for normalization and unification modulo the equational theories."""

from __future__ import annotations

from symproof.core.signature import Signature
from symproof.core.subst import Subst
from symproof.core.terms import App, app, const, fresh, pair, pub, term_vars, var
from symproof.theories.oracle import EquationalOracle
from symproof.theories.rewriting import match_syntactic, unify_syntactic


class TestRewriting:
    def test_projections(self, signing_oracle: EquationalOracle) -> None:
        assert signing_oracle.normalize(app("fst", pair("'a'", "'b'"))) == pub("a")
        assert signing_oracle.normalize(app("snd", pair("'a'", "'b'", "'c'"))) == pair("'b'", "'c'")

    def test_signature_verification(self, signing_oracle: EquationalOracle) -> None:
        sig = app("sign", "'m'", fresh("k"))
        assert signing_oracle.normalize(app("verify", sig, "'m'", app("pk", fresh("k")))) == const("true")
        assert signing_oracle.normalize(app("getMessage", sig)) == pub("m")

    def test_wrong_key_does_not_verify(self, signing_oracle: EquationalOracle) -> None:
        sig = app("sign", "'m'", fresh("k"))
        wrong = app("verify", sig, "'m'", app("pk", fresh("other")))
        assert signing_oracle.normalize(wrong) == wrong

    def test_innermost_normalization(self, signing_oracle: EquationalOracle) -> None:
        nested = app("getMessage", app("fst", pair(app("sign", "'m'", "~k"), "'x'")))
        assert signing_oracle.normalize(nested) == pub("m")

    def test_match_syntactic(self) -> None:
        assert match_syntactic(pair("x", "x"), pair("'a'", "'b'")) is None
        sigma = match_syntactic(pair("x", "y"), pair("'a'", "'b'"))
        assert sigma is not None and sigma[var("y")] == pub("b")

    def test_unify_syntactic(self) -> None:
        sigma = unify_syntactic(pair("x", "'b'"), pair("'a'", "y"))
        assert sigma is not None
        assert sigma.apply(pair("x", "y")) == pair("'a'", "'b'")
        assert unify_syntactic(var("x"), pair("x", "'a'")) is None


class TestUnification:
    def test_syntactic_unifier(self, signing_oracle: EquationalOracle) -> None:
        unifiers = signing_oracle.unify(app("sign", "x", "k"), app("sign", "'m'", "~s"))
        assert len(unifiers) == 1
        assert unifiers[0][var("x")] == pub("m")
        assert unifiers[0][var("k")] == var("~s")

    def test_clash(self, signing_oracle: EquationalOracle) -> None:
        assert signing_oracle.unify(pub("a"), pub("b")) == []

    def test_occurs_check(self, signing_oracle: EquationalOracle) -> None:
        assert signing_oracle.unify(var("x"), pair("x", "'a'")) == []

    def test_narrowing_solves_destructor_equation(self, signing_oracle: EquationalOracle) -> None:
        unifiers = signing_oracle.unify(app("getMessage", "x"), pub("m"))
        assert unifiers
        for sigma in unifiers:
            assert signing_oracle.equal(sigma.apply(app("getMessage", "x")), pub("m"))
        assert any(isinstance(s[var("x")], App) and s[var("x")].symbol == "sign" for s in unifiers)

    def test_no_narrowing_without_depth(self) -> None:
        oracle = EquationalOracle(Signature.with_builtins("signing"), narrowing_depth=0)
        unifiers = oracle.unify(app("getMessage", "x"), pub("m"))
        assert unifiers == []
        assert not unifiers.complete

    def test_match_leaves_term_variables(self, signing_oracle: EquationalOracle) -> None:
        matches = signing_oracle.match(pair("x", "y"), pair("'a'", "z"))
        assert len(matches) == 1
        assert matches[0][var("x")] == pub("a")
        assert matches[0][var("y")] == var("z")

    def test_unify_all_extends(self, signing_oracle: EquationalOracle) -> None:
        base = Subst({var("y"): pub("b")})
        unifiers = signing_oracle.unify_all([(var("x"), pub("a"))], base)
        assert len(unifiers) == 1
        assert unifiers[0][var("x")] == pub("a")
        assert unifiers[0][var("y")] == pub("b")

    def test_every_unifier_is_sound(self, signing_oracle: EquationalOracle) -> None:
        s = app("fst", pair("x", "y"))
        t = app("snd", pair("'a'", "z"))
        for sigma in signing_oracle.unify(s, t):
            assert signing_oracle.equal(sigma.apply(s), sigma.apply(t))


class TestBoundedUnification:
    def test_finished_narrowing_is_complete(self, signing_oracle: EquationalOracle) -> None:
        assert signing_oracle.unify(app("getMessage", "x"), pub("m")).complete

    def test_syntactic_failure_is_complete(self, signing_oracle: EquationalOracle) -> None:
        unifiers = signing_oracle.unify(pair("x", "'a'"), pair("'b'", "'c'"))
        assert unifiers == []
        assert unifiers.complete

    def test_unifier_bound_is_reported(self) -> None:
        oracle = EquationalOracle(Signature.with_builtins("multiset"), ac_bound=1)
        unifiers = oracle.unify(app("union", "x", "y"), app("union", "'a'", "'b'"))
        assert len(unifiers) == 1
        assert not unifiers.complete

    def test_unifier_bound_not_reached(self, multiset_oracle: EquationalOracle) -> None:
        unifiers = multiset_oracle.unify(app("union", "x", "y"), app("union", "'a'", "'b'"))
        assert len(unifiers) >= 2
        assert unifiers.complete

    def test_unify_all_reports_depth_limit(self) -> None:
        oracle = EquationalOracle(Signature.with_builtins("symmetric-encryption"), narrowing_depth=1)
        nested = app("sdec", app("sdec", "x", "'k'"), "'k'")
        assert not oracle.unify_all([(nested, pub("secret"))]).complete
        deeper = EquationalOracle(Signature.with_builtins("symmetric-encryption"), narrowing_depth=2)
        unifiers = deeper.unify_all([(nested, pub("secret"))])
        assert any(deeper.equal(sigma.apply(nested), pub("secret")) for sigma in unifiers)

    def test_memoized_unifiers_are_renamed_apart(self, multiset_oracle: EquationalOracle) -> None:
        s, t = app("union", "x", "'a'"), app("union", "y", "'b'")

        def solver_vars(unifiers) -> set:
            return {
                v for sigma in unifiers for _, term in sigma.items()
                for v in term_vars(term) if v.name.startswith("_u")
            }

        first = multiset_oracle.unify(s, t)
        second = multiset_oracle.unify(s, t)
        assert len(first) == len(second)
        assert solver_vars(first)
        assert solver_vars(first).isdisjoint(solver_vars(second))
        for sigma in second:
            assert multiset_oracle.equal(sigma.apply(s), sigma.apply(t))


class TestDiffieHellman:
    def test_exponents_commute(self, dh_oracle: EquationalOracle) -> None:
        left = app("exp", app("exp", "'g'", "~a"), "~b")
        right = app("exp", app("exp", "'g'", "~b"), "~a")
        assert dh_oracle.normalize(left) == dh_oracle.normalize(right)

    def test_inverse_cancels(self, dh_oracle: EquationalOracle) -> None:
        assert dh_oracle.normalize(app("mult", "x", app("inv", "x"))) == const("one")

    def test_exponent_one(self, dh_oracle: EquationalOracle) -> None:
        assert dh_oracle.normalize(app("exp", "'g'", const("one"))) == pub("g")

    def test_exponent_unification(self, dh_oracle: EquationalOracle) -> None:
        unifiers = dh_oracle.unify(app("mult", "x", "~a"), app("mult", "~a", "~b"))
        assert any(u.get(var("x")) == var("~b") for u in unifiers)

    def test_variable_base_absorbs_power(self, dh_oracle: EquationalOracle) -> None:
        s = app("exp", "x", "~a")
        t = app("exp", app("exp", "'g'", "~b"), "~a")
        unifiers = dh_oracle.unify(s, t)
        expected = dh_oracle.normalize(app("exp", "'g'", "~b"))
        assert any(dh_oracle.apply(u, var("x")) == expected for u in unifiers)
        for sigma in unifiers:
            assert dh_oracle.equal(sigma.apply(s), sigma.apply(t))

    def test_variable_base_against_plain_term(self, dh_oracle: EquationalOracle) -> None:
        s = app("exp", "x", "~a")
        unifiers = dh_oracle.unify(s, pub("h"))
        assert unifiers
        for sigma in unifiers:
            assert dh_oracle.equal(sigma.apply(s), pub("h"))

    def test_higher_power_is_incomplete(self, dh_oracle: EquationalOracle) -> None:
        unifiers = dh_oracle.unify(app("mult", "x", "x"), fresh("a"))
        assert unifiers == []
        assert not unifiers.complete


class TestXor:
    def test_nilpotence(self, xor_oracle: EquationalOracle) -> None:
        assert xor_oracle.normalize(app("xor", "x", app("xor", "x", "'a'"))) == pub("a")
        assert xor_oracle.normalize(app("xor", "'a'", "'a'")) == const("zero")

    def test_unification(self, xor_oracle: EquationalOracle) -> None:
        s = app("xor", "x", "'a'")
        unifiers = xor_oracle.unify(s, pub("b"))
        assert unifiers
        assert xor_oracle.normalize(unifiers[0].apply(s)) == pub("b")


class TestMultiset:
    def test_union_is_ac(self, multiset_oracle: EquationalOracle) -> None:
        left = app("union", "'a'", app("union", const("empty"), "'b'"))
        right = app("union", "'b'", "'a'")
        assert multiset_oracle.normalize(left) == multiset_oracle.normalize(right)

    def test_unification(self, multiset_oracle: EquationalOracle) -> None:
        unifiers = multiset_oracle.unify(app("union", "x", "'a'"), app("union", "'a'", "'b'"))
        assert any(u.get(var("x")) == pub("b") for u in unifiers)
