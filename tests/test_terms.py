"""Tests for terms, substitutions and facts."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from symproof.core.facts import Fact, FactStore, fact
from symproof.core.subst import Subst, sort_compatible
from symproof.core.terms import (
    PAIR,
    App,
    Sort,
    app,
    as_term,
    const,
    flatten_pair,
    fresh,
    is_ground,
    ordered_vars,
    pair,
    pub,
    rename,
    var,
)


class TestConstruction:
    def test_variable_sorts(self) -> None:
        assert var("x").sort == Sort.MSG
        assert var("~k").sort == Sort.FRESH
        assert var("$A").sort == Sort.PUB
        assert var("#i").sort == Sort.TEMPORAL

    def test_variable_names_drop_prefix(self) -> None:
        assert var("~k").name == "k"
        assert str(var("~k")) == "~k"

    def test_empty_variable_rejected(self) -> None:
        with pytest.raises(ValueError):
            var("")

    def test_quoted_string_is_public_name(self) -> None:
        assert as_term("'c'") == pub("c")
        assert str(pub("c")) == "'c'"

    def test_tuples_are_right_nested_pairs(self) -> None:
        t = as_term(("a", "b", "c"))
        assert t == App(symbol=PAIR, args=(var("a"), App(symbol=PAIR, args=(var("b"), var("c")))))
        assert flatten_pair(t) == [var("a"), var("b"), var("c")]
        assert str(t) == "<a, b, c>"

    def test_uninterpretable_object(self) -> None:
        with pytest.raises(TypeError):
            as_term(3)

    def test_terms_are_frozen(self) -> None:
        t = app("h", "x")
        with pytest.raises(ValidationError):
            t.symbol = "g"


class TestStructure:
    def test_ground(self) -> None:
        assert is_ground(app("pk", fresh("k")))
        assert not is_ground(app("pk", "~k"))

    def test_ordered_vars(self) -> None:
        assert ordered_vars([pair("x", "y"), app("h", "x", "z")]) == [var("x"), var("y"), var("z")]

    def test_rename_keeps_sorts(self) -> None:
        renamed = rename(app("sign", "m", "~k"), "3")
        assert renamed == app("sign", "m.3", "~k.3")
        assert renamed.args[1].sort == Sort.FRESH

    def test_json_round_trip(self) -> None:
        f = fact("Sec", "$A", "'agg'", app("pk", "~x"))
        assert Fact.model_validate_json(f.model_dump_json()) == f


class TestSubst:
    def test_apply_and_bind(self) -> None:
        s = Subst.empty().bind(var("x"), app("h", "y"))
        s = s.bind(var("y"), pub("a"))
        assert s.apply(var("x")) == app("h", "'a'")

    def test_solved_form_after_bind(self) -> None:
        s = Subst({var("x"): app("h", "y")}).bind(var("y"), pub("a"))
        assert s[var("x")] == app("h", "'a'")

    def test_occurs_check(self) -> None:
        with pytest.raises(ValueError):
            Subst.empty().bind(var("x"), pair("x", "'a'"))

    def test_sort_discipline(self) -> None:
        assert sort_compatible(var("x"), fresh("n"))
        assert sort_compatible(var("~n"), fresh("n"))
        assert not sort_compatible(var("~n"), pub("a"))
        assert not sort_compatible(var("$A"), fresh("n"))
        assert not sort_compatible(var("x"), var("#i"))
        with pytest.raises(ValueError):
            Subst.empty().bind(var("$A"), fresh("n"))

    def test_compose(self) -> None:
        first = Subst({var("x"): var("y")})
        second = Subst({var("y"): const("true")})
        assert first.compose(second).apply(var("x")) == const("true")

    def test_restrict(self) -> None:
        s = Subst({var("x"): pub("a"), var("y"): pub("b")})
        assert var("y") not in s.restrict([var("x")])


class TestFactStore:
    def test_linear_facts_are_consumed_once(self) -> None:
        store = FactStore()
        f = fact("St", "'a'")
        store.produce(f)
        store.produce(f)
        assert store.count(f) == 2
        assert store.consume(f)
        assert store.consume(f)
        assert not store.consume(f)
        assert f not in store

    def test_persistent_facts_are_never_removed(self) -> None:
        store = FactStore()
        f = fact("!Ltk", "'a'", fresh("k"))
        assert f.persistent
        store.produce(f)
        store.produce(f)
        assert len(store) == 1
        assert store.consume(f)
        assert store.consume(f)
        assert f in store

    def test_clone_is_independent(self) -> None:
        store = FactStore()
        f = fact("St", "'a'")
        store.produce(f)
        copy = store.clone()
        copy.consume(f)
        assert store.count(f) == 1
        assert copy.count(f) == 0

    def test_match_pattern(self, signing_oracle) -> None:
        store = FactStore()
        store.produce(fact("!Pk", "'a'", app("pk", fresh("k"))))
        store.produce(fact("St", "'b'"))
        matches = list(store.match_pattern(fact("!Pk", "A", app("pk", "x")), signing_oracle))
        assert len(matches) == 1
        sigma, stored = matches[0]
        assert sigma[var("A")] == pub("a")
        assert sigma[var("x")] == fresh("k")
        assert stored.name == "!Pk"

    def test_fact_term_encoding(self) -> None:
        f = fact("Sent", "'m'")
        assert Fact.from_term(f.as_term()) == f
        with pytest.raises(ValueError):
            Fact.from_term(app("h", "x"))
