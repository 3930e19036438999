"""Distributed key generation with key aggregation.

Three parties send public-key commitments to an aggregator over a secure
channel; the group key is the combination of the three commitments. The
``roguepk`` equation captures the rogue-key attack: a party that has seen
the two honest keys can publish a commitment whose combination with them
is a key it fully controls.

  dkg-rogue  plain commitments; a forged signature verifies under the
             group key
  dkg-pop    commitments carry a proof of possession, which a rogue key
             cannot have
"""

from __future__ import annotations

from symproof.core.facts import FRESH, IN, OUT, fact
from symproof.core.formulas import FALSE, at, fa
from symproof.core.model import ProtocolModel
from symproof.core.rules import RuleKind, secure_channel
from symproof.core.terms import Term, app, var
from symproof.models.builder import ModelBuilder

COMPROMISE = "compromise"


def _pk(k: str) -> Term:
    return app("pk", k)


def _with_pop(k: str) -> Term:
    """``<pk(k), sign(<'pop', pk(k)>, k)>``"""
    return app("pair", _pk(k), app("sign", ("'pop'", _pk(k)), k))


def dkg_model(pop: bool = False) -> ProtocolModel:
    a, b, s = var("a"), var("b"), var("s")
    builder = (
        ModelBuilder("dkg-pop" if pop else "dkg-rogue", builtins=["signing"])
        .function("combine3", 3)
        .function("roguepk", 3, private=True)
        .equation(
            app("combine3", app("pk", a), app("pk", b), app("roguepk", app("pk", a), app("pk", b), s)),
            app("pk", s),
            name="rogue_key",
            convergent=True,
        )
    )

    commitment = _with_pop("~x") if pop else _pk("~x")
    builder.rule(
        "DkgCommit",
        premises=[fact(FRESH, "~x")],
        actions=[fact("Committed", "$P", _pk("~x"))],
        conclusions=[fact("Sec", "$P", "'agg'", commitment), fact(OUT, commitment)],
    )

    if pop:
        shares = [_with_pop(k) for k in ("k1", "k2", "k3")]
        group_key = app("combine3", _pk("k1"), _pk("k2"), _pk("k3"))
        outputs = []
    else:
        shares = ["c1", "c2", "c3"]
        group_key = app("combine3", "c1", "c2", "c3")
        outputs = [fact(OUT, ("c1", "c2", "c3"))]
    builder.rule(
        "Aggregate",
        premises=[fact("Sec", p, "'agg'", share) for p, share in zip(("A", "B", "C"), shares)],
        actions=[fact("KeyAggregated", group_key)],
        conclusions=[fact("!GroupKey", group_key), *outputs],
    )

    builder.rule(
        "RogueCommit",
        premises=[fact(IN, ("c1", "c2")), fact(FRESH, "~s")],
        actions=[fact("Rogue", app("roguepk", "c1", "c2", "~s"))],
        conclusions=[fact(OUT, app("roguepk", "c1", "c2", "~s")), fact(OUT, "~s")],
        kind=RuleKind.ADVERSARY,
    )
    builder.add_rules(secure_channel("Sec", leak_flag=COMPROMISE, inject_flag=COMPROMISE))
    builder.rule(
        "Verify",
        premises=[fact(IN, ("m", app("sign", "m", "s"))), fact("!GroupKey", _pk("s"))],
        actions=[fact("Accepted", "m")],
    )

    builder.lemma("no_forgery", fa("m #i", at(fact("Accepted", "m"), "#i"), FALSE))
    builder.default_flags(COMPROMISE)
    return builder.build()


def dkg_rogue_model() -> ProtocolModel:
    """Scenario D, undefended: the rogue-key attack forges a signature."""
    return dkg_model(pop=False)


def dkg_pop_model() -> ProtocolModel:
    """Scenario D with proofs of possession: no forgery."""
    return dkg_model(pop=True)
