"""Threshold signing: a 2-of-3 group signature scheme.

Parties register long-term keys, a group of three distinct parties is
created, members produce partial signatures over ``<gid, m>`` and a
combiner turns two partial signatures from distinct signers into a group
signature.

  threshold-sign    two honest partial signatures yield a group signature
  threshold-reveal  a revealed key never counts toward the threshold
  accountability    a group signature always has a matching request,
                    unless the request channel is compromised
  group-once        a group identifier can be created at most once
"""

from __future__ import annotations

from typing import Any

from symproof.core.facts import FRESH, IN, OUT, fact
from symproof.core.formulas import at, conj, disj, eq, ex, fa, lt, neg, teq
from symproof.core.model import LemmaKind, ProtocolModel
from symproof.core.rules import secure_channel
from symproof.core.terms import App, app
from symproof.models.builder import ModelBuilder

COMPROMISE = "compromise"


def _register(b: ModelBuilder) -> ModelBuilder:
    return b.rule(
        "Register",
        premises=[fact(FRESH, "~sk")],
        actions=[fact("Register", "$P")],
        conclusions=[
            fact("!Ltk", "$P", "~sk"),
            fact("!Pk", "$P", _pk("~sk")),
            fact(OUT, _pk("~sk")),
        ],
    )


def _pk(k: str) -> App:
    return app("pk", k)


def _sign(msg: Any, key: str) -> App:
    return app("sign", msg, key)


def _group_rules(b: ModelBuilder, reveal: bool = False) -> ModelBuilder:
    _register(b)
    b.rule(
        "CreateGroup",
        premises=[fact(FRESH, "~gid")],
        actions=[fact("Group", "~gid", "$A", "$B", "$C")],
        conclusions=[fact("!Group", "~gid", "$A", "$B", "$C"), fact(OUT, "~gid")],
        restrict=[conj(neg(eq("$A", "$B")), neg(eq("$A", "$C")), neg(eq("$B", "$C")))],
    )
    b.rule(
        "PartialSign",
        premises=[fact("!Group", "gid", "A", "B", "C"), fact("!Ltk", "P", "sk"), fact(IN, "m")],
        actions=[fact("PartialSig", "gid", "P", "m")],
        conclusions=[fact(OUT, ("'psig'", "gid", "P", _sign(("gid", "m"), "sk")))],
        restrict=[disj(eq("P", "A"), eq("P", "B"), eq("P", "C"))],
    )
    b.rule(
        "Combine",
        premises=[
            fact("!Group", "gid", "A", "B", "C"),
            fact("!Pk", "P1", _pk("k1")),
            fact("!Pk", "P2", _pk("k2")),
            fact(IN, ("'psig'", "gid", "P1", _sign(("gid", "m"), "k1"))),
            fact(IN, ("'psig'", "gid", "P2", _sign(("gid", "m"), "k2"))),
        ],
        actions=[
            fact("GroupSig", "gid", "m", "P1", "P2"),
            fact("Counted", "gid", "P1", "m"),
            fact("Counted", "gid", "P2", "m"),
        ],
        conclusions=[fact(OUT, ("'gsig'", "gid", "m"))],
        restrict=[neg(eq("P1", "P2"))],
    )
    if reveal:
        b.rule(
            "Reveal",
            premises=[fact("!Ltk", "P", "sk")],
            actions=[fact("Reveal", "P")],
            conclusions=[fact(OUT, "sk")],
        )
    return b


def threshold_sign_model() -> ProtocolModel:
    """Scenario A: the group signature is reachable with two honest signers."""
    b = _group_rules(ModelBuilder("threshold-sign", builtins=["signing"]))
    b.lemma(
        "group_signature_reachable",
        ex(
            "gid m P1 P2 #i #j #k",
            conj(
                at(fact("GroupSig", "gid", "m", "P1", "P2"), "#i"),
                at(fact("PartialSig", "gid", "P1", "m"), "#j"),
                at(fact("PartialSig", "gid", "P2", "m"), "#k"),
            ),
        ),
        kind=LemmaKind.EXISTS_TRACE,
    )
    return b.build()


def threshold_reveal_model() -> ProtocolModel:
    """Scenario B: a signer whose key was revealed cannot be counted afterwards."""
    b = _group_rules(ModelBuilder("threshold-reveal", builtins=["signing"]), reveal=True)
    b.restriction(
        "counted_before_reveal",
        fa(
            "gid P m #i #r",
            conj(at(fact("Counted", "gid", "P", "m"), "#i"), at(fact("Reveal", "P"), "#r")),
            lt("#i", "#r"),
        ),
    )
    b.tactic("reveal_first", prio=[r"^Action: Reveal"])
    b.lemma(
        "reveal_reachable",
        ex("P #r", at(fact("Reveal", "P"), "#r")),
        kind=LemmaKind.EXISTS_TRACE,
    )
    b.lemma(
        "revealed_signer_counts",
        ex(
            "gid m P1 P2 #i #r",
            conj(
                at(fact("GroupSig", "gid", "m", "P1", "P2"), "#i"),
                at(fact("Reveal", "P1"), "#r"),
                lt("#r", "#i"),
            ),
        ),
        kind=LemmaKind.EXISTS_TRACE,
        tactic="reveal_first",
    )
    return b.build()


def accountability_model() -> ProtocolModel:
    """Scenario C: every group signature was requested for exactly its signers.

    The request reaches the combiner over a secure channel; with the
    ``compromise`` flag the adversary can inject requests on it.
    """
    b = ModelBuilder("accountability", builtins=["signing"])
    _register(b)
    b.rule(
        "Request",
        premises=[fact(FRESH, "~gid")],
        actions=[fact("Requested", "~gid", "$m", "$A", "$B")],
        conclusions=[fact("Sec", "'requester'", "'combiner'", ("~gid", "$m", "$A", "$B"))],
    )
    b.rule(
        "PartialSign",
        premises=[fact("!Ltk", "P", "sk"), fact(IN, ("gid", "m"))],
        actions=[fact("PartialSig", "gid", "P", "m")],
        conclusions=[fact(OUT, _sign(("gid", "m"), "sk"))],
    )
    b.rule(
        "Combine",
        premises=[
            fact("Sec", "'requester'", "'combiner'", ("gid", "m", "P1", "P2")),
            fact("!Pk", "P1", _pk("k1")),
            fact("!Pk", "P2", _pk("k2")),
            fact(IN, _sign(("gid", "m"), "k1")),
            fact(IN, _sign(("gid", "m"), "k2")),
        ],
        actions=[fact("GroupSig", "gid", "m", "P1", "P2")],
        conclusions=[fact(OUT, ("'gsig'", "gid", "m"))],
        restrict=[neg(eq("P1", "P2"))],
    )
    b.add_rules(secure_channel("Sec", leak_flag=COMPROMISE, inject_flag=COMPROMISE))
    b.lemma(
        "signers_were_requested",
        fa(
            "gid m P1 P2 #i",
            at(fact("GroupSig", "gid", "m", "P1", "P2"), "#i"),
            ex("#j", at(fact("Requested", "gid", "m", "P1", "P2"), "#j")),
        ),
    )
    b.default_flags(COMPROMISE)
    return b.build()


def group_once_model() -> ProtocolModel:
    """Two creations of the same group identifier never both succeed."""
    b = ModelBuilder("group-once")
    b.rule(
        "CreateNamedGroup",
        premises=[fact(FRESH, "~k")],
        actions=[fact("OnlyOnce", "$gid"), fact("GroupCreated", "$gid", "~k")],
        conclusions=[fact("!GroupKey", "$gid", "~k")],
    )
    b.restriction(
        "only_once",
        fa("x #i #j", conj(at(fact("OnlyOnce", "x"), "#i"), at(fact("OnlyOnce", "x"), "#j")), teq("#i", "#j")),
    )
    b.lemma(
        "created_once",
        ex(
            "g a b #i #j",
            conj(
                at(fact("GroupCreated", "g", "a"), "#i"),
                at(fact("GroupCreated", "g", "b"), "#j"),
                neg(teq("#i", "#j")),
            ),
        ),
        kind=LemmaKind.EXISTS_TRACE,
    )
    b.lemma(
        "never_duplicated",
        fa(
            "g a b #i #j",
            conj(at(fact("GroupCreated", "g", "a"), "#i"), at(fact("GroupCreated", "g", "b"), "#j")),
            teq("#i", "#j"),
        ),
    )
    return b.build()

