"""Shared fixtures for symproof tests."""

from __future__ import annotations

import pytest

from symproof.core.facts import FRESH, OUT, fact
from symproof.core.model import ProtocolModel
from symproof.core.signature import Signature
from symproof.models.builder import ModelBuilder
from symproof.settings import ProverSettings
from symproof.theories.oracle import EquationalOracle


@pytest.fixture
def signing_oracle() -> EquationalOracle:
    """Pairing and signatures: fst, snd, verify, getMessage."""
    return EquationalOracle(Signature.with_builtins("signing"))


@pytest.fixture
def dh_oracle() -> EquationalOracle:
    return EquationalOracle(Signature.with_builtins("diffie-hellman"))


@pytest.fixture
def xor_oracle() -> EquationalOracle:
    return EquationalOracle(Signature.with_builtins("xor"))


@pytest.fixture
def multiset_oracle() -> EquationalOracle:
    return EquationalOracle(Signature.with_builtins("multiset"))


@pytest.fixture
def ping_model() -> ProtocolModel:
    """Send a fresh nonce, then receive it once."""
    return (
        ModelBuilder("ping")
        .rule(
            "Send",
            premises=[fact(FRESH, "~n")],
            actions=[fact("Sent", "~n")],
            conclusions=[fact("Pending", "~n"), fact(OUT, "~n")],
        )
        .rule(
            "Recv",
            premises=[fact("Pending", "x")],
            actions=[fact("Received", "x")],
        )
        .build()
    )


@pytest.fixture
def parallel_settings() -> ProverSettings:
    return ProverSettings(parallel_workers=2)
