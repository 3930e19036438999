"""Builtin example models, by name."""

from __future__ import annotations

from typing import Callable

from symproof.core.model import ProtocolModel
from symproof.models.dkg import dkg_pop_model, dkg_rogue_model
from symproof.models.threshold import (
    accountability_model,
    group_once_model,
    threshold_reveal_model,
    threshold_sign_model,
)

BUILTIN_MODELS: dict[str, Callable[[], ProtocolModel]] = {
    "threshold-sign": threshold_sign_model,
    "threshold-reveal": threshold_reveal_model,
    "accountability": accountability_model,
    "group-once": group_once_model,
    "dkg-rogue": dkg_rogue_model,
    "dkg-pop": dkg_pop_model,
}


def builtin_model(name: str) -> ProtocolModel:
    try:
        factory = BUILTIN_MODELS[name]
    except KeyError:
        known = ", ".join(sorted(BUILTIN_MODELS))
        raise KeyError(f"Unknown model '{name}'. Available: {known}") from None
    return factory()
