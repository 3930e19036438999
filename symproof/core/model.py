"""Protocol models: signature, rules, restrictions, lemmas and tactics.

A ProtocolModel is the unit the prover works on. Models are immutable;
``resolve(flags)`` returns the variant selected by a set of configuration
flags and ``validated()`` runs the load-time checks of
symproof.core.invariants. JSON round trip is lossless.
"""

from __future__ import annotations

import enum
import json
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, Field

from symproof.core.formulas import Formula
from symproof.core.frozen_collections import DeepFreezeModel
from symproof.core.invariants import ModelError, check_model
from symproof.core.rules import Rule
from symproof.core.signature import Signature


class LemmaKind(str, enum.Enum):
    EXISTS_TRACE = "exists-trace"
    ALL_TRACES = "all-traces"


class Tactic(DeepFreezeModel):
    """Goal ranking overrides: regexes over the rendered goal."""

    model_config = {"frozen": True}

    name: str
    prio: tuple[str, ...] = ()
    deprio: tuple[str, ...] = ()


class Restriction(BaseModel):
    """A formula every considered trace must satisfy."""

    model_config = {"frozen": True}

    name: str
    formula: Formula
    flag: str = ""
    unless_flag: str = ""


class Lemma(BaseModel):
    model_config = {"frozen": True}

    name: str
    kind: LemmaKind = LemmaKind.ALL_TRACES
    formula: Formula
    tactic: str = ""
    flag: str = ""
    unless_flag: str = ""


def _active(item: Rule | Restriction | Lemma, flags: frozenset[str]) -> bool:
    if item.flag and item.flag not in flags:
        return False
    if item.unless_flag and item.unless_flag in flags:
        return False
    return True


class ProtocolModel(DeepFreezeModel):
    """A complete protocol theory."""

    model_config = {"frozen": True}

    name: str
    signature: Signature = Field(default_factory=Signature)
    rules: tuple[Rule, ...] = ()
    restrictions: tuple[Restriction, ...] = ()
    lemmas: tuple[Lemma, ...] = ()
    tactics: tuple[Tactic, ...] = ()
    flags: tuple[str, ...] = ()

    def resolve(self, flags: Iterable[str] | None = None) -> "ProtocolModel":
        """The variant of this model selected by ``flags``.

        Rules, restrictions and lemmas gated by an inactive ``flag`` or an
        active ``unless_flag`` are dropped. Without arguments the model's
        own default flags are used.
        """
        active = frozenset(self.flags if flags is None else flags)
        return ProtocolModel(
            name=self.name,
            signature=self.signature,
            rules=tuple(r for r in self.rules if _active(r, active)),
            restrictions=tuple(r for r in self.restrictions if _active(r, active)),
            lemmas=tuple(lm for lm in self.lemmas if _active(lm, active)),
            tactics=self.tactics,
            flags=tuple(sorted(active)),
        )

    def all_flags(self) -> set[str]:
        """Every flag mentioned anywhere in the model."""
        names: set[str] = set()
        for item in (*self.rules, *self.restrictions, *self.lemmas):
            names.update(n for n in (item.flag, item.unless_flag) if n)
        return names

    def rule(self, name: str) -> Rule:
        for r in self.rules:
            if r.name == name:
                return r
        raise KeyError(f"Unknown rule '{name}'")

    def lemma(self, name: str) -> Lemma:
        for lm in self.lemmas:
            if lm.name == name:
                return lm
        raise KeyError(f"Unknown lemma '{name}' in model {self.name}")

    def tactic(self, name: str) -> Tactic | None:
        for t in self.tactics:
            if t.name == name:
                return t
        return None

    def violations(self) -> list[str]:
        return check_model(self)

    def validated(self) -> "ProtocolModel":
        """Return self, or raise ModelError listing every violation."""
        violations = self.violations()
        if violations:
            raise ModelError(f"model {self.name}", violations)
        return self

    def to_json(self) -> str:
        return json.dumps(self.model_dump(mode="json"), indent=2, sort_keys=True)

    @classmethod
    def from_json(cls, text: str) -> "ProtocolModel":
        return cls.model_validate(json.loads(text))


def load_model(path: str | Path) -> ProtocolModel:
    """Read a model from JSON and run the load-time checks."""
    path = Path(path)
    return ProtocolModel.from_json(path.read_text()).validated()
