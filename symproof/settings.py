"""Prover configuration.

ProverSettings collects every knob of a proof run. It is built from CLI
options or read from a JSON file; the per-lemma SearchBudget is derived
from it.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from symproof.search.budget import SearchBudget


class SettingsError(ValueError):
    """Raised when a settings file cannot be read or validated."""


class ProverSettings(BaseModel):
    """Search bounds and prover options."""

    model_config = {"frozen": True, "extra": "forbid"}

    max_steps: int = Field(default=20000, ge=1)
    max_seconds: float = Field(default=60.0, gt=0)
    max_open: int = Field(default=5000, ge=1)
    max_nodes: int = Field(default=14, ge=1)
    narrowing_depth: int = Field(default=2, ge=0)
    ac_bound: int = Field(default=32, ge=1)
    parallel_workers: int = Field(default=1, ge=1)
    validate_witnesses: bool = True
    default_tactic: str = "default"

    def budget(self) -> SearchBudget:
        return SearchBudget(
            max_steps=self.max_steps,
            max_seconds=self.max_seconds,
            max_open=self.max_open,
        )

    def merged(self, overrides: dict) -> "ProverSettings":
        """Copy with ``overrides`` applied and validated."""
        try:
            return type(self).model_validate(self.model_dump() | overrides)
        except ValidationError as exc:
            raise SettingsError(str(exc)) from exc

    @classmethod
    def from_json(cls, text: str) -> "ProverSettings":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SettingsError(f"Invalid JSON: {exc}") from exc
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise SettingsError(str(exc)) from exc

    @classmethod
    def from_file(cls, path: str | Path) -> "ProverSettings":
        """Parse and validate from a JSON file."""
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise SettingsError(f"Cannot read file: {exc}") from exc
        return cls.from_json(text)
