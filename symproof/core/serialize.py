"""JSON files for models and witness traces."""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import ValidationError

from symproof.core.invariants import ModelError
from symproof.core.model import ProtocolModel, load_model
from symproof.reports.trace import Trace


def _write(path: str | Path, text: str) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def export_model(model: ProtocolModel, path: str | Path) -> Path:
    """Write model to a JSON file."""
    return _write(path, model.to_json())


def import_model(path: str | Path, validate: bool = True) -> ProtocolModel:
    """Read a model; malformed JSON is reported as a ModelError."""
    try:
        if validate:
            return load_model(path)
        return ProtocolModel.from_json(Path(path).read_text(encoding="utf-8"))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ModelError(f"file {path}", [str(exc)]) from exc


def export_trace(trace: Trace, path: str | Path) -> Path:
    return _write(path, trace.model_dump_json(indent=2))


def import_trace(path: str | Path) -> Trace:
    return Trace.model_validate_json(Path(path).read_text(encoding="utf-8"))


def export_dict(data: dict, path: str | Path) -> Path:
    """Write arbitrary dict as JSON."""
    return _write(path, json.dumps(data, indent=2, default=str))
