"""Tests for the Typer command line."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from symproof.cli import app
from symproof.models.registry import BUILTIN_MODELS

runner = CliRunner()


@pytest.fixture
def group_once_file(tmp_path: Path) -> Path:
    path = tmp_path / "group-once.json"
    result = runner.invoke(app, ["export", "group-once", str(path)])
    assert result.exit_code == 0, result.output
    assert "Written to" in result.output
    return path


class TestCommands:
    def test_list(self) -> None:
        result = runner.invoke(app, ["list"])
        assert result.exit_code == 0
        assert result.output.split() == sorted(BUILTIN_MODELS)

    def test_show(self, group_once_file: Path) -> None:
        result = runner.invoke(app, ["show", str(group_once_file)])
        assert result.exit_code == 0, result.output
        assert "CreateNamedGroup" in result.output
        assert "never_duplicated" in result.output

    def test_prove_json(self, group_once_file: Path) -> None:
        result = runner.invoke(app, ["prove", str(group_once_file), "--json"])
        assert result.exit_code == 0, result.output
        verdicts = {r["lemma"]: r["verdict"] for r in json.loads(result.stdout)}
        assert verdicts == {"created_once": "falsified", "never_duplicated": "verified"}

    def test_prove_writes_markdown(self, group_once_file: Path, tmp_path: Path) -> None:
        report = tmp_path / "reports" / "group-once.md"
        result = runner.invoke(
            app,
            ["prove", str(group_once_file), "--lemma", "never_duplicated", "--markdown", str(report)],
        )
        assert result.exit_code == 0, result.output
        assert report.read_text(encoding="utf-8").startswith("# Proof report: group-once")

    def test_repro_json(self) -> None:
        result = runner.invoke(app, ["repro", "group-once", "--lemma", "never_duplicated", "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert len(data) == 1
        assert data[0]["verdict"] == "verified"

    def test_simulate_json(self, group_once_file: Path) -> None:
        result = runner.invoke(app, ["simulate", str(group_once_file), "--steps", "3", "--json"])
        assert result.exit_code == 0, result.output
        steps = json.loads(result.stdout)["steps"]
        assert [s["rule"] for s in steps] == ["CreateNamedGroup"] * 3


class TestErrors:
    def test_unknown_builtin(self) -> None:
        result = runner.invoke(app, ["repro", "nope"])
        assert result.exit_code == 1
        assert "Unknown model" in result.output

    def test_missing_model_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["prove", str(tmp_path / "missing.json")])
        assert result.exit_code == 1

    def test_unknown_lemma(self, group_once_file: Path) -> None:
        result = runner.invoke(app, ["prove", str(group_once_file), "--lemma", "missing"])
        assert result.exit_code == 1

    def test_bad_settings_file(self, group_once_file: Path, tmp_path: Path) -> None:
        settings = tmp_path / "settings.json"
        settings.write_text('{"max_stepz": 1}', encoding="utf-8")
        result = runner.invoke(app, ["prove", str(group_once_file), "--settings", str(settings)])
        assert result.exit_code == 1

    @pytest.mark.parametrize("option", [["--workers", "0"], ["--max-steps", "0"]])
    def test_invalid_override(self, group_once_file: Path, option: list[str]) -> None:
        result = runner.invoke(app, ["prove", str(group_once_file), *option])
        assert result.exit_code == 1
        assert result.exception is None or isinstance(result.exception, SystemExit)
