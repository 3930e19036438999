"""Tests for Rich rendering, Markdown reports and JSON export of results."""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest
from rich.console import Console

from symproof.core.model import LemmaKind
from symproof.engine.rule_engine import simulate
from symproof.lemmas.evaluator import LemmaResult, SearchStats, Verdict
from symproof.reports.render import (
    export_results,
    render_model,
    render_results,
    render_trace,
    results_to_json,
    results_to_markdown,
)


def _console() -> Console:
    return Console(file=io.StringIO(), width=200)


@pytest.fixture
def results(ping_model) -> list[LemmaResult]:
    return [
        LemmaResult(
            lemma="received",
            kind=LemmaKind.EXISTS_TRACE,
            verdict=Verdict.VERIFIED,
            trace=simulate(ping_model, 2),
            stats=SearchStats(steps=12, systems=7),
        ),
        LemmaResult(
            lemma="ordered",
            kind=LemmaKind.ALL_TRACES,
            verdict=Verdict.INCONCLUSIVE,
            stats=SearchStats(steps=100, reason="step limit 100 reached"),
        ),
        LemmaResult(
            lemma="broken",
            kind=LemmaKind.ALL_TRACES,
            verdict=Verdict.ERROR,
            error="lemma broken: unguarded variable x",
        ),
    ]


class TestRichOutput:
    def test_results_table(self, results) -> None:
        console = _console()
        render_results(results, console, title="ping")
        out = console.file.getvalue()
        assert "ping" in out
        assert "received" in out and "verified" in out
        assert "step limit 100 reached" in out
        assert "Trace for received" in out
        assert "Trace for ordered" not in out

    def test_trace_table(self, ping_model) -> None:
        console = _console()
        render_trace(simulate(ping_model, 2), console)
        out = console.file.getvalue()
        assert "Send" in out and "Recv" in out

    def test_model_listing(self, ping_model) -> None:
        console = _console()
        render_model(ping_model, console)
        out = console.file.getvalue()
        assert "Model ping" in out
        assert "Recv" in out


class TestMarkdown:
    def test_report_sections(self, results) -> None:
        md = results_to_markdown("ping", results)
        assert md.startswith("# Proof report: ping")
        assert "| received | exists-trace | verified | 12 | no |" in md
        assert "## received: witness" in md
        assert "## broken: error" in md
        assert "unguarded variable x" in md
        assert "## ordered" not in md

    def test_witness_lists_steps(self, results) -> None:
        md = results_to_markdown("ping", results)
        assert "0. Send" in md
        assert "1. Recv" in md


class TestJsonExport:
    def test_results_to_json(self, results) -> None:
        data = results_to_json(results)
        assert [d["verdict"] for d in data] == ["verified", "inconclusive", "error"]
        assert data[0]["trace"]["steps"][0]["rule"] == "Send"
        assert data[1]["trace"] is None

    def test_export_results(self, results, tmp_path: Path) -> None:
        path = export_results(results, tmp_path / "out" / "results.json")
        loaded = json.loads(path.read_text(encoding="utf-8"))
        assert loaded == results_to_json(results)
        assert LemmaResult.model_validate(loaded[0]) == results[0]
