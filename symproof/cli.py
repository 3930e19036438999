"""CLI entry point using Typer."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer

app = typer.Typer(name="symproof", help="Symbolic protocol prover")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log search progress"),
) -> None:
    """Prove and falsify trace properties of security protocols."""
    from rich.logging import RichHandler

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(show_path=False)],
        force=True,
    )


def _load(path: Path):
    from symproof.core.invariants import ModelError
    from symproof.core.serialize import import_model

    try:
        return import_model(path)
    except (ModelError, OSError) as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)


def _builtin(name: str):
    from symproof.models.registry import builtin_model

    try:
        return builtin_model(name)
    except KeyError as e:
        typer.echo(str(e.args[0]), err=True)
        raise typer.Exit(code=1)


def _settings(
    settings_file: Optional[Path],
    max_steps: Optional[int],
    max_seconds: Optional[float],
    workers: Optional[int],
):
    from symproof.settings import ProverSettings, SettingsError

    overrides = {
        "max_steps": max_steps,
        "max_seconds": max_seconds,
        "parallel_workers": workers,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    try:
        settings = ProverSettings.from_file(settings_file) if settings_file else ProverSettings()
        if overrides:
            settings = settings.merged(overrides)
    except SettingsError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)
    return settings


def _resolve(model, flags: list[str], no_default_flags: bool):
    active = ([] if no_default_flags else list(model.flags)) + list(flags)
    return model.resolve(active)


def _run(model, lemma: Optional[str], settings, json_output: bool, markdown: Optional[Path]) -> None:
    from symproof.lemmas.evaluator import Verdict, evaluate_model
    from symproof.reports.render import render_results, results_to_json, results_to_markdown

    try:
        results = evaluate_model(model, settings, [lemma] if lemma else None)
    except KeyError as e:
        typer.echo(str(e.args[0]), err=True)
        raise typer.Exit(code=1)

    if json_output:
        typer.echo(json.dumps(results_to_json(results), indent=2))
    else:
        render_results(results, title=f"{model.name} [{', '.join(model.flags) or 'no flags'}]")

    if markdown is not None:
        markdown.parent.mkdir(parents=True, exist_ok=True)
        markdown.write_text(results_to_markdown(model.name, results), encoding="utf-8")
        typer.echo(f"Report written to {markdown}")

    if any(r.verdict == Verdict.ERROR for r in results):
        raise typer.Exit(code=1)


@app.command("prove")
def prove(
    model_path: Path = typer.Argument(..., help="Model JSON file"),
    lemma: Optional[str] = typer.Option(None, "--lemma", help="Only this lemma"),
    flag: List[str] = typer.Option([], "--flag", help="Enable a configuration flag"),
    no_default_flags: bool = typer.Option(False, "--no-default-flags", help="Ignore the model's default flags"),
    settings_file: Optional[Path] = typer.Option(None, "--settings", help="ProverSettings JSON file"),
    max_steps: Optional[int] = typer.Option(None, "--max-steps", help="Step budget per lemma"),
    max_seconds: Optional[float] = typer.Option(None, "--max-seconds", help="Time budget per lemma"),
    workers: Optional[int] = typer.Option(None, "--workers", help="Parallel search workers"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    markdown: Optional[Path] = typer.Option(None, "--markdown", help="Write a Markdown report"),
) -> None:
    """Evaluate the lemmas of a model."""
    model = _resolve(_load(model_path), flag, no_default_flags)
    settings = _settings(settings_file, max_steps, max_seconds, workers)
    _run(model, lemma, settings, json_output, markdown)


@app.command("repro")
def repro(
    name: str = typer.Argument(..., help="Builtin model name"),
    lemma: Optional[str] = typer.Option(None, "--lemma", help="Only this lemma"),
    flag: List[str] = typer.Option([], "--flag", help="Enable a configuration flag"),
    no_default_flags: bool = typer.Option(False, "--no-default-flags", help="Ignore the model's default flags"),
    max_steps: Optional[int] = typer.Option(None, "--max-steps", help="Step budget per lemma"),
    workers: Optional[int] = typer.Option(None, "--workers", help="Parallel search workers"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Evaluate a builtin example model."""
    model = _resolve(_builtin(name), flag, no_default_flags)
    settings = _settings(None, max_steps, None, workers)
    _run(model, lemma, settings, json_output, None)


@app.command("simulate")
def simulate(
    model_path: Path = typer.Argument(..., help="Model JSON file"),
    steps: int = typer.Option(10, "--steps", help="Maximum number of transitions"),
    flag: List[str] = typer.Option([], "--flag", help="Enable a configuration flag"),
    no_default_flags: bool = typer.Option(False, "--no-default-flags", help="Ignore the model's default flags"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Run the model forward and print the trace."""
    from symproof.engine.rule_engine import simulate as run_forward
    from symproof.reports.render import render_trace

    model = _resolve(_load(model_path), flag, no_default_flags)
    trace = run_forward(model, steps)
    if json_output:
        typer.echo(trace.model_dump_json(indent=2))
    else:
        render_trace(trace, title=f"Simulation of {model.name} ({len(trace)} step(s))")


@app.command("show")
def show(
    model_path: Path = typer.Argument(..., help="Model JSON file"),
) -> None:
    """Print the rules, restrictions and lemmas of a model."""
    from symproof.reports.render import render_model

    render_model(_load(model_path))


@app.command("export")
def export(
    name: str = typer.Argument(..., help="Builtin model name"),
    path: Path = typer.Argument(..., help="Output JSON file"),
) -> None:
    """Write a builtin model as JSON."""
    from symproof.core.serialize import export_model

    written = export_model(_builtin(name), path)
    typer.echo(f"Written to {written}")


@app.command("list")
def list_models() -> None:
    """List the builtin example models."""
    from symproof.models.registry import BUILTIN_MODELS

    for name in sorted(BUILTIN_MODELS):
        typer.echo(name)
