"""Rich tables, Markdown summaries and JSON export for lemma results."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Sequence

from rich.console import Console
from rich.table import Table

from symproof.core.model import ProtocolModel
from symproof.lemmas.evaluator import LemmaResult, Verdict
from symproof.reports.trace import Trace

_VERDICT_STYLE = {
    Verdict.VERIFIED: "green",
    Verdict.FALSIFIED: "bold red",
    Verdict.INCONCLUSIVE: "yellow",
    Verdict.ERROR: "magenta",
}


def render_results(
    results: Sequence[LemmaResult],
    console: Console | None = None,
    title: str = "Lemma results",
) -> None:
    """Print a Rich table with one row per lemma, then every witness trace."""
    if console is None:
        console = Console()

    table = Table(title=title)
    table.add_column("Lemma")
    table.add_column("Kind", style="dim")
    table.add_column("Verdict")
    table.add_column("Steps", justify="right")
    table.add_column("Systems", justify="right")
    table.add_column("Exhaustive", justify="center")
    table.add_column("Note", style="dim")

    for r in results:
        note = r.error or r.stats.reason
        table.add_row(
            r.lemma,
            r.kind.value,
            f"[{_VERDICT_STYLE[r.verdict]}]{r.verdict.value}[/]",
            str(r.stats.steps),
            str(r.stats.systems),
            "yes" if r.stats.exhaustive else "no",
            note[:60],
        )
    console.print(table)

    for r in results:
        if r.trace is not None:
            render_trace(r.trace, console, title=f"Trace for {r.lemma}")


def render_trace(trace: Trace, console: Console | None = None, title: str = "Trace") -> None:
    """Print a trace as a table of steps."""
    if console is None:
        console = Console()

    table = Table(title=title)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Rule", style="bold")
    table.add_column("Actions")
    table.add_column("Out / conclusions", style="dim")
    for step in trace.steps:
        table.add_row(
            str(step.index),
            step.rule,
            ", ".join(str(a) for a in step.actions),
            ", ".join(str(c) for c in step.conclusions),
        )
    console.print(table)


def render_model(model: ProtocolModel, console: Console | None = None) -> None:
    """Print the rules, restrictions and lemmas of a model."""
    if console is None:
        console = Console()

    console.print(f"\n[bold]Model {model.name}[/bold]")
    if model.flags:
        console.print(f"Flags: {', '.join(model.flags)}")
    symbols = ", ".join(
        f"{s.name}/{s.arity}" + (" [private]" if s.private else "")
        for s in model.signature.symbols.values()
    )
    console.print(f"Functions: {symbols or '(none)'}")
    for e in model.signature.equations:
        console.print(f"Equation: {e.lhs} = {e.rhs}")

    table = Table(title="Rules")
    table.add_column("Name")
    table.add_column("Rule")
    table.add_column("Gate", style="dim")
    for r in model.rules:
        gate = f"+{r.flag}" if r.flag else ""
        if r.unless_flag:
            gate += f" -{r.unless_flag}"
        table.add_row(r.name, str(r), gate.strip())
    console.print(table)

    for r in model.restrictions:
        console.print(f"[dim]restriction[/dim] {r.name}: {r.formula}")
    for lm in model.lemmas:
        console.print(f"[bold]lemma[/bold] {lm.name} ({lm.kind.value}): {lm.formula}")


def results_to_json(results: Sequence[LemmaResult]) -> list[dict]:
    return [r.model_dump(mode="json") for r in results]


def export_results(results: Sequence[LemmaResult], path: str | Path) -> Path:
    """Write results (verdicts, statistics, traces) to a JSON file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(results_to_json(results), indent=2), encoding="utf-8")
    return path


def results_to_markdown(model_name: str, results: Sequence[LemmaResult]) -> str:
    """A Markdown summary of a proof run."""
    lines: list[str] = []
    lines.append(f"# Proof report: {model_name}")
    lines.append("")
    lines.append("| Lemma | Kind | Verdict | Steps | Exhaustive |")
    lines.append("|-------|------|---------|-------|------------|")
    for r in results:
        lines.append(
            f"| {r.lemma} | {r.kind.value} | {r.verdict.value} | {r.stats.steps} | "
            f"{'yes' if r.stats.exhaustive else 'no'} |"
        )
    lines.append("")
    for r in results:
        if r.error:
            lines.append(f"## {r.lemma}: error")
            lines.append("")
            lines.append("```")
            lines.append(r.error)
            lines.append("```")
            lines.append("")
        elif r.trace is not None:
            lines.append(f"## {r.lemma}: witness")
            lines.append("")
            lines.append("```")
            lines.append(r.trace.format())
            lines.append("```")
            lines.append("")
    return "\n".join(lines)
