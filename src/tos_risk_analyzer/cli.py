"""Command-line interface for TOS Risk Analyzer.

Provides ``scan``, ``detect``, and ``classify`` commands with rich terminal
output using the ``click`` and ``rich`` libraries.

Usage::

    tos-risk scan signup.html --origin https://example.com/signup
    tos-risk detect signup.html --output json
    tos-risk classify privacy-policy.txt
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import sys
from contextlib import nullcontext
from pathlib import Path
from urllib.parse import urlparse

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .classifier import RuleBasedClassifier
from .config import AnalyzerSettings, build_pipeline
from .detector import FragmentDetector
from .document import load_document
from .engines import ENGINE_CHOICES, WorkerEngine
from .errors import TosRiskError
from .models import AnalysisResult, Fragment, RiskAssessment, RiskLevel
from .resolvers import FileLinkResolver, HttpLinkResolver, LinkResolver

console = Console()


def _get_risk_style(level: RiskLevel) -> str:
    """Return a rich style string for a risk level."""
    return {
        RiskLevel.CRITICAL: "bold white on red",
        RiskLevel.HIGH: "bold red",
        RiskLevel.MEDIUM: "bold yellow",
        RiskLevel.LOW: "dim green",
    }.get(level, "")


def _get_risk_icon(level: RiskLevel) -> str:
    """Return an emoji icon for a risk level."""
    return {
        RiskLevel.CRITICAL: "⛔",
        RiskLevel.HIGH: "🔴",
        RiskLevel.MEDIUM: "🟡",
        RiskLevel.LOW: "🟢",
    }.get(level, "")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _load_settings(engine: str | None) -> AnalyzerSettings:
    try:
        settings = AnalyzerSettings.from_env()
        if engine is not None:
            settings = dataclasses.replace(settings, engine=engine)
    except ValueError as e:
        console.print(f"[bold red]Configuration error:[/] {e}")
        sys.exit(2)
    return settings


def _make_resolver(page: Path, origin: str, settings: AnalyzerSettings) -> LinkResolver:
    if urlparse(origin).scheme in ("http", "https"):
        return HttpLinkResolver(timeout=settings.link_fetch_timeout_s)
    return FileLinkResolver(page.resolve().parent)


@click.group()
@click.version_option(package_name="tos-risk-analyzer")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging on stderr.")
def main(verbose: bool) -> None:
    """🔍 TOS Risk Analyzer: privacy and terms-of-service risk scanning.

    Find legal text in web pages and rate it across seven risk categories.
    """
    _configure_logging(verbose)


@main.command()
@click.argument("page", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--origin", default=None,
              help="URL the page was served from. Defaults to the file's file:// URI.")
@click.option("--engine", type=click.Choice(ENGINE_CHOICES), default=None,
              help="Where classification runs (overrides TOS_RISK_ENGINE).")
@click.option("--follow-links/--no-follow-links", default=None,
              help="Fetch same-origin legal links and analyze their content.")
@click.option("--output", "-o", type=click.Choice(["rich", "json"]), default="rich",
              help="Output format.")
def scan(page: Path, origin: str | None, engine: str | None,
         follow_links: bool | None, output: str) -> None:
    """Detect legal text in an HTML page and assess its risk.

    Example: tos-risk scan signup.html --origin https://example.com/signup
    """
    settings = _load_settings(engine)
    if follow_links is None:
        follow_links = settings.follow_links

    try:
        document = load_document(page, origin)
    except TosRiskError as e:
        console.print(f"[bold red]Error:[/] {e}")
        sys.exit(1)

    resolver = _make_resolver(page, document.origin, settings) if follow_links else None
    pipeline = build_pipeline(settings, resolver)

    try:
        status = (
            console.status("[bold blue]Analyzing page...", spinner="dots")
            if output == "rich"
            else nullcontext()
        )
        with status:
            results = asyncio.run(pipeline.scan(document))
    finally:
        if isinstance(pipeline.orchestrator.engine, WorkerEngine):
            pipeline.orchestrator.engine.stop()
        if isinstance(resolver, HttpLinkResolver):
            resolver.close()

    if output == "json":
        click.echo(json.dumps([r.to_dict() for r in results], indent=2, ensure_ascii=False))
        return

    if not results:
        console.print("[dim]No legal text found.[/]")
        return
    for result in results:
        _render_result(result)


@main.command()
@click.argument("page", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--origin", default=None,
              help="URL the page was served from. Defaults to the file's file:// URI.")
@click.option("--output", "-o", type=click.Choice(["rich", "json"]), default="rich",
              help="Output format.")
def detect(page: Path, origin: str | None, output: str) -> None:
    """List the legal-text fragments found in an HTML page without classifying them.

    Example: tos-risk detect signup.html
    """
    try:
        document = load_document(page, origin)
    except TosRiskError as e:
        console.print(f"[bold red]Error:[/] {e}")
        sys.exit(1)

    fragments = FragmentDetector().detect(document)

    if output == "json":
        click.echo(json.dumps([f.to_dict() for f in fragments], indent=2, ensure_ascii=False))
    else:
        _render_fragments(fragments, page.name)


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--output", "-o", type=click.Choice(["rich", "json"]), default="rich",
              help="Output format.")
def classify(file: Path, output: str) -> None:
    """Assess the risk of a plain-text terms or privacy document.

    Example: tos-risk classify privacy-policy.txt
    """
    text = file.read_text(encoding="utf-8", errors="replace")
    assessment = RuleBasedClassifier().classify(text)

    if output == "json":
        click.echo(json.dumps(assessment.to_dict(), indent=2, ensure_ascii=False))
    else:
        console.print()
        console.print(Panel(
            f"[bold]{file.name}[/]\n{len(text):,} characters",
            title="📄 Risk Assessment",
            border_style="blue",
        ))
        _render_assessment(assessment)


# ------------------------------------------------------------------
# Rich rendering helpers
# ------------------------------------------------------------------

def _render_result(result: AnalysisResult) -> None:
    """Render one AnalysisResult with rich formatting."""
    fragment = result.fragment
    timing = "cached" if result.is_cache_hit else f"{result.processing_time_ms:.1f} ms"

    console.print()
    console.print(Panel(
        f"[bold]{fragment.title}[/]\n"
        f"Source: {fragment.source_kind.value} | Origin: {fragment.origin}\n"
        f"Engine: {result.engine_used} | Confidence: {result.confidence:.0%} | {timing}",
        title="📄 Legal Text Analysis",
        border_style="blue",
    ))
    _render_assessment(result.assessment)


def _render_assessment(assessment: RiskAssessment) -> None:
    """Render the category table, key points and recommendations."""
    overall = assessment.overall
    console.print(
        f"Overall Risk: {_get_risk_icon(overall)} "
        f"[{_get_risk_style(overall)}]{overall.value.upper()}[/]"
    )
    console.print(Panel(assessment.summary, title="Summary", border_style="dim"))

    table = Table(title="Risk Categories", show_lines=True)
    table.add_column("Category", style="cyan", width=24)
    table.add_column("Level", justify="center", width=10)
    table.add_column("Impact", style="white", max_width=40)
    table.add_column("Evidence", style="dim", max_width=50)

    for category in assessment.categories:
        table.add_row(
            category.name,
            Text(category.level.value.upper(), style=_get_risk_style(category.level)),
            category.impact,
            "\n".join(category.evidence) or "-",
        )
    console.print(table)

    if assessment.key_points:
        console.print("[bold]Key Points[/]")
        for point in assessment.key_points:
            console.print(f"  {point}")

    console.print("[bold]Recommendations[/]")
    for recommendation in assessment.recommendations:
        console.print(f"  💡 {recommendation}")
    console.print()


def _render_fragments(fragments: list[Fragment], filename: str) -> None:
    """Render detected fragments as a rich table."""
    if not fragments:
        console.print("[dim]No legal text found.[/]")
        return

    table = Table(title=f"Fragments: {filename}", show_lines=True)
    table.add_column("#", justify="right", width=4)
    table.add_column("Kind", style="cyan", width=10)
    table.add_column("Title", style="bold", max_width=30)
    table.add_column("Text (excerpt)", style="white", max_width=60)
    table.add_column("Chars", justify="right", width=7)
    table.add_column("Locator", style="dim", width=20)

    for i, fragment in enumerate(fragments, 1):
        excerpt = fragment.text[:120] + ("..." if len(fragment.text) > 120 else "")
        table.add_row(
            str(i),
            fragment.source_kind.value,
            fragment.title,
            excerpt,
            str(len(fragment.text)),
            ", ".join(fragment.locator_hints),
        )

    console.print(table)
    console.print()


if __name__ == "__main__":
    main()
