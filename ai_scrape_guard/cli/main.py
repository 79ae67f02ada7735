"""
CLI interface for AI Scrape Guard.

Provides command-line access to model limits, cost estimates and extraction.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

import openai
import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from ai_scrape_guard.config.loader import ExtractionConfig, load_extraction_config
from ai_scrape_guard.core.errors import ScrapeError, UnknownModel
from ai_scrape_guard.core.postprocessors import HallucinationChecker, JSONPostprocessor
from ai_scrape_guard.core.pricing import DEFAULT_MODEL_TABLE, cost_estimate
from ai_scrape_guard.core.session import ExtractionSession
from ai_scrape_guard.core.token_counter import estimate_tokens
from ai_scrape_guard.sdk.openai_client import OpenAIProvider

app = typer.Typer()
console = Console()
err_console = Console(stderr=True)

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _build_provider() -> OpenAIProvider:
    return OpenAIProvider()


def _parse_schema(schema: str) -> Any:
    """Accept a JSON document, a path to one, or a free-form schema string."""
    path = Path(schema)
    if path.suffix == ".json" and path.exists():
        return json.loads(path.read_text(encoding="utf-8"))
    try:
        return json.loads(schema)
    except json.JSONDecodeError:
        return schema


def _format_currency(amount: float) -> str:
    """Format currency with enough precision for sub-cent calls."""
    return f"${amount:,.4f}"


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """AI Scrape Guard CLI."""
    if ctx.invoked_subcommand is None:
        console.print("AI Scrape Guard - Use --help to see available commands")


@app.command()
def models():
    """List registered models with context limits and prices."""
    table = Table(title="Registered models")
    table.add_column("Model")
    table.add_column("Max tokens", justify="right")
    table.add_column("Prompt $/1K", justify="right")
    table.add_column("Completion $/1K", justify="right")
    for spec in DEFAULT_MODEL_TABLE.specs.values():
        table.add_row(
            spec.name,
            f"{spec.max_context_tokens:,}",
            str(spec.prompt_cost_per_1k),
            str(spec.completion_cost_per_1k),
        )
    console.print(table)


@app.command()
def estimate(
    html_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="HTML file to estimate"),
    model: str = typer.Option("gpt-4", "--model", "-m", help="Model to estimate for"),
):
    """
    Estimate tokens and cost for sending a document to a model.

    The cost assumes the completion is as long as the prompt; it is a rough
    heuristic, not a bound on actual spend.
    """
    html = html_file.read_text(encoding="utf-8")
    try:
        limit = DEFAULT_MODEL_TABLE.get(model).max_context_tokens
        tokens = estimate_tokens(model, html)
        cost = cost_estimate(html, model)
    except UnknownModel as e:
        err_console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[bold]Model:[/bold] {model}")
    console.print(f"Tokens: {tokens:,} / {limit:,}")
    console.print(f"Estimated cost: {_format_currency(cost)}")
    if tokens > limit:
        console.print("[yellow]Document exceeds the model context; use --auto-split[/]")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def extract(
    html_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="HTML file to extract from"),
    schema: str = typer.Option(..., "--schema", "-s", help="JSON schema, path to a .json file, or description"),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", exists=True, dir_okay=False, help="YAML extraction config"
    ),
    model: Optional[List[str]] = typer.Option(None, "--model", "-m", help="Model (repeat for fallbacks)"),
    max_cost: Optional[float] = typer.Option(None, "--max-cost", help="Spend ceiling in dollars"),
    auto_split: Optional[int] = typer.Option(None, "--auto-split", "-a", help="Chunk size in tokens"),
    hallucination_check: bool = typer.Option(
        False, "--hallucination-check", help="Fail when values are not found in the document"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Extract structured JSON from an HTML file."""
    _configure_logging(verbose)
    try:
        extraction_config = load_extraction_config(str(config)) if config else ExtractionConfig()

        overrides: dict = {}
        if model:
            overrides["models"] = tuple(model)
        if max_cost is not None:
            overrides["max_cost"] = max_cost
        if auto_split is not None:
            overrides["auto_split_tokens"] = auto_split
        if hallucination_check:
            overrides["postprocessors"] = [JSONPostprocessor(nudge=True), HallucinationChecker()]

        session = ExtractionSession.from_config(
            _parse_schema(schema), _build_provider(), extraction_config, **overrides
        )
        response = session.extract(html_file.read_text(encoding="utf-8"))
    except (ScrapeError, ValueError, yaml.YAMLError, openai.OpenAIError) as e:
        err_console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)

    console.print_json(json.dumps(response.data))
    _display_stats(session.stats(), len(response.api_responses), response.api_time)
    sys.exit(EXIT_CODE_PASS)


def _display_stats(stats: dict, calls: int, api_time: float) -> None:
    table = Table(title="Usage")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("API calls", str(calls))
    table.add_row("API time", f"{api_time:.2f}s")
    table.add_row("Prompt tokens", f"{stats['total_prompt_tokens']:,}")
    table.add_row("Completion tokens", f"{stats['total_completion_tokens']:,}")
    table.add_row("Total cost", _format_currency(stats["total_cost"]))
    err_console.print(table)


if __name__ == "__main__":
    app()
