#!/usr/bin/env python
# scripts/summarize_results.py
"""A script to summarize the results files written by the ingestion pipeline.

Run from the repository root with ``python -m scripts.summarize_results``.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from pubmed_ingest.schema import Article

app = typer.Typer()
console = Console()
error_console = Console(stderr=True)

RESULTS_GLOB = "results_*.json"


class SortOptions(str, Enum):
    name = "name"
    articles = "articles"


def load_results(path: Path) -> list[Article]:
    """Load one results file into articles."""
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    return [Article(**entry) for entry in data]


@app.command()
def summarize_results(
    results_dir: Path = typer.Option(
        Path("."),
        "--results-dir",
        "-d",
        help="Directory containing results_*.json files.",
        exists=True,
        file_okay=False,
        dir_okay=True,
        readable=True,
    ),
    sort_by: Optional[SortOptions] = typer.Option(
        None,
        "--sort-by",
        "-s",
        help="Sort the table by a specific column.",
        case_sensitive=False,
        show_choices=True,
        rich_help_panel="Sorting Options",
    ),
):
    """
    Count the articles in every results file.
    """
    rows: list[tuple[str, int]] = []
    unreadable = 0
    for path in sorted(results_dir.glob(RESULTS_GLOB)):
        try:
            articles = load_results(path)
        except (OSError, json.JSONDecodeError, TypeError, ValidationError) as e:
            error_console.print(f"[bold red]Skipping {path.name}: {e}[/bold red]")
            unreadable += 1
            continue
        rows.append((path.name, len(articles)))

    if sort_by == SortOptions.articles:
        rows.sort(key=lambda item: item[1], reverse=True)

    table = Table(title="Articles per Results File")
    table.add_column("File", style="cyan")
    table.add_column("Articles", style="magenta", justify="right")
    for name, count in rows:
        table.add_row(name, str(count))
    console.print(table)

    console.print(f"Results files: {len(rows)}")
    console.print(f"Total articles: {sum(count for _, count in rows)}")
    if unreadable:
        console.print(f"[bold red]Unreadable files: {unreadable}[/bold red]")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
