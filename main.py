#!/usr/bin/env python3
"""Main orchestrator for the PubMed ingestion pipeline."""

from __future__ import annotations

import logging
import signal
import threading
import time
from pathlib import Path
from typing import Iterable, Optional

import typer
from rich.console import Console
from typing_extensions import Annotated

from pubmed_ingest.allocator import JobAllocator
from pubmed_ingest.channel import ProgressChannel
from pubmed_ingest.config_utils import (
    CONFIG_PATH,
    ConfigError,
    IngestSettings,
    load_settings,
)
from pubmed_ingest.logging_utils import configure_logging
from pubmed_ingest.pipeline_worker import ClientFactory, PipelineWorker
from pubmed_ingest.reporter import ProgressReporter, ReporterSnapshot

LOGGER_NAME = "pubmed_ingest.run"
run_logger = logging.getLogger(LOGGER_NAME)

REPORTER_JOIN_TIMEOUT = 5.0

# Set by SIGINT/SIGTERM; workers stop claiming new jobs once it is set.
shutdown_event = threading.Event()


def _join_threads_with_timeout(
    threads: Iterable[threading.Thread], timeout: float
) -> list[str]:
    """Join threads for up to timeout seconds, returning names still alive."""

    lingering: list[str] = []
    deadline = time.monotonic() + max(timeout, 0)
    for thread in threads:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            lingering.append(thread.name or repr(thread))
            continue
        thread.join(remaining)
        if thread.is_alive():
            lingering.append(thread.name or repr(thread))
    return lingering


def run_pipeline(
    processes: int,
    total_jobs: int,
    settings: IngestSettings,
    *,
    client_factory: ClientFactory | None = None,
    console: Console | None = None,
    stop_event: threading.Event | None = None,
) -> ReporterSnapshot:
    """Run ``processes`` workers over ``total_jobs`` jobs and return the final tally."""
    if processes < 1:
        raise ValueError("processes must be at least 1")

    allocator = JobAllocator(total_jobs)
    channel = ProgressChannel()
    reporter = ProgressReporter(channel, processes, total_jobs, console=console)

    workers = [
        PipelineWorker(
            worker_id,
            allocator,
            channel,
            settings,
            client_factory=client_factory,
            stop_event=stop_event,
        )
        for worker_id in range(processes)
    ]
    reporter_thread = threading.Thread(
        target=reporter.run, name="ProgressReporter", daemon=True
    )
    reporter_thread.start()

    threads = []
    for worker in workers:
        thread = threading.Thread(
            target=worker.run, name=f"PipelineWorker-{worker.worker_id}"
        )
        thread.start()
        threads.append(thread)
    run_logger.info("Started %d pipeline workers for %d jobs", processes, total_jobs)

    for thread in threads:
        # Short joins keep the main thread responsive to signals.
        while thread.is_alive():
            thread.join(0.5)
    run_logger.debug("All workers finished; stopping reporter")

    channel.terminate()
    lingering = _join_threads_with_timeout([reporter_thread], REPORTER_JOIN_TIMEOUT)
    if lingering:
        run_logger.warning("Reporter still running after shutdown: %s", lingering)
    return reporter.snapshot()


def signal_handler(signum, frame):
    """Stop handing out new jobs; in-flight jobs run to completion."""

    try:
        signal_name = signal.Signals(signum).name
    except ValueError:
        signal_name = str(signum)
    run_logger.info("Received signal %s; finishing in-flight jobs", signal_name)
    shutdown_event.set()


def main(
    filecount: Annotated[
        Optional[int],
        typer.Option(
            "--filecount",
            "-f",
            help="Number of files to ingest. Counts down from this to zero.",
        ),
    ] = None,
    processes: Annotated[
        Optional[int],
        typer.Option("--processes", "-p", help="Number of download processes."),
    ] = None,
    config: Annotated[
        Path,
        typer.Option(help="Path to the YAML configuration file."),
    ] = CONFIG_PATH,
    output_dir: Annotated[
        Optional[Path],
        typer.Option(help="Directory for results files.", rich_help_panel="Paths"),
    ] = None,
    staging_dir: Annotated[
        Optional[Path],
        typer.Option(
            help="Directory for downloads in progress.", rich_help_panel="Paths"
        ),
    ] = None,
    base_url: Annotated[
        Optional[str],
        typer.Option(help="Base URL of the remote archive listing."),
    ] = None,
    strict: Annotated[
        bool,
        typer.Option(help="Exit with status 1 if any job failed."),
    ] = False,
    progress: Annotated[
        bool,
        typer.Option(help="Show the live progress display."),
    ] = True,
    debug: Annotated[bool, typer.Option(help="Enable debug logging.")] = False,
) -> None:
    """Download, verify, parse and filter PubMed baseline files."""
    configure_logging(
        level=logging.DEBUG if debug else logging.INFO,
        console=debug,
        force=True,
    )

    try:
        settings = load_settings(
            config,
            overrides={
                "run.file_count": filecount,
                "run.processes": processes,
                "paths.output_dir": output_dir,
                "paths.staging_dir": staging_dir,
                "source.base_url": base_url,
            },
        )
    except ConfigError as exc:
        run_logger.error("%s", exc)
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)

    shutdown_event.clear()
    run_logger.info(
        "Starting ingestion of %d files with %d processes into %s",
        settings.run.file_count,
        settings.run.processes,
        settings.paths.output_dir,
    )
    start_time = time.time()

    snapshot = run_pipeline(
        settings.run.processes,
        settings.run.file_count,
        settings,
        console=Console() if progress else None,
        stop_event=shutdown_event,
    )

    elapsed = time.time() - start_time
    summary = (
        f"Finished {snapshot.files_completed} files in {elapsed:.1f}s: "
        f"{snapshot.records_accepted} relevant articles, "
        f"{snapshot.jobs_failed} failed jobs."
    )
    run_logger.info(summary)
    typer.echo(summary)

    if shutdown_event.is_set():
        run_logger.warning("Shutdown request interrupted processing before completion.")
        raise typer.Exit(code=1)
    if strict and snapshot.jobs_failed > 0:
        run_logger.warning("Some files failed to process. Check logs for details.")
        raise typer.Exit(code=1)


def cli() -> None:
    # Register signal handlers for graceful shutdown
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    typer.run(main)


if __name__ == "__main__":
    cli()
