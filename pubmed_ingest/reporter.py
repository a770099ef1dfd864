"""Console aggregator for worker status messages.

The reporter is the single consumer of the progress channel. It keeps the
latest status of every worker and two run-wide counters, and redraws a Rich
live view whenever a message arrives (at most once per poll interval) or the
channel has been idle for a while.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from pubmed_ingest.channel import ProgressChannel
from pubmed_ingest.schema import (
    ERROR_STATES,
    FATAL_ERROR_STATES,
    PERCENT_STATES,
    ProgressMessage,
    WorkerState,
    WorkerStatus,
)

logger = logging.getLogger("pubmed_ingest.reporter")

DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_REDRAW_EVERY = 10
PROGRESS_LOG_INTERVAL = 30.0
OVERALL_BAR_WIDTH = 40

STATUS_LABELS: dict[WorkerState, str] = {
    WorkerState.RESTARTING: "Starting job",
    WorkerState.WAITING: "Waiting",
    WorkerState.DOWNLOADING: "Downloading",
    WorkerState.VERIFYING_CHECKSUM: "Checking MD5 checksum",
    WorkerState.EXTRACTING: "Extracting",
    WorkerState.PARSING: "Processing",
    WorkerState.PERSISTING: "Writing output file",
    WorkerState.FINISHED_JOB: "Finished",
    WorkerState.DONE: "Done",
    WorkerState.ERROR_DOWNLOAD: "Downloading data failed!",
    WorkerState.ERROR_CHECKSUM_MISMATCH: "Checksum is wrong!",
    WorkerState.ERROR_EXTRACTION: "Extracting archive failed!",
    WorkerState.ERROR_PARSING: "Parsing failed!",
    WorkerState.ERROR_PERSIST: "Writing file failed!",
    WorkerState.TERMINATE: "Terminated",
}


def describe_status(status: WorkerStatus) -> str:
    """Return the display text for a worker status."""
    label = STATUS_LABELS[status.state]
    if status.state is WorkerState.FINISHED_JOB:
        return f"{label} ({status.value or 0} articles)"
    return label


def _format_duration(seconds: float | None) -> str:
    """Return a human-friendly duration string."""

    if seconds is None:
        return "—"
    remaining = int(max(seconds, 0))
    hours, remainder = divmod(remaining, 3600)
    minutes, secs = divmod(remainder, 60)
    parts: list[str] = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if not parts or secs or remaining == 0:
        parts.append(f"{secs}s")
    return " ".join(parts)


@dataclass(frozen=True)
class ReporterSnapshot:
    """Point-in-time copy of the reporter's state."""

    total_jobs: int
    files_completed: int
    records_accepted: int
    jobs_failed: int
    elapsed_seconds: float
    worker_states: dict[int, WorkerStatus] = field(default_factory=dict)
    job_elapsed: dict[int, float] = field(default_factory=dict)


class ProgressReporter:
    """Drain the progress channel and render one slot per worker plus totals."""

    def __init__(
        self,
        channel: ProgressChannel,
        num_workers: int,
        total_jobs: int,
        *,
        console: Console | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        redraw_every: int = DEFAULT_REDRAW_EVERY,
    ) -> None:
        self.channel = channel
        self.num_workers = num_workers
        self.total_jobs = total_jobs
        self.console = console
        self.poll_interval = poll_interval
        self.redraw_every = max(redraw_every, 1)
        self.files_completed = 0
        self.records_accepted = 0
        self.jobs_failed = 0
        self._states: dict[int, WorkerStatus] = {
            worker_id: WorkerStatus(WorkerState.WAITING)
            for worker_id in range(num_workers)
        }
        self._job_started: dict[int, float] = {}
        self._lock = threading.Lock()
        self._live: Live | None = None
        self._stale = False
        self._last_draw = 0.0
        self._last_progress_log = 0.0
        self._start_time = time.monotonic()

    def handle(self, message: ProgressMessage) -> bool:
        """Apply one message. Returns ``False`` once ``Terminate`` arrives."""
        status = message.status
        if status.state is WorkerState.TERMINATE:
            return False
        worker_id = message.worker_id
        if worker_id not in self._states:
            logger.debug("Ignoring status from unknown worker %d", worker_id)
            return True

        with self._lock:
            self._states[worker_id] = status
            if status.state is WorkerState.RESTARTING:
                self._job_started[worker_id] = time.monotonic()
            elif status.state is WorkerState.FINISHED_JOB:
                self.files_completed += 1
                self.records_accepted += status.value or 0
            elif status.state in FATAL_ERROR_STATES:
                self.jobs_failed += 1
        return True

    def snapshot(self) -> ReporterSnapshot:
        now = time.monotonic()
        with self._lock:
            return ReporterSnapshot(
                total_jobs=self.total_jobs,
                files_completed=self.files_completed,
                records_accepted=self.records_accepted,
                jobs_failed=self.jobs_failed,
                elapsed_seconds=now - self._start_time,
                worker_states=dict(self._states),
                job_elapsed={
                    worker_id: now - started
                    for worker_id, started in self._job_started.items()
                },
            )

    def run(self) -> None:
        """Consume messages until ``Terminate``, keeping the live view current."""
        if self.console is not None:
            try:
                self._live = Live(
                    self.render(), console=self.console, auto_refresh=False
                )
                self._live.start()
            except Exception as exc:
                logger.debug("Live display unavailable: %s", exc)
                self._live = None
        try:
            self._loop()
        finally:
            self._redraw()
            if self._live is not None:
                try:
                    self._live.stop()
                except Exception as exc:
                    logger.debug("Failed to stop live display: %s", exc)
                self._live = None
            logger.info(
                "Reporter finished: %d/%d files, %d articles, %d failed jobs",
                self.files_completed,
                self.total_jobs,
                self.records_accepted,
                self.jobs_failed,
            )

    def _loop(self) -> None:
        idle_cycles = 0
        while True:
            message = self.channel.receive(timeout=self.poll_interval)
            if message is None:
                idle_cycles += 1
                if self._stale or idle_cycles >= self.redraw_every:
                    self._redraw()
                    idle_cycles = 0
                continue

            if not self.handle(message):
                logger.debug("Terminate received; reporter shutting down")
                return
            self._stale = True
            if time.monotonic() - self._last_draw >= self.poll_interval:
                self._redraw()

    def _redraw(self) -> None:
        self._stale = False
        now = time.monotonic()
        self._last_draw = now
        if now - self._last_progress_log >= PROGRESS_LOG_INTERVAL:
            self._last_progress_log = now
            logger.info(
                "Progress: %d/%d files completed, %d articles found, %d failed",
                self.files_completed,
                self.total_jobs,
                self.records_accepted,
                self.jobs_failed,
            )
        if self._live is None:
            return
        try:
            self._live.update(self.render(), refresh=True)
        except Exception as exc:
            # Losing the display must never stop ingestion.
            logger.debug("Console redraw failed: %s", exc)

    def render(self) -> Group:
        snapshot = self.snapshot()
        return Group(
            _render_workers_panel(snapshot),
            _render_overall_panel(snapshot),
        )


def _render_workers_panel(snapshot: ReporterSnapshot) -> Panel:
    table = Table(
        expand=True,
        show_header=True,
        header_style="bold cyan",
        pad_edge=False,
    )
    table.add_column("Worker", justify="left", no_wrap=True)
    table.add_column("Status", justify="left", overflow="fold")
    table.add_column("Progress", justify="left", ratio=1)
    table.add_column("Job time", justify="right", no_wrap=True)

    for worker_id, status in sorted(snapshot.worker_states.items()):
        if status.state in ERROR_STATES:
            style = "bold red"
        elif status.state in {WorkerState.FINISHED_JOB, WorkerState.DONE}:
            style = "green"
        else:
            style = ""
        progress: ProgressBar | str = "—"
        if status.state in PERCENT_STATES and status.value is not None:
            progress = ProgressBar(total=100, completed=status.value)
            label = f"{describe_status(status)} {status.value}%"
        else:
            label = describe_status(status)
        table.add_row(
            f"Process {worker_id + 1}",
            Text(label, style=style),
            progress,
            _format_duration(snapshot.job_elapsed.get(worker_id)),
        )

    return Panel(table, title="Workers", border_style="yellow")


def _render_overall_panel(snapshot: ReporterSnapshot) -> Panel:
    total = max(snapshot.total_jobs, snapshot.files_completed)
    fill_ratio = snapshot.files_completed / total if total else 0.0
    filled_chars = max(0, min(OVERALL_BAR_WIDTH, round(fill_ratio * OVERALL_BAR_WIDTH)))

    bar = Text("│", style="magenta")
    bar.append("█" * filled_chars, style="magenta")
    bar.append(" " * (OVERALL_BAR_WIDTH - filled_chars), style="grey30")
    bar.append("│", style="magenta")
    bar.append(
        f" {snapshot.files_completed}/{snapshot.total_jobs} files",
        style="bold magenta",
    )

    files_per_minute = "—"
    if snapshot.elapsed_seconds > 0 and snapshot.files_completed > 0:
        rate = snapshot.files_completed / (snapshot.elapsed_seconds / 60)
        files_per_minute = f"{rate:.1f}"

    summary = Table.grid(expand=True, padding=(0, 3))
    summary.add_column(justify="left", ratio=1)
    summary.add_column(justify="left", ratio=1)
    summary.add_row(
        f"[bold]Found {snapshot.records_accepted} articles.[/bold]",
        f"[bold]Failed jobs:[/bold] {snapshot.jobs_failed}",
    )
    summary.add_row(
        f"[bold]Elapsed:[/bold] {_format_duration(snapshot.elapsed_seconds)}",
        f"[bold]Files/min:[/bold] {files_per_minute}",
    )

    return Panel(Group(bar, summary), title="Overall", border_style="blue")
