"""Worker that claims jobs and runs each one through the ingestion pipeline.

A job moves strictly forward through five stages: download, checksum
verification, extraction, parsing and persistence. Every transition is
reported on the progress channel. A failing stage ends only the current job:
the worker reports the stage's error state and claims the next index. Parsing
is the exception; whatever was parsed before the failure is still persisted.
"""

from __future__ import annotations

import gzip
import hashlib
import json
import logging
import math
import os
import shutil
import struct
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable

import httpx

from pubmed_ingest.allocator import JobAllocator
from pubmed_ingest.article_parser import DocumentParser, RecordFilter
from pubmed_ingest.channel import ProgressChannel
from pubmed_ingest.config_utils import IngestSettings
from pubmed_ingest.jobs import JobPaths
from pubmed_ingest.schema import Article, WorkerState, WorkerStatus

logger = logging.getLogger("pubmed_ingest.pipeline")

ClientFactory = Callable[[], httpx.Client]

GZIP_TRAILER_BYTES = 4

# NamedTemporaryFile creates 0600 files; results get the usual umask-derived mode.
_UMASK = os.umask(0)
os.umask(_UMASK)
RESULTS_FILE_MODE = 0o666 & ~_UMASK


class StageError(Exception):
    """Base class for a failure that abandons the current job."""

    stage = "pipeline"
    state = WorkerState.ERROR_DOWNLOAD


class DownloadError(StageError):
    stage = "download"
    state = WorkerState.ERROR_DOWNLOAD


class ChecksumMismatchError(StageError):
    stage = "checksum"
    state = WorkerState.ERROR_CHECKSUM_MISMATCH


class ExtractionError(StageError):
    stage = "extraction"
    state = WorkerState.ERROR_EXTRACTION


class ParsingError(StageError):
    stage = "parsing"
    state = WorkerState.ERROR_PARSING


class PersistError(StageError):
    stage = "persist"
    state = WorkerState.ERROR_PERSIST


def default_client_factory(settings: IngestSettings) -> ClientFactory:
    """Return a factory producing one configured ``httpx.Client`` per worker."""
    timeout = httpx.Timeout(settings.network.timeout_seconds)

    def factory() -> httpx.Client:
        return httpx.Client(timeout=timeout, follow_redirects=True)

    return factory


def calculate_md5(file_path: Path, block_size: int = 64 * 1024) -> str:
    """Calculate the MD5 hash of a file."""
    md5_hash = hashlib.md5()
    with open(file_path, "rb") as f:
        for byte_block in iter(lambda: f.read(block_size), b""):
            md5_hash.update(byte_block)
    return md5_hash.hexdigest()


def gzip_uncompressed_size(file_path: Path) -> int:
    """Read the ISIZE trailer of a gzip file (uncompressed size modulo 2**32)."""
    with open(file_path, "rb") as handle:
        handle.seek(0, os.SEEK_END)
        if handle.tell() < GZIP_TRAILER_BYTES:
            return 0
        handle.seek(-GZIP_TRAILER_BYTES, os.SEEK_END)
        return struct.unpack("<I", handle.read(GZIP_TRAILER_BYTES))[0]


def parse_reference_digest(text: str) -> str:
    """Pull the hex digest out of a published checksum file.

    Accepts a bare digest, ``md5sum`` output (``digest  name``) and the
    ``MD5(name)= digest`` form used by NCBI.
    """
    cleaned = text.strip()
    if "=" in cleaned:
        cleaned = cleaned.rsplit("=", 1)[1]
    tokens = cleaned.split()
    return tokens[0].lower() if tokens else ""


class PercentageReporter:
    """Report a stage percentage only when its floor strictly increases."""

    def __init__(
        self, report: Callable[[WorkerState, int | None], None], state: WorkerState
    ) -> None:
        self._report = report
        self.state = state
        self.last_reported = 0

    def start(self) -> None:
        self.last_reported = 0
        self._report(self.state, 0)

    def update(self, done: int, total: int) -> None:
        if total <= 0:
            return
        percent = min(math.floor(100 * done / total), 100)
        if percent > self.last_reported:
            self.last_reported = percent
            self._report(self.state, percent)

    def finish(self) -> None:
        if self.last_reported < 100:
            self.last_reported = 100
            self._report(self.state, 100)


class PipelineWorker:
    """Claim job indices until the allocator runs dry, one job at a time."""

    def __init__(
        self,
        worker_id: int,
        allocator: JobAllocator,
        channel: ProgressChannel,
        settings: IngestSettings,
        *,
        client_factory: ClientFactory | None = None,
        parser: DocumentParser | None = None,
        record_filter: RecordFilter | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.worker_id = worker_id
        self.allocator = allocator
        self.channel = channel
        self.settings = settings
        self.client_factory = client_factory or default_client_factory(settings)
        self.parser = parser or DocumentParser()
        self.record_filter = record_filter or RecordFilter(settings.filter.keywords)
        self.stop_event = stop_event
        self.logger = logger.getChild(f"worker-{worker_id}")
        self._client: httpx.Client | None = None
        self._articles: list[Article] = []

    def report(self, state: WorkerState, value: int | None = None) -> None:
        self.channel.send(self.worker_id, WorkerStatus(state, value))

    def run(self) -> None:
        """Process jobs until none remain (or a stop is requested), then report Done."""
        self.logger.debug("Pipeline worker %d started", self.worker_id)
        try:
            with self.client_factory() as client:
                self._client = client
                while True:
                    if self.stop_event is not None and self.stop_event.is_set():
                        self.logger.info(
                            "Worker %d stopping before claiming another job",
                            self.worker_id,
                        )
                        break
                    index = self.allocator.claim()
                    if index is None:
                        break
                    self.process_job(index)
        finally:
            self._client = None
            self.report(WorkerState.DONE)
            self.logger.debug("Pipeline worker %d stopped", self.worker_id)

    def process_job(self, index: int) -> WorkerStatus | None:
        """Run one job; returns its final status, or ``None`` if already done."""
        paths = JobPaths.for_index(index, self.settings)
        self._articles = []
        self.report(WorkerState.RESTARTING)

        if paths.output_path.exists():
            self.logger.debug(
                "Skipping job %d; %s already exists", index, paths.output_path
            )
            return None

        self.logger.info("Worker %d starting job %d", self.worker_id, index)
        started = time.monotonic()
        try:
            self.download(paths)
            self.verify_checksum(paths)
            self.extract(paths)
            try:
                self.parse(paths)
            except ParsingError as exc:
                self.logger.warning(
                    "Job %d: parsing failed after %d valid articles, persisting "
                    "what was salvaged: %s",
                    index,
                    len(self._articles),
                    exc,
                )
                self.report(exc.state)
            self.filter_articles()
            written = self.persist(paths)
        except StageError as exc:
            self.logger.warning("Job %d failed during %s: %s", index, exc.stage, exc)
            self.report(exc.state)
            return WorkerStatus(exc.state)
        finally:
            shutil.rmtree(paths.staging_dir, ignore_errors=True)
            self._articles = []

        self.report(WorkerState.FINISHED_JOB, written)
        self.logger.info(
            "Job %d finished in %.1fs with %d relevant articles",
            index,
            time.monotonic() - started,
            written,
        )
        return WorkerStatus(WorkerState.FINISHED_JOB, written)

    def _require_client(self) -> httpx.Client:
        if self._client is None:
            raise RuntimeError("process_job must run inside PipelineWorker.run")
        return self._client

    def download(self, paths: JobPaths) -> None:
        progress = PercentageReporter(self.report, WorkerState.DOWNLOADING)
        try:
            client = self._require_client()
            paths.staging_dir.mkdir(parents=True, exist_ok=True)
            with client.stream("GET", paths.archive_url) as response:
                response.raise_for_status()
                total = int(response.headers.get("Content-Length") or 0)
                progress.start()
                received = 0
                with paths.archive_path.open("wb") as handle:
                    for chunk in response.iter_bytes(
                        chunk_size=self.settings.network.chunk_size
                    ):
                        handle.write(chunk)
                        received += len(chunk)
                        progress.update(received, total)
        except Exception as exc:
            raise DownloadError(f"{paths.archive_url}: {exc}") from exc
        progress.finish()

    def verify_checksum(self, paths: JobPaths) -> None:
        self.report(WorkerState.VERIFYING_CHECKSUM)
        try:
            response = self._require_client().get(paths.checksum_url)
            response.raise_for_status()
            paths.checksum_path.write_text(response.text, encoding="utf-8")
            expected = parse_reference_digest(response.text)
            actual = calculate_md5(paths.archive_path)
        except Exception as exc:
            raise ChecksumMismatchError(
                f"could not verify {paths.archive_path.name}: {exc}"
            ) from exc
        if not expected or expected != actual:
            raise ChecksumMismatchError(
                f"{paths.archive_path.name}: expected {expected or '<empty>'}, "
                f"computed {actual}"
            )

    def extract(self, paths: JobPaths) -> None:
        progress = PercentageReporter(self.report, WorkerState.EXTRACTING)
        progress.start()
        block_size = self.settings.network.chunk_size
        try:
            total = gzip_uncompressed_size(paths.archive_path)
            written = 0
            with gzip.open(paths.archive_path, "rb") as archive:
                with paths.extracted_path.open("wb") as target:
                    for block in iter(lambda: archive.read(block_size), b""):
                        target.write(block)
                        written += len(block)
                        progress.update(written, total)
        except Exception as exc:
            raise ExtractionError(f"{paths.archive_path.name}: {exc}") from exc
        progress.finish()

    def parse(self, paths: JobPaths) -> None:
        progress = PercentageReporter(self.report, WorkerState.PARSING)
        progress.start()
        try:
            text = paths.extracted_path.read_text(encoding="utf-8")
            total = self.parser.count(text)
            processed = 0
            for article in self.parser.parse(text):
                if article.is_valid():
                    self._articles.append(article)
                processed += 1
                progress.update(processed, total)
        except Exception as exc:
            raise ParsingError(f"{paths.extracted_path.name}: {exc}") from exc
        progress.finish()

    def filter_articles(self) -> None:
        self._articles = [
            article
            for article in self._articles
            if self.record_filter.is_relevant(article)
        ]

    def persist(self, paths: JobPaths) -> int:
        """Write the kept articles to the job's results file atomically."""
        self.report(WorkerState.PERSISTING)
        output_path = paths.output_path
        data = [article.model_dump(mode="json") for article in self._articles]
        temp_path = None
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=output_path.parent,
                prefix=f".{output_path.stem}-",
                suffix=".tmp",
                delete=False,
            ) as tmp_file:
                temp_path = Path(tmp_file.name)
                json.dump(data, tmp_file, indent=2, ensure_ascii=False)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
            os.chmod(temp_path, RESULTS_FILE_MODE)
            os.replace(temp_path, output_path)
            temp_path = None
        except Exception as exc:
            raise PersistError(f"{output_path}: {exc}") from exc
        finally:
            if temp_path is not None and temp_path.exists():
                temp_path.unlink(missing_ok=True)
        return len(data)
