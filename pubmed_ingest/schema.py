from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class WorkerState(str, Enum):
    """Enum for the states a pipeline worker reports."""

    RESTARTING = "restarting"
    WAITING = "waiting"
    DOWNLOADING = "downloading"
    VERIFYING_CHECKSUM = "verifying_checksum"
    EXTRACTING = "extracting"
    PARSING = "parsing"
    PERSISTING = "persisting"
    FINISHED_JOB = "finished_job"
    DONE = "done"
    ERROR_DOWNLOAD = "error_download"
    ERROR_CHECKSUM_MISMATCH = "error_checksum_mismatch"
    ERROR_EXTRACTION = "error_extraction"
    ERROR_PARSING = "error_parsing"
    ERROR_PERSIST = "error_persist"
    TERMINATE = "terminate"


PERCENT_STATES = frozenset(
    {WorkerState.DOWNLOADING, WorkerState.EXTRACTING, WorkerState.PARSING}
)
ERROR_STATES = frozenset(
    {
        WorkerState.ERROR_DOWNLOAD,
        WorkerState.ERROR_CHECKSUM_MISMATCH,
        WorkerState.ERROR_EXTRACTION,
        WorkerState.ERROR_PARSING,
        WorkerState.ERROR_PERSIST,
    }
)
# Parsing failures fall through to persistence, so they do not fail the job.
FATAL_ERROR_STATES = ERROR_STATES - {WorkerState.ERROR_PARSING}


@dataclass(frozen=True)
class WorkerStatus:
    """A worker state plus its payload.

    ``value`` is the percentage for downloading, extracting and parsing, the
    accepted record count for ``FINISHED_JOB``, and ``None`` otherwise.
    """

    state: WorkerState
    value: int | None = None

    @property
    def is_error(self) -> bool:
        return self.state in ERROR_STATES


@dataclass(frozen=True)
class ProgressMessage:
    """Unit carried on the progress channel."""

    worker_id: int
    status: WorkerStatus


class Author(BaseModel):
    model_config = ConfigDict(frozen=True)

    first_name: str = ""
    last_name: str = ""


class Article(BaseModel):
    """Schema for one PubMed article written to a results file."""

    model_config = ConfigDict(frozen=True)

    title: str = ""
    id: str = ""
    paper_abstract: str = ""
    authors: list[Author] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    date: str = ""
    language: str = ""

    def is_valid(self) -> bool:
        return bool(self.title and self.date and self.id and self.authors)
