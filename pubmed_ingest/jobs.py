"""Path and URL derivation for a single job index."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pubmed_ingest.config_utils import IngestSettings


@dataclass(frozen=True)
class JobPaths:
    """Every location a job touches, derived only from its index."""

    index: int
    archive_url: str
    checksum_url: str
    staging_dir: Path
    archive_path: Path
    checksum_path: Path
    extracted_path: Path
    output_path: Path

    @classmethod
    def for_index(cls, index: int, settings: IngestSettings) -> JobPaths:
        if index < 0:
            raise ValueError(f"Job index must be non-negative, got {index}")
        source = settings.source
        base_name = f"{source.file_prefix}{index:04d}"
        file_name = f"{base_name}.xml"
        archive_url = f"{source.base_url.rstrip('/')}/{file_name}.gz"
        staging_dir = settings.paths.staging_dir / base_name
        return cls(
            index=index,
            archive_url=archive_url,
            checksum_url=f"{archive_url}.{source.checksum_suffix}",
            staging_dir=staging_dir,
            archive_path=staging_dir / f"{file_name}.gz",
            checksum_path=staging_dir / f"{file_name}.gz.{source.checksum_suffix}",
            extracted_path=staging_dir / file_name,
            output_path=settings.paths.output_dir / f"results_{file_name}.json",
        )
