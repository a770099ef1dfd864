import logging
import threading

import pytest

from pubmed_ingest import logging_utils


def test_configure_logging_creates_file_handler(tmp_path):
    log_path = tmp_path / "logs" / "run.log"
    logging_utils._CONFIGURED = False  # reset between tests

    logging_utils.configure_logging(
        level="warning",
        log_file=log_path,
        console=False,
        force=True,
    )

    logger = logging.getLogger("pubmed_ingest.tests")
    logger.warning("coverage-check")

    contents = log_path.read_text(encoding="utf-8")
    assert "coverage-check" in contents
    assert logging.getLogger().level == logging.WARNING


def test_configure_logging_reads_file_from_environment(tmp_path, monkeypatch):
    log_path = tmp_path / "env.log"
    monkeypatch.setenv("PUBMED_INGEST_LOG_FILE", str(log_path))
    monkeypatch.setenv("PUBMED_INGEST_LOG_LEVEL", "debug")
    logging_utils._CONFIGURED = False

    logging_utils.configure_logging(force=True)

    logging.getLogger("pubmed_ingest.tests").debug("from-env")
    assert "from-env" in log_path.read_text(encoding="utf-8")
    assert logging.getLogger("httpx").level == logging.WARNING


def test_configure_logging_requires_handler():
    logging_utils._CONFIGURED = False

    with pytest.raises(ValueError):
        logging_utils.configure_logging(
            level="info",
            log_file="",
            console=False,
            force=True,
        )


def test_log_lines_name_the_worker_thread(tmp_path):
    log_path = tmp_path / "threads.log"
    logging_utils._CONFIGURED = False
    logging_utils.configure_logging(level="info", log_file=log_path, force=True)

    worker = threading.Thread(
        target=lambda: logging.getLogger("pubmed_ingest.pipeline").info("job 7"),
        name="PipelineWorker-3",
    )
    worker.start()
    worker.join()

    [line] = log_path.read_text(encoding="utf-8").splitlines()
    assert "PipelineWorker-3" in line
    assert line.endswith("| pubmed_ingest.pipeline | job 7")


def test_second_call_without_force_only_changes_level(tmp_path):
    first_log = tmp_path / "first.log"
    second_log = tmp_path / "second.log"
    logging_utils._CONFIGURED = False
    logging_utils.configure_logging(level="info", log_file=first_log, force=True)

    logging_utils.configure_logging(level="error", log_file=second_log)

    assert logging.getLogger().level == logging.ERROR
    assert not second_log.exists()
