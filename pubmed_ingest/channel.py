"""Multi-producer, single-consumer channel carrying worker status updates."""

from __future__ import annotations

import queue

from pubmed_ingest.schema import ProgressMessage, WorkerState, WorkerStatus


class ProgressChannel:
    """Unbounded queue of ``ProgressMessage``; sending never blocks."""

    def __init__(self) -> None:
        self._queue: queue.Queue[ProgressMessage] = queue.Queue()

    def send(self, worker_id: int, status: WorkerStatus) -> None:
        self._queue.put_nowait(ProgressMessage(worker_id=worker_id, status=status))

    def receive(self, timeout: float | None = None) -> ProgressMessage | None:
        """Return the next message, or ``None`` if none arrives within ``timeout``."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def terminate(self) -> None:
        """Tell the consumer to stop. Sent once, after every worker has finished."""
        self.send(0, WorkerStatus(WorkerState.TERMINATE))
