from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from .models import ExecutionProgress

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ExecutionProgress], None]


class ProgressReporter:
    """Single delivery point for progress snapshots.

    Deliveries are serialized and a failing sink is logged, never re-raised, so
    the caller's callback cannot disturb the state machine.
    """

    def __init__(self, sink: ProgressSink | None = None) -> None:
        self._sink = sink
        self._lock = threading.Lock()
        self.delivered = 0
        self.failed = 0

    def emit(self, progress: ExecutionProgress) -> None:
        if self._sink is None:
            return
        # Each delivery gets its own copy so a sink that keeps snapshots sees frozen history.
        snapshot = progress.model_copy(
            update={"artifacts": list(progress.artifacts), "learnings": list(progress.learnings)}
        )
        with self._lock:
            try:
                self._sink(snapshot)
            except Exception:  # noqa: BLE001 - sink failures must not reach the engine.
                self.failed += 1
                logger.exception(
                    "Progress sink raised for item %s (status=%s); continuing",
                    progress.current_item_id or "-",
                    progress.status.value,
                )
            else:
                self.delivered += 1
