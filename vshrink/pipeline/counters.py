import threading
import time
from typing import Optional
from vshrink.domain.models import CountersSnapshot


class AggregateCounters:
    """Thread-safe run totals shared by all workers.

    Every update happens under one lock, so the final snapshot accounts for
    exactly the items that reached a terminal state.
    """

    def __init__(self, clock=time.monotonic):
        self._lock = threading.Lock()
        self._clock = clock
        self.processed = 0
        self.skipped = 0
        self.failed = 0
        self.input_bytes = 0
        self.output_bytes = 0
        self.started_at: Optional[float] = None

    def start(self):
        with self._lock:
            if self.started_at is None:
                self.started_at = self._clock()

    def record_processed(self, input_bytes: int, output_bytes: int):
        with self._lock:
            self.processed += 1
            self.input_bytes += input_bytes
            self.output_bytes += output_bytes

    def record_skipped(self):
        with self._lock:
            self.skipped += 1

    def record_failed(self):
        with self._lock:
            self.failed += 1

    def snapshot(self) -> CountersSnapshot:
        with self._lock:
            return CountersSnapshot(
                processed=self.processed,
                skipped=self.skipped,
                failed=self.failed,
                input_bytes=self.input_bytes,
                output_bytes=self.output_bytes,
            )

    def elapsed_seconds(self) -> float:
        with self._lock:
            if self.started_at is None:
                return 0.0
            return max(0.0, self._clock() - self.started_at)

    def eta_seconds(self, total: int) -> Optional[float]:
        """Remaining time from the average time per resolved item so far."""
        snap = self.snapshot()
        elapsed = self.elapsed_seconds()
        if snap.resolved <= 0 or elapsed <= 0:
            return None
        remaining = max(0, total - snap.resolved)
        return (elapsed / snap.resolved) * remaining
