import threading
from datetime import datetime
from typing import Callable, Dict, Optional
from rich.console import Console
from rich.markup import escape
from vshrink.infrastructure.event_bus import EventBus
from vshrink.domain.models import WorkItemState
from vshrink.domain.events import (
    BatchFinished, DiscoveryStarted, DiscoveryFinished, InterruptRequested,
    JobCompleted, JobFailed, JobInterrupted, JobProgressUpdated, JobReprocessing,
    JobSkipped, JobStarted, LedgerWriteFailed, ProcessingFinished,
)
from vshrink.ui.formatting import format_eta, format_size
from vshrink.ui.summary import render_summary

PROGRESS_STEP = 25

SKIP_REASONS = {
    WorkItemState.SKIPPED_RESUMED: "already processed",
    WorkItemState.SKIPPED_VALID: "valid output exists",
    WorkItemState.SKIPPED_DUPLICATE: "output name taken by another file",
}


class ConsoleReporter:
    """Subscribes to EventBus and prints timestamped, coloured status lines.

    Handlers run on worker threads; output is serialized by a lock so lines
    from concurrent jobs never interleave.
    """

    def __init__(
        self,
        bus: EventBus,
        console: Optional[Console] = None,
        clock: Callable[[], datetime] = datetime.now,
        summary_title: str = "Processing Summary",
    ):
        self.bus = bus
        self.console = console or Console(highlight=False)
        self.clock = clock
        self.summary_title = summary_title
        self._lock = threading.Lock()
        self._progress_marks: Dict[str, int] = {}
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(DiscoveryStarted, self.on_discovery_started)
        self.bus.subscribe(DiscoveryFinished, self.on_discovery_finished)
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobProgressUpdated, self.on_job_progress)
        self.bus.subscribe(JobCompleted, self.on_job_completed)
        self.bus.subscribe(JobSkipped, self.on_job_skipped)
        self.bus.subscribe(JobReprocessing, self.on_job_reprocessing)
        self.bus.subscribe(JobFailed, self.on_job_failed)
        self.bus.subscribe(JobInterrupted, self.on_job_interrupted)
        self.bus.subscribe(LedgerWriteFailed, self.on_ledger_write_failed)
        self.bus.subscribe(InterruptRequested, self.on_interrupt_request)
        self.bus.subscribe(ProcessingFinished, self.on_processing_finished)
        self.bus.subscribe(BatchFinished, self.on_batch_finished)

    def _emit(self, style: str, message: str):
        stamp = self.clock().strftime("%H:%M:%S")
        with self._lock:
            self.console.print(f"[dim]{escape(f'[{stamp}]')}[/] [{style}]{escape(message)}[/]")

    def on_discovery_started(self, event: DiscoveryStarted):
        self._emit("blue", f"Scanning {event.directory}")

    def on_discovery_finished(self, event: DiscoveryFinished):
        self._emit("blue", f"Found {event.files_found} file(s)")

    def on_job_started(self, event: JobStarted):
        self._progress_marks[str(event.job.item.input_path)] = 0
        name = event.job.item.input_path.name
        self._emit(
            "cyan",
            f"Processing {event.position + 1}/{event.total}: {name} (ETA {format_eta(event.eta_seconds)})",
        )

    def on_job_progress(self, event: JobProgressUpdated):
        key = str(event.job.item.input_path)
        step = (int(event.progress_percent) // PROGRESS_STEP) * PROGRESS_STEP
        if step <= 0 or step >= 100:
            return
        with self._lock:
            if step <= self._progress_marks.get(key, 0):
                return
            self._progress_marks[key] = step
        self._emit("dim cyan", f"{event.job.item.input_path.name}: {step}%")

    def on_job_completed(self, event: JobCompleted):
        job = event.job
        self._progress_marks.pop(str(job.item.input_path), None)
        if job.output_size_bytes is None:
            self._emit("green", f"Completed: {job.item.input_path.name}")
            return
        self._emit(
            "green",
            f"Completed: {job.item.output_path.name} "
            f"({format_size(job.source_size_bytes)} -> {format_size(job.output_size_bytes)}, "
            f"saved {format_size(job.saved_bytes)})",
        )

    def on_job_skipped(self, event: JobSkipped):
        reason = SKIP_REASONS.get(event.reason, event.reason.value)
        self._emit("yellow", f"Skipped ({reason}): {event.job.item.input_path.name}")

    def on_job_reprocessing(self, event: JobReprocessing):
        self._emit("yellow", f"Corrupt output removed, re-encoding: {event.job.item.output_path.name}")

    def on_job_failed(self, event: JobFailed):
        self._progress_marks.pop(str(event.job.item.input_path), None)
        self._emit("bold red", f"FAILED: {event.job.item.input_path.name} - {event.error_message}")
        if event.job.diagnostics:
            with self._lock:
                for line in event.job.diagnostics.splitlines():
                    self.console.print(f"    [red]{escape(line)}[/]")

    def on_job_interrupted(self, event: JobInterrupted):
        self._progress_marks.pop(str(event.job.item.input_path), None)
        self._emit("magenta", f"Interrupted: {event.job.item.input_path.name} (partial output removed)")

    def on_ledger_write_failed(self, event: LedgerWriteFailed):
        self._emit("bold yellow", f"Warning: {event.error_message}")

    def on_interrupt_request(self, event: InterruptRequested):
        self._emit("bold magenta", "Interrupt received, stopping after active jobs terminate...")

    def on_processing_finished(self, event: ProcessingFinished):
        self._emit("bold green", "All files processed")

    def on_batch_finished(self, event: BatchFinished):
        with self._lock:
            self.console.print()
            self.console.print(render_summary(event.summary, title=self.summary_title))
