"""Sequential detector batches (motion scan, face anonymization).

Each source file is handed to one external tool. A `<file><marker>` sidecar is
touched after success so reruns skip finished files; failures are counted and
the batch moves on.
"""

import logging
from pathlib import Path
from typing import List, Optional
from vshrink.domain.models import BatchSummary, EncodeJob, WorkItem, WorkItemState
from vshrink.domain.events import (
    BatchFinished, DiscoveryStarted, DiscoveryFinished, JobCompleted, JobFailed,
    JobInterrupted, JobSkipped, JobStarted, ProcessingFinished,
)
from vshrink.infrastructure.detectors import (
    DETECTOR_OUTPUT_DIR_NAME, DetectorAdapter, DetectorError,
)
from vshrink.infrastructure.event_bus import EventBus
from vshrink.infrastructure.file_scanner import FileScanner
from vshrink.pipeline.counters import AggregateCounters

DETECTOR_EXTENSIONS = (".mp4", ".avi", ".mpg")


class DetectorRunner:
    def __init__(
        self,
        adapter: DetectorAdapter,
        event_bus: EventBus,
        file_scanner: Optional[FileScanner] = None,
        counters: Optional[AggregateCounters] = None,
    ):
        self.adapter = adapter
        self.event_bus = event_bus
        self.file_scanner = file_scanner or FileScanner(DETECTOR_EXTENSIONS)
        self.counters = counters or AggregateCounters()
        self.logger = logging.getLogger(__name__)

    def skip_reason(self, file_path: Path) -> Optional[WorkItemState]:
        """Why a file needs no run, or None when it should be processed."""
        if self.adapter.marker_path(file_path).exists():
            return WorkItemState.SKIPPED_RESUMED
        if self.adapter.already_done(file_path):
            return WorkItemState.SKIPPED_VALID
        return None

    def discover(self, root: Path) -> List[Path]:
        self.event_bus.publish(DiscoveryStarted(directory=root))
        files = [
            p for p in self.file_scanner.scan(root)
            if not p.parent.name.endswith(DETECTOR_OUTPUT_DIR_NAME)
        ]
        self.event_bus.publish(DiscoveryFinished(files_found=len(files)))
        return files

    def _process(self, file_path: Path, position: int, total: int) -> WorkItemState:
        item = WorkItem(
            input_path=file_path,
            output_path=self.adapter.output_dir_for(file_path) / file_path.name,
        )
        job = EncodeJob(item=item)

        reason = self.skip_reason(file_path)
        if reason is not None:
            job.state = reason
            self.counters.record_skipped()
            self.logger.info(f"SKIP ({reason.value}): {file_path}")
            self.event_bus.publish(JobSkipped(job=job, reason=reason))
            return reason

        job.state = WorkItemState.PROCESSING
        self.event_bus.publish(JobStarted(
            job=job, position=position, total=total,
            eta_seconds=self.counters.eta_seconds(total),
        ))
        try:
            self.adapter.run(file_path)
        except DetectorError as e:
            job.state = WorkItemState.FAILED
            job.error_message = str(e)
            job.diagnostics = "\n".join(e.diagnostics) or None
            self.counters.record_failed()
            self.logger.error(f"FAILED: {file_path} - {e}")
            self.event_bus.publish(JobFailed(job=job, error_message=str(e)))
            return job.state

        self.adapter.marker_path(file_path).touch()
        job.state = WorkItemState.COMPLETED
        # Detectors do not shrink anything; keep byte totals out of the summary
        self.counters.record_processed(0, 0)
        self.logger.info(f"COMPLETED ({self.adapter.label}): {file_path}")
        self.event_bus.publish(JobCompleted(job=job))
        return job.state

    def run(self, root: Path) -> BatchSummary:
        files = self.discover(root)
        self.counters.start()
        interrupted = False
        current: Optional[Path] = None
        try:
            for index, file_path in enumerate(files):
                current = file_path
                self._process(file_path, index, len(files))
                current = None
        except KeyboardInterrupt:
            interrupted = True
            self.logger.info(f"{self.adapter.label} batch interrupted by user")
            if current is not None:
                self.event_bus.publish(JobInterrupted(job=EncodeJob(item=WorkItem(
                    input_path=current,
                    output_path=self.adapter.output_dir_for(current) / current.name,
                ))))

        summary = BatchSummary(
            total_files=len(files),
            counters=self.counters.snapshot(),
            elapsed_seconds=self.counters.elapsed_seconds(),
            interrupted=interrupted,
        )
        if not interrupted:
            self.event_bus.publish(ProcessingFinished())
        self.event_bus.publish(BatchFinished(summary=summary))
        return summary
