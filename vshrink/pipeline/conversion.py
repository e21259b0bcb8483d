"""Loose-file conversion: re-encode non-mp4 videos into an mp4 beside the source.

Only the top level of the folder is converted. A file whose `<stem>.mp4`
already exists is skipped, which also settles two sources sharing a stem: the
first in sorted order is converted and the rest find its output in place.
"""

import logging
from pathlib import Path
from typing import List, Optional
from vshrink.domain.models import BatchSummary, EncodeJob, WorkItem, WorkItemState
from vshrink.domain.events import (
    BatchFinished, DiscoveryStarted, DiscoveryFinished, JobCompleted, JobFailed,
    JobInterrupted, JobSkipped, JobStarted, ProcessingFinished,
)
from vshrink.infrastructure.event_bus import EventBus
from vshrink.infrastructure.ffmpeg import FFmpegAdapter
from vshrink.infrastructure.ffprobe import FFprobeAdapter
from vshrink.infrastructure.file_scanner import FileScanner
from vshrink.pipeline.counters import AggregateCounters

CONVERT_EXTENSIONS = (".avi", ".mov", ".mpeg", ".mkv", ".wmv", ".m4a", ".m4v")
CONVERTED_EXTENSION = ".mp4"


def converted_path(file_path: Path) -> Path:
    return file_path.with_suffix(CONVERTED_EXTENSION)


class ConversionRunner:
    def __init__(
        self,
        ffmpeg_adapter: FFmpegAdapter,
        event_bus: EventBus,
        ffprobe_adapter: Optional[FFprobeAdapter] = None,
        file_scanner: Optional[FileScanner] = None,
        counters: Optional[AggregateCounters] = None,
        debug: bool = False,
    ):
        self.ffmpeg_adapter = ffmpeg_adapter
        self.event_bus = event_bus
        self.ffprobe_adapter = ffprobe_adapter
        self.file_scanner = file_scanner or FileScanner(CONVERT_EXTENSIONS, recursive=False)
        self.counters = counters or AggregateCounters()
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def discover(self, root: Path) -> List[Path]:
        self.event_bus.publish(DiscoveryStarted(directory=root))
        files = self.file_scanner.collect(root)
        self.logger.info(f"Discovery finished: found={len(files)} in {root}")
        self.event_bus.publish(DiscoveryFinished(files_found=len(files)))
        return files

    def _process(self, job: EncodeJob, position: int, total: int) -> WorkItemState:
        item = job.item
        if item.output_path.exists():
            job.state = WorkItemState.SKIPPED_VALID
            self.counters.record_skipped()
            self.logger.info(f"SKIP (output exists): {item.input_path}")
            self.event_bus.publish(JobSkipped(job=job, reason=job.state))
            return job.state

        job.state = WorkItemState.PROCESSING
        job.source_size_bytes = item.input_path.stat().st_size
        if self.ffprobe_adapter is not None:
            job.duration = self.ffprobe_adapter.get_duration(item.input_path)

        self.event_bus.publish(JobStarted(
            job=job, position=position, total=total,
            eta_seconds=self.counters.eta_seconds(total),
        ))
        self.ffmpeg_adapter.convert(job, debug=self.debug)

        if job.state == WorkItemState.COMPLETED:
            self.counters.record_processed(job.source_size_bytes, job.output_size_bytes or 0)
            self.logger.info(f"CONVERTED: {item.input_path} -> {item.output_path}")
            self.event_bus.publish(JobCompleted(job=job))
            return job.state

        job.state = WorkItemState.FAILED
        message = job.error_message or "Conversion finished without a result"
        self.counters.record_failed()
        self.logger.error(f"FAILED: {item.input_path} - {message}")
        self.event_bus.publish(JobFailed(job=job, error_message=message))
        return job.state

    def run(self, root: Path) -> BatchSummary:
        files = self.discover(root)
        self.counters.start()
        interrupted = False
        current: Optional[EncodeJob] = None
        try:
            for index, file_path in enumerate(files):
                current = EncodeJob(item=WorkItem(input_path=file_path, output_path=converted_path(file_path)))
                self._process(current, index, len(files))
                current = None
        except KeyboardInterrupt:
            interrupted = True
            self.logger.info("Conversion batch interrupted by user")
            if current is not None:
                self.event_bus.publish(JobInterrupted(job=current))

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
