"""Batch orchestrator for the shrink job lifecycle.

Discovers candidate videos under the input root, decides per item whether it
needs work, and runs the encodes on a bounded thread pool. Workers share only
the AggregateCounters and the ResumeLedger; everything user-facing goes out as
events on the EventBus.

Phases: DISCOVERING -> DISPATCHING -> DRAINING -> SUMMARIZING -> DONE, or
INTERRUPTED when the run is cancelled. An interrupted run still summarizes:
completed items were appended to the resume log as they finished, and encodes
that were cut short never reach it.
"""

import threading
import concurrent.futures
import logging
import time
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional
from vshrink.config.models import JobConfig
from vshrink.domain.models import BatchSummary, EncodeJob, WorkItem, WorkItemState
from vshrink.domain.events import (
    BatchFinished, DiscoveryStarted, DiscoveryFinished, InterruptRequested,
    JobCompleted, JobFailed, JobInterrupted, JobReprocessing, JobSkipped, JobStarted,
    LedgerWriteFailed, ProcessingFinished,
)
from vshrink.infrastructure.event_bus import EventBus
from vshrink.infrastructure.file_scanner import FileScanner
from vshrink.infrastructure.ffprobe import FFprobeAdapter, ProbeError
from vshrink.infrastructure.ffmpeg import FFmpegAdapter
from vshrink.infrastructure.housekeeping import HousekeepingService
from vshrink.infrastructure.ledger import ResumeLedger
from vshrink.pipeline.counters import AggregateCounters
from vshrink.pipeline.decision import WorkItemDecider
from vshrink.pipeline.filters import build_filter_chain
from vshrink.pipeline.geometry import InvalidGeometryError, resolve_crop_geometry
from vshrink.pipeline.paths import make_work_item


class BatchPhase(str, Enum):
    IDLE = "IDLE"
    DISCOVERING = "DISCOVERING"
    DISPATCHING = "DISPATCHING"
    DRAINING = "DRAINING"
    SUMMARIZING = "SUMMARIZING"
    DONE = "DONE"
    INTERRUPTED = "INTERRUPTED"


class Orchestrator:
    """Resumable, concurrency-bounded batch scheduler.

    Args:
        config: Frozen JobConfig shared read-only by every worker.
        event_bus: EventBus for discovery/job/summary events.
        file_scanner: FileScanner configured with the extension allow-list.
        ledger: Loaded ResumeLedger (completed outputs of previous runs).
        decider: WorkItemDecider choosing skip/reprocess/process per item.
        ffprobe_adapter: Source resolution and duration probing.
        ffmpeg_adapter: Encoder supervision.
        counters: Shared AggregateCounters (created if omitted).
        housekeeping: Stale partial-output cleanup before dispatch.
        interrupt_grace_seconds: How long to wait for in-flight encodes to stop.
    """

    def __init__(
        self,
        config: JobConfig,
        event_bus: EventBus,
        file_scanner: FileScanner,
        ledger: ResumeLedger,
        decider: WorkItemDecider,
        ffprobe_adapter: FFprobeAdapter,
        ffmpeg_adapter: FFmpegAdapter,
        counters: Optional[AggregateCounters] = None,
        housekeeping: Optional[HousekeepingService] = None,
        interrupt_grace_seconds: float = 10.0,
    ):
        self.config = config
        self.event_bus = event_bus
        self.file_scanner = file_scanner
        self.ledger = ledger
        self.decider = decider
        self.ffprobe_adapter = ffprobe_adapter
        self.ffmpeg_adapter = ffmpeg_adapter
        self.counters = counters or AggregateCounters()
        self.housekeeping = housekeeping
        self.interrupt_grace_seconds = interrupt_grace_seconds
        self.logger = logging.getLogger(__name__)

        self._shutdown_event = threading.Event()  # Signal workers to stop
        self._phase = BatchPhase.IDLE
        self._phase_lock = threading.Lock()
        self._output_owners: Dict[Path, Path] = {}
        self.total_files = 0

    # -- state -------------------------------------------------------------

    @property
    def phase(self) -> BatchPhase:
        with self._phase_lock:
            return self._phase

    def _set_phase(self, phase: BatchPhase):
        with self._phase_lock:
            previous, self._phase = self._phase, phase
        self.logger.debug(f"PHASE: {previous.value} -> {phase.value}")

    @property
    def interrupted(self) -> bool:
        return self._shutdown_event.is_set()

    def request_interrupt(self):
        """Stop dispatching and ask in-flight encodes to terminate."""
        if self._shutdown_event.is_set():
            return
        self.logger.info("Interrupt requested - stopping dispatch and terminating active encodes")
        self._shutdown_event.set()
        self.event_bus.publish(InterruptRequested())

    # -- discovery ---------------------------------------------------------

    def discover(self) -> List[WorkItem]:
        input_root = self.config.input_root
        self.event_bus.publish(DiscoveryStarted(directory=input_root))
        items = []
        for file_path in self.file_scanner.scan(input_root):
            items.append(make_work_item(
                input_root,
                file_path,
                self.config.output_root,
                suffix=self.config.output_suffix,
                extension=self.config.output_extension,
            ))
        self._claim_outputs(items)
        self.logger.info(f"Discovery finished: found={len(items)} in {input_root}")
        self.event_bus.publish(DiscoveryFinished(files_found=len(items)))
        return items

    def _claim_outputs(self, items: List[WorkItem]):
        """The first input (in scan order) to map onto an output path owns it."""
        self._output_owners = {}
        for item in items:
            owner = self._output_owners.setdefault(item.output_path, item.input_path)
            if owner != item.input_path:
                self.logger.warning(
                    f"Output collision: {item.input_path} and {owner} both map to {item.output_path}; "
                    f"only {owner.name} will be encoded"
                )

    # -- per item ----------------------------------------------------------

    def _prepare_job(self, job: EncodeJob) -> str:
        """Probe the source and derive the filter graph (raises on bad input)."""
        source = job.item.input_path
        width, height = self.ffprobe_adapter.get_resolution(source)
        job.width, job.height = width, height
        job.duration = self.ffprobe_adapter.get_duration(source)
        geometry = resolve_crop_geometry(height)
        return build_filter_chain(
            geometry,
            self.config.blur_enabled,
            self.config.output_width,
            self.config.output_height,
            self.config.color_mode,
        )

    def _fail(self, job: EncodeJob, message: str) -> WorkItemState:
        job.state = WorkItemState.FAILED
        job.error_message = message
        self.counters.record_failed()
        self.logger.error(f"FAILED: {job.item.input_path} - {message}")
        self.event_bus.publish(JobFailed(job=job, error_message=message))
        return job.state

    def _process_item(self, item: WorkItem) -> Optional[WorkItemState]:
        """Runs the full pipeline for one item; returns its terminal state.

        Returns None when the item was left unresolved by an interrupt.
        """
        if self._shutdown_event.is_set():
            return None

        filename = item.input_path.name
        start_time = time.monotonic()
        if self.config.debug:
            self.logger.debug(f"PROCESS_START: {filename} (thread {threading.get_ident()})")

        job = EncodeJob(item=item)
        resolved = False
        try:
            owner = self._output_owners.get(item.output_path, item.input_path)
            state = WorkItemState.SKIPPED_DUPLICATE if owner != item.input_path else self.decider.decide(item)
            if state.is_skip:
                job.state = state
                self.counters.record_skipped()
                resolved = True
                self.logger.info(f"SKIP ({state.value}): {item.input_path}")
                self.event_bus.publish(JobSkipped(job=job, reason=state))
                return state

            if state == WorkItemState.REPROCESSING:
                job.state = state
                self.logger.info(f"REPROCESS: {item.output_path} was corrupt and has been removed")
                self.event_bus.publish(JobReprocessing(job=job))

            job.state = WorkItemState.PROCESSING
            job.source_size_bytes = item.input_path.stat().st_size

            try:
                filter_graph = self._prepare_job(job)
            except (ProbeError, InvalidGeometryError) as e:
                resolved = True
                return self._fail(job, str(e))

            snapshot = self.counters.snapshot()
            self.event_bus.publish(JobStarted(
                job=job,
                position=snapshot.resolved,
                total=self.total_files,
                eta_seconds=self.counters.eta_seconds(self.total_files),
            ))

            self.ffmpeg_adapter.encode(job, self.config, filter_graph, shutdown_event=self._shutdown_event)

            if job.interrupted:
                self.logger.info(f"INTERRUPTED: {item.input_path} (partial output discarded)")
                self.event_bus.publish(JobInterrupted(job=job))
                return None

            if job.state == WorkItemState.COMPLETED:
                # Count before recording: anything in the ledger is always in processed
                self.counters.record_processed(job.source_size_bytes, job.output_size_bytes or 0)
                resolved = True
                if not self.ledger.append(item.output_path):
                    self.event_bus.publish(LedgerWriteFailed(
                        job=job,
                        error_message=f"Could not record {item.output_path} in {self.ledger.path}",
                    ))
                self.logger.info(
                    f"COMPLETED: {item.output_path} ({job.source_size_bytes} -> {job.output_size_bytes} bytes)"
                )
                self.event_bus.publish(JobCompleted(job=job))
                return job.state

            resolved = True
            return self._fail(job, job.error_message or "Encoding finished without a result")

        except Exception as e:
            self.logger.exception(f"Exception processing {filename}: {e}")
            if resolved:
                return job.state
            return self._fail(job, f"Exception: {e}")
        finally:
            if self.config.debug:
                elapsed = time.monotonic() - start_time
                self.logger.debug(f"PROCESS_END: {filename} state={job.state.value} elapsed={elapsed:.2f}s")

    # -- run ---------------------------------------------------------------

    def _collect(self, future: concurrent.futures.Future):
        if future.cancelled():
            return
        try:
            future.result()
        except Exception as e:
            self.logger.error(f"Future failed with exception: {e}")

    def _drain(self, in_flight: Dict[concurrent.futures.Future, WorkItem]):
        """Wait for every submitted item; cancels queued ones once interrupted."""
        cancelled = False
        while in_flight:
            if self._shutdown_event.is_set() and not cancelled:
                for future in list(in_flight):
                    if future.cancel():
                        del in_flight[future]
                cancelled = True
                if not in_flight:
                    break
            done, _ = concurrent.futures.wait(
                list(in_flight),
                timeout=0.5,
                return_when=concurrent.futures.FIRST_COMPLETED
            )
            for future in done:
                self._collect(future)
                del in_flight[future]

    def _drain_after_interrupt(self, in_flight: Dict[concurrent.futures.Future, WorkItem]):
        for future in list(in_flight):
            if future.cancel():
                del in_flight[future]
        self.logger.info(
            f"Waiting for {len(in_flight)} active encode(s) to terminate (max {self.interrupt_grace_seconds:.0f}s)..."
        )
        deadline = time.monotonic() + self.interrupt_grace_seconds
        try:
            while in_flight:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self.logger.warning(f"{len(in_flight)} encode(s) still running after grace period")
                    break
                done, _ = concurrent.futures.wait(
                    list(in_flight),
                    timeout=min(0.2, remaining),
                    return_when=concurrent.futures.FIRST_COMPLETED
                )
                for future in done:
                    self._collect(future)
                    del in_flight[future]
        except KeyboardInterrupt:
            self.logger.warning("Second interrupt - not waiting for active encodes")

    def _summarize(self) -> BatchSummary:
        self._set_phase(BatchPhase.SUMMARIZING)
        summary = BatchSummary(
            total_files=self.total_files,
            counters=self.counters.snapshot(),
            elapsed_seconds=self.counters.elapsed_seconds(),
            interrupted=self.interrupted,
        )
        c = summary.counters
        self.logger.info(
            f"Summary: total={summary.total_files} processed={c.processed} skipped={c.skipped} "
            f"failed={c.failed} unresolved={summary.unresolved} input_bytes={c.input_bytes} "
            f"output_bytes={c.output_bytes} elapsed={summary.elapsed_seconds:.1f}s interrupted={summary.interrupted}"
        )
        if not summary.interrupted:
            self.event_bus.publish(ProcessingFinished())
        self.event_bus.publish(BatchFinished(summary=summary))
        self._set_phase(BatchPhase.INTERRUPTED if summary.interrupted else BatchPhase.DONE)
        return summary

    def run(self) -> BatchSummary:
        """Discover, dispatch and drain; always ends with a summary."""
        in_flight: Dict[concurrent.futures.Future, WorkItem] = {}
        executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        try:
            self._set_phase(BatchPhase.DISCOVERING)
            items = self.discover()
            self.total_files = len(items)

            if not items:
                self.logger.info("No files to process")
                return self._summarize()

            if self.housekeeping:
                self.housekeeping.cleanup_temp_files(self.config.output_root)

            self.counters.start()
            self._set_phase(BatchPhase.DISPATCHING)
            self.logger.info(
                f"Dispatching {len(items)} items on {self.config.max_parallel_jobs} workers "
                f"({self.config.threads_per_job} threads each)"
            )
            executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=self.config.max_parallel_jobs,
                thread_name_prefix="vshrink-worker",
            )
            for item in items:
                if self._shutdown_event.is_set():
                    break
                in_flight[executor.submit(self._process_item, item)] = item

            self._set_phase(BatchPhase.DRAINING)
            self._drain(in_flight)

        except KeyboardInterrupt:
            self.logger.info("Ctrl+C detected - stopping new tasks and interrupting active jobs...")
            self.request_interrupt()
            self._drain_after_interrupt(in_flight)
        finally:
            if executor is not None:
                executor.shutdown(wait=False, cancel_futures=True)

        return self._summarize()
