"""Domain events for the batch shrink pipeline.

Events flow through the EventBus from the orchestrator and adapters (often on
worker threads) to whoever renders them. The pipeline never talks to the console
directly; see `ui/reporter.py` for the subscriber side.
"""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel
from .models import BatchSummary, EncodeJob, WorkItemState


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class JobEvent(Event):
    """Base class for events related to a single work item."""

    job: EncodeJob


class JobStarted(JobEvent):
    """Emitted right before the encoder is launched for an item."""

    position: int = 0
    total: int = 0
    eta_seconds: Optional[float] = None


class JobProgressUpdated(JobEvent):
    """Emitted when the encoder reports a new (distinct) percentage."""

    progress_percent: float


class JobCompleted(JobEvent):
    """Emitted after a successful encode, once counters are updated."""

    pass


class JobSkipped(JobEvent):
    """Emitted when an item resolves without encoding."""

    reason: WorkItemState


class JobReprocessing(JobEvent):
    """Emitted when a corrupt existing output was removed before re-encoding."""

    pass


class JobFailed(JobEvent):
    """Emitted when probing or encoding fails for an item."""

    error_message: str


class JobInterrupted(JobEvent):
    """Emitted when an in-flight encode is terminated by shutdown."""

    pass


class LedgerWriteFailed(JobEvent):
    """Emitted when a completed item could not be recorded in the resume log."""

    error_message: str


class DiscoveryStarted(Event):
    directory: Path


class DiscoveryFinished(Event):
    files_found: int


class InterruptRequested(Event):
    """Emitted when the run is cancelled (Ctrl+C, SIGTERM or programmatic)."""

    pass


class ProcessingFinished(Event):
    """Emitted when every dispatched item has been resolved."""

    pass


class BatchFinished(Event):
    """Emitted once per run with the final counters, also after interruption."""

    summary: BatchSummary
