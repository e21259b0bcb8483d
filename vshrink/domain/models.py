from enum import Enum
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

class WorkItemState(str, Enum):
    PENDING = "PENDING"
    SKIPPED_RESUMED = "SKIPPED_RESUMED"  # output already recorded in resume log
    SKIPPED_VALID = "SKIPPED_VALID"      # output exists and passes integrity probe
    SKIPPED_DUPLICATE = "SKIPPED_DUPLICATE"  # another input in the batch owns the same output
    REPROCESSING = "REPROCESSING"        # corrupt output removed, about to re-encode
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def is_skip(self) -> bool:
        return self in (
            WorkItemState.SKIPPED_RESUMED,
            WorkItemState.SKIPPED_VALID,
            WorkItemState.SKIPPED_DUPLICATE,
        )

TERMINAL_STATES = frozenset({
    WorkItemState.SKIPPED_RESUMED,
    WorkItemState.SKIPPED_VALID,
    WorkItemState.SKIPPED_DUPLICATE,
    WorkItemState.COMPLETED,
    WorkItemState.FAILED,
})

class ColorMode(str, Enum):
    MIX = "mix"    # fixed channel-mixing tint
    GRAY = "gray"  # full desaturation

class CropGeometry(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int
    height: int
    x: int
    y: int

class WorkItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    input_path: Path
    output_path: Path
    relative_dir: Path = Path(".")

class EncodeJob(BaseModel):
    item: WorkItem
    state: WorkItemState = WorkItemState.PENDING
    source_size_bytes: int = 0
    output_size_bytes: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration: float = 0.0
    progress_percent: float = Field(default=0.0, ge=0.0, le=100.0)
    interrupted: bool = False
    error_message: Optional[str] = None
    diagnostics: Optional[str] = None
    elapsed_seconds: Optional[float] = None

    @property
    def saved_bytes(self) -> int:
        if self.output_size_bytes is None:
            return 0
        return self.source_size_bytes - self.output_size_bytes

class CountersSnapshot(BaseModel):
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    input_bytes: int = 0
    output_bytes: int = 0

    @property
    def resolved(self) -> int:
        return self.processed + self.skipped + self.failed

    @property
    def saved_bytes(self) -> int:
        return self.input_bytes - self.output_bytes

    @property
    def saved_percent(self) -> int:
        """Space saved as a whole percentage of the processed input."""
        if self.input_bytes <= 0:
            return 0
        return (self.saved_bytes * 100) // self.input_bytes

class BatchSummary(BaseModel):
    total_files: int
    counters: CountersSnapshot
    elapsed_seconds: float = 0.0
    interrupted: bool = False

    @property
    def unresolved(self) -> int:
        return max(0, self.total_files - self.counters.resolved)

    @property
    def average_seconds_per_file(self) -> Optional[float]:
        if self.counters.processed <= 0:
            return None
        return self.elapsed_seconds / self.counters.processed
