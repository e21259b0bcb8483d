"""Per-item action selection.

The resume log is consulted before the filesystem: a logged output is done even
if it has since been moved away, and an unlogged output left behind by a crash
has to prove itself through the integrity probe before it counts as done.
"""

import logging
from typing import Protocol
from pathlib import Path
from vshrink.domain.models import WorkItem, WorkItemState


class LedgerView(Protocol):
    def contains(self, path) -> bool: ...


class IntegrityProbe(Protocol):
    def is_valid(self, file_path: Path) -> bool: ...


class WorkItemDecider:
    def __init__(self, ledger: LedgerView, integrity_checker: IntegrityProbe):
        self.ledger = ledger
        self.integrity_checker = integrity_checker
        self.logger = logging.getLogger(__name__)

    def decide(self, item: WorkItem) -> WorkItemState:
        output_path = item.output_path

        if self.ledger.contains(output_path):
            return WorkItemState.SKIPPED_RESUMED

        if output_path.exists():
            if self.integrity_checker.is_valid(output_path):
                return WorkItemState.SKIPPED_VALID
            self.logger.warning(f"Existing output failed integrity check, removing: {output_path}")
            output_path.unlink()
            return WorkItemState.REPROCESSING

        return WorkItemState.PROCESSING
