import logging
import os
from pathlib import Path


class HousekeepingService:
    """Removes leftovers of previous runs from the output tree."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def cleanup_temp_files(self, directory: Path) -> int:
        """Recursively removes partial encodes (.tmp) left by a crash or kill."""
        removed = 0
        if not Path(directory).exists():
            return removed
        for root, dirs, files in os.walk(directory):
            for file in files:
                if not file.endswith(".tmp"):
                    continue
                path = Path(root) / file
                try:
                    path.unlink()
                    removed += 1
                except OSError as e:
                    self.logger.warning(f"Could not remove stale partial output {path}: {e}")
        if removed:
            self.logger.info(f"Removed {removed} stale partial output(s) from {directory}")
        return removed
