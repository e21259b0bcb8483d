import logging
import os
import threading
from pathlib import Path
from typing import Set, Union

PathLike = Union[str, Path]


class ResumeLedger:
    """Append-only log of completed output paths, one per line.

    The file outlives a single run: it is read once at startup and appended to as
    items complete, so an interrupted or crashed run resumes where it stopped.
    Membership checks read an in-memory snapshot without locking; a stale miss
    only costs a redundant re-encode. Appends are serialized by a lock so two
    workers finishing together never interleave partial lines.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.logger = logging.getLogger(__name__)
        self._entries: Set[str] = set()
        self._write_lock = threading.Lock()

    @staticmethod
    def _key(path: PathLike) -> str:
        return str(path)

    def load(self) -> int:
        """Read existing entries; an unreadable ledger is treated as empty."""
        if not self.path.exists():
            self.logger.info(f"Resume log not found, starting fresh: {self.path}")
            return 0
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                entries = {line.rstrip("\r\n") for line in f}
        except (OSError, UnicodeDecodeError) as e:
            self.logger.warning(f"Cannot read resume log {self.path}, treating as empty: {e}")
            return 0
        entries.discard("")
        self._entries = entries
        self.logger.info(f"Resume log loaded: {len(entries)} entries from {self.path}")
        return len(entries)

    def contains(self, path: PathLike) -> bool:
        return self._key(path) in self._entries

    def __contains__(self, path: PathLike) -> bool:
        return self.contains(path)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, path: PathLike) -> bool:
        """Record a completed output. Returns False if the write failed."""
        key = self._key(path)
        with self._write_lock:
            try:
                if self.path.parent and not self.path.parent.exists():
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(key + "\n")
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                self.logger.warning(f"Cannot append to resume log {self.path}: {e} ({key} will not be resumable)")
                return False
            # Rebind instead of mutating so lock-free readers never see a resizing set
            self._entries = self._entries | {key}
        return True
