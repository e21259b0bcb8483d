import os
from pathlib import Path
from typing import Iterable, List, Generator, Optional


class FileScanner:
    """Scans for video files in a directory, recursively unless told otherwise."""

    def __init__(self, extensions: Iterable[str], exclude_dirs: Optional[Iterable[Path]] = None, recursive: bool = True):
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]
        self.exclude_dirs = {self._resolve(p) for p in (exclude_dirs or [])}
        self.recursive = recursive

    @staticmethod
    def _resolve(path: Path) -> Path:
        try:
            return Path(path).resolve()
        except OSError:
            return Path(path).absolute()

    def _is_excluded(self, path: Path) -> bool:
        return bool(self.exclude_dirs) and self._resolve(path) in self.exclude_dirs

    def matches(self, file_path: Path) -> bool:
        return file_path.suffix.lower() in self.extensions

    def scan(self, root_dir: Path) -> Generator[Path, None, None]:
        """Yields matching files under root_dir in deterministic (sorted) order."""
        for root, dirs, files in os.walk(str(root_dir)):
            root_path = Path(root)

            if not self.recursive:
                dirs[:] = []
            else:
                # Never descend into the output tree when it lives inside the input tree
                dirs[:] = sorted(d for d in dirs if not self._is_excluded(root_path / d))
            files.sort()

            for file_name in files:
                file_path = root_path / file_name
                if not self.matches(file_path):
                    continue
                if not file_path.is_file():
                    continue
                yield file_path

    def collect(self, root_dir: Path) -> List[Path]:
        return list(self.scan(root_dir))
