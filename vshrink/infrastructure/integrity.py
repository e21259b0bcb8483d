import logging
import subprocess
from pathlib import Path


class IntegrityChecker:
    """Decides whether an existing output file is a usable, complete encode.

    A file passes when it is non-empty and ffmpeg can demux every stream
    (stream copy to the null muxer, no decoding).
    """

    def __init__(self, binary: str = "ffmpeg"):
        self.binary = binary
        self.logger = logging.getLogger(__name__)

    def _build_command(self, file_path: Path):
        return [
            self.binary, "-nostdin", "-v", "error",
            "-i", str(file_path),
            "-map", "0", "-c", "copy",
            "-f", "null", "-",
        ]

    def is_valid(self, file_path: Path) -> bool:
        try:
            if file_path.stat().st_size <= 0:
                return False
        except OSError:
            return False

        try:
            result = subprocess.run(self._build_command(file_path), capture_output=True, text=True)
        except OSError as e:
            self.logger.warning(f"Integrity check could not run for {file_path.name}: {e}")
            return False

        if result.returncode != 0:
            self.logger.info(
                f"Integrity check failed for {file_path}: code={result.returncode} {result.stderr.strip()[:200]}"
            )
            return False
        return True
