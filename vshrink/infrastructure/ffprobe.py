import re
import subprocess
from pathlib import Path
from typing import Any, Tuple

_RESOLUTION_RE = re.compile(r"^(\d+)x(\d+)$")


class ProbeError(RuntimeError):
    """Source resolution or duration could not be determined."""


def parse_resolution(text: str) -> Tuple[int, int]:
    """Parse ffprobe's 'WIDTHxHEIGHT' output (first line only)."""
    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    if not lines:
        raise ProbeError("ffprobe returned no resolution")
    # csv output may carry a trailing separator for some containers
    candidate = lines[0].rstrip("x")
    match = _RESOLUTION_RE.match(candidate)
    if not match:
        raise ProbeError(f"Malformed resolution '{lines[0]}' (expected WIDTHxHEIGHT)")
    width, height = int(match.group(1)), int(match.group(2))
    if width <= 0 or height <= 0:
        raise ProbeError(f"Invalid resolution '{lines[0]}'")
    return width, height


class FFprobeAdapter:
    """Wrapper around ffprobe to extract stream resolution and duration."""

    def __init__(self, binary: str = "ffprobe"):
        self.binary = binary

    @staticmethod
    def _to_float(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    def _run(self, args, file_path: Path) -> str:
        cmd = [self.binary, "-v", "error", *args, str(file_path)]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise ProbeError(f"ffprobe could not be started: {e}") from e
        if result.returncode != 0:
            raise ProbeError(f"ffprobe failed for {file_path}: {result.stderr.strip()}")
        return result.stdout

    def get_resolution(self, file_path: Path) -> Tuple[int, int]:
        """Returns (width, height) of the first video stream."""
        output = self._run(
            ["-select_streams", "v:0", "-show_entries", "stream=width,height", "-of", "csv=s=x:p=0"],
            file_path,
        )
        return parse_resolution(output)

    def get_duration(self, file_path: Path) -> float:
        """Container duration in seconds, 0.0 when unknown."""
        try:
            output = self._run(
                ["-show_entries", "format=duration", "-of", "default=noprint_wrappers=1:nokey=1"],
                file_path,
            )
        except ProbeError:
            return 0.0
        first = output.strip().splitlines()[0] if output.strip() else ""
        return max(0.0, self._to_float(first))
