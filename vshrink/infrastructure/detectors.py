import logging
import subprocess
from pathlib import Path
from typing import List, Optional

DETECTOR_OUTPUT_DIR_NAME = "_output"


class DetectorError(RuntimeError):
    def __init__(self, message: str, diagnostics: Optional[List[str]] = None):
        super().__init__(message)
        self.diagnostics = diagnostics or []


class DetectorAdapter:
    """Runs one external per-file analysis tool to completion.

    Subclasses define the binary, the success marker suffix and the argument
    list. Output lands in `<file dir>/_output`.
    """

    binary: str = ""
    marker_suffix: str = ""
    label: str = ""

    def __init__(self, binary: Optional[str] = None):
        if binary:
            self.binary = binary
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def output_dir_for(file_path: Path) -> Path:
        return file_path.parent / DETECTOR_OUTPUT_DIR_NAME

    def marker_path(self, file_path: Path) -> Path:
        return file_path.with_name(file_path.name + self.marker_suffix)

    def build_command(self, file_path: Path) -> List[str]:
        raise NotImplementedError

    def already_done(self, file_path: Path) -> bool:
        """True when the file needs no run even without a success marker."""
        return False

    def prepare(self, file_path: Path):
        pass

    def run(self, file_path: Path):
        """Raises DetectorError when the tool cannot start or exits nonzero."""
        self.prepare(file_path)
        cmd = self.build_command(file_path)
        self.logger.debug(f"{self.label.upper()}_CMD: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, errors="replace")
        except OSError as e:
            raise DetectorError(f"{self.binary} could not be started: {e}") from e

        if result.returncode != 0:
            tail = [line for line in (result.stderr or "").splitlines() if line.strip()][-20:]
            raise DetectorError(f"{self.binary} exited with code {result.returncode}", tail)


class DvrScanAdapter(DetectorAdapter):
    """Motion/event extraction with dvr-scan."""

    binary = "dvr-scan"
    marker_suffix = ".scan-successful"
    label = "scan"

    def __init__(self, binary: Optional[str] = None, threshold: str = ".5"):
        super().__init__(binary)
        self.threshold = threshold

    def build_command(self, file_path: Path) -> List[str]:
        return [
            self.binary,
            "-i", str(file_path),
            "-t", self.threshold,
            "-m", "ffmpeg",
            "--output-dir", str(self.output_dir_for(file_path)),
            "-q",
        ]


class DefaceAdapter(DetectorAdapter):
    """Face anonymization with deface."""

    binary = "deface"
    marker_suffix = ".deface-successful"
    label = "deface"

    def __init__(self, binary: Optional[str] = None, threshold: str = "0.02", scale: str = "960x540"):
        super().__init__(binary)
        self.threshold = threshold
        self.scale = scale

    @staticmethod
    def defaced_sibling(file_path: Path) -> Path:
        return file_path.with_name(f"{file_path.stem}_defaced{file_path.suffix}")

    def already_done(self, file_path: Path) -> bool:
        return self.defaced_sibling(file_path).exists()

    def prepare(self, file_path: Path):
        output_dir = self.output_dir_for(file_path)
        if not output_dir.exists():
            self.logger.info(f"Creating output folder {output_dir}")
        output_dir.mkdir(parents=True, exist_ok=True)

    def build_command(self, file_path: Path) -> List[str]:
        return [
            self.binary,
            str(file_path),
            "--thresh", self.threshold,
            "--output", str(self.output_dir_for(file_path) / file_path.name),
            "--scale", self.scale,
        ]
