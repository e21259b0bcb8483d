import shutil
from typing import Iterable, List

ENCODER_TOOLS = ("ffmpeg", "ffprobe")


class MissingDependencyError(RuntimeError):
    def __init__(self, missing: List[str]):
        self.missing = missing
        super().__init__(f"Missing required dependencies: {', '.join(missing)}")


def find_missing(commands: Iterable[str]) -> List[str]:
    return [cmd for cmd in commands if shutil.which(cmd) is None]


def ensure_available(commands: Iterable[str]) -> None:
    missing = find_missing(commands)
    if missing:
        raise MissingDependencyError(missing)
