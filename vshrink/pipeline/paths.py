"""Output path planning: mirror the input tree under the output root."""

from pathlib import Path
from vshrink.domain.models import WorkItem

DEFAULT_SUFFIX = ".resized"
DEFAULT_EXTENSION = ".mp4"


def relative_location(input_root: Path, file_path: Path) -> Path:
    """Path of `file_path` relative to `input_root` (raises ValueError if outside)."""
    return Path(file_path).relative_to(Path(input_root))


def output_name(file_path: Path, suffix: str = DEFAULT_SUFFIX, extension: str = DEFAULT_EXTENSION) -> str:
    return f"{Path(file_path).stem}{suffix}{extension}"


def plan_output_path(
    input_root: Path,
    file_path: Path,
    output_root: Path,
    suffix: str = DEFAULT_SUFFIX,
    extension: str = DEFAULT_EXTENSION,
    create_dirs: bool = True,
) -> Path:
    """Derive the mirrored output path for `file_path`.

    root/a/b/c.mov -> output_root/a/b/c.resized.mp4
    root/c.mov     -> output_root/c.resized.mp4

    The parent directory of the result is created unless `create_dirs` is False.
    """
    rel_dir = relative_location(input_root, file_path).parent
    output_path = Path(output_root) / rel_dir / output_name(file_path, suffix, extension)
    if create_dirs:
        output_path.parent.mkdir(parents=True, exist_ok=True)
    return output_path


def make_work_item(
    input_root: Path,
    file_path: Path,
    output_root: Path,
    suffix: str = DEFAULT_SUFFIX,
    extension: str = DEFAULT_EXTENSION,
) -> WorkItem:
    rel_dir = relative_location(input_root, file_path).parent
    return WorkItem(
        input_path=Path(file_path),
        output_path=plan_output_path(input_root, file_path, output_root, suffix, extension),
        relative_dir=rel_dir,
    )
