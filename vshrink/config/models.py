from pathlib import Path
from typing import Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator
from vshrink.domain.models import ColorMode

DEFAULT_EXTENSIONS: Tuple[str, ...] = (".avi", ".mov", ".mpeg", ".mkv", ".wmv", ".m4a", ".m4v", ".mp4")
DEFAULT_WATERMARK = Path("watermark.png")
DEFAULT_RESUME_LOG = Path(".shrink_resume.log")
DEFAULT_OUTPUT_DIR_NAME = "_output"

SOFTWARE_PRESETS = (
    "ultrafast", "superfast", "veryfast", "faster", "fast",
    "medium", "slow", "slower", "veryslow",
)
HARDWARE_PRESETS = ("p1", "p2", "p3", "p4", "p5", "p6", "p7")


def _normalize_extensions(value) -> Tuple[str, ...]:
    exts = []
    for ext in value:
        ext = str(ext).strip().lower()
        if not ext:
            continue
        exts.append(ext if ext.startswith(".") else f".{ext}")
    if not exts:
        raise ValueError("At least one extension is required.")
    return tuple(dict.fromkeys(exts))


def _validate_preset(value: str) -> str:
    value = value.strip().lower()
    if value not in SOFTWARE_PRESETS and value not in HARDWARE_PRESETS:
        raise ValueError(
            f"Unknown preset '{value}'. Use one of {', '.join(SOFTWARE_PRESETS + HARDWARE_PRESETS)}"
        )
    return value


class DefaultsConfig(BaseModel):
    """File-level defaults (the `defaults:` section of the YAML config)."""
    model_config = ConfigDict(extra="forbid")

    quality: int = Field(default=23, ge=0, le=51)
    preset: str = "fast"
    color_mode: ColorMode = ColorMode.MIX
    output_width: int = Field(default=640, gt=0)
    output_height: int = Field(default=360, gt=0)
    watermark_path: Path = DEFAULT_WATERMARK
    resume_log: Path = DEFAULT_RESUME_LOG
    extensions: Tuple[str, ...] = DEFAULT_EXTENSIONS
    blur_enabled: bool = False
    use_hardware_encoder: bool = False
    debug: bool = False

    @field_validator("extensions", mode="before")
    @classmethod
    def validate_extensions(cls, v):
        return _normalize_extensions(v)

    @field_validator("preset")
    @classmethod
    def validate_preset(cls, v: str) -> str:
        return _validate_preset(v)


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)


class JobConfig(BaseModel):
    """Immutable per-run configuration, shared read-only by every worker."""
    model_config = ConfigDict(frozen=True)

    input_root: Path
    output_root: Path
    max_parallel_jobs: int = Field(default=1, ge=1)
    threads_per_job: int = Field(default=1, ge=1)
    quality: int = Field(default=23, ge=0, le=51)
    preset: str = "fast"
    blur_enabled: bool = False
    use_hardware_encoder: bool = False
    watermark_path: Path = DEFAULT_WATERMARK
    resume_log: Path = DEFAULT_RESUME_LOG
    output_width: int = Field(default=640, gt=0)
    output_height: int = Field(default=360, gt=0)
    color_mode: ColorMode = ColorMode.MIX
    extensions: Tuple[str, ...] = DEFAULT_EXTENSIONS
    output_suffix: str = ".resized"
    output_extension: str = ".mp4"
    software_encoder: str = "libx264"
    hardware_encoder: str = "h264_nvenc"
    debug: bool = False

    @field_validator("extensions", mode="before")
    @classmethod
    def validate_extensions(cls, v):
        return _normalize_extensions(v)

    @field_validator("preset")
    @classmethod
    def validate_preset(cls, v: str) -> str:
        return _validate_preset(v)
