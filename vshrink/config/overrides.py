import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from vshrink.config.models import AppConfig, JobConfig, DEFAULT_OUTPUT_DIR_NAME
from vshrink.domain.models import ColorMode

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CliConfigOverrides:
    jobs: Optional[int] = None
    threads: Optional[int] = None
    quality: Optional[int] = None
    preset: Optional[str] = None
    hardware: Optional[bool] = None
    blur: Optional[bool] = None
    color_mode: Optional[ColorMode] = None
    watermark_path: Optional[Path] = None
    resume_log: Optional[Path] = None
    debug: Optional[bool] = None


def detect_cpu_count() -> int:
    return os.cpu_count() or 1


def default_parallel_jobs(cpu_count: int, use_hardware_encoder: bool) -> int:
    """Parallel job bound derived from core count.

    Software encodes get a quarter of the cores as jobs so each ffmpeg keeps
    several threads; the hardware encoder needs less CPU per job, so half.
    """
    divisor = 2 if use_hardware_encoder else 4
    return max(1, cpu_count // divisor)


def default_threads_per_job(cpu_count: int, jobs: int) -> int:
    return max(1, cpu_count // max(1, jobs))


def default_output_root(input_root: Path) -> Path:
    return input_root / DEFAULT_OUTPUT_DIR_NAME


def build_job_config(
    app_config: AppConfig,
    input_root: Path,
    output_root: Optional[Path] = None,
    overrides: Optional[CliConfigOverrides] = None,
    cpu_count: Optional[int] = None,
) -> JobConfig:
    """Merge YAML defaults with CLI overrides into the frozen JobConfig."""
    overrides = overrides or CliConfigOverrides()
    defaults = app_config.defaults
    cpus = cpu_count or detect_cpu_count()

    def pick(override, default):
        return default if override is None else override

    use_hw = pick(overrides.hardware, defaults.use_hardware_encoder)
    jobs = overrides.jobs or default_parallel_jobs(cpus, use_hw)
    threads = overrides.threads or default_threads_per_job(cpus, jobs)

    if overrides.jobs is None:
        _logger.info(f"Auto-detected {cpus} CPU cores, using {jobs} parallel jobs")

    return JobConfig(
        input_root=input_root,
        output_root=output_root or default_output_root(input_root),
        max_parallel_jobs=jobs,
        threads_per_job=threads,
        quality=pick(overrides.quality, defaults.quality),
        preset=pick(overrides.preset, defaults.preset),
        blur_enabled=pick(overrides.blur, defaults.blur_enabled),
        use_hardware_encoder=use_hw,
        watermark_path=pick(overrides.watermark_path, defaults.watermark_path),
        resume_log=pick(overrides.resume_log, defaults.resume_log),
        output_width=defaults.output_width,
        output_height=defaults.output_height,
        color_mode=pick(overrides.color_mode, defaults.color_mode),
        extensions=defaults.extensions,
        debug=pick(overrides.debug, defaults.debug),
    )
