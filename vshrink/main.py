import signal
import typer
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from vshrink.config.loader import load_config
from vshrink.config.models import AppConfig
from vshrink.config.overrides import CliConfigOverrides, build_job_config, default_output_root
from vshrink.domain.models import ColorMode
from vshrink.infrastructure.logging import setup_logging
from vshrink.infrastructure.event_bus import EventBus
from vshrink.infrastructure.file_scanner import FileScanner
from vshrink.infrastructure.ffprobe import FFprobeAdapter
from vshrink.infrastructure.ffmpeg import FFmpegAdapter, encoder_label
from vshrink.infrastructure.integrity import IntegrityChecker
from vshrink.infrastructure.housekeeping import HousekeepingService
from vshrink.infrastructure.ledger import ResumeLedger
from vshrink.infrastructure.dependencies import ENCODER_TOOLS, MissingDependencyError, ensure_available
from vshrink.infrastructure.detectors import DefaceAdapter, DetectorAdapter, DvrScanAdapter
from vshrink.pipeline.decision import WorkItemDecider
from vshrink.pipeline.conversion import ConversionRunner
from vshrink.pipeline.detection import DetectorRunner
from vshrink.pipeline.orchestrator import Orchestrator
from vshrink.ui.reporter import ConsoleReporter

DEFAULT_CONFIG_PATH = Path("conf/vshrink.yaml")

app = typer.Typer(help="vshrink - batch watermark, redact and shrink videos for sharing")


def _fail(message: str):
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _load_app_config(config_path: Optional[Path]) -> AppConfig:
    if config_path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            return AppConfig()
        config_path = DEFAULT_CONFIG_PATH
    try:
        return load_config(config_path)
    except FileNotFoundError as exc:
        _fail(str(exc))
    except ValueError as exc:
        # pydantic.ValidationError is a ValueError
        _fail(f"Invalid config {config_path}: {exc}")


def _require_directory(path: Path) -> Path:
    if not path.exists():
        _fail(f"Input directory does not exist: {path}")
    if not path.is_dir():
        _fail(f"Input path is not a directory: {path}")
    return path


@contextmanager
def _sigterm_as_interrupt():
    """Route SIGTERM through the same path as Ctrl+C while the batch runs."""
    def _handler(signum, frame):
        raise KeyboardInterrupt

    try:
        previous = signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # Not on the main thread; leave signal handling alone
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


@app.command()
def shrink(
    input_dir: Path = typer.Argument(..., help="Directory to scan recursively for videos"),
    output_dir: Optional[Path] = typer.Argument(None, help="Output root (default: INPUT/_output)"),
    jobs: Optional[int] = typer.Option(None, "--jobs", "-j", min=1, help="Parallel encodes (default: auto from CPU count)"),
    quality: Optional[int] = typer.Option(None, "--quality", "-q", min=0, max=51, help="CRF (CPU) or CQ (GPU), default 23"),
    preset: Optional[str] = typer.Option(None, "--preset", "-p", help="Encoder preset, default fast"),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", min=1, help="Threads per encode (default: derived)"),
    hardware: Optional[bool] = typer.Option(None, "--hw/--cpu", help="Use the NVENC hardware encoder"),
    blur: Optional[bool] = typer.Option(None, "--blur/--no-blur", "-b", help="Blur the burned-in timestamp region"),
    color: Optional[ColorMode] = typer.Option(None, "--color", help="Colour treatment: mix or gray"),
    watermark: Optional[Path] = typer.Option(None, "--watermark", help="Watermark image (default: watermark.png)"),
    resume_log: Optional[Path] = typer.Option(None, "--resume-log", help="Resume log path (default: .shrink_resume.log)"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (default: OUTPUT/vshrink.log)"),
    debug: Optional[bool] = typer.Option(None, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Watermark, optionally redact, and shrink every video under INPUT_DIR."""
    app_config = _load_app_config(config_path)
    input_root = _require_directory(input_dir)

    try:
        ensure_available(ENCODER_TOOLS)
    except MissingDependencyError as exc:
        _fail(f"{exc}. Install ffmpeg and make sure it is on PATH.")

    overrides = CliConfigOverrides(
        jobs=jobs,
        threads=threads,
        quality=quality,
        preset=preset,
        hardware=hardware,
        blur=blur,
        color_mode=color,
        watermark_path=watermark,
        resume_log=resume_log,
        debug=debug,
    )
    try:
        config = build_job_config(app_config, input_root, output_dir or default_output_root(input_root), overrides)
    except ValueError as exc:
        _fail(f"Invalid options: {exc}")

    if not config.watermark_path.is_file():
        _fail(f"Watermark file not found: {config.watermark_path}")

    logger = setup_logging(config.output_root, debug=config.debug, log_path=log_path)
    logger.info(f"vshrink started: input={config.input_root} output={config.output_root}")
    logger.info(
        f"Config: jobs={config.max_parallel_jobs}, threads={config.threads_per_job}, "
        f"quality={config.quality}, preset={config.preset}, encoder={encoder_label(config)}, "
        f"blur={config.blur_enabled}, color={config.color_mode.value}, debug={config.debug}"
    )

    bus = EventBus()
    reporter = ConsoleReporter(bus)
    reporter.console.print(
        f"[bold blue]vshrink[/] {config.input_root} -> {config.output_root} | "
        f"{config.max_parallel_jobs} job(s) x {config.threads_per_job} thread(s) | "
        f"{encoder_label(config)} q={config.quality} preset={config.preset}"
        f"{' | blur' if config.blur_enabled else ''}"
    )

    ledger = ResumeLedger(config.resume_log)
    ledger.load()

    orchestrator = Orchestrator(
        config=config,
        event_bus=bus,
        file_scanner=FileScanner(config.extensions, exclude_dirs=[config.output_root]),
        ledger=ledger,
        decider=WorkItemDecider(ledger, IntegrityChecker()),
        ffprobe_adapter=FFprobeAdapter(),
        ffmpeg_adapter=FFmpegAdapter(event_bus=bus),
        housekeeping=HousekeepingService(),
    )

    try:
        with _sigterm_as_interrupt():
            summary = orchestrator.run()
    except KeyboardInterrupt:
        typer.secho("\nProcessing stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    if summary.interrupted:
        typer.secho("\nProcessing stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)


def _run_detector(input_dir: Path, adapter: DetectorAdapter, title: str, log_path: Optional[Path], debug: bool):
    input_root = _require_directory(input_dir)
    try:
        ensure_available([adapter.binary])
    except MissingDependencyError as exc:
        _fail(str(exc))

    logger = setup_logging(input_root, debug=debug, log_path=log_path)
    logger.info(f"{adapter.label} batch started: input={input_root}")

    bus = EventBus()
    ConsoleReporter(bus, summary_title=title)
    runner = DetectorRunner(adapter, bus)
    _run_batch(runner, input_root)


def _run_batch(runner, input_root: Path):
    with _sigterm_as_interrupt():
        summary = runner.run(input_root)

    if summary.interrupted:
        typer.secho("\nProcessing stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)


@app.command()
def scan(
    input_dir: Path = typer.Argument(..., help="Directory to scan for motion events"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Extract motion events from every video with dvr-scan."""
    _run_detector(input_dir, DvrScanAdapter(), "Scan Summary", log_path, debug)


@app.command()
def deface(
    input_dir: Path = typer.Argument(..., help="Directory of videos to anonymize"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Blur faces in every video with deface."""
    _run_detector(input_dir, DefaceAdapter(), "Deface Summary", log_path, debug)


@app.command()
def convert(
    input_dir: Path = typer.Argument(..., help="Folder whose loose videos are converted to mp4 in place"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Re-encode .avi/.mov/.mpeg/.mkv/.wmv/.m4a/.m4v files to an mp4 beside each source."""
    input_root = _require_directory(input_dir)
    try:
        ensure_available(ENCODER_TOOLS)
    except MissingDependencyError as exc:
        _fail(f"{exc}. Install ffmpeg and make sure it is on PATH.")

    logger = setup_logging(input_root, debug=debug, log_path=log_path)
    logger.info(f"Convert batch started: input={input_root}")

    bus = EventBus()
    ConsoleReporter(bus, summary_title="Convert Summary")
    runner = ConversionRunner(FFmpegAdapter(event_bus=bus), bus, ffprobe_adapter=FFprobeAdapter(), debug=debug)
    _run_batch(runner, input_root)


if __name__ == "__main__":
    app()
