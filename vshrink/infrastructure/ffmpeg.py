import subprocess
import logging
import time
import threading
import queue
from collections import deque
from pathlib import Path
from typing import Deque, Dict, List, Optional
from vshrink.config.models import JobConfig, HARDWARE_PRESETS
from vshrink.domain.models import EncodeJob, WorkItemState
from vshrink.infrastructure.event_bus import EventBus
from vshrink.domain.events import JobProgressUpdated

# x264 preset names -> closest NVENC p-preset
NVENC_PRESET_MAP: Dict[str, str] = {
    "ultrafast": "p1",
    "superfast": "p1",
    "veryfast": "p2",
    "faster": "p3",
    "fast": "p3",
    "medium": "p4",
    "slow": "p5",
    "slower": "p6",
    "veryslow": "p7",
}
# NVENC p-preset -> x264 preset, for configs written with p-presets and run on CPU
X264_PRESET_MAP: Dict[str, str] = {
    "p1": "ultrafast",
    "p2": "veryfast",
    "p3": "fast",
    "p4": "medium",
    "p5": "slow",
    "p6": "slower",
    "p7": "veryslow",
}

DIAGNOSTIC_TAIL_LINES = 20

# Loose-file conversion to mp4: quality re-encode, audio kept
CONVERT_ARGS: List[str] = [
    "-c:v", "libx264",
    "-crf", "23",
    "-preset", "medium",
    "-c:a", "aac",
    "-b:a", "128k",
    "-movflags", "+faststart",
]


def select_encoder_args(config: JobConfig) -> List[str]:
    """Codec, preset and rate-control arguments for the configured backend.

    The hardware path uses constant-quality VBR (-cq); the software path uses
    a constant rate factor (-crf) with a baseline profile for wide playback.
    """
    if config.use_hardware_encoder:
        preset = config.preset if config.preset in HARDWARE_PRESETS else NVENC_PRESET_MAP.get(config.preset, "p4")
        return [
            "-c:v", config.hardware_encoder,
            "-preset", preset,
            "-rc", "vbr",
            "-cq", str(config.quality),
            "-b:v", "0",
        ]
    preset = X264_PRESET_MAP.get(config.preset, config.preset)
    return [
        "-c:v", config.software_encoder,
        "-preset", preset,
        "-crf", str(config.quality),
        "-profile:v", "baseline",
        "-level", "3.0",
    ]


def encoder_label(config: JobConfig) -> str:
    if config.use_hardware_encoder:
        return f"{config.hardware_encoder} (GPU, CQ {config.quality})"
    return f"{config.software_encoder} (CPU, CRF {config.quality})"


def _parse_clock(text: str) -> Optional[float]:
    parts = text.strip().split(":")
    if len(parts) != 3:
        return None
    try:
        return int(parts[0]) * 3600 + int(parts[1]) * 60 + float(parts[2])
    except ValueError:
        return None


class ProgressTracker:
    """Turns ffmpeg `-progress` key=value lines into percent-complete values.

    Reported values are clamped to [0, 100], never decrease, and an identical
    whole percentage is reported only once.
    """

    def __init__(self, total_duration: float):
        self.total_duration = total_duration
        self.last_reported: Optional[int] = None

    def encoded_seconds(self, key: str, value: str) -> Optional[float]:
        value = value.strip()
        if key in ("out_time_us", "out_time_ms"):
            # ffmpeg reports microseconds under both keys
            try:
                return int(value) / 1_000_000.0
            except ValueError:
                return None
        if key == "out_time":
            return _parse_clock(value)
        return None

    def percent_for(self, seconds: float) -> int:
        if self.total_duration <= 0:
            return 0
        pct = (seconds / self.total_duration) * 100.0
        return int(min(100.0, max(0.0, pct)))

    def _report(self, pct: int) -> Optional[int]:
        if self.last_reported is not None and pct <= self.last_reported:
            return None
        self.last_reported = pct
        return pct

    def feed_line(self, line: str) -> Optional[int]:
        """Consume one progress line; return a new percentage or None."""
        if "=" not in line:
            return None
        key, value = line.strip().split("=", 1)
        if key == "progress" and value.strip() == "end":
            return self._report(100)
        if self.total_duration <= 0:
            return None
        seconds = self.encoded_seconds(key, value)
        if seconds is None:
            return None
        return self._report(self.percent_for(seconds))


class FFmpegAdapter:
    """Runs ffmpeg for one work item and supervises it until it exits."""

    def __init__(self, event_bus: EventBus, binary: str = "ffmpeg"):
        self.event_bus = event_bus
        self.binary = binary
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def temp_path(job: EncodeJob) -> Path:
        return job.item.output_path.with_suffix('.tmp')

    def build_command(self, job: EncodeJob, config: JobConfig, filter_graph: str) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        cmd = [
            self.binary,
            "-nostdin",
            "-y",
            "-loglevel", "error",
            "-threads", str(config.threads_per_job),
            "-i", str(job.item.input_path),
            "-i", str(config.watermark_path),
            "-filter_complex", filter_graph,
        ]
        cmd.extend(select_encoder_args(config))
        cmd.extend([
            "-movflags", "+faststart",
            "-an",
            "-progress", "pipe:1",
            "-nostats",
        ])
        # Write to .tmp during encoding (renamed on success); force mp4 muxer
        cmd.extend(["-f", "mp4", str(self.temp_path(job))])
        return cmd

    def _terminate(self, process: subprocess.Popen):
        process.terminate()
        try:
            process.wait(timeout=3)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def _remove_temp(self, job: EncodeJob):
        tmp_path = self.temp_path(job)
        if tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError as e:
                self.logger.warning(f"Failed to remove partial output {tmp_path}: {e}")

    def _mark_interrupted(self, job: EncodeJob):
        job.interrupted = True
        job.error_message = "Interrupted by user"

    def encode(self, job: EncodeJob, config: JobConfig, filter_graph: str, shutdown_event: Optional[threading.Event] = None):
        """Executes the encode; sets job.state, output size and diagnostics."""
        if config.debug:
            self.logger.debug(
                f"FFMPEG_START: {job.item.input_path.name} (hw={config.use_hardware_encoder}, q={config.quality})"
            )
        cmd = self.build_command(job, config, filter_graph)
        self._supervise(job, cmd, shutdown_event, debug=config.debug)

    def build_convert_command(self, job: EncodeJob) -> List[str]:
        """Plain re-encode to mp4 with audio kept (no filters, no watermark)."""
        cmd = [
            self.binary,
            "-nostdin",
            "-y",
            "-loglevel", "error",
            "-i", str(job.item.input_path),
        ]
        cmd.extend(CONVERT_ARGS)
        cmd.extend(["-progress", "pipe:1", "-nostats", "-f", "mp4", str(self.temp_path(job))])
        return cmd

    def convert(self, job: EncodeJob, shutdown_event: Optional[threading.Event] = None, debug: bool = False):
        if debug:
            self.logger.debug(f"FFMPEG_START: {job.item.input_path.name} (convert)")
        self._supervise(job, self.build_convert_command(job), shutdown_event, debug=debug)

    def _supervise(self, job: EncodeJob, cmd: List[str], shutdown_event: Optional[threading.Event], debug: bool = False):
        filename = job.item.input_path.name
        start_time = time.monotonic()
        if debug:
            self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")

        tracker = ProgressTracker(job.duration)

        process = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            universal_newlines=True,
            errors="replace",
            bufsize=1
        )

        output_queue: "queue.Queue[Optional[str]]" = queue.Queue()
        stderr_tail: Deque[str] = deque(maxlen=DIAGNOSTIC_TAIL_LINES)

        def _reader():
            if process.stdout:
                for line in process.stdout:
                    output_queue.put(line)
            output_queue.put(None)

        def _stderr_reader():
            if process.stderr:
                for line in process.stderr:
                    line = line.rstrip()
                    if line:
                        stderr_tail.append(line)

        reader_thread = threading.Thread(target=_reader, daemon=True)
        stderr_thread = threading.Thread(target=_stderr_reader, daemon=True)
        reader_thread.start()
        stderr_thread.start()

        try:
            while True:
                if shutdown_event is not None and shutdown_event.is_set():
                    self.logger.info(f"FFMPEG_INTERRUPTED: {filename} (shutdown signal)")
                    self._terminate(process)
                    self._remove_temp(job)
                    self._mark_interrupted(job)
                    return

                try:
                    line = output_queue.get(timeout=0.1)
                except queue.Empty:
                    if process.poll() is not None and not reader_thread.is_alive():
                        break
                    continue

                if line is None:
                    break

                pct = tracker.feed_line(line)
                if pct is not None:
                    job.progress_percent = float(pct)
                    self.event_bus.publish(JobProgressUpdated(job=job, progress_percent=float(pct)))

            process.wait()
        except KeyboardInterrupt:
            self.logger.info(f"FFMPEG_INTERRUPTED: {filename} (KeyboardInterrupt)")
            self._terminate(process)
            self._remove_temp(job)
            self._mark_interrupted(job)
            raise

        stderr_thread.join(timeout=2)
        job.elapsed_seconds = time.monotonic() - start_time
        tmp_path = self.temp_path(job)

        # Ctrl+C reaches ffmpeg through the process group and it may exit first
        if process.returncode != 0 and shutdown_event is not None and shutdown_event.is_set():
            self.logger.info(f"FFMPEG_INTERRUPTED: {filename} (exited with code {process.returncode} during shutdown)")
            self._remove_temp(job)
            self._mark_interrupted(job)
            return

        if process.returncode != 0:
            job.state = WorkItemState.FAILED
            job.error_message = f"ffmpeg exited with code {process.returncode}"
            job.diagnostics = "\n".join(stderr_tail) or None
            self._remove_temp(job)
            self.logger.error(f"FFMPEG_FAILED: {filename} code={process.returncode}: {job.diagnostics or 'no output'}")
        elif not tmp_path.exists():
            job.state = WorkItemState.FAILED
            job.error_message = "ffmpeg reported success but produced no output"
            job.diagnostics = "\n".join(stderr_tail) or None
            self.logger.error(f"FFMPEG_FAILED: {filename} (missing output {tmp_path})")
        else:
            tmp_path.replace(job.item.output_path)
            job.output_size_bytes = job.item.output_path.stat().st_size
            job.progress_percent = 100.0
            job.state = WorkItemState.COMPLETED

        if debug:
            self.logger.debug(f"FFMPEG_END: {filename} state={job.state.value} elapsed={job.elapsed_seconds:.2f}s")
