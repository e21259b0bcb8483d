import random
import threading
import time
import pytest
from pathlib import Path
from vshrink.config.models import AppConfig, JobConfig
from vshrink.domain.models import WorkItemState
from vshrink.infrastructure.event_bus import EventBus
from vshrink.infrastructure.ffprobe import ProbeError
from vshrink.infrastructure.file_scanner import FileScanner
from vshrink.infrastructure.ledger import ResumeLedger
from vshrink.pipeline.counters import AggregateCounters
from vshrink.pipeline.decision import WorkItemDecider
from vshrink.pipeline.orchestrator import Orchestrator

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def app_config():
    """Returns an AppConfig with the built-in defaults."""
    return AppConfig()

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "vshrink.yaml"
    conf_file.write_text(
        "defaults:\n"
        "  quality: 28\n"
        "  preset: slow\n"
        "  color_mode: gray\n"
        "  blur_enabled: true\n"
        "  extensions: [mp4, .MOV]\n"
    )
    return conf_file

@pytest.fixture
def job_config(tmp_path):
    """A JobConfig rooted in tmp_path with a real (dummy) watermark file."""
    input_root = tmp_path / "input"
    input_root.mkdir(exist_ok=True)
    watermark = tmp_path / "watermark.png"
    watermark.write_bytes(b"\x89PNG")
    return JobConfig(
        input_root=input_root,
        output_root=tmp_path / "out",
        max_parallel_jobs=2,
        threads_per_job=2,
        watermark_path=watermark,
        resume_log=tmp_path / ".shrink_resume.log",
    )

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

@pytest.fixture
def recorded_events(event_bus):
    """Collects every event published on `event_bus` (any type)."""
    events = []
    lock = threading.Lock()
    original_publish = event_bus.publish

    def publish(event):
        with lock:
            events.append(event)
        original_publish(event)

    event_bus.publish = publish
    return events

# ============================================================================
# File System Fixtures
# ============================================================================

@pytest.fixture
def test_input_dir(job_config):
    return job_config.input_root

@pytest.fixture
def dummy_video_files(test_input_dir):
    """Creates dummy video files in the input tree (one nested)."""
    files = []
    for i in range(3):
        f = test_input_dir / f"video{i}.mp4"
        f.write_bytes(b"dummy video content " * 100)  # ~2KB
        files.append(f)

    subdir = test_input_dir / "trip" / "day1"
    subdir.mkdir(parents=True)
    f = subdir / "clip.MOV"
    f.write_bytes(b"dummy video content " * 100)
    files.append(f)

    (test_input_dir / "notes.txt").write_text("not a video")
    return files

def make_videos(root: Path, count: int, size: int = 2000):
    files = []
    for i in range(count):
        f = root / f"v{i:03d}.mp4"
        f.write_bytes(b"v" * size)
        files.append(f)
    return files

@pytest.fixture
def video_factory():
    return make_videos

# ============================================================================
# Fake adapters (no ffmpeg needed)
# ============================================================================

class FakeProber:
    def __init__(self, resolution=(1920, 1080), duration=10.0, fail_for=()):
        self.resolution = resolution
        self.duration = duration
        self.fail_for = set(fail_for)

    def get_resolution(self, path):
        if Path(path).name in self.fail_for:
            raise ProbeError(f"ffprobe failed for {path}: moov atom not found")
        return self.resolution

    def get_duration(self, path):
        return self.duration


class FakeEncoder:
    """Writes a small output file instead of running ffmpeg."""

    def __init__(self, fail_for=(), delay=0.0, random_delay=0.0, output_bytes=500, raise_for=()):
        self.fail_for = set(fail_for)
        self.raise_for = set(raise_for)
        self.delay = delay
        self.random_delay = random_delay
        self.output_bytes = output_bytes
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()
        self.started = threading.Event()

    def encode(self, job, config, filter_graph, shutdown_event=None):
        with self._lock:
            self.calls.append(job.item.input_path)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            wait = self.delay + (random.uniform(0, self.random_delay) if self.random_delay else 0.0)
            deadline = time.monotonic() + wait
            while time.monotonic() < deadline:
                if shutdown_event is not None and shutdown_event.is_set():
                    job.interrupted = True
                    return
                time.sleep(0.005)
            if shutdown_event is not None and shutdown_event.is_set():
                job.interrupted = True
                return

            name = job.item.input_path.name
            if name in self.raise_for:
                raise RuntimeError("encoder crashed")
            if name in self.fail_for:
                job.state = WorkItemState.FAILED
                job.error_message = "ffmpeg exited with code 1"
                job.diagnostics = "Invalid data found when processing input"
                return
            job.item.output_path.write_bytes(b"o" * self.output_bytes)
            job.output_size_bytes = self.output_bytes
            job.progress_percent = 100.0
            job.state = WorkItemState.COMPLETED
        finally:
            with self._lock:
                self.active -= 1


class FakeIntegrity:
    def __init__(self, valid=True):
        self.valid = valid
        self.checked = []

    def is_valid(self, file_path):
        self.checked.append(file_path)
        return self.valid


@pytest.fixture
def make_orchestrator(job_config, event_bus):
    """Factory wiring an Orchestrator around fakes; returns (orchestrator, parts)."""

    def _make(config=None, encoder=None, prober=None, integrity=None, ledger=None):
        config = config or job_config
        encoder = encoder or FakeEncoder()
        prober = prober or FakeProber()
        integrity = integrity or FakeIntegrity()
        if ledger is None:
            ledger = ResumeLedger(config.resume_log)
            ledger.load()
        counters = AggregateCounters()
        orchestrator = Orchestrator(
            config=config,
            event_bus=event_bus,
            file_scanner=FileScanner(config.extensions, exclude_dirs=[config.output_root]),
            ledger=ledger,
            decider=WorkItemDecider(ledger, integrity),
            ffprobe_adapter=prober,
            ffmpeg_adapter=encoder,
            counters=counters,
            interrupt_grace_seconds=2.0,
        )
        parts = {
            "encoder": encoder,
            "prober": prober,
            "integrity": integrity,
            "ledger": ledger,
            "counters": counters,
        }
        return orchestrator, parts

    return _make

@pytest.fixture
def fake_encoder_cls():
    return FakeEncoder

@pytest.fixture
def fake_prober_cls():
    return FakeProber

@pytest.fixture
def fake_integrity_cls():
    return FakeIntegrity

# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (timing-dependent concurrency tests)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
