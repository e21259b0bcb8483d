from pathlib import Path
from unittest.mock import MagicMock
from vshrink.domain.events import BatchFinished, JobFailed, JobSkipped
from vshrink.domain.models import WorkItemState
from vshrink.infrastructure.detectors import DefaceAdapter, DetectorError, DvrScanAdapter
from vshrink.pipeline.detection import DetectorRunner


def _tree(root: Path):
    (root / "a.mp4").write_bytes(b"x")
    (root / "b.avi").write_bytes(b"x")
    (root / "c.mpg").write_bytes(b"x")
    (root / "d.mkv").write_bytes(b"x")  # not a detector extension
    out = root / "_output"
    out.mkdir()
    (out / "a.mp4").write_bytes(b"x")
    cam_out = root / "cam_output"
    cam_out.mkdir()
    (cam_out / "e.mp4").write_bytes(b"x")


def test_discover_skips_output_folders_and_other_extensions(tmp_path, event_bus):
    _tree(tmp_path)
    runner = DetectorRunner(DvrScanAdapter(), event_bus)

    names = sorted(p.name for p in runner.discover(tmp_path))

    assert names == ["a.mp4", "b.avi", "c.mpg"]


def test_success_touches_marker_and_rerun_skips(tmp_path, event_bus, recorded_events):
    (tmp_path / "a.mp4").write_bytes(b"x")
    adapter = DvrScanAdapter()
    adapter.run = MagicMock()

    first = DetectorRunner(adapter, event_bus).run(tmp_path)
    assert first.counters.processed == 1
    assert (tmp_path / "a.mp4.scan-successful").exists()

    second = DetectorRunner(adapter, event_bus).run(tmp_path)
    assert second.counters.processed == 0
    assert second.counters.skipped == 1
    assert adapter.run.call_count == 1
    skipped = [e for e in recorded_events if isinstance(e, JobSkipped)]
    assert skipped[0].reason == WorkItemState.SKIPPED_RESUMED


def test_deface_skips_files_with_defaced_sibling(tmp_path, event_bus):
    (tmp_path / "a.mp4").write_bytes(b"x")
    (tmp_path / "a_defaced.mp4").write_bytes(b"x")
    adapter = DefaceAdapter()
    adapter.run = MagicMock()
    runner = DetectorRunner(adapter, event_bus)

    summary = runner.run(tmp_path)

    # a_defaced.mp4 itself is processed; a.mp4 is skipped
    assert adapter.run.call_args_list[0].args[0] == tmp_path / "a_defaced.mp4"
    assert summary.counters.skipped == 1
    assert summary.counters.processed == 1


def test_failure_is_counted_and_batch_continues(tmp_path, event_bus, recorded_events):
    (tmp_path / "a.mp4").write_bytes(b"x")
    (tmp_path / "b.mp4").write_bytes(b"x")
    adapter = DvrScanAdapter()

    def fake_run(path):
        if path.name == "a.mp4":
            raise DetectorError("dvr-scan exited with code 1", ["bad stream"])

    adapter.run = fake_run
    summary = DetectorRunner(adapter, event_bus).run(tmp_path)

    assert summary.counters.failed == 1
    assert summary.counters.processed == 1
    assert not (tmp_path / "a.mp4.scan-successful").exists()
    assert (tmp_path / "b.mp4.scan-successful").exists()
    failed = [e for e in recorded_events if isinstance(e, JobFailed)]
    assert failed[0].job.diagnostics == "bad stream"
    assert isinstance(recorded_events[-1], BatchFinished)


def test_keyboard_interrupt_still_summarizes(tmp_path, event_bus):
    (tmp_path / "a.mp4").write_bytes(b"x")
    (tmp_path / "b.mp4").write_bytes(b"x")
    adapter = DvrScanAdapter()
    adapter.run = MagicMock(side_effect=KeyboardInterrupt)

    summary = DetectorRunner(adapter, event_bus).run(tmp_path)

    assert summary.interrupted is True
    assert summary.total_files == 2
    assert summary.counters.resolved == 0


def test_runner_defers_skip_decision_to_adapter(tmp_path, event_bus, recorded_events):
    (tmp_path / "a.mp4").write_bytes(b"x")

    class SeenBefore(DvrScanAdapter):
        def already_done(self, file_path):
            return True

    adapter = SeenBefore()
    adapter.run = MagicMock()
    summary = DetectorRunner(adapter, event_bus).run(tmp_path)

    adapter.run.assert_not_called()
    assert summary.counters.skipped == 1
    skipped = [e for e in recorded_events if isinstance(e, JobSkipped)]
    assert skipped[0].reason == WorkItemState.SKIPPED_VALID
