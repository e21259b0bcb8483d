import threading
import pytest
from pathlib import Path
from unittest.mock import patch, MagicMock
from vshrink.config.models import JobConfig
from vshrink.domain.events import JobProgressUpdated
from vshrink.domain.models import EncodeJob, WorkItem, WorkItemState
from vshrink.infrastructure.ffmpeg import CONVERT_ARGS, FFmpegAdapter, select_encoder_args, encoder_label

GRAPH = "[0:v]scale=640:360,hue=s=0[processed];[processed][1:v]overlay=0:0"


def _job(tmp_path, duration=10.0):
    out_dir = tmp_path / "out"
    out_dir.mkdir(exist_ok=True)
    item = WorkItem(input_path=tmp_path / "input.mov", output_path=out_dir / "input.resized.mp4")
    return EncodeJob(item=item, duration=duration, state=WorkItemState.PROCESSING)


def _config(tmp_path, **kwargs):
    return JobConfig(input_root=tmp_path, output_root=tmp_path / "out", threads_per_job=3,
                     watermark_path=tmp_path / "wm.png", **kwargs)


def _process(stdout=(), stderr=(), returncode=0):
    process = MagicMock()
    process.stdout = list(stdout)
    process.stderr = list(stderr)
    process.returncode = returncode
    process.poll.return_value = returncode
    process.wait.return_value = returncode
    return process


def test_command_generation_cpu(tmp_path):
    job = _job(tmp_path)
    cmd = FFmpegAdapter(event_bus=MagicMock()).build_command(job, _config(tmp_path), GRAPH)

    assert cmd[0] == "ffmpeg"
    assert cmd[cmd.index("-threads") + 1] == "3"
    assert cmd[cmd.index("-filter_complex") + 1] == GRAPH
    assert ["-c:v", "libx264", "-preset", "fast", "-crf", "23"] == cmd[cmd.index("-c:v"):cmd.index("-c:v") + 6]
    assert "-an" in cmd
    assert cmd[cmd.index("-movflags") + 1] == "+faststart"
    assert cmd[cmd.index("-progress") + 1] == "pipe:1"
    # Input order: source first, watermark second
    inputs = [cmd[i + 1] for i, v in enumerate(cmd) if v == "-i"]
    assert inputs == [str(job.item.input_path), str(tmp_path / "wm.png")]
    # FFmpeg writes to .tmp file first, then renames to .mp4
    assert cmd[-1].endswith("input.resized.tmp")


def test_command_generation_gpu_maps_preset(tmp_path):
    config = _config(tmp_path, use_hardware_encoder=True, quality=30, preset="slow")
    args = select_encoder_args(config)

    assert args[:2] == ["-c:v", "h264_nvenc"]
    assert args[args.index("-preset") + 1] == "p5"
    assert args[args.index("-cq") + 1] == "30"
    assert "-crf" not in args


def test_p_preset_on_cpu_maps_to_x264(tmp_path):
    args = select_encoder_args(_config(tmp_path, preset="p7"))
    assert args[args.index("-preset") + 1] == "veryslow"


def test_encoder_label(tmp_path):
    assert "libx264" in encoder_label(_config(tmp_path))
    assert "h264_nvenc" in encoder_label(_config(tmp_path, use_hardware_encoder=True))


def test_encode_success_renames_temp_and_reports_progress(tmp_path):
    job = _job(tmp_path)
    config = _config(tmp_path)
    adapter = FFmpegAdapter(event_bus=MagicMock())
    adapter.temp_path(job).write_bytes(b"x" * 321)

    stdout = ["out_time_us=2500000\n", "progress=continue\n", "out_time_us=5000000\n", "progress=end\n"]
    with patch("subprocess.Popen") as mock_popen:
        mock_popen.return_value = _process(stdout=stdout)
        adapter.encode(job, config, GRAPH)

    assert job.state == WorkItemState.COMPLETED
    assert job.output_size_bytes == 321
    assert job.item.output_path.exists()
    assert not adapter.temp_path(job).exists()
    published = [c.args[0] for c in adapter.event_bus.publish.call_args_list]
    assert [e.progress_percent for e in published if isinstance(e, JobProgressUpdated)] == [25.0, 50.0, 100.0]


def test_encode_failure_keeps_diagnostics_and_removes_temp(tmp_path):
    job = _job(tmp_path)
    adapter = FFmpegAdapter(event_bus=MagicMock())
    adapter.temp_path(job).write_bytes(b"partial")

    with patch("subprocess.Popen") as mock_popen:
        mock_popen.return_value = _process(
            stderr=["[mov] moov atom not found\n", "input.mov: Invalid data found when processing input\n"],
            returncode=1,
        )
        adapter.encode(job, _config(tmp_path), GRAPH)

    assert job.state == WorkItemState.FAILED
    assert "ffmpeg exited with code 1" in job.error_message
    assert "Invalid data found" in job.diagnostics
    assert not adapter.temp_path(job).exists()
    assert not job.item.output_path.exists()


def test_encode_success_without_output_fails(tmp_path):
    job = _job(tmp_path)
    adapter = FFmpegAdapter(event_bus=MagicMock())

    with patch("subprocess.Popen") as mock_popen:
        mock_popen.return_value = _process()
        adapter.encode(job, _config(tmp_path), GRAPH)

    assert job.state == WorkItemState.FAILED
    assert "no output" in job.error_message


def test_encode_shutdown_terminates_and_discards_partial(tmp_path):
    job = _job(tmp_path)
    adapter = FFmpegAdapter(event_bus=MagicMock())
    adapter.temp_path(job).write_bytes(b"partial")
    shutdown = threading.Event()
    shutdown.set()

    with patch("subprocess.Popen") as mock_popen:
        process = _process()
        mock_popen.return_value = process
        adapter.encode(job, _config(tmp_path), GRAPH, shutdown_event=shutdown)

    process.terminate.assert_called_once()
    assert job.interrupted is True
    assert job.state == WorkItemState.PROCESSING
    assert not adapter.temp_path(job).exists()
    assert not job.item.output_path.exists()


def test_debug_markers_logged(tmp_path, caplog):
    job = _job(tmp_path)
    adapter = FFmpegAdapter(event_bus=MagicMock())
    adapter.temp_path(job).write_bytes(b"x")

    with caplog.at_level("DEBUG", logger="vshrink.infrastructure.ffmpeg"):
        with patch("subprocess.Popen") as mock_popen:
            mock_popen.return_value = _process()
            adapter.encode(job, _config(tmp_path, debug=True), GRAPH)

    text = caplog.text
    assert "FFMPEG_START" in text
    assert "FFMPEG_CMD" in text
    assert "FFMPEG_END" in text


def test_ffmpeg_exit_during_shutdown_is_an_interrupt_not_a_failure(tmp_path):
    job = _job(tmp_path)
    adapter = FFmpegAdapter(event_bus=MagicMock())
    adapter.temp_path(job).write_bytes(b"partial")
    shutdown = threading.Event()

    def _wait(*args, **kwargs):
        # ffmpeg saw the same SIGINT and exited before the worker noticed
        shutdown.set()
        return 255

    with patch("subprocess.Popen") as mock_popen:
        process = _process(returncode=255)
        process.wait.side_effect = _wait
        mock_popen.return_value = process
        adapter.encode(job, _config(tmp_path), GRAPH, shutdown_event=shutdown)

    assert job.interrupted is True
    assert job.state == WorkItemState.PROCESSING
    assert job.diagnostics is None
    assert not adapter.temp_path(job).exists()


def test_popen_replaces_undecodable_output(tmp_path):
    job = _job(tmp_path)
    adapter = FFmpegAdapter(event_bus=MagicMock())

    with patch("subprocess.Popen") as mock_popen:
        mock_popen.return_value = _process(returncode=1)
        adapter.encode(job, _config(tmp_path), GRAPH)

    assert mock_popen.call_args.kwargs["errors"] == "replace"


def test_convert_command_keeps_audio_and_writes_temp(tmp_path):
    item = WorkItem(input_path=tmp_path / "holiday.avi", output_path=tmp_path / "holiday.mp4")
    cmd = FFmpegAdapter(event_bus=MagicMock()).build_convert_command(EncodeJob(item=item))

    assert cmd[cmd.index("-i") + 1] == str(tmp_path / "holiday.avi")
    start = cmd.index("-c:v")
    assert cmd[start:start + len(CONVERT_ARGS)] == CONVERT_ARGS
    assert cmd[cmd.index("-crf") + 1] == "23"
    assert cmd[cmd.index("-b:a") + 1] == "128k"
    assert "-an" not in cmd
    assert "-filter_complex" not in cmd
    assert cmd[-1] == str(tmp_path / "holiday.tmp")


def test_convert_success_renames_temp(tmp_path):
    item = WorkItem(input_path=tmp_path / "holiday.avi", output_path=tmp_path / "holiday.mp4")
    job = EncodeJob(item=item, state=WorkItemState.PROCESSING)
    adapter = FFmpegAdapter(event_bus=MagicMock())
    adapter.temp_path(job).write_bytes(b"x" * 42)

    with patch("subprocess.Popen") as mock_popen:
        mock_popen.return_value = _process(stdout=["progress=end\n"])
        adapter.convert(job)

    assert job.state == WorkItemState.COMPLETED
    assert job.output_size_bytes == 42
    assert (tmp_path / "holiday.mp4").exists()
