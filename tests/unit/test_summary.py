import io
from rich.console import Console
from rich.panel import Panel
from vshrink.domain.models import BatchSummary, CountersSnapshot
from vshrink.ui.summary import render_summary


def _render(summary):
    buffer = io.StringIO()
    Console(file=buffer, width=100, color_system=None).print(render_summary(summary))
    return buffer.getvalue()


def test_full_summary_content():
    summary = BatchSummary(
        total_files=10,
        counters=CountersSnapshot(processed=4, skipped=5, failed=1, input_bytes=10 * 1048576, output_bytes=3 * 1048576),
        elapsed_seconds=3723,
    )
    panel = render_summary(summary)
    assert isinstance(panel, Panel)

    out = _render(summary)
    assert "Total files found" in out and "10" in out
    assert "Failed" in out
    assert "10MB" in out
    assert "3MB" in out
    assert "7MB" in out
    assert "70%" in out
    assert "1h 2m 3s" in out
    # 3723 / 4 processed
    assert "15m 30s" in out


def test_failed_and_sizes_hidden_when_zero():
    summary = BatchSummary(total_files=2, counters=CountersSnapshot(skipped=2), elapsed_seconds=1)
    out = _render(summary)
    assert "Failed" not in out
    assert "Space saved" not in out
    assert "Average per file" not in out


def test_interrupted_summary_shows_unfinished():
    summary = BatchSummary(total_files=5, counters=CountersSnapshot(processed=1, input_bytes=10, output_bytes=5),
                           elapsed_seconds=10, interrupted=True)
    out = _render(summary)
    assert "interrupted" in out
    assert "Not finished" in out
