from rich.box import ROUNDED, SIMPLE
from rich.panel import Panel
from rich.table import Table
from vshrink.domain.models import BatchSummary
from vshrink.ui.formatting import format_size, format_time


def render_summary(summary: BatchSummary, title: str = "Processing Summary") -> Panel:
    """Final run report: counts, sizes (when anything was encoded) and timing."""
    c = summary.counters
    table = Table(box=SIMPLE, show_header=False, padding=(0, 1))
    table.add_column("label", style="bold")
    table.add_column("value", justify="right")

    table.add_row("Total files found", str(summary.total_files))
    table.add_row("Processed", f"[green]{c.processed}[/]")
    table.add_row("Skipped", f"[yellow]{c.skipped}[/]")
    if c.failed > 0:
        table.add_row("Failed", f"[red]{c.failed}[/]")
    if summary.interrupted and summary.unresolved > 0:
        table.add_row("Not finished", f"[magenta]{summary.unresolved}[/]")

    if c.input_bytes > 0:
        table.add_section()
        table.add_row("Total input size", format_size(c.input_bytes))
        table.add_row("Total output size", format_size(c.output_bytes))
        table.add_row("Space saved", f"[green]{format_size(c.saved_bytes)}[/]")
        table.add_row("Compression ratio", f"{c.saved_percent}%")

    table.add_section()
    table.add_row("Time elapsed", format_time(summary.elapsed_seconds))
    average = summary.average_seconds_per_file
    if average is not None:
        table.add_row("Average per file", format_time(average))

    border = "magenta" if summary.interrupted else ("red" if c.failed else "blue")
    heading = f"{title} (interrupted)" if summary.interrupted else title
    return Panel(table, title=heading, border_style=border, box=ROUNDED, expand=False)
