from typing import Optional

_KB = 1024
_MB = 1024 * 1024
_GB = 1024 * 1024 * 1024


def format_size(size: int) -> str:
    """Whole-unit size: 1023 -> '1023B', 1536 -> '1KB', 5 MiB -> '5MB'.

    Integer division, no rounding. Negative sizes (output larger than input)
    keep their sign.
    """
    size = int(size)
    if size < 0:
        return f"-{format_size(-size)}"
    if size < _KB:
        return f"{size}B"
    if size < _MB:
        return f"{size // _KB}KB"
    if size < _GB:
        return f"{size // _MB}MB"
    return f"{size // _GB}GB"


def format_time(seconds: float) -> str:
    """'1h 2m 3s', '2m 3s' or '3s'; fractions are truncated."""
    total = max(0, int(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def format_eta(seconds: Optional[float]) -> str:
    if seconds is None:
        return "--"
    return format_time(seconds)
