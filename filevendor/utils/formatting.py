"""
Helpers turning sizes, durations and checksums into short display strings.
"""

SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_size(num_bytes: float) -> str:
    """Formats a byte count for summaries, e.g. '1.4 MB'."""
    if num_bytes <= 0:
        return "0 B"
    for unit in SIZE_UNITS[:-1]:
        if num_bytes < 1024:
            return f"{num_bytes:.1f} {unit}" if unit != "B" else f"{num_bytes:.0f} B"
        num_bytes /= 1024
    return f"{num_bytes:.1f} {SIZE_UNITS[-1]}"


def format_duration(seconds: float) -> str:
    """Formats elapsed seconds, e.g. '1m 05s' or '0.42s' for short sessions."""
    if seconds < 10:
        return f"{seconds:.2f}s"
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def short_checksum(checksum: str | None, length: int = 10) -> str:
    """Shortens a checksum for log lines; a missing one shows as 'none'."""
    if not checksum:
        return "none"
    return checksum if len(checksum) <= length else f"{checksum[:length]}…"
