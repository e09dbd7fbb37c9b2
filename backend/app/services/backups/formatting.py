from __future__ import annotations

import math
from datetime import datetime

BYTE_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_bytes(size: int | float, precision: int = 2) -> str:
    """Render a byte count with the largest unit that keeps the value >= 1.

    ``format_bytes(1536) == "1.5 KB"``; non-positive sizes render as ``"0 B"``.
    """

    if size <= 0:
        return "0 B"
    power = max(0, min(int(math.floor(math.log(size, 1024))), len(BYTE_UNITS) - 1))
    # floating point log() can miss an exact power of 1024 by one ulp
    if power < len(BYTE_UNITS) - 1 and size >= 1024 ** (power + 1):
        power += 1
    elif power > 0 and size < 1024**power:
        power -= 1
    value = round(size / (1024**power), precision)
    rendered = f"{value:.{precision}f}"
    if precision > 0:
        rendered = rendered.rstrip("0").rstrip(".")
    return f"{rendered} {BYTE_UNITS[power]}"


def format_backup_date(moment: datetime, *, with_time: bool = True) -> str:
    label = f"{moment.strftime('%b')} {moment.day}, {moment.year}"
    if with_time:
        label = f"{label} {moment.strftime('%H:%M')}"
    return label


__all__ = ["BYTE_UNITS", "format_backup_date", "format_bytes"]
