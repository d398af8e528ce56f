from __future__ import annotations

import math

_IEC_UNITS = ("KiB", "MiB", "GiB", "TiB", "PiB", "EiB")


def format_bytes(size: int | float) -> str:
    if size < 1024:
        return f"{int(size)} B"
    value = float(size)
    unit = _IEC_UNITS[0]
    for unit in _IEC_UNITS:
        value /= 1024
        if value < 1024:
            break
    return f"{value:.1f} {unit}"


def format_duration(seconds: int) -> str:
    seconds = max(0, int(seconds))
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{minutes}m{secs}s"
    return f"{secs}s"


def format_ratio(numerator: float, denominator: float, *, digits: int = 2) -> str:
    # Zero denominators render like IEEE division instead of raising.
    if denominator == 0:
        value = math.nan if numerator == 0 else math.copysign(math.inf, numerator)
    else:
        value = numerator / denominator
    return f"{value:.{digits}f}"
