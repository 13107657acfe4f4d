"""Time formatting helpers for now-playing displays."""

from __future__ import annotations

import math


def format_seconds(seconds: float | None) -> str:
    """Format seconds as MM:SS or H:MM:SS when needed; unknown shows dashes."""
    if seconds is None:
        return "--:--"
    return _format_seconds(seconds, force_hours=False)


def format_elapsed_pair(
    elapsed_s: float | None, duration_s: float | None
) -> tuple[str, str]:
    """Format elapsed and duration with consistent width."""
    hours_mode = _needs_hours(elapsed_s) or _needs_hours(duration_s)
    placeholder = "--:--:--" if hours_mode else "--:--"
    elapsed = (
        placeholder
        if elapsed_s is None
        else _format_seconds(elapsed_s, force_hours=hours_mode)
    )
    if duration_s is None or _coerce_seconds(duration_s) <= 0:
        return elapsed, placeholder
    return elapsed, _format_seconds(duration_s, force_hours=hours_mode)


def _needs_hours(seconds: float | None) -> bool:
    return seconds is not None and _coerce_seconds(seconds) >= 3600


def _format_seconds(seconds: float, *, force_hours: bool) -> str:
    total = _coerce_seconds(seconds)
    hours = total // 3600
    if hours > 0 or force_hours:
        return f"{hours}:{(total // 60) % 60:02d}:{total % 60:02d}"
    return f"{total // 60:02d}:{total % 60:02d}"


def _coerce_seconds(value: float) -> int:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(numeric):
        return 0
    return max(0, int(numeric))
