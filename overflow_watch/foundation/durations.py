"""Human-readable duration formatting shared by logs and publishers."""

from __future__ import annotations


def format_duration(minutes: int | None) -> str:
    """Render whole minutes compactly: ``45m``, ``10h``, ``11h 40m``, ``2d 3h 5m``."""
    if minutes is None:
        return "unknown"
    minutes = max(int(minutes), 0)
    hours, mins = divmod(minutes, 60)
    days, hours = divmod(hours, 24)

    if days > 0:
        parts = [f"{days}d"]
        if hours > 0:
            parts.append(f"{hours}h")
        if mins > 0:
            parts.append(f"{mins}m")
        return " ".join(parts)
    if hours == 0:
        return f"{mins}m"
    return f"{hours}h {mins}m" if mins > 0 else f"{hours}h"
