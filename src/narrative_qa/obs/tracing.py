"""Request timing and log-safe previews."""

from __future__ import annotations

import time


class Timer:
    """Simple context timer used by the router and tool registry."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0

    def lap_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000.0


def preview(text: str, limit: int = 100) -> str:
    """Truncate user text before it is written to logs or traces."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
