"""Progress reporting interfaces."""

import threading
from typing import Callable, Dict, Protocol

# Fraction of one file transferred, in [0, 1]
ProgressCallback = Callable[[float], None]


class GroupedProgress(Protocol):
    """Progress reporting for many files downloaded together."""

    def report(self, filename: str, percent: int) -> None:
        """Called when a file's integer percentage changes."""
        ...


class GroupedProgressAggregator:
    """Turn per-file fractional callbacks into grouped percent reports.

    Reports from worker threads are serialized, and a file's percentage is
    only forwarded when it changes.
    """

    def __init__(self, sink: GroupedProgress):
        self.sink = sink
        self._lock = threading.Lock()
        self._last: Dict[str, int] = {}

    def callback_for(self, filename: str) -> ProgressCallback:
        """Per-file callback feeding this aggregator."""
        def _on_progress(fraction: float) -> None:
            self.update(filename, fraction)
        return _on_progress

    def update(self, filename: str, fraction: float) -> None:
        percent = int(max(0.0, min(fraction, 1.0)) * 100)
        with self._lock:
            if self._last.get(filename) == percent:
                return
            self._last[filename] = percent
            self.sink.report(filename, percent)

    def complete(self, filename: str) -> None:
        """Mark a file done (files served from cache never stream bytes)."""
        self.update(filename, 1.0)
