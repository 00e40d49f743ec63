"""
Progress reporting threaded explicitly through pipeline stages.

A stage receives a reporter and calls ``update`` / ``advance`` on it.  The job
orchestrator hands each stage a ``span`` of the overall percentage so nested
workers (embedding, per-segment extraction) report into their own band
without knowing which job they belong to.
"""

from typing import Callable, Optional


class ProgressReporter:
    """Base reporter; subclasses override ``update``."""

    def update(self, message: str, percent: Optional[float] = None) -> None:
        pass

    def advance(self, done: int, total: int, label: str) -> None:
        """Report item-level progress (``done`` of ``total``) within this reporter's band."""
        fraction = done / total if total else 1.0
        self.update(f"{label}: {done}/{total} ({round(fraction * 100)}%)", fraction * 100)

    def span(self, start: float, end: float) -> "SpanProgress":
        """Child reporter mapping 0–100 onto ``start``–``end`` of this reporter."""
        return SpanProgress(self, start, end)


class NullProgress(ProgressReporter):
    """Discards every update."""


class CallbackProgress(ProgressReporter):
    """Forwards updates to ``callback(message, percent)``."""

    def __init__(self, callback: Callable[[str, Optional[float]], None]):
        self._callback = callback

    def update(self, message: str, percent: Optional[float] = None) -> None:
        self._callback(message, percent)


class SpanProgress(ProgressReporter):
    def __init__(self, parent: ProgressReporter, start: float, end: float):
        self._parent = parent
        self._start = start
        self._end = end

    def update(self, message: str, percent: Optional[float] = None) -> None:
        if percent is None:
            self._parent.update(message, None)
            return
        percent = min(max(percent, 0.0), 100.0)
        self._parent.update(message, self._start + (self._end - self._start) * percent / 100)
