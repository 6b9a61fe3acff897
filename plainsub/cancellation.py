"""
plainsub.cancellation - Cooperative cancellation signal.

One token is shared by the caller and every stage of a run. Stages poll it
at their boundaries and inside per-frame and per-segment loops.
"""

from __future__ import annotations

import threading

from plainsub.exceptions import PipelineCancelled


class CancellationToken:
    """Thread-safe, one-way cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PipelineCancelled("Operation cancelled")


def check_cancelled(cancel: CancellationToken | None) -> None:
    """Raise PipelineCancelled if an optional token has been triggered."""
    if cancel is not None:
        cancel.raise_if_cancelled()
