"""Cooperative cancellation."""

from __future__ import annotations

import threading


class CancellationToken:
    """Flag checked by long running operations at safe points.

    Thread safe, so a UI thread or signal handler may cancel a run driven by
    an event loop in another thread.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
