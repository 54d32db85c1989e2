"""Cooperative pause signalling between callers and a running engine."""

from __future__ import annotations

import threading

from .errors import RunPausedError


class PauseToken:
    """Flag polled by the engine before each page fetch and each unit of work.

    Backed by a ``threading.Event`` so a pause can be requested from a signal
    handler or another thread. Requesting a pause never interrupts a unit that
    is already committing.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    def request(self) -> None:
        self._event.set()

    def clear(self) -> None:
        self._event.clear()

    def raise_if_requested(self) -> None:
        if self._event.is_set():
            raise RunPausedError("Pause requested")
