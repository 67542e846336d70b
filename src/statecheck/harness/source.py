# src/statecheck/harness/source.py
"""Deterministic source and its completion signal.

The source emits the reference sequence exactly once while holding the
job's checkpoint lock, sets the completion signal before releasing it,
then idles until cancelled. A snapshot taken after the signal is observed
therefore always contains every element.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence

import structlog

from statecheck.contracts.engine import SourceContext
from statecheck.engine.functions import SourceFunction

logger = structlog.get_logger(__name__)


class CompletionSignal:
    """Synchronized 'source has emitted everything' flag.

    Must be reset() before each run; reading or setting it before the first
    reset is a programming error.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._initialized = False

    def reset(self) -> None:
        self._event.clear()
        self._initialized = True

    def set(self) -> None:
        if not self._initialized:
            raise RuntimeError("CompletionSignal.set() called before reset()")
        self._event.set()

    def is_set(self) -> bool:
        if not self._initialized:
            raise RuntimeError("CompletionSignal read before reset()")
        return self._event.is_set()


class DeterministicSource(SourceFunction):
    """Emits a fixed sequence once, then idles until cancelled."""

    def __init__(
        self,
        elements: Sequence[int],
        signal: CompletionSignal,
        *,
        idle_seconds: float = 0.1,
    ) -> None:
        if idle_seconds <= 0:
            raise ValueError(f"idle_seconds must be positive, got {idle_seconds}")
        self._elements = tuple(elements)
        self._signal = signal
        self._idle_seconds = idle_seconds
        self._cancelled = threading.Event()

    @property
    def elements(self) -> tuple[int, ...]:
        """The reference sequence, in emission order."""
        return self._elements

    def run(self, ctx: SourceContext) -> None:
        with ctx.checkpoint_lock:
            for element in self._elements:
                ctx.collect(element)
            self._signal.set()
        logger.debug("Source emitted reference sequence", count=len(self._elements))

        while not self._cancelled.wait(self._idle_seconds):
            pass

    def cancel(self) -> None:
        self._cancelled.set()
