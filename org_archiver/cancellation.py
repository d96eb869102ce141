"""Cooperative cancellation for long-running archive builds.

Builds check the token between records instead of being interrupted, so the
compressing writer and the record stream are always closed and the partial
file removed. A query that is still waiting on the database can't check
anything, so record stores register an on_cancel callback that aborts the
running statement from the cancelling thread.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe cancellation flag shared between a caller and its builds.

    Examples:
        >>> token = CancellationToken()
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.is_cancelled()
        True
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    def cancel(self) -> None:
        """Signal that cancellation has been requested and run the registered callbacks."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.warning("cancellation callback failed", exc_info=True)

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @contextmanager
    def on_cancel(self, callback: Callable[[], None]) -> Iterator[None]:
        """Run callback if the token is cancelled while the block executes.

        If the token is already cancelled the callback runs immediately.
        """
        with self._lock:
            cancelled = self._event.is_set()
            if not cancelled:
                self._callbacks.append(callback)
        if cancelled:
            callback()
        try:
            yield
        finally:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)
