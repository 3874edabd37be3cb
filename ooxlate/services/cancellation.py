# ooxlate/services/cancellation.py
"""
Hierarchical cancellation tokens.

A token is cancelled explicitly, when its parent is cancelled, or when its
deadline passes. Children never propagate cancellation upward, so a batch can
cancel its own workers (fail-fast) without stopping the whole run.
"""

import logging
import threading
import time
from typing import Optional

from .exceptions import TranslationCancelledError

# Module logger
logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe cancellation flag with children and an optional deadline."""

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: list['CancellationToken'] = []
        self._reason: Optional[str] = None
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel this token and every child created from it."""
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            children = list(self._children)
        logger.debug("Cancellation requested: %s", reason)
        for child in children:
            child.cancel(reason)

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("deadline exceeded")
            return True
        return False

    def _remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until cancelled or until timeout seconds pass.

        Returns:
            True if the token is cancelled.
        """
        remaining = self._remaining()
        if remaining is not None:
            timeout = remaining if timeout is None else min(timeout, remaining)
        self._event.wait(timeout)
        return self.cancelled

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise TranslationCancelledError(f"Translation {self._reason or 'cancelled'}")

    def child(self, timeout: Optional[float] = None) -> 'CancellationToken':
        """
        Create a token that is cancelled together with this one.

        The child's deadline is the earlier of its own and the parent's.
        """
        remaining = self._remaining()
        if remaining is not None:
            timeout = remaining if timeout is None else min(timeout, remaining)
        token = CancellationToken(timeout=timeout)
        with self._lock:
            already_cancelled = self._event.is_set()
            if not already_cancelled:
                self._children.append(token)
        if already_cancelled:
            token.cancel(self._reason or "cancelled")
        return token

    def release_child(self, token: 'CancellationToken') -> None:
        """Forget a finished child so long runs do not accumulate tokens."""
        with self._lock:
            try:
                self._children.remove(token)
            except ValueError:
                pass

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._event.is_set()}, reason={self._reason!r})"
