"""Cooperative cancellation with an optional deadline.

A token is shared between the caller and every worker of one operation.
Workers call ``raise_if_cancelled`` at their wait points; the caller
calls ``cancel``. A deadline turns into the same abort path.
"""

from __future__ import annotations

import threading
import time

from cbt_backup.domain.errors import OperationCancelledError, OperationTimeoutError


class CancellationToken:
    """Cancellation signal for one backup or restore.

    Example:
        token = CancellationToken(timeout=600)
        for block_range in ranges:
            token.raise_if_cancelled()
            ...
    """

    def __init__(self, timeout: float | None = None) -> None:
        """Initialize the token.

        Args:
            timeout: Seconds from now after which the operation times out.
                None means no deadline.
        """
        self._event = threading.Event()
        self._reason = ""
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._event.set()

    @property
    def deadline_exceeded(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.deadline_exceeded

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        """Raise if the operation should abort.

        Raises:
            OperationCancelledError: After ``cancel``.
            OperationTimeoutError: After the deadline passed.
        """
        if self._event.is_set():
            raise OperationCancelledError(self._reason)
        if self.deadline_exceeded:
            raise OperationTimeoutError("operation deadline exceeded")

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``, waking early on cancel.

        Returns:
            True if cancelled while waiting.
        """
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        return self._event.wait(seconds) or self.deadline_exceeded
