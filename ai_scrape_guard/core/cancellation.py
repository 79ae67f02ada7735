"""
Cooperative cancellation for extraction runs.

Checked before every raw call and before every retry wait.
"""

import threading
import time
from typing import Optional

from .errors import Cancelled


class CancellationToken:
    """Deadline and/or explicit cancel signal supplied by the caller.

    Args:
        timeout: Seconds from now after which the token counts as cancelled
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise Cancelled("Extraction cancelled")

    def wait(self, seconds: float) -> None:
        """Park for *seconds*, waking early if cancelled.

        Raises:
            Cancelled: If the token is cancelled before or during the wait
        """
        self.raise_if_cancelled()
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._event.wait(remaining)
        else:
            self._event.wait(seconds)
        self.raise_if_cancelled()
