import asyncio
import time
from typing import Optional

from capi_jobs_client.errors import OperationCancelledError


class CancelToken:
    """Caller-side cancellation signal with an optional absolute deadline.

    Deadlines are `time.monotonic()` values. Firing the token wakes any
    resolver currently waiting on it.
    """

    def __init__(self, deadline: Optional[float] = None):
        self.deadline = deadline
        self._event = asyncio.Event()
        self._reason: Optional[BaseException] = None

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancelToken":
        return cls(deadline=time.monotonic() + seconds)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def reason(self) -> Optional[BaseException]:
        return self._reason

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    def cancel(self, reason: Optional[BaseException] = None) -> None:
        # First reason wins.
        if self._event.is_set():
            return
        self._reason = reason or OperationCancelledError("operation cancelled by caller")
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()
