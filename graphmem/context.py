"""Request context carrying cancellation and deadline.

The caller owns the context; the unit of work checks it before touching
the store so a cancelled or timed-out request rolls back instead of
committing.
"""

import threading
import time
from dataclasses import dataclass, field

from graphmem.errors import OperationCancelledError


@dataclass
class RequestContext:
    """Cancellation flag plus optional monotonic deadline.

    Attributes:
        deadline: time.monotonic() value after which the request is expired
        request_id: Optional correlation id for logs
    """

    deadline: float | None = None
    request_id: str | None = None
    _cancelled: threading.Event = field(default_factory=threading.Event, repr=False)

    @classmethod
    def with_timeout(cls, seconds: float, request_id: str | None = None) -> "RequestContext":
        """Create a context that expires ``seconds`` from now."""
        return cls(deadline=time.monotonic() + seconds, request_id=request_id)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline (None when unbounded)."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        """Raise OperationCancelledError if the request should stop."""
        if self.cancelled:
            raise OperationCancelledError("request cancelled")
        if self.expired:
            raise OperationCancelledError("request deadline exceeded")


def check_context(ctx: RequestContext | None) -> None:
    """check() that tolerates a missing context."""
    if ctx is not None:
        ctx.check()
