"""Error taxonomy for GraphMem.

- ValidationError: malformed input, caller's fault, never retried
- NotFoundError: aggregate missing
- UnauthorizedError: ownership mismatch
- ConflictError: optimistic-lock version mismatch (retried by the
  read-modify-write helper, then surfaced as RetryExhaustedError)
- InternalError: store/transport failure, not retried
"""

from contextlib import contextmanager
from typing import Any


class GraphMemError(Exception):
    """Base class for all GraphMem errors.

    Attributes:
        message: Human readable description
        step: Command step that failed (set by handlers via wrap_step)
        details: Extra structured context
    """

    code = "internal"

    def __init__(self, message: str, *, step: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.step = step
        self.details = details or {}

    def __str__(self) -> str:
        if self.step:
            return f"{self.step}: {self.message}"
        return self.message

    @property
    def retryable(self) -> bool:
        """Whether the caller may retry the same request."""
        return False

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logs and outer surfaces."""
        d: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.step:
            d["step"] = self.step
        if self.details:
            d["details"] = self.details
        return d


class ValidationError(GraphMemError):
    code = "validation"


class NotFoundError(GraphMemError):
    code = "not_found"

    def __init__(self, resource: str, identifier: str, **kwargs):
        super().__init__(f"{resource} not found: {identifier}", **kwargs)
        self.resource = resource
        self.identifier = identifier


class UnauthorizedError(GraphMemError):
    code = "unauthorized"


class ConflictError(GraphMemError):
    """Optimistic concurrency violation or duplicate write."""

    code = "conflict"

    @property
    def retryable(self) -> bool:
        return True


class RetryExhaustedError(ConflictError):
    """Conflict persisted past the retry budget; the caller should retry later."""

    code = "retry_exhausted"

    def __init__(self, message: str, attempts: int, **kwargs):
        super().__init__(message, **kwargs)
        self.attempts = attempts


class InternalError(GraphMemError):
    code = "internal"


class StoreError(InternalError):
    """Store/transport failure."""

    code = "store"


class ConditionCheckFailedError(StoreError):
    """A single conditional write did not meet its condition."""

    code = "condition_failed"


class TransactionCancelledError(StoreError):
    """A transaction was rejected as a whole.

    Attributes:
        reasons: One entry per operation, None when that operation was fine,
            otherwise a short reason such as "ConditionalCheckFailed"
    """

    code = "transaction_cancelled"

    def __init__(self, message: str, reasons: list[str | None], **kwargs):
        super().__init__(message, **kwargs)
        self.reasons = reasons

    def failed_indexes(self) -> list[int]:
        return [i for i, reason in enumerate(self.reasons) if reason]


class OperationCancelledError(InternalError):
    """The request context was cancelled or its deadline passed."""

    code = "cancelled"


@contextmanager
def wrap_step(step: str):
    """Annotate errors raised inside the block with the failing step.

    GraphMem errors keep their kind and only gain ``step`` (the innermost step
    wins). Any other exception is wrapped as InternalError.

    Example:
        with wrap_step("load node"):
            node = uow.nodes.get_by_id(user_id, node_id)
    """
    try:
        yield
    except GraphMemError as e:
        if e.step is None:
            e.step = step
        raise
    except Exception as e:
        raise InternalError(f"{type(e).__name__}: {e}", step=step) from e
