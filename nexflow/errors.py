"""Exception hierarchy for nexflow.

Store errors are raised to callers of the repository. Step errors are raised
inside the step interpreter, where they are caught and recorded on the
offending step outcome instead of propagating out of a run.
"""

from __future__ import annotations

from typing import Any


class NexflowError(Exception):
    """Base exception for all nexflow errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error code.
        details: Additional error context (e.g. flow_id, status).
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class FlowNotFoundError(NexflowError):
    """Raised when a flow id is not present in the store."""

    def __init__(self, flow_id: str) -> None:
        super().__init__(
            f"Flow not found: {flow_id}", "FLOW_NOT_FOUND", {"flow_id": flow_id}
        )
        self.flow_id = flow_id


class FlowAlreadyExistsError(NexflowError):
    """Raised when creating a flow whose derived id is already taken."""

    def __init__(self, flow_id: str) -> None:
        super().__init__(
            f"Flow already exists: {flow_id}", "FLOW_EXISTS", {"flow_id": flow_id}
        )
        self.flow_id = flow_id


class StepExecutionError(NexflowError):
    """A step failed; the run halts and is marked failed."""


class StepTimeoutError(StepExecutionError):
    """Outbound request exceeded the step's timeout."""

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(
            f"Request timed out after {timeout_ms}ms",
            "STEP_TIMEOUT",
            {"timeout_ms": timeout_ms},
        )


class DurationFormatError(StepExecutionError, ValueError):
    """Delay duration is not of the form ``<integer><ms|s|m|h>``."""

    def __init__(self, duration: str) -> None:
        super().__init__(
            f'Invalid duration format "{duration}"',
            "INVALID_DURATION",
            {"duration": duration},
        )


class NotifyError(StepExecutionError):
    """Notification endpoint answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(
            f"Notify request failed ({status_code}): {body[:100]}",
            "NOTIFY_FAILED",
            {"status_code": status_code},
        )
        self.status_code = status_code


class WebhookPayloadError(StepExecutionError):
    """Interpolated webhook payload is not valid JSON."""

    def __init__(self, reason: str) -> None:
        super().__init__(
            f"Invalid webhook payload JSON: {reason}", "INVALID_WEBHOOK_PAYLOAD"
        )
