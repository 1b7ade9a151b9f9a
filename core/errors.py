"""
Error taxonomy for video generation.

Every failure the generation flow can surface derives from
VideoGenerationError so the action boundary can catch one type:

- ValidationError: a precondition is missing, raised before any network call
- InsufficientCredits: HTTP 402 from the backend, or a credit gate denial
- NotAuthenticated: no signed-in user
- ProtocolError: malformed or ambiguous backend response
- GenerationError: the backend reported an explicit failure
- ChannelError: status subscription failure (does not fail the job)
- TrackingTimedOut: no terminal status within the tracking window
"""

from typing import Optional


class VideoGenerationError(Exception):
    """Base class for generation failures."""

    default_code = "GENERATION_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.message = message
        self.error_code = error_code or self.default_code
        super().__init__(message)


class ValidationError(VideoGenerationError):
    default_code = "VALIDATION_ERROR"


class InsufficientCredits(VideoGenerationError):
    """Raised on HTTP 402 or when the credit gate denies an action."""

    default_code = "INSUFFICIENT_CREDITS"

    def __init__(
        self,
        message: str = "Insufficient credits, please recharge and try again",
        required: Optional[int] = None,
        balance: Optional[int] = None,
        deficit: Optional[int] = None,
    ):
        self.required = required
        self.balance = balance
        if deficit is None and required is not None and balance is not None:
            deficit = max(0, required - balance)
        self.deficit = deficit
        super().__init__(message)


class NotAuthenticated(VideoGenerationError):
    default_code = "UNAUTHENTICATED"

    def __init__(self, message: str = "Please login first"):
        super().__init__(message)


class ProtocolError(VideoGenerationError):
    default_code = "PROTOCOL_ERROR"


class GenerationError(VideoGenerationError):
    default_code = "GENERATION_FAILED"


class ChannelError(VideoGenerationError):
    """Subscription-layer failure. The job itself may still succeed."""

    default_code = "CHANNEL_ERROR"

    def __init__(self, message: str, task_id: Optional[str] = None, error_code: Optional[str] = None):
        self.task_id = task_id
        super().__init__(message, error_code)


class TrackingTimedOut(VideoGenerationError):
    default_code = "TIMEOUT"

    def __init__(self, task_id: str, timeout: float):
        self.task_id = task_id
        self.timeout = timeout
        super().__init__(f"Task {task_id} did not finish within {timeout:.0f} seconds")
