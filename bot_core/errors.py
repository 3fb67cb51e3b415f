# File: bot_core/errors.py
"""
Error kinds raised by the turn pipeline.

The distinction matters to callers: a ``HandlerFailure`` is recovered inside
the turn (state reset plus a single apology message), while a
``RecoveryFailure`` means the recovery itself broke and the request must fail.
"""
from typing import Optional


class GatewayError(Exception):
    """Base class for all turn pipeline errors."""
    pass


class MalformedActivity(GatewayError):
    """Inbound activity is missing fields required to build a turn context."""

    def __init__(self, missing_fields):
        self.missing_fields = list(missing_fields)
        super().__init__(
            f"Activity is missing required field(s): {', '.join(self.missing_fields)}"
        )


class HandlerFailure(GatewayError):
    """An exception escaped the dialog or invoke handler during a turn."""

    def __init__(
        self,
        error: BaseException,
        activity_type: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ):
        self.error = error
        self.activity_type = activity_type
        self.conversation_id = conversation_id
        super().__init__(str(error))

    @property
    def user_message(self) -> str:
        # Only the top-level message ever reaches the user.
        return str(self.error) or type(self.error).__name__


class RecoveryFailure(GatewayError):
    """Resetting conversation state or notifying the user failed."""

    def __init__(self, handler_failure: HandlerFailure, stage: str):
        self.handler_failure = handler_failure
        self.stage = stage
        super().__init__(
            f"Turn error recovery failed while trying to {stage} "
            f"(original error: {handler_failure.user_message})"
        )


class UnobservedAsyncFailure(GatewayError):
    """A background coroutine failed without anyone awaiting it."""

    def __init__(self, message: str, error: Optional[BaseException] = None, task_name: Optional[str] = None):
        self.error = error
        self.task_name = task_name
        super().__init__(message)


class StorageError(GatewayError):
    """Custom exception for state store errors."""
    pass
