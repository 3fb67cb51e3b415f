# File: bot_core/adapter_with_error_handler.py
import logging
from datetime import datetime, timezone
from typing import Optional, Any

from botbuilder.core import (
    BotFrameworkAdapter,
    BotFrameworkAdapterSettings,
    TurnContext,
)  # type: ignore
from botbuilder.schema import ActivityTypes, Activity  # type: ignore

from bot_core.errors import HandlerFailure, RecoveryFailure
from bot_core.state import StateScopes
from bot_core.turn_context import (
    TURN_STATE_FAILURE_KEY,
    TurnStateInjectionMiddleware,
    create_turn_context,
    set_turn_value,
)

log = logging.getLogger(__name__)

APOLOGY_PREFIX = "Sorry, something went wrong and I had to start our conversation over. Error: "
EMULATOR_CHANNEL_ID = "emulator"


class TurnErrorBoundary:
    """
    The adapter's on_turn_error handler.

    Records the failure, throws away the conversation state (dialog state lives
    there, and resuming from a half-updated dialog is worse than starting over),
    then tells the user in exactly one message. If either of those two steps
    fails, a RecoveryFailure is raised so the request fails with a 500.
    """

    def __init__(self, scopes: StateScopes):
        self.scopes = scopes

    async def __call__(self, context: TurnContext, error: Exception):
        activity = context.activity
        failure = HandlerFailure(
            error,
            activity_type=activity.type if activity else None,
            conversation_id=activity.conversation.id if activity and activity.conversation else None,
        )
        set_turn_value(context, TURN_STATE_FAILURE_KEY, failure)
        log.error(
            f"[on_turn_error] unhandled error in '{failure.activity_type}' turn for conversation "
            f"'{failure.conversation_id}': {error}",
            exc_info=(type(error), error, error.__traceback__),
        )

        try:
            await self.scopes.reset_conversation(context)
        except Exception as reset_error:
            log.critical(f"Failed to delete conversation state after turn error: {reset_error}", exc_info=True)
            raise RecoveryFailure(failure, "delete conversation state") from reset_error

        try:
            await context.send_activity(APOLOGY_PREFIX + failure.user_message)
        except Exception as send_error:
            log.critical(f"Failed to send error message to the user: {send_error}", exc_info=True)
            raise RecoveryFailure(failure, "notify the user") from send_error

        # Send a trace activity if connected to the Bot Framework Emulator
        if activity and activity.channel_id == EMULATOR_CHANNEL_ID:
            trace_activity = Activity(
                label="TurnError",
                name="on_turn_error Trace",
                timestamp=datetime.now(timezone.utc),
                type=ActivityTypes.trace,
                value=f"{error}",
                value_type="https://www.botframework.com/schemas/error",
            )
            try:
                await context.send_activity(trace_activity)
            except Exception as trace_error:
                # Diagnostics only; the user has already been notified.
                log.warning(f"Failed to send error trace activity: {trace_error}")


class AdapterWithErrorHandler(BotFrameworkAdapter):
    def __init__(
        self,
        settings: BotFrameworkAdapterSettings,
        scopes: StateScopes,
        bot: Any,
        config: Optional[Any] = None,
    ):
        super().__init__(settings)
        self.config = config
        self.scopes = scopes
        self.on_turn_error = TurnErrorBoundary(scopes)
        self.use(TurnStateInjectionMiddleware(bot))

    def _create_context(self, activity):
        # Malformed activities are rejected here, before any middleware or bot logic runs.
        return create_turn_context(self, activity)
