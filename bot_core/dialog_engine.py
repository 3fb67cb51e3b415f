"""
The seam between the turn pipeline and conversational logic.

``DialogBot`` drives any ``DialogEngine``; ``EchoDialog`` is the small default
used when nothing else is plugged in.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from botbuilder.core import TurnContext
from botbuilder.core.oauth import ExtendedUserTokenProvider
from botbuilder.schema import SignInConstants
from botframework.connector.token_api.models import TokenExchangeRequest

from bot_core.state import BoundState
from state_models import (
    CONVERSATION_DATA_PROPERTY,
    USER_PROFILE_PROPERTY,
    ConversationData,
    UserProfile,
    load_model,
    store_model,
)

log = logging.getLogger(__name__)


class DialogEngine:
    """Conversational logic invoked once per turn with the turn's bound state."""

    async def on_message(self, turn_context: TurnContext, state: BoundState) -> None:
        raise NotImplementedError()

    async def on_sign_in(self, turn_context: TurnContext, state: BoundState) -> Optional[Any]:
        """Handles signin/verifyState and signin/tokenExchange invokes. The return value is the invoke body."""
        return None


class EchoDialog(DialogEngine):
    def __init__(self, connection_name: str):
        if not connection_name:
            raise ValueError("EchoDialog requires an OAuth connection name.")
        self.connection_name = connection_name

    async def on_message(self, turn_context: TurnContext, state: BoundState) -> None:
        activity = turn_context.activity
        conversation = await state.conversation()
        data = load_model(conversation, CONVERSATION_DATA_PROPERTY, ConversationData)
        count = data.record_message(activity.text)
        store_model(conversation, CONVERSATION_DATA_PROPERTY, data)

        # User state needs a sender id; anonymous messages only touch conversation state.
        sender = activity.from_property
        if sender and sender.id:
            user = await state.user()
            profile = load_model(user, USER_PROFILE_PROPERTY, UserProfile)
            profile.user_id = sender.id
            profile.display_name = sender.name or profile.display_name
            store_model(user, USER_PROFILE_PROPERTY, profile)

        await turn_context.send_activity(f"You said '{activity.text or ''}' (message {count} in this conversation).")

    async def on_sign_in(self, turn_context: TurnContext, state: BoundState) -> Optional[Any]:
        activity = turn_context.activity
        adapter = turn_context.adapter
        if not isinstance(adapter, ExtendedUserTokenProvider):
            raise TypeError("The adapter does not support OAuth user tokens.")
        if not activity.from_property or not activity.from_property.id:
            log.warning(f"Sign-in invoke '{activity.name}' without a sender id; nothing to sign in.")
            return {"signedIn": False}

        value = activity.value if isinstance(activity.value, dict) else {}
        if activity.name == SignInConstants.token_exchange_operation_name:
            token_response = await adapter.exchange_token(
                turn_context,
                value.get("connectionName") or self.connection_name,
                activity.from_property.id,
                TokenExchangeRequest(token=value.get("token")),
            )
        else:
            token_response = await adapter.get_user_token(
                turn_context, self.connection_name, value.get("state")
            )

        user = await state.user()
        profile = load_model(user, USER_PROFILE_PROPERTY, UserProfile)
        profile.user_id = activity.from_property.id
        profile.signed_in = token_response is not None and bool(token_response.token)
        if profile.signed_in:
            profile.signed_in_at = datetime.now(timezone.utc)
        store_model(user, USER_PROFILE_PROPERTY, profile)

        log.info(f"Sign-in invoke '{activity.name}' for user '{profile.user_id}': signed_in={profile.signed_in}")
        return {"signedIn": profile.signed_in}
