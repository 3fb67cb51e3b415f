# File: bot_core/turn_context.py
"""
Turn context construction and the per-turn state bag.

The bot handle is never looked up globally: the injection middleware puts it
into every turn's ``turn_state`` before the bot's logic runs, and downstream
code reads it back with ``get_bot``.
"""
import logging
from typing import Any, Awaitable, Callable

from botbuilder.core import BotAdapter, Middleware, TurnContext
from botbuilder.schema import Activity

from bot_core.errors import MalformedActivity
from utils.logging_config import start_new_turn

log = logging.getLogger(__name__)

TURN_STATE_BOT_KEY = "bot"
TURN_STATE_SCOPES_KEY = "boundState"
TURN_STATE_FAILURE_KEY = "handlerFailure"


def validate_activity(activity: Activity) -> None:
    """Raises MalformedActivity unless the activity has a type and a conversation id."""
    if activity is None:
        raise MalformedActivity(["activity"])
    missing = []
    if not activity.type:
        missing.append("type")
    if activity.conversation is None or not activity.conversation.id:
        missing.append("conversation.id")
    if missing:
        raise MalformedActivity(missing)


def create_turn_context(adapter: BotAdapter, activity: Activity) -> TurnContext:
    validate_activity(activity)
    return TurnContext(adapter, activity)


def set_turn_value(turn_context: TurnContext, key: str, value: Any) -> None:
    """Stores a value in the turn-state bag. Setting an existing key overwrites it."""
    turn_context.turn_state[key] = value


def get_turn_value(turn_context: TurnContext, key: str) -> Any:
    return turn_context.turn_state[key]


def get_bot(turn_context: TurnContext):
    return get_turn_value(turn_context, TURN_STATE_BOT_KEY)


def get_bound_state(turn_context: TurnContext):
    return get_turn_value(turn_context, TURN_STATE_SCOPES_KEY)


class TurnStateInjectionMiddleware(Middleware):
    """Makes the bot handle discoverable from every turn and tags the turn for logging."""

    def __init__(self, bot):
        if bot is None:
            raise TypeError("TurnStateInjectionMiddleware(): bot cannot be None.")
        self.bot = bot

    async def on_turn(self, context: TurnContext, logic: Callable[[], Awaitable]):
        set_turn_value(context, TURN_STATE_BOT_KEY, self.bot)

        activity = context.activity
        sender_id = activity.from_property.id if activity.from_property else None
        conversation_id = activity.conversation.id if activity.conversation else None
        turn = start_new_turn(sender_id, conversation_id)
        log.debug(f"Turn {turn} started: Type='{activity.type}', ConvID='{conversation_id}'")

        await logic()
