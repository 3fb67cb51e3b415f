"""
Shared fixtures for the turn pipeline tests.
"""
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from botbuilder.core import TurnContext
from botbuilder.core.adapters import TestAdapter
from botbuilder.schema import Activity, ActivityTypes, ChannelAccount, ConversationAccount

from bot_core.adapter_with_error_handler import TurnErrorBoundary
from bot_core.dialog_bot import DialogBot
from bot_core.state import StateScopes
from bot_core.storage import MemoryStore
from bot_core.turn_context import TurnStateInjectionMiddleware, create_turn_context

TEST_CHANNEL_ID = "msteams"
TEST_CONNECTION_NAME = "TestOAuthConnection"


def build_activity(
    activity_type=ActivityTypes.message,
    text=None,
    name=None,
    value=None,
    conversation_id="c1",
    user_id="u1",
    channel_id=TEST_CHANNEL_ID,
):
    return Activity(
        type=activity_type,
        text=text,
        name=name,
        value=value,
        conversation=ConversationAccount(id=conversation_id) if conversation_id else None,
        from_property=ChannelAccount(id=user_id, name="Test User") if user_id else None,
        recipient=ChannelAccount(id="bot", name="Bot"),
        channel_id=channel_id,
        service_url="https://smba.example.test",
        id="activity-id",
    )


@pytest.fixture
def make_activity():
    return build_activity


@pytest.fixture
def storage():
    return MemoryStore()


@pytest.fixture
def scopes(storage):
    return StateScopes(storage)


@pytest.fixture
def test_adapter():
    return TestAdapter()


@pytest.fixture
def wire_adapter(test_adapter, scopes):
    """Gives a TestAdapter the same middleware and error boundary the production adapter uses."""

    def _wire(bot: DialogBot) -> TestAdapter:
        test_adapter.use(TurnStateInjectionMiddleware(bot))
        test_adapter.on_turn_error = TurnErrorBoundary(scopes)
        return test_adapter

    return _wire


@pytest.fixture
def run_turn():
    """Runs one activity through the adapter's pipeline exactly like a live request would."""

    async def _run(adapter, bot, activity) -> TurnContext:
        context = create_turn_context(adapter, activity)
        await adapter.run_pipeline(context, bot.on_turn)
        return context

    return _run
