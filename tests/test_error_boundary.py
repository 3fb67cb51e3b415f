"""
Tests for the turn error boundary: reset conversation state, apologise once, or fail loudly.
"""
import pytest
from unittest.mock import AsyncMock

from bot_core.adapter_with_error_handler import APOLOGY_PREFIX
from bot_core.dialog_bot import DialogBot
from bot_core.dialog_engine import DialogEngine
from bot_core.errors import HandlerFailure, RecoveryFailure, StorageError
from bot_core.turn_context import TURN_STATE_FAILURE_KEY


class ScriptedDialog(DialogEngine):
    """Counts messages and raises when the text is 'fail'."""

    def __init__(self, error=None):
        self.error = error or RuntimeError("boom")

    async def on_message(self, turn_context, state):
        conversation = await state.conversation()
        conversation["count"] = conversation.get("count", 0) + 1
        (await state.user())["touched"] = True
        if turn_context.activity.text == "fail":
            raise self.error


@pytest.mark.asyncio
async def test_failure_resets_conversation_and_apologises_once(scopes, wire_adapter, run_turn, make_activity):
    bot = DialogBot(scopes, ScriptedDialog())
    adapter = wire_adapter(bot)
    await run_turn(adapter, bot, make_activity(text="ok"))
    assert await scopes.read_conversation("msteams", "c1") == {"count": 1}

    context = await run_turn(adapter, bot, make_activity(text="fail"))

    assert await scopes.read_conversation("msteams", "c1") == {}
    assert [a.text for a in adapter.activity_buffer] == [APOLOGY_PREFIX + "boom"]
    failure = context.turn_state[TURN_STATE_FAILURE_KEY]
    assert isinstance(failure, HandlerFailure)
    assert failure.conversation_id == "c1"


@pytest.mark.asyncio
async def test_partial_mutations_are_never_flushed(scopes, storage, wire_adapter, run_turn, make_activity):
    bot = DialogBot(scopes, ScriptedDialog())
    adapter = wire_adapter(bot)

    await run_turn(adapter, bot, make_activity(text="fail"))

    assert await scopes.read_conversation("msteams", "c1") == {}
    assert await scopes.read_user("msteams", "u1") == {}
    assert len(storage) == 0


@pytest.mark.asyncio
async def test_error_without_message_uses_type_name(scopes, wire_adapter, run_turn, make_activity):
    bot = DialogBot(scopes, ScriptedDialog(error=KeyError()))
    adapter = wire_adapter(bot)

    await run_turn(adapter, bot, make_activity(text="fail"))

    assert adapter.activity_buffer[0].text == APOLOGY_PREFIX + "KeyError"


@pytest.mark.asyncio
async def test_emulator_channel_still_gets_a_single_message(scopes, wire_adapter, run_turn, make_activity):
    bot = DialogBot(scopes, ScriptedDialog())
    adapter = wire_adapter(bot)

    await run_turn(adapter, bot, make_activity(text="fail", channel_id="emulator"))

    messages = [a for a in adapter.activity_buffer if a.type == "message"]
    assert len(messages) == 1
    assert messages[0].text == APOLOGY_PREFIX + "boom"


@pytest.mark.asyncio
async def test_send_failure_raises_recovery_failure(scopes, wire_adapter, run_turn, make_activity):
    class BrokenChannelDialog(DialogEngine):
        async def on_message(self, turn_context, state):
            turn_context.send_activity = AsyncMock(side_effect=ConnectionError("channel down"))
            raise RuntimeError("boom")

    bot = DialogBot(scopes, BrokenChannelDialog())
    adapter = wire_adapter(bot)

    with pytest.raises(RecoveryFailure) as excinfo:
        await run_turn(adapter, bot, make_activity(text="hi"))

    assert excinfo.value.stage == "notify the user"
    assert isinstance(excinfo.value.handler_failure, HandlerFailure)
    assert isinstance(excinfo.value.__cause__, ConnectionError)


@pytest.mark.asyncio
async def test_state_delete_failure_raises_before_any_message(scopes, wire_adapter, run_turn, make_activity):
    bot = DialogBot(scopes, ScriptedDialog())
    adapter = wire_adapter(bot)
    scopes.reset_conversation = AsyncMock(side_effect=StorageError("store unavailable"))

    with pytest.raises(RecoveryFailure) as excinfo:
        await run_turn(adapter, bot, make_activity(text="fail"))

    assert excinfo.value.stage == "delete conversation state"
    assert adapter.activity_buffer == []
