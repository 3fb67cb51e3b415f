"""
Conversation and user scoped state for the turn pipeline.

Both scopes sit on top of a botbuilder ``Storage`` and cache their property
bag in the turn context, so within one turn a read after a write sees the
write. Nothing reaches the store until ``StateScopes.flush`` runs at the end
of a successful turn.
"""
import logging
from typing import Any, Dict, Optional

from botbuilder.core import BotState, Storage, TurnContext
from botbuilder.core.bot_state import CachedBotState

from bot_core.errors import MalformedActivity

log = logging.getLogger(__name__)

DEFAULT_CHANNEL_ID = "unknown"


class ScopedBotState(BotState):
    """
    BotState whose storage key is ``{channel}/{scope}/{id}``.

    Differs from the stock scopes in two ways: the bag is read from storage at
    most once per turn, and ``delete`` works whether or not the bag was loaded.
    """

    scope_segment = ""

    def __init__(self, storage: Storage, default_channel_id: str = DEFAULT_CHANNEL_ID):
        super().__init__(storage, self.__class__.__name__)
        self.default_channel_id = default_channel_id

    def key_for(self, channel_id: Optional[str], scope_id: str) -> str:
        return f"{channel_id or self.default_channel_id}/{self.scope_segment}/{scope_id}"

    def scope_id(self, turn_context: TurnContext) -> str:
        raise NotImplementedError()

    def get_storage_key(self, turn_context: TurnContext) -> str:
        return self.key_for(turn_context.activity.channel_id, self.scope_id(turn_context))

    async def load(self, turn_context: TurnContext, force: bool = False) -> None:
        if force or self.get_cached_state(turn_context) is None:
            storage_key = self.get_storage_key(turn_context)
            items = await self._storage.read([storage_key])
            turn_context.turn_state[self._context_service_key] = CachedBotState(
                items.get(storage_key) or {}
            )
            log.debug(f"Loaded state for scope '{storage_key}'.")

    async def delete(self, turn_context: TurnContext) -> None:
        turn_context.turn_state.pop(self._context_service_key, None)
        storage_key = self.get_storage_key(turn_context)
        await self._storage.delete([storage_key])
        log.info(f"Deleted state for scope '{storage_key}'.")


class ConversationScopeState(ScopedBotState):
    """State shared by everyone in a (channel, conversation)."""

    scope_segment = "conversations"

    def scope_id(self, turn_context: TurnContext) -> str:
        conversation = turn_context.activity.conversation
        if conversation is None or not conversation.id:
            raise MalformedActivity(["conversation.id"])
        return conversation.id


class UserScopeState(ScopedBotState):
    """State for one (channel, user), across all of that user's conversations."""

    scope_segment = "users"

    def scope_id(self, turn_context: TurnContext) -> str:
        sender = turn_context.activity.from_property
        if sender is None or not sender.id:
            raise MalformedActivity(["from.id"])
        return sender.id


class BoundState:
    """The two scopes as seen from a single turn."""

    def __init__(self, scopes: "StateScopes", turn_context: TurnContext):
        self._scopes = scopes
        self._turn_context = turn_context

    async def conversation(self) -> Dict[str, Any]:
        """Returns the live conversation bag for this turn; mutate it in place."""
        state = self._scopes.conversation_state
        await state.load(self._turn_context)
        return state.get(self._turn_context)

    async def user(self) -> Dict[str, Any]:
        """Returns the live user bag for this turn; mutate it in place."""
        state = self._scopes.user_state
        await state.load(self._turn_context)
        return state.get(self._turn_context)


class StateScopes:
    """Conversation and user state over one shared store."""

    def __init__(self, storage: Storage, default_channel_id: str = DEFAULT_CHANNEL_ID):
        self.storage = storage
        self.conversation_state = ConversationScopeState(storage, default_channel_id)
        self.user_state = UserScopeState(storage, default_channel_id)

    def bind(self, turn_context: TurnContext) -> BoundState:
        return BoundState(self, turn_context)

    async def flush(self, turn_context: TurnContext) -> None:
        """Persists whatever either scope changed during the turn. This is the save point."""
        await self.conversation_state.save_changes(turn_context, force=False)
        await self.user_state.save_changes(turn_context, force=False)

    async def reset_conversation(self, turn_context: TurnContext) -> None:
        await self.conversation_state.delete(turn_context)

    async def read_conversation(self, channel_id: Optional[str], conversation_id: str) -> Dict[str, Any]:
        """Reads a conversation bag straight from the store, outside of any turn."""
        key = self.conversation_state.key_for(channel_id, conversation_id)
        items = await self.storage.read([key])
        return items.get(key) or {}

    async def read_user(self, channel_id: Optional[str], user_id: str) -> Dict[str, Any]:
        key = self.user_state.key_for(channel_id, user_id)
        items = await self.storage.read([key])
        return items.get(key) or {}
