# File: bot_core/dialog_bot.py
import logging
from http import HTTPStatus
from typing import Any, Awaitable, Callable, Dict, Optional

from botbuilder.core import ActivityHandler, TurnContext  # type: ignore
from botbuilder.schema import InvokeResponse, SignInConstants  # type: ignore
from pydantic import BaseModel

from bot_core.dialog_engine import DialogEngine
from bot_core.state import BoundState, StateScopes
from bot_core.turn_context import TURN_STATE_SCOPES_KEY, get_bound_state, set_turn_value

log = logging.getLogger(__name__)

InvokeHandler = Callable[[TurnContext, BoundState], Awaitable[Any]]


class DialogBot(ActivityHandler):
    """
    Routes each inbound activity and owns the end-of-turn save point.

    Messages go to the dialog engine. Invokes go to the handler registered for
    ``activity.name``, and whatever it returns becomes the invoke response body.
    Every other activity type is acknowledged and ignored. State is flushed
    only after routing finished without raising.
    """

    def __init__(
        self,
        scopes: StateScopes,
        dialog_engine: DialogEngine,
        invoke_handlers: Optional[Dict[str, InvokeHandler]] = None,
    ):
        if scopes is None:
            raise TypeError("DialogBot(): scopes cannot be None.")
        if dialog_engine is None:
            raise TypeError("DialogBot(): dialog_engine cannot be None.")
        self.scopes = scopes
        self.dialog_engine = dialog_engine
        self._invoke_handlers: Dict[str, InvokeHandler] = {}

        self.register_invoke_handler(SignInConstants.verify_state_operation_name, self._on_sign_in)
        self.register_invoke_handler(SignInConstants.token_exchange_operation_name, self._on_sign_in)
        for name, handler in (invoke_handlers or {}).items():
            self.register_invoke_handler(name, handler)

    def register_invoke_handler(self, name: str, handler: InvokeHandler) -> None:
        if not name:
            raise ValueError("Invoke handler name cannot be empty.")
        self._invoke_handlers[name] = handler
        log.debug(f"Registered invoke handler for '{name}'.")

    def bind_state(self, turn_context: TurnContext) -> BoundState:
        try:
            return get_bound_state(turn_context)
        except KeyError:
            bound = self.scopes.bind(turn_context)
            set_turn_value(turn_context, TURN_STATE_SCOPES_KEY, bound)
            return bound

    async def on_turn(self, turn_context: TurnContext):
        await super().on_turn(turn_context)

        # Save point: only reached when routing did not raise.
        await self.scopes.flush(turn_context)

    async def on_message_activity(self, turn_context: TurnContext):
        await self.dialog_engine.on_message(turn_context, self.bind_state(turn_context))

    async def on_invoke_activity(self, turn_context: TurnContext) -> Optional[InvokeResponse]:
        name = turn_context.activity.name
        handler = self._invoke_handlers.get(name)
        if handler is None:
            log.info(f"Ignoring invoke activity with unrecognized name '{name}'.")
            return None

        result = await handler(turn_context, self.bind_state(turn_context))
        if isinstance(result, InvokeResponse):
            return result
        if isinstance(result, BaseModel):
            result = result.model_dump(mode='json')
        return InvokeResponse(status=int(HTTPStatus.OK), body=result)

    async def _on_sign_in(self, turn_context: TurnContext, state: BoundState):
        return await self.dialog_engine.on_sign_in(turn_context, state)
