import logging
from datetime import datetime, timezone
from typing import Optional

# Use Pydantic for state management
from pydantic import BaseModel, ConfigDict, Field

# Get logger for state management
log = logging.getLogger("state")

# Property names inside the conversation and user bags
CONVERSATION_DATA_PROPERTY = "ConversationData"
USER_PROFILE_PROPERTY = "UserProfile"


class ConversationData(BaseModel):
    """What the default dialog remembers about a conversation between turns."""
    model_config = ConfigDict(extra='ignore', validate_assignment=True)

    turn_count: int = Field(default=0, ge=0, description="Messages handled in this conversation")
    last_message: Optional[str] = Field(default=None, description="Text of the most recent user message")
    last_activity_at: Optional[datetime] = None

    def record_message(self, text: Optional[str]) -> int:
        self.turn_count += 1
        self.last_message = text
        self.last_activity_at = datetime.now(timezone.utc)
        return self.turn_count


class UserProfile(BaseModel):
    """Per-user data kept across all conversations."""
    model_config = ConfigDict(extra='ignore', validate_assignment=True)

    user_id: Optional[str] = None
    display_name: Optional[str] = None
    signed_in: bool = False
    signed_in_at: Optional[datetime] = None


def load_model(bag: dict, property_name: str, model_cls):
    """Validates a stored property into its model, starting fresh if it is missing or invalid."""
    raw = bag.get(property_name)
    if raw is None:
        return model_cls()
    try:
        return model_cls.model_validate(raw)
    except ValueError as e:
        log.warning(f"Discarding invalid '{property_name}' state: {e}")
        return model_cls()


def store_model(bag: dict, property_name: str, model: BaseModel) -> None:
    bag[property_name] = model.model_dump(mode='json')
