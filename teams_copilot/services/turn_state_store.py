"""
Loads and saves turn state through a botbuilder Storage.

Conversation state is keyed by channel and conversation id, user state by
channel and user id. Temp state is created fresh for every turn.
"""
import logging
from typing import Optional, Tuple

from botbuilder.core import MemoryStorage, Storage, TurnContext

from teams_copilot.models.turn_state import ConversationData, TurnState, UserData

logger = logging.getLogger(__name__)


class TurnStateStore:
    """Persists the conversation and user scopes of TurnState."""

    def __init__(self, storage: Optional[Storage] = None):
        self.storage = storage or MemoryStorage()

    @staticmethod
    def state_keys(context: TurnContext) -> Tuple[str, str]:
        activity = context.activity
        channel_id = activity.channel_id
        conversation_key = f"{channel_id}/conversations/{activity.conversation.id}"
        user_id = activity.from_property.id if activity.from_property else "anonymous"
        user_key = f"{channel_id}/users/{user_id}"
        return conversation_key, user_key

    async def load(self, context: TurnContext) -> TurnState:
        conversation_key, user_key = self.state_keys(context)
        items = await self.storage.read([conversation_key, user_key])

        conversation = ConversationData.model_validate(items.get(conversation_key) or {})
        user = UserData.model_validate(items.get(user_key) or {})
        return TurnState(conversation=conversation, user=user)

    async def save(self, context: TurnContext, state: TurnState) -> None:
        conversation_key, user_key = self.state_keys(context)
        await self.storage.write({
            conversation_key: state.conversation.model_dump(mode="json"),
            user_key: state.user.model_dump(mode="json"),
        })
        logger.debug(f"Saved turn state for {conversation_key}")

    async def delete(self, context: TurnContext) -> None:
        conversation_key, user_key = self.state_keys(context)
        await self.storage.delete([conversation_key, user_key])
