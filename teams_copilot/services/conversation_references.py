"""
Registry of conversation references used for proactive messages.

References are kept in memory (keyed by conversation id) for the notify
endpoint and copied into the conversation state. restore() re-registers the
references a loaded conversation state carries, so a restarted process can
notify conversations again once they send their next activity.
"""
import logging
from typing import Dict, List, Optional

from botbuilder.core import TurnContext
from botbuilder.schema import Activity, ConversationReference

from teams_copilot.models.turn_state import TurnState

logger = logging.getLogger(__name__)


class ConversationReferenceStore:
    """In-memory conversation reference registry owned by BotServices."""

    def __init__(self):
        self._references: Dict[str, ConversationReference] = {}

    def add(self, activity: Activity, state: Optional[TurnState] = None) -> ConversationReference:
        """
        Record the reference of the conversation the activity belongs to.

        Args:
            activity: Incoming activity
            state: Turn state whose conversation cache also receives the reference

        Returns:
            The recorded reference
        """
        reference = TurnContext.get_conversation_reference(activity)
        conversation_id = reference.conversation.id if reference.conversation else activity.conversation.id
        self._references[conversation_id] = reference

        if state is not None:
            user_id = reference.user.id if reference.user else conversation_id
            state.conversation.conversation_references[user_id] = reference.serialize()

        logger.debug(f"Stored conversation reference for {conversation_id}")
        return reference

    def restore(self, state: TurnState) -> int:
        """
        Register the references cached in a loaded conversation state.

        Returns:
            Number of references registered
        """
        restored = 0
        for user_id, data in state.conversation.conversation_references.items():
            reference = ConversationReference.deserialize(data)
            if reference.conversation is None or not reference.conversation.id:
                logger.warning(f"Skipping cached conversation reference without conversation id for {user_id}")
                continue
            self._references.setdefault(reference.conversation.id, reference)
            restored += 1
        return restored

    def get(self, conversation_id: str) -> Optional[ConversationReference]:
        return self._references.get(conversation_id)

    def all(self) -> List[ConversationReference]:
        return list(self._references.values())

    def __len__(self) -> int:
        return len(self._references)
