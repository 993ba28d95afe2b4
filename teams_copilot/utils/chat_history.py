"""
Chat history kept in the conversation state.
"""
import json
import logging
from typing import List, Optional

from teams_copilot.models.plan import ChatMessage, ChatRole, Citation
from teams_copilot.models.turn_state import TurnState

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS_TO_REMEMBER = 10


def get_chat_history(state: TurnState, max_turns_to_remember: int = DEFAULT_MAX_TURNS_TO_REMEMBER) -> List[ChatMessage]:
    """
    Return the most recent chat messages of the conversation.

    Args:
        state: Current turn state
        max_turns_to_remember: Number of messages to keep (oldest are dropped)

    Returns:
        Messages ordered oldest first
    """
    history = [
        message for message in state.conversation.history
        if message.role in (ChatRole.USER, ChatRole.ASSISTANT, ChatRole.SYSTEM)
    ]
    items_to_delete = len(history) - max_turns_to_remember
    if items_to_delete > 0:
        history = history[items_to_delete:]
    return history


def add_user_message(state: TurnState, content: str) -> None:
    state.conversation.history.append(ChatMessage(role=ChatRole.USER, content=content))


def add_assistant_message(state: TurnState, content: str, citations: Optional[List[Citation]] = None) -> None:
    state.conversation.history.append(
        ChatMessage(role=ChatRole.ASSISTANT, content=content, citations=citations or [])
    )


def trim_unanswered_turn(state: TurnState) -> bool:
    """
    Drop a user message left at the tail of the history without an assistant reply.

    Happens when a turn failed or stopped before answering; keeping the
    message would make the next prompt answer two questions.

    Returns:
        True if a message was removed
    """
    history = state.conversation.history
    if not history or history[-1].role != ChatRole.USER:
        return False

    dropped = history.pop()
    state.temp.input = json.dumps([message.model_dump(mode="json") for message in history])
    logger.debug(f"Dropped unanswered user turn from chat history: '{dropped.content[:50]}'")
    return True


def clear_chat_history(state: TurnState) -> None:
    state.conversation.history = []
