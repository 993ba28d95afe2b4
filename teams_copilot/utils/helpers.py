"""
Helpers shared by the turn pipeline and the action coordinator.
"""
import re
from typing import List, Optional
from urllib.parse import quote

from botbuilder.schema import Activity

from teams_copilot.models.plan import PredictedCommand

MAX_BLOB_KEY_LENGTH = 1024
MAX_BLOB_KEY_SEGMENTS = 255


def get_conversation_key(activity: Activity) -> str:
    """
    Build the key that identifies a conversation's serialized execution slot.

    Format: {channel_id}/{recipient_id}/conversations/{conversation_id}
    """
    return f"{activity.channel_id}/{activity.recipient.id}/conversations/{activity.conversation.id}"


def sanitize_blob_key(key: str) -> str:
    """
    Make `key` a valid Azure Blob Storage blob name.

    Empty path segments are dropped and segments past the 255th are joined
    without a separator, so the name has at most 254 slashes. The result is
    URI-component encoded and truncated to 1024 characters.

    Args:
        key: Blob key to sanitize

    Returns:
        Sanitized blob name

    Raises:
        ValueError: If the key is empty
    """
    if not key:
        raise ValueError("Please provide a non-empty key")

    parts = key.split("/")
    sanitized = parts[0]
    for index, part in enumerate(parts[1:], start=1):
        if part:
            separator = "/" if index < MAX_BLOB_KEY_SEGMENTS else ""
            sanitized = f"{sanitized}{separator}{part}"

    # Same reserved set as JavaScript's encodeURIComponent
    return quote(sanitized, safe="!*'()")[:MAX_BLOB_KEY_LENGTH]


def swap_do_and_say(commands: List[PredictedCommand]) -> List[PredictedCommand]:
    """
    Move SAY commands in front of the DO command they directly follow.

    Single left-to-right pass over the list, swapping in place every DO that
    is immediately followed by a SAY. This is not a sort: a DO followed by
    several SAY commands moves past all of them.
    """
    for index in range(len(commands) - 1):
        if commands[index].type == "DO" and commands[index + 1].type == "SAY":
            commands[index], commands[index + 1] = commands[index + 1], commands[index]
    return commands


def extract_snippet(text: str, max_length: int) -> str:
    """Trim text to max_length characters, ending with an ellipsis when cut."""
    if len(text) <= max_length:
        return text
    return text[:max_length].rstrip() + "..."


def remove_mention_text(text: Optional[str]) -> str:
    """
    Remove bot mentions from message text.

    Teams includes mentions as <at>BotName</at> in the text.
    """
    if not text:
        return ""
    cleaned = re.sub(r'<at>.*?</at>', '', text, flags=re.IGNORECASE)
    return ' '.join(cleaned.split())


def format_citations_response(text: str) -> str:
    """Number the sources in a response: [doc1] becomes [1]."""
    return re.sub(r'\[doc(\d+)\]', r'[\1]', text)
