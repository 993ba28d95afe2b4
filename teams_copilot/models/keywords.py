"""Slash commands handled directly by the bot, outside the planner and the lease protocol."""
from enum import Enum
from typing import Optional


class BotMessageKeywords(str, Enum):
    CHAT_DOCUMENT = "/chatDocument"
    CHAT_GPT = "/chatGPT"
    DOCUMENT = "/document"
    DEBUG = "/debug"
    FORGET = "/forget"
    HISTORY = "/history"
    RESET = "/reset"
    WELCOME = "/welcome"
    ME = "/me"


def match_keyword(text: Optional[str]) -> Optional[BotMessageKeywords]:
    """Return the keyword the message text starts with, if any."""
    if not text:
        return None
    for keyword in BotMessageKeywords:
        if text.startswith(keyword.value):
            return keyword
    return None
