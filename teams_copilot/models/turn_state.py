"""
Turn state for the Teams bot.

Conversation and user state are persisted between turns (see TurnStateStore).
Temp state belongs to a single in-flight turn and is never persisted or shared.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .plan import ChatMessage, Plan


class UploadedDocument(BaseModel):
    file_name: str
    url: str
    type: str = "text/html"


class UserProfile(BaseModel):
    id: str = ""
    name: str = ""
    aad_object_id: Optional[str] = None


class ConversationData(BaseModel):
    """Conversation-scoped state persisted across turns."""
    history: List[ChatMessage] = Field(default_factory=list)
    debug: bool = False
    prompt_folder: Optional[str] = None
    uploaded_documents: List[UploadedDocument] = Field(default_factory=list)
    conversation_references: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class UserData(BaseModel):
    """User-scoped state persisted across turns."""
    greeted: bool = False
    user: Optional[UserProfile] = None


@dataclass
class TempState:
    """State owned by the current turn only."""
    input: str = ""
    lease_id: Optional[str] = None
    action_plan: Optional[Plan] = None
    # Insertion ordered: action name -> output, in execution order
    action_outputs: Dict[str, Any] = field(default_factory=dict)
    start_time: Optional[float] = None
    typing_timer: Optional[asyncio.Task] = None


class TurnState:
    """Conversation, user and temp state for one turn."""

    def __init__(
        self,
        conversation: Optional[ConversationData] = None,
        user: Optional[UserData] = None,
        temp: Optional[TempState] = None
    ):
        self.conversation = conversation or ConversationData()
        self.user = user or UserData()
        self.temp = temp or TempState()

    def delete_conversation_state(self) -> None:
        self.conversation = ConversationData()

    def delete_user_state(self) -> None:
        self.user = UserData()
