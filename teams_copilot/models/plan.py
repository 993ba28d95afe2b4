"""
Plan models predicted by the planner.

A plan is an ordered list of commands. SAY commands carry text for the user,
DO commands name a registered action and its parameters. A DO command may
carry sibling DO commands that run concurrently with it.
"""
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

# Returned by actions and plan handlers to stop executing the current plan
STOP_COMMAND = "STOP"

SAY_COMMAND_ACTION = "___SAY___"
UNKNOWN_ACTION = "___UnknownAction___"


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Citation(BaseModel):
    title: str = ""
    url: Optional[str] = None
    content: str = ""


class ChatMessage(BaseModel):
    """One message of the conversation history."""
    role: ChatRole
    content: str = ""
    citations: List[Citation] = Field(default_factory=list)


class PredictedSayCommand(BaseModel):
    type: Literal["SAY"] = "SAY"
    response: ChatMessage = Field(default_factory=lambda: ChatMessage(role=ChatRole.ASSISTANT))


class PredictedDoCommand(BaseModel):
    type: Literal["DO"] = "DO"
    action: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    parallel_actions: List["PredictedDoCommand"] = Field(default_factory=list)


PredictedCommand = Annotated[
    Union[PredictedDoCommand, PredictedSayCommand],
    Field(discriminator="type")
]


class Plan(BaseModel):
    type: Literal["plan"] = "plan"
    commands: List[PredictedCommand] = Field(default_factory=list)

    @classmethod
    def say(cls, content: str) -> "Plan":
        """Plan with a single SAY command."""
        return cls(commands=[
            PredictedSayCommand(response=ChatMessage(role=ChatRole.ASSISTANT, content=content))
        ])


class PlannerStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    RATE_LIMITED = "rate_limited"
    INVALID_RESPONSE = "invalid_response"
    TOO_LONG = "too_long"


class PlannerResponse(BaseModel):
    """Outcome of a prompt completion."""
    status: PlannerStatus
    message: Optional[ChatMessage] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == PlannerStatus.SUCCESS


PredictedDoCommand.model_rebuild()
