"""Teams Copilot Bot models package."""
from .errors import (
    ActionParameterError,
    ApiProviderError,
    BlobNotFoundError,
    HttpFailureKind,
    LeaseContentionError,
    LeaseError,
    MissingAuthHeadersError,
    StoreUnavailableError,
    TerminalHttpError,
)
from .keywords import BotMessageKeywords, match_keyword
from .plan import (
    STOP_COMMAND,
    ChatMessage,
    ChatRole,
    Citation,
    Plan,
    PlannerResponse,
    PlannerStatus,
    PredictedDoCommand,
    PredictedSayCommand,
)
from .turn_state import ConversationData, TempState, TurnState, UploadedDocument, UserData, UserProfile

__all__ = [
    "ActionParameterError", "ApiProviderError", "BlobNotFoundError", "HttpFailureKind",
    "LeaseContentionError", "LeaseError", "MissingAuthHeadersError", "StoreUnavailableError",
    "TerminalHttpError", "BotMessageKeywords", "match_keyword", "STOP_COMMAND", "ChatMessage",
    "ChatRole", "Citation", "Plan", "PlannerResponse", "PlannerStatus", "PredictedDoCommand",
    "PredictedSayCommand", "ConversationData", "TempState", "TurnState", "UploadedDocument",
    "UserData", "UserProfile",
]
