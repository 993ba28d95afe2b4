"""
Built-in actions of the Teams Copilot Bot.

Registered on the ActionDispatchCoordinator by register_default_actions().
Each handler receives (context, state, parameters) and returns its output or
STOP_COMMAND.
"""
import logging
from typing import Any, Dict, List, Optional

from botbuilder.core import TurnContext
from botbuilder.schema import Activity, ActivityTypes, Entity
from botframework.connector import Channels
from pydantic import BaseModel

from teams_copilot.config.settings import BotSettings
from teams_copilot.models.errors import TerminalHttpError
from teams_copilot.models.plan import (
    SAY_COMMAND_ACTION,
    STOP_COMMAND,
    UNKNOWN_ACTION,
    ChatMessage,
    Citation,
    PredictedSayCommand,
)
from teams_copilot.models.turn_state import TurnState, UploadedDocument
from teams_copilot.services.action_dispatch import SEMANTIC_ACTION, ActionDispatchCoordinator
from teams_copilot.services.api_copilot import CopilotApi
from teams_copilot.services.planner import Planner, status_message
from teams_copilot.services.retry_policy import call_with_rate_limit_policy
from teams_copilot.utils.chat_history import add_assistant_message, get_chat_history
from teams_copilot.utils.helpers import extract_snippet, format_citations_response
from teams_copilot.utils.telemetry import EventNames, TelemetryHelper

logger = logging.getLogger(__name__)

DEBUG_ON = "debugOn"
DEBUG_OFF = "debugOff"
CHAT_WITH_DOCUMENT = "chatWithDocument"
FORGET_DOCUMENTS = "forgetDocuments"

UNKNOWN_ACTION_MESSAGE = "I'm sorry, I could not understand your intent. Please try again or make your command shorter."
RATE_LIMITED_MESSAGE = "The service is receiving too many requests right now. Please try again in a moment."
COPILOT_FAILURE_MESSAGE = "Failed to get the response from Copilot API"
NO_DOCUMENTS_MESSAGE = "Please upload a document before asking questions about it."
CITATION_SNIPPET_LENGTH = 500

TEAMS_FILE_DOWNLOAD_INFO = "application/vnd.microsoft.teams.file.download.info"
ALLOWED_FILE_TYPES = ("pdf", "md", "txt", "html", "yaml", "json", "csv", "tsv", "rtf", "log")
UNSUPPORTED_FILE_MESSAGE = (
    "You uploaded a document with name : '{name}'. I can only process text or pdf file types for now. "
    "Please upload the correct file types documents."
)


class AIGeneratedMessageEntity(Entity):
    """schema.org Message entity that marks a reply as AI generated."""

    _attribute_map = {
        "type": {"key": "type", "type": "str"},
        "schema_type": {"key": "@type", "type": "str"},
        "schema_context": {"key": "@context", "type": "str"},
        "id": {"key": "@id", "type": "str"},
        "additional_type": {"key": "additionalType", "type": "[str]"},
        "citation": {"key": "citation", "type": "[object]"},
    }

    def __init__(self, *, citation: Optional[List[Dict[str, Any]]] = None, **kwargs):
        super().__init__(type="https://schema.org/Message", **kwargs)
        self.schema_type = "Message"
        self.schema_context = "https://schema.org"
        self.id = ""
        self.additional_type = ["AIGeneratedContent"]
        self.citation = citation


def build_client_citations(citations: List[Citation]) -> List[Dict[str, Any]]:
    return [
        {
            "@type": "Claim",
            "position": str(index + 1),
            "appearance": {
                "@type": "DigitalDocument",
                "name": citation.title,
                "abstract": extract_snippet(citation.content, CITATION_SNIPPET_LENGTH),
            },
        }
        for index, citation in enumerate(citations)
    ]


async def send_formatted_response(context: TurnContext, message: ChatMessage) -> None:
    """
    Send an AI response to the user.

    On Teams, line breaks become <br>, the feedback loop is enabled and the
    message is tagged as AI generated (with citations when present).
    """
    content = message.content
    is_teams = context.activity.channel_id == Channels.ms_teams
    if is_teams:
        content = "<br>".join(content.split("\n"))

    citations = build_client_citations(message.citations) if message.citations else None
    if citations:
        content = format_citations_response(content)

    await context.send_activity(Activity(
        type=ActivityTypes.message,
        text=content,
        channel_data={"feedbackLoopEnabled": True} if is_teams else None,
        entities=[AIGeneratedMessageEntity(citation=citations)],
    ))


async def record_uploaded_documents(context: TurnContext, state: TurnState) -> List[UploadedDocument]:
    """
    Store the Teams file attachments of the incoming message as the conversation's documents.

    Files of unsupported types are reported to the user and skipped. A message
    with supported files replaces the previously uploaded documents.

    Returns:
        The documents recorded from this message (empty when it carried none)
    """
    attachments = [
        attachment for attachment in context.activity.attachments or []
        if attachment.content_type == TEAMS_FILE_DOWNLOAD_INFO
    ]
    if not attachments:
        return []

    documents: List[UploadedDocument] = []
    for attachment in attachments:
        content = attachment.content or {}
        file_type = (content.get("fileType") or "").lower()
        if file_type not in ALLOWED_FILE_TYPES:
            logger.warning(f"Ignoring uploaded file '{attachment.name}' of type '{file_type}'")
            await context.send_activity(UNSUPPORTED_FILE_MESSAGE.format(name=attachment.name))
            continue
        documents.append(UploadedDocument(
            file_name=attachment.name or "",
            url=content.get("downloadUrl", ""),
            type="pdf" if file_type == "pdf" else "text/html"
        ))

    if documents:
        state.conversation.uploaded_documents = documents
        names = ", ".join(document.file_name for document in documents)
        for document in documents:
            logger.info(f"Uploaded document: {document.file_name} of type {document.type}")
        await context.send_activity(
            f"You have uploaded files: '{names}'" if len(documents) > 1 else f"You have uploaded file: '{names}'"
        )
    return documents


class SemanticInfoParameters(BaseModel):
    entity: str = ""


class ChatWithDocumentParameters(BaseModel):
    question: str = ""


class BuiltInActions:
    """Handlers for the actions every deployment registers."""

    def __init__(
        self,
        settings: BotSettings,
        planner: Planner,
        copilot: Optional[CopilotApi] = None,
        telemetry: Optional[TelemetryHelper] = None
    ):
        self.settings = settings
        self.planner = planner
        self.copilot = copilot
        self.telemetry = telemetry or TelemetryHelper()

    async def say(self, context: TurnContext, state: TurnState, command: PredictedSayCommand) -> str:
        response = command.response
        if not response.content:
            return ""
        await send_formatted_response(context, response)
        add_assistant_message(state, response.content, response.citations)
        return ""

    async def unknown(self, context: TurnContext, state: TurnState, parameters: Dict[str, Any]) -> str:
        await context.send_activity(UNKNOWN_ACTION_MESSAGE)
        return STOP_COMMAND

    async def debug_on(self, context: TurnContext, state: TurnState, parameters: Dict[str, Any]) -> str:
        self.telemetry.track_event(EventNames.DEBUG_ON, _user_properties(context))
        state.conversation.debug = True
        await context.send_activity("Debug is on")
        return STOP_COMMAND

    async def debug_off(self, context: TurnContext, state: TurnState, parameters: Dict[str, Any]) -> str:
        self.telemetry.track_event(EventNames.DEBUG_OFF, _user_properties(context))
        state.conversation.debug = False
        await context.send_activity("Debug is off")
        return STOP_COMMAND

    async def get_semantic_info(self, context: TurnContext, state: TurnState, parameters: SemanticInfoParameters) -> str:
        """Answer from the conversation prompt (chatGPT by default)."""
        template = state.conversation.prompt_folder or self.settings.default_prompt_name
        response = await self.planner.complete_prompt(context, state, template)
        if not response.succeeded or response.message is None:
            logger.warning(f"Semantic completion failed ({response.status.value}): {response.error}")
            await context.send_activity(status_message(response.status))
            return STOP_COMMAND

        await send_formatted_response(context, response.message)
        add_assistant_message(state, response.message.content)
        return response.message.content

    async def chat_with_document(
        self,
        context: TurnContext,
        state: TurnState,
        parameters: ChatWithDocumentParameters
    ) -> str:
        """Answer from the uploaded documents through the copilot backend."""
        documents = state.conversation.uploaded_documents
        if self.copilot is None or not documents:
            await context.send_activity(NO_DOCUMENTS_MESSAGE)
            return STOP_COMMAND

        history = get_chat_history(state, self.settings.max_turns_to_remember)
        try:
            result = await call_with_rate_limit_policy(self.copilot.complete_chat, history, documents)
        except TerminalHttpError as e:
            await context.send_activity(RATE_LIMITED_MESSAGE if e.is_rate_limited else COPILOT_FAILURE_MESSAGE)
            return STOP_COMMAND

        answer = ChatMessage(
            role="assistant",
            content=result.get("content", ""),
            citations=[Citation(**c) for c in result.get("citations", [])]
        )
        await send_formatted_response(context, answer)
        add_assistant_message(state, answer.content, answer.citations)
        return answer.content

    async def forget_documents(self, context: TurnContext, state: TurnState, parameters: Dict[str, Any]) -> str:
        documents = state.conversation.uploaded_documents
        if not documents:
            await context.send_activity("There is nothing to forget.")
            return STOP_COMMAND

        names = ", ".join(document.file_name for document in documents)
        state.conversation.uploaded_documents = []
        logger.info(f"Uploaded documents have been forgotten: {names}.")
        await context.send_activity(f"The uploaded documents have been forgotten: {names}.")
        return STOP_COMMAND


def _user_properties(context: TurnContext) -> Dict[str, Any]:
    user = context.activity.from_property
    return {
        "user_id": user.id if user else "",
        "user_name": user.name if user else "",
        "conversation_id": context.activity.conversation.id if context.activity.conversation else "",
    }


def register_default_actions(coordinator: ActionDispatchCoordinator, actions: BuiltInActions) -> None:
    """Register the built-in actions on a coordinator."""
    coordinator.action(SAY_COMMAND_ACTION, actions.say)
    coordinator.action(UNKNOWN_ACTION, actions.unknown)
    coordinator.action(DEBUG_ON, actions.debug_on, description="Turn on debug mode for the conversation")
    coordinator.action(DEBUG_OFF, actions.debug_off, description="Turn off debug mode for the conversation")
    coordinator.action(
        SEMANTIC_ACTION,
        actions.get_semantic_info,
        parameters_model=SemanticInfoParameters,
        description="Answer a general question or chat with the user"
    )
    coordinator.action(
        CHAT_WITH_DOCUMENT,
        actions.chat_with_document,
        parameters_model=ChatWithDocumentParameters,
        description="Answer a question about the documents the user uploaded"
    )
    coordinator.action(
        FORGET_DOCUMENTS,
        actions.forget_documents,
        description="Forget the documents the user uploaded"
    )
