"""
Slash command handlers.

Keyword messages bypass the planner and the conversation lease; each handler
answers directly from the turn state.
"""
import logging
from typing import Awaitable, Callable, Dict

from botbuilder.core import TurnContext

from teams_copilot.config.settings import BotSettings
from teams_copilot.models.keywords import BotMessageKeywords
from teams_copilot.models.turn_state import TurnState
from teams_copilot.utils.chat_history import get_chat_history

logger = logging.getLogger(__name__)

QUESTION_DOCUMENT_PROMPT = "questionDocument"

WELCOME_MESSAGE = (
    "Hi, I'm your Teams Copilot. Ask me anything, or upload a document and ask questions about it.\n\n"
    "Commands: /chatGPT, /chatDocument, /document, /history, /forget, /reset, /debug, /me"
)

KeywordHandler = Callable[[TurnContext, TurnState], Awaitable[None]]


class KeywordCommands:
    """Maps BotMessageKeywords to their handlers."""

    def __init__(
        self,
        settings: BotSettings,
        forget_documents: Callable[[TurnContext, TurnState, Dict], Awaitable[str]]
    ):
        self.settings = settings
        self.forget_documents = forget_documents
        self.handlers: Dict[BotMessageKeywords, KeywordHandler] = {
            BotMessageKeywords.CHAT_DOCUMENT: self.chat_document,
            BotMessageKeywords.CHAT_GPT: self.chat_gpt,
            BotMessageKeywords.DOCUMENT: self.document,
            BotMessageKeywords.DEBUG: self.debug,
            BotMessageKeywords.FORGET: self.forget,
            BotMessageKeywords.HISTORY: self.history,
            BotMessageKeywords.RESET: self.reset,
            BotMessageKeywords.WELCOME: self.welcome,
            BotMessageKeywords.ME: self.me,
        }

    async def handle(self, keyword: BotMessageKeywords, context: TurnContext, state: TurnState) -> None:
        logger.info(f"Processing keyword command: {keyword.value}")
        await self.handlers[keyword](context, state)

    async def chat_document(self, context: TurnContext, state: TurnState) -> None:
        state.conversation.prompt_folder = QUESTION_DOCUMENT_PROMPT
        await context.send_activity("AI Copilot Skills are set to QuestionDocument")

    async def chat_gpt(self, context: TurnContext, state: TurnState) -> None:
        state.conversation.prompt_folder = "chatGPT"
        await context.send_activity("AI Copilot Skills are set to ChatGPT")

    async def document(self, context: TurnContext, state: TurnState) -> None:
        documents = state.conversation.uploaded_documents
        if documents:
            names = ", ".join(document.file_name for document in documents)
            await context.send_activity(f"The uploaded documents are: {names}")
        else:
            await context.send_activity("No documents have been uploaded.")

    async def debug(self, context: TurnContext, state: TurnState) -> None:
        await context.send_activity("debug mode is on" if state.conversation.debug else "debug mode is off")

    async def forget(self, context: TurnContext, state: TurnState) -> None:
        await self.forget_documents(context, state, {})

    async def history(self, context: TurnContext, state: TurnState) -> None:
        chat_history = get_chat_history(state, self.settings.max_turns_to_remember)
        if not chat_history:
            await context.send_activity("There is no chat history.")
            return
        lines = [f"**{message.role.value}**: {message.content}" for message in chat_history]
        await context.send_activity("\n\n".join(lines))

    async def reset(self, context: TurnContext, state: TurnState) -> None:
        state.delete_conversation_state()
        state.conversation.prompt_folder = self.settings.default_prompt_name
        await context.send_activity("A new chat session has started.")

    async def welcome(self, context: TurnContext, state: TurnState) -> None:
        state.user.greeted = True
        await context.send_activity(WELCOME_MESSAGE)
        logger.info(f"Returning the welcome message for {state.user.user.name if state.user.user else 'unknown user'}.")

    async def me(self, context: TurnContext, state: TurnState) -> None:
        user = context.activity.from_property
        if user is None:
            await context.send_activity("I don't know who you are.")
            return
        await context.send_activity(f"You are {user.name or 'unknown'} (id: {user.id}).")
