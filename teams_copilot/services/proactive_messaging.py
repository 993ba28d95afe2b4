"""
Proactive messaging for the Teams bot.

Sends messages to conversations without an incoming request, using the
conversation references recorded by the turn pipeline.
"""
import logging
import uuid
from typing import Optional

from botbuilder.core import BotFrameworkAdapter, MessageFactory, TurnContext
from botbuilder.schema import ConversationReference
from botframework.connector.auth import MicrosoftAppCredentials
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from teams_copilot.services.conversation_references import ConversationReferenceStore

logger = logging.getLogger(__name__)

PROACTIVE_HELLO = "Proactive hello."


class ProactiveMessenger:
    """Sends text to stored conversations through the bot adapter."""

    def __init__(
        self,
        adapter: BotFrameworkAdapter,
        app_id: str,
        conversation_references: ConversationReferenceStore
    ):
        self.adapter = adapter
        self.app_id = app_id
        self.conversation_references = conversation_references

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(Exception),
        reraise=True
    )
    async def send_text(
        self,
        reference: ConversationReference,
        text: str,
        correlation_id: Optional[str] = None
    ) -> None:
        """
        Send a text message to one conversation.

        Args:
            reference: Conversation reference recorded from an earlier activity
            text: Message text
            correlation_id: Optional correlation ID for tracking
        """
        correlation_id = correlation_id or str(uuid.uuid4())
        conversation_id = reference.conversation.id if reference.conversation else "unknown"
        logger.info(f"[{correlation_id}] Sending proactive message to conversation {conversation_id}")

        if reference.service_url:
            MicrosoftAppCredentials.trust_service_url(reference.service_url)

        async def send_callback(turn_context: TurnContext):
            await turn_context.send_activity(MessageFactory.text(text))

        await self.adapter.continue_conversation(reference, send_callback, self.app_id)

    async def notify_all(self, text: str = PROACTIVE_HELLO) -> int:
        """
        Message every stored conversation.

        Returns:
            Number of conversations that received the message
        """
        delivered = 0
        for reference in self.conversation_references.all():
            try:
                await self.send_text(reference, text)
                delivered += 1
            except Exception as e:
                conversation_id = reference.conversation.id if reference.conversation else "unknown"
                logger.error(f"Failed to notify conversation {conversation_id}: {e}", exc_info=True)
        logger.info(f"Proactive message delivered to {delivered} conversation(s)")
        return delivered
