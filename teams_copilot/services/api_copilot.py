"""
Client for the custom copilot completion backend.
"""
import logging
from typing import Any, Dict, List, Optional

from teams_copilot.models.errors import TerminalHttpError
from teams_copilot.models.plan import ChatMessage
from teams_copilot.models.turn_state import UploadedDocument
from teams_copilot.services.api_provider import ApiProvider

logger = logging.getLogger(__name__)

COMPLETION_URL = "/v1/completion"


class CopilotApi(ApiProvider):
    """Copilot backend authenticated with client id and secret headers."""

    def __init__(self, base_url: str, client_id: str, client_secret: str, **kwargs: Any):
        super().__init__(base_url, **kwargs)
        self.client_id = client_id
        self.client_secret = client_secret

    async def retrieve_auth_headers(self) -> Optional[Dict[str, str]]:
        if not self.client_id or not self.client_secret:
            return None
        return {
            "X-API-Client-Id": self.client_id,
            "X-API-Secret": self.client_secret,
            "Accept": "application/json",
        }

    async def complete_chat(
        self,
        messages: List[ChatMessage],
        documents: Optional[List[UploadedDocument]] = None
    ) -> Dict[str, Any]:
        """
        Ask the backend to complete a chat, grounded on the given documents.

        Args:
            messages: Conversation so far, oldest first
            documents: Documents the user uploaded to the conversation

        Returns:
            The backend's JSON response ({"content": ..., "citations": [...]})
        """
        payload = {
            "messages": [message.model_dump(mode="json") for message in messages],
            "documents": [document.model_dump() for document in documents or []],
        }
        try:
            response = await self.post(COMPLETION_URL, json=payload)
        except TerminalHttpError as e:
            logger.error(f"Failed to get the response from Copilot API: {e}")
            raise
        return response.json()
