"""
Bot configuration loaded from environment variables.
Set in .env.local or environment variables.

Settings:
=========
Bot Framework:
- BOT_ID / BOT_PASSWORD / BOT_TENANT_ID: Microsoft App registration
- ENVIRONMENT: "testtool" runs without conversation leases (local Teams test tool)

Conversation leases (Azure Blob Storage):
- AZURE_STORAGE_CONNECTION_STRING: connection string for the lease container
- AZURE_STORAGE_ACCOUNT_URL: account URL, used with DefaultAzureCredential when
  no connection string is set
- AZURE_STORAGE_CONTAINER_NAME: container holding one blob per conversation

Copilot backend:
- COPILOT_API_BASE_URL / COPILOT_API_CLIENT_ID / COPILOT_API_CLIENT_SECRET

Planner (OpenAI or Azure OpenAI):
- OPENAI_TYPE: "OpenAI" or "AzureOpenAI"
- OPENAI_KEY / OPENAI_ENDPOINT / OPENAI_MODEL / OPENAI_API_VERSION

Behaviour:
- DEFAULT_PROMPT_NAME: prompt used by the semantic action (default: chatGPT)
- MAX_TURNS_TO_REMEMBER: chat history window (default: 10)
- ROUTE_UNKNOWN_ACTION_TO_SEMANTIC: send plans without a DO command to the
  semantic action (default: false)
- LOG_LEVEL: root logging level (default: INFO)
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv('.env.local')

TESTTOOL_ENVIRONMENT = "testtool"

# Leases are a crash-recovery fallback; healthy turns release well before expiry
LEASE_DURATION_SECONDS = 60


def _flag(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).lower() == 'true'


@dataclass
class BotSettings:
    """Process-wide bot configuration, passed explicitly to the components that need it."""

    bot_id: str = ""
    bot_password: str = ""
    tenant_id: Optional[str] = None
    environment: str = "local"

    storage_connection_string: str = ""
    storage_account_url: str = ""
    storage_container_name: str = "conversation-leases"

    copilot_api_base_url: str = ""
    copilot_api_client_id: str = ""
    copilot_api_client_secret: str = ""

    openai_type: str = "OpenAI"
    openai_key: str = ""
    openai_endpoint: str = ""
    openai_model: str = "gpt-4o"
    openai_api_version: str = "2024-06-01"

    default_prompt_name: str = "chatGPT"
    max_turns_to_remember: int = 10
    route_unknown_action_to_semantic: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "BotSettings":
        """Build settings from the current environment."""
        return cls(
            bot_id=os.getenv('BOT_ID', ''),
            bot_password=os.getenv('BOT_PASSWORD', ''),
            tenant_id=os.getenv('BOT_TENANT_ID') or None,
            environment=os.getenv('ENVIRONMENT', 'local'),
            storage_connection_string=os.getenv('AZURE_STORAGE_CONNECTION_STRING', ''),
            storage_account_url=os.getenv('AZURE_STORAGE_ACCOUNT_URL', ''),
            storage_container_name=os.getenv('AZURE_STORAGE_CONTAINER_NAME', 'conversation-leases'),
            copilot_api_base_url=os.getenv('COPILOT_API_BASE_URL', ''),
            copilot_api_client_id=os.getenv('COPILOT_API_CLIENT_ID', ''),
            copilot_api_client_secret=os.getenv('COPILOT_API_CLIENT_SECRET', ''),
            openai_type=os.getenv('OPENAI_TYPE', 'OpenAI'),
            openai_key=os.getenv('OPENAI_KEY', ''),
            openai_endpoint=os.getenv('OPENAI_ENDPOINT', ''),
            openai_model=os.getenv('OPENAI_MODEL', 'gpt-4o'),
            openai_api_version=os.getenv('OPENAI_API_VERSION', '2024-06-01'),
            default_prompt_name=os.getenv('DEFAULT_PROMPT_NAME', 'chatGPT'),
            max_turns_to_remember=int(os.getenv('MAX_TURNS_TO_REMEMBER', '10')),
            route_unknown_action_to_semantic=_flag('ROUTE_UNKNOWN_ACTION_TO_SEMANTIC'),
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        )

    @property
    def is_testtool(self) -> bool:
        return self.environment == TESTTOOL_ENVIRONMENT

    @property
    def lease_storage_configured(self) -> bool:
        """Leases are only managed when blob storage is configured outside the test tool."""
        if self.is_testtool:
            return False
        return bool(self.storage_connection_string or self.storage_account_url)
