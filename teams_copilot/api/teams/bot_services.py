"""
BotServices: the bot's long-lived collaborators, built once at startup.

Replaces process-wide singletons: the FastAPI lifespan builds one instance,
stores it on app.state and every component receives what it needs through
its constructor.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from botbuilder.core import BotFrameworkAdapter, BotFrameworkAdapterSettings, Storage
from botframework.connector.auth import MicrosoftAppCredentials

from teams_copilot.api.teams.actions import BuiltInActions, register_default_actions
from teams_copilot.api.teams.bot import CopilotBot
from teams_copilot.api.teams.commands import KeywordCommands
from teams_copilot.config.settings import BotSettings
from teams_copilot.services.action_dispatch import ActionDispatchCoordinator
from teams_copilot.services.api_copilot import CopilotApi
from teams_copilot.services.conversation_references import ConversationReferenceStore
from teams_copilot.services.lease_manager import ConversationLeaseManager
from teams_copilot.services.lease_store import AzureBlobLeaseStore, LeaseStore
from teams_copilot.services.planner import OpenAIPlanner, Planner, create_openai_client
from teams_copilot.services.proactive_messaging import ProactiveMessenger
from teams_copilot.services.turn_pipeline import TurnPipeline
from teams_copilot.services.turn_state_store import TurnStateStore
from teams_copilot.utils.telemetry import TelemetryHelper
from teams_copilot.utils.typing_indicator import TypingIndicator

logger = logging.getLogger(__name__)


@dataclass
class BotServices:
    settings: BotSettings
    adapter: BotFrameworkAdapter
    bot: CopilotBot
    conversation_references: ConversationReferenceStore
    messenger: ProactiveMessenger
    lease_manager: Optional[ConversationLeaseManager] = None
    copilot: Optional[CopilotApi] = None

    async def close(self) -> None:
        if self.lease_manager is not None:
            await self.lease_manager.close()
        if self.copilot is not None:
            await self.copilot.close()


def create_adapter(settings: BotSettings) -> BotFrameworkAdapter:
    MicrosoftAppCredentials.microsoft_app_id = settings.bot_id
    MicrosoftAppCredentials.microsoft_app_password = settings.bot_password

    adapter_settings = BotFrameworkAdapterSettings(
        app_id=settings.bot_id,
        app_password=settings.bot_password,
        channel_auth_tenant=settings.tenant_id
    )
    return BotFrameworkAdapter(adapter_settings)


def create_lease_manager(settings: BotSettings) -> Optional[ConversationLeaseManager]:
    if not settings.lease_storage_configured:
        logger.info("Conversation leases disabled (test tool or storage not configured)")
        return None
    store = AzureBlobLeaseStore(
        container_name=settings.storage_container_name,
        connection_string=settings.storage_connection_string or None,
        account_url=settings.storage_account_url or None
    )
    return ConversationLeaseManager(store)


def build_bot_services(
    settings: BotSettings,
    storage: Optional[Storage] = None,
    lease_store: Optional[LeaseStore] = None,
    planner: Optional[Planner] = None,
    adapter: Optional[BotFrameworkAdapter] = None,
    telemetry: Optional[TelemetryHelper] = None
) -> BotServices:
    """
    Wire the bot.

    Args:
        settings: Bot configuration
        storage: botbuilder Storage for turn state (MemoryStorage by default)
        lease_store: Lease store override; built from settings when omitted
        planner: Planner override; OpenAIPlanner when omitted
        adapter: Adapter override; BotFrameworkAdapter when omitted
        telemetry: Telemetry helper; no-op when omitted

    Returns:
        The wired services
    """
    telemetry = telemetry or TelemetryHelper()
    adapter = adapter or create_adapter(settings)
    conversation_references = ConversationReferenceStore()
    typing_indicator = TypingIndicator()

    if lease_store is not None:
        lease_manager = ConversationLeaseManager(lease_store)
    else:
        lease_manager = create_lease_manager(settings)

    copilot = None
    if settings.copilot_api_base_url:
        copilot = CopilotApi(
            settings.copilot_api_base_url,
            settings.copilot_api_client_id,
            settings.copilot_api_client_secret,
            telemetry=telemetry
        )

    coordinator = ActionDispatchCoordinator(
        route_unknown_action_to_semantic=settings.route_unknown_action_to_semantic,
        typing_indicator=typing_indicator
    )
    if planner is None:
        planner = OpenAIPlanner(
            create_openai_client(settings),
            settings.openai_model,
            coordinator,
            max_turns_to_remember=settings.max_turns_to_remember
        )

    actions = BuiltInActions(settings, planner, copilot=copilot, telemetry=telemetry)
    register_default_actions(coordinator, actions)

    pipeline = TurnPipeline(
        conversation_references,
        lease_manager=lease_manager,
        typing_indicator=typing_indicator,
        telemetry=telemetry
    )
    bot = CopilotBot(
        state_store=TurnStateStore(storage),
        pipeline=pipeline,
        planner=planner,
        coordinator=coordinator,
        commands=KeywordCommands(settings, actions.forget_documents),
        conversation_references=conversation_references,
        telemetry=telemetry
    )
    adapter.on_turn_error = bot.on_turn_error

    messenger = ProactiveMessenger(adapter, settings.bot_id, conversation_references)

    logger.info(f"Bot services initialized (environment: {settings.environment})")
    return BotServices(
        settings=settings,
        adapter=adapter,
        bot=bot,
        conversation_references=conversation_references,
        messenger=messenger,
        lease_manager=lease_manager,
        copilot=copilot
    )
