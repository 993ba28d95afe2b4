"""
Turn pipeline: before/after hooks around the dispatch of an activity.

The before phase decides whether a turn runs at all. Ordinary user messages
must hold the conversation lease; keyword commands, ContinueConversation
events and non-message activities bypass it. The after phase runs whenever
dispatch ran (also when it raised) and releases the lease.

    RECEIVED -> EXEMPT -> DISPATCH
    RECEIVED -> LEASE_PENDING -> LEASE_HELD -> DISPATCH -> RELEASED
    RECEIVED -> LEASE_PENDING -> LEASE_DENIED -> REJECTED
"""
import logging
from typing import Awaitable, Callable, Optional

from botbuilder.core import TurnContext
from botbuilder.schema import ActivityTypes

from teams_copilot.models.errors import LeaseContentionError
from teams_copilot.models.keywords import match_keyword
from teams_copilot.models.turn_state import TurnState
from teams_copilot.services.conversation_references import ConversationReferenceStore
from teams_copilot.services.lease_manager import ConversationLeaseManager
from teams_copilot.utils.chat_history import trim_unanswered_turn
from teams_copilot.utils.helpers import get_conversation_key
from teams_copilot.utils.telemetry import EventNames, TelemetryHelper
from teams_copilot.utils.typing_indicator import TypingIndicator

logger = logging.getLogger(__name__)

CONTINUE_CONVERSATION_EVENT = "ContinueConversation"
LEASE_CONTENTION_MESSAGE = "Please wait for the previous action to complete before sending a new request."

DispatchHandler = Callable[[TurnContext, TurnState], Awaitable[None]]


class TurnPipeline:
    """
    Runs the before phase, the dispatch handler and the after phase of a turn.

    Without a lease manager (test tool, storage not configured) ordinary
    messages proceed without a lease.
    """

    def __init__(
        self,
        conversation_references: ConversationReferenceStore,
        lease_manager: Optional[ConversationLeaseManager] = None,
        typing_indicator: Optional[TypingIndicator] = None,
        telemetry: Optional[TelemetryHelper] = None
    ):
        self.conversation_references = conversation_references
        self.lease_manager = lease_manager
        self.typing_indicator = typing_indicator
        self.telemetry = telemetry or TelemetryHelper()

    async def before_turn(self, context: TurnContext, state: TurnState) -> bool:
        """
        Decide whether the turn proceeds.

        Returns:
            True to dispatch the turn, False to drop it

        Raises:
            StoreUnavailableError: The lease store failed (anything but contention)
        """
        activity = context.activity

        if activity.type == ActivityTypes.message:
            if match_keyword(activity.text):
                return True
        elif activity.type == ActivityTypes.event:
            if activity.name == CONTINUE_CONVERSATION_EVENT:
                activity.type = ActivityTypes.message
                return True
            return False
        else:
            return True

        if self.lease_manager is not None:
            conversation_key = get_conversation_key(activity)
            try:
                lease = await self.lease_manager.acquire_lease(conversation_key)
            except LeaseContentionError as e:
                logger.warning(f"Error acquiring lease: {e}")
                self.telemetry.track_event(EventNames.LEASE_CONTENTION, {"conversation_key": conversation_key})
                await context.send_activity(LEASE_CONTENTION_MESSAGE)
                return False
            state.temp.lease_id = lease.lease_id

        self.conversation_references.add(activity, state)
        return True

    async def after_turn(self, context: TurnContext, state: TurnState) -> bool:
        """Trim the chat history and release the lease. Never raises."""
        if self.typing_indicator is not None:
            self.typing_indicator.stop(state)

        try:
            trim_unanswered_turn(state)
        except Exception as e:
            logger.error(f"Error trimming chat history: {e}", exc_info=True)

        if self.lease_manager is None or not state.temp.lease_id:
            return True

        try:
            await self.lease_manager.release_lease(get_conversation_key(context.activity), state.temp.lease_id)
        except Exception as e:
            logger.error(f"Error releasing lease: {e}")
        finally:
            state.temp.lease_id = None
        return True

    async def run(self, context: TurnContext, state: TurnState, dispatch: DispatchHandler) -> bool:
        """
        Run a full turn.

        Returns:
            True if dispatch ran, False if the before phase rejected the turn
        """
        if not await self.before_turn(context, state):
            return False

        try:
            await dispatch(context, state)
        finally:
            await self.after_turn(context, state)
        return True
