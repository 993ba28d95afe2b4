"""
Teams Copilot Bot turn handler.

Every activity delivered by the adapter goes through on_turn:

    load state -> TurnPipeline.run(dispatch) -> save state

dispatch routes keyword commands, planner-driven messages, welcome on
membersAdded and feedback-loop invokes.
"""
import json
import logging
from typing import Optional

from botbuilder.core import TurnContext
from botbuilder.schema import Activity, ActivityTypes, InvokeResponse

from teams_copilot.api.teams.actions import record_uploaded_documents
from teams_copilot.api.teams.commands import WELCOME_MESSAGE, KeywordCommands
from teams_copilot.models.keywords import match_keyword
from teams_copilot.models.turn_state import TurnState, UserProfile
from teams_copilot.services.action_dispatch import ActionDispatchCoordinator
from teams_copilot.services.conversation_references import ConversationReferenceStore
from teams_copilot.services.planner import Planner
from teams_copilot.services.turn_pipeline import TurnPipeline
from teams_copilot.services.turn_state_store import TurnStateStore
from teams_copilot.utils.chat_history import add_user_message
from teams_copilot.utils.helpers import remove_mention_text
from teams_copilot.utils.telemetry import EventNames, MetricNames, TelemetryHelper

logger = logging.getLogger(__name__)

FEEDBACK_INVOKE_NAME = "message/submitAction"
TURN_ERROR_MESSAGE = "The bot encountered an error or bug. Please try again."


class CopilotBot:
    """Orchestrates state, the turn pipeline, the planner and the action coordinator."""

    def __init__(
        self,
        state_store: TurnStateStore,
        pipeline: TurnPipeline,
        planner: Planner,
        coordinator: ActionDispatchCoordinator,
        commands: KeywordCommands,
        conversation_references: ConversationReferenceStore,
        telemetry: Optional[TelemetryHelper] = None
    ):
        self.state_store = state_store
        self.pipeline = pipeline
        self.planner = planner
        self.coordinator = coordinator
        self.commands = commands
        self.conversation_references = conversation_references
        self.telemetry = telemetry or TelemetryHelper()

    async def on_turn(self, context: TurnContext) -> None:
        activity = context.activity
        if activity.type == ActivityTypes.message:
            activity.text = remove_mention_text(activity.text)

        state = await self.state_store.load(context)
        self.conversation_references.restore(state)
        if await self.pipeline.run(context, state, self.dispatch):
            await self.state_store.save(context, state)

    async def dispatch(self, context: TurnContext, state: TurnState) -> None:
        activity = context.activity

        if activity.type == ActivityTypes.message:
            await self._on_message(context, state)
        elif activity.type == ActivityTypes.conversation_update:
            await self._on_members_added(context, state)
        elif activity.type == ActivityTypes.invoke and activity.name == FEEDBACK_INVOKE_NAME:
            await self._on_feedback(context, state)
        else:
            logger.debug(f"Unhandled activity type: {activity.type}")

    async def _on_message(self, context: TurnContext, state: TurnState) -> None:
        text = context.activity.text or ""

        keyword = match_keyword(text)
        if keyword is not None:
            await self.commands.handle(keyword, context, state)
            return

        await record_uploaded_documents(context, state)

        if not text:
            logger.debug("Ignoring message without text")
            return

        self._update_user(context, state)
        state.temp.input = text
        add_user_message(state, text)

        plan = await self.planner.begin_task(context, state)
        await self.coordinator.execute_plan(context, state, plan)

    def _update_user(self, context: TurnContext, state: TurnState) -> None:
        user = context.activity.from_property
        if user is None:
            return
        state.user.user = UserProfile(
            id=user.id or "",
            name=user.name or "",
            aad_object_id=getattr(user, "aad_object_id", None)
        )

    async def _on_members_added(self, context: TurnContext, state: TurnState) -> None:
        for member in context.activity.members_added or []:
            # Ignore the bot joining the conversation
            if member.id == context.activity.recipient.id:
                continue
            if not state.user.greeted:
                state.user.greeted = True
                await context.send_activity(WELCOME_MESSAGE)
                self.conversation_references.add(context.activity, state)

    async def _on_feedback(self, context: TurnContext, state: TurnState) -> None:
        value = context.activity.value or {}
        if value.get("actionName") == "feedback":
            action_value = value.get("actionValue") or {}
            reaction = action_value.get("reaction")
            logger.info(f"Feedback received: {json.dumps(value)}")

            self.telemetry.track_event(EventNames.FEEDBACK_RECEIVED, {
                "reaction": reaction,
                "feedback": action_value.get("feedback", ""),
            })
            if reaction == "like":
                self.telemetry.track_metric(MetricNames.LIKE_FEEDBACK_COUNT, 1)
            elif reaction == "dislike":
                self.telemetry.track_metric(MetricNames.DISLIKE_FEEDBACK_COUNT, 1)

        await context.send_activity(Activity(
            type=ActivityTypes.invoke_response,
            value=InvokeResponse(status=200)
        ))

    async def on_turn_error(self, context: TurnContext, error: Exception) -> None:
        """Adapter error handler: log, tell the user, emit a trace for the emulator."""
        logger.error(f"[on_turn_error] unhandled error: {error}", exc_info=error)

        await context.send_activity(TURN_ERROR_MESSAGE)
        await context.send_trace_activity(
            "OnTurnError Trace",
            f"{error}",
            "https://www.botframework.com/schemas/error",
            "TurnError"
        )
