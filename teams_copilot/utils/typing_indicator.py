"""
Typing indicator shown while a turn is being processed.
"""
import asyncio
import logging
from typing import Callable, List

from botbuilder.core import TurnContext
from botbuilder.schema import Activity, ActivityTypes, ResourceResponse

from teams_copilot.models.turn_state import TurnState

logger = logging.getLogger(__name__)


class TypingIndicator:
    """
    Sends a "typing" activity every `interval` seconds until the bot sends a message.

    The first typing activity is sent after one interval. The timer lives in
    the turn's temp state and is stopped by the first outgoing message or by
    the turn pipeline's after phase.
    """

    def __init__(self, interval: float = 1.0):
        self.interval = interval

    async def start(self, context: TurnContext, state: TurnState) -> None:
        """Start the timer; ignored for non-message activities or when already running."""
        if context.activity.type != ActivityTypes.message or state.temp.typing_timer:
            return

        async def on_send_activities(
            ctx: TurnContext,
            activities: List[Activity],
            next_send: Callable
        ) -> List[ResourceResponse]:
            if any(activity.type == ActivityTypes.message for activity in activities):
                self.stop(state)
            return await next_send()

        context.on_send_activities(on_send_activities)
        state.temp.typing_timer = asyncio.create_task(self._send_typing(context))

    def stop(self, state: TurnState) -> None:
        timer = state.temp.typing_timer
        if timer is not None:
            state.temp.typing_timer = None
            if not timer.done():
                timer.cancel()

    async def _send_typing(self, context: TurnContext) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await context.send_activity(Activity(type=ActivityTypes.typing))
            except Exception as e:
                # The turn may already have completed
                logger.warning(f"Stopping typing indicator: {e}")
                return
