"""
LLM planner.

Turns the user's message into a Plan of SAY/DO commands over the registered
actions, and completes free-form prompts for the semantic action.

Supports OpenAI and Azure OpenAI (OPENAI_TYPE). Failures are reported as a
PlannerResponse status rather than raised.
"""
import json
import logging
from typing import Dict, List, Optional, Protocol

from botbuilder.core import TurnContext
from openai import APIError, AsyncAzureOpenAI, AsyncOpenAI, BadRequestError, RateLimitError
from pydantic import ValidationError

from teams_copilot.config.settings import BotSettings
from teams_copilot.models.plan import ChatMessage, ChatRole, Plan, PlannerResponse, PlannerStatus
from teams_copilot.models.turn_state import TurnState
from teams_copilot.services.action_dispatch import ActionDispatchCoordinator
from teams_copilot.utils.chat_history import get_chat_history

logger = logging.getLogger(__name__)

PROMPTS: Dict[str, str] = {
    "chatGPT": (
        "You are a helpful AI copilot for Microsoft Teams users. Answer the user's "
        "question concisely and accurately. If you don't know the answer, say so."
    ),
    "questionDocument": (
        "You are an AI copilot answering questions about documents the user uploaded. "
        "Only use the provided documents; say so when they don't contain the answer."
    ),
}

PLANNER_PROMPT = """You are the planner of a Microsoft Teams copilot bot.
Decide which actions to run to answer the user's last message.

Available actions:
{actions}

Respond with JSON only, in this shape:
{{"type": "plan", "commands": [
  {{"type": "SAY", "response": {{"role": "assistant", "content": "<text for the user>"}}}},
  {{"type": "DO", "action": "<action name>", "parameters": {{}}}}
]}}
Use a single SAY command when no action is needed."""

STATUS_MESSAGES = {
    PlannerStatus.RATE_LIMITED: "The AI service is busy right now. Please try again in a moment.",
    PlannerStatus.TOO_LONG: "Your request is too long. Please try to make it shorter.",
    PlannerStatus.INVALID_RESPONSE: "I'm sorry, I could not understand your intent. Please try again or make your command shorter.",
    PlannerStatus.ERROR: "The bot encountered an error or bug.",
}


class Planner(Protocol):
    async def begin_task(self, context: TurnContext, state: TurnState) -> Plan:
        ...

    async def complete_prompt(self, context: TurnContext, state: TurnState, template: str) -> PlannerResponse:
        ...


def create_openai_client(settings: BotSettings):
    """Build the OpenAI or Azure OpenAI client from settings."""
    if settings.openai_type == "AzureOpenAI":
        return AsyncAzureOpenAI(
            api_key=settings.openai_key,
            api_version=settings.openai_api_version,
            azure_endpoint=settings.openai_endpoint
        )
    return AsyncOpenAI(api_key=settings.openai_key)


class OpenAIPlanner:
    """Planner backed by the chat completions API."""

    def __init__(
        self,
        client,
        model: str,
        coordinator: ActionDispatchCoordinator,
        max_turns_to_remember: int = 10
    ):
        self.client = client
        self.model = model
        self.coordinator = coordinator
        self.max_turns_to_remember = max_turns_to_remember

    def _history_messages(self, state: TurnState) -> List[Dict[str, str]]:
        return [
            {"role": message.role.value, "content": message.content}
            for message in get_chat_history(state, self.max_turns_to_remember)
        ]

    def _describe_actions(self) -> str:
        lines = []
        for action in self.coordinator.planner_actions:
            schema = action.parameters_model.model_json_schema() if action.parameters_model else {}
            lines.append(f"- {action.name}: {action.description} parameters={json.dumps(schema.get('properties', {}))}")
        return "\n".join(lines) or "- (none)"

    async def _complete(self, messages: List[Dict[str, str]], json_mode: bool = False) -> PlannerResponse:
        kwargs = {"response_format": {"type": "json_object"}} if json_mode else {}
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                **kwargs
            )
        except RateLimitError as e:
            logger.warning(f"Planner rate limited: {e}")
            return PlannerResponse(status=PlannerStatus.RATE_LIMITED, error=str(e))
        except BadRequestError as e:
            if getattr(e, "code", None) == "context_length_exceeded":
                return PlannerResponse(status=PlannerStatus.TOO_LONG, error=str(e))
            logger.error(f"Planner request rejected: {e}")
            return PlannerResponse(status=PlannerStatus.ERROR, error=str(e))
        except APIError as e:
            logger.error(f"Planner request failed: {e}", exc_info=True)
            return PlannerResponse(status=PlannerStatus.ERROR, error=str(e))

        content = response.choices[0].message.content
        if content is None:
            return PlannerResponse(status=PlannerStatus.INVALID_RESPONSE, error="Empty completion")
        return PlannerResponse(
            status=PlannerStatus.SUCCESS,
            message=ChatMessage(role=ChatRole.ASSISTANT, content=content)
        )

    async def complete_prompt(self, context: TurnContext, state: TurnState, template: str) -> PlannerResponse:
        """
        Complete a prompt template with the recent chat history.

        Args:
            context: Turn context
            state: Turn state holding the history
            template: Prompt name (see PROMPTS)

        Returns:
            PlannerResponse with the assistant message on success
        """
        system_prompt = PROMPTS.get(template, PROMPTS["chatGPT"])
        messages = [{"role": "system", "content": system_prompt}] + self._history_messages(state)
        return await self._complete(messages)

    async def begin_task(self, context: TurnContext, state: TurnState) -> Plan:
        messages = [
            {"role": "system", "content": PLANNER_PROMPT.format(actions=self._describe_actions())}
        ] + self._history_messages(state)

        response = await self._complete(messages, json_mode=True)
        if not response.succeeded:
            return Plan.say(STATUS_MESSAGES[response.status])

        return parse_plan(response.message.content)


def parse_plan(content: str) -> Plan:
    """Parse the model's output; anything that is not a plan becomes a single SAY."""
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        return Plan.say(content)

    if not isinstance(data, dict) or "commands" not in data:
        return Plan.say(content)

    try:
        return Plan.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Planner returned an invalid plan: {e}")
        return Plan.say(STATUS_MESSAGES[PlannerStatus.INVALID_RESPONSE])


def status_message(status: PlannerStatus) -> Optional[str]:
    return STATUS_MESSAGES.get(status)
