"""
Tests for the OpenAI planner and the rate-limit policy.
"""
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import BadRequestError, RateLimitError

from teams_copilot.models.errors import HttpFailureKind, TerminalHttpError
from teams_copilot.models.plan import PlannerStatus, PredictedDoCommand, PredictedSayCommand
from teams_copilot.models.turn_state import TurnState
from teams_copilot.services.action_dispatch import ActionDispatchCoordinator
from teams_copilot.services.planner import STATUS_MESSAGES, OpenAIPlanner, parse_plan
from teams_copilot.services.retry_policy import call_with_rate_limit_policy, is_rate_limited
from teams_copilot.utils.chat_history import add_user_message

OPENAI_URL = "https://api.openai.com/v1/chat/completions"


def openai_error(cls, status: int, body=None):
    response = httpx.Response(status, request=httpx.Request("POST", OPENAI_URL))
    return cls("request failed", response=response, body=body)


def completion(content):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


@pytest.fixture
def client():
    client = MagicMock()
    client.chat.completions.create = AsyncMock()
    return client


@pytest.fixture
def planner(client):
    coordinator = ActionDispatchCoordinator()
    coordinator.action("getSemanticInfo", AsyncMock(), description="Answer a question")
    return OpenAIPlanner(client, "gpt-4o", coordinator, max_turns_to_remember=2)


class TestParsePlan:

    def test_valid_plan(self):
        plan = parse_plan(json.dumps({
            "type": "plan",
            "commands": [
                {"type": "SAY", "response": {"role": "assistant", "content": "Looking..."}},
                {"type": "DO", "action": "getSemanticInfo", "parameters": {"entity": "x"}},
            ]
        }))

        assert isinstance(plan.commands[0], PredictedSayCommand)
        assert isinstance(plan.commands[1], PredictedDoCommand)
        assert plan.commands[1].parameters == {"entity": "x"}

    def test_plain_text_becomes_say(self):
        plan = parse_plan("Just an answer")
        assert plan.commands[0].response.content == "Just an answer"

    def test_invalid_plan_becomes_apology(self):
        plan = parse_plan(json.dumps({"commands": [{"type": "JUMP"}]}))
        assert plan.commands[0].response.content == STATUS_MESSAGES[PlannerStatus.INVALID_RESPONSE]


class TestOpenAIPlanner:

    @pytest.mark.asyncio
    async def test_begin_task_sends_actions_and_history(self, planner, client, make_context):
        client.chat.completions.create.return_value = completion(
            '{"type": "plan", "commands": [{"type": "DO", "action": "getSemanticInfo"}]}'
        )
        state = TurnState()
        for text in ("one", "two", "three"):
            add_user_message(state, text)

        plan = await planner.begin_task(make_context(), state)

        assert plan.commands[0].action == "getSemanticInfo"
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "getSemanticInfo" in kwargs["messages"][0]["content"]
        assert [m["content"] for m in kwargs["messages"][1:]] == ["two", "three"]

    @pytest.mark.asyncio
    async def test_rate_limit_becomes_status_message(self, planner, client, make_context):
        client.chat.completions.create.side_effect = openai_error(RateLimitError, 429)

        plan = await planner.begin_task(make_context(), TurnState())

        assert plan.commands[0].response.content == STATUS_MESSAGES[PlannerStatus.RATE_LIMITED]

    @pytest.mark.asyncio
    async def test_context_length_reported_as_too_long(self, planner, client, make_context):
        client.chat.completions.create.side_effect = openai_error(
            BadRequestError, 400, body={"code": "context_length_exceeded", "message": "too long"}
        )

        response = await planner.complete_prompt(make_context(), TurnState(), "chatGPT")

        assert response.status == PlannerStatus.TOO_LONG

    @pytest.mark.asyncio
    async def test_empty_completion_is_invalid(self, planner, client, make_context):
        client.chat.completions.create.return_value = completion(None)

        response = await planner.complete_prompt(make_context(), TurnState(), "chatGPT")

        assert response.status == PlannerStatus.INVALID_RESPONSE
        assert not response.succeeded

    @pytest.mark.asyncio
    async def test_complete_prompt_uses_template(self, planner, client, make_context):
        client.chat.completions.create.return_value = completion("answer")

        response = await planner.complete_prompt(make_context(), TurnState(), "questionDocument")

        assert response.succeeded
        assert response.message.content == "answer"
        system = client.chat.completions.create.await_args.kwargs["messages"][0]["content"]
        assert "documents" in system


class TestRateLimitPolicy:

    def test_is_rate_limited(self):
        assert is_rate_limited(TerminalHttpError(HttpFailureKind.NON_RETRYABLE, "/x", status_code=429))
        assert is_rate_limited(openai_error(RateLimitError, 429))
        assert not is_rate_limited(TerminalHttpError(HttpFailureKind.NON_RETRYABLE, "/x", status_code=400))
        assert not is_rate_limited(ValueError("nope"))

    @pytest.mark.asyncio
    async def test_retries_while_rate_limited(self):
        rate_limited = TerminalHttpError(HttpFailureKind.NON_RETRYABLE, "/x", status_code=429)
        func = AsyncMock(side_effect=[rate_limited, rate_limited, "ok"])

        assert await call_with_rate_limit_policy(func, "a", b=1) == "ok"
        assert func.await_count == 3
        func.assert_awaited_with("a", b=1)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        rate_limited = TerminalHttpError(HttpFailureKind.NON_RETRYABLE, "/x", status_code=429)
        func = AsyncMock(side_effect=rate_limited)

        with pytest.raises(TerminalHttpError):
            await call_with_rate_limit_policy(func)
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        func = AsyncMock(side_effect=ValueError("bad"))

        with pytest.raises(ValueError):
            await call_with_rate_limit_policy(func)
        assert func.await_count == 1
