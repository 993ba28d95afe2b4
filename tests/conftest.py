"""
Shared pytest configuration and fixtures for the Teams Copilot Bot tests.
Provides activity builders, a recording adapter and in-memory lease storage.
"""
import asyncio
from typing import Any, Dict, List, Optional

import pytest
from botbuilder.core import BotAdapter, TurnContext
from botbuilder.schema import (
    Activity,
    ActivityTypes,
    Attachment,
    ChannelAccount,
    ConversationAccount,
    ResourceResponse,
)

from teams_copilot.models.plan import ChatMessage, Plan, PlannerResponse, PlannerStatus
from teams_copilot.services.lease_manager import ConversationLeaseManager
from teams_copilot.services.lease_store import InMemoryLeaseStore


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")


class RecordingAdapter(BotAdapter):
    """Bot adapter that records outgoing activities instead of sending them."""

    def __init__(self):
        super().__init__()
        self.sent: List[Activity] = []

    async def send_activities(self, context: TurnContext, activities: List[Activity]) -> List[ResourceResponse]:
        self.sent.extend(activities)
        return [ResourceResponse(id=f"reply-{len(self.sent)}-{i}") for i in range(len(activities))]

    async def update_activity(self, context: TurnContext, activity: Activity):
        raise NotImplementedError()

    async def delete_activity(self, context: TurnContext, reference):
        raise NotImplementedError()

    def texts(self) -> List[str]:
        return [a.text for a in self.sent if a.type == ActivityTypes.message]


class FakeClock:
    """Manually advanced clock for lease expiry tests."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePlanner:
    """Planner returning a fixed plan; records every call."""

    def __init__(self, plan: Optional[Plan] = None, completion: str = "Here is my answer."):
        self.plan = plan or Plan.say("Hello!")
        self.completion = completion
        self.begin_task_calls = 0
        # Set gate to an Event to hold begin_task until the test releases it
        self.gate: Optional[asyncio.Event] = None
        self.entered = asyncio.Event()

    async def begin_task(self, context, state) -> Plan:
        self.begin_task_calls += 1
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        return self.plan.model_copy(deep=True)

    async def complete_prompt(self, context, state, template) -> PlannerResponse:
        return PlannerResponse(
            status=PlannerStatus.SUCCESS,
            message=ChatMessage(role="assistant", content=self.completion)
        )


def build_activity(
    text: Optional[str] = "hello",
    activity_type: str = ActivityTypes.message,
    conversation_id: str = "conv-1",
    user_id: str = "user-1",
    name: Optional[str] = None,
    value: Optional[Dict[str, Any]] = None,
    members_added: Optional[List[ChannelAccount]] = None,
    channel_id: str = "msteams",
    attachments: Optional[List[Attachment]] = None
) -> Activity:
    return Activity(
        type=activity_type,
        id="activity-1",
        text=text,
        name=name,
        value=value,
        channel_id=channel_id,
        service_url="https://smba.trafficmanager.net/amer/",
        from_property=ChannelAccount(id=user_id, name="Test User"),
        recipient=ChannelAccount(id="bot-1", name="Copilot"),
        conversation=ConversationAccount(id=conversation_id, conversation_type="personal"),
        members_added=members_added,
        attachments=attachments,
    )


@pytest.fixture
def make_activity():
    """Factory for Teams activities."""
    return build_activity


@pytest.fixture
def adapter():
    return RecordingAdapter()


@pytest.fixture
def make_context(adapter):
    """Factory for turn contexts bound to the recording adapter."""
    def _make(activity: Optional[Activity] = None, **kwargs) -> TurnContext:
        return TurnContext(adapter, activity or build_activity(**kwargs))
    return _make


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def lease_store(clock):
    return InMemoryLeaseStore(clock=clock)


@pytest.fixture
def lease_manager(lease_store):
    return ConversationLeaseManager(lease_store)


@pytest.fixture
def fake_planner():
    return FakePlanner()
