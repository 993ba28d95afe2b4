"""
Tests for the before/after turn pipeline around dispatch.
"""
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from botbuilder.schema import ActivityTypes

from teams_copilot.models.errors import StoreUnavailableError
from teams_copilot.models.turn_state import TurnState
from teams_copilot.services.conversation_references import ConversationReferenceStore
from teams_copilot.services.lease_manager import Lease
from teams_copilot.services.turn_pipeline import LEASE_CONTENTION_MESSAGE, TurnPipeline
from teams_copilot.utils.chat_history import add_assistant_message, add_user_message
from teams_copilot.utils.helpers import get_conversation_key, sanitize_blob_key
from teams_copilot.utils.telemetry import EventNames

KEY = "msteams/bot-1/conversations/conv-1"


@pytest.fixture
def references():
    return ConversationReferenceStore()


@pytest.fixture
def pipeline(lease_manager, references):
    return TurnPipeline(references, lease_manager=lease_manager)


@pytest.fixture
def mock_lease_manager():
    manager = MagicMock()
    manager.acquire_lease = AsyncMock(return_value=Lease(lease_id="lease-1", conversation_key=KEY))
    manager.release_lease = AsyncMock()
    return manager


class TestBeforeTurnExemptions:

    @pytest.mark.asyncio
    async def test_keyword_message_skips_lease(self, make_context, mock_lease_manager, references):
        pipeline = TurnPipeline(references, lease_manager=mock_lease_manager)
        state = TurnState()

        assert await pipeline.before_turn(make_context(text="/debug"), state) is True
        mock_lease_manager.acquire_lease.assert_not_awaited()
        assert state.temp.lease_id is None

    @pytest.mark.asyncio
    async def test_continue_conversation_event_becomes_message(self, make_context, mock_lease_manager, references):
        pipeline = TurnPipeline(references, lease_manager=mock_lease_manager)
        context = make_context(activity_type=ActivityTypes.event, name="ContinueConversation", text=None)

        assert await pipeline.before_turn(context, TurnState()) is True
        assert context.activity.type == ActivityTypes.message
        mock_lease_manager.acquire_lease.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_other_events_are_dropped(self, make_context, mock_lease_manager, references):
        pipeline = TurnPipeline(references, lease_manager=mock_lease_manager)
        context = make_context(activity_type=ActivityTypes.event, name="SomethingElse", text=None)
        dispatch = AsyncMock()

        assert await pipeline.run(context, TurnState(), dispatch) is False
        dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("activity_type", [ActivityTypes.conversation_update, ActivityTypes.invoke])
    async def test_non_message_activities_pass_through(self, make_context, mock_lease_manager, references, activity_type):
        pipeline = TurnPipeline(references, lease_manager=mock_lease_manager)

        assert await pipeline.before_turn(make_context(activity_type=activity_type, text=None), TurnState()) is True
        mock_lease_manager.acquire_lease.assert_not_awaited()
        assert len(references) == 0


class TestLeaseProtocol:

    @pytest.mark.asyncio
    async def test_message_acquires_lease_and_records_reference(self, make_context, mock_lease_manager, references):
        pipeline = TurnPipeline(references, lease_manager=mock_lease_manager)
        state = TurnState()

        assert await pipeline.before_turn(make_context(text="what is new?"), state) is True

        mock_lease_manager.acquire_lease.assert_awaited_once_with(KEY)
        assert state.temp.lease_id == "lease-1"
        assert references.get("conv-1") is not None
        assert "user-1" in state.conversation.conversation_references

    @pytest.mark.asyncio
    async def test_contention_rejects_turn_with_wait_message(self, make_context, adapter, lease_manager, references):
        telemetry = MagicMock()
        pipeline = TurnPipeline(references, lease_manager=lease_manager, telemetry=telemetry)
        await lease_manager.acquire_lease(KEY)
        dispatch = AsyncMock()

        proceeded = await pipeline.run(make_context(text="second request"), TurnState(), dispatch)

        assert proceeded is False
        dispatch.assert_not_awaited()
        assert adapter.texts() == [LEASE_CONTENTION_MESSAGE]
        telemetry.track_event.assert_called_once_with(EventNames.LEASE_CONTENTION, {"conversation_key": KEY})

    @pytest.mark.asyncio
    async def test_contention_logged_as_warning(self, make_context, lease_manager, pipeline, caplog):
        await lease_manager.acquire_lease(KEY)

        with caplog.at_level(logging.WARNING, logger="teams_copilot.services.turn_pipeline"):
            await pipeline.before_turn(make_context(text="hello"), TurnState())

        assert [r for r in caplog.records if r.levelno == logging.WARNING]

    @pytest.mark.asyncio
    async def test_store_failure_on_acquire_propagates(self, make_context, mock_lease_manager, references):
        mock_lease_manager.acquire_lease.side_effect = StoreUnavailableError("storage down")
        pipeline = TurnPipeline(references, lease_manager=mock_lease_manager)
        dispatch = AsyncMock()

        with pytest.raises(StoreUnavailableError):
            await pipeline.run(make_context(text="hello"), TurnState(), dispatch)
        dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lease_released_after_dispatch(self, make_context, pipeline, lease_store):
        dispatch = AsyncMock()
        state = TurnState()

        assert await pipeline.run(make_context(text="hello"), state, dispatch) is True

        dispatch.assert_awaited_once()
        assert not lease_store.is_leased(sanitize_blob_key(KEY))
        assert state.temp.lease_id is None

    @pytest.mark.asyncio
    async def test_lease_released_when_dispatch_raises(self, make_context, pipeline, lease_store):
        dispatch = AsyncMock(side_effect=RuntimeError("action failed"))

        with pytest.raises(RuntimeError):
            await pipeline.run(make_context(text="hello"), TurnState(), dispatch)

        assert not lease_store.is_leased(sanitize_blob_key(KEY))

    @pytest.mark.asyncio
    async def test_release_failure_is_swallowed(self, make_context, mock_lease_manager, references, caplog):
        mock_lease_manager.release_lease.side_effect = StoreUnavailableError("lease expired")
        pipeline = TurnPipeline(references, lease_manager=mock_lease_manager)
        state = TurnState()
        state.temp.lease_id = "lease-1"

        with caplog.at_level(logging.ERROR, logger="teams_copilot.services.turn_pipeline"):
            assert await pipeline.after_turn(make_context(text="hello"), state) is True

        assert any("Error releasing lease" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_release_twice_does_not_crash_caller(self, make_context, pipeline, lease_manager):
        context = make_context(text="hello")
        lease = await lease_manager.acquire_lease(get_conversation_key(context.activity))
        await lease_manager.release_lease(KEY, lease.lease_id)

        state = TurnState()
        state.temp.lease_id = lease.lease_id
        assert await pipeline.after_turn(context, state) is True

    @pytest.mark.asyncio
    async def test_without_lease_manager_messages_proceed(self, make_context, references):
        pipeline = TurnPipeline(references)
        dispatch = AsyncMock()
        state = TurnState()

        assert await pipeline.run(make_context(text="hello"), state, dispatch) is True
        dispatch.assert_awaited_once()
        assert state.temp.lease_id is None


class TestAfterTurn:

    @pytest.mark.asyncio
    async def test_unanswered_user_turn_trimmed(self, make_context, pipeline):
        state = TurnState()
        add_user_message(state, "question")
        add_assistant_message(state, "answer")
        add_user_message(state, "follow up that failed")

        await pipeline.after_turn(make_context(text="hello"), state)

        assert [m.content for m in state.conversation.history] == ["question", "answer"]

    @pytest.mark.asyncio
    async def test_typing_indicator_stopped(self, make_context, references):
        typing_indicator = MagicMock()
        pipeline = TurnPipeline(references, typing_indicator=typing_indicator)
        state = TurnState()

        await pipeline.after_turn(make_context(text="hello"), state)

        typing_indicator.stop.assert_called_once_with(state)


class TestConversationReferenceStore:

    def test_restore_registers_cached_references(self, make_activity, references):
        state = TurnState()
        ConversationReferenceStore().add(make_activity(conversation_id="conv-7"), state)

        assert references.restore(state) == 1

        reference = references.get("conv-7")
        assert reference.conversation.id == "conv-7"
        assert reference.bot.id == "bot-1"

    def test_restore_keeps_live_reference(self, make_activity, references):
        live = references.add(make_activity(conversation_id="conv-7"))
        state = TurnState()
        state.conversation.conversation_references["user-1"] = live.serialize()

        references.restore(state)

        assert references.get("conv-7") is live
        assert len(references) == 1

    def test_restore_skips_reference_without_conversation(self, references):
        state = TurnState()
        state.conversation.conversation_references["user-1"] = {"serviceUrl": "https://smba.trafficmanager.net/amer/"}

        assert references.restore(state) == 0
        assert len(references) == 0
