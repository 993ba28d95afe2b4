"""
Tests for the conversation lease manager and the lease stores.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from azure.core.exceptions import HttpResponseError, ResourceExistsError, ServiceRequestError

from teams_copilot.models.errors import (
    BlobNotFoundError,
    LeaseContentionError,
    StoreUnavailableError,
)
from teams_copilot.services.lease_manager import ConversationLeaseManager
from teams_copilot.services.lease_store import AzureBlobLeaseStore
from teams_copilot.utils.helpers import sanitize_blob_key

KEY = "msteams/bot-1/conversations/conv-1"
TEST_CONNECTION_STRING = (
    "DefaultEndpointsProtocol=https;AccountName=test;AccountKey=dGVzdGtleQ==;EndpointSuffix=core.windows.net"
)


class TestConversationLeaseManager:

    @pytest.mark.asyncio
    async def test_first_acquire_creates_blob_once(self, lease_manager, lease_store):
        lease = await lease_manager.acquire_lease(KEY)

        assert lease.lease_id
        assert lease.conversation_key == KEY
        assert lease.duration_seconds == 60
        assert lease_store.create_object_calls == 1
        assert lease_store.is_leased(sanitize_blob_key(KEY))

        await lease_manager.release_lease(KEY, lease.lease_id)
        await lease_manager.acquire_lease(KEY)
        assert lease_store.create_object_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_acquires_are_mutually_exclusive(self, lease_manager):
        results = await asyncio.gather(
            lease_manager.acquire_lease(KEY),
            lease_manager.acquire_lease(KEY),
            return_exceptions=True
        )

        acquired = [r for r in results if not isinstance(r, Exception)]
        denied = [r for r in results if isinstance(r, LeaseContentionError)]
        assert len(acquired) == 1
        assert len(denied) == 1
        assert denied[0].conversation_key == KEY

    @pytest.mark.asyncio
    async def test_different_conversations_do_not_contend(self, lease_manager):
        first = await lease_manager.acquire_lease(KEY)
        second = await lease_manager.acquire_lease("msteams/bot-1/conversations/conv-2")
        assert first.lease_id != second.lease_id

    @pytest.mark.asyncio
    async def test_lease_expires_after_sixty_seconds(self, lease_manager, clock):
        first = await lease_manager.acquire_lease(KEY)

        clock.advance(59.9)
        with pytest.raises(LeaseContentionError):
            await lease_manager.acquire_lease(KEY)

        clock.advance(0.1)
        second = await lease_manager.acquire_lease(KEY)
        assert second.lease_id != first.lease_id

    @pytest.mark.asyncio
    async def test_released_lease_can_be_reacquired(self, lease_manager):
        lease = await lease_manager.acquire_lease(KEY)
        await lease_manager.release_lease(KEY, lease.lease_id)

        again = await lease_manager.acquire_lease(KEY)
        assert again.lease_id != lease.lease_id

    @pytest.mark.asyncio
    async def test_double_release_raises_store_error(self, lease_manager):
        lease = await lease_manager.acquire_lease(KEY)
        await lease_manager.release_lease(KEY, lease.lease_id)

        with pytest.raises(StoreUnavailableError) as exc_info:
            await lease_manager.release_lease(KEY, lease.lease_id)
        assert exc_info.value.conversation_key == KEY

    @pytest.mark.asyncio
    async def test_release_after_expiry_and_takeover_fails(self, lease_manager, clock):
        stale = await lease_manager.acquire_lease(KEY)
        clock.advance(61)
        await lease_manager.acquire_lease(KEY)

        with pytest.raises(StoreUnavailableError):
            await lease_manager.release_lease(KEY, stale.lease_id)

    @pytest.mark.asyncio
    async def test_empty_key_rejected(self, lease_manager):
        with pytest.raises(ValueError):
            await lease_manager.acquire_lease("")

    @pytest.mark.asyncio
    async def test_container_created_once_for_concurrent_callers(self, lease_manager, lease_store):
        await asyncio.gather(*[
            lease_manager.acquire_lease(f"msteams/bot-1/conversations/conv-{i}") for i in range(5)
        ])
        assert lease_store.create_container_calls == 1

    @pytest.mark.asyncio
    async def test_failed_container_creation_is_retried(self, lease_store):
        manager = ConversationLeaseManager(lease_store)
        with patch.object(
            lease_store,
            "create_container_if_not_exists",
            AsyncMock(side_effect=[StoreUnavailableError("storage down"), None])
        ) as create:
            with pytest.raises(StoreUnavailableError):
                await manager.acquire_lease(KEY)

            lease = await manager.acquire_lease(KEY)

        assert lease.lease_id
        assert create.await_count == 2

    @pytest.mark.asyncio
    async def test_store_failure_on_acquire_propagates(self, lease_manager, lease_store):
        with patch.object(lease_store, "acquire_lease", AsyncMock(side_effect=StoreUnavailableError("timeout"))):
            with pytest.raises(StoreUnavailableError):
                await lease_manager.acquire_lease(KEY)

    @pytest.mark.asyncio
    async def test_missing_blob_retried_exactly_once(self, lease_manager, lease_store):
        with patch.object(
            lease_store,
            "acquire_lease",
            AsyncMock(side_effect=BlobNotFoundError("missing"))
        ) as acquire:
            with pytest.raises(BlobNotFoundError):
                await lease_manager.acquire_lease(KEY)

        assert acquire.await_count == 2

    @pytest.mark.asyncio
    async def test_blob_created_by_another_instance_not_recreated(self, lease_manager, lease_store):
        name = sanitize_blob_key(KEY)
        real_acquire = lease_store.acquire_lease

        async def acquire_after_concurrent_create(handle, duration_seconds):
            # Another instance creates the blob between the miss and the retry
            await lease_store.create_empty_object(handle)
            acquire.side_effect = real_acquire
            raise BlobNotFoundError("missing")

        with patch.object(
            lease_store,
            "acquire_lease",
            AsyncMock(side_effect=acquire_after_concurrent_create)
        ) as acquire:
            with patch.object(lease_store, "object_exists", wraps=lease_store.object_exists) as exists:
                lease = await lease_manager.acquire_lease(KEY)

        assert lease.lease_id
        exists.assert_awaited_once_with(name)
        assert lease_store.create_object_calls == 1
        assert lease_store.is_leased(name)


def azure_error(error_code: str) -> HttpResponseError:
    error = HttpResponseError(message=f"{error_code} error")
    error.error_code = error_code
    return error


class TestAzureBlobLeaseStore:

    @pytest.fixture
    def store(self):
        return AzureBlobLeaseStore("conversation-leases", connection_string=TEST_CONNECTION_STRING)

    @pytest.fixture
    def blob(self):
        blob = MagicMock()
        blob.blob_name = "lease-blob"
        return blob

    def test_requires_connection_details(self):
        with pytest.raises(ValueError):
            AzureBlobLeaseStore("conversation-leases")

    def test_get_object_uses_container(self, store):
        assert store.get_object("lease-blob").blob_name == "lease-blob"

    @pytest.mark.asyncio
    async def test_acquire_returns_lease_id(self, store, blob):
        blob.acquire_lease = AsyncMock(return_value=MagicMock(id="lease-123"))

        assert await store.acquire_lease(blob, 60) == "lease-123"
        blob.acquire_lease.assert_awaited_once_with(lease_duration=60)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error_code,expected", [
        ("BlobNotFound", BlobNotFoundError),
        ("LeaseAlreadyPresent", LeaseContentionError),
        ("AuthenticationFailed", StoreUnavailableError),
    ])
    async def test_acquire_error_translation(self, store, blob, error_code, expected):
        blob.acquire_lease = AsyncMock(side_effect=azure_error(error_code))

        with pytest.raises(expected) as exc_info:
            await store.acquire_lease(blob, 60)
        assert exc_info.value.error_code == error_code

    @pytest.mark.asyncio
    async def test_network_failure_is_store_unavailable(self, store, blob):
        blob.acquire_lease = AsyncMock(side_effect=ServiceRequestError("connection refused"))

        with pytest.raises(StoreUnavailableError):
            await store.acquire_lease(blob, 60)

    @pytest.mark.asyncio
    async def test_create_empty_object_tolerates_existing_blob(self, store, blob):
        blob.upload_blob = AsyncMock(side_effect=ResourceExistsError("exists"))
        await store.create_empty_object(blob)

        blob.upload_blob = AsyncMock(side_effect=azure_error("LeaseIdMissing"))
        await store.create_empty_object(blob)

    @pytest.mark.asyncio
    async def test_create_container_tolerates_existing_container(self, store):
        with patch.object(store.container, "create_container", AsyncMock(side_effect=ResourceExistsError("exists"))):
            await store.create_container_if_not_exists()
