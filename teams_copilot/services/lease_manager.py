"""
Conversation lease manager.

Serializes turn processing per conversation across bot instances. Each
conversation key maps to one lease object in the store; holding its lease
means owning the conversation's execution slot. Leases last 60 seconds, so a
crashed holder never blocks a conversation for longer than that.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from teams_copilot.config.settings import LEASE_DURATION_SECONDS
from teams_copilot.models.errors import BlobNotFoundError, LeaseError
from teams_copilot.services.lease_store import LeaseStore
from teams_copilot.utils.helpers import sanitize_blob_key

logger = logging.getLogger(__name__)


@dataclass
class Lease:
    """An exclusive, time-limited claim on a conversation."""
    lease_id: str
    conversation_key: str
    acquired_at: float = field(default_factory=time.time)
    duration_seconds: int = LEASE_DURATION_SECONDS


class ConversationLeaseManager:
    """
    Acquires and releases conversation leases on a LeaseStore.

    The lease container is created once per manager. Concurrent first callers
    share the same creation task; a failed creation is retried by the next call.
    """

    def __init__(self, store: LeaseStore, duration_seconds: int = LEASE_DURATION_SECONDS):
        self.store = store
        self.duration_seconds = duration_seconds
        self._container_ready: Optional[asyncio.Task] = None

    async def _ensure_container(self) -> None:
        if self._container_ready is None:
            self._container_ready = asyncio.ensure_future(self.store.create_container_if_not_exists())
        try:
            await asyncio.shield(self._container_ready)
        except Exception:
            self._container_ready = None
            raise

    async def acquire_lease(self, conversation_key: str) -> Lease:
        """
        Acquire the lease for a conversation.

        Args:
            conversation_key: Key built by get_conversation_key

        Returns:
            The acquired lease

        Raises:
            ValueError: If the key is empty
            LeaseContentionError: Another turn holds a live lease
            StoreUnavailableError: The store failed
        """
        name = sanitize_blob_key(conversation_key)
        await self._ensure_container()
        handle = self.store.get_object(name)

        try:
            lease_id = await self._acquire(handle, conversation_key)
        except BlobNotFoundError:
            logger.warning(f"Lease blob not found for {conversation_key}, creating it")
            if not await self.store.object_exists(handle):
                await self.store.create_empty_object(handle)
            lease_id = await self._acquire(handle, conversation_key)

        logger.debug(f"Acquired lease {lease_id} for {conversation_key}")
        return Lease(lease_id=lease_id, conversation_key=conversation_key, duration_seconds=self.duration_seconds)

    async def _acquire(self, handle, conversation_key: str) -> str:
        try:
            return await self.store.acquire_lease(handle, self.duration_seconds)
        except LeaseError as e:
            e.conversation_key = conversation_key
            raise

    async def release_lease(self, conversation_key: str, lease_id: str) -> None:
        """
        Release a previously acquired lease.

        Raises:
            StoreUnavailableError: The release failed (expired, stolen or store down)
        """
        name = sanitize_blob_key(conversation_key)
        await self._ensure_container()
        handle = self.store.get_object(name)
        try:
            await self.store.release_lease(handle, lease_id)
        except LeaseError as e:
            e.conversation_key = conversation_key
            raise
        logger.debug(f"Released lease {lease_id} for {conversation_key}")

    async def close(self) -> None:
        await self.store.close()
