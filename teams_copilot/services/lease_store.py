"""
Lease store primitives used by the conversation lease manager.

A lease store holds one object per conversation and grants exclusive,
time-limited leases on it. Two implementations:

- AzureBlobLeaseStore: blobs in an Azure Storage container (production)
- InMemoryLeaseStore: a dict with an injectable clock (tests, local runs)

Both translate their failures into the lease error taxonomy:
BlobNotFoundError, LeaseContentionError and StoreUnavailableError.
"""
import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from azure.core.exceptions import AzureError, HttpResponseError, ResourceExistsError
from azure.identity.aio import DefaultAzureCredential
from azure.storage.blob.aio import BlobClient, BlobLeaseClient, ContainerClient

from teams_copilot.models.errors import BlobNotFoundError, LeaseContentionError, StoreUnavailableError

logger = logging.getLogger(__name__)

# Azure Storage error codes
BLOB_NOT_FOUND = "BlobNotFound"
LEASE_ALREADY_PRESENT = "LeaseAlreadyPresent"
LEASE_ID_MISSING = "LeaseIdMissing"
CONTAINER_ALREADY_EXISTS = "ContainerAlreadyExists"


class LeaseStore(ABC):
    """Storage primitives the lease manager is built on."""

    @abstractmethod
    async def create_container_if_not_exists(self) -> None:
        ...

    @abstractmethod
    def get_object(self, name: str) -> Any:
        """Return a handle for the named lease object (it may not exist yet)."""

    @abstractmethod
    async def acquire_lease(self, handle: Any, duration_seconds: int) -> str:
        """
        Acquire an exclusive lease on the object.

        Returns:
            The lease id

        Raises:
            BlobNotFoundError: The object does not exist
            LeaseContentionError: A live lease is held by someone else
            StoreUnavailableError: Any other store failure
        """

    @abstractmethod
    async def release_lease(self, handle: Any, lease_id: str) -> None:
        ...

    @abstractmethod
    async def object_exists(self, handle: Any) -> bool:
        ...

    @abstractmethod
    async def create_empty_object(self, handle: Any) -> None:
        """Create the object with empty content; an existing object is left untouched."""

    async def close(self) -> None:
        """Release network resources held by the store."""


def _translate_azure_error(error: AzureError, name: str) -> Exception:
    """Map an Azure SDK error onto the lease error taxonomy."""
    error_code = getattr(error, "error_code", None)
    if error_code == BLOB_NOT_FOUND:
        return BlobNotFoundError(f"Lease blob '{name}' not found", error_code=error_code)
    if error_code == LEASE_ALREADY_PRESENT:
        return LeaseContentionError(f"Lease blob '{name}' is already leased", error_code=error_code)
    return StoreUnavailableError(f"Lease store failure for '{name}': {error}", error_code=error_code)


class AzureBlobLeaseStore(LeaseStore):
    """
    Lease store backed by an Azure Storage blob container.

    Authenticates with a connection string when one is given, otherwise with
    DefaultAzureCredential against the account URL.
    """

    def __init__(
        self,
        container_name: str,
        connection_string: Optional[str] = None,
        account_url: Optional[str] = None
    ):
        self.container_name = container_name
        self._credential = None

        if connection_string:
            self.container = ContainerClient.from_connection_string(connection_string, container_name)
        elif account_url:
            self._credential = DefaultAzureCredential()
            self.container = ContainerClient(account_url, container_name, credential=self._credential)
        else:
            raise ValueError("Either a storage connection string or an account URL is required")

        logger.info(f"AzureBlobLeaseStore initialized for container '{container_name}'")

    async def create_container_if_not_exists(self) -> None:
        try:
            await self.container.create_container()
            logger.info(f"Created lease container '{self.container_name}'")
        except ResourceExistsError:
            pass
        except AzureError as e:
            raise _translate_azure_error(e, self.container_name) from e

    def get_object(self, name: str) -> BlobClient:
        return self.container.get_blob_client(name)

    async def acquire_lease(self, handle: BlobClient, duration_seconds: int) -> str:
        try:
            lease = await handle.acquire_lease(lease_duration=duration_seconds)
            return lease.id
        except AzureError as e:
            raise _translate_azure_error(e, handle.blob_name) from e

    async def release_lease(self, handle: BlobClient, lease_id: str) -> None:
        try:
            await BlobLeaseClient(handle, lease_id=lease_id).release()
        except AzureError as e:
            raise _translate_azure_error(e, handle.blob_name) from e

    async def object_exists(self, handle: BlobClient) -> bool:
        try:
            return await handle.exists()
        except AzureError as e:
            raise _translate_azure_error(e, handle.blob_name) from e

    async def create_empty_object(self, handle: BlobClient) -> None:
        try:
            await handle.upload_blob(b"", overwrite=False)
        except ResourceExistsError:
            # Another instance created it first
            pass
        except HttpResponseError as e:
            # Blob exists and is leased by another instance
            if getattr(e, "error_code", None) == LEASE_ID_MISSING:
                return
            raise _translate_azure_error(e, handle.blob_name) from e
        except AzureError as e:
            raise _translate_azure_error(e, handle.blob_name) from e

    async def close(self) -> None:
        await self.container.close()
        if self._credential is not None:
            await self._credential.close()


@dataclass
class _MemoryObject:
    lease_id: Optional[str] = None
    lease_expires_at: float = 0.0


class InMemoryLeaseStore(LeaseStore):
    """
    Process-local lease store.

    Check-and-set of a lease happens without awaiting in between, so it is
    atomic on a single event loop. Leases expire once the clock reaches
    acquisition time plus duration.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.objects: Dict[str, _MemoryObject] = {}
        self.container_created = False
        self.create_container_calls = 0
        self.create_object_calls = 0

    async def create_container_if_not_exists(self) -> None:
        await asyncio.sleep(0)
        self.create_container_calls += 1
        self.container_created = True

    def get_object(self, name: str) -> str:
        return name

    async def acquire_lease(self, handle: str, duration_seconds: int) -> str:
        await asyncio.sleep(0)
        obj = self.objects.get(handle)
        if obj is None:
            raise BlobNotFoundError(f"Lease blob '{handle}' not found", error_code=BLOB_NOT_FOUND)

        now = self.clock()
        if obj.lease_id is not None and now < obj.lease_expires_at:
            raise LeaseContentionError(
                f"Lease blob '{handle}' is already leased",
                error_code=LEASE_ALREADY_PRESENT
            )

        obj.lease_id = str(uuid.uuid4())
        obj.lease_expires_at = now + duration_seconds
        return obj.lease_id

    async def release_lease(self, handle: str, lease_id: str) -> None:
        await asyncio.sleep(0)
        obj = self.objects.get(handle)
        if obj is None:
            raise StoreUnavailableError(f"Lease blob '{handle}' not found", error_code=BLOB_NOT_FOUND)
        if obj.lease_id != lease_id:
            raise StoreUnavailableError(
                f"Lease id mismatch for blob '{handle}'",
                error_code="LeaseIdMismatchWithLeaseOperation"
            )
        obj.lease_id = None
        obj.lease_expires_at = 0.0

    async def object_exists(self, handle: str) -> bool:
        await asyncio.sleep(0)
        return handle in self.objects

    async def create_empty_object(self, handle: str) -> None:
        await asyncio.sleep(0)
        self.create_object_calls += 1
        self.objects.setdefault(handle, _MemoryObject())

    def is_leased(self, name: str) -> bool:
        obj = self.objects.get(name)
        return bool(obj and obj.lease_id is not None and self.clock() < obj.lease_expires_at)
