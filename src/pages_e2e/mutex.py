"""Mutual exclusion for remote project reconfiguration.

Concurrent runs against the same remote project would race on its
configuration: one run could reconfigure the project between another
run's reconfiguration and its deploy hook firing. Runs therefore hold a
lease keyed by (API host, account, project) across that critical section.

The lease is not held while creating deploy hooks (branch-scoped) or while
polling deployments (read-only).

Release failures are logged and never raised. A crash between acquire and
release leaves a stuck lease; lease expiry is the transport's concern.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import quote

import httpx

from .errors import MutexError, transform_response_into_error

logger = logging.getLogger(__name__)

DEFAULT_ACQUIRE_TIMEOUT_SECONDS = 600.0
DEFAULT_ACQUIRE_RETRY_INTERVAL_SECONDS = 2.0


def mutex_key(api_host: str, account_id: str, project_name: str) -> str:
    """Derive the lease key for a remote project, URI-component encoded."""
    return quote(f"{api_host}:{account_id}:{project_name}", safe="")


@dataclass(frozen=True)
class Lease:
    """A held mutex."""

    key: str
    lease_id: str


class MutexTransport(Protocol):
    """Where leases live."""

    async def acquire(self, key: str) -> Lease: ...

    async def release(self, lease: Lease) -> None: ...


class InProcessMutexTransport:
    """Leases backed by one asyncio.Lock per key.

    Serializes runs within one process only.
    """

    def __init__(self, acquire_timeout_seconds: float = DEFAULT_ACQUIRE_TIMEOUT_SECONDS) -> None:
        self._acquire_timeout = acquire_timeout_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, str] = {}
        self._counter = 0

    async def acquire(self, key: str) -> Lease:
        lock = self._locks.setdefault(key, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._acquire_timeout)
        except TimeoutError as e:
            raise MutexError(f"Timeout acquiring mutex for {key}") from e

        self._counter += 1
        lease = Lease(key=key, lease_id=str(self._counter))
        self._holders[key] = lease.lease_id
        return lease

    async def release(self, lease: Lease) -> None:
        lock = self._locks.get(lease.key)
        if lock is None or not lock.locked():
            raise MutexError(f"Mutex for {lease.key} is not held")
        if self._holders.get(lease.key) != lease.lease_id:
            raise MutexError(f"Lease {lease.lease_id} does not hold the mutex for {lease.key}")
        del self._holders[lease.key]
        lock.release()

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


class HttpMutexTransport:
    """Leases held by a remote lease service.

    Protocol:
        POST   {base}/mutexes/{key}             -> 200 {"lease_id": ...}, 409 if held
        DELETE {base}/mutexes/{key}/{lease_id}  -> 2xx
    A held mutex is retried at a fixed interval until the acquire timeout.
    """

    def __init__(
        self,
        *,
        base_url: str,
        http_client: httpx.AsyncClient,
        acquire_timeout_seconds: float = DEFAULT_ACQUIRE_TIMEOUT_SECONDS,
        retry_interval_seconds: float = DEFAULT_ACQUIRE_RETRY_INTERVAL_SECONDS,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = http_client
        self._acquire_timeout = acquire_timeout_seconds
        self._retry_interval = retry_interval_seconds

    async def acquire(self, key: str) -> Lease:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._acquire_timeout
        url = f"{self._base_url}/mutexes/{key}"

        while True:
            try:
                response = await self._client.post(url)
            except httpx.HTTPError as e:
                raise MutexError(f"Could not acquire mutex for {key}: {e}") from e

            if response.status_code != 409:
                break

            if loop.time() + self._retry_interval > deadline:
                raise MutexError(f"Timeout acquiring mutex for {key}")
            logger.debug("Mutex is held, retrying", extra={"mutex_key": key})
            await asyncio.sleep(self._retry_interval)

        if not response.is_success:
            raise MutexError(
                f"Could not acquire mutex for {key}.\n"
                f"Status: {response.status_code}\nBody: {response.text}"
            )

        try:
            lease_id = response.json()["lease_id"]
        except (ValueError, KeyError, TypeError) as e:
            raise MutexError(f"Invalid mutex response for {key}: {response.text}") from e

        return Lease(key=key, lease_id=str(lease_id))

    async def release(self, lease: Lease) -> None:
        url = f"{self._base_url}/mutexes/{lease.key}/{lease.lease_id}"
        response = await self._client.delete(url)
        if not response.is_success:
            raise transform_response_into_error(
                response, response.text, f"Could not release mutex for {lease.key}."
            )


class MutexGate:
    """Serializes critical sections per mutex key.

    Usage:
        async with gate.hold(mutex_key(host.api, account_id, project_name)):
            await reconciler.reconcile(...)
            deployment_id = await hooks.fire(hook_id)
    """

    def __init__(self, transport: MutexTransport) -> None:
        self._transport = transport

    async def acquire(self, key: str) -> Lease:
        logger.info("Acquiring mutex...", extra={"mutex_key": key})
        lease = await self._transport.acquire(key)
        logger.info("Acquired mutex", extra={"mutex_key": key, "lease_id": lease.lease_id})
        return lease

    async def release(self, lease: Lease) -> None:
        """Release a lease; failures are logged, never raised."""
        logger.info("Releasing mutex...", extra={"mutex_key": lease.key})
        try:
            await self._transport.release(lease)
        except Exception as e:
            logger.warning(
                "Could not release mutex",
                extra={"mutex_key": lease.key, "lease_id": lease.lease_id, "error": str(e)},
            )
            return
        logger.info("Released mutex", extra={"mutex_key": lease.key})

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[Lease]:
        lease = await self.acquire(key)
        try:
            yield lease
        finally:
            await self.release(lease)
