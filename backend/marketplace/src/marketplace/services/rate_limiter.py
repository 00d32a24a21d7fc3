"""Sliding-window rate limiter.

Each identifier (user email or ``ip:<address>``) owns an ordered list of
request timestamps in milliseconds. A check drops timestamps that have left
the window, denies when the remaining count already reaches the limit, and
otherwise records the new request.

Window state lives behind ``RateLimitStore``:
- InMemoryRateLimitStore: process-local dict, for single-instance deployments
- DynamoDBRateLimitStore: shared across instances, optimistic version check
  per identifier and an ``expires_at`` TTL attribute

Identifiers whose newest request is older than the retention period are
purged by ``RateLimiter.cleanup``, run by a periodic background task and
opportunistically from ``check_limit``.
"""

import asyncio
import math
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, Field

from marketplace.config import (
    RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
    RATE_LIMIT_RETENTION_MS,
    get_rate_limit_backend,
)
from marketplace.models.errors import DependencyError, ErrorCode
from marketplace.services.dynamodb import DynamoDBService, get_dynamodb_service
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)


class RateLimitResult(BaseModel):
    """Outcome of a rate limit check."""

    allowed: bool
    limit: int = Field(..., description="Maximum requests in the window")
    remaining: int = Field(..., ge=0)
    reset_time: int = Field(..., description="Epoch ms when the window frees a slot")
    retry_after: int | None = Field(
        default=None, description="Seconds to wait before retrying (denied only)"
    )


def apply_window(
    timestamps: list[int], now: int, max_requests: int, window_ms: int
) -> tuple[list[int], RateLimitResult]:
    """Evaluate one request against a sliding window.

    Args:
        timestamps: Previous request timestamps (ms), oldest first
        now: Current time (ms)
        max_requests: Requests allowed per window
        window_ms: Window length (ms)

    Returns:
        Tuple of (timestamps to store, result)
    """
    valid = [ts for ts in timestamps if now - ts < window_ms]

    if len(valid) >= max_requests:
        reset_time = (valid[0] if valid else now) + window_ms
        return valid, RateLimitResult(
            allowed=False,
            limit=max_requests,
            remaining=0,
            reset_time=reset_time,
            retry_after=math.ceil((reset_time - now) / 1000),
        )

    valid.append(now)
    return valid, RateLimitResult(
        allowed=True,
        limit=max_requests,
        remaining=max_requests - len(valid),
        reset_time=now + window_ms,
    )


class RateLimitStore(ABC):
    """Storage for per-identifier request timestamps."""

    @abstractmethod
    async def check(
        self, identifier: str, now: int, max_requests: int, window_ms: int
    ) -> RateLimitResult:
        """Atomically apply the window to one identifier and persist it."""

    @abstractmethod
    async def purge(self, cutoff: int) -> int:
        """Delete identifiers with no timestamp after ``cutoff``.

        Returns:
            Number of identifiers removed
        """

    @abstractmethod
    async def reset(self, identifier: str) -> None:
        """Forget all requests of one identifier."""


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local store. Not shared between instances."""

    def __init__(self) -> None:
        self._requests: dict[str, list[int]] = {}

    async def check(
        self, identifier: str, now: int, max_requests: int, window_ms: int
    ) -> RateLimitResult:
        # No await between read and write, so the update is atomic on the loop
        timestamps, result = apply_window(
            self._requests.get(identifier, []), now, max_requests, window_ms
        )
        self._requests[identifier] = timestamps
        return result

    async def purge(self, cutoff: int) -> int:
        removed = 0
        for identifier in list(self._requests):
            valid = [ts for ts in self._requests[identifier] if ts > cutoff]
            if valid:
                self._requests[identifier] = valid
            else:
                del self._requests[identifier]
                removed += 1
        return removed

    async def reset(self, identifier: str) -> None:
        self._requests.pop(identifier, None)

    def __len__(self) -> int:
        return len(self._requests)


class DynamoDBRateLimitStore(RateLimitStore):
    """Shared store in the ``rate-limits`` table.

    Item: ``{identifier, timestamps, version, last_request_at, expires_at}``.
    Writes are conditional on the version read, retried a few times under
    contention. ``expires_at`` (epoch seconds) lets DynamoDB TTL reclaim idle
    identifiers even when no instance runs the sweep.
    """

    TABLE = "rate-limits"
    MAX_ATTEMPTS = 5

    def __init__(
        self,
        db: DynamoDBService | None = None,
        retention_ms: int = RATE_LIMIT_RETENTION_MS,
    ) -> None:
        self._db = db or get_dynamodb_service()
        self._retention_ms = retention_ms

    def _check_sync(
        self, identifier: str, now: int, max_requests: int, window_ms: int
    ) -> RateLimitResult:
        for _ in range(self.MAX_ATTEMPTS):
            item = self._db.get_item(self.TABLE, {"identifier": identifier})
            stored = [int(ts) for ts in item.get("timestamps", [])] if item else []
            version = int(item["version"]) if item else 0

            timestamps, result = apply_window(stored, now, max_requests, window_ms)
            if not result.allowed and item is not None:
                # Nothing recorded on denial
                return result

            new_item: dict[str, Any] = {
                "identifier": identifier,
                "timestamps": timestamps,
                "version": version + 1,
                "last_request_at": timestamps[-1] if timestamps else now,
                "expires_at": (now + self._retention_ms) // 1000,
            }
            if item is None:
                written = self._db.put_item(
                    self.TABLE,
                    new_item,
                    condition_expression="attribute_not_exists(identifier)",
                )
            else:
                written = self._db.put_item(
                    self.TABLE,
                    new_item,
                    condition_expression="#version = :version",
                    expression_attribute_names={"#version": "version"},
                    expression_attribute_values={":version": version},
                )
            if written:
                return result
            logger.debug("Rate limit write conflict for %s, retrying", identifier)

        raise DependencyError(
            ErrorCode.STORAGE_ERROR, details={"operation": "rate_limit_check"}
        )

    async def check(
        self, identifier: str, now: int, max_requests: int, window_ms: int
    ) -> RateLimitResult:
        try:
            return await asyncio.to_thread(
                self._check_sync, identifier, now, max_requests, window_ms
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Rate limit store unavailable: %s", e)
            raise DependencyError(
                ErrorCode.STORAGE_ERROR, details={"operation": "rate_limit_check"}
            ) from e

    def _purge_sync(self, cutoff: int) -> int:
        stale = self._db.scan(self.TABLE, Attr("last_request_at").lte(cutoff))
        removed = 0
        for item in stale:
            # Skip identifiers that received a request since the scan
            if self._db.delete_item(
                self.TABLE,
                {"identifier": item["identifier"]},
                condition_expression="#version = :version",
                expression_attribute_names={"#version": "version"},
                expression_attribute_values={":version": item["version"]},
            ):
                removed += 1
        return removed

    async def purge(self, cutoff: int) -> int:
        return await asyncio.to_thread(self._purge_sync, cutoff)

    async def reset(self, identifier: str) -> None:
        await asyncio.to_thread(self._db.delete_item, self.TABLE, {"identifier": identifier})


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    """Sliding-window limiter over a pluggable store.

    Usage:
        limiter = RateLimiter()
        result = await limiter.check_limit("ip:203.0.113.9", max_requests=5, window_ms=60_000)
        if not result.allowed:
            ...
    """

    def __init__(
        self,
        store: RateLimitStore | None = None,
        *,
        clock: Callable[[], int] = _now_ms,
        retention_ms: int = RATE_LIMIT_RETENTION_MS,
        cleanup_interval_seconds: int = RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
    ) -> None:
        self.store = store if store is not None else InMemoryRateLimitStore()
        self._clock = clock
        self._retention_ms = retention_ms
        self._cleanup_interval_ms = cleanup_interval_seconds * 1000
        self._last_cleanup = clock()
        self._cleanup_task: asyncio.Task[None] | None = None

    async def check_limit(
        self, identifier: str, max_requests: int = 100, window_ms: int = 60_000
    ) -> RateLimitResult:
        """Check and record one request for ``identifier``.

        Args:
            identifier: User email or ``ip:<address>``
            max_requests: Requests allowed per window
            window_ms: Window length in milliseconds

        Returns:
            RateLimitResult; ``retry_after`` is set only when denied
        """
        now = self._clock()
        if now - self._last_cleanup >= self._cleanup_interval_ms:
            await self.cleanup()

        result = await self.store.check(identifier, now, max_requests, window_ms)
        if not result.allowed:
            logger.warning(
                "Rate limit exceeded for %s (limit=%d, retry_after=%ss)",
                identifier,
                max_requests,
                result.retry_after,
            )
        return result

    async def cleanup(self) -> int:
        """Purge identifiers whose requests all fall outside the retention period."""
        now = self._clock()
        self._last_cleanup = now
        removed = await self.store.purge(now - self._retention_ms)
        if removed:
            logger.info("Rate limiter cleanup removed %d identifiers", removed)
        return removed

    async def reset(self, identifier: str) -> None:
        """Clear the window of one identifier (admin override and tests)."""
        await self.store.reset(identifier)

    async def _cleanup_loop(self) -> None:
        interval = self._cleanup_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                await self.cleanup()
            except Exception:
                logger.exception("Rate limiter cleanup failed")

    def start_cleanup(self) -> None:
        """Start the periodic cleanup task on the running loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop_cleanup(self) -> None:
        """Cancel the periodic cleanup task."""
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        try:
            await self._cleanup_task
        except asyncio.CancelledError:
            pass
        self._cleanup_task = None


def create_rate_limit_store() -> RateLimitStore:
    """Build the store selected by RATE_LIMIT_BACKEND."""
    backend = get_rate_limit_backend()
    if backend == "dynamodb":
        return DynamoDBRateLimitStore()
    if backend != "memory":
        logger.warning("Unknown RATE_LIMIT_BACKEND %r, using memory", backend)
    return InMemoryRateLimitStore()
