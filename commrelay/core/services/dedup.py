"""
Deduplication gate with configurable backends.

A request is identified by the SHA-256 fingerprint of
``channel:recipient:body``. The first request with a given fingerprint
reserves it for ``DEDUP_TTL_SECONDS`` (24 hours by default); any further
request with the same fingerprint inside that window is a duplicate.

Backends:
    RedisBackend: atomic ``SET NX EX`` on the shared cache.
    MemoryBackend: process-local dictionary, for single-instance runs and tests.
"""

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from commrelay.core.config import redis_logger, router_logger, settings
from commrelay.core.enums import Channel, DedupFailurePolicy
from commrelay.core.exceptions.types import CacheUnavailableException
from commrelay.core.services.redis_service import RedisService

DEDUP_KEY_PREFIX = "dedup"


def fingerprint(channel: Channel | str, recipient: str, body: str) -> str:
    """
    Compute the deduplication fingerprint of a request.

    Args:
        channel: Delivery channel.
        recipient: Email address or phone number.
        body: Message body.

    Returns:
        Lowercase hex SHA-256 digest of ``"{channel}:{recipient}:{body}"``.
    """
    channel_value = channel.value if isinstance(channel, Channel) else channel
    raw = f"{channel_value}:{recipient}:{body}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def dedup_key(fp: str) -> str:
    return f"{DEDUP_KEY_PREFIX}:{fp}"


@dataclass
class Reservation:
    """
    Result of a reservation attempt.

    Attributes:
        already_reserved: True if the fingerprint was reserved by an earlier
            request inside the TTL window (or treated as such by the
            fail-closed policy).
        cache_error: Description of the cache failure the answer was
            derived from, None when the cache answered.
    """

    already_reserved: bool
    cache_error: str | None = None


class DedupBackend(ABC):
    """
    Abstract base class for deduplication cache backends.

    Implementations must provide an atomic set-if-absent with expiry and
    raise ``CacheUnavailableException`` when the cache cannot answer.
    """

    @abstractmethod
    async def set_if_absent(self, key: str, ttl: int) -> bool:
        """
        Store ``key`` with expiry ``ttl`` seconds unless it already exists.

        Returns:
            True if the key was stored, False if it already existed.
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a reservation. Missing keys are ignored."""
        pass


class MemoryBackend(DedupBackend):
    """
    In-memory deduplication backend using a dictionary.

    Note:
        Data is lost on application restart.
        Not suitable for multi-process or multi-instance deployments.
    """

    def __init__(self):
        self._store: dict[str, datetime] = {}

    async def set_if_absent(self, key: str, ttl: int) -> bool:
        now = datetime.now(timezone.utc)
        expires_at = self._store.get(key)
        if expires_at is not None and now < expires_at:
            return False

        self._store[key] = now + timedelta(seconds=ttl)
        self._cleanup_expired(now)
        return True

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def _cleanup_expired(self, now: datetime) -> None:
        expired = [key for key, expires_at in self._store.items() if now >= expires_at]
        for key in expired:
            del self._store[key]

    def clear(self) -> None:
        """Drop every reservation. Used by tests."""
        self._store.clear()


class RedisBackend(DedupBackend):
    """Redis-backed deduplication using ``SET key 1 NX EX ttl``."""

    def __init__(self, redis: type[RedisService] = RedisService):
        self._redis = redis

    async def set_if_absent(self, key: str, ttl: int) -> bool:
        return await self._redis.set_if_not_exists(key, "1", ttl=ttl)

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)


class DeduplicationGate:
    """
    Reserves request fingerprints in the deduplication cache.

    When the cache is unavailable the answer follows ``failure_policy``:
    ``open`` lets the request through, ``closed`` reports it as a duplicate.
    The cache error is logged either way.
    """

    def __init__(
        self,
        backend: DedupBackend,
        ttl: int = settings.DEDUP_TTL_SECONDS,
        failure_policy: DedupFailurePolicy = DedupFailurePolicy(
            settings.DEDUP_FAILURE_POLICY
        ),
    ):
        self.backend = backend
        self.ttl = ttl
        self.failure_policy = failure_policy

    async def reserve(self, fp: str) -> Reservation:
        """
        Reserve a fingerprint.

        Args:
            fp: Fingerprint from :func:`fingerprint`.

        Returns:
            Reservation telling whether the fingerprint was already reserved.
        """
        key = dedup_key(fp)
        try:
            stored = await self.backend.set_if_absent(key, self.ttl)
        except CacheUnavailableException as e:
            if self.failure_policy == DedupFailurePolicy.CLOSED:
                router_logger.error(
                    f"Deduplication cache unavailable, treating {key} as duplicate: {e.message}"
                )
                return Reservation(already_reserved=True, cache_error=e.message)
            router_logger.warning(
                f"Deduplication cache unavailable, allowing {key} through: {e.message}"
            )
            return Reservation(already_reserved=False, cache_error=e.message)

        redis_logger.debug(f"Dedup reservation {key}: stored={stored}")
        return Reservation(already_reserved=not stored)

    async def release(self, fp: str) -> None:
        """
        Drop a reservation made by this request.

        Used when the request could not be enqueued, so that a resubmission
        is not reported as a duplicate. Cache errors are logged.
        """
        key = dedup_key(fp)
        try:
            await self.backend.delete(key)
        except CacheUnavailableException as e:
            router_logger.warning(f"Failed to release reservation {key}: {e.message}")


def build_dedup_backend(backend: str = settings.DEDUP_BACKEND) -> DedupBackend:
    """
    Create the deduplication backend named by ``DEDUP_BACKEND``.

    Args:
        backend: ``"redis"`` or ``"memory"``.

    Returns:
        The backend instance.
    """
    if backend == "memory":
        return MemoryBackend()
    if backend == "redis":
        return RedisBackend()
    raise ValueError(f"Unknown deduplication backend: {backend}")


__all__ = [
    "DEDUP_KEY_PREFIX",
    "DedupBackend",
    "DeduplicationGate",
    "MemoryBackend",
    "RedisBackend",
    "Reservation",
    "build_dedup_backend",
    "dedup_key",
    "fingerprint",
]
