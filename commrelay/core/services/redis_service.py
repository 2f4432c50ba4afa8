"""
Redis service for the deduplication cache.

This module provides a singleton Redis client for async operations. Lookups
used for diagnostics degrade to ``None``/``False`` when Redis misbehaves;
the reservation primitive used by the deduplication gate raises instead, so
the gate can apply its configured failure policy.
"""

from __future__ import annotations

from redis.asyncio import Redis
from redis.exceptions import RedisError

from commrelay.core.config import redis_logger, settings
from commrelay.core.exceptions.types import CacheUnavailableException


class RedisService:
    """
    Singleton Redis service for async Redis operations.

    Attributes:
        _client: The async Redis client instance.
        _url: The Redis connection URL.

    Example:
        >>> await RedisService.init("redis://localhost:6379/0")
        >>> await RedisService.set_if_not_exists("dedup:abc", ttl=86400)
        True
        >>> await RedisService.aclose()
    """

    _client: Redis | None = None
    _url: str = settings.REDIS_URL

    @classmethod
    async def init(cls, url: str | None = None) -> None:
        """
        Initialize the Redis service with the given URL.

        If a client already exists, it is closed before creating a new one.

        Args:
            url: The Redis connection URL. If None, uses settings.REDIS_URL.
        """
        if url is not None:
            cls._url = url

        await cls.aclose()

        try:
            cls._client = Redis.from_url(
                cls._url,
                encoding="utf-8",
                decode_responses=False,  # We handle decoding manually
            )
            redis_logger.info(f"Redis client initialized with URL: {cls._url}")
        except Exception as e:
            redis_logger.error(f"Failed to initialize Redis client: {str(e)}")
            raise

    @classmethod
    async def aclose(cls) -> None:
        """
        Close the Redis client connection.

        Safe to call even if the client is not initialized.
        """
        if cls._client is not None:
            try:
                await cls._client.aclose()
                redis_logger.info("Redis client closed successfully")
            except Exception as e:
                redis_logger.warning(f"Error closing Redis client: {str(e)}")
            finally:
                cls._client = None

    @classmethod
    def is_connected(cls) -> bool:
        return cls._client is not None

    @classmethod
    async def ping(cls) -> bool:
        """
        Ping the Redis server to check connectivity.

        Returns:
            bool: True if ping succeeds, False otherwise.
        """
        if cls._client is None:
            redis_logger.warning("Redis ping attempted but client not initialized")
            return False

        try:
            result = await cls._client.ping()  # type: ignore[misc]
            redis_logger.debug("Redis ping successful")
            return bool(result)
        except Exception as e:
            redis_logger.error(f"Redis ping failed: {str(e)}")
            return False

    @classmethod
    async def get(cls, key: str) -> str | None:
        """
        Get a value from Redis by key.

        Returns:
            The value as a string if found, None otherwise.
        """
        if cls._client is None:
            redis_logger.warning(
                f"Redis get({key}) attempted but client not initialized"
            )
            return None

        try:
            value = await cls._client.get(key)
            if value is not None:
                return value.decode("utf-8") if isinstance(value, bytes) else value
            return None
        except Exception as e:
            redis_logger.error(f"Redis get({key}) failed: {str(e)}")
            return None

    @classmethod
    async def delete(cls, key: str) -> bool:
        """
        Delete a key from Redis.

        Returns:
            bool: True if key was deleted, False if key didn't exist.

        Raises:
            CacheUnavailableException: If the client is not initialized or
                the command fails.
        """
        if cls._client is None:
            redis_logger.warning(
                f"Redis delete({key}) attempted but client not initialized"
            )
            raise CacheUnavailableException("Redis client not initialized")

        try:
            result = await cls._client.delete(key)
        except (RedisError, OSError) as e:
            redis_logger.error(f"Redis delete({key}) failed: {str(e)}")
            raise CacheUnavailableException(f"Redis delete failed: {str(e)}") from e

        deleted = result > 0
        redis_logger.debug(f"Redis delete({key}) result: {deleted}")
        return deleted

    @classmethod
    async def set_if_not_exists(
        cls,
        key: str,
        value: str = "1",
        ttl: int = 24 * 3600,
    ) -> bool:
        """
        Atomically set a value only if the key does not exist, with TTL.

        Uses Redis SET NX EX for an atomic check-and-set with expiration.

        Args:
            key: The key to set.
            value: The value to store. Defaults to "1".
            ttl: Time-to-live in seconds. Defaults to 24 hours.

        Returns:
            bool: True if the key was set (didn't exist), False if it already existed.

        Raises:
            CacheUnavailableException: If the client is not initialized or
                the command fails.
        """
        if cls._client is None:
            redis_logger.warning(
                f"Redis set_if_not_exists({key}) attempted but client not initialized"
            )
            raise CacheUnavailableException("Redis client not initialized")

        try:
            # SET key value NX EX ttl - atomically set if not exists with expiry
            result = await cls._client.set(key, value, nx=True, ex=ttl)
        except (RedisError, OSError) as e:
            redis_logger.error(f"Redis set_if_not_exists({key}) failed: {str(e)}")
            raise CacheUnavailableException(
                f"Redis set_if_not_exists failed: {str(e)}"
            ) from e

        was_set = result is not None
        redis_logger.debug(
            f"Redis set_if_not_exists({key}) result: {was_set}, TTL: {ttl}s"
        )
        return was_set


__all__ = ["RedisService"]
