"""Active provider lookup with a TTL cache"""
import logging
import time
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from facematch.config import PROVIDER_CACHE_TTL_SECONDS
from facematch.exceptions import ConfigurationError
from facematch.schemas import ProviderConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TTLCache(Generic[T]):
    """Single cached value that goes stale ttl seconds after it was stored."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._value: Optional[T] = None
        self._stored_at: Optional[float] = None

    def get(self) -> Optional[T]:
        """Return the value if it is still fresh, else None."""
        if self._stored_at is None:
            return None
        if self._clock() - self._stored_at >= self.ttl:
            return None
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        self._stored_at = self._clock()

    def clear(self) -> None:
        self._value = None
        self._stored_at = None


class ProviderRegistry:
    """
    Holds the single active and enabled provider config.

    The config is read through loader at most once per TTL window. The cached
    ProviderConfig is frozen, so concurrent readers can share it; concurrent
    refreshes simply overwrite each other with the same data.

    Absence is not cached: while no provider is active every call asks the
    store again, so activating one takes effect immediately.
    """

    def __init__(
        self,
        loader: Callable[[], Awaitable[Optional[ProviderConfig]]],
        ttl: float = PROVIDER_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._cache: TTLCache[ProviderConfig] = TTLCache(ttl, clock=clock)

    async def get_active(self) -> Optional[ProviderConfig]:
        """Return the active provider, or None when the feature is unavailable."""
        cached = self._cache.get()
        if cached is not None:
            return cached

        provider = await self._loader()
        if provider is None:
            logger.warning("No active face matching provider found")
            return None

        self._cache.set(provider)
        logger.debug(f"Loaded active provider {provider.name} ({provider.provider_type.value})")
        return provider

    async def require_active(self) -> ProviderConfig:
        """
        Like get_active, for callers that cannot proceed without a provider.

        Raises:
            ConfigurationError: If no provider is active and enabled
        """
        provider = await self.get_active()
        if provider is None:
            raise ConfigurationError("No active face matching provider configured")
        return provider

    def invalidate(self) -> None:
        """Forget the cached provider so the next call reloads it."""
        self._cache.clear()
