from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class QueryCache(Protocol):
    async def get(self, key: str) -> Any | None:
        ...

    async def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        ...

    async def remove(self, key: str) -> None:
        ...


class NoOpQueryCache:
    """Cache policy that stores nothing.

    ``get`` always misses, so every read goes to the database; ``set`` and
    ``remove`` are accepted and dropped. A real cache should wrap the paginated
    executor rather than live inside it.
    """

    async def get(self, key: str) -> Any | None:
        logger.debug("cache_miss key=%s", key)
        return None

    async def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        return None

    async def remove(self, key: str) -> None:
        return None


def cache_key(*parts: Any) -> str:
    return ":".join(str(part) for part in parts if part is not None and str(part) != "")
