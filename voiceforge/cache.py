"""Time-boxed per-user artifact cache.

One instance per artifact kind (fingerprint, knowledge map), constructed
once per process and passed to whoever needs it. Entries live in an
ArtifactStore with their write time; a read older than the TTL goes back
to the loader. Concurrent writers for the same user race and the last one
wins; no locking.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Generic, TypeVar

from pydantic import BaseModel

from voiceforge.models import CachedArtifact, utcnow
from voiceforge.storage import ArtifactStore

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)

T = TypeVar("T", bound=BaseModel)


class ArtifactCache(Generic[T]):
    def __init__(
        self,
        store: ArtifactStore,
        name: str,
        model: type[T],
        loader: Callable[[str], Awaitable[T]],
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = utcnow,
        should_persist: Callable[[T], bool] | None = None,
    ) -> None:
        self._store = store
        self._name = name
        self._model = model
        self._loader = loader
        self._ttl = ttl
        self._clock = clock
        self._should_persist = should_persist or (lambda value: True)

    @property
    def name(self) -> str:
        return self._name

    def peek(self, user_id: str) -> tuple[T, datetime] | None:
        """Stored value and its write time, fresh or not. Never loads."""
        artifact = self._store.get_artifact(user_id, self._name)
        if artifact is None:
            return None
        return self._model.model_validate(artifact.payload), artifact.last_updated

    def age(self, last_updated: datetime) -> timedelta:
        return self._clock() - last_updated

    def is_fresh(self, last_updated: datetime) -> bool:
        return self.age(last_updated) < self._ttl

    async def get(self, user_id: str) -> T:
        cached = self.peek(user_id)
        if cached is not None and self.is_fresh(cached[1]):
            logger.info("cache hit artifact=%s user=%s", self._name, user_id)
            return cached[0]

        logger.info(
            "cache %s artifact=%s user=%s",
            "stale" if cached is not None else "miss", self._name, user_id,
        )
        value = await self._loader(user_id)
        if self._should_persist(value):
            self._store.put_artifact(user_id, self._name, CachedArtifact(
                payload=value.model_dump(mode="json"),
                last_updated=self._clock(),
            ))
        return value

    def invalidate(self, user_id: str) -> None:
        self._store.delete_artifact(user_id, self._name)
        logger.info("cache invalidated artifact=%s user=%s", self._name, user_id)

    async def refresh(self, user_id: str) -> T:
        self.invalidate(user_id)
        return await self.get(user_id)
