"""Shared application state guarded by a single lock."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from pydantic import Field

from .config import DEFAULT_POLLING_INTERVAL, MIN_POLLING_INTERVAL
from .models.base import BitbucketModel
from .models.status import MonitoredPipeline, OverallStatus


class Credentials(BitbucketModel):
    username: str
    app_password: str = Field(default="", repr=False)


class PersistedConfig(BitbucketModel):
    """What is written to ``config.json``. The app password is stored separately."""

    username: str | None = None
    monitored_pipelines: list[MonitoredPipeline] = []
    polling_interval_seconds: int = DEFAULT_POLLING_INTERVAL


def coerce_polling_interval(seconds: int) -> int:
    return seconds if seconds >= MIN_POLLING_INTERVAL else DEFAULT_POLLING_INTERVAL


@dataclass
class AppState:
    credentials: Credentials | None = None
    monitored_pipelines: list[MonitoredPipeline] = field(default_factory=list)
    polling_interval_seconds: int = DEFAULT_POLLING_INTERVAL
    last_status: OverallStatus | None = None

    @classmethod
    def from_persisted(cls, config: PersistedConfig, app_password: str = "") -> AppState:
        credentials = None
        if config.username:
            credentials = Credentials(username=config.username, app_password=app_password)
        return cls(
            credentials=credentials,
            monitored_pipelines=list(config.monitored_pipelines),
            polling_interval_seconds=coerce_polling_interval(config.polling_interval_seconds),
        )

    def to_persisted(self) -> PersistedConfig:
        return PersistedConfig(
            username=self.credentials.username if self.credentials else None,
            monitored_pipelines=list(self.monitored_pipelines),
            polling_interval_seconds=self.polling_interval_seconds,
        )


class SharedState:
    """Lock-protected wrapper around :class:`AppState`.

    Every accessor copies data out (or in) under the lock and releases it
    immediately, so no caller ever holds the lock across network I/O.
    """

    def __init__(self, state: AppState | None = None) -> None:
        self._state = state or AppState()
        self._lock = asyncio.Lock()

    async def targets(self) -> tuple[Credentials | None, list[MonitoredPipeline]]:
        async with self._lock:
            return self._state.credentials, list(self._state.monitored_pipelines)

    async def credentials(self) -> Credentials | None:
        async with self._lock:
            return self._state.credentials

    async def set_credentials(self, credentials: Credentials | None) -> None:
        async with self._lock:
            self._state.credentials = credentials

    async def monitored_pipelines(self) -> list[MonitoredPipeline]:
        async with self._lock:
            return list(self._state.monitored_pipelines)

    async def set_monitored_pipelines(self, pipelines: list[MonitoredPipeline]) -> None:
        async with self._lock:
            self._state.monitored_pipelines = list(pipelines)

    async def polling_interval(self) -> int:
        async with self._lock:
            return self._state.polling_interval_seconds

    async def set_polling_interval(self, seconds: int) -> None:
        if seconds < MIN_POLLING_INTERVAL:
            msg = f"Polling interval must be at least {MIN_POLLING_INTERVAL} seconds"
            raise ValueError(msg)
        async with self._lock:
            self._state.polling_interval_seconds = seconds

    async def last_status(self) -> OverallStatus | None:
        async with self._lock:
            return self._state.last_status

    async def swap_status(self, status: OverallStatus) -> OverallStatus | None:
        """Store *status* as current and return the snapshot it replaced."""
        async with self._lock:
            previous = self._state.last_status
            self._state.last_status = status
            return previous

    async def to_persisted(self) -> PersistedConfig:
        async with self._lock:
            return self._state.to_persisted()
