"""Per-job source registry and identifier ownership."""
from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Iterable

import structlog

from ..net import NetGuards
from .base import Capability, RecordSource
from .familysearch import FamilySearchSource
from .freebmd import FreeBMDSource
from .geni import GeniSource

if TYPE_CHECKING:
    from ..config import EngineSettings

logger = structlog.get_logger(__name__)


class SourceRegistry:
    """The adapters one job may use, in preference order.

    Also records which provider produced each person identifier so tree
    lookups for that identifier go back to the same provider.
    """

    def __init__(self, sources: Iterable[RecordSource], guards: NetGuards | None = None) -> None:
        self._sources: list[RecordSource] = list(sources)
        self.guards = guards or NetGuards()
        self._owners: dict[str, str] = {}
        self._disabled: dict[str, str] = {}

    @classmethod
    def for_job(cls, settings: EngineSettings, clock=time.monotonic, sleep=asyncio.sleep) -> SourceRegistry:
        """Fresh adapters, and so fresh rate-limit state, for one job."""
        guards = NetGuards(clock=clock, sleep=sleep)

        def guard_for(source_cls):
            key = source_cls.name.lower()
            return guards.get(key, settings.rate_limits.get(key, source_cls.default_rate_limit))

        sources: list[RecordSource] = [
            FamilySearchSource(access_token=settings.familysearch_token, guard=guard_for(FamilySearchSource)),
            GeniSource(access_token=settings.geni_token, guard=guard_for(GeniSource)),
            FreeBMDSource(guard=guard_for(FreeBMDSource)),
        ]
        registry = cls(sources, guards)
        logger.info(
            "sources.registry_built",
            available=[s.name for s in registry.available()],
            configured=[s.name for s in sources],
        )
        return registry

    @property
    def sources(self) -> list[RecordSource]:
        return list(self._sources)

    def get(self, name: str) -> RecordSource | None:
        for source in self._sources:
            if source.name.lower() == (name or "").lower():
                return source
        return None

    def available(self, capability: Capability | None = None) -> list[RecordSource]:
        """Adapters currently usable, optionally filtered by capability."""
        out = []
        for source in self._sources:
            if source.name in self._disabled or not source.is_available():
                continue
            if capability is not None and capability not in source.capabilities:
                continue
            out.append(source)
        return out

    def disable(self, name: str, reason: str) -> None:
        """Take an adapter out of service for the rest of the job."""
        self._disabled[name] = reason
        source = self.get(name)
        guard = getattr(source, "guard", None)
        if guard is not None:
            guard.disable(reason)
        else:
            logger.warning("source.disabled", source=name, reason=reason)

    # ------------------------------------------------------------------
    # Identifier ownership
    # ------------------------------------------------------------------

    def claim(self, person_id: str, provider: str) -> None:
        if person_id and provider:
            self._owners.setdefault(person_id, provider)

    def owner_of(self, person_id: str) -> str | None:
        return self._owners.get(person_id)

    def tree_source_for(self, person_id: str, fallback: str = "") -> RecordSource | None:
        """The available tree-capable adapter that owns ``person_id``."""
        name = self._owners.get(person_id) or fallback
        source = self.get(name) if name else None
        if source is None or source.name in self._disabled or not source.is_available():
            return None
        if Capability.TREE not in source.capabilities:
            return None
        return source

    def report_status(self) -> dict:
        status = self.guards.report_status()
        for name, reason in self._disabled.items():
            status.setdefault(name.lower(), {})["disabled_reason"] = reason
        return status

    async def close(self) -> None:
        for source in self._sources:
            close = getattr(source, "close", None)
            if close is not None:
                await close()

    async def __aenter__(self) -> SourceRegistry:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False
