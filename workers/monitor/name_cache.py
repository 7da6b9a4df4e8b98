"""
Agent display-name cache.

Names are resolved without network I/O from three tiers: a short-lived
per-agent cache, the roster refreshed from Zendesk every few hours, and the
display names in configuration. Unresolvable agents fall back to their id.
"""

import time
from typing import Callable, Dict, Optional

from agent_status.config import ConfigurationStore
from agent_status.gateway.zendesk_client import DirectoryClient
from agent_status.models import NameCacheEntry
from agent_status.observability import get_logger


class NameCache:
    """Resolves agent ids to display names for metric labels."""

    def __init__(
        self,
        directory: DirectoryClient,
        store: ConfigurationStore,
        refresh_interval: float = 4 * 3600.0,
        positive_ttl: float = 3600.0,
        negative_ttl: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the name cache.

        Args:
            directory: Client used to fetch the roster
            store: Configuration store supplying configured display names
            refresh_interval: Seconds between roster refreshes
            positive_ttl: Lifetime of a cached name
            negative_ttl: Lifetime of a cached miss; shorter than positive_ttl
            clock: Monotonic clock
        """
        self.directory = directory
        self.store = store
        self.refresh_interval = refresh_interval
        self.positive_ttl = positive_ttl
        self.negative_ttl = negative_ttl
        self.clock = clock
        self.logger = get_logger("monitor.name_cache")

        self._entries: Dict[int, NameCacheEntry] = {}
        self._roster: Dict[int, str] = {}
        self._last_refresh: Optional[float] = None

    @property
    def roster_size(self) -> int:
        return len(self._roster)

    @property
    def last_refresh(self) -> Optional[float]:
        return self._last_refresh

    def is_refresh_due(self) -> bool:
        if self._last_refresh is None:
            return True
        return self.clock() - self._last_refresh >= self.refresh_interval

    async def refresh_if_due(self) -> bool:
        """
        Refresh the roster when the refresh interval has elapsed.

        On failure the existing roster is kept and the refresh is retried on
        the next call.

        Returns:
            True if the roster was refreshed, False otherwise
        """
        if not self.is_refresh_due():
            return False

        self.logger.info("Refreshing agent names cache")
        try:
            agents = await self.directory.list_agents()
        except Exception as e:
            self.logger.warning("Failed to refresh agent names cache, will retry later", error=str(e))
            return False

        self._roster = {agent.id: agent.name for agent in agents}
        self._last_refresh = self.clock()
        self.logger.info("Refreshed agent names cache", count=len(self._roster))
        return True

    def entry(self, agent_id: int) -> Optional[NameCacheEntry]:
        """Return the per-agent cache entry, if any."""
        return self._entries.get(agent_id)

    def lookup(self, agent_id: int) -> str:
        """
        Resolve an agent's display name.

        Args:
            agent_id: Zendesk user id

        Returns:
            Display name, or the stringified id when none is known
        """
        now = self.clock()
        entry = self._entries.get(agent_id)
        if entry is not None and not entry.is_expired(now):
            return entry.name if entry.name is not None else str(agent_id)

        name = self._roster.get(agent_id) or self.store.get_agent_display_name(agent_id)
        if name:
            self._entries[agent_id] = NameCacheEntry(agent_id=agent_id, name=name, expires_at=now + self.positive_ttl)
            return name

        self.logger.debug("No display name found for agent", agent_id=agent_id)
        self._entries[agent_id] = NameCacheEntry(agent_id=agent_id, name=None, expires_at=now + self.negative_ttl)
        return str(agent_id)
