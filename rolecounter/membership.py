"""
Membership resolution with a per-guild roster cache.

Staleness contract: a guild's roster is fetched in full at most once per
process lifetime (or again when it is seen empty, or after ``invalidate``).
After that the cache is trusted; keeping it current is the job of the
gateway's member events, not of this resolver. Counts can therefore lag
reality by whatever the push stream misses, which is accepted to stay within
rate limits.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Protocol

from rolecounter.errors import FetchFailed
from rolecounter.models import UNKNOWN_ROLE_NAME, GroupSnapshot

DEFAULT_FETCH_TIMEOUT = 60.0


class RosterSource(Protocol):
    """Read access to guild rosters, as provided by the chat client."""

    async def fetch_roster(self, community_id: str) -> None:
        """Fetch every member of the guild into the client cache."""
        ...

    def roster_size(self, community_id: str) -> int:
        ...

    def group_member_count(self, community_id: str, group_id: str) -> Optional[int]:
        """Members holding the role, or None when the role does not exist."""
        ...

    def group_name(self, community_id: str, group_id: str) -> Optional[str]:
        ...

    def community_name(self, community_id: str) -> str:
        ...


@dataclass
class RosterEntry:
    fetched_at: float
    size: int

    def age(self) -> float:
        return time.monotonic() - self.fetched_at


class MembershipResolver:
    def __init__(self, source: RosterSource, fetch_timeout: float = DEFAULT_FETCH_TIMEOUT):
        self.source = source
        self.fetch_timeout = fetch_timeout
        self._rosters: Dict[str, RosterEntry] = {}
        self._fetch_locks: Dict[str, asyncio.Lock] = {}

    # ---------------------------
    # Cache state
    # ---------------------------

    def is_warm(self, community_id: str) -> bool:
        entry = self._rosters.get(community_id)
        return entry is not None and self.source.roster_size(community_id) > 0

    def roster_age(self, community_id: str) -> Optional[float]:
        """Seconds since the guild's last full fetch, or None if never fetched."""
        entry = self._rosters.get(community_id)
        return entry.age() if entry is not None else None

    def invalidate(self, community_id: str) -> None:
        self._rosters.pop(community_id, None)

    async def refresh(self, community_id: str) -> None:
        """Force a full roster fetch for one guild."""
        lock = self._fetch_locks.setdefault(community_id, asyncio.Lock())
        async with lock:
            await self._fetch(community_id)

    async def warm_all(self, community_ids: Iterable[str]) -> int:
        """Warm every listed guild. Returns how many fetches succeeded."""
        warmed = 0
        for community_id in community_ids:
            try:
                await self._ensure_warm(community_id)
                warmed += 1
            except FetchFailed as e:
                logging.error(f"[Roster] {e}")
        return warmed

    # ---------------------------
    # Resolution
    # ---------------------------

    async def resolve(self, community_id: str, group_id: str) -> GroupSnapshot:
        await self._ensure_warm(community_id)
        community_name = self.source.community_name(community_id)
        count = self.source.group_member_count(community_id, group_id)
        name = self.source.group_name(community_id, group_id)
        if count is None or name is None:
            logging.warning(
                f"[Roster] Role {group_id} not found in guild '{community_name}' ({community_id})."
            )
            return GroupSnapshot(
                count=0, group_name=UNKNOWN_ROLE_NAME, community_name=community_name, found=False
            )
        return GroupSnapshot(count=count, group_name=name, community_name=community_name)

    async def count(self, community_id: str, group_id: str) -> int:
        return (await self.resolve(community_id, group_id)).count

    # ---------------------------
    # Internal helpers
    # ---------------------------

    async def _ensure_warm(self, community_id: str) -> None:
        if self.is_warm(community_id):
            return
        entry = self._rosters.get(community_id)
        if entry is not None:
            logging.warning(
                f"[Roster] Guild {community_id} had {entry.size} member(s) {entry.age():.0f}s ago "
                f"but its cache is now empty; fetching again."
            )
        lock = self._fetch_locks.setdefault(community_id, asyncio.Lock())
        async with lock:
            # Another caller may have warmed it while we waited
            if self.is_warm(community_id):
                return
            await self._fetch(community_id)

    async def _fetch(self, community_id: str) -> None:
        try:
            await asyncio.wait_for(self.source.fetch_roster(community_id), self.fetch_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._rosters.pop(community_id, None)
            raise FetchFailed(community_id, e) from e
        size = self.source.roster_size(community_id)
        self._rosters[community_id] = RosterEntry(fetched_at=time.monotonic(), size=size)
        logging.info(f"[Roster] Fetched {size} member(s) for guild {community_id}.")
