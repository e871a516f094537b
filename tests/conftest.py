from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set, Tuple

import pytest

from rolecounter import audit
from rolecounter.errors import ChannelNotFound, ChannelUpdateError
from rolecounter.models import Binding


@pytest.fixture(autouse=True)
def _audit_log_in_tmp(tmp_path, monkeypatch):
    monkeypatch.setattr(audit, "AUDIT_LOG_PATH", str(tmp_path / "audit.log"))


class FakeRosterSource:
    def __init__(self) -> None:
        # Remote roster sizes, copied into ``cached`` by fetch_roster
        self.members: Dict[str, int] = {}
        self.cached: Dict[str, int] = {}
        self.roles: Dict[Tuple[str, str], List] = {}
        self.guild_names: Dict[str, str] = {}
        self.fetch_calls: Dict[str, int] = defaultdict(int)
        self.failing: Set[str] = set()
        self.fetch_delay = 0.0

    def add_role(self, community_id: str, group_id: str, name: str, count: int) -> None:
        self.roles[(community_id, group_id)] = [name, count]
        self.members.setdefault(community_id, 10)
        self.guild_names.setdefault(community_id, f"Guild {community_id}")

    def set_count(self, community_id: str, group_id: str, count: int) -> None:
        self.roles[(community_id, group_id)][1] = count

    async def fetch_roster(self, community_id: str) -> None:
        self.fetch_calls[community_id] += 1
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        if community_id in self.failing:
            raise ConnectionError("gateway unavailable")
        self.cached[community_id] = self.members.get(community_id, 0)

    def roster_size(self, community_id: str) -> int:
        return self.cached.get(community_id, 0)

    def group_member_count(self, community_id: str, group_id: str) -> Optional[int]:
        role = self.roles.get((community_id, group_id))
        return role[1] if role is not None else None

    def group_name(self, community_id: str, group_id: str) -> Optional[str]:
        role = self.roles.get((community_id, group_id))
        return role[0] if role is not None else None

    def community_name(self, community_id: str) -> str:
        return self.guild_names.get(community_id, community_id)


class FakeUpdater:
    def __init__(self) -> None:
        self.names: Dict[str, str] = {}
        self.non_voice: Set[str] = set()
        self.errors: Dict[str, ChannelUpdateError] = {}
        self.renames: List[Tuple[str, str]] = []
        self.gate: Optional[asyncio.Event] = None
        self.entered: Optional[asyncio.Event] = None

    def current_label(self, channel_id: str) -> Optional[str]:
        return self.names.get(channel_id)

    def is_renameable(self, channel_id: str) -> bool:
        return channel_id not in self.non_voice

    async def rename(self, channel_id: str, label: str, reason: str) -> None:
        if self.entered is not None:
            self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if channel_id in self.errors:
            raise self.errors[channel_id]
        if channel_id not in self.names:
            raise ChannelNotFound(channel_id)
        self.names[channel_id] = label
        self.renames.append((channel_id, label))


class FakePersistence:
    def __init__(self, bindings: Iterable[Binding] = ()) -> None:
        self.initial = list(bindings)
        self.saved: List[List[Binding]] = []

    def load_bindings(self) -> List[Binding]:
        return list(self.initial)

    def save_bindings(self, bindings: Iterable[Binding]) -> None:
        self.saved.append(list(bindings))


@pytest.fixture
def roster() -> FakeRosterSource:
    return FakeRosterSource()


@pytest.fixture
def updater() -> FakeUpdater:
    return FakeUpdater()
