from __future__ import annotations

import asyncio

import pytest

from rolecounter.errors import FetchFailed
from rolecounter.membership import MembershipResolver
from rolecounter.models import UNKNOWN_ROLE_NAME


def test_roster_fetched_once_then_trusted(roster) -> None:
    roster.add_role("g1", "r1", "VIP", 5)
    resolver = MembershipResolver(roster)

    async def scenario():
        first = await resolver.count("g1", "r1")
        roster.set_count("g1", "r1", 6)
        second = await resolver.count("g1", "r1")
        return first, second

    assert asyncio.run(scenario()) == (5, 6)
    assert roster.fetch_calls["g1"] == 1
    assert resolver.is_warm("g1")


def test_resolve_returns_names(roster) -> None:
    roster.add_role("g1", "r1", "VIP", 5)
    roster.guild_names["g1"] = "Sigrid Fans"
    snapshot = asyncio.run(MembershipResolver(roster).resolve("g1", "r1"))

    assert snapshot.count == 5
    assert snapshot.group_name == "VIP"
    assert snapshot.community_name == "Sigrid Fans"
    assert snapshot.found


def test_empty_roster_is_fetched_again(roster) -> None:
    roster.add_role("g1", "r1", "VIP", 0)
    roster.members["g1"] = 0
    resolver = MembershipResolver(roster)

    async def scenario():
        await resolver.count("g1", "r1")
        await resolver.count("g1", "r1")

    asyncio.run(scenario())
    assert roster.fetch_calls["g1"] == 2
    assert not resolver.is_warm("g1")


def test_fetch_failure_raises_and_recovers(roster) -> None:
    roster.add_role("g1", "r1", "VIP", 5)
    roster.failing.add("g1")
    resolver = MembershipResolver(roster)

    with pytest.raises(FetchFailed) as info:
        asyncio.run(resolver.count("g1", "r1"))
    assert info.value.community_id == "g1"
    assert isinstance(info.value.cause, ConnectionError)

    roster.failing.clear()
    assert asyncio.run(resolver.count("g1", "r1")) == 5
    assert roster.fetch_calls["g1"] == 2


def test_fetch_timeout_is_fetch_failed(roster) -> None:
    roster.add_role("g1", "r1", "VIP", 5)
    roster.fetch_delay = 0.5
    resolver = MembershipResolver(roster, fetch_timeout=0.01)

    with pytest.raises(FetchFailed):
        asyncio.run(resolver.count("g1", "r1"))


def test_missing_role_counts_as_zero_but_is_flagged(roster) -> None:
    roster.members["g1"] = 10
    snapshot = asyncio.run(MembershipResolver(roster).resolve("g1", "deleted"))

    assert snapshot.count == 0
    assert snapshot.group_name == UNKNOWN_ROLE_NAME
    assert not snapshot.found


def test_forced_refresh_and_invalidate(roster) -> None:
    roster.add_role("g1", "r1", "VIP", 5)
    resolver = MembershipResolver(roster)

    async def scenario():
        await resolver.count("g1", "r1")
        await resolver.refresh("g1")
        resolver.invalidate("g1")
        assert not resolver.is_warm("g1")
        await resolver.count("g1", "r1")
        await resolver.count("g1", "r1")

    asyncio.run(scenario())
    assert roster.fetch_calls["g1"] == 3


def test_concurrent_counts_share_one_fetch(roster) -> None:
    roster.add_role("g1", "r1", "VIP", 5)
    roster.add_role("g1", "r2", "Mods", 2)
    roster.fetch_delay = 0.01
    resolver = MembershipResolver(roster)

    async def scenario():
        return await asyncio.gather(resolver.count("g1", "r1"), resolver.count("g1", "r2"))

    assert asyncio.run(scenario()) == [5, 2]
    assert roster.fetch_calls["g1"] == 1


def test_warm_all_reports_successes(roster) -> None:
    roster.add_role("g1", "r1", "VIP", 5)
    roster.add_role("g2", "r1", "VIP", 5)
    roster.failing.add("g2")
    resolver = MembershipResolver(roster)

    assert asyncio.run(resolver.warm_all(["g1", "g2"])) == 1
    assert resolver.is_warm("g1")
    assert not resolver.is_warm("g2")


def test_roster_age_tracks_last_fetch(roster) -> None:
    roster.add_role("g1", "r1", "VIP", 5)
    resolver = MembershipResolver(roster)
    assert resolver.roster_age("g1") is None

    asyncio.run(resolver.count("g1", "r1"))
    age = resolver.roster_age("g1")
    assert age is not None and 0 <= age < 5

    resolver.invalidate("g1")
    assert resolver.roster_age("g1") is None
