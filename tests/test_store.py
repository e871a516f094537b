from __future__ import annotations

import pytest

from rolecounter.errors import ConfigError, DuplicateTarget, NotFound
from rolecounter.models import DEFAULT_TEMPLATE, Binding
from rolecounter.store import BindingStore

from conftest import FakePersistence


class BrokenPersistence(FakePersistence):
    def save_bindings(self, bindings) -> None:
        raise ConfigError("disk full")


def _binding(community: str = "g1", group: str = "r1", channel: str = "c1", **kw) -> Binding:
    return Binding(community_id=community, group_id=group, channel_id=channel, **kw)


def test_upsert_and_get() -> None:
    store = BindingStore()
    store.upsert(_binding())

    binding = store.get("g1", "r1")
    assert binding.channel_id == "c1"
    assert binding.template == DEFAULT_TEMPLATE
    assert binding.last_applied_label is None
    assert len(store) == 1


def test_get_all_groups_by_community() -> None:
    store = BindingStore()
    store.upsert(_binding("g1", "r1", "c1"))
    store.upsert(_binding("g2", "r9", "c9"))
    store.upsert(_binding("g1", "r2", "c2"))

    assert [b.community_id for b in store.get_all()] == ["g1", "g1", "g2"]
    assert {b.group_id for b in store.for_community("g1")} == {"r1", "r2"}
    assert store.for_community("missing") == []


def test_get_missing_raises_not_found() -> None:
    store = BindingStore()
    with pytest.raises(NotFound):
        store.get("g1", "r1")
    assert store.find("g1", "r1") is None


def test_upsert_replaces_existing_binding() -> None:
    store = BindingStore()
    store.upsert(_binding(template="{count}"))
    store.upsert(_binding(template="{role}: {count}"))

    assert len(store) == 1
    assert store.get("g1", "r1").template == "{role}: {count}"


def test_channel_reused_by_other_role_is_rejected() -> None:
    store = BindingStore()
    store.upsert(_binding("g1", "r1", "c1"))

    with pytest.raises(DuplicateTarget) as info:
        store.upsert(_binding("g1", "r2", "c1"))

    assert info.value.owner_group_id == "r1"
    assert store.find("g1", "r2") is None


def test_same_channel_id_in_other_guild_is_allowed() -> None:
    store = BindingStore()
    store.upsert(_binding("g1", "r1", "c1"))
    store.upsert(_binding("g2", "r1", "c1"))
    assert len(store) == 2


def test_remove() -> None:
    store = BindingStore()
    store.upsert(_binding())

    removed = store.remove("g1", "r1")

    assert removed.channel_id == "c1"
    assert store.get_all() == []
    assert store.community_ids() == []
    with pytest.raises(NotFound):
        store.remove("g1", "r1")


def test_record_applied_label_only_touches_label() -> None:
    store = BindingStore()
    store.upsert(_binding(template="{count} members"))

    store.record_applied_label("g1", "r1", "7 members")

    binding = store.get("g1", "r1")
    assert binding.last_applied_label == "7 members"
    assert binding.template == "{count} members"
    assert binding.channel_id == "c1"


def test_record_applied_label_missing_binding() -> None:
    with pytest.raises(NotFound):
        BindingStore().record_applied_label("g1", "r1", "label")


def test_persistence_loaded_on_start_and_saved_on_mutation() -> None:
    persistence = FakePersistence([_binding("g1", "r1", "c1")])
    store = BindingStore(persistence)
    assert store.get("g1", "r1").channel_id == "c1"

    store.upsert(_binding("g1", "r2", "c2"))
    store.record_applied_label("g1", "r2", "3 - Mods")
    store.remove("g1", "r1")

    # record_applied_label is memory only
    assert len(persistence.saved) == 2
    assert [b.group_id for b in persistence.saved[-1]] == ["r2"]


def test_failed_upsert_does_not_save() -> None:
    persistence = FakePersistence([_binding("g1", "r1", "c1")])
    store = BindingStore(persistence)

    with pytest.raises(DuplicateTarget):
        store.upsert(_binding("g1", "r2", "c1"))

    assert persistence.saved == []


def test_failed_save_of_new_binding_leaves_store_unchanged() -> None:
    store = BindingStore(BrokenPersistence())

    with pytest.raises(ConfigError):
        store.upsert(_binding("g1", "r1", "c1"))

    assert store.find("g1", "r1") is None
    assert store.community_ids() == []
    assert len(store) == 0


def test_failed_save_of_replacement_keeps_previous_binding() -> None:
    store = BindingStore(BrokenPersistence([_binding(template="{count}")]))

    with pytest.raises(ConfigError):
        store.upsert(_binding(template="{role}: {count}"))

    assert store.get("g1", "r1").template == "{count}"


def test_failed_save_on_remove_keeps_binding() -> None:
    store = BindingStore(BrokenPersistence([_binding("g1", "r1", "c1")]))

    with pytest.raises(ConfigError):
        store.remove("g1", "r1")

    assert store.get("g1", "r1").channel_id == "c1"
    assert store.community_ids() == ["g1"]
