"""In-memory binding store backed by an injected persistence port."""

from __future__ import annotations

import dataclasses
import logging
from typing import Dict, Iterable, List, Optional, Protocol

from rolecounter.errors import DuplicateTarget, NotFound
from rolecounter.models import Binding


class BindingPersistence(Protocol):
    """Load-on-start, save-on-mutation contract for the binding set."""

    def load_bindings(self) -> List[Binding]:
        ...

    def save_bindings(self, bindings: Iterable[Binding]) -> None:
        ...


class BindingStore:
    """
    Holds every (guild, role) -> channel binding for the process.

    Mutations made through ``upsert`` and ``remove`` are written through the
    persistence port immediately. ``record_applied_label`` only touches memory
    since applied labels are never persisted.
    """

    def __init__(self, persistence: Optional[BindingPersistence] = None):
        self._persistence = persistence
        # community_id -> group_id -> Binding
        self._bindings: Dict[str, Dict[str, Binding]] = {}
        if persistence is not None:
            for binding in persistence.load_bindings():
                self._insert(binding)

    # ---------------------------
    # Queries
    # ---------------------------

    def get_all(self) -> List[Binding]:
        return [
            binding
            for community in self._bindings.values()
            for binding in community.values()
        ]

    def get(self, community_id: str, group_id: str) -> Binding:
        binding = self.find(community_id, group_id)
        if binding is None:
            raise NotFound(community_id, group_id)
        return binding

    def find(self, community_id: str, group_id: str) -> Optional[Binding]:
        return self._bindings.get(community_id, {}).get(group_id)

    def for_community(self, community_id: str) -> List[Binding]:
        return list(self._bindings.get(community_id, {}).values())

    def community_ids(self) -> List[str]:
        return [cid for cid, groups in self._bindings.items() if groups]

    def __len__(self) -> int:
        return sum(len(groups) for groups in self._bindings.values())

    # ---------------------------
    # Mutations
    # ---------------------------

    def upsert(self, binding: Binding) -> None:
        self._check_target(binding)
        previous = self.find(binding.community_id, binding.group_id)
        self._insert(binding)
        try:
            self._save()
        except Exception:
            if previous is not None:
                self._insert(previous)
            else:
                self._discard(binding.community_id, binding.group_id)
            raise
        logging.info(
            f"[Bindings] Stored role {binding.group_id} -> channel {binding.channel_id} "
            f"in guild {binding.community_id}."
        )

    def remove(self, community_id: str, group_id: str) -> Binding:
        groups = self._bindings.get(community_id)
        if not groups or group_id not in groups:
            raise NotFound(community_id, group_id)
        removed = self._discard(community_id, group_id)
        try:
            self._save()
        except Exception:
            self._insert(removed)
            raise
        logging.info(f"[Bindings] Removed role {group_id} from guild {community_id}.")
        return removed

    def record_applied_label(self, community_id: str, group_id: str, label: str) -> None:
        current = self.get(community_id, group_id)
        self._bindings[community_id][group_id] = dataclasses.replace(
            current, last_applied_label=label
        )

    # ---------------------------
    # Internal helpers
    # ---------------------------

    def _insert(self, binding: Binding) -> None:
        self._bindings.setdefault(binding.community_id, {})[binding.group_id] = binding

    def _discard(self, community_id: str, group_id: str) -> Binding:
        groups = self._bindings[community_id]
        removed = groups.pop(group_id)
        if not groups:
            del self._bindings[community_id]
        return removed

    def _check_target(self, binding: Binding) -> None:
        for other in self._bindings.get(binding.community_id, {}).values():
            if other.group_id != binding.group_id and other.channel_id == binding.channel_id:
                raise DuplicateTarget(binding.community_id, binding.channel_id, other.group_id)

    def _save(self) -> None:
        if self._persistence is not None:
            self._persistence.save_bindings(self.get_all())

