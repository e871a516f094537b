"""
Config document handling.

The document is YAML (a JSON ``config.json`` from older deployments parses
the same way). Shape::

    token: ""
    clientId: ""
    updateInterval: 60000        # milliseconds
    debounceSeconds: 1
    trackedRoles:
      "<guild id>":
        "<role id>": {channelId: "<channel id>", nameTemplate: "{count} - {role}"}

Older entries may store a bare channel id string instead of the mapping.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Iterable, List, Optional

import yaml

from rolecounter.errors import ConfigError
from rolecounter.models import DEFAULT_TEMPLATE, Binding

DEFAULT_CONFIG_PATH = "config.yaml"
DEFAULT_UPDATE_INTERVAL_MS = 60000
DEFAULT_DEBOUNCE_SECONDS = 1.0
MIN_INTERVAL_SECONDS = 10
MAX_INTERVAL_SECONDS = 3600


def default_document() -> Dict[str, Any]:
    return {
        "token": "",
        "clientId": "",
        "trackedRoles": {},
        "updateInterval": DEFAULT_UPDATE_INTERVAL_MS,
        "debounceSeconds": DEFAULT_DEBOUNCE_SECONDS,
    }


def normalize_entry(value: Any) -> Optional[Dict[str, str]]:
    """
    Return ``{channelId, nameTemplate}`` for a stored role entry.
    Bare strings (and numbers, from hand-edited YAML) are treated as a channel id
    with the default template. Anything unusable returns None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (str, int)):
        return {"channelId": str(value), "nameTemplate": DEFAULT_TEMPLATE}
    if isinstance(value, dict):
        channel_id = value.get("channelId")
        if channel_id is None or channel_id == "":
            return None
        template = value.get("nameTemplate") or DEFAULT_TEMPLATE
        return {"channelId": str(channel_id), "nameTemplate": str(template)}
    return None


class ConfigFile:
    """
    Reads and writes the bot's config document.
    Also serves as the persistence port of ``BindingStore``.
    """

    def __init__(self, path: str = DEFAULT_CONFIG_PATH):
        self.path = path
        self.data: Dict[str, Any] = default_document()
        self.created = False

    # ---------------------------
    # Document I/O
    # ---------------------------

    def load(self) -> Dict[str, Any]:
        """Load the document, writing a default one first if the file is missing."""
        if not os.path.exists(self.path):
            logging.warning(f"{self.path} not found. Writing a default config.")
            self.data = default_document()
            self.write()
            self.created = True
            return self.data

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Could not read {self.path}: {e}") from e

        if not isinstance(loaded, dict):
            raise ConfigError(f"{self.path} did not parse to a mapping.")

        self.data = {**default_document(), **loaded}
        if not isinstance(self.data.get("trackedRoles"), dict):
            logging.warning("trackedRoles is not a mapping; ignoring it.")
            self.data["trackedRoles"] = {}
        return self.data

    def write(self) -> None:
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                yaml.safe_dump(self.data, f, sort_keys=False, allow_unicode=True)
        except OSError as e:
            raise ConfigError(f"Could not write {self.path}: {e}") from e

    # ---------------------------
    # Settings
    # ---------------------------

    @property
    def token(self) -> str:
        return os.environ.get("TOKEN") or str(self.data.get("token") or "")

    @property
    def client_id(self) -> str:
        return str(self.data.get("clientId") or "")

    @property
    def update_interval_ms(self) -> int:
        try:
            value = int(self.data.get("updateInterval", DEFAULT_UPDATE_INTERVAL_MS))
        except (TypeError, ValueError):
            logging.warning("updateInterval is not a number; using the default.")
            return DEFAULT_UPDATE_INTERVAL_MS
        return max(MIN_INTERVAL_SECONDS * 1000, value)

    def set_update_interval(self, seconds: int) -> int:
        if not MIN_INTERVAL_SECONDS <= seconds <= MAX_INTERVAL_SECONDS:
            raise ConfigError(
                f"Interval must be between {MIN_INTERVAL_SECONDS} and {MAX_INTERVAL_SECONDS} seconds."
            )
        self.data["updateInterval"] = seconds * 1000
        self.write()
        return self.data["updateInterval"]

    @property
    def debounce_seconds(self) -> float:
        try:
            return max(0.0, float(self.data.get("debounceSeconds", DEFAULT_DEBOUNCE_SECONDS)))
        except (TypeError, ValueError):
            logging.warning("debounceSeconds is not a number; using the default.")
            return DEFAULT_DEBOUNCE_SECONDS

    # ---------------------------
    # BindingPersistence
    # ---------------------------

    def load_bindings(self) -> List[Binding]:
        bindings: List[Binding] = []
        for guild_id, roles in self.data.get("trackedRoles", {}).items():
            if not isinstance(roles, dict):
                logging.warning(f"trackedRoles entry for guild {guild_id} is not a mapping; skipping.")
                continue
            for role_id, raw in roles.items():
                entry = normalize_entry(raw)
                if entry is None:
                    logging.warning(
                        f"Unusable trackedRoles entry for role {role_id} in guild {guild_id}; skipping."
                    )
                    continue
                bindings.append(
                    Binding(
                        community_id=str(guild_id),
                        group_id=str(role_id),
                        channel_id=entry["channelId"],
                        template=entry["nameTemplate"],
                    )
                )
        return bindings

    def save_bindings(self, bindings: Iterable[Binding]) -> None:
        tracked: Dict[str, Dict[str, Dict[str, str]]] = {}
        for binding in bindings:
            tracked.setdefault(binding.community_id, {})[binding.group_id] = {
                "channelId": binding.channel_id,
                "nameTemplate": binding.template,
            }
        self.data["trackedRoles"] = tracked
        self.write()
