"""Roster source and channel updater backed by a live ``discord.Client``."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import discord

from rolecounter.errors import ChannelNotFound, PermissionDenied, TransientNetworkError

DEFAULT_RENAME_TIMEOUT = 30.0


def _snowflake(value: str) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class DiscordRosterSource:
    def __init__(self, client: discord.Client):
        self.client = client

    def _guild(self, community_id: str) -> Optional[discord.Guild]:
        guild_id = _snowflake(community_id)
        return self.client.get_guild(guild_id) if guild_id is not None else None

    async def fetch_roster(self, community_id: str) -> None:
        guild = self._guild(community_id)
        if guild is None:
            raise LookupError(f"Guild {community_id} is not available to the bot.")
        if not self.client.intents.members:
            logging.warning(
                f"[{guild.name}] Members intent disabled. Role counts may be inaccurate."
            )
        await guild.chunk(cache=True)

    def roster_size(self, community_id: str) -> int:
        guild = self._guild(community_id)
        return len(guild.members) if guild is not None else 0

    def _role(self, community_id: str, group_id: str) -> Optional[discord.Role]:
        guild = self._guild(community_id)
        role_id = _snowflake(group_id)
        if guild is None or role_id is None:
            return None
        return guild.get_role(role_id)

    def group_member_count(self, community_id: str, group_id: str) -> Optional[int]:
        role = self._role(community_id, group_id)
        return len(role.members) if role is not None else None

    def group_name(self, community_id: str, group_id: str) -> Optional[str]:
        role = self._role(community_id, group_id)
        return role.name if role is not None else None

    def community_name(self, community_id: str) -> str:
        guild = self._guild(community_id)
        return guild.name if guild is not None else community_id


class DiscordChannelUpdater:
    def __init__(self, client: discord.Client, timeout: float = DEFAULT_RENAME_TIMEOUT):
        self.client = client
        self.timeout = timeout

    def _channel(self, channel_id: str):
        snowflake = _snowflake(channel_id)
        return self.client.get_channel(snowflake) if snowflake is not None else None

    def current_label(self, channel_id: str) -> Optional[str]:
        channel = self._channel(channel_id)
        return getattr(channel, "name", None)

    def is_renameable(self, channel_id: str) -> bool:
        channel = self._channel(channel_id)
        return channel is None or isinstance(channel, discord.VoiceChannel)

    async def rename(self, channel_id: str, label: str, reason: str) -> None:
        channel = self._channel(channel_id)
        if channel is None:
            raise ChannelNotFound(channel_id)
        try:
            await asyncio.wait_for(channel.edit(name=label, reason=reason), self.timeout)
        except discord.NotFound:
            raise ChannelNotFound(channel_id)
        except discord.Forbidden:
            raise PermissionDenied(channel_id)
        except (discord.HTTPException, asyncio.TimeoutError, OSError) as e:
            raise TransientNetworkError(channel_id, e) from e
