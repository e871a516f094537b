"""Channel rename port. The only mutating call the engine makes."""

from __future__ import annotations

from typing import Optional, Protocol


class ChannelUpdater(Protocol):
    def current_label(self, channel_id: str) -> Optional[str]:
        """Name the channel currently has, or None if it cannot be seen."""
        ...

    def is_renameable(self, channel_id: str) -> bool:
        """
        False when the channel exists but is not a voice channel.
        A missing channel is reported by ``rename`` raising ChannelNotFound instead.
        """
        ...

    async def rename(self, channel_id: str, label: str, reason: str) -> None:
        """
        Rename the channel.
        Raises ChannelNotFound, PermissionDenied or TransientNetworkError.
        """
        ...
