"""Error taxonomy for the counter core."""

from __future__ import annotations


class RoleCounterError(Exception):
    """Base class for every error raised by the counter core."""


class ConfigError(RoleCounterError):
    """The config document could not be read or has the wrong shape."""


# ---------------------------
# Binding store
# ---------------------------


class NotFound(RoleCounterError):
    def __init__(self, community_id: str, group_id: str):
        super().__init__(f"No binding for role {group_id} in guild {community_id}.")
        self.community_id = community_id
        self.group_id = group_id


class DuplicateTarget(RoleCounterError):
    def __init__(self, community_id: str, channel_id: str, owner_group_id: str):
        super().__init__(
            f"Channel {channel_id} in guild {community_id} already shows role {owner_group_id}."
        )
        self.community_id = community_id
        self.channel_id = channel_id
        self.owner_group_id = owner_group_id


# ---------------------------
# Membership
# ---------------------------


class FetchFailed(RoleCounterError):
    """The member roster of a guild could not be fetched."""

    def __init__(self, community_id: str, cause: BaseException | None = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Fetching members of guild {community_id} failed{detail}")
        self.community_id = community_id
        self.cause = cause


# ---------------------------
# Channel updates
# ---------------------------


class ChannelUpdateError(RoleCounterError):
    def __init__(self, channel_id: str, message: str):
        super().__init__(message)
        self.channel_id = channel_id


class ChannelNotFound(ChannelUpdateError):
    """The target channel is gone. The binding likely needs operator cleanup."""

    def __init__(self, channel_id: str):
        super().__init__(channel_id, f"Channel {channel_id} no longer exists.")


class PermissionDenied(ChannelUpdateError):
    def __init__(self, channel_id: str):
        super().__init__(channel_id, f"Missing permission to rename channel {channel_id}.")


class TransientNetworkError(ChannelUpdateError):
    def __init__(self, channel_id: str, cause: BaseException | None = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(channel_id, f"Renaming channel {channel_id} failed{detail}")
        self.cause = cause
