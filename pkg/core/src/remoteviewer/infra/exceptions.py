"""
Custom exceptions for remote-viewer operations.

Every error carries a stable ``kind`` string so the CLI and HTTP layers can
report it without inspecting messages.
"""


class RemoteViewerError(Exception):
    """Base exception for all remote-viewer errors."""

    kind = "error"


class NotConfiguredError(RemoteViewerError):
    """Raised when remote store credentials are absent."""

    kind = "not_configured"


class NotFoundError(RemoteViewerError):
    """Raised when a channel, file, or document is absent."""

    kind = "not_found"


class ChannelNotFoundError(NotFoundError):
    """Raised when a channel id is not present in the schedule."""

    kind = "channel_not_found"

    def __init__(self, channel_id: str):
        super().__init__(f"Channel '{channel_id}' not found in schedule")
        self.channel_id = channel_id


class ScheduleInvalidError(RemoteViewerError):
    """Raised when a schedule cannot answer a now-playing query."""

    kind = "schedule_invalid"


class NotScheduledError(ScheduleInvalidError):
    """Raised when no 24-hour slot covers the query time."""

    kind = "not_scheduled"


class EmptyLoopError(ScheduleInvalidError):
    """Raised when a looping playlist has no playable duration."""

    kind = "empty_loop"


class InvalidScheduleError(ScheduleInvalidError):
    """Raised when a schedule document has a malformed type or fields."""

    kind = "invalid_schedule"


class TransientNetworkError(RemoteViewerError):
    """Raised on timeouts and connection resets. Reconnect-eligible, not fatal."""

    kind = "transient_network"


class CorruptedStateError(RemoteViewerError):
    """Raised when an existing document fails to parse."""

    kind = "corrupted"

    def __init__(self, message: str, *, raw: bytes | None = None):
        super().__init__(message)
        self.raw = raw


class SerializationError(RemoteViewerError):
    """Raised when a document does not survive a JSON round trip."""

    kind = "serialization"


class ProbeFailure(RemoteViewerError):
    """Raised when every probe strategy is exhausted for a media file."""

    kind = "probe_failure"


class RemoteStoreError(RemoteViewerError):
    """Raised when the store rejects an operation for a non-transient reason."""

    kind = "remote_store"


class ChannelExistsError(RemoteViewerError):
    """Raised when creating a channel whose id is already taken."""

    kind = "channel_exists"

    def __init__(self, channel_id: str):
        super().__init__(f"Channel '{channel_id}' already exists")
        self.channel_id = channel_id
