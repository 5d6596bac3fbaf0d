"""Fault taxonomy for the playback controller.

Engine-reported faults (network, media, other) travel as ErrorReport data.
Terminal conditions are exceptions so they can be stored on the controller
and surfaced to the UI with their message.
"""

from dataclasses import dataclass
from enum import Enum

# User-facing status strings
MSG_NETWORK_ERROR = "Network error, trying to reconnect..."
MSG_MEDIA_ERROR = "Media error, trying to recover..."
MSG_PLAYER_ERROR = "Player error, reloading..."
MSG_UNSUPPORTED = "This player does not support HLS playback"
MSG_RETRIES_EXHAUSTED = "Too many connection failures, check the network or try again later"
MSG_CONNECTION_LOST = "Network connection lost"
MSG_VIDEO_ERROR = "Video playback error"
MSG_ELEMENT_TIMEOUT = "Video output did not become ready in time, reload to try again"


class FaultCategory(str, Enum):
    NETWORK = "network"
    MEDIA = "media"
    OTHER = "other"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class ErrorReport:
    """A fault reported by the streaming engine (or synthesized by the health check)."""

    fatal: bool
    category: FaultCategory = FaultCategory.OTHER
    detail: str = ""


class PlaybackError(Exception):
    """Base class for playback failures surfaced to the UI."""

    message = MSG_PLAYER_ERROR

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)


class PlaybackRejected(PlaybackError):
    """play() was refused, e.g. autoplay blocked or output not ready."""

    message = "Playback was rejected"


class UnsupportedCapability(PlaybackError):
    """Neither the streaming engine nor native playback can handle the stream."""

    message = MSG_UNSUPPORTED


class RetriesExhausted(PlaybackError):
    """Automatic reconnects used up; only an explicit reset restarts playback."""

    message = MSG_RETRIES_EXHAUSTED


class ConnectionLost(PlaybackError):
    """The host reported the network went offline."""

    message = MSG_CONNECTION_LOST


class ElementTimeout(PlaybackError):
    """The media output never became ready during bootstrap."""

    message = MSG_ELEMENT_TIMEOUT
