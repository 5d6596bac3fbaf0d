"""Capability surfaces consumed by the controller.

The controller never talks to mpv (or anything else) directly; it works
against these protocols. See streamkeeper.server.mpv_backend for the mpv
implementation and tests/fakes.py for the in-memory one.
"""

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol

# Engine events
ENGINE_ERROR = "error"
MANIFEST_PARSED = "manifest_parsed"

# Native media events
LOADSTART = "loadstart"
CANPLAY = "canplay"
ERROR = "error"
ENDED = "ended"
PAUSE = "pause"
PLAY = "play"

HLS_MIME_TYPE = "application/vnd.apple.mpegurl"

# MediaError codes, numbered as in the HTML media element
MEDIA_ERR_ABORTED = 1
MEDIA_ERR_NETWORK = 2
MEDIA_ERR_DECODE = 3
MEDIA_ERR_SRC_NOT_SUPPORTED = 4


@dataclass(frozen=True)
class MediaError:
    code: int
    message: str = ""


class MediaElement(Protocol):
    """The thing that decodes and displays frames."""

    paused: bool
    ended: bool
    muted: bool
    error: MediaError | None
    src: str

    def play(self) -> None:
        """Start or resume playback. Raises PlaybackRejected when refused."""

    def pause(self) -> None: ...

    def can_play_type(self, mime_type: str) -> str:
        """Return "", "maybe" or "probably", like HTMLMediaElement.canPlayType."""

    def add_event_listener(self, event: str, handler: Callable[..., Any]) -> None: ...

    def remove_event_listener(self, event: str, handler: Callable[..., Any]) -> None: ...


class Engine(Protocol):
    """One adaptive-streaming engine instance, bound to a single session."""

    def on(self, event: str, handler: Callable[..., Any]) -> None: ...

    def load_source(self, url: str) -> None: ...

    def attach_media(self, media: MediaElement) -> None: ...

    def recover_media_error(self) -> None: ...

    def destroy(self) -> None:
        """Detach and release. No events may be delivered after this returns."""


class EngineFactory(Protocol):
    def is_supported(self) -> bool: ...

    def create(self, options: Mapping[str, Any]) -> Engine: ...


class Scheduler(Protocol):
    """The subset of asyncio.AbstractEventLoop the controller schedules on."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> Any: ...

    def time(self) -> float: ...
