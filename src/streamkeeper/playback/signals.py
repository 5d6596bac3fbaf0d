"""Host environment signals (visibility, connectivity, user gesture).

SignalHub is the in-process stand-in for document/window event targets.
AmbientSignalBridge turns those signals into controller calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from streamkeeper.playback.controller import SessionController

logger = logging.getLogger(__name__)

VISIBILITY_CHANGE = "visibilitychange"
ONLINE = "online"
OFFLINE = "offline"
CLICK = "click"


class SignalHub:
    """Minimal event target: named events, handler lists, synchronous emit."""

    def __init__(self):
        self._listeners: dict[str, list[Callable[..., Any]]] = {}

    def add_listener(self, event: str, handler: Callable[..., Any]):
        self._listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable[..., Any]):
        handlers = self._listeners.get(event, [])
        try:
            handlers.remove(handler)
        except ValueError:
            pass

    def listener_count(self, event: str | None = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, []))
        return sum(len(h) for h in self._listeners.values())

    def emit(self, event: str, *args: Any):
        for handler in list(self._listeners.get(event, [])):
            try:
                handler(*args)
            except Exception:
                logger.exception("Signal handler for %r failed", event)


class InteractionFlag:
    """One-way latch: has the user interacted since startup?"""

    def __init__(self):
        self._value = False

    def __bool__(self) -> bool:
        return self._value

    def latch(self):
        if not self._value:
            self._value = True
            logger.debug("User interaction recorded")


@dataclass(frozen=True)
class Subscription:
    event: str
    handler: Callable[..., Any]


class AmbientSignalBridge:
    """Installs the four ambient subscriptions once and removes them once.

    - visibilitychange(hidden) -> stop / start the health check
    - offline -> "connection lost" error, stop the health check
    - online -> automatic retry (counter is not reset)
    - click -> latch the interaction flag
    """

    def __init__(self, hub: SignalHub, controller: "SessionController", interaction: InteractionFlag):
        self._hub = hub
        self._controller = controller
        self._interaction = interaction
        self._subscriptions: list[Subscription] = []
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    def install(self):
        if self._installed:
            return
        self._subscriptions = [
            Subscription(VISIBILITY_CHANGE, self._on_visibility_change),
            Subscription(ONLINE, self._on_online),
            Subscription(OFFLINE, self._on_offline),
            Subscription(CLICK, self._on_click),
        ]
        for sub in self._subscriptions:
            self._hub.add_listener(sub.event, sub.handler)
        self._installed = True

    def remove(self):
        for sub in self._subscriptions:
            self._hub.remove_listener(sub.event, sub.handler)
        self._subscriptions = []
        self._installed = False

    def _on_visibility_change(self, hidden: bool):
        if hidden:
            self._controller.pause_monitoring()
        else:
            self._controller.resume_monitoring()

    def _on_online(self):
        logger.info("Network back online")
        self._controller.network_online()

    def _on_offline(self):
        logger.warning("Network offline")
        self._controller.network_offline()

    def _on_click(self, *_args):
        self._interaction.latch()
