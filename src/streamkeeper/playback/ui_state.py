"""Observable playback state read by the presentation layer."""

import logging
from typing import Callable

logger = logging.getLogger(__name__)

Listener = Callable[[dict], None]


class PlaybackUIState:
    """loading / error / mute flags with their invariants enforced on write.

    - Setting an error message always clears loading.
    - The unmute hint can only be shown while muted; unmuting clears it.
    """

    def __init__(self, muted: bool = True):
        self._loading = True
        self._error_message = ""
        self._muted = muted
        self._show_unmute_hint = False
        self._listeners: list[Listener] = []

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error_message(self) -> str:
        return self._error_message

    @property
    def muted(self) -> bool:
        return self._muted

    @property
    def show_unmute_hint(self) -> bool:
        return self._show_unmute_hint

    def set_loading(self, value: bool):
        if self._loading != value:
            self._loading = value
            self._notify()

    def set_error(self, message: str):
        changed = self._error_message != message or self._loading
        self._error_message = message
        self._loading = False
        if changed:
            self._notify()

    def clear_error(self):
        if self._error_message:
            self._error_message = ""
            self._notify()

    def set_muted(self, value: bool):
        changed = self._muted != value
        self._muted = value
        if not value and self._show_unmute_hint:
            self._show_unmute_hint = False
            changed = True
        if changed:
            self._notify()

    def set_unmute_hint(self, value: bool):
        value = value and self._muted
        if self._show_unmute_hint != value:
            self._show_unmute_hint = value
            self._notify()

    def snapshot(self) -> dict:
        return {
            "is_loading": self._loading,
            "error_message": self._error_message,
            "is_muted": self._muted,
            "show_unmute_hint": self._show_unmute_hint,
        }

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def _notify(self):
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception as e:
                logger.warning("UI state listener failed: %s", e)
