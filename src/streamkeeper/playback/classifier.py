"""Maps engine fault reports to recovery actions."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from streamkeeper.playback.faults import (
    MSG_MEDIA_ERROR,
    MSG_NETWORK_ERROR,
    MSG_PLAYER_ERROR,
    MSG_UNSUPPORTED,
    ErrorReport,
    FaultCategory,
)

if TYPE_CHECKING:
    from streamkeeper.playback.ui_state import PlaybackUIState

logger = logging.getLogger(__name__)


class Action(str, Enum):
    RECOVER_MEDIA = "recover_media"
    RELOAD = "reload"
    TERMINAL = "terminal"


_MESSAGES = {
    FaultCategory.NETWORK: MSG_NETWORK_ERROR,
    FaultCategory.MEDIA: MSG_MEDIA_ERROR,
    FaultCategory.OTHER: MSG_PLAYER_ERROR,
    FaultCategory.UNSUPPORTED: MSG_UNSUPPORTED,
}


class ErrorClassifier:
    """Decides between in-place recovery, a full reload, or giving up.

    Non-fatal reports are ignored: the engine heals those on its own.
    Classifying a fatal report immediately updates the UI error message,
    and flags loading when a reload is about to start.
    """

    def __init__(self, ui: "PlaybackUIState"):
        self.ui = ui

    def classify(self, report: ErrorReport) -> Action | None:
        if not report.fatal:
            logger.debug("Ignoring non-fatal %s error: %s", report.category.value, report.detail)
            return None

        if report.category == FaultCategory.MEDIA:
            action = Action.RECOVER_MEDIA
        elif report.category == FaultCategory.UNSUPPORTED:
            action = Action.TERMINAL
        else:
            # Network and anything unrecognised rebuild the session
            action = Action.RELOAD

        self.ui.set_error(_MESSAGES.get(report.category, MSG_PLAYER_ERROR))
        if action == Action.RELOAD:
            self.ui.set_loading(True)

        logger.warning(
            "Fatal %s error -> %s%s",
            report.category.value, action.value,
            f" ({report.detail})" if report.detail else "",
        )
        return action
