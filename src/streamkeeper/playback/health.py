"""Periodic liveness audit of an ostensibly healthy session."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

from streamkeeper.playback.faults import PlaybackRejected
from streamkeeper.playback.media import MEDIA_ERR_ABORTED

if TYPE_CHECKING:
    from streamkeeper.playback.media import MediaElement, Scheduler

logger = logging.getLogger(__name__)

HEALTH_CHECK_INTERVAL = 30.0  # seconds


class HealthMonitor:
    """Polls the media output on a fixed interval.

    Each tick:
    1. Resumes a paused (not ended) output unless a load is in progress.
       Some hosts pause background media silently.
    2. Reports a media error whose code is not "aborted" through on_fault;
       this catches decode failures the engine never raised as events.

    start() restarts the timer if already running; stop() is always safe.
    """

    def __init__(
        self,
        scheduler: "Scheduler",
        get_media: Callable[[], "MediaElement | None"],
        is_loading: Callable[[], bool],
        on_fault: Callable[[Any], None],
        interval: float = HEALTH_CHECK_INTERVAL,
    ):
        self._scheduler = scheduler
        self._get_media = get_media
        self._is_loading = is_loading
        self._on_fault = on_fault
        self.interval = interval
        self._handle = None
        self._generation = 0

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self):
        self.stop()
        self._generation += 1
        self._arm(self._generation)
        logger.debug("Health check started (every %.0fs)", self.interval)

    def stop(self):
        if self._handle is None:
            return
        self._handle.cancel()
        self._handle = None
        self._generation += 1
        logger.debug("Health check stopped")

    def _arm(self, generation: int):
        self._handle = self._scheduler.call_later(self.interval, self._tick, generation)

    def _tick(self, generation: int):
        if generation != self._generation:
            return
        # Re-arm first so a failing check never kills the timer
        self._arm(generation)
        self.check()

    def check(self):
        """Run one audit pass."""
        media = self._get_media()
        if media is None:
            return

        if media.paused and not media.ended and not self._is_loading():
            logger.info("Health check: output paused, resuming")
            try:
                media.play()
            except PlaybackRejected as e:
                logger.debug("Health check resume rejected: %s", e)

        error = media.error
        if error is not None and error.code != MEDIA_ERR_ABORTED:
            logger.warning("Health check: media error %d (%s)", error.code, error.message)
            self._on_fault(error)
