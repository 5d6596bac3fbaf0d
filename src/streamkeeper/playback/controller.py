"""Session controller - the reconnect / reload state machine.

Owns the streaming engine lifecycle and ties the retry policy, error
classifier, health monitor and ambient signals into one decision per fault:

    IDLE -> STARTING -> PLAYING -> RECOVERING -> STARTING ... -> FAILED

Everything here runs on one event loop thread. Any callback that can outlive
the session it was created for (engine events, the delayed reconnect, the
pause auto-resume) carries the session id it belongs to and is dropped if
a newer session has replaced it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping

from streamkeeper.playback.classifier import Action, ErrorClassifier
from streamkeeper.playback.faults import (
    MSG_VIDEO_ERROR,
    ConnectionLost,
    ElementTimeout,
    ErrorReport,
    FaultCategory,
    PlaybackError,
    PlaybackRejected,
    RetriesExhausted,
    UnsupportedCapability,
)
from streamkeeper.playback.health import HEALTH_CHECK_INTERVAL, HealthMonitor
from streamkeeper.playback import media as ev
from streamkeeper.playback.retry import RetryPolicy, RetryState
from streamkeeper.playback.signals import AmbientSignalBridge, InteractionFlag, Subscription
from streamkeeper.playback.ui_state import PlaybackUIState

if TYPE_CHECKING:
    from streamkeeper.playback.media import Engine, EngineFactory, MediaElement, MediaError, Scheduler
    from streamkeeper.playback.signals import SignalHub

logger = logging.getLogger(__name__)

UNMUTE_HINT_DURATION = 10.0   # seconds the unmute hint stays up
MEDIA_WAIT_TIMEOUT = 10.0     # bootstrap wait for the media output
PAUSE_RESUME_DELAY = 1.0      # auto-resume after an unexpected pause


class State(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    PLAYING = "playing"
    RECOVERING = "recovering"
    FAILED = "failed"


@dataclass
class PlaybackSession:
    """Binding of stream URL, engine instance and media output.

    Never patched in place: a reload destroys it and builds a new one.
    engine is None when the media output plays the stream natively.
    """

    session_id: int
    url: str
    engine: "Engine | None" = None
    attached: bool = False

    @property
    def native(self) -> bool:
        return self.engine is None


class SessionController:
    """Keeps a live stream playing across network drops, stalls and decode errors.

    Args:
        stream_url: HLS playlist URL, fixed for the controller's lifetime.
        scheduler: Event loop (or anything with call_later/time).
        engine_factory: Creates one streaming engine per session.
        hub: Host signal source; the ambient bridge subscribes to it on attach.
        policy: Reconnect bound and delay.
        ui: Observable state shared with the presentation layer.
        engine_options: Opaque tuning map passed to every engine instance.
    """

    def __init__(
        self,
        stream_url: str,
        scheduler: "Scheduler",
        engine_factory: "EngineFactory",
        hub: "SignalHub | None" = None,
        policy: RetryPolicy | None = None,
        ui: PlaybackUIState | None = None,
        engine_options: Mapping[str, Any] | None = None,
        health_interval: float = HEALTH_CHECK_INTERVAL,
        unmute_hint_duration: float = UNMUTE_HINT_DURATION,
        media_wait_timeout: float = MEDIA_WAIT_TIMEOUT,
        pause_resume_delay: float = PAUSE_RESUME_DELAY,
    ):
        self.stream_url = stream_url
        self._scheduler = scheduler
        self._engine_factory = engine_factory
        self.engine_options = dict(engine_options or {})
        self.policy = policy or RetryPolicy()
        self.retry_state = RetryState()
        self.ui = ui or PlaybackUIState()
        self.classifier = ErrorClassifier(self.ui)
        self.interaction = InteractionFlag()
        self.health = HealthMonitor(
            scheduler,
            get_media=lambda: self.media,
            is_loading=lambda: self.ui.loading,
            on_fault=self._on_health_fault,
            interval=health_interval,
        )
        self.bridge = AmbientSignalBridge(hub, self, self.interaction) if hub is not None else None
        self.unmute_hint_duration = unmute_hint_duration
        self.media_wait_timeout = media_wait_timeout
        self.pause_resume_delay = pause_resume_delay

        self.state = State.IDLE
        self.session: PlaybackSession | None = None
        self.media: "MediaElement | None" = None
        self.failure: PlaybackError | None = None

        self._session_seq = 0
        self._hidden = False
        self._destroyed = False
        self._media_subscriptions: list[Subscription] = []

        # Pending timers
        self._retry_handle = None
        self._hint_handle = None
        self._wait_handle = None
        self._resume_handle = None

    # --- Lifecycle ---

    @property
    def session_id(self) -> int:
        return self.session.session_id if self.session else 0

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def mount(self):
        """Begin waiting for the media output; attach() must follow in time."""
        if self._destroyed or self.media is not None:
            return
        self._cancel("_wait_handle")
        self._wait_handle = self._scheduler.call_later(self.media_wait_timeout, self._on_media_timeout)
        logger.debug("Waiting up to %.0fs for media output", self.media_wait_timeout)

    def attach(self, media: "MediaElement"):
        """Readiness notification: the media output exists. Starts playback.

        Only the first call has any effect.
        """
        if self._destroyed:
            logger.debug("Media ready after teardown, ignoring")
            return
        if self.media is not None:
            return
        self._cancel("_wait_handle")
        self.media = media
        self.ui.set_muted(media.muted)

        self._media_subscriptions = [
            Subscription(ev.LOADSTART, self._on_loadstart),
            Subscription(ev.CANPLAY, self._on_canplay),
            Subscription(ev.ERROR, self._on_media_error),
            Subscription(ev.ENDED, self._on_ended),
            Subscription(ev.PAUSE, self._on_pause),
            Subscription(ev.PLAY, self._on_play),
        ]
        for sub in self._media_subscriptions:
            media.add_event_listener(sub.event, sub.handler)
        if self.bridge is not None:
            self.bridge.install()

        logger.info("Media output ready, starting %s", self.stream_url)
        self._start()

    def teardown(self):
        """Stop everything: timers, engine, listeners. Safe to call repeatedly."""
        if self._destroyed:
            return
        self._destroyed = True
        self.health.stop()
        for name in ("_retry_handle", "_hint_handle", "_wait_handle", "_resume_handle"):
            self._cancel(name)
        self._destroy_session()
        if self.media is not None:
            for sub in self._media_subscriptions:
                self.media.remove_event_listener(sub.event, sub.handler)
        self._media_subscriptions = []
        if self.bridge is not None:
            self.bridge.remove()
        self.state = State.IDLE
        logger.info("Playback controller torn down")

    # --- User operations ---

    def reset_and_start(self):
        """Clear the retry budget and the error, then start a fresh session now."""
        if self._destroyed:
            return
        if self.media is None:
            # Bootstrap never finished; wait for the output again
            self.ui.clear_error()
            self.failure = None
            self.state = State.IDLE
            self.mount()
            return
        logger.info("Restart requested, resetting retry counter")
        self.retry_state.reset()
        self.ui.clear_error()
        self._start()

    def manual_retry(self):
        """Retry button."""
        self.reset_and_start()

    def reload(self):
        self.reset_and_start()

    def toggle_mute(self):
        if self.media is None:
            return
        self.media.muted = not self.media.muted
        self.ui.set_muted(self.media.muted)
        if not self.media.muted:
            self._cancel("_hint_handle")

    def unmute(self):
        if self.media is None:
            return
        self.media.muted = False
        self.ui.set_muted(False)
        self.ui.set_unmute_hint(False)
        self._cancel("_hint_handle")

    def handle_video_click(self):
        # A click only ever unmutes
        if self.media is not None and self.media.muted:
            self.unmute()

    # --- Automatic recovery ---

    def retry(self) -> bool:
        """Schedule an automatic reconnect, subject to the retry bound.

        Returns False when the bound is reached (the controller is then FAILED).
        A reconnect that is already pending absorbs further requests.
        """
        if self._destroyed or self.media is None or self.state == State.FAILED:
            return False
        if self._retry_handle is not None:
            logger.debug("Reconnect already pending, not scheduling another")
            return True
        if not self.policy.should_retry(self.retry_state.attempts):
            self._fail(RetriesExhausted())
            return False

        attempt = self.retry_state.increment()
        self.state = State.RECOVERING
        self._retry_handle = self._scheduler.call_later(
            self.policy.delay, self._run_retry, self.session_id,
        )
        logger.info(
            "Reconnecting in %.0fs (attempt %d/%d)",
            self.policy.delay, attempt, self.policy.max_attempts,
        )
        return True

    def report_fault(self, report: ErrorReport):
        """Handle a fault for the current session."""
        if self._destroyed or self.session is None:
            return
        if self.state == State.FAILED:
            logger.debug("Already failed, ignoring %s fault", report.category.value)
            return

        action = self.classifier.classify(report)
        if action is None:
            return
        if action == Action.TERMINAL:
            self._fail(UnsupportedCapability())
            return
        if action == Action.RECOVER_MEDIA and self._recover_in_place():
            return
        self.ui.set_loading(True)
        self.retry()

    def pause_monitoring(self):
        """Host is hidden: stop auditing until visible again."""
        self._hidden = True
        self.health.stop()

    def resume_monitoring(self):
        self._hidden = False
        if self._destroyed or self.session is None:
            return
        if self.state in (State.STARTING, State.PLAYING, State.RECOVERING):
            self.health.start()

    def network_offline(self):
        if self._destroyed:
            return
        self.ui.set_error(str(ConnectionLost()))
        self.health.stop()

    def network_online(self):
        if self._destroyed:
            return
        if self.state == State.FAILED:
            if isinstance(self.failure, RetriesExhausted):
                self.reset_and_start()
            return
        self.retry()

    def status(self) -> dict:
        s = self.ui.snapshot()
        s.update({
            "state": self.state.value,
            "session_id": self.session_id,
            "native": self.session.native if self.session else False,
            "retry_attempts": self.retry_state.attempts,
            "max_retry_attempts": self.policy.max_attempts,
            "reconnect_pending": self._retry_handle is not None,
            "health_check_running": self.health.running,
            "failure": type(self.failure).__name__ if self.failure else None,
            "stream_url": self.stream_url,
        })
        return s

    # --- State transitions ---

    def _start(self):
        """Enter STARTING: replace any existing session with a fresh one."""
        if self._destroyed or self.media is None:
            return
        self._cancel("_retry_handle")
        self._cancel("_resume_handle")
        self.ui.set_loading(True)
        self.ui.clear_error()
        self.failure = None

        # Old engine goes first, synchronously: never two attached at once
        self._destroy_session()
        self._session_seq += 1
        session = PlaybackSession(self._session_seq, self.stream_url)
        self.session = session
        self.state = State.STARTING
        logger.info("Starting session %d", session.session_id)

        if self._engine_factory.is_supported():
            try:
                self._bind_engine(session)
            except Exception as e:
                logger.warning("Engine setup failed for session %d: %s", session.session_id, e)
                self.report_fault(ErrorReport(True, FaultCategory.OTHER, str(e)))
                return
        elif self.media.can_play_type(ev.HLS_MIME_TYPE):
            logger.info("No streaming engine, using native playback")
            try:
                self.media.src = self.stream_url
            except Exception as e:
                logger.warning("Native load failed for session %d: %s", session.session_id, e)
                self.report_fault(ErrorReport(True, FaultCategory.OTHER, str(e)))
                return
            session.attached = True
        else:
            self._fail(UnsupportedCapability())
            return

        if not self._hidden:
            self.health.start()

    def _bind_engine(self, session: PlaybackSession):
        engine = self._engine_factory.create(self.engine_options)
        session.engine = engine
        sid = session.session_id
        engine.on(ev.ENGINE_ERROR, lambda report: self._on_engine_error(sid, report))
        engine.on(ev.MANIFEST_PARSED, lambda *_: self._on_manifest_parsed(sid))
        engine.load_source(session.url)
        engine.attach_media(self.media)
        session.attached = True

    def _enter_playing(self):
        previous = self.state
        self.state = State.PLAYING
        self.failure = None
        self.ui.set_loading(False)
        self.ui.clear_error()
        self.retry_state.reset()
        if previous == State.FAILED and not self._hidden:
            self.health.start()
        self._maybe_show_unmute_hint()

    def _recover_in_place(self) -> bool:
        """Ask the engine to recover from a decode error without a reload."""
        session = self.session
        if session is None or session.engine is None:
            return False
        previous = self.state
        self.state = State.RECOVERING
        try:
            session.engine.recover_media_error()
        except Exception as e:
            logger.warning("In-place media recovery failed: %s", e)
            return False
        if self._retry_handle is not None:
            self.state = State.RECOVERING
        elif previous == State.STARTING:
            self.state = State.STARTING
        else:
            self.state = State.PLAYING
        logger.info("Recovered media error in place (session %d)", session.session_id)
        return True

    def _fail(self, error: PlaybackError):
        self._cancel("_retry_handle")
        self._cancel("_resume_handle")
        self.health.stop()
        self.failure = error
        self.state = State.FAILED
        self.ui.set_error(str(error))
        logger.error("Playback failed: %s", error)

    def _destroy_session(self):
        session = self.session
        if session is None:
            return
        self.session = None
        if session.engine is not None:
            try:
                session.engine.destroy()
            except Exception as e:
                logger.warning("Engine destroy failed for session %d: %s", session.session_id, e)
            session.engine = None
        session.attached = False

    # --- Callbacks ---

    def _is_current(self, session_id: int) -> bool:
        if self._destroyed or self.session is None or self.session.session_id != session_id:
            logger.debug("Dropping callback from stale session %d", session_id)
            return False
        return True

    def _run_retry(self, session_id: int):
        self._retry_handle = None
        if not self._is_current(session_id):
            return
        self._start()

    def _on_engine_error(self, session_id: int, report: ErrorReport):
        if self._is_current(session_id):
            self.report_fault(report)

    def _on_manifest_parsed(self, session_id: int):
        if self._is_current(session_id):
            self._autoplay()

    def _on_health_fault(self, error: "MediaError"):
        self.report_fault(ErrorReport(True, FaultCategory.MEDIA, f"media error code {error.code}"))

    def _on_media_timeout(self):
        self._wait_handle = None
        if self.media is None and not self._destroyed:
            self._fail(ElementTimeout())

    def _autoplay(self):
        try:
            self.media.play()
        except PlaybackRejected as e:
            logger.info("Autoplay rejected: %s", e)
            self.ui.set_loading(False)

    def _maybe_show_unmute_hint(self):
        if not (self.media.muted and self.interaction):
            return
        self.ui.set_unmute_hint(True)
        self._cancel("_hint_handle")
        self._hint_handle = self._scheduler.call_later(self.unmute_hint_duration, self._clear_unmute_hint)

    def _clear_unmute_hint(self):
        self._hint_handle = None
        self.ui.set_unmute_hint(False)

    def _resume_after_pause(self, session_id: int):
        self._resume_handle = None
        if not self._is_current(session_id):
            return
        media = self.media
        if media.paused and not media.ended and not self.ui.loading:
            try:
                media.play()
            except PlaybackRejected as e:
                logger.debug("Auto-resume rejected: %s", e)

    # Native media events

    def _on_loadstart(self, *_args):
        self.ui.set_loading(True)

    def _on_canplay(self, *_args):
        self.ui.set_loading(False)
        session = self.session
        if session is not None and session.native and self.state == State.STARTING:
            self._autoplay()

    def _on_media_error(self, *_args):
        self.ui.set_error(MSG_VIDEO_ERROR)

    def _on_ended(self, *_args):
        # A live stream should never end; treat it as a dropped connection
        logger.warning("Stream ended unexpectedly, reconnecting")
        self.retry()

    def _on_pause(self, *_args):
        if self.pause_resume_delay <= 0 or self.session is None:
            return
        self._cancel("_resume_handle")
        self._resume_handle = self._scheduler.call_later(
            self.pause_resume_delay, self._resume_after_pause, self.session_id,
        )

    def _on_play(self, *_args):
        if self._destroyed or self.session is None:
            return
        self._enter_playing()

    def _cancel(self, attr: str):
        handle = getattr(self, attr)
        if handle is not None:
            handle.cancel()
            setattr(self, attr, None)
