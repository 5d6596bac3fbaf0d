"""Wires the playback controller to mpv, host signals and the event bus.

The controller lives on the LoopThread; everything else (Flask handlers, the
mpv bootstrap thread, the connectivity watcher) reaches it through
call() so the controller only ever runs on its own thread.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from streamkeeper.playback.controller import SessionController
from streamkeeper.playback.retry import RetryPolicy
from streamkeeper.playback.signals import CLICK, OFFLINE, ONLINE, VISIBILITY_CHANGE, SignalHub
from streamkeeper.playback.ui_state import PlaybackUIState
from streamkeeper.server.connectivity import ConnectivityWatcher
from streamkeeper.server.events import EventBus
from streamkeeper.server.loop import LoopThread
from streamkeeper.server.mpv_backend import MPVEngineFactory, MPVMedia, MPVProcess, kill_orphaned_mpv
from streamkeeper.server.mpv_client import IPC_DISCONNECTED, MPVClient

if TYPE_CHECKING:
    from streamkeeper.config import Config
    from streamkeeper.playback.media import EngineFactory, MediaElement

logger = logging.getLogger(__name__)

SIGNALS = {
    "visibility": VISIBILITY_CHANGE,
    "online": ONLINE,
    "offline": OFFLINE,
    "interaction": CLICK,
}


class PlaybackRuntime:
    """Owns the loop thread, the controller and its host adapters.

    Args:
        config: Full StreamKeeper configuration.
        engine_factory: Overrides the mpv engine factory (tests).
        media: A ready media output; skips launching mpv entirely (tests).
    """

    def __init__(
        self,
        config: "Config",
        engine_factory: "EngineFactory | None" = None,
        media: "MediaElement | None" = None,
    ):
        self.config = config
        self.loop_thread = LoopThread()
        self.hub = SignalHub()
        self.event_bus = EventBus()
        self.client = MPVClient(config.server.mpv_socket)
        self.process: MPVProcess | None = None
        self.engine_factory = engine_factory or MPVEngineFactory(
            self.client, enabled=config.player.engine == "mpv", hwdec=config.server.mpv_hwdec,
        )
        self.media = media
        self.controller: SessionController | None = None
        self.watcher: ConnectivityWatcher | None = None
        self._stopping = False
        self._relaunch_lock = threading.Lock()
        if config.connectivity.enabled:
            c = config.connectivity
            self.watcher = ConnectivityWatcher(
                self._on_connectivity_change, c.probe_host, c.probe_port, c.interval_seconds,
            )

    @property
    def running(self) -> bool:
        return self.loop_thread.is_running and self.controller is not None

    def start(self):
        if self.running:
            return
        self.loop_thread.start()
        self.controller = self.loop_thread.call(self._build_controller)
        self.loop_thread.call(self.controller.mount)

        if self.media is not None:
            self.loop_thread.call(self.controller.attach, self.media)
        else:
            threading.Thread(target=self._bootstrap_mpv, daemon=True, name="mpv-bootstrap").start()

        if self.watcher is not None:
            self.watcher.start()
        logger.info("Playback runtime started for %s", self.config.player.stream_url)

    def stop(self):
        self._stopping = True
        if self.watcher is not None:
            self.watcher.stop()
        if self.controller is not None and self.loop_thread.is_running:
            self.loop_thread.call(self.controller.teardown)
        if isinstance(self.media, MPVMedia):
            self.media.close()
        if self.process is not None:
            self.client.quit()
            self.process.stop()
        self.loop_thread.stop()
        logger.info("Playback runtime stopped")

    def _build_controller(self) -> SessionController:
        p = self.config.player
        controller = SessionController(
            p.stream_url,
            self.loop_thread.loop,
            self.engine_factory,
            hub=self.hub,
            policy=RetryPolicy(p.max_reconnect_attempts, p.reconnect_delay_ms / 1000),
            ui=PlaybackUIState(muted=p.start_muted),
            engine_options=p.engine_options,
            health_interval=p.health_check_interval_ms / 1000,
            unmute_hint_duration=p.unmute_hint_ms / 1000,
            media_wait_timeout=p.media_wait_ms / 1000,
            pause_resume_delay=p.pause_resume_delay_ms / 1000,
        )
        controller.ui.subscribe(self._on_ui_change)
        return controller

    def _bootstrap_mpv(self):
        """Launch mpv, wait for its IPC socket, then hand the output to the controller.

        If the socket never shows up the controller's own wait times out.
        """
        s = self.config.server
        kill_orphaned_mpv()
        self.process = MPVProcess(
            s.mpv_socket, hwdec=s.mpv_hwdec, binary=s.mpv_binary,
            log_file=s.mpv_log_file, audio_device=s.mpv_audio_device,
        )
        if not self.process.start():
            return
        attempts = max(1, int(self.config.player.media_wait_ms / 500))
        if not self.client.wait_for_socket(attempts=attempts):
            return
        media = MPVMedia(self.client, self.loop_thread.post)
        try:
            media.start(muted=self.config.player.start_muted)
        except Exception as e:
            logger.error("mpv setup failed: %s", e)
            return
        self.media = media
        self.client.add_event_handler(self._on_ipc_event)
        self.loop_thread.post(self.controller.attach, media)

    def _on_ipc_event(self, msg: dict):
        if msg.get("event") == IPC_DISCONNECTED and not self._stopping:
            threading.Thread(target=self._relaunch_mpv, daemon=True, name="mpv-relaunch").start()

    def _relaunch_mpv(self):
        """Bring mpv back after the IPC link dropped, then let the controller retry.

        The controller already scheduled a reconnect for the lost session; that
        attempt fails fast while mpv is down and the retry budget covers the gap.
        """
        if not self._relaunch_lock.acquire(blocking=False):
            return
        try:
            logger.warning("mpv connection lost, relaunching")
            if self.process is None or not self.process.start():
                return
            attempts = max(1, int(self.config.player.media_wait_ms / 500))
            if not self.client.wait_for_socket(attempts=attempts):
                return
            if isinstance(self.media, MPVMedia):
                try:
                    self.media.observe(self.config.player.start_muted)
                except Exception as e:
                    logger.error("mpv setup failed after relaunch: %s", e)
                    return
            logger.info("mpv relaunched")
            self.loop_thread.post(self._on_mpv_restored)
        finally:
            self._relaunch_lock.release()

    def _on_mpv_restored(self):
        if self.controller is not None and not self._stopping:
            self.controller.network_online()

    def _on_ui_change(self, snapshot: dict):
        title = snapshot["error_message"] or ("Loading" if snapshot["is_loading"] else "Playing")
        self.event_bus.emit("state", title, data=snapshot)

    def _on_connectivity_change(self, online: bool):
        self.signal("online" if online else "offline")

    # --- Presentation-layer surface ---

    def signal(self, name: str, *args):
        """Deliver a host signal ("visibility", "online", "offline", "interaction")."""
        event = SIGNALS[name]
        self.event_bus.emit("signal", name, data={"args": list(args)})
        self.loop_thread.call(self.hub.emit, event, *args)

    def invoke(self, operation: str) -> dict:
        """Run a user operation on the controller and return the new status."""
        def run():
            getattr(self.controller, operation)()
            return self.controller.status()
        return self.loop_thread.call(run)

    def status(self) -> dict:
        return self.loop_thread.call(self.controller.status)
