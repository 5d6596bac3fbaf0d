"""mpv-backed media output and streaming engine.

One mpv process plays both roles: MPVMedia is the output the controller
pauses, mutes and audits; MPVEngine is a per-session handle that loads the
stream with the configured tuning options and turns mpv's end-file errors
into classified engine faults.

mpv events arrive on the IPC reader thread and are re-posted onto the
playback loop, so every listener runs on the controller's thread.
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import time
from typing import Any, Callable, Mapping

from streamkeeper.playback import media as ev
from streamkeeper.playback.faults import ErrorReport, FaultCategory, PlaybackRejected
from streamkeeper.playback.media import MediaError
from streamkeeper.server.mpv_client import IPC_DISCONNECTED, MPVClient, MPVError

logger = logging.getLogger(__name__)

# mpv end-file "file_error" strings -> fault category
_FILE_ERROR_CATEGORIES = {
    "loading failed": FaultCategory.NETWORK,
    "nothing to play": FaultCategory.NETWORK,
    "no audio or video data played": FaultCategory.NETWORK,
    "unrecognized file format": FaultCategory.OTHER,
    "audio output initialization failed": FaultCategory.UNSUPPORTED,
    "video output initialization failed": FaultCategory.UNSUPPORTED,
}

_CATEGORY_MEDIA_CODES = {
    FaultCategory.NETWORK: ev.MEDIA_ERR_NETWORK,
    FaultCategory.UNSUPPORTED: ev.MEDIA_ERR_SRC_NOT_SUPPORTED,
}

OBSERVED_PROPERTIES = ("pause", "eof-reached", "mute")


def classify_file_error(file_error: str) -> FaultCategory:
    return _FILE_ERROR_CATEGORIES.get((file_error or "").lower(), FaultCategory.MEDIA)


def detect_wayland() -> str | None:
    """Auto-detect Wayland display socket.

    Checks XDG_RUNTIME_DIR for wayland-* sockets. Returns the socket name
    (e.g. 'wayland-0') or None if not found.
    """
    if os.environ.get("WAYLAND_DISPLAY"):
        return os.environ["WAYLAND_DISPLAY"]

    runtime_dir = os.environ.get("XDG_RUNTIME_DIR", f"/run/user/{os.getuid()}")
    try:
        for entry in sorted(os.listdir(runtime_dir)):
            if entry.startswith("wayland-") and not entry.endswith(".lock"):
                logger.info("Auto-detected Wayland: %s", entry)
                return entry
    except (FileNotFoundError, PermissionError):
        pass
    return None


class MPVProcess:
    """Launches an idle, fullscreen mpv that waits for commands over IPC."""

    def __init__(
        self,
        socket_path: str,
        hwdec: str = "auto",
        binary: str = "mpv",
        log_file: str = "/tmp/streamkeeper-mpv.log",
        audio_device: str = "",
    ):
        self.socket_path = socket_path
        self.hwdec = hwdec
        self.binary = binary
        self.log_file = log_file
        self.audio_device = audio_device
        self._process: subprocess.Popen | None = None

    @property
    def available(self) -> bool:
        return shutil.which(self.binary) is not None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def build_command(self) -> list[str]:
        cmd = [
            self.binary,
            f"--input-ipc-server={self.socket_path}",
            f"--hwdec={self.hwdec}",
            "--idle=yes",
            "--force-window=immediate",
            "--fullscreen",
            "--osc=no",
            "--no-terminal",
            "--cache=yes",
            f"--log-file={self.log_file}",
        ]
        if self.audio_device:
            cmd.append(f"--audio-device={self.audio_device}")
        return cmd

    def start(self) -> bool:
        """Start mpv unless already running. Returns False if it can't be launched."""
        if self.running:
            return True
        self._remove_stale_socket()

        env = os.environ.copy()
        wayland = detect_wayland()
        if wayland:
            env["WAYLAND_DISPLAY"] = wayland
            env.setdefault("XDG_RUNTIME_DIR", f"/run/user/{os.getuid()}")

        try:
            self._process = subprocess.Popen(
                self.build_command(),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env=env,
            )
        except FileNotFoundError:
            logger.error("mpv not found. Install it: sudo apt install mpv")
            return False
        except OSError as e:
            logger.error("Failed to start mpv: %s", e)
            return False
        logger.info("Started mpv (pid %d)", self._process.pid)
        return True

    def stop(self):
        """Terminate mpv if running."""
        if self._process and self._process.poll() is None:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
        self._process = None

    def _remove_stale_socket(self):
        if os.path.exists(self.socket_path):
            try:
                os.remove(self.socket_path)
                logger.info("Removed stale mpv socket: %s", self.socket_path)
            except OSError:
                pass


def kill_orphaned_mpv():
    """Kill mpv processes left behind by a previous server run."""
    try:
        result = subprocess.run(
            ["pgrep", "-x", "mpv"],
            capture_output=True, text=True, timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired, OSError):
        return
    if result.returncode != 0:
        return
    for pid in result.stdout.split():
        try:
            os.kill(int(pid), signal.SIGTERM)
            logger.info("Killed orphaned mpv process: %s", pid)
        except (ProcessLookupError, ValueError):
            pass
    time.sleep(1)


class MPVMedia:
    """MediaElement implementation over mpv IPC.

    paused / ended / muted are served from a cache kept current by
    observe_property events, so reading them never blocks on IPC. Commands
    issued from the playback loop are fire-and-forget; replies that matter
    (loadfile, mute) come back through the reader thread and are re-posted.
    """

    def __init__(self, client: MPVClient, post: Callable[..., Any]):
        self.client = client
        self._post = post
        self._listeners: dict[str, list[Callable[..., Any]]] = {}
        self._engine: MPVEngine | None = None
        self._paused = True
        self._ended = False
        self._muted = False
        self._src = ""
        self._loaded = False
        self._entry_id: int | None = None
        self._load_seq = 0
        self._load_pending = False
        self.error: MediaError | None = None

    def start(self, muted: bool = True):
        """Subscribe to mpv events and apply the initial mute state."""
        self.client.add_event_handler(self._on_ipc_event)
        self.observe(muted)

    def observe(self, muted: bool):
        """Register property observers on the current mpv instance.

        Observers live in the mpv process, so this runs again after a relaunch.
        """
        for name in OBSERVED_PROPERTIES:
            self.client.observe_property(name)
        self.muted = muted

    def close(self):
        self.client.remove_event_handler(self._on_ipc_event)
        self._listeners.clear()

    # --- MediaElement surface ---

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def muted(self) -> bool:
        return self._muted

    @muted.setter
    def muted(self, value: bool):
        value = bool(value)
        sent = self.client.set_property_nowait(
            "mute", value, callback=lambda resp: self._post(self._on_mute_reply, value, resp),
        )
        if sent:
            self._muted = value
        else:
            logger.warning("mpv not connected, mute=%s not applied", value)

    @property
    def src(self) -> str:
        return self._src

    @src.setter
    def src(self, url: str):
        self._src = url
        self._load(url)

    def play(self):
        if not self._loaded:
            raise PlaybackRejected("nothing loaded")
        if not self.client.set_property_nowait("pause", False):
            raise PlaybackRejected("mpv not connected")

    def pause(self):
        self.client.set_property_nowait("pause", True)

    def can_play_type(self, mime_type: str) -> str:
        # ffmpeg's demuxer handles HLS playlists directly
        return "maybe" if mime_type == ev.HLS_MIME_TYPE else ""

    def add_event_listener(self, event: str, handler: Callable[..., Any]):
        self._listeners.setdefault(event, []).append(handler)

    def remove_event_listener(self, event: str, handler: Callable[..., Any]):
        try:
            self._listeners.get(event, []).remove(handler)
        except ValueError:
            pass

    # --- Engine binding ---

    def bind_engine(self, engine: "MPVEngine"):
        self._engine = engine

    def unbind_engine(self, engine: "MPVEngine"):
        if self._engine is engine:
            self._engine = None

    def _load(self, url: str):
        """Replace whatever mpv is playing with url. Returns before mpv answers."""
        self.error = None
        self._ended = False
        self._loaded = False
        self._entry_id = None
        self._load_seq += 1
        seq = self._load_seq
        self._load_pending = True
        sent = self.client.command_nowait(
            "loadfile", url, "replace",
            callback=lambda resp: self._post(self._on_load_reply, seq, url, resp),
        )
        if not sent:
            self._load_pending = False
            raise MPVError(f"loadfile failed for {url}: mpv not connected")

    def _on_load_reply(self, seq: int, url: str, resp: dict | None):
        if seq != self._load_seq:
            return
        self._load_pending = False
        if resp is None:
            # Connection dropped; the disconnect event reports it
            return
        if resp.get("error") != "success":
            logger.warning("mpv refused loadfile for %s: %s", url, resp.get("error"))
            self._report_error(FaultCategory.OTHER, f"loadfile failed: {resp.get('error')}")
            return
        # mpv 0.38+ reports the new playlist entry; older versions return no data
        data = resp.get("data")
        self._entry_id = data.get("playlist_entry_id") if isinstance(data, dict) else None

    def _on_mute_reply(self, value: bool, resp: dict | None):
        if resp is None or resp.get("error") == "success":
            return
        logger.warning("mpv rejected mute=%s: %s", value, resp.get("error"))
        if self._muted == value:
            self._muted = not value

    def _is_stale(self, msg: dict) -> bool:
        if self._load_pending:
            return True
        entry_id = msg.get("playlist_entry_id")
        return self._entry_id is not None and entry_id is not None and entry_id != self._entry_id

    # --- Event translation (runs on the playback loop) ---

    def _on_ipc_event(self, msg: dict):
        self._post(self._handle_event, msg)

    def _emit(self, event: str, *args):
        for handler in list(self._listeners.get(event, [])):
            handler(*args)

    def _report_error(self, category: FaultCategory, detail: str):
        if self._engine is not None:
            self._engine.emit(ev.ENGINE_ERROR, ErrorReport(True, category, detail))
        else:
            code = _CATEGORY_MEDIA_CODES.get(category, ev.MEDIA_ERR_DECODE)
            self.error = MediaError(code, detail)
            self._emit(ev.ERROR)

    def _handle_event(self, msg: dict):
        event = msg.get("event")
        if event in ("start-file", "file-loaded", "playback-restart", "end-file") and self._is_stale(msg):
            logger.debug("Ignoring %s for superseded playlist entry %s", event, msg.get("playlist_entry_id"))
            return
        if event == "property-change":
            self._on_property_change(msg.get("name"), msg.get("data"))
        elif event == "start-file":
            self.error = None
            self._ended = False
            self._emit(ev.LOADSTART)
        elif event == "file-loaded":
            self._loaded = True
            if self._engine is not None:
                self._engine.emit(ev.MANIFEST_PARSED)
            self._emit(ev.CANPLAY)
        elif event == "playback-restart":
            if not self._paused:
                self._emit(ev.PLAY)
        elif event == "end-file":
            self._on_end_file(msg.get("reason", ""), msg.get("file_error", ""))
        elif event in ("shutdown", IPC_DISCONNECTED):
            self._loaded = False
            self._load_pending = False
            self._report_error(FaultCategory.OTHER, "mpv exited")

    def _on_property_change(self, name: str | None, value: Any):
        if name == "pause":
            was_paused = self._paused
            self._paused = bool(value)
            if self._paused and not was_paused:
                self._emit(ev.PAUSE)
            elif was_paused and not self._paused and self._loaded:
                self._emit(ev.PLAY)
        elif name == "eof-reached":
            self._ended = bool(value)
        elif name == "mute":
            self._muted = bool(value)

    def _on_end_file(self, reason: str, file_error: str):
        self._loaded = False
        if reason == "eof":
            self._ended = True
            self._emit(ev.ENDED)
        elif reason == "error":
            self._report_error(classify_file_error(file_error), file_error)
        # "stop", "quit" and "redirect" are our own doing


class MPVEngine:
    """One streaming session on the shared mpv instance.

    Each load applies hwdec plus the tuning options first, so a software
    decoding fallback from an earlier session never carries over.
    """

    def __init__(self, options: Mapping[str, Any], hwdec: str = "auto"):
        self.options = dict(options)
        self.hwdec = hwdec
        self._handlers: dict[str, list[Callable[..., Any]]] = {}
        self._media: MPVMedia | None = None
        self._url = ""
        self._destroyed = False

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def on(self, event: str, handler: Callable[..., Any]):
        self._handlers.setdefault(event, []).append(handler)

    def emit(self, event: str, *args):
        if self._destroyed:
            return
        for handler in list(self._handlers.get(event, [])):
            handler(*args)

    def load_source(self, url: str):
        self._url = url
        self._maybe_load()

    def attach_media(self, media: MPVMedia):
        self._media = media
        media.bind_engine(self)
        self._maybe_load()

    def _maybe_load(self):
        if self._destroyed or self._media is None or not self._url:
            return
        client = self._media.client
        for name, value in {"hwdec": self.hwdec, **self.options}.items():
            client.set_property_nowait(name, value, callback=self._option_reply(name, value))
        self._media._load(self._url)

    @staticmethod
    def _option_reply(name: str, value: Any) -> Callable[[dict | None], None]:
        def check(resp):
            if resp is not None and resp.get("error") != "success":
                logger.warning("mpv rejected engine option %s=%r: %s", name, value, resp.get("error"))
        return check

    def recover_media_error(self):
        """Fall back to software decoding and reload the stream in place.

        mpv has already dropped the failed entry by the time end-file
        reports it, so recovery means loading the same URL again.
        """
        if self._destroyed or self._media is None:
            return
        logger.info("Recovering media error: switching to software decoding")
        if not self._media.client.set_property_nowait("hwdec", "no"):
            raise MPVError("could not switch hwdec off: mpv not connected")
        self._media._load(self._url)

    def destroy(self):
        if self._destroyed:
            return
        self._destroyed = True
        self._handlers.clear()
        if self._media is not None:
            self._media.unbind_engine(self)
            self._media.client.command_nowait("stop")
            self._media = None


class MPVEngineFactory:
    """Creates MPVEngine sessions while the mpv IPC link is up.

    With enabled=False the controller falls back to native playback
    (plain loadfile, no tuning options or fault classification).
    """

    def __init__(self, client: MPVClient, enabled: bool = True, hwdec: str = "auto"):
        self._client = client
        self.enabled = enabled
        self.hwdec = hwdec

    def is_supported(self) -> bool:
        return self.enabled and self._client.connected

    def create(self, options: Mapping[str, Any]) -> MPVEngine:
        return MPVEngine(options, hwdec=self.hwdec)
