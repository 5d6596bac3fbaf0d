"""Background connectivity watcher.

Probes a TCP endpoint on an interval and reports online/offline transitions
through a callback. Only transitions are reported, never steady state.
"""

import logging
import socket
import threading
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_PROBE_HOST = "1.1.1.1"
DEFAULT_PROBE_PORT = 53


def probe(host: str, port: int, timeout: float = 2.0) -> bool:
    """Return True if a TCP connection to host:port succeeds."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


class ConnectivityWatcher:
    """Emits on_change(online) whenever reachability flips.

    The first probe only records the baseline; a host that starts offline
    produces an "offline" transition right away.
    """

    def __init__(
        self,
        on_change: Callable[[bool], None],
        host: str = DEFAULT_PROBE_HOST,
        port: int = DEFAULT_PROBE_PORT,
        interval: float = 10.0,
        probe_fn: Callable[[str, int], bool] = probe,
    ):
        self._on_change = on_change
        self.host = host
        self.port = port
        self.interval = interval
        self._probe = probe_fn
        self._online: bool | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def online(self) -> bool | None:
        return self._online

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="connectivity")
        self._thread.start()
        logger.info("Connectivity watcher started (%s:%d every %.0fs)", self.host, self.port, self.interval)

    def stop(self):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    def check(self):
        """Run one probe and report a transition if there was one."""
        online = self._probe(self.host, self.port)
        previous = self._online
        self._online = online
        if previous is None:
            if not online:
                logger.warning("Starting offline")
                self._on_change(False)
            return
        if online != previous:
            logger.info("Connectivity changed: %s", "online" if online else "offline")
            self._on_change(online)

    def _loop(self):
        while not self._stop.is_set():
            try:
                self.check()
            except Exception as e:
                logger.warning("Connectivity check failed: %s", e)
            self._stop.wait(self.interval)
