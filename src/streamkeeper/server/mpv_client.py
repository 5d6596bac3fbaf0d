"""mpv JSON IPC client.

Communicates with mpv via its Unix domain socket using the JSON IPC protocol.
A reader thread owns the receive side: replies are matched to requests by
request_id, and asynchronous event messages are handed to registered
event handlers (on the reader thread).
Ref: https://mpv.io/manual/master/#json-ipc
"""

import concurrent.futures
import json
import logging
import socket
import threading
import time
from typing import Any, Callable

logger = logging.getLogger(__name__)

# Synthetic event delivered when the socket drops without disconnect() being called
IPC_DISCONNECTED = "ipc-disconnected"


class MPVError(Exception):
    """Error communicating with mpv."""


class MPVClient:
    """Client for mpv's JSON IPC protocol over Unix socket.

    Usage:
        client = MPVClient("/tmp/streamkeeper-mpv")
        client.connect()
        client.add_event_handler(lambda msg: print(msg["event"]))
        client.observe_property("pause")
        client.command("loadfile", "https://example.com/live.m3u8", "replace")
    """

    def __init__(self, socket_path: str = "/tmp/streamkeeper-mpv"):
        self.socket_path = socket_path
        self._sock: socket.socket | None = None
        self._lock = threading.Lock()
        self._request_id = 0
        self._observe_id = 0
        self._pending: dict[int, concurrent.futures.Future] = {}
        self._event_handlers: list[Callable[[dict], None]] = []
        self._reader: threading.Thread | None = None
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self, timeout: float = 5.0) -> bool:
        """Connect to the mpv IPC socket.

        Returns True if connected, False if socket doesn't exist yet.
        """
        with self._lock:
            if self._sock is not None:
                return True
            try:
                sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
                sock.settimeout(timeout)
                sock.connect(self.socket_path)
                sock.settimeout(None)
            except (FileNotFoundError, ConnectionRefusedError):
                logger.debug("mpv socket not available at %s", self.socket_path)
                return False
            except OSError as e:
                logger.warning("Failed to connect to mpv: %s", e)
                return False
            self._sock = sock
            self._closing = False
            self._reader = threading.Thread(
                target=self._read_loop, args=(sock,), daemon=True, name="mpv-ipc-reader",
            )
            self._reader.start()
        logger.info("Connected to mpv at %s", self.socket_path)
        return True

    def wait_for_socket(self, attempts: int = 20, interval: float = 0.5) -> bool:
        """Poll until mpv has created its IPC socket (Pi needs 2-4s)."""
        for _ in range(attempts):
            if self.connect():
                return True
            time.sleep(interval)
        logger.error("Failed to connect to mpv IPC after %.0fs", attempts * interval)
        return False

    def disconnect(self):
        """Close the connection. Pending requests resolve to None."""
        with self._lock:
            sock = self._sock
            self._sock = None
        if sock is not None:
            self._close_socket(sock)
        self._fail_pending()

    def add_event_handler(self, handler: Callable[[dict], None]):
        # Handlers run on the reader thread and must not wait on a command reply
        self._event_handlers.append(handler)

    def remove_event_handler(self, handler: Callable[[dict], None]):
        try:
            self._event_handlers.remove(handler)
        except ValueError:
            pass

    @staticmethod
    def _close_socket(sock: socket.socket):
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            sock.close()
        except OSError:
            pass

    def _fail_pending(self):
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for fut in pending:
            if not fut.done():
                fut.set_result(None)

    def _send(self, data: dict, timeout: float = 5.0) -> dict | None:
        """Send a JSON command and wait for the reader to deliver the response."""
        if not self._sock and not self.connect():
            return None

        future: concurrent.futures.Future = concurrent.futures.Future()
        if not self._submit(data, future):
            return None
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            with self._lock:
                self._pending.pop(data["request_id"], None)
            logger.warning("mpv did not answer %s within %.0fs", data.get("command"), timeout)
            return None

    def _submit(self, data: dict, future: concurrent.futures.Future | None = None) -> bool:
        """Write one request. The reply, if any, resolves future on the reader thread."""
        with self._lock:
            if self._sock is None:
                return False
            self._request_id += 1
            request_id = self._request_id
            data["request_id"] = request_id
            if future is not None:
                self._pending[request_id] = future
            msg = json.dumps(data) + "\n"
            try:
                self._sock.sendall(msg.encode("utf-8"))
            except OSError:
                self._pending.pop(request_id, None)
                # The reader sees the dead socket and reports the drop
                self._close_socket(self._sock)
                return False
        return True

    def _read_loop(self, sock: socket.socket):
        buffer = b""
        while True:
            try:
                chunk = sock.recv(4096)
            except OSError:
                chunk = b""
            if not chunk:
                break
            buffer += chunk
            while b"\n" in buffer:
                line, buffer = buffer.split(b"\n", 1)
                if line.strip():
                    self._handle_line(line)

        # Socket closed: by us (disconnect) or by mpv going away
        with self._lock:
            dropped = self._sock is sock and not self._closing
            if dropped:
                self._sock = None
        self._fail_pending()
        if dropped:
            logger.warning("mpv IPC connection lost")
            self._dispatch({"event": IPC_DISCONNECTED})

    def _handle_line(self, line: bytes):
        try:
            msg = json.loads(line)
        except json.JSONDecodeError:
            return
        if "event" in msg:
            self._dispatch(msg)
            return
        request_id = msg.get("request_id")
        with self._lock:
            future = self._pending.pop(request_id, None)
        if future is not None and not future.done():
            future.set_result(msg)

    def _dispatch(self, msg: dict):
        for handler in list(self._event_handlers):
            try:
                handler(msg)
            except Exception:
                logger.exception("mpv event handler failed for %s", msg.get("event"))

    def command(self, *args) -> dict | None:
        """Send a command to mpv.

        Examples:
            client.command("stop")
            client.command("loadfile", "https://example.com/live.m3u8", "replace")
        """
        return self._send({"command": list(args)})

    def command_nowait(self, *args, callback: Callable[[dict | None], None] | None = None) -> bool:
        """Send a command without waiting for mpv to answer.

        Returns False if nothing could be sent (not connected). callback, if
        given, receives the reply on the reader thread, or None when the
        connection drops first.
        """
        future = None
        if callback is not None:
            future = concurrent.futures.Future()
            future.add_done_callback(lambda f: callback(f.result()))
        return self._submit({"command": list(args)}, future)

    def set_property_nowait(
        self, name: str, value: Any, callback: Callable[[dict | None], None] | None = None,
    ) -> bool:
        return self.command_nowait("set_property", name, value, callback=callback)

    def observe_property(self, name: str) -> int:
        """Ask mpv to push property-change events for name. Returns the observer id."""
        self._observe_id += 1
        observe_id = self._observe_id
        resp = self.command("observe_property", observe_id, name)
        if not resp or resp.get("error") != "success":
            raise MPVError(f"observe_property {name} failed: {resp}")
        return observe_id

    def quit(self) -> bool:
        """Tell mpv to exit."""
        self._closing = True
        resp = self.command("quit")
        self.disconnect()
        return resp is not None
