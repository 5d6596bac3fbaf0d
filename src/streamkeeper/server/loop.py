"""Event loop thread hosting the playback controller.

The controller is single-threaded: every call into it must happen on the
loop thread. Flask request threads, the mpv IPC reader and the connectivity
watcher go through call() / post().
"""

import asyncio
import concurrent.futures
import logging
import threading

logger = logging.getLogger(__name__)


class LoopThread:
    """asyncio event loop running forever in a daemon thread."""

    def __init__(self, name: str = "playback-loop"):
        self._name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise RuntimeError("Loop thread not started")
        return self._loop

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.is_running:
            return
        self._ready.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name=self._name)
        self._thread.start()
        self._ready.wait(timeout=5)
        logger.info("Playback loop started")

    def _run(self):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        self._ready.set()
        try:
            loop.run_forever()
        finally:
            loop.close()

    def stop(self):
        if not self.is_running:
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=10)
        self._thread = None
        self._loop = None
        logger.info("Playback loop stopped")

    def post(self, fn, *args):
        """Schedule fn(*args) on the loop without waiting."""
        self.loop.call_soon_threadsafe(fn, *args)

    def call(self, fn, *args, timeout: float = 5.0):
        """Run fn(*args) on the loop and return its result to the caller."""
        if threading.current_thread() is self._thread:
            return fn(*args)

        future: concurrent.futures.Future = concurrent.futures.Future()

        def runner():
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args))
            except Exception as e:
                future.set_exception(e)

        self.loop.call_soon_threadsafe(runner)
        return future.result(timeout=timeout)
