"""HTTP client for communicating with a StreamKeeper server.

Used by the `streamkeeper` command to read playback state and trigger
recovery operations remotely.
"""

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


class StreamKeeperAPIError(Exception):
    """Error communicating with the StreamKeeper server."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StreamKeeperClient:
    """HTTP client for the StreamKeeper REST API.

    Usage:
        client = StreamKeeperClient("raspberrypi.local", 5060)
        status = client.get_status()
        client.retry()
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5060,
        transport: httpx.BaseTransport | None = None,
    ):
        self.host = host
        self.port = port
        self.base_url = f"http://{host}:{port}"
        self._client = httpx.Client(base_url=self.base_url, timeout=DEFAULT_TIMEOUT, transport=transport)

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _request(self, method: str, path: str, data: dict | None = None) -> Any:
        try:
            resp = self._client.request(method, path, json=data)
            resp.raise_for_status()
            return resp.json()
        except httpx.ConnectError:
            raise StreamKeeperAPIError(f"Cannot connect to {self.base_url}")
        except httpx.TimeoutException:
            raise StreamKeeperAPIError("Request timed out")
        except httpx.HTTPStatusError as e:
            raise StreamKeeperAPIError(str(e), e.response.status_code)

    def _get(self, path: str) -> Any:
        return self._request("GET", path)

    def _post(self, path: str, data: dict | None = None) -> Any:
        return self._request("POST", path, data)

    # --- Status ---

    def health(self) -> dict:
        return self._get("/api/health")

    def get_status(self) -> dict:
        return self._get("/api/status")

    def recent_events(self, limit: int = 20) -> list[dict]:
        return self._get(f"/api/events/recent?limit={limit}")

    # --- Operations ---

    def retry(self) -> dict:
        return self._post("/api/retry")

    def reload(self) -> dict:
        return self._post("/api/reload")

    def toggle_mute(self) -> dict:
        return self._post("/api/mute/toggle")

    def unmute(self) -> dict:
        return self._post("/api/unmute")

    # --- Host signals ---

    def set_hidden(self, hidden: bool) -> dict:
        return self._post("/api/signals/visibility", {"hidden": hidden})

    def signal(self, name: str) -> dict:
        """Send "online", "offline" or "interaction"."""
        return self._post(f"/api/signals/{name}")
