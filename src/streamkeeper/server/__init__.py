"""Host side: mpv backend, event loop thread, REST API."""
