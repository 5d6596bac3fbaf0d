"""Flask REST API for StreamKeeper.

Exposes the playback state the presentation layer renders (loading, error,
mute, unmute hint) and the operations it may invoke. Host signals from a
kiosk page (visibility, connectivity, first click) are posted here too.
"""

import json
import logging

from flask import Flask, Response, jsonify, request

from streamkeeper.__about__ import __version__
from streamkeeper.config import Config
from streamkeeper.server.runtime import PlaybackRuntime

logger = logging.getLogger(__name__)

# Route name -> controller operation
OPERATIONS = {
    "retry": "manual_retry",
    "reload": "reload",
    "mute/toggle": "toggle_mute",
    "unmute": "unmute",
    "click": "handle_video_click",
}


def create_app(
    config: Config | None = None,
    runtime: PlaybackRuntime | None = None,
    start: bool = True,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Full configuration. Uses defaults if None.
        runtime: Prebuilt playback runtime (tests inject fakes here).
        start: Start the runtime (loop thread, mpv) before returning.
    """
    if config is None:
        config = Config()
    if runtime is None:
        runtime = PlaybackRuntime(config)
    if start:
        runtime.start()

    app = Flask(__name__)
    app.config["STREAMKEEPER"] = config
    event_bus = runtime.event_bus

    # Global JSON error handler - prevents bare HTML 500s
    @app.errorhandler(Exception)
    def handle_exception(e):
        from werkzeug.exceptions import HTTPException
        if isinstance(e, HTTPException):
            return e
        logger.exception("Unhandled error: %s", e)
        return jsonify({"error": str(e)}), 500

    # Allow cross-origin requests from the kiosk page
    @app.after_request
    def add_cors_headers(response):
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    app.runtime = runtime
    app.event_bus = event_bus

    # --- Status ---

    @app.route("/api/health")
    def health():
        return jsonify({
            "status": "ok",
            "version": __version__,
            "loop_running": runtime.loop_thread.is_running,
            "mpv_connected": runtime.client.connected,
        })

    @app.route("/api/status")
    def status():
        """Observable playback state plus controller internals."""
        if not runtime.running:
            return jsonify({"error": "playback runtime not running"}), 503
        return jsonify(runtime.status())

    # --- User operations ---

    def _operation_view(operation):
        def view():
            if not runtime.running:
                return jsonify({"error": "playback runtime not running"}), 503
            state = runtime.invoke(operation)
            return jsonify({"ok": True, **state})
        return view

    for route, operation in OPERATIONS.items():
        app.add_url_rule(
            f"/api/{route}",
            endpoint=f"op_{operation}",
            view_func=_operation_view(operation),
            methods=["POST"],
        )

    # --- Host signals ---

    @app.route("/api/signals/visibility", methods=["POST"])
    def signal_visibility():
        data = request.get_json(silent=True) or {}
        hidden = data.get("hidden")
        if not isinstance(hidden, bool):
            return jsonify({"error": "hidden (bool) required"}), 400
        runtime.signal("visibility", hidden)
        return jsonify({"ok": True})

    @app.route("/api/signals/<name>", methods=["POST"])
    def signal_other(name):
        if name not in ("online", "offline", "interaction"):
            return jsonify({"error": f"unknown signal: {name}"}), 404
        runtime.signal(name)
        return jsonify({"ok": True})

    # --- Event Endpoints ---

    @app.route("/api/events")
    def events_stream():
        """SSE stream of real-time events."""
        def generate():
            q = event_bus.subscribe()
            try:
                while True:
                    try:
                        event = q.get(timeout=30)
                        data = json.dumps(event)
                        yield f"event: {event['type']}\ndata: {data}\n\n"
                    except Exception:
                        # Timeout - send keepalive heartbeat
                        yield ": heartbeat\n\n"
            finally:
                event_bus.unsubscribe(q)

        return Response(generate(), mimetype="text/event-stream")

    @app.route("/api/events/recent")
    def events_recent():
        """Get recent events."""
        try:
            limit = int(request.args.get("limit", 20))
        except ValueError:
            return jsonify({"error": "limit must be an integer"}), 400
        return jsonify(event_bus.recent(limit))

    return app
