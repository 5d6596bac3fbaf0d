"""CLI entry points for StreamKeeper.

streamkeeper-server: Runs mpv, the playback controller and the REST API
streamkeeper: Remote control client (status, retry, reload, mute, signals)
"""

import argparse
import json
import logging
import os
import socket
import sys
import threading
import time


def run_server():
    """Entry point for streamkeeper-server command."""
    parser = argparse.ArgumentParser(
        description="StreamKeeper server - self-healing live stream player with a REST API"
    )
    parser.add_argument(
        "--host", default=None, help="Host to bind to (default: 0.0.0.0)"
    )
    parser.add_argument(
        "--port", type=int, default=None, help="Port to listen on (default: 5060)"
    )
    parser.add_argument(
        "--url", default=None, help="HLS stream URL (overrides [player] stream_url)"
    )
    parser.add_argument(
        "--config", default=None, help="Path to streamkeeper.toml config file"
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)"
    )
    parser.add_argument(
        "--quiet", action="store_true",
        help="Suppress per-request werkzeug logs"
    )
    parser.add_argument(
        "--no-connectivity", action="store_true",
        help="Disable the background network probe (signals only via the API)"
    )
    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    log = logging.getLogger("streamkeeper")

    from streamkeeper.config import load_config
    from streamkeeper.server.app import create_app

    config = load_config(args.config)

    # CLI args override config file
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.url:
        config.player.stream_url = args.url
    if args.no_connectivity:
        config.connectivity.enabled = False

    if not config.player.stream_url:
        log.error("No stream URL. Set [player] stream_url in streamkeeper.toml or pass --url.")
        sys.exit(2)

    os.makedirs(config.server.data_dir, exist_ok=True)
    app = create_app(config)

    if args.quiet:
        logging.getLogger("werkzeug").setLevel(logging.WARNING)

    log.info("StreamKeeper server starting on %s:%d", config.server.host, config.server.port)

    # Notify systemd that we're ready (if running as a service)
    _notify_systemd("READY=1")
    _start_watchdog()

    try:
        app.run(
            host=config.server.host,
            port=config.server.port,
            threaded=True,  # SSE streams + status polls
            use_reloader=False,  # Don't reload - we have background threads
        )
    finally:
        app.runtime.stop()


def _notify_systemd(state: str):
    """Send a notification to systemd via NOTIFY_SOCKET.

    No external dependency needed - uses raw socket protocol.
    """
    notify_socket = os.environ.get("NOTIFY_SOCKET")
    if not notify_socket:
        return
    try:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
        if notify_socket.startswith("@"):
            # Abstract socket
            notify_socket = "\0" + notify_socket[1:]
        sock.connect(notify_socket)
        sock.sendall(state.encode())
        sock.close()
    except OSError:
        pass


def _start_watchdog():
    """Start a background thread that pings the systemd watchdog.

    Only active when WATCHDOG_USEC is set by systemd.
    """
    watchdog_usec = os.environ.get("WATCHDOG_USEC")
    if not watchdog_usec:
        return
    interval = int(watchdog_usec) / 1_000_000 / 2  # Ping at half the timeout

    def watchdog_loop():
        while True:
            _notify_systemd("WATCHDOG=1")
            time.sleep(interval)

    t = threading.Thread(target=watchdog_loop, daemon=True, name="sd-watchdog")
    t.start()
    logging.getLogger("streamkeeper").debug("Systemd watchdog started (interval=%.0fs)", interval)


def _format_status(status: dict) -> str:
    if status.get("error_message"):
        headline = f"ERROR: {status['error_message']}"
    elif status.get("is_loading"):
        headline = "Loading..."
    else:
        headline = "Playing"
    lines = [
        headline,
        f"  state:    {status.get('state')} (session {status.get('session_id')})",
        f"  retries:  {status.get('retry_attempts')}/{status.get('max_retry_attempts')}",
        f"  muted:    {status.get('is_muted')}",
    ]
    if status.get("failure"):
        lines.append(f"  failure:  {status['failure']}")
    return "\n".join(lines)


def run_client(argv: list[str] | None = None) -> int:
    """Entry point for streamkeeper command. Controls a server over HTTP."""
    parser = argparse.ArgumentParser(description="StreamKeeper remote control")
    parser.add_argument("--host", default="localhost", help="Server host (default: localhost)")
    parser.add_argument("--port", type=int, default=5060, help="Server port (default: 5060)")
    parser.add_argument("--json", action="store_true", help="Print raw JSON")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show playback state")
    sub.add_parser("retry", help="Reset the retry budget and reconnect now")
    sub.add_parser("reload", help="Same as retry")
    sub.add_parser("mute", help="Toggle mute")
    sub.add_parser("unmute", help="Unmute")
    p_events = sub.add_parser("events", help="Show recent events")
    p_events.add_argument("--limit", type=int, default=20)
    p_signal = sub.add_parser("signal", help="Send a host signal")
    p_signal.add_argument("name", choices=["hidden", "visible", "online", "offline", "interaction"])

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    from streamkeeper.client import StreamKeeperAPIError, StreamKeeperClient

    client = StreamKeeperClient(args.host, args.port)
    try:
        if args.command == "status":
            result = client.get_status()
        elif args.command == "retry":
            result = client.retry()
        elif args.command == "reload":
            result = client.reload()
        elif args.command == "mute":
            result = client.toggle_mute()
        elif args.command == "unmute":
            result = client.unmute()
        elif args.command == "events":
            result = client.recent_events(args.limit)
        elif args.name in ("hidden", "visible"):
            result = client.set_hidden(args.name == "hidden")
        else:
            result = client.signal(args.name)
    except StreamKeeperAPIError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        client.close()

    if args.json or args.command in ("events", "signal"):
        print(json.dumps(result, indent=2))
    else:
        print(_format_status(result))
    return 0


def main_client():
    sys.exit(run_client())
