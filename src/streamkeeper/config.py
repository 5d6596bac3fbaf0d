"""Configuration loader for StreamKeeper."""

import os
from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # Python 3.10 fallback


def default_engine_options() -> dict:
    """Low-latency live tuning applied to each engine session (mpv properties)."""
    return {
        "cache-secs": 10,
        "demuxer-readahead-secs": 5,
        "demuxer-max-bytes": "50MiB",
        "network-timeout": 20,
        "framedrop": "decoder+vo",
        "audio-stream-silence": True,
    }


@dataclass
class ServerConfig:
    """Configuration for the control API and the mpv process."""

    host: str = "0.0.0.0"
    port: int = 5060
    mpv_socket: str = "/tmp/streamkeeper-mpv"
    mpv_binary: str = "mpv"
    mpv_hwdec: str = "auto"
    mpv_log_file: str = ""
    mpv_audio_device: str = ""       # e.g. "alsa/hdmi:CARD=vc4hdmi,DEV=0"
    data_dir: str = ""

    def __post_init__(self):
        if not self.data_dir:
            self.data_dir = os.path.expanduser("~/.streamkeeper")
        if not self.mpv_log_file:
            self.mpv_log_file = os.path.join(self.data_dir, "mpv.log")


@dataclass
class PlayerConfig:
    """Stream and recovery tuning. Durations are in milliseconds, as in the TOML."""

    stream_url: str = ""
    engine: str = "mpv"                    # "mpv" or "native"
    max_reconnect_attempts: int = 5
    reconnect_delay_ms: int = 5000
    health_check_interval_ms: int = 30000
    unmute_hint_ms: int = 10000
    media_wait_ms: int = 10000
    pause_resume_delay_ms: int = 1000      # 0 disables auto-resume after pause
    start_muted: bool = True
    engine_options: dict = field(default_factory=default_engine_options)


@dataclass
class ConnectivityConfig:
    """Network reachability probe feeding online/offline signals."""

    enabled: bool = True
    probe_host: str = "1.1.1.1"
    probe_port: int = 53
    interval_seconds: float = 10.0


@dataclass
class Config:
    """Top-level StreamKeeper configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    player: PlayerConfig = field(default_factory=PlayerConfig)
    connectivity: ConnectivityConfig = field(default_factory=ConnectivityConfig)


def load_config(path: str | None = None) -> Config:
    """Load configuration from streamkeeper.toml.

    Search order:
    1. Explicit path argument
    2. ./streamkeeper.toml
    3. ~/.config/streamkeeper/streamkeeper.toml
    4. Defaults
    """
    search_paths = []
    if path:
        search_paths.append(Path(path))
    search_paths.extend([
        Path("streamkeeper.toml"),
        Path.home() / ".config" / "streamkeeper" / "streamkeeper.toml",
    ])

    for p in search_paths:
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            return _parse_config(data)

    return Config()


def _parse_config(data: dict) -> Config:
    """Parse a TOML dict into Config."""
    config = Config()

    if "server" in data:
        s = data["server"]
        config.server = ServerConfig(
            host=s.get("host", config.server.host),
            port=s.get("port", config.server.port),
            mpv_socket=s.get("mpv_socket", config.server.mpv_socket),
            mpv_binary=s.get("mpv_binary", config.server.mpv_binary),
            mpv_hwdec=s.get("mpv_hwdec", config.server.mpv_hwdec),
            mpv_log_file=s.get("mpv_log_file", ""),
            mpv_audio_device=s.get("mpv_audio_device", config.server.mpv_audio_device),
            data_dir=s.get("data_dir", ""),
        )

    if "player" in data:
        p = data["player"]
        defaults = PlayerConfig()
        engine_options = default_engine_options()
        engine_options.update(p.get("engine", {}) if isinstance(p.get("engine"), dict) else {})
        config.player = PlayerConfig(
            stream_url=p.get("stream_url", defaults.stream_url),
            engine=p.get("engine_backend", defaults.engine),
            max_reconnect_attempts=p.get("max_reconnect_attempts", defaults.max_reconnect_attempts),
            reconnect_delay_ms=p.get("reconnect_delay_ms", defaults.reconnect_delay_ms),
            health_check_interval_ms=p.get("health_check_interval_ms", defaults.health_check_interval_ms),
            unmute_hint_ms=p.get("unmute_hint_ms", defaults.unmute_hint_ms),
            media_wait_ms=p.get("media_wait_ms", defaults.media_wait_ms),
            pause_resume_delay_ms=p.get("pause_resume_delay_ms", defaults.pause_resume_delay_ms),
            start_muted=p.get("start_muted", defaults.start_muted),
            engine_options=engine_options,
        )

    if "connectivity" in data:
        c = data["connectivity"]
        defaults = ConnectivityConfig()
        config.connectivity = ConnectivityConfig(
            enabled=c.get("enabled", defaults.enabled),
            probe_host=c.get("probe_host", defaults.probe_host),
            probe_port=c.get("probe_port", defaults.probe_port),
            interval_seconds=c.get("interval_seconds", defaults.interval_seconds),
        )

    return config
