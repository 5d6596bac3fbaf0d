"""Shared test fixtures for StreamKeeper test suite."""

import pytest

from streamkeeper.config import Config
from streamkeeper.playback.controller import SessionController
from streamkeeper.playback.media import PLAY
from streamkeeper.playback.signals import SignalHub
from streamkeeper.playback.ui_state import PlaybackUIState
from streamkeeper.server.app import create_app
from streamkeeper.server.events import EventBus
from streamkeeper.server.runtime import PlaybackRuntime

from fakes import STREAM_URL, FakeEngineFactory, FakeMedia, FakeScheduler


@pytest.fixture
def scheduler():
    """Virtual-time scheduler; timers only fire on advance()."""
    return FakeScheduler()


@pytest.fixture
def factory():
    return FakeEngineFactory()


@pytest.fixture
def media():
    return FakeMedia()


@pytest.fixture
def hub():
    return SignalHub()


@pytest.fixture
def ui():
    return PlaybackUIState()


@pytest.fixture
def controller(scheduler, factory, hub):
    """Controller wired to fakes, not yet attached to a media output."""
    c = SessionController(STREAM_URL, scheduler, factory, hub=hub)
    yield c
    c.teardown()


@pytest.fixture
def playing(controller, media):
    """Controller with a session that has reached PLAYING."""
    controller.mount()
    controller.attach(media)
    media.paused = False
    media.emit(PLAY)
    return controller


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def config(tmp_path):
    config = Config()
    config.server.data_dir = str(tmp_path)
    config.server.mpv_socket = str(tmp_path / "mpv.sock")
    config.player.stream_url = STREAM_URL
    config.connectivity.enabled = False
    return config


@pytest.fixture
def runtime(config):
    """Runtime on a real loop thread, with fake media and engine (no mpv)."""
    rt = PlaybackRuntime(config, engine_factory=FakeEngineFactory(), media=FakeMedia())
    yield rt
    rt.stop()


@pytest.fixture
def app(config, runtime):
    """Create a Flask test app backed by the fake runtime."""
    app = create_app(config, runtime=runtime)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    """Create a Flask test client."""
    return app.test_client()
