"""Tests for the mpv media output and engine (mocked IPC client)."""

from unittest.mock import MagicMock, call

import pytest

from streamkeeper.playback import media as ev
from streamkeeper.playback.controller import SessionController, State
from streamkeeper.playback.faults import MSG_MEDIA_ERROR, ErrorReport, FaultCategory, PlaybackRejected
from streamkeeper.server.mpv_backend import (
    MPVEngine,
    MPVEngineFactory,
    MPVMedia,
    MPVProcess,
    classify_file_error,
)
from streamkeeper.server.mpv_client import IPC_DISCONNECTED, MPVError

URL = "https://cdn.example.com/live/index.m3u8"


@pytest.fixture
def ipc():
    client = MagicMock()
    client.connected = True
    client.command_nowait.return_value = True
    client.set_property_nowait.return_value = True
    return client


@pytest.fixture
def mpv_media(ipc):
    # Events and replies run inline instead of being posted to a loop
    return MPVMedia(ipc, post=lambda fn, *args: fn(*args))


@pytest.fixture
def recorder(mpv_media):
    events = []
    for name in (ev.LOADSTART, ev.CANPLAY, ev.ERROR, ev.ENDED, ev.PAUSE, ev.PLAY):
        mpv_media.add_event_listener(name, lambda *a, _n=name: events.append(_n))
    return events


def feed(mpv_media, **msg):
    mpv_media._on_ipc_event(msg)


def loadfile_calls(ipc):
    return [c for c in ipc.command_nowait.call_args_list if c.args[0] == "loadfile"]


def answer_load(ipc, entry_id=3):
    """mpv accepts the most recent loadfile."""
    loadfile_calls(ipc)[-1].kwargs["callback"](
        {"error": "success", "data": {"playlist_entry_id": entry_id}, "request_id": 1},
    )


def hwdec_values(ipc):
    return [c.args[1] for c in ipc.set_property_nowait.call_args_list if c.args[0] == "hwdec"]


class TestClassifyFileError:
    @pytest.mark.parametrize("text, category", [
        ("loading failed", FaultCategory.NETWORK),
        ("Loading failed", FaultCategory.NETWORK),
        ("nothing to play", FaultCategory.NETWORK),
        ("unrecognized file format", FaultCategory.OTHER),
        ("video output initialization failed", FaultCategory.UNSUPPORTED),
        ("audio output initialization failed", FaultCategory.UNSUPPORTED),
        ("", FaultCategory.MEDIA),
        ("invalid data", FaultCategory.MEDIA),
    ])
    def test_categories(self, text, category):
        assert classify_file_error(text) == category


class TestMPVMedia:
    def test_start_observes_properties(self, mpv_media, ipc):
        mpv_media.start(muted=True)
        ipc.add_event_handler.assert_called_once_with(mpv_media._on_ipc_event)
        assert ipc.observe_property.call_args_list == [call("pause"), call("eof-reached"), call("mute")]
        assert ipc.set_property_nowait.call_args.args == ("mute", True)
        assert mpv_media.muted is True

    def test_observe_again_after_relaunch(self, mpv_media, ipc):
        mpv_media.start(muted=True)
        mpv_media.observe(False)
        ipc.add_event_handler.assert_called_once()
        assert ipc.observe_property.call_count == 6
        assert mpv_media.muted is False

    def test_close(self, mpv_media, ipc):
        mpv_media.close()
        ipc.remove_event_handler.assert_called_once_with(mpv_media._on_ipc_event)

    def test_mute_not_sent_keeps_cache(self, mpv_media, ipc):
        ipc.set_property_nowait.return_value = False
        mpv_media.muted = True
        assert mpv_media.muted is False

    def test_mute_rejected_reverts_cache(self, mpv_media, ipc):
        mpv_media.muted = True
        assert mpv_media.muted is True
        ipc.set_property_nowait.call_args.kwargs["callback"]({"error": "property unavailable"})
        assert mpv_media.muted is False

    def test_src_loads_file(self, mpv_media, ipc):
        mpv_media.src = URL
        assert ipc.command_nowait.call_args.args == ("loadfile", URL, "replace")
        assert mpv_media.src == URL

    def test_loadfile_not_sent_raises(self, mpv_media, ipc):
        ipc.command_nowait.return_value = False
        with pytest.raises(MPVError):
            mpv_media.src = URL

    def test_loadfile_refused_is_media_error(self, mpv_media, ipc, recorder):
        mpv_media.src = URL
        loadfile_calls(ipc)[-1].kwargs["callback"]({"error": "invalid parameter"})
        assert recorder == [ev.ERROR]
        assert mpv_media.error.code == ev.MEDIA_ERR_DECODE

    def test_lost_loadfile_reply_is_silent(self, mpv_media, ipc, recorder):
        mpv_media.src = URL
        loadfile_calls(ipc)[-1].kwargs["callback"](None)
        assert recorder == []
        feed(mpv_media, event="file-loaded")
        assert recorder == [ev.CANPLAY]

    def test_can_play_hls(self, mpv_media):
        assert mpv_media.can_play_type(ev.HLS_MIME_TYPE) == "maybe"
        assert mpv_media.can_play_type("video/webm") == ""

    def test_play_before_load_rejected(self, mpv_media):
        with pytest.raises(PlaybackRejected):
            mpv_media.play()

    def test_play_after_load(self, mpv_media, ipc):
        feed(mpv_media, event="file-loaded")
        mpv_media.play()
        ipc.set_property_nowait.assert_called_with("pause", False)

    def test_play_while_disconnected(self, mpv_media, ipc):
        feed(mpv_media, event="file-loaded")
        ipc.set_property_nowait.return_value = False
        with pytest.raises(PlaybackRejected):
            mpv_media.play()

    def test_pause(self, mpv_media, ipc):
        mpv_media.pause()
        ipc.set_property_nowait.assert_called_with("pause", True)

    def test_start_file_is_loadstart(self, mpv_media, recorder):
        feed(mpv_media, event="start-file", playlist_entry_id=3)
        assert recorder == [ev.LOADSTART]

    def test_file_loaded_is_canplay(self, mpv_media, recorder):
        feed(mpv_media, event="file-loaded")
        assert recorder == [ev.CANPLAY]

    def test_events_before_loadfile_reply_ignored(self, mpv_media, ipc, recorder):
        feed(mpv_media, event="file-loaded")
        mpv_media.src = URL
        # Still the previous entry: mpv has not answered the new loadfile yet
        feed(mpv_media, event="file-loaded")
        feed(mpv_media, event="end-file", reason="error", file_error="loading failed")
        assert recorder == [ev.CANPLAY]
        assert mpv_media.error is None
        answer_load(ipc, 4)
        feed(mpv_media, event="start-file", playlist_entry_id=4)
        feed(mpv_media, event="file-loaded")
        assert recorder == [ev.CANPLAY, ev.LOADSTART, ev.CANPLAY]

    def test_reply_to_replaced_load_ignored(self, mpv_media, ipc, recorder):
        mpv_media.src = URL
        first = loadfile_calls(ipc)[0]
        mpv_media.src = URL
        first.kwargs["callback"]({"error": "success", "data": {"playlist_entry_id": 7}})
        feed(mpv_media, event="file-loaded")
        assert recorder == []

    def test_pause_property_changes(self, mpv_media, recorder):
        feed(mpv_media, event="file-loaded")
        feed(mpv_media, event="property-change", name="pause", data=False)
        feed(mpv_media, event="property-change", name="pause", data=True)
        assert recorder == [ev.CANPLAY, ev.PLAY, ev.PAUSE]
        assert mpv_media.paused is True

    def test_playback_restart_is_play_when_running(self, mpv_media, recorder):
        feed(mpv_media, event="playback-restart")
        assert recorder == []
        feed(mpv_media, event="property-change", name="pause", data=False)
        feed(mpv_media, event="playback-restart")
        assert recorder == [ev.PLAY]

    def test_eof_is_ended(self, mpv_media, recorder):
        feed(mpv_media, event="end-file", reason="eof")
        assert recorder == [ev.ENDED]
        assert mpv_media.ended is True

    def test_stopped_file_is_silent(self, mpv_media, recorder):
        feed(mpv_media, event="end-file", reason="stop")
        assert recorder == []

    def test_error_without_engine_sets_media_error(self, mpv_media, recorder):
        feed(mpv_media, event="end-file", reason="error", file_error="loading failed")
        assert recorder == [ev.ERROR]
        assert mpv_media.error.code == ev.MEDIA_ERR_NETWORK
        assert mpv_media.error.message == "loading failed"

    def test_decode_error_code(self, mpv_media):
        feed(mpv_media, event="end-file", reason="error", file_error="invalid data")
        assert mpv_media.error.code == ev.MEDIA_ERR_DECODE

    def test_start_file_clears_error(self, mpv_media):
        feed(mpv_media, event="end-file", reason="error", file_error="invalid data")
        feed(mpv_media, event="start-file")
        assert mpv_media.error is None

    def test_stale_entry_ignored(self, mpv_media, ipc, recorder):
        mpv_media.src = URL
        answer_load(ipc, 3)
        feed(mpv_media, event="end-file", reason="error", file_error="loading failed", playlist_entry_id=2)
        assert recorder == []
        assert mpv_media.error is None

    def test_disconnect_without_engine(self, mpv_media, recorder):
        feed(mpv_media, event=IPC_DISCONNECTED)
        assert recorder == [ev.ERROR]
        assert mpv_media.error is not None

    def test_disconnect_during_load_still_reported(self, mpv_media, recorder):
        mpv_media.src = URL
        feed(mpv_media, event=IPC_DISCONNECTED)
        assert recorder == [ev.ERROR]

    def test_events_are_posted(self, ipc):
        posted = []
        m = MPVMedia(ipc, post=lambda fn, *args: posted.append((fn, args)))
        m._on_ipc_event({"event": "file-loaded"})
        assert posted == [(m._handle_event, ({"event": "file-loaded"},))]


class TestMPVEngine:
    @pytest.fixture
    def engine(self):
        return MPVEngine({"cache-secs": 10, "network-timeout": 20})

    def test_load_after_attach(self, engine, mpv_media, ipc):
        engine.load_source(URL)
        ipc.command_nowait.assert_not_called()
        engine.attach_media(mpv_media)
        names = [c.args[0] for c in ipc.set_property_nowait.call_args_list]
        assert names == ["hwdec", "cache-secs", "network-timeout"]
        assert hwdec_values(ipc) == ["auto"]
        assert [c.args for c in loadfile_calls(ipc)] == [("loadfile", URL, "replace")]

    def test_attach_then_load(self, engine, mpv_media, ipc):
        engine.attach_media(mpv_media)
        engine.load_source(URL)
        assert len(loadfile_calls(ipc)) == 1

    def test_rejected_option_does_not_stop_load(self, engine, mpv_media, ipc):
        engine.attach_media(mpv_media)
        engine.load_source(URL)
        ipc.set_property_nowait.call_args_list[1].kwargs["callback"]({"error": "property not found"})
        assert len(loadfile_calls(ipc)) == 1

    def test_file_error_becomes_engine_fault(self, engine, mpv_media, ipc, recorder):
        reports = []
        engine.on(ev.ENGINE_ERROR, reports.append)
        engine.attach_media(mpv_media)
        engine.load_source(URL)
        answer_load(ipc, 3)
        feed(mpv_media, event="end-file", reason="error", file_error="loading failed", playlist_entry_id=3)
        assert reports == [ErrorReport(True, FaultCategory.NETWORK, "loading failed")]
        assert recorder == []

    def test_refused_load_is_fatal_other(self, engine, mpv_media, ipc):
        reports = []
        engine.on(ev.ENGINE_ERROR, reports.append)
        engine.attach_media(mpv_media)
        engine.load_source(URL)
        loadfile_calls(ipc)[-1].kwargs["callback"]({"error": "invalid parameter"})
        assert reports[0].fatal is True
        assert reports[0].category == FaultCategory.OTHER

    def test_manifest_parsed_on_file_loaded(self, engine, mpv_media):
        parsed = []
        engine.on(ev.MANIFEST_PARSED, lambda: parsed.append(True))
        engine.attach_media(mpv_media)
        feed(mpv_media, event="file-loaded")
        assert parsed == [True]

    def test_disconnect_is_fatal_other(self, engine, mpv_media):
        reports = []
        engine.on(ev.ENGINE_ERROR, reports.append)
        engine.attach_media(mpv_media)
        feed(mpv_media, event="shutdown")
        assert reports[0].fatal is True
        assert reports[0].category == FaultCategory.OTHER

    def test_recover_reloads_with_software_decoding(self, engine, mpv_media, ipc):
        engine.attach_media(mpv_media)
        engine.load_source(URL)
        engine.recover_media_error()
        assert hwdec_values(ipc) == ["auto", "no"]
        assert len(loadfile_calls(ipc)) == 2

    def test_recover_while_disconnected_raises(self, engine, mpv_media, ipc):
        engine.attach_media(mpv_media)
        ipc.set_property_nowait.return_value = False
        with pytest.raises(MPVError):
            engine.recover_media_error()

    def test_destroy(self, engine, mpv_media, ipc):
        reports = []
        engine.on(ev.ENGINE_ERROR, reports.append)
        engine.attach_media(mpv_media)
        engine.destroy()
        engine.destroy()
        assert engine.destroyed is True
        ipc.command_nowait.assert_called_once_with("stop")
        feed(mpv_media, event="end-file", reason="error", file_error="loading failed")
        assert reports == []

    def test_no_load_after_destroy(self, engine, mpv_media, ipc):
        engine.destroy()
        engine.attach_media(mpv_media)
        engine.load_source(URL)
        ipc.command_nowait.assert_not_called()

    def test_recover_after_destroy_is_noop(self, engine, mpv_media, ipc):
        engine.attach_media(mpv_media)
        engine.destroy()
        engine.recover_media_error()
        assert hwdec_values(ipc) == []


class TestMPVEngineFactory:
    def test_supported_when_connected(self, ipc):
        assert MPVEngineFactory(ipc).is_supported() is True

    def test_not_supported_when_disconnected(self, ipc):
        ipc.connected = False
        assert MPVEngineFactory(ipc).is_supported() is False

    def test_disabled(self, ipc):
        assert MPVEngineFactory(ipc, enabled=False).is_supported() is False

    def test_create_copies_options(self, ipc):
        options = {"cache-secs": 5}
        engine = MPVEngineFactory(ipc).create(options)
        options["cache-secs"] = 99
        assert engine.options == {"cache-secs": 5}

    def test_create_passes_hwdec(self, ipc):
        assert MPVEngineFactory(ipc, hwdec="v4l2m2m-copy").create({}).hwdec == "v4l2m2m-copy"


class TestControllerOverMPV:
    """SessionController driving MPVMedia and MPVEngine on virtual time."""

    @pytest.fixture
    def wired(self, ipc, scheduler):
        mpv_media = MPVMedia(ipc, post=lambda fn, *args: fn(*args))
        controller = SessionController(URL, scheduler, MPVEngineFactory(ipc))
        controller.attach(mpv_media)
        yield controller, mpv_media
        controller.teardown()

    def reach_playing(self, controller, mpv_media, ipc, entry_id=3):
        answer_load(ipc, entry_id)
        feed(mpv_media, event="start-file", playlist_entry_id=entry_id)
        feed(mpv_media, event="file-loaded")
        feed(mpv_media, event="property-change", name="pause", data=False)
        assert controller.state == State.PLAYING

    def test_decode_error_reloads_with_software_decoding(self, wired, ipc):
        controller, mpv_media = wired
        self.reach_playing(controller, mpv_media, ipc)

        feed(mpv_media, event="end-file", reason="error", file_error="generic error", playlist_entry_id=3)
        assert hwdec_values(ipc) == ["auto", "no"]
        assert len(loadfile_calls(ipc)) == 2
        assert controller.ui.error_message == MSG_MEDIA_ERROR
        assert controller.retry_state.attempts == 0
        assert controller.status()["reconnect_pending"] is False

        answer_load(ipc, 4)
        feed(mpv_media, event="start-file", playlist_entry_id=4)
        feed(mpv_media, event="file-loaded")
        feed(mpv_media, event="playback-restart")
        assert controller.state == State.PLAYING
        assert controller.ui.error_message == ""
        assert controller.ui.loading is False

    def test_next_session_restores_hardware_decoding(self, wired, ipc):
        controller, mpv_media = wired
        self.reach_playing(controller, mpv_media, ipc)
        feed(mpv_media, event="end-file", reason="error", file_error="generic error", playlist_entry_id=3)
        controller.reload()
        assert hwdec_values(ipc) == ["auto", "no", "auto"]
        assert len(loadfile_calls(ipc)) == 3

    def test_lost_link_keeps_retrying_until_mpv_returns(self, wired, ipc, scheduler):
        controller, mpv_media = wired
        self.reach_playing(controller, mpv_media, ipc)

        ipc.connected = False
        ipc.command_nowait.return_value = False
        ipc.set_property_nowait.return_value = False
        feed(mpv_media, event=IPC_DISCONNECTED)
        assert controller.state == State.RECOVERING
        assert controller.retry_state.attempts == 1

        scheduler.advance(5)
        assert controller.state == State.RECOVERING
        assert controller.retry_state.attempts == 2
        assert controller.status()["reconnect_pending"] is True

        ipc.connected = True
        ipc.command_nowait.return_value = True
        ipc.set_property_nowait.return_value = True
        controller.network_online()
        assert controller.retry_state.attempts == 2
        scheduler.advance(5)
        assert controller.state == State.STARTING
        assert controller.session.native is False
        assert loadfile_calls(ipc)[-1].args == ("loadfile", URL, "replace")

        answer_load(ipc, 5)
        feed(mpv_media, event="start-file", playlist_entry_id=5)
        feed(mpv_media, event="file-loaded")
        feed(mpv_media, event="playback-restart")
        assert controller.state == State.PLAYING
        assert controller.retry_state.attempts == 0
