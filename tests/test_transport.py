"""Multi-track transport tests."""

import numpy as np
import pytest
from conftest import FakeBackend, FakePlaybackElement, make_tone, make_track

from voxstudio.core.transport import MultiTrackTransport, StreamPlaybackElement, format_time
from voxstudio.core.wav import encode_wav


def _transport(*durations, **kwargs):
    transport = MultiTrackTransport(**kwargs)
    elements = {}
    for index, duration in enumerate(durations):
        track_id = "abc"[index]
        elements[track_id] = FakePlaybackElement(duration)
        transport.add_track(make_track(track_id, duration), elements[track_id])
    return transport, elements


def _run(transport, elements, seconds, step=0.25):
    for _ in range(int(seconds / step)):
        for element in elements.values():
            element.advance(step)
        transport.tick()


def test_duration_is_longest_track():
    transport, _ = _transport(3.0, 5.0, 2.0)
    assert transport.duration == 5.0


def test_play_starts_every_paused_element_at_playhead():
    transport, elements = _transport(3.0, 5.0, 2.0)
    transport.seek(1.0)
    transport.play()

    for element in elements.values():
        assert not element.paused
        assert element.time == 1.0
        assert element.play_calls == 1


def test_play_does_not_restart_running_elements():
    transport, elements = _transport(3.0, 5.0)
    transport.play()
    transport.play()
    assert [e.play_calls for e in elements.values()] == [1, 1]


def test_shorter_tracks_finish_early_and_stay_stopped():
    transport, elements = _transport(3.0, 5.0, 2.0)
    transport.play()
    _run(transport, elements, 3.5)

    assert elements["a"].paused and elements["c"].paused
    assert not elements["b"].paused
    assert transport.current_time == pytest.approx(3.5)
    assert transport.is_playing


def test_end_of_timeline_stops_and_rewinds_every_track():
    """Passing the logical duration pauses every element and rewinds to 0."""
    transport, elements = _transport(3.0, 5.0, 2.0)
    transport.play()
    _run(transport, elements, 6.0)

    assert not transport.is_playing
    assert transport.current_time == 0.0
    for element in elements.values():
        assert element.paused
        assert element.time == 0.0


def test_playhead_freezes_when_nothing_progresses():
    transport, elements = _transport(3.0, 5.0)
    transport.play()
    _run(transport, elements, 1.0)
    for element in elements.values():
        element.paused = True

    _run(transport, elements, 1.0)
    assert transport.current_time == pytest.approx(1.0)
    assert transport.is_playing


def test_seek_is_written_to_every_element_regardless_of_state():
    transport, elements = _transport(3.0, 5.0, 2.0)
    transport.seek(2.5)
    assert [e.seeks[-1] for e in elements.values()] == [2.5, 2.5, 2.5]

    transport.play()
    transport.seek(4.0)
    assert [e.seeks[-1] for e in elements.values()] == [4.0, 4.0, 4.0]


def test_pause_stops_running_elements():
    transport, elements = _transport(3.0, 5.0)
    transport.play()
    transport.pause()
    assert all(e.paused for e in elements.values())
    assert not transport.is_playing


def test_toggle():
    transport, elements = _transport(3.0)
    transport.toggle()
    assert transport.is_playing
    transport.toggle()
    assert not transport.is_playing


def test_skip_is_clamped_to_timeline():
    transport, _ = _transport(3.0, 15.0)
    transport.skip_forward()
    assert transport.current_time == 10.0
    transport.skip_forward()
    assert transport.current_time == 15.0
    transport.skip_back()
    transport.skip_back()
    assert transport.current_time == 0.0


def test_reset_stops_and_rewinds():
    transport, elements = _transport(3.0, 5.0)
    transport.play()
    _run(transport, elements, 1.0)
    transport.reset()

    assert not transport.is_playing
    assert transport.current_time == 0.0
    assert all(e.paused and e.time == 0.0 for e in elements.values())


def test_solo_gates_other_tracks():
    """A soloed track is audible; the others are silent whatever their mute flag."""
    transport = MultiTrackTransport()
    transport.add_track(make_track("a", 1.0, is_solo=True), FakePlaybackElement(1.0))
    transport.add_track(make_track("b", 1.0), FakePlaybackElement(1.0))
    transport.add_track(make_track("c", 1.0), FakePlaybackElement(1.0))

    assert [transport.is_audible(t) for t in "abc"] == [True, False, False]
    assert transport.effective_gain("b") == 0.0


def test_effective_gain_combines_track_and_master_volume():
    transport = MultiTrackTransport(master_volume=0.5)
    transport.add_track(make_track("a", 1.0, volume=0.8), FakePlaybackElement(1.0))
    transport.add_track(make_track("b", 1.0, is_muted=True), FakePlaybackElement(1.0))

    assert transport.effective_gain("a") == pytest.approx(0.4)
    assert transport.effective_gain("b") == 0.0


def test_mix_changes_apply_on_next_tick():
    """Mute, solo and volume reach the elements without a play/pause cycle."""
    transport, elements = _transport(5.0, 5.0)
    transport.play()
    transport.tick()
    assert elements["a"].volume == 1.0

    transport.update_track(make_track("a", 5.0, volume=0.3))
    transport.update_track(make_track("b", 5.0, is_muted=True))
    transport.tick()

    assert elements["a"].volume == pytest.approx(0.3)
    assert elements["b"].muted
    assert elements["a"].play_calls == elements["b"].play_calls == 1

    transport.update_track(make_track("b", 5.0, is_solo=True))
    transport.tick()
    assert elements["a"].muted
    assert not elements["b"].muted


def test_failing_track_is_isolated():
    """A track that fails to play is silenced and does not drive the playhead."""
    transport = MultiTrackTransport()
    broken = FakePlaybackElement(5.0, fail_on=("play",))
    good = FakePlaybackElement(4.0)
    transport.add_track(make_track("a", 5.0), broken)
    transport.add_track(make_track("b", 4.0), good)

    transport.play()
    assert transport.is_failed("a")
    assert not good.paused

    good.advance(1.5)
    transport.tick()
    assert transport.current_time == pytest.approx(1.5)
    assert broken.muted


def test_failing_load_is_isolated():
    transport = MultiTrackTransport()
    transport.add_track(make_track("a", 2.0), FakePlaybackElement(2.0, fail_on=("load",)))
    assert transport.is_failed("a")


def test_transport_stops_when_every_track_failed():
    transport = MultiTrackTransport()
    transport.add_track(make_track("a", 3.0), FakePlaybackElement(3.0, fail_on=("play",)))
    transport.add_track(make_track("b", 2.0), FakePlaybackElement(2.0, fail_on=("load",)))

    transport.play()
    assert transport.is_failed("a") and transport.is_failed("b")
    transport.tick()
    assert not transport.is_playing
    assert transport.current_time == 0.0


def test_transport_without_tracks_stops_on_tick():
    transport = MultiTrackTransport()
    transport.play()
    transport.tick()
    assert not transport.is_playing


def test_sync_tracks_adds_updates_and_removes():
    transport = MultiTrackTransport()
    created = []

    def factory(track):
        created.append(track.id)
        return FakePlaybackElement(track.duration_seconds)

    transport.sync_tracks([make_track("a", 2.0), make_track("b", 3.0)], factory)
    transport.sync_tracks([make_track("b", 3.0, volume=0.5)], factory)

    assert created == ["a", "b"]
    assert transport.track_ids == ["b"]
    assert transport.duration == 3.0
    transport.tick()
    assert transport.element("b").volume == pytest.approx(0.5)


def test_progress_percentage():
    transport, _ = _transport(4.0)
    assert transport.progress == 0.0
    transport.seek(1.0)
    assert transport.progress == pytest.approx(25.0)
    assert MultiTrackTransport().progress == 0.0


@pytest.mark.parametrize(
    "seconds, text",
    [(0, "0:00"), (5.9, "0:05"), (65, "1:05"), (600, "10:00"), (float("nan"), "0:00"), (float("inf"), "0:00")],
)
def test_format_time(seconds, text):
    assert format_time(seconds) == text


def test_stream_element_renders_at_its_own_clock():
    """The output callback advances the element and applies its gain."""
    backend = FakeBackend()
    blob = encode_wav(make_tone(1.0, 8000, amplitude=0.5), 8000)
    element = StreamPlaybackElement(blob, backend)
    element.load()
    assert element.duration == pytest.approx(1.0)

    element.volume = 0.5
    element.play()
    output = backend.outputs[-1]
    assert output.started

    block = output.callback(4000)
    assert block.shape == (4000, 1)
    assert element.current_time == pytest.approx(0.5)
    assert np.max(np.abs(block)) <= 0.25 + 1e-3

    output.callback(8000)
    assert element.ended and element.paused
    assert element.current_time == pytest.approx(1.0)

    element.close()
    assert output.closed


def test_stream_element_silent_while_paused():
    backend = FakeBackend()
    element = StreamPlaybackElement(encode_wav(make_tone(1.0, 8000), 8000), backend)
    element.play()
    element.pause()
    block = backend.outputs[-1].callback(100)
    assert not block.any()
    assert element.current_time == 0.0
