"""Track repository and manager tests."""

import json

import pytest
from conftest import encode_blob, make_tone

from voxstudio.core.encoding import RawAudioBlob
from voxstudio.core.errors import TrackLimitError, TrackNotFoundError
from voxstudio.core.sessions import TrackSessionStore
from voxstudio.core.storage import StorageManager
from voxstudio.core.tracks import JsonTrackRepository, Track, TrackManager, blob_sample_rate

PROJECT = "demo"


@pytest.fixture
def repository(tmp_path):
    return JsonTrackRepository(tmp_path / "tracks.json")


@pytest.fixture
def manager(repository, tmp_path):
    return TrackManager(
        repository,
        sessions=TrackSessionStore(),
        storage=StorageManager(str(tmp_path / "audio")),
    )


def test_manager_keeps_empty_injected_sessions(repository):
    sessions = TrackSessionStore()
    assert len(sessions) == 0
    assert TrackManager(repository, sessions=sessions).sessions is sessions


def test_create_track_appends_in_order(manager, wav_blob):
    """New tracks get max(order)+1 and start unmuted at full volume."""
    first = manager.create_track(PROJECT, "Vocals", wav_blob)
    second = manager.create_track(PROJECT, "Harmony", wav_blob, description="take 2")

    assert (first.track_order, second.track_order) == (1, 2)
    assert second.description == "take 2"
    assert first.volume == 1.0 and first.pan == 0.0
    assert not first.is_muted and not first.is_solo
    assert first.duration_seconds == pytest.approx(2.0)
    assert first.sample_rate == 16000
    assert first.user_id == "local"


def test_order_follows_highest_existing(manager, wav_blob):
    tracks = [manager.create_track(PROJECT, f"t{i}", wav_blob) for i in range(3)]
    manager.delete_track(tracks[0].id)
    manager.reorder_tracks(PROJECT, [tracks[2].id, tracks[1].id])
    manager.update_track(tracks[1].id, track_order=7)

    assert manager.create_track(PROJECT, "late", wav_blob).track_order == 8


def test_track_limit(manager, wav_blob):
    for i in range(10):
        manager.create_track(PROJECT, f"t{i}", wav_blob)

    with pytest.raises(TrackLimitError):
        manager.create_track(PROJECT, "eleventh", wav_blob)
    assert len(manager.list_tracks(PROJECT)) == 10
    # other projects are unaffected
    assert manager.create_track("other", "t", wav_blob).track_order == 1


def test_create_track_stores_audio_and_session(manager, wav_blob, tmp_path):
    track = manager.create_track(PROJECT, "Vocals", wav_blob)

    assert track.audio_path.endswith(f"track-{track.id}.wav")
    assert (tmp_path / "audio" / f"track-{track.id}.wav").read_bytes() == wav_blob.data
    assert manager.sessions.get(track.id).duration == pytest.approx(2.0)


def test_delete_track_clears_session_and_audio(manager, wav_blob):
    track = manager.create_track(PROJECT, "Vocals", wav_blob)
    handle = manager.sessions.get(track.id).playable_url

    manager.delete_track(track.id)

    assert manager.list_tracks(PROJECT) == []
    assert track.id not in manager.sessions
    assert manager.sessions.handles.resolve(handle) is None
    assert manager.storage.list_recordings() == []


def test_delete_unknown_track(manager):
    with pytest.raises(TrackNotFoundError):
        manager.delete_track("missing")


def test_solo_is_exclusive_and_unmutes(manager, wav_blob):
    """Soloing a track unmutes it and clears solo everywhere else."""
    a, b, c = (manager.create_track(PROJECT, name, wav_blob) for name in "abc")
    manager.solo_track(a.id, True)
    manager.mute_track(b.id, True)

    soloed = manager.solo_track(b.id, True)
    assert soloed.is_solo and not soloed.is_muted

    flags = {t.name: (t.is_solo, t.is_muted) for t in manager.list_tracks(PROJECT)}
    assert flags == {"a": (False, False), "b": (True, False), "c": (False, False)}

    manager.solo_track(b.id, False)
    assert not any(t.is_solo for t in manager.list_tracks(PROJECT))


def test_mute_track(manager, wav_blob):
    track = manager.create_track(PROJECT, "a", wav_blob)
    assert manager.mute_track(track.id, True).is_muted
    assert not manager.mute_track(track.id, False).is_muted


def test_reorder_assigns_contiguous_orders(manager, wav_blob):
    a, b, c = (manager.create_track(PROJECT, name, wav_blob) for name in "abc")
    ordered = manager.reorder_tracks(PROJECT, [c.id, a.id, b.id])

    assert [t.name for t in ordered] == ["c", "a", "b"]
    assert [t.track_order for t in ordered] == [1, 2, 3]


@pytest.mark.parametrize("value, expected", [(1.5, 1.0), (-0.2, 0.0), (0.35, 0.35)])
def test_volume_is_clamped(manager, wav_blob, value, expected):
    track = manager.create_track(PROJECT, "a", wav_blob)
    assert manager.set_track_volume(track.id, value).volume == pytest.approx(expected)


@pytest.mark.parametrize("value, expected", [(2.0, 1.0), (-3.0, -1.0), (-0.5, -0.5)])
def test_pan_is_clamped(manager, wav_blob, value, expected):
    track = manager.create_track(PROJECT, "a", wav_blob)
    assert manager.set_track_pan(track.id, value).pan == pytest.approx(expected)


def test_load_tracks_opens_sessions_from_disk(repository, tmp_path, wav_blob, flac_blob):
    storage = StorageManager(str(tmp_path / "audio"))
    writer = TrackManager(repository, storage=storage)
    first = writer.create_track(PROJECT, "wav", wav_blob)
    second = writer.create_track(PROJECT, "flac", flac_blob)

    reader = TrackManager(repository, sessions=TrackSessionStore(), storage=storage)
    tracks = reader.load_tracks(PROJECT)

    assert [t.id for t in tracks] == [first.id, second.id]
    assert reader.sessions.get(first.id).duration == pytest.approx(2.0)
    assert reader.sessions.get(second.id).audio_blob.mime_type == "audio/flac"


def test_load_tracks_skips_missing_audio(repository, tmp_path, wav_blob):
    storage = StorageManager(str(tmp_path / "audio"))
    track = TrackManager(repository, storage=storage).create_track(PROJECT, "a", wav_blob)
    storage.delete_recording(f"track-{track.id}.wav")

    reader = TrackManager(repository)
    assert len(reader.load_tracks(PROJECT)) == 1
    assert track.id not in reader.sessions


def test_repository_persists_json(repository, tmp_path):
    track = repository.insert({"project_id": PROJECT, "user_id": "u1", "name": "x"})
    content = json.loads((tmp_path / "tracks.json").read_text(encoding="utf-8"))

    assert content["tracks"][0]["id"] == track.id
    assert track.created_at == track.updated_at
    assert repository.get(track.id) == track
    assert repository.list(PROJECT, "someone-else") == []


def test_repository_update_unknown(repository):
    with pytest.raises(TrackNotFoundError):
        repository.update("nope", {"name": "x"})


def test_track_from_dict_ignores_unknown_columns():
    track = Track.from_dict({"id": "1", "project_id": "p", "user_id": "u", "name": "n", "extra": 1})
    assert track.to_dict()["name"] == "n"
    assert "extra" not in track.to_dict()


def test_blob_sample_rate(flac_blob):
    assert blob_sample_rate(flac_blob) == 16000
    assert blob_sample_rate(RawAudioBlob(b"junk", "audio/ogg")) == 44100
    stereo = encode_blob(make_tone(0.5, 22050, channels=2), 22050, "WAV", "PCM_16", "audio/wav")
    assert blob_sample_rate(stereo) == 22050
