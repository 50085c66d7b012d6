"""
Tests for the mixer rebuilder.

Versions are created through the store and given generated audio so the
rebuilder sees playable tracks.
"""

import pytest

from admixer import ads, mixer, versions
from admixer.database import Ad, MixerStateRecord, StreamVersion
from admixer.errors import NotFoundError, ValidationError
from admixer.models import AdCreate, GeneratedAudioUpdate, MixerStateUpdate

AD = "ad-mix"


async def make_active(db, stream, content, durations, activate=True):
    """Create a draft, attach audio to every track and optionally activate it."""
    vid = await versions.create_version(AD, stream, content, db, resolve_draft=True)
    for index, duration in enumerate(durations):
        await versions.record_generated_audio(
            AD, stream, vid,
            GeneratedAudioUpdate(
                index=index,
                url=f"https://cdn.example.com/{stream}-{vid}-{index}.mp3",
                duration=duration,
            ),
            db,
        )
    if activate:
        await mixer.activate_and_rebuild(AD, stream, vid, db, force_freeze=True)
    return vid


class TestRebuild:
    """Building mixer state from active versions."""

    @pytest.mark.asyncio
    async def test_empty_ad(self, db):
        await ads.ensure_ad(AdCreate(id=AD), db)

        state = await mixer.rebuild_mixer(AD, db)

        assert state.tracks == []
        assert state.total_duration == 0.0
        assert state.active_versions == {"voice": None, "music": None, "sfx": None}

    @pytest.mark.asyncio
    async def test_all_streams(self, db):
        await make_active(db, "voice", {"tracks": [{"text": "Hello"}, {"text": "World", "overlap": 1}]}, [5, 4])
        await make_active(db, "music", {"track": {"prompt": "Chill lo-fi beat"}}, [20])
        await make_active(
            db, "sfx",
            {"cues": [{"description": "Door slam", "placement": {"type": "afterVoice", "index": 0}}]},
            [1.5],
        )

        state = await mixer.get_mixer_state(AD, db)

        assert [t.type.value for t in state.tracks] == ["voice", "voice", "music", "sfx"]
        starts = {t.id: t.actual_start_time for t in state.calculated_tracks}
        assert starts == {
            "voice-v1-0": 0.0,
            "voice-v1-1": 4.0,
            "music-v1": 0.0,
            "sfx-v1-0": 5.0,
        }
        assert state.total_duration == 20.0
        assert state.active_versions == {"voice": "v1", "music": "v1", "sfx": "v1"}

    @pytest.mark.asyncio
    async def test_default_volumes(self, db):
        await make_active(db, "voice", {"tracks": [{"text": "Hi"}, {"text": "Loud", "volume": 1.5}]}, [1, 1])
        await make_active(db, "music", {"track": {"prompt": "Jazz"}}, [10])

        state = await mixer.get_mixer_state(AD, db)

        volumes = {t.id: t.volume for t in state.tracks}
        assert volumes == {"voice-v1-0": 1.0, "voice-v1-1": 1.5, "music-v1": 0.3}

    @pytest.mark.asyncio
    async def test_tracks_without_audio_are_skipped(self, db):
        vid = await versions.create_version(AD, "voice", {"tracks": [{"text": "A"}, {"text": "B"}]}, db)
        await versions.record_generated_audio(
            AD, "voice", vid, GeneratedAudioUpdate(index=1, url="https://x/b.mp3", duration=2), db
        )

        result = await mixer.activate_and_rebuild(AD, "voice", vid, db)

        assert result.active == vid
        assert [t.id for t in result.mixer.tracks] == ["voice-v1-1"]

    @pytest.mark.asyncio
    async def test_corrupt_stream_does_not_break_others(self, db):
        await make_active(db, "voice", {"tracks": [{"text": "Hi"}]}, [3])
        await make_active(db, "music", {"track": {"prompt": "Rock"}}, [10])

        row = db.query(StreamVersion).filter_by(ad_id=AD, stream="music", version_id="v1").first()
        row.content = "{not json"
        db.commit()

        state = await mixer.rebuild_mixer(AD, db)

        assert [t.id for t in state.tracks] == ["voice-v1-0"]
        assert state.active_versions["music"] == "v1"


class TestMixedAudioUrl:
    """The rendered mix survives only an unchanged layout."""

    @pytest.mark.asyncio
    async def test_kept_when_layout_unchanged(self, db):
        await make_active(db, "voice", {"tracks": [{"text": "Hi"}]}, [3])
        await mixer.update_mixer_state(AD, MixerStateUpdate(mixed_audio_url="https://x/mix.mp3"), db)

        state = await mixer.rebuild_mixer(AD, db)

        assert state.mixed_audio_url == "https://x/mix.mp3"

    @pytest.mark.asyncio
    async def test_dropped_on_structural_change(self, db):
        await make_active(db, "voice", {"tracks": [{"text": "Hi"}]}, [3])
        await mixer.update_mixer_state(AD, MixerStateUpdate(mixed_audio_url="https://x/mix.mp3"), db)

        await make_active(db, "music", {"track": {"prompt": "Ambient"}}, [12])

        state = await mixer.get_mixer_state(AD, db)
        assert state.mixed_audio_url is None


class TestMixerUpdates:
    """Volume overrides and stream removal."""

    @pytest.mark.asyncio
    async def test_volume_overrides_survive_rebuild(self, db):
        await make_active(db, "voice", {"tracks": [{"text": "Hi"}]}, [3])

        await mixer.update_mixer_state(AD, MixerStateUpdate(volumes={"voice-v1-0": 0.5}), db)
        state = await mixer.rebuild_mixer(AD, db)

        assert state.volumes == {"voice-v1-0": 0.5}

    @pytest.mark.asyncio
    async def test_volume_overrides_pruned_with_track(self, db):
        await make_active(db, "voice", {"tracks": [{"text": "Hi"}]}, [3])
        await mixer.update_mixer_state(AD, MixerStateUpdate(volumes={"voice-v1-0": 0.5}), db)

        await make_active(db, "voice", {"tracks": [{"text": "Hello again"}]}, [3])

        state = await mixer.get_mixer_state(AD, db)
        assert state.volumes == {}

    @pytest.mark.asyncio
    async def test_unknown_volume_track_rejected(self, db):
        await ads.ensure_ad(AdCreate(id=AD), db)

        with pytest.raises(ValidationError):
            await mixer.update_mixer_state(AD, MixerStateUpdate(volumes={"nope": 1.0}), db)

    @pytest.mark.asyncio
    async def test_remove_stream(self, db):
        await make_active(db, "voice", {"tracks": [{"text": "Hi"}]}, [3])
        await make_active(db, "sfx", {"cues": [{"description": "Whoosh"}]}, [1])

        state = await mixer.remove_stream(AD, "sfx", db)

        assert [t.type.value for t in state.tracks] == ["voice"]
        assert state.active_versions["sfx"] is None
        assert await versions.get_active_version(AD, "sfx", db) is None
        # The version itself is kept
        assert await versions.list_versions(AD, "sfx", db) == ["v1"]

    @pytest.mark.asyncio
    async def test_voice_cannot_be_removed(self, db):
        with pytest.raises(ValidationError):
            await mixer.remove_stream(AD, "voice", db)

    @pytest.mark.asyncio
    async def test_delete_active_rebuilds(self, db):
        await make_active(db, "voice", {"tracks": [{"text": "Hi"}]}, [3])
        await make_active(db, "music", {"track": {"prompt": "Funk"}}, [8])

        result = await mixer.delete_and_rebuild(AD, "music", "v1", db)

        assert result.was_active is True
        assert [t.type.value for t in result.mixer.tracks] == ["voice"]
        assert await versions.get_active_version(AD, "music", db) is None

    @pytest.mark.asyncio
    async def test_delete_inactive_skips_rebuild(self, db):
        await make_active(db, "voice", {"tracks": [{"text": "Hi"}]}, [3], activate=False)

        result = await mixer.delete_and_rebuild(AD, "voice", "v1", db)

        assert result.was_active is False
        assert result.mixer is None


class TestUnknownAd:
    """Mixer operations never create an ad as a side effect."""

    @pytest.mark.asyncio
    async def test_rebuild_unknown_ad(self, db):
        with pytest.raises(NotFoundError):
            await mixer.rebuild_mixer("typo-ad", db)

        assert db.query(Ad).filter_by(id="typo-ad").first() is None
        assert db.query(MixerStateRecord).filter_by(ad_id="typo-ad").first() is None

    @pytest.mark.asyncio
    async def test_update_unknown_ad(self, db):
        with pytest.raises(NotFoundError):
            await mixer.update_mixer_state(
                "typo-ad", MixerStateUpdate(mixed_audio_url="https://x/mix.mp3"), db
            )

        assert db.query(Ad).filter_by(id="typo-ad").first() is None

    @pytest.mark.asyncio
    async def test_remove_stream_and_get_unknown_ad(self, db):
        with pytest.raises(NotFoundError):
            await mixer.remove_stream("typo-ad", "music", db)
        with pytest.raises(NotFoundError):
            await mixer.get_mixer_state("typo-ad", db)

        assert db.query(Ad).filter_by(id="typo-ad").first() is None
