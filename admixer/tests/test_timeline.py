"""
Tests for the timeline compiler.
"""

import pytest

from admixer.models import MixerTrack
from admixer.timeline import Anchor, AnchorKind, compile_timeline

DEFAULTS = {"voice": 4.0, "music": 30.0, "sfx": 3.0}


def track(track_id, track_type="voice", **fields):
    return MixerTrack(
        id=track_id,
        url=f"https://cdn.example.com/{track_id}.mp3",
        label=track_id,
        type=track_type,
        **fields,
    )


def starts(result):
    return {t.id: t.actual_start_time for t in result.calculated_tracks}


class TestAnchor:
    """Parsing play_after values."""

    def test_keywords(self):
        assert Anchor.parse("start") == Anchor(AnchorKind.START)
        assert Anchor.parse(" Previous ") == Anchor(AnchorKind.PREVIOUS)

    def test_missing_means_previous(self):
        assert Anchor.parse(None).kind is AnchorKind.PREVIOUS
        assert Anchor.parse("   ").kind is AnchorKind.PREVIOUS
        assert Anchor.parse(3).kind is AnchorKind.PREVIOUS

    def test_track_reference(self):
        assert Anchor.parse("voice-v1-0") == Anchor(AnchorKind.AFTER, "voice-v1-0")


class TestSequentialLayout:
    """play_after chains and overlap."""

    def test_overlap_pulls_track_earlier(self):
        result = compile_timeline([
            track("A", duration=5, play_after="start"),
            track("B", duration=4, play_after="previous", overlap=1),
        ], defaults=DEFAULTS)

        assert starts(result) == {"A": 0.0, "B": 4.0}
        assert result.total_duration == 8.0

    def test_previous_chain_is_contiguous(self):
        durations = [2.0, 3.5, 1.25, 4.0]
        tracks = [track(f"t{i}", duration=d, play_after="previous") for i, d in enumerate(durations)]

        result = compile_timeline(tracks, defaults=DEFAULTS)

        placed = result.calculated_tracks
        assert placed[0].actual_start_time == 0.0
        for prev, cur in zip(placed, placed[1:]):
            assert cur.actual_start_time == prev.actual_start_time + prev.actual_duration
        assert result.total_duration == sum(durations)

    def test_previous_is_per_stream_type(self):
        result = compile_timeline([
            track("v0", duration=5),
            track("m0", "music", duration=20),
            track("v1", duration=3),
        ], defaults=DEFAULTS)

        assert starts(result) == {"v0": 0.0, "m0": 0.0, "v1": 5.0}
        assert result.total_duration == 20.0

    def test_overlap_larger_than_anchor_clamps_to_zero(self):
        result = compile_timeline([
            track("A", duration=2),
            track("B", duration=2, overlap=10),
        ], defaults=DEFAULTS)

        assert starts(result)["B"] == 0.0

    def test_negative_or_garbage_overlap_is_ignored(self):
        result = compile_timeline([
            track("A", duration=2),
            track("B", duration=2, overlap=-3),
        ], defaults=DEFAULTS)

        assert starts(result)["B"] == 2.0

    def test_explicit_track_reference(self):
        result = compile_timeline([
            track("A", duration=5),
            track("B", duration=2),
            track("C", duration=1, play_after="A"),
        ], defaults=DEFAULTS)

        assert starts(result)["C"] == 5.0

    def test_unresolved_reference_falls_back_to_previous(self):
        result = compile_timeline([
            track("A", duration=5),
            track("B", duration=2, play_after="does-not-exist"),
            track("C", duration=1, play_after="D"),
            track("D", duration=1),
        ], defaults=DEFAULTS)

        assert starts(result) == {"A": 0.0, "B": 5.0, "C": 7.0, "D": 8.0}

    def test_explicit_start_time_pins_track(self):
        result = compile_timeline([
            track("A", duration=5),
            track("B", duration=2, start_time=12),
        ], defaults=DEFAULTS)

        assert starts(result)["B"] == 12.0
        assert result.total_duration == 14.0


class TestDurations:
    """Duration resolution."""

    def test_measured_duration_wins(self):
        result = compile_timeline(
            [track("A", duration=5)],
            durations={"A": 2.5},
            defaults=DEFAULTS,
        )

        assert result.calculated_tracks[0].actual_duration == 2.5

    def test_missing_duration_uses_stream_default(self):
        result = compile_timeline([
            track("v", "voice"),
            track("m", "music"),
            track("s", "sfx", play_after="start"),
        ], defaults=DEFAULTS)

        assert [t.actual_duration for t in result.calculated_tracks] == [4.0, 30.0, 3.0]

    def test_zero_duration_track_is_kept(self):
        result = compile_timeline([
            track("A", duration=0),
            track("B", duration=3),
        ], defaults=DEFAULTS)

        assert [t.id for t in result.calculated_tracks] == ["A", "B"]
        assert result.calculated_tracks[0].actual_duration == 0.0
        assert starts(result)["B"] == 0.0

    def test_empty_input(self):
        result = compile_timeline([], defaults=DEFAULTS)

        assert result.calculated_tracks == []
        assert result.total_duration == 0.0


class TestConcurrency:
    """Concurrent groups share a start time."""

    def test_group_members_share_first_start(self):
        result = compile_timeline([
            track("A", duration=3),
            track("B", duration=4, concurrent_group="g1"),
            track("C", duration=2, concurrent_group="g1", play_after="start", overlap=1),
        ], defaults=DEFAULTS)

        assert starts(result)["B"] == 3.0
        assert starts(result)["C"] == 3.0
        assert result.total_duration == 7.0

    def test_is_concurrent_joins_previous_track(self):
        result = compile_timeline([
            track("A", duration=3),
            track("B", duration=5),
            track("C", duration=2, is_concurrent=True),
        ], defaults=DEFAULTS)

        assert starts(result)["C"] == starts(result)["B"] == 3.0


class TestSfxPlacement:
    """Structured sfx placement relative to the voice tracks."""

    def voices(self):
        return [
            track("v0", duration=5),
            track("v1", duration=4),
        ]

    def test_after_voice(self):
        result = compile_timeline(
            self.voices() + [track("s", "sfx", duration=1, placement={"type": "afterVoice", "index": 0})],
            defaults=DEFAULTS,
        )

        assert starts(result)["s"] == 5.0

    def test_after_voice_index_is_clamped(self):
        result = compile_timeline(
            self.voices() + [track("s", "sfx", duration=1, placement={"type": "afterVoice", "index": 7})],
            defaults=DEFAULTS,
        )

        assert starts(result)["s"] == 9.0

    def test_with_first_voice_and_before_voices(self):
        result = compile_timeline(
            [track("m", "music", duration=2), track("v0", duration=5, play_after="m")]
            + [
                track("s1", "sfx", duration=1, placement={"type": "withFirstVoice"}),
                track("s2", "sfx", duration=1, placement={"type": "beforeVoices"}),
                track("s3", "sfx", duration=1, placement={"type": "start"}),
            ],
            defaults=DEFAULTS,
        )

        assert starts(result)["s1"] == 2.0
        assert starts(result)["s2"] == 0.0
        assert starts(result)["s3"] == 0.0

    def test_end_uses_latest_end_so_far(self):
        result = compile_timeline(
            self.voices() + [track("m", "music", duration=20, play_after="start"),
                             track("s", "sfx", duration=1, placement={"type": "end"})],
            defaults=DEFAULTS,
        )

        assert starts(result)["s"] == 20.0
        assert result.total_duration == 21.0

    def test_sfx_without_placement_goes_to_end(self):
        result = compile_timeline(
            self.voices() + [track("s", "sfx", duration=1)],
            defaults=DEFAULTS,
        )

        assert starts(result)["s"] == 9.0

    def test_legacy_concurrent_start(self):
        result = compile_timeline(
            self.voices() + [track("s", "sfx", duration=1, play_after="concurrent-start")],
            defaults=DEFAULTS,
        )

        assert starts(result)["s"] == 0.0

    def test_placement_wins_over_play_after(self):
        result = compile_timeline(
            self.voices() + [track("s", "sfx", duration=1, play_after="start",
                                   placement={"type": "afterVoice", "index": 1})],
            defaults=DEFAULTS,
        )

        assert starts(result)["s"] == 9.0

    def test_placement_overlap(self):
        result = compile_timeline(
            self.voices() + [track("s", "sfx", duration=1, overlap=0.5,
                                   placement={"type": "afterVoice", "index": 0})],
            defaults=DEFAULTS,
        )

        assert starts(result)["s"] == 4.5

    def test_after_voice_without_voices_goes_to_end(self):
        result = compile_timeline([
            track("m", "music", duration=10),
            track("s", "sfx", duration=1, placement={"type": "afterVoice", "index": 0}),
        ], defaults=DEFAULTS)

        assert starts(result)["s"] == 10.0


def test_compile_is_idempotent():
    tracks = [
        track("v0", duration=5, play_after="start"),
        track("v1", duration=4, overlap=1),
        track("v2", concurrent_group="g"),
        track("m", "music", duration=12, play_after="start"),
        track("s", "sfx", placement={"type": "afterVoice", "index": 1}),
    ]

    first = compile_timeline(tracks, defaults=DEFAULTS)
    second = compile_timeline(tracks, defaults=DEFAULTS)

    assert first == second
    assert [t.id for t in first.calculated_tracks] == [t.id for t in tracks]


@pytest.mark.parametrize("bad", ["", "  ", "nan", None])
def test_malformed_placement_never_raises(bad):
    result = compile_timeline([
        track("A", duration=2, play_after=bad),
        track("B", play_after=bad, overlap=None),
    ], defaults=DEFAULTS)

    assert starts(result) == {"A": 0.0, "B": 2.0}
