"""
Timeline compiler.

Resolves the relative placement of mixer tracks ("after the previous
track", "overlap by N seconds", "together with group g1", "after voice
2") into absolute start times and a total duration.

The compiler is a pure function of its input: no I/O, no hidden state,
and it never raises for bad placement data. Unresolvable references fall
back to sequential placement after the previous track of the same type.
"""

import math
from enum import Enum
from typing import Dict, List, Mapping, NamedTuple, Optional, Sequence

from . import config
from .models import (
    MixerTrack,
    CalculatedTrack,
    TimelineResult,
    BeforeVoicesPlacement,
    StartPlacement,
    WithFirstVoicePlacement,
    AfterVoicePlacement,
    EndPlacement,
)


class AnchorKind(str, Enum):
    START = "start"
    PREVIOUS = "previous"
    AFTER = "after"


class Anchor(NamedTuple):
    """What a track's play_after points at."""
    kind: AnchorKind
    track_id: Optional[str] = None

    @classmethod
    def parse(cls, value: object) -> "Anchor":
        """
        Parse a play_after value.

        "start" and "previous" are keywords (case-insensitive); any other
        non-blank string is a track id. Missing or non-string values mean
        "previous".
        """
        if not isinstance(value, str) or not value.strip():
            return cls(AnchorKind.PREVIOUS)
        text = value.strip()
        if text.lower() == "start":
            return cls(AnchorKind.START)
        if text.lower() == "previous":
            return cls(AnchorKind.PREVIOUS)
        return cls(AnchorKind.AFTER, text)


# Older sfx data encoded "with first voice" as a play_after keyword
_CONCURRENT_START = "concurrent-start"


def _as_float(value: object) -> Optional[float]:
    """Finite float or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _overlap_seconds(value: object) -> float:
    overlap = _as_float(value)
    if overlap is None or overlap < 0:
        return 0.0
    return overlap


def _type_of(track: MixerTrack) -> str:
    return getattr(track.type, "value", track.type)


class _Layout:
    """Incremental layout state for one compile_timeline call."""

    def __init__(self, durations: Mapping[str, float], defaults: Mapping[str, float]):
        self.durations = durations
        self.defaults = defaults
        self.placed: List[CalculatedTrack] = []
        self.by_id: Dict[str, CalculatedTrack] = {}
        self.last_by_type: Dict[str, CalculatedTrack] = {}
        self.voices: List[CalculatedTrack] = []
        self.group_of: Dict[str, str] = {}
        self.group_starts: Dict[str, float] = {}
        self.latest_end = 0.0

    def place(self, track: MixerTrack) -> CalculatedTrack:
        track_type = _type_of(track)
        duration = self.resolve_duration(track, track_type)

        group = self._group_key(track, track_type)
        if group is not None and group in self.group_starts:
            # Group members share the first member's start; their own
            # anchor and overlap are ignored.
            start = self.group_starts[group]
        else:
            start = self._start_for(track, track_type)
            if group is not None:
                self.group_starts[group] = start

        data = {name: getattr(track, name) for name in MixerTrack.model_fields}
        calculated = CalculatedTrack(
            **data,
            actual_start_time=start,
            actual_duration=duration,
        )

        self.placed.append(calculated)
        self.by_id.setdefault(calculated.id, calculated)
        self.last_by_type[track_type] = calculated
        if group is not None:
            self.group_of[calculated.id] = group
        if track_type == "voice":
            self.voices.append(calculated)
        self.latest_end = max(self.latest_end, start + duration)
        return calculated

    def resolve_duration(self, track: MixerTrack, track_type: str) -> float:
        """Measured duration, then the track's own, then the stream default."""
        for candidate in (self.durations.get(track.id), track.duration):
            value = _as_float(candidate)
            if value is not None and value >= 0:
                return value
        default = _as_float(self.defaults.get(track_type))
        return default if default is not None and default >= 0 else 0.0

    def _group_key(self, track: MixerTrack, track_type: str) -> Optional[str]:
        if isinstance(track.concurrent_group, str) and track.concurrent_group.strip():
            return f"group:{track.concurrent_group.strip()}"
        if not track.is_concurrent:
            return None
        # Concurrent without a named group: play with the previous track of
        # the same type.
        previous = self.last_by_type.get(track_type)
        if previous is None:
            return None
        key = self.group_of.get(previous.id)
        if key is None:
            key = f"track:{previous.id}"
            self.group_of[previous.id] = key
            self.group_starts[key] = previous.actual_start_time
        return key

    def _start_for(self, track: MixerTrack, track_type: str) -> float:
        pinned = _as_float(track.start_time)
        if pinned is not None and pinned >= 0:
            return pinned

        placement = self._placement_for(track, track_type)
        if placement is not None:
            anchor_time = self._placement_anchor(placement)
        else:
            anchor_time = self._anchor_time(Anchor.parse(track.play_after), track, track_type)

        return max(0.0, anchor_time - _overlap_seconds(track.overlap))

    def _placement_for(self, track: MixerTrack, track_type: str):
        # Structured placement wins over the free-text play_after
        if track.placement is not None:
            return track.placement
        if track_type != "sfx":
            return None
        play_after = track.play_after.strip() if isinstance(track.play_after, str) else ""
        if play_after == _CONCURRENT_START:
            return WithFirstVoicePlacement()
        if not play_after:
            return EndPlacement()
        return None

    def _placement_anchor(self, placement) -> float:
        if isinstance(placement, (BeforeVoicesPlacement, StartPlacement)):
            return 0.0
        if isinstance(placement, WithFirstVoicePlacement):
            return self.voices[0].actual_start_time if self.voices else 0.0
        if isinstance(placement, AfterVoicePlacement):
            if not self.voices:
                return self.latest_end
            index = min(max(placement.index, 0), len(self.voices) - 1)
            voice = self.voices[index]
            return voice.actual_start_time + voice.actual_duration
        if isinstance(placement, EndPlacement):
            return self.latest_end
        print(f"[timeline] Unknown placement {placement!r}, placing at end")
        return self.latest_end

    def _anchor_time(self, anchor: Anchor, track: MixerTrack, track_type: str) -> float:
        if anchor.kind is AnchorKind.START:
            return 0.0
        if anchor.kind is AnchorKind.AFTER:
            target = self.by_id.get(anchor.track_id)
            if target is not None:
                return target.actual_start_time + target.actual_duration
            print(
                f"[timeline] play_after {anchor.track_id!r} of {track.id} does not resolve "
                f"to an earlier track, placing after previous"
            )
        previous = self.last_by_type.get(track_type)
        if previous is None:
            return 0.0
        return previous.actual_start_time + previous.actual_duration

    def result(self) -> TimelineResult:
        return TimelineResult(
            calculated_tracks=self.placed,
            total_duration=self.latest_end if self.placed else 0.0,
        )


def compile_timeline(
    tracks: Sequence[MixerTrack],
    durations: Optional[Mapping[str, float]] = None,
    defaults: Optional[Mapping[str, float]] = None,
) -> TimelineResult:
    """
    Lay out tracks on an absolute timeline.

    Tracks are placed in list order. A track's start is its anchor time
    minus its overlap, clamped at 0:

    - play_after "start": 0
    - play_after "previous" (or missing): end of the previous track of
      the same type, 0 for the first one
    - play_after <track id>: end of that earlier track; unknown or
      forward references fall back to "previous"
    - sfx placement: beforeVoices/start -> 0, withFirstVoice -> first
      voice's start, afterVoice(i) -> end of voice i (index clamped),
      end -> end of everything placed so far. Sfx with neither
      placement nor play_after go to the end.

    Tracks with a concurrent_group start together with the group's first
    member. An explicit start_time >= 0 pins a track.

    Args:
        tracks: Ordered mixer tracks
        durations: Measured durations by track id
        defaults: Placeholder duration per stream type

    Returns:
        Calculated tracks (input order) and the total duration
    """
    layout = _Layout(
        durations or {},
        defaults if defaults is not None else config.get_default_durations(),
    )
    for track in tracks:
        layout.place(track)
    return layout.result()
