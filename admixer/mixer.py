"""
Mixer rebuild logic.

Builds the mixer state from the union of the active versions of all
streams: flattens their content into mixer tracks, lays them out with
the timeline compiler and stores the snapshot for playback/export.
"""

from typing import Dict, List, Optional, Tuple, Union
from datetime import datetime
import json
from sqlalchemy.orm import Session

from . import config, versions
from .models import (
    StreamType,
    VersionResponse,
    VoiceContent,
    MusicContent,
    SfxContent,
    MixerTrack,
    MixerState,
    MixerStateUpdate,
    ActivateResponse,
    DeleteVersionResponse,
)
from .database import Ad as DBAd, MixerStateRecord as DBMixerStateRecord
from .errors import NotFoundError, ValidationError
from .timeline import compile_timeline
from .utils.audio import estimate_voice_duration
from .utils.locks import get_mixer_lock
from .utils.validation import validate_audio_url

# Voice first: sfx placements anchor on the voice tracks
STREAM_ORDER = (StreamType.VOICE, StreamType.MUSIC, StreamType.SFX)

REMOVABLE_STREAMS = (StreamType.MUSIC, StreamType.SFX)


# ============================================
# FLATTENING
# ============================================

def _playable(url: Optional[str]) -> bool:
    is_valid, _ = validate_audio_url(url)
    return is_valid


def _music_label(track) -> str:
    if track.provider == "custom":
        # Custom uploads carry the file name in the prompt
        return track.prompt or "Custom track"
    provider_label = track.provider[:1].upper() + track.provider[1:]
    prompt = track.prompt or ""
    if not prompt:
        return provider_label
    preview = prompt[:25] + ("..." if len(prompt) > 25 else "")
    return f"{provider_label} - {preview}"


def _flatten_voice(version_id: str, content: VoiceContent, default_volume: float) -> List[MixerTrack]:
    tracks = []
    for index, track in enumerate(content.tracks):
        if not _playable(track.generated_url):
            continue
        duration = track.generated_duration
        if duration is None:
            duration = estimate_voice_duration(track.text)
        tracks.append(MixerTrack(
            id=f"voice-{version_id}-{index}",
            url=track.generated_url,
            label=(track.voice.name if track.voice and track.voice.name else f"Voice {index + 1}"),
            type=StreamType.VOICE,
            duration=duration,
            play_after=track.play_after,
            overlap=track.overlap,
            concurrent_group=track.concurrent_group,
            is_concurrent=track.is_concurrent,
            volume=track.volume if track.volume is not None else default_volume,
            metadata={
                "voice_id": track.voice.id if track.voice else None,
                "voice_provider": track.provider or (track.voice.provider if track.voice else None),
                "script_text": track.text,
                "speed": track.speed,
                "generated_duration": track.generated_duration,
            },
        ))
    return tracks


def _flatten_music(version_id: str, content: MusicContent, default_volume: float) -> List[MixerTrack]:
    track = content.track
    if not _playable(track.generated_url):
        return []
    duration = track.generated_duration if track.generated_duration is not None else track.duration
    return [MixerTrack(
        id=f"music-{version_id}",
        url=track.generated_url,
        label=_music_label(track),
        type=StreamType.MUSIC,
        duration=duration,
        play_after="start",
        volume=track.volume if track.volume is not None else default_volume,
        metadata={
            "prompt_text": track.prompt,
            "source": track.provider,
            "target_duration": track.duration,
            "generated_duration": track.generated_duration,
        },
    )]


def _flatten_sfx(version_id: str, content: SfxContent, default_volume: float) -> List[MixerTrack]:
    tracks = []
    for index, cue in enumerate(content.cues):
        if not _playable(cue.generated_url):
            continue
        duration = cue.generated_duration if cue.generated_duration is not None else cue.duration
        tracks.append(MixerTrack(
            id=f"sfx-{version_id}-{index}",
            url=cue.generated_url,
            label=cue.description[:50],
            type=StreamType.SFX,
            duration=duration,
            play_after=cue.play_after,
            overlap=cue.overlap,
            placement=cue.placement,
            volume=cue.volume if cue.volume is not None else default_volume,
            metadata={
                "prompt_text": cue.description,
                "original_duration": cue.duration,
                "generated_duration": cue.generated_duration,
            },
        ))
    return tracks


def flatten_version(version: VersionResponse, default_volume: float) -> List[MixerTrack]:
    """
    Turn a version's content into mixer tracks.

    Tracks without a playable generated URL are skipped.
    """
    content = version.content
    if isinstance(content, VoiceContent):
        return _flatten_voice(version.id, content, default_volume)
    elif isinstance(content, MusicContent):
        return _flatten_music(version.id, content, default_volume)
    elif isinstance(content, SfxContent):
        return _flatten_sfx(version.id, content, default_volume)
    raise ValueError(f"Unsupported content type: {type(content).__name__}")


# ============================================
# PERSISTENCE
# ============================================

def _require_ad(db: Session, ad_id: str) -> None:
    if db.query(DBAd).filter_by(id=ad_id).first() is None:
        raise NotFoundError(f"Ad not found: {ad_id}")


def _load_state(db: Session, ad_id: str) -> Optional[MixerState]:
    record = db.query(DBMixerStateRecord).filter_by(ad_id=ad_id).first()
    if record is None:
        return None
    try:
        return MixerState.model_validate(json.loads(record.data))
    except ValueError as e:
        # json and pydantic errors are both ValueErrors; the state is rebuilt anyway
        print(f"[mixer] Ignoring unreadable mixer state for ad {ad_id}: {e}")
        return None


def _save_state(db: Session, ad_id: str, state: MixerState) -> None:
    data = state.model_dump_json()
    record = db.query(DBMixerStateRecord).filter_by(ad_id=ad_id).first()
    if record is None:
        db.add(DBMixerStateRecord(ad_id=ad_id, data=data, updated_at=datetime.utcnow()))
    else:
        record.data = data
        record.updated_at = datetime.utcnow()
    db.commit()


def _layout_signature(state: MixerState) -> Tuple:
    return (
        tuple(
            (t.id, t.url, t.volume, t.actual_start_time, t.actual_duration)
            for t in state.calculated_tracks
        ),
        state.total_duration,
    )


# ============================================
# REBUILD
# ============================================

async def _collect_tracks(
    ad_id: str,
    db: Session,
) -> Tuple[List[MixerTrack], Dict[str, float], Dict[str, Optional[str]]]:
    default_volumes = config.get_default_volumes()
    tracks: List[MixerTrack] = []
    durations: Dict[str, float] = {}
    active_versions: Dict[str, Optional[str]] = {}

    for stream in STREAM_ORDER:
        active_id = await versions.get_active_version(ad_id, stream, db)
        active_versions[stream.value] = active_id
        if not active_id:
            continue
        # A broken stream must not take the others down with it
        try:
            version = await versions.get_version(ad_id, stream, active_id, db)
            if version is None:
                print(f"[mixer] Active {stream.value} version {active_id} of ad {ad_id} is missing")
                continue
            stream_tracks = flatten_version(version, default_volumes[stream.value])
        except (ValueError, TypeError, KeyError, IndexError) as e:
            print(f"[mixer] Skipping {stream.value} version {active_id} of ad {ad_id}: {e}")
            continue
        tracks.extend(stream_tracks)
        durations.update({
            t.id: t.metadata["generated_duration"]
            for t in stream_tracks
            if t.metadata.get("generated_duration") is not None
        })

    return tracks, durations, active_versions


async def rebuild_mixer(
    ad_id: str,
    db: Session,
) -> MixerState:
    """
    Rebuild and store the mixer state of an ad.

    The previous mixed_audio_url is kept only when the compiled layout is
    unchanged; per-track volume overrides are kept for tracks that still
    exist.

    Args:
        ad_id: Ad ID
        db: Database session

    Returns:
        The new mixer state

    Raises:
        NotFoundError: Ad does not exist
    """
    _require_ad(db, ad_id)
    async with get_mixer_lock(ad_id):
        print(f"[mixer] Rebuilding mixer for ad {ad_id}")
        tracks, durations, active_versions = await _collect_tracks(ad_id, db)
        calculated = compile_timeline(tracks, durations)

        state = MixerState(
            tracks=tracks,
            calculated_tracks=calculated.calculated_tracks,
            total_duration=calculated.total_duration,
            active_versions=active_versions,
            last_calculated=datetime.utcnow(),
        )

        previous = _load_state(db, ad_id)
        if previous is not None:
            track_ids = {t.id for t in tracks}
            state.volumes = {k: v for k, v in previous.volumes.items() if k in track_ids}
            if previous.mixed_audio_url and _layout_signature(previous) == _layout_signature(state):
                state.mixed_audio_url = previous.mixed_audio_url

        _save_state(db, ad_id, state)

    print(f"[mixer] Built {len(tracks)} tracks for ad {ad_id}, total {state.total_duration:.2f}s")
    return state


async def get_mixer_state(
    ad_id: str,
    db: Session,
) -> MixerState:
    """
    Get the stored mixer state.

    Returns:
        Stored state, or an empty state when the mixer was never built
    """
    _require_ad(db, ad_id)
    state = _load_state(db, ad_id)
    return state if state is not None else MixerState()


async def update_mixer_state(
    ad_id: str,
    update: MixerStateUpdate,
    db: Session,
) -> MixerState:
    """
    Apply a partial update from playback/export tooling.

    Raises:
        ValidationError: Volume override for a track not in the mixer
        NotFoundError: Ad does not exist
    """
    _require_ad(db, ad_id)
    async with get_mixer_lock(ad_id):
        state = _load_state(db, ad_id) or MixerState()
        fields = update.model_fields_set

        if "volumes" in fields and update.volumes is not None:
            track_ids = {t.id for t in state.tracks}
            unknown = sorted(set(update.volumes) - track_ids)
            if unknown:
                raise ValidationError(f"Unknown mixer tracks: {', '.join(unknown)}")
            state.volumes = {**state.volumes, **update.volumes}
        if "mixed_audio_url" in fields:
            state.mixed_audio_url = update.mixed_audio_url

        _save_state(db, ad_id, state)

    return state


# ============================================
# STORE + REBUILD
# ============================================

async def activate_and_rebuild(
    ad_id: str,
    stream: Union[StreamType, str],
    version_id: str,
    db: Session,
    force_freeze: bool = False,
) -> ActivateResponse:
    """
    Activate a version and immediately rebuild the mixer from it.
    """
    await versions.set_active_version(ad_id, stream, version_id, db, force_freeze=force_freeze)
    mixer = await rebuild_mixer(ad_id, db)
    return ActivateResponse(active=version_id, mixer=mixer)


async def delete_and_rebuild(
    ad_id: str,
    stream: Union[StreamType, str],
    version_id: str,
    db: Session,
) -> DeleteVersionResponse:
    """
    Delete a version; rebuild the mixer when it was the active one.
    """
    result = await versions.delete_version(ad_id, stream, version_id, db)
    if result.was_active:
        result.mixer = await rebuild_mixer(ad_id, db)
    return result


async def remove_stream(
    ad_id: str,
    stream: Union[StreamType, str],
    db: Session,
) -> MixerState:
    """
    Drop a music or sfx stream from the mixer by clearing its active pointer.

    Voice cannot be removed this way; it is edited in place.
    """
    stream = versions.as_stream(stream)
    if stream not in REMOVABLE_STREAMS:
        raise ValidationError("Only music and sfx streams can be removed")
    _require_ad(db, ad_id)

    await versions.clear_active_version(ad_id, stream, db)
    return await rebuild_mixer(ad_id, db)
