"""
Pydantic models for stream content, versions, mixer state and API payloads.
"""

from enum import Enum
from pydantic import BaseModel, Field
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import datetime


class StreamType(str, Enum):
    """Independently versioned audio streams of an ad."""
    VOICE = "voice"
    MUSIC = "music"
    SFX = "sfx"


VersionStatus = Literal["draft", "frozen"]
CreatedBy = Literal["user", "llm"]


# ============================================
# TRACK MODEL
# ============================================

class SpeakerRef(BaseModel):
    """Reference to a provider voice."""
    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    provider: Optional[str] = None


class VoiceTrack(BaseModel):
    """One spoken line."""
    voice: Optional[SpeakerRef] = None
    text: str = Field(..., min_length=1, max_length=5000)
    speed: Optional[float] = Field(None, gt=0, le=4)
    provider: Optional[str] = None  # per-track provider override
    volume: Optional[float] = Field(None, ge=0, le=2)
    play_after: Optional[str] = None  # "start", "previous" or a track id
    overlap: Optional[float] = None  # seconds, pulls the track earlier
    is_concurrent: bool = False
    concurrent_group: Optional[str] = None
    generated_url: Optional[str] = None
    generated_duration: Optional[float] = Field(None, ge=0)


class MusicTrack(BaseModel):
    """Single background music cue."""
    prompt: str = Field(..., min_length=1, max_length=2000)
    provider: str = Field(default="loudly", min_length=1)
    duration: float = Field(default=30.0, gt=0, le=600)  # target seconds
    volume: Optional[float] = Field(None, ge=0, le=2)
    generated_url: Optional[str] = None
    generated_duration: Optional[float] = Field(None, ge=0)


class BeforeVoicesPlacement(BaseModel):
    type: Literal["beforeVoices"] = "beforeVoices"


class StartPlacement(BaseModel):
    """Older name for beforeVoices."""
    type: Literal["start"] = "start"


class WithFirstVoicePlacement(BaseModel):
    type: Literal["withFirstVoice"] = "withFirstVoice"


class AfterVoicePlacement(BaseModel):
    type: Literal["afterVoice"] = "afterVoice"
    index: int = Field(..., ge=0)


class EndPlacement(BaseModel):
    type: Literal["end"] = "end"


PlacementIntent = Annotated[
    Union[
        BeforeVoicesPlacement,
        StartPlacement,
        WithFirstVoicePlacement,
        AfterVoicePlacement,
        EndPlacement,
    ],
    Field(discriminator="type"),
]


class SfxCue(BaseModel):
    """One sound effect cue.

    ``placement`` is the structured intent. ``play_after``/``overlap`` are
    the older free-text fields; when both are present the structured
    placement decides the anchor.
    """
    description: str = Field(..., min_length=1, max_length=500)
    duration: Optional[float] = Field(None, ge=0, le=60)
    volume: Optional[float] = Field(None, ge=0, le=2)
    placement: Optional[PlacementIntent] = None
    play_after: Optional[str] = None
    overlap: Optional[float] = None
    generated_url: Optional[str] = None
    generated_duration: Optional[float] = Field(None, ge=0)


class VoiceContent(BaseModel):
    stream: Literal["voice"] = "voice"
    tracks: List[VoiceTrack] = Field(..., min_length=1)


class MusicContent(BaseModel):
    stream: Literal["music"] = "music"
    track: MusicTrack


class SfxContent(BaseModel):
    stream: Literal["sfx"] = "sfx"
    cues: List[SfxCue] = Field(..., min_length=1)


VersionContent = Annotated[
    Union[VoiceContent, MusicContent, SfxContent],
    Field(discriminator="stream"),
]


# ============================================
# AD & VERSION PAYLOADS
# ============================================

class AdCreate(BaseModel):
    """Request model for creating (or ensuring) an ad."""
    id: Optional[str] = Field(None, min_length=1, max_length=100)
    name: Optional[str] = Field(None, max_length=200)
    brief: Optional[str] = Field(None, max_length=10000)
    extra: Dict[str, Any] = Field(default_factory=dict)


class AdUpdate(BaseModel):
    """Request model for updating ad metadata."""
    name: Optional[str] = Field(None, max_length=200)
    brief: Optional[str] = Field(None, max_length=10000)
    extra: Optional[Dict[str, Any]] = None


class AdResponse(BaseModel):
    """Response model for ad metadata."""
    id: str
    name: Optional[str]
    brief: Optional[str]
    extra: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class VersionCreate(BaseModel):
    """Request model for creating a version."""
    content: VersionContent
    created_by: CreatedBy = "user"
    parent_version_id: Optional[str] = None
    request_text: Optional[str] = Field(None, max_length=2000)
    resolve_draft: bool = False  # freeze an existing draft instead of failing


class VersionUpdate(BaseModel):
    """Patch for a draft version."""
    content: Optional[VersionContent] = None
    request_text: Optional[str] = Field(None, max_length=2000)


class VersionClone(BaseModel):
    """Request model for cloning a version."""
    created_by: Optional[CreatedBy] = None  # inherits the source when omitted
    request_text: Optional[str] = Field(None, max_length=2000)
    resolve_draft: bool = False


class GeneratedAudioUpdate(BaseModel):
    """Provider result for one track of a draft version."""
    index: int = Field(default=0, ge=0)
    url: str = Field(..., min_length=1)
    duration: Optional[float] = Field(None, ge=0)
    audio_path: Optional[str] = None  # local file to measure when duration is unknown


class VersionResponse(BaseModel):
    """Response model for a version."""
    id: str
    ad_id: str
    stream: StreamType
    status: VersionStatus
    created_at: datetime
    created_by: CreatedBy
    parent_version_id: Optional[str] = None
    request_text: Optional[str] = None
    content: VersionContent
    is_active: bool = False


class VersionListResponse(BaseModel):
    """Response model for a stream listing."""
    versions: List[VersionResponse]
    active: Optional[str] = None
    draft: Optional[str] = None


class DeleteVersionResponse(BaseModel):
    was_active: bool
    mixer: Optional["MixerState"] = None


class LineageEntry(BaseModel):
    """One step of a version's ancestry."""
    version_id: str
    parent_version_id: Optional[str] = None
    status: Optional[VersionStatus] = None
    created_by: Optional[CreatedBy] = None
    request_text: Optional[str] = None
    missing: bool = False  # parent reference points at a deleted version


# ============================================
# MIXER
# ============================================

class MixerTrack(BaseModel):
    """Stream-agnostic track fed to the timeline compiler."""
    id: str
    url: str
    label: str
    type: StreamType
    start_time: Optional[float] = None  # pins the track when >= 0
    duration: Optional[float] = None
    play_after: Optional[str] = None
    overlap: Optional[float] = None
    concurrent_group: Optional[str] = None
    is_concurrent: bool = False
    placement: Optional[PlacementIntent] = None
    volume: float = 1.0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CalculatedTrack(MixerTrack):
    """Mixer track with its compiled position."""
    actual_start_time: float
    actual_duration: float


class TimelineResult(BaseModel):
    calculated_tracks: List[CalculatedTrack] = Field(default_factory=list)
    total_duration: float = 0.0


class MixerState(BaseModel):
    """Render-ready snapshot of all active streams."""
    tracks: List[MixerTrack] = Field(default_factory=list)
    calculated_tracks: List[CalculatedTrack] = Field(default_factory=list)
    total_duration: float = 0.0
    mixed_audio_url: Optional[str] = None
    volumes: Dict[str, float] = Field(default_factory=dict)  # per-track overrides
    active_versions: Dict[str, Optional[str]] = Field(
        default_factory=lambda: {s.value: None for s in StreamType}
    )
    last_calculated: Optional[datetime] = None


class MixerStateUpdate(BaseModel):
    """Partial update written back by playback/export tooling."""
    mixed_audio_url: Optional[str] = None
    volumes: Optional[Dict[str, Annotated[float, Field(ge=0, le=2)]]] = None


class RemoveStreamRequest(BaseModel):
    """Only music and sfx can be dropped from the mixer."""
    stream: Literal["music", "sfx"]


class ActivateResponse(BaseModel):
    active: str
    mixer: MixerState


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str
    version: str
    database: Optional[str] = None


DeleteVersionResponse.model_rebuild()
