"""
Version stream management module.

Each ad has three independent streams (voice, music, sfx). Every stream
holds an ordered list of versions (v1, v2, ...), at most one of which is
a draft, plus an optional active pointer that feeds the mixer.
"""

from typing import List, Optional, Tuple, Union
from datetime import datetime
import json
from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from .models import (
    StreamType,
    VersionContent,
    VoiceContent,
    MusicContent,
    SfxContent,
    VersionUpdate,
    VersionResponse,
    DeleteVersionResponse,
    GeneratedAudioUpdate,
    LineageEntry,
)
from .database import (
    StreamVersion as DBStreamVersion,
    StreamCounter as DBStreamCounter,
    ActiveVersion as DBActiveVersion,
)
from .errors import (
    NotFoundError,
    ValidationError,
    ImmutableVersionError,
    AlreadyActiveError,
    DraftConflictError,
)
from .ads import ensure_ad_row
from .utils.audio import get_audio_duration
from .utils.locks import get_stream_lock
from .utils.validation import (
    validate_text,
    validate_overlap,
    validate_audio_url,
    validate_version_id,
)

_content_adapter = TypeAdapter(VersionContent)

ContentInput = Union[VoiceContent, MusicContent, SfxContent, dict]


# ============================================
# CONTENT VALIDATION
# ============================================

def as_stream(stream: Union[StreamType, str]) -> StreamType:
    """Normalise a stream name, rejecting unknown streams."""
    try:
        return StreamType(stream)
    except ValueError:
        raise ValidationError(f"Unknown stream type: {stream!r}") from None


def parse_content(
    stream: StreamType,
    content: ContentInput,
) -> Union[VoiceContent, MusicContent, SfxContent]:
    """
    Validate version content for a stream.

    Args:
        stream: Stream the content belongs to
        content: Content model or plain dict (``stream`` tag optional)

    Returns:
        Parsed content model

    Raises:
        ValidationError: If the content is malformed or tagged for another stream
    """
    if isinstance(content, BaseModel):
        data = content.model_dump(mode="json")
    else:
        data = content
    if isinstance(data, dict) and "stream" not in data:
        data = {**data, "stream": stream.value}

    try:
        parsed = _content_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {stream.value} content: {e}") from e

    if parsed.stream != stream.value:
        raise ValidationError(
            f"Content tagged as {parsed.stream!r} cannot be stored in the {stream.value} stream"
        )

    _check_content(parsed)
    return parsed


def _check_content(content: Union[VoiceContent, MusicContent, SfxContent]) -> None:
    if isinstance(content, VoiceContent):
        for index, track in enumerate(content.tracks):
            _raise_if_invalid(validate_text(track.text), f"Voice track {index}")
            _raise_if_invalid(validate_overlap(track.overlap), f"Voice track {index}")
            if track.concurrent_group is not None and not track.concurrent_group.strip():
                raise ValidationError(f"Voice track {index}: concurrent_group cannot be blank")
    elif isinstance(content, MusicContent):
        _raise_if_invalid(validate_text(content.track.prompt, max_length=2000), "Music prompt")
    elif isinstance(content, SfxContent):
        for index, cue in enumerate(content.cues):
            _raise_if_invalid(validate_text(cue.description, max_length=500), f"Sfx cue {index}")
            _raise_if_invalid(validate_overlap(cue.overlap), f"Sfx cue {index}")
    else:
        raise ValidationError(f"Unsupported content type: {type(content).__name__}")


def _raise_if_invalid(result: Tuple[bool, Optional[str]], context: str) -> None:
    is_valid, error_msg = result
    if not is_valid:
        raise ValidationError(f"{context}: {error_msg}")


def _dump_content(content: Union[VoiceContent, MusicContent, SfxContent]) -> str:
    return json.dumps(content.model_dump(mode="json"))


# ============================================
# ROW HELPERS
# ============================================

def _get_row(db: Session, ad_id: str, stream: StreamType, version_id: str) -> Optional[DBStreamVersion]:
    return db.query(DBStreamVersion).filter_by(
        ad_id=ad_id, stream=stream.value, version_id=version_id
    ).first()


def _require_row(db: Session, ad_id: str, stream: StreamType, version_id: str) -> DBStreamVersion:
    row = _get_row(db, ad_id, stream, version_id)
    if row is None:
        raise NotFoundError(f"Version not found: {stream.value} {version_id} in ad {ad_id}")
    return row


def _get_pointer(db: Session, ad_id: str, stream: StreamType) -> Optional[DBActiveVersion]:
    return db.query(DBActiveVersion).filter_by(ad_id=ad_id, stream=stream.value).first()


def _get_active_id(db: Session, ad_id: str, stream: StreamType) -> Optional[str]:
    pointer = _get_pointer(db, ad_id, stream)
    return pointer.version_id if pointer else None


def _get_draft_row(db: Session, ad_id: str, stream: StreamType) -> Optional[DBStreamVersion]:
    return db.query(DBStreamVersion).filter_by(
        ad_id=ad_id, stream=stream.value, status="draft"
    ).order_by(DBStreamVersion.seq).first()


def _allocate_version_id(db: Session, ad_id: str, stream: StreamType) -> Tuple[str, int]:
    """Increment the stream counter inside the caller's transaction."""
    updated = db.query(DBStreamCounter).filter_by(
        ad_id=ad_id, stream=stream.value
    ).update(
        {DBStreamCounter.last_seq: DBStreamCounter.last_seq + 1},
        synchronize_session=False,
    )
    if updated:
        seq = db.query(DBStreamCounter.last_seq).filter_by(
            ad_id=ad_id, stream=stream.value
        ).scalar()
    else:
        seq = 1
        db.add(DBStreamCounter(ad_id=ad_id, stream=stream.value, last_seq=seq))
        db.flush()
    return f"v{seq}", seq


def _resolve_existing_draft(
    db: Session,
    ad_id: str,
    stream: StreamType,
    resolve_draft: bool,
) -> Optional[str]:
    """Freeze the stream's draft, or refuse when resolving was not requested."""
    draft = _get_draft_row(db, ad_id, stream)
    if draft is None:
        return None
    if not resolve_draft:
        raise DraftConflictError(
            f"{stream.value} stream of ad {ad_id} already has draft {draft.version_id}; "
            f"freeze or activate it first"
        )
    draft.status = "frozen"
    print(f"[versions] Froze {stream.value} draft {draft.version_id} for ad {ad_id}")
    return draft.version_id


def _to_response(row: DBStreamVersion, active_id: Optional[str]) -> VersionResponse:
    return VersionResponse(
        id=row.version_id,
        ad_id=row.ad_id,
        stream=row.stream,
        status=row.status,
        created_at=row.created_at,
        created_by=row.created_by,
        parent_version_id=row.parent_version_id,
        request_text=row.request_text,
        content=json.loads(row.content),
        is_active=row.version_id == active_id,
    )


def _insert_version(
    db: Session,
    ad_id: str,
    stream: StreamType,
    content_json: str,
    created_by: str,
    parent_version_id: Optional[str],
    request_text: Optional[str],
) -> str:
    version_id, seq = _allocate_version_id(db, ad_id, stream)
    db.add(DBStreamVersion(
        ad_id=ad_id,
        stream=stream.value,
        version_id=version_id,
        seq=seq,
        status="draft",
        created_at=datetime.utcnow(),
        created_by=created_by,
        parent_version_id=parent_version_id,
        request_text=request_text,
        content=content_json,
    ))
    return version_id


# ============================================
# VERSION OPERATIONS
# ============================================

async def create_version(
    ad_id: str,
    stream: Union[StreamType, str],
    content: ContentInput,
    db: Session,
    created_by: str = "user",
    parent_version_id: Optional[str] = None,
    request_text: Optional[str] = None,
    resolve_draft: bool = False,
) -> str:
    """
    Create a new draft version in a stream.

    Args:
        ad_id: Ad ID (the ad is created on first write)
        stream: Stream type
        content: Stream-specific track content
        db: Database session
        created_by: "user" or "llm"
        parent_version_id: Version this one iterates on, if any
        request_text: Description of the edit
        resolve_draft: Freeze an existing draft first instead of failing

    Returns:
        New version ID (v1, v2, ...)

    Raises:
        ValidationError: Malformed content
        NotFoundError: parent_version_id does not exist
        DraftConflictError: A draft exists and resolve_draft is False
    """
    stream = as_stream(stream)
    parsed = parse_content(stream, content)
    if created_by not in ("user", "llm"):
        raise ValidationError(f"Invalid created_by: {created_by!r}")
    if parent_version_id is not None:
        _raise_if_invalid(validate_version_id(parent_version_id), "Parent version")

    async with get_stream_lock(ad_id, stream.value):
        try:
            ensure_ad_row(db, ad_id)
            if parent_version_id is not None:
                _require_row(db, ad_id, stream, parent_version_id)
            _resolve_existing_draft(db, ad_id, stream, resolve_draft)
            version_id = _insert_version(
                db, ad_id, stream, _dump_content(parsed),
                created_by, parent_version_id, request_text,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

    print(f"[versions] Created {stream.value} version {version_id} for ad {ad_id}")
    return version_id


async def get_version(
    ad_id: str,
    stream: Union[StreamType, str],
    version_id: str,
    db: Session,
) -> Optional[VersionResponse]:
    """
    Get a version by ID.

    Returns:
        Version or None if not found
    """
    stream = as_stream(stream)
    row = _get_row(db, ad_id, stream, version_id)
    if not row:
        return None

    return _to_response(row, _get_active_id(db, ad_id, stream))


async def require_version(
    ad_id: str,
    stream: Union[StreamType, str],
    version_id: str,
    db: Session,
) -> VersionResponse:
    """Like get_version, but raises NotFoundError."""
    stream = as_stream(stream)
    row = _require_row(db, ad_id, stream, version_id)
    return _to_response(row, _get_active_id(db, ad_id, stream))


async def list_versions(
    ad_id: str,
    stream: Union[StreamType, str],
    db: Session,
) -> List[str]:
    """
    List version IDs of a stream in creation order.
    """
    stream = as_stream(stream)
    rows = db.query(DBStreamVersion.version_id).filter_by(
        ad_id=ad_id, stream=stream.value
    ).order_by(DBStreamVersion.seq).all()
    return [r.version_id for r in rows]


async def list_versions_with_data(
    ad_id: str,
    stream: Union[StreamType, str],
    db: Session,
) -> List[VersionResponse]:
    """
    List all versions of a stream with their content, in creation order.
    """
    stream = as_stream(stream)
    rows = db.query(DBStreamVersion).filter_by(
        ad_id=ad_id, stream=stream.value
    ).order_by(DBStreamVersion.seq).all()
    active_id = _get_active_id(db, ad_id, stream)
    return [_to_response(r, active_id) for r in rows]


async def update_version(
    ad_id: str,
    stream: Union[StreamType, str],
    version_id: str,
    patch: Union[VersionUpdate, dict],
    db: Session,
) -> VersionResponse:
    """
    Apply a patch to a draft version.

    created_at and created_by are never changed.

    Raises:
        NotFoundError: Version does not exist
        ImmutableVersionError: Version is frozen
        ValidationError: Patched content is malformed
    """
    stream = as_stream(stream)
    if isinstance(patch, dict):
        try:
            patch = VersionUpdate.model_validate(patch)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid version patch: {e}") from e

    async with get_stream_lock(ad_id, stream.value):
        row = _require_row(db, ad_id, stream, version_id)
        if row.status != "draft":
            raise ImmutableVersionError(
                f"{stream.value} version {version_id} is {row.status}; clone it to edit"
            )

        fields = patch.model_fields_set
        if "content" in fields and patch.content is not None:
            row.content = _dump_content(parse_content(stream, patch.content))
        if "request_text" in fields:
            row.request_text = patch.request_text

        db.commit()
        db.refresh(row)

    print(f"[versions] Updated {stream.value} version {version_id} for ad {ad_id}")
    return _to_response(row, _get_active_id(db, ad_id, stream))


async def clone_version(
    ad_id: str,
    stream: Union[StreamType, str],
    source_version_id: str,
    db: Session,
    created_by: Optional[str] = None,
    request_text: Optional[str] = None,
    resolve_draft: bool = False,
) -> str:
    """
    Clone a version into a new draft.

    The clone gets a deep copy of the source content and
    parent_version_id = source_version_id. created_by is inherited from
    the source unless given.

    Raises:
        NotFoundError: Source version does not exist
        DraftConflictError: A draft exists and resolve_draft is False
    """
    stream = as_stream(stream)
    if created_by is not None and created_by not in ("user", "llm"):
        raise ValidationError(f"Invalid created_by: {created_by!r}")

    async with get_stream_lock(ad_id, stream.value):
        try:
            source = _require_row(db, ad_id, stream, source_version_id)
            # Stored JSON text is immutable, so reusing it is a deep copy
            content_json = source.content
            inherited_by = source.created_by
            _resolve_existing_draft(db, ad_id, stream, resolve_draft)
            version_id = _insert_version(
                db, ad_id, stream, content_json,
                created_by or inherited_by, source_version_id, request_text,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

    print(f"[versions] Cloned {stream.value} {source_version_id} -> {version_id} for ad {ad_id}")
    return version_id


async def delete_version(
    ad_id: str,
    stream: Union[StreamType, str],
    version_id: str,
    db: Session,
) -> DeleteVersionResponse:
    """
    Delete a version.

    Clears the active pointer when it referenced the deleted version;
    children keep their (now dangling) parent_version_id.

    Returns:
        was_active tells the caller to rebuild the mixer

    Raises:
        NotFoundError: Version does not exist
    """
    stream = as_stream(stream)
    async with get_stream_lock(ad_id, stream.value):
        row = _require_row(db, ad_id, stream, version_id)
        pointer = _get_pointer(db, ad_id, stream)
        was_active = pointer is not None and pointer.version_id == version_id
        if was_active:
            db.delete(pointer)
        db.delete(row)
        db.commit()

    print(f"[versions] Deleted {stream.value} version {version_id} from ad {ad_id}"
          + (" (was active)" if was_active else ""))
    return DeleteVersionResponse(was_active=was_active)


# ============================================
# ACTIVE POINTER
# ============================================

async def get_active_version(
    ad_id: str,
    stream: Union[StreamType, str],
    db: Session,
) -> Optional[str]:
    """
    Get the active version ID of a stream.

    Returns:
        Version ID or None if nothing is active
    """
    return _get_active_id(db, ad_id, as_stream(stream))


async def set_active_version(
    ad_id: str,
    stream: Union[StreamType, str],
    version_id: str,
    db: Session,
    force_freeze: bool = False,
) -> None:
    """
    Point the stream at a version, freezing it if it is a draft.

    Re-activating the already active version is a no-op.

    Raises:
        NotFoundError: Version does not exist
        AlreadyActiveError: Another version is active and force_freeze is False
    """
    stream = as_stream(stream)
    async with get_stream_lock(ad_id, stream.value):
        row = _require_row(db, ad_id, stream, version_id)
        pointer = _get_pointer(db, ad_id, stream)

        current = pointer.version_id if pointer else None
        if current is not None and _get_row(db, ad_id, stream, current) is None:
            current = None  # pointer to a version that no longer exists
        if current is not None and current != version_id and not force_freeze:
            raise AlreadyActiveError(
                f"{stream.value} version {current} is already active for ad {ad_id}; "
                f"use force_freeze to replace it"
            )

        if pointer is None:
            db.add(DBActiveVersion(ad_id=ad_id, stream=stream.value, version_id=version_id))
        else:
            pointer.version_id = version_id
        if row.status == "draft":
            row.status = "frozen"
        db.commit()

    print(f"[versions] Activated {stream.value} version {version_id} for ad {ad_id}")


async def clear_active_version(
    ad_id: str,
    stream: Union[StreamType, str],
    db: Session,
) -> Optional[str]:
    """
    Remove the active pointer of a stream.

    Returns:
        The previously active version ID, if any
    """
    stream = as_stream(stream)
    async with get_stream_lock(ad_id, stream.value):
        pointer = _get_pointer(db, ad_id, stream)
        if pointer is None:
            return None
        previous = pointer.version_id
        db.delete(pointer)
        db.commit()

    print(f"[versions] Cleared active {stream.value} version {previous} for ad {ad_id}")
    return previous


async def freeze_version(
    ad_id: str,
    stream: Union[StreamType, str],
    version_id: str,
    db: Session,
) -> VersionResponse:
    """
    Commit a draft without activating it. Frozen versions are returned unchanged.

    Raises:
        NotFoundError: Version does not exist
    """
    stream = as_stream(stream)
    async with get_stream_lock(ad_id, stream.value):
        row = _require_row(db, ad_id, stream, version_id)
        if row.status == "draft":
            row.status = "frozen"
            db.commit()
            db.refresh(row)
            print(f"[versions] Froze {stream.value} version {version_id} for ad {ad_id}")

    return _to_response(row, _get_active_id(db, ad_id, stream))


async def get_draft_version(
    ad_id: str,
    stream: Union[StreamType, str],
    db: Session,
) -> Optional[str]:
    """Get the draft version ID of a stream, if any."""
    row = _get_draft_row(db, ad_id, as_stream(stream))
    return row.version_id if row else None


# ============================================
# GENERATED AUDIO
# ============================================

async def record_generated_audio(
    ad_id: str,
    stream: Union[StreamType, str],
    version_id: str,
    update: GeneratedAudioUpdate,
    db: Session,
) -> VersionResponse:
    """
    Store a provider result on one track of a draft.

    When no duration is supplied but a local audio file is, the duration
    is measured from the file.

    Args:
        ad_id: Ad ID
        stream: Stream type
        version_id: Draft version ID
        update: Track index, URL and duration/audio path
        db: Database session

    Returns:
        Updated version
    """
    stream = as_stream(stream)
    is_valid, error_msg = validate_audio_url(update.url)
    if not is_valid:
        raise ValidationError(f"Invalid generated URL: {error_msg}")

    duration = update.duration
    if duration is None and update.audio_path:
        try:
            duration = get_audio_duration(update.audio_path)
        except (RuntimeError, OSError) as e:
            raise ValidationError(f"Could not read audio file {update.audio_path}: {e}") from e

    async with get_stream_lock(ad_id, stream.value):
        row = _require_row(db, ad_id, stream, version_id)
        if row.status != "draft":
            raise ImmutableVersionError(
                f"{stream.value} version {version_id} is {row.status}; clone it to attach audio"
            )

        content = parse_content(stream, json.loads(row.content))
        if isinstance(content, VoiceContent):
            tracks = content.tracks
        elif isinstance(content, MusicContent):
            tracks = [content.track]
        elif isinstance(content, SfxContent):
            tracks = content.cues
        else:
            raise ValidationError(f"Unsupported content type: {type(content).__name__}")

        if update.index >= len(tracks):
            raise ValidationError(
                f"Track index {update.index} out of range for {stream.value} version "
                f"{version_id} ({len(tracks)} tracks)"
            )
        target = tracks[update.index]
        target.generated_url = update.url
        target.generated_duration = duration

        row.content = _dump_content(content)
        db.commit()
        db.refresh(row)

    print(f"[versions] Attached audio to {stream.value} {version_id}[{update.index}] for ad {ad_id}")
    return _to_response(row, _get_active_id(db, ad_id, stream))


# ============================================
# LINEAGE
# ============================================

async def get_lineage(
    ad_id: str,
    stream: Union[StreamType, str],
    version_id: str,
    db: Session,
) -> List[LineageEntry]:
    """
    Walk a version's parents.

    The chain starts at version_id and ends at the root. A parent that
    has been deleted ends the chain with a ``missing`` entry.

    Raises:
        NotFoundError: version_id does not exist
    """
    stream = as_stream(stream)
    _require_row(db, ad_id, stream, version_id)
    rows = {
        r.version_id: r
        for r in db.query(DBStreamVersion).filter_by(ad_id=ad_id, stream=stream.value).all()
    }

    chain: List[LineageEntry] = []
    seen = set()
    current = version_id
    while current is not None and current not in seen:
        seen.add(current)
        row = rows.get(current)
        if row is None:
            chain.append(LineageEntry(version_id=current, missing=True))
            break
        chain.append(LineageEntry(
            version_id=row.version_id,
            parent_version_id=row.parent_version_id,
            status=row.status,
            created_by=row.created_by,
            request_text=row.request_text,
        ))
        current = row.parent_version_id

    return chain
