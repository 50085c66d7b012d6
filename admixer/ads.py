"""
Ad container management module.
"""

from typing import List, Optional
from datetime import datetime
import json
import uuid
from sqlalchemy.orm import Session

from .models import AdCreate, AdUpdate, AdResponse
from .database import (
    Ad as DBAd,
    StreamVersion as DBStreamVersion,
    StreamCounter as DBStreamCounter,
    ActiveVersion as DBActiveVersion,
    MixerStateRecord as DBMixerStateRecord,
)
from .utils.locks import forget_ad


def _to_response(ad: DBAd) -> AdResponse:
    return AdResponse(
        id=ad.id,
        name=ad.name,
        brief=ad.brief,
        extra=json.loads(ad.extra) if ad.extra else {},
        created_at=ad.created_at,
        updated_at=ad.updated_at,
    )


def ensure_ad_row(db: Session, ad_id: str) -> DBAd:
    """
    Get the ad row, creating an empty one on first write.

    Does not commit; the caller's transaction owns the new row.
    """
    ad = db.query(DBAd).filter_by(id=ad_id).first()
    if ad is None:
        now = datetime.utcnow()
        ad = DBAd(id=ad_id, extra="{}", created_at=now, updated_at=now)
        db.add(ad)
        db.flush()
        print(f"[ads] Created ad {ad_id}")
    return ad


async def ensure_ad(
    data: AdCreate,
    db: Session,
) -> AdResponse:
    """
    Create an ad, or return the existing one with the same id.

    Args:
        data: Ad creation data (id is generated when omitted)
        db: Database session

    Returns:
        The ad
    """
    ad_id = data.id or str(uuid.uuid4())
    ad = db.query(DBAd).filter_by(id=ad_id).first()
    if ad is None:
        now = datetime.utcnow()
        ad = DBAd(
            id=ad_id,
            name=data.name,
            brief=data.brief,
            extra=json.dumps(data.extra),
            created_at=now,
            updated_at=now,
        )
        db.add(ad)
        db.commit()
        db.refresh(ad)
        print(f"[ads] Created ad {ad_id}")

    return _to_response(ad)


async def get_ad(
    ad_id: str,
    db: Session,
) -> Optional[AdResponse]:
    """
    Get an ad by ID.

    Args:
        ad_id: Ad ID
        db: Database session

    Returns:
        Ad or None if not found
    """
    ad = db.query(DBAd).filter_by(id=ad_id).first()
    if not ad:
        return None

    return _to_response(ad)


async def list_ads(db: Session) -> List[AdResponse]:
    """List all ads, newest first."""
    ads = db.query(DBAd).order_by(DBAd.created_at.desc()).all()
    return [_to_response(a) for a in ads]


async def update_ad(
    ad_id: str,
    data: AdUpdate,
    db: Session,
) -> Optional[AdResponse]:
    """
    Update ad metadata. Only fields present in the request are changed.

    Returns:
        Updated ad or None if not found
    """
    ad = db.query(DBAd).filter_by(id=ad_id).first()
    if not ad:
        return None

    fields = data.model_fields_set
    if "name" in fields:
        ad.name = data.name
    if "brief" in fields:
        ad.brief = data.brief
    if "extra" in fields:
        ad.extra = json.dumps(data.extra or {})
    ad.updated_at = datetime.utcnow()

    db.commit()
    db.refresh(ad)

    return _to_response(ad)


async def delete_ad(
    ad_id: str,
    db: Session,
) -> bool:
    """
    Delete an ad with all of its streams and its mixer state.

    Args:
        ad_id: Ad ID
        db: Database session

    Returns:
        True if deleted, False if not found
    """
    ad = db.query(DBAd).filter_by(id=ad_id).first()
    if not ad:
        return False

    versions = db.query(DBStreamVersion).filter_by(ad_id=ad_id).delete()
    db.query(DBStreamCounter).filter_by(ad_id=ad_id).delete()
    db.query(DBActiveVersion).filter_by(ad_id=ad_id).delete()
    db.query(DBMixerStateRecord).filter_by(ad_id=ad_id).delete()
    db.delete(ad)
    db.commit()

    forget_ad(ad_id)
    print(f"[ads] Deleted ad {ad_id} ({versions} versions)")

    return True
