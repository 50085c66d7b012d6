"""
FastAPI application for admixer backend.

Exposes ads, version streams (voice, music, sfx) and the mixer.
"""

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text
from typing import List
import argparse
import uvicorn

from . import database, models, ads, versions, mixer, config, __version__
from .database import get_db
from .errors import AdMixerError
from .models import StreamType

app = FastAPI(
    title="admixer API",
    description="Versioned audio ad streams and mixer timeline",
    version=__version__,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AdMixerError)
async def admixer_error_handler(request: Request, exc: AdMixerError):
    """Not found -> 404, rejected edits -> 400."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


# ============================================
# ROOT & HEALTH ENDPOINTS
# ============================================

@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "admixer API", "version": __version__}


@app.get("/health", response_model=models.HealthResponse)
async def health(db: Session = Depends(get_db)):
    """Health check endpoint."""
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception as e:
        db_status = f"error: {e}"

    return models.HealthResponse(
        status="healthy" if db_status == "ok" else "degraded",
        version=__version__,
        database=db_status,
    )


# ============================================
# AD ENDPOINTS
# ============================================

@app.post("/ads", response_model=models.AdResponse)
async def create_ad(
    data: models.AdCreate,
    db: Session = Depends(get_db),
):
    """Create an ad (returns the existing one when the id is taken)."""
    return await ads.ensure_ad(data, db)


@app.get("/ads", response_model=List[models.AdResponse])
async def list_ads(db: Session = Depends(get_db)):
    """List all ads."""
    return await ads.list_ads(db)


@app.get("/ads/{ad_id}", response_model=models.AdResponse)
async def get_ad(
    ad_id: str,
    db: Session = Depends(get_db),
):
    """Get an ad."""
    ad = await ads.get_ad(ad_id, db)
    if not ad:
        raise HTTPException(status_code=404, detail="Ad not found")
    return ad


@app.put("/ads/{ad_id}", response_model=models.AdResponse)
async def update_ad(
    ad_id: str,
    data: models.AdUpdate,
    db: Session = Depends(get_db),
):
    """Update ad metadata."""
    ad = await ads.update_ad(ad_id, data, db)
    if not ad:
        raise HTTPException(status_code=404, detail="Ad not found")
    return ad


@app.delete("/ads/{ad_id}")
async def delete_ad(
    ad_id: str,
    db: Session = Depends(get_db),
):
    """Delete an ad with all streams and its mixer state."""
    success = await ads.delete_ad(ad_id, db)
    if not success:
        raise HTTPException(status_code=404, detail="Ad not found")
    return {"message": "Ad deleted successfully"}


# ============================================
# MIXER ENDPOINTS
# ============================================

@app.get("/ads/{ad_id}/mixer", response_model=models.MixerState)
async def get_mixer(
    ad_id: str,
    db: Session = Depends(get_db),
):
    """Get the current mixer state (empty if never built)."""
    return await mixer.get_mixer_state(ad_id, db)


@app.patch("/ads/{ad_id}/mixer", response_model=models.MixerState)
async def update_mixer(
    ad_id: str,
    data: models.MixerStateUpdate,
    db: Session = Depends(get_db),
):
    """Write back mixed audio URL or volume overrides."""
    return await mixer.update_mixer_state(ad_id, data, db)


@app.post("/ads/{ad_id}/mixer/rebuild", response_model=models.MixerState)
async def rebuild_mixer(
    ad_id: str,
    db: Session = Depends(get_db),
):
    """Rebuild the mixer from the active versions."""
    return await mixer.rebuild_mixer(ad_id, db)


@app.post("/ads/{ad_id}/mixer/remove-stream", response_model=models.MixerState)
async def remove_stream(
    ad_id: str,
    data: models.RemoveStreamRequest,
    db: Session = Depends(get_db),
):
    """Remove the music or sfx stream from the mixer."""
    return await mixer.remove_stream(ad_id, data.stream, db)


# ============================================
# VERSION STREAM ENDPOINTS
# ============================================

@app.get("/ads/{ad_id}/{stream}", response_model=models.VersionListResponse)
async def list_stream_versions(
    ad_id: str,
    stream: StreamType,
    db: Session = Depends(get_db),
):
    """List all versions of a stream with the active and draft ids."""
    return models.VersionListResponse(
        versions=await versions.list_versions_with_data(ad_id, stream, db),
        active=await versions.get_active_version(ad_id, stream, db),
        draft=await versions.get_draft_version(ad_id, stream, db),
    )


@app.post("/ads/{ad_id}/{stream}", response_model=models.VersionResponse)
async def create_stream_version(
    ad_id: str,
    stream: StreamType,
    data: models.VersionCreate,
    db: Session = Depends(get_db),
):
    """Create a new draft version."""
    version_id = await versions.create_version(
        ad_id,
        stream,
        data.content,
        db,
        created_by=data.created_by,
        parent_version_id=data.parent_version_id,
        request_text=data.request_text,
        resolve_draft=data.resolve_draft,
    )
    return await versions.require_version(ad_id, stream, version_id, db)


@app.get("/ads/{ad_id}/{stream}/{version_id}", response_model=models.VersionResponse)
async def get_stream_version(
    ad_id: str,
    stream: StreamType,
    version_id: str,
    db: Session = Depends(get_db),
):
    """Get one version."""
    version = await versions.get_version(ad_id, stream, version_id, db)
    if not version:
        raise HTTPException(status_code=404, detail="Version not found")
    return version


@app.patch("/ads/{ad_id}/{stream}/{version_id}", response_model=models.VersionResponse)
async def update_stream_version(
    ad_id: str,
    stream: StreamType,
    version_id: str,
    data: models.VersionUpdate,
    db: Session = Depends(get_db),
):
    """Edit a draft version."""
    return await versions.update_version(ad_id, stream, version_id, data, db)


@app.delete("/ads/{ad_id}/{stream}/{version_id}", response_model=models.DeleteVersionResponse)
async def delete_stream_version(
    ad_id: str,
    stream: StreamType,
    version_id: str,
    db: Session = Depends(get_db),
):
    """Delete a version; the mixer is rebuilt if it was active."""
    return await mixer.delete_and_rebuild(ad_id, stream, version_id, db)


@app.post("/ads/{ad_id}/{stream}/{version_id}/clone", response_model=models.VersionResponse)
async def clone_stream_version(
    ad_id: str,
    stream: StreamType,
    version_id: str,
    data: models.VersionClone,
    db: Session = Depends(get_db),
):
    """Clone a version into a new draft."""
    new_id = await versions.clone_version(
        ad_id,
        stream,
        version_id,
        db,
        created_by=data.created_by,
        request_text=data.request_text,
        resolve_draft=data.resolve_draft,
    )
    return await versions.require_version(ad_id, stream, new_id, db)


@app.post("/ads/{ad_id}/{stream}/{version_id}/activate", response_model=models.ActivateResponse)
async def activate_stream_version(
    ad_id: str,
    stream: StreamType,
    version_id: str,
    force_freeze: bool = False,
    db: Session = Depends(get_db),
):
    """Make a version active and rebuild the mixer."""
    return await mixer.activate_and_rebuild(ad_id, stream, version_id, db, force_freeze=force_freeze)


@app.post("/ads/{ad_id}/{stream}/{version_id}/freeze", response_model=models.ActivateResponse)
async def freeze_stream_version(
    ad_id: str,
    stream: StreamType,
    version_id: str,
    force_freeze: bool = False,
    db: Session = Depends(get_db),
):
    """Freeze a version, send it to the mixer and rebuild."""
    return await mixer.activate_and_rebuild(ad_id, stream, version_id, db, force_freeze=force_freeze)


@app.post("/ads/{ad_id}/{stream}/{version_id}/generated", response_model=models.VersionResponse)
async def record_generated_audio(
    ad_id: str,
    stream: StreamType,
    version_id: str,
    data: models.GeneratedAudioUpdate,
    db: Session = Depends(get_db),
):
    """Attach a provider's generated audio to a draft track."""
    return await versions.record_generated_audio(ad_id, stream, version_id, data, db)


@app.get("/ads/{ad_id}/{stream}/{version_id}/lineage", response_model=List[models.LineageEntry])
async def get_stream_version_lineage(
    ad_id: str,
    stream: StreamType,
    version_id: str,
    db: Session = Depends(get_db),
):
    """Ancestry of a version, newest first."""
    return await versions.get_lineage(ad_id, stream, version_id, db)


# ============================================
# STARTUP & SHUTDOWN
# ============================================

@app.on_event("startup")
async def startup_event():
    """Run on application startup."""
    print("admixer API starting up...")
    if database.SessionLocal is None:
        database.init_db()
    print(f"Database initialized at {database._db_path}")


# ============================================
# MAIN
# ============================================

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="admixer backend server")
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (use 0.0.0.0 for remote access)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to",
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Data directory for the database",
    )
    args = parser.parse_args()

    # Set data directory if provided
    if args.data_dir:
        config.set_data_dir(args.data_dir)

    # Initialize database after data directory is set
    database.init_db()

    uvicorn.run(
        "admixer.main:app",
        host=args.host,
        port=args.port,
        reload=False,  # Disable reload in production
    )
