"""
SQLite database ORM using SQLAlchemy.

Acts as the persistent key-value store behind the version streams:
JSON payloads live in Text columns, and per-stream counters provide
atomic version id allocation.
"""

from sqlalchemy import (
    create_engine,
    Column,
    String,
    Integer,
    DateTime,
    Text,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from datetime import datetime
import uuid

from . import config

Base = declarative_base()


class Ad(Base):
    """Ad container database model."""
    __tablename__ = "ads"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=True)
    brief = Column(Text, nullable=True)
    extra = Column(Text)  # JSON string
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class StreamVersion(Base):
    """One version of a voice/music/sfx stream."""
    __tablename__ = "stream_versions"
    __table_args__ = (
        UniqueConstraint("ad_id", "stream", "version_id", name="uq_stream_version"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    ad_id = Column(String, ForeignKey("ads.id"), nullable=False, index=True)
    stream = Column(String, nullable=False)
    version_id = Column(String, nullable=False)  # v1, v2, ...
    seq = Column(Integer, nullable=False)  # numeric part of version_id
    status = Column(String, nullable=False, default="draft")
    created_at = Column(DateTime, default=datetime.utcnow)
    created_by = Column(String, nullable=False, default="user")
    parent_version_id = Column(String, nullable=True)
    request_text = Column(Text, nullable=True)
    content = Column(Text, nullable=False)  # JSON string


class StreamCounter(Base):
    """Last allocated version number per (ad, stream). Never decremented."""
    __tablename__ = "stream_counters"

    ad_id = Column(String, ForeignKey("ads.id"), primary_key=True)
    stream = Column(String, primary_key=True)
    last_seq = Column(Integer, nullable=False, default=0)


class ActiveVersion(Base):
    """Active version pointer per (ad, stream)."""
    __tablename__ = "active_versions"

    ad_id = Column(String, ForeignKey("ads.id"), primary_key=True)
    stream = Column(String, primary_key=True)
    version_id = Column(String, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class MixerStateRecord(Base):
    """Compiled mixer state snapshot per ad."""
    __tablename__ = "mixer_states"

    ad_id = Column(String, ForeignKey("ads.id"), primary_key=True)
    data = Column(Text, nullable=False)  # JSON string
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# Database setup will be initialized in init_db()
engine = None
SessionLocal = None
_db_path = None


def init_db():
    """Initialize database tables."""
    global engine, SessionLocal, _db_path

    _db_path = config.get_db_path()
    _db_path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        f"sqlite:///{_db_path}",
        connect_args={"check_same_thread": False},
    )

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)


def get_db():
    """Get database session (generator for dependency injection)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
