"""
Tests for database initialization.
"""

from sqlalchemy import inspect

from admixer import config, database


def test_init_db_creates_schema(tmp_path, monkeypatch):
    """A fresh data directory gets every table with the current columns."""
    monkeypatch.setattr(config, "_data_dir", tmp_path / "data")
    monkeypatch.setattr(database, "engine", None)
    monkeypatch.setattr(database, "SessionLocal", None)
    monkeypatch.setattr(database, "_db_path", None)

    database.init_db()

    try:
        assert database._db_path == tmp_path / "data" / "admixer.db"
        inspector = inspect(database.engine)
        assert set(inspector.get_table_names()) == {
            "ads",
            "stream_versions",
            "stream_counters",
            "active_versions",
            "mixer_states",
        }
        columns = {c["name"] for c in inspector.get_columns("stream_versions")}
        assert {"version_id", "seq", "status", "parent_version_id", "request_text", "content"} <= columns
    finally:
        database.engine.dispose()


def test_init_db_is_idempotent(tmp_path, monkeypatch):
    """Re-initializing an existing database keeps its rows."""
    monkeypatch.setattr(config, "_data_dir", tmp_path)
    monkeypatch.setattr(database, "engine", None)
    monkeypatch.setattr(database, "SessionLocal", None)
    monkeypatch.setattr(database, "_db_path", None)

    database.init_db()
    session = database.SessionLocal()
    session.add(database.Ad(id="ad-1", extra="{}"))
    session.commit()
    session.close()
    database.engine.dispose()

    database.init_db()
    session = database.SessionLocal()
    try:
        assert session.query(database.Ad).filter_by(id="ad-1").first() is not None
    finally:
        session.close()
        database.engine.dispose()
