"""
Configuration module for admixer backend.

Handles the data directory and the timeline/mixer defaults.
"""

import os
from pathlib import Path
from typing import Dict

# Allow users to point the backend at a different data directory
# before the database is initialized.
_custom_data_dir = os.environ.get("ADMIXER_DATA_DIR")

# Default data directory (used in development)
_data_dir = Path(_custom_data_dir) if _custom_data_dir else Path("data")
if _custom_data_dir:
    print(f"[config] Data directory set from environment: {_custom_data_dir}")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        print(f"[config] Ignoring invalid {name}={raw!r}, using {default}")
        return default


# Placeholder durations (seconds) used by the timeline compiler until a
# track has a measured duration.
DEFAULT_VOICE_DURATION = _env_float("ADMIXER_DEFAULT_VOICE_DURATION", 4.0)
DEFAULT_MUSIC_DURATION = _env_float("ADMIXER_DEFAULT_MUSIC_DURATION", 30.0)
DEFAULT_SFX_DURATION = _env_float("ADMIXER_DEFAULT_SFX_DURATION", 3.0)

# Voice loudest, music quietest
DEFAULT_VOICE_VOLUME = _env_float("ADMIXER_DEFAULT_VOICE_VOLUME", 1.0)
DEFAULT_MUSIC_VOLUME = _env_float("ADMIXER_DEFAULT_MUSIC_VOLUME", 0.3)
DEFAULT_SFX_VOLUME = _env_float("ADMIXER_DEFAULT_SFX_VOLUME", 0.7)


def set_data_dir(path: str | Path):
    """
    Set the data directory path.

    Args:
        path: Path to the data directory
    """
    global _data_dir
    _data_dir = Path(path)
    _data_dir.mkdir(parents=True, exist_ok=True)
    print(f"Data directory set to: {_data_dir.absolute()}")


def get_data_dir() -> Path:
    """
    Get the data directory path.

    Returns:
        Path to the data directory
    """
    return _data_dir


def get_db_path() -> Path:
    """Get database file path."""
    return _data_dir / "admixer.db"


def get_default_durations() -> Dict[str, float]:
    """Placeholder duration per stream type."""
    return {
        "voice": DEFAULT_VOICE_DURATION,
        "music": DEFAULT_MUSIC_DURATION,
        "sfx": DEFAULT_SFX_DURATION,
    }


def get_default_volumes() -> Dict[str, float]:
    """Default mixer volume per stream type."""
    return {
        "voice": DEFAULT_VOICE_VOLUME,
        "music": DEFAULT_MUSIC_VOLUME,
        "sfx": DEFAULT_SFX_VOLUME,
    }
