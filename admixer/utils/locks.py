"""
Per-stream and per-ad asyncio locks.

Locks are kept per running event loop so a lock is never awaited from a
loop other than the one it was first used on.
"""

import asyncio
import weakref
from typing import Dict, Tuple

_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[Tuple[str, ...], asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def _get_lock(key: Tuple[str, ...]) -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    loop_locks = _locks.get(loop)
    if loop_locks is None:
        loop_locks = {}
        _locks[loop] = loop_locks
    lock = loop_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        loop_locks[key] = lock
    return lock


def get_stream_lock(ad_id: str, stream: str) -> asyncio.Lock:
    """Serialises id allocation, draft checks and activation for one stream."""
    return _get_lock(("stream", ad_id, stream))


def get_mixer_lock(ad_id: str) -> asyncio.Lock:
    """Serialises mixer rebuilds for one ad."""
    return _get_lock(("mixer", ad_id))


def forget_ad(ad_id: str) -> None:
    """Drop cached locks of a deleted ad on the current loop."""
    loop_locks = _locks.get(asyncio.get_running_loop())
    if not loop_locks:
        return
    for key in [k for k in loop_locks if k[1] == ad_id]:
        lock = loop_locks[key]
        if not lock.locked():
            del loop_locks[key]
