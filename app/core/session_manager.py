"""In-memory store for sync previews awaiting confirmation.

A preview maps spreadsheet rows into candidate titles without touching the
database; the candidates are parked here under a session id until an
operator confirms them. Previews left unconfirmed expire after
``PREVIEW_TTL_SECONDS`` (default one hour) and are pruned on every store
access.
"""
from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Any, Dict, Optional, Tuple

from fastapi import HTTPException, status

logger = logging.getLogger(__name__)

SessionData = Dict[str, Any]

DEFAULT_PREVIEW_TTL_SECONDS = 3600.0

# session id -> (created at, payload)
_session_store: Dict[str, Tuple[float, SessionData]] = {}
_clock = time.monotonic


def preview_ttl_seconds() -> float:
    raw = os.getenv("PREVIEW_TTL_SECONDS")
    if not raw:
        return DEFAULT_PREVIEW_TTL_SECONDS
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid PREVIEW_TTL_SECONDS=%r", raw)
        return DEFAULT_PREVIEW_TTL_SECONDS


def generate_session_id() -> str:
    """Return a new unique identifier for session entries."""
    return str(uuid.uuid4())


def prune_expired_sessions(now: Optional[float] = None) -> int:
    """Drop previews older than the TTL and return how many were removed."""
    now = _clock() if now is None else now
    cutoff = now - preview_ttl_seconds()
    expired = [key for key, (created_at, _) in _session_store.items() if created_at <= cutoff]
    for key in expired:
        _session_store.pop(key, None)
    if expired:
        logger.info("Pruned %d expired preview(s)", len(expired))
    return len(expired)


def require_session(session_id: str) -> SessionData:
    """Fetch a live session payload, raising a 404 if it is missing or expired."""
    prune_expired_sessions()
    entry = _session_store.get(session_id)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Preview session not found",
        )
    return entry[1]


def set_session(session_id: str, data: SessionData) -> None:
    """Add or replace a session payload, stamping its creation time."""
    prune_expired_sessions()
    _session_store[session_id] = (_clock(), data)


def delete_session(session_id: str) -> None:
    """Remove a session from the store if present."""
    _session_store.pop(session_id, None)


def session_count() -> int:
    """Number of live previews."""
    prune_expired_sessions()
    return len(_session_store)


def clear_sessions() -> None:
    _session_store.clear()
