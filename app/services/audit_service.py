"""Audit trail for administrative actions."""
from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.database import AuditLog

logger = logging.getLogger(__name__)


def log_audit(db: Session, user_id: Optional[str], action: str, details: Any = None) -> Optional[str]:
    """Record an action. Failures are logged and never interrupt the caller."""
    entry = AuditLog(
        id=str(uuid.uuid4()),
        user_id=user_id,
        action=action,
        details=json.dumps(details, default=str) if details is not None else None,
    )
    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to log audit %s: %s", action, exc)
        return None
    return entry.id


def _decode_details(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def list_audit_logs(db: Session, limit: int = 100) -> List[Dict[str, Any]]:
    rows = db.query(AuditLog).order_by(AuditLog.timestamp.desc()).limit(limit).all()
    return [
        {
            "id": row.id,
            "userId": row.user_id,
            "action": row.action,
            "details": _decode_details(row.details),
            "timestamp": row.timestamp.isoformat() if row.timestamp else None,
        }
        for row in rows
    ]
