"""User account management."""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.database import User
from app.services.auth_service import ADMIN_USERNAME, hash_password, serialize_user, verify_password

logger = logging.getLogger(__name__)

VALID_ROLES = {"ADMIN", "EDITOR", "VIEWER"}


class UserError(ValueError):
    """Raised for user input that cannot be applied (duplicate names, bad passwords)."""


def _normalize_role(role: Optional[str]) -> str:
    normalized = (role or "VIEWER").strip().upper()
    if normalized not in VALID_ROLES:
        raise UserError(f"Invalid role '{role}'")
    return normalized


def list_users(db: Session) -> List[Dict[str, Any]]:
    return [serialize_user(user) for user in db.query(User).order_by(User.username).all()]


def create_user(db: Session, payload: Mapping[str, Any]) -> User:
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    if not username or not password:
        raise UserError("Username and password are required")

    user = User(
        id=str(uuid.uuid4()),
        username=username,
        password=hash_password(password),
        role=_normalize_role(payload.get("role")),
        full_name=payload.get("fullName") or "",
        email=payload.get("email") or "",
        contact_number=payload.get("contactNumber") or "",
        status="ACTIVE",
        must_change_password=bool(payload.get("mustChangePassword", False)),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise UserError("Username already exists") from exc
    logger.info("Created user %s", username)
    return user


def update_user(db: Session, user_id: str, payload: Mapping[str, Any]) -> Optional[User]:
    user = db.get(User, user_id)
    if user is None:
        return None

    if payload.get("username"):
        user.username = payload["username"].strip()
    if payload.get("role"):
        user.role = _normalize_role(payload["role"])
    if "fullName" in payload:
        user.full_name = payload.get("fullName") or ""
    if "email" in payload:
        user.email = payload.get("email") or ""
    if "contactNumber" in payload:
        user.contact_number = payload.get("contactNumber") or ""
    if payload.get("status"):
        user.status = payload["status"].strip().upper()
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise UserError("Username already exists") from exc
    return user


def delete_user(db: Session, user_id: str) -> bool:
    user = db.get(User, user_id)
    if user is None:
        return False
    if user.username == ADMIN_USERNAME:
        raise UserError("Cannot delete the default admin user")
    db.delete(user)
    db.commit()
    return True


def change_password(db: Session, user_id: str, current_password: str, new_password: str) -> bool:
    """Replace a password after checking the current one. Returns False when the user is missing."""
    if not current_password or not new_password:
        raise UserError("Current password and new password are required")
    user = db.get(User, user_id)
    if user is None:
        return False
    if not verify_password(current_password, user.password):
        raise PermissionError("Current password is incorrect")
    user.password = hash_password(new_password)
    user.must_change_password = False
    db.commit()
    return True


def reset_password(db: Session, user_id: str, new_password: str) -> bool:
    if not new_password:
        raise UserError("New password is required")
    user = db.get(User, user_id)
    if user is None:
        return False
    user.password = hash_password(new_password)
    user.must_change_password = True
    db.commit()
    return True


def deactivate_user(db: Session, user_id: str) -> bool:
    user = db.get(User, user_id)
    if user is None:
        return False
    if user.username == ADMIN_USERNAME:
        raise UserError("Cannot deactivate the default admin user")
    user.status = "INACTIVE"
    db.commit()
    return True
