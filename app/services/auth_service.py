"""Password hashing, login and the default admin bootstrap."""
from __future__ import annotations

import hashlib
import hmac
import logging
import os
import re
import uuid
from typing import Any, Dict, Optional

import bcrypt
from sqlalchemy.orm import Session

from app.models.database import User

logger = logging.getLogger(__name__)

ADMIN_USERNAME = "admin"
BCRYPT_ROUNDS = 10

_SHA256_HEX = re.compile(r"^[a-f0-9]{64}$", re.IGNORECASE)


def default_admin_password() -> str:
    return os.getenv("DEFAULT_ADMIN_PASSWORD") or "admin123"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def is_legacy_hash(stored: Optional[str]) -> bool:
    """Accounts created before bcrypt stored an unsalted SHA-256 hex digest."""
    return bool(stored) and bool(_SHA256_HEX.match(stored))


def verify_password(password: str, stored: Optional[str]) -> bool:
    if not stored or password is None:
        return False
    if is_legacy_hash(stored):
        digest = hashlib.sha256(password.encode("utf-8")).hexdigest()
        return hmac.compare_digest(digest, stored.lower())
    try:
        return bcrypt.checkpw(password.encode("utf-8"), stored.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "role": user.role,
        "fullName": user.full_name or "",
        "email": user.email or "",
        "contactNumber": user.contact_number or "",
        "status": user.status or "ACTIVE",
        "mustChangePassword": bool(user.must_change_password),
    }


def authenticate(db: Session, username: str, password: str) -> Optional[User]:
    """Return the active user matching the credentials, upgrading legacy hashes on the way."""
    if not username or password is None:
        return None

    user = db.query(User).filter(User.username == username).first()
    if user is None or not verify_password(password, user.password):
        return None
    if (user.status or "").upper() != "ACTIVE":
        logger.info("Login refused for inactive user %s", username)
        return None

    if is_legacy_hash(user.password):
        user.password = hash_password(password)
        db.commit()
        logger.info("Upgraded password hash for %s to bcrypt", username)
    return user


def ensure_admin(db: Session) -> User:
    """Make sure the default admin exists with a bcrypt hash, role ADMIN and status ACTIVE."""
    admin = db.query(User).filter(User.username == ADMIN_USERNAME).first()

    if admin is None:
        logger.info("Creating default admin user")
        admin = User(
            id=str(uuid.uuid4()),
            username=ADMIN_USERNAME,
            password=hash_password(default_admin_password()),
            role="ADMIN",
            full_name="Administrator",
            email="admin@dar.gov.ph",
            status="ACTIVE",
            must_change_password=False,
        )
        db.add(admin)
        db.commit()
        return admin

    if is_legacy_hash(admin.password):
        logger.info("Outdated SHA-256 hash detected for admin, upgrading to bcrypt")
        admin.password = hash_password(default_admin_password())

    admin.role = "ADMIN"
    admin.status = "ACTIVE"
    db.commit()
    return admin
