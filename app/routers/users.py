"""API router for login, user management and the audit trail."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.models.database import User, get_db
from app.services.audit_service import list_audit_logs, log_audit
from app.services.auth_service import authenticate, serialize_user
from app.services.user_service import (
    UserError,
    change_password,
    create_user,
    deactivate_user,
    delete_user,
    list_users,
    reset_password,
    update_user,
)

router = APIRouter(tags=["users"])


class LoginRequest(BaseModel):
    username: str
    password: str


class UserCreateRequest(BaseModel):
    username: str
    password: str
    role: Optional[str] = None
    fullName: Optional[str] = None
    email: Optional[str] = None
    contactNumber: Optional[str] = None
    mustChangePassword: bool = False


class UserUpdateRequest(BaseModel):
    username: Optional[str] = None
    role: Optional[str] = None
    fullName: Optional[str] = None
    email: Optional[str] = None
    contactNumber: Optional[str] = None
    status: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    currentPassword: str = ""
    newPassword: str = ""


class ResetPasswordRequest(BaseModel):
    newPassword: str = ""


@router.post("/api/login")
async def login(request: LoginRequest, db: Session = Depends(get_db)):
    user = authenticate(db, request.username, request.password)
    if user is None:
        return JSONResponse(status_code=401, content={"success": False, "message": "Invalid credentials"})
    log_audit(db, user.id, "LOGIN", {"username": user.username})
    return {"success": True, "user": serialize_user(user), "message": "Login successful"}


@router.get("/api/users")
async def get_users(db: Session = Depends(get_db)):
    return list_users(db)


@router.get("/api/users/{user_id}")
async def get_user(user_id: str, db: Session = Depends(get_db)):
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return serialize_user(user)


@router.post("/api/users", status_code=201)
async def add_user(
    request: UserCreateRequest,
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None),
):
    try:
        user = create_user(db, request.model_dump())
    except UserError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(db, x_user_id, "USER_CREATED", {"id": user.id, "username": user.username, "role": user.role})
    return {"id": user.id, "message": "User created successfully"}


@router.put("/api/users/{user_id}")
async def edit_user(
    user_id: str,
    request: UserUpdateRequest,
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None),
):
    try:
        user = update_user(db, user_id, request.model_dump(exclude_unset=True))
    except UserError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    log_audit(db, x_user_id, "USER_UPDATED", {"id": user_id, "role": user.role, "status": user.status})
    return {"id": user_id, "message": "User updated successfully"}


@router.delete("/api/users/{user_id}")
async def remove_user(
    user_id: str,
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None),
):
    try:
        deleted = delete_user(db, user_id)
    except UserError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="User not found")
    log_audit(db, x_user_id, "USER_DELETED", {"id": user_id})
    return {"message": "User deleted successfully"}


@router.put("/api/users/{user_id}/change-password")
async def change_user_password(user_id: str, request: ChangePasswordRequest, db: Session = Depends(get_db)):
    try:
        changed = change_password(db, user_id, request.currentPassword, request.newPassword)
    except UserError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    if not changed:
        raise HTTPException(status_code=404, detail="User not found")
    log_audit(db, user_id, "PASSWORD_CHANGED", None)
    return {"message": "Password updated successfully"}


@router.post("/api/users/{user_id}/reset-password")
async def reset_user_password(
    user_id: str,
    request: ResetPasswordRequest,
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None),
):
    try:
        reset = reset_password(db, user_id, request.newPassword)
    except UserError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not reset:
        raise HTTPException(status_code=404, detail="User not found")
    log_audit(db, x_user_id, "PASSWORD_RESET", {"id": user_id})
    return {"message": "Password reset successfully"}


@router.post("/api/users/{user_id}/deactivate")
async def deactivate(
    user_id: str,
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None),
):
    try:
        done = deactivate_user(db, user_id)
    except UserError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not done:
        raise HTTPException(status_code=404, detail="User not found")
    log_audit(db, x_user_id, "USER_DEACTIVATED", {"id": user_id})
    return {"message": "User deactivated successfully"}


@router.get("/api/audit-logs")
async def get_audit_logs(limit: int = Query(100, ge=1, le=1000), db: Session = Depends(get_db)):
    return list_audit_logs(db, limit)
