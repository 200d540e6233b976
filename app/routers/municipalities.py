"""API router for municipalities and their progress checkpoints."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.database import get_db
from app.services.audit_service import log_audit
from app.services.register_service import (
    create_municipality,
    delete_municipality,
    get_municipality,
    list_municipalities,
    update_municipality,
)

router = APIRouter(prefix="/api/municipalities", tags=["municipalities"])


class CheckpointPayload(BaseModel):
    id: Optional[str] = None
    label: str
    completed: bool = False


class MunicipalityPayload(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    district: Optional[int] = None
    checkpoints: Optional[List[CheckpointPayload]] = None


def _payload_dict(payload: MunicipalityPayload) -> Dict[str, Any]:
    data = payload.model_dump(exclude_unset=True)
    if payload.checkpoints is not None:
        data["checkpoints"] = [cp.model_dump() for cp in payload.checkpoints]
    return data


@router.get("")
async def get_all_municipalities(db: Session = Depends(get_db)):
    return list_municipalities(db)


@router.get("/{municipality_id}")
async def get_single_municipality(municipality_id: str, db: Session = Depends(get_db)):
    muni = get_municipality(db, municipality_id)
    if muni is None:
        raise HTTPException(status_code=404, detail="Municipality not found")
    return muni


@router.post("", status_code=201)
async def add_municipality(
    payload: MunicipalityPayload,
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None),
):
    try:
        muni_id = create_municipality(db, _payload_dict(payload))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail="Municipality already exists") from exc
    log_audit(db, x_user_id, "MUNICIPALITY_CREATED", {"id": muni_id, "name": payload.name})
    return {"id": muni_id, "message": "Municipality created successfully"}


@router.put("/{municipality_id}")
async def edit_municipality(
    municipality_id: str,
    payload: MunicipalityPayload,
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None),
):
    if not update_municipality(db, municipality_id, _payload_dict(payload)):
        raise HTTPException(status_code=404, detail="Municipality not found")
    log_audit(db, x_user_id, "MUNICIPALITY_UPDATED", {"id": municipality_id})
    return {"id": municipality_id, "message": "Municipality updated successfully"}


@router.delete("/{municipality_id}")
async def remove_municipality(
    municipality_id: str,
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None),
):
    try:
        deleted = delete_municipality(db, municipality_id)
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Municipality not found")
    log_audit(db, x_user_id, "MUNICIPALITY_DELETED", {"id": municipality_id})
    return {"message": "Municipality deleted successfully"}
