"""API router for title records, register export and the dashboard summary."""
from __future__ import annotations

import asyncio
import io
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.database import get_db
from app.services.audit_service import log_audit
from app.services.register_service import (
    build_export_dataframe,
    create_title,
    dashboard_summary,
    delete_title,
    generate_csv,
    generate_excel,
    get_title,
    list_titles,
    search_titles,
    serialize_title,
    update_title,
)

router = APIRouter(tags=["titles"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class TitlePayload(BaseModel):
    id: Optional[str] = None
    serialNumber: Optional[str] = None
    titleType: Optional[str] = None
    subtype: Optional[str] = None
    beneficiaryName: Optional[str] = None
    lotNumber: Optional[str] = None
    barangayLocation: Optional[str] = None
    area: Optional[Any] = None
    status: Optional[str] = None
    dateIssued: Optional[str] = None
    dateRegistered: Optional[str] = None
    dateReceived: Optional[str] = None
    dateDistributed: Optional[str] = None
    notes: Optional[str] = None
    mother_ccloa_no: Optional[str] = None
    title_no: Optional[str] = None


@router.get("/api/titles")
async def search_all_titles(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    search: Optional[str] = None,
    status: Optional[str] = None,
    type: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Paginated, filtered title list across all municipalities."""
    return search_titles(db, page=page, limit=limit, search=search, status=status, title_type=type)


@router.get("/api/titles/export")
async def export_titles(
    format: str = Query("xlsx", pattern="^(xlsx|csv)$"),
    db: Session = Depends(get_db),
):
    """Download the whole title register as Excel or CSV."""
    dataframe = build_export_dataframe(db)
    if format == "csv":
        csv_content = generate_csv(dataframe)
        return StreamingResponse(
            io.StringIO(csv_content),
            media_type="text/csv",
            headers={"Content-Disposition": "attachment; filename=land_titles.csv"},
        )

    content = await asyncio.to_thread(generate_excel, dataframe, "Land Titles")
    return StreamingResponse(
        io.BytesIO(content),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": "attachment; filename=land_titles.xlsx"},
    )


@router.get("/api/dashboard/summary")
async def get_dashboard_summary(db: Session = Depends(get_db)):
    return dashboard_summary(db)


@router.get("/api/titles/{municipality_id}")
async def get_municipality_titles(municipality_id: str, db: Session = Depends(get_db)):
    return list_titles(db, municipality_id)


@router.get("/api/titles/{municipality_id}/{title_id}")
async def get_single_title(municipality_id: str, title_id: str, db: Session = Depends(get_db)):
    title = get_title(db, municipality_id, title_id)
    if title is None:
        raise HTTPException(status_code=404, detail="Title not found")
    return serialize_title(title)


@router.post("/api/titles/{municipality_id}", status_code=201)
async def add_title(
    municipality_id: str,
    payload: TitlePayload,
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None),
):
    try:
        title_id = create_title(db, municipality_id, payload.model_dump(exclude_unset=True))
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc.orig)) from exc
    log_audit(db, x_user_id, "TITLE_CREATED", {"id": title_id, "serialNumber": payload.serialNumber})
    return {"id": title_id, "message": "Title created successfully"}


@router.put("/api/titles/{municipality_id}/{title_id}")
async def edit_title(
    municipality_id: str,
    title_id: str,
    payload: TitlePayload,
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None),
):
    data = payload.model_dump(exclude_unset=True)
    data.pop("id", None)
    try:
        updated = update_title(db, municipality_id, title_id, data)
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc.orig)) from exc
    if not updated:
        raise HTTPException(status_code=404, detail="Title not found")
    log_audit(db, x_user_id, "TITLE_UPDATED", {"id": title_id})
    return {"id": title_id, "message": "Title updated successfully"}


@router.delete("/api/titles/{municipality_id}/{title_id}")
async def remove_title(
    municipality_id: str,
    title_id: str,
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None),
):
    if not delete_title(db, municipality_id, title_id):
        raise HTTPException(status_code=404, detail="Title not found")
    log_audit(db, x_user_id, "TITLE_DELETED", {"id": title_id})
    return {"message": "Title deleted successfully"}
