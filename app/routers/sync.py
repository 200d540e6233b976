"""API router for the spreadsheet preview/confirm sync workflow."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, UploadFile
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core import session_manager
from app.models.database import get_db
from app.services.audit_service import log_audit
from app.services.sheet_source import SheetFetchError, fetch_sheet_rows
from app.services.title_sync_service import (
    SyncResult,
    map_rows_to_titles,
    read_upload_dataframe,
    rows_from_dataframe,
    suggest_mapping,
    sync_titles,
)

router = APIRouter(tags=["sync"])
logger = logging.getLogger(__name__)


class SheetPreviewRequest(BaseModel):
    sheetId: str
    range: Optional[str] = None
    mapping: Dict[str, str]


class ConfirmRequest(BaseModel):
    titles: List[Dict[str, Any]]


def _store_preview(source: str, rows: List[List[Any]], mapping: Dict[str, str]) -> Dict[str, Any]:
    titles = map_rows_to_titles(rows, mapping)
    headers = list(rows[0]) if rows else []
    session_id = session_manager.generate_session_id()
    session_manager.set_session(
        session_id,
        {
            "source": source,
            "headers": headers,
            "mapping": mapping,
            "titles": titles,
        },
    )
    logger.info("Stored preview %s from %s with %d rows", session_id, source, len(titles))
    return _preview_payload(session_id, source, headers, mapping, titles)


def _preview_payload(
    session_id: str,
    source: Optional[str],
    headers: List[Any],
    mapping: Dict[str, str],
    titles: List[Dict[str, Any]],
) -> Dict[str, Any]:
    # dashboard clients read the candidates from "data"
    return {
        "session_id": session_id,
        "source": source,
        "headers": headers,
        "mapping": mapping,
        "titles": titles,
        "data": titles,
        "total": len(titles),
    }


def _parse_mapping(raw: Optional[str]) -> Optional[Dict[str, str]]:
    if raw is None or not raw.strip():
        return None
    try:
        mapping = json.loads(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Mapping must be a JSON object") from exc
    if not isinstance(mapping, dict):
        raise HTTPException(status_code=400, detail="Mapping must be a JSON object")
    return {str(key): str(value) for key, value in mapping.items() if value}


async def _run_sync(db: Session, titles: List[Dict[str, Any]], user_id: Optional[str]) -> SyncResult:
    try:
        result = await asyncio.to_thread(sync_titles, db, titles)
    except Exception as exc:
        logger.error("Title sync failed: %s", exc)
        raise HTTPException(status_code=500, detail=f"Sync failed: {exc}") from exc

    log_audit(db, user_id, "TITLES_SYNCED", {
        "submitted": len(titles),
        "inserted": result.inserted,
        "updated": result.updated,
        "errors": len(result.errors),
    })
    return result


@router.post("/api/sync/preview")
@router.post("/api/sync/google-sheets/preview")
async def preview_sheet(request: SheetPreviewRequest):
    """Fetch a Google Sheet range and map it for review. Nothing is written."""
    try:
        rows = await asyncio.to_thread(fetch_sheet_rows, request.sheetId, request.range)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except SheetFetchError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return _store_preview(f"sheet:{request.sheetId}", rows, request.mapping)


@router.post("/api/sync/upload")
async def preview_upload(
    file: UploadFile = File(...),
    mapping: Optional[str] = Form(None),
):
    """Map an uploaded CSV/Excel file for review, suggesting a mapping when none is given."""
    if not file.filename or not file.filename.lower().endswith((".csv", ".xlsx", ".xls")):
        raise HTTPException(status_code=400, detail="Only CSV or Excel files are supported")

    header_mapping = _parse_mapping(mapping)
    try:
        content = await file.read()
        dataframe = await asyncio.to_thread(read_upload_dataframe, content, file.filename)
        rows = rows_from_dataframe(dataframe)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:  # pragma: no cover - generic safeguard
        raise HTTPException(status_code=500, detail=f"Failed to process file: {exc}") from exc

    if header_mapping is None:
        header_mapping = suggest_mapping(rows[0] if rows else [])
    return _store_preview(f"upload:{file.filename}", rows, header_mapping)


@router.get("/api/sync/preview/{session_id}")
async def get_preview(session_id: str):
    session_data = session_manager.require_session(session_id)
    return _preview_payload(
        session_id,
        session_data.get("source"),
        session_data.get("headers", []),
        session_data.get("mapping", {}),
        session_data.get("titles", []),
    )


@router.post("/api/sync/confirm")
@router.post("/api/sync/google-sheets/confirm")
async def confirm_sync(
    request: ConfirmRequest,
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None),
):
    """Upsert reviewed titles and report inserted/updated counts with per-row errors."""
    result = await _run_sync(db, request.titles, x_user_id)
    return result.to_dict()


@router.post("/api/sync/confirm/{session_id}")
async def confirm_stored_preview(
    session_id: str,
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None),
):
    session_data = session_manager.require_session(session_id)
    result = await _run_sync(db, session_data.get("titles", []), x_user_id)
    session_manager.delete_session(session_id)
    return result.to_dict()


@router.post("/api/titles/batch")
async def import_title_batch(
    request: ConfirmRequest,
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None),
):
    """Bulk import used by the spreadsheet import screen."""
    result = await _run_sync(db, request.titles, x_user_id)
    payload = result.to_dict()
    payload["successCount"] = result.inserted + result.updated
    payload["failedCount"] = len(result.errors)
    return payload
