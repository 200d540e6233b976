"""Municipality and title register helpers shared by the CRUD, export and dashboard routers."""
from __future__ import annotations

import io
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.models.database import Municipality, MunicipalityCheckpoint, Title
from app.services.title_sync_service import generate_id, parse_area

logger = logging.getLogger(__name__)

# Compared lowercased: clients store "released" while older rows carry "Released".
PROCESSED_STATUSES = {"released", "processed"}
PREDEFINED_MUNICIPALITY_LIMIT = 20

# API key -> Title attribute
TITLE_FIELDS = {
    "serialNumber": "serial_number",
    "titleType": "title_type",
    "subtype": "subtype",
    "beneficiaryName": "beneficiary_name",
    "lotNumber": "lot_number",
    "barangayLocation": "barangay_location",
    "area": "area",
    "status": "status",
    "dateIssued": "date_issued",
    "dateRegistered": "date_registered",
    "dateReceived": "date_received",
    "dateDistributed": "date_distributed",
    "notes": "notes",
    "mother_ccloa_no": "mother_ccloa_no",
    "title_no": "title_no",
}

EXPORT_COLUMNS = [
    "Serial Number",
    "Municipality",
    "District",
    "Title Type",
    "Subtype",
    "Beneficiary Name",
    "Lot Number",
    "Barangay",
    "Area",
    "Status",
    "Date Issued",
    "Notes",
]


# ===== Serialization =====


def serialize_title(title: Title) -> Dict[str, Any]:
    data: Dict[str, Any] = {"id": title.id, "municipality_id": title.municipality_id}
    for key, attr in TITLE_FIELDS.items():
        data[key] = getattr(title, attr)
    return data


def serialize_checkpoint(checkpoint: MunicipalityCheckpoint) -> Dict[str, Any]:
    return {
        "id": checkpoint.id,
        "label": checkpoint.label,
        "completed": bool(checkpoint.completed),
    }


def _empty_counts() -> Dict[str, int]:
    return {"tctCloaTotal": 0, "tctCloaProcessed": 0, "tctEpTotal": 0, "tctEpProcessed": 0}


def _title_counts(db: Session, municipality_id: Optional[str] = None) -> Dict[str, Dict[str, int]]:
    query = db.query(Title.municipality_id, Title.title_type, Title.status, func.count(Title.id))
    if municipality_id is not None:
        query = query.filter(Title.municipality_id == municipality_id)
    rows = query.group_by(Title.municipality_id, Title.title_type, Title.status).all()

    counts: Dict[str, Dict[str, int]] = defaultdict(_empty_counts)
    for muni_id, title_type, status, count in rows:
        bucket = counts[muni_id]
        processed = (status or "").lower() in PROCESSED_STATUSES
        if title_type == "TCT-CLOA":
            bucket["tctCloaTotal"] += count
            if processed:
                bucket["tctCloaProcessed"] += count
        elif title_type == "TCT-EP":
            bucket["tctEpTotal"] += count
            if processed:
                bucket["tctEpProcessed"] += count
    return counts


def _serialize_municipality(
    muni: Municipality,
    checkpoints: Iterable[MunicipalityCheckpoint],
    counts: Mapping[str, int],
) -> Dict[str, Any]:
    data = {
        "id": muni.id,
        "name": muni.name,
        "status": muni.status,
        "notes": muni.notes,
        "district": muni.district,
        "checkpoints": [serialize_checkpoint(cp) for cp in checkpoints],
    }
    data.update(counts)
    return data


def list_municipalities(db: Session) -> List[Dict[str, Any]]:
    municipalities = db.query(Municipality).all()
    checkpoints: Dict[str, List[MunicipalityCheckpoint]] = defaultdict(list)
    for checkpoint in db.query(MunicipalityCheckpoint).order_by(MunicipalityCheckpoint.id).all():
        checkpoints[checkpoint.municipality_id].append(checkpoint)
    counts = _title_counts(db)
    return [
        _serialize_municipality(muni, checkpoints.get(muni.id, []), counts.get(muni.id, _empty_counts()))
        for muni in municipalities
    ]


def get_municipality(db: Session, municipality_id: str) -> Optional[Dict[str, Any]]:
    muni = db.get(Municipality, municipality_id)
    if muni is None:
        return None
    checkpoints = (
        db.query(MunicipalityCheckpoint)
        .filter(MunicipalityCheckpoint.municipality_id == municipality_id)
        .order_by(MunicipalityCheckpoint.id)
        .all()
    )
    counts = _title_counts(db, municipality_id).get(municipality_id, _empty_counts())
    return _serialize_municipality(muni, checkpoints, counts)


# ===== Municipality writes =====


def _replace_checkpoints(db: Session, municipality_id: str, checkpoints: Iterable[Mapping[str, Any]]) -> None:
    db.query(MunicipalityCheckpoint).filter(
        MunicipalityCheckpoint.municipality_id == municipality_id
    ).delete(synchronize_session=False)
    for checkpoint in checkpoints:
        db.add(MunicipalityCheckpoint(
            id=checkpoint.get("id") or generate_id(),
            municipality_id=municipality_id,
            label=checkpoint.get("label"),
            completed=bool(checkpoint.get("completed")),
        ))


def create_municipality(db: Session, payload: Mapping[str, Any]) -> str:
    name = (payload.get("name") or "").strip()
    if not name:
        raise ValueError("Municipality name is required")

    muni_id = str(payload.get("id") or generate_id())
    db.add(Municipality(
        id=muni_id,
        name=name,
        status=payload.get("status") or "active",
        notes=payload.get("notes") or "",
        district=payload.get("district") or 1,
    ))
    db.flush()
    checkpoints = payload.get("checkpoints")
    if checkpoints:
        _replace_checkpoints(db, muni_id, checkpoints)
    db.commit()
    return muni_id


def update_municipality(db: Session, municipality_id: str, payload: Mapping[str, Any]) -> bool:
    muni = db.get(Municipality, municipality_id)
    if muni is None:
        return False
    for key in ("name", "status", "notes", "district"):
        if key in payload and payload[key] is not None:
            setattr(muni, key, payload[key])
    checkpoints = payload.get("checkpoints")
    if isinstance(checkpoints, list):
        _replace_checkpoints(db, municipality_id, checkpoints)
    db.commit()
    return True


def is_predefined_municipality(municipality_id: str) -> bool:
    try:
        return int(municipality_id) <= PREDEFINED_MUNICIPALITY_LIMIT
    except (TypeError, ValueError):
        return False


def delete_municipality(db: Session, municipality_id: str) -> bool:
    if is_predefined_municipality(municipality_id):
        raise PermissionError("Cannot delete predefined municipalities")
    muni = db.get(Municipality, municipality_id)
    if muni is None:
        return False
    db.query(MunicipalityCheckpoint).filter(
        MunicipalityCheckpoint.municipality_id == municipality_id
    ).delete(synchronize_session=False)
    db.query(Title).filter(Title.municipality_id == municipality_id).delete(synchronize_session=False)
    db.delete(muni)
    db.commit()
    logger.info("Deleted municipality %s with its titles and checkpoints", municipality_id)
    return True


# ===== Title writes =====


def _apply_title_payload(title: Title, payload: Mapping[str, Any]) -> None:
    for key, attr in TITLE_FIELDS.items():
        if key not in payload:
            continue
        value = payload[key]
        if key == "area":
            value = parse_area(value)
        setattr(title, attr, value)


def list_titles(db: Session, municipality_id: str) -> List[Dict[str, Any]]:
    rows = db.query(Title).filter(Title.municipality_id == municipality_id).all()
    return [serialize_title(row) for row in rows]


def search_titles(
    db: Session,
    page: int = 1,
    limit: int = 50,
    search: Optional[str] = None,
    status: Optional[str] = None,
    title_type: Optional[str] = None,
) -> Dict[str, Any]:
    """Paginated title search across all municipalities.

    ``search`` matches serial number, beneficiary, lot, barangay or
    municipality name case-insensitively. A ``status``/``title_type`` of
    ``"all"`` or empty means no filter.
    """
    page = max(int(page), 1)
    limit = max(int(limit), 1)

    query = db.query(Title, Municipality.name).outerjoin(
        Municipality, Title.municipality_id == Municipality.id
    )
    term = (search or "").strip()
    if term:
        query = query.filter(or_(
            Title.serial_number.icontains(term, autoescape=True),
            Title.beneficiary_name.icontains(term, autoescape=True),
            Title.lot_number.icontains(term, autoescape=True),
            Title.barangay_location.icontains(term, autoescape=True),
            Municipality.name.icontains(term, autoescape=True),
        ))
    if status and status != "all":
        query = query.filter(Title.status == status)
    if title_type and title_type != "all":
        query = query.filter(Title.title_type == title_type)

    total = query.count()
    rows = (
        query.order_by(Title.serial_number, Title.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    data = []
    for title, muni_name in rows:
        item = serialize_title(title)
        item["municipalityName"] = muni_name or ""
        data.append(item)

    return {
        "data": data,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": (total + limit - 1) // limit,
        },
    }


def get_title(db: Session, municipality_id: str, title_id: str) -> Optional[Title]:
    return (
        db.query(Title)
        .filter(Title.municipality_id == municipality_id, Title.id == title_id)
        .first()
    )


def create_title(db: Session, municipality_id: str, payload: Mapping[str, Any]) -> str:
    if db.get(Municipality, municipality_id) is None:
        raise LookupError("Municipality not found")
    for required in ("serialNumber", "titleType", "beneficiaryName", "lotNumber"):
        if not payload.get(required):
            raise ValueError(f"{required} is required")

    title = Title(id=str(payload.get("id") or generate_id()), municipality_id=municipality_id)
    _apply_title_payload(title, payload)
    db.add(title)
    db.commit()
    return title.id


def update_title(db: Session, municipality_id: str, title_id: str, payload: Mapping[str, Any]) -> bool:
    title = get_title(db, municipality_id, title_id)
    if title is None:
        return False
    _apply_title_payload(title, payload)
    db.commit()
    return True


def delete_title(db: Session, municipality_id: str, title_id: str) -> bool:
    deleted = (
        db.query(Title)
        .filter(Title.municipality_id == municipality_id, Title.id == title_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return bool(deleted)


# ===== Export =====


def build_export_dataframe(db: Session) -> pd.DataFrame:
    rows = (
        db.query(Title, Municipality.name, Municipality.district)
        .outerjoin(Municipality, Title.municipality_id == Municipality.id)
        .order_by(Municipality.name, Title.serial_number)
        .all()
    )
    records = [
        {
            "Serial Number": title.serial_number,
            "Municipality": muni_name or "",
            "District": district,
            "Title Type": title.title_type,
            "Subtype": title.subtype or "",
            "Beneficiary Name": title.beneficiary_name,
            "Lot Number": title.lot_number,
            "Barangay": title.barangay_location or "",
            "Area": title.area or 0,
            "Status": title.status,
            "Date Issued": title.date_issued or "",
            "Notes": title.notes or "",
        }
        for title, muni_name, district in rows
    ]
    return pd.DataFrame(records, columns=EXPORT_COLUMNS)


def generate_excel(dataframe: pd.DataFrame, sheet_name: str = "Sheet1") -> bytes:
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        dataframe.to_excel(writer, sheet_name=sheet_name, index=False)
    return buffer.getvalue()


def generate_csv(dataframe: pd.DataFrame) -> str:
    return dataframe.to_csv(index=False)


# ===== Dashboard =====


def dashboard_summary(db: Session) -> Dict[str, Any]:
    total_titles = db.query(func.count(Title.id)).scalar() or 0
    total_area = db.query(func.coalesce(func.sum(Title.area), 0.0)).scalar() or 0.0

    by_status = {
        (status or "unknown"): count
        for status, count in db.query(Title.status, func.count(Title.id)).group_by(Title.status).all()
    }
    by_type = {
        (title_type or "unknown"): count
        for title_type, count in db.query(Title.title_type, func.count(Title.id)).group_by(Title.title_type).all()
    }

    per_municipality = dict(
        db.query(Title.municipality_id, func.count(Title.id)).group_by(Title.municipality_id).all()
    )
    by_district: Dict[str, int] = defaultdict(int)
    municipalities = []
    for muni in db.query(Municipality).order_by(Municipality.name).all():
        total = per_municipality.get(muni.id, 0)
        by_district[str(muni.district)] += total
        municipalities.append({"id": muni.id, "name": muni.name, "total": total})

    return {
        "totalTitles": total_titles,
        "totalArea": float(total_area),
        "byStatus": by_status,
        "byTitleType": by_type,
        "byDistrict": dict(by_district),
        "municipalities": municipalities,
    }
