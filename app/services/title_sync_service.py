"""Spreadsheet to title register reconciliation.

Rows coming from an uploaded workbook or a Google Sheet are mapped through a
caller supplied header mapping into candidate records, then upserted into the
``titles`` table keyed by serial number. Rows are processed one at a time and
committed individually; a failing row is reported in the result and never
rolls back the rows before it.
"""
from __future__ import annotations

import io
import logging
import math
import numbers
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd
from sqlalchemy.orm import Session

from app.models.database import Municipality, Title

logger = logging.getLogger(__name__)

# Canonical field name -> label shown on the import screen
SYNC_FIELDS: Dict[str, str] = {
    "serialNumber": "Serial Number",
    "beneficiaryName": "Beneficiary Name",
    "municipalityName": "Municipality",
    "titleType": "Title Type",
    "subtype": "Subtype",
    "status": "Status",
    "lotNumber": "Lot Number",
    "area": "Area",
    "dateIssued": "Date Issued",
    "notes": "Notes",
}

_LEADING_FLOAT = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_NON_ALNUM = re.compile(r"[^a-z0-9]")

IdFactory = Callable[[], str]


@dataclass
class SyncResult:
    inserted: int = 0
    updated: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "errors": list(self.errors),
        }


def generate_id() -> str:
    return str(uuid.uuid4())


# ===== Row mapping =====


def map_rows_to_titles(
    rows: Optional[Sequence[Sequence[Any]]],
    mapping: Mapping[str, str],
) -> List[Dict[str, Any]]:
    """Turn a header row plus data rows into field keyed candidate records.

    Only columns present in ``mapping`` contribute a field; values are copied
    as-is. Missing or header-only input yields an empty list.
    """
    if not rows or len(rows) < 2:
        return []

    headers = rows[0]
    titles: List[Dict[str, Any]] = []
    for row in rows[1:]:
        title: Dict[str, Any] = {}
        for index, header in enumerate(headers):
            target = mapping.get(header)
            if not target or index >= len(row):
                continue
            title[target] = row[index]
        titles.append(title)
    return titles


def _squash(value: Any) -> str:
    return _NON_ALNUM.sub("", str(value).lower())


def suggest_mapping(headers: Iterable[Any]) -> Dict[str, str]:
    """Propose a header -> field mapping by matching headers to field keys and labels."""
    header_list = [header for header in headers if header is not None and str(header).strip()]
    suggested: Dict[str, str] = {}
    for key, label in SYNC_FIELDS.items():
        for header in header_list:
            if header in suggested:
                continue
            if _squash(header) == _squash(label) or str(header).lower() == key.lower():
                suggested[header] = key
                break
    return suggested


def rows_from_dataframe(dataframe: pd.DataFrame) -> List[List[Any]]:
    """Convert a header-less DataFrame (header in row 0) into plain row lists."""
    rows: List[List[Any]] = []
    for values in dataframe.itertuples(index=False, name=None):
        rows.append([None if _is_missing(value) else value for value in values])
    return rows


def _is_missing(value: Any) -> bool:
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def read_upload_dataframe(content: bytes, filename: str) -> pd.DataFrame:
    if not content:
        raise ValueError("Uploaded file is empty")

    try:
        if filename.lower().endswith((".xlsx", ".xls")):
            return pd.read_excel(io.BytesIO(content), header=None, dtype=str)

        for encoding in ("utf-8", "cp1252", "latin-1"):
            try:
                return pd.read_csv(
                    io.BytesIO(content),
                    encoding=encoding,
                    header=None,
                    dtype=str,
                    keep_default_na=False,
                )
            except UnicodeDecodeError:
                continue
    except pd.errors.EmptyDataError as exc:
        raise ValueError("Uploaded file is empty") from exc
    raise ValueError("Unable to decode CSV file with supported encodings")


# ===== Value normalisation =====


def parse_area(value: Any) -> float:
    """Parse the leading number of ``value``; anything unparseable becomes 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, numbers.Number):
        number = float(value)
    else:
        match = _LEADING_FLOAT.match(str(value))
        if not match:
            return 0.0
        number = float(match.group(0))
    if math.isnan(number) or number == 0:
        return 0.0
    return number


def _text_or_empty(value: Any) -> Any:
    return value if value else ""


# ===== Municipality resolution =====


def normalize_municipality_name(name: Any) -> str:
    if name is None:
        return ""
    return str(name).strip().lower()


def build_municipality_lookup(db: Session) -> Dict[str, str]:
    """Map normalised municipality names to ids; the first name seen wins."""
    lookup: Dict[str, str] = {}
    for muni_id, name in db.query(Municipality.id, Municipality.name).all():
        key = normalize_municipality_name(name)
        if key not in lookup:
            lookup[key] = muni_id
    return lookup


def resolve_municipality(lookup: Mapping[str, str], name: Any) -> Optional[str]:
    return lookup.get(normalize_municipality_name(name))


# ===== Upsert =====


def _error_message(exc: Exception) -> str:
    original = getattr(exc, "orig", None)
    return str(original if original is not None else exc)


def _find_title_by_serial(db: Session, serial_number: Any) -> Optional[Title]:
    if serial_number is None:
        return None
    return db.query(Title).filter(Title.serial_number == serial_number).first()


def _apply_fields(entry: Title, candidate: Mapping[str, Any], municipality_id: str) -> None:
    entry.municipality_id = municipality_id
    entry.title_type = candidate.get("titleType")
    entry.subtype = _text_or_empty(candidate.get("subtype"))
    entry.beneficiary_name = candidate.get("beneficiaryName")
    entry.lot_number = candidate.get("lotNumber")
    entry.area = parse_area(candidate.get("area"))
    entry.status = candidate.get("status")
    entry.date_issued = _text_or_empty(candidate.get("dateIssued"))
    entry.notes = _text_or_empty(candidate.get("notes"))


def sync_titles(
    db: Session,
    candidates: Iterable[Mapping[str, Any]],
    id_factory: IdFactory = generate_id,
) -> SyncResult:
    """Upsert candidate records into the title register by serial number.

    Failure to load municipalities aborts the whole call. Any other failure
    is recorded against its row and processing continues with the next one.
    """
    lookup = build_municipality_lookup(db)
    candidate_list = list(candidates)
    result = SyncResult()
    logger.info("Syncing %d title rows against %d municipalities", len(candidate_list), len(lookup))

    for candidate in candidate_list:
        serial_number = candidate.get("serialNumber")
        try:
            raw_name = candidate.get("municipalityName")
            muni_name = str(raw_name).strip() if raw_name else ""
            municipality_id = resolve_municipality(lookup, muni_name)
            if municipality_id is None:
                message = f"Serial {serial_number}: Municipality '{muni_name}' not found"
                logger.warning(message)
                result.errors.append(message)
                continue

            existing = _find_title_by_serial(db, serial_number)
            if existing is not None:
                _apply_fields(existing, candidate, municipality_id)
                db.commit()
                result.updated += 1
            else:
                entry = Title(id=id_factory(), serial_number=serial_number)
                _apply_fields(entry, candidate, municipality_id)
                db.add(entry)
                db.commit()
                result.inserted += 1
        except Exception as exc:
            db.rollback()
            message = f"Serial {serial_number}: {_error_message(exc)}"
            logger.warning(message)
            result.errors.append(message)

    logger.info(
        "Title sync finished: %d inserted, %d updated, %d errors",
        result.inserted,
        result.updated,
        len(result.errors),
    )
    return result
