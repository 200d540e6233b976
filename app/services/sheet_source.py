"""Read rows from a Google Sheet through the Sheets API with a service account.

Operators share the sheet with the service account's e-mail address; the key
file location comes from ``GOOGLE_SHEETS_CREDENTIALS`` (default
``credentials.json``).
"""
from __future__ import annotations

import logging
import os
from typing import Any, List, Optional

import google_auth_httplib2
import httplib2
from google.oauth2 import service_account
from googleapiclient.discovery import build

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets.readonly"]
DEFAULT_CREDENTIALS_FILE = "credentials.json"
DEFAULT_TIMEOUT_SECONDS = 30.0

_sheets_client = None


class SheetFetchError(Exception):
    """Raised when a sheet cannot be fetched."""


def credentials_path() -> str:
    return os.getenv("GOOGLE_SHEETS_CREDENTIALS") or DEFAULT_CREDENTIALS_FILE


def request_timeout() -> float:
    raw = os.getenv("GOOGLE_SHEETS_TIMEOUT")
    if not raw:
        return DEFAULT_TIMEOUT_SECONDS
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid GOOGLE_SHEETS_TIMEOUT=%r", raw)
        return DEFAULT_TIMEOUT_SECONDS


def get_sheets_client():
    """Build the Sheets v4 client once and reuse it."""
    global _sheets_client
    if _sheets_client is not None:
        return _sheets_client

    try:
        credentials = service_account.Credentials.from_service_account_file(
            credentials_path(), scopes=SCOPES
        )
        http = google_auth_httplib2.AuthorizedHttp(
            credentials, http=httplib2.Http(timeout=request_timeout())
        )
        _sheets_client = build("sheets", "v4", http=http, cache_discovery=False)
    except Exception as exc:
        logger.error("Error initializing Google Sheets client: %s", exc)
        raise SheetFetchError(f"Failed to initialize Google Sheets client: {exc}") from exc
    return _sheets_client


def fetch_sheet_rows(sheet_id: str, range_a1: Optional[str], client=None) -> List[List[Any]]:
    """Return the header row followed by data rows, or ``[]`` for an empty range.

    Values come back as displayed in the sheet, one list per row, with
    trailing empty cells dropped.
    """
    if not sheet_id or not str(sheet_id).strip():
        raise ValueError("sheetId is required")
    if not range_a1 or not str(range_a1).strip():
        raise ValueError("range is required")

    client = client or get_sheets_client()
    try:
        response = (
            client.spreadsheets()
            .values()
            .get(spreadsheetId=str(sheet_id).strip(), range=str(range_a1).strip())
            .execute()
        )
    except Exception as exc:
        logger.error("Error fetching sheet rows for %s: %s", sheet_id, exc)
        raise SheetFetchError(f"Failed to fetch sheet rows: {exc}") from exc

    rows = response.get("values") or []
    if not rows:
        logger.info("No data found in sheet %s range %s", sheet_id, range_a1)
        return []
    return rows
