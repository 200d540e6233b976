#!/usr/bin/env python3
"""
Tests for the preview/confirm sync endpoints.
"""

import json
from unittest.mock import MagicMock

import pytest

from app.core import session_manager
from app.models.database import AuditLog, Title
from app.routers import sync as sync_router
from app.services import sheet_source
from app.services.sheet_source import SheetFetchError

SHEET_ROWS = [
    ['Serial', 'Owner', 'Muni', 'Type', 'Lot', 'Status', 'Hectares'],
    ['SN001', 'Juan Dela Cruz', 'Agoo', 'TCT-CLOA', 'L-1', 'released', '1.5'],
    ['SN002', 'Maria Clara', 'Atlantis', 'TCT-EP', 'L-2', 'on-hand', ''],
]

SHEET_MAPPING = {
    'Serial': 'serialNumber',
    'Owner': 'beneficiaryName',
    'Muni': 'municipalityName',
    'Type': 'titleType',
    'Lot': 'lotNumber',
    'Status': 'status',
    'Hectares': 'area',
}


def test_sheet_preview_maps_rows_without_writing(client, db, monkeypatch):
    calls = []

    def fake_fetch(sheet_id, range_a1):
        calls.append((sheet_id, range_a1))
        return SHEET_ROWS

    monkeypatch.setattr(sync_router, 'fetch_sheet_rows', fake_fetch)

    response = client.post('/api/sync/preview', json={
        'sheetId': 'sheet-123',
        'range': 'Titles!A1:G50',
        'mapping': SHEET_MAPPING,
    })

    assert response.status_code == 200
    payload = response.json()
    assert calls == [('sheet-123', 'Titles!A1:G50')]
    assert payload['total'] == 2
    assert payload['titles'][0] == {
        'serialNumber': 'SN001',
        'beneficiaryName': 'Juan Dela Cruz',
        'municipalityName': 'Agoo',
        'titleType': 'TCT-CLOA',
        'lotNumber': 'L-1',
        'status': 'released',
        'area': '1.5',
    }
    assert db.query(Title).count() == 0

    stored = client.get(f"/api/sync/preview/{payload['session_id']}")
    assert stored.status_code == 200
    assert stored.json()['titles'] == payload['titles']


def test_confirm_stored_preview_upserts_and_drops_session(client, db, monkeypatch):
    monkeypatch.setattr(sync_router, 'fetch_sheet_rows', lambda sheet_id, range_a1: SHEET_ROWS)
    session_id = client.post('/api/sync/preview', json={
        'sheetId': 'sheet-123', 'range': 'A1:G3', 'mapping': SHEET_MAPPING,
    }).json()['session_id']

    response = client.post(f'/api/sync/confirm/{session_id}')

    assert response.status_code == 200
    assert response.json() == {
        'inserted': 1,
        'updated': 0,
        'errors': ["Serial SN002: Municipality 'Atlantis' not found"],
    }
    assert client.get(f'/api/sync/preview/{session_id}').status_code == 404
    db.expire_all()
    title = db.query(Title).filter(Title.serial_number == 'SN001').one()
    assert title.area == 1.5
    assert title.municipality_id == '1'


def test_sheet_fetch_failure_is_a_bad_gateway(client, monkeypatch):
    def failing_fetch(sheet_id, range_a1):
        raise SheetFetchError('Failed to fetch sheet rows: HTTP Error 404')

    monkeypatch.setattr(sync_router, 'fetch_sheet_rows', failing_fetch)

    response = client.post('/api/sync/preview', json={'sheetId': 'missing', 'mapping': {}})

    assert response.status_code == 502
    assert 'Failed to fetch sheet rows' in response.json()['detail']


def test_confirm_reports_counts_and_writes_audit_entry(client, db):
    titles = [
        {'serialNumber': 'SN001', 'beneficiaryName': 'Juan', 'municipalityName': 'agoo',
         'titleType': 'TCT-CLOA', 'lotNumber': 'L-1', 'status': 'on-hand'},
        {'serialNumber': 'SN002', 'beneficiaryName': 'Ana', 'municipalityName': 'Bauang',
         'titleType': 'TCT-EP', 'lotNumber': 'L-2', 'status': 'released', 'area': '2'},
    ]

    first = client.post('/api/sync/confirm', json={'titles': titles}, headers={'X-User-Id': 'admin-id'})
    second = client.post('/api/sync/confirm', json={'titles': titles})

    assert first.json() == {'inserted': 2, 'updated': 0, 'errors': []}
    assert second.json() == {'inserted': 0, 'updated': 2, 'errors': []}
    assert db.query(Title).count() == 2

    entries = db.query(AuditLog).filter(AuditLog.action == 'TITLES_SYNCED').all()
    assert len(entries) == 2
    first_entry = next(entry for entry in entries if entry.user_id == 'admin-id')
    assert json.loads(first_entry.details) == {'submitted': 2, 'inserted': 2, 'updated': 0, 'errors': 0}


def test_batch_import_reports_success_and_failure_counts(client):
    titles = [
        {'serialNumber': 'SN001', 'beneficiaryName': 'Juan', 'municipalityName': 'Luna',
         'titleType': 'SPLIT', 'lotNumber': 'L-1', 'status': 'on-hand'},
        {'serialNumber': 'SN002', 'municipalityName': 'Nowhere'},
    ]

    response = client.post('/api/titles/batch', json={'titles': titles})

    assert response.status_code == 200
    payload = response.json()
    assert payload['successCount'] == 1
    assert payload['failedCount'] == 1
    assert payload['inserted'] == 1


def test_upload_suggests_mapping_from_headers(client, db):
    content = (
        "Serial Number,Beneficiary Name,Municipality,Title Type,Lot Number,Status,Area,Remarks\n"
        "SN100,Pedro Santos,San Juan,TCT-CLOA,L-9,processing,0.8,ignored\n"
    ).encode('utf-8')

    response = client.post(
        '/api/sync/upload',
        files={'file': ('titles.csv', content, 'text/csv')},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload['mapping']['Serial Number'] == 'serialNumber'
    assert 'Remarks' not in payload['mapping']
    assert payload['titles'] == [{
        'serialNumber': 'SN100',
        'beneficiaryName': 'Pedro Santos',
        'municipalityName': 'San Juan',
        'titleType': 'TCT-CLOA',
        'lotNumber': 'L-9',
        'status': 'processing',
        'area': '0.8',
    }]
    assert db.query(Title).count() == 0


def test_upload_with_explicit_mapping_and_bad_inputs(client):
    content = b"Serial,Owner\nSN1,Juan\n"

    mapped = client.post(
        '/api/sync/upload',
        files={'file': ('titles.csv', content, 'text/csv')},
        data={'mapping': json.dumps({'Serial': 'serialNumber'})},
    )
    bad_mapping = client.post(
        '/api/sync/upload',
        files={'file': ('titles.csv', content, 'text/csv')},
        data={'mapping': '[1, 2]'},
    )
    bad_type = client.post('/api/sync/upload', files={'file': ('titles.txt', content, 'text/plain')})

    assert mapped.json()['titles'] == [{'serialNumber': 'SN1'}]
    assert bad_mapping.status_code == 400
    assert bad_type.status_code == 400


def test_unknown_preview_session_is_not_found(client):
    assert client.get('/api/sync/preview/does-not-exist').status_code == 404
    assert client.post('/api/sync/confirm/does-not-exist').status_code == 404


def test_google_sheets_paths_return_candidates_under_data(client, db, monkeypatch):
    monkeypatch.setattr(sync_router, 'fetch_sheet_rows', lambda sheet_id, range_a1: SHEET_ROWS)

    preview = client.post('/api/sync/google-sheets/preview', json={
        'sheetId': 'sheet-123', 'range': 'Titles!A1:G3', 'mapping': SHEET_MAPPING,
    })

    assert preview.status_code == 200
    candidates = preview.json()['data']
    assert candidates == preview.json()['titles']
    assert [item['serialNumber'] for item in candidates] == ['SN001', 'SN002']

    confirmed = client.post('/api/sync/google-sheets/confirm', json={'titles': candidates})

    assert confirmed.status_code == 200
    assert confirmed.json() == {
        'inserted': 1,
        'updated': 0,
        'errors': ["Serial SN002: Municipality 'Atlantis' not found"],
    }
    assert db.query(Title).count() == 1


def test_sheet_preview_requires_a_range(client):
    response = client.post('/api/sync/google-sheets/preview', json={'sheetId': 'sheet-123', 'mapping': {}})

    assert response.status_code == 400
    assert response.json()['detail'] == 'range is required'


# ===== Preview expiry =====


def test_abandoned_previews_expire(client, monkeypatch):
    now = [1000.0]
    monkeypatch.setenv('PREVIEW_TTL_SECONDS', '60')
    monkeypatch.setattr(session_manager, '_clock', lambda: now[0])
    monkeypatch.setattr(sync_router, 'fetch_sheet_rows', lambda sheet_id, range_a1: SHEET_ROWS)
    body = {'sheetId': 'sheet-123', 'range': 'A1:G3', 'mapping': SHEET_MAPPING}

    stale = [client.post('/api/sync/preview', json=body).json()['session_id'] for _ in range(50)]
    now[0] += 30
    fresh = client.post('/api/sync/preview', json=body).json()['session_id']
    assert client.get('/api/health').json()['pendingPreviews'] == 51

    now[0] += 31

    assert client.get(f'/api/sync/preview/{stale[0]}').status_code == 404
    assert client.post(f'/api/sync/confirm/{stale[-1]}').status_code == 404
    assert client.get(f'/api/sync/preview/{fresh}').status_code == 200
    assert session_manager.session_count() == 1
    assert client.get('/api/health').json()['pendingPreviews'] == 1


def test_invalid_preview_ttl_falls_back_to_default(monkeypatch):
    monkeypatch.setenv('PREVIEW_TTL_SECONDS', 'soon')

    assert session_manager.preview_ttl_seconds() == session_manager.DEFAULT_PREVIEW_TTL_SECONDS


# ===== Sheets API source =====


def _sheets_client(response=None, error=None):
    client = MagicMock()
    request = client.spreadsheets.return_value.values.return_value.get.return_value
    if error is not None:
        request.execute.side_effect = error
    else:
        request.execute.return_value = response
    return client


def test_fetch_sheet_rows_reads_values_for_range():
    values = [['Serial', 'Owner'], ['1001', 'Juan'], ['SN001']]
    client = _sheets_client({'range': "'Land Titles'!A1:B3", 'values': values})

    rows = sheet_source.fetch_sheet_rows('sheet-123', "'Land Titles'!A1:B3", client=client)

    assert rows == values
    client.spreadsheets.return_value.values.return_value.get.assert_called_once_with(
        spreadsheetId='sheet-123', range="'Land Titles'!A1:B3",
    )


def test_fetch_sheet_rows_returns_empty_list_for_blank_range():
    client = _sheets_client({'range': 'Sheet1!A1:B3'})

    assert sheet_source.fetch_sheet_rows('sheet-123', 'Sheet1!A1:B3', client=client) == []


def test_fetch_sheet_rows_wraps_api_errors():
    client = _sheets_client(error=RuntimeError('The caller does not have permission'))

    with pytest.raises(SheetFetchError) as excinfo:
        sheet_source.fetch_sheet_rows('sheet-123', 'Sheet1!A1:B3', client=client)

    assert str(excinfo.value) == 'Failed to fetch sheet rows: The caller does not have permission'


def test_sheets_client_is_built_once_from_service_account_file(monkeypatch):
    credentials_module = MagicMock()
    built = []

    def fake_build(service, version, http, cache_discovery):
        built.append((service, version, http, cache_discovery))
        return 'sheets-client'

    monkeypatch.setenv('GOOGLE_SHEETS_CREDENTIALS', '/secrets/land-titles.json')
    monkeypatch.setenv('GOOGLE_SHEETS_TIMEOUT', '12')
    monkeypatch.setattr(sheet_source, '_sheets_client', None)
    monkeypatch.setattr(sheet_source, 'service_account', credentials_module)
    monkeypatch.setattr(sheet_source, 'build', fake_build)

    assert sheet_source.get_sheets_client() == 'sheets-client'
    assert sheet_source.get_sheets_client() == 'sheets-client'

    credentials_module.Credentials.from_service_account_file.assert_called_once_with(
        '/secrets/land-titles.json', scopes=sheet_source.SCOPES,
    )
    assert len(built) == 1
    service, version, http, cache_discovery = built[0]
    assert (service, version, cache_discovery) == ('sheets', 'v4', False)
    assert http.http.timeout == 12.0


def test_missing_credentials_file_is_a_fetch_error(monkeypatch, tmp_path):
    monkeypatch.setenv('GOOGLE_SHEETS_CREDENTIALS', str(tmp_path / 'absent.json'))
    monkeypatch.setattr(sheet_source, '_sheets_client', None)

    with pytest.raises(SheetFetchError) as excinfo:
        sheet_source.get_sheets_client()

    assert str(excinfo.value).startswith('Failed to initialize Google Sheets client')
    assert sheet_source._sheets_client is None
