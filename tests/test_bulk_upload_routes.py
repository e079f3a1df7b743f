"""
Tests for the bulk upload HTTP endpoints.
"""

import base64
from io import BytesIO

import openpyxl
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from api.dependencies import get_db
from api.main import app
from backend.models import UploadRun, UploadStatus
from services.committer import Committer

USER_HEADERS = {'X-User-Id': '1'}
XLSX = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
BASE = '/api/clients/bulk-upload'


@pytest.fixture
def client(session, users):
    """TestClient whose requests share the test session."""
    # Seeded users must survive a request that rolls back
    session.commit()

    def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def upload(client, content, filename='clients.xlsx', headers=USER_HEADERS):
    return client.post(f'{BASE}/preview', files={'file': (filename, content, XLSX)}, headers=headers)


class TestTemplateEndpoint:

    def test_download_template(self, client):
        response = client.get(f'{BASE}/template')

        assert response.status_code == 200
        assert 'crm_bulk_upload_template.xlsx' in response.headers['content-disposition']
        sheet = openpyxl.load_workbook(BytesIO(response.content)).active
        assert sheet.cell(row=1, column=1).value == 'Group Name'


class TestPreviewEndpoint:

    def test_preview(self, client, make_workbook, acme_rows):
        response = upload(client, make_workbook(acme_rows))

        assert response.status_code == 200
        body = response.json()
        assert body['success'] is True
        assert [c['name'] for c in body['data']['clients']] == ['Acme Corp']
        assert len(body['data']['contacts']) == 2
        assert body['data']['errors'] == []

    def test_requires_user_id(self, client, make_workbook, acme_rows):
        response = upload(client, make_workbook(acme_rows), headers={})

        assert response.status_code == 401

    @pytest.mark.parametrize('user_id', ['abc', '0', '-3'])
    def test_rejects_bad_user_id(self, client, make_workbook, acme_rows, user_id):
        response = upload(client, make_workbook(acme_rows), headers={'X-User-Id': user_id})

        assert response.status_code == 401

    def test_wrong_extension(self, client):
        response = upload(client, b'a,b,c', filename='clients.csv')

        assert response.status_code == 400
        assert 'not allowed' in response.json()['detail']

    def test_malformed_workbook(self, client, make_workbook):
        response = upload(client, make_workbook([['Acme', 'Tech']], headers=['Group Name', 'Industry']))

        assert response.status_code == 400
        assert 'Missing required columns' in response.json()['detail']

    def test_too_large(self, client, monkeypatch, make_workbook, acme_rows):
        from api.config import settings
        monkeypatch.setattr(settings, 'MAX_FILE_SIZE_MB', 0)

        response = upload(client, make_workbook(acme_rows))

        assert response.status_code == 413


class TestDownloadPreviewEndpoint:

    def test_renders_edited_preview(self, client, make_workbook, acme_rows):
        preview = upload(client, make_workbook(acme_rows)).json()['data']
        preview['contacts'][1]['name'] = 'Robert'

        response = client.post(f'{BASE}/download-preview', json=preview, headers=USER_HEADERS)

        assert response.status_code == 200
        sheet = openpyxl.load_workbook(BytesIO(response.content)).active
        assert [row[8] for row in sheet.iter_rows(min_row=2, values_only=True)] == ['Jane', 'Robert']


class TestConfirmEndpoint:

    def test_confirm(self, client, make_workbook, acme_rows):
        preview = upload(client, make_workbook(acme_rows)).json()['data']

        response = client.post(f'{BASE}/confirm', params={'filename': 'clients.xlsx'},
                               json=preview, headers=USER_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body['success'] is True
        assert body['data']['clients_created'] == 1
        assert body['data']['contacts_created'] == 2

        results = openpyxl.load_workbook(BytesIO(base64.b64decode(body['results_file'])))
        assert results.sheetnames[0] == 'Summary'

        run = client.get(f'{BASE}/runs/{body["run_id"]}').json()
        assert run['status'] == 'success'
        assert run['source_filename'] == 'clients.xlsx'
        assert run['created_by'] == 1
        assert run['result']['clients_created'] == 1

    def test_refuses_preview_with_errors(self, client, make_workbook, acme_rows):
        jane, bob = acme_rows
        bob = bob[:5] + ('AC2',) + bob[6:]
        preview = upload(client, make_workbook([jane, bob])).json()['data']

        response = client.post(f'{BASE}/confirm', json=preview, headers=USER_HEADERS)

        assert response.status_code == 400
        assert 'preview has 1 validation errors' in response.json()['detail']

    def test_unexpected_failure_recorded(self, client, session, monkeypatch, make_workbook, acme_rows):
        preview = upload(client, make_workbook(acme_rows)).json()['data']

        def explode(self, preview, acting_user_id, valid_reference_ids=None):
            raise RuntimeError('database went away')

        monkeypatch.setattr(Committer, 'commit', explode)

        response = client.post(f'{BASE}/confirm', json=preview, headers=USER_HEADERS)

        assert response.status_code == 500
        assert 'database went away' in response.json()['detail']
        run = session.scalars(select(UploadRun)).one()
        assert run.status == UploadStatus.FAILED
        assert run.result is None
        assert run.error['type'] == 'RuntimeError'

    def test_unknown_run(self, client):
        response = client.get(f'{BASE}/runs/999')

        assert response.status_code == 404


class TestHealthEndpoints:

    def test_ping(self, client):
        assert client.get('/api/ping').json() == {'ping': 'pong'}
