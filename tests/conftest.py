"""
Pytest configuration and fixtures for bulk upload tests.
"""

import os
from io import BytesIO

import openpyxl
import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from backend.models import Base, Client, ClientGroup, Contact, User
from services.committer import Committer
from services.preview_builder import PreviewBuilder
from services.report_service import TEMPLATE_HEADERS
from services.repository import BulkUploadRepository
from services.row_parser import RowParser

# Load environment
load_dotenv()

# Test database URL (in-memory SQLite unless a separate test database is configured)
TEST_DATABASE_URL = os.getenv('TEST_DATABASE_URL', 'sqlite://')

ACTING_USER_ID = 1
PARTNER_IDS = (18, 20)


def _enable_sqlite_savepoints(eng):
    """Let pysqlite run real BEGIN/SAVEPOINT so nested transactions behave."""

    @event.listens_for(eng, 'connect')
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()

    @event.listens_for(eng, 'begin')
    def do_begin(conn):
        conn.exec_driver_sql('BEGIN')


@pytest.fixture(scope='session')
def engine():
    """Create test database engine."""
    if TEST_DATABASE_URL.startswith('sqlite'):
        eng = create_engine(
            TEST_DATABASE_URL,
            connect_args={'check_same_thread': False},
            poolclass=StaticPool
        )
        _enable_sqlite_savepoints(eng)
    else:
        eng = create_engine(TEST_DATABASE_URL)
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture(scope='function')
def session(engine):
    """
    Create a new database session for a test.

    Everything the test commits is released into a savepoint of an outer
    transaction that is rolled back afterwards.
    """
    connection = engine.connect()
    transaction = connection.begin()
    sess = Session(bind=connection, join_transaction_mode='create_savepoint')

    yield sess

    sess.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def users(session):
    """Acting user plus two referral partners (ids 18 and 20)."""
    seeded = [User(user_id=ACTING_USER_ID, name='Uploader', email='uploader@firm.test')]
    for user_id in PARTNER_IDS:
        seeded.append(User(user_id=user_id, name=f'Partner {user_id}', email=f'partner{user_id}@firm.test'))
    session.add_all(seeded)
    session.flush()
    return {u.user_id: u for u in seeded}


@pytest.fixture
def repository(session):
    return BulkUploadRepository(session)


def build_workbook(rows, headers=None) -> bytes:
    """Serialize a header row plus data rows into .xlsx bytes."""
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.append(list(headers or TEMPLATE_HEADERS))
    for row in rows:
        sheet.append(list(row))
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def make_workbook():
    return build_workbook


@pytest.fixture
def grid():
    """Prefix data rows with the template header row (columns beyond a row's length stay blank)."""
    def _grid(*rows, headers=None):
        return [list(headers or TEMPLATE_HEADERS)] + [list(r) for r in rows]
    return _grid


@pytest.fixture
def pipeline(session, users):
    """Run parse -> preview -> commit over an in-memory grid."""
    def _run(grid_rows, batch_size=50, batch_timeout_seconds=30, commit=True):
        rows = RowParser().parse_grid(grid_rows)
        repository = BulkUploadRepository(session)
        preview = PreviewBuilder(repository).build(rows, ACTING_USER_ID)
        if not commit:
            return preview, None
        committer = Committer(repository, batch_size=batch_size,
                              batch_timeout_seconds=batch_timeout_seconds)
        return preview, committer.commit(preview, ACTING_USER_ID)
    return _run


@pytest.fixture
def acme_rows():
    """The two Acme Corp rows: Jane (declared primary) and Bob, first 14 template columns."""
    jane = ("Acme", "Acme Corp", "Tech", "", "", "AC1", "", "18",
           "Jane", "jane@acme.com", "555-1111", "CEO", "Y", "")
    bob = ("Acme", "Acme Corp", "Tech", "", "", "AC1", "", "18",
          "Bob", "bob@acme.com", "555-2222", "CFO", "N", "")
    return jane, bob


@pytest.fixture
def existing_acme(session, users):
    """Stored group Acme with client Acme Corp (code AC1) and one primary contact."""
    group = ClientGroup(name='Acme', active_status=True, created_by=ACTING_USER_ID)
    session.add(group)
    session.flush()
    client = Client(user_id=ACTING_USER_ID, client_name='Acme Corp', group_id=group.group_id,
                    client_code='AC1', active_status=True)
    session.add(client)
    session.flush()
    contact = Contact(client_id=client.client_id, name='Old Primary',
                      email='old@acme.com', is_primary=True)
    session.add(contact)
    session.flush()
    return group, client, contact
