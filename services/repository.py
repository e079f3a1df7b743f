"""
Repository - The only code in the bulk upload pipeline that issues queries.

Reads are batched (one round trip per lookup kind, never one per row) and
case-insensitive where identity is case-insensitive. Writes flush so that
generated ids are available immediately inside the enclosing transaction.
"""

import logging
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional, Set

from sqlalchemy import func, select, text
from sqlalchemy.orm import Session

from backend.models.schema import Client, ClientGroup, Contact, User
from backend.models.upload_run import UploadRun, UploadStatus

logger = logging.getLogger(__name__)

DEFAULT_BATCH_TIMEOUT_SECONDS = 30


class BatchTimeoutError(RuntimeError):
    """A batch transaction ran past its time budget and was rolled back."""


def _lowered(values: Iterable[Optional[str]]) -> List[str]:
    return sorted({v.strip().lower() for v in values if v and v.strip()})


class BulkUploadRepository:
    """
    Session-backed data access for groups, clients, contacts and users.

    Args:
        session: SQLAlchemy session; the repository never closes it
    """

    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # Batched reads
    # ------------------------------------------------------------------

    def find_groups_by_names(self, names: Iterable[str]) -> Dict[str, ClientGroup]:
        """Return existing groups keyed by lower-cased name."""
        lowered = _lowered(names)
        if not lowered:
            return {}
        groups = self.session.scalars(
            select(ClientGroup).where(func.lower(ClientGroup.name).in_(lowered))
        ).all()
        return {g.name.lower(): g for g in groups}

    def find_clients_by_names(self, names: Iterable[str]) -> List[Client]:
        """Return every client whose name matches one of ``names`` case-insensitively."""
        lowered = _lowered(names)
        if not lowered:
            return []
        return list(self.session.scalars(
            select(Client)
            .where(func.lower(Client.client_name).in_(lowered))
            .order_by(Client.client_id)
        ).all())

    def find_clients_by_codes(self, codes: Iterable[str]) -> Dict[str, Client]:
        """Return clients keyed by their (exact) client code."""
        wanted = sorted({c for c in codes if c})
        if not wanted:
            return {}
        clients = self.session.scalars(
            select(Client).where(Client.client_code.in_(wanted))
        ).all()
        return {c.client_code: c for c in clients}

    def find_users_by_ids(self, user_ids: Iterable[int]) -> Dict[int, User]:
        wanted = sorted(set(user_ids))
        if not wanted:
            return {}
        users = self.session.scalars(
            select(User).where(User.user_id.in_(wanted))
        ).all()
        return {u.user_id: u for u in users}

    def find_contact_emails(self, client_ids: Iterable[int]) -> Dict[int, Set[str]]:
        """Return lower-cased contact emails already stored per client."""
        wanted = sorted(set(client_ids))
        emails: Dict[int, Set[str]] = {cid: set() for cid in wanted}
        if not wanted:
            return emails
        rows = self.session.execute(
            select(Contact.client_id, Contact.email)
            .where(Contact.client_id.in_(wanted), Contact.email.isnot(None))
        ).all()
        for client_id, email in rows:
            emails[client_id].add(email.strip().lower())
        return emails

    def find_primary_contacts(self, client_ids: Iterable[int]) -> Dict[int, Contact]:
        """Return the current primary contact per client (lowest id if several)."""
        wanted = sorted(set(client_ids))
        if not wanted:
            return {}
        contacts = self.session.scalars(
            select(Contact)
            .where(Contact.client_id.in_(wanted), Contact.is_primary.is_(True))
            .order_by(Contact.contact_id)
        ).all()
        primaries: Dict[int, Contact] = {}
        for contact in contacts:
            primaries.setdefault(contact.client_id, contact)
        return primaries

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_group(self, name: str, description: Optional[str] = None,
                     created_by: Optional[int] = None) -> ClientGroup:
        group = ClientGroup(
            name=name,
            description=description,
            active_status=True,
            created_by=created_by
        )
        self.session.add(group)
        self.session.flush()
        return group

    def create_client(self, *, user_id: int, client_name: str, group_id: int,
                      industry: Optional[str] = None, website_url: Optional[str] = None,
                      address: Optional[str] = None, client_code: Optional[str] = None,
                      notes: Optional[str] = None,
                      internal_reference_id: Optional[int] = None) -> Client:
        client = Client(
            user_id=user_id,
            client_name=client_name,
            group_id=group_id,
            industry=industry,
            website_url=website_url,
            address=address,
            client_code=client_code,
            notes=notes,
            internal_reference_id=internal_reference_id,
            active_status=True
        )
        self.session.add(client)
        self.session.flush()
        return client

    def create_contact(self, *, client_id: int, name: str, email: Optional[str] = None,
                       number: Optional[str] = None, designation: Optional[str] = None,
                       is_primary: bool = False, notes: Optional[str] = None,
                       linkedin_url: Optional[str] = None, twitter_handle: Optional[str] = None,
                       created_by: Optional[int] = None) -> Contact:
        contact = Contact(
            client_id=client_id,
            name=name,
            email=email,
            number=number,
            designation=designation,
            is_primary=is_primary,
            notes=notes,
            linkedin_url=linkedin_url,
            twitter_handle=twitter_handle,
            created_by=created_by
        )
        self.session.add(contact)
        self.session.flush()
        return contact

    def set_contact_primary(self, contact: Contact, is_primary: bool) -> Contact:
        contact.is_primary = is_primary
        self.session.flush()
        return contact

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------

    def record_upload_run(self, status: UploadStatus, result: Optional[dict],
                          created_by: Optional[int] = None,
                          source_filename: Optional[str] = None,
                          error: Optional[dict] = None) -> UploadRun:
        """Store one finished commit and return it (committed)."""
        run = UploadRun(
            status=status.value,
            source_filename=source_filename,
            created_by=created_by,
            completed_at=datetime.utcnow(),
            result=result,
            error=error
        )
        self.session.add(run)
        self.session.commit()
        logger.info(f"Recorded upload run {run.run_id} ({status.value})")
        return run

    def get_upload_run(self, run_id: int) -> Optional[UploadRun]:
        return self.session.get(UploadRun, run_id)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def batch_transaction(self, timeout_seconds: float = DEFAULT_BATCH_TIMEOUT_SECONDS) -> Iterator[None]:
        """
        Run one batch inside its own bounded transaction.

        On PostgreSQL the server enforces the budget per statement via
        ``SET LOCAL statement_timeout``; on every backend the elapsed wall
        clock is checked before commit. Any exception (including
        BatchTimeoutError) rolls the whole batch back and propagates.
        """
        if self.session.in_transaction():
            # Close the implicit transaction left open by earlier reads
            self.session.commit()

        started = time.monotonic()
        with self.session.begin():
            self._apply_statement_timeout(timeout_seconds)
            yield
            elapsed = time.monotonic() - started
            if elapsed > timeout_seconds:
                logger.error(f"Batch exceeded {timeout_seconds}s budget ({elapsed:.1f}s); rolling back")
                raise BatchTimeoutError(
                    f"Batch transaction exceeded timeout of {timeout_seconds} seconds"
                )
        logger.debug(f"Batch committed in {time.monotonic() - started:.2f}s")

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """Isolate one record inside a batch; a failure rolls back only that record."""
        with self.session.begin_nested():
            yield

    def _apply_statement_timeout(self, timeout_seconds: float):
        if self.session.get_bind().dialect.name != 'postgresql':
            return
        # 0 disables the server-side limit; the wall-clock check still applies
        milliseconds = max(int(timeout_seconds * 1000), 0)
        self.session.execute(text(f"SET LOCAL statement_timeout = {milliseconds}"))
