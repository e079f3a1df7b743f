"""
Committer - Persist an approved PreviewData in bounded batches.

Three phases run strictly in order (groups, clients, contacts). Each phase
is cut into batches of ``batch_size`` and every batch runs in its own
time-bounded transaction. Inside a batch each record gets a savepoint, so
one bad record costs only itself; a failing batch costs only that batch.
Nothing a batch produced is reported until its transaction has committed.
"""

import logging
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Set, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from backend.models.upload_run import UploadStatus
from services.bulk_upload_models import (
    CandidateClient, CandidateContact, CandidateGroup, ClientKey,
    CreatedClient, CreatedContact, CreatedGroup, PreviewData, UploadResult,
    client_key, group_key,
)
from services.preview_builder import merge_notes, parse_reference_token
from services.repository import DEFAULT_BATCH_TIMEOUT_SECONDS, BulkUploadRepository

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50

T = TypeVar('T')


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def reference_note(user_ids: Sequence[int]) -> Optional[str]:
    """Audit note kept when a client is referred by more than one user."""
    if len(user_ids) < 2:
        return None
    return f"Reference users: {', '.join(str(i) for i in user_ids)}"


def outcome_status(result: UploadResult) -> UploadStatus:
    """Classify a finished commit for the audit trail."""
    if not result.errors:
        return UploadStatus.SUCCESS
    created = result.groups_created + result.clients_created + result.contacts_created
    return UploadStatus.PARTIAL if created else UploadStatus.FAILED


def absorb(result: UploadResult, staged: UploadResult):
    """Merge a committed batch's staged outcome into the running result."""
    result.groups_created += staged.groups_created
    result.clients_created += staged.clients_created
    result.contacts_created += staged.contacts_created
    result.contacts_skipped += staged.contacts_skipped
    result.created_groups.extend(staged.created_groups)
    result.created_clients.extend(staged.created_clients)
    result.created_contacts.extend(staged.created_contacts)
    result.errors.extend(staged.errors)
    result.warnings.extend(staged.warnings)


class Committer:
    """
    Writes groups, clients and contacts from a PreviewData.

    Args:
        repository: Data access for writes and commit-time checks
        batch_size: Records (phases 1-2) or clients (phase 3) per transaction
        batch_timeout_seconds: Time budget per batch transaction
    """

    def __init__(self, repository: BulkUploadRepository,
                 batch_size: int = DEFAULT_BATCH_SIZE,
                 batch_timeout_seconds: float = DEFAULT_BATCH_TIMEOUT_SECONDS):
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.repository = repository
        self.batch_size = batch_size
        self.batch_timeout_seconds = batch_timeout_seconds

    def commit(self, preview: PreviewData, acting_user_id: int,
               valid_reference_ids: Optional[Set[int]] = None) -> UploadResult:
        """
        Persist ``preview`` and report exactly what happened.

        Records blocked by the preview's errors are skipped (and reported);
        everything else is attempted. Data problems never raise.

        Args:
            preview: Operator-approved preview, possibly hand-edited
            acting_user_id: User recorded as creator
            valid_reference_ids: Referenced user ids known to exist; looked up
                once, before any batch, when not supplied
        """
        logger.info(
            f"Committing upload for user {acting_user_id}: {len(preview.groups)} groups, "
            f"{len(preview.clients)} clients, {len(preview.contacts)} contacts "
            f"(batch size {self.batch_size}, timeout {self.batch_timeout_seconds}s)"
        )
        result = UploadResult(warnings=list(preview.warnings))

        if valid_reference_ids is None:
            valid_reference_ids = self._lookup_reference_ids(preview.clients)

        blocked = preview.blocked_client_keys()
        group_ids = self._commit_groups(preview, blocked, acting_user_id, result)
        client_ids = self._commit_clients(preview, blocked, group_ids, valid_reference_ids,
                                          acting_user_id, result)
        self._commit_contacts(preview, blocked, client_ids, acting_user_id, result)

        logger.info(
            f"Commit finished: groups {result.groups_created} created/{result.groups_existing} existing, "
            f"clients {result.clients_created} created/{result.clients_existing} existing, "
            f"contacts {result.contacts_created} created/{result.contacts_skipped} skipped, "
            f"{len(result.errors)} errors"
        )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lookup_reference_ids(self, clients: Sequence[CandidateClient]) -> Set[int]:
        wanted = set()
        for client in clients:
            wanted.update(parse_reference_token(client.reference_token) or [])
        return set(self.repository.find_users_by_ids(wanted)) if wanted else set()

    def _run_batch(self, phase: str, number: int, total: int, result: UploadResult,
                   work: Callable[[UploadResult], None]):
        """Run ``work`` in one bounded transaction; absorb its outcome only on commit."""
        staged = UploadResult()
        try:
            with self.repository.batch_transaction(self.batch_timeout_seconds):
                work(staged)
        except Exception as e:
            logger.error(f"{phase} batch {number}/{total} failed and was rolled back: {e}", exc_info=True)
            result.add_error(0, f"Failed to create {phase} (batch {number} of {total}): {e}")
            return
        logger.debug(f"{phase} batch {number}/{total} committed")
        absorb(result, staged)

    def _isolated(self, staged: UploadResult, row: int, failure: str, write: Callable[[], T]) -> Optional[T]:
        """Run one record's writes under a savepoint; a database error skips only that record."""
        try:
            with self.repository.savepoint():
                return write()
        except SQLAlchemyError as e:
            logger.error(f"{failure}: {e}", exc_info=True)
            staged.add_error(row, f"{failure}: {e.__class__.__name__}")
            return None

    # ------------------------------------------------------------------
    # Phase 1: groups
    # ------------------------------------------------------------------

    def _commit_groups(self, preview: PreviewData, blocked: Set[ClientKey],
                       acting_user_id: int, result: UploadResult) -> Dict[str, int]:
        # A group whose every client is blocked would be created empty
        wanted = {group_key(c.group_name) for c in preview.clients if c.key() not in blocked}
        listed = {group_key(c.group_name) for c in preview.clients}

        group_ids: Dict[str, int] = {}
        to_create: List[CandidateGroup] = []
        seen: Set[str] = set()
        for group in preview.groups:
            key = group_key(group.name)
            if key in seen or (key in listed and key not in wanted):
                continue
            seen.add(key)
            if group.exists and group.existing_id:
                group_ids[key] = group.existing_id
                result.groups_existing += 1
            else:
                to_create.append(group)

        batches = list(chunked(to_create, self.batch_size))
        for number, batch in enumerate(batches, start=1):
            def work(staged: UploadResult, batch=batch):
                for group in batch:
                    record = self._isolated(
                        staged, 0, f'Failed to create group "{group.name}"',
                        lambda: self.repository.create_group(group.name, group.description, acting_user_id)
                    )
                    if record is None:
                        continue
                    staged.groups_created += 1
                    staged.created_groups.append(CreatedGroup(id=record.group_id, name=record.name))

            self._run_batch('groups', number, len(batches), result, work)

        for created in result.created_groups:
            group_ids.setdefault(group_key(created.name), created.id)
        return group_ids

    # ------------------------------------------------------------------
    # Phase 2: clients
    # ------------------------------------------------------------------

    def _commit_clients(self, preview: PreviewData, blocked: Set[ClientKey],
                        group_ids: Dict[str, int], valid_reference_ids: Set[int],
                        acting_user_id: int, result: UploadResult) -> Dict[ClientKey, int]:
        client_ids: Dict[ClientKey, int] = {}
        to_create: List[CandidateClient] = []
        seen: Set[ClientKey] = set()

        for client in preview.clients:
            key = client.key()
            if key in blocked:
                logger.warning(f'Client "{client.name}" skipped: blocked by validation errors')
                result.add_error(client.source_row_number,
                                 f'Client "{client.name}" skipped due to validation errors')
                continue
            if key in seen:
                continue
            seen.add(key)
            if client.exists and client.existing_id:
                client_ids[key] = client.existing_id
                result.clients_existing += 1
            else:
                to_create.append(client)

        batches = list(chunked(to_create, self.batch_size))
        for number, batch in enumerate(batches, start=1):
            def work(staged: UploadResult, batch=batch):
                taken = set(self.repository.find_clients_by_codes(c.code for c in batch if c.code))
                for client in batch:
                    self._create_client(client, group_ids, valid_reference_ids, taken,
                                        acting_user_id, staged)

            self._run_batch('clients', number, len(batches), result, work)

        for created in result.created_clients:
            client_ids.setdefault(client_key(created.group_name, created.name), created.id)
        return client_ids

    def _create_client(self, client: CandidateClient, group_ids: Dict[str, int],
                       valid_reference_ids: Set[int], taken_codes: Set[str],
                       acting_user_id: int, staged: UploadResult):
        row = client.source_row_number
        group_id = group_ids.get(group_key(client.group_name))
        if group_id is None:
            staged.add_error(row, f'Group "{client.group_name}" not found for client "{client.name}"')
            return

        if client.code and client.code in taken_codes:
            staged.add_error(row, f'Client code "{client.code}" already exists - client "{client.name}" skipped')
            return

        reference_ids = parse_reference_token(client.reference_token)
        if reference_ids is None:
            staged.add_error(row, f'Invalid TSP Contact "{client.reference_token}" for client "{client.name}"')
            return
        invalid = [i for i in reference_ids if i not in valid_reference_ids]
        if invalid:
            staged.add_error(
                row, f'Invalid user ID(s) for client "{client.name}": {", ".join(str(i) for i in invalid)}'
            )
            return

        notes = merge_notes(client.notes, reference_note(reference_ids))
        record = self._isolated(
            staged, row, f'Failed to create client "{client.name}"',
            lambda: self.repository.create_client(
                user_id=acting_user_id,
                client_name=client.name,
                group_id=group_id,
                industry=client.industry,
                website_url=client.website,
                address=client.address,
                client_code=client.code,
                notes=notes,
                internal_reference_id=reference_ids[0] if reference_ids else None,
            )
        )
        if record is None:
            return
        if client.code:
            taken_codes.add(client.code)
        staged.clients_created += 1
        staged.created_clients.append(CreatedClient(
            id=record.client_id, name=record.client_name, group_name=client.group_name
        ))

    # ------------------------------------------------------------------
    # Phase 3: contacts
    # ------------------------------------------------------------------

    def _commit_contacts(self, preview: PreviewData, blocked: Set[ClientKey],
                         client_ids: Dict[ClientKey, int], acting_user_id: int,
                         result: UploadResult):
        blocked_rows = preview.blocked_contact_rows()
        by_client: Dict[ClientKey, List[CandidateContact]] = {}

        for contact in preview.contacts:
            key = contact.client_key()
            if key in blocked:
                continue
            if (key, contact.source_row_number) in blocked_rows:
                result.add_error(contact.source_row_number,
                                 f'Contact "{contact.name}" skipped due to validation errors')
                continue
            by_client.setdefault(key, []).append(contact)

        batches = list(chunked(list(by_client), self.batch_size))
        for number, batch_keys in enumerate(batches, start=1):
            def work(staged: UploadResult, batch_keys=batch_keys):
                ids = [client_ids[k] for k in batch_keys if k in client_ids]
                emails = self.repository.find_contact_emails(ids)
                primaries = self.repository.find_primary_contacts(ids)
                for key in batch_keys:
                    client_id = client_ids.get(key)
                    self._create_client_contacts(
                        by_client[key], client_id,
                        emails.get(client_id, set()), primaries.get(client_id),
                        acting_user_id, staged
                    )

            self._run_batch('contacts', number, len(batches), result, work)

    def _create_client_contacts(self, contacts: List[CandidateContact], client_id: Optional[int],
                                emails: Set[str], existing_primary, acting_user_id: int,
                                staged: UploadResult):
        """
        Create one client's contacts and settle its single primary contact.

        Precedence: the first contact declaring itself primary wins (later
        declarations are demoted with a warning); with no declaration the
        first contact actually created becomes primary, unless the client
        already has a stored primary, which is then kept.
        """
        first = contacts[0]
        if client_id is None:
            staged.add_error(first.source_row_number, f'Client not found for contact "{first.name}"')
            return

        declared = [c for c in contacts if c.is_primary]
        winner = declared[0] if declared else None
        for extra in declared[1:]:
            logger.warning(f'Demoting extra primary "{extra.name}" for client "{extra.client_name}"')
            staged.add_warning(
                extra.source_row_number,
                f'Multiple contacts marked as primary for client "{extra.client_name}". '
                f'Only the first one will be set as primary.'
            )

        primary_record = None
        first_created = None

        for contact in contacts:
            row = contact.source_row_number
            email = contact.email.strip().lower() if contact.email else None
            if email and email in emails:
                logger.warning(f'Skipping duplicate contact {email} for client "{contact.client_name}"')
                staged.add_warning(row, f'Contact with email "{email}" already exists - skipped')
                staged.contacts_skipped += 1
                continue

            make_primary = contact is winner or (
                winner is None and existing_primary is None and primary_record is None
            )

            def write(contact=contact, email=email, make_primary=make_primary):
                if make_primary and existing_primary is not None:
                    self.repository.set_contact_primary(existing_primary, False)
                return self.repository.create_contact(
                    client_id=client_id,
                    name=contact.name,
                    email=email,
                    number=contact.phone,
                    designation=contact.designation,
                    is_primary=make_primary,
                    notes=contact.notes,
                    linkedin_url=contact.linkedin_url,
                    twitter_handle=contact.twitter_handle,
                    created_by=acting_user_id,
                )

            previous_name = existing_primary.name if make_primary and existing_primary is not None else None
            record = self._isolated(staged, row, f'Failed to create contact "{contact.name}"', write)
            if record is None:
                continue

            if email:
                emails.add(email)
            if first_created is None:
                first_created = record
            if make_primary:
                primary_record = record
                if previous_name is not None:
                    staged.add_warning(
                        row,
                        f'Contact "{record.name}" replaces "{previous_name}" as primary contact '
                        f'for client "{contact.client_name}"'
                    )
                    existing_primary = None
            staged.contacts_created += 1
            staged.created_contacts.append(CreatedContact(
                id=record.contact_id, name=record.name, email=record.email,
                client_name=contact.client_name
            ))

        # Declared winner was skipped or failed and nobody else holds the flag
        if primary_record is None and existing_primary is None and first_created is not None:
            promoted = self._isolated(
                staged, first.source_row_number,
                f'Failed to set primary contact for client "{first.client_name}"',
                lambda: self.repository.set_contact_primary(first_created, True)
            )
            if promoted is not None:
                staged.add_warning(
                    first.source_row_number,
                    f'Contact "{first_created.name}" set as primary for client "{first.client_name}"'
                )
