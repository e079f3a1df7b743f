"""
Preview Builder - Validate and merge parsed rows into a reviewable PreviewData.

Nothing here writes to the database. Existence checks (groups, clients,
client codes, reference users, contact emails) are each a single batched
read through BulkUploadRepository. Every row is checked; problems are
collected as ValidationError / UploadWarning records and never raised.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Set, Tuple

from pydantic import HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from services.bulk_upload_models import (
    SCOPE_CLIENT, SCOPE_CONTACT, SCOPE_ROW,
    CandidateClient, CandidateContact, CandidateGroup, ClientKey,
    ParsedRow, PreviewData, ReferenceUser, UploadWarning, ValidationError,
    client_key, group_key,
)
from services.repository import BulkUploadRepository
from services.row_parser import FIELD_MAX_LENGTHS

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
PHONE_PATTERN = re.compile(r'^[\d\s+\-().]+$')
PHONE_MIN_DIGITS = 7
PHONE_MAX_DIGITS = 20
MAX_URL_LENGTH = 500

NOTES_SEPARATOR = ' | '
REFERENCE_SEPARATOR = '/'

_http_url = TypeAdapter(HttpUrl)

# Spreadsheet column labels used in error messages
FIELD_LABELS = {
    'group_name': 'Group Name',
    'client_name': 'Client Name',
    'client_industry': 'Client Industry',
    'client_website': 'Client Website',
    'client_address': 'Client Address',
    'client_code': 'Client Code',
    'client_notes': 'Client Notes',
    'reference_token': 'TSP Contact',
    'contact_name': 'Contact Name',
    'contact_email': 'Contact Email',
    'contact_phone': 'Contact Phone',
    'contact_designation': 'Contact Designation',
    'linkedin_url': 'LinkedIn URL',
}

# (field, scope) checked against FIELD_MAX_LENGTHS
LENGTH_CHECKED_FIELDS = (
    ('group_name', SCOPE_ROW),
    ('client_name', SCOPE_ROW),
    ('client_industry', SCOPE_CLIENT),
    ('client_address', SCOPE_CLIENT),
    ('client_code', SCOPE_CLIENT),
    ('contact_name', SCOPE_CONTACT),
    ('contact_email', SCOPE_CONTACT),
    ('contact_designation', SCOPE_CONTACT),
)


def is_valid_email(email: str) -> bool:
    return len(email) <= FIELD_MAX_LENGTHS['contact_email'] and bool(EMAIL_PATTERN.match(email))


def is_valid_phone(phone: str) -> bool:
    digits = re.sub(r'\s', '', phone)
    return bool(PHONE_PATTERN.match(phone)) and PHONE_MIN_DIGITS <= len(digits) <= PHONE_MAX_DIGITS


def is_valid_url(url: str) -> bool:
    """Accept http(s) URLs with a dotted host; the scheme may be omitted."""
    if not url or len(url) > MAX_URL_LENGTH:
        return False
    candidate = url if url.lower().startswith(('http://', 'https://')) else f'https://{url}'
    try:
        parsed = _http_url.validate_python(candidate)
    except PydanticValidationError:
        return False
    return bool(parsed.host) and '.' in parsed.host


def parse_reference_token(token: Optional[str]) -> Optional[List[int]]:
    """
    Parse "18" or "18/20" into user ids.

    Returns:
        List of ids (empty for a blank token), or None when any part is not
        a positive integer
    """
    if not token or not token.strip():
        return []
    ids = []
    for part in token.split(REFERENCE_SEPARATOR):
        part = part.strip()
        if not part.isdigit() or int(part) <= 0:
            return None
        ids.append(int(part))
    return ids


def merge_notes(existing: Optional[str], addition: Optional[str]) -> Optional[str]:
    """Append ``addition`` unless each of its segments is already present."""
    if not addition:
        return existing
    if not existing:
        return addition
    present = existing.split(NOTES_SEPARATOR)
    new_segments = [s for s in addition.split(NOTES_SEPARATOR) if s not in present]
    if not new_segments:
        return existing
    return NOTES_SEPARATOR.join(present + new_segments)


class PreviewBuilder:
    """
    Builds PreviewData from parsed rows.

    Args:
        repository: Read access for existence checks
    """

    def __init__(self, repository: BulkUploadRepository):
        self.repository = repository

    def build(self, rows: Iterable[ParsedRow], acting_user_id: Optional[int] = None) -> PreviewData:
        """Validate, merge and resolve ``rows`` into a PreviewData."""
        rows = list(rows)
        logger.info(f"Building preview from {len(rows)} parsed rows (user={acting_user_id})")

        preview = PreviewData()
        groups: Dict[str, CandidateGroup] = {}
        clients: Dict[ClientKey, CandidateClient] = {}
        validated_rows: Set[Tuple[int, ClientKey]] = set()

        for row in rows:
            if not row.group_name.strip():
                self._error(preview, row.row_number, 'group_name', 'Group name is required')
                continue
            if not row.client_name.strip():
                self._error(preview, row.row_number, 'client_name', 'Client name is required',
                            group_name=row.group_name)
                continue

            key = client_key(row.group_name, row.client_name)
            # Multi-contact rows share their client cells; check those once per line
            first_of_line = (row.row_number, key) not in validated_rows
            validated_rows.add((row.row_number, key))

            if first_of_line:
                self._validate_client_fields(preview, row)
            if row.has_contact_data():
                self._validate_contact_fields(preview, row)

            groups.setdefault(group_key(row.group_name), CandidateGroup(name=row.group_name))

            if key not in clients:
                clients[key] = self._new_client(row)
            elif first_of_line:
                self._merge_client(preview, clients[key], row)

            if row.has_contact_data():
                preview.contacts.append(CandidateContact(
                    name=row.contact_name or '',
                    email=row.contact_email,
                    phone=row.contact_phone,
                    designation=row.contact_designation,
                    is_primary=row.is_primary,
                    notes=row.contact_notes,
                    linkedin_url=row.linkedin_url,
                    twitter_handle=row.twitter_handle,
                    client_name=clients[key].name,
                    group_name=clients[key].group_name,
                    source_row_number=row.row_number,
                ))

        preview.groups = list(groups.values())
        preview.clients = list(clients.values())

        for client in preview.clients:
            if not client.industry:
                preview.warnings.append(UploadWarning(
                    row=client.source_row_number,
                    message=f'Client "{client.name}" has no industry (Client Industry is required)'
                ))

        self._resolve_groups(preview)
        self._resolve_clients(preview)
        self._resolve_references(preview)
        self._check_client_codes(preview)
        self._check_contact_duplicates(preview)
        self._predict_primaries(preview)

        logger.info(
            f"Preview built: {len(preview.groups)} groups, {len(preview.clients)} clients, "
            f"{len(preview.contacts)} contacts, {len(preview.errors)} errors, "
            f"{len(preview.warnings)} warnings"
        )
        return preview

    # ------------------------------------------------------------------
    # Per-row validation
    # ------------------------------------------------------------------

    @staticmethod
    def _error(preview: PreviewData, row: int, field: str, message: str,
               scope: str = SCOPE_ROW, group_name: Optional[str] = None,
               client_name: Optional[str] = None):
        preview.errors.append(ValidationError(
            row=row,
            field=FIELD_LABELS.get(field, field),
            message=message,
            scope=scope,
            group_name=group_name,
            client_name=client_name,
        ))

    def _row_error(self, preview: PreviewData, row: ParsedRow, field: str, message: str, scope: str):
        self._error(preview, row.row_number, field, message, scope,
                    group_name=row.group_name, client_name=row.client_name)

    def _validate_client_fields(self, preview: PreviewData, row: ParsedRow):
        if row.client_website and not is_valid_url(row.client_website):
            self._row_error(preview, row, 'client_website', 'Invalid website URL format', SCOPE_CLIENT)
        self._check_lengths(preview, row, contact=False)

    def _validate_contact_fields(self, preview: PreviewData, row: ParsedRow):
        if not row.contact_name:
            self._row_error(preview, row, 'contact_name',
                            'Contact name is required when contact data is present', SCOPE_CONTACT)
        if row.contact_email and not is_valid_email(row.contact_email):
            self._row_error(preview, row, 'contact_email',
                            f'Invalid email format: "{row.contact_email}"', SCOPE_CONTACT)
        if row.contact_phone and not is_valid_phone(row.contact_phone):
            self._row_error(preview, row, 'contact_phone',
                            f'Invalid phone number format: "{row.contact_phone}"', SCOPE_CONTACT)
        if row.linkedin_url and not is_valid_url(row.linkedin_url):
            self._row_error(preview, row, 'linkedin_url', 'Invalid LinkedIn URL format', SCOPE_CONTACT)
        self._check_lengths(preview, row, contact=True)

    def _check_lengths(self, preview: PreviewData, row: ParsedRow, contact: bool):
        for field, scope in LENGTH_CHECKED_FIELDS:
            if (scope == SCOPE_CONTACT) != contact:
                continue
            value = getattr(row, field)
            limit = FIELD_MAX_LENGTHS[field]
            if value and len(value) > limit:
                label = FIELD_LABELS[field]
                self._row_error(preview, row, field,
                                f'{label} exceeds maximum length of {limit} characters',
                                SCOPE_CLIENT if scope == SCOPE_ROW else scope)

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    @staticmethod
    def _new_client(row: ParsedRow) -> CandidateClient:
        return CandidateClient(
            name=row.client_name,
            group_name=row.group_name,
            industry=row.client_industry,
            website=row.client_website,
            address=row.client_address,
            code=row.client_code,
            notes=row.client_notes,
            reference_token=row.reference_token,
            source_row_number=row.row_number,
        )

    def _merge_client(self, preview: PreviewData, client: CandidateClient, row: ParsedRow):
        """Fold a repeated client row into the first one seen (first non-empty wins)."""
        for attr, source, label in (
            ('industry', 'client_industry', 'industry'),
            ('website', 'client_website', 'website'),
            ('address', 'client_address', 'address'),
            ('reference_token', 'reference_token', 'TSP Contact'),
        ):
            current = getattr(client, attr)
            incoming = getattr(row, source)
            if not incoming:
                continue
            if not current:
                setattr(client, attr, incoming)
            elif current != incoming:
                preview.warnings.append(UploadWarning(
                    row=row.row_number,
                    message=f'Client "{client.name}" has conflicting {label} values. '
                            f'Using first occurrence: "{current}"'
                ))

        client.notes = merge_notes(client.notes, row.client_notes)

        if row.client_code:
            if not client.code:
                client.code = row.client_code
            elif client.code != row.client_code:
                self._row_error(
                    preview, row, 'client_code',
                    f'Client "{client.name}" has conflicting client code values. '
                    f'Code "{client.code}" was used first, but "{row.client_code}" was found. '
                    f'Client code must be unique.',
                    SCOPE_CLIENT
                )

    # ------------------------------------------------------------------
    # Batched resolution against stored data
    # ------------------------------------------------------------------

    def _resolve_groups(self, preview: PreviewData):
        existing = self.repository.find_groups_by_names(g.name for g in preview.groups)
        for group in preview.groups:
            match = existing.get(group_key(group.name))
            if match is not None:
                group.exists = True
                group.existing_id = match.group_id
        logger.debug(f"{len(existing)} of {len(preview.groups)} groups already exist")

    def _resolve_clients(self, preview: PreviewData):
        group_ids = {group_key(g.name): g.existing_id for g in preview.groups if g.exists}
        stored = self.repository.find_clients_by_names(c.name for c in preview.clients)

        by_name: Dict[str, list] = {}
        for record in stored:
            by_name.setdefault(record.client_name.strip().lower(), []).append(record)

        for client in preview.clients:
            candidates = by_name.get(client.name.strip().lower(), [])
            group_id = group_ids.get(group_key(client.group_name))
            if group_id is not None:
                # Known group: only a client in that group is the same client
                candidates = [c for c in candidates if c.group_id == group_id]
            if candidates:
                client.exists = True
                client.existing_id = candidates[0].client_id

    def _resolve_references(self, preview: PreviewData):
        parsed: Dict[ClientKey, List[int]] = {}
        for client in preview.clients:
            ids = parse_reference_token(client.reference_token)
            if ids is None:
                self._client_error(
                    preview, client, 'reference_token',
                    'Invalid TSP Contact format. Expected user IDs separated by "/" '
                    '(e.g., "18" or "18/20")'
                )
            elif ids:
                parsed[client.key()] = ids

        all_ids = {i for ids in parsed.values() for i in ids}
        users = self.repository.find_users_by_ids(all_ids)
        logger.debug(f"Resolved {len(users)} of {len(all_ids)} referenced user ids")

        for client in preview.clients:
            ids = parsed.get(client.key())
            if not ids:
                continue
            invalid = [i for i in ids if i not in users]
            if invalid:
                self._client_error(
                    preview, client, 'reference_token',
                    f'Invalid user ID(s): {", ".join(str(i) for i in invalid)}. '
                    f'These user IDs do not exist.'
                )
                continue
            client.reference_users = [
                ReferenceUser(id=users[i].user_id, name=users[i].name, email=users[i].email)
                for i in ids
            ]

    def _check_client_codes(self, preview: PreviewData):
        stored = self.repository.find_clients_by_codes(c.code for c in preview.clients if c.code)
        claimed: Dict[str, CandidateClient] = {}

        for client in preview.clients:
            if not client.code:
                continue
            owner = stored.get(client.code)
            if owner is not None and owner.client_id != client.existing_id:
                self._client_error(preview, client, 'client_code',
                                   f'Client code "{client.code}" already exists for another client')
            elif client.code in claimed:
                first = claimed[client.code]
                self._client_error(
                    preview, client, 'client_code',
                    f'Client code "{client.code}" is also used by client "{first.name}" '
                    f'in group "{first.group_name}"'
                )
            else:
                claimed[client.code] = client

    def _check_contact_duplicates(self, preview: PreviewData):
        existing_ids = {c.key(): c.existing_id for c in preview.clients if c.exists}
        stored = self.repository.find_contact_emails(existing_ids.values())
        seen: Dict[ClientKey, Set[str]] = {}

        for contact in preview.contacts:
            if not contact.email:
                continue
            key = contact.client_key()
            email = contact.email.lower()
            client_seen = seen.setdefault(key, set())
            client_id = existing_ids.get(key)
            if client_id is not None and email in stored.get(client_id, set()):
                preview.warnings.append(UploadWarning(
                    row=contact.source_row_number,
                    message=f'Contact with email "{contact.email}" already exists for this client '
                            f'- will be skipped'
                ))
            elif email in client_seen:
                preview.warnings.append(UploadWarning(
                    row=contact.source_row_number,
                    message=f'Contact with email "{contact.email}" is listed more than once for '
                            f'client "{contact.client_name}" - will be skipped'
                ))
            client_seen.add(email)

    def _predict_primaries(self, preview: PreviewData):
        declared: Dict[ClientKey, bool] = {}
        for contact in preview.contacts:
            key = contact.client_key()
            declared[key] = declared.get(key, False) or contact.is_primary

        existing_ids = {c.key(): c.existing_id for c in preview.clients if c.exists}
        stored_primaries = self.repository.find_primary_contacts(
            existing_ids[k] for k in declared if k in existing_ids
        )

        for client in preview.clients:
            key = client.key()
            if key not in declared or declared[key]:
                continue
            primary = stored_primaries.get(existing_ids.get(key))
            if primary is not None:
                preview.warnings.append(UploadWarning(
                    row=0,
                    message=f'Client "{client.name}" in group "{client.group_name}" keeps its '
                            f'existing primary contact "{primary.name}"'
                ))
            else:
                preview.warnings.append(UploadWarning(
                    row=0,
                    message=f'Client "{client.name}" in group "{client.group_name}" has no primary '
                            f'contact - first contact will be set as primary'
                ))

    def _client_error(self, preview: PreviewData, client: CandidateClient, field: str, message: str):
        self._error(preview, client.source_row_number, field, message, SCOPE_CLIENT,
                    group_name=client.group_name, client_name=client.name)
