"""
Typed records flowing through the bulk upload pipeline.

Parser -> ParsedRow, Preview builder -> PreviewData, Committer -> UploadResult.
PreviewData is also the payload an operator reviews (and may edit) before
confirming, so every record here serializes cleanly to JSON.
"""

from typing import List, Optional, Set, Tuple

from pydantic import BaseModel, Field

# Error scopes: what a validation error prevents from being committed
SCOPE_ROW = 'row'
SCOPE_CLIENT = 'client'
SCOPE_CONTACT = 'contact'

ClientKey = Tuple[str, str]


def group_key(group_name: Optional[str]) -> str:
    """Case-insensitive identity of a group."""
    return (group_name or '').strip().lower()


def client_key(group_name: Optional[str], client_name: Optional[str]) -> ClientKey:
    """Case-insensitive identity of a client within its group."""
    return group_key(group_name), (client_name or '').strip().lower()


class ParsedRow(BaseModel):
    """One spreadsheet line (or one contact of a multi-value line) as typed fields."""

    row_number: int = Field(..., description="Spreadsheet line number (header is line 1)")
    group_name: str = ''
    client_name: str = ''
    client_industry: Optional[str] = None
    client_website: Optional[str] = None
    client_address: Optional[str] = None
    client_code: Optional[str] = None
    client_notes: Optional[str] = None
    reference_token: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_designation: Optional[str] = None
    is_primary: bool = False
    contact_notes: Optional[str] = None
    linkedin_url: Optional[str] = None
    twitter_handle: Optional[str] = None

    def has_contact_data(self) -> bool:
        return bool(
            self.contact_name or self.contact_email
            or self.contact_phone or self.contact_designation
        )


class CandidateGroup(BaseModel):
    name: str
    description: Optional[str] = None
    exists: bool = False
    existing_id: Optional[int] = None


class ReferenceUser(BaseModel):
    """A user named by a client's reference token."""

    id: int
    name: str
    email: str


class CandidateClient(BaseModel):
    name: str
    group_name: str
    industry: Optional[str] = None
    website: Optional[str] = None
    address: Optional[str] = None
    code: Optional[str] = None
    notes: Optional[str] = None
    reference_token: Optional[str] = None
    reference_users: List[ReferenceUser] = Field(default_factory=list)
    exists: bool = False
    existing_id: Optional[int] = None
    source_row_number: int = 0

    def key(self) -> ClientKey:
        return client_key(self.group_name, self.name)


class CandidateContact(BaseModel):
    name: str = ''
    email: Optional[str] = None
    phone: Optional[str] = None
    designation: Optional[str] = None
    is_primary: bool = False
    notes: Optional[str] = None
    linkedin_url: Optional[str] = None
    twitter_handle: Optional[str] = None
    client_name: str
    group_name: str
    source_row_number: int = 0

    def client_key(self) -> ClientKey:
        return client_key(self.group_name, self.client_name)


class ValidationError(BaseModel):
    """
    A data problem that blocks commit of one fact.

    ``scope`` says which fact: ``client`` blocks the whole candidate client
    (and therefore its contacts), ``contact`` blocks the contacts taken from
    that spreadsheet row, ``row`` means the row produced nothing committable.
    """

    row: int
    field: str
    message: str
    scope: str = SCOPE_ROW
    group_name: Optional[str] = None
    client_name: Optional[str] = None


class UploadWarning(BaseModel):
    """Informational note; the commit proceeds with an automatic resolution."""

    row: int
    message: str


class PreviewData(BaseModel):
    groups: List[CandidateGroup] = Field(default_factory=list)
    clients: List[CandidateClient] = Field(default_factory=list)
    contacts: List[CandidateContact] = Field(default_factory=list)
    errors: List[ValidationError] = Field(default_factory=list)
    warnings: List[UploadWarning] = Field(default_factory=list)

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def reference_user_ids(self) -> Set[int]:
        """User ids the preview already resolved for reference tokens."""
        return {u.id for c in self.clients for u in c.reference_users}

    def blocked_client_keys(self) -> Set[ClientKey]:
        return {
            client_key(e.group_name, e.client_name)
            for e in self.errors
            if e.scope == SCOPE_CLIENT and e.client_name
        }

    def blocked_contact_rows(self) -> Set[Tuple[ClientKey, int]]:
        return {
            (client_key(e.group_name, e.client_name), e.row)
            for e in self.errors
            if e.scope == SCOPE_CONTACT and e.client_name
        }


class CreatedGroup(BaseModel):
    id: int
    name: str


class CreatedClient(BaseModel):
    id: int
    name: str
    group_name: str


class CreatedContact(BaseModel):
    id: int
    name: str
    email: Optional[str] = None
    client_name: str


class ResultMessage(BaseModel):
    """Row-scoped commit message; row 0 means batch- or upload-scoped."""

    row: int
    message: str


class UploadResult(BaseModel):
    groups_created: int = 0
    groups_existing: int = 0
    clients_created: int = 0
    clients_existing: int = 0
    contacts_created: int = 0
    contacts_skipped: int = 0
    created_groups: List[CreatedGroup] = Field(default_factory=list)
    created_clients: List[CreatedClient] = Field(default_factory=list)
    created_contacts: List[CreatedContact] = Field(default_factory=list)
    errors: List[ResultMessage] = Field(default_factory=list)
    warnings: List[UploadWarning] = Field(default_factory=list)

    def add_error(self, row: int, message: str):
        self.errors.append(ResultMessage(row=row, message=message))

    def add_warning(self, row: int, message: str):
        self.warnings.append(UploadWarning(row=row, message=message))
