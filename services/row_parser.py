"""
Row Parser - Turn an uploaded client/contact spreadsheet into ParsedRow records.

Handles the human-authored parts of the format:
- synonymous header names, resolved once per upload into a column table
- merged cells, which arrive as blanks and inherit the value above
- multi-value contact cells ("Jane, Bob" / one per line / "a/b")
- over-long values, truncated rather than rejected
"""

import logging
import re
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Union

import openpyxl

from services.bulk_upload_models import ParsedRow

logger = logging.getLogger(__name__)

DEFAULT_MAX_DATA_ROWS = 10000

# Logical field -> accepted header strings (case-insensitive substring match,
# first synonym that matches an unclaimed column wins).
HEADER_SYNONYMS: Dict[str, Sequence[str]] = {
    'group_name': ('group name', 'group', 'groupname'),
    'client_name': ('client name', 'client', 'clientname', 'company name', 'company'),
    'client_industry': ('industry', 'client industry'),
    'client_website': ('website', 'client website', 'url', 'website url'),
    'client_address': ('address', 'client address'),
    'client_code': ('client code', 'code', 'clientcode'),
    'client_notes': ('client notes', 'notes'),
    'reference_token': ('tsp contact', 'tspcontact', 'partner id', 'partner ids', 'tsp', 'reference'),
    'contact_name': ('contact name', 'contact', 'name', 'contactname'),
    'contact_email': ('email', 'contact email', 'e-mail'),
    'contact_phone': ('phone', 'contact phone', 'number', 'phone number', 'mobile'),
    'contact_designation': ('designation', 'title', 'job title', 'position'),
    'is_primary': ('is primary', 'primary', 'isprimary', 'primary contact'),
    'contact_notes': ('contact notes',),
    'linkedin_url': ('linkedin', 'linkedin url', 'linkedinurl'),
    'twitter_handle': ('twitter', 'twitter handle', 'twitterhandle'),
}

# Narrow fields claim their column before the broad synonyms ("notes", "url",
# "contact", "name") get a chance to match it.
RESOLUTION_ORDER = (
    'group_name', 'client_name', 'contact_notes', 'client_notes',
    'linkedin_url', 'twitter_handle', 'client_website', 'client_industry',
    'client_address', 'client_code', 'reference_token', 'contact_email',
    'contact_phone', 'contact_designation', 'is_primary', 'contact_name',
)

MANDATORY_FIELDS = ('group_name', 'client_name')

FIELD_MAX_LENGTHS: Dict[str, int] = {
    'group_name': 255,
    'client_name': 255,
    'client_industry': 255,
    'client_website': 500,
    'client_address': 1000,
    'client_code': 50,
    'client_notes': 5000,
    'reference_token': 255,
    'contact_name': 255,
    'contact_email': 255,
    'contact_phone': 50,
    'contact_designation': 255,
    'contact_notes': 5000,
    'linkedin_url': 500,
    'twitter_handle': 100,
}

TRUTHY_TOKENS = {'y', 'yes', 'true', '1'}

MULTI_VALUE_SEPARATORS = re.compile(r'\r\n|\n|\r|,|/')
WHITESPACE = re.compile(r'\s+')

SCALAR_FIELDS = (
    'client_industry', 'client_website', 'client_address', 'client_code',
    'client_notes', 'contact_notes', 'linkedin_url', 'twitter_handle',
)


class WorkbookParseError(ValueError):
    """The upload cannot be turned into rows at all (shape problem, not data problem)."""


class CarryForward(NamedTuple):
    """Last non-blank merged-cell values seen above the current row."""

    group: str = ''
    client: str = ''
    reference: str = ''


def cell_text(value: Any) -> str:
    """Render a raw cell value as trimmed text."""
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        # Phone numbers and ids typed as numbers
        return str(int(value))
    return str(value).replace('\xa0', ' ').strip()


def normalize_field(value: Optional[str], max_length: Optional[int] = None) -> Optional[str]:
    """Collapse internal whitespace and cap length; empty becomes None."""
    if not value:
        return None
    normalized = WHITESPACE.sub(' ', value).strip()
    if max_length and len(normalized) > max_length:
        normalized = normalized[:max_length]
    return normalized or None


def split_multi_value(value: str) -> List[str]:
    """Split a contact cell on commas, slashes and line breaks."""
    if not value:
        return []
    return [part.strip() for part in MULTI_VALUE_SEPARATORS.split(value) if part.strip()]


def is_truthy(value: Any) -> bool:
    return cell_text(value).lower() in TRUTHY_TOKENS


class ColumnMap:
    """Fixed logical-field -> column-index table for one upload."""

    def __init__(self, indices: Dict[str, int]):
        self.indices = indices

    def __contains__(self, field: str) -> bool:
        return field in self.indices

    def raw(self, row: Sequence[Any], field: str) -> Any:
        index = self.indices.get(field)
        if index is None or index >= len(row):
            return None
        return row[index]

    def text(self, row: Sequence[Any], field: str) -> str:
        return cell_text(self.raw(row, field))


def resolve_columns(header_row: Sequence[Any]) -> ColumnMap:
    """
    Resolve the header row into a ColumnMap.

    Raises:
        WorkbookParseError: If a mandatory column cannot be found
    """
    headers = [cell_text(h).lower() for h in header_row]
    claimed = set()
    indices = {}

    for field in RESOLUTION_ORDER:
        for synonym in HEADER_SYNONYMS[field]:
            index = next(
                (i for i, header in enumerate(headers)
                 if header and synonym in header and i not in claimed),
                None
            )
            if index is not None:
                indices[field] = index
                claimed.add(index)
                break

    missing = [f for f in MANDATORY_FIELDS if f not in indices]
    if missing:
        raise WorkbookParseError('Missing required columns: Group Name, Client Name')

    logger.debug(f"Resolved columns: {indices}")
    return ColumnMap(indices)


def _is_blank(row: Optional[Sequence[Any]]) -> bool:
    return not row or all(cell_text(value) == '' for value in row)


def read_first_sheet(source: Union[bytes, str, Path]) -> List[List[Any]]:
    """
    Load the first worksheet of a workbook as a grid of raw cell values.

    Args:
        source: Workbook bytes or a filesystem path

    Raises:
        WorkbookParseError: If the file is not a readable workbook
    """
    try:
        stream = BytesIO(source) if isinstance(source, (bytes, bytearray)) else str(source)
        workbook = openpyxl.load_workbook(stream, read_only=True, data_only=True)
    except Exception as e:
        logger.error(f"Could not open workbook: {e}")
        raise WorkbookParseError(f"Could not read Excel file: {e}") from e

    try:
        worksheet = workbook.worksheets[0]
        grid = [list(row) for row in worksheet.iter_rows(values_only=True)]
    finally:
        workbook.close()

    logger.info(f"Read {len(grid)} rows from sheet '{worksheet.title}'")
    return grid


class RowParser:
    """
    Parses a header + data grid into ParsedRow records.

    Stateless between calls; the merged-cell carry-forward lives only inside
    a single parse_grid() invocation.
    """

    def __init__(self, max_data_rows: int = DEFAULT_MAX_DATA_ROWS,
                 max_lengths: Optional[Dict[str, int]] = None):
        """
        Initialize row parser.

        Args:
            max_data_rows: Reject grids with more non-blank data rows than this
            max_lengths: Per-field truncation limits (default: FIELD_MAX_LENGTHS)
        """
        self.max_data_rows = max_data_rows
        self.max_lengths = max_lengths or FIELD_MAX_LENGTHS

    def parse_workbook(self, source: Union[bytes, str, Path]) -> List[ParsedRow]:
        """Parse the first worksheet of an uploaded workbook."""
        return self.parse_grid(read_first_sheet(source))

    def parse_grid(self, grid: Sequence[Sequence[Any]]) -> List[ParsedRow]:
        """
        Parse a grid whose first row holds headers.

        Returns:
            ParsedRow list in sheet order; a physical row with N contacts
            yields N records sharing its row_number

        Raises:
            WorkbookParseError: Too few rows, too many rows, or missing mandatory columns
        """
        data_rows = [
            (line, row) for line, row in enumerate(grid[1:], start=2)
            if not _is_blank(row)
        ]

        if not grid or not data_rows:
            raise WorkbookParseError('Excel file must have at least a header row and one data row')

        if len(data_rows) > self.max_data_rows:
            raise WorkbookParseError(
                f"Excel file exceeds maximum row limit of {self.max_data_rows}. "
                f"Please split into smaller files."
            )

        columns = resolve_columns(grid[0])

        parsed: List[ParsedRow] = []
        carry = CarryForward()
        dropped = 0

        for line, row in data_rows:
            carry = self._advance(carry, columns, row)
            if not carry.group or not carry.client:
                dropped += 1
                continue
            parsed.extend(self._expand_row(line, row, columns, carry))

        logger.info(f"Parsed {len(parsed)} records from {len(data_rows)} data rows "
                    f"({dropped} rows without group/client dropped)")
        return parsed

    @staticmethod
    def _advance(carry: CarryForward, columns: ColumnMap, row: Sequence[Any]) -> CarryForward:
        """Fold one row into the merged-cell accumulator."""
        group = columns.text(row, 'group_name')
        client = columns.text(row, 'client_name')
        reference = columns.text(row, 'reference_token')

        # Group and client always carry forward; the reference token only
        # within one client block. The corrected-preview export writes a
        # client without reference users as a blank cell, and that must
        # re-import as no reference, not the previous client's token.
        new_block = (group and group != carry.group) or (client and client != carry.client)
        inherited_reference = '' if new_block else carry.reference

        return CarryForward(
            group=group or carry.group,
            client=client or carry.client,
            reference=reference or inherited_reference,
        )

    def _normalize(self, field: str, value: Optional[str]) -> Optional[str]:
        return normalize_field(value, self.max_lengths.get(field))

    def _expand_row(self, line: int, row: Sequence[Any], columns: ColumnMap,
                    carry: CarryForward) -> List[ParsedRow]:
        """Build the client part once, then one record per contact in the row."""
        base = {
            'row_number': line,
            'group_name': self._normalize('group_name', carry.group) or '',
            'client_name': self._normalize('client_name', carry.client) or '',
            'reference_token': self._normalize('reference_token', carry.reference),
        }
        for field in SCALAR_FIELDS:
            base[field] = self._normalize(field, columns.text(row, field))

        names = split_multi_value(columns.text(row, 'contact_name'))
        emails = split_multi_value(columns.text(row, 'contact_email'))
        phones = split_multi_value(columns.text(row, 'contact_phone'))
        designations = split_multi_value(columns.text(row, 'contact_designation'))

        if not (names or emails or phones or designations):
            return [ParsedRow(**base)]

        declared_primary = is_truthy(columns.raw(row, 'is_primary'))
        count = max(len(names), len(emails), len(phones), len(designations), 1)

        records = []
        for position in range(count):
            email = self._normalize('contact_email', _at(emails, position))
            records.append(ParsedRow(
                **base,
                contact_name=self._normalize('contact_name', _at(names, position)),
                contact_email=email.lower() if email else None,
                contact_phone=self._normalize('contact_phone', _at(phones, position)),
                contact_designation=self._normalize('contact_designation', _at(designations, position)),
                is_primary=declared_primary and position == 0,
            ))

        if count > 1:
            logger.debug(f"Row {line}: expanded into {count} contacts")
        return records


def _at(values: List[str], position: int) -> Optional[str]:
    return values[position] if position < len(values) else None

