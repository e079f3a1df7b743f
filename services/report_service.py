"""
Report Service - Render upload artefacts as .xlsx workbooks.

Three outputs:
- the blank upload template (headers plus example rows)
- a corrected-preview workbook in the exact row shape the parser accepts
- a multi-sheet results workbook for a finished commit
"""

import logging
from io import BytesIO
from typing import Dict, Iterable, List, Sequence

import openpyxl
from openpyxl.workbook import Workbook

from services.bulk_upload_models import (
    CandidateClient, CandidateContact, ClientKey, PreviewData, UploadResult,
)
from services.preview_builder import REFERENCE_SEPARATOR

logger = logging.getLogger(__name__)

TEMPLATE_HEADERS = [
    'Group Name', 'Client Name', 'Client Industry', 'Client Website',
    'Client Address', 'Client Code', 'Client Notes', 'TSP Contact',
    'Contact Name', 'Contact Email', 'Contact Phone', 'Contact Designation',
    'Is Primary', 'Contact Notes', 'LinkedIn URL', 'Twitter Handle',
]

TEMPLATE_EXAMPLE_ROWS = [
    ['TATA', 'TCS', 'Technology', 'www.tcs.com', 'Mumbai, Maharashtra, India', 'TCS001',
     'Major IT client', '18', 'John Doe', 'john.doe@tcs.com', '+91 98765 43210', 'CEO', 'Y',
     'Primary contact', '', ''],
    ['TATA', 'TCS', 'Technology', 'www.tcs.com', 'Mumbai, Maharashtra, India', 'TCS001',
     'Major IT client', '18/20', 'Jane Smith', 'jane.smith@tcs.com', '+91 98765 43211', 'CTO', 'N',
     '', '', ''],
    ['TATA', 'TATA Steel', 'Manufacturing', 'www.tatasteel.com', 'Jamshedpur, Jharkhand, India',
     'TS001', 'Steel manufacturing', '20', 'Bob Johnson', 'bob.johnson@tatasteel.com',
     '+91 98765 43212', 'Director', 'Y', '', '', ''],
]

TEMPLATE_FILENAME = 'crm_bulk_upload_template.xlsx'
CORRECTED_PREVIEW_FILENAME = 'bulk_upload_corrected.xlsx'

NOT_APPLICABLE = 'N/A'


def _to_bytes(workbook: Workbook) -> bytes:
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _add_sheet(workbook: Workbook, title: str, header: Sequence[str], rows: Iterable[Sequence]):
    sheet = workbook.create_sheet(title=title)
    sheet.append(list(header))
    for row in rows:
        sheet.append(list(row))
    return sheet


def _row_label(row: int):
    return row if row else NOT_APPLICABLE


def reference_cell(client: CandidateClient) -> str:
    """Resolved users render as their ids; otherwise the raw token is kept."""
    if client.reference_users:
        return REFERENCE_SEPARATOR.join(str(u.id) for u in client.reference_users)
    return client.reference_token or ''


class ReportService:
    """Builds workbooks as bytes; callers decide whether to stream or save them."""

    def build_template(self) -> bytes:
        workbook = openpyxl.Workbook()
        sheet = workbook.active
        sheet.title = 'Bulk Upload Template'
        sheet.append(TEMPLATE_HEADERS)
        for row in TEMPLATE_EXAMPLE_ROWS:
            sheet.append(row)
        return _to_bytes(workbook)

    def preview_rows(self, preview: PreviewData) -> List[List[str]]:
        """
        Flatten a preview into template-shaped rows.

        Each contact becomes one row repeating its client's cells; a client
        without contacts becomes a single row with blank contact cells.
        """
        contacts_by_client: Dict[ClientKey, List[CandidateContact]] = {}
        for contact in preview.contacts:
            contacts_by_client.setdefault(contact.client_key(), []).append(contact)

        rows = []
        for client in preview.clients:
            client_cells = [
                client.group_name,
                client.name,
                client.industry or '',
                client.website or '',
                client.address or '',
                client.code or '',
                client.notes or '',
                reference_cell(client),
            ]
            contacts = contacts_by_client.pop(client.key(), [])
            if not contacts:
                rows.append(client_cells + [''] * 8)
            for contact in contacts:
                rows.append(client_cells + self._contact_cells(contact))

        # Contacts whose client was removed from an edited preview
        for orphans in contacts_by_client.values():
            for contact in orphans:
                rows.append([contact.group_name, contact.client_name] + [''] * 6
                            + self._contact_cells(contact))
        return rows

    @staticmethod
    def _contact_cells(contact: CandidateContact) -> List[str]:
        return [
            contact.name or '',
            contact.email or '',
            contact.phone or '',
            contact.designation or '',
            'Y' if contact.is_primary else 'N',
            contact.notes or '',
            contact.linkedin_url or '',
            contact.twitter_handle or '',
        ]

    def build_corrected_preview(self, preview: PreviewData) -> bytes:
        workbook = openpyxl.Workbook()
        sheet = workbook.active
        sheet.title = 'Bulk Upload Preview'
        sheet.append(TEMPLATE_HEADERS)
        rows = self.preview_rows(preview)
        for row in rows:
            sheet.append(row)
        logger.info(f"Rendered corrected preview with {len(rows)} rows")
        return _to_bytes(workbook)

    def build_results(self, result: UploadResult) -> bytes:
        """Summary sheet always; the other sheets only when they have rows."""
        workbook = openpyxl.Workbook()
        summary = workbook.active
        summary.title = 'Summary'
        summary.append(['Metric', 'Count'])
        for metric, count in (
            ('Groups Created', result.groups_created),
            ('Groups Existing', result.groups_existing),
            ('Clients Created', result.clients_created),
            ('Clients Existing', result.clients_existing),
            ('Contacts Created', result.contacts_created),
            ('Contacts Skipped', result.contacts_skipped),
            ('Errors', len(result.errors)),
            ('Warnings', len(result.warnings)),
        ):
            summary.append([metric, count])

        if result.created_groups:
            _add_sheet(workbook, 'Created Groups', ['ID', 'Name'],
                       ([g.id, g.name] for g in result.created_groups))
        if result.created_clients:
            _add_sheet(workbook, 'Created Clients', ['ID', 'Name', 'Group'],
                       ([c.id, c.name, c.group_name] for c in result.created_clients))
        if result.created_contacts:
            _add_sheet(workbook, 'Created Contacts', ['ID', 'Name', 'Email', 'Client'],
                       ([c.id, c.name, c.email or '', c.client_name] for c in result.created_contacts))
        if result.errors:
            _add_sheet(workbook, 'Errors', ['Row', 'Message'],
                       ([_row_label(e.row), e.message] for e in result.errors))
        if result.warnings:
            _add_sheet(workbook, 'Warnings', ['Row', 'Message'],
                       ([_row_label(w.row), w.message] for w in result.warnings))

        logger.info(f"Rendered results workbook with {len(workbook.sheetnames)} sheets")
        return _to_bytes(workbook)
