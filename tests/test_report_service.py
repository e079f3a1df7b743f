"""
Tests for workbook rendering: template, corrected preview and results.
"""

from io import BytesIO

import openpyxl

from services.bulk_upload_models import (
    CandidateClient, CandidateContact, CreatedGroup, PreviewData, ReferenceUser, UploadResult
)
from services.preview_builder import PreviewBuilder
from services.report_service import (
    NOT_APPLICABLE, TEMPLATE_HEADERS, ReportService, reference_cell
)
from services.row_parser import RowParser


def load(content: bytes):
    return openpyxl.load_workbook(BytesIO(content))


def sheet_values(sheet):
    return [list(row) for row in sheet.iter_rows(values_only=True)]


class TestTemplate:
    """Test the blank upload template."""

    def test_headers_and_examples(self):
        workbook = load(ReportService().build_template())
        sheet = workbook['Bulk Upload Template']
        rows = sheet_values(sheet)

        assert rows[0] == TEMPLATE_HEADERS
        assert len(rows) == 4
        assert rows[1][:2] == ['TATA', 'TCS']

    def test_template_is_a_valid_upload(self, repository, users):
        """The example rows parse and preview without errors."""
        rows = RowParser().parse_workbook(ReportService().build_template())
        preview = PreviewBuilder(repository).build(rows)

        assert preview.errors == []
        assert [g.name for g in preview.groups] == ['TATA']
        assert [c.name for c in preview.clients] == ['TCS', 'TATA Steel']
        assert len(preview.contacts) == 3


class TestCorrectedPreview:
    """Test rendering a preview back into the upload shape."""

    def test_client_without_contacts(self):
        preview = PreviewData(clients=[CandidateClient(name='Acme Corp', group_name='Acme', code='AC1')])

        rows = ReportService().preview_rows(preview)

        assert rows == [['Acme', 'Acme Corp', '', '', '', 'AC1', '', ''] + [''] * 8]

    def test_contact_rows_repeat_client_cells(self):
        client = CandidateClient(
            name='Acme Corp', group_name='Acme', industry='Tech', reference_token='18/20',
            reference_users=[ReferenceUser(id=18, name='P18', email='p18@firm.test'),
                             ReferenceUser(id=20, name='P20', email='p20@firm.test')]
        )
        contacts = [
            CandidateContact(name='Jane', email='jane@acme.com', is_primary=True,
                             client_name='Acme Corp', group_name='Acme'),
            CandidateContact(name='Bob', client_name='ACME CORP', group_name='acme'),
        ]

        rows = ReportService().preview_rows(PreviewData(clients=[client], contacts=contacts))

        assert len(rows) == 2
        assert rows[0][:8] == rows[1][:8]
        assert rows[0][7] == '18/20'
        assert rows[0][8:13] == ['Jane', 'jane@acme.com', '', '', 'Y']
        assert rows[1][12] == 'N'

    def test_orphan_contacts_kept(self):
        preview = PreviewData(contacts=[
            CandidateContact(name='Jane', client_name='Gone Corp', group_name='Acme')
        ])

        rows = ReportService().preview_rows(preview)

        assert rows[0][:2] == ['Acme', 'Gone Corp']
        assert rows[0][8] == 'Jane'

    def test_reference_cell_falls_back_to_token(self):
        assert reference_cell(CandidateClient(name='A', group_name='G', reference_token='18/abc')) == '18/abc'
        assert reference_cell(CandidateClient(name='A', group_name='G')) == ''

    def test_round_trip(self, pipeline, grid):
        """Rendering a preview and parsing it again yields the same candidates."""
        preview, _ = pipeline(grid(
            ['Acme', 'Acme Corp', 'Tech', 'acme.com', 'Main St', 'AC1', 'Key account', '18/20',
             'Jane, Bob', 'jane@acme.com, bob@acme.com', '555-1111', 'CEO', 'Y'],
            ['Acme', 'Acme Labs', 'Research'],
            ['Globex', 'Globex Inc', 'Energy', '', '', '', '', '20', 'Gary', 'gary@globex.com'],
        ), commit=False)

        content = ReportService().build_corrected_preview(preview)
        assert load(content).sheetnames == ['Bulk Upload Preview']

        again, _ = pipeline(sheet_values(load(content).active), commit=False)

        assert again.errors == preview.errors == []
        assert [c.model_dump() for c in again.clients] == [
            dict(c.model_dump(), source_row_number=again.clients[i].source_row_number)
            for i, c in enumerate(preview.clients)
        ]
        assert [(c.name, c.email, c.is_primary) for c in again.contacts] == \
            [(c.name, c.email, c.is_primary) for c in preview.contacts]


class TestResults:
    """Test the results workbook."""

    def test_summary_only_for_empty_result(self):
        workbook = load(ReportService().build_results(UploadResult()))

        assert workbook.sheetnames == ['Summary']
        rows = sheet_values(workbook['Summary'])
        assert rows[0] == ['Metric', 'Count']
        assert rows[1:] == [
            ['Groups Created', 0], ['Groups Existing', 0],
            ['Clients Created', 0], ['Clients Existing', 0],
            ['Contacts Created', 0], ['Contacts Skipped', 0],
            ['Errors', 0], ['Warnings', 0],
        ]

    def test_detail_sheets(self, pipeline, grid, acme_rows):
        _, result = pipeline(grid(*acme_rows))

        workbook = load(ReportService().build_results(result))

        assert workbook.sheetnames == ['Summary', 'Created Groups', 'Created Clients', 'Created Contacts']
        assert sheet_values(workbook['Created Clients'])[1][1:] == ['Acme Corp', 'Acme']
        contacts = sheet_values(workbook['Created Contacts'])
        assert [r[1:] for r in contacts[1:]] == [
            ['Jane', 'jane@acme.com', 'Acme Corp'],
            ['Bob', 'bob@acme.com', 'Acme Corp'],
        ]

    def test_row_zero_rendered_as_not_applicable(self):
        result = UploadResult(created_groups=[CreatedGroup(id=7, name='Acme')], groups_created=1)
        result.add_error(0, 'Failed to create clients (batch 1 of 1): boom')
        result.add_warning(4, 'Client "X" has no industry (Client Industry is required)')

        workbook = load(ReportService().build_results(result))

        assert sheet_values(workbook['Errors'])[1] == [NOT_APPLICABLE, 'Failed to create clients (batch 1 of 1): boom']
        assert sheet_values(workbook['Warnings'])[1][0] == 4
        assert sheet_values(workbook['Summary'])[7] == ['Errors', 1]
        assert sheet_values(workbook['Created Groups'])[1] == [7, 'Acme']
