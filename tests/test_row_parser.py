"""
Tests for spreadsheet row parsing.

Covers header synonyms, merged-cell carry-forward, multi-value contact
cells, normalization and the fatal input-shape errors.
"""

import pytest

from services.row_parser import (
    RowParser, WorkbookParseError, cell_text, normalize_field,
    resolve_columns, split_multi_value
)


class TestHeaderResolution:
    """Test logical-field resolution from header synonyms."""

    def test_template_headers(self, grid):
        """Every template column maps to its own field."""
        columns = resolve_columns(grid()[0])

        assert columns.indices['group_name'] == 0
        assert columns.indices['client_name'] == 1
        assert columns.indices['client_notes'] == 6
        assert columns.indices['reference_token'] == 7
        assert columns.indices['contact_name'] == 8
        assert columns.indices['is_primary'] == 12
        assert columns.indices['contact_notes'] == 13
        assert columns.indices['linkedin_url'] == 14
        assert columns.indices['twitter_handle'] == 15
        assert len(set(columns.indices.values())) == 16

    def test_synonyms(self):
        """Alternative header spellings resolve, and no column is claimed twice."""
        headers = ['Company', 'Group', 'E-mail', 'Mobile', 'Title',
                   'Primary Contact', 'Notes', 'Contact Notes', 'Name', 'Partner IDs']
        columns = resolve_columns(headers)

        assert columns.indices == {
            'group_name': 1,
            'client_name': 0,
            'contact_notes': 7,
            'client_notes': 6,
            'reference_token': 9,
            'contact_email': 2,
            'contact_phone': 3,
            'contact_designation': 4,
            'is_primary': 5,
            'contact_name': 8,
        }

    def test_case_insensitive(self):
        columns = resolve_columns(['GROUP NAME', 'client name', 'Client Website URL'])

        assert columns.indices['group_name'] == 0
        assert columns.indices['client_name'] == 1
        assert columns.indices['client_website'] == 2

    def test_missing_mandatory_column(self):
        """Without a client column the upload is rejected outright."""
        with pytest.raises(WorkbookParseError, match='Missing required columns'):
            resolve_columns(['Group Name', 'Industry', 'Email'])


class TestCarryForward:
    """Test merged-cell emulation."""

    def test_blank_group_and_client_inherit(self, grid):
        rows = RowParser().parse_grid(grid(
            ['Acme', 'Acme Corp', 'Tech', '', '', '', '', '', 'Jane'],
            ['', '', '', '', '', '', '', '', 'Bob'],
            ['', 'Acme Labs', '', '', '', '', '', '', 'Carol'],
        ))

        assert [(r.group_name, r.client_name, r.contact_name) for r in rows] == [
            ('Acme', 'Acme Corp', 'Jane'),
            ('Acme', 'Acme Corp', 'Bob'),
            ('Acme', 'Acme Labs', 'Carol'),
        ]

    def test_reference_token_carries_within_client(self, grid):
        rows = RowParser().parse_grid(grid(
            ['Acme', 'Acme Corp', 'Tech', '', '', '', '', '18/20', 'Jane'],
            ['', '', '', '', '', '', '', '', 'Bob'],
        ))

        assert [r.reference_token for r in rows] == ['18/20', '18/20']

    def test_reference_token_resets_for_new_client(self, grid):
        rows = RowParser().parse_grid(grid(
            ['Acme', 'Acme Corp', 'Tech', '', '', '', '', '18', 'Jane'],
            ['Acme', 'Acme Labs', 'Tech', '', '', '', '', '', 'Bob'],
        ))

        assert rows[0].reference_token == '18'
        assert rows[1].reference_token is None

    def test_rows_before_any_group_are_dropped(self, grid):
        rows = RowParser().parse_grid(grid(
            ['', 'Orphan Co', 'Tech'],
            ['Acme', 'Acme Corp', 'Tech'],
        ))

        assert len(rows) == 1
        assert rows[0].client_name == 'Acme Corp'
        assert rows[0].row_number == 3


class TestMultiValueCells:
    """Test expansion of multi-contact rows."""

    def test_expands_to_longest_list(self, grid):
        rows = RowParser().parse_grid(grid(
            ['Acme', 'Acme Corp', 'Tech', '', '', '', '', '',
             'Jane, Bob', 'jane@acme.com\nbob@acme.com', '555-1111', 'CEO/CFO', 'Y'],
        ))

        assert len(rows) == 2
        assert [r.contact_name for r in rows] == ['Jane', 'Bob']
        assert [r.contact_email for r in rows] == ['jane@acme.com', 'bob@acme.com']
        assert [r.contact_phone for r in rows] == ['555-1111', None]
        assert [r.contact_designation for r in rows] == ['CEO', 'CFO']
        assert [r.row_number for r in rows] == [2, 2]

    def test_only_first_expanded_contact_keeps_primary(self, grid):
        rows = RowParser().parse_grid(grid(
            ['Acme', 'Acme Corp', 'Tech', '', '', '', '', '',
             'Jane\r\nBob\rCarol', '', '', '', 'yes'],
        ))

        assert [r.is_primary for r in rows] == [True, False, False]

    def test_client_only_row(self, grid):
        rows = RowParser().parse_grid(grid(
            ['Acme', 'Acme Corp', 'Tech', 'acme.com', 'Main St', 'AC1', 'Key account'],
        ))

        assert len(rows) == 1
        assert rows[0].has_contact_data() is False
        assert rows[0].client_website == 'acme.com'
        assert rows[0].client_notes == 'Key account'

    def test_split_multi_value(self):
        assert split_multi_value('a, b / c\n\nd') == ['a', 'b', 'c', 'd']
        assert split_multi_value('') == []


class TestNormalization:
    """Test field normalization."""

    def test_whitespace_and_truncation(self, grid):
        rows = RowParser().parse_grid(grid(
            ['  Acme   Group ', 'Acme\tCorp', 'Tech', '', '', 'X' * 60],
        ))

        assert rows[0].group_name == 'Acme Group'
        assert rows[0].client_name == 'Acme Corp'
        assert rows[0].client_code == 'X' * 50

    def test_email_lowercased(self, grid):
        rows = RowParser().parse_grid(grid(
            ['Acme', 'Acme Corp', 'Tech', '', '', '', '', '', 'Jane', 'Jane.Doe@ACME.com'],
        ))

        assert rows[0].contact_email == 'jane.doe@acme.com'

    def test_numeric_cells(self):
        """Integral floats lose their trailing .0."""
        assert cell_text(9876543210.0) == '9876543210'
        assert cell_text(18) == '18'
        assert cell_text(2.5) == '2.5'
        assert cell_text(None) == ''

    def test_truthy_primary_tokens(self, grid):
        rows = RowParser().parse_grid(grid(*[
            ['Acme', f'Client {flag}', 'Tech', '', '', '', '', '', 'Jane', '', '', '', flag]
            for flag in ('Y', 'yes', 'TRUE', '1', 'N', 'no', '')
        ]))

        assert [r.is_primary for r in rows] == [True, True, True, True, False, False, False]

    def test_normalize_field(self):
        assert normalize_field('  a   b  ') == 'a b'
        assert normalize_field('   ') is None
        assert normalize_field('abcdef', 3) == 'abc'


class TestInputShape:
    """Test fatal input-shape errors."""

    def test_header_only(self, grid):
        with pytest.raises(WorkbookParseError, match='at least a header row and one data row'):
            RowParser().parse_grid(grid())

    def test_blank_rows_ignored(self, grid):
        rows = RowParser().parse_grid(grid(
            ['Acme', 'Acme Corp', 'Tech'],
            ['', '', ''],
            ['Acme', 'Acme Labs', 'Tech'],
        ))

        assert [r.row_number for r in rows] == [2, 4]

    def test_row_ceiling(self, grid):
        data = [['Acme', f'Client {i}', 'Tech'] for i in range(3)]

        assert len(RowParser(max_data_rows=3).parse_grid(grid(*data))) == 3
        with pytest.raises(WorkbookParseError, match='maximum row limit of 2'):
            RowParser(max_data_rows=2).parse_grid(grid(*data))

    def test_blank_rows_do_not_count_towards_ceiling(self, grid):
        rows = RowParser(max_data_rows=1).parse_grid(grid(
            ['', '', ''],
            ['Acme', 'Acme Corp', 'Tech'],
            [None, None, None],
        ))

        assert len(rows) == 1


class TestWorkbookParsing:
    """Test parsing real .xlsx bytes."""

    def test_parse_workbook_bytes(self, make_workbook):
        content = make_workbook([
            ['Acme', 'Acme Corp', 'Tech', '', '', 'AC1', '', 18, 'Jane', 'jane@acme.com',
             9876543210, 'CEO', 'Y'],
        ])

        rows = RowParser().parse_workbook(content)

        assert len(rows) == 1
        assert rows[0].reference_token == '18'
        assert rows[0].contact_phone == '9876543210'
        assert rows[0].is_primary is True

    def test_unreadable_file(self):
        with pytest.raises(WorkbookParseError, match='Could not read Excel file'):
            RowParser().parse_workbook(b'not a spreadsheet')
