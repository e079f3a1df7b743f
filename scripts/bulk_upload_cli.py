#!/usr/bin/env python3
"""
CRM Bulk Upload CLI

Runs the same parse -> preview -> commit pipeline as the API, directly
against the database.

Usage:
    # Blank template
    python scripts/bulk_upload_cli.py template template.xlsx

    # Validate a filled template, optionally keeping the preview as JSON
    python scripts/bulk_upload_cli.py preview clients.xlsx --json preview.json

    # Turn an edited preview back into a spreadsheet
    python scripts/bulk_upload_cli.py export-preview preview.json corrected.xlsx

    # Commit (refuses when the preview has errors unless --force)
    python scripts/bulk_upload_cli.py import clients.xlsx --user-id 18 --results results.xlsx
"""

import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import logging
from typing import Optional

import click
from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Load environment variables
load_dotenv()

from api.config import settings
from services.bulk_upload_models import PreviewData
from services.committer import Committer, outcome_status
from services.preview_builder import PreviewBuilder
from services.report_service import ReportService
from services.repository import BulkUploadRepository
from services.row_parser import RowParser, WorkbookParseError

# Configure logging
LOG_FILE = 'cli.log'

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT,
    handlers=[
        logging.FileHandler(LOG_FILE),
        logging.StreamHandler(sys.stderr)
    ]
)

logger = logging.getLogger('bulk_upload_cli')

MAX_LISTED_ISSUES = 20


def get_session_factory(database_url: str) -> sessionmaker:
    """Create a session factory for direct database access."""
    engine = create_engine(database_url, pool_size=settings.DB_POOL_SIZE,
                           max_overflow=settings.DB_MAX_OVERFLOW)
    return sessionmaker(bind=engine)


def echo_issues(title: str, issues, err: bool = False):
    """Print up to MAX_LISTED_ISSUES row-tagged messages."""
    if not issues:
        return
    click.echo(f"\n{title} ({len(issues)}):", err=err)
    for issue in issues[:MAX_LISTED_ISSUES]:
        row = issue.row if issue.row else 'N/A'
        click.echo(f"  Row {row}: {issue.message}", err=err)
    if len(issues) > MAX_LISTED_ISSUES:
        click.echo(f"  ... and {len(issues) - MAX_LISTED_ISSUES} more", err=err)


def build_preview_from_file(session, file_path: str, user_id: Optional[int] = None) -> PreviewData:
    parser = RowParser(max_data_rows=settings.BULK_UPLOAD_MAX_DATA_ROWS)
    rows = parser.parse_workbook(file_path)
    return PreviewBuilder(BulkUploadRepository(session)).build(rows, user_id)


@click.group()
@click.option('--database-url', envvar='DATABASE_URL', default=settings.DATABASE_URL,
              show_default=False, help='Database URL (default: DATABASE_URL)')
@click.pass_context
def cli(ctx, database_url):
    """CRM bulk upload of client groups, clients and contacts."""
    ctx.ensure_object(dict)
    ctx.obj['database_url'] = database_url


@cli.command('template')
@click.argument('out', type=click.Path(dir_okay=False, writable=True))
def template_cmd(out: str):
    """Write the blank upload template to OUT."""
    Path(out).write_bytes(ReportService().build_template())
    click.echo(f"✓ Template written to {out}")


@cli.command('preview')
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.option('--json', 'json_out', type=click.Path(dir_okay=False, writable=True),
              help='Write the preview as JSON (editable, accepted by export-preview)')
@click.pass_context
def preview_cmd(ctx, file: str, json_out: Optional[str]):
    """Parse and validate FILE without writing to the database."""
    click.echo(f"📁 Previewing: {file}")
    session = get_session_factory(ctx.obj['database_url'])()
    try:
        preview = build_preview_from_file(session, file)
    except WorkbookParseError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)
    finally:
        session.close()

    click.echo(f"\nGroups:   {len(preview.groups)} ({sum(g.exists for g in preview.groups)} existing)")
    click.echo(f"Clients:  {len(preview.clients)} ({sum(c.exists for c in preview.clients)} existing)")
    click.echo(f"Contacts: {len(preview.contacts)}")
    echo_issues('Errors', preview.errors, err=True)
    echo_issues('Warnings', preview.warnings)

    if json_out:
        Path(json_out).write_text(preview.model_dump_json(indent=2), encoding='utf-8')
        click.echo(f"\n✓ Preview written to {json_out}")


@cli.command('export-preview')
@click.argument('preview_json', type=click.Path(exists=True, dir_okay=False))
@click.argument('out', type=click.Path(dir_okay=False, writable=True))
def export_preview_cmd(preview_json: str, out: str):
    """Render a preview JSON file as a re-uploadable spreadsheet."""
    preview = PreviewData.model_validate_json(Path(preview_json).read_text(encoding='utf-8'))
    Path(out).write_bytes(ReportService().build_corrected_preview(preview))
    click.echo(f"✓ Corrected spreadsheet written to {out}")


@cli.command('import')
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.option('--user-id', '-u', required=True, type=click.IntRange(min=1),
              help='Acting user recorded as creator')
@click.option('--results', type=click.Path(dir_okay=False, writable=True),
              help='Write the results workbook here')
@click.option('--force', is_flag=True,
              help='Commit despite preview errors (blocked records are skipped)')
@click.pass_context
def import_cmd(ctx, file: str, user_id: int, results: Optional[str], force: bool):
    """Preview and commit FILE."""
    click.echo(f"📁 Importing: {file}")
    session = get_session_factory(ctx.obj['database_url'])()
    try:
        try:
            preview = build_preview_from_file(session, file, user_id)
        except WorkbookParseError as e:
            click.echo(f"✗ {e}", err=True)
            sys.exit(1)

        if preview.has_errors() and not force:
            echo_issues('Errors', preview.errors, err=True)
            click.echo("\n✗ Preview has errors; fix the file or re-run with --force", err=True)
            sys.exit(1)

        repository = BulkUploadRepository(session)
        committer = Committer(
            repository,
            batch_size=settings.BULK_UPLOAD_BATCH_SIZE,
            batch_timeout_seconds=settings.BULK_UPLOAD_BATCH_TIMEOUT_SECONDS
        )
        result = committer.commit(preview, user_id, preview.reference_user_ids())
        run = repository.record_upload_run(
            outcome_status(result), result.model_dump(mode='json'),
            created_by=user_id, source_filename=Path(file).name
        )
    finally:
        session.close()

    click.echo(f"\n✓ Upload run #{run.run_id} finished ({outcome_status(result).value})")
    click.echo(f"  Groups:   {result.groups_created} created, {result.groups_existing} existing")
    click.echo(f"  Clients:  {result.clients_created} created, {result.clients_existing} existing")
    click.echo(f"  Contacts: {result.contacts_created} created, {result.contacts_skipped} skipped")
    echo_issues('Errors', result.errors, err=True)
    echo_issues('Warnings', result.warnings)

    if results:
        Path(results).write_bytes(ReportService().build_results(result))
        click.echo(f"\n✓ Results written to {results}")

    if result.errors:
        sys.exit(2)


if __name__ == '__main__':
    cli()
