"""
FastAPI application for the CRM bulk upload system.

This package contains the REST API for previewing, correcting and
committing spreadsheet uploads of client groups, clients and contacts.
"""

__version__ = "1.0.0"
