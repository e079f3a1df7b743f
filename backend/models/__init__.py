"""Models package for the CRM bulk upload system."""
from backend.models.schema import Base, User, ClientGroup, Client, Contact
from backend.models.upload_run import UploadRun, UploadStatus

__all__ = ['Base', 'User', 'ClientGroup', 'Client', 'Contact', 'UploadRun', 'UploadStatus']
