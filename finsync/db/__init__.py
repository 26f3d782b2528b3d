"""Database layer for finsync with async SQLAlchemy."""

from finsync.db.connection import close_db, get_session, init_db
from finsync.db.models import (
    Base,
    ClassificationResultModel,
    ClientInvoiceLineItemModel,
    ClientInvoiceModel,
    ClientModel,
    ExternalSyncRunModel,
    ProjectAssignmentModel,
    ProjectModel,
    SupplierInvoiceModel,
)

__all__ = [
    "Base",
    "ClientModel",
    "ProjectModel",
    "ClientInvoiceModel",
    "ClientInvoiceLineItemModel",
    "SupplierInvoiceModel",
    "ProjectAssignmentModel",
    "ClassificationResultModel",
    "ExternalSyncRunModel",
    "get_session",
    "init_db",
    "close_db",
]
