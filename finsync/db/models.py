"""SQLAlchemy async database models for finsync.

Maps to the PostgreSQL schema (SQLite in tests and local development).
External ids are the reconciliation key against Qonto (ClickUp for projects)
and are unique among non-null values; locally created rows carry no external id.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class ClientModel(Base):
    """Customer synced from Qonto or created locally."""

    __tablename__ = "clients"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    external_id: Mapped[str | None] = mapped_column(Text, unique=True)

    name: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    email: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)
    vat_number: Mapped[str | None] = mapped_column(Text)
    country: Mapped[str | None] = mapped_column(Text)
    currency: Mapped[str] = mapped_column(Text, nullable=False, default="EUR")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class ProjectModel(Base):
    """Internal project that supplier costs are attributed to.

    Synced from ClickUp folders or created locally.
    """

    __tablename__ = "projects"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    external_id: Mapped[str | None] = mapped_column(Text, unique=True)  # ClickUp folder id
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text)
    client_name: Mapped[str | None] = mapped_column(Text, index=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="active", index=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class ClientInvoiceModel(Base):
    """Outgoing invoice issued to a client."""

    __tablename__ = "client_invoices"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    external_id: Mapped[str | None] = mapped_column(Text, unique=True)
    invoice_number: Mapped[str | None] = mapped_column(Text)

    client_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("clients.id", ondelete="SET NULL"), index=True
    )
    project_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="SET NULL"), index=True
    )

    amount_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    amount_net: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    amount_vat: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    currency: Mapped[str] = mapped_column(Text, nullable=False, default="EUR")

    status: Mapped[str | None] = mapped_column(Text)  # Qonto lifecycle string
    issue_date: Mapped[date | None] = mapped_column(Date)
    due_date: Mapped[date | None] = mapped_column(Date)
    paid_date: Mapped[date | None] = mapped_column(Date)
    description: Mapped[str | None] = mapped_column(Text)
    document_attachment_id: Mapped[str | None] = mapped_column(Text)
    pdf_url: Mapped[str | None] = mapped_column(Text)

    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class ClientInvoiceLineItemModel(Base):
    """Line of a client invoice, replaced wholesale on every reconcile."""

    __tablename__ = "client_invoice_line_items"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    client_invoice_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("client_invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    external_line_id: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(14, 4))
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    total_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    vat_rate: Mapped[Decimal | None] = mapped_column(Numeric(6, 4))
    vat_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))


class SupplierInvoiceModel(Base):
    """Incoming invoice from a supplier, candidate for project attribution."""

    __tablename__ = "supplier_invoices"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    external_id: Mapped[str | None] = mapped_column(Text, unique=True)

    supplier_name: Mapped[str | None] = mapped_column(Text, index=True)
    supplier_iban: Mapped[str | None] = mapped_column(Text)

    amount_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    amount_net: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    amount_vat: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    currency: Mapped[str] = mapped_column(Text, nullable=False, default="EUR")

    invoice_date: Mapped[date | None] = mapped_column(Date)
    description: Mapped[str | None] = mapped_column(Text)
    document_attachment_id: Mapped[str | None] = mapped_column(Text)
    pdf_url: Mapped[str | None] = mapped_column(Text)

    # Pipeline state
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default="pending-assignment", index=True
    )
    is_processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ai_confidence: Mapped[int | None] = mapped_column(Integer)

    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending-assignment', 'assigned', 'medium-confidence', "
            "'low-confidence', 'no-match', 'non-project')",
            name="check_supplier_invoice_status_valid",
        ),
        CheckConstraint(
            "ai_confidence IS NULL OR (ai_confidence >= 0 AND ai_confidence <= 100)",
            name="check_ai_confidence_range",
        ),
    )


class ProjectAssignmentModel(Base):
    """Attribution of (part of) a supplier invoice to a project.

    Several rows per invoice model split billing. The amounts are expected to
    sum to the invoice total but this is not enforced here.
    """

    __tablename__ = "invoice_project_assignments"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    supplier_invoice_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("supplier_invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    amount_assigned: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2))
    assignment_type: Mapped[str] = mapped_column(Text, nullable=False, default="manual")
    assigned_by: Mapped[str | None] = mapped_column(Text)
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "assignment_type IN ('manual', 'ai_auto_assigned')",
            name="check_assignment_type_valid",
        ),
        CheckConstraint("amount_assigned >= 0", name="check_amount_assigned_non_negative"),
        Index("idx_assignments_invoice_project", "supplier_invoice_id", "project_id"),
    )


class ClassificationResultModel(Base):
    """Latest vision-model classification of a supplier invoice.

    One row per (invoice, processing type); re-classification overwrites it.
    """

    __tablename__ = "ai_processing_results"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    supplier_invoice_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("supplier_invoices.id", ondelete="CASCADE"),
        nullable=False,
    )
    processing_type: Mapped[str] = mapped_column(
        Text, nullable=False, default="vision_project_matching"
    )

    extracted_text: Mapped[str | None] = mapped_column(Text)
    confidence_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    project_matches: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    invoice_details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    processing_status: Mapped[str] = mapped_column(Text, nullable=False)
    processing_time_ms: Mapped[int | None] = mapped_column(Integer)
    error_message: Mapped[str | None] = mapped_column(Text)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "supplier_invoice_id", "processing_type", name="uq_processing_result_type"
        ),
        CheckConstraint(
            "processing_status IN ('success', 'failed', 'partial')",
            name="check_processing_status_valid",
        ),
    )


class ExternalSyncRunModel(Base):
    """One orchestrated sync run against Qonto.

    Created at run start, terminal once completed or failed.
    """

    __tablename__ = "external_sync_runs"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    entity_scope: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    force_full_sync: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    classifications_scheduled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint(
            "status IN ('started', 'completed', 'failed')", name="check_sync_run_status_valid"
        ),
        CheckConstraint(
            "entity_scope IN ('all', 'clients', 'client_invoices', 'supplier_invoices', "
            "'projects')",
            name="check_sync_run_scope_valid",
        ),
        CheckConstraint("records_processed >= 0", name="check_records_processed_non_negative"),
    )
