"""finsync Pydantic models for type-safe data validation.

Model output is untrusted: the classification schemas coerce and clamp
instead of rejecting where a sensible reading exists.
"""

from __future__ import annotations

import math
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProcessingStatus(str, Enum):
    """Outcome of one classification attempt."""

    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"  # model answered but without usable JSON


class AssignmentType(str, Enum):
    """Origin of a project assignment."""

    MANUAL = "manual"
    AI_AUTO_ASSIGNED = "ai_auto_assigned"


class SyncScope(str, Enum):
    """Entity types a sync run covers.

    ``all`` is the Qonto entities; projects come from ClickUp and are synced
    on their own.
    """

    ALL = "all"
    CLIENTS = "clients"
    CLIENT_INVOICES = "client_invoices"
    SUPPLIER_INVOICES = "supplier_invoices"
    PROJECTS = "projects"

    def entities(self) -> list[SyncScope]:
        """Concrete entity types in sync order."""
        if self is SyncScope.ALL:
            return [SyncScope.CLIENTS, SyncScope.CLIENT_INVOICES, SyncScope.SUPPLIER_INVOICES]
        return [self]


class SyncRunStatus(str, Enum):
    """Lifecycle of an external sync run."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


VISION_PROJECT_MATCHING = "vision_project_matching"


class ProjectCandidate(BaseModel):
    """Project offered to the model as matching context."""

    id: UUID
    name: str
    description: str | None = None
    client_name: str | None = None


def _clamp_confidence(value: Any) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number):
        return 0
    if math.isinf(number):
        return 100 if number > 0 else 0
    return max(0, min(100, round(number)))


def _has_amount(value: float | str | None) -> bool:
    if value is None:
        return False
    try:
        return bool(float(value))
    except (TypeError, ValueError):
        return bool(str(value).strip())


class InvoiceDetails(BaseModel):
    """Invoice metadata the model read from the document."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    supplier_name: str | None = Field(default=None, alias="supplierName")
    amount: float | str | None = None
    date: str | None = None
    description: str | None = None

    @field_validator("supplier_name", "date", "description", mode="before")
    @classmethod
    def stringify(cls, v: Any) -> str | None:
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    def populated(self) -> dict[str, bool]:
        """Which fields carry a value."""
        return {
            "supplier_name": bool(self.supplier_name),
            "amount": _has_amount(self.amount),
            "date": bool(self.date),
            "description": bool(self.description),
        }


class ProjectMatch(BaseModel):
    """One candidate project proposed by the model."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    project_id: str | None = Field(default=None, alias="projectId")
    project_name: str = Field(alias="projectName")
    confidence: int = 0
    matched_keywords: list[str] = Field(default_factory=list, alias="matchedKeywords")
    context_snippets: list[str] = Field(default_factory=list, alias="contextSnippets")
    reasoning: str = ""

    @field_validator("project_id", mode="before")
    @classmethod
    def stringify_id(cls, v: Any) -> str | None:
        return None if v in (None, "") else str(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def round_and_clamp(cls, v: Any) -> int:
        return _clamp_confidence(v)

    @field_validator("matched_keywords", "context_snippets", mode="before")
    @classmethod
    def coerce_list(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(x) for x in v]

    @field_validator("reasoning", mode="before")
    @classmethod
    def coerce_reasoning(cls, v: Any) -> str:
        return "" if v is None else str(v)


class ModelResponse(BaseModel):
    """The JSON object the model is asked to answer with."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    extracted_text: str = Field(default="", alias="extractedText")
    invoice_details: InvoiceDetails = Field(default_factory=InvoiceDetails, alias="invoiceDetails")
    project_matches: list[ProjectMatch] = Field(default_factory=list, alias="projectMatches")

    @field_validator("extracted_text", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("invoice_details", mode="before")
    @classmethod
    def coerce_details(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("project_matches", mode="before")
    @classmethod
    def drop_unnamed(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, list):
            return [m for m in v if isinstance(m, dict) and m.get("projectName")]
        return v


class ClassificationResult(BaseModel):
    """Stored outcome of classifying one supplier invoice."""

    supplier_invoice_id: UUID
    processing_type: str = VISION_PROJECT_MATCHING
    extracted_text: str = ""
    confidence_score: int = Field(default=0, ge=0, le=100)
    project_matches: list[ProjectMatch] = Field(default_factory=list)
    invoice_details: InvoiceDetails = Field(default_factory=InvoiceDetails)
    processing_status: ProcessingStatus
    processing_time_ms: int | None = None
    error_message: str | None = None
    processed_at: datetime

    @property
    def best_match(self) -> ProjectMatch | None:
        return self.project_matches[0] if self.project_matches else None


# --- API schemas -----------------------------------------------------------


class SyncRequest(BaseModel):
    scope: SyncScope = SyncScope.ALL
    force_full_sync: bool = False


class SyncRunSummary(BaseModel):
    """Outcome of one sync run, partial counts included on failure."""

    sync_id: UUID
    status: SyncRunStatus
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_skipped: int = 0
    classifications_scheduled: int = 0
    error_message: str | None = None


class AssignmentInput(BaseModel):
    """One manual project assignment line."""

    project_id: UUID
    amount_assigned: Decimal
    percentage: Decimal | None = None
    assignment_type: AssignmentType = AssignmentType.MANUAL

    @field_validator("amount_assigned")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("amount_assigned must be non-negative")
        return v


class InvoiceUpdateRequest(BaseModel):
    """Manual override payload for a supplier invoice."""

    status: str | None = None
    description: str | None = None
    supplier_name: str | None = None
    amount_total: Decimal | None = None
    amount_net: Decimal | None = None
    amount_vat: Decimal | None = None
    invoice_date: date | None = None
    assignments: list[AssignmentInput] | None = None
    user_email: str | None = None
