"""Pure mappings from Qonto records and ClickUp folders to local column values.

Every function here is deterministic given the record and the sync
timestamp; no I/O happens until the reconciler writes the result.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from finsync.invoices.status import InvoiceStatus
from finsync.pipeline.types import MappedRecord

DEFAULT_CURRENCY = "EUR"


def parse_amount(value: Any) -> Decimal:
    """Read a Qonto money value (``{"value": "12.50", "currency": "EUR"}`` or bare)."""
    if isinstance(value, dict):
        value = value.get("value")
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def parse_optional_decimal(value: Any) -> Decimal | None:
    if isinstance(value, dict):
        value = value.get("value")
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def parse_date(value: Any) -> date | None:
    """Accept ``YYYY-MM-DD`` or a full ISO timestamp."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value)
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def _currency(record: dict[str, Any]) -> str:
    total = record.get("total_amount")
    if isinstance(total, dict) and total.get("currency"):
        return total["currency"]
    return record.get("currency") or DEFAULT_CURRENCY


def _address(value: Any) -> str | None:
    if not value:
        return None
    if isinstance(value, dict):
        parts = [
            value.get("street_address"),
            value.get("zip_code"),
            value.get("city"),
            value.get("country_code"),
        ]
        text = ", ".join(str(p) for p in parts if p)
        return text or None
    return str(value)


def map_client(record: dict[str, Any], synced_at: datetime) -> MappedRecord:
    name = record.get("name") or " ".join(
        p for p in (record.get("first_name"), record.get("last_name")) if p
    )
    return MappedRecord(
        external_id=str(record["id"]),
        fields={
            "name": name or "Unknown client",
            "email": record.get("email") or None,
            "phone": record.get("phone") or None,
            "address": _address(record.get("address") or record.get("billing_address")),
            "vat_number": record.get("vat_number") or None,
            "country": record.get("country") or record.get("country_code") or None,
            "currency": DEFAULT_CURRENCY,
            "is_active": True,
            "last_sync_at": synced_at,
        },
    )


@dataclass
class ClientInvoiceRecord:
    """Mapped client invoice plus what the reconciler must resolve."""

    mapped: MappedRecord
    client_external_id: str | None
    client_name: str | None
    line_items: list[dict[str, Any]] | None = field(default=None)


def map_line_items(invoice_external_id: str, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    lines = []
    for index, item in enumerate(items):
        description = f"{item.get('title') or ''} {item.get('description') or ''}".strip()
        lines.append(
            {
                "external_line_id": f"{invoice_external_id}_item_{index}",
                "description": description or None,
                "quantity": parse_optional_decimal(item.get("quantity")) or Decimal("1"),
                "unit_price": parse_amount(item.get("unit_price")),
                "total_amount": parse_amount(item.get("total_amount")),
                "vat_rate": parse_amount(item.get("vat_rate")),
                "vat_amount": parse_amount(item.get("total_vat")),
            }
        )
    return lines


def map_client_invoice(record: dict[str, Any], synced_at: datetime) -> ClientInvoiceRecord:
    external_id = str(record["id"])
    total = parse_amount(record.get("total_amount"))
    vat = parse_amount(record.get("vat_amount"))
    client = record.get("client") or {}

    items = record.get("items")
    line_items = map_line_items(external_id, items) if isinstance(items, list) else None

    return ClientInvoiceRecord(
        mapped=MappedRecord(
            external_id=external_id,
            fields={
                "invoice_number": record.get("number") or record.get("invoice_number"),
                "amount_total": total,
                "amount_net": total - vat,
                "amount_vat": vat,
                "currency": _currency(record),
                "status": record.get("status"),
                "issue_date": parse_date(record.get("issue_date")),
                "due_date": parse_date(record.get("due_date")),
                "paid_date": parse_date(record.get("paid_at")),
                "description": record.get("description")
                or record.get("terms_and_conditions")
                or None,
                "document_attachment_id": record.get("attachment_id") or None,
                "pdf_url": record.get("invoice_url") or None,
                "last_sync_at": synced_at,
            },
        ),
        client_external_id=str(client["id"]) if client.get("id") else None,
        client_name=client.get("name"),
        line_items=line_items,
    )


def supplier_iban(record: dict[str, Any]) -> str | None:
    snapshot = record.get("supplier_snapshot") or {}
    iban = snapshot.get("iban")
    return iban or None


def map_supplier_invoice(record: dict[str, Any], synced_at: datetime) -> MappedRecord | None:
    """Map a supplier invoice, or return None when the supplier has no IBAN.

    Suppliers without a bank IBAN are general expenses, not project
    partners, and are never persisted.
    """
    iban = supplier_iban(record)
    if iban is None:
        return None

    return MappedRecord(
        external_id=str(record["id"]),
        fields={
            "supplier_name": record.get("supplier_name"),
            "supplier_iban": iban,
            "amount_total": parse_amount(record.get("total_amount")),
            "amount_net": parse_amount(record.get("payable_amount")),
            "amount_vat": parse_amount(record.get("total_amount_credit_notes")),
            "currency": _currency(record),
            "invoice_date": parse_date(record.get("issue_date")),
            "description": record.get("description") or record.get("invoice_number") or None,
            "document_attachment_id": record.get("attachment_id") or None,
            "pdf_url": record.get("pdf_url") or None,
            "last_sync_at": synced_at,
        },
        insert_only={
            "status": InvoiceStatus.PENDING_ASSIGNMENT.value,
            "is_processed": False,
        },
    )


_CLIENT_DASH = re.compile(r"^([^-]+)\s*-\s*(.+)$")
_CLIENT_BRACKET = re.compile(r"^\[([^\]]+)\]\s*(.+)$")
_CLIENT_FOR = re.compile(r".*\s+for\s+(.+)$", re.IGNORECASE)


def extract_client_name(folder_name: str) -> str | None:
    """Guess the client from a project folder name.

    Tries ``"Client - Project"``, ``"[Client] Project"`` and
    ``"Project for Client"`` in that order, then falls back to the first word
    of a multi-word name.
    """
    for pattern in (_CLIENT_DASH, _CLIENT_BRACKET):
        match = pattern.match(folder_name)
        if match:
            return match.group(1).strip()
    match = _CLIENT_FOR.match(folder_name)
    if match:
        return match.group(1).strip()

    words = folder_name.split()
    if len(words) > 1:
        return words[0]
    return None


def map_project(folder: dict[str, Any], synced_at: datetime) -> MappedRecord | None:
    """Map a ClickUp folder to a project, or None for hidden and unnamed folders."""
    name = (folder.get("name") or "").strip()
    if folder.get("hidden") or not name:
        return None

    return MappedRecord(
        external_id=str(folder["id"]),
        fields={
            "name": name,
            "description": f"ClickUp project folder: {name}",
            "client_name": extract_client_name(name),
            "last_sync_at": synced_at,
        },
        # Local status changes (on-hold, cancelled) survive a resync
        insert_only={"status": "active"},
    )
