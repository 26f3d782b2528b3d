"""Supplier invoice status machine.

Every status mutation goes through ``transition()``, which checks the move
against the automatic (pipeline) or manual (user) transition table.
"""

from __future__ import annotations

from enum import Enum

from finsync.errors import IllegalStatusTransition


class InvoiceStatus(str, Enum):
    """Lifecycle of a supplier invoice."""

    PENDING_ASSIGNMENT = "pending-assignment"
    ASSIGNED = "assigned"
    MEDIUM_CONFIDENCE = "medium-confidence"
    LOW_CONFIDENCE = "low-confidence"
    NO_MATCH = "no-match"
    NON_PROJECT = "non-project"  # excluded from margin calculations


CLASSIFIED_OUTCOMES = frozenset(
    {
        InvoiceStatus.ASSIGNED,
        InvoiceStatus.MEDIUM_CONFIDENCE,
        InvoiceStatus.LOW_CONFIDENCE,
        InvoiceStatus.NO_MATCH,
    }
)

# States the pipeline never moves out of on its own
TERMINAL_FOR_PIPELINE = frozenset({InvoiceStatus.ASSIGNED, InvoiceStatus.NON_PROJECT})

AUTOMATIC_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.PENDING_ASSIGNMENT: CLASSIFIED_OUTCOMES,
    InvoiceStatus.MEDIUM_CONFIDENCE: CLASSIFIED_OUTCOMES,
    InvoiceStatus.LOW_CONFIDENCE: CLASSIFIED_OUTCOMES,
    InvoiceStatus.NO_MATCH: CLASSIFIED_OUTCOMES,
    InvoiceStatus.ASSIGNED: frozenset(),
    InvoiceStatus.NON_PROJECT: frozenset(),
}

_MANUAL_FROM_UNASSIGNED = frozenset({InvoiceStatus.ASSIGNED, InvoiceStatus.NON_PROJECT})

MANUAL_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    status: _MANUAL_FROM_UNASSIGNED for status in InvoiceStatus
}
MANUAL_TRANSITIONS[InvoiceStatus.ASSIGNED] = frozenset(
    {InvoiceStatus.NON_PROJECT, InvoiceStatus.PENDING_ASSIGNMENT, InvoiceStatus.ASSIGNED}
)


def parse_status(value: str | InvoiceStatus) -> InvoiceStatus:
    """Coerce a stored or submitted string to an InvoiceStatus.

    Raises:
        ValueError: If the value is not a known status
    """
    if isinstance(value, InvoiceStatus):
        return value
    try:
        return InvoiceStatus(value)
    except ValueError:
        raise ValueError(f"Unknown invoice status: {value!r}") from None


def can_transition(
    current: str | InvoiceStatus, target: str | InvoiceStatus, *, manual: bool = False
) -> bool:
    table = MANUAL_TRANSITIONS if manual else AUTOMATIC_TRANSITIONS
    return parse_status(target) in table[parse_status(current)]


def transition(
    current: str | InvoiceStatus, target: str | InvoiceStatus, *, manual: bool = False
) -> InvoiceStatus:
    """Validate a status change and return the new status.

    Raises:
        IllegalStatusTransition: If the table does not allow the move
    """
    current_status = parse_status(current)
    target_status = parse_status(target)
    if not can_transition(current_status, target_status, manual=manual):
        raise IllegalStatusTransition(current_status.value, target_status.value, manual)
    return target_status


def is_terminal_for_pipeline(status: str | InvoiceStatus) -> bool:
    return parse_status(status) in TERMINAL_FOR_PIPELINE
