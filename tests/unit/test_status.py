"""Tests for the supplier invoice status machine."""

from __future__ import annotations

import pytest

from finsync.errors import IllegalStatusTransition
from finsync.invoices.status import (
    InvoiceStatus,
    can_transition,
    is_terminal_for_pipeline,
    parse_status,
    transition,
)

S = InvoiceStatus
CLASSIFIED = [S.ASSIGNED, S.MEDIUM_CONFIDENCE, S.LOW_CONFIDENCE, S.NO_MATCH]


@pytest.mark.parametrize("source", [S.PENDING_ASSIGNMENT, S.MEDIUM_CONFIDENCE, S.LOW_CONFIDENCE, S.NO_MATCH])
@pytest.mark.parametrize("target", CLASSIFIED)
def test_pipeline_may_classify_unassigned_invoices(source, target):
    assert transition(source, target) is target


@pytest.mark.parametrize("source", [S.ASSIGNED, S.NON_PROJECT])
@pytest.mark.parametrize("target", list(InvoiceStatus))
def test_pipeline_never_moves_assigned_or_non_project(source, target):
    with pytest.raises(IllegalStatusTransition):
        transition(source, target)


def test_pipeline_cannot_return_to_pending():
    assert not can_transition(S.LOW_CONFIDENCE, S.PENDING_ASSIGNMENT)
    assert not can_transition(S.PENDING_ASSIGNMENT, S.NON_PROJECT)


@pytest.mark.parametrize("source", [s for s in InvoiceStatus if s is not S.ASSIGNED])
def test_manual_from_unassigned(source):
    assert can_transition(source, S.ASSIGNED, manual=True)
    assert can_transition(source, S.NON_PROJECT, manual=True)
    assert not can_transition(source, S.MEDIUM_CONFIDENCE, manual=True)


def test_manual_unassignment_is_explicit():
    assert transition(S.ASSIGNED, S.PENDING_ASSIGNMENT, manual=True) is S.PENDING_ASSIGNMENT
    assert transition(S.ASSIGNED, S.NON_PROJECT, manual=True) is S.NON_PROJECT
    assert transition(S.ASSIGNED, S.ASSIGNED, manual=True) is S.ASSIGNED

    with pytest.raises(IllegalStatusTransition) as excinfo:
        transition(S.ASSIGNED, S.PENDING_ASSIGNMENT)
    assert "automatic" in str(excinfo.value)
    assert "assigned -> pending-assignment" in str(excinfo.value)


def test_manual_cannot_jump_to_pipeline_outcomes():
    with pytest.raises(IllegalStatusTransition, match="manual"):
        transition(S.ASSIGNED, S.LOW_CONFIDENCE, manual=True)


def test_strings_are_accepted_and_validated():
    assert transition("pending-assignment", "no-match") is S.NO_MATCH

    with pytest.raises(ValueError, match="Unknown invoice status"):
        parse_status("archived")


def test_terminal_for_pipeline():
    assert is_terminal_for_pipeline("assigned")
    assert is_terminal_for_pipeline(S.NON_PROJECT)
    assert not is_terminal_for_pipeline("low-confidence")
