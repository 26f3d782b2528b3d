"""Overall confidence score for a classified invoice.

The score is a weighted composite of extraction quality and the best
match. It is distinct from (and can diverge from) the best match's own
confidence, which is what the assignment policy decides on.
"""

from __future__ import annotations

from finsync.config import ConfidenceWeights
from finsync.models import InvoiceDetails, ProjectMatch


class ConfidenceBreakdown:
    """Result of confidence calculation."""

    def __init__(self, score: int, details: dict[str, float] | None = None) -> None:
        self.score = max(0, min(100, score))  # Clamp to 0-100
        self.details = details or {}

    def __repr__(self) -> str:
        return f"ConfidenceBreakdown(score={self.score}, details={self.details})"


class OverallConfidenceCalculator:
    """Score how much a classification can be trusted as a whole."""

    def __init__(self, weights: ConfidenceWeights | None = None) -> None:
        self.weights = weights or ConfidenceWeights()

    def calculate(
        self,
        extracted_text: str,
        invoice_details: InvoiceDetails,
        project_matches: list[ProjectMatch],
    ) -> ConfidenceBreakdown:
        """Compute the composite score with a per-term breakdown.

        Terms:
        - extracted text longer than ``min_text_length``
        - each populated invoice field (supplier name, amount, date, description)
        - best match confidence scaled by ``best_match_factor``, capped
        - a bonus per match when there is more than one, capped
        """
        w = self.weights
        details: dict[str, float] = {}

        if extracted_text and len(extracted_text) > w.min_text_length:
            details["text_extracted"] = w.text_extracted

        populated = invoice_details.populated()
        for name, points in (
            ("supplier_name", w.supplier_name),
            ("amount", w.amount),
            ("date", w.date),
            ("description", w.description),
        ):
            if populated[name]:
                details[name] = points

        if project_matches:
            best = max(m.confidence for m in project_matches)
            details["best_match"] = min(w.best_match_cap, best * w.best_match_factor)
            if len(project_matches) > 1:
                details["multiple_matches"] = min(
                    w.multi_match_cap, len(project_matches) * w.per_match_bonus
                )

        total = sum(details.values())
        return ConfidenceBreakdown(score=round(min(100.0, total)), details=details)

    def score(
        self,
        extracted_text: str,
        invoice_details: InvoiceDetails,
        project_matches: list[ProjectMatch],
    ) -> int:
        return self.calculate(extracted_text, invoice_details, project_matches).score
