"""Prompt construction for invoice project matching."""

from __future__ import annotations

from collections.abc import Iterable

from finsync.models import ProjectCandidate

RESPONSE_SHAPE = """{
  "extractedText": "full text extracted from the invoice",
  "invoiceDetails": {
    "supplierName": "supplier name",
    "amount": "total amount as number",
    "date": "invoice date",
    "description": "invoice description or items"
  },
  "projectMatches": [
    {
      "projectId": "project_id",
      "projectName": "project name",
      "confidence": 85,
      "matchedKeywords": ["keyword1", "keyword2"],
      "contextSnippets": ["relevant text from invoice"],
      "reasoning": "explanation of why this matches"
    }
  ]
}"""


def format_project_list(projects: Iterable[ProjectCandidate]) -> str:
    lines = [f"- {p.name}: {p.description or 'No description'}" for p in projects]
    return "\n".join(lines) if lines else "- (no projects available)"


def build_analysis_prompt(projects: Iterable[ProjectCandidate]) -> str:
    """Build the single-turn instruction sent alongside the invoice document.

    Example:
        >>> prompt = build_analysis_prompt([ProjectCandidate(id=uuid4(), name="Atlas")])
        >>> "- Atlas: No description" in prompt
        True
    """
    return (
        "Please analyze this invoice PDF and extract key information, "
        "then match it to the most relevant projects from our list.\n\n"
        "Available Projects:\n"
        f"{format_project_list(projects)}\n\n"
        "Please return a JSON response with this exact structure:\n"
        f"{RESPONSE_SHAPE}"
    )
