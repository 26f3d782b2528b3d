"""Decode free-text model output into a typed result.

The model is asked for one JSON object but may wrap it in prose or a
markdown code fence. Decoding never raises: anything unusable becomes a
``MalformedResponse`` carrying the raw text.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from pydantic import ValidationError

from finsync.models import ModelResponse

logger = logging.getLogger(__name__)


@dataclass
class ParsedResponse:
    response: ModelResponse
    raw_text: str


@dataclass
class MalformedResponse:
    raw_text: str
    reason: str


DecodedResponse = ParsedResponse | MalformedResponse


def iter_json_objects(text: str):
    """Yield each top-level balanced ``{...}`` span, left to right.

    Braces inside JSON string literals are ignored.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        end = None
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    end = index
                    break
        if end is None:
            start = text.find("{", start + 1)
            continue
        yield text[start : end + 1]
        start = text.find("{", end + 1)


def decode_model_response(text: str) -> DecodedResponse:
    """Parse then validate the first JSON object found in ``text``.

    Match confidences are rounded and clamped to [0, 100] and matches are
    sorted best-first, whatever order the model used.
    """
    if not text or not text.strip():
        return MalformedResponse(raw_text=text or "", reason="empty response")

    reason = "no JSON object found"
    for candidate in iter_json_objects(text):
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as exc:
            reason = f"invalid JSON: {exc.msg}"
            continue
        if not isinstance(data, dict):
            continue
        try:
            response = ModelResponse.model_validate(data)
        except ValidationError as exc:
            reason = f"unexpected response shape: {exc.error_count()} validation errors"
            continue

        response.project_matches.sort(key=lambda m: m.confidence, reverse=True)
        logger.info("Decoded model response with %d project matches", len(response.project_matches))
        return ParsedResponse(response=response, raw_text=text)

    logger.warning("Falling back to raw text for model response: %s", reason)
    return MalformedResponse(raw_text=text, reason=reason)
