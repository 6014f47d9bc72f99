"""
Response body validation for mirror APIs.

Mirrors frequently answer 200 with a maintenance page, a rate-limit notice or
an HTML error document. Every raw body passes through a ResponseValidator
before it is parsed. The default validator rejects bodies containing any of
the FAILURE_MARKERS substrings; parse_json_payload then drops payloads that
are not JSON containers or that carry an "error" field.
"""

import json
from typing import Any, Iterable, Optional, Protocol, Tuple

# Substrings that mark a body as a failure page. Matched case-insensitively.
FAILURE_MARKERS: Tuple[str, ...] = (
    "shutdown",
    "blocked",
    "forbidden",
    "<!doctype",
    "<html",
    "rate limit",
    "not found",
    "temporarily unavailable",
    "maintenance",
)


class ResponseValidator(Protocol):
    def is_valid(self, text: str) -> bool:
        ...


class SubstringDenylistValidator:
    """Rejects any body containing one of the configured markers."""

    def __init__(self, markers: Iterable[str] = FAILURE_MARKERS):
        self.markers = tuple(m.lower() for m in markers)

    def is_valid(self, text: str) -> bool:
        lowered = text.lower()
        return not any(marker in lowered for marker in self.markers)


class AcceptAllValidator:
    def is_valid(self, text: str) -> bool:
        return True


def parse_json_payload(text: str) -> Optional[Any]:
    """
    Parse a JSON body and apply the structural error check.

    Returns None for malformed JSON, for non-container payloads and for
    objects carrying a truthy "error" field.
    """
    try:
        data = json.loads(text)
    except ValueError:
        return None
    if isinstance(data, dict):
        return None if data.get("error") else data
    if isinstance(data, list):
        return data
    return None


default_validator = SubstringDenylistValidator()
