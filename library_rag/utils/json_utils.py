"""Helpers for pulling JSON out of free-form language-model replies."""

import json
import re
from typing import Any, Optional

from ..core.exceptions import ValidationError

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_OPENER_RE = re.compile(r"[\[{]")
_DECODER = json.JSONDecoder()
MAX_OPENERS = 32


def _first_balanced(text: str) -> Optional[Any]:
    """Decode the first balanced ``{...}`` or ``[...]`` value in *text*.

    Each opening bracket is tried in order, as written and then with trailing
    commas removed; text after the decoded value is ignored.
    """
    for i, match in enumerate(_OPENER_RE.finditer(text)):
        if i >= MAX_OPENERS:
            break
        tail = text[match.start() :]
        for attempt in (tail, _TRAILING_COMMA_RE.sub(r"\1", tail)):
            try:
                value, _ = _DECODER.raw_decode(attempt)
            except ValueError:
                continue
            return value
    return None


def extract_json_payload(text: Any) -> Any:
    """Parse a JSON object or array from a possibly noisy model reply.

    Handles:
    - Markdown code fences (```json ... ```)
    - Commentary before or after the JSON block
    - Smart quotes and trailing commas before } or ]

    Raises:
        ValidationError: when nothing parseable is found.
    """
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("empty model reply")

    s = text.strip()
    try:
        return json.loads(s)
    except ValueError:
        pass

    fenced = _FENCE_RE.search(s)
    if fenced:
        s = fenced.group(1).strip()

    if not _OPENER_RE.search(s):
        raise ValidationError("no JSON block in model reply")

    s = s.replace("“", '"').replace("”", '"').replace("‘", "'").replace("’", "'")
    value = _first_balanced(s)
    if value is None:
        raise ValidationError("malformed JSON in model reply")
    return value


def serialized_length(value: Any) -> int:
    """Character length of *value* as compact JSON."""
    return len(json.dumps(value, default=str, separators=(",", ":"), ensure_ascii=False))
