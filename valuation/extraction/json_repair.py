"""
Best-effort recovery of a JSON object from a model reply.

Models wrap JSON in prose or code fences often enough that a direct
``json.loads`` is only the first attempt; after that the largest
brace-delimited substring that parses wins.
"""

import json
import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _loads_object(text: str) -> Optional[dict]:
    try:
        obj = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return obj if isinstance(obj, dict) else None


def parse_json_object(response: Optional[str]) -> Optional[dict]:
    """Return the JSON object in *response*, or None if there isn't one."""
    if not response or not response.strip():
        return None

    text = _FENCE_RE.sub("", response.strip())
    obj = _loads_object(text)
    if obj is not None:
        return obj

    # Widest span first: first "{" to last "}", then shrink from either end.
    start = text.find("{")
    while start != -1:
        end = text.rfind("}")
        while end > start:
            obj = _loads_object(text[start : end + 1])
            if obj is not None:
                logger.debug("Recovered JSON object from characters %d–%d of reply", start, end)
                return obj
            end = text.rfind("}", start, end)
        start = text.find("{", start + 1)

    return None
