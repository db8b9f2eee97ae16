from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional


_FENCE_RE = re.compile(r"```(?:[A-Za-z0-9_-]+)?\n(.*?)```", re.DOTALL)


def extract_first_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Best-effort extraction of the first JSON object from a text response.

    Model APIs return a text blob even when instructed to output JSON only.
    """
    if not isinstance(text, str) or not text:
        return None

    dec = json.JSONDecoder()
    for i, ch in enumerate(text):
        if ch != "{":
            continue
        try:
            obj, _end = dec.raw_decode(text[i:])
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            return obj
    return None


def strip_code_fence(text: str) -> str:
    """
    Return the body of the first fenced block, or the text itself when there is none.
    """
    m = _FENCE_RE.search(text)
    if m:
        return m.group(1)
    return text
