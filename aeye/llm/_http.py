from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Any, Dict, Optional

from aeye.core.errors import ActionError


def _request(url: str, *, method: str, headers: Dict[str, str], body: Optional[Dict[str, Any]], timeout_s: float) -> Dict[str, Any]:
    data = json.dumps(body).encode("utf-8") if body is not None else None
    req = urllib.request.Request(url, data=data, method=method)
    for k, v in headers.items():
        req.add_header(k, v)

    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:  # noqa: S310
            raw = resp.read().decode("utf-8")
    except urllib.error.HTTPError as e:
        msg = e.read().decode("utf-8", errors="replace") if hasattr(e, "read") else repr(e)
        raise ActionError(code="llm.http_error", message=f"HTTP {e.code} from {url}", data={"status": e.code, "body": msg}) from e
    except (urllib.error.URLError, OSError) as e:
        raise ActionError(code="llm.request_failed", message=f"Request to {url} failed", data={"error": repr(e)}) from e

    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ActionError(code="llm.invalid_json", message="Response was not valid JSON", data={"raw": raw[:1000]}) from e
    if not isinstance(obj, dict):
        raise ActionError(code="llm.invalid_json", message="Response must be a JSON object")
    return obj


def default_http_post(url: str, *, headers: Dict[str, str], body: Dict[str, Any], timeout_s: float) -> Dict[str, Any]:
    return _request(url, method="POST", headers=headers, body=body, timeout_s=timeout_s)


def default_http_get(url: str, *, headers: Dict[str, str], timeout_s: float) -> Dict[str, Any]:
    return _request(url, method="GET", headers=headers, body=None, timeout_s=timeout_s)
