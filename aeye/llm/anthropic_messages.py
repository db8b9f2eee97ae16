from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from aeye.core.errors import ActionError, ValidationError

from ._http import default_http_get, default_http_post


@dataclass(frozen=True)
class AnthropicMessagesConfig:
    api_base: str = "https://api.anthropic.com"
    api_key_env: str = "ANTHROPIC_API_KEY"
    timeout_s: float = 60.0
    anthropic_version: str = "2023-06-01"
    max_tokens: int = 4096


class AnthropicMessagesProvider:
    """
    Minimal Anthropic Messages API provider (no extra dependency).
    """

    def __init__(
        self,
        *,
        model: str,
        config: Optional[AnthropicMessagesConfig] = None,
        http_post: Optional[Callable[..., Dict[str, Any]]] = None,
        http_get: Optional[Callable[..., Dict[str, Any]]] = None,
    ) -> None:
        self._model = model
        self._config = config or AnthropicMessagesConfig()
        self._http_post = http_post or default_http_post
        self._http_get = http_get or default_http_get

    @property
    def model(self) -> str:
        return self._model

    def _headers(self) -> Dict[str, str]:
        key = os.environ.get(self._config.api_key_env)
        if not isinstance(key, str) or not key:
            raise ValidationError(code="llm.missing_api_key", message=f"Missing Anthropic API key (env: {self._config.api_key_env})")
        return {
            "x-api-key": key,
            "anthropic-version": self._config.anthropic_version,
            "content-type": "application/json",
        }

    def model_info(self) -> Dict[str, Any]:
        url = self._config.api_base.rstrip("/") + "/v1/models/" + self._model
        obj = self._http_get(url, headers=self._headers(), timeout_s=self._config.timeout_s)
        return {"slug": obj.get("id", self._model), "display_name": obj.get("display_name"), "provider": "anthropic.messages"}

    def complete(self, *, system_prompt: str, input_text: str) -> str:
        if not isinstance(input_text, str) or not input_text.strip():
            raise ValidationError(code="llm.invalid", message="input_text must be a non-empty string")

        url = self._config.api_base.rstrip("/") + "/v1/messages"
        body: Dict[str, Any] = {
            "model": self._model,
            "max_tokens": int(self._config.max_tokens),
            "system": system_prompt,
            "messages": [{"role": "user", "content": input_text}],
        }
        resp = self._http_post(url, headers=self._headers(), body=body, timeout_s=self._config.timeout_s)

        content = resp.get("content")
        if isinstance(content, list):
            parts = [c.get("text") for c in content if isinstance(c, dict) and isinstance(c.get("text"), str)]
            if parts:
                return "".join(parts)
        raise ActionError(
            code="llm.invalid_response",
            message="Could not extract text from Anthropic response",
            data={"keys": list(resp.keys())},
        )
