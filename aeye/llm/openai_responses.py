from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from aeye.core.errors import ActionError, ValidationError

from ._http import default_http_get, default_http_post


@dataclass(frozen=True)
class OpenAIResponsesConfig:
    api_base: str = "https://api.openai.com"
    api_key_env: str = "OPENAI_API_KEY"
    timeout_s: float = 60.0


class OpenAIResponsesProvider:
    """
    Text completion over the OpenAI Responses API (urllib only).
    """

    def __init__(
        self,
        *,
        model: str,
        config: Optional[OpenAIResponsesConfig] = None,
        http_post: Optional[Callable[..., Dict[str, Any]]] = None,
        http_get: Optional[Callable[..., Dict[str, Any]]] = None,
    ) -> None:
        self._model = model
        self._config = config or OpenAIResponsesConfig()
        self._http_post = http_post or default_http_post
        self._http_get = http_get or default_http_get

    @property
    def model(self) -> str:
        return self._model

    def _headers(self) -> Dict[str, str]:
        key = os.environ.get(self._config.api_key_env)
        if not isinstance(key, str) or not key:
            raise ValidationError(code="llm.missing_api_key", message=f"Missing OpenAI API key (env: {self._config.api_key_env})")
        return {"Authorization": f"Bearer {key}", "Content-Type": "application/json"}

    def model_info(self) -> Dict[str, Any]:
        url = self._config.api_base.rstrip("/") + "/v1/models/" + self._model
        obj = self._http_get(url, headers=self._headers(), timeout_s=self._config.timeout_s)
        return {"slug": obj.get("id", self._model), "owned_by": obj.get("owned_by"), "provider": "openai.responses"}

    def complete(self, *, system_prompt: str, input_text: str) -> str:
        if not isinstance(input_text, str) or not input_text.strip():
            raise ValidationError(code="llm.invalid", message="input_text must be a non-empty string")

        url = self._config.api_base.rstrip("/") + "/v1/responses"
        body: Dict[str, Any] = {"model": self._model, "instructions": system_prompt, "input": input_text}
        resp = self._http_post(url, headers=self._headers(), body=body, timeout_s=self._config.timeout_s)

        # Some responses carry a convenience field; otherwise walk output[].content[].
        text = resp.get("output_text")
        if isinstance(text, str) and text:
            return text
        parts = []
        out = resp.get("output")
        if isinstance(out, list):
            for item in out:
                if not isinstance(item, dict) or not isinstance(item.get("content"), list):
                    continue
                for c in item["content"]:
                    if isinstance(c, dict) and isinstance(c.get("text"), str):
                        parts.append(c["text"])
        if parts:
            return "".join(parts)
        raise ActionError(
            code="llm.invalid_response",
            message="Could not extract text from OpenAI response",
            data={"keys": list(resp.keys())},
        )
