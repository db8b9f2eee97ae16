from __future__ import annotations

import importlib
import inspect
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from aeye.core.errors import ValidationError


class ModelProvider(Protocol):
    @property
    def model(self) -> str: ...

    def complete(self, *, system_prompt: str, input_text: str) -> str: ...


@dataclass(frozen=True)
class LoadedProvider:
    provider: ModelProvider
    provider_id: str
    model: str


def _import_object(spec: str) -> Any:
    """
    Import by "module:attr" spec.
    """
    if ":" not in spec:
        raise ValidationError(code="llm.provider_invalid", message="provider spec must be a built-in id or 'module:object'", data={"provider": spec})
    mod_name, attr = spec.split(":", 1)
    if not mod_name or not attr:
        raise ValidationError(code="llm.provider_invalid", message="provider spec must be 'module:object'", data={"provider": spec})
    try:
        mod = importlib.import_module(mod_name)
    except Exception as e:  # noqa: BLE001
        raise ValidationError(code="llm.provider_not_found", message="Failed to import provider module", data={"module": mod_name}) from e
    if not hasattr(mod, attr):
        raise ValidationError(code="llm.provider_not_found", message="Provider object not found in module", data={"module": mod_name, "attr": attr})
    return getattr(mod, attr)


def _build_with_compatible_kwargs(obj: Any, kwargs: Dict[str, Any]) -> Any:
    """
    Instantiate a class or call a factory with only accepted kwargs.
    """
    try:
        sig = inspect.signature(obj)
    except (TypeError, ValueError):
        return obj(**kwargs)

    accepted = {}
    for name, p in sig.parameters.items():
        if name == "self":
            continue
        if p.kind == inspect.Parameter.VAR_KEYWORD:
            accepted = dict(kwargs)
            break
        if name in kwargs:
            accepted[name] = kwargs[name]
    return obj(**accepted)


def load_model_provider(
    *,
    provider: str,
    model: str,
    api_base: Optional[str] = None,
    api_key_env: Optional[str] = None,
) -> LoadedProvider:
    """
    Built-in provider IDs ("openai.responses", "anthropic.messages") or an
    external provider via "module:Class" / "module:factory".

    The returned object must have a callable complete(system_prompt=..., input_text=...).
    """
    if not isinstance(provider, str) or not provider:
        raise ValidationError(code="llm.provider_invalid", message="provider must be a non-empty string")
    if not isinstance(model, str) or not model:
        raise ValidationError(code="llm.invalid", message="model must be a non-empty string")

    if provider in ("openai.responses", "openai"):
        from .openai_responses import OpenAIResponsesConfig, OpenAIResponsesProvider

        base = OpenAIResponsesConfig()
        cfg = OpenAIResponsesConfig(
            api_base=api_base or base.api_base,
            api_key_env=api_key_env or base.api_key_env,
            timeout_s=base.timeout_s,
        )
        return LoadedProvider(provider=OpenAIResponsesProvider(model=model, config=cfg), provider_id="openai.responses", model=model)

    if provider in ("anthropic.messages", "anthropic"):
        from .anthropic_messages import AnthropicMessagesConfig, AnthropicMessagesProvider

        base_a = AnthropicMessagesConfig()
        cfg_a = AnthropicMessagesConfig(
            api_base=api_base or base_a.api_base,
            api_key_env=api_key_env or base_a.api_key_env,
            timeout_s=base_a.timeout_s,
        )
        return LoadedProvider(provider=AnthropicMessagesProvider(model=model, config=cfg_a), provider_id="anthropic.messages", model=model)

    # Dynamic provider: "module:Class" or "module:factory"
    obj = _import_object(provider)
    kwargs: Dict[str, Any] = {"model": model, "api_base": api_base, "api_key_env": api_key_env}
    try:
        inst = _build_with_compatible_kwargs(obj, kwargs) if callable(obj) else obj
    except TypeError as e:
        raise ValidationError(code="llm.provider_invalid", message="Provider could not be constructed with given arguments", data={"provider": provider}) from e

    if not callable(getattr(inst, "complete", None)):
        raise ValidationError(code="llm.provider_invalid", message="Provider must have a callable complete() method", data={"provider": provider})

    return LoadedProvider(provider=inst, provider_id=provider, model=model)
