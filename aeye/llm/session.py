from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from aeye.core.config import ModelSettings
from aeye.core.errors import ActionError, AEyeError, ValidationError

from .cache import TTLCache
from .provider_loading import ModelProvider, load_model_provider

if TYPE_CHECKING:
    from aeye.runs.run_store import Run


logger = logging.getLogger(__name__)

MAX_RETRIES = 2


class ModelSession:
    """
    One operation's conversation with the model provider.

    A failed call is retried up to `max_retries` times, sleeping `1 + attempt`
    seconds in between. Every failed attempt is logged to the run's `logs/`
    directory as `<op>_llm_error_<attempt>.log`.
    """

    def __init__(
        self,
        provider: ModelProvider,
        *,
        op_name: str,
        model_info: Dict[str, Any],
        run: Optional["Run"] = None,
        max_retries: int = MAX_RETRIES,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._provider = provider
        self._op_name = op_name
        self._model_info = dict(model_info)
        self._run = run
        self._max_retries = max_retries
        self._sleep = sleep

    @property
    def op_name(self) -> str:
        return self._op_name

    @property
    def model(self) -> str:
        return self._provider.model

    @property
    def model_info(self) -> Dict[str, Any]:
        return dict(self._model_info)

    def complete(self, *, system_prompt: str, input_text: str) -> str:
        for attempt in range(self._max_retries + 1):
            try:
                text = self._provider.complete(system_prompt=system_prompt, input_text=input_text)
            except ValidationError:
                # Config and input errors are final.
                raise
            except Exception as e:  # noqa: BLE001
                if attempt >= self._max_retries:
                    raise ActionError(
                        code="llm.failed",
                        message=f"LLM call for {self._op_name} failed after {attempt + 1} attempts",
                        data={"op": self._op_name, "error": str(e)},
                    ) from e
                msg = f"LLM call failed on attempt {attempt + 1}. Retrying... Error: {e}"
                logger.warning("%s: %s", self._op_name, msg)
                if self._run is not None:
                    self._run.write_log_file(f"{self._op_name}_llm_error_{attempt}.log", msg)
                self._sleep(1 + attempt)
                continue
            if not isinstance(text, str):
                raise ActionError(
                    code="llm.invalid_response",
                    message="Provider returned a non-text completion",
                    data={"op": self._op_name, "type": type(text).__name__},
                )
            return text
        raise AssertionError("unreachable")


class ModelSessionFactory:
    """
    Builds per-operation sessions around one provider.

    Model metadata is fetched through a TTLCache so repeated sessions within the
    TTL (and concurrent first requests) cost a single lookup.
    """

    def __init__(
        self,
        provider: ModelProvider,
        *,
        provider_id: str,
        cache: TTLCache,
        max_retries: int = MAX_RETRIES,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._provider = provider
        self._provider_id = provider_id
        self._cache = cache
        self._max_retries = max_retries
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: ModelSettings, *, cache: Optional[TTLCache] = None) -> "ModelSessionFactory":
        loaded = load_model_provider(
            provider=settings.provider,
            model=settings.name,
            api_base=settings.api_base,
            api_key_env=settings.api_key_env,
        )
        return cls(loaded.provider, provider_id=loaded.provider_id, cache=cache or TTLCache(settings.info_ttl_s))

    @property
    def provider_id(self) -> str:
        return self._provider_id

    @property
    def model(self) -> str:
        return self._provider.model

    def _load_model_info(self) -> Dict[str, Any]:
        fetch = getattr(self._provider, "model_info", None)
        if callable(fetch):
            try:
                info = fetch()
            except AEyeError as e:
                logger.warning("model info for %s unavailable, using defaults: %s", self._provider.model, e)
            else:
                if isinstance(info, dict):
                    return info
        return {"slug": self._provider.model, "provider": self._provider_id}

    def model_info(self) -> Dict[str, Any]:
        return self._cache.get_or_load(f"{self._provider_id}:{self._provider.model}", self._load_model_info)

    def new_session(self, op_name: str, run: Optional["Run"] = None) -> ModelSession:
        return ModelSession(
            self._provider,
            op_name=op_name,
            model_info=self.model_info(),
            run=run,
            max_retries=self._max_retries,
            sleep=self._sleep,
        )
