from .cache import TTLCache
from .provider_loading import LoadedProvider, ModelProvider, load_model_provider
from .session import ModelSession, ModelSessionFactory

__all__ = [
  "LoadedProvider",
  "ModelProvider",
  "ModelSession",
  "ModelSessionFactory",
  "TTLCache",
  "load_model_provider",
]
