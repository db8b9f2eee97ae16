from .config import AEyeConfig, ModelSettings, load_config
from .errors import AEyeError, ActionError, PolicyDenied, RecipeError, ResourceError, StepFailed, ValidationError
from .policy_engine import PolicyEngine, PolicyResult
from .recipe import ActionKind, Recipe, Step, load_recipe

__all__ = [
  "AEyeConfig",
  "ModelSettings",
  "load_config",
  "AEyeError",
  "ActionError",
  "PolicyDenied",
  "RecipeError",
  "ResourceError",
  "StepFailed",
  "ValidationError",
  "PolicyEngine",
  "PolicyResult",
  "ActionKind",
  "Recipe",
  "Step",
  "load_recipe",
]
