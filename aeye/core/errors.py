from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class AEyeError(Exception):
    code: str
    message: str
    data: dict[str, Any] | None = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(AEyeError):
    pass


class PolicyDenied(AEyeError):
    pass


class RecipeError(AEyeError):
    pass


class ActionError(AEyeError):
    pass


class ResourceError(AEyeError):
    pass


class StepFailed(AEyeError):
    """
    Raised by the workflow engine when a step fails; the original error is chained as __cause__.
    """
