from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from aeye.llm.session import ModelSessionFactory
from aeye.runs.run_store import Run

from .config import AEyeConfig
from .errors import ValidationError
from .policy_engine import PolicyEngine


ApproveFunc = Callable[[str], bool]


def prompt_for_approval(prompt_text: str) -> bool:
    print(f"{prompt_text} [y/N]: ", end="", flush=True)
    try:
        answer = sys.stdin.readline()
    except (OSError, ValueError):
        return False
    return answer.strip().lower() in ("y", "yes")


def auto_approve(_prompt_text: str) -> bool:
    return True


@dataclass(frozen=True)
class RuntimeContext:
    """
    Everything an action handler may touch during one invocation.

    Hard rules:
    - policy and config are read-only for the whole invocation
    - artifacts go through `run`; nothing is written outside the run or the repository
    """

    repo_root: Path
    run: Run
    policy: PolicyEngine
    sessions: Optional[ModelSessionFactory] = None
    approve: ApproveFunc = prompt_for_approval
    dry_run: bool = False
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def config(self) -> AEyeConfig:
        return self.policy.config

    def require_sessions(self) -> ModelSessionFactory:
        if self.sessions is None:
            raise ValidationError(code="llm.not_configured", message="No model provider is configured for this invocation")
        return self.sessions
