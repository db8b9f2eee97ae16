from __future__ import annotations

import fnmatch
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .config import AEyeConfig
from .errors import PolicyDenied
from .scope import is_within_root, resolve_path


logger = logging.getLogger(__name__)

TIER_NAMES = {
    0: "Tier 0 (Explain-Only)",
    1: "Tier 1 (Plan & Diff)",
}


def tier_name(tier: int) -> str:
    return TIER_NAMES.get(tier, "Tier 2+ (Supervised Execution)")


@dataclass(frozen=True)
class PolicyResult:
    decision: str  # allow|deny
    reason_codes: List[str]
    summary: Optional[str] = None
    rule: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.decision == "allow"


class PolicyEngine:
    """
    Single source of truth for "is this mutation/execution allowed right now".

    Enforced rules:
    - writes must stay inside the repository root (when one is known)
    - deny_globs always win over write_allowlist
    - an empty write_allowlist allows every path that is not denied
    - shell commands matching any shell_deny_patterns regex are rejected
    - an action requiring tier T runs only when the effective tier >= T
    """

    def __init__(self, config: AEyeConfig, repo_root: Optional[Path] = None, *, tier_override: Optional[int] = None):
        self._config = config
        self._repo_root = resolve_path(repo_root, None) if repo_root is not None else None
        self._tier = tier_override if tier_override is not None else config.default_tier

    @property
    def config(self) -> AEyeConfig:
        return self._config

    @property
    def repo_root(self) -> Optional[Path]:
        return self._repo_root

    def current_tier(self) -> int:
        return self._tier

    def evaluate_write(self, path: str | Path) -> PolicyResult:
        resolved = resolve_path(path, self._repo_root)
        if self._repo_root is not None and not is_within_root(resolved, self._repo_root):
            return PolicyResult(
                decision="deny",
                reason_codes=["write.outside_repo"],
                summary=f"Path is outside the repository root: {resolved}",
            )

        path_str = str(resolved)
        for glob in self._config.deny_globs:
            if fnmatch.fnmatchcase(path_str, glob):
                return PolicyResult(
                    decision="deny",
                    reason_codes=["write.deny_glob"],
                    summary=f"Path matches deny_globs entry '{glob}': {path_str}",
                    rule=glob,
                )

        if not self._config.write_allowlist:
            return PolicyResult(decision="allow", reason_codes=["write.no_allowlist"], summary="No write_allowlist configured")

        for glob in self._config.write_allowlist:
            if fnmatch.fnmatchcase(path_str, glob):
                return PolicyResult(
                    decision="allow",
                    reason_codes=["write.allowlisted"],
                    summary=f"Path matches write_allowlist entry '{glob}'",
                    rule=glob,
                )

        return PolicyResult(
            decision="deny",
            reason_codes=["write.not_allowlisted"],
            summary=f"Path is not in the write_allowlist: {path_str}",
        )

    def evaluate_shell(self, command: str) -> PolicyResult:
        for pattern in self._config.shell_deny_patterns:
            try:
                regex = re.compile(pattern)
            except re.error:
                logger.warning("Skipping malformed shell_deny_patterns entry: %r", pattern)
                continue
            if regex.search(command):
                return PolicyResult(
                    decision="deny",
                    reason_codes=["shell.denied"],
                    summary=f"Command matches shell_deny_patterns entry '{pattern}': {command}",
                    rule=pattern,
                )
        return PolicyResult(decision="allow", reason_codes=["shell.ok"], summary="No shell_deny_patterns matched")

    def evaluate_tier(self, required_tier: int) -> PolicyResult:
        if self._tier >= required_tier:
            return PolicyResult(decision="allow", reason_codes=["tier.ok"], summary=f"Tier {self._tier} >= {required_tier}")
        return PolicyResult(
            decision="deny",
            reason_codes=["tier.insufficient"],
            summary=f"Requires Tier {required_tier} or higher; current tier is {self._tier}",
            rule=f"tier >= {required_tier}",
        )

    def check_write(self, path: str | Path) -> bool:
        return self.evaluate_write(path).allowed

    def check_shell(self, command: str) -> bool:
        return self.evaluate_shell(command).allowed

    def check_tier(self, required_tier: int) -> bool:
        return self.evaluate_tier(required_tier).allowed

    def require_allow(self, result: PolicyResult) -> None:
        if not result.allowed:
            raise PolicyDenied(
                code="policy.denied",
                message=result.summary or "Denied by policy",
                data={"reasons": result.reason_codes, "rule": result.rule},
            )

    def require_write(self, path: str | Path) -> None:
        self.require_allow(self.evaluate_write(path))

    def require_shell(self, command: str) -> None:
        self.require_allow(self.evaluate_shell(command))

    def require_tier(self, required_tier: int) -> None:
        self.require_allow(self.evaluate_tier(required_tier))
