from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from aeye.contract_store import core_contracts

from .errors import ValidationError


CONFIG_FILENAME = "a-eye.yaml"
NLPG_DIR = ".nlpg"


@dataclass(frozen=True)
class ModelSettings:
    provider: str = "openai.responses"
    name: str = "gpt-4o-mini"
    api_base: Optional[str] = None
    api_key_env: Optional[str] = None
    info_ttl_s: float = 3600.0


@dataclass(frozen=True)
class AEyeConfig:
    """
    Process-wide policy configuration, loaded once per invocation.

    Lists are stored as tuples so nothing can alter policy mid-run.
    """

    deny_globs: Tuple[str, ...] = ()
    write_allowlist: Tuple[str, ...] = ()
    shell_deny_patterns: Tuple[str, ...] = ()
    default_tier: int = 1
    require_branch_for_apply: bool = True
    model: ModelSettings = field(default_factory=ModelSettings)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "AEyeConfig":
        errors = core_contracts().validate("config.schema.json", raw)
        if errors:
            raise ValidationError(code="config.invalid", message="a-eye.yaml failed validation", data={"errors": errors})

        model_raw = raw.get("model") if isinstance(raw.get("model"), dict) else {}
        defaults = ModelSettings()
        model = ModelSettings(
            provider=model_raw.get("provider", defaults.provider),
            name=model_raw.get("name", defaults.name),
            api_base=model_raw.get("api_base"),
            api_key_env=model_raw.get("api_key_env"),
            info_ttl_s=float(model_raw.get("info_ttl_s", defaults.info_ttl_s)),
        )
        return cls(
            deny_globs=tuple(raw.get("deny_globs", [])),
            write_allowlist=tuple(raw.get("write_allowlist", [])),
            shell_deny_patterns=tuple(raw.get("shell_deny_patterns", [])),
            default_tier=int(raw.get("default_tier", 1)),
            require_branch_for_apply=bool(raw.get("require_branch_for_apply", True)),
            model=model,
        )

    def with_model_overrides(self, *, provider: Optional[str] = None, name: Optional[str] = None) -> "AEyeConfig":
        model = self.model
        if provider:
            model = replace(model, provider=provider)
        if name:
            model = replace(model, name=name)
        return replace(self, model=model)


def find_repo_root(start: Optional[Path] = None) -> Optional[Path]:
    """
    Nearest ancestor (including start) that contains a `.git` entry.
    """
    cur = (start or Path.cwd()).resolve()
    for candidate in (cur, *cur.parents):
        if (candidate / ".git").exists():
            return candidate
    return None


def load_config_file(path: Path) -> AEyeConfig:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ValidationError(code="config.invalid_yaml", message=f"Could not parse {path}", data={"error": str(e)}) from e
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValidationError(code="config.invalid", message=f"{path} must contain a mapping")
    return AEyeConfig.from_dict(raw)


def load_config(repo_root: Optional[Path]) -> AEyeConfig:
    """
    Load `a-eye.yaml` from the repository root; defaults when absent or when no repo is known.
    """
    if repo_root is None:
        return AEyeConfig()
    path = repo_root / CONFIG_FILENAME
    if not path.exists():
        return AEyeConfig()
    return load_config_file(path)
