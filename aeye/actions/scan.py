from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Optional

from aeye.core.config import NLPG_DIR
from aeye.core.errors import ResourceError
from aeye.core.runtime_context import RuntimeContext
from aeye.scanner import Scanner, SystemProfile


SYSTEM_PROFILE_ARTIFACT = "system.json"


def repo_profile_path(repo_root: Path) -> Path:
    return repo_root / NLPG_DIR / SYSTEM_PROFILE_ARTIFACT


def save_repo_profile(repo_root: Path, profile: SystemProfile) -> Path:
    p = repo_profile_path(repo_root)
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(profile.to_dict(), indent=2) + "\n", encoding="utf-8")
    except OSError as e:
        raise ResourceError(code="system.write_failed", message=f"Failed to write to {p}", data={"path": str(p)}) from e
    return p


def load_profile(ctx: RuntimeContext) -> Optional[SystemProfile]:
    """
    The run's own profile if present, else the repository's last scan.
    """
    if ctx.run.has_artifact(SYSTEM_PROFILE_ARTIFACT):
        return SystemProfile.from_json(ctx.run.read_artifact(SYSTEM_PROFILE_ARTIFACT))
    p = repo_profile_path(ctx.repo_root)
    if p.is_file():
        return SystemProfile.from_json(p.read_text(encoding="utf-8"))
    return None


def ensure_profile(ctx: RuntimeContext) -> SystemProfile:
    """
    Make sure the run carries a system.json, scanning only when nothing is on disk yet.
    """
    profile = load_profile(ctx)
    if profile is None:
        scan_action(ctx, {})
        return SystemProfile.from_json(ctx.run.read_artifact(SYSTEM_PROFILE_ARTIFACT))
    if not ctx.run.has_artifact(SYSTEM_PROFILE_ARTIFACT):
        ctx.run.write_artifact(SYSTEM_PROFILE_ARTIFACT, profile.to_dict())
    return profile


def print_summary(profile: SystemProfile, profile_path: Path) -> None:
    print(f"\nScan complete. System profile saved to {profile_path}")
    print("\n--- System Profile Summary ---")
    print(f"Languages: {', '.join(profile.languages) if profile.languages else 'none detected'}")
    print(f"Package Manager: {profile.package_manager or 'none detected'}")
    print("Suggested Verify Commands:")
    if not profile.verify_commands:
        print("  - None detected. Consider adding a test script to your project.")
    for cmd in profile.verify_commands:
        print(f"  - {cmd}")
    print("----------------------------")


def scan_action(ctx: RuntimeContext, inputs: Dict[str, str]) -> Dict[str, str]:
    _ = inputs
    print(f"Scanning repository at {ctx.repo_root}...")
    profile = Scanner.scan(ctx.repo_root)
    path = save_repo_profile(ctx.repo_root, profile)
    ctx.run.write_artifact(SYSTEM_PROFILE_ARTIFACT, profile.to_dict())
    print_summary(profile, path)
    return {}
