from __future__ import annotations

from typing import Dict

from aeye.core.errors import ActionError
from aeye.core.runtime_context import RuntimeContext
from aeye.core.scope import is_within_root, resolve_path
from aeye.llm._json_extract import strip_code_fence

from .plan import INTENT_ARTIFACT, PLAN_ARTIFACT
from .prompts import build_patch_prompt
from .scan import SYSTEM_PROFILE_ARTIFACT


PATCH_ARTIFACT = "patch.diff"

_MAX_CONTEXT_FILES = 8
_MAX_FILE_CHARS = 20_000


def _read_context_files(ctx: RuntimeContext, paths: list) -> Dict[str, str]:
    out: Dict[str, str] = {}
    root = resolve_path(ctx.repo_root, None)
    for rel in paths[:_MAX_CONTEXT_FILES]:
        p = resolve_path(rel, root)
        if not is_within_root(p, root) or not p.is_file():
            continue
        try:
            out[rel] = p.read_text(encoding="utf-8", errors="replace")[:_MAX_FILE_CHARS]
        except OSError:
            continue
    return out


def patch_action(ctx: RuntimeContext, inputs: Dict[str, str]) -> Dict[str, str]:
    _ = inputs
    plan = ctx.run.read_json_artifact(PLAN_ARTIFACT)
    intent = ctx.run.read_json_artifact(INTENT_ARTIFACT)
    system = ctx.run.read_json_artifact(SYSTEM_PROFILE_ARTIFACT)
    print(f"Loading plan from: {ctx.run.artifact_path(PLAN_ARTIFACT)}")

    files = _read_context_files(ctx, list(plan.get("files") or []))
    system_prompt, input_text = build_patch_prompt(intent, plan, system, files)

    print("Generating patch...")
    session = ctx.require_sessions().new_session("patcher", ctx.run)
    text = strip_code_fence(session.complete(system_prompt=system_prompt, input_text=input_text))
    if "+++ " not in text:
        ctx.run.write_log_file("patcher_invalid_response.log", text)
        raise ActionError(code="patch.invalid_diff", message="Model response is not a unified diff")
    if not text.endswith("\n"):
        text += "\n"

    patch_path = ctx.run.write_artifact(PATCH_ARTIFACT, text)

    print("\n--- Patch Generated ---")
    print(text, end="")
    print("-----------------------")
    print(f"\nPatch saved to: {patch_path}")
    return {"patch_path": str(patch_path)}
