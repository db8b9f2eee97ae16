from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from aeye.core.errors import ActionError, ValidationError
from aeye.core.runtime_context import RuntimeContext
from aeye.llm._json_extract import extract_first_json_object
from aeye.scanner import list_files

from .prompts import build_plan_prompt
from .scan import ensure_profile


INTENT_ARTIFACT = "intent.json"
PLAN_ARTIFACT = "plan.json"


def _str_list(raw: Any) -> List[str]:
    if not isinstance(raw, list):
        return []
    return [str(x) for x in raw if isinstance(x, (str, int, float))]


def normalize_plan(raw: Dict[str, Any]) -> Dict[str, Any]:
    summary = raw.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        raise ActionError(code="plan.invalid", message="Plan is missing a summary", data={"keys": sorted(raw.keys())})
    return {
        "summary": summary.strip(),
        "steps": _str_list(raw.get("steps")),
        "files": _str_list(raw.get("files")),
        "risks": _str_list(raw.get("risks")),
    }


def plan_action(ctx: RuntimeContext, inputs: Dict[str, str]) -> Dict[str, str]:
    goal = (inputs.get("goal") or "").strip()
    if not goal:
        raise ValidationError(code="plan.missing_goal", message="A non-empty goal is required to plan")

    profile = ensure_profile(ctx)
    sessions = ctx.require_sessions()
    session = sessions.new_session("planner", ctx.run)

    print(f"Planning: {goal}")
    system_prompt, input_text = build_plan_prompt(goal, profile.to_dict(), list_files(ctx.repo_root))
    text = session.complete(system_prompt=system_prompt, input_text=input_text)

    raw = extract_first_json_object(text)
    if raw is None:
        ctx.run.write_log_file("planner_invalid_response.log", text)
        raise ActionError(code="plan.invalid_response", message="Model response did not contain a JSON plan")
    plan = normalize_plan(raw)

    intent = {
        "goal": goal,
        "tier": ctx.policy.current_tier(),
        "provider": sessions.provider_id,
        "model": session.model,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    ctx.run.write_artifact(INTENT_ARTIFACT, intent)
    plan_path = ctx.run.write_artifact(PLAN_ARTIFACT, plan)

    print("\n--- Plan ---")
    print(plan["summary"])
    for i, s in enumerate(plan["steps"], start=1):
        print(f"  {i}. {s}")
    if plan["files"]:
        print("Files: " + ", ".join(plan["files"]))
    print("------------")
    print(f"\nPlan saved to: {plan_path}")
    return {}
