from __future__ import annotations

from typing import Any, Dict

from aeye.core.errors import ResourceError
from aeye.llm.session import ModelSessionFactory
from aeye.runs.run_store import Run

from .patch import PATCH_ARTIFACT
from .plan import INTENT_ARTIFACT, PLAN_ARTIFACT
from .prompts import build_learn_prompt


LEARNING_SUMMARY_ARTIFACT = "learning-summary.md"


def learning_payload(run: Run) -> Dict[str, Any]:
    return {
        "runId": run.id,
        "intent": run.read_json_artifact(INTENT_ARTIFACT),
        "plan": run.read_json_artifact(PLAN_ARTIFACT),
        "patch": run.read_artifact(PATCH_ARTIFACT),
    }


def generate_learning_summary(run: Run, sessions: ModelSessionFactory, *, force: bool = False) -> str:
    """
    Ask the model to summarise a finished run and store the result as learning-summary.md.
    """
    if run.has_artifact(LEARNING_SUMMARY_ARTIFACT) and not force:
        raise ResourceError(
            code="learn.summary_exists",
            message=f"Learning summary already exists at {run.artifact_path(LEARNING_SUMMARY_ARTIFACT)}. Use --force to overwrite.",
            data={"path": str(run.artifact_path(LEARNING_SUMMARY_ARTIFACT))},
        )
    intent = run.read_artifact(INTENT_ARTIFACT)
    plan = run.read_artifact(PLAN_ARTIFACT)
    patch = run.read_artifact(PATCH_ARTIFACT)

    system_prompt, input_text = build_learn_prompt(intent, plan, patch)
    session = sessions.new_session("learner", run)
    summary = session.complete(system_prompt=system_prompt, input_text=input_text)
    run.write_artifact(LEARNING_SUMMARY_ARTIFACT, summary)
    return summary
