from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, NoReturn, Optional, Tuple

from aeye.llm.session import ModelSessionFactory
from aeye.registry.action_registry import ActionRegistry
from aeye.runs.run_store import Run, RunStore
from aeye.trace.trace_emitter import TraceEmitter

from .errors import AEyeError, RecipeError, StepFailed
from .policy_engine import PolicyEngine
from .recipe import USER_SCOPE, Condition, FileExists, Recipe, Step, TierAtLeast, group_phases, load_recipe
from .runtime_context import ApproveFunc, RuntimeContext, prompt_for_approval
from .scope import is_within_root, resolve_path
from .templating import ExecutionContext, render_inputs


logger = logging.getLogger(__name__)

WORKFLOW_SUMMARY_ARTIFACT = "workflow.json"


class StepStatus(str, Enum):
    PENDING = "pending"
    SKIPPED = "skipped"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StepRecord:
    name: str
    action: str
    status: StepStatus = StepStatus.PENDING
    outputs: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    duration_s: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"name": self.name, "action": self.action, "status": self.status.value}
        if self.outputs:
            out["outputs"] = dict(self.outputs)
        if self.error is not None:
            out["error"] = self.error
        if self.duration_s is not None:
            out["duration_s"] = round(self.duration_s, 3)
        return out


@dataclass(frozen=True)
class WorkflowResult:
    recipe: str
    run: Run
    steps: List[StepRecord]
    context: Dict[str, Dict[str, str]]

    def status_of(self, step_name: str) -> StepStatus:
        for r in self.steps:
            if r.name == step_name:
                return r.status
        raise KeyError(step_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipe": self.recipe,
            "run_id": self.run.id,
            "run_path": str(self.run.path),
            "steps": [r.to_dict() for r in self.steps],
        }


class WorkflowEngine:
    """
    Interprets a recipe: phases run in order, parallel batches fan out and join,
    guards may skip steps, templates are resolved against the execution context
    and every step is dispatched through the action registry.

    Hard rules:
    - recipe structure is validated before the run namespace is created
    - a single step failure aborts the invocation (no rollback; artifacts stay)
    - the execution context is only written here, after a step or batch completes
    - every transition is traced to the run's trace.jsonl
    """

    def __init__(
        self,
        repo_root: Path,
        policy: PolicyEngine,
        actions: ActionRegistry,
        *,
        sessions: Optional[ModelSessionFactory] = None,
        approve: ApproveFunc = prompt_for_approval,
        dry_run: bool = False,
        echo: Optional[Callable[[str], None]] = None,
    ):
        self._repo_root = repo_root
        self._policy = policy
        self._actions = actions
        self._sessions = sessions
        self._approve = approve
        self._dry_run = dry_run
        self._echo = echo

    def run(self, recipe_name: str, goal: Optional[str] = None, inputs: Optional[Mapping[str, str]] = None) -> WorkflowResult:
        recipe = load_recipe(recipe_name, self._repo_root)
        user_inputs: Dict[str, str] = {"goal": goal or ""}
        if inputs:
            user_inputs.update({str(k): str(v) for k, v in inputs.items()})
        return self.run_recipe(recipe, user_inputs)

    def run_recipe(self, recipe: Recipe, user_inputs: Mapping[str, str], *, run: Optional[Run] = None) -> WorkflowResult:
        self.validate(recipe)

        if run is None:
            run = RunStore(self._repo_root).new_run()
        trace = run.trace()
        self._say(f"Running workflow: {recipe.name}")
        self._say(f"Description: {recipe.description}")
        self._say(f"Created run: {run.id}")
        self._say(f"Artifacts will be saved to: {run.path}")

        context = ExecutionContext()
        context.record(USER_SCOPE, user_inputs)

        ctx = RuntimeContext(
            repo_root=self._repo_root,
            run=run,
            policy=self._policy,
            sessions=self._sessions,
            approve=self._approve,
            dry_run=self._dry_run,
            meta={"recipe": recipe.name},
        )
        records = {s.name: StepRecord(name=s.name, action=s.action.value) for s in recipe.steps}
        ordered = [records[s.name] for s in recipe.steps]

        trace.emit(
            "workflow_started",
            message=f"Workflow {recipe.name} started",
            data={"recipe": recipe.name, "steps": [s.name for s in recipe.steps], "tier": self._policy.current_tier()},
        )

        try:
            for phase in group_phases(recipe.steps):
                self._run_phase(phase, ctx, context, records, trace)
        except StepFailed as e:
            self._finish(recipe, run, trace, ordered, context, ok=False, error=str(e))
            raise

        self._finish(recipe, run, trace, ordered, context, ok=True)
        self._say(f"Workflow '{recipe.name}' completed successfully.")
        return WorkflowResult(recipe=recipe.name, run=run, steps=ordered, context=context.as_dict())

    def validate(self, recipe: Recipe) -> None:
        """
        Check every step against the action registry before anything runs.
        """
        for step in recipe.steps:
            action_def = self._actions.get(step.action)
            if action_def is None:
                raise RecipeError(
                    code="recipe.action_not_registered",
                    message=f"No handler registered for action {step.action.value} (step '{step.name}')",
                    data={"step": step.name, "action": step.action.value},
                )
            for key in action_def.get("required_inputs", []):
                if key not in step.inputs:
                    raise RecipeError(
                        code="recipe.missing_input",
                        message=f"Missing required input '{key}' for step '{step.name}' ({step.action.value})",
                        data={"step": step.name, "action": step.action.value, "input": key},
                    )

    def evaluate_condition(self, condition: Condition) -> bool:
        if isinstance(condition, TierAtLeast):
            return self._policy.check_tier(condition.tier)
        if isinstance(condition, FileExists):
            root = resolve_path(self._repo_root, None)
            target = resolve_path(condition.path, root)
            return is_within_root(target, root) and target.exists()
        raise RecipeError(code="recipe.unknown_condition", message=f"Unknown condition: {condition!r}")

    def _run_phase(
        self,
        phase: List[Step],
        ctx: RuntimeContext,
        context: ExecutionContext,
        records: Dict[str, StepRecord],
        trace: TraceEmitter,
    ) -> None:
        is_batch = phase[0].parallel
        if is_batch:
            self._say("--- Running Parallel Steps ---")
            trace.emit("batch_started", message="Parallel batch started", data={"steps": [s.name for s in phase]})

        ready: List[Tuple[Step, Dict[str, str]]] = []
        for step in phase:
            record = records[step.name]
            if step.when is not None and not self.evaluate_condition(step.when):
                record.status = StepStatus.SKIPPED
                self._say(f"Step {step.name} ({step.action.value}) skipped (condition not met: {step.when})")
                trace.emit(
                    "step_skipped",
                    step=step.name,
                    action=step.action.value,
                    message="Skipped (condition not met)",
                    data={"when": str(step.when)},
                )
                continue
            try:
                inputs = render_inputs(step.inputs, context)
            except AEyeError as e:
                self._fail(step, record, trace, e)
            ready.append((step, inputs))

        if not ready:
            return

        if not is_batch:
            step, inputs = ready[0]
            outputs = self._dispatch(step, inputs, ctx, records[step.name], trace)
            if outputs:
                context.record(step.name, outputs)
            return

        # Fan out, wait for every member, then fan in. Outputs become visible only after the join.
        with ThreadPoolExecutor(max_workers=len(ready), thread_name_prefix="aeye-step") as pool:
            futures = [
                (step, pool.submit(self._dispatch, step, inputs, ctx, records[step.name], trace)) for step, inputs in ready
            ]
            results: List[Tuple[Step, Dict[str, str]]] = []
            failures: List[StepFailed] = []
            for step, fut in futures:
                try:
                    results.append((step, fut.result()))
                except StepFailed as e:
                    failures.append(e)

        if failures:
            raise failures[0]
        for step, outputs in results:
            if outputs:
                context.record(step.name, outputs)

    def _dispatch(
        self,
        step: Step,
        inputs: Dict[str, str],
        ctx: RuntimeContext,
        record: StepRecord,
        trace: TraceEmitter,
    ) -> Dict[str, str]:
        record.status = StepStatus.RUNNING
        self._say(f"Name: {step.name}")
        self._say(f"Action: {step.action.value}")
        trace.emit("step_started", step=step.name, action=step.action.value, message="Step started", data={"inputs": inputs})
        logger.info("step %s (%s) started", step.name, step.action.value)

        started = time.monotonic()
        try:
            outputs = self._actions.call(step.action, ctx, inputs)
            outputs = {str(k): str(v) for k, v in outputs.items()}
        except Exception as e:  # noqa: BLE001
            record.duration_s = time.monotonic() - started
            self._fail(step, record, trace, e)

        record.duration_s = time.monotonic() - started
        record.status = StepStatus.COMPLETED
        record.outputs = outputs
        trace.emit(
            "step_finished",
            step=step.name,
            action=step.action.value,
            message="Step finished",
            data={"ok": True, "outputs": outputs},
        )
        logger.info("step %s (%s) completed in %.2fs", step.name, step.action.value, record.duration_s)
        return outputs

    def _fail(self, step: Step, record: StepRecord, trace: TraceEmitter, e: Exception) -> NoReturn:
        record.status = StepStatus.FAILED
        record.error = str(e)
        data: Dict[str, Any] = {"error": str(e), "error_type": type(e).__name__}
        policy = None
        if isinstance(e, AEyeError):
            data["code"] = e.code
            if e.code.startswith("policy."):
                policy = {"decision": "deny", **(e.data or {})}
        trace.emit("step_failed", step=step.name, action=step.action.value, message="Step failed", policy=policy, data=data)
        logger.error("step %s (%s) failed: %s", step.name, step.action.value, e)
        raise StepFailed(
            code="workflow.step_failed",
            message=f"Step '{step.name}' ({step.action.value}) failed: {e}",
            data={"step": step.name, "action": step.action.value, "cause": data},
        ) from e

    def _finish(
        self,
        recipe: Recipe,
        run: Run,
        trace: TraceEmitter,
        records: List[StepRecord],
        context: ExecutionContext,
        *,
        ok: bool,
        error: Optional[str] = None,
    ) -> None:
        summary: Dict[str, Any] = {
            "recipe": recipe.name,
            "description": recipe.description,
            "run_id": run.id,
            "ok": ok,
            "tier": self._policy.current_tier(),
            "steps": [r.to_dict() for r in records],
            "context": context.as_dict(),
        }
        if error is not None:
            summary["error"] = error
        if run.has_artifact(WORKFLOW_SUMMARY_ARTIFACT):
            # A reused run keeps the summaries of its earlier invocations.
            prior = run.read_json_artifact(WORKFLOW_SUMMARY_ARTIFACT)
            if isinstance(prior, dict):
                history = prior.pop("previous", [])
                summary["previous"] = [*history, prior] if isinstance(history, list) else [prior]
        run.write_artifact(WORKFLOW_SUMMARY_ARTIFACT, summary)
        trace.emit(
            "workflow_finished",
            message="Workflow finished" if ok else "Workflow aborted",
            data={"ok": ok, "statuses": {r.name: r.status.value for r in records}},
        )

    def _say(self, text: str) -> None:
        if self._echo is not None:
            self._echo(text)
