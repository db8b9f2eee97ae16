import json
import tempfile
import threading
import unittest
from pathlib import Path

from aeye.core.config import AEyeConfig
from aeye.core.errors import ActionError, RecipeError, StepFailed
from aeye.core.policy_engine import PolicyEngine
from aeye.core.recipe import ActionKind, FileExists, Recipe
from aeye.core.workflow_engine import StepStatus, WorkflowEngine
from aeye.registry.action_registry import ActionRegistry


class _Recorder:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.events = []
        self.calls = {}

    def mark(self, event: str) -> None:
        with self.lock:
            self.events.append(event)

    def handler(self, outputs=None, *, barrier=None, error=None):
        def _impl(ctx, inputs):
            name = inputs.get("name", "?")
            with self.lock:
                self.calls.setdefault(name, []).append(dict(inputs))
            self.mark(f"start:{name}")
            if barrier is not None:
                # Both batch members must be running at the same time to pass.
                barrier.wait(timeout=5)
            if error is not None:
                raise error
            self.mark(f"end:{name}")
            return dict(outputs or {})

        return _impl


def _recipe(steps):
    return Recipe.from_dict({"name": "test", "description": "test recipe", "steps": steps})


def _events(run):
    return [json.loads(l) for l in run.trace_path.read_text(encoding="utf-8").splitlines() if l.strip()]


class TestWorkflowEngine(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)
        self.rec = _Recorder()

    def tearDown(self) -> None:
        self._td.cleanup()

    def _engine(self, reg, *, tier=1, **kwargs):
        policy = PolicyEngine(AEyeConfig(), self.root, tier_override=tier)
        return WorkflowEngine(self.root, policy, reg, **kwargs)

    def test_parallel_batch_runs_between_neighbours(self) -> None:
        barrier = threading.Barrier(2)
        reg = ActionRegistry()
        reg.register(ActionKind.SCAN, self.rec.handler({"value": "from-a"}))
        reg.register(ActionKind.VERIFY, self.rec.handler({"done": "yes"}, barrier=barrier))
        reg.register(ActionKind.APPLY, self.rec.handler())
        recipe = _recipe(
            [
                {"name": "a", "action": "system.scan", "inputs": {"name": "a"}},
                {"name": "b", "action": "tools.verify", "parallel": True, "inputs": {"name": "b", "x": "{{ steps.a.outputs.value }}"}},
                {"name": "c", "action": "tools.verify", "parallel": True, "inputs": {"name": "c"}},
                {"name": "d", "action": "tools.apply", "inputs": {"name": "d", "b": "{{ steps.b.outputs.done }}", "c": "{{ steps.c.outputs.done }}"}},
            ]
        )

        res = self._engine(reg).run_recipe(recipe, {"goal": ""})

        ev = self.rec.events
        self.assertEqual(ev[:2], ["start:a", "end:a"])
        self.assertEqual(sorted(ev[2:6]), sorted(["start:b", "start:c", "end:b", "end:c"]))
        self.assertEqual(ev[6:], ["start:d", "end:d"])
        self.assertEqual(self.rec.calls["b"][0]["x"], "from-a")
        self.assertEqual(self.rec.calls["d"][0], {"name": "d", "b": "yes", "c": "yes"})
        self.assertTrue(all(r.status == StepStatus.COMPLETED for r in res.steps))
        self.assertIn("batch_started", [e["event_type"] for e in _events(res.run)])

    def _safe_patch_registry(self):
        reg = ActionRegistry()
        reg.register(ActionKind.SCAN, self.rec.handler())
        reg.register(ActionKind.PLAN, self.rec.handler(), required_inputs=["goal"])
        reg.register(ActionKind.PATCH, self.rec.handler({"patch_path": "/tmp/patch.diff"}))
        reg.register(ActionKind.APPLY, self.rec.handler(), required_inputs=["patch"])
        reg.register(ActionKind.VERIFY, self.rec.handler())
        return reg

    def test_safe_patch_at_tier_one_skips_apply_and_verify(self) -> None:
        res = self._engine(self._safe_patch_registry(), tier=1).run("safe_patch", goal="add docs")

        self.assertEqual(res.status_of("scan"), StepStatus.COMPLETED)
        self.assertEqual(res.status_of("plan"), StepStatus.COMPLETED)
        self.assertEqual(res.status_of("patch"), StepStatus.COMPLETED)
        self.assertEqual(res.status_of("apply"), StepStatus.SKIPPED)
        self.assertEqual(res.status_of("verify"), StepStatus.SKIPPED)
        self.assertEqual(res.context["user"], {"goal": "add docs"})
        self.assertEqual(res.context["patch"], {"patch_path": "/tmp/patch.diff"})

        skipped = [e for e in _events(res.run) if e["event_type"] == "step_skipped"]
        self.assertEqual([e["step"] for e in skipped], ["apply", "verify"])
        summary = res.run.read_json_artifact("workflow.json")
        self.assertTrue(summary["ok"])

    def test_safe_patch_at_tier_two_passes_patch_path_to_apply(self) -> None:
        calls = []
        reg = self._safe_patch_registry()
        reg.register(ActionKind.APPLY, lambda ctx, inputs: calls.append(inputs) or {}, required_inputs=["patch"])

        res = self._engine(reg, tier=2).run("safe_patch", goal="add docs")

        self.assertEqual(calls, [{"patch": "/tmp/patch.diff"}])
        self.assertEqual(res.status_of("verify"), StepStatus.COMPLETED)

    def test_file_exists_guard(self) -> None:
        reg = ActionRegistry()
        reg.register(ActionKind.SCAN, self.rec.handler())
        recipe = _recipe(
            [
                {"name": "with_pkg", "action": "system.scan", "when": "file_exists: package.json", "inputs": {"name": "with_pkg"}},
            ]
        )
        res = self._engine(reg).run_recipe(recipe, {})
        self.assertEqual(res.status_of("with_pkg"), StepStatus.SKIPPED)

        (self.root / "package.json").write_text("{}", encoding="utf-8")
        res = self._engine(reg).run_recipe(recipe, {})
        self.assertEqual(res.status_of("with_pkg"), StepStatus.COMPLETED)

    def test_file_exists_guard_ignores_paths_outside_repo(self) -> None:
        with tempfile.TemporaryDirectory() as other:
            outside = Path(other) / "package.json"
            outside.write_text("{}", encoding="utf-8")
            engine = self._engine(ActionRegistry())
            self.assertFalse(engine.evaluate_condition(FileExists(path=str(outside))))
            rel = Path("..") / Path(other).name / "package.json"
            if (self.root / rel).exists():
                self.assertFalse(engine.evaluate_condition(FileExists(path=str(rel))))

        (self.root / "package.json").write_text("{}", encoding="utf-8")
        self.assertTrue(self._engine(ActionRegistry()).evaluate_condition(FileExists(path="./sub/../package.json")))

    def test_reused_run_keeps_earlier_summary(self) -> None:
        reg = ActionRegistry()
        reg.register(ActionKind.PLAN, self.rec.handler())
        reg.register(ActionKind.PATCH, self.rec.handler({"patch_path": "p.diff"}))
        engine = self._engine(reg)
        first = engine.run_recipe(_recipe([{"name": "plan", "action": "llm.plan", "inputs": {"name": "plan"}}]), {})
        engine.run_recipe(_recipe([{"name": "patch", "action": "llm.patch", "inputs": {"name": "patch"}}]), {}, run=first.run)
        engine.run_recipe(_recipe([{"name": "patch", "action": "llm.patch", "inputs": {"name": "again"}}]), {}, run=first.run)

        summary = first.run.read_json_artifact("workflow.json")
        self.assertEqual([s["name"] for s in summary["steps"]], ["patch"])
        previous = summary["previous"]
        self.assertEqual([p["steps"][0]["name"] for p in previous], ["plan", "patch"])
        self.assertNotIn("previous", previous[1])

    def test_failure_aborts_and_keeps_artifacts(self) -> None:
        reg = ActionRegistry()

        def scan(ctx, inputs):
            ctx.run.write_artifact("system.json", {"languages": []})
            return {}

        reg.register(ActionKind.SCAN, scan)
        reg.register(ActionKind.PLAN, self.rec.handler(error=ActionError(code="llm.failed", message="model down")))
        reg.register(ActionKind.PATCH, self.rec.handler())
        recipe = _recipe(
            [
                {"name": "scan", "action": "system.scan"},
                {"name": "plan", "action": "llm.plan", "inputs": {"name": "plan"}},
                {"name": "patch", "action": "llm.patch", "inputs": {"name": "patch"}},
            ]
        )
        engine = self._engine(reg)

        with self.assertRaises(StepFailed) as ctx:
            engine.run_recipe(recipe, {})

        err = ctx.exception
        self.assertIn("'plan'", err.message)
        self.assertIn("llm.plan", err.message)
        self.assertIsInstance(err.__cause__, ActionError)
        self.assertNotIn("patch", self.rec.calls)

        run_dir = next((self.root / ".nlpg" / "runs").iterdir())
        self.assertTrue((run_dir / "system.json").is_file())
        summary = json.loads((run_dir / "workflow.json").read_text(encoding="utf-8"))
        self.assertFalse(summary["ok"])
        statuses = {s["name"]: s["status"] for s in summary["steps"]}
        self.assertEqual(statuses, {"scan": "completed", "plan": "failed", "patch": "pending"})

        events = [json.loads(l) for l in (run_dir / "trace.jsonl").read_text(encoding="utf-8").splitlines()]
        failed = [e for e in events if e["event_type"] == "step_failed"]
        self.assertEqual(len(failed), 1)
        self.assertEqual(failed[0]["data"]["code"], "llm.failed")
        self.assertEqual(events[-1]["event_type"], "workflow_finished")

    def test_batch_member_failure_waits_for_siblings(self) -> None:
        reg = ActionRegistry()
        reg.register(ActionKind.SCAN, self.rec.handler(error=ActionError(code="x.fail", message="boom")))
        reg.register(ActionKind.VERIFY, self.rec.handler({"ok": "1"}))
        reg.register(ActionKind.APPLY, self.rec.handler())
        recipe = _recipe(
            [
                {"name": "b", "action": "system.scan", "parallel": True, "inputs": {"name": "b"}},
                {"name": "c", "action": "tools.verify", "parallel": True, "inputs": {"name": "c"}},
                {"name": "d", "action": "tools.apply", "inputs": {"name": "d"}},
            ]
        )
        with self.assertRaises(StepFailed):
            self._engine(reg).run_recipe(recipe, {})
        self.assertIn("end:c", self.rec.events)
        self.assertNotIn("d", self.rec.calls)

    def test_sibling_reference_inside_batch_fails(self) -> None:
        reg = ActionRegistry()
        reg.register(ActionKind.VERIFY, self.rec.handler({"out": "v"}))
        reg.register(ActionKind.SCAN, self.rec.handler())
        recipe = _recipe(
            [
                {"name": "b", "action": "tools.verify", "parallel": True, "inputs": {"name": "b"}},
                {"name": "c", "action": "system.scan", "parallel": True, "inputs": {"x": "{{ steps.b.outputs.out }}"}},
            ]
        )
        with self.assertRaises(StepFailed) as ctx:
            self._engine(reg).run_recipe(recipe, {})
        self.assertIsInstance(ctx.exception.__cause__, RecipeError)
        self.assertEqual(ctx.exception.__cause__.code, "template.unresolved")
        self.assertEqual(self.rec.calls, {})

    def test_unresolved_template_fails_before_dispatch(self) -> None:
        reg = ActionRegistry()
        reg.register(ActionKind.APPLY, self.rec.handler())
        recipe = _recipe([{"name": "apply", "action": "tools.apply", "inputs": {"patch": "{{ steps.patch.outputs.patch_path }}"}}])
        with self.assertRaises(StepFailed) as ctx:
            self._engine(reg).run_recipe(recipe, {})
        self.assertIn("steps.patch.outputs.patch_path", str(ctx.exception))
        self.assertEqual(self.rec.calls, {})

    def test_unknown_action_aborts_before_any_step(self) -> None:
        (self.root / "recipes").mkdir()
        (self.root / "recipes" / "bad.yaml").write_text(
            "name: bad\ndescription: d\nsteps:\n"
            "  - name: scan\n    action: system.scan\n"
            "  - name: deploy\n    action: tools.deploy\n",
            encoding="utf-8",
        )
        reg = ActionRegistry()
        reg.register(ActionKind.SCAN, self.rec.handler())
        with self.assertRaises(RecipeError) as ctx:
            self._engine(reg).run("bad")
        self.assertEqual(ctx.exception.code, "recipe.unknown_action")
        self.assertEqual(self.rec.calls, {})
        self.assertFalse((self.root / ".nlpg" / "runs").exists())

    def test_unregistered_action_and_missing_input_are_validated_up_front(self) -> None:
        reg = ActionRegistry()
        reg.register(ActionKind.PLAN, self.rec.handler(), required_inputs=["goal"])
        with self.assertRaises(RecipeError) as ctx:
            self._engine(reg).run_recipe(_recipe([{"name": "s", "action": "system.scan"}]), {})
        self.assertEqual(ctx.exception.code, "recipe.action_not_registered")
        with self.assertRaises(RecipeError) as ctx:
            self._engine(reg).run_recipe(_recipe([{"name": "p", "action": "llm.plan"}]), {})
        self.assertEqual(ctx.exception.code, "recipe.missing_input")
        self.assertFalse((self.root / ".nlpg" / "runs").exists())

    def test_policy_denial_is_traced_with_rule(self) -> None:
        reg = ActionRegistry()

        def apply(ctx, inputs):
            ctx.policy.require_tier(2)
            return {}

        reg.register(ActionKind.APPLY, apply)
        with self.assertRaises(StepFailed):
            self._engine(reg, tier=1).run_recipe(_recipe([{"name": "apply", "action": "tools.apply"}]), {})
        run_dir = next((self.root / ".nlpg" / "runs").iterdir())
        events = [json.loads(l) for l in (run_dir / "trace.jsonl").read_text(encoding="utf-8").splitlines()]
        failed = [e for e in events if e["event_type"] == "step_failed"][0]
        self.assertEqual(failed["policy"]["decision"], "deny")
        self.assertEqual(failed["policy"]["rule"], "tier >= 2")

    def test_echo_reports_progress(self) -> None:
        lines = []
        reg = ActionRegistry()
        reg.register(ActionKind.SCAN, self.rec.handler())
        self._engine(reg, echo=lines.append).run_recipe(_recipe([{"name": "s", "action": "system.scan"}]), {})
        self.assertEqual(lines[0], "Running workflow: test")
        self.assertIn("Workflow 'test' completed successfully.", lines)


if __name__ == "__main__":
    unittest.main()
