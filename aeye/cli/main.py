from __future__ import annotations

import argparse
import json
import logging
import os
import re
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from aeye.actions.learn import LEARNING_SUMMARY_ARTIFACT, generate_learning_summary, learning_payload
from aeye.actions.patch import PATCH_ARTIFACT
from aeye.actions.plan import PLAN_ARTIFACT
from aeye.actions.scan import repo_profile_path
from aeye.bootstrap_actions import build_action_registry
from aeye.core.config import AEyeConfig, find_repo_root, load_config
from aeye.core.errors import AEyeError, ValidationError
from aeye.core.policy_engine import PolicyEngine, tier_name
from aeye.core.recipe import ActionKind, Recipe, Step, list_recipes
from aeye.core.runtime_context import auto_approve, prompt_for_approval
from aeye.core.workflow_engine import WorkflowEngine
from aeye.llm.session import ModelSessionFactory
from aeye.runs.run_store import Run, RunStore
from aeye.trace.replay import Replay


FIX_FROM_LOGS = "fix_from_logs"
LOG_EXCERPT_CHARS = 1000

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _load_dotenv_from_file(path: Path) -> None:
    """
    Minimal dotenv loader (no dependencies).

    - Supports lines like KEY=VALUE (optionally prefixed with 'export ')
    - Ignores empty lines and comments (# ...)
    - Strips single/double quotes around values
    - Does not override already-present environment variables
    """
    if not path.is_file():
        return
    try:
        txt = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return
    for raw_line in txt.splitlines():
        s = raw_line.strip()
        if not s or s.startswith("#"):
            continue
        if s.startswith("export "):
            s = s[len("export ") :].lstrip()
        if "=" not in s:
            continue
        k, v = s.split("=", 1)
        k = k.strip()
        v = v.strip()
        if not k or not _ENV_KEY_RE.match(k) or k in os.environ:
            continue
        if len(v) >= 2 and ((v[0] == v[-1] == '"') or (v[0] == v[-1] == "'")):
            v = v[1:-1]
        os.environ[k] = v


def _maybe_load_dotenv() -> None:
    cwd = Path.cwd()
    for name in (".env", "env"):
        _load_dotenv_from_file(cwd / name)


def _format_cli_error(e: Exception) -> str:
    """
    Print-friendly error formatting for CLI commands.
    - Always includes code/message (via __str__) when it's an AEyeError
    - Includes structured `data` payload when present
    """
    if isinstance(e, AEyeError) and isinstance(e.data, dict) and e.data:
        data = dict(e.data)
        # Keep error bodies bounded to avoid dumping huge blobs.
        if isinstance(data.get("body"), str) and len(data["body"]) > 2000:
            data["body"] = data["body"][:2000] + "...(truncated)"
        return str(e) + "\n" + json.dumps(data, ensure_ascii=False, indent=2, default=str)
    return str(e)


def _repo_root(args: argparse.Namespace) -> Path:
    if args.repo_root:
        return Path(args.repo_root).resolve()
    root = find_repo_root()
    if root is None:
        raise ValidationError(code="repo.not_found", message="Could not find repository root. Are you in a git repository?")
    return root


def _config(args: argparse.Namespace, repo_root: Optional[Path]) -> AEyeConfig:
    return load_config(repo_root).with_model_overrides(provider=args.provider, name=args.model)


def _engine(args: argparse.Namespace, repo_root: Path, *, dry_run: bool = False, echo=None) -> WorkflowEngine:
    config = _config(args, repo_root)
    policy = PolicyEngine(config, repo_root, tier_override=args.tier)
    return WorkflowEngine(
        repo_root,
        policy,
        build_action_registry(),
        sessions=ModelSessionFactory.from_settings(config.model),
        approve=auto_approve if getattr(args, "yes", False) else prompt_for_approval,
        dry_run=dry_run,
        echo=echo,
    )


def _single_step(kind: ActionKind, inputs: Optional[Dict[str, str]] = None) -> Recipe:
    name = kind.value.split(".", 1)[1]
    return Recipe(name=name, description=f"a-eye {name}", steps=(Step(name=name, action=kind, inputs=dict(inputs or {})),))


def _run_of_artifact(path: Path, expected: str) -> Run:
    if path.name != expected or not path.is_file():
        raise ValidationError(code="cli.invalid_from", message=f"--from path must point to a valid {expected} file.", data={"path": str(path)})
    run_dir = path.resolve().parent
    return Run(id=run_dir.name, path=run_dir)


def cmd_scan(args: argparse.Namespace) -> int:
    root = _repo_root(args)
    _engine(args, root).run_recipe(_single_step(ActionKind.SCAN), {})
    return 0


def cmd_plan(args: argparse.Namespace) -> int:
    root = _repo_root(args)
    res = _engine(args, root).run_recipe(_single_step(ActionKind.PLAN, {"goal": "{{ user.goal }}"}), {"goal": args.goal})
    print(f"\nRun ID: {res.run.id}")
    print("To generate a patch from this plan, run:")
    print(f"  a-eye patch --from {res.run.artifact_path(PLAN_ARTIFACT)}")
    return 0


def cmd_patch(args: argparse.Namespace) -> int:
    root = _repo_root(args)
    run = _run_of_artifact(Path(args.from_path), PLAN_ARTIFACT)
    _engine(args, root).run_recipe(_single_step(ActionKind.PATCH), {}, run=run)
    print("\nTo apply this patch (requires Tier 2), run:")
    print(f"  a-eye apply --from {run.artifact_path(PATCH_ARTIFACT)}")
    return 0


def cmd_apply(args: argparse.Namespace) -> int:
    root = _repo_root(args)
    run = _run_of_artifact(Path(args.from_path), PATCH_ARTIFACT)
    recipe = _single_step(ActionKind.APPLY, {"patch": "{{ user.patch }}"})
    _engine(args, root, dry_run=args.dry_run).run_recipe(recipe, {"patch": str(run.artifact_path(PATCH_ARTIFACT))}, run=run)
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    root = _repo_root(args)
    _engine(args, root).run_recipe(_single_step(ActionKind.VERIFY), {})
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    root = _repo_root(args)
    goal = args.goal
    if args.recipe == FIX_FROM_LOGS:
        if not args.log_file:
            print(f"cli.usage: The `{FIX_FROM_LOGS}` recipe requires a --log-file argument.")
            return 2
        log_path = Path(args.log_file)
        try:
            log_content = log_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ValidationError(code="cli.log_unreadable", message=f"Could not read log file: {log_path}") from e
        goal = f"Fix the error found in the following logs from {log_path}: \n\n{log_content[:LOG_EXCERPT_CHARS]}"

    engine = _engine(args, root, dry_run=args.dry_run, echo=print)
    res = engine.run(args.recipe, goal=goal)
    print(f"Run ID: {res.run.id}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    root = Path(args.repo_root).resolve() if args.repo_root else find_repo_root()
    config = _config(args, root)
    policy = PolicyEngine(config, root, tier_override=args.tier)
    last = RunStore(root).latest() if root is not None else None
    profile_found = root is not None and repo_profile_path(root).exists()

    print("A-Eye Status:")
    print(f"  Repository: {root if root is not None else 'not found'}")
    print(f"  Default Tier: {config.default_tier} (from a-eye.yaml)")
    if args.tier is not None:
        print(f"  Effective Tier: {policy.current_tier()} (override)")
    print(f"  Policy Mode: {tier_name(policy.current_tier())}")
    print(f"  Last Run ID: {last.id if last is not None else 'N/A (no runs yet)'}")
    print(f"  System Profile: {'Found' if profile_found else 'Not found'} (.nlpg/system.json)")
    print(f"  Write Allowlist entries: {len(config.write_allowlist)}")
    print(f"  Model: {config.model.provider} / {config.model.name}")
    print("  Actions:")
    for action_def in build_action_registry().list_actions():
        mark = "enabled" if policy.check_tier(action_def["min_tier"]) else f"needs tier {action_def['min_tier']}"
        print(f"    - {action_def['action']}: {mark}")
    return 0


def cmd_learn(args: argparse.Namespace) -> int:
    root = _repo_root(args)
    run = RunStore(root).open(args.run_id)

    if args.format == "json":
        print(json.dumps(learning_payload(run), ensure_ascii=False, indent=2))
        return 0

    if not args.quiet:
        print(f"Generating learning summary for run: {run.id}", file=sys.stderr)
    config = _config(args, root)
    summary = generate_learning_summary(run, ModelSessionFactory.from_settings(config.model), force=args.force)
    print("\n--- Learning Summary ---")
    print(summary)
    print("----------------------")
    print(f"\nSummary saved to: {run.artifact_path(LEARNING_SUMMARY_ARTIFACT)}")
    return 0


def cmd_list_runs(args: argparse.Namespace) -> int:
    root = _repo_root(args)
    runs = RunStore(root).list_runs()
    if args.json:
        print(json.dumps([{"run_id": r.id, "path": str(r.path)} for r in runs], ensure_ascii=False, indent=2))
        return 0
    if not runs:
        print("No runs yet.")
    for r in runs:
        print(r.id)
    return 0


def cmd_list_recipes(args: argparse.Namespace) -> int:
    root = Path(args.repo_root).resolve() if args.repo_root else find_repo_root()
    found = list_recipes(root)
    if args.json:
        print(json.dumps({k: str(v) for k, v in found.items()}, ensure_ascii=False, indent=2))
        return 0
    for name, path in found.items():
        print(f"{name}\t{path}")
    return 0


def cmd_show_trace(args: argparse.Namespace) -> int:
    if args.trace:
        path = Path(args.trace)
    else:
        store = RunStore(_repo_root(args))
        run: Optional[Run] = store.open(args.run_id) if args.run_id else store.latest()
        if run is None:
            print("No runs yet.")
            return 1
        path = run.trace_path

    events = list(Replay(path).iter_events())
    if args.event_type:
        events = [e for e in events if e.get("event_type") == args.event_type]
    if args.tail is not None and args.tail >= 0:
        events = events[-args.tail :]

    for e in events:
        print(json.dumps(e, ensure_ascii=False, indent=2 if args.pretty else None))
    return 0


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv: Any = None) -> int:
    if str(os.environ.get("AEYE_DISABLE_DOTENV", "")).strip().lower() not in ("1", "true", "yes"):
        _maybe_load_dotenv()
    parser = argparse.ArgumentParser(prog="a-eye", description="A-Eye: policy-gated repository automation")
    parser.add_argument("--repo-root", help="Repository root (default: nearest ancestor containing .git)")
    parser.add_argument("--tier", type=int, help="Override default_tier from a-eye.yaml")
    parser.add_argument("--provider", help="Model provider ID or 'module:object' spec")
    parser.add_argument("--model", help="Model name (provider-specific)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_scan = sub.add_parser("scan", help="Scan the repository and write .nlpg/system.json")
    p_scan.set_defaults(func=cmd_scan)

    p_plan = sub.add_parser("plan", help="Plan a change for a goal (writes intent.json and plan.json)")
    p_plan.add_argument("--goal", required=True, help="Natural language goal")
    p_plan.set_defaults(func=cmd_plan)

    p_patch = sub.add_parser("patch", help="Generate patch.diff from a plan.json")
    p_patch.add_argument("--from", dest="from_path", required=True, help="Path to plan.json from a previous run")
    p_patch.set_defaults(func=cmd_patch)

    p_apply = sub.add_parser("apply", help="Apply a patch.diff after approval (Tier 2+)")
    p_apply.add_argument("--from", dest="from_path", required=True, help="Path to patch.diff from a previous run")
    p_apply.add_argument("--dry-run", action="store_true", help="Report what would happen without changing anything")
    p_apply.add_argument("--yes", "-y", action="store_true", help="Do not prompt for approval")
    p_apply.set_defaults(func=cmd_apply)

    p_verify = sub.add_parser("verify", help="Run verification commands from the system profile (Tier 2+)")
    p_verify.add_argument("--yes", "-y", action="store_true", help="Do not prompt for approval")
    p_verify.set_defaults(func=cmd_verify)

    p_run = sub.add_parser("run", help="Run a workflow recipe (e.g. safe_patch)")
    p_run.add_argument("recipe", help="Recipe name")
    p_run.add_argument("--goal", help="Natural language goal for the workflow")
    p_run.add_argument("--log-file", help=f"Log file used as input by {FIX_FROM_LOGS}")
    p_run.add_argument("--dry-run", action="store_true", help="Apply and verify steps report what they would do without changing anything")
    p_run.add_argument("--yes", "-y", action="store_true", help="Do not prompt for approval")
    p_run.set_defaults(func=cmd_run)

    p_status = sub.add_parser("status", help="Show tier, policy mode, last run and system profile presence")
    p_status.set_defaults(func=cmd_status)

    p_learn = sub.add_parser("learn", help="Generate a learning summary from a past run")
    p_learn.add_argument("run_id", help="Run ID")
    p_learn.add_argument("--format", choices=["text", "json"], default="text", help="Output format (default: text)")
    p_learn.add_argument("--force", action="store_true", help="Overwrite an existing learning summary")
    p_learn.add_argument("--quiet", "-q", action="store_true", help="Suppress non-essential output")
    p_learn.set_defaults(func=cmd_learn)

    p_runs = sub.add_parser("list-runs", help="List runs under .nlpg/runs")
    p_runs.add_argument("--json", action="store_true", help="Output JSON")
    p_runs.set_defaults(func=cmd_list_runs)

    p_recipes = sub.add_parser("list-recipes", help="List bundled and repository recipes")
    p_recipes.add_argument("--json", action="store_true", help="Output JSON")
    p_recipes.set_defaults(func=cmd_list_recipes)

    p_trace = sub.add_parser("show-trace", help="Show trace events of a run (default: latest)")
    p_trace.add_argument("run_id", nargs="?", help="Run ID (default: latest run)")
    p_trace.add_argument("--trace", help="Trace path (jsonl) instead of a run")
    p_trace.add_argument("--event-type", help="Filter by event_type")
    p_trace.add_argument("--tail", type=int, help="Show only last N events")
    p_trace.add_argument("--pretty", action="store_true", help="Pretty-print each event as JSON")
    p_trace.set_defaults(func=cmd_show_trace)

    ns = parser.parse_args(argv)
    _configure_logging(ns.verbose)
    try:
        return int(ns.func(ns))
    except Exception as e:  # noqa: BLE001
        print(_format_cli_error(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
