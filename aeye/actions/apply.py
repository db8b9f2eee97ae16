from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Dict, List

from aeye.core.errors import ActionError
from aeye.core.runtime_context import RuntimeContext
from aeye.core.scope import resolve_path


BRANCH_PREFIX = "a-eye/patch-"

_DIFF_FILE_RE = re.compile(r"^(?:\+\+\+ b/|--- a/)(.+)$")


def parse_files_from_diff(diff: str) -> List[str]:
    """
    Every path a unified diff touches, in first-seen order.

    Both sides are collected so deletions are policy-checked too.
    """
    seen: Dict[str, None] = {}
    for line in diff.splitlines():
        m = _DIFF_FILE_RE.match(line)
        if not m:
            continue
        path = m.group(1).split("\t", 1)[0].strip()
        if path:
            seen.setdefault(path, None)
    return list(seen)


def branch_name(run_id: str) -> str:
    return f"{BRANCH_PREFIX}{run_id}"


def _git(repo_root: Path, args: List[str], *, stdin: str | None = None) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(
            ["git", *args],
            cwd=str(repo_root),
            input=stdin,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        raise ActionError(code="apply.git_unavailable", message="Failed to run git", data={"error": str(e)}) from e


def _print_diff(diff: str) -> None:
    print("--- Patch to be Applied ---")
    print(diff, end="" if diff.endswith("\n") else "\n")
    print("-------------------------")


def apply_action(ctx: RuntimeContext, inputs: Dict[str, str]) -> Dict[str, str]:
    ctx.policy.require_tier(2)

    patch_path = resolve_path(inputs["patch"], ctx.repo_root)
    try:
        diff = patch_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ActionError(code="apply.patch_unreadable", message=f"Failed to read patch file: {patch_path}", data={"path": str(patch_path)}) from e

    files = parse_files_from_diff(diff)
    if not files:
        raise ActionError(code="apply.empty_patch", message=f"No file changes found in {patch_path}", data={"path": str(patch_path)})
    for f in files:
        ctx.policy.require_write(f)

    _print_diff(diff)
    branch = branch_name(ctx.run.id)
    use_branch = ctx.config.require_branch_for_apply

    if ctx.dry_run:
        print("\n-- DRY RUN MODE --")
        print("The following actions would be taken:")
        if use_branch:
            print(f"- Create new git branch: {branch}")
        print("- Apply patch to the following files:")
        for f in files:
            print(f"  - {f}")
        print("\nNo changes were made.")
        return {}

    if not ctx.approve("Apply this patch?"):
        print("Apply operation cancelled by user.")
        return {}

    if use_branch:
        print(f"Creating new branch: {branch}")
        res = _git(ctx.repo_root, ["checkout", "-b", branch])
        if res.returncode != 0:
            raise ActionError(
                code="apply.branch_failed",
                message=f"Failed to create git branch '{branch}'. Does it already exist? "
                "Automatic branch creation can be disabled with `require_branch_for_apply: false` in a-eye.yaml.",
                data={"branch": branch, "stderr": res.stderr.strip()},
            )

    res = _git(ctx.repo_root, ["apply"], stdin=diff)
    if res.returncode != 0:
        ctx.run.write_log_file("apply_git_error.log", res.stderr)
        raise ActionError(
            code="apply.git_apply_failed",
            message="`git apply` failed. The patch may be invalid or have conflicts.",
            data={"stderr": res.stderr.strip(), "patch": str(patch_path)},
        )

    if use_branch:
        print(f"\nPatch applied successfully on branch '{branch}'.")
    else:
        print("\nPatch applied successfully.")
    print("Run `git diff` to review the changes.")
    return {}
