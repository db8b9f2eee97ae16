from __future__ import annotations

import subprocess
import sys
from typing import Dict

from aeye.core.errors import ActionError
from aeye.core.runtime_context import RuntimeContext

from .scan import load_profile, repo_profile_path


def verify_action(ctx: RuntimeContext, inputs: Dict[str, str]) -> Dict[str, str]:
    _ = inputs
    profile = load_profile(ctx)
    if profile is None:
        print(f"System profile not found at {repo_profile_path(ctx.repo_root)}. Run `a-eye scan` to generate it.")
        return {}
    if not profile.verify_commands:
        print("No verification commands found in the system profile.")
        return {}

    if ctx.dry_run:
        print("Dry run: the following verification commands would be run:")
        for cmd in profile.verify_commands:
            print(f"  - {cmd}")
        return {}

    if not ctx.policy.check_tier(2):
        print("Running in read-only mode (Tier < 2).")
        print("The following verification commands would be run:")
        for cmd in profile.verify_commands:
            print(f"  - {cmd}")
        print("\nTo execute these commands, run A-Eye in Tier 2 or higher.")
        return {}

    print("The following verification commands will be run:")
    for cmd in profile.verify_commands:
        print(f"  - {cmd}")
    # Every command is checked before any of them runs.
    for cmd in profile.verify_commands:
        ctx.policy.require_shell(cmd)

    if not ctx.approve("Execute these commands?"):
        print("Verification cancelled by user.")
        return {}

    for cmd in profile.verify_commands:
        print(f"\n> {cmd}")
        try:
            res = subprocess.run(cmd, shell=True, cwd=str(ctx.repo_root), capture_output=True, text=True, check=False)  # noqa: S602
        except OSError as e:
            raise ActionError(code="verify.exec_failed", message=f"Failed to execute command: {cmd}", data={"command": cmd}) from e
        if res.stdout:
            sys.stdout.write(res.stdout)
        if res.stderr:
            sys.stderr.write(res.stderr)
        ctx.run.write_log_file("verify.log", f"$ {cmd}\n{res.stdout}{res.stderr}[exit {res.returncode}]")
        if res.returncode != 0:
            raise ActionError(
                code="verify.command_failed",
                message=f"Verification command `{cmd}` failed with exit code {res.returncode}. Aborting.",
                data={"command": cmd, "exit_code": res.returncode},
            )

    print("\nAll verification commands passed successfully.")
    return {}
