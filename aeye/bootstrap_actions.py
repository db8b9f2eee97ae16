from __future__ import annotations

from aeye.actions.apply import apply_action
from aeye.actions.patch import patch_action
from aeye.actions.plan import plan_action
from aeye.actions.scan import scan_action
from aeye.actions.verify import verify_action
from aeye.core.recipe import ActionKind
from aeye.registry.action_registry import ActionRegistry


def build_action_registry() -> ActionRegistry:
    """
    Register the built-in handler for every workflow action.
    """
    reg = ActionRegistry()
    reg.register(ActionKind.SCAN, scan_action, title="Scan repository and write system.json")
    reg.register(ActionKind.PLAN, plan_action, title="Plan a change for a goal", required_inputs=["goal"], min_tier=1)
    reg.register(ActionKind.PATCH, patch_action, title="Generate patch.diff from the plan", outputs=["patch_path"], min_tier=1)
    reg.register(ActionKind.APPLY, apply_action, title="Apply a patch on a new branch", required_inputs=["patch"], min_tier=2)
    reg.register(ActionKind.VERIFY, verify_action, title="Run verification commands", min_tier=0)
    return reg
