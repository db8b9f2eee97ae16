from .apply import apply_action, parse_files_from_diff
from .patch import patch_action
from .plan import plan_action
from .scan import scan_action
from .verify import verify_action

__all__ = [
  "apply_action",
  "parse_files_from_diff",
  "patch_action",
  "plan_action",
  "scan_action",
  "verify_action",
]
