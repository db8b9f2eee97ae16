from __future__ import annotations

import json
from typing import Any, Dict

from aeye.core.errors import ActionError, ValidationError


NOTES_FILE = "AEYE_NOTES.md"


def _output_format(system_prompt: str) -> str:
    for line in system_prompt.splitlines():
        s = line.strip()
        if s.startswith("Output format:"):
            return s[len("Output format:") :].strip()
    return ""


def _goal(input_text: str) -> str:
    for line in input_text.splitlines():
        if line.startswith("Goal:"):
            return line[len("Goal:") :].strip()
    return "unspecified goal"


class ScriptedProvider:
    """
    Deterministic provider for tests/examples.

    It reads the `Output format:` line of the system prompt and answers with a
    minimal plan, a diff that creates AEYE_NOTES.md, or a markdown summary.
    """

    def __init__(self, model: str = "stub", **_kwargs: Any) -> None:
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    def model_info(self) -> Dict[str, Any]:
        return {"slug": self._model, "provider": "testing"}

    def complete(self, *, system_prompt: str, input_text: str) -> str:
        fmt = _output_format(system_prompt)
        if fmt == "plan JSON":
            goal = _goal(input_text)
            plan = {
                "summary": f"Record the goal in {NOTES_FILE}",
                "steps": [f"Create {NOTES_FILE} describing: {goal}"],
                "files": [NOTES_FILE],
                "risks": [],
            }
            return "Here is the plan:\n" + json.dumps(plan)
        if fmt == "unified diff":
            return "\n".join(
                [
                    "```diff",
                    f"diff --git a/{NOTES_FILE} b/{NOTES_FILE}",
                    "new file mode 100644",
                    "--- /dev/null",
                    f"+++ b/{NOTES_FILE}",
                    "@@ -0,0 +1 @@",
                    "+Notes added by a-eye.",
                    "```",
                ]
            )
        if fmt == "markdown":
            return "# Learning summary\n\n- Goal recorded in a notes file.\n"
        raise ValidationError(code="llm.invalid", message=f"Unsupported output format: {fmt!r}")


class ModelAsTextProvider:
    """
    Deterministic provider for tests/examples: the completion is exactly the model string.
    """

    def __init__(self, model: str = "stub", **_kwargs: Any) -> None:
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    def complete(self, *, system_prompt: str, input_text: str) -> str:
        _ = (system_prompt, input_text)
        return self._model


class RaiseActionErrorProvider:
    """
    Provider for CLI tests: every call fails like an unreachable model endpoint.
    """

    def __init__(self, model: str = "stub", **_kwargs: Any) -> None:
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    def complete(self, *, system_prompt: str, input_text: str) -> str:
        _ = (system_prompt, input_text)
        raise ActionError(
            code="llm.http_error",
            message="HTTP 503 from model endpoint",
            data={"status": 503, "body": "unavailable"},
        )
