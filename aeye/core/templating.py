from __future__ import annotations

import re
from typing import Dict, Iterator, Mapping, Tuple

from .errors import RecipeError, ValidationError
from .recipe import USER_SCOPE


_TEMPLATE_RE = re.compile(r"\{\{\s*(.*?)\s*\}\}")


class ExecutionContext:
    """
    Two-level mapping: scope name (`user` or a step name) -> key -> string value.

    Scopes are write-once. Only the workflow engine's dispatch loop records into it.
    """

    def __init__(self) -> None:
        self._scopes: Dict[str, Dict[str, str]] = {}

    def record(self, scope: str, values: Mapping[str, str]) -> None:
        if scope in self._scopes:
            raise ValidationError(
                code="context.scope_exists",
                message=f"Outputs for '{scope}' were already recorded",
                data={"scope": scope},
            )
        self._scopes[scope] = {str(k): str(v) for k, v in values.items()}

    def lookup(self, scope: str, key: str) -> str | None:
        values = self._scopes.get(scope)
        if values is None:
            return None
        return values.get(key)

    def has_scope(self, scope: str) -> bool:
        return scope in self._scopes

    def scopes(self) -> Iterator[Tuple[str, Dict[str, str]]]:
        for name, values in self._scopes.items():
            yield name, dict(values)

    def as_dict(self) -> Dict[str, Dict[str, str]]:
        return {name: dict(values) for name, values in self._scopes.items()}


def parse_reference(binding: str) -> Tuple[str, str]:
    """
    Map a template binding to (scope, key).

      steps.<step>.outputs.<key> -> (<step>, <key>)
      user.<key>                 -> ("user", <key>)
    """
    parts = [p.strip() for p in binding.split(".")]
    if len(parts) == 4 and parts[0] == "steps" and parts[2] == "outputs":
        return parts[1], parts[3]
    if len(parts) == 2 and parts[0] == USER_SCOPE:
        return USER_SCOPE, parts[1]
    raise RecipeError(
        code="template.invalid_reference",
        message=f"Could not resolve template variable '{binding}'",
        data={"binding": binding},
    )


def render_template(template: str, context: ExecutionContext) -> str:
    """
    Replace every `{{ ... }}` span with its value from the context.

    A reference to a scope or key that is not (yet) recorded is an error, never an empty substitution.
    """

    def _sub(m: "re.Match[str]") -> str:
        binding = m.group(1).strip()
        scope, key = parse_reference(binding)
        value = context.lookup(scope, key)
        if value is None:
            raise RecipeError(
                code="template.unresolved",
                message=f"Could not resolve template variable '{binding}'",
                data={"binding": binding, "scope": scope, "key": key},
            )
        return value

    return _TEMPLATE_RE.sub(_sub, template)


def render_inputs(inputs: Mapping[str, str], context: ExecutionContext) -> Dict[str, str]:
    return {k: render_template(v, context) for k, v in inputs.items()}
