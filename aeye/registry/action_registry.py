from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict, Sequence

from aeye.core.recipe import ActionKind

if TYPE_CHECKING:
    from aeye.core.runtime_context import RuntimeContext


ActionFunc = Callable[["RuntimeContext", Dict[str, str]], Dict[str, str]]


class ActionRegistry:
    """
    Closed mapping from action kind to the collaborator that implements it.
    """

    def __init__(self) -> None:
        self._defs: dict[ActionKind, dict[str, Any]] = {}
        self._impls: dict[ActionKind, ActionFunc] = {}

    def register(
        self,
        kind: ActionKind,
        impl: ActionFunc,
        *,
        title: str = "",
        required_inputs: Sequence[str] = (),
        outputs: Sequence[str] = (),
        min_tier: int = 0,
    ) -> None:
        self._defs[kind] = {
            "action": kind.value,
            "title": title,
            "required_inputs": list(required_inputs),
            "outputs": list(outputs),
            "min_tier": min_tier,
        }
        self._impls[kind] = impl

    def get(self, kind: ActionKind) -> dict[str, Any] | None:
        return self._defs.get(kind)

    def call(self, kind: ActionKind, ctx: "RuntimeContext", inputs: Dict[str, str]) -> Dict[str, str]:
        impl = self._impls.get(kind)
        if impl is None:
            raise KeyError(kind.value)
        return impl(ctx, inputs) or {}

    def list_actions(self) -> list[dict[str, Any]]:
        return [self._defs[k] for k in sorted(self._defs.keys(), key=lambda k: k.value)]
