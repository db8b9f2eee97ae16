from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from aeye.contract_store import core_contracts
from aeye.resources import bundled_recipes_dir

from .errors import RecipeError


RECIPES_DIR = "recipes"
USER_SCOPE = "user"


class ActionKind(str, Enum):
    SCAN = "system.scan"
    PLAN = "llm.plan"
    PATCH = "llm.patch"
    APPLY = "tools.apply"
    VERIFY = "tools.verify"

    @classmethod
    def parse(cls, raw: str) -> "ActionKind":
        try:
            return cls(raw)
        except ValueError:
            raise RecipeError(
                code="recipe.unknown_action",
                message=f"Unknown workflow action: {raw}",
                data={"action": raw, "known": [k.value for k in cls]},
            ) from None


@dataclass(frozen=True)
class TierAtLeast:
    tier: int

    def __str__(self) -> str:
        return f"tier >= {self.tier}"


@dataclass(frozen=True)
class FileExists:
    path: str

    def __str__(self) -> str:
        return f"file_exists: {self.path}"


Condition = Union[TierAtLeast, FileExists]

_TIER_PREFIX = "tier >= "
_FILE_EXISTS_PREFIX = "file_exists: "


def parse_condition(raw: str) -> Condition:
    """
    Decode a `when:` guard. Exactly two forms exist, matched by literal prefix:

      tier >= N
      file_exists: <path relative to the repository root>
    """
    if raw.startswith(_TIER_PREFIX):
        tier_str = raw[len(_TIER_PREFIX) :].strip()
        try:
            tier = int(tier_str)
        except ValueError:
            raise RecipeError(code="recipe.invalid_condition", message=f"Invalid tier in condition: {raw}") from None
        if tier < 0:
            raise RecipeError(code="recipe.invalid_condition", message=f"Invalid tier in condition: {raw}")
        return TierAtLeast(tier=tier)

    if raw.startswith(_FILE_EXISTS_PREFIX):
        path = raw[len(_FILE_EXISTS_PREFIX) :].strip()
        if not path:
            raise RecipeError(code="recipe.invalid_condition", message=f"Missing path in condition: {raw}")
        return FileExists(path=path)

    raise RecipeError(code="recipe.unknown_condition", message=f"Unknown condition format in recipe: '{raw}'")


@dataclass(frozen=True)
class Step:
    name: str
    action: ActionKind
    inputs: Mapping[str, str] = field(default_factory=dict)
    when: Optional[Condition] = None
    parallel: bool = False


@dataclass(frozen=True)
class Recipe:
    name: str
    description: str
    steps: Tuple[Step, ...]
    source: Optional[Path] = None

    @classmethod
    def from_dict(cls, raw: Any, *, source: Optional[Path] = None) -> "Recipe":
        where = str(source) if source else "<recipe>"
        errors = core_contracts().validate("recipe.schema.json", raw)
        if errors:
            raise RecipeError(code="recipe.invalid", message=f"Recipe failed validation: {where}", data={"errors": errors})

        steps: List[Step] = []
        seen: set[str] = set()
        for raw_step in raw["steps"]:
            name = raw_step["name"]
            if name == USER_SCOPE:
                raise RecipeError(code="recipe.reserved_step_name", message=f"Step name '{USER_SCOPE}' is reserved: {where}")
            if name in seen:
                raise RecipeError(
                    code="recipe.duplicate_step",
                    message=f"Duplicate step name '{name}': {where}",
                    data={"step": name},
                )
            seen.add(name)

            when_raw = raw_step.get("when")
            steps.append(
                Step(
                    name=name,
                    action=ActionKind.parse(raw_step["action"]),
                    inputs=dict(raw_step.get("inputs") or {}),
                    when=parse_condition(when_raw) if when_raw is not None else None,
                    parallel=bool(raw_step.get("parallel", False)),
                )
            )

        return cls(name=raw["name"], description=raw["description"], steps=tuple(steps), source=source)


def group_phases(steps: Tuple[Step, ...] | List[Step]) -> List[List[Step]]:
    """
    Linearize steps into phases: each contiguous run of parallel steps is one batch,
    every non-parallel step is a phase of its own.
    """
    phases: List[List[Step]] = []
    batch: List[Step] = []
    for step in steps:
        if step.parallel:
            batch.append(step)
            continue
        if batch:
            phases.append(batch)
            batch = []
        phases.append([step])
    if batch:
        phases.append(batch)
    return phases


def recipe_search_paths(name: str, repo_root: Optional[Path]) -> List[Path]:
    out: List[Path] = []
    if repo_root is not None:
        out.append(repo_root / RECIPES_DIR / f"{name}.yaml")
    out.append(bundled_recipes_dir() / f"{name}.yaml")
    return out


def load_recipe(name: str, repo_root: Optional[Path]) -> Recipe:
    """
    Read a recipe from disk. Repository recipes shadow bundled ones; nothing is cached.
    """
    if not name or "/" in name or "\\" in name or name in (".", ".."):
        raise RecipeError(code="recipe.invalid_name", message=f"Invalid recipe name: {name!r}")

    candidates = recipe_search_paths(name, repo_root)
    for p in candidates:
        if p.is_file():
            return load_recipe_file(p)
    raise RecipeError(
        code="recipe.not_found",
        message=f"Recipe '{name}' not found at {candidates[0]}",
        data={"searched": [str(p) for p in candidates]},
    )


def load_recipe_file(path: Path) -> Recipe:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise RecipeError(code="recipe.invalid_yaml", message=f"Could not parse recipe: {path}", data={"error": str(e)}) from e
    return Recipe.from_dict(raw, source=path)


def list_recipes(repo_root: Optional[Path]) -> Dict[str, Path]:
    found: Dict[str, Path] = {}
    dirs = [bundled_recipes_dir()]
    if repo_root is not None:
        dirs.append(repo_root / RECIPES_DIR)
    for d in dirs:
        if not d.is_dir():
            continue
        for p in sorted(d.glob("*.yaml")):
            found[p.stem] = p
    return dict(sorted(found.items()))
