from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from aeye.core.errors import ValidationError


logger = logging.getLogger(__name__)

_SKIP_DIRS = {
    ".git",
    ".hg",
    ".svn",
    ".nlpg",
    ".venv",
    "venv",
    "__pycache__",
    "node_modules",
    "target",
    "dist",
    "build",
}

_EXTENSIONS = {
    ".py": "Python",
    ".rs": "Rust",
    ".js": "JavaScript",
    ".jsx": "JavaScript",
    ".mjs": "JavaScript",
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
    ".go": "Go",
    ".rb": "Ruby",
    ".java": "Java",
    ".kt": "Kotlin",
    ".c": "C",
    ".h": "C",
    ".cc": "C++",
    ".cpp": "C++",
    ".hpp": "C++",
    ".cs": "C#",
    ".php": "PHP",
    ".swift": "Swift",
    ".sh": "Shell",
}

# First match wins: lockfiles before the manifests they belong to.
_PACKAGE_MANAGERS = (
    ("Cargo.toml", "cargo"),
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("package-lock.json", "npm"),
    ("package.json", "npm"),
    ("poetry.lock", "poetry"),
    ("uv.lock", "uv"),
    ("pyproject.toml", "pip"),
    ("requirements.txt", "pip"),
    ("setup.py", "pip"),
    ("go.mod", "go"),
    ("Gemfile", "bundler"),
    ("pom.xml", "maven"),
    ("build.gradle", "gradle"),
    ("build.gradle.kts", "gradle"),
)

_MAX_FILES = 50_000


@dataclass(frozen=True)
class SystemProfile:
    languages: List[str] = field(default_factory=list)
    package_manager: Optional[str] = None
    verify_commands: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "languages": list(self.languages),
            "package_manager": self.package_manager,
            "verify_commands": list(self.verify_commands),
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "SystemProfile":
        if not isinstance(raw, dict):
            raise ValidationError(code="system.invalid", message="System profile must be a JSON object")
        languages = raw.get("languages", [])
        commands = raw.get("verify_commands", [])
        pm = raw.get("package_manager")
        if not isinstance(languages, list) or not all(isinstance(x, str) for x in languages):
            raise ValidationError(code="system.invalid", message="languages must be a list of strings")
        if not isinstance(commands, list) or not all(isinstance(x, str) for x in commands):
            raise ValidationError(code="system.invalid", message="verify_commands must be a list of strings")
        if pm is not None and not isinstance(pm, str):
            raise ValidationError(code="system.invalid", message="package_manager must be a string or null")
        return cls(languages=list(languages), package_manager=pm, verify_commands=list(commands))

    @classmethod
    def from_json(cls, text: str) -> "SystemProfile":
        try:
            return cls.from_dict(json.loads(text))
        except json.JSONDecodeError as e:
            raise ValidationError(code="system.invalid", message="System profile is not valid JSON") from e


class Scanner:
    """
    Cheap repository fingerprint: languages by file extension, package manager by
    manifest/lockfile and the commands that most likely build and test the project.
    """

    @staticmethod
    def scan(repo_root: Path) -> SystemProfile:
        languages = Scanner._detect_languages(repo_root)
        pm = Scanner._detect_package_manager(repo_root)
        commands = Scanner._verify_commands(repo_root, pm)
        logger.info("scanned %s: languages=%s package_manager=%s", repo_root, languages, pm)
        return SystemProfile(languages=languages, package_manager=pm, verify_commands=commands)

    @staticmethod
    def _detect_languages(repo_root: Path) -> List[str]:
        found = set()
        seen = 0
        for dirpath, dirnames, filenames in os.walk(repo_root):
            dirnames[:] = [d for d in dirnames if d not in _SKIP_DIRS]
            for fn in filenames:
                lang = _EXTENSIONS.get(os.path.splitext(fn)[1].lower())
                if lang:
                    found.add(lang)
                seen += 1
            if seen >= _MAX_FILES:
                logger.warning("stopped language detection after %d files", seen)
                break
        return sorted(found)

    @staticmethod
    def _detect_package_manager(repo_root: Path) -> Optional[str]:
        for filename, pm in _PACKAGE_MANAGERS:
            if (repo_root / filename).is_file():
                return pm
        return None

    @staticmethod
    def _verify_commands(repo_root: Path, pm: Optional[str]) -> List[str]:
        if pm == "cargo":
            return ["cargo build", "cargo test"]
        if pm in ("npm", "yarn", "pnpm"):
            scripts = _package_json_scripts(repo_root / "package.json")
            cmds = []
            if "build" in scripts:
                cmds.append(f"{pm} run build")
            if "test" in scripts:
                cmds.append(f"{pm} test")
            return cmds
        if pm == "poetry":
            return ["poetry run pytest"]
        if pm == "uv":
            return ["uv run pytest"]
        if pm == "pip":
            return ["python -m pytest"]
        if pm == "go":
            return ["go build ./...", "go test ./..."]
        if pm == "bundler":
            return ["bundle exec rake test"]
        if pm == "maven":
            return ["mvn -q test"]
        if pm == "gradle":
            return ["gradle test"]
        return []


def _package_json_scripts(path: Path) -> Dict[str, Any]:
    try:
        obj = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("could not read %s: %s", path, e)
        return {}
    scripts = obj.get("scripts") if isinstance(obj, dict) else None
    return scripts if isinstance(scripts, dict) else {}


def list_files(repo_root: Path, *, limit: int = 200) -> List[str]:
    """
    Repository-relative file paths (POSIX separators), sorted, skipping VCS and build directories.
    """
    out: List[str] = []
    for dirpath, dirnames, filenames in os.walk(repo_root):
        dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS)
        rel_dir = Path(dirpath).relative_to(repo_root)
        for fn in sorted(filenames):
            out.append((rel_dir / fn).as_posix())
            if len(out) >= limit:
                return out
    return out
