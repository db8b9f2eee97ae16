from __future__ import annotations

import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

from aeye.core.config import NLPG_DIR
from aeye.core.errors import ResourceError, ValidationError
from aeye.trace.trace_emitter import TraceEmitter
from aeye.trace.trace_store_jsonl import TraceStoreJSONL


RUNS_DIR = "runs"
LOGS_DIR = "logs"
TRACE_FILENAME = "trace.jsonl"

_NEW_RUN_ATTEMPTS = 5


def _check_name(name: str) -> str:
    if not isinstance(name, str) or not name or name in (".", ".."):
        raise ValidationError(code="artifact.invalid_name", message="Artifact name must be a non-empty file name")
    if "/" in name or "\\" in name:
        raise ValidationError(
            code="artifact.invalid_name",
            message="Artifact name must not contain path separators",
            data={"name": name},
        )
    return name


def _new_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return f"{ts}-{secrets.token_hex(4)}"


@dataclass(frozen=True)
class Run:
    """
    One invocation's identity and artifact namespace.

    Every artifact, log entry and trace event of the invocation lives under `path`.
    Runs are never deleted by the tool itself.
    """

    id: str
    path: Path

    @property
    def trace_path(self) -> Path:
        return self.path / TRACE_FILENAME

    def trace(self) -> TraceEmitter:
        return TraceEmitter(store=TraceStoreJSONL(self.trace_path), run_id=self.id)

    def artifact_path(self, name: str) -> Path:
        return self.path / _check_name(name)

    def has_artifact(self, name: str) -> bool:
        return self.artifact_path(name).is_file()

    def write_artifact(self, name: str, value: Any) -> Path:
        """
        Serialize `value` under the run namespace, replacing any previous content.

        str is written as UTF-8 text, bytes verbatim, anything else as indented JSON.
        """
        p = self.artifact_path(name)
        try:
            if isinstance(value, bytes):
                p.write_bytes(value)
            elif isinstance(value, str):
                p.write_text(value, encoding="utf-8")
            else:
                p.write_text(json.dumps(value, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        except OSError as e:
            raise ResourceError(
                code="artifact.write_failed",
                message=f"Failed to write artifact: {p}",
                data={"path": str(p), "error": str(e)},
            ) from e
        return p

    def read_artifact(self, name: str) -> str:
        p = self.artifact_path(name)
        try:
            return p.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ResourceError(
                code="artifact.missing",
                message=f"Could not find {name} in {self.path}",
                data={"path": str(p)},
            ) from e
        except OSError as e:
            raise ResourceError(code="artifact.read_failed", message=f"Failed to read artifact: {p}", data={"path": str(p)}) from e

    def read_json_artifact(self, name: str) -> Any:
        raw = self.read_artifact(name)
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ResourceError(
                code="artifact.invalid_json",
                message=f"{name} in run {self.id} is not valid JSON",
                data={"path": str(self.artifact_path(name))},
            ) from e

    def write_log_file(self, name: str, content: str) -> Path:
        """
        Append a free-form diagnostic entry (retry/error narratives) under `logs/`.
        """
        logs_dir = self.path / LOGS_DIR
        p = logs_dir / _check_name(name)
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
            with p.open("a", encoding="utf-8") as f:
                f.write(content if content.endswith("\n") else content + "\n")
        except OSError as e:
            raise ResourceError(
                code="run.log_write_failed",
                message=f"Failed to write log file: {p}",
                data={"path": str(p), "error": str(e)},
            ) from e
        return p


class RunStore:
    """
    Allocates and looks up runs under `<repo>/.nlpg/runs/`.
    """

    def __init__(self, repo_root: Path):
        self._root = repo_root / NLPG_DIR / RUNS_DIR

    @property
    def root(self) -> Path:
        return self._root

    def new_run(self) -> Run:
        last_error: Optional[OSError] = None
        for _ in range(_NEW_RUN_ATTEMPTS):
            run_id = _new_run_id()
            path = self._root / run_id
            try:
                path.mkdir(parents=True, exist_ok=False)
            except FileExistsError as e:
                last_error = e
                continue
            except OSError as e:
                raise ResourceError(
                    code="run.create_failed",
                    message=f"Failed to create run directory: {path}",
                    data={"path": str(path), "error": str(e)},
                ) from e
            return Run(id=run_id, path=path)
        raise ResourceError(
            code="run.create_failed",
            message=f"Could not allocate a unique run directory under {self._root}",
            data={"path": str(self._root), "error": str(last_error)},
        )

    def open(self, run_id: str) -> Run:
        path = self._root / _check_name(run_id)
        if not path.is_dir():
            raise ResourceError(code="run.not_found", message=f"Run with ID '{run_id}' not found at {path}", data={"path": str(path)})
        return Run(id=run_id, path=path)

    def list_runs(self) -> List[Run]:
        if not self._root.is_dir():
            return []
        return [Run(id=p.name, path=p) for p in sorted(self._root.iterdir()) if p.is_dir()]

    def latest(self) -> Optional[Run]:
        runs = self.list_runs()
        return runs[-1] if runs else None


def new_run(repo_root: Path) -> Run:
    return RunStore(repo_root).new_run()


def write_artifact(run: Run, name: str, value: Any) -> Path:
    return run.write_artifact(name, value)


def write_log_file(run: Run, name: str, content: str) -> Path:
    return run.write_log_file(name, content)
