from .run_store import Run, RunStore, new_run, write_artifact, write_log_file

__all__ = ["Run", "RunStore", "new_run", "write_artifact", "write_log_file"]
