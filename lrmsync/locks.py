from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path

import portalocker

from lrmsync.project import project_dir


class RunLockBusy(RuntimeError):
    pass


def run_lock_path(project_root: Path) -> Path:
    return project_dir(project_root) / "run.lock"


@contextmanager
def acquire_run_lock(project_root: Path, *, timeout: float = 0):
    """Hold the working-copy lock so local state and files see one writer."""
    lock_path = run_lock_path(project_root)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock = portalocker.Lock(str(lock_path), mode="a+", timeout=timeout)
    try:
        lock.acquire()
    except portalocker.LockException as exc:
        raise RunLockBusy(f"another lrmsync command is running in {project_root}") from exc
    try:
        yield lock
    finally:
        lock.release()
