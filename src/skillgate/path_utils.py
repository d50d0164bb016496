"""Path helpers: advisory locks, atomic writes and project-relative paths.

file_lock + atomic_write keep per-session state files consistent when a
host runs several hook processes for the same session at once.
"""

import fcntl
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Optional


@contextmanager
def file_lock(filepath: Path, shared: bool = False):
    """Acquire an advisory file lock (fcntl.flock) on a .lock sidecar.

    Args:
        filepath: The file to lock (a .lock sidecar is used)
        shared: If True, acquire a shared (read) lock; otherwise exclusive (write)

    Usage:
        with file_lock(state_file):
            state = json.loads(state_file.read_text())
            ...
    """
    lock_path = Path(str(filepath) + ".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_fd = open(lock_path, "w")
    try:
        op = fcntl.LOCK_SH if shared else fcntl.LOCK_EX
        fcntl.flock(lock_fd, op)
        yield
    finally:
        fcntl.flock(lock_fd, fcntl.LOCK_UN)
        lock_fd.close()


@contextmanager
def atomic_write(filepath: Path, mode: str = "w", lock: bool = True):
    """Write to a file atomically using tmp + os.replace pattern.

    Pass lock=False when the caller already holds file_lock(filepath);
    flock is per open file, so taking it twice from one process deadlocks.

    Usage:
        with atomic_write(Path("skill-rules.json")) as f:
            f.write(text)
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    if lock:
        with file_lock(filepath):
            with _replace_via_tmp(filepath, mode) as f:
                yield f
    else:
        with _replace_via_tmp(filepath, mode) as f:
            yield f


@contextmanager
def _replace_via_tmp(filepath: Path, mode: str):
    fd, tmp_path = tempfile.mkstemp(
        dir=filepath.parent,
        prefix=f".{filepath.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, mode) as f:
            yield f
        os.replace(tmp_path, filepath)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def project_relative(file_path: str, project_dir: Optional[Path] = None) -> str:
    """Express file_path relative to project_dir when it lies inside it.

    Rule globs are written relative to the project root, while hosts usually
    report absolute paths. Paths outside the project are returned unchanged.
    """
    path = Path(file_path)
    if not path.is_absolute() or project_dir is None:
        return file_path
    try:
        return path.relative_to(Path(project_dir)).as_posix()
    except ValueError:
        pass
    try:
        return path.resolve().relative_to(Path(project_dir).resolve()).as_posix()
    except (ValueError, OSError):
        return file_path
