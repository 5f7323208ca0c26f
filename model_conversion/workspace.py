"""
Workspace Manager

Each conversion job gets its own directory under the shared temp root,
named after the job id. The directory is removed once the job is terminal.
"""

import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator
from rich.console import Console

console = Console()


class WorkspaceError(Exception):
    """Error allocating a job workspace."""
    pass


class WorkspaceManager:
    """Allocates and removes per-job working directories."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def ensure_root(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def path_for(self, job_id: str) -> Path:
        # Job ids are generated internally, but refuse anything that would
        # escape the root.
        if not job_id or "/" in job_id or "\\" in job_id or job_id in (".", ".."):
            raise WorkspaceError(f"Invalid job id for workspace: {job_id!r}")
        return self.root / job_id

    def allocate(self, job_id: str) -> Path:
        """
        Create the working directory for a job.

        Raises:
            WorkspaceError: If the directory already exists or cannot be created
        """
        work_dir = self.path_for(job_id)
        try:
            self.ensure_root()
            work_dir.mkdir()
        except FileExistsError:
            raise WorkspaceError(f"Workspace already exists: {work_dir}")
        except OSError as e:
            raise WorkspaceError(f"Failed to create workspace {work_dir}: {e}")
        return work_dir

    def release(self, work_dir: Path) -> bool:
        """
        Remove a working directory.

        Returns False (and prints a warning) instead of raising when removal
        fails.
        """
        try:
            shutil.rmtree(work_dir)
        except FileNotFoundError:
            return True
        except OSError as e:
            console.print(f"[yellow]Failed to cleanup work directory {work_dir}: {e}[/yellow]")
            return False
        return True

    @contextmanager
    def workspace(self, job_id: str) -> Iterator[Path]:
        """Allocate a workspace for the duration of a ``with`` block."""
        work_dir = self.allocate(job_id)
        try:
            yield work_dir
        finally:
            self.release(work_dir)
