"""
Conversion jobs and the in-memory job registry.

A job is created per conversion attempt and mutated only by the service and
its stages. The registry holds jobs by id and evicts finished jobs once they
are older than the retention window.
"""

import secrets
import string
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set
from rich.console import Console

from utils.validation import ModelMetadata

console = Console()

JOB_ID_ALPHABET = string.ascii_letters + string.digits + "_-"
JOB_ID_LENGTH = 12

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return ''.join(secrets.choice(JOB_ID_ALPHABET) for _ in range(JOB_ID_LENGTH))


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.FAILED)


@dataclass
class OutputFiles:
    glb: Optional[str] = None
    usdz: Optional[str] = None
    thumbnail: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        return {k: v for k, v in (("glb", self.glb), ("usdz", self.usdz),
                                  ("thumbnail", self.thumbnail)) if v}


@dataclass
class ConversionJob:
    """State of one conversion attempt."""
    model_id: str
    input_file: Path
    id: str = field(default_factory=new_job_id)
    status: JobStatus = JobStatus.PENDING
    output_files: OutputFiles = field(default_factory=OutputFiles)
    logs: List[str] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error: Optional[str] = None
    metadata: Optional[ModelMetadata] = None
    short_link: Optional[str] = None
    qr_code_url: Optional[str] = None
    degraded: Set[str] = field(default_factory=set)
    work_dir: Optional[Path] = None
    clock: Clock = field(default=utcnow, repr=False, compare=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)
    # Held across a log append and the store write that publishes it
    write_lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def __post_init__(self):
        if self.start_time is None:
            self.start_time = self.clock()

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def append_log(self, message: str) -> str:
        """Append a timestamped log line and return it."""
        entry = f"[{self.clock().isoformat()}] {message}"
        with self._lock:
            self.logs.append(entry)
        return entry

    def log_snapshot(self) -> List[str]:
        with self._lock:
            return list(self.logs)

    def mark_processing(self) -> bool:
        with self._lock:
            if self.status != JobStatus.PENDING:
                return False
            self.status = JobStatus.PROCESSING
            return True

    def mark_complete(self) -> bool:
        """Transition to complete. No-op (returns False) if already terminal."""
        with self._lock:
            if self.is_terminal:
                return False
            self.status = JobStatus.COMPLETE
            self.end_time = self.clock()
            return True

    def mark_failed(self, error: str) -> bool:
        """Transition to failed. No-op (returns False) if already terminal."""
        with self._lock:
            if self.is_terminal:
                return False
            self.status = JobStatus.FAILED
            self.error = error
            self.end_time = self.clock()
            return True

    def to_dict(self) -> Dict:
        with self._lock:
            return {
                "id": self.id,
                "modelId": self.model_id,
                "status": self.status.value,
                "inputFile": str(self.input_file),
                "outputFiles": self.output_files.to_dict(),
                "logs": list(self.logs),
                "startTime": self.start_time.isoformat(),
                "endTime": self.end_time.isoformat() if self.end_time else None,
                "error": self.error,
                "metadata": self.metadata.to_record() if self.metadata else None,
                "shortLink": self.short_link,
                "qrCodeUrl": self.qr_code_url,
                "degraded": sorted(self.degraded),
            }


class JobRegistry:
    """
    Thread-safe map of job id -> job with time-based eviction.

    Args:
        retention: How long a finished job is kept after its end time
        clock: Returns the current UTC time (injectable for tests)
    """

    def __init__(self, retention: timedelta = timedelta(hours=24), clock: Clock = utcnow):
        self.retention = retention
        self.clock = clock
        self._jobs: Dict[str, ConversionJob] = {}
        self._lock = threading.Lock()

    def add(self, job: ConversionJob) -> None:
        with self._lock:
            if job.id in self._jobs:
                raise KeyError(f"Duplicate job id: {job.id}")
            self._jobs[job.id] = job

    def get(self, job_id: str) -> Optional[ConversionJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def jobs_for_model(self, model_id: str) -> List[ConversionJob]:
        with self._lock:
            return [j for j in self._jobs.values() if j.model_id == model_id]

    def all(self) -> List[ConversionJob]:
        with self._lock:
            return list(self._jobs.values())

    def sweep(self, now: Optional[datetime] = None) -> List[str]:
        """
        Evict jobs whose end time is older than the retention window.

        Returns:
            Ids of evicted jobs
        """
        cutoff = (now or self.clock()) - self.retention
        with self._lock:
            expired = [
                job_id for job_id, job in self._jobs.items()
                if job.end_time is not None and job.end_time < cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            console.print(f"[dim]Evicted {len(expired)} expired conversion job(s)[/dim]")
        return expired

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs


class RegistrySweeper:
    """Background thread that sweeps a registry at a fixed interval."""

    def __init__(self, registry: JobRegistry, interval: float = 3600.0):
        self.registry = registry
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="job-registry-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.registry.sweep()
            except Exception as e:
                console.print(f"[red]Job registry sweep failed: {e}[/red]")
