"""
Conversion Service Orchestrator

Runs one conversion job per uploaded model:

    convert -> analyze -> optimize -> USDZ -> thumbnail -> upload -> share link

``submit_conversion`` validates the upload, creates the job, marks the model
as processing and returns immediately. A bounded pool of worker threads
consumes the job queue and runs the stages. Stage progress is appended to
the job log and pushed to the model store after every line.
"""

import queue
import threading
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Optional
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
import typer

from utils.validation import validate_input_file
from .analyze import analyze_model
from .config import ConversionConfig
from .convert import SUPPORTED_EXTENSIONS, Converter, build_converters, convert_to_glb, input_extension
from .jobs import ConversionJob, JobRegistry, JobStatus, OutputFiles, RegistrySweeper
from .optimize import optimize_for_webar
from .publish import create_share_link, upload_artifacts
from .runner import CommandRunner, tool_available
from .storage import InMemoryModelStore, LocalObjectStorage, ModelStore, ObjectStorage, PersistenceWarning
from .thumbnail import generate_thumbnail
from .usdz import generate_usdz
from .workspace import WorkspaceManager

console = Console()
app = typer.Typer(help="3D model conversion pipeline")

CANCELLED_MESSAGE = "Job cancelled by user"


class QueueFullError(RuntimeError):
    """The job queue is at capacity; the job was not created."""
    pass


class JobCancelled(Exception):
    """Raised between stages when the job was cancelled."""
    pass


class ConversionService:
    """
    Owns the job registry, the worker pool and the registry sweep.

    Args:
        model_store: Persistence for the model record
        object_storage: Upload target for artifacts
        config: Service configuration
        registry: Job registry (created from config when omitted)
        runner: Command runner used by every external tool stage
        converters: Extension -> converter mapping
    """

    def __init__(
        self,
        model_store: ModelStore,
        object_storage: ObjectStorage,
        config: Optional[ConversionConfig] = None,
        registry: Optional[JobRegistry] = None,
        runner: Optional[CommandRunner] = None,
        converters: Optional[Dict[str, Converter]] = None,
    ):
        self.config = config or ConversionConfig()
        self.model_store = model_store
        self.object_storage = object_storage
        self.registry = registry or JobRegistry(
            retention=timedelta(hours=self.config.retention_hours)
        )
        self.runner = runner or CommandRunner(timeout=self.config.command_timeout)
        self.converters = converters or build_converters(self.runner, self.config)
        self.workspace = WorkspaceManager(self.config.temp_dir)
        self.sweeper = RegistrySweeper(self.registry, self.config.sweep_interval_seconds)

        self._queue: "queue.Queue[Optional[str]]" = queue.Queue(maxsize=self.config.queue_size)
        self._submit_lock = threading.Lock()
        self._workers: List[threading.Thread] = []
        self._closed = False

    # Lifecycle

    def start(self) -> "ConversionService":
        """Start the worker threads and the registry sweep."""
        if self._closed:
            raise RuntimeError("Conversion service has been shut down")
        if self._workers:
            return self

        self.workspace.ensure_root()
        for i in range(self.config.worker_count):
            worker = threading.Thread(
                target=self._worker_loop,
                name=f"conversion-worker-{i}",
                daemon=True,
            )
            worker.start()
            self._workers.append(worker)
        self.sweeper.start()
        console.print(f"[blue]Conversion service started with {len(self._workers)} worker(s)[/blue]")
        return self

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop accepting jobs and stop the workers.

        Queued jobs are processed before the workers exit. In-flight
        subprocesses are not interrupted.
        """
        with self._submit_lock:
            if self._closed:
                return
            self._closed = True

        for _ in self._workers:
            self._queue.put(None)
        if wait:
            for worker in self._workers:
                worker.join()
        self._workers = []
        self.sweeper.stop()
        console.print("[blue]Conversion service stopped[/blue]")

    def join(self) -> None:
        """Block until every queued job has been processed."""
        self._queue.join()

    def __enter__(self) -> "ConversionService":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(wait=True)

    # Public API

    def submit_conversion(self, model_id: str, input_path) -> str:
        """
        Create a conversion job and schedule it on the worker pool.

        Returns:
            The job id

        Raises:
            UnsupportedFormat: Unknown input extension (no job is created)
            FileNotFoundError / PermissionError: Input is missing or unreadable
            IsADirectoryError: Input path exists but is not a regular file
            QueueFullError: The job queue is at capacity (no job is created)
        """
        with self._submit_lock:
            if self._closed:
                raise RuntimeError("Conversion service has been shut down")
            if self._queue.full():
                raise QueueFullError(
                    f"Conversion queue is full ({self.config.queue_size} jobs waiting)"
                )
            job = self._create_job(model_id, input_path)
            self._queue.put_nowait(job.id)

        return job.id

    def convert_now(self, model_id: str, input_path) -> ConversionJob:
        """Create a job and run it synchronously in the calling thread."""
        job = self._create_job(model_id, input_path)
        return self.run_job(job)

    def get_job_status(self, job_id: str) -> Optional[ConversionJob]:
        return self.registry.get(job_id)

    def get_model_jobs(self, model_id: str) -> List[ConversionJob]:
        return self.registry.jobs_for_model(model_id)

    def cancel_job(self, job_id: str) -> bool:
        """
        Mark a processing job as failed.

        The running subprocess, if any, is left to finish; the worker stops
        at the next stage boundary and no later transition is applied.

        Returns:
            True if the job was cancelled
        """
        job = self.registry.get(job_id)
        if job is None:
            return False

        with job.write_lock:
            if job.status != JobStatus.PROCESSING or not job.mark_failed(CANCELLED_MESSAGE):
                return False
            self._log(job, CANCELLED_MESSAGE, persist=False)
            self._persist(job, {"status": "failed", "processingLogs": job.log_snapshot()})
        return True

    # Pipeline

    def run_job(self, job: ConversionJob) -> ConversionJob:
        """Run every pipeline stage for a job. Never raises for stage failures."""
        if job.is_terminal:
            return job

        work_dir = None
        try:
            work_dir = self.workspace.allocate(job.id)
            job.work_dir = work_dir
            self._stage(job, "Starting conversion process...")

            ext = input_extension(job.input_file)
            self._stage(job, f"Converting {ext.lstrip('.').upper()} to GLB...")
            glb_path = convert_to_glb(job.input_file, work_dir, self.converters)

            self._stage(job, "Analyzing model...")
            metadata = analyze_model(glb_path)
            if metadata.approximate:
                self._warn(job, "Warning: could not read model geometry, statistics are approximate")

            self._stage(job, "Optimizing for WebAR...")
            optimized = optimize_for_webar(glb_path, work_dir, self.runner, self.config)
            metadata.optimized = optimized.optimized
            if not optimized.optimized:
                self._warn(job, f"Warning: optimization skipped, using unoptimized GLB ({optimized.warning})")

            self._stage(job, "Generating USDZ for iOS...")
            usdz = generate_usdz(optimized.path, work_dir, self.runner, self.config)
            if usdz.degraded:
                job.degraded.add("usdz")
                self._warn(job, f"Warning: USDZ generation failed, using placeholder ({usdz.warning})")

            self._stage(job, "Creating thumbnail...")
            thumbnail = generate_thumbnail(optimized.path, work_dir, self.runner, self.config)
            if thumbnail.degraded:
                job.degraded.add("thumbnail")
                self._warn(job, f"Warning: thumbnail render failed, using placeholder ({thumbnail.warning})")

            self._stage(job, "Uploading processed files...")
            uploaded = upload_artifacts(
                job.model_id, optimized.path, usdz.path, thumbnail.path, self.object_storage
            )
            self._ensure_active(job)
            job.output_files = OutputFiles(
                glb=uploaded.glb_url,
                usdz=uploaded.usdz_url,
                thumbnail=uploaded.thumbnail_url,
            )

            self._stage(job, "Generating WebAR link...")
            link = create_share_link(work_dir, self.object_storage, self.model_store, self.config)
            self._ensure_active(job)
            job.short_link = link.short_link
            job.qr_code_url = link.qr_code_url

            metadata.degraded = sorted(job.degraded)
            job.metadata = metadata

            with job.write_lock:
                if not job.mark_complete():
                    raise JobCancelled(job.id)

                self._persist(job, {
                    "status": "complete",
                    "glbFileUrl": uploaded.glb_url,
                    "usdzFileUrl": uploaded.usdz_url,
                    "thumbnailUrl": uploaded.thumbnail_url,
                    "shortLink": link.short_link,
                    "qrCodeUrl": link.qr_code_url,
                    "metadata": metadata.to_record(),
                    "processingLogs": job.log_snapshot(),
                })
                self._log(job, "Conversion completed successfully!")

        except JobCancelled:
            console.print(f"[yellow]Job {job.id} was cancelled, remaining stages skipped[/yellow]")
        except Exception as e:
            self._fail(job, str(e) or e.__class__.__name__)
        finally:
            if work_dir is not None:
                if not self.workspace.release(work_dir):
                    self._log(job, f"Warning: failed to clean up working directory {work_dir}")
                job.work_dir = None

        return job

    # Internals

    def _create_job(self, model_id: str, input_path) -> ConversionJob:
        input_path = Path(input_path)
        input_extension(input_path)

        is_valid, _, errors = validate_input_file(input_path, SUPPORTED_EXTENSIONS)
        if not is_valid:
            if not input_path.exists():
                raise FileNotFoundError(f"Input file not found: {input_path}")
            if not input_path.is_file():
                raise IsADirectoryError(f"Input path is not a file: {input_path}")
            raise PermissionError("; ".join(errors))

        job = ConversionJob(model_id=model_id, input_file=input_path, clock=self.registry.clock)
        self.registry.add(job)
        job.mark_processing()

        with job.write_lock:
            job.append_log("Conversion started...")
            self._persist(job, {"status": "processing", "processingLogs": job.log_snapshot()})
        console.print(f"[blue]Created conversion job {job.id} for model {model_id} "
                      f"({escape(input_path.name)})[/blue]")
        return job

    def _worker_loop(self) -> None:
        while True:
            job_id = self._queue.get()
            try:
                if job_id is None:
                    return
                job = self.registry.get(job_id)
                if job is not None:
                    self.run_job(job)
            except Exception as e:
                console.print(f"[red]Worker error for job {job_id}: {escape(str(e))}[/red]")
            finally:
                self._queue.task_done()

    def _stage(self, job: ConversionJob, message: str) -> None:
        with job.write_lock:
            self._ensure_active(job)
            self._log(job, message)

    def _ensure_active(self, job: ConversionJob) -> None:
        if job.is_terminal:
            raise JobCancelled(job.id)

    def _warn(self, job: ConversionJob, message: str) -> None:
        # A cancelled job gets no further progress lines
        with job.write_lock:
            if not job.is_terminal:
                self._log(job, message)

    def _log(self, job: ConversionJob, message: str, persist: bool = True) -> None:
        # Append and store write are atomic per job
        with job.write_lock:
            job.append_log(message)
            console.print(f"[dim]\\[Job {job.id}][/dim] {escape(message)}")
            if persist:
                self._persist(job, {"processingLogs": job.log_snapshot()})

    def _persist(self, job: ConversionJob, fields: Dict) -> bool:
        try:
            self.model_store.update_model(job.model_id, fields)
        except Exception as e:
            warning = PersistenceWarning(f"Failed to update model {job.model_id}: {e}")
            console.print(f"[yellow]{escape(str(warning))}[/yellow]")
            return False
        return True

    def _fail(self, job: ConversionJob, error: str) -> None:
        with job.write_lock:
            if not job.mark_failed(error):
                return
            console.print(f"[bold red]Conversion failed:[/bold red] {escape(error)}")
            self._log(job, f"Conversion failed: {error}", persist=False)
            self._persist(job, {"status": "failed", "processingLogs": job.log_snapshot()})


@app.command()
def convert(
    input_path: Path = typer.Argument(..., help="Path to a .glb, .gltf, .fbx or .obj file"),
    output_dir: Path = typer.Option(Path("./output"), help="Directory for published artifacts"),
    model_id: str = typer.Option("local-model", help="Model identifier used in storage keys"),
    base_url: Optional[str] = typer.Option(None, help="Base URL for shareable AR links"),
    blender: Optional[str] = typer.Option(None, help="Path to the Blender binary"),
    temp_dir: Optional[Path] = typer.Option(None, help="Working-directory root"),
):
    """
    Convert a single model and publish its artifacts to a local directory.
    """
    config = ConversionConfig.from_env(
        base_url=base_url,
        blender_path=blender,
        temp_dir=temp_dir,
    )
    model_store = InMemoryModelStore()
    model_store.create_model(model_id)
    storage = LocalObjectStorage(output_dir)
    service = ConversionService(model_store, storage, config)

    console.print(Panel.fit(
        "[bold blue]3D Model Conversion[/bold blue]\n"
        f"Input: {input_path}\n"
        f"Output: {output_dir}",
        border_style="blue"
    ))

    try:
        job = service.convert_now(model_id, input_path)
    except (ValueError, OSError) as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)

    if job.status != JobStatus.COMPLETE:
        console.print(f"[bold red]Conversion failed:[/bold red] {escape(job.error or 'unknown error')}")
        raise typer.Exit(1)

    metadata = job.metadata
    degraded = ", ".join(sorted(job.degraded)) or "none"
    console.print(Panel.fit(
        f"[bold green]Conversion Complete![/bold green]\n\n"
        f"Job ID: {job.id}\n"
        f"GLB: {job.output_files.glb}\n"
        f"USDZ: {job.output_files.usdz}\n"
        f"Thumbnail: {job.output_files.thumbnail}\n"
        f"AR link: {config.ar_url_prefix}/{job.short_link}\n"
        f"Vertices: {metadata.vertices}  Triangles: {metadata.triangles}\n"
        f"Degraded artifacts: {degraded}",
        border_style="green"
    ))


@app.command("inspect")
def inspect_model(
    glb_path: Path = typer.Argument(..., help="Path to a .glb file"),
):
    """Print size and geometry statistics for a GLB file."""
    if not glb_path.exists():
        console.print(f"[bold red]Error:[/bold red] File not found: {glb_path}")
        raise typer.Exit(1)

    metadata = analyze_model(glb_path)
    console.print(f"[bold]{escape(glb_path.name)}[/bold]")
    console.print(f"  File size: {metadata.file_size:,} bytes")
    console.print(f"  Vertices: {metadata.vertices:,}")
    console.print(f"  Triangles: {metadata.triangles:,}")
    console.print(f"  Textures: {metadata.textures}")
    if metadata.approximate:
        console.print("[yellow]GLB structure could not be parsed; counts are approximate[/yellow]")
    if metadata.bounds:
        console.print(f"  Bounds: {metadata.bounds.min} -> {metadata.bounds.max}")


@app.command("stages")
def list_stages():
    """List all pipeline stages."""
    stages = [
        ("1. Convert", "Convert GLB/GLTF/FBX/OBJ to a canonical GLB"),
        ("2. Analyze", "Extract vertex, triangle and texture counts"),
        ("3. Optimize", "Draco-compress the GLB for WebAR (falls back to original)"),
        ("4. USDZ", "Generate the iOS Quick Look artifact (falls back to placeholder)"),
        ("5. Thumbnail", "Render a preview image (falls back to placeholder)"),
        ("6. Upload", "Upload GLB, USDZ and thumbnail concurrently"),
        ("7. Share", "Create the short AR link and QR code"),
    ]

    console.print("[bold]Pipeline Stages:[/bold]\n")
    for name, desc in stages:
        console.print(f"  [blue]{name}[/blue]: {desc}")

    config = ConversionConfig.from_env()
    tools = [
        ("Blender", config.blender_path),
        ("gltf-pipeline", config.gltf_pipeline_path),
        ("usd_from_gltf", config.usd_from_gltf_path),
    ]

    console.print("\n[bold]External tools:[/bold]\n")
    for label, binary in tools:
        if tool_available(binary):
            console.print(f"  {label}: [green]found[/green] ({escape(binary)})")
        else:
            console.print(f"  {label}: [yellow]not found, stage uses its fallback[/yellow]")


if __name__ == "__main__":
    app()
