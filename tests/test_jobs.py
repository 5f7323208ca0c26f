"""Tests for job state, the job registry and configuration."""

import re
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def create_job(clock=None, model_id="model-1"):
    from model_conversion.jobs import ConversionJob

    kwargs = {"clock": clock} if clock else {}
    return ConversionJob(model_id=model_id, input_file=Path("/uploads/burger.glb"), **kwargs)


class TestConversionJob:
    """Tests for job state transitions."""

    def test_new_job(self):
        from model_conversion.jobs import JobStatus

        job = create_job()
        assert re.match(r"^[A-Za-z0-9_-]{12}$", job.id)
        assert job.status == JobStatus.PENDING
        assert job.output_files.to_dict() == {}
        assert job.end_time is None

    def test_start_time_uses_job_clock(self):
        clock = FakeClock()
        job = create_job(clock)
        assert job.start_time == clock.now

        clock.advance(minutes=5)
        job.mark_processing()
        job.mark_failed("Blender crashed")
        assert job.end_time - job.start_time == timedelta(minutes=5)
        assert job.to_dict()["startTime"] == "2024-01-15T10:30:00+00:00"

    def test_ids_are_unique(self):
        assert len({create_job().id for _ in range(200)}) == 200

    def test_complete_is_terminal(self):
        from model_conversion.jobs import JobStatus

        clock = FakeClock()
        job = create_job(clock)
        assert job.mark_processing()
        clock.advance(seconds=42)

        assert job.mark_complete()
        assert job.status == JobStatus.COMPLETE
        assert job.end_time == clock.now
        assert job.end_time >= job.start_time

        # Terminal: later transitions are no-ops
        assert not job.mark_failed("late failure")
        assert job.status == JobStatus.COMPLETE
        assert job.error is None

    def test_failed_is_terminal(self):
        from model_conversion.jobs import JobStatus

        job = create_job()
        job.mark_processing()
        assert job.mark_failed("Blender crashed")
        assert not job.mark_complete()
        assert not job.mark_failed("second error")

        assert job.status == JobStatus.FAILED
        assert job.error == "Blender crashed"

    def test_processing_only_from_pending(self):
        job = create_job()
        assert job.mark_processing()
        assert not job.mark_processing()

    def test_logs_are_timestamped_and_ordered(self):
        clock = FakeClock()
        job = create_job(clock)

        job.append_log("Conversion started...")
        clock.advance(seconds=1)
        entry = job.append_log("Analyzing model...")

        assert entry == "[2024-01-15T10:30:01+00:00] Analyzing model..."
        assert job.logs[0].endswith("Conversion started...")

        snapshot = job.log_snapshot()
        job.append_log("more")
        assert len(snapshot) == 2
        assert len(job.logs) == 3

    def test_to_dict(self):
        job = create_job()
        job.mark_processing()
        job.degraded.add("usdz")
        data = job.to_dict()

        assert data["modelId"] == "model-1"
        assert data["status"] == "processing"
        assert data["endTime"] is None
        assert data["degraded"] == ["usdz"]


class TestJobRegistry:
    """Tests for the in-memory job registry."""

    def test_add_and_lookup(self):
        from model_conversion.jobs import JobRegistry

        registry = JobRegistry()
        a = create_job(model_id="m1")
        b = create_job(model_id="m1")
        c = create_job(model_id="m2")
        for job in (a, b, c):
            registry.add(job)

        assert registry.get(a.id) is a
        assert registry.get("missing") is None
        assert {j.id for j in registry.jobs_for_model("m1")} == {a.id, b.id}
        assert len(registry) == 3
        assert c.id in registry

        with pytest.raises(KeyError):
            registry.add(a)

    def test_sweep_evicts_only_expired_jobs(self):
        from model_conversion.jobs import JobRegistry

        clock = FakeClock()
        registry = JobRegistry(retention=timedelta(hours=24), clock=clock)

        old = create_job(clock)
        old.mark_processing()
        old.mark_complete()

        clock.advance(hours=2)
        recent = create_job(clock)
        recent.mark_processing()
        recent.mark_failed("boom")

        running = create_job(clock)
        running.mark_processing()

        for job in (old, recent, running):
            registry.add(job)

        clock.advance(hours=21)
        assert registry.sweep() == []

        clock.advance(hours=1, seconds=1)
        assert registry.sweep() == [old.id]
        assert old.id not in registry
        assert recent.id in registry

        # Never-finished jobs are never evicted
        clock.advance(days=30)
        assert registry.sweep() == [recent.id]
        assert registry.all() == [running]

    def test_sweep_with_explicit_time(self):
        from model_conversion.jobs import JobRegistry

        clock = FakeClock()
        registry = JobRegistry(clock=clock)
        job = create_job(clock)
        job.mark_processing()
        job.mark_complete()
        registry.add(job)

        assert registry.sweep(now=clock.now + timedelta(hours=24)) == []
        assert registry.sweep(now=clock.now + timedelta(hours=24, microseconds=1)) == [job.id]

    def test_sweeper_thread(self):
        from model_conversion.jobs import JobRegistry, RegistrySweeper

        clock = FakeClock()
        registry = JobRegistry(clock=clock)
        job = create_job(clock)
        job.mark_processing()
        job.mark_complete()
        registry.add(job)
        clock.advance(hours=25)

        sweeper = RegistrySweeper(registry, interval=0.01)
        sweeper.start()
        try:
            deadline = time.monotonic() + 5
            while job.id in registry and time.monotonic() < deadline:
                time.sleep(0.01)
            assert sweeper.running
        finally:
            sweeper.stop()

        assert job.id not in registry
        assert not sweeper.running


class TestConfig:
    """Tests for service configuration."""

    def test_defaults(self):
        from model_conversion.config import ConversionConfig

        config = ConversionConfig()
        assert config.temp_dir == Path("/tmp/nexora-conversion")
        assert config.ar_url_prefix == "https://nexora.app/ar"
        assert config.draco_compression_level == 10
        assert config.draco_quantize_position_bits == 12
        assert config.thumbnail_size == 400
        assert config.qr_size == 300

    def test_from_env(self, monkeypatch, tmp_path):
        from model_conversion.config import ConversionConfig

        monkeypatch.setenv("TEMP_DIR", str(tmp_path))
        monkeypatch.setenv("BLENDER_PATH", "/opt/blender/blender")
        monkeypatch.setenv("BASE_URL", "https://example.com/")
        monkeypatch.setenv("CONVERSION_WORKERS", "4")
        monkeypatch.setenv("COMMAND_TIMEOUT", "90")

        config = ConversionConfig.from_env(blender_path=None, gltf_pipeline_path="/usr/bin/gltf-pipeline")

        assert config.temp_dir == tmp_path
        assert config.blender_path == "/opt/blender/blender"
        assert config.gltf_pipeline_path == "/usr/bin/gltf-pipeline"
        assert config.base_url == "https://example.com"
        assert config.worker_count == 4
        assert config.command_timeout == 90.0

    def test_invalid_values(self, monkeypatch):
        from model_conversion.config import ConversionConfig

        with pytest.raises(ValueError):
            ConversionConfig(worker_count=0)

        monkeypatch.setenv("CONVERSION_QUEUE_SIZE", "lots")
        with pytest.raises(ValueError, match="CONVERSION_QUEUE_SIZE"):
            ConversionConfig.from_env()
