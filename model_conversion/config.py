"""
Conversion Service Configuration

Paths to external tools, the working-directory root and the public base URL
for shareable AR links. Everything here can be overridden from the
environment or from CLI options.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


@dataclass
class ConversionConfig:
    """Configuration for the conversion service."""
    # Filesystem
    temp_dir: Path = Path("/tmp/nexora-conversion")

    # External tools
    blender_path: str = "blender"
    gltf_pipeline_path: str = "gltf-pipeline"
    usd_from_gltf_path: str = "usd_from_gltf"
    command_timeout: Optional[float] = 600.0

    # Draco settings tuned for AR delivery
    draco_compression_level: int = 10
    draco_quantize_position_bits: int = 12

    # Thumbnail render
    thumbnail_size: int = 400

    # Publishing
    base_url: str = "https://nexora.app"
    short_link_length: int = 8
    qr_size: int = 300
    qr_border: int = 2
    qr_dark_color: str = "#6366F1"
    qr_light_color: str = "#FFFFFF"

    # Workers
    worker_count: int = 2
    queue_size: int = 32

    # Registry retention
    retention_hours: float = 24.0
    sweep_interval_seconds: float = 3600.0

    def __post_init__(self):
        self.temp_dir = Path(self.temp_dir)
        self.base_url = self.base_url.rstrip("/")
        if self.worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        if self.queue_size < 1:
            raise ValueError("queue_size must be at least 1")

    @property
    def ar_url_prefix(self) -> str:
        return f"{self.base_url}/ar"

    @classmethod
    def from_env(cls, **overrides) -> "ConversionConfig":
        """
        Build a configuration from environment variables.

        Recognised variables:
            TEMP_DIR, BLENDER_PATH, GLTF_PIPELINE_PATH, USD_FROM_GLTF_PATH,
            BASE_URL, CONVERSION_WORKERS, CONVERSION_QUEUE_SIZE, COMMAND_TIMEOUT

        Keyword overrides win over the environment.
        """
        defaults = cls()
        timeout_env = os.environ.get("COMMAND_TIMEOUT")
        values = {
            "temp_dir": Path(os.environ.get("TEMP_DIR", str(defaults.temp_dir))),
            "blender_path": os.environ.get("BLENDER_PATH", defaults.blender_path),
            "gltf_pipeline_path": os.environ.get("GLTF_PIPELINE_PATH", defaults.gltf_pipeline_path),
            "usd_from_gltf_path": os.environ.get("USD_FROM_GLTF_PATH", defaults.usd_from_gltf_path),
            "base_url": os.environ.get("BASE_URL", defaults.base_url),
            "worker_count": _env_int("CONVERSION_WORKERS", defaults.worker_count),
            "queue_size": _env_int("CONVERSION_QUEUE_SIZE", defaults.queue_size),
            "command_timeout": float(timeout_env) if timeout_env else defaults.command_timeout,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
