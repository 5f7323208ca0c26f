"""Shared fixtures: synthetic GLB files and a fake external-tool executor."""

import subprocess
import threading
import zipfile
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest
from PIL import Image

from model_conversion.config import ConversionConfig
from model_conversion.process import ConversionService
from model_conversion.runner import CommandRunner
from model_conversion.storage import InMemoryModelStore, LocalObjectStorage
from utils.glb import build_glb


def make_gltf_document(
    vertices: int = 24,
    indices: Optional[int] = 36,
    textures: int = 1,
    mode: int = 4,
) -> Dict:
    """A minimal glTF document with one mesh primitive."""
    accessors = [{
        "bufferView": 0,
        "componentType": 5126,
        "count": vertices,
        "type": "VEC3",
        "min": [-0.5, -0.5, -0.5],
        "max": [0.5, 0.5, 0.5],
    }]
    primitive = {"attributes": {"POSITION": 0}, "mode": mode}
    if indices is not None:
        accessors.append({
            "bufferView": 1,
            "componentType": 5123,
            "count": indices,
            "type": "SCALAR",
        })
        primitive["indices"] = 1

    return {
        "asset": {"version": "2.0", "generator": "tests"},
        "scene": 0,
        "scenes": [{"nodes": [0]}],
        "nodes": [{"mesh": 0}],
        "meshes": [{"name": "Cube", "primitives": [primitive]}],
        "accessors": accessors,
        "bufferViews": [
            {"buffer": 0, "byteOffset": 0, "byteLength": vertices * 12},
            {"buffer": 0, "byteOffset": vertices * 12, "byteLength": (indices or 0) * 2},
        ],
        "buffers": [{"byteLength": vertices * 12 + (indices or 0) * 2}],
        "textures": [{"source": i} for i in range(textures)],
        "images": [{"uri": f"texture_{i}.png"} for i in range(textures)],
    }


def make_glb_bytes(size: Optional[int] = None, **kwargs) -> bytes:
    """
    Build a GLB. When ``size`` is given the BIN chunk is padded so the file
    is exactly that many bytes (size must be a multiple of 4).
    """
    document = make_gltf_document(**kwargs)
    if size is None:
        return build_glb(document, b"\x00" * 1024)

    header_and_json = len(build_glb(document))
    bin_length = size - header_and_json - 8
    assert bin_length > 0 and bin_length % 4 == 0
    data = build_glb(document, b"\x00" * bin_length)
    assert len(data) == size
    return data


def write_glb(path: Path, size: Optional[int] = None, **kwargs) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(make_glb_bytes(size, **kwargs))
    return path


def write_input(directory: Path, name: str) -> Path:
    """Write an input fixture for any supported extension."""
    path = directory / name
    path.parent.mkdir(parents=True, exist_ok=True)
    ext = path.suffix.lower()
    if ext == '.glb':
        return write_glb(path)
    if ext == '.gltf':
        path.write_text('{"asset": {"version": "2.0"}}')
    elif ext == '.obj':
        path.write_text("v 0 0 0\nv 1 0 0\nv 0 1 0\nf 1 2 3\n")
    else:
        path.write_bytes(b"Kaydara FBX Binary  \x00" + b"\x00" * 64)
    return path


class FakeTools:
    """
    Stands in for subprocess.run when the command is one of the external
    tools. Writes plausible outputs so the pipeline can complete.

    Args:
        missing: Tool names that behave as if not installed
        crash: Tool names that exit non-zero
        crash_scripts: Blender script names that exit non-zero
        block_on: Blender script name that waits on ``release`` before finishing
        barrier: Rendezvous every ``block_on`` call must reach before finishing
    """

    def __init__(
        self,
        missing: Set[str] = frozenset(),
        crash: Set[str] = frozenset(),
        crash_scripts: Set[str] = frozenset(),
        block_on: Optional[str] = None,
        barrier: Optional[threading.Barrier] = None,
    ):
        self.missing = set(missing)
        self.crash = set(crash)
        self.crash_scripts = set(crash_scripts)
        self.block_on = block_on
        self.barrier = barrier
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls: List[Dict] = []
        self._lock = threading.Lock()

    def __call__(self, cmd, cwd=None, capture_output=True, text=True, timeout=None):
        assert isinstance(cmd, list)
        with self._lock:
            self.calls.append({"cmd": list(cmd), "cwd": cwd})

        tool = Path(cmd[0]).name
        if tool in self.missing:
            raise FileNotFoundError(cmd[0])
        if tool in self.crash:
            return subprocess.CompletedProcess(cmd, 1, "", f"{tool}: Segmentation fault")

        if tool == "gltf-pipeline":
            source = Path(cmd[cmd.index('-i') + 1])
            output = Path(cmd[cmd.index('-o') + 1])
            if source.suffix == '.gltf':
                output.write_bytes(make_glb_bytes())
            else:
                # Pretend Draco shaved some bytes off
                data = source.read_bytes()
                output.write_bytes(data[: max(len(data) // 2, 20)])
        elif tool == "blender":
            script = Path(cmd[cmd.index('--python') + 1]).name
            args = cmd[cmd.index('--') + 1:]
            if script == self.block_on:
                self.started.set()
                if self.barrier is not None:
                    self.barrier.wait()
                else:
                    self.release.wait(timeout=10)
            if script in self.crash_scripts:
                return subprocess.CompletedProcess(cmd, 1, "", "Blender quit: Error")
            if script == "convert.py":
                Path(args[2]).write_bytes(make_glb_bytes())
            elif script == "thumbnail.py":
                size = int(args[2])
                Image.new('RGB', (size, size), (120, 80, 200)).save(args[1], 'JPEG')
        elif tool == "usd_from_gltf":
            with zipfile.ZipFile(cmd[2], 'w') as zf:
                zf.writestr("model.usdc", b"PXR-USDC" + b"\x00" * 32)
        else:
            raise FileNotFoundError(cmd[0])

        return subprocess.CompletedProcess(cmd, 0, "done", "")

    def cwds_for(self, job_id: str) -> Set[str]:
        with self._lock:
            return {c["cwd"] for c in self.calls if c["cwd"] and Path(c["cwd"]).name == job_id}


@pytest.fixture
def config(tmp_path):
    return ConversionConfig(
        temp_dir=tmp_path / "work",
        base_url="https://ar.test",
        worker_count=2,
        queue_size=8,
    )


@pytest.fixture
def fake_tools():
    return FakeTools()


@pytest.fixture
def model_store():
    return InMemoryModelStore()


@pytest.fixture
def object_storage(tmp_path):
    return LocalObjectStorage(tmp_path / "cdn", "https://cdn.test")


@pytest.fixture
def make_service(config, model_store, object_storage):
    """Factory building a service around a given fake tool executor."""
    services = []

    def factory(tools: FakeTools, **overrides):
        runner = CommandRunner(executor=tools)
        kwargs = dict(
            model_store=model_store,
            object_storage=object_storage,
            config=config,
            runner=runner,
        )
        kwargs.update(overrides)
        service = ConversionService(**kwargs)
        services.append(service)
        return service

    yield factory

    for service in services:
        service.shutdown(wait=True)
