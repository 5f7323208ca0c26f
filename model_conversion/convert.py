"""
Format Conversion Pipeline Stage

Turns an uploaded mesh (GLB, GLTF, FBX, OBJ) into a single canonical GLB
file inside the job workspace.

Every converter has the same contract: ``convert(input_path, work_dir)``
returns the GLB path or raises ConversionError. The orchestrator only
depends on that contract, never on which tool does the work.
"""

import shutil
from pathlib import Path
from typing import Dict, Optional, Protocol
from rich.console import Console

from .blender_scripts import CONVERT_TO_GLB, blender_command, write_script
from .config import ConversionConfig
from .runner import CommandError, CommandRunner

console = Console()

SUPPORTED_EXTENSIONS = ('.glb', '.gltf', '.fbx', '.obj')
CANONICAL_NAME = "model.glb"


class UnsupportedFormat(ValueError):
    """Input file extension is not one of the supported mesh formats."""
    pass


class ConversionError(Exception):
    """A format converter failed or produced no output."""
    pass


class Converter(Protocol):
    def convert(self, input_path: Path, work_dir: Path) -> Path:
        ...


def input_extension(input_path: Path) -> str:
    """
    Return the normalised extension of an input file.

    Raises:
        UnsupportedFormat: If the extension is not supported
    """
    ext = Path(input_path).suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFormat(
            f"Unsupported file format: {ext or '(none)'}. "
            f"Supported: {', '.join(SUPPORTED_EXTENSIONS)}"
        )
    return ext


def _require_output(output_path: Path, tool: str) -> Path:
    if not output_path.exists() or output_path.stat().st_size == 0:
        raise ConversionError(f"{tool} produced no output: {output_path}")
    return output_path


class GlbCopyConverter:
    """GLB input is already canonical: copy it into the workspace."""

    def convert(self, input_path: Path, work_dir: Path) -> Path:
        output_path = work_dir / CANONICAL_NAME
        try:
            shutil.copyfile(input_path, output_path)
        except OSError as e:
            raise ConversionError(f"Failed to copy GLB: {e}")
        return _require_output(output_path, "GLB copy")


class GltfPipelineConverter:
    """Repackage a GLTF (+ external buffers/textures) into a single GLB."""

    def __init__(self, runner: CommandRunner, tool_path: str = "gltf-pipeline"):
        self.runner = runner
        self.tool_path = tool_path

    def convert(self, input_path: Path, work_dir: Path) -> Path:
        output_path = work_dir / CANONICAL_NAME
        cmd = [self.tool_path, '-i', str(input_path), '-o', str(output_path)]
        try:
            self.runner.run(cmd, cwd=work_dir)
        except CommandError as e:
            raise ConversionError(f"GLTF to GLB conversion failed: {e}")
        return _require_output(output_path, self.tool_path)


def convert_with_trimesh(input_path: Path, output_path: Path) -> Path:
    """Load a mesh with trimesh and export it as GLB."""
    try:
        import trimesh
    except ImportError:
        raise ConversionError("trimesh not installed. Run: pip install trimesh")

    try:
        scene = trimesh.load(str(input_path), force='scene')
        data = scene.export(file_type='glb')
    except Exception as e:
        raise ConversionError(f"Failed to convert {Path(input_path).name} with trimesh: {e}")

    output_path.write_bytes(data)
    return _require_output(output_path, "trimesh")


class BlenderConverter:
    """
    Import FBX/OBJ in headless Blender and export GLB.

    OBJ falls back to trimesh when Blender is missing or fails. FBX has no
    fallback.
    """

    def __init__(self, runner: CommandRunner, source_format: str, blender_path: str = "blender"):
        if source_format not in ('fbx', 'obj'):
            raise ValueError(f"Blender converter does not handle {source_format}")
        self.runner = runner
        self.source_format = source_format
        self.blender_path = blender_path

    def convert(self, input_path: Path, work_dir: Path) -> Path:
        output_path = work_dir / CANONICAL_NAME
        script_path = write_script(work_dir, "convert.py", CONVERT_TO_GLB)
        cmd = blender_command(
            self.blender_path,
            script_path,
            self.source_format,
            Path(input_path).resolve(),
            output_path.resolve(),
        )
        try:
            self.runner.run(cmd, cwd=work_dir)
        except CommandError as e:
            if self.source_format != 'obj':
                raise ConversionError(
                    f"{self.source_format.upper()} to GLB conversion failed: {e}"
                )
            console.print("[yellow]Blender conversion failed. Using trimesh for OBJ import.[/yellow]")
            try:
                return convert_with_trimesh(input_path, output_path)
            except ConversionError as fallback_error:
                raise ConversionError(f"OBJ to GLB conversion failed: {e}; {fallback_error}")
        return _require_output(output_path, "Blender")


def build_converters(
    runner: CommandRunner,
    config: Optional[ConversionConfig] = None,
) -> Dict[str, Converter]:
    """Default converter for each supported extension."""
    config = config or ConversionConfig()
    return {
        '.glb': GlbCopyConverter(),
        '.gltf': GltfPipelineConverter(runner, config.gltf_pipeline_path),
        '.fbx': BlenderConverter(runner, 'fbx', config.blender_path),
        '.obj': BlenderConverter(runner, 'obj', config.blender_path),
    }


def get_converter(ext: str, converters: Dict[str, Converter]) -> Converter:
    ext = ext.lower()
    if ext not in converters:
        raise UnsupportedFormat(f"No converter registered for {ext}")
    return converters[ext]


def convert_to_glb(
    input_path: Path,
    work_dir: Path,
    converters: Dict[str, Converter],
) -> Path:
    """
    Convert an input mesh to the canonical GLB.

    Args:
        input_path: Uploaded file
        work_dir: Job workspace
        converters: Extension -> converter mapping

    Returns:
        Path to ``<work_dir>/model.glb``
    """
    input_path = Path(input_path)
    if not input_path.exists():
        raise ConversionError(f"Input file not found: {input_path}")

    converter = get_converter(input_extension(input_path), converters)
    console.print(f"[blue]Converting {input_path.name} to GLB...[/blue]")
    glb_path = converter.convert(input_path, work_dir)
    size_kb = glb_path.stat().st_size / 1024
    console.print(f"[green]Canonical GLB ready: {glb_path.name} ({size_kb:.1f} KB)[/green]")
    return glb_path
