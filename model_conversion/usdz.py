"""
iOS Artifact Stage

Generates the USDZ counterpart used by AR Quick Look. When the USD toolchain
is unavailable a placeholder USDZ is written instead and the artifact is
marked degraded, so the model can still be published for Android/WebXR.
"""

import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from rich.console import Console

from .config import ConversionConfig
from .runner import CommandError, CommandRunner

console = Console()

PLACEHOLDER_USDA = '''#usda 1.0
(
    doc = "Placeholder: USDZ conversion unavailable"
    defaultPrim = "Placeholder"
)

def Xform "Placeholder"
{
}
'''


class ArtifactFallback(UserWarning):
    """An artifact generator failed and a placeholder was substituted."""
    pass


@dataclass
class ArtifactResult:
    path: Path
    degraded: bool = False
    warning: Optional[str] = None


def write_placeholder_usdz(output_path: Path) -> Path:
    """
    Write a minimal USDZ archive holding an empty stage.

    USDZ archives are uncompressed zips, so the entry is stored, not deflated.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(output_path, 'w', compression=zipfile.ZIP_STORED) as zf:
        zf.writestr("placeholder.usda", PLACEHOLDER_USDA)
    return output_path


def generate_usdz(
    glb_path: Path,
    work_dir: Path,
    runner: CommandRunner,
    config: Optional[ConversionConfig] = None,
) -> ArtifactResult:
    """
    Convert a GLB to USDZ with usd_from_gltf.

    Never raises for tool problems: falls back to a placeholder archive.
    """
    config = config or ConversionConfig()
    usdz_path = work_dir / "model.usdz"

    try:
        runner.run([config.usd_from_gltf_path, str(glb_path), str(usdz_path)], cwd=work_dir)
        if not usdz_path.exists() or usdz_path.stat().st_size == 0:
            raise ArtifactFallback(f"usd_from_gltf produced no output: {usdz_path}")
    except (CommandError, ArtifactFallback) as e:
        console.print(f"[yellow]USDZ generation failed, creating placeholder: {e}[/yellow]")
        write_placeholder_usdz(usdz_path)
        return ArtifactResult(path=usdz_path, degraded=True, warning=str(e))

    console.print(f"[green]Generated USDZ: {usdz_path.name}[/green]")
    return ArtifactResult(path=usdz_path)
