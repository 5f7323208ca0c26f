"""
WebAR Optimization Stage

Draco-compresses the canonical GLB with gltf-pipeline. Optimization is a
delivery-quality improvement only: when the tool fails or is missing the
unoptimized GLB is used instead.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from rich.console import Console

from .config import ConversionConfig
from .runner import CommandError, CommandRunner

console = Console()


class OptimizationWarning(UserWarning):
    """Optimizer failed; the unoptimized GLB is used."""
    pass


@dataclass
class OptimizeResult:
    path: Path
    optimized: bool
    warning: Optional[str] = None


def optimize_command(glb_path: Path, output_path: Path, config: ConversionConfig) -> list:
    return [
        config.gltf_pipeline_path,
        '-i', str(glb_path),
        '-o', str(output_path),
        '-d',
        '--draco.compressionLevel', str(config.draco_compression_level),
        '--draco.quantizePositionBits', str(config.draco_quantize_position_bits),
    ]


def optimize_for_webar(
    glb_path: Path,
    work_dir: Path,
    runner: CommandRunner,
    config: Optional[ConversionConfig] = None,
) -> OptimizeResult:
    """
    Optimize a GLB for network delivery.

    Returns:
        OptimizeResult with the path to use downstream. ``optimized`` is False
        when the original file was returned.
    """
    config = config or ConversionConfig()
    output_path = work_dir / "optimized.glb"

    try:
        runner.run(optimize_command(glb_path, output_path, config), cwd=work_dir)
        if not output_path.exists() or output_path.stat().st_size == 0:
            raise OptimizationWarning(f"Optimizer produced no output: {output_path}")
    except (CommandError, OptimizationWarning) as e:
        message = f"Optimization failed, using original file: {e}"
        console.print(f"[yellow]{message}[/yellow]")
        return OptimizeResult(path=glb_path, optimized=False, warning=str(e))

    before = glb_path.stat().st_size
    after = output_path.stat().st_size
    reduction = (1 - after / before) * 100 if before else 0
    console.print(f"[green]Optimized GLB: {before / 1024:.1f} KB -> {after / 1024:.1f} KB "
                  f"({reduction:.1f}% reduction)[/green]")
    return OptimizeResult(path=output_path, optimized=True)
