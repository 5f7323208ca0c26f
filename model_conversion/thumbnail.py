"""
Thumbnail Stage

Renders a preview JPEG of the model in headless Blender. If rendering fails
a flat placeholder image with a neutral cube icon is drawn locally with
Pillow, so this stage always yields an image.
"""

from pathlib import Path
from typing import Optional, Tuple
from PIL import Image, ImageDraw
from rich.console import Console

from .blender_scripts import RENDER_THUMBNAIL, blender_command, write_script
from .config import ConversionConfig
from .runner import CommandError, CommandRunner
from .usdz import ArtifactFallback, ArtifactResult

console = Console()

BACKGROUND = (243, 244, 246)
ICON_TOP = (209, 213, 219)
ICON_LEFT = (156, 163, 175)
ICON_RIGHT = (107, 114, 128)


def create_placeholder_thumbnail(
    output_path: Path,
    size: Tuple[int, int] = (400, 400),
    quality: int = 85,
) -> Path:
    """
    Draw a placeholder thumbnail: light grey background with an isometric cube.

    Returns:
        Path to the written JPEG
    """
    width, height = size
    img = Image.new('RGB', (width, height), BACKGROUND)
    draw = ImageDraw.Draw(img)

    cx, cy = width / 2, height / 2
    r = min(width, height) * 0.22
    h = r * 0.5

    top = [(cx, cy - r), (cx + r, cy - h), (cx, cy), (cx - r, cy - h)]
    left = [(cx - r, cy - h), (cx, cy), (cx, cy + r), (cx - r, cy + h)]
    right = [(cx, cy), (cx + r, cy - h), (cx + r, cy + h), (cx, cy + r)]

    draw.polygon(top, fill=ICON_TOP)
    draw.polygon(left, fill=ICON_LEFT)
    draw.polygon(right, fill=ICON_RIGHT)

    output_path = output_path.with_suffix('.jpg')
    output_path.parent.mkdir(parents=True, exist_ok=True)
    img.save(output_path, 'JPEG', quality=quality)
    return output_path


def _is_readable_image(path: Path) -> bool:
    try:
        with Image.open(path) as img:
            img.verify()
        return True
    except (OSError, SyntaxError):
        return False


def generate_thumbnail(
    glb_path: Path,
    work_dir: Path,
    runner: CommandRunner,
    config: Optional[ConversionConfig] = None,
) -> ArtifactResult:
    """
    Render a thumbnail of the model.

    Falls back to a placeholder image on any render failure.
    """
    config = config or ConversionConfig()
    thumbnail_path = work_dir / "thumbnail.jpg"
    size = config.thumbnail_size

    try:
        script_path = write_script(work_dir, "thumbnail.py", RENDER_THUMBNAIL)
        cmd = blender_command(
            config.blender_path,
            script_path,
            Path(glb_path).resolve(),
            thumbnail_path.resolve(),
            size,
        )
        runner.run(cmd, cwd=work_dir)
        if not thumbnail_path.exists() or not _is_readable_image(thumbnail_path):
            raise ArtifactFallback(f"Render produced no readable image: {thumbnail_path}")
    except (CommandError, ArtifactFallback, OSError) as e:
        console.print(f"[yellow]Thumbnail generation failed, using placeholder: {e}[/yellow]")
        create_placeholder_thumbnail(thumbnail_path, (size, size))
        return ArtifactResult(path=thumbnail_path, degraded=True, warning=str(e))

    console.print(f"[green]Rendered thumbnail: {thumbnail_path.name}[/green]")
    return ArtifactResult(path=thumbnail_path)
