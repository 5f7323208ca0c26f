"""
Publishing Stage

Uploads the optimized GLB, USDZ and thumbnail through object storage, mints
the short AR link and uploads a QR code pointing at it.
"""

import secrets
import string
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional
import qrcode
from PIL import Image
from rich.console import Console

from .config import ConversionConfig
from .storage import ModelStore, ObjectStorage

console = Console()

SHORT_LINK_ALPHABET = string.ascii_letters + string.digits + "_-"
MAX_SHORT_LINK_ATTEMPTS = 10

CONTENT_TYPES = {
    'glb': 'model/gltf-binary',
    'usdz': 'model/vnd.usdz+zip',
    'jpg': 'image/jpeg',
    'png': 'image/png',
}


class PublishError(Exception):
    """Artifact upload failed."""
    pass


@dataclass
class UploadedArtifacts:
    glb_url: str
    usdz_url: str
    thumbnail_url: str


@dataclass
class ShareLink:
    short_link: str
    ar_url: str
    qr_code_url: Optional[str] = None


def random_id(length: int = 8) -> str:
    return ''.join(secrets.choice(SHORT_LINK_ALPHABET) for _ in range(length))


def generate_short_link(
    exists: Callable[[str], bool],
    length: int = 8,
    max_attempts: int = MAX_SHORT_LINK_ATTEMPTS,
) -> str:
    """
    Generate a random short link not already used by another model.

    Raises:
        PublishError: If every attempt collided
    """
    for _ in range(max_attempts):
        candidate = random_id(length)
        if not exists(candidate):
            return candidate
    raise PublishError(f"Could not generate a unique short link after {max_attempts} attempts")


def generate_qr_code(url: str, output_path: Path, config: Optional[ConversionConfig] = None) -> Path:
    """
    Render a QR code PNG for a URL.

    The module size is picked so the image is close to ``config.qr_size``
    pixels, then resized to exactly that size.
    """
    config = config or ConversionConfig()
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=1,
        border=config.qr_border,
    )
    qr.add_data(url)
    qr.make(fit=True)

    total_modules = qr.modules_count + 2 * config.qr_border
    qr.box_size = max(1, config.qr_size // total_modules)

    img = qr.make_image(fill_color=config.qr_dark_color, back_color=config.qr_light_color)
    pil_image = img.get_image().convert('RGB')
    if pil_image.size != (config.qr_size, config.qr_size):
        pil_image = pil_image.resize((config.qr_size, config.qr_size), Image.Resampling.NEAREST)

    output_path = output_path.with_suffix('.png')
    output_path.parent.mkdir(parents=True, exist_ok=True)
    pil_image.save(output_path, 'PNG')
    return output_path


def _upload(storage: ObjectStorage, local_path: Path, key: str, fmt: str) -> str:
    try:
        url = storage.upload(local_path, key, content_type=CONTENT_TYPES[fmt])
    except Exception as e:
        raise PublishError(f"Failed to upload processed {fmt.upper()} file: {e}") from e
    if not url:
        raise PublishError(f"Storage returned no URL for {key}")
    return url


def artifact_keys(model_id: str) -> Dict[str, str]:
    processed = f"models/{model_id}/processed"
    return {
        'glb': f"{processed}/{random_id(8)}.glb",
        'usdz': f"{processed}/{random_id(8)}.usdz",
        'jpg': f"models/{model_id}/thumbnail.jpg",
    }


def upload_artifacts(
    model_id: str,
    glb_path: Path,
    usdz_path: Path,
    thumbnail_path: Path,
    object_storage: ObjectStorage,
) -> UploadedArtifacts:
    """
    Upload GLB, USDZ and thumbnail concurrently.

    Raises:
        PublishError: If any upload fails (all failures are reported together)
    """
    keys = artifact_keys(model_id)
    sources = {'glb': glb_path, 'usdz': usdz_path, 'jpg': thumbnail_path}

    with ThreadPoolExecutor(max_workers=3, thread_name_prefix=f"upload-{model_id}") as pool:
        futures = {
            fmt: pool.submit(_upload, object_storage, sources[fmt], keys[fmt], fmt)
            for fmt in ('glb', 'usdz', 'jpg')
        }
        urls = {}
        errors = []
        for fmt, future in futures.items():
            try:
                urls[fmt] = future.result()
            except PublishError as e:
                errors.append(str(e))

    if errors:
        raise PublishError("; ".join(errors))

    console.print(f"[green]Uploaded {len(urls)} artifacts for model {model_id}[/green]")
    return UploadedArtifacts(
        glb_url=urls['glb'],
        usdz_url=urls['usdz'],
        thumbnail_url=urls['jpg'],
    )


def create_share_link(
    work_dir: Path,
    object_storage: ObjectStorage,
    model_store: ModelStore,
    config: Optional[ConversionConfig] = None,
) -> ShareLink:
    """
    Mint a unique short link and upload its QR code.

    A QR code that cannot be rendered is skipped with a warning; a QR upload
    failure raises PublishError.
    """
    config = config or ConversionConfig()
    short_link = generate_short_link(model_store.short_link_exists, config.short_link_length)
    ar_url = f"{config.ar_url_prefix}/{short_link}"

    qr_code_url = None
    try:
        qr_path = generate_qr_code(ar_url, work_dir / f"qr-{short_link}.png", config)
    except (ValueError, OSError) as e:
        console.print(f"[yellow]Failed to generate QR code: {e}[/yellow]")
    else:
        qr_code_url = _upload(object_storage, qr_path, f"qr/{short_link}.png", 'png')

    console.print(f"[green]Published AR link: {ar_url}[/green]")
    return ShareLink(short_link=short_link, ar_url=ar_url, qr_code_url=qr_code_url)
