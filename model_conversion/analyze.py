"""
Model Analysis Stage

Extracts size and geometry statistics from the canonical GLB. Metadata is
auxiliary: this stage never fails a job. If the GLB cannot be parsed the
counts are reported as zero and marked approximate.
"""

from pathlib import Path
from typing import Optional
import numpy as np
from pydantic import ValidationError
from rich.console import Console

from utils.glb import GlbError, read_glb
from utils.validation import GltfDocument, GltfPrimitive, ModelBounds, ModelMetadata

console = Console()


def count_primitive_triangles(prim: GltfPrimitive, document: GltfDocument) -> int:
    """Number of triangles drawn by one primitive."""
    if prim.indices is not None:
        n = document.accessors[prim.indices].count
    elif "POSITION" in prim.attributes:
        n = document.accessors[prim.attributes["POSITION"]].count
    else:
        return 0

    if prim.mode == 4:  # TRIANGLES
        return n // 3
    if prim.mode in (5, 6):  # TRIANGLE_STRIP, TRIANGLE_FAN
        return max(n - 2, 0)
    return 0


def compute_bounds(document: GltfDocument) -> Optional[ModelBounds]:
    """Axis-aligned bounds over all POSITION accessors that declare min/max."""
    mins = []
    maxs = []
    for mesh in document.meshes:
        for prim in mesh.primitives:
            ref = prim.attributes.get("POSITION")
            if ref is None:
                continue
            accessor = document.accessors[ref]
            if accessor.min and accessor.max and len(accessor.min) == 3 and len(accessor.max) == 3:
                mins.append(accessor.min)
                maxs.append(accessor.max)

    if not mins:
        return None

    lo = np.min(np.array(mins, dtype=float), axis=0)
    hi = np.max(np.array(maxs, dtype=float), axis=0)
    return ModelBounds(min=lo.tolist(), max=hi.tolist())


def summarize_document(document: GltfDocument) -> dict:
    vertices = 0
    triangles = 0
    for mesh in document.meshes:
        for prim in mesh.primitives:
            ref = prim.attributes.get("POSITION")
            if ref is not None:
                vertices += document.accessors[ref].count
            triangles += count_primitive_triangles(prim, document)

    return {
        "vertices": vertices,
        "triangles": triangles,
        "textures": len(document.textures),
        "bounds": compute_bounds(document),
    }


def analyze_model(glb_path: Path) -> ModelMetadata:
    """
    Analyze a GLB file.

    Returns:
        ModelMetadata with file size from the filesystem and geometry counts
        from the glTF JSON chunk
    """
    glb_path = Path(glb_path)
    try:
        file_size = glb_path.stat().st_size
    except OSError as e:
        console.print(f"[yellow]Failed to stat model {glb_path}: {e}[/yellow]")
        return ModelMetadata(file_size=0, approximate=True)

    try:
        glb = read_glb(glb_path)
        document = GltfDocument.model_validate(glb.document)
        summary = summarize_document(document)
    except (OSError, GlbError, ValidationError) as e:
        console.print(f"[yellow]Could not parse GLB structure, counts are approximate: {e}[/yellow]")
        return ModelMetadata(file_size=file_size, approximate=True)

    metadata = ModelMetadata(file_size=file_size, **summary)
    console.print(f"  Vertices: {metadata.vertices}")
    console.print(f"  Triangles: {metadata.triangles}")
    console.print(f"  Textures: {metadata.textures}")
    console.print(f"  File size: {metadata.file_size / 1024:.1f} KB")
    return metadata
