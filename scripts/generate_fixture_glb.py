#!/usr/bin/env python3
"""
Generate a colored cube as GLB, GLTF and OBJ fixtures.

Writes one model in every supported input format so the conversion service
can be exercised end to end (including the Blender and gltf-pipeline paths)
without a real upload.

Usage:
    python scripts/generate_fixture_glb.py [output_dir] [--pad-to BYTES]

Then run the pipeline:
    python -m model_conversion.process convert fixtures/cube.glb
"""

import argparse
import base64
import json
import numpy as np
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).parent.parent))

from utils.glb import align4, build_glb


# ── Scene: colored cube ──────────────────────────────────────────────

CUBE_HALF = 0.5  # half-size in meters (1m cube)

CORNERS = np.array([
    [-1, -1, -1],  # 0
    [ 1, -1, -1],  # 1
    [ 1,  1, -1],  # 2
    [-1,  1, -1],  # 3
    [-1, -1,  1],  # 4
    [ 1, -1,  1],  # 5
    [ 1,  1,  1],  # 6
    [-1,  1,  1],  # 7
], dtype=np.float32) * CUBE_HALF

# (corner indices counter-clockwise seen from outside, outward normal)
FACES = [
    ([4, 5, 6, 7], [0, 0, 1]),    # front  (+Z)
    ([1, 0, 3, 2], [0, 0, -1]),   # back   (-Z)
    ([5, 1, 2, 6], [1, 0, 0]),    # right  (+X)
    ([0, 4, 7, 3], [-1, 0, 0]),   # left   (-X)
    ([7, 6, 2, 3], [0, 1, 0]),    # top    (+Y)
    ([0, 1, 5, 4], [0, -1, 0]),   # bottom (-Y)
]


def cube_geometry():
    """Per-face vertices (24), normals and triangle indices (36)."""
    positions = []
    normals = []
    indices = []
    for face, normal in FACES:
        base = len(positions)
        for corner in face:
            positions.append(CORNERS[corner])
            normals.append(normal)
        indices.extend([base, base + 1, base + 2, base, base + 2, base + 3])

    return (
        np.array(positions, dtype=np.float32),
        np.array(normals, dtype=np.float32),
        np.array(indices, dtype=np.uint16),
    )


def build_document(positions, normals, indices):
    """glTF JSON plus the packed binary buffer for the cube."""
    pos_bytes = positions.tobytes()
    nrm_bytes = normals.tobytes()
    idx_bytes = indices.tobytes()

    nrm_offset = align4(len(pos_bytes))
    idx_offset = align4(nrm_offset + len(nrm_bytes))
    binary = bytearray(idx_offset + len(idx_bytes))
    binary[0:len(pos_bytes)] = pos_bytes
    binary[nrm_offset:nrm_offset + len(nrm_bytes)] = nrm_bytes
    binary[idx_offset:idx_offset + len(idx_bytes)] = idx_bytes

    document = {
        "asset": {"version": "2.0", "generator": "model-conversion fixture"},
        "scene": 0,
        "scenes": [{"nodes": [0]}],
        "nodes": [{"mesh": 0, "name": "Cube"}],
        "meshes": [{
            "name": "Cube",
            "primitives": [{
                "attributes": {"POSITION": 0, "NORMAL": 1},
                "indices": 2,
                "material": 0,
                "mode": 4,
            }],
        }],
        "materials": [{
            "name": "Indigo",
            "pbrMetallicRoughness": {
                "baseColorFactor": [0.39, 0.4, 0.95, 1.0],
                "metallicFactor": 0.0,
                "roughnessFactor": 0.6,
            },
        }],
        "accessors": [
            {
                "bufferView": 0, "componentType": 5126, "count": len(positions), "type": "VEC3",
                "min": positions.min(axis=0).tolist(), "max": positions.max(axis=0).tolist(),
            },
            {"bufferView": 1, "componentType": 5126, "count": len(normals), "type": "VEC3"},
            {"bufferView": 2, "componentType": 5123, "count": len(indices), "type": "SCALAR"},
        ],
        "bufferViews": [
            {"buffer": 0, "byteOffset": 0, "byteLength": len(pos_bytes), "target": 34962},
            {"buffer": 0, "byteOffset": nrm_offset, "byteLength": len(nrm_bytes), "target": 34962},
            {"buffer": 0, "byteOffset": idx_offset, "byteLength": len(idx_bytes), "target": 34963},
        ],
        "buffers": [{"byteLength": len(binary)}],
    }
    return document, bytes(binary)


def write_glb(path: Path, pad_to: int = None) -> Path:
    positions, normals, indices = cube_geometry()
    document, binary = build_document(positions, normals, indices)

    if pad_to:
        size = len(build_glb(document, binary))
        if pad_to < size or pad_to % 4:
            raise ValueError(f"--pad-to must be a multiple of 4 and at least {size}")
        binary += b"\x00" * (pad_to - size)
        document["buffers"][0]["byteLength"] = len(binary)

    path.write_bytes(build_glb(document, binary))
    return path


def write_gltf(path: Path) -> Path:
    positions, normals, indices = cube_geometry()
    document, binary = build_document(positions, normals, indices)
    encoded = base64.b64encode(binary).decode("ascii")
    document["buffers"][0]["uri"] = f"data:application/octet-stream;base64,{encoded}"
    path.write_text(json.dumps(document, indent=2))
    return path


def write_obj(path: Path) -> Path:
    positions, normals, indices = cube_geometry()
    lines = ["# model-conversion fixture cube", "o Cube"]
    lines += [f"v {x:.6f} {y:.6f} {z:.6f}" for x, y, z in positions]
    lines += [f"vn {x:.6f} {y:.6f} {z:.6f}" for x, y, z in normals]
    for tri in indices.reshape(-1, 3):
        a, b, c = (int(i) + 1 for i in tri)
        lines.append(f"f {a}//{a} {b}//{b} {c}//{c}")
    path.write_text("\n".join(lines) + "\n")
    return path


def main():
    parser = argparse.ArgumentParser(description="Generate cube fixtures for the conversion pipeline")
    parser.add_argument("output_dir", nargs="?", default="fixtures", help="Output directory")
    parser.add_argument("--pad-to", type=int, help="Pad the GLB binary chunk to this total file size")
    args = parser.parse_args()

    out = Path(args.output_dir)
    out.mkdir(parents=True, exist_ok=True)

    glb = write_glb(out / "cube.glb", args.pad_to)
    gltf = write_gltf(out / "cube.gltf")
    obj = write_obj(out / "cube.obj")

    for path in (glb, gltf, obj):
        print(f"  {path} ({path.stat().st_size:,} bytes)")
    print(f"\nDone. Try: python -m model_conversion.process convert {glb}")


if __name__ == "__main__":
    main()
