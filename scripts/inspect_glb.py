#!/usr/bin/env python3
"""
Inspect a GLB container: header, chunks, buffer views and geometry stats.

Useful when a conversion produces an artifact that viewers refuse to load.

Usage:
    python scripts/inspect_glb.py path/to/model.glb [--json]
"""

import argparse
import json
import struct
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent))

from pydantic import ValidationError

from model_conversion.analyze import summarize_document
from utils.glb import CHUNK_HEADER_SIZE, HEADER_SIZE, GlbError, align4, parse_glb
from utils.validation import GltfDocument


def list_chunks(data: bytes):
    """Yield (type, offset, length) for every chunk in the container."""
    offset = HEADER_SIZE
    total = min(struct.unpack_from("<I", data, 8)[0], len(data))
    while offset + CHUNK_HEADER_SIZE <= total:
        length, chunk_type = struct.unpack_from("<II", data, offset)
        name = struct.pack("<I", chunk_type).rstrip(b"\x00").decode("ascii", "replace")
        yield name, offset, length
        offset = align4(offset + CHUNK_HEADER_SIZE + length)


def check_buffer_views(document: dict, binary_length: int):
    """Return problems with buffer views that point outside the BIN chunk."""
    problems = []
    for i, view in enumerate(document.get("bufferViews", [])):
        if view.get("buffer", 0) != 0:
            continue
        end = view.get("byteOffset", 0) + view.get("byteLength", 0)
        if end > binary_length:
            problems.append(f"bufferView {i} ends at {end}, BIN chunk is {binary_length} bytes")
    return problems


def main():
    parser = argparse.ArgumentParser(description="Inspect GLB file structure")
    parser.add_argument("input", help="Path to a .glb file")
    parser.add_argument("--json", action="store_true", help="Dump the JSON chunk")
    args = parser.parse_args()

    path = Path(args.input)
    data = path.read_bytes()
    print(f"File: {path} ({len(data):,} bytes)")

    try:
        glb = parse_glb(data)
    except GlbError as e:
        print(f"  INVALID: {e}")
        sys.exit(1)

    print(f"  glTF version: {glb.version}, declared length: {glb.length:,}")
    if glb.length != len(data):
        print(f"  WARNING: {len(data) - glb.length} trailing bytes after declared length")

    print("\n=== Chunks ===")
    for name, offset, length in list_chunks(data):
        print(f"  {name:<5} @ {offset:>8}  {length:,} bytes")

    asset = glb.document.get("asset", {})
    print("\n=== Asset ===")
    print(f"  version: {asset.get('version')}  generator: {asset.get('generator', '-')}")

    for problem in check_buffer_views(glb.document, len(glb.binary)):
        print(f"  WARNING: {problem}")

    print("\n=== Geometry ===")
    try:
        document = GltfDocument.model_validate(glb.document)
    except ValidationError as e:
        print(f"  Schema errors:\n{e}")
        sys.exit(1)

    summary = summarize_document(document)
    print(f"  Meshes: {len(document.meshes)}")
    print(f"  Vertices: {summary['vertices']:,}")
    print(f"  Triangles: {summary['triangles']:,}")
    print(f"  Textures: {summary['textures']}  Materials: {len(document.materials)}")
    if summary["bounds"]:
        print(f"  Bounds: {summary['bounds'].min} -> {summary['bounds'].max}")

    if args.json:
        print("\n=== JSON chunk ===")
        print(json.dumps(glb.document, indent=2))


if __name__ == "__main__":
    main()
