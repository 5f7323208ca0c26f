"""Utility functions for the conversion pipeline."""

from .glb import (
    GlbError,
    build_glb,
    parse_glb,
    read_glb,
)
from .validation import (
    GltfDocument,
    ModelMetadata,
    validate_input_file,
)

__all__ = [
    "GlbError",
    "build_glb",
    "parse_glb",
    "read_glb",
    "GltfDocument",
    "ModelMetadata",
    "validate_input_file",
]
