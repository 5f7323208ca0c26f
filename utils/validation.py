"""Validation models for glTF documents, model metadata and input files."""

import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, Field, field_validator, model_validator

# Pydantic models for the subset of the glTF 2.0 JSON schema we read

PRIMITIVE_MODES = {
    0: "POINTS",
    1: "LINES",
    2: "LINE_LOOP",
    3: "LINE_STRIP",
    4: "TRIANGLES",
    5: "TRIANGLE_STRIP",
    6: "TRIANGLE_FAN",
}


class GltfAccessor(BaseModel):
    count: int = Field(..., ge=0)
    component_type: int = Field(..., alias="componentType")
    type: str
    min: Optional[List[float]] = None
    max: Optional[List[float]] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class GltfPrimitive(BaseModel):
    attributes: Dict[str, int]
    indices: Optional[int] = None
    mode: int = 4

    model_config = {"extra": "allow"}

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v):
        if v not in PRIMITIVE_MODES:
            raise ValueError(f"Invalid primitive mode: {v}")
        return v


class GltfMesh(BaseModel):
    name: Optional[str] = None
    primitives: List[GltfPrimitive] = Field(..., min_length=1)

    model_config = {"extra": "allow"}


class GltfAsset(BaseModel):
    version: str
    generator: Optional[str] = None

    model_config = {"extra": "allow"}


class GltfDocument(BaseModel):
    """Pydantic model for a glTF JSON document."""

    asset: GltfAsset
    accessors: List[GltfAccessor] = Field(default_factory=list)
    meshes: List[GltfMesh] = Field(default_factory=list)
    textures: List[dict] = Field(default_factory=list)
    images: List[dict] = Field(default_factory=list)
    materials: List[dict] = Field(default_factory=list)

    model_config = {"extra": "allow"}

    @field_validator("asset")
    @classmethod
    def validate_version(cls, v):
        if not v.version.startswith("2."):
            raise ValueError(f"Unsupported glTF version: {v.version}")
        return v

    @model_validator(mode="after")
    def validate_accessor_references(self):
        count = len(self.accessors)
        for m, mesh in enumerate(self.meshes):
            for p, prim in enumerate(mesh.primitives):
                refs = list(prim.attributes.values())
                if prim.indices is not None:
                    refs.append(prim.indices)
                for ref in refs:
                    if ref < 0 or ref >= count:
                        raise ValueError(
                            f"Mesh {m} primitive {p} references missing accessor {ref}"
                        )
        return self


class ModelBounds(BaseModel):
    min: List[float] = Field(..., min_length=3, max_length=3)
    max: List[float] = Field(..., min_length=3, max_length=3)


class ModelMetadata(BaseModel):
    """Size and geometry statistics persisted on the model record."""

    file_size: int = Field(default=0, ge=0, alias="fileSize")
    vertices: int = Field(default=0, ge=0)
    triangles: int = Field(default=0, ge=0)
    textures: int = Field(default=0, ge=0)
    format: str = "GLB"
    optimized: bool = False
    approximate: bool = False
    degraded: List[str] = Field(default_factory=list)
    bounds: Optional[ModelBounds] = None

    model_config = {"populate_by_name": True}

    def to_record(self) -> dict:
        """Camel-cased dict for the model store."""
        return self.model_dump(by_alias=True, exclude_none=True)


def validate_input_file(input_path: Path, allowed_extensions) -> Tuple[bool, Dict, List[str]]:
    """
    Validate an uploaded mesh file before a job is created.

    Returns:
        Tuple of (is_valid, file_info, list_of_errors)
    """
    errors = []
    info = {}

    ext = input_path.suffix.lower()
    info["extension"] = ext
    if ext not in allowed_extensions:
        errors.append(f"Unsupported file format: {ext or '(none)'}")

    if not input_path.exists():
        errors.append(f"Input file does not exist: {input_path}")
        return False, info, errors

    if not input_path.is_file():
        errors.append(f"Input path is not a file: {input_path}")
        return False, info, errors

    if not os.access(input_path, os.R_OK):
        errors.append(f"Input file is not readable: {input_path}")

    info["file_size"] = input_path.stat().st_size

    return len(errors) == 0, info, errors
