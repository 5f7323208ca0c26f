"""Binary glTF (GLB) container reading and writing."""

import json
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Union

GLTF_MAGIC = 0x46546C67  # b"glTF"
JSON_CHUNK_TYPE = 0x4E4F534A  # b"JSON"
BIN_CHUNK_TYPE = 0x004E4942  # b"BIN\0"
HEADER_SIZE = 12
CHUNK_HEADER_SIZE = 8


class GlbError(Exception):
    """Malformed or unsupported GLB data."""
    pass


@dataclass
class GlbFile:
    """Parsed GLB container."""
    version: int
    length: int
    document: Dict[str, Any]
    binary: bytes = b""


def align4(value: int) -> int:
    return (value + 3) & ~3


def looks_like_glb(data: bytes) -> bool:
    if len(data) < HEADER_SIZE + CHUNK_HEADER_SIZE:
        return False
    magic, version, total_length = struct.unpack_from("<III", data, 0)
    return magic == GLTF_MAGIC and version == 2 and 0 < total_length <= len(data)


def parse_glb(data: bytes) -> GlbFile:
    """
    Parse GLB bytes into the JSON document and the first BIN chunk.

    Raises:
        GlbError: On bad magic, unsupported version, truncation, or a
            missing/invalid JSON chunk
    """
    if len(data) < HEADER_SIZE + CHUNK_HEADER_SIZE:
        raise GlbError("GLB too small")

    magic, version, total_length = struct.unpack_from("<III", data, 0)
    if magic != GLTF_MAGIC:
        raise GlbError("Invalid GLB magic")
    if version != 2:
        raise GlbError(f"Unsupported GLB version: {version}")
    if total_length > len(data):
        raise GlbError("GLB truncated")

    offset = HEADER_SIZE
    json_chunk = None
    bin_chunk = b""

    while offset + CHUNK_HEADER_SIZE <= total_length:
        chunk_len, chunk_type = struct.unpack_from("<II", data, offset)
        offset += CHUNK_HEADER_SIZE
        chunk_end = offset + chunk_len
        if chunk_end > total_length:
            raise GlbError("GLB chunk exceeds file size")

        chunk_data = data[offset:chunk_end]
        offset = align4(chunk_end)

        if chunk_type == JSON_CHUNK_TYPE and json_chunk is None:
            json_chunk = chunk_data
        elif chunk_type == BIN_CHUNK_TYPE and not bin_chunk:
            bin_chunk = chunk_data

    if json_chunk is None:
        raise GlbError("GLB missing JSON chunk")

    try:
        document = json.loads(json_chunk.decode("utf-8").rstrip(" \t\r\n\x00"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise GlbError(f"Invalid GLB JSON chunk: {e}")
    if not isinstance(document, dict):
        raise GlbError("GLB JSON root is not an object")

    return GlbFile(version=version, length=total_length, document=document, binary=bin_chunk)


def read_glb(path: Union[str, Path]) -> GlbFile:
    with open(path, "rb") as f:
        return parse_glb(f.read())


def build_glb(document: Dict[str, Any], binary: bytes = b"") -> bytes:
    """Serialize a glTF JSON document and optional binary buffer as GLB."""
    json_bytes = json.dumps(document, separators=(",", ":")).encode("utf-8")
    json_bytes += b" " * (align4(len(json_bytes)) - len(json_bytes))

    chunks = struct.pack("<II", len(json_bytes), JSON_CHUNK_TYPE) + json_bytes
    if binary:
        binary += b"\x00" * (align4(len(binary)) - len(binary))
        chunks += struct.pack("<II", len(binary), BIN_CHUNK_TYPE) + binary

    total_length = HEADER_SIZE + len(chunks)
    return struct.pack("<III", GLTF_MAGIC, 2, total_length) + chunks
