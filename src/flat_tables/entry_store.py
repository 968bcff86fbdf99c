"""Encoding of records, metadata and cached results to single files.

Every file starts with a fixed 16-byte guard header followed by the payload:

    [magic: 8 bytes] [version: uint16] [encoding: uint16] [payload length: uint32]

The magic marks the file as "not a directly servable document". The payload
is UTF-8 JSON, which any language can read back.
"""

from __future__ import annotations

import json
import logging
import math
import os
import struct
import tempfile
from pathlib import Path
from typing import Any, Mapping

from flat_tables.errors import DecodeError, StorageError, ValidationError

log = logging.getLogger(__name__)

MAGIC = b"FLATTBL\x00"
FORMAT_VERSION = 1
ENCODING_JSON = 1

HEADER = struct.Struct("<8sHHI")
HEADER_SIZE = HEADER.size  # 16 bytes


def normalize_value(value: Any, path: str = "value") -> Any:
    """Validate a schemaless value tree and return a plain copy of it.

    Allowed values are None, bool, int, float, str, lists (or tuples) of
    values and mappings with string keys. Tuples come back as lists.

    Raises:
        ValidationError: If the tree holds anything else.
    """
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationError(f"{path}: non-finite float {value!r} cannot be stored")
        return value
    if isinstance(value, (list, tuple)):
        return [normalize_value(item, f"{path}[{i}]") for i, item in enumerate(value)]
    if isinstance(value, Mapping):
        result: dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValidationError(f"{path}: mapping keys must be strings, got {key!r}")
            result[key] = normalize_value(item, f"{path}.{key}")
        return result
    raise ValidationError(f"{path}: cannot store value of type {type(value).__name__}")


def encode(value: Any) -> bytes:
    """Encode a value as header + payload bytes."""
    try:
        payload = json.dumps(
            value, ensure_ascii=False, allow_nan=False, separators=(",", ":")
        ).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Cannot encode value: {e}") from e
    return HEADER.pack(MAGIC, FORMAT_VERSION, ENCODING_JSON, len(payload)) + payload


def decode(data: bytes) -> Any:
    """Decode bytes produced by encode()."""
    if len(data) < HEADER_SIZE:
        raise DecodeError(f"File too short for header ({len(data)} bytes)")

    magic, version, encoding, length = HEADER.unpack_from(data)
    if magic != MAGIC:
        raise DecodeError(f"Bad magic {magic!r}")
    if version != FORMAT_VERSION:
        raise DecodeError(f"Unsupported format version {version}")
    if encoding != ENCODING_JSON:
        raise DecodeError(f"Unsupported payload encoding {encoding}")

    payload = data[HEADER_SIZE:]
    if len(payload) != length:
        raise DecodeError(f"Payload length mismatch: header says {length}, found {len(payload)}")

    try:
        return json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"Corrupt payload: {e}") from e


def write_file(path: Path, value: Any) -> None:
    """Write a value to path, replacing any existing file atomically.

    The data goes to a temporary file in the same directory which is then
    renamed over the target, so readers see either the old file or the new
    one and never a partial write.
    """
    data = encode(value)
    tmp_name = None
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=".tmp_", dir=path.parent)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        log.error(f"Failed to write {path}: {e}")
        raise StorageError(f"Could not write {path}: {e}") from e


def read_file(path: Path) -> Any:
    """Read and decode a file written by write_file()."""
    try:
        data = path.read_bytes()
    except OSError as e:
        raise StorageError(f"Could not read {path}: {e}") from e
    try:
        return decode(data)
    except DecodeError as e:
        raise DecodeError(f"{path}: {e}") from e


def remove_file(path: Path) -> None:
    """Delete a file written by write_file()."""
    try:
        path.unlink()
    except OSError as e:
        raise StorageError(f"Could not remove {path}: {e}") from e
