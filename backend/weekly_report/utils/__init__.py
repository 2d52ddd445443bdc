"""Utility functions for the weekly report backend."""

import json
import math
from typing import Any, Optional, Set, Tuple

from pydantic import BaseModel

# Marker returned for values skipped by to_document
_OMIT = object()


def file_extension(filename: str) -> str:
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].lower()


def validate_file_type(filename: str, allowed_extensions: list) -> Tuple[bool, str]:
    """Validate file type by extension."""
    file_ext = file_extension(filename)

    if file_ext not in allowed_extensions:
        return False, f"File type '{file_ext}' not allowed. Allowed: {allowed_extensions}"

    return True, "OK"


def validate_file_size(file_bytes: bytes, max_size_mb: int) -> Tuple[bool, str]:
    """Validate file size in MB."""
    file_size_mb = len(file_bytes) / (1024 * 1024)

    if file_size_mb > max_size_mb:
        return False, f"File size {file_size_mb:.1f} MB exceeds limit of {max_size_mb} MB"

    return True, "OK"


def round_half_up(value: float) -> int:
    """Round to the nearest integer, .5 going up (not banker's rounding)."""
    return int(math.floor(value + 0.5))


def percentage(part: int, total: int) -> int:
    if total == 0:
        return 0
    return round_half_up(100 * part / total)


def to_document(value: Any, _seen: Optional[Set[int]] = None) -> Any:
    """
    Deep-copy ``value`` into plain JSON-compatible data.

    Containers (dicts, lists, tuples, pydantic models) are tracked by object
    identity: any container already serialized during this call is omitted
    wherever it appears again, so shared or cyclic references never recurse.
    Dict keys are stringified.
    """
    seen = set() if _seen is None else _seen

    if isinstance(value, (str, int, float, bool)) or value is None:
        return value

    if id(value) in seen:
        return _OMIT

    if isinstance(value, BaseModel):
        seen.add(id(value))
        result = {}
        for name in type(value).model_fields:
            item = to_document(getattr(value, name), seen)
            if item is not _OMIT:
                result[name] = item
        return result

    if isinstance(value, dict):
        seen.add(id(value))
        result = {}
        for key, item in value.items():
            converted = to_document(item, seen)
            if converted is not _OMIT:
                result[str(key)] = converted
        return result

    if isinstance(value, (list, tuple)):
        seen.add(id(value))
        result = []
        for item in value:
            converted = to_document(item, seen)
            if converted is not _OMIT:
                result.append(converted)
        return result

    return str(value)


def dumps_document(value: Any) -> str:
    """Serialize to a deterministic JSON string (sorted keys)."""
    return json.dumps(to_document(value), ensure_ascii=False, sort_keys=True)


def clone_dataset(dataset):
    """Return an independent deep copy of a TestDataset."""
    return type(dataset).model_validate(to_document(dataset))
