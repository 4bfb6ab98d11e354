"""
List-valued columns (genre ids, genre objects, watched episodes) are stored
as JSON text. Absent or empty text decodes to []; anything else that is not
a JSON array is treated as corruption, never silently replaced.
"""
from __future__ import annotations

import json
from typing import Any, Iterable, List, Optional

from pydantic import ValidationError

from backend.app.errors import DataCorruptionError
from backend.app.models import Genre


def encode_list(values: Optional[Iterable[Any]]) -> str:
    return json.dumps(list(values or []))


def encode_genres(genres: Optional[Iterable[Genre]]) -> str:
    return encode_list(g.model_dump() for g in (genres or []))


def decode_list(raw: Optional[str], column: str) -> List[Any]:
    if raw is None or raw == "":
        return []
    try:
        value = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise DataCorruptionError(column, raw, f"invalid JSON ({e})") from e
    if not isinstance(value, list):
        raise DataCorruptionError(column, raw, f"expected a JSON array, got {type(value).__name__}")
    return value


def decode_int_list(raw: Optional[str], column: str) -> List[int]:
    values = decode_list(raw, column)
    # bool is an int subclass but never a valid id/episode number
    if any(isinstance(v, bool) or not isinstance(v, int) for v in values):
        raise DataCorruptionError(column, raw, "expected an array of integers")
    return values


def decode_genres(raw: Optional[str], column: str) -> List[Genre]:
    values = decode_list(raw, column)
    try:
        return [Genre.model_validate(v) for v in values]
    except ValidationError as e:
        raise DataCorruptionError(column, raw, "expected an array of {id, name} objects") from e
