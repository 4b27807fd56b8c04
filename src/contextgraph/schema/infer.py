from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Iterable

from .types import FieldType

# Heuristics for document stores. Everything here is a pure function of the
# sampled values so the catalog stays testable without a backend.

_ISO_DATE_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?$"
)
_OBJECTID_RE = re.compile(r"^[0-9a-fA-F]{24}$")
_UUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")
# "u1", "usr_42", "ORD-0007"
_PREFIXED_RE = re.compile(r"^([A-Za-z]+)[_-]?\d+$")

PRIMARY_KEY_FIELDS = ("id", "_id", "uuid")
FOREIGN_KEY_SUFFIXES = ("_ids", "Ids", "_id", "Id", "_refs", "Refs", "_ref", "Ref")
TIME_SERIES_FIELDS = (
    "created_at",
    "updated_at",
    "timestamp",
    "date_created",
    "date_modified",
    "createdAt",
    "updatedAt",
)


def infer_type(value: Any) -> FieldType | None:
    """Tag one observed value. Returns None for nulls."""
    if value is None:
        return None
    # bool before int: bool is an int subclass.
    if isinstance(value, bool):
        return FieldType.BOOLEAN
    if isinstance(value, (int, float)):
        return FieldType.NUMBER
    if isinstance(value, (datetime, date)):
        return FieldType.DATE
    if isinstance(value, str):
        return FieldType.DATE if _ISO_DATE_RE.match(value) else FieldType.STRING
    if isinstance(value, (list, tuple, set)):
        return FieldType.ARRAY
    if isinstance(value, dict):
        return FieldType.OBJECT
    if _is_native_reference(value):
        return FieldType.REFERENCE
    return FieldType.MIXED


def _is_native_reference(value: Any) -> bool:
    # Driver reference types (bson ObjectId / DBRef) without importing the driver.
    return type(value).__name__ in ("ObjectId", "DBRef")


def id_shape(value: Any) -> str | None:
    """Classify an identifier value into a distinctive shape.

    Plain integers and free text are not distinctive (every counter looks
    alike), so they return None.
    """
    if isinstance(value, bool) or value is None:
        return None
    if not isinstance(value, str):
        if _is_native_reference(value):
            return "objectid"
        return None
    s = value.strip()
    if _OBJECTID_RE.match(s):
        return "objectid"
    if _UUID_RE.match(s):
        return "uuid"
    m = _PREFIXED_RE.match(s)
    if m:
        return "prefixed:" + m.group(1).lower()
    return None


def common_shape(values: Iterable[Any]) -> str | None:
    """Shape shared by every non-null value, or None."""
    shape: str | None = None
    seen = False
    for v in values:
        if v is None:
            continue
        s = id_shape(v)
        if s is None:
            return None
        if seen and s != shape:
            return None
        shape = s
        seen = True
    return shape


def strip_fk_suffix(field_name: str) -> str | None:
    for suffix in FOREIGN_KEY_SUFFIXES:
        if field_name.endswith(suffix) and len(field_name) > len(suffix):
            return field_name[: -len(suffix)]
    return None


def singularize(word: str) -> str:
    w = word
    if w.endswith("ies") and len(w) > 3:
        return w[:-3] + "y"
    for tail in ("ches", "shes", "xes", "sses"):
        if w.endswith(tail):
            return w[:-2]
    if w.endswith("s") and not w.endswith("ss"):
        return w[:-1]
    return w


def pluralize(word: str) -> str:
    w = word
    if w.endswith("y") and len(w) > 1 and w[-2] not in "aeiou":
        return w[:-1] + "ies"
    if w.endswith(("s", "x", "ch", "sh")):
        return w + "es"
    return w + "s"


def name_variants(base: str) -> list[str]:
    out: list[str] = []
    for v in (base, pluralize(base), singularize(base)):
        if v and v not in out:
            out.append(v)
    return out


def referenced_entity_candidates(field_name: str, *, is_array: bool) -> list[str]:
    bases: list[str] = []
    stripped = strip_fk_suffix(field_name)
    if stripped:
        bases.append(stripped)
    if is_array:
        # "orders": [<id>, <id>]
        bases.append(field_name)
    out: list[str] = []
    for b in bases:
        for v in name_variants(b):
            if v not in out:
                out.append(v)
    return out


def match_entity_name(candidates: Iterable[str], known: Iterable[str]) -> list[str]:
    """Resolve candidate names against discovered entity types.

    Exact matches win; case-insensitive matches are only used when there is
    no exact match at all.
    """
    known = list(known)
    cands = list(candidates)
    exact = [k for k in known if k in cands]
    if exact:
        return exact
    lowered = {c.lower() for c in cands}
    return [k for k in known if k.lower() in lowered]


def is_time_series_name(field_name: str) -> bool:
    n = field_name.lower()
    return field_name in TIME_SERIES_FIELDS or n in TIME_SERIES_FIELDS or "timestamp" in n


def map_sql_type(declared: str) -> FieldType:
    """Map a declared SQL column type onto the field vocabulary."""
    t = declared.upper()
    if not t:
        return FieldType.MIXED
    if "BOOL" in t:
        return FieldType.BOOLEAN
    if "DATE" in t or "TIME" in t:
        return FieldType.DATE
    if "INT" in t or any(k in t for k in ("REAL", "FLOA", "DOUB", "NUMERIC", "DECIMAL")):
        return FieldType.NUMBER
    if "JSON" in t:
        return FieldType.OBJECT
    if "[]" in t or "ARRAY" in t:
        return FieldType.ARRAY
    if any(k in t for k in ("CHAR", "CLOB", "TEXT", "UUID")):
        return FieldType.STRING
    return FieldType.MIXED
