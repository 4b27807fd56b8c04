from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable

from ..errors import BackendUnavailable
from .base import DataSource, Record


log = logging.getLogger(__name__)


DEFAULT_ID_FIELDS = ("_id", "id", "uuid")


def _same(a: Any, b: Any) -> bool:
    if a == b:
        return True
    # Ids travel as strings through the graph builder.
    return a is not None and b is not None and str(a) == str(b)


def _matches(stored: Any, value: Any) -> bool:
    if isinstance(stored, (list, tuple)):
        return any(_same(v, value) for v in stored)
    return _same(stored, value)


class DocumentSource(DataSource):
    """Document store over in-process collections of dict records.

    Collections are plain lists, so the source is handy for tests and for
    JSON exports of document databases (`from_json_dir`).
    """

    name = "documents"
    kind = "document"
    supports_time_series = True
    supports_sample_filter = True

    def __init__(
        self,
        collections: dict[str, list[Record]] | None = None,
        *,
        primary_keys: dict[str, str] | None = None,
    ):
        self._collections: dict[str, list[Record]] = {k: list(v) for k, v in (collections or {}).items()}
        self._primary_keys = dict(primary_keys or {})
        self._connected = False

    @classmethod
    def from_json_dir(cls, path: str | os.PathLike[str], *, primary_keys: dict[str, str] | None = None) -> "DocumentSource":
        """Load `<collection>.json` (array) and `<collection>.jsonl` files."""
        root = Path(path)
        if not root.is_dir():
            raise BackendUnavailable(f"Not a directory: {root}")

        collections: dict[str, list[Record]] = {}
        for p in sorted(root.iterdir()):
            if not p.is_file() or p.name.startswith("."):
                continue
            ext = p.suffix.lower()
            if ext == ".json":
                data = json.loads(p.read_text(encoding="utf-8"))
                if not isinstance(data, list):
                    log.warning("skipping %s: top-level JSON is not an array", p.name)
                    continue
                collections[p.stem] = [d for d in data if isinstance(d, dict)]
            elif ext == ".jsonl":
                collections[p.stem] = list(_iter_jsonl(p))
        return cls(collections, primary_keys=primary_keys)

    def connect(self) -> None:
        self._connected = True

    def close(self) -> None:
        self._connected = False

    def _collection(self, entity_type: str) -> list[Record]:
        coll = self._collections.get(entity_type)
        if coll is None:
            raise BackendUnavailable(f"Unknown collection: {entity_type}")
        return coll

    def _id_field(self, entity_type: str, records: list[Record]) -> str:
        if entity_type in self._primary_keys:
            return self._primary_keys[entity_type]
        for name in DEFAULT_ID_FIELDS:
            if any(name in r for r in records):
                return name
        return "_id"

    def list_entity_types(self) -> list[str]:
        return list(self._collections)

    def sample_instances(
        self, entity_type: str, limit: int, filters: dict[str, Any] | None = None
    ) -> list[Record]:
        out: list[Record] = []
        for rec in self._collection(entity_type):
            if filters and not all(_matches(rec.get(k), v) for k, v in filters.items()):
                continue
            out.append(dict(rec))
            if len(out) >= limit:
                break
        return out

    def fetch_by_id(self, entity_type: str, entity_id: str, primary_key: str | None = None) -> Record | None:
        coll = self._collection(entity_type)
        key = primary_key or self._id_field(entity_type, coll)
        for rec in coll:
            if _same(rec.get(key), entity_id):
                return dict(rec)
        return None

    def fetch_by_field(self, entity_type: str, field: str, value: Any, limit: int) -> list[Record]:
        out: list[Record] = []
        for rec in self._collection(entity_type):
            if field in rec and _matches(rec[field], value):
                out.append(dict(rec))
                if len(out) >= limit:
                    break
        return out


def _iter_jsonl(path: Path) -> Iterable[Record]:
    with path.open(encoding="utf-8") as f:
        for ln, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError as e:
                raise BackendUnavailable(f"{path.name}:{ln}: invalid JSON ({e})") from e
            if isinstance(obj, dict):
                yield obj
