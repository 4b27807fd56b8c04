from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


Record = dict[str, Any]


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    declared_type: str
    nullable: bool


@dataclass(frozen=True)
class ForeignKeyInfo:
    column: str
    referenced_table: str
    referenced_column: str


@dataclass(frozen=True)
class TableKeys:
    """Declared structure of one relational table."""

    columns: tuple[ColumnInfo, ...]
    primary_key: tuple[str, ...]
    foreign_keys: tuple[ForeignKeyInfo, ...]


class DataSource(ABC):
    """Read-only access to a schema-bearing store.

    Capabilities are declared as class attributes and checked explicitly by
    callers instead of probing for methods.
    """

    name: str = "datasource"
    kind: str = "document"  # "relational" | "document"
    supports_time_series: bool = False
    supports_sample_filter: bool = False

    def __enter__(self) -> "DataSource":
        self.connect()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @abstractmethod
    def connect(self) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def ping(self) -> bool:
        self.list_entity_types()
        return True

    @abstractmethod
    def list_entity_types(self) -> list[str]:
        pass

    @abstractmethod
    def sample_instances(
        self, entity_type: str, limit: int, filters: dict[str, Any] | None = None
    ) -> list[Record]:
        pass

    @abstractmethod
    def fetch_by_id(self, entity_type: str, entity_id: str, primary_key: str | None = None) -> Record | None:
        """Return the record or None when absent."""

    @abstractmethod
    def fetch_by_field(self, entity_type: str, field: str, value: Any, limit: int) -> list[Record]:
        pass


class RelationalSource(DataSource):
    """A source whose tables declare primary and foreign keys."""

    kind = "relational"

    @abstractmethod
    def describe_keys(self, entity_type: str) -> TableKeys:
        pass
