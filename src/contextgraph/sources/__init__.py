from .base import ColumnInfo, DataSource, ForeignKeyInfo, Record, RelationalSource, TableKeys
from .document_source import DocumentSource
from .sqlite_source import SqliteSource

__all__ = [
    "ColumnInfo",
    "DataSource",
    "DocumentSource",
    "ForeignKeyInfo",
    "Record",
    "RelationalSource",
    "SqliteSource",
    "TableKeys",
]
