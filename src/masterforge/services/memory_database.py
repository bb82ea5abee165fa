"""Binary master data snapshots.

Layout: a msgpack map ``{table_name: [offset, length]}`` followed by the
concatenated table bodies. Each body is a msgpack array of row maps keyed
by column name. Offsets are relative to the end of the header. Rows are
sorted by primary key and tables keep the order they were appended in, so
identical inputs always produce identical bytes.
"""

from collections.abc import Mapping, Sequence
from typing import Any

import msgpack
import structlog

from masterforge.errors import DuplicateKeyError
from masterforge.models.master import MasterTable, column_names


def _sort_key(row: MasterTable) -> tuple[tuple[Any, ...], ...]:
    return tuple((1,) if value is None else (0, value) for value in row.primary_key())


class DatabaseBuilder:
    """Accumulates typed rows per table and serializes them."""

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._tables: dict[str, list[dict[str, Any]]] = {}
        self._logger = logger or structlog.get_logger(__name__)

    def append(self, table_type: type[MasterTable], rows: Sequence[MasterTable]) -> None:
        """Add all rows of one table.

        Raises:
            DuplicateKeyError: If two rows share a primary key.
        """
        table = table_type.table_name()
        ordered = list(rows)
        if table_type.primary_key_columns():
            ordered.sort(key=_sort_key)
            for previous, current in zip(ordered, ordered[1:]):
                if previous.primary_key() == current.primary_key():
                    raise DuplicateKeyError(table, current.primary_key())
        self._tables[table] = [row.to_record() for row in ordered]

    def build(self) -> bytes:
        bodies = [(name, msgpack.packb(records, use_bin_type=True)) for name, records in self._tables.items()]
        header: dict[str, list[int]] = {}
        offset = 0
        for name, body in bodies:
            header[name] = [offset, len(body)]
            offset += len(body)
        data = msgpack.packb(header, use_bin_type=True) + b"".join(body for _, body in bodies)
        self._logger.debug("database_built", table_count=len(bodies), size_bytes=len(data))
        return data


class MemoryDatabase:
    """Read access to a snapshot built by ``DatabaseBuilder``."""

    def __init__(
        self,
        data: bytes,
        table_types: Mapping[str, type[MasterTable]] | None = None,
    ) -> None:
        unpacker = msgpack.Unpacker(raw=False)
        unpacker.feed(data)
        self._header: dict[str, list[int]] = unpacker.unpack()
        self._body_start = unpacker.tell()
        self._data = data
        self._table_types = dict(table_types or {})

    @property
    def table_names(self) -> list[str]:
        return list(self._header)

    def records(self, table: str) -> list[dict[str, Any]]:
        """Rows of ``table`` as column-name keyed maps."""
        offset, length = self._header[table]
        start = self._body_start + offset
        return msgpack.unpackb(self._data[start : start + length], raw=False)

    def columns(self, table: str) -> list[str]:
        """Column names of ``table``, from its row type when known."""
        table_type = self._table_types.get(table)
        if table_type is not None:
            return column_names(table_type)
        records = self.records(table)
        return list(records[0]) if records else []

    def rows(self, table: str) -> list[MasterTable]:
        """Rows of ``table`` rebuilt as their generated row type."""
        table_type = self._table_types[table]
        return [table_type.from_record(record) for record in self.records(table)]

    def find(self, table: str, *key: Any) -> MasterTable | None:
        """Look up a row by its primary key values."""
        for row in self.rows(table):
            if row.primary_key() == key:
                return row
        return None
