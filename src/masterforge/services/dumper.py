"""Dumps relational tables back to TSV files."""

from collections.abc import Mapping
from pathlib import Path

import structlog
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from masterforge.models.master import column_names
from masterforge.services.builder import TableStatus, tsv_path
from masterforge.services.introspector import SchemaIntrospector, TableSchema
from masterforge.services.seeder import SeedResult, SeedTableReport, table_clause
from masterforge.services.tsv import format_cell, write_tsv


class DataDumper:
    """Writes one TSV per table, columns in their live ordinal order.

    Row order is whatever the database returns without an ORDER BY, which
    for freshly seeded tables is insertion order.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        introspector: SchemaIntrospector,
        row_types: Mapping[str, type[BaseModel]] | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._engine = engine
        self._introspector = introspector
        self._row_types = dict(row_types or {})
        self._logger = logger or structlog.get_logger(__name__)

    async def dump(self, out_dir: Path, schemas: list[str]) -> SeedResult:
        """Dump every table of ``schemas`` into ``out_dir``.

        Tables that cannot be read or hold no rows are skipped with a warning.
        """
        out_dir.mkdir(parents=True, exist_ok=True)
        self._logger.info("dump_started", out_dir=str(out_dir), schemas=schemas)

        reports: list[SeedTableReport] = []
        async with self._engine.connect() as conn:
            for schema in schemas:
                for schema_table in await self._introspector.get_tables(conn, schema):
                    reports.append(await self._dump_table(conn, schema_table, out_dir))

        result = SeedResult(tables=reports)
        self._logger.info("dump_completed", out_dir=str(out_dir), rows=result.total_rows)
        return result

    async def _dump_table(self, conn: AsyncConnection, schema_table: TableSchema, out_dir: Path) -> SeedTableReport:
        name = schema_table.table_name
        report = {"schema_name": schema_table.schema_name, "table": name}

        columns = schema_table.columns
        row_type = self._row_types.get(name)
        if row_type is not None:
            allowed = set(column_names(row_type))
            columns = [info for info in columns if info.name in allowed]
        if not columns:
            self._logger.warning("table_skipped", table=name, reason="no_columns")
            return SeedTableReport(**report, status=TableStatus.SKIPPED, reason="no columns")

        clause = table_clause(schema_table, columns)
        try:
            # A failed read must not abort the enclosing transaction for later tables.
            async with conn.begin_nested():
                result = await conn.execute(select(*clause.c))
                rows = result.all()
        except SQLAlchemyError as e:
            self._logger.warning("table_skipped", table=name, reason="read_failed", error=str(e))
            return SeedTableReport(**report, status=TableStatus.SKIPPED, reason=f"read failed: {e}")

        if not rows:
            self._logger.warning("table_skipped", table=name, reason="no_rows")
            return SeedTableReport(**report, status=TableStatus.SKIPPED, reason="no rows")

        count = write_tsv(
            tsv_path(out_dir, name),
            [info.name for info in columns],
            ([format_cell(value, float32=info.is_float32) for value, info in zip(row, columns)] for row in rows),
        )
        self._logger.info("table_dumped", table=name, rows=count)
        return SeedTableReport(**report, status=TableStatus.OK, rows=count)
