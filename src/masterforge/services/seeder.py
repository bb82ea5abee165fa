"""Seeds the relational mirror from TSV files.

All requested tables are emptied in one statement, then refilled in
dependency order (master group first, then user group) inside a single
transaction. Each TSV is fully parsed before anything is inserted, so a
malformed file skips its table without a partial insert.
"""

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import column, delete, insert, table
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.sql.expression import TableClause

from masterforge.errors import TabularParseError
from masterforge.models.master import column_names
from masterforge.services.builder import TableStatus, tsv_path
from masterforge.services.introspector import ColumnInfo, SchemaIntrospector, TableSchema
from masterforge.services.tsv import coerce_cell, read_tsv_raw


class SeedTableReport(BaseModel):
    schema_name: str
    table: str
    status: TableStatus
    rows: int = Field(default=0, ge=0)
    reason: str = ""

    model_config = {"frozen": True}


class SeedResult(BaseModel):
    """Outcome of a seed or dump run."""

    tables: list[SeedTableReport] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def total_rows(self) -> int:
        return sum(report.rows for report in self.tables if report.status == TableStatus.OK)

    @property
    def errors(self) -> list[str]:
        return [f"{r.table}: {r.reason}" for r in self.tables if r.status == TableStatus.FAILED]


def table_clause(schema: TableSchema, columns: list[ColumnInfo]) -> TableClause:
    return table(
        schema.table_name,
        *(column(c.name, c.sql_type) for c in columns),
        schema=schema.schema_name,
    )


def coerce_db_cell(text: str, info: ColumnInfo) -> Any:
    """Convert a TSV cell for a live column; unknown types pass through as text."""
    if info.python_type is None:
        return None if text == "" and info.is_nullable else text
    return coerce_cell(text, info.python_type, info.is_nullable)


class DataSeeder:
    """Replaces table contents with the rows of matching TSV files."""

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

    async def seed(self, tsv_dir: Path, schemas: list[str]) -> SeedResult:
        """Truncate and reload every table of ``schemas``.

        Args:
            tsv_dir: Directory holding ``<TableName>.tsv`` files.
            schemas: Schema groups in load order, e.g. ``["Master", "User"]``.

        Returns:
            SeedResult with one report per table.

        Raises:
            FileNotFoundError: If ``tsv_dir`` does not exist.
            NotADirectoryError: If ``tsv_dir`` is not a directory.
        """
        if not tsv_dir.exists():
            raise FileNotFoundError(f"TSV directory not found: {tsv_dir}")
        if not tsv_dir.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {tsv_dir}")

        self._logger.info("seed_started", tsv_dir=str(tsv_dir), schemas=schemas)
        reports: list[SeedTableReport] = []
        async with self._engine.begin() as conn:
            tables: list[TableSchema] = []
            for schema in schemas:
                tables.extend(await self._introspector.get_tables(conn, schema))
            if not tables:
                self._logger.warning("seed_no_tables", schemas=schemas)
                return SeedResult()

            await self._truncate(conn, tables)
            for schema_table in tables:
                reports.append(await self._seed_table(conn, schema_table, tsv_dir))

        result = SeedResult(tables=reports)
        self._logger.info(
            "seed_completed",
            tables=sum(1 for r in reports if r.status == TableStatus.OK),
            rows=result.total_rows,
            errors=len(result.errors),
        )
        return result

    async def _truncate(self, conn: AsyncConnection, tables: list[TableSchema]) -> None:
        if conn.dialect.name == "postgresql":
            preparer = conn.dialect.identifier_preparer
            names = ", ".join(
                f"{preparer.quote_schema(t.schema_name)}.{preparer.quote(t.table_name)}" for t in tables
            )
            await conn.exec_driver_sql(f"TRUNCATE TABLE {names} CASCADE")
        else:
            for schema_table in reversed(tables):
                await conn.execute(delete(table_clause(schema_table, [])))
        self._logger.info("tables_truncated", table_count=len(tables))

    async def _seed_table(self, conn: AsyncConnection, schema_table: TableSchema, tsv_dir: Path) -> SeedTableReport:
        name = schema_table.table_name
        report = {"schema_name": schema_table.schema_name, "table": name}

        path = tsv_path(tsv_dir, name)
        if not path.is_file():
            self._logger.warning("table_skipped", table=name, reason="tsv_missing")
            return SeedTableReport(**report, status=TableStatus.SKIPPED, reason="TSV file not found")

        try:
            matrix = read_tsv_raw(path)
        except TabularParseError as e:
            self._logger.error("table_failed", table=name, error=str(e))
            return SeedTableReport(**report, status=TableStatus.FAILED, reason=str(e))
        if not matrix.rows:
            self._logger.warning("table_skipped", table=name, reason="no_rows")
            return SeedTableReport(**report, status=TableStatus.SKIPPED, reason="no rows")

        live = {info.name: info for info in schema_table.columns if not info.is_identity}
        row_type = self._row_types.get(name)
        allowed = set(column_names(row_type)) if row_type is not None else None

        selected: list[tuple[int, ColumnInfo]] = []
        seen: set[str] = set()
        for index, header in enumerate(matrix.headers):
            if header in live and header not in seen and (allowed is None or header in allowed):
                selected.append((index, live[header]))
                seen.add(header)
        if not selected:
            self._logger.warning("table_skipped", table=name, reason="no_matching_columns")
            return SeedTableReport(**report, status=TableStatus.SKIPPED, reason="no matching columns")

        try:
            params = [
                self._row_params(name, row_number, cells, selected)
                for row_number, cells in enumerate(matrix.rows, start=2)
            ]
        except TabularParseError as e:
            self._logger.error("table_failed", table=name, error=str(e))
            return SeedTableReport(**report, status=TableStatus.FAILED, reason=str(e))

        await conn.execute(insert(table_clause(schema_table, [info for _, info in selected])), params)
        self._logger.info("table_seeded", table=name, rows=len(params))
        return SeedTableReport(**report, status=TableStatus.OK, rows=len(params))

    @staticmethod
    def _row_params(
        table_name: str,
        row_number: int,
        cells: list[str],
        selected: list[tuple[int, ColumnInfo]],
    ) -> dict[str, Any]:
        params: dict[str, Any] = {}
        for index, info in selected:
            text = cells[index] if index < len(cells) else ""
            try:
                params[info.name] = coerce_db_cell(text, info)
            except ValueError as e:
                raise TabularParseError(table_name, info.name, row_number, text, str(e)) from e
        return params
