"""Multi-target binary build service.

For one deploy target, loads each schema table's TSV into its generated row
type and serializes everything into a single snapshot with a content hash.
"""

import hashlib
from enum import StrEnum
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

from masterforge.errors import DuplicateKeyError, TabularParseError
from masterforge.models.definitions import TableDefinition
from masterforge.services.memory_database import DatabaseBuilder
from masterforge.services.table_loader import TableTypeMap
from masterforge.services.targets import BuildTarget, should_include
from masterforge.services.tsv import TsvReader


class TableStatus(StrEnum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


class TableBuildReport(BaseModel):
    """Outcome for a single table."""

    table: str
    status: TableStatus
    rows: int = Field(default=0, ge=0)
    reason: str = ""

    model_config = {"frozen": True}


class BuildResult(BaseModel):
    """Snapshot bytes for one target plus per-table outcomes."""

    target: str
    tables: list[TableBuildReport] = Field(default_factory=list)
    data: bytes
    sha256: str

    model_config = {"frozen": True}

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def built(self) -> list[TableBuildReport]:
        return [report for report in self.tables if report.status == TableStatus.OK]

    @property
    def total_rows(self) -> int:
        return sum(report.rows for report in self.built)

    @property
    def errors(self) -> list[str]:
        return [f"{r.table}: {r.reason}" for r in self.tables if r.status == TableStatus.FAILED]


def tsv_path(tsv_dir: Path, table_name: str) -> Path:
    return tsv_dir / f"{table_name}.tsv"


class BinaryBuildService:
    """Builds per-target snapshots from TSV data."""

    def __init__(
        self,
        reader: TsvReader,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._reader = reader
        self._logger = logger or structlog.get_logger(__name__)

    def build(
        self,
        tables: list[TableDefinition],
        tsv_dir: Path,
        target: BuildTarget,
        table_types: TableTypeMap,
    ) -> BuildResult:
        """Build the snapshot for ``target``.

        Tables are processed in schema order. A table without a generated
        type or without a TSV file is skipped with a warning; a table whose
        data fails to parse or has duplicate keys is reported as failed.

        Args:
            tables: Table definitions in schema order.
            tsv_dir: Directory holding ``<TableName>.tsv`` files.
            target: Deploy target to build.
            table_types: Generated row types for the target.

        Returns:
            BuildResult with bytes, hash and per-table outcomes.

        Raises:
            FileNotFoundError: If ``tsv_dir`` does not exist.
            NotADirectoryError: If ``tsv_dir`` is not a directory.
        """
        if not tsv_dir.exists():
            raise FileNotFoundError(f"TSV directory not found: {tsv_dir}")
        if not tsv_dir.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {tsv_dir}")

        log = self._logger.bind(target=target.label)
        log.info("build_started", tsv_dir=str(tsv_dir))

        builder = DatabaseBuilder(logger=self._logger)
        reports: list[TableBuildReport] = []
        for table in tables:
            if not should_include(table.deploy_mask, target.bit):
                continue
            reports.append(self._build_table(builder, table, tsv_dir, table_types, log))

        data = builder.build()
        result = BuildResult(
            target=target.label,
            tables=reports,
            data=data,
            sha256=hashlib.sha256(data).hexdigest(),
        )
        log.info(
            "build_completed",
            tables=len(result.built),
            rows=result.total_rows,
            size_bytes=result.size,
            sha256=result.sha256[:16],
        )
        return result

    def _build_table(
        self,
        builder: DatabaseBuilder,
        table: TableDefinition,
        tsv_dir: Path,
        table_types: TableTypeMap,
        log: structlog.stdlib.BoundLogger,
    ) -> TableBuildReport:
        name = table.table_name
        table_type = table_types.get(name)
        if table_type is None:
            log.warning("table_skipped", table=name, reason="type_not_generated")
            return TableBuildReport(table=name, status=TableStatus.SKIPPED, reason="no generated type")

        path = tsv_path(tsv_dir, name)
        if not path.is_file():
            log.warning("table_skipped", table=name, reason="tsv_missing", path=str(path))
            return TableBuildReport(table=name, status=TableStatus.SKIPPED, reason="TSV file not found")

        try:
            rows = self._reader.read(table_type, path)
            builder.append(table_type, rows)
        except (TabularParseError, DuplicateKeyError) as e:
            log.error("table_failed", table=name, error=str(e))
            return TableBuildReport(table=name, status=TableStatus.FAILED, reason=str(e))

        log.info("table_built", table=name, rows=len(rows))
        return TableBuildReport(table=name, status=TableStatus.OK, rows=len(rows))
