"""Export snapshot contents to JSON or TSV files for inspection."""

import base64
import json
from pathlib import Path
from typing import Any

import structlog

from masterforge.models.enums import ExportFormat
from masterforge.services.memory_database import MemoryDatabase
from masterforge.services.tsv import format_cell, write_tsv


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class MasterDataExporter:
    """Writes one file per table of a snapshot."""

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger or structlog.get_logger(__name__)

    def export(self, database: MemoryDatabase, export_format: ExportFormat, out_dir: Path) -> list[Path]:
        """Export every table in snapshot order.

        Returns:
            Paths of the files written.
        """
        out_dir.mkdir(parents=True, exist_ok=True)
        written: list[Path] = []
        for table in database.table_names:
            records = database.records(table)
            if export_format == ExportFormat.JSON:
                path = out_dir / f"{table}.json"
                path.write_text(
                    json.dumps(records, indent=2, ensure_ascii=False, default=_json_default) + "\n",
                    encoding="utf-8",
                )
            else:
                path = out_dir / f"{table}.tsv"
                headers = database.columns(table)
                write_tsv(path, headers, ([format_cell(record.get(h)) for h in headers] for record in records))
            written.append(path)
            self._logger.info("table_exported", table=table, rows=len(records), path=str(path))
        return written
