"""Verification suite: generated code round trip, binary diff and TSV diff.

Each check returns a report model; nothing here decides the process exit
code. Callers print the full report and fail at the end when ``ok`` is
False.
"""

import difflib
import hashlib
from enum import StrEnum
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

from masterforge.models.definitions import TableDefinition
from masterforge.models.enums import DeployTarget
from masterforge.services.code_generator import CodeGenerator, module_name
from masterforge.services.tsv import read_tsv_raw

MAX_DISPLAYED_DIFFERENCES = 10

CANONICAL_LABEL = "Shared"


def normalize_source(text: str) -> list[str]:
    """Strip comments, docstrings, region markers and blank lines; trim the rest."""
    lines: list[str] = []
    in_docstring = False
    for raw in text.splitlines():
        line = raw.strip()
        if in_docstring:
            if line.endswith('"""'):
                in_docstring = False
            continue
        if not line or line.startswith("#"):
            continue
        if line.startswith('"""'):
            if not (len(line) >= 6 and line.endswith('"""')):
                in_docstring = True
            continue
        lines.append(line)
    return lines


def line_diff(expected: list[str], actual: list[str]) -> list[str]:
    """``-`` lines only in the expected text, ``+`` lines only in the actual."""
    return [line for line in difflib.ndiff(expected, actual) if line.startswith(("- ", "+ "))]


class VerifyStatus(StrEnum):
    MATCH = "MATCH"
    DIFF = "DIFF"
    MISSING = "MISSING"


class TableVerification(BaseModel):
    table: str
    status: VerifyStatus
    diff: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class RoundTripReport(BaseModel):
    tables: list[TableVerification] = Field(default_factory=list)

    model_config = {"frozen": True}

    def count(self, status: VerifyStatus) -> int:
        return sum(1 for t in self.tables if t.status == status)

    @property
    def ok(self) -> bool:
        return all(t.status == VerifyStatus.MATCH for t in self.tables)


class RoundTripVerifier:
    """Compares freshly generated modules with hand-maintained ones."""

    def __init__(
        self,
        generator: CodeGenerator,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._generator = generator
        self._logger = logger or structlog.get_logger(__name__)

    def verify(self, tables: list[TableDefinition], existing_dir: Path, namespace: str) -> RoundTripReport:
        """Generate every table with all fields and compare it to ``existing_dir``.

        Args:
            tables: Table definitions in schema order.
            existing_dir: Directory of hand-maintained table modules.
            namespace: Canonical namespace the modules were written for.
        """
        results: list[TableVerification] = []
        for table in tables:
            path = existing_dir / f"{module_name(table.table_name)}.py"
            if not path.is_file():
                results.append(TableVerification(table=table.table_name, status=VerifyStatus.MISSING))
                continue
            generated = self._generator.generate(
                table, namespace, CANONICAL_LABEL, DeployTarget.CLIENT_SERVER_REALTIME
            )
            expected = normalize_source(generated)
            actual = normalize_source(path.read_text(encoding="utf-8"))
            if expected == actual:
                results.append(TableVerification(table=table.table_name, status=VerifyStatus.MATCH))
            else:
                results.append(
                    TableVerification(
                        table=table.table_name,
                        status=VerifyStatus.DIFF,
                        diff=line_diff(expected, actual),
                    )
                )

        report = RoundTripReport(tables=results)
        self._logger.info(
            "codegen_verified",
            matched=report.count(VerifyStatus.MATCH),
            different=report.count(VerifyStatus.DIFF),
            missing=report.count(VerifyStatus.MISSING),
        )
        return report


class BinaryDiff(BaseModel):
    old_size: int
    new_size: int
    old_sha256: str
    new_sha256: str

    model_config = {"frozen": True}

    @property
    def identical(self) -> bool:
        return self.old_sha256 == self.new_sha256 and self.old_size == self.new_size

    @property
    def size_delta(self) -> int:
        return self.new_size - self.old_size


def diff_binaries(old: Path, new: Path) -> BinaryDiff:
    """Compare two snapshot files by content hash and size.

    Raises:
        FileNotFoundError: If either file does not exist.
    """
    for path in (old, new):
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {path}")
    old_data = old.read_bytes()
    new_data = new.read_bytes()
    return BinaryDiff(
        old_size=len(old_data),
        new_size=len(new_data),
        old_sha256=hashlib.sha256(old_data).hexdigest(),
        new_sha256=hashlib.sha256(new_data).hexdigest(),
    )


class CellDifference(BaseModel):
    row: int = Field(ge=1)
    column: str
    source: str
    target: str

    model_config = {"frozen": True}


class FileDiff(BaseModel):
    """Differences between two versions of one TSV file."""

    file: str
    source_only_columns: list[str] = Field(default_factory=list)
    target_only_columns: list[str] = Field(default_factory=list)
    source_rows: int = 0
    target_rows: int = 0
    common_columns: int = 0
    cell_differences: list[CellDifference] = Field(default_factory=list)
    total_cell_differences: int = 0

    model_config = {"frozen": True}

    @property
    def has_differences(self) -> bool:
        return bool(
            self.source_only_columns
            or self.target_only_columns
            or self.source_rows != self.target_rows
            or self.total_cell_differences
        )


class DirectoryDiff(BaseModel):
    source_only_files: list[str] = Field(default_factory=list)
    target_only_files: list[str] = Field(default_factory=list)
    files: list[FileDiff] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def differing_files(self) -> list[FileDiff]:
        return [f for f in self.files if f.has_differences]

    @property
    def ok(self) -> bool:
        return not (self.source_only_files or self.target_only_files or self.differing_files)


def _header_index(headers: list[str]) -> dict[str, int]:
    index: dict[str, int] = {}
    for i, header in enumerate(headers):
        index.setdefault(header, i)
    return index


def diff_tsv_files(source: Path, target: Path, limit: int = MAX_DISPLAYED_DIFFERENCES) -> FileDiff:
    """Compare two TSV files column by column over their overlapping rows.

    Only the first ``limit`` cell differences are kept; the total is always
    exact.
    """
    left = read_tsv_raw(source)
    right = read_tsv_raw(target)

    left_index = _header_index(left.headers)
    right_index = _header_index(right.headers)
    common = [h for h in left_index if h in right_index]

    differences: list[CellDifference] = []
    total = 0
    for row_number, (left_row, right_row) in enumerate(zip(left.rows, right.rows), start=1):
        for header in common:
            li, ri = left_index[header], right_index[header]
            left_value = left_row[li] if li < len(left_row) else ""
            right_value = right_row[ri] if ri < len(right_row) else ""
            if left_value != right_value:
                total += 1
                if len(differences) < limit:
                    differences.append(
                        CellDifference(row=row_number, column=header, source=left_value, target=right_value)
                    )

    return FileDiff(
        file=source.name,
        source_only_columns=[h for h in left_index if h not in right_index],
        target_only_columns=[h for h in right_index if h not in left_index],
        source_rows=len(left.rows),
        target_rows=len(right.rows),
        common_columns=len(common),
        cell_differences=differences,
        total_cell_differences=total,
    )


def diff_tsv_directories(source_dir: Path, target_dir: Path, limit: int = MAX_DISPLAYED_DIFFERENCES) -> DirectoryDiff:
    """Compare every ``*.tsv`` file of two directories.

    Raises:
        FileNotFoundError: If either directory does not exist.
    """
    for directory in (source_dir, target_dir):
        if not directory.is_dir():
            raise FileNotFoundError(f"Directory not found: {directory}")

    source_files = {p.name for p in source_dir.glob("*.tsv")}
    target_files = {p.name for p in target_dir.glob("*.tsv")}
    return DirectoryDiff(
        source_only_files=sorted(source_files - target_files),
        target_only_files=sorted(target_files - source_files),
        files=[
            diff_tsv_files(source_dir / name, target_dir / name, limit)
            for name in sorted(source_files & target_files)
        ],
    )


def render_file_diff(diff: FileDiff) -> list[str]:
    lines = [f"  {diff.file}"]
    if diff.source_only_columns:
        lines.append(f"    columns only in source: {', '.join(diff.source_only_columns)}")
    if diff.target_only_columns:
        lines.append(f"    columns only in target: {', '.join(diff.target_only_columns)}")
    if diff.source_rows != diff.target_rows:
        lines.append(f"    row count: {diff.source_rows} -> {diff.target_rows}")
    if diff.common_columns == 0:
        lines.append("    no common columns, cells not compared")
    for cell in diff.cell_differences:
        lines.append(f"    row {cell.row} [{cell.column}]: {cell.source!r} -> {cell.target!r}")
    hidden = diff.total_cell_differences - len(diff.cell_differences)
    if hidden > 0:
        lines.append(f"    ... and {hidden} more")
    return lines


def render_directory_diff(diff: DirectoryDiff) -> list[str]:
    """Human-readable report lines for a directory comparison."""
    lines: list[str] = []
    for name in diff.source_only_files:
        lines.append(f"  only in source: {name}")
    for name in diff.target_only_files:
        lines.append(f"  only in target: {name}")
    for file_diff in diff.differing_files:
        lines.extend(render_file_diff(file_diff))
    matched = len(diff.files) - len(diff.differing_files)
    lines.append(
        f"{matched} identical, {len(diff.differing_files)} different, "
        f"{len(diff.source_only_files)} source-only, {len(diff.target_only_files)} target-only"
    )
    return lines
