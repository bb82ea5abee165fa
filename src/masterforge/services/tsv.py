"""Reading and writing tab-separated master data files.

The first line is the header; each header names a column exactly. Blank
lines are ignored. Numbers always use the invariant format (``.`` decimal
point, no digit grouping) regardless of the process locale.
"""

import base64
import binascii
import math
import re
import struct
from collections.abc import Iterable, Sequence
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar
from uuid import UUID

import structlog
from pydantic import BaseModel, ValidationError

from masterforge.errors import TabularParseError
from masterforge.models.master import column_fields

T_Row = TypeVar("T_Row", bound=BaseModel)

_INTEGER = re.compile(r"[+-]?\d+")
_FLOAT = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_SPECIAL_FLOATS = {
    "nan": math.nan,
    "+nan": math.nan,
    "-nan": math.nan,
    "inf": math.inf,
    "+inf": math.inf,
    "infinity": math.inf,
    "+infinity": math.inf,
    "-inf": -math.inf,
    "-infinity": -math.inf,
}


class TsvMatrix(BaseModel):
    """Uncoerced header and cell text of one file."""

    headers: list[str]
    rows: list[list[str]]

    model_config = {"frozen": True}


def _decode(path: Path) -> str:
    data = path.read_bytes()
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        line_number = data.count(b"\n", 0, e.start) + 1
        raise TabularParseError(
            path.stem, "", line_number, data[e.start : e.end].hex(" "), f"not valid UTF-8 at byte {e.start}"
        ) from e


def _read_lines(path: Path) -> list[tuple[int, str]]:
    # Only \n, \r\n and \r end a line; other Unicode breaks stay inside cells.
    text = _decode(path).replace("\r\n", "\n").replace("\r", "\n")
    return [(number, line) for number, line in enumerate(text.split("\n"), start=1) if line.strip()]


def read_tsv_raw(path: Path) -> TsvMatrix:
    """Read a file as plain strings, without any type coercion.

    Raises:
        TabularParseError: If the file is not valid UTF-8.
    """
    lines = _read_lines(path)
    if not lines:
        return TsvMatrix(headers=[], rows=[])
    headers = lines[0][1].split("\t")
    return TsvMatrix(headers=headers, rows=[line.split("\t") for _, line in lines[1:]])


def write_tsv(path: Path, headers: Sequence[str], rows: Iterable[Sequence[str]]) -> int:
    """Write a header and rows; returns the number of data rows written."""
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with path.open("w", encoding="utf-8", newline="\n") as handle:
        handle.write("\t".join(headers) + "\n")
        for row in rows:
            handle.write("\t".join(row) + "\n")
            count += 1
    return count


def _type_default(python_type: type) -> Any:
    if issubclass(python_type, bool):
        return False
    if issubclass(python_type, Enum):
        if issubclass(python_type, int):
            return 0
        raise ValueError(f"empty value for non-nullable {python_type.__name__}")
    if issubclass(python_type, int):
        return 0
    if issubclass(python_type, float):
        return 0.0
    if issubclass(python_type, str):
        return ""
    if issubclass(python_type, bytes):
        return b""
    if issubclass(python_type, Decimal):
        return Decimal(0)
    raise ValueError(f"empty value for non-nullable {python_type.__name__}")


def parse_float(text: str) -> float:
    stripped = text.strip()
    special = _SPECIAL_FLOATS.get(stripped.lower())
    if special is not None:
        return special
    if not _FLOAT.fullmatch(stripped):
        raise ValueError("not an invariant-format number")
    return float(stripped)


def parse_bool(text: str) -> bool:
    stripped = text.strip()
    lowered = stripped.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if _INTEGER.fullmatch(stripped):
        return int(stripped) != 0
    raise ValueError("expected 1, 0, true or false")


def parse_enum(enum_type: type[Enum], text: str) -> Any:
    """Parse an enum member by name, or by numeric value, and return its value."""
    stripped = text.strip()
    if stripped in enum_type.__members__:
        return enum_type[stripped].value
    if _INTEGER.fullmatch(stripped):
        return enum_type(int(stripped)).value
    raise ValueError(f"not a member of {enum_type.__name__}")


def coerce_cell(text: str, python_type: type, optional: bool) -> Any:
    """Convert one cell to ``python_type``.

    Empty text becomes ``None`` for optional columns and the type default
    otherwise. Raises ValueError on malformed text.
    """
    if text == "":
        return None if optional else _type_default(python_type)
    if issubclass(python_type, bool):
        return parse_bool(text)
    if issubclass(python_type, Enum):
        return parse_enum(python_type, text)
    if issubclass(python_type, int):
        stripped = text.strip()
        if not _INTEGER.fullmatch(stripped):
            raise ValueError("not an invariant-format integer")
        return int(stripped)
    if issubclass(python_type, float):
        return parse_float(text)
    if issubclass(python_type, str):
        return text
    if issubclass(python_type, bytes):
        try:
            return base64.b64decode(text, validate=True)
        except binascii.Error as e:
            raise ValueError("not valid base64") from e
    if issubclass(python_type, Decimal):
        try:
            return Decimal(text.strip())
        except InvalidOperation as e:
            raise ValueError("not a decimal number") from e
    if issubclass(python_type, UUID):
        return UUID(text.strip())
    if issubclass(python_type, datetime):
        return datetime.fromisoformat(text.strip())
    if issubclass(python_type, date):
        return date.fromisoformat(text.strip())
    if issubclass(python_type, time):
        return time.fromisoformat(text.strip())
    if issubclass(python_type, timedelta):
        return timedelta(seconds=parse_float(text))
    return text


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer() and abs(value) < 1e16:
        return str(int(value))
    return repr(value)


def format_float32(value: float) -> str:
    """Shortest text that reads back as the same single-precision value."""
    try:
        single = struct.unpack("f", struct.pack("f", value))[0]
    except OverflowError:
        return _format_float(value)
    if not math.isfinite(single):
        return _format_float(single)
    for digits in range(1, 10):
        text = f"{single:.{digits}g}"
        if struct.unpack("f", struct.pack("f", float(text)))[0] == single:
            return _format_float(float(text))
    return _format_float(single)


def format_cell(value: Any, float32: bool = False) -> str:
    """Render a value the way it is stored in a TSV file."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, Enum):
        return format_cell(value.value)
    if isinstance(value, float):
        return format_float32(value) if float32 else _format_float(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


def table_name_of(row_type: type[BaseModel]) -> str:
    table_name = getattr(row_type, "table_name", None)
    if callable(table_name):
        return table_name()
    return str(getattr(row_type, "__tablename__", row_type.__name__))


class TsvReader:
    """Parses TSV files into typed rows using the row type's columns."""

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger or structlog.get_logger(__name__)

    def read(self, row_type: type[T_Row], path: Path) -> list[T_Row]:
        """Parse every data row of ``path`` into ``row_type``.

        Columns absent from the header keep their declared default; headers
        that match no column are ignored.

        Raises:
            FileNotFoundError: If the file does not exist.
            TabularParseError: On the first cell that cannot be converted, or
                if the file is not valid UTF-8.
        """
        table = table_name_of(row_type)
        lines = _read_lines(path)
        if not lines:
            return []

        header_index: dict[str, int] = {}
        for i, header in enumerate(lines[0][1].split("\t")):
            header_index.setdefault(header, i)
        columns = [(column, header_index[column.name]) for column in column_fields(row_type) if column.name in header_index]

        rows: list[T_Row] = []
        for line_number, line in lines[1:]:
            cells = line.split("\t")
            values: dict[str, Any] = {}
            for column, index in columns:
                text = cells[index] if index < len(cells) else ""
                try:
                    values[column.attribute] = coerce_cell(text, column.python_type, column.is_optional)
                except ValueError as e:
                    raise TabularParseError(table, column.name, line_number, text, str(e)) from e
            try:
                rows.append(row_type.model_validate(values))
            except ValidationError as e:
                error = e.errors()[0]
                attribute = str(error["loc"][0]) if error["loc"] else ""
                column = next((c for c, _ in columns if c.attribute == attribute), None)
                name = column.name if column else attribute
                text = cells[header_index[name]] if name in header_index and header_index[name] < len(cells) else ""
                raise TabularParseError(table, name, line_number, text, error["msg"]) from e

        self._logger.debug("tsv_read", table=table, path=str(path), row_count=len(rows))
        return rows
