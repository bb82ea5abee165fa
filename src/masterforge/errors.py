"""Exception types raised by the master data pipeline.

Configuration and schema problems are fatal for the whole run. Tabular and
key problems are data defects scoped to a single table; callers report them
and move on to the next table.
"""


class MasterForgeError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(MasterForgeError):
    """Required configuration is missing or contradictory."""


class ProtocNotFoundError(ConfigurationError):
    """No usable protoc executable could be located."""


class SchemaCompileError(MasterForgeError):
    """protoc exited with a failure status."""

    def __init__(self, returncode: int, stderr: str) -> None:
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"protoc failed with exit code {returncode}:\n{stderr}")


class SchemaDefectError(MasterForgeError):
    """A schema compiled but violates a table or key invariant."""


class WireFormatError(MasterForgeError):
    """Option bytes could not be decoded as protobuf wire format."""


class TabularParseError(MasterForgeError):
    """A TSV cell could not be converted to its column type."""

    def __init__(self, table: str, column: str, row: int, value: str, reason: str = "") -> None:
        self.table = table
        self.column = column
        self.row = row
        self.value = value
        message = f"{table}.{column} row {row}: cannot parse {value!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class DuplicateKeyError(MasterForgeError):
    """Two rows of a table share the same primary key."""

    def __init__(self, table: str, key: tuple) -> None:
        self.table = table
        self.key = key
        super().__init__(f"{table}: duplicate primary key {key!r}")
