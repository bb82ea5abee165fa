from enum import IntEnum, IntFlag, StrEnum


class DeployTarget(IntFlag):
    """Bitmask of deployment targets. ALL (0) means every target."""

    ALL = 0
    CLIENT = 1
    SERVER = 2
    REALTIME = 4
    CLIENT_SERVER = CLIENT | SERVER
    CLIENT_REALTIME = CLIENT | REALTIME
    SERVER_REALTIME = SERVER | REALTIME
    CLIENT_SERVER_REALTIME = CLIENT | SERVER | REALTIME


def should_include(mask: int, target_bit: int) -> bool:
    """Return whether an item with the given deploy mask ships to a target.

    A mask of 0 means every target. Composite target bits are accepted and
    match when any of their bits overlaps the mask.
    """
    return mask == DeployTarget.ALL or (mask & target_bit) != 0


class LogicalType(StrEnum):
    INT32 = "int32"
    INT64 = "int64"
    UINT32 = "uint32"
    UINT64 = "uint64"
    FLOAT32 = "float"
    FLOAT64 = "double"
    BOOL = "bool"
    STRING = "string"
    BYTES = "bytes"


class IndexType(IntEnum):
    NONE = 0
    PRIMARY = 1
    SECONDARY = 2


class ExportFormat(StrEnum):
    JSON = "json"
    TSV = "tsv"
