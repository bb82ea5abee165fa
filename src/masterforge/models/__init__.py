from masterforge.models.definitions import (
    FieldDefinition,
    SecondaryIndex,
    SecondaryKeyDefinition,
    SecondaryKeyInfo,
    TableDefinition,
)
from masterforge.models.enums import DeployTarget, ExportFormat, IndexType, LogicalType
from masterforge.models.master import (
    Deploy,
    Float32,
    Float64,
    Int32,
    Int64,
    MasterTable,
    PrimaryKey,
    SecondaryKey,
    UInt32,
    UInt64,
)
from masterforge.models.tables import UserInfo, UserScore

__all__ = [
    "TableDefinition",
    "FieldDefinition",
    "SecondaryKeyInfo",
    "SecondaryKeyDefinition",
    "SecondaryIndex",
    "DeployTarget",
    "LogicalType",
    "IndexType",
    "ExportFormat",
    "MasterTable",
    "PrimaryKey",
    "SecondaryKey",
    "Deploy",
    "Int32",
    "Int64",
    "UInt32",
    "UInt64",
    "Float32",
    "Float64",
    "UserInfo",
    "UserScore",
]
