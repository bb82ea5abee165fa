"""Runtime support for generated master table classes.

Generated modules subclass ``MasterTable`` and describe keys with
``typing.Annotated`` markers, for example::

    class WeaponMaster(MasterTable):
        TABLE_NAME: ClassVar[str] = "WeaponMaster"

        id: Annotated[Int32, PrimaryKey()] = 0
        group_id: Annotated[Int32, SecondaryKey(0, non_unique=True)] = 0
        name: str = ""

Column discovery (``column_fields``) is shared by every consumer of row
types: the TSV reader, the binary builder, the seeder and the dumper.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from functools import cache
from types import NoneType, UnionType
from typing import Annotated, Any, ClassVar, Mapping, Type, TypeVar, Union, get_args, get_origin
from uuid import UUID

from annotated_types import Interval
from pydantic import BaseModel, ConfigDict

from masterforge.models.definitions import FieldDefinition, SecondaryKeyInfo, TableDefinition
from masterforge.models.enums import LogicalType
from masterforge.naming import to_pascal_case

T_Table = TypeVar("T_Table", bound="MasterTable")


@dataclass(frozen=True)
class ScalarType:
    logical_type: LogicalType


@dataclass(frozen=True)
class PrimaryKey:
    key_order: int = 0


@dataclass(frozen=True)
class SecondaryKey:
    index: int
    key_order: int = 0
    non_unique: bool = False


@dataclass(frozen=True)
class Deploy:
    mask: int


Int32 = Annotated[int, Interval(ge=-(2**31), le=2**31 - 1), ScalarType(LogicalType.INT32)]
Int64 = Annotated[int, Interval(ge=-(2**63), le=2**63 - 1), ScalarType(LogicalType.INT64)]
UInt32 = Annotated[int, Interval(ge=0, le=2**32 - 1), ScalarType(LogicalType.UINT32)]
UInt64 = Annotated[int, Interval(ge=0, le=2**64 - 1), ScalarType(LogicalType.UINT64)]
Float32 = Annotated[float, ScalarType(LogicalType.FLOAT32)]
Float64 = Annotated[float, ScalarType(LogicalType.FLOAT64)]

_COLUMN_TYPES = (bool, int, float, str, bytes, Decimal, UUID, datetime, date, time, timedelta, Enum)

_DEFAULT_LOGICAL_TYPES: dict[type, LogicalType] = {
    bool: LogicalType.BOOL,
    int: LogicalType.INT32,
    float: LogicalType.FLOAT64,
    str: LogicalType.STRING,
    bytes: LogicalType.BYTES,
}


@dataclass(frozen=True)
class Column:
    """A discoverable column of a row type."""

    attribute: str
    name: str
    python_type: type
    is_optional: bool
    metadata: tuple[Any, ...]

    def marker(self, kind: type) -> Any | None:
        for item in self.metadata:
            if isinstance(item, kind):
                return item
        return None

    def markers(self, kind: type) -> list[Any]:
        return [item for item in self.metadata if isinstance(item, kind)]

    @property
    def logical_type(self) -> LogicalType | None:
        """Declared logical type, else the default for the Python type."""
        scalar = self.marker(ScalarType)
        if scalar is not None:
            return scalar.logical_type
        return _DEFAULT_LOGICAL_TYPES.get(self.python_type)


def unwrap_annotation(annotation: Any) -> tuple[Any, bool, list[Any]]:
    """Strip ``Annotated`` and ``X | None`` wrappers.

    Returns:
        The inner type, whether None was allowed, and collected metadata.
    """
    metadata: list[Any] = []
    optional = False
    while True:
        origin = get_origin(annotation)
        if origin is Annotated:
            annotation, *extra = get_args(annotation)
            metadata.extend(extra)
            continue
        if origin is Union or origin is UnionType:
            args = get_args(annotation)
            non_none = [arg for arg in args if arg is not NoneType]
            if len(non_none) == 1 and len(non_none) < len(args):
                optional = True
                annotation = non_none[0]
                continue
        return annotation, optional, metadata


def is_column_type(python_type: Any) -> bool:
    """Scalars, strings, byte strings, enums and date/time values are columns."""
    return get_origin(python_type) is None and isinstance(python_type, type) and issubclass(python_type, _COLUMN_TYPES)


@cache
def column_fields(model: type[BaseModel]) -> tuple[Column, ...]:
    """Columns of a pydantic (or SQLModel) row type, in declaration order.

    Members whose type is not a column type (nested models, collections,
    relationships) are navigation members and are left out.
    """
    columns: list[Column] = []
    for attribute, info in model.model_fields.items():
        python_type, optional, inner_metadata = unwrap_annotation(info.annotation)
        if not is_column_type(python_type):
            continue
        columns.append(
            Column(
                attribute=attribute,
                name=info.alias or attribute,
                python_type=python_type,
                is_optional=optional,
                metadata=tuple(info.metadata) + tuple(inner_metadata),
            )
        )
    return tuple(columns)


def column_names(model: type[BaseModel]) -> list[str]:
    return [column.name for column in column_fields(model)]


class MasterTable(BaseModel):
    """Base class for generated, read-only master table rows."""

    TABLE_NAME: ClassVar[str] = ""
    DEPLOY_TARGET: ClassVar[int] = 0

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_pascal_case,
        ser_json_bytes="base64",
        val_json_bytes="base64",
    )

    @classmethod
    def table_name(cls) -> str:
        return cls.TABLE_NAME or cls.__name__

    @classmethod
    def primary_key_columns(cls) -> list[Column]:
        keyed = [(column.marker(PrimaryKey), column) for column in column_fields(cls)]
        keyed = [(marker, column) for marker, column in keyed if marker is not None]
        return [column for _, column in sorted(keyed, key=lambda pair: pair[0].key_order)]

    def primary_key(self) -> tuple[Any, ...]:
        return tuple(getattr(self, column.attribute) for column in self.primary_key_columns())

    def to_record(self) -> dict[str, Any]:
        """Column-name keyed values, in column order."""
        return self.model_dump(by_alias=True)

    @classmethod
    def from_record(cls: Type[T_Table], data: Mapping[str, Any]) -> T_Table:
        return cls.model_validate(data)


def table_definition_from_type(table_type: type[MasterTable]) -> TableDefinition:
    """Rebuild a table definition from a generated class's runtime metadata.

    Field numbers are assigned sequentially from 1 in declaration order.
    """
    fields: list[FieldDefinition] = []
    for number, column in enumerate(column_fields(table_type), start=1):
        pk = column.marker(PrimaryKey)
        deploy = column.marker(Deploy)
        fields.append(
            FieldDefinition(
                schema_name=column.attribute,
                generated_name=column.name,
                logical_type=column.logical_type or LogicalType.INT32,
                is_optional=column.is_optional,
                deploy_mask=deploy.mask if deploy else 0,
                field_number=number,
                is_primary_key=pk is not None,
                primary_key_order=pk.key_order if pk else 0,
                secondary_keys=[
                    SecondaryKeyInfo(index=sk.index, key_order=sk.key_order, non_unique=sk.non_unique)
                    for sk in column.markers(SecondaryKey)
                ],
            )
        )
    return TableDefinition(
        table_name=table_type.table_name(),
        deploy_mask=table_type.DEPLOY_TARGET,
        fields=fields,
    )
