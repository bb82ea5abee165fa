"""Schema reader that turns compiled proto schemas into table definitions.

protoc compiles the schema directory into a FileDescriptorSet. Messages are
read with the protobuf descriptor runtime; masterdata custom options are
decoded from the raw option bytes with ``ProtoWireReader``.
"""

import keyword
from pathlib import Path

import structlog
from google.protobuf import descriptor_pb2
from pydantic import ValidationError

from masterforge.errors import SchemaDefectError
from masterforge.models.definitions import (
    FieldDefinition,
    SecondaryKeyDefinition,
    SecondaryKeyInfo,
    TableDefinition,
)
from masterforge.models.enums import IndexType, LogicalType
from masterforge.naming import to_pascal_case
from masterforge.services.protoc import ProtocCompiler
from masterforge.services.wire import ProtoWireReader

# google.protobuf.MessageOptions extensions
TABLE_TARGET = 50001
TABLE_NAME = 50002
SECONDARY_KEYS = 50003

# SecondaryKeyDef record
SK_FIELD_NAME = 1
SK_SECONDARY_INDEX = 2
SK_KEY_ORDER = 3
SK_NON_UNIQUE = 4

# google.protobuf.FieldOptions extensions
FIELD_TARGET = 50001
INDEX_TYPE = 50002
PRIMARY_KEY_ORDER = 50003
SECONDARY_INDEX = 50004
KEY_ORDER = 50005
NON_UNIQUE = 50006

_MASTERDATA_FIELD_OPTIONS = (FIELD_TARGET, INDEX_TYPE, PRIMARY_KEY_ORDER, SECONDARY_INDEX, KEY_ORDER, NON_UNIQUE)

_Field = descriptor_pb2.FieldDescriptorProto

SCALAR_TYPES: dict[int, LogicalType] = {
    _Field.TYPE_INT32: LogicalType.INT32,
    _Field.TYPE_SINT32: LogicalType.INT32,
    _Field.TYPE_SFIXED32: LogicalType.INT32,
    _Field.TYPE_INT64: LogicalType.INT64,
    _Field.TYPE_SINT64: LogicalType.INT64,
    _Field.TYPE_SFIXED64: LogicalType.INT64,
    _Field.TYPE_UINT32: LogicalType.UINT32,
    _Field.TYPE_FIXED32: LogicalType.UINT32,
    _Field.TYPE_UINT64: LogicalType.UINT64,
    _Field.TYPE_FIXED64: LogicalType.UINT64,
    _Field.TYPE_FLOAT: LogicalType.FLOAT32,
    _Field.TYPE_DOUBLE: LogicalType.FLOAT64,
    _Field.TYPE_BOOL: LogicalType.BOOL,
    _Field.TYPE_STRING: LogicalType.STRING,
    _Field.TYPE_BYTES: LogicalType.BYTES,
}


def _is_skipped_file(name: str) -> bool:
    return name.startswith("google/") or "masterdata_options" in name


class SchemaReader:
    """Reads every table definition from a schema directory."""

    def __init__(
        self,
        compiler: ProtocCompiler,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._compiler = compiler
        self._logger = logger or structlog.get_logger(__name__)

    def read_all(self, proto_dir: Path) -> list[TableDefinition]:
        """Compile ``proto_dir`` and return its tables in schema order.

        Raises:
            FileNotFoundError: If the schema directory does not exist.
            ConfigurationError: If it holds no .proto files.
            ProtocNotFoundError: If protoc cannot be located.
            SchemaCompileError: If protoc rejects the schema.
            SchemaDefectError: If a table violates a key or naming invariant.
        """
        return self.parse_descriptor_set(self._compiler.compile(proto_dir))

    def parse_descriptor_set(self, data: bytes) -> list[TableDefinition]:
        """Extract table definitions from serialized FileDescriptorSet bytes."""
        descriptor_set = descriptor_pb2.FileDescriptorSet.FromString(data)

        tables: list[TableDefinition] = []
        origins: dict[str, str] = {}
        for file in descriptor_set.file:
            if _is_skipped_file(file.name):
                continue
            for message in file.message_type:
                table = self._parse_message(file.name, message)
                if table is None:
                    continue
                if table.table_name in origins:
                    raise SchemaDefectError(
                        f"Table '{table.table_name}' is declared in both "
                        f"{origins[table.table_name]} and {file.name}"
                    )
                origins[table.table_name] = file.name
                tables.append(table)

        self._logger.info("schema_tables_read", table_count=len(tables))
        return tables

    def _parse_message(
        self,
        file_name: str,
        message: descriptor_pb2.DescriptorProto,
    ) -> TableDefinition | None:
        options = ProtoWireReader(message.options.SerializeToString())
        is_table = options.has(TABLE_TARGET) or options.has(TABLE_NAME) or options.has(SECONDARY_KEYS)

        field_options = [
            ProtoWireReader(field.options.SerializeToString())
            for field in message.field
        ]

        if not is_table:
            if any(opts.has(number) for opts in field_options for number in _MASTERDATA_FIELD_OPTIONS):
                raise SchemaDefectError(
                    f"{file_name}: message '{message.name}' declares key or deploy options "
                    "on its fields but has no table_target option"
                )
            self._logger.warning("message_skipped_no_table_marker", file=file_name, message=message.name)
            return None

        try:
            fields = [
                self._parse_field(file_name, message.name, field, opts)
                for field, opts in zip(message.field, field_options)
            ]
            secondary_keys = [self._parse_secondary_key(raw) for raw in options.get_repeated_bytes(SECONDARY_KEYS)]
            return TableDefinition(
                table_name=options.get_string(TABLE_NAME) or message.name,
                schema_file=file_name,
                deploy_mask=options.get_varint(TABLE_TARGET) or 0,
                fields=fields,
                secondary_keys=secondary_keys,
            )
        except ValidationError as e:
            raise SchemaDefectError(f"{file_name}: message '{message.name}' is invalid: {e}") from e

    def _parse_field(
        self,
        file_name: str,
        message_name: str,
        field: descriptor_pb2.FieldDescriptorProto,
        options: ProtoWireReader,
    ) -> FieldDefinition:
        if field.label == _Field.LABEL_REPEATED:
            raise SchemaDefectError(
                f"{file_name}: {message_name}.{field.name} is repeated; table columns must be scalar"
            )
        if keyword.iskeyword(field.name):
            raise SchemaDefectError(
                f"{file_name}: {message_name}.{field.name} is a Python keyword and cannot name a generated attribute"
            )

        logical_type = SCALAR_TYPES.get(field.type)
        if logical_type is None:
            # Unmapped types (enums, messages) keep the lenient int32 fallback.
            self._logger.warning(
                "schema_type_fallback",
                file=file_name,
                message=message_name,
                field=field.name,
                proto_type=_Field.Type.Name(field.type),
                fallback=LogicalType.INT32.value,
            )
            logical_type = LogicalType.INT32

        index_type = options.get_varint(INDEX_TYPE) or IndexType.NONE
        secondary_keys: list[SecondaryKeyInfo] = []
        if index_type == IndexType.SECONDARY:
            secondary_keys.append(
                SecondaryKeyInfo(
                    index=options.get_varint(SECONDARY_INDEX) or 0,
                    key_order=options.get_varint(KEY_ORDER) or 0,
                    non_unique=bool(options.get_bool(NON_UNIQUE)),
                )
            )

        return FieldDefinition(
            schema_name=field.name,
            generated_name=to_pascal_case(field.name),
            logical_type=logical_type,
            is_optional=field.proto3_optional,
            deploy_mask=options.get_varint(FIELD_TARGET) or 0,
            field_number=field.number,
            is_primary_key=index_type == IndexType.PRIMARY,
            primary_key_order=(options.get_varint(PRIMARY_KEY_ORDER) or 0) if index_type == IndexType.PRIMARY else 0,
            secondary_keys=secondary_keys,
        )

    @staticmethod
    def _parse_secondary_key(raw: bytes) -> SecondaryKeyDefinition:
        record = ProtoWireReader(raw)
        return SecondaryKeyDefinition(
            field_name=record.get_string(SK_FIELD_NAME) or "",
            secondary_index=record.get_varint(SK_SECONDARY_INDEX) or 0,
            key_order=record.get_varint(SK_KEY_ORDER) or 0,
            non_unique=bool(record.get_bool(SK_NON_UNIQUE)),
        )
