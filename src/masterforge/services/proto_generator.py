"""Reverse schema generator: table definitions back to .proto text.

Used to scaffold schema files for tables that exist only as Python classes.
The output is exactly what ``SchemaReader`` reads back: each secondary
index's leading participant is declared inline on its field when that
field has a free inline slot, and every other participant is declared in
the message-level ``secondary_keys`` option.
"""

from pathlib import Path

import structlog

from masterforge.models.definitions import SecondaryKeyDefinition, SecondaryKeyInfo, TableDefinition
from masterforge.models.enums import DeployTarget, LogicalType
from masterforge.naming import to_snake_case

OPTIONS_IMPORT = "options/masterdata_options.proto"
OPTIONS_PACKAGE = "masterdata.options"

_PROTO_TYPES: dict[LogicalType, str] = {
    LogicalType.INT32: "int32",
    LogicalType.INT64: "int64",
    LogicalType.UINT32: "uint32",
    LogicalType.UINT64: "uint64",
    LogicalType.FLOAT32: "float",
    LogicalType.FLOAT64: "double",
    LogicalType.BOOL: "bool",
    LogicalType.STRING: "string",
    LogicalType.BYTES: "bytes",
}


def deploy_target_literal(mask: int) -> str:
    """Enum literal for a mask, e.g. ``DEPLOY_TARGET_CLIENT_SERVER``."""
    return f"DEPLOY_TARGET_{DeployTarget(mask).name}"


def _option(name: str) -> str:
    return f"({OPTIONS_PACKAGE}.{name})"


def _bool(value: bool) -> str:
    return "true" if value else "false"


def estimate_sub_directory(class_name: str, out_dir: Path) -> str:
    """Pick the schema subdirectory a new table most likely belongs to.

    Existing subdirectories (except ``options``) are matched as prefixes of
    the snake-cased class name, longest match first. Without a match the
    first name segment is used.
    """
    snake = to_snake_case(class_name)
    candidates: list[str] = []
    if out_dir.is_dir():
        for child in out_dir.iterdir():
            if child.is_dir() and child.name != "options":
                candidates.append(child.name)

    best = ""
    for candidate in candidates:
        prefix = candidate.replace("-", "_")
        if (snake == prefix or snake.startswith(prefix + "_")) and len(candidate) > len(best):
            best = candidate
    if best:
        return best
    return snake.split("_", 1)[0]


class ProtoFileGenerator:
    """Renders one table as a proto3 message in its own file."""

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger or structlog.get_logger(__name__)

    def generate(self, table: TableDefinition, sub_dir: str, message_name: str | None = None) -> str:
        """Render ``table`` as proto text.

        Args:
            table: Table to render; field numbers are ignored and reassigned
                sequentially from 1.
            sub_dir: Schema subdirectory, used as the package suffix.
            message_name: Message name; defaults to the table name.

        Returns:
            Proto source text ending with a newline.
        """
        message_name = message_name or table.table_name
        inline, message_level = self.split_secondary_keys(table)

        lines = [
            'syntax = "proto3";',
            "",
            f"package masterdata.{sub_dir.replace('-', '_')};",
            "",
            f'import "{OPTIONS_IMPORT}";',
            "",
            f"message {message_name} {{",
            f"  option {_option('table_target')} = {deploy_target_literal(table.deploy_mask)};",
        ]
        if table.table_name != message_name:
            lines.append(f'  option {_option("table_name")} = "{table.table_name}";')
        for entry in message_level:
            lines.append(
                f"  option {_option('secondary_keys')} = {{"
                f'field_name: "{entry.field_name}", '
                f"secondary_index: {entry.secondary_index}, "
                f"key_order: {entry.key_order}, "
                f"non_unique: {_bool(entry.non_unique)}}};"
            )
        lines.append("")

        composite = table.has_composite_primary_key
        for number, field in enumerate(table.fields, start=1):
            options: list[str] = []
            if field.is_primary_key:
                options.append(f"{_option('index_type')} = INDEX_PRIMARY")
                if composite:
                    options.append(f"{_option('primary_key_order')} = {field.primary_key_order}")
            elif field.schema_name in inline:
                info = inline[field.schema_name]
                options.append(f"{_option('index_type')} = INDEX_SECONDARY")
                options.append(f"{_option('secondary_index')} = {info.index}")
                if info.key_order > 0:
                    options.append(f"{_option('key_order')} = {info.key_order}")
                if info.non_unique:
                    options.append(f"{_option('non_unique')} = true")
            if field.deploy_mask:
                options.append(f"{_option('field_target')} = {deploy_target_literal(field.deploy_mask)}")

            label = "optional " if field.is_optional else ""
            suffix = f" [{', '.join(options)}]" if options else ""
            lines.append(f"  {label}{_PROTO_TYPES[field.logical_type]} {field.schema_name} = {number}{suffix};")

        lines.append("}")
        return "\n".join(lines) + "\n"

    @staticmethod
    def split_secondary_keys(
        table: TableDefinition,
    ) -> tuple[dict[str, SecondaryKeyInfo], list[SecondaryKeyDefinition]]:
        """Decide where each secondary key participant is declared.

        A field has a single inline slot, and primary key fields have none.
        Message-level entries come out sorted by index then key order.
        """
        primary = {field.schema_name for field in table.fields if field.is_primary_key}
        inline: dict[str, SecondaryKeyInfo] = {}
        message_level: list[SecondaryKeyDefinition] = []

        for index in table.secondary_indexes().values():
            for key_order, field_name in enumerate(index.fields):
                leading = key_order == 0
                non_unique = index.non_unique and leading
                if leading and field_name not in primary and field_name not in inline:
                    inline[field_name] = SecondaryKeyInfo(index=index.index, key_order=0, non_unique=non_unique)
                else:
                    message_level.append(
                        SecondaryKeyDefinition(
                            field_name=field_name,
                            secondary_index=index.index,
                            key_order=key_order,
                            non_unique=non_unique,
                        )
                    )
        return inline, message_level

    def write(self, table: TableDefinition, out_dir: Path, message_name: str | None = None) -> Path:
        """Write ``table`` to ``<out_dir>/<sub_dir>/<snake_name>.proto``.

        Raises:
            FileExistsError: If the target file already exists.
        """
        message_name = message_name or table.table_name
        sub_dir = estimate_sub_directory(message_name, out_dir)
        path = out_dir / sub_dir / f"{to_snake_case(message_name)}.proto"
        if path.exists():
            raise FileExistsError(f"Schema file already exists: {path}")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.generate(table, sub_dir, message_name), encoding="utf-8")
        self._logger.info("proto_scaffolded", table=table.table_name, path=str(path))
        return path
