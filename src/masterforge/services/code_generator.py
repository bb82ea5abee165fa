"""Forward code generator: table definitions to Python table modules.

Each table becomes one module holding a ``MasterTable`` subclass. Only
fields deployed to the requested target are emitted. Output depends on
nothing but the inputs, so regenerating an unchanged schema is a no-op.
"""

from pathlib import Path

import structlog

from masterforge.models.definitions import FieldDefinition, TableDefinition
from masterforge.models.enums import LogicalType
from masterforge.naming import to_snake_case
from masterforge.services.targets import BuildTarget, should_include

HEADER = "# <auto-generated>"
FOOTER = "# </auto-generated>"

_ANNOTATIONS: dict[LogicalType, str] = {
    LogicalType.INT32: "Int32",
    LogicalType.INT64: "Int64",
    LogicalType.UINT32: "UInt32",
    LogicalType.UINT64: "UInt64",
    LogicalType.FLOAT32: "Float32",
    LogicalType.FLOAT64: "Float64",
    LogicalType.BOOL: "bool",
    LogicalType.STRING: "str",
    LogicalType.BYTES: "bytes",
}

_DEFAULTS: dict[LogicalType, str] = {
    LogicalType.INT32: "0",
    LogicalType.INT64: "0",
    LogicalType.UINT32: "0",
    LogicalType.UINT64: "0",
    LogicalType.FLOAT32: "0.0",
    LogicalType.FLOAT64: "0.0",
    LogicalType.BOOL: "False",
    LogicalType.STRING: '""',
    LogicalType.BYTES: 'b""',
}


def module_name(table_name: str) -> str:
    return to_snake_case(table_name)


class CodeGenerator:
    """Renders table modules and the package ``__init__`` for one target."""

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger or structlog.get_logger(__name__)

    def generate(self, table: TableDefinition, namespace: str, target_label: str, target_bit: int) -> str:
        """Render the module source for one table.

        Args:
            table: Table to render.
            namespace: Package namespace recorded in the module docstring.
            target_label: Human-readable target name for the header.
            target_bit: Deploy-target bit used to filter fields.

        Returns:
            Python source text ending with a newline.
        """
        fields = table.fields_for(target_bit)
        secondary = self._secondary_markers(table)

        body: list[str] = []
        used: set[str] = set()
        for field in fields:
            annotation, names = self._annotation(field, secondary.get(field.schema_name, []))
            used.update(names)
            default = "None" if field.is_optional else _DEFAULTS[field.logical_type]
            body.append(f"    {field.schema_name}: {annotation} = {default}")

        needs_annotated = any("Annotated[" in line for line in body)
        typing_names = ["Annotated", "ClassVar"] if needs_annotated else ["ClassVar"]
        runtime_names = sorted(used | {"MasterTable"})

        lines = [
            HEADER,
            f"# Generated by masterforge from {table.schema_file or table.table_name} (target: {target_label}).",
            "# Do not edit by hand.",
            FOOTER,
            f'"""{table.table_name} table for {namespace}."""',
            "",
            f"from typing import {', '.join(typing_names)}",
            "",
            "from masterforge.models.master import (",
            *(f"    {name}," for name in runtime_names),
            ")",
            "",
            "",
            f"class {table.table_name}(MasterTable):",
            f'    TABLE_NAME: ClassVar[str] = "{table.table_name}"',
        ]
        if table.deploy_mask:
            lines.append(f"    DEPLOY_TARGET: ClassVar[int] = {table.deploy_mask}")
        if body:
            lines.append("")
            lines.extend(body)
        return "\n".join(lines) + "\n"

    def generate_package(self, tables: list[TableDefinition], namespace: str, target_label: str) -> str:
        """Render the package ``__init__`` that lists every table in schema order."""
        names = [table.table_name for table in tables]
        lines = [
            HEADER,
            f"# Generated by masterforge (target: {target_label}).",
            "# Do not edit by hand.",
            FOOTER,
            f'"""Master tables for {namespace}."""',
            "",
        ]
        lines.extend(f"from .{module_name(name)} import {name}" for name in names)
        if names:
            lines.append("")
        lines.append("TABLES = (")
        lines.extend(f"    {name}," for name in names)
        lines.append(")")
        lines.append("")
        lines.append("__all__ = [")
        lines.extend(f'    "{name}",' for name in ["TABLES", *names])
        lines.append("]")
        return "\n".join(lines) + "\n"

    def write_target(self, tables: list[TableDefinition], target: BuildTarget, out_dir: Path) -> list[Path]:
        """Write every table deployed to ``target`` into ``out_dir``.

        Returns:
            Paths written, package ``__init__`` last.
        """
        out_dir.mkdir(parents=True, exist_ok=True)
        included = [table for table in tables if should_include(table.deploy_mask, target.bit)]

        written: list[Path] = []
        for table in included:
            path = out_dir / f"{module_name(table.table_name)}.py"
            path.write_text(self.generate(table, target.namespace, target.label, target.bit), encoding="utf-8")
            written.append(path)

        init = out_dir / "__init__.py"
        init.write_text(self.generate_package(included, target.namespace, target.label), encoding="utf-8")
        written.append(init)

        self._logger.info(
            "codegen_target_written",
            target=target.label,
            out_dir=str(out_dir),
            table_count=len(included),
            skipped=len(tables) - len(included),
        )
        return written

    @staticmethod
    def _secondary_markers(table: TableDefinition) -> dict[str, list[str]]:
        markers: dict[str, list[str]] = {}
        for index in table.secondary_indexes().values():
            for key_order, field_name in enumerate(index.fields):
                args = [str(index.index)]
                if key_order:
                    args.append(f"key_order={key_order}")
                if index.non_unique and key_order == 0:
                    args.append("non_unique=True")
                markers.setdefault(field_name, []).append(f"SecondaryKey({', '.join(args)})")
        return markers

    @staticmethod
    def _annotation(field: FieldDefinition, secondary: list[str]) -> tuple[str, set[str]]:
        base = _ANNOTATIONS[field.logical_type]
        names = {base} if base[0].isupper() else set()
        if field.is_optional:
            base = f"{base} | None"

        markers: list[str] = []
        if field.is_primary_key:
            markers.append(f"PrimaryKey({field.primary_key_order})" if field.primary_key_order else "PrimaryKey()")
            names.add("PrimaryKey")
        if secondary:
            markers.extend(secondary)
            names.add("SecondaryKey")
        if field.deploy_mask:
            markers.append(f"Deploy({field.deploy_mask})")
            names.add("Deploy")

        if not markers:
            return base, names
        return f"Annotated[{base}, {', '.join(markers)}]", names
