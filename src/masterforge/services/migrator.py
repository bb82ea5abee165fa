"""Creates the relational mirror's tables.

The master group is derived from the proto schema: one table per master
table deployed to the chosen target, PascalCase columns, the primary key in
key order and one index per secondary key. The user group comes from the
SQLModel tables in ``masterforge.models.tables``.
"""

import structlog
from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Double,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    Numeric,
    PrimaryKeyConstraint,
    Table,
    Text,
)
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.types import REAL, TypeEngine
from sqlmodel import SQLModel

from masterforge.models.definitions import TableDefinition
from masterforge.models.enums import LogicalType
from masterforge.models.tables import MASTER_SCHEMA, USER_SCHEMA
from masterforge.services.targets import should_include

_COLUMN_TYPES: dict[LogicalType, TypeEngine] = {
    LogicalType.INT32: Integer(),
    LogicalType.INT64: BigInteger(),
    LogicalType.UINT32: BigInteger(),
    LogicalType.UINT64: Numeric(20, 0),
    LogicalType.FLOAT32: REAL(),
    LogicalType.FLOAT64: Double(),
    LogicalType.BOOL: Boolean(),
    LogicalType.STRING: Text(),
    LogicalType.BYTES: LargeBinary(),
}


def build_master_metadata(tables: list[TableDefinition], target_bit: int) -> MetaData:
    """SQLAlchemy tables for every master table deployed to ``target_bit``."""
    metadata = MetaData(schema=MASTER_SCHEMA)
    for table in tables:
        if not should_include(table.deploy_mask, target_bit):
            continue
        fields = table.fields_for(target_bit)
        present = {field.schema_name for field in fields}
        columns = [
            Column(field.generated_name, _COLUMN_TYPES[field.logical_type], nullable=field.is_optional)
            for field in fields
        ]
        constraints = []
        primary = [field.generated_name for field in table.primary_key if field.schema_name in present]
        if primary:
            constraints.append(PrimaryKeyConstraint(*primary, name=f"PK_{MASTER_SCHEMA}_{table.table_name}"))
        sql_table = Table(table.table_name, metadata, *columns, *constraints)

        for index in table.secondary_indexes().values():
            if not all(name in present for name in index.fields):
                continue
            column_names = [table.field(name).generated_name for name in index.fields]
            Index(
                f"IX_{MASTER_SCHEMA}_{table.table_name}_{'_'.join(column_names)}",
                *(sql_table.c[name] for name in column_names),
                unique=not index.non_unique,
            )
    return metadata


class SchemaMigrator:
    """Creates master and user tables that do not exist yet."""

    def __init__(
        self,
        engine: AsyncEngine,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._engine = engine
        self._logger = logger or structlog.get_logger(__name__)

    async def migrate(self, tables: list[TableDefinition], target_bit: int, include_user: bool = True) -> int:
        """Create missing tables.

        Args:
            tables: Master table definitions in schema order.
            target_bit: Deploy target whose tables and columns are mirrored.
            include_user: Also create the user schema tables.

        Returns:
            Number of master tables in the mirrored schema.
        """
        master = build_master_metadata(tables, target_bit)
        async with self._engine.begin() as conn:
            if conn.dialect.name == "postgresql":
                await conn.exec_driver_sql(f'CREATE SCHEMA IF NOT EXISTS "{MASTER_SCHEMA}"')
                if include_user:
                    await conn.exec_driver_sql(f'CREATE SCHEMA IF NOT EXISTS "{USER_SCHEMA}"')
            await conn.run_sync(master.create_all)
            if include_user:
                await conn.run_sync(SQLModel.metadata.create_all)

        self._logger.info("schema_migrated", master_tables=len(master.tables), user_tables=include_user)
        return len(master.tables)
