"""Async database engine setup and live schema introspection.

PostgreSQL groups tables in real schemas. SQLite has no schemas, so each
group is an attached database named after the schema: ``:memory:`` for an
in-memory engine, ``<stem>.<schema>.db`` next to the main file otherwise.
"""

from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import event, inspect
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import REAL, Float

from masterforge.models.tables import MASTER_SCHEMA, USER_SCHEMA

DEFAULT_SCHEMAS = (MASTER_SCHEMA, USER_SCHEMA)


class ColumnInfo(BaseModel):
    name: str
    ordinal_position: int
    type_name: str
    python_type: type | None = None
    is_nullable: bool = True
    is_identity: bool = False
    is_float32: bool = False
    sql_type: Any = None

    model_config = {"frozen": True, "arbitrary_types_allowed": True}


class TableSchema(BaseModel):
    """One live table with its columns in ordinal order."""

    schema_name: str
    table_name: str
    columns: list[ColumnInfo]
    depends_on: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"


def _sqlite_attach_path(database: str | None, schema: str) -> str:
    if not database or database == ":memory:":
        return ":memory:"
    path = Path(database)
    return str(path.with_name(f"{path.stem}.{schema}.db"))


def create_engine_from_url(url: str, schemas: tuple[str, ...] = DEFAULT_SCHEMAS) -> AsyncEngine:
    """Create an async engine, attaching schema databases on SQLite.

    Args:
        url: SQLAlchemy URL, e.g. ``postgresql+asyncpg://...`` or
            ``sqlite+aiosqlite:///:memory:``.
        schemas: Schema names that must be addressable.

    Returns:
        AsyncEngine ready for use.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_async_engine(url)

    in_memory = not parsed.database or parsed.database == ":memory:"
    # An in-memory database lives only as long as its single connection.
    engine = create_async_engine(url, poolclass=StaticPool) if in_memory else create_async_engine(url)
    attachments = [(schema, _sqlite_attach_path(parsed.database, schema)) for schema in schemas]

    @event.listens_for(engine.sync_engine, "connect")
    def _attach_schemas(dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        for schema, path in attachments:
            cursor.execute(f"ATTACH DATABASE '{path}' AS \"{schema}\"")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def _is_float32(column_type: Any) -> bool:
    if isinstance(column_type, REAL):
        return True
    precision = getattr(column_type, "precision", None)
    return isinstance(column_type, Float) and precision is not None and precision <= 24


def _python_type(column_type: Any) -> type | None:
    try:
        return column_type.python_type
    except NotImplementedError:
        return None


def _inspect_schema(sync_conn: Connection, schema: str, ignored: frozenset[str]) -> list[TableSchema]:
    inspector = inspect(sync_conn)
    tables: list[TableSchema] = []
    for name in sorted(inspector.get_table_names(schema=schema)):
        if name in ignored:
            continue
        columns = [
            ColumnInfo(
                name=column["name"],
                ordinal_position=position,
                type_name=str(column["type"]),
                python_type=_python_type(column["type"]),
                is_nullable=bool(column.get("nullable", True)),
                is_identity=bool(column.get("identity")),
                is_float32=_is_float32(column["type"]),
                sql_type=column["type"],
            )
            for position, column in enumerate(inspector.get_columns(name, schema=schema), start=1)
        ]
        depends_on = sorted(
            {
                f"{fk.get('referred_schema') or schema}.{fk['referred_table']}"
                for fk in inspector.get_foreign_keys(name, schema=schema)
                if fk.get("referred_table") and fk["referred_table"] != name
            }
        )
        tables.append(TableSchema(schema_name=schema, table_name=name, columns=columns, depends_on=depends_on))
    return tables


def order_by_dependencies(tables: list[TableSchema]) -> list[TableSchema]:
    """Order tables so every table follows the tables it references.

    Ties keep the input order. References to tables outside the list are
    ignored; cycles fall back to input order for the remaining tables.
    """
    remaining = list(tables)
    placed: set[str] = set()
    known = {table.qualified_name for table in tables}
    ordered: list[TableSchema] = []
    while remaining:
        ready = [
            table
            for table in remaining
            if all(dep in placed or dep not in known for dep in table.depends_on)
        ]
        if not ready:
            ready = remaining[:1]
        for table in ready:
            ordered.append(table)
            placed.add(table.qualified_name)
            remaining.remove(table)
    return ordered


class SchemaIntrospector:
    """Reads table and column metadata from a live database."""

    def __init__(
        self,
        ignored_tables: list[str] | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._ignored = frozenset(ignored_tables or [])
        self._logger = logger or structlog.get_logger(__name__)

    async def get_tables(self, conn: AsyncConnection, schema: str) -> list[TableSchema]:
        """Tables of ``schema`` in foreign key dependency order."""
        tables = await conn.run_sync(_inspect_schema, schema, self._ignored)
        self._logger.debug("schema_introspected", schema=schema, table_count=len(tables))
        return order_by_dependencies(tables)
