"""Factory functions for creating and wiring pipeline services.

Each factory reads paths and options from ``Settings`` so the CLI only deals
with command-line overrides.
"""

from collections.abc import Mapping
from pathlib import Path

import structlog
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncEngine

from masterforge.config import Settings, get_settings
from masterforge.errors import ConfigurationError
from masterforge.models.tables import MASTER_SCHEMA, USER_SCHEMA, USER_TABLE_TYPES
from masterforge.services.builder import BinaryBuildService
from masterforge.services.code_generator import CodeGenerator
from masterforge.services.dumper import DataDumper
from masterforge.services.introspector import SchemaIntrospector, create_engine_from_url
from masterforge.services.migrator import SchemaMigrator
from masterforge.services.protoc import ProtocCompiler, find_protoc
from masterforge.services.schema_reader import SchemaReader
from masterforge.services.seeder import DataSeeder
from masterforge.services.table_loader import load_table_types
from masterforge.services.targets import BuildTarget, default_targets
from masterforge.services.tsv import TsvReader
from masterforge.services.verify import RoundTripVerifier


def create_schema_reader(settings: Settings | None = None) -> SchemaReader:
    """Create a SchemaReader backed by the resolved protoc executable.

    Raises:
        ProtocNotFoundError: If protoc cannot be located.
    """
    settings = settings or get_settings()
    logger = structlog.get_logger(__name__)

    location = find_protoc(protoc_path=settings.protoc_path, tools_dir=settings.tools_dir, logger=logger)
    compiler = ProtocCompiler(location=location, logger=logger)
    return SchemaReader(compiler=compiler, logger=logger)


def build_targets(settings: Settings | None = None) -> dict[str, BuildTarget]:
    """Client, server and realtime targets with their configured namespaces."""
    settings = settings or get_settings()
    return default_targets(
        client_namespace=settings.client_namespace,
        server_namespace=settings.server_namespace,
        realtime_namespace=settings.realtime_namespace,
    )


def get_target(slug: str, settings: Settings | None = None) -> BuildTarget:
    """Look up one build target by slug (``client``, ``server``, ``realtime``).

    Raises:
        ConfigurationError: If the slug names no target.
    """
    targets = build_targets(settings)
    try:
        return targets[slug.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown target '{slug}'. Expected one of: {', '.join(targets)}"
        ) from None


def target_package_dir(target: BuildTarget, settings: Settings | None = None) -> Path:
    """Default directory of a target's generated table package."""
    settings = settings or get_settings()
    return settings.generated_dir / target.slug


def create_code_generator() -> CodeGenerator:
    return CodeGenerator(logger=structlog.get_logger(__name__))


def create_round_trip_verifier() -> RoundTripVerifier:
    logger = structlog.get_logger(__name__)
    return RoundTripVerifier(generator=CodeGenerator(logger=logger), logger=logger)


def create_build_service() -> BinaryBuildService:
    """Create a BinaryBuildService with a TSV reader."""
    logger = structlog.get_logger(__name__)
    return BinaryBuildService(reader=TsvReader(logger=logger), logger=logger)


def create_engine(database_url: str) -> AsyncEngine:
    return create_engine_from_url(database_url, schemas=(MASTER_SCHEMA, USER_SCHEMA))


def create_migrator(engine: AsyncEngine) -> SchemaMigrator:
    return SchemaMigrator(engine=engine, logger=structlog.get_logger(__name__))


def create_introspector(settings: Settings | None = None) -> SchemaIntrospector:
    settings = settings or get_settings()
    return SchemaIntrospector(ignored_tables=settings.ignored_tables, logger=structlog.get_logger(__name__))


def relational_row_types(master_package_dir: Path | None = None) -> dict[str, type[BaseModel]]:
    """Registered Python row types for the relational mirror.

    User tables always have one. Master tables have one when a generated
    package directory is given.
    """
    row_types: dict[str, type[BaseModel]] = dict(USER_TABLE_TYPES)
    if master_package_dir is not None:
        row_types.update(load_table_types(master_package_dir, logger=structlog.get_logger(__name__)))
    return row_types


def create_seeder(
    engine: AsyncEngine,
    row_types: Mapping[str, type[BaseModel]] | None = None,
    settings: Settings | None = None,
) -> DataSeeder:
    """Create a DataSeeder for ``engine``."""
    return DataSeeder(
        engine=engine,
        introspector=create_introspector(settings),
        row_types=row_types,
        logger=structlog.get_logger(__name__),
    )


def create_dumper(
    engine: AsyncEngine,
    row_types: Mapping[str, type[BaseModel]] | None = None,
    settings: Settings | None = None,
) -> DataDumper:
    """Create a DataDumper for ``engine``."""
    return DataDumper(
        engine=engine,
        introspector=create_introspector(settings),
        row_types=row_types,
        logger=structlog.get_logger(__name__),
    )


def resolve_schema_groups(user_only: bool, master_only: bool) -> list[str]:
    """Schema groups to process, master first.

    Raises:
        ConfigurationError: If both exclusive flags are set.
    """
    if user_only and master_only:
        raise ConfigurationError("--user-only and --master-only cannot be combined")
    if user_only:
        return [USER_SCHEMA]
    if master_only:
        return [MASTER_SCHEMA]
    return [MASTER_SCHEMA, USER_SCHEMA]
