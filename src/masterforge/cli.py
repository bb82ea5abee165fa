"""Master data pipeline CLI.

Generates typed table classes from proto schemas, builds per-target binary
snapshots from TSV data, keeps a relational mirror in sync and verifies the
results.
"""

import asyncio
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import structlog
import typer

from masterforge.config import get_settings, mask_database_url, resolve_database_url
from masterforge.errors import MasterForgeError
from masterforge.models.enums import ExportFormat
from masterforge.models.master import table_definition_from_type
from masterforge.naming import to_snake_case
from masterforge.services.builder import TableStatus
from masterforge.services.exporter import MasterDataExporter
from masterforge.services.factory import (
    build_targets,
    create_build_service,
    create_code_generator,
    create_dumper,
    create_engine,
    create_migrator,
    create_round_trip_verifier,
    create_schema_reader,
    create_seeder,
    get_target,
    relational_row_types,
    resolve_schema_groups,
    target_package_dir,
)
from masterforge.services.memory_database import MemoryDatabase
from masterforge.services.proto_generator import ProtoFileGenerator
from masterforge.services.seeder import SeedResult
from masterforge.services.table_loader import load_table_type, load_table_types
from masterforge.services.targets import BuildTarget
from masterforge.services.verify import VerifyStatus, diff_binaries, diff_tsv_directories, render_directory_diff


def configure_logging(level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=lambda *args: structlog.PrintLogger(file=sys.stderr),
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level)),
        context_class=dict,
        cache_logger_on_first_use=False,
    )


configure_logging()

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="masterforge",
    help="""Build master data from proto schemas and TSV files.

Examples:

  # Generate table classes for every target
  masterforge masterdata codegen

  # Build binary snapshots
  masterforge masterdata build --out-client client.bytes

  # Load TSV files into the relational mirror
  masterforge seeddata seed --database-url sqlite+aiosqlite:///mirror.db""",
    rich_markup_mode="markdown",
    no_args_is_help=True,
)
masterdata_app = typer.Typer(help="Code generation, binary builds and verification.", no_args_is_help=True)
migrate_app = typer.Typer(help="Relational mirror schema management.", no_args_is_help=True)
seeddata_app = typer.Typer(help="Relational mirror seeding and dumping.", no_args_is_help=True)
app.add_typer(masterdata_app, name="masterdata")
app.add_typer(migrate_app, name="migrate")
app.add_typer(seeddata_app, name="seeddata")


@app.callback()
def main() -> None:
    """Configure logging from settings before any command runs."""
    configure_logging(get_settings().log_level)


@contextmanager
def fatal_errors() -> Iterator[None]:
    """Turn pipeline errors into a logged message and exit code 1."""
    try:
        yield
    except (MasterForgeError, FileNotFoundError, NotADirectoryError, FileExistsError) as e:
        logger.error("command_failed", error_type=type(e).__name__, error=str(e))
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None


def _selected_targets(outputs: dict[str, Optional[Path]], default: Path, suffix: str) -> list[tuple[BuildTarget, Path]]:
    """Targets paired with their output path; all targets when none is given."""
    targets = build_targets()
    chosen = {slug: path for slug, path in outputs.items() if path is not None}
    if not chosen:
        chosen = {slug: default / f"{slug}{suffix}" for slug in targets}
    return [(targets[slug], path) for slug, path in chosen.items()]


@masterdata_app.command()
def codegen(
    proto_dir: Optional[Path] = typer.Option(None, "--proto-dir", "-p", help="Schema directory"),
    out_client: Optional[Path] = typer.Option(None, "--out-client", help="Output directory for client tables"),
    out_server: Optional[Path] = typer.Option(None, "--out-server", help="Output directory for server tables"),
    out_realtime: Optional[Path] = typer.Option(None, "--out-realtime", help="Output directory for realtime tables"),
    verify: bool = typer.Option(False, "--verify", help="Compare canonical output with hand-maintained modules"),
    existing_dir: Optional[Path] = typer.Option(None, "--existing-dir", help="Hand-maintained table modules"),
) -> None:
    """Generate typed table classes for each deploy target."""
    settings = get_settings()
    with fatal_errors():
        tables = create_schema_reader(settings).read_all(proto_dir or settings.proto_dir)
        generator = create_code_generator()

        outputs = {"client": out_client, "server": out_server, "realtime": out_realtime}
        for target, out_dir in _selected_targets(outputs, settings.generated_dir, ""):
            written = generator.write_target(tables, target, out_dir)
            typer.echo(f"{target.label}: {len(written) - 1} tables → {out_dir}")

        if not verify:
            return

        report = create_round_trip_verifier().verify(
            tables, existing_dir or settings.verify_dir, settings.canonical_namespace
        )
    for result in report.tables:
        typer.echo(f"{result.status.value:<8} {result.table}")
        for line in result.diff:
            typer.echo(f"    {line}")
    typer.echo(
        f"{report.count(VerifyStatus.MATCH)} match, {report.count(VerifyStatus.DIFF)} differ, "
        f"{report.count(VerifyStatus.MISSING)} missing"
    )
    if not report.ok:
        raise typer.Exit(1)


@masterdata_app.command()
def scaffold(
    class_name: str = typer.Argument(..., help="Name of an existing table class"),
    types_dir: Optional[Path] = typer.Option(None, "--types-dir", "-t", help="Directory of table modules"),
    out_dir: Optional[Path] = typer.Option(None, "--out-dir", "-o", help="Schema directory to write into"),
) -> None:
    """Write a .proto schema for a table that exists only as a Python class."""
    settings = get_settings()
    with fatal_errors():
        module_path = (types_dir or settings.verify_dir) / f"{to_snake_case(class_name)}.py"
        table = table_definition_from_type(load_table_type(module_path, class_name))
        path = ProtoFileGenerator().write(table, out_dir or settings.proto_dir, message_name=class_name)
    typer.echo(f"Scaffolded {table.table_name} → {path}")


@masterdata_app.command()
def build(
    tsv_dir: Optional[Path] = typer.Option(None, "--tsv-dir", "-d", help="Directory of <Table>.tsv files"),
    proto_dir: Optional[Path] = typer.Option(None, "--proto-dir", "-p", help="Schema directory"),
    types_dir: Optional[Path] = typer.Option(None, "--types-dir", "-t", help="Root of the generated packages"),
    out_client: Optional[Path] = typer.Option(None, "--out-client", help="Client snapshot file"),
    out_server: Optional[Path] = typer.Option(None, "--out-server", help="Server snapshot file"),
    out_realtime: Optional[Path] = typer.Option(None, "--out-realtime", help="Realtime snapshot file"),
) -> None:
    """Build a binary snapshot for each deploy target."""
    settings = get_settings()
    failed = False
    with fatal_errors():
        tables = create_schema_reader(settings).read_all(proto_dir or settings.proto_dir)
        service = create_build_service()

        outputs = {"client": out_client, "server": out_server, "realtime": out_realtime}
        for target, out_path in _selected_targets(outputs, settings.generated_dir, ".bytes"):
            package_dir = (types_dir / target.slug) if types_dir else target_package_dir(target, settings)
            table_types = load_table_types(package_dir)
            result = service.build(tables, tsv_dir or settings.tsv_dir, target, table_types)

            out_path.parent.mkdir(parents=True, exist_ok=True)
            out_path.write_bytes(result.data)
            typer.echo(
                f"Built {len(result.built)} tables ({result.total_rows} rows) → {out_path} "
                f"({result.size} bytes, sha256: {result.sha256[:16]}...)"
            )
            for error in result.errors:
                typer.echo(f"  error: {error}")
            failed = failed or bool(result.errors)

    if failed:
        raise typer.Exit(1)


@masterdata_app.command()
def validate(
    tsv_dir: Optional[Path] = typer.Option(None, "--tsv-dir", "-d", help="Directory of <Table>.tsv files"),
    proto_dir: Optional[Path] = typer.Option(None, "--proto-dir", "-p", help="Schema directory"),
    types_dir: Optional[Path] = typer.Option(None, "--types-dir", "-t", help="Root of the generated packages"),
    target: Optional[str] = typer.Option(None, "--target", help="Validate one target only"),
) -> None:
    """Parse every TSV file against its generated types without writing output."""
    settings = get_settings()
    failed = False
    with fatal_errors():
        tables = create_schema_reader(settings).read_all(proto_dir or settings.proto_dir)
        service = create_build_service()
        targets = [get_target(target, settings)] if target else list(build_targets(settings).values())

        for build_target in targets:
            package_dir = (types_dir / build_target.slug) if types_dir else target_package_dir(build_target, settings)
            result = service.build(tables, tsv_dir or settings.tsv_dir, build_target, load_table_types(package_dir))
            skipped = len(result.tables) - len(result.built) - len(result.errors)
            typer.echo(
                f"{build_target.label}: {len(result.built)} tables valid ({result.total_rows} rows), "
                f"{skipped} skipped, {len(result.errors)} errors"
            )
            for error in result.errors:
                typer.echo(f"  error: {error}")
            failed = failed or bool(result.errors)

    if failed:
        raise typer.Exit(1)


@masterdata_app.command("diff")
def diff_snapshots(
    old: Path = typer.Argument(..., help="Previous snapshot"),
    new: Path = typer.Argument(..., help="New snapshot"),
) -> None:
    """Compare two binary snapshots by size and content hash."""
    with fatal_errors():
        result = diff_binaries(old, new)
    typer.echo(f"old: {result.old_size} bytes (sha256: {result.old_sha256[:16]}...)")
    typer.echo(f"new: {result.new_size} bytes (sha256: {result.new_sha256[:16]}...)")
    if result.identical:
        typer.echo("Snapshots are identical")
        return
    typer.echo(f"Snapshots differ (size delta: {result.size_delta:+d} bytes)")
    raise typer.Exit(1)


@masterdata_app.command()
def export(
    export_format: ExportFormat = typer.Argument(..., metavar="FORMAT", help="Output format"),
    input_path: Path = typer.Argument(..., metavar="INPUT", help="Snapshot file"),
    out_dir: Path = typer.Argument(..., help="Directory for the exported files"),
    types_dir: Optional[Path] = typer.Option(None, "--types-dir", "-t", help="Generated package for column order"),
) -> None:
    """Export every table of a snapshot as JSON or TSV."""
    with fatal_errors():
        if not input_path.is_file():
            raise FileNotFoundError(f"Snapshot not found: {input_path}")
        table_types = load_table_types(types_dir) if types_dir else None
        database = MemoryDatabase(input_path.read_bytes(), table_types)
        written = MasterDataExporter().export(database, export_format, out_dir)
    typer.echo(f"Exported {len(written)} tables as {export_format.value} → {out_dir}")


@migrate_app.command()
def up(
    database_url: Optional[str] = typer.Option(None, "--database-url", help="SQLAlchemy async database URL"),
    proto_dir: Optional[Path] = typer.Option(None, "--proto-dir", "-p", help="Schema directory"),
    target: str = typer.Option("server", "--target", help="Deploy target whose tables are mirrored"),
    master_only: bool = typer.Option(False, "--master-only", help="Skip the user schema"),
) -> None:
    """Create missing master and user tables in the relational mirror."""
    settings = get_settings()
    with fatal_errors():
        url = resolve_database_url(database_url, settings)
        build_target = get_target(target, settings)
        tables = create_schema_reader(settings).read_all(proto_dir or settings.proto_dir)
        logger.info("migrate_started", database=mask_database_url(url), target=build_target.label)

        async def run_migration() -> int:
            engine = create_engine(url)
            try:
                return await create_migrator(engine).migrate(tables, build_target.bit, include_user=not master_only)
            finally:
                await engine.dispose()

        count = asyncio.run(run_migration())
    typer.echo(f"Migrated {count} master tables for {build_target.label}")


def _echo_seed_result(verb: str, result: SeedResult) -> None:
    for report in result.tables:
        detail = f"{report.rows} rows" if report.rows else report.reason
        typer.echo(f"  {report.status.value:<8} {report.schema_name}.{report.table} ({detail})")
    loaded = sum(1 for r in result.tables if r.status == TableStatus.OK)
    typer.echo(f"{verb} {result.total_rows} rows ({loaded} tables, {len(result.errors)} errors)")


@seeddata_app.command()
def seed(
    database_url: Optional[str] = typer.Option(None, "--database-url", help="SQLAlchemy async database URL"),
    tsv_dir: Optional[Path] = typer.Option(None, "--tsv-dir", "-d", help="Directory of <Table>.tsv files"),
    types_dir: Optional[Path] = typer.Option(None, "--types-dir", "-t", help="Generated package of master tables"),
    user_only: bool = typer.Option(False, "--user-only", help="Seed only the user schema"),
    master_only: bool = typer.Option(False, "--master-only", help="Seed only the master schema"),
) -> None:
    """Truncate the mirror's tables and reload them from TSV files."""
    settings = get_settings()
    with fatal_errors():
        schemas = resolve_schema_groups(user_only, master_only)
        url = resolve_database_url(database_url, settings)
        row_types = relational_row_types(types_dir)
        logger.info("seed_requested", database=mask_database_url(url), schemas=schemas)

        async def run_seed() -> SeedResult:
            engine = create_engine(url)
            try:
                return await create_seeder(engine, row_types, settings).seed(tsv_dir or settings.tsv_dir, schemas)
            finally:
                await engine.dispose()

        result = asyncio.run(run_seed())

    _echo_seed_result("Seeded", result)
    if result.errors:
        raise typer.Exit(1)


@seeddata_app.command()
def dump(
    database_url: Optional[str] = typer.Option(None, "--database-url", help="SQLAlchemy async database URL"),
    out_dir: Optional[Path] = typer.Option(None, "--out-dir", "-o", help="Directory for the dumped TSV files"),
    types_dir: Optional[Path] = typer.Option(None, "--types-dir", "-t", help="Generated package of master tables"),
    user_only: bool = typer.Option(False, "--user-only", help="Dump only the user schema"),
    master_only: bool = typer.Option(False, "--master-only", help="Dump only the master schema"),
) -> None:
    """Write every table of the mirror to TSV files."""
    settings = get_settings()
    with fatal_errors():
        schemas = resolve_schema_groups(user_only, master_only)
        url = resolve_database_url(database_url, settings)
        row_types = relational_row_types(types_dir)
        logger.info("dump_requested", database=mask_database_url(url), schemas=schemas)

        async def run_dump() -> SeedResult:
            engine = create_engine(url)
            try:
                return await create_dumper(engine, row_types, settings).dump(out_dir or settings.dump_dir, schemas)
            finally:
                await engine.dispose()

        result = asyncio.run(run_dump())

    _echo_seed_result("Dumped", result)


@seeddata_app.command("diff")
def diff_tsv(
    source: Path = typer.Argument(..., help="Source TSV directory"),
    target: Path = typer.Argument(..., help="Target TSV directory"),
) -> None:
    """Compare two directories of TSV files."""
    with fatal_errors():
        result = diff_tsv_directories(source, target)
    for line in render_directory_diff(result):
        typer.echo(line)
    if not result.ok:
        raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show version information."""
    from masterforge import __version__

    typer.echo(f"masterforge {__version__}")
