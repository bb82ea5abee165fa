"""Unit tests for the DataSeeder service."""

from pathlib import Path

import pytest
from sqlalchemy import text

from masterforge.models.definitions import FieldDefinition, TableDefinition
from masterforge.models.enums import DeployTarget, LogicalType
from masterforge.models.tables import MASTER_SCHEMA, USER_SCHEMA, USER_TABLE_TYPES
from masterforge.naming import to_pascal_case
from masterforge.services.builder import TableStatus
from masterforge.services.introspector import ColumnInfo, SchemaIntrospector, create_engine_from_url
from masterforge.services.migrator import SchemaMigrator
from masterforge.services.seeder import DataSeeder, coerce_db_cell

ITEM_TSV = "Id\tName\tWeight\tPrice\tIcon\n1\tSword\t0.1\t50\tAAE=\n2\tAxe\t2.5\t30\t\n"

USER_INFO_TSV = (
    "id\tdisplay_name\tlevel\tcreated_at\tlast_login_at\tauth_type\tis_email_verified\tfailed_login_attempts\n"
    "u-1\tAlice\t3\t2024-01-01T00:00:00\t2024-01-02T08:30:00\tPassword\t1\t0\n"
)

USER_SCORE_TSV = (
    "id\tuser_id\tgame_mode\tstage_id\tscore\tclear_time\twave_reached\tenemies_defeated\trecorded_at\n"
    "1\tu-1\tStory\t3\t1200\t95.5\t5\t40\t2024-01-03T12:00:00\n"
)


def _make_field(name: str, number: int, logical_type: LogicalType = LogicalType.INT32, **kwargs) -> FieldDefinition:
    return FieldDefinition(
        schema_name=name,
        generated_name=to_pascal_case(name),
        logical_type=logical_type,
        field_number=number,
        **kwargs,
    )


ITEM_MASTER = TableDefinition(
    table_name="ItemMaster",
    fields=[
        _make_field("id", 1, is_primary_key=True),
        _make_field("name", 2, LogicalType.STRING),
        _make_field("weight", 3, LogicalType.FLOAT32),
        _make_field("price", 4, deploy_mask=DeployTarget.SERVER),
        _make_field("icon", 5, LogicalType.BYTES, is_optional=True),
    ],
)


@pytest.fixture
async def engine():
    """Migrated in-memory SQLite engine."""
    engine = create_engine_from_url("sqlite+aiosqlite:///:memory:")
    await SchemaMigrator(engine).migrate([ITEM_MASTER], DeployTarget.SERVER)
    yield engine
    await engine.dispose()


@pytest.fixture
def tsv_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "seed"
    directory.mkdir()
    (directory / "ItemMaster.tsv").write_text(ITEM_TSV)
    (directory / "UserInfo.tsv").write_text(USER_INFO_TSV)
    (directory / "UserScore.tsv").write_text(USER_SCORE_TSV)
    return directory


@pytest.fixture
def seeder(engine) -> DataSeeder:
    return DataSeeder(engine, SchemaIntrospector(), row_types=USER_TABLE_TYPES)


async def _count(engine, qualified_name: str) -> int:
    async with engine.connect() as conn:
        result = await conn.execute(text(f"SELECT COUNT(*) FROM {qualified_name}"))
        return result.scalar_one()


class TestCoerceDbCell:
    """Tests for converting TSV cells for live columns."""

    def test_uses_reflected_python_type(self) -> None:
        info = ColumnInfo(name="Level", ordinal_position=1, type_name="INTEGER", python_type=int, is_nullable=False)

        assert coerce_db_cell("7", info) == 7
        assert coerce_db_cell("", info) == 0

    def test_unknown_type_passes_text_through(self) -> None:
        info = ColumnInfo(name="Payload", ordinal_position=1, type_name="JSONB")

        assert coerce_db_cell("{}", info) == "{}"
        assert coerce_db_cell("", info) is None


class TestDataSeeder:
    """Tests for truncate-and-reload seeding."""

    async def test_seeds_master_then_user_tables(self, seeder: DataSeeder, engine, tsv_dir: Path) -> None:
        result = await seeder.seed(tsv_dir, [MASTER_SCHEMA, USER_SCHEMA])

        assert [(r.schema_name, r.table, r.status) for r in result.tables] == [
            (MASTER_SCHEMA, "ItemMaster", TableStatus.OK),
            (USER_SCHEMA, "UserInfo", TableStatus.OK),
            (USER_SCHEMA, "UserScore", TableStatus.OK),
        ]
        assert result.total_rows == 4
        assert result.errors == []
        assert await _count(engine, '"Master"."ItemMaster"') == 2

    async def test_reseeding_replaces_rows(self, seeder: DataSeeder, engine, tsv_dir: Path) -> None:
        await seeder.seed(tsv_dir, [MASTER_SCHEMA, USER_SCHEMA])
        await seeder.seed(tsv_dir, [MASTER_SCHEMA, USER_SCHEMA])

        assert await _count(engine, '"Master"."ItemMaster"') == 2
        assert await _count(engine, '"User"."UserScore"') == 1

    async def test_user_only_leaves_master_alone(self, seeder: DataSeeder, engine, tsv_dir: Path) -> None:
        result = await seeder.seed(tsv_dir, [USER_SCHEMA])

        assert [r.table for r in result.tables] == ["UserInfo", "UserScore"]
        assert await _count(engine, '"Master"."ItemMaster"') == 0

    async def test_missing_tsv_is_skipped(self, seeder: DataSeeder, tsv_dir: Path) -> None:
        (tsv_dir / "UserScore.tsv").unlink()

        result = await seeder.seed(tsv_dir, [USER_SCHEMA])

        report = result.tables[-1]
        assert report.status == TableStatus.SKIPPED
        assert report.reason == "TSV file not found"

    async def test_parse_error_fails_table_without_partial_insert(
        self, seeder: DataSeeder, engine, tsv_dir: Path
    ) -> None:
        (tsv_dir / "ItemMaster.tsv").write_text("Id\tName\tWeight\tPrice\n1\tSword\t0.1\t50\n2\tAxe\theavy\t30\n")

        result = await seeder.seed(tsv_dir, [MASTER_SCHEMA, USER_SCHEMA])

        assert result.tables[0].status == TableStatus.FAILED
        assert "Weight" in result.errors[0]
        assert [r.status for r in result.tables[1:]] == [TableStatus.OK, TableStatus.OK]
        assert await _count(engine, '"Master"."ItemMaster"') == 0

    async def test_undecodable_file_fails_only_that_table(self, seeder: DataSeeder, engine, tsv_dir: Path) -> None:
        (tsv_dir / "ItemMaster.tsv").write_bytes("Id\tName\n1\t剣\n".encode("shift_jis"))

        result = await seeder.seed(tsv_dir, [MASTER_SCHEMA, USER_SCHEMA])

        assert result.tables[0].status == TableStatus.FAILED
        assert "not valid UTF-8" in result.errors[0]
        assert [r.status for r in result.tables[1:]] == [TableStatus.OK, TableStatus.OK]

    async def test_unknown_and_unregistered_columns_are_ignored(
        self, seeder: DataSeeder, engine, tsv_dir: Path
    ) -> None:
        (tsv_dir / "UserInfo.tsv").write_text(
            USER_INFO_TSV.replace("\tlevel\t", "\tnickname\tlevel\t").replace("\tAlice\t", "\tAlice\tAli\t")
        )

        result = await seeder.seed(tsv_dir, [USER_SCHEMA])

        assert result.tables[0].status == TableStatus.OK
        assert result.tables[0].rows == 1

    async def test_missing_directory_raises(self, seeder: DataSeeder, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            await seeder.seed(tmp_path / "missing", [USER_SCHEMA])
