"""Unit tests for the ProtoFileGenerator service."""

from pathlib import Path

import pytest

from masterforge.models.definitions import (
    FieldDefinition,
    SecondaryKeyDefinition,
    SecondaryKeyInfo,
    TableDefinition,
)
from masterforge.models.enums import DeployTarget, LogicalType
from masterforge.naming import to_pascal_case
from masterforge.services.proto_generator import (
    ProtoFileGenerator,
    deploy_target_literal,
    estimate_sub_directory,
)


def _make_field(name: str, number: int, logical_type: LogicalType = LogicalType.INT32, **kwargs) -> FieldDefinition:
    return FieldDefinition(
        schema_name=name,
        generated_name=to_pascal_case(name),
        logical_type=logical_type,
        field_number=number,
        **kwargs,
    )


@pytest.fixture
def generator() -> ProtoFileGenerator:
    return ProtoFileGenerator()


class TestDeployTargetLiteral:
    """Tests for deploy_target_literal."""

    @pytest.mark.parametrize(
        ("mask", "literal"),
        [
            (0, "DEPLOY_TARGET_ALL"),
            (1, "DEPLOY_TARGET_CLIENT"),
            (6, "DEPLOY_TARGET_SERVER_REALTIME"),
            (7, "DEPLOY_TARGET_CLIENT_SERVER_REALTIME"),
        ],
    )
    def test_literal(self, mask: int, literal: str) -> None:
        assert deploy_target_literal(mask) == literal


class TestSplitSecondaryKeys:
    """Tests for deciding inline vs message-level declarations."""

    def test_leading_participant_goes_inline(self) -> None:
        table = TableDefinition(
            table_name="EnemyMaster",
            fields=[
                _make_field("id", 1, is_primary_key=True),
                _make_field("stage_id", 2, secondary_keys=[SecondaryKeyInfo(index=0, non_unique=True)]),
                _make_field("wave", 3, secondary_keys=[SecondaryKeyInfo(index=0, key_order=1)]),
            ],
        )

        inline, message_level = ProtoFileGenerator.split_secondary_keys(table)

        assert inline == {"stage_id": SecondaryKeyInfo(index=0, non_unique=True)}
        assert message_level == [SecondaryKeyDefinition(field_name="wave", secondary_index=0, key_order=1)]

    def test_primary_key_field_goes_to_message_level(self) -> None:
        table = TableDefinition(
            table_name="ItemMaster",
            fields=[_make_field("id", 1, is_primary_key=True), _make_field("kind", 2)],
            secondary_keys=[SecondaryKeyDefinition(field_name="id", secondary_index=0)],
        )

        inline, message_level = ProtoFileGenerator.split_secondary_keys(table)

        assert inline == {}
        assert [entry.field_name for entry in message_level] == ["id"]

    def test_second_index_on_same_field_goes_to_message_level(self) -> None:
        table = TableDefinition(
            table_name="ItemMaster",
            fields=[
                _make_field("id", 1, is_primary_key=True),
                _make_field("code", 2, secondary_keys=[SecondaryKeyInfo(index=0), SecondaryKeyInfo(index=1)]),
            ],
        )

        inline, message_level = ProtoFileGenerator.split_secondary_keys(table)

        assert inline == {"code": SecondaryKeyInfo(index=0)}
        assert [(e.field_name, e.secondary_index) for e in message_level] == [("code", 1)]


class TestProtoFileGeneratorGenerate:
    """Tests for proto text rendering."""

    def test_renders_message_with_options(self, generator: ProtoFileGenerator) -> None:
        table = TableDefinition(
            table_name="WeaponMaster",
            deploy_mask=DeployTarget.CLIENT_SERVER,
            fields=[
                _make_field("id", 9, is_primary_key=True),
                _make_field("name", 4, LogicalType.STRING),
                _make_field("drop_rate", 2, LogicalType.FLOAT32, deploy_mask=DeployTarget.SERVER),
                _make_field("note", 3, LogicalType.STRING, is_optional=True),
            ],
        )

        text = generator.generate(table, "weapon")

        assert 'syntax = "proto3";' in text
        assert "package masterdata.weapon;" in text
        assert 'import "options/masterdata_options.proto";' in text
        assert "option (masterdata.options.table_target) = DEPLOY_TARGET_CLIENT_SERVER;" in text
        assert "int32 id = 1 [(masterdata.options.index_type) = INDEX_PRIMARY];" in text
        assert "  string name = 2;" in text
        assert "float drop_rate = 3 [(masterdata.options.field_target) = DEPLOY_TARGET_SERVER];" in text
        assert "  optional string note = 4;" in text
        assert "table_name" not in text

    def test_composite_key_emits_every_order(self, generator: ProtoFileGenerator) -> None:
        table = TableDefinition(
            table_name="StageWave",
            fields=[
                _make_field("stage_id", 1, is_primary_key=True),
                _make_field("wave", 2, is_primary_key=True, primary_key_order=1),
            ],
        )

        text = generator.generate(table, "stage")

        assert "(masterdata.options.primary_key_order) = 0" in text
        assert "(masterdata.options.primary_key_order) = 1" in text

    def test_table_name_option_when_message_name_differs(self, generator: ProtoFileGenerator) -> None:
        table = TableDefinition(table_name="WeaponMaster", fields=[_make_field("id", 1, is_primary_key=True)])

        text = generator.generate(table, "weapon", message_name="Weapon")

        assert "message Weapon {" in text
        assert 'option (masterdata.options.table_name) = "WeaponMaster";' in text

    def test_message_level_secondary_key(self, generator: ProtoFileGenerator) -> None:
        table = TableDefinition(
            table_name="EnemyMaster",
            fields=[
                _make_field("id", 1, is_primary_key=True),
                _make_field("stage_id", 2, secondary_keys=[SecondaryKeyInfo(index=0, non_unique=True)]),
                _make_field("wave", 3),
            ],
            secondary_keys=[SecondaryKeyDefinition(field_name="wave", secondary_index=0, key_order=1)],
        )

        text = generator.generate(table, "enemy")

        assert (
            'option (masterdata.options.secondary_keys) = {field_name: "wave", secondary_index: 0, '
            "key_order: 1, non_unique: false};"
        ) in text
        assert (
            "int32 stage_id = 2 [(masterdata.options.index_type) = INDEX_SECONDARY, "
            "(masterdata.options.secondary_index) = 0, (masterdata.options.non_unique) = true];"
        ) in text


class TestEstimateSubDirectory:
    """Tests for estimate_sub_directory."""

    def test_prefers_longest_matching_directory(self, tmp_path: Path) -> None:
        for name in ("enemy", "enemy_wave", "options"):
            (tmp_path / name).mkdir()

        assert estimate_sub_directory("EnemyWaveMaster", tmp_path) == "enemy_wave"
        assert estimate_sub_directory("EnemyMaster", tmp_path) == "enemy"

    def test_ignores_options_directory(self, tmp_path: Path) -> None:
        (tmp_path / "options").mkdir()

        assert estimate_sub_directory("OptionsMaster", tmp_path) == "options"
        assert estimate_sub_directory("ItemMaster", tmp_path) == "item"

    def test_falls_back_to_first_segment(self, tmp_path: Path) -> None:
        assert estimate_sub_directory("BgmAssetMaster", tmp_path / "missing") == "bgm"


class TestProtoFileGeneratorWrite:
    """Tests for writing scaffolded schema files."""

    def test_writes_into_estimated_directory(self, generator: ProtoFileGenerator, tmp_path: Path) -> None:
        table = TableDefinition(table_name="ItemMaster", fields=[_make_field("id", 1, is_primary_key=True)])

        path = generator.write(table, tmp_path)

        assert path == tmp_path / "item" / "item_master.proto"
        assert "message ItemMaster {" in path.read_text()

    def test_refuses_to_overwrite(self, generator: ProtoFileGenerator, tmp_path: Path) -> None:
        table = TableDefinition(table_name="ItemMaster", fields=[_make_field("id", 1, is_primary_key=True)])
        generator.write(table, tmp_path)

        with pytest.raises(FileExistsError):
            generator.write(table, tmp_path)
