"""Integration tests that compile real schemas with the protoc on PATH.

Skipped when protoc is not installed.
"""

import shutil
from pathlib import Path

import pytest

from masterforge.config import Settings
from masterforge.models.enums import DeployTarget, LogicalType
from masterforge.services.factory import create_schema_reader
from masterforge.services.proto_generator import ProtoFileGenerator
from masterforge.services.schema_reader import SchemaReader

pytestmark = pytest.mark.skipif(shutil.which("protoc") is None, reason="protoc is not installed")

WEAPON_SCHEMA = """\
syntax = "proto3";

package masterdata.weapon;

import "options/masterdata_options.proto";

message WeaponMaster {
  option (masterdata.options.table_target) = DEPLOY_TARGET_CLIENT_SERVER;
  option (masterdata.options.secondary_keys) = {field_name: "rarity", secondary_index: 0, key_order: 1};

  int32 id = 1 [(masterdata.options.index_type) = INDEX_PRIMARY];
  string name = 2;
  int32 group_id = 3 [(masterdata.options.index_type) = INDEX_SECONDARY, (masterdata.options.secondary_index) = 0, (masterdata.options.non_unique) = true];
  int32 rarity = 4;
  float drop_rate = 5 [(masterdata.options.field_target) = DEPLOY_TARGET_SERVER];
  optional string note = 6;
}

message WeaponStats {
  int32 attack = 1;
}
"""

STAGE_SCHEMA = """\
syntax = "proto3";

package masterdata.stage;

import "options/masterdata_options.proto";

message StageWave {
  option (masterdata.options.table_target) = DEPLOY_TARGET_ALL;

  int32 stage_id = 1 [(masterdata.options.index_type) = INDEX_PRIMARY, (masterdata.options.primary_key_order) = 0];
  int32 wave = 2 [(masterdata.options.index_type) = INDEX_PRIMARY, (masterdata.options.primary_key_order) = 1];
  int64 reward = 3;
  bytes payload = 4;
}
"""


@pytest.fixture
def reader(tmp_path: Path) -> SchemaReader:
    return create_schema_reader(Settings(_env_file=None, tools_dir=tmp_path / "no-tools"))


@pytest.fixture
def proto_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "proto"
    (directory / "weapon").mkdir(parents=True)
    (directory / "stage").mkdir()
    (directory / "weapon" / "weapon_master.proto").write_text(WEAPON_SCHEMA)
    (directory / "stage" / "stage_wave.proto").write_text(STAGE_SCHEMA)
    return directory


class TestSchemaCompilation:
    """Tests for reading compiled schemas."""

    def test_reads_tables_with_options(self, reader: SchemaReader, proto_dir: Path) -> None:
        tables = {table.table_name: table for table in reader.read_all(proto_dir)}

        assert set(tables) == {"WeaponMaster", "StageWave"}

        weapon = tables["WeaponMaster"]
        assert weapon.deploy_mask == DeployTarget.CLIENT_SERVER
        assert [f.schema_name for f in weapon.primary_key] == ["id"]
        assert weapon.field("drop_rate").deploy_mask == DeployTarget.SERVER
        assert weapon.field("drop_rate").logical_type == LogicalType.FLOAT32
        assert weapon.field("note").is_optional
        [index] = weapon.secondary_indexes().values()
        assert index.fields == ["group_id", "rarity"]
        assert index.non_unique

        stage = tables["StageWave"]
        assert stage.has_composite_primary_key
        assert [f.schema_name for f in stage.primary_key] == ["stage_id", "wave"]
        assert stage.field("payload").logical_type == LogicalType.BYTES

    def test_scaffolded_schema_reads_back_identically(
        self, reader: SchemaReader, proto_dir: Path, tmp_path: Path
    ) -> None:
        originals = reader.read_all(proto_dir)
        generator = ProtoFileGenerator()
        scaffold_dir = tmp_path / "scaffold"
        for table in originals:
            generator.write(table, scaffold_dir)

        round_tripped = {table.table_name: table for table in reader.read_all(scaffold_dir)}

        for table in originals:
            assert round_tripped[table.table_name].shape() == table.shape()
