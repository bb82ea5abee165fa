"""Unit tests for table definition models."""

import pytest
from pydantic import ValidationError

from masterforge.models.definitions import (
    FieldDefinition,
    SecondaryKeyDefinition,
    SecondaryKeyInfo,
    TableDefinition,
)
from masterforge.models.enums import DeployTarget, LogicalType
from masterforge.naming import to_pascal_case


def _make_field(
    name: str,
    number: int = 1,
    logical_type: LogicalType = LogicalType.INT32,
    pk_order: int | None = None,
    secondary: list[SecondaryKeyInfo] | None = None,
    deploy_mask: int = 0,
) -> FieldDefinition:
    """Create a FieldDefinition for testing."""
    return FieldDefinition(
        schema_name=name,
        generated_name=to_pascal_case(name),
        logical_type=logical_type,
        field_number=number,
        is_primary_key=pk_order is not None,
        primary_key_order=pk_order or 0,
        secondary_keys=secondary or [],
        deploy_mask=deploy_mask,
    )


class TestTableDefinitionValidation:
    """Tests for key invariants enforced on construction."""

    def test_accepts_single_primary_key(self) -> None:
        table = TableDefinition(table_name="ItemMaster", fields=[_make_field("id", pk_order=0)])

        assert [f.schema_name for f in table.primary_key] == ["id"]
        assert not table.has_composite_primary_key

    def test_orders_composite_primary_key(self) -> None:
        table = TableDefinition(
            table_name="StageWave",
            fields=[_make_field("wave", 1, pk_order=1), _make_field("stage_id", 2, pk_order=0)],
        )

        assert [f.schema_name for f in table.primary_key] == ["stage_id", "wave"]
        assert table.has_composite_primary_key

    def test_rejects_primary_key_gap(self) -> None:
        with pytest.raises(ValidationError, match="not contiguous"):
            TableDefinition(
                table_name="Broken",
                fields=[_make_field("a", 1, pk_order=0), _make_field("b", 2, pk_order=2)],
            )

    def test_rejects_duplicate_primary_key_order(self) -> None:
        with pytest.raises(ValidationError):
            TableDefinition(
                table_name="Broken",
                fields=[_make_field("a", 1, pk_order=0), _make_field("b", 2, pk_order=0)],
            )

    def test_rejects_secondary_key_gap(self) -> None:
        with pytest.raises(ValidationError, match="secondary index 0"):
            TableDefinition(
                table_name="Broken",
                fields=[
                    _make_field("a", 1, secondary=[SecondaryKeyInfo(index=0)]),
                    _make_field("b", 2, secondary=[SecondaryKeyInfo(index=0, key_order=2)]),
                ],
            )

    def test_rejects_field_repeated_in_one_index(self) -> None:
        with pytest.raises(ValidationError, match="repeated"):
            TableDefinition(
                table_name="Broken",
                fields=[_make_field("a", 1, secondary=[SecondaryKeyInfo(index=0)])],
                secondary_keys=[SecondaryKeyDefinition(field_name="a", secondary_index=0, key_order=1)],
            )

    def test_rejects_unknown_message_level_field(self) -> None:
        with pytest.raises(ValidationError, match="unknown field"):
            TableDefinition(
                table_name="Broken",
                fields=[_make_field("a")],
                secondary_keys=[SecondaryKeyDefinition(field_name="missing", secondary_index=0)],
            )

    def test_rejects_duplicate_field_names(self) -> None:
        with pytest.raises(ValidationError, match="duplicate field"):
            TableDefinition(table_name="Broken", fields=[_make_field("a", 1), _make_field("a", 2)])

    def test_is_frozen(self) -> None:
        table = TableDefinition(table_name="ItemMaster", fields=[_make_field("id", pk_order=0)])

        with pytest.raises(ValidationError):
            table.table_name = "Other"


class TestSecondaryIndexes:
    """Tests for the merged secondary index view."""

    def test_merges_field_and_message_level_participants(self) -> None:
        table = TableDefinition(
            table_name="EnemyMaster",
            fields=[
                _make_field("id", 1, pk_order=0),
                _make_field("stage_id", 2, secondary=[SecondaryKeyInfo(index=0, non_unique=True)]),
                _make_field("wave", 3),
            ],
            secondary_keys=[SecondaryKeyDefinition(field_name="wave", secondary_index=0, key_order=1)],
        )

        indexes = table.secondary_indexes()

        assert list(indexes) == [0]
        assert indexes[0].fields == ["stage_id", "wave"]
        assert indexes[0].non_unique

    def test_index_is_unique_unless_declared_otherwise(self) -> None:
        table = TableDefinition(
            table_name="ItemMaster",
            fields=[_make_field("id", 1, pk_order=0), _make_field("code", 2, secondary=[SecondaryKeyInfo(index=3)])],
        )

        assert not table.secondary_indexes()[3].non_unique

    def test_primary_key_field_can_join_a_secondary_index(self) -> None:
        table = TableDefinition(
            table_name="ItemMaster",
            fields=[_make_field("id", 1, pk_order=0), _make_field("kind", 2)],
            secondary_keys=[
                SecondaryKeyDefinition(field_name="kind", secondary_index=0),
                SecondaryKeyDefinition(field_name="id", secondary_index=0, key_order=1),
            ],
        )

        assert table.secondary_indexes()[0].fields == ["kind", "id"]


class TestFieldsFor:
    """Tests for per-target field filtering."""

    def test_preserves_declaration_order(self) -> None:
        table = TableDefinition(
            table_name="WeaponMaster",
            fields=[
                _make_field("id", 1, pk_order=0),
                _make_field("drop_rate", 2, deploy_mask=DeployTarget.SERVER),
                _make_field("icon", 3, deploy_mask=DeployTarget.CLIENT),
                _make_field("name", 4),
            ],
        )

        assert [f.schema_name for f in table.fields_for(DeployTarget.CLIENT)] == ["id", "icon", "name"]
        assert [f.schema_name for f in table.fields_for(DeployTarget.SERVER)] == ["id", "drop_rate", "name"]

    def test_field_lookup(self) -> None:
        table = TableDefinition(table_name="ItemMaster", fields=[_make_field("id", pk_order=0)])

        assert table.field("id").generated_name == "Id"
        with pytest.raises(KeyError):
            table.field("missing")


class TestShape:
    """Tests for the declaration-site independent comparison view."""

    def test_ignores_field_numbers_and_declaration_site(self) -> None:
        inline = TableDefinition(
            table_name="EnemyMaster",
            fields=[
                _make_field("id", 1, pk_order=0),
                _make_field("stage_id", 5, secondary=[SecondaryKeyInfo(index=0)]),
            ],
        )
        message_level = TableDefinition(
            table_name="EnemyMaster",
            fields=[_make_field("id", 1, pk_order=0), _make_field("stage_id", 2)],
            secondary_keys=[SecondaryKeyDefinition(field_name="stage_id", secondary_index=0)],
        )

        assert inline.shape() == message_level.shape()

    def test_detects_type_change(self) -> None:
        a = TableDefinition(table_name="T", fields=[_make_field("x", logical_type=LogicalType.INT32)])
        b = TableDefinition(table_name="T", fields=[_make_field("x", logical_type=LogicalType.INT64)])

        assert a.shape() != b.shape()
