"""Schema-level table descriptions produced by the schema reader.

These models are the single source the code generator, binary builder and
relational migrator work from. They are immutable once built, and key
declarations are validated on construction so a defective schema never
reaches a generator.
"""

from collections import defaultdict
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from masterforge.models.enums import LogicalType, should_include


class SecondaryKeyInfo(BaseModel):
    """A secondary key declared inline on a field."""

    index: int = Field(ge=0)
    key_order: int = Field(default=0, ge=0)
    non_unique: bool = False

    model_config = ConfigDict(frozen=True)


class SecondaryKeyDefinition(BaseModel):
    """A secondary key participant declared at table level."""

    field_name: str
    secondary_index: int = Field(ge=0)
    key_order: int = Field(default=0, ge=0)
    non_unique: bool = False

    model_config = ConfigDict(frozen=True)


class SecondaryIndex(BaseModel):
    """Merged view of one secondary index across both declaration sites."""

    index: int
    fields: list[str]
    non_unique: bool = False

    model_config = ConfigDict(frozen=True)


class FieldDefinition(BaseModel):
    schema_name: str
    generated_name: str
    logical_type: LogicalType
    is_optional: bool = False
    deploy_mask: int = Field(default=0, ge=0)
    field_number: int = Field(ge=1)
    is_primary_key: bool = False
    primary_key_order: int = Field(default=0, ge=0)
    secondary_keys: list[SecondaryKeyInfo] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class TableDefinition(BaseModel):
    """One master table: its name, deploy mask, ordered fields and keys."""

    table_name: str
    schema_file: str = ""
    deploy_mask: int = Field(default=0, ge=0)
    fields: list[FieldDefinition]
    secondary_keys: list[SecondaryKeyDefinition] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _validate_keys(self) -> "TableDefinition":
        names = [f.schema_name for f in self.fields]
        if len(set(names)) != len(names):
            raise ValueError(f"{self.table_name}: duplicate field names")

        pk_orders = sorted(f.primary_key_order for f in self.fields if f.is_primary_key)
        if pk_orders != list(range(len(pk_orders))):
            raise ValueError(f"{self.table_name}: primary key orders {pk_orders} are not contiguous from 0")

        known = set(names)
        for entry in self.secondary_keys:
            if entry.field_name not in known:
                raise ValueError(f"{self.table_name}: secondary key names unknown field '{entry.field_name}'")

        for index, participants in self._secondary_participants().items():
            fields = [name for name, _, _ in participants]
            if len(set(fields)) != len(fields):
                raise ValueError(f"{self.table_name}: field repeated in secondary index {index}")
            orders = sorted(order for _, order, _ in participants)
            if orders != list(range(len(orders))):
                raise ValueError(
                    f"{self.table_name}: secondary index {index} key orders {orders} are not contiguous from 0"
                )
        return self

    def _secondary_participants(self) -> dict[int, list[tuple[str, int, bool]]]:
        participants: dict[int, list[tuple[str, int, bool]]] = defaultdict(list)
        for f in self.fields:
            for info in f.secondary_keys:
                participants[info.index].append((f.schema_name, info.key_order, info.non_unique))
        for entry in self.secondary_keys:
            participants[entry.secondary_index].append((entry.field_name, entry.key_order, entry.non_unique))
        return participants

    @property
    def primary_key(self) -> list[FieldDefinition]:
        """Primary key fields in key order."""
        return sorted((f for f in self.fields if f.is_primary_key), key=lambda f: f.primary_key_order)

    @property
    def has_composite_primary_key(self) -> bool:
        return len(self.primary_key) > 1

    def secondary_indexes(self) -> dict[int, SecondaryIndex]:
        """Union of field-level and table-level secondary keys, by index id."""
        merged: dict[int, SecondaryIndex] = {}
        for index, participants in sorted(self._secondary_participants().items()):
            ordered = sorted(participants, key=lambda p: p[1])
            merged[index] = SecondaryIndex(
                index=index,
                fields=[name for name, _, _ in ordered],
                non_unique=any(flag for _, _, flag in ordered),
            )
        return merged

    def field(self, schema_name: str) -> FieldDefinition:
        for f in self.fields:
            if f.schema_name == schema_name:
                return f
        raise KeyError(schema_name)

    def fields_for(self, target_bit: int) -> list[FieldDefinition]:
        """Fields deployed to the given target, in declaration order."""
        return [f for f in self.fields if should_include(f.deploy_mask, target_bit)]

    def shape(self) -> dict[str, Any]:
        """Logical content, ignoring field numbers and where keys were declared."""
        return {
            "table_name": self.table_name,
            "deploy_mask": self.deploy_mask,
            "fields": [
                (
                    f.schema_name,
                    f.generated_name,
                    f.logical_type,
                    f.is_optional,
                    f.deploy_mask,
                    f.is_primary_key,
                    f.primary_key_order,
                )
                for f in self.fields
            ],
            "secondary_indexes": {k: (v.fields, v.non_unique) for k, v in self.secondary_indexes().items()},
        }
