"""Tests for shape description and table metadata derivation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

import pytest
from pydantic import BaseModel
from shapes import Author, Book, Country, Note, Status, User

from quill_orm import ShapeError, Tag
from quill_orm.model import (
    FieldDescriptor,
    RelationKind,
    ShapeDescriptor,
    derive_table_metadata,
    describe,
    unwrap_annotation,
)


class TestDescribe:
    def test_pydantic_fields_keep_declaration_order(self) -> None:
        desc = describe(User)

        assert desc.name == "User"
        assert [f.name for f in desc.fields][:4] == ["id", "name", "email", "age"]
        assert desc.record_type is User

    def test_tags_are_read_from_annotated(self) -> None:
        fields = {f.name: f for f in describe(User).fields}

        assert fields["name"].tag.size == 100
        assert fields["email"].tag.unique is True
        assert fields["nickname"].tag.ignore is True

    def test_dataclass_defaults(self) -> None:
        fields = {f.name: f for f in describe(Country).fields}

        assert fields["code"].tag.primary_key is True
        assert not fields["code"].has_default
        assert fields["name"].default == ""

    def test_instance_is_described_by_its_type(self) -> None:
        assert describe(User(name="ada")).name == "User"

    def test_descriptor_passes_through(self) -> None:
        desc = ShapeDescriptor(name="Thing", fields=(FieldDescriptor("id", int),))

        assert describe(desc) is desc

    def test_plain_class_is_rejected(self) -> None:
        class NotARecord:
            id: int

        with pytest.raises(ShapeError, match="not a structured record"):
            describe(NotARecord)


class TestUnwrapAnnotation:
    def test_optional(self) -> None:
        assert unwrap_annotation(int | None) == (int, True, False)

    def test_list_of_records(self) -> None:
        assert unwrap_annotation(list[Book]) == (Book, False, True)

    def test_annotated_is_stripped(self) -> None:
        assert unwrap_annotation(Annotated[str, Tag(size=3)]) == (str, False, False)


class TestDeriveTableMetadata:
    def test_derivation_is_idempotent(self) -> None:
        """Deriving twice yields structurally identical metadata."""
        first = derive_table_metadata(User)
        second = derive_table_metadata(User)

        assert first == second
        assert first is not second

    def test_table_and_column_names(self) -> None:
        table = derive_table_metadata(User)

        assert table.name == "users"
        assert table.columns == (
            "id",
            "name",
            "email",
            "age",
            "status",
            "address_street",
            "address_city",
            "created_at",
            "updated_at",
        )

    def test_singular_table_names(self) -> None:
        assert derive_table_metadata(User, singular=True).name == "user"

    def test_id_is_auto_increment_primary_key(self) -> None:
        table = derive_table_metadata(User)
        pk = table.field("id")

        assert table.primary_key_columns == ("id",)
        assert pk is not None
        assert pk.primary_key and pk.auto_increment
        assert pk.nullable is False

    def test_tagged_string_primary_key(self) -> None:
        table = derive_table_metadata(Country)
        pk = table.field("code")

        assert table.primary_key_columns == ("code",)
        assert pk is not None and not pk.auto_increment

    def test_nullability(self) -> None:
        table = derive_table_metadata(User)

        assert table.field("email").nullable is True
        assert table.field("name").nullable is False
        assert table.field("address_street").nullable is True

    def test_embedded_fields_keep_their_path(self) -> None:
        table = derive_table_metadata(User)
        street = table.field("address_street")

        assert street is not None
        assert street.path == ("address", "street")
        assert street.embedded is True
        assert table.field("address.street") is street
        assert table.field("street") is None

    def test_enum_field_keeps_python_type(self) -> None:
        assert derive_table_metadata(User).field("status").python_type is Status

    def test_soft_delete_detection(self) -> None:
        assert derive_table_metadata(Note).soft_delete is True
        assert derive_table_metadata(User).soft_delete is False

    def test_explicit_table_name(self) -> None:
        class Legacy(BaseModel):
            __tablename__ = "tbl_legacy"
            id: int | None = None

        assert derive_table_metadata(Legacy).name == "tbl_legacy"

    def test_column_override(self) -> None:
        class Item(BaseModel):
            id: int | None = None
            sku: Annotated[str, Tag(column="item_sku")] = ""

        table = derive_table_metadata(Item)

        assert table.has_column("item_sku")
        assert table.field("sku").column == "item_sku"

    def test_ambiguous_primary_key(self) -> None:
        @dataclass
        class Pair:
            left: Annotated[int, Tag(primary_key=True)] = 0
            right: Annotated[int, Tag(primary_key=True)] = 0

        with pytest.raises(ShapeError, match="ambiguous primary key"):
            derive_table_metadata(Pair)

    def test_composite_primary_key_tie_break(self) -> None:
        @dataclass
        class Pair:
            __primary_key__ = ("right", "left")
            left: Annotated[int, Tag(primary_key=True)] = 0
            right: Annotated[int, Tag(primary_key=True)] = 0

        table = derive_table_metadata(Pair)

        assert table.primary_key_columns == ("right", "left")
        assert not any(f.auto_increment for f in table.fields)

    def test_shape_without_columns(self) -> None:
        @dataclass
        class Empty:
            pass

        with pytest.raises(ShapeError, match="no mapped columns"):
            derive_table_metadata(Empty)

    def test_duplicate_columns(self) -> None:
        class Clash(BaseModel):
            id: int | None = None
            a: Annotated[str, Tag(column="x")] = ""
            b: Annotated[str, Tag(column="x")] = ""

        with pytest.raises(ShapeError, match="duplicate column 'x'"):
            derive_table_metadata(Clash)


class TestRelationships:
    def test_relationships_are_derived_without_recursion(self) -> None:
        table = derive_table_metadata(Author)

        kinds = {r.field_name: r.kind for r in table.relationships}
        assert kinds == {
            "profile": RelationKind.HAS_ONE,
            "books": RelationKind.HAS_MANY,
            "languages": RelationKind.MANY_TO_MANY,
        }
        assert table.columns == ("id", "name")

    def test_belongs_to(self) -> None:
        rel = derive_table_metadata(Book).relationship("author")

        assert rel is not None
        assert rel.kind is RelationKind.BELONGS_TO
        assert rel.target_table == "authors"
        assert rel.foreign_keys == ("author_id",)
        assert rel.references == ("id",)

    def test_has_many_foreign_key(self) -> None:
        rel = derive_table_metadata(Author).relationship("books")

        assert rel is not None
        assert rel.foreign_keys == ("author_id",)
        assert rel.references == ("id",)

    def test_many_to_many_join_table(self) -> None:
        rel = derive_table_metadata(Author).relationship("languages")

        assert rel is not None and rel.join_table is not None
        assert rel.join_table.name == "author_languages"
        assert [c.column for c in rel.join_table.owner_columns] == ["author_id"]
        assert [c.column for c in rel.join_table.target_columns] == ["language_id"]
