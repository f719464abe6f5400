"""Record shapes shared by the test modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Annotated, ClassVar

from pydantic import BaseModel

from quill_orm import Tag


class Status(str, Enum):
    ACTIVE = "active"
    BANNED = "banned"


class Address(BaseModel):
    street: str = ""
    city: str = ""


class User(BaseModel):
    id: int | None = None
    name: Annotated[str, Tag(size=100)]
    email: Annotated[str | None, Tag(unique=True)] = None
    age: int = 0
    status: Status = Status.ACTIVE
    address: Annotated[
        Address | None, Tag(embedded=True, embedded_prefix="address_")
    ] = None
    nickname: Annotated[str, Tag(ignore=True)] = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Note(BaseModel):
    """Soft-deletable record that logs its lifecycle."""

    id: int | None = None
    body: str = ""
    deleted_at: datetime | None = None

    events: ClassVar[list[str]] = []

    def before_create(self, scope) -> None:
        Note.events.append(f"before_create:{self.body}")

    def after_create(self, scope) -> None:
        Note.events.append(f"after_create:{self.id}")

    def after_find(self, scope) -> None:
        Note.events.append(f"after_find:{self.id}")


@dataclass
class Country:
    code: Annotated[str, Tag(primary_key=True, size=2)]
    name: str = ""


# -- relationships -----------------------------------------------------------


@dataclass
class Author:
    id: int | None = None
    name: str = ""
    profile: Profile | None = None
    books: list[Book] = field(default_factory=list)
    languages: Annotated[list[Language], Tag(many2many="author_languages")] = field(
        default_factory=list
    )


@dataclass
class Profile:
    id: int | None = None
    author_id: int = 0
    bio: str = ""


@dataclass
class Book:
    id: int | None = None
    title: str = ""
    author_id: int = 0
    author: Author | None = None


@dataclass
class Language:
    id: int | None = None
    name: str = ""
