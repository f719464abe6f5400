"""Open configuration: the recognised arguments of :func:`quill_orm.open_db`."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from sqlalchemy.engine import Engine

from .exceptions import ArgumentError
from .hooks.registry import HookRegistry


class OpenConfig(BaseModel):
    """
    Validated description of how to reach a backend.

    Exactly one of ``source`` (a connection string) and ``engine`` (an
    existing SQLAlchemy ``Engine``) is required.  In-memory dialects may
    omit both.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    dialect: str = Field(min_length=1)
    source: str | None = None
    driver: str | None = None
    engine: Engine | None = None
    memory: bool = False
    singular_table: bool = False
    hooks: HookRegistry | None = None

    @model_validator(mode="after")
    def check_source(self) -> OpenConfig:
        if self.source is not None and self.engine is not None:
            raise ValueError("give either 'source' or 'engine', not both")
        if self.source is None and self.engine is None and not self.memory:
            raise ValueError(f"dialect '{self.dialect}' needs a 'source' or 'engine'")
        if self.source is not None and not self.source.strip() and not self.memory:
            raise ValueError("'source' must not be blank")
        if self.driver is not None and self.engine is not None:
            raise ValueError("'driver' only applies together with 'source'")
        return self

    @classmethod
    def build(cls, **values: Any) -> OpenConfig:
        """
        Validate *values* into a config.

        Raises:
            ArgumentError: If a field is malformed or the combination is invalid.
        """
        try:
            return cls(**values)
        except ValidationError as exc:
            first = exc.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise ArgumentError(
                f"Invalid open configuration: {first['msg']}",
                argument=location or None,
            ) from exc
