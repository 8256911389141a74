from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, Literal, Optional, TypeVar, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from snippet_data.core.config import settings
from snippet_data.core.errors import UnknownFilterField, UnknownSortToken

T = TypeVar("T")
U = TypeVar("U")

Direction = Literal["asc", "desc"]


class FilterModel(BaseModel):
    """Base for per-entity filters: every field is optional and ``None`` means absent."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _known_fields(cls, data):
        if isinstance(data, dict):
            for key in data:
                if key not in cls.model_fields:
                    raise UnknownFilterField(str(key), cls.model_fields)
        return data

    @field_validator("search", mode="before", check_fields=False)
    @classmethod
    def _blank_search_is_absent(cls, value):
        if value is None:
            return None
        return str(value).strip() or None


class Range(BaseModel, Generic[T]):
    model_config = ConfigDict(frozen=True)

    gte: Optional[T] = None
    lte: Optional[T] = None

    @property
    def is_empty(self) -> bool:
        return self.gte is None and self.lte is None


class SortSpec(BaseModel):
    """A whitelisted sort token plus an optional direction override.

    Subclasses narrow ``token`` to their entity's enum. A string that is not a
    member raises :class:`UnknownSortToken` when the spec is built.
    """

    model_config = ConfigDict(frozen=True)

    token: Optional[Any] = None
    direction: Optional[Direction] = None

    @classmethod
    def _token_enum(cls) -> type[Enum] | None:
        annotation = cls.model_fields["token"].annotation
        for candidate in (annotation, *get_args(annotation)):
            if isinstance(candidate, type) and issubclass(candidate, Enum) and candidate is not Enum:
                return candidate
        return None

    @field_validator("token", mode="before")
    @classmethod
    def _known_token(cls, value):
        if value is None or isinstance(value, Enum):
            return value
        enum_cls = cls._token_enum()
        if enum_cls is None:
            raise UnknownSortToken(value)
        text = str(value).strip()
        for member in enum_cls:
            if text == str(member.value) or text.lower() == member.name.lower():
                return member
        raise UnknownSortToken(value, [str(member.value) for member in enum_cls])

    @field_validator("direction", mode="before")
    @classmethod
    def _lower_direction(cls, value):
        if value is None:
            return None
        return str(value).strip().lower() or None


class PageRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int = Field(default=1, ge=1)
    page_size: int = Field(default_factory=lambda: settings.DEFAULT_PAGE_SIZE, ge=1)

    @field_validator("page_size")
    @classmethod
    def _cap_page_size(cls, value: int) -> int:
        return min(value, settings.MAX_PAGE_SIZE)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


@dataclass(frozen=True)
class PageResult(Generic[T]):
    items: list[T]
    total_count: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.total_count <= 0:
            return 0
        return math.ceil(self.total_count / self.page_size)

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    def map(self, fn: Callable[[T], U]) -> "PageResult[U]":
        return PageResult(
            items=[fn(item) for item in self.items],
            total_count=self.total_count,
            page=self.page,
            page_size=self.page_size,
        )

    def with_items(self, items: list[U]) -> "PageResult[U]":
        return PageResult(items=list(items), total_count=self.total_count, page=self.page, page_size=self.page_size)

