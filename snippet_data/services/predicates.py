from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from pydantic import BaseModel

from snippet_data.core.errors import UnknownFilterField
from snippet_data.db.dialect import SqlDialect
from snippet_data.services.type_normalizer import TypeNormalizer, ValueKind, utcnow

LIKE_ESCAPE = "\\"


class FilterOp(str, Enum):
    EQ = "eq"
    IN = "in"
    RANGE = "range"
    SEARCH = "search"
    FLAG = "flag"
    NAMED = "named"
    EXPR = "expr"


def escape_like(value: str) -> str:
    text = str(value)
    for char in (LIKE_ESCAPE, "%", "_"):
        text = text.replace(char, LIKE_ESCAPE + char)
    return text


class NamedCondition:
    """A reusable boolean condition with its own bound parameters.

    Subclasses render ``sql`` for a dialect and supply ``params`` (value, kind)
    pairs; parameter names should carry a prefix unique to the condition.
    """

    name = "condition"

    def sql(self, dialect: SqlDialect) -> str:
        raise NotImplementedError

    def params(self, now: datetime) -> dict[str, tuple[Any, ValueKind]]:
        return {}


@dataclass(frozen=True)
class FilterField:
    name: str
    op: FilterOp
    column: str | None = None
    kind: ValueKind = ValueKind.TEXT
    columns: tuple[str, ...] = ()
    when_true: str | None = None
    when_false: str | None = None
    condition: NamedCondition | None = None
    sql: str | None = None


def eq(name: str, column: str, kind: ValueKind) -> FilterField:
    return FilterField(name=name, op=FilterOp.EQ, column=column, kind=kind)


def one_of(name: str, column: str, kind: ValueKind) -> FilterField:
    return FilterField(name=name, op=FilterOp.IN, column=column, kind=kind)


def between(name: str, column: str, kind: ValueKind) -> FilterField:
    return FilterField(name=name, op=FilterOp.RANGE, column=column, kind=kind)


def search(name: str, *columns: str) -> FilterField:
    return FilterField(name=name, op=FilterOp.SEARCH, columns=tuple(columns))


def flag(name: str, when_true: str | None, when_false: str | None) -> FilterField:
    return FilterField(name=name, op=FilterOp.FLAG, when_true=when_true, when_false=when_false)


def named(name: str, condition: NamedCondition) -> FilterField:
    return FilterField(name=name, op=FilterOp.NAMED, condition=condition)


def matches(name: str, sql: str, kind: ValueKind) -> FilterField:
    """Fixed fragment (e.g. an ``EXISTS`` subquery) that references ``:name``."""
    if f":{name}" not in sql:
        raise ValueError(f"Fragment for \"{name}\" must reference :{name}")
    return FilterField(name=name, op=FilterOp.EXPR, kind=kind, sql=sql)


class FilterSchema:
    """Ordered, closed set of filter fields for one entity."""

    def __init__(self, fields: Sequence[FilterField]):
        names = [item.name for item in fields]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate filter fields: {', '.join(duplicates)}")
        self.fields = tuple(fields)
        self.names = tuple(names)

    def check(self, keys: Iterable[str]) -> None:
        for key in keys:
            if key not in self.names:
                raise UnknownFilterField(str(key), self.names)


@dataclass(frozen=True)
class Predicates:
    fragments: tuple[str, ...] = ()
    params: dict[str, Any] = field(default_factory=dict)
    expanding: frozenset[str] = frozenset()

    @property
    def where(self) -> str:
        if not self.fragments:
            return ""
        return "WHERE " + " AND ".join(self.fragments)

    @property
    def conjunction(self) -> str:
        """Fragments joined for use after an existing ``WHERE`` (``1 = 1`` when empty)."""
        return " AND ".join(self.fragments) if self.fragments else "1 = 1"

    def and_(
        self,
        fragment: str,
        params: Mapping[str, Any] | None = None,
        *,
        expanding: Iterable[str] = (),
    ) -> "Predicates":
        merged = dict(self.params)
        for key, value in (params or {}).items():
            if key in merged:
                raise ValueError(f'Parameter "{key}" is already bound')
            merged[key] = value
        return Predicates(
            fragments=(*self.fragments, fragment),
            params=merged,
            expanding=self.expanding | frozenset(expanding),
        )


class PredicateBuilder:
    """Turns a filter object into ordered ``WHERE`` fragments and bound parameters.

    Fields are visited in schema order, so the SQL produced for the same set of
    active fields is identical across calls. Values never reach the SQL text.
    """

    def __init__(
        self,
        schema: FilterSchema,
        normalizer: TypeNormalizer,
        dialect: SqlDialect,
        *,
        model: type[BaseModel] | None = None,
    ):
        self.schema = schema
        self.normalizer = normalizer
        self.dialect = dialect
        if model is not None:
            schema.check(model.model_fields)

    def build(self, spec: BaseModel | Mapping[str, Any] | None, *, now: datetime | None = None) -> Predicates:
        values = self._values(spec)
        fragments: list[str] = []
        params: dict[str, Any] = {}
        expanding: set[str] = set()
        for item in self.schema.fields:
            value = values.get(item.name)
            if value is None:
                continue
            if item.op is FilterOp.EQ:
                fragments.append(f"{item.column} = :{item.name}")
                params[item.name] = self.normalizer.to_db(value, item.kind)
            elif item.op is FilterOp.IN:
                members = list(value)
                if not members:
                    fragments.append("1 = 0")
                    continue
                fragments.append(f"{item.column} IN :{item.name}")
                params[item.name] = self.normalizer.to_db_many(members, item.kind)
                expanding.add(item.name)
            elif item.op is FilterOp.RANGE:
                lower, upper = _range_bounds(value)
                if lower is not None:
                    fragments.append(f"{item.column} >= :{item.name}_from")
                    params[f"{item.name}_from"] = self.normalizer.to_db(lower, item.kind)
                if upper is not None:
                    fragments.append(f"{item.column} <= :{item.name}_to")
                    params[f"{item.name}_to"] = self.normalizer.to_db(upper, item.kind)
            elif item.op is FilterOp.SEARCH:
                clauses = [self.dialect.like(column, item.name) for column in item.columns]
                fragments.append(clauses[0] if len(clauses) == 1 else "(" + " OR ".join(clauses) + ")")
                params[item.name] = f"%{escape_like(value)}%"
            elif item.op is FilterOp.FLAG:
                fragment = item.when_true if value else item.when_false
                if fragment:
                    fragments.append(fragment)
            elif item.op is FilterOp.NAMED:
                condition = item.condition
                sql = condition.sql(self.dialect)
                fragments.append(f"({sql})" if value else f"NOT ({sql})")
                for key, (raw, kind) in condition.params(now or utcnow()).items():
                    params[key] = self.normalizer.to_db(raw, kind)
            elif item.op is FilterOp.EXPR:
                fragments.append(item.sql)
                params[item.name] = self.normalizer.to_db(value, item.kind)
        return Predicates(fragments=tuple(fragments), params=params, expanding=frozenset(expanding))

    def bind(self, value: Any, kind: ValueKind) -> Any:
        return self.normalizer.to_db(value, kind)

    def _values(self, spec: BaseModel | Mapping[str, Any] | None) -> dict[str, Any]:
        if spec is None:
            return {}
        if isinstance(spec, BaseModel):
            keys = type(spec).model_fields
            self.schema.check(keys)
            return {key: getattr(spec, key) for key in keys}
        self.schema.check(spec.keys())
        return dict(spec)


def _range_bounds(value: Any) -> tuple[Any, Any]:
    if isinstance(value, Mapping):
        return value.get("gte"), value.get("lte")
    if isinstance(value, (tuple, list)):
        lower, upper = value
        return lower, upper
    return getattr(value, "gte", None), getattr(value, "lte", None)
