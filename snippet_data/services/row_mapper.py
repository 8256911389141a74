from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Generic, Hashable, Iterable, Mapping, Sequence, TypeVar

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncConnection

from snippet_data.db.session import run_statement
from snippet_data.services.type_normalizer import TypeNormalizer, ValueKind

E = TypeVar("E", bound=BaseModel)
C = TypeVar("C", bound=BaseModel)


@dataclass(frozen=True)
class EntityShape(Generic[E]):
    """How one entity is laid out in a result row.

    ``kinds`` lists the entity's columns with their value kinds; ``prefix`` is
    the column alias prefix used when the entity arrives through a join.
    """

    model: type[E]
    kinds: Mapping[str, ValueKind]
    prefix: str = ""
    key: str = "id"

    def select(self, alias: str) -> str:
        if not self.prefix:
            return ", ".join(f"{alias}.{name}" for name in self.kinds)
        return ", ".join(f"{alias}.{name} AS {self.prefix}{name}" for name in self.kinds)

    def aliased(self, prefix: str) -> "EntityShape[E]":
        return EntityShape(model=self.model, kinds=self.kinds, prefix=prefix, key=self.key)


class RowMapper:
    def __init__(self, normalizer: TypeNormalizer):
        self.normalizer = normalizer

    def values(self, row: Mapping[str, Any], shape: EntityShape) -> dict[str, Any]:
        return self.normalizer.normalize_row(row, shape.kinds, prefix=shape.prefix, key=shape.key)

    def map(self, row: Mapping[str, Any], shape: EntityShape[E], **extra: Any) -> E:
        values = self.values(row, shape)
        values.update(extra)
        return shape.model(**values)

    def map_optional(self, row: Mapping[str, Any], shape: EntityShape[E]) -> E | None:
        """``None`` when the joined key column is NULL (outer join without a match)."""
        if row.get(f"{shape.prefix}{shape.key}") is None:
            return None
        return self.map(row, shape)

    def map_many(self, rows: Iterable[Mapping[str, Any]], shape: EntityShape[E]) -> list[E]:
        return [self.map(row, shape) for row in rows]

    def fold_joined(
        self,
        entities: Iterable[E],
        *,
        joined: Sequence[str],
        key: Callable[[E], Hashable] = lambda entity: entity.id,
    ) -> list[E]:
        """Collapse rows repeated by a join fan-out, keeping first-seen order.

        For each duplicate, non-empty joined attributes from the later row replace
        the earlier ones.
        """
        folded: dict[Hashable, E] = {}
        for entity in entities:
            entity_key = key(entity)
            current = folded.get(entity_key)
            if current is None:
                folded[entity_key] = entity
                continue
            updates = {name: getattr(entity, name) for name in joined if getattr(entity, name) is not None}
            if updates:
                folded[entity_key] = current.model_copy(update=updates)
        return list(folded.values())

    async def load_related(
        self,
        conn: AsyncConnection,
        keys: Iterable[Any],
        *,
        sql: str,
        shape: EntityShape[C],
        parent_field: str,
        operation: str,
        key_kind: ValueKind = ValueKind.IDENTIFIER,
        params: Mapping[str, Any] | None = None,
    ) -> dict[Any, list[C]]:
        """Fetch children for many parents in one ``IN (:keys)`` statement.

        ``sql`` must reference ``:keys``. Children are grouped by ``parent_field``;
        parents without children are simply absent from the result.
        """
        unique = list(dict.fromkeys(key for key in keys if key is not None))
        if not unique:
            return {}
        bound = dict(params or {})
        bound["keys"] = self.normalizer.to_db_many(unique, key_kind)
        result = await run_statement(conn, operation, sql, bound, expanding=("keys",))
        grouped: dict[Any, list[C]] = defaultdict(list)
        for row in result.mappings().all():
            child = self.map(row, shape)
            grouped[getattr(child, parent_field)].append(child)
        return dict(grouped)

    @staticmethod
    def attach(parents: Sequence[E], related: Mapping[Any, list[Any]], *, field: str, key: str = "id") -> list[E]:
        return [parent.model_copy(update={field: list(related.get(getattr(parent, key), []))}) for parent in parents]
