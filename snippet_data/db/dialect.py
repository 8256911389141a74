from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Backend(str, Enum):
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"

    @classmethod
    def from_dialect_name(cls, name: str) -> "Backend":
        text = str(name or "").strip().lower()
        if text.startswith("postgres"):
            return cls.POSTGRESQL
        if text.startswith("sqlite"):
            return cls.SQLITE
        raise ValueError(f'Unsupported database backend "{name}"')


@dataclass(frozen=True)
class SqlDialect:
    """SQL snippets that differ between the two supported backends.

    Only expressions go through here; values are always bound parameters.
    """

    backend: Backend
    like_operator: str

    @property
    def is_sqlite(self) -> bool:
        return self.backend is Backend.SQLITE

    def like(self, column: str, param: str) -> str:
        return f"{column} {self.like_operator} :{param} ESCAPE '\\'"

    def hours_between(self, start: str, end: str) -> str:
        if self.is_sqlite:
            return f"((julianday({end}) - julianday({start})) * 24.0)"
        return f"(EXTRACT(EPOCH FROM ({end} - {start})) / 3600.0)"

    def seconds_between(self, start: str, end: str) -> str:
        if self.is_sqlite:
            return f"((julianday({end}) - julianday({start})) * 86400.0)"
        return f"EXTRACT(EPOCH FROM ({end} - {start}))"

    def date_of(self, column: str) -> str:
        if self.is_sqlite:
            return f"date({column})"
        return f"CAST(({column} AT TIME ZONE 'UTC') AS DATE)"


_DIALECTS = {
    Backend.POSTGRESQL: SqlDialect(backend=Backend.POSTGRESQL, like_operator="ILIKE"),
    Backend.SQLITE: SqlDialect(backend=Backend.SQLITE, like_operator="LIKE"),
}


def dialect_for(backend: Backend) -> SqlDialect:
    return _DIALECTS[backend]
