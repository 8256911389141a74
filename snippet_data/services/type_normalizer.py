from __future__ import annotations

import re
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

from snippet_data.core.errors import MalformedValue
from snippet_data.db.dialect import Backend


class ValueKind(str, Enum):
    IDENTIFIER = "identifier"
    BOOLEAN = "boolean"
    INT32 = "int32"
    INT64 = "int64"
    FLOAT = "float"
    TIMESTAMP = "timestamp"
    DATE = "date"
    DURATION = "duration"
    TEXT = "text"


_INT_BOUNDS = {
    ValueKind.INT32: (-(2**31), 2**31 - 1),
    ValueKind.INT64: (-(2**63), 2**63 - 1),
}

# fixed width so that text comparison on SQLite orders like time does
SQLITE_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

_DURATION_RE = re.compile(r"^(?P<sign>-)?(?:(?P<days>\d+)\.)?(?P<hours>\d{1,2}):(?P<minutes>\d{2}):(?P<seconds>\d{2})(?:\.(?P<fraction>\d{1,7}))?$")
_PY_DURATION_RE = re.compile(
    r"^(?P<days>-?\d+) days?, (?P<hours>\d{1,2}):(?P<minutes>\d{2}):(?P<seconds>\d{2})(?:\.(?P<fraction>\d{1,6}))?$"
)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _fraction_to_microseconds(fraction: str | None) -> int:
    if not fraction:
        return 0
    return int(fraction[:6].ljust(6, "0"))


def format_duration(value: timedelta) -> str:
    """Render as ``[-][d.]hh:mm:ss[.ffffff]``, the text form stored by SQLite."""
    negative = value < timedelta(0)
    total = -value if negative else value
    days = total.days
    hours, remainder = divmod(total.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    text = f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    if days:
        text = f"{days}.{text}"
    if total.microseconds:
        text = f"{text}.{total.microseconds:06d}"
    return f"-{text}" if negative else text


def parse_duration(text: str) -> timedelta:
    raw = str(text or "").strip()
    match = _DURATION_RE.match(raw)
    if match:
        hours = int(match["hours"])
        minutes = int(match["minutes"])
        seconds = int(match["seconds"])
        if hours > 23 or minutes > 59 or seconds > 59:
            raise ValueError("component out of range")
        value = timedelta(
            days=int(match["days"] or 0),
            hours=hours,
            minutes=minutes,
            seconds=seconds,
            microseconds=_fraction_to_microseconds(match["fraction"]),
        )
        return -value if match["sign"] else value
    match = _PY_DURATION_RE.match(raw)
    if match:
        return timedelta(
            days=int(match["days"]),
            hours=int(match["hours"]),
            minutes=int(match["minutes"]),
            seconds=int(match["seconds"]),
            microseconds=_fraction_to_microseconds(match["fraction"]),
        )
    raise ValueError("expected [-][d.]hh:mm:ss[.fffffff]")


def _parse_timestamp(text: str) -> datetime:
    raw = str(text or "").strip()
    if not raw:
        raise ValueError("empty timestamp")
    if len(raw) == 10:
        return datetime.combine(date.fromisoformat(raw), datetime.min.time())
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


class TypeNormalizer:
    """Converts driver values to canonical Python values and back for one backend.

    Build one per engine with :meth:`for_backend` and share it; nothing else in the
    package branches on the backend when reading or binding values.
    """

    def __init__(self, backend: Backend):
        self.backend = backend
        self._native = backend is Backend.POSTGRESQL

    @classmethod
    def for_backend(cls, backend: Backend | str) -> "TypeNormalizer":
        if not isinstance(backend, Backend):
            backend = Backend.from_dialect_name(str(backend))
        return cls(backend)

    # read path

    def normalize(self, raw: Any, kind: ValueKind, *, field: str | None = None) -> Any:
        if raw is None:
            return None
        try:
            return self._READERS[kind](self, raw)
        except MalformedValue as exc:
            if field and exc.field is None:
                raise exc.with_context(field=field) from exc
            raise
        except (TypeError, ValueError, ArithmeticError) as exc:
            raise MalformedValue(field, kind.value, raw, reason=str(exc)) from exc

    def normalize_row(
        self,
        row: Mapping[str, Any],
        kinds: Mapping[str, ValueKind],
        *,
        prefix: str = "",
        key: str = "id",
    ) -> dict[str, Any]:
        values: dict[str, Any] = {}
        row_key = row.get(f"{prefix}{key}")
        for name, kind in kinds.items():
            column = f"{prefix}{name}"
            try:
                values[name] = self.normalize(row.get(column), kind, field=column)
            except MalformedValue as exc:
                raise exc.with_context(field=column, row_key=row_key) from exc
        return values

    def _read_identifier(self, raw: Any) -> uuid.UUID:
        if isinstance(raw, uuid.UUID):
            return raw
        if isinstance(raw, (bytes, bytearray, memoryview)):
            data = bytes(raw)
            if len(data) == 16:
                return uuid.UUID(bytes=data)
            raw = data.decode("ascii")
        if isinstance(raw, str):
            return uuid.UUID(raw.strip())
        raise TypeError(f"unsupported identifier type {type(raw).__name__}")

    def _read_boolean(self, raw: Any) -> bool:
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, int):
            return raw != 0
        if isinstance(raw, str):
            text = raw.strip().lower()
            if text in {"1", "true", "t"}:
                return True
            if text in {"0", "false", "f"}:
                return False
        raise ValueError("not a boolean")

    def _read_integer(self, raw: Any, kind: ValueKind) -> int:
        if isinstance(raw, bool):
            value = int(raw)
        elif isinstance(raw, int):
            value = raw
        elif isinstance(raw, Decimal):
            if raw != raw.to_integral_value():
                raise ValueError("not an integral value")
            value = int(raw)
        elif isinstance(raw, float):
            if not raw.is_integer():
                raise ValueError("not an integral value")
            value = int(raw)
        elif isinstance(raw, str):
            value = int(raw.strip())
        else:
            raise TypeError(f"unsupported integer type {type(raw).__name__}")
        low, high = _INT_BOUNDS[kind]
        if not low <= value <= high:
            raise MalformedValue(None, kind.value, raw, reason="out of range")
        return value

    def _read_int32(self, raw: Any) -> int:
        return self._read_integer(raw, ValueKind.INT32)

    def _read_int64(self, raw: Any) -> int:
        return self._read_integer(raw, ValueKind.INT64)

    def _read_float(self, raw: Any) -> float:
        if isinstance(raw, bool):
            raise TypeError("boolean is not a number")
        if isinstance(raw, (int, float, Decimal)):
            return float(raw)
        if isinstance(raw, str):
            return float(raw.strip())
        raise TypeError(f"unsupported number type {type(raw).__name__}")

    def _read_timestamp(self, raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return as_utc(raw)
        if isinstance(raw, date):
            return datetime.combine(raw, datetime.min.time(), tzinfo=timezone.utc)
        if isinstance(raw, str):
            return as_utc(_parse_timestamp(raw))
        raise TypeError(f"unsupported timestamp type {type(raw).__name__}")

    def _read_date(self, raw: Any) -> date:
        if isinstance(raw, datetime):
            return as_utc(raw).date()
        if isinstance(raw, date):
            return raw
        if isinstance(raw, str):
            return date.fromisoformat(raw.strip()[:10])
        raise TypeError(f"unsupported date type {type(raw).__name__}")

    def _read_duration(self, raw: Any) -> timedelta:
        if isinstance(raw, timedelta):
            return raw
        if isinstance(raw, str):
            return parse_duration(raw)
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return timedelta(seconds=raw)
        raise TypeError(f"unsupported duration type {type(raw).__name__}")

    def _read_text(self, raw: Any) -> str:
        if isinstance(raw, str):
            return raw
        if isinstance(raw, (bytes, bytearray)):
            return bytes(raw).decode("utf-8")
        return str(raw)

    _READERS = {
        ValueKind.IDENTIFIER: _read_identifier,
        ValueKind.BOOLEAN: _read_boolean,
        ValueKind.INT32: _read_int32,
        ValueKind.INT64: _read_int64,
        ValueKind.FLOAT: _read_float,
        ValueKind.TIMESTAMP: _read_timestamp,
        ValueKind.DATE: _read_date,
        ValueKind.DURATION: _read_duration,
        ValueKind.TEXT: _read_text,
    }

    # write path

    def to_db(self, value: Any, kind: ValueKind) -> Any:
        if value is None:
            return None
        canonical = self.normalize(value.value if isinstance(value, Enum) else value, kind)
        if self._native:
            return canonical
        if kind is ValueKind.IDENTIFIER:
            return str(canonical)
        if kind is ValueKind.BOOLEAN:
            return 1 if canonical else 0
        if kind is ValueKind.TIMESTAMP:
            return canonical.astimezone(timezone.utc).replace(tzinfo=None).strftime(SQLITE_TIMESTAMP_FORMAT)
        if kind is ValueKind.DATE:
            return canonical.isoformat()
        if kind is ValueKind.DURATION:
            return format_duration(canonical)
        return canonical

    def to_db_many(self, values, kind: ValueKind) -> list[Any]:
        return [self.to_db(value, kind) for value in values]
