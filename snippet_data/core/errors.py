from __future__ import annotations

import asyncio
from typing import Any, Iterable, Mapping

SENSITIVE_PARAM_KEYS = frozenset(
    {
        "ip_address",
        "user_agent",
        "session_id",
        "content",
        "search",
        "sender_ip",
        "sender_user_agent",
        "referer",
    }
)

# cancellation is plain asyncio task cancellation and is never wrapped
CancellationRequested = asyncio.CancelledError


def _is_sensitive(key: str) -> bool:
    text = str(key or "").lower()
    return any(text == name or text.startswith(f"{name}_") or text.endswith(f"_{name}") for name in SENSITIVE_PARAM_KEYS)


def redact_params(params: Mapping[str, Any] | None) -> dict[str, Any]:
    if not params:
        return {}
    safe: dict[str, Any] = {}
    for key, value in params.items():
        if value is None:
            safe[str(key)] = None
        elif _is_sensitive(key):
            safe[str(key)] = "***"
        elif isinstance(value, (list, tuple, set, frozenset)):
            safe[str(key)] = f"<{len(value)} values>"
        else:
            safe[str(key)] = value
    return safe


class RepositoryError(Exception):
    pass


class MalformedValue(RepositoryError, ValueError):
    def __init__(self, field: str | None, kind: str, raw: Any, row_key: Any = None, reason: str | None = None):
        self.field = field
        self.kind = kind
        self.raw = raw
        self.row_key = row_key
        self.reason = reason
        where = f'field "{field}"' if field else "value"
        if row_key is not None:
            where = f"{where} of row {row_key}"
        detail = f": {reason}" if reason else ""
        super().__init__(f"Malformed {kind} in {where} ({raw!r}){detail}")

    def with_context(self, *, field: str | None = None, row_key: Any = None) -> "MalformedValue":
        return MalformedValue(
            field or self.field,
            self.kind,
            self.raw,
            row_key if row_key is not None else self.row_key,
            self.reason,
        )


class UnknownFilterField(RepositoryError, LookupError):
    def __init__(self, field: str, allowed: Iterable[str] = ()):
        self.field = field
        self.allowed = tuple(allowed)
        super().__init__(f'Unknown filter field "{field}"; allowed: {", ".join(self.allowed) or "-"}')


class UnknownSortToken(RepositoryError, LookupError):
    def __init__(self, token: Any, allowed: Iterable[str] = ()):
        self.token = token
        self.allowed = tuple(allowed)
        super().__init__(f'Unknown sort token "{token}"; allowed: {", ".join(self.allowed) or "-"}')


class StatementExecutionFailure(RepositoryError):
    def __init__(self, operation: str, params: Mapping[str, Any] | None = None, orig: BaseException | None = None):
        self.operation = operation
        self.params = redact_params(params)
        self.orig = orig
        # the driver error text only; SQLAlchemy's own message echoes raw parameters
        driver_error = getattr(orig, "orig", None)
        if driver_error is not None:
            reason = f"{type(driver_error).__name__}: {driver_error}"
        elif orig is not None:
            reason = type(orig).__name__
        else:
            reason = "statement failed"
        super().__init__(f"{operation} failed ({reason}); params={self.params}")


class EntityNotFound(RepositoryError, LookupError):
    def __init__(self, entity: str, key: Any):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} {key} not found")
