from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Sequence


@dataclass(frozen=True)
class SortTerm:
    expression: str
    descending: bool = False

    @classmethod
    def parse(cls, raw: str) -> "SortTerm":
        text = " ".join(str(raw).split())
        head, _, tail = text.rpartition(" ")
        if head and tail.upper() in {"ASC", "DESC"}:
            return cls(expression=head, descending=tail.upper() == "DESC")
        return cls(expression=text)

    def render(self) -> str:
        return f"{self.expression} {'DESC' if self.descending else 'ASC'}"


def _terms(raw: str | Sequence[str]) -> tuple[SortTerm, ...]:
    items = [raw] if isinstance(raw, str) else list(raw)
    return tuple(SortTerm.parse(item) for item in items)


class SortResolver:
    """Closed mapping from sort tokens to static ``ORDER BY`` terms.

    Tokens without a mapping fall back to ``default``. ``tiebreak`` columns
    (creation time, then id) are appended in the primary term's direction unless
    the chosen expression already orders by them.
    """

    def __init__(
        self,
        expressions: Mapping[Enum, str | Sequence[str]],
        *,
        default: str | Sequence[str],
        tiebreak: Sequence[str],
    ):
        self._expressions = {token: _terms(raw) for token, raw in expressions.items()}
        self._default = _terms(default)
        self._tiebreak = tuple(tiebreak)

    @property
    def tokens(self) -> tuple[Enum, ...]:
        return tuple(self._expressions)

    def resolve(self, token: Enum | None = None, direction: str | None = None) -> str:
        terms = list(self._expressions.get(token, self._default)) if token is not None else list(self._default)
        if direction:
            descending = str(direction).strip().lower() == "desc"
            terms[0] = SortTerm(expression=terms[0].expression, descending=descending)
        used = {term.expression for term in terms}
        for column in self._tiebreak:
            if column not in used:
                terms.append(SortTerm(expression=column, descending=terms[0].descending))
        return ", ".join(term.render() for term in terms)

    def resolve_spec(self, spec) -> str:
        if spec is None:
            return self.resolve()
        return self.resolve(spec.token, spec.direction)
