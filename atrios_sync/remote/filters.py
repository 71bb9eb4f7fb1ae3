"""Equality predicates shared by remote selects, realtime filters and local matching."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Clause:
    column: str
    op: str  # eq | neq
    value: Any

    def matches(self, entity: dict[str, Any]) -> bool:
        actual = entity.get(self.column)
        if self.op == "eq":
            return actual == self.value
        if self.op == "neq":
            return actual != self.value
        raise ValueError(f"Unsupported operator: {self.op!r}")

    def render(self) -> str:
        value = self.value
        if isinstance(value, bool):
            value = "true" if value else "false"
        elif value is None:
            value = "null"
        return f"{self.op}.{value}"


@dataclass(frozen=True)
class Predicate:
    """Conjunction of column clauses, e.g. ``eq("companyId", "A") & neq("read", True)``."""

    clauses: tuple[Clause, ...] = ()

    def __and__(self, other: "Predicate") -> "Predicate":
        return Predicate(self.clauses + other.clauses)

    def __bool__(self) -> bool:
        return bool(self.clauses)

    def matches(self, entity: dict[str, Any]) -> bool:
        return all(clause.matches(entity) for clause in self.clauses)

    def to_params(self) -> list[tuple[str, str]]:
        """PostgREST query parameters (``column=op.value``)."""
        return [(clause.column, clause.render()) for clause in self.clauses]

    def to_realtime_filter(self) -> str | None:
        """Realtime accepts a single ``column=op.value`` filter; use the first clause."""
        if not self.clauses:
            return None
        clause = self.clauses[0]
        return f"{clause.column}={clause.render()}"

    def describe(self) -> str:
        if not self.clauses:
            return "*"
        return " & ".join(f"{c.column}={c.render()}" for c in self.clauses)


def eq(column: str, value: Any) -> Predicate:
    return Predicate((Clause(column, "eq", value),))


def neq(column: str, value: Any) -> Predicate:
    return Predicate((Clause(column, "neq", value),))


ALL = Predicate()
