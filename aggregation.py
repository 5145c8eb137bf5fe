"""Grouping of expense entries into the categorized monthly report shape."""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Protocol, Sequence

from amounts import cents_to_units

CANONICAL_CATEGORIES: tuple[str, ...] = (
    "food",
    "health",
    "housing",
    "sports",
    "education",
)


class ExpenseLike(Protocol):
    category: str
    amount_cents: int
    description: str
    occurred_at: datetime


@dataclass(frozen=True)
class ReportSnapshot:
    user_id: int
    year: int
    month: int
    costs: list[dict[str, list[dict[str, object]]]]

    def to_dict(self) -> dict[str, object]:
        return {
            "userid": self.user_id,
            "year": self.year,
            "month": self.month,
            "costs": self.costs,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "ReportSnapshot":
        return cls(
            user_id=int(data["userid"]),
            year=int(data["year"]),
            month=int(data["month"]),
            costs=list(data["costs"]),
        )

    def category_names(self) -> list[str]:
        return [name for group in self.costs for name in group]

    def entries_for(self, category: str) -> list[dict[str, object]]:
        for group in self.costs:
            if category in group:
                return group[category]
        raise KeyError(category)


def aggregate(
    user_id: int,
    year: int,
    month: int,
    entries: Iterable[ExpenseLike],
    *,
    canonical: Sequence[str] = CANONICAL_CATEGORIES,
) -> ReportSnapshot:
    """Group ``entries`` (already restricted to the month) by category.

    Canonical categories come first in their fixed order and are always
    present, empty or not. Any other category follows in the order its first
    entry was seen. Entries keep their input order inside a group.
    """
    grouped: dict[str, list[dict[str, object]]] = {name: [] for name in canonical}
    order: list[str] = list(canonical)

    for entry in entries:
        if entry.category not in grouped:
            grouped[entry.category] = []
            order.append(entry.category)
        grouped[entry.category].append(
            {
                "sum": cents_to_units(entry.amount_cents),
                "description": entry.description,
                "day": entry.occurred_at.day,
            }
        )

    return ReportSnapshot(
        user_id=user_id,
        year=year,
        month=month,
        costs=[{name: grouped[name]} for name in order],
    )
