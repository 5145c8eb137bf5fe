from datetime import datetime

from aggregation import CANONICAL_CATEGORIES, aggregate
from models import Cost


def _cost(category: str, amount_cents: int, day: int, description: str = "x") -> Cost:
    return Cost(
        user_id=7,
        category=category,
        amount_cents=amount_cents,
        description=description,
        occurred_at=datetime(2025, 1, day, 12, 0),
    )


def test_empty_input_still_lists_every_canonical_category() -> None:
    snapshot = aggregate(7, 2025, 1, [])

    assert snapshot.category_names() == list(CANONICAL_CATEGORIES)
    assert all(snapshot.entries_for(name) == [] for name in CANONICAL_CATEGORIES)


def test_food_entries_land_in_first_group_in_storage_order() -> None:
    entries = [
        _cost("food", 1000, 3, "groceries"),
        _cost("food", 500, 20, "bakery"),
    ]

    report = aggregate(7, 2025, 1, entries).to_dict()

    assert report["userid"] == 7
    assert report["year"] == 2025
    assert report["month"] == 1
    assert report["costs"][0] == {
        "food": [
            {"sum": 10.0, "description": "groceries", "day": 3},
            {"sum": 5.0, "description": "bakery", "day": 20},
        ]
    }
    assert report["costs"][1:] == [
        {"health": []},
        {"housing": []},
        {"sports": []},
        {"education": []},
    ]


def test_entries_are_not_resorted_by_day() -> None:
    entries = [_cost("health", 100, 28), _cost("health", 200, 2)]

    snapshot = aggregate(7, 2025, 1, entries)

    assert [e["day"] for e in snapshot.entries_for("health")] == [28, 2]


def test_unknown_categories_follow_canonical_in_first_seen_order() -> None:
    entries = [
        _cost("travel", 100, 1),
        _cost("food", 200, 2),
        _cost("pets", 300, 3),
        _cost("travel", 400, 4),
    ]

    snapshot = aggregate(7, 2025, 1, entries)

    assert snapshot.category_names() == list(CANONICAL_CATEGORIES) + ["travel", "pets"]
    assert [e["sum"] for e in snapshot.entries_for("travel")] == [1.0, 4.0]


def test_aggregate_is_deterministic() -> None:
    entries = [
        _cost("sports", 1250, 5),
        _cost("misc", 99, 6),
        _cost("food", 1, 7),
    ]

    first = aggregate(7, 2025, 1, entries)
    second = aggregate(7, 2025, 1, entries)

    assert first == second
    assert first.to_dict() == second.to_dict()


def test_snapshot_round_trips_through_wire_format() -> None:
    snapshot = aggregate(7, 2025, 1, [_cost("education", 4550, 9, "course")])

    again = type(snapshot).from_dict(snapshot.to_dict())

    assert again == snapshot
    assert again.entries_for("education") == [
        {"sum": 45.5, "description": "course", "day": 9}
    ]
