"""
Expenses and individual classes: plain CRUD with validation.
"""

from __future__ import annotations

import pytest

from Gym_Manager.domain.errors import RecordNotFound, ValidationFailed


def test_expense_crud(service):
    rent = service.add_expense({"name": "Rent", "amount": 30000, "category": "rent", "date": "2024-01-01"})
    power = service.add_expense({"name": "Power", "amount": 4000, "category": "utilities"})
    assert power.date == "2024-01-10"
    assert service.list_expenses() == [power, rent]

    updated = service.update_expense(rent.id, {"amount": 32000, "description": "January"})
    assert updated.amount == 32000
    assert updated.category == "rent"
    assert service.get_expense(rent.id) == updated

    service.delete_expense(rent.id)
    assert service.get_expense(rent.id) is None
    assert service.list_expenses() == [power]
    with pytest.raises(RecordNotFound):
        service.delete_expense(rent.id)


@pytest.mark.parametrize(
    "fields",
    [
        {"name": "Gift", "amount": 10, "category": "gifts"},
        {"name": "Zero", "amount": 0, "category": "other"},
        {"name": "", "amount": 10, "category": "other"},
        {"name": "Date", "amount": 10, "category": "other", "date": "31/01/2024"},
    ],
)
def test_expense_validation(service, fields):
    with pytest.raises(ValidationFailed):
        service.add_expense(fields)
    assert service.list_expenses() == []


def test_expenses_by_category(service):
    service.add_expense({"name": "Rent", "amount": 300, "category": "rent"})
    service.add_expense({"name": "Bulbs", "amount": 50, "category": "maintenance"})
    service.add_expense({"name": "Paint", "amount": 50, "category": "maintenance"})
    service.add_expense({"name": "Old", "amount": 999, "category": "rent", "date": "2023-12-31"})

    totals = service.expenses_by_category()
    assert [(t.category, t.total, t.count) for t in totals] == [("rent", 300, 1), ("maintenance", 100, 2)]
    assert totals[0].share == 75.0


def test_class_crud(service):
    session = service.add_class({"name": "Karim", "age": 25, "price": 800})
    assert session.date == "2024-01-10"

    moved = service.update_class(session.id, {"date": "2024-01-12", "price": 1000})
    assert (moved.date, moved.price, moved.age) == ("2024-01-12", 1000, 25)
    assert service.get_class(session.id) == moved

    service.delete_class(session.id)
    assert service.list_classes() == []
    assert service.get_class(session.id) is None


def test_class_validation(service):
    with pytest.raises(ValidationFailed):
        service.add_class({"name": "Kid", "age": 0, "price": 100})
    with pytest.raises(ValidationFailed):
        service.add_class({"name": "Cheap", "price": -1})
    with pytest.raises(RecordNotFound):
        service.update_class(42, {"price": 10})
