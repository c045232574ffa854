"""
Shared fixtures: an in-memory storage backend, an adapter without the
autosave thread (saves happen synchronously), and a clock the tests move.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from Gym_Manager.data.persistence import PersistenceAdapter
from Gym_Manager.data.storage import MemoryImageStorage
from Gym_Manager.services.gym_data_service import GymDataService


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, days: int = 0, **kwargs) -> None:
        self.current += timedelta(days=days, **kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 10, 9, 30))


@pytest.fixture
def storage() -> MemoryImageStorage:
    return MemoryImageStorage()


@pytest.fixture
def adapter(storage):
    adapter = PersistenceAdapter(storage, autosave_interval=None)
    adapter.initialize()
    yield adapter
    adapter.shutdown()


@pytest.fixture
def service(adapter, clock) -> GymDataService:
    return GymDataService(adapter, clock=clock)


@pytest.fixture
def make_subscriber(service):
    def _make(name: str = "Ali", **fields):
        values = {
            "name": name,
            "subscription_date": "2024-01-01",
            "subscription_duration": 30,
            "price": 2000,
        }
        values.update(fields)
        return service.add_subscriber(values)
    return _make


@pytest.fixture
def make_product(service):
    def _make(name: str = "Protein bar", quantity: int = 10, purchase_price: float = 100, selling_price: float = 150):
        return service.add_product({
            "name": name,
            "quantity": quantity,
            "purchase_price": purchase_price,
            "selling_price": selling_price,
        })
    return _make
