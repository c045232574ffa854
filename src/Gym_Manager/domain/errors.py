"""
Gym_Manager.domain.errors

Error taxonomy for the persistence layer and the domain-state cache.

Two branches:
- StorageError: the durable image or the embedded store misbehaved. The app
  keeps running on the in-memory cache and warns that changes may be lost.
- BusinessRuleError: the caller asked for something the rules forbid. These
  are meant to be rendered as user-facing messages and never touch the cache.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Optional


class GymManagerError(Exception):
    """Root of every error raised by Gym_Manager."""


# ---------------------------------------------------------------------------
# Storage layer
# ---------------------------------------------------------------------------


class StorageError(GymManagerError):
    pass


class StorageUnavailable(StorageError):
    """The durable medium (file, key-value document) cannot be read or written."""


class CorruptImage(StorageError):
    """Bytes that do not open as an SQLite database image."""


class SchemaMismatch(StorageError):
    """An image that opens fine but does not carry the expected tables/columns."""

    def __init__(
        self,
        missing_tables: Iterable[str] = (),
        missing_columns: Iterable[str] = (),
    ) -> None:
        self.missing_tables: List[str] = sorted(missing_tables)
        self.missing_columns: List[str] = sorted(missing_columns)
        parts = []
        if self.missing_tables:
            parts.append("missing tables: " + ", ".join(self.missing_tables))
        if self.missing_columns:
            parts.append("missing columns: " + ", ".join(self.missing_columns))
        super().__init__("Database image does not match the gym schema (" + "; ".join(parts) + ")")


class StoreOperationFailed(StorageError):
    """A SQL statement failed; the transaction was rolled back."""


# ---------------------------------------------------------------------------
# Business rules
# ---------------------------------------------------------------------------


class BusinessRuleError(GymManagerError):
    pass


class ValidationFailed(BusinessRuleError):
    def __init__(self, errors: Iterable[str]) -> None:
        self.errors: List[str] = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid input.")


class RecordNotFound(BusinessRuleError):
    def __init__(self, entity: str, record_id: Any) -> None:
        self.entity = entity
        self.record_id = record_id
        super().__init__(f"{entity} {record_id!r} does not exist.")


class InsufficientStock(BusinessRuleError):
    def __init__(self, product_id: int, requested: int, available: int) -> None:
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot sell {requested} of product {product_id}: only {available} in stock."
        )


class AlreadyRecordedToday(BusinessRuleError):
    def __init__(self, subscriber_id: int, day: str) -> None:
        self.subscriber_id = subscriber_id
        self.day = day
        super().__init__(f"Attendance for subscriber {subscriber_id} is already recorded on {day}.")


class SubscriptionExpired(BusinessRuleError):
    def __init__(self, subscriber_id: int, expiry_date: str) -> None:
        self.subscriber_id = subscriber_id
        self.expiry_date = expiry_date
        super().__init__(f"Subscription of {subscriber_id} expired on {expiry_date}.")


class DuplicateActiveSubscriber(BusinessRuleError):
    def __init__(self, name: str, existing_id: Optional[int] = None) -> None:
        self.name = name
        self.existing_id = existing_id
        super().__init__(f"A subscriber named {name!r} is already active or frozen.")
