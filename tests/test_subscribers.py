"""
Subscriber operations on GymDataService: write-through, derived status,
attendance, renewal, duplicate policy.
"""

from __future__ import annotations

import dataclasses
import sqlite3

import pytest

from Gym_Manager.data.repositories import subscribers_repo
from Gym_Manager.domain.errors import (
    AlreadyRecordedToday,
    DuplicateActiveSubscriber,
    RecordNotFound,
    StoreOperationFailed,
    SubscriptionExpired,
    ValidationFailed,
)


# ---------------------------------------------------------------------------
# create / update
# ---------------------------------------------------------------------------


def test_new_subscriber_gets_expiry_and_active_status(service):
    ali = service.add_subscriber({"name": "Ali", "subscription_date": "2024-01-01", "subscription_duration": 30})
    assert ali.expiry_date == "2024-01-31"
    assert ali.status == "active"
    assert ali.frozen is False
    assert service.get_subscriber(ali.id) == ali


def test_form_defaults_apply(service, clock):
    sub = service.add_subscriber({"name": "Nadia"})
    assert sub.gender == "male"
    assert sub.subscription_duration == 30
    assert sub.debt == 0
    assert sub.residence == ""
    assert sub.subscription_date == clock().date().isoformat()


def test_invalid_input_reports_every_problem(service):
    with pytest.raises(ValidationFailed) as info:
        service.add_subscriber({"name": "  ", "price": -5, "subscription_duration": 0, "gender": "other"})
    errors = info.value.errors
    assert any("Name" in e for e in errors)
    assert any("Price" in e for e in errors)
    assert any("Subscription duration" in e for e in errors)
    assert any("Gender" in e for e in errors)
    assert service.list_subscribers() == []


def test_bmi_and_fitness_goal_are_derived(make_subscriber):
    fit = make_subscriber("Fit", height=180, weight=75)
    assert fit.bmi == 23.1
    assert fit.body_type == "normal"
    assert fit.fitness_goal == "cutting"

    thin = make_subscriber("Thin", height=180, weight=55)
    assert thin.body_type == "underweight"
    assert thin.fitness_goal == "bulking"

    chosen = make_subscriber("Chosen", height=180, weight=55, fitness_goal="cutting")
    assert chosen.fitness_goal == "cutting"


def test_custom_goal_kept_only_for_custom(make_subscriber):
    sub = make_subscriber(fitness_goal="custom", custom_goal="Marathon prep")
    assert sub.custom_goal == "Marathon prep"
    other = make_subscriber("Other", fitness_goal="bulking", custom_goal="ignored")
    assert other.custom_goal is None


def test_update_recomputes_expiry(service, make_subscriber):
    ali = make_subscriber()
    longer = service.update_subscriber(ali.id, {"subscription_duration": 60})
    assert longer.expiry_date == "2024-03-01"

    moved = service.update_subscriber(ali.id, {"subscription_date": "2024-02-01"})
    assert moved.expiry_date == "2024-04-01"
    assert moved.subscription_duration == 60


@pytest.mark.parametrize("field", ["status", "expiry_date", "frozen", "attendance", "id"])
def test_update_rejects_managed_fields(service, make_subscriber, field):
    ali = make_subscriber()
    with pytest.raises(ValidationFailed):
        service.update_subscriber(ali.id, {field: "x"})
    assert service.get_subscriber(ali.id) == ali


def test_update_rejects_unknown_fields(service, make_subscriber):
    ali = make_subscriber()
    with pytest.raises(ValidationFailed):
        service.update_subscriber(ali.id, {"nickname": "A"})


def test_unknown_id_raises_record_not_found(service):
    with pytest.raises(RecordNotFound):
        service.update_subscriber(999, {"name": "Ghost"})
    with pytest.raises(RecordNotFound):
        service.freeze_subscriber(999)
    assert service.get_subscriber(999) is None


def test_non_numeric_id_is_not_found(service, make_subscriber):
    make_subscriber()
    assert service.get_subscriber("abc") is None
    assert service.get_subscriber(None) is None
    with pytest.raises(RecordNotFound):
        service.delete_subscriber("abc")
    with pytest.raises(RecordNotFound):
        service.record_attendance("1; DROP", ["chest"])


def test_sql_failure_leaves_cache_untouched(service, make_subscriber, monkeypatch):
    ali = make_subscriber()

    def broken(conn, subscriber_id, values):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(subscribers_repo, "update_subscriber", broken)
    with pytest.raises(StoreOperationFailed):
        service.update_subscriber(ali.id, {"name": "Ali B."})
    assert service.get_subscriber(ali.id) == ali
    assert service.adapter.connection.execute("SELECT name FROM subscribers").fetchone()[0] == "Ali"


def test_entities_are_read_only(make_subscriber):
    ali = make_subscriber()
    with pytest.raises(dataclasses.FrozenInstanceError):
        ali.name = "Changed"


def test_delete_removes_subscriber_and_attendance(service, make_subscriber):
    ali = make_subscriber()
    service.record_attendance(ali.id, ["legs"])
    service.delete_subscriber(ali.id)

    assert service.get_subscriber(ali.id) is None
    conn = service.adapter.connection
    assert conn.execute("SELECT COUNT(*) FROM attendance").fetchone()[0] == 0
    with pytest.raises(RecordNotFound):
        service.delete_subscriber(ali.id)


# ---------------------------------------------------------------------------
# duplicate policy
# ---------------------------------------------------------------------------


def test_duplicate_active_name_is_blocked(service, make_subscriber):
    ali = make_subscriber("Ali")
    with pytest.raises(DuplicateActiveSubscriber) as info:
        make_subscriber("  ali ")
    assert info.value.existing_id == ali.id
    assert service.check_existing_subscriber("ALI") == ali
    assert len(service.list_subscribers()) == 1


def test_frozen_namesake_blocks(service, make_subscriber):
    ali = make_subscriber("Ali")
    service.freeze_subscriber(ali.id)
    with pytest.raises(DuplicateActiveSubscriber):
        make_subscriber("Ali")


def test_expired_namesake_does_not_block(service, make_subscriber, clock):
    make_subscriber("Ali")
    clock.advance(days=60)
    assert service.check_existing_subscriber("Ali") is None
    second = make_subscriber("Ali", subscription_date="2024-03-10")
    assert second.status == "active"
    assert len(service.list_subscribers()) == 2


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


def test_expiry_day_itself_is_still_active(service, make_subscriber, clock):
    ali = make_subscriber()
    clock.advance(days=21)  # 2024-01-31
    service.refresh_statuses()
    assert service.get_subscriber(ali.id).status == "active"

    clock.advance(days=1)
    assert service.refresh_statuses() == [ali.id]
    assert service.get_subscriber(ali.id).status == "expired"


def test_refresh_notifies_only_when_something_flips(service, make_subscriber, clock):
    make_subscriber()
    changes = []
    service.add_change_listener(changes.append)

    assert service.refresh_statuses() == []
    assert changes == []

    clock.advance(days=30)
    service.refresh_statuses()
    assert changes == ["status"]


def test_refresh_does_not_write_to_store(service, make_subscriber, clock, storage):
    make_subscriber()
    writes = storage.writes
    clock.advance(days=30)
    service.refresh_statuses()
    assert storage.writes == writes
    assert not service.adapter.has_unsaved_changes


def test_frozen_subscriber_never_expires_on_refresh(service, make_subscriber, clock):
    ali = make_subscriber()
    service.freeze_subscriber(ali.id)
    clock.advance(days=90)

    assert ali.id not in service.refresh_statuses()
    assert service.get_subscriber(ali.id).status == "frozen"

    thawed = service.unfreeze_subscriber(ali.id)
    assert thawed.status == "expired"


def test_freeze_is_stored_as_flag(service, make_subscriber):
    ali = make_subscriber()
    frozen = service.freeze_subscriber(ali.id)
    assert frozen.status == "frozen"
    row = service.adapter.connection.execute("SELECT frozen FROM subscribers WHERE id = ?", (ali.id,)).fetchone()
    assert row["frozen"] == 1

    # Freezing twice is a no-op
    assert service.freeze_subscriber(ali.id) == frozen


# ---------------------------------------------------------------------------
# attendance
# ---------------------------------------------------------------------------


def test_one_attendance_record_per_day(service, make_subscriber):
    ali = make_subscriber()
    after = service.record_attendance(ali.id, ["Chest", "chest", "back"])
    assert [(a.date, a.training_types) for a in after.attendance] == [("2024-01-10", ("chest", "back"))]

    with pytest.raises(AlreadyRecordedToday):
        service.record_attendance(ali.id, ["legs"])
    assert len(service.get_subscriber(ali.id).attendance) == 1


def test_attendance_next_day_is_allowed(service, make_subscriber, clock):
    ali = make_subscriber()
    service.record_attendance(ali.id, ["chest"])
    clock.advance(days=1)
    after = service.record_attendance(ali.id, ["legs"])
    assert [a.date for a in after.attendance] == ["2024-01-10", "2024-01-11"]


def test_attendance_requires_training_type(service, make_subscriber):
    ali = make_subscriber()
    with pytest.raises(ValidationFailed):
        service.record_attendance(ali.id, [])


def test_expired_subscriber_cannot_attend(service, make_subscriber, clock):
    ali = make_subscriber()
    clock.advance(days=40)
    service.refresh_statuses()
    with pytest.raises(SubscriptionExpired):
        service.record_attendance(ali.id, ["chest"])


def test_expired_subscriber_cannot_attend_before_status_refresh(service, make_subscriber, clock):
    ali = make_subscriber()
    clock.advance(days=40)
    with pytest.raises(SubscriptionExpired):
        service.record_attendance(ali.id, ["chest"])
    assert service.get_subscriber(ali.id).attendance == ()


def test_attendance_allowed_on_expiry_day(service, make_subscriber, clock):
    ali = make_subscriber()
    clock.advance(days=21)
    assert service.today().isoformat() == ali.expiry_date
    assert len(service.record_attendance(ali.id, ["chest"]).attendance) == 1


def test_frozen_subscriber_can_attend(service, make_subscriber):
    ali = make_subscriber()
    service.freeze_subscriber(ali.id)
    after = service.record_attendance(ali.id, ["cardio"])
    assert len(after.attendance) == 1


def test_remove_attendance_is_idempotent(service, make_subscriber, storage):
    ali = make_subscriber()
    service.record_attendance(ali.id, ["chest"])

    after = service.remove_attendance(ali.id, "2024-01-10")
    assert after.attendance == ()

    writes = storage.writes
    again = service.remove_attendance(ali.id, "2024-01-10")
    assert again.attendance == ()
    assert storage.writes == writes


def test_attendance_survives_reload(service, make_subscriber):
    ali = make_subscriber()
    service.record_attendance(ali.id, ["chest"])
    before = service.get_subscriber(ali.id)
    service.reload()
    assert service.get_subscriber(ali.id) == before


# ---------------------------------------------------------------------------
# renewal
# ---------------------------------------------------------------------------


def test_renewal_updates_same_record(service, make_subscriber, clock):
    ali = make_subscriber()
    service.record_attendance(ali.id, ["chest"])
    service.freeze_subscriber(ali.id)
    clock.advance(days=40)  # 2024-02-19

    renewed = service.renew_subscriber(ali.id, subscription_duration=30, price=2500, weight=80)

    assert renewed.id == ali.id
    assert renewed.subscription_date == "2024-02-19"
    assert renewed.expiry_date == "2024-03-20"
    assert renewed.status == "active"
    assert renewed.frozen is False
    assert renewed.price == 2500
    assert renewed.weight == 80
    assert [a.date for a in renewed.attendance] == ["2024-01-10"]
    assert len(service.list_subscribers()) == 1


def test_renewal_rejects_managed_fields(service, make_subscriber):
    ali = make_subscriber()
    with pytest.raises(ValidationFailed):
        service.renew_subscriber(ali.id, status="active")


# ---------------------------------------------------------------------------
# search / notifications
# ---------------------------------------------------------------------------


def test_search_matches_active_subscribers_only(service, make_subscriber, clock):
    make_subscriber("Ali Benali", residence="Oran", phone="0555123456")
    old = make_subscriber("Alice", subscription_date="2023-11-01")
    assert old.status == "expired"

    assert [s.name for s in service.search_subscribers("ali")] == ["Ali Benali"]
    assert [s.name for s in service.search_subscribers("ORAN")] == ["Ali Benali"]
    assert [s.name for s in service.search_subscribers("123")] == ["Ali Benali"]
    assert service.search_subscribers("   ") == []


def test_notifications_and_expiring_soon(service, make_subscriber):
    soon = make_subscriber("Soon", subscription_date="2023-12-15")    # expires 2024-01-14
    make_subscriber("Later")                                         # expires 2024-01-31
    gone = make_subscriber("Gone", subscription_date="2023-11-01")   # expired
    iced = make_subscriber("Iced")
    service.freeze_subscriber(iced.id)

    assert [s.id for s in service.expiring_soon()] == [soon.id]

    notes = service.notifications()
    assert [(n.kind, n.subscriber_id) for n in notes] == [
        ("expired", gone.id),
        ("expiring", soon.id),
        ("frozen", iced.id),
    ]
    assert "4 days" in notes[1].message
