"""
Gym_Manager.services.gym_data_service

The domain-state cache: typed in-memory collections mirroring the store,
and the only surface the UI talks to.

Every mutator follows the same write-through order while holding the
persistence adapter's lock:

  1. validate the input (ValidationFailed / business-rule errors)
  2. run the SQL inside adapter.transaction() (rolled back on failure)
  3. replace the cached dataclass(es) with what the store now holds
  4. request a save and notify change listeners

A failure at steps 1-2 leaves the cache untouched. Entities handed out are
frozen dataclasses, so callers cannot change the cache behind its back.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from Gym_Manager.data.persistence import PersistenceAdapter
from Gym_Manager.data.repositories import (
    attendance_repo,
    classes_repo,
    expenses_repo,
    products_repo,
    sales_repo,
    subscribers_repo,
)
from Gym_Manager.domain.errors import (
    AlreadyRecordedToday,
    CorruptImage,
    DuplicateActiveSubscriber,
    InsufficientStock,
    RecordNotFound,
    StoreOperationFailed,
    SubscriptionExpired,
    ValidationFailed,
)
from Gym_Manager.domain.models import (
    STATUS_ACTIVE,
    STATUS_EXPIRED,
    STATUS_FROZEN,
    Expense,
    IndividualClass,
    Product,
    Sale,
    Subscriber,
)
from Gym_Manager.domain.validation import (
    normalize_class_fields,
    normalize_expense_fields,
    normalize_product_fields,
    normalize_subscriber_fields,
    normalize_training_types,
    parse_day,
    positive_quantity,
    reject_fields,
    to_iso_day,
)
from Gym_Manager.services import derived_views
from Gym_Manager.services.derived_views import CategoryTotal, DashboardStats, Notification
from Gym_Manager.utils.periodic import PeriodicTask

log = logging.getLogger(__name__)

DEFAULT_STATUS_REFRESH_INTERVAL = 60.0
DEFAULT_SUBSCRIPTION_DAYS = 30

SUBSCRIBER_EDITABLE = (
    "name", "gender", "age", "height", "weight", "fitness_goal", "custom_goal",
    "phone", "subscription_date", "subscription_duration", "residence", "price",
    "debt", "notes", "shower",
)
SUBSCRIBER_MANAGED = (
    "id", "status", "expiry_date", "attendance", "frozen", "bmi", "body_type", "created_at",
)

PRODUCT_EDITABLE = ("name", "quantity", "purchase_price", "selling_price", "description")
EXPENSE_EDITABLE = ("name", "amount", "category", "description", "date")
CLASS_EDITABLE = ("name", "age", "date", "price")
ROW_MANAGED = ("id", "created_at")

_MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

ChangeListener = Callable[[str], None]


def _editable(entity: Any, names) -> Dict[str, Any]:
    return {name: getattr(entity, name) for name in names}


def _record_key(record_id: Any) -> Optional[int]:
    """Cache key for an id from the UI; None (never found) when it is not numeric."""
    try:
        return int(record_id)
    except (TypeError, ValueError):
        return None


class GymDataService:
    """
    High-level gym operations over the live database image.

    The adapter must be initialized before the service is created.
    """

    def __init__(
        self,
        adapter: PersistenceAdapter,
        clock: Callable[[], datetime] = datetime.now,
        expiring_soon_days: int = derived_views.DEFAULT_EXPIRING_SOON_DAYS,
    ) -> None:
        self.adapter = adapter
        self.expiring_soon_days = expiring_soon_days
        self._clock = clock

        self._subscribers: Dict[int, Subscriber] = {}
        self._products: Dict[int, Product] = {}
        self._sales: Dict[int, Sale] = {}
        self._expenses: Dict[int, Expense] = {}
        self._classes: Dict[int, IndividualClass] = {}

        self._listeners: List[ChangeListener] = []
        self._status_task: Optional[PeriodicTask] = None
        self._current_month: Optional[str] = None

        adapter.add_reload_listener(self.reload)
        adapter.add_image_check(self._read_collections)
        self.reload()

    # ------------------------------------------------------------------
    # Clock / month scope
    # ------------------------------------------------------------------

    def now(self) -> datetime:
        value = self._clock()
        if isinstance(value, datetime):
            return value
        return datetime.combine(value, datetime.min.time())

    def today(self) -> date:
        return self.now().date()

    @property
    def current_month(self) -> str:
        return self._current_month or self.today().strftime("%Y-%m")

    @current_month.setter
    def current_month(self, month: Optional[str]) -> None:
        if month is not None and not _MONTH_RE.match(month):
            raise ValidationFailed([f"Month must look like YYYY-MM, got {month!r}."])
        self._current_month = month
        self._notify("month")

    # ------------------------------------------------------------------
    # Listeners / plumbing
    # ------------------------------------------------------------------

    def add_change_listener(self, callback: ChangeListener) -> None:
        self._listeners.append(callback)

    def remove_change_listener(self, callback: ChangeListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self, change: str) -> None:
        for callback in list(self._listeners):
            try:
                callback(change)
            except Exception:
                # The change is already committed; a broken view must not undo it
                log.exception("Change listener failed for %s", change)

    def _committed(self, change: str) -> None:
        self.adapter.request_save()
        self._notify(change)

    @contextmanager
    def _write(self, action: str) -> Iterator[sqlite3.Connection]:
        """
        adapter.transaction() with SQL failures re-raised as StoreOperationFailed.
        """
        try:
            with self.adapter.transaction() as conn:
                yield conn
        except sqlite3.Error as exc:
            log.error("%s failed, rolled back", action, exc_info=True)
            raise StoreOperationFailed(f"{action} failed: {exc}") from exc

    def _hydrate(self, sub: Subscriber, attendance=None) -> Subscriber:
        if attendance is not None:
            sub = replace(sub, attendance=tuple(sorted(attendance, key=lambda a: a.date)))
        return derived_views.with_derived_fields(sub, self.today())

    # ------------------------------------------------------------------
    # Reload
    # ------------------------------------------------------------------

    def _read_collections(self, conn: sqlite3.Connection) -> Tuple[
        Dict[int, Subscriber],
        Dict[int, Product],
        Dict[int, Sale],
        Dict[int, Expense],
        Dict[int, IndividualClass],
    ]:
        """
        Build every typed collection from `conn`. A row that cannot become an
        entity makes the whole image unusable (CorruptImage); this is also the
        row check the adapter runs on saved and imported images.
        """
        try:
            attendance = attendance_repo.list_all_grouped(conn)
            subscribers = {
                s.id: self._hydrate(s, attendance.get(s.id, ()))
                for s in subscribers_repo.list_subscribers(conn)
            }
            products = {p.id: p for p in products_repo.list_products(conn)}
            sales = {s.id: s for s in sales_repo.list_sales(conn)}
            expenses = {e.id: e for e in expenses_repo.list_expenses(conn)}
            classes = {c.id: c for c in classes_repo.list_classes(conn)}
        except (ValueError, TypeError, KeyError, sqlite3.Error) as exc:
            raise CorruptImage(f"Database image holds unreadable rows: {exc}") from exc
        return subscribers, products, sales, expenses, classes

    def reload(self) -> None:
        """
        Rebuild every collection from the store (startup and after import).
        """
        with self.adapter.lock:
            subscribers, products, sales, expenses, classes = self._read_collections(self.adapter.connection)

            self._subscribers = subscribers
            self._products = products
            self._sales = sales
            self._expenses = expenses
            self._classes = classes

        log.info(
            "Loaded %d subscribers, %d products, %d sales, %d expenses, %d classes",
            len(subscribers), len(products), len(sales), len(expenses), len(classes),
        )
        self._notify("reload")

    # ==================================================================
    # Subscribers
    # ==================================================================

    def list_subscribers(self) -> List[Subscriber]:
        """Newest first."""
        return sorted(self._subscribers.values(), key=lambda s: s.id, reverse=True)

    def get_subscriber(self, subscriber_id: int) -> Optional[Subscriber]:
        return self._subscribers.get(_record_key(subscriber_id))

    def _require_subscriber(self, subscriber_id: int) -> Subscriber:
        sub = self._subscribers.get(_record_key(subscriber_id))
        if sub is None:
            raise RecordNotFound("Subscriber", subscriber_id)
        return sub

    def _subscriber_values(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate a full candidate field set and add expiry_date (and a
        BMI-based fitness goal when none was chosen).
        """
        values = normalize_subscriber_fields(fields)
        if values["fitness_goal"] is None:
            _bmi, body_type = derived_views.calculate_bmi(values["height"], values["weight"])
            if body_type is not None:
                values["fitness_goal"] = derived_views.default_fitness_goal(body_type)
        start = parse_day(values["subscription_date"])
        values["expiry_date"] = (start + timedelta(days=values["subscription_duration"])).isoformat()
        return values

    def check_existing_subscriber(self, name: str) -> Optional[Subscriber]:
        """
        The active or frozen subscriber carrying `name` (case-insensitive),
        if any. Names are not unique in the store; this query is the check.
        """
        today = self.today()
        with self.adapter.lock:
            matches = subscribers_repo.find_by_name(self.adapter.connection, name)
        for row in matches:
            if derived_views.derive_status(row.frozen, row.expiry_date, today) in (STATUS_ACTIVE, STATUS_FROZEN):
                return self._subscribers.get(row.id) or self._hydrate(row)
        return None

    def add_subscriber(self, fields: Dict[str, Any]) -> Subscriber:
        reject_fields(fields, SUBSCRIBER_MANAGED, SUBSCRIBER_EDITABLE)
        candidate: Dict[str, Any] = {
            "gender": "male",
            "subscription_date": self.today(),
            "subscription_duration": DEFAULT_SUBSCRIPTION_DAYS,
            "price": 0,
            "debt": 0,
        }
        candidate.update({k: v for k, v in fields.items() if v is not None})

        with self.adapter.lock:
            values = self._subscriber_values(candidate)
            existing = self.check_existing_subscriber(values["name"])
            if existing is not None:
                log.info("Blocked duplicate subscriber %r (existing id %s)", values["name"], existing.id)
                raise DuplicateActiveSubscriber(values["name"], existing.id)

            with self._write("add subscriber") as conn:
                new_id = subscribers_repo.insert_subscriber(conn, values)
                row = subscribers_repo.get_subscriber_by_id(conn, new_id)

            sub = self._hydrate(row, ())
            self._subscribers[sub.id] = sub

        log.info("Added subscriber %s (%s), expires %s", sub.id, sub.name, sub.expiry_date)
        self._committed("subscribers")
        return sub

    def update_subscriber(self, subscriber_id: int, changes: Dict[str, Any]) -> Subscriber:
        """
        Partial edit. expiry_date follows subscription_date/duration; status,
        frozen and attendance have their own operations.
        """
        reject_fields(changes, SUBSCRIBER_MANAGED, SUBSCRIBER_EDITABLE)
        with self.adapter.lock:
            current = self._require_subscriber(subscriber_id)
            candidate = _editable(current, SUBSCRIBER_EDITABLE)
            candidate.update(changes)
            values = self._subscriber_values(candidate)

            with self._write("update subscriber") as conn:
                subscribers_repo.update_subscriber(conn, current.id, values)
                row = subscribers_repo.get_subscriber_by_id(conn, current.id)

            sub = self._hydrate(row, current.attendance)
            self._subscribers[sub.id] = sub

        self._committed("subscribers")
        return sub

    def renew_subscriber(
        self,
        subscriber_id: int,
        subscription_duration: Optional[int] = None,
        start_date: Any = None,
        **changes: Any,
    ) -> Subscriber:
        """
        Start a new period on the same record: subscription_date becomes
        `start_date` (default today), the freeze is lifted and attendance is
        kept. `changes` may carry new price/debt or physical stats.
        """
        reject_fields(changes, SUBSCRIBER_MANAGED + ("subscription_date", "subscription_duration"), SUBSCRIBER_EDITABLE)
        with self.adapter.lock:
            current = self._require_subscriber(subscriber_id)
            candidate = _editable(current, SUBSCRIBER_EDITABLE)
            candidate.update(changes)
            candidate["subscription_date"] = start_date if start_date is not None else self.today()
            if subscription_duration is not None:
                candidate["subscription_duration"] = subscription_duration
            values = self._subscriber_values(candidate)
            values["frozen"] = False

            with self._write("renew subscriber") as conn:
                subscribers_repo.update_subscriber(conn, current.id, values)
                row = subscribers_repo.get_subscriber_by_id(conn, current.id)

            sub = self._hydrate(row, current.attendance)
            self._subscribers[sub.id] = sub

        log.info("Renewed subscriber %s until %s", sub.id, sub.expiry_date)
        self._committed("subscribers")
        return sub

    def delete_subscriber(self, subscriber_id: int) -> None:
        """Hard delete, attendance included."""
        with self.adapter.lock:
            current = self._require_subscriber(subscriber_id)
            with self._write("delete subscriber") as conn:
                subscribers_repo.delete_subscriber(conn, current.id)
            del self._subscribers[current.id]

        log.info("Deleted subscriber %s (%s)", current.id, current.name)
        self._committed("subscribers")

    def _set_frozen(self, subscriber_id: int, frozen: bool) -> Subscriber:
        with self.adapter.lock:
            current = self._require_subscriber(subscriber_id)
            if current.frozen == frozen:
                return current
            with self._write("freeze subscriber" if frozen else "unfreeze subscriber") as conn:
                subscribers_repo.set_frozen(conn, current.id, frozen)
            sub = self._hydrate(replace(current, frozen=frozen))
            self._subscribers[sub.id] = sub

        self._committed("subscribers")
        return sub

    def freeze_subscriber(self, subscriber_id: int) -> Subscriber:
        return self._set_frozen(subscriber_id, True)

    def unfreeze_subscriber(self, subscriber_id: int) -> Subscriber:
        """Status goes back to active or expired depending on the dates."""
        return self._set_frozen(subscriber_id, False)

    # ---------- Attendance ----------

    def record_attendance(self, subscriber_id: int, training_types, day: Any = None) -> Subscriber:
        """
        One record per calendar day (today unless `day` is given).
        Frozen subscribers may train; expired ones may not.
        """
        types = normalize_training_types(training_types)
        with self.adapter.lock:
            current = self._require_subscriber(subscriber_id)
            on_day = to_iso_day(day) if day is not None else self.today().isoformat()

            # Derived against the clock now; the cached status may predate the last refresh
            if derived_views.derive_status(current.frozen, current.expiry_date, self.today()) == STATUS_EXPIRED:
                raise SubscriptionExpired(current.id, current.expiry_date)
            if any(a.date == on_day for a in current.attendance):
                raise AlreadyRecordedToday(current.id, on_day)

            with self._write("record attendance") as conn:
                try:
                    record = attendance_repo.insert_attendance(conn, current.id, on_day, types)
                except sqlite3.IntegrityError as exc:
                    raise AlreadyRecordedToday(current.id, on_day) from exc

            sub = self._hydrate(current, current.attendance + (record,))
            self._subscribers[sub.id] = sub

        log.debug("Recorded attendance for %s on %s: %s", sub.id, on_day, ", ".join(types))
        self._committed("attendance")
        return sub

    def remove_attendance(self, subscriber_id: int, day: Any) -> Subscriber:
        """No-op when nothing is recorded on `day`."""
        on_day = to_iso_day(day)
        with self.adapter.lock:
            current = self._require_subscriber(subscriber_id)
            if not any(a.date == on_day for a in current.attendance):
                return current

            with self._write("remove attendance") as conn:
                attendance_repo.delete_attendance(conn, current.id, on_day)

            sub = self._hydrate(current, tuple(a for a in current.attendance if a.date != on_day))
            self._subscribers[sub.id] = sub

        self._committed("attendance")
        return sub

    # ---------- Status refresh ----------

    def refresh_statuses(self) -> List[int]:
        """
        Recompute active/expired against the clock. Frozen subscribers are
        left alone. Status is not stored, so this never writes to the store.
        Returns the ids whose status flipped.
        """
        today = self.today()
        flipped: List[int] = []
        with self.adapter.lock:
            for sid, sub in list(self._subscribers.items()):
                if sub.frozen:
                    continue
                status = derived_views.derive_status(False, sub.expiry_date, today)
                if status != sub.status:
                    self._subscribers[sid] = replace(sub, status=status)
                    flipped.append(sid)

        if flipped:
            log.info("Status refresh: %d subscriber(s) changed status", len(flipped))
            self._notify("status")
        return flipped

    def start_status_refresh(self, interval: float = DEFAULT_STATUS_REFRESH_INTERVAL) -> None:
        if self._status_task is None:
            self._status_task = PeriodicTask("gym-status-refresh", interval, self.refresh_statuses)
        self._status_task.start()

    def stop_status_refresh(self) -> None:
        if self._status_task is not None:
            self._status_task.stop()
            self._status_task = None

    # ---------- Read-side helpers ----------

    def search_subscribers(self, term: str) -> List[Subscriber]:
        return derived_views.search_subscribers(self.list_subscribers(), term)

    def expiring_soon(self, days: Optional[int] = None) -> List[Subscriber]:
        return derived_views.expiring_soon(
            self.list_subscribers(), self.today(), days or self.expiring_soon_days
        )

    def notifications(self) -> List[Notification]:
        return derived_views.build_notifications(
            self.list_subscribers(), self.today(), self.expiring_soon_days
        )

    # ==================================================================
    # Products / sales
    # ==================================================================

    def list_products(self) -> List[Product]:
        return sorted(self._products.values(), key=lambda p: p.id, reverse=True)

    def get_product(self, product_id: int) -> Optional[Product]:
        return self._products.get(_record_key(product_id))

    def _require_product(self, product_id: int) -> Product:
        product = self._products.get(_record_key(product_id))
        if product is None:
            raise RecordNotFound("Product", product_id)
        return product

    def add_product(self, fields: Dict[str, Any]) -> Product:
        reject_fields(fields, ROW_MANAGED, PRODUCT_EDITABLE)
        candidate: Dict[str, Any] = {"quantity": 0}
        candidate.update(fields)
        values = normalize_product_fields(candidate)

        with self.adapter.lock:
            with self._write("add product") as conn:
                new_id = products_repo.insert_product(conn, values)
                product = products_repo.get_product_by_id(conn, new_id)
            self._products[product.id] = product

        log.info("Added product %s (%s), %d in stock", product.id, product.name, product.quantity)
        self._committed("products")
        return product

    def update_product(self, product_id: int, changes: Dict[str, Any]) -> Product:
        """
        Price edits only affect future sales; past Sale rows keep their snapshot.
        """
        reject_fields(changes, ROW_MANAGED, PRODUCT_EDITABLE)
        with self.adapter.lock:
            current = self._require_product(product_id)
            candidate = _editable(current, PRODUCT_EDITABLE)
            candidate.update(changes)
            values = normalize_product_fields(candidate)

            with self._write("update product") as conn:
                products_repo.update_product(conn, current.id, values)
                product = products_repo.get_product_by_id(conn, current.id)
            self._products[product.id] = product

        self._committed("products")
        return product

    def restock_product(self, product_id: int, quantity: int) -> Product:
        qty = positive_quantity(quantity)
        with self.adapter.lock:
            current = self._require_product(product_id)
            with self._write("restock product") as conn:
                products_repo.increment_quantity(conn, current.id, qty)
                product = products_repo.get_product_by_id(conn, current.id)
            self._products[product.id] = product

        log.info("Restocked product %s by %d (now %d)", product.id, qty, product.quantity)
        self._committed("products")
        return product

    def delete_product(self, product_id: int) -> None:
        with self.adapter.lock:
            current = self._require_product(product_id)
            with self._write("delete product") as conn:
                products_repo.delete_product(conn, current.id)
            del self._products[current.id]

        log.info("Deleted product %s (%s)", current.id, current.name)
        self._committed("products")

    def sell_product(self, product_id: int, quantity: int) -> Sale:
        """
        Check stock, decrement it and insert the Sale row in one transaction.
        The sale snapshots the prices the product has right now.
        """
        qty = positive_quantity(quantity)
        with self.adapter.lock:
            current = self._require_product(product_id)
            if qty > current.quantity:
                log.info("Refused sale of %d x product %s: %d in stock", qty, current.id, current.quantity)
                raise InsufficientStock(current.id, qty, current.quantity)

            with self._write("sell product") as conn:
                if not products_repo.decrement_quantity(conn, current.id, qty):
                    row = products_repo.get_product_by_id(conn, current.id)
                    raise InsufficientStock(current.id, qty, row.quantity if row else 0)
                product = products_repo.get_product_by_id(conn, current.id)
                sale_id = sales_repo.insert_sale(conn, {
                    "product_id": product.id,
                    "product_name": product.name,
                    "quantity_sold": qty,
                    "purchase_price": product.purchase_price,
                    "selling_price": product.selling_price,
                    "profit": (product.selling_price - product.purchase_price) * qty,
                    "sale_date": self.now().isoformat(timespec="seconds"),
                })
                sale = sales_repo.get_sale_by_id(conn, sale_id)

            self._products[product.id] = product
            self._sales[sale.id] = sale

        log.info("Sold %d x %s (profit %.2f)", qty, sale.product_name, sale.profit)
        self._committed("sales")
        return sale

    def list_sales(self) -> List[Sale]:
        """Newest first."""
        return sorted(self._sales.values(), key=lambda s: (s.sale_date, s.id), reverse=True)

    def inventory_value(self) -> float:
        return derived_views.inventory_value(self._products.values())

    # ==================================================================
    # Expenses
    # ==================================================================

    def list_expenses(self) -> List[Expense]:
        return sorted(self._expenses.values(), key=lambda e: (e.date, e.id), reverse=True)

    def get_expense(self, expense_id: int) -> Optional[Expense]:
        return self._expenses.get(_record_key(expense_id))

    def _require_expense(self, expense_id: int) -> Expense:
        expense = self._expenses.get(_record_key(expense_id))
        if expense is None:
            raise RecordNotFound("Expense", expense_id)
        return expense

    def add_expense(self, fields: Dict[str, Any]) -> Expense:
        reject_fields(fields, ROW_MANAGED, EXPENSE_EDITABLE)
        candidate: Dict[str, Any] = {"date": self.today()}
        candidate.update({k: v for k, v in fields.items() if v is not None})
        values = normalize_expense_fields(candidate)

        with self.adapter.lock:
            with self._write("add expense") as conn:
                new_id = expenses_repo.insert_expense(conn, values)
                expense = expenses_repo.get_expense_by_id(conn, new_id)
            self._expenses[expense.id] = expense

        self._committed("expenses")
        return expense

    def update_expense(self, expense_id: int, changes: Dict[str, Any]) -> Expense:
        reject_fields(changes, ROW_MANAGED, EXPENSE_EDITABLE)
        with self.adapter.lock:
            current = self._require_expense(expense_id)
            candidate = _editable(current, EXPENSE_EDITABLE)
            candidate.update(changes)
            values = normalize_expense_fields(candidate)

            with self._write("update expense") as conn:
                expenses_repo.update_expense(conn, current.id, values)
                expense = expenses_repo.get_expense_by_id(conn, current.id)
            self._expenses[expense.id] = expense

        self._committed("expenses")
        return expense

    def delete_expense(self, expense_id: int) -> None:
        with self.adapter.lock:
            current = self._require_expense(expense_id)
            with self._write("delete expense") as conn:
                expenses_repo.delete_expense(conn, current.id)
            del self._expenses[current.id]
        self._committed("expenses")

    def expenses_by_category(self, month: Optional[str] = None) -> List[CategoryTotal]:
        return derived_views.expenses_by_category(self.filtered_expenses(month))

    # ==================================================================
    # Individual classes
    # ==================================================================

    def list_classes(self) -> List[IndividualClass]:
        return sorted(self._classes.values(), key=lambda c: (c.date, c.id), reverse=True)

    def get_class(self, class_id: int) -> Optional[IndividualClass]:
        return self._classes.get(_record_key(class_id))

    def _require_class(self, class_id: int) -> IndividualClass:
        item = self._classes.get(_record_key(class_id))
        if item is None:
            raise RecordNotFound("IndividualClass", class_id)
        return item

    def add_class(self, fields: Dict[str, Any]) -> IndividualClass:
        reject_fields(fields, ROW_MANAGED, CLASS_EDITABLE)
        candidate: Dict[str, Any] = {"date": self.today(), "price": 0}
        candidate.update({k: v for k, v in fields.items() if v is not None})
        values = normalize_class_fields(candidate)

        with self.adapter.lock:
            with self._write("add class") as conn:
                new_id = classes_repo.insert_class(conn, values)
                item = classes_repo.get_class_by_id(conn, new_id)
            self._classes[item.id] = item

        self._committed("classes")
        return item

    def update_class(self, class_id: int, changes: Dict[str, Any]) -> IndividualClass:
        reject_fields(changes, ROW_MANAGED, CLASS_EDITABLE)
        with self.adapter.lock:
            current = self._require_class(class_id)
            candidate = _editable(current, CLASS_EDITABLE)
            candidate.update(changes)
            values = normalize_class_fields(candidate)

            with self._write("update class") as conn:
                classes_repo.update_class(conn, current.id, values)
                item = classes_repo.get_class_by_id(conn, current.id)
            self._classes[item.id] = item

        self._committed("classes")
        return item

    def delete_class(self, class_id: int) -> None:
        with self.adapter.lock:
            current = self._require_class(class_id)
            with self._write("delete class") as conn:
                classes_repo.delete_class(conn, current.id)
            del self._classes[current.id]
        self._committed("classes")

    # ==================================================================
    # Month-scoped views and statistics
    # ==================================================================

    def filtered_subscribers(self, month: Optional[str] = None) -> List[Subscriber]:
        return derived_views.filter_by_month(
            self.list_subscribers(), month or self.current_month, "subscription_date"
        )

    def filtered_sales(self, month: Optional[str] = None) -> List[Sale]:
        return derived_views.filter_by_month(self.list_sales(), month or self.current_month, "sale_date")

    def filtered_expenses(self, month: Optional[str] = None) -> List[Expense]:
        return derived_views.filter_by_month(self.list_expenses(), month or self.current_month, "date")

    def filtered_classes(self, month: Optional[str] = None) -> List[IndividualClass]:
        return derived_views.filter_by_month(self.list_classes(), month or self.current_month, "date")

    def statistics(self, month: Optional[str] = None) -> DashboardStats:
        scope = month or self.current_month
        return derived_views.compute_statistics(
            subscribers=self.filtered_subscribers(scope),
            sales=self.filtered_sales(scope),
            expenses=self.filtered_expenses(scope),
            classes=self.filtered_classes(scope),
            products=self.list_products(),
            today=self.today(),
            month=scope,
            expiring_days=self.expiring_soon_days,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        """Stop the status refresh and let the adapter write its final save."""
        self.stop_status_refresh()
        self.adapter.shutdown()
