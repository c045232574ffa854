"""
Gym_Manager.services.derived_views

Pure functions over snapshots of the cached collections.

Nothing here touches the store: status, BMI, month scoping, notifications and
dashboard statistics are recomputed from the dataclasses on every call and
never persisted.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from Gym_Manager.domain.models import (
    BODY_NORMAL,
    BODY_OBESE,
    BODY_OVERWEIGHT,
    BODY_UNDERWEIGHT,
    EXPENSE_CATEGORIES,
    STATUS_ACTIVE,
    STATUS_EXPIRED,
    STATUS_FROZEN,
    Expense,
    IndividualClass,
    Product,
    Sale,
    Subscriber,
)
from Gym_Manager.domain.validation import parse_day

T = TypeVar("T")

DEFAULT_EXPIRING_SOON_DAYS = 7


# ---------------------------------------------------------------------------
# Month scope
# ---------------------------------------------------------------------------


def month_key(value: Any) -> str:
    """
    'YYYY-MM' for a date, datetime or ISO string.
    """
    return parse_day(value).strftime("%Y-%m")


def filter_by_month(items: Iterable[T], month: str, field_name: str) -> List[T]:
    """
    Keep the items whose `field_name` date falls in `month` ('YYYY-MM').
    Order is preserved.
    """
    return [item for item in items if month_key(getattr(item, field_name)) == month]


def bucket_by_month(items: Iterable[T], field_name: str) -> Dict[str, List[T]]:
    """
    Partition items by month: every item lands in exactly one bucket.
    """
    buckets: Dict[str, List[T]] = defaultdict(list)
    for item in items:
        buckets[month_key(getattr(item, field_name))].append(item)
    return dict(buckets)


# ---------------------------------------------------------------------------
# Body metrics
# ---------------------------------------------------------------------------


def classify_body_type(bmi: float) -> str:
    if bmi < 18.5:
        return BODY_UNDERWEIGHT
    if bmi < 25:
        return BODY_NORMAL
    if bmi < 30:
        return BODY_OVERWEIGHT
    return BODY_OBESE


def calculate_bmi(height: Optional[float], weight: Optional[float]) -> Tuple[Optional[float], Optional[str]]:
    """
    (bmi rounded to one decimal, body type), or (None, None) when either
    measurement is missing. height in cm, weight in kg.
    """
    if not height or not weight or height <= 0 or weight <= 0:
        return None, None
    meters = height / 100.0
    bmi = round(weight / (meters * meters), 1)
    return bmi, classify_body_type(bmi)


def default_fitness_goal(body_type: Optional[str]) -> str:
    return "bulking" if body_type == BODY_UNDERWEIGHT else "cutting"


# ---------------------------------------------------------------------------
# Subscription status
# ---------------------------------------------------------------------------


def _as_day(today: Any) -> date:
    if isinstance(today, datetime):
        return today.date()
    return parse_day(today)


def derive_status(frozen: bool, expiry_date: str, today: Any) -> str:
    """
    frozen wins; otherwise active through the expiry day itself.

    Day granularity: on the expiry day itself the subscriber is still
    active. A timestamp comparison would expire them at midnight instead.
    """
    if frozen:
        return STATUS_FROZEN
    return STATUS_ACTIVE if _as_day(today) <= parse_day(expiry_date) else STATUS_EXPIRED


def days_until_expiry(sub: Subscriber, today: Any) -> int:
    return (parse_day(sub.expiry_date) - _as_day(today)).days


def with_derived_fields(sub: Subscriber, today: Any) -> Subscriber:
    """
    Return `sub` with status, bmi and body_type recomputed.
    """
    bmi, body_type = calculate_bmi(sub.height, sub.weight)
    return replace(
        sub,
        status=derive_status(sub.frozen, sub.expiry_date, today),
        bmi=bmi,
        body_type=body_type,
    )


def expiring_soon(
    subscribers: Iterable[Subscriber],
    today: Any,
    days: int = DEFAULT_EXPIRING_SOON_DAYS,
) -> List[Subscriber]:
    """
    Active subscribers with 0 < days left <= `days`, soonest first.
    """
    hits = [
        s for s in subscribers
        if s.status == STATUS_ACTIVE and 0 < days_until_expiry(s, today) <= days
    ]
    return sorted(hits, key=lambda s: (s.expiry_date, s.id))


def search_subscribers(subscribers: Iterable[Subscriber], term: str) -> List[Subscriber]:
    """
    Attendance search box: active subscribers whose name or residence contains
    the term (case-insensitive) or whose phone contains it.
    """
    needle = (term or "").strip()
    if not needle:
        return []
    lowered = needle.lower()
    results = []
    for s in subscribers:
        if s.status != STATUS_ACTIVE:
            continue
        if (
            lowered in s.name.lower()
            or lowered in (s.residence or "").lower()
            or needle in (s.phone or "")
        ):
            results.append(s)
    return results


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Notification:
    kind: str                   # 'expired' | 'expiring' | 'frozen'
    title: str
    message: str
    date: str                   # the subscriber's expiry date
    subscriber_id: int
    phone: Optional[str] = None


def build_notifications(
    subscribers: Sequence[Subscriber],
    today: Any,
    days: int = DEFAULT_EXPIRING_SOON_DAYS,
) -> List[Notification]:
    """
    Expired first, then expiring soon, then frozen.
    """
    out: List[Notification] = []

    for s in subscribers:
        if s.status == STATUS_EXPIRED:
            out.append(Notification(
                kind="expired",
                title="Subscription expired",
                message=f"{s.name}'s subscription has expired",
                date=s.expiry_date,
                subscriber_id=s.id,
                phone=s.phone,
            ))

    for s in expiring_soon(subscribers, today, days):
        left = days_until_expiry(s, today)
        unit = "day" if left == 1 else "days"
        out.append(Notification(
            kind="expiring",
            title="Subscription expiring soon",
            message=f"{s.name}'s subscription ends in {left} {unit}",
            date=s.expiry_date,
            subscriber_id=s.id,
            phone=s.phone,
        ))

    for s in subscribers:
        if s.status == STATUS_FROZEN:
            out.append(Notification(
                kind="frozen",
                title="Subscription frozen",
                message=f"{s.name}'s subscription is currently frozen",
                date=s.expiry_date,
                subscriber_id=s.id,
                phone=s.phone,
            ))

    return out


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DashboardStats:
    month: Optional[str]
    active_count: int = 0
    frozen_count: int = 0
    expired_count: int = 0
    total_members: int = 0              # active + frozen
    male_count: int = 0                 # non-expired only
    female_count: int = 0
    subscription_revenue: float = 0.0   # price of active + frozen
    sales_profit: float = 0.0
    sales_count: int = 0
    class_revenue: float = 0.0
    class_count: int = 0
    total_revenue: float = 0.0
    total_expenses: float = 0.0
    net_profit: float = 0.0
    inventory_value: float = 0.0        # informational, not revenue
    product_count: int = 0
    expiring_soon_count: int = 0
    total_attendance: int = 0
    average_attendance: float = 0.0
    active_rate: float = 0.0            # % of total_members
    frozen_rate: float = 0.0
    expired_rate: float = 0.0           # % of all subscribers in scope


def inventory_value(products: Iterable[Product]) -> float:
    return sum(p.purchase_price * p.quantity for p in products)


def _percent(part: int, whole: int) -> float:
    return round(part * 100.0 / whole, 1) if whole else 0.0


def compute_statistics(
    subscribers: Sequence[Subscriber],
    sales: Sequence[Sale],
    expenses: Sequence[Expense],
    classes: Sequence[IndividualClass],
    products: Sequence[Product],
    today: Any,
    month: Optional[str] = None,
    expiring_days: int = DEFAULT_EXPIRING_SOON_DAYS,
) -> DashboardStats:
    """
    Aggregate the (already month-filtered) collections. Products are the
    whole inventory: stock is not month-scoped.
    """
    active = [s for s in subscribers if s.status == STATUS_ACTIVE]
    frozen = [s for s in subscribers if s.status == STATUS_FROZEN]
    expired = [s for s in subscribers if s.status == STATUS_EXPIRED]
    members = active + frozen

    subscription_revenue = sum(s.price for s in members)
    sales_profit = sum(sale.profit for sale in sales)
    class_revenue = sum(c.price for c in classes)
    total_revenue = subscription_revenue + sales_profit + class_revenue
    total_expenses = sum(e.amount for e in expenses)

    total_attendance = sum(len(s.attendance) for s in members)
    average_attendance = round(total_attendance / len(members), 1) if members else 0.0

    return DashboardStats(
        month=month,
        active_count=len(active),
        frozen_count=len(frozen),
        expired_count=len(expired),
        total_members=len(members),
        male_count=sum(1 for s in members if s.gender == "male"),
        female_count=sum(1 for s in members if s.gender == "female"),
        subscription_revenue=subscription_revenue,
        sales_profit=sales_profit,
        sales_count=len(sales),
        class_revenue=class_revenue,
        class_count=len(classes),
        total_revenue=total_revenue,
        total_expenses=total_expenses,
        net_profit=total_revenue - total_expenses,
        inventory_value=inventory_value(products),
        product_count=len(products),
        expiring_soon_count=len(expiring_soon(subscribers, today, expiring_days)),
        total_attendance=total_attendance,
        average_attendance=average_attendance,
        active_rate=_percent(len(active), len(members)),
        frozen_rate=_percent(len(frozen), len(members)),
        expired_rate=_percent(len(expired), len(subscribers)),
    )


@dataclass(frozen=True)
class CategoryTotal:
    category: str
    total: float = 0.0
    count: int = 0
    share: float = 0.0                  # % of all expenses
    items: Tuple[Expense, ...] = field(default=(), repr=False)


def expenses_by_category(expenses: Iterable[Expense]) -> List[CategoryTotal]:
    """
    One entry per category that has expenses, in EXPENSE_CATEGORIES order.
    """
    grouped: Dict[str, List[Expense]] = defaultdict(list)
    for e in expenses:
        grouped[e.category].append(e)

    grand_total = sum(e.amount for items in grouped.values() for e in items)
    out = []
    for category in EXPENSE_CATEGORIES:
        items = grouped.get(category)
        if not items:
            continue
        total = sum(e.amount for e in items)
        out.append(CategoryTotal(
            category=category,
            total=total,
            count=len(items),
            share=round(total * 100.0 / grand_total, 1) if grand_total else 0.0,
            items=tuple(items),
        ))
    return out
