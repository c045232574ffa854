"""
Gym_Manager.services.report_export_service

Tabular exports of the cached collections (the "Export Data" menu):
CSV / JSON files built with pandas, plus a month-by-month money summary.

Read-only: works on snapshots handed out by GymDataService and never
writes to the database image.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from Gym_Manager.domain.models import Expense, IndividualClass, Product, Sale, Subscriber
from Gym_Manager.services.derived_views import bucket_by_month, compute_statistics

log = logging.getLogger(__name__)

SUMMARY_COLUMNS = [
    "month",
    "subscription_revenue",
    "sales_profit",
    "class_revenue",
    "total_revenue",
    "expenses",
    "net_profit",
]

# name -> (entity type, how to read the collection off the service)
COLLECTIONS: Dict[str, Any] = {
    "subscribers": (Subscriber, lambda svc: svc.list_subscribers()),
    "products": (Product, lambda svc: svc.list_products()),
    "sales": (Sale, lambda svc: svc.list_sales()),
    "expenses": (Expense, lambda svc: svc.list_expenses()),
    "classes": (IndividualClass, lambda svc: svc.list_classes()),
}


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------


def _entity_row(entity: Any) -> Dict[str, Any]:
    row = asdict(entity)
    attendance = row.pop("attendance", None)
    if attendance is not None:
        # Nested records flattened to something a spreadsheet can hold
        row["attendance_count"] = len(attendance)
        row["attendance_dates"] = ";".join(a["date"] for a in attendance)
    return row


def _columns_for(entity_type: Optional[type]) -> List[str]:
    if entity_type is None or not is_dataclass(entity_type):
        return []
    names = [f.name for f in fields(entity_type)]
    if "attendance" in names:
        names.remove("attendance")
        names += ["attendance_count", "attendance_dates"]
    return names


def entities_to_frame(entities: Iterable[Any], entity_type: Optional[type] = None) -> pd.DataFrame:
    """
    One row per dataclass. An empty input still yields the right columns
    when entity_type is given.
    """
    rows = [_entity_row(e) for e in entities]
    if not rows:
        return pd.DataFrame(columns=_columns_for(entity_type))
    return pd.DataFrame(rows)


def entities_to_csv_bytes(entities: Iterable[Any], entity_type: Optional[type] = None) -> bytes:
    df = entities_to_frame(entities, entity_type)
    return df.to_csv(index=False).encode("utf-8")


def export_entities_csv(entities: Iterable[Any], path: Path, entity_type: Optional[type] = None) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    df = entities_to_frame(entities, entity_type)
    df.to_csv(target, index=False, encoding="utf-8")
    log.info("Exported %d rows to %s", len(df), target)
    return target


def export_entities_json(entities: Iterable[Any], path: Path, entity_type: Optional[type] = None) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    df = entities_to_frame(entities, entity_type)
    df.to_json(target, orient="records", indent=2, force_ascii=False)
    log.info("Exported %d rows to %s", len(df), target)
    return target


def export_collection(service, name: str, path: Path) -> Path:
    """
    Export one named collection; the file suffix (.csv / .json) picks the format.
    """
    if name not in COLLECTIONS:
        raise ValueError(f"Unknown collection {name!r}; expected one of {', '.join(COLLECTIONS)}")
    entity_type, read = COLLECTIONS[name]
    target = Path(path)
    suffix = target.suffix.lower()
    if suffix == ".json":
        return export_entities_json(read(service), target, entity_type)
    if suffix == ".csv":
        return export_entities_csv(read(service), target, entity_type)
    raise ValueError(f"Unsupported export format {suffix or '(none)'}; use .csv or .json")


# ---------------------------------------------------------------------------
# Monthly summary
# ---------------------------------------------------------------------------


def monthly_summary(service) -> pd.DataFrame:
    """
    One row per month that has any activity, newest first, using the same
    formulas as the dashboard statistics.
    """
    subs = bucket_by_month(service.list_subscribers(), "subscription_date")
    sales = bucket_by_month(service.list_sales(), "sale_date")
    expenses = bucket_by_month(service.list_expenses(), "date")
    classes = bucket_by_month(service.list_classes(), "date")

    months = sorted(set(subs) | set(sales) | set(expenses) | set(classes), reverse=True)
    if not months:
        return pd.DataFrame(columns=SUMMARY_COLUMNS)

    today = service.today()
    rows = []
    for month in months:
        stats = compute_statistics(
            subscribers=subs.get(month, []),
            sales=sales.get(month, []),
            expenses=expenses.get(month, []),
            classes=classes.get(month, []),
            products=[],
            today=today,
            month=month,
        )
        rows.append({
            "month": month,
            "subscription_revenue": stats.subscription_revenue,
            "sales_profit": stats.sales_profit,
            "class_revenue": stats.class_revenue,
            "total_revenue": stats.total_revenue,
            "expenses": stats.total_expenses,
            "net_profit": stats.net_profit,
        })
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
