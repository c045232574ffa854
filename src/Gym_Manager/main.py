"""
Gym_Manager.main

Application wiring (logging, config, persistence, data service) and a
simple smoke-test harness for the Gym Manager backend.

Run from project root with:
    python -m Gym_Manager.main
"""

from __future__ import annotations

import logging
import tempfile
from datetime import date
from pathlib import Path
from pprint import pprint
from typing import Optional, Tuple

from Gym_Manager.config_store import AppConfig, get_data_dir, get_log_level, load_config
from Gym_Manager.data.persistence import PersistenceAdapter
from Gym_Manager.data.storage import FileImageStorage, storage_for_backend
from Gym_Manager.domain.errors import BusinessRuleError
from Gym_Manager.services.gym_data_service import GymDataService
from Gym_Manager.services.report_export_service import monthly_summary

log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    level_name = (level or get_log_level()).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)


def build_services(
    cfg: Optional[AppConfig] = None,
    base_dir: Optional[Path] = None,
    start_background: bool = True,
) -> Tuple[PersistenceAdapter, GymDataService]:
    """
    Open (or create) the database image for the current environment and
    return the ready adapter and data service.
    """
    data_dir = get_data_dir(base_dir)
    cfg = cfg or load_config(data_dir)
    storage = storage_for_backend(cfg.storage_backend, data_dir)

    adapter = PersistenceAdapter(
        storage,
        autosave_interval=cfg.autosave_interval_seconds if start_background else None,
    )
    adapter.initialize()
    log.info("Database image: %s", storage.describe())

    service = GymDataService(adapter, expiring_soon_days=cfg.expiring_soon_days)
    if start_background:
        service.start_status_refresh(cfg.status_refresh_interval_seconds)
    return adapter, service


def run_smoke_test() -> None:
    configure_logging("WARNING")
    print("=== Gym Manager smoke test starting ===")

    with tempfile.TemporaryDirectory() as tmp:
        tmp_dir = Path(tmp)

        # 1) Fresh image on disk
        print("[1] Initializing database image...")
        adapter = PersistenceAdapter(FileImageStorage(tmp_dir / "gym_database.sqlite"), autosave_interval=None)
        adapter.initialize()
        service = GymDataService(adapter)
        print(f"    ✔ Image ready ({adapter.storage.describe()}).\n")

        # 2) Enroll a subscriber
        print("[2] Adding a subscriber...")
        ali = service.add_subscriber({
            "name": "Ali",
            "subscription_date": date.today().isoformat(),
            "subscription_duration": 30,
            "price": 2500,
            "height": 180,
            "weight": 75,
        })
        pprint(ali)
        print()

        # 3) Attendance, twice on the same day
        print("[3] Recording attendance...")
        service.record_attendance(ali.id, ["chest"])
        try:
            service.record_attendance(ali.id, ["back"])
        except BusinessRuleError as exc:
            print(f"    ✔ Second record refused: {exc}")
        print()

        # 4) Inventory and a sale
        print("[4] Adding a product and selling it...")
        water = service.add_product({
            "name": "Water 1.5L",
            "quantity": 3,
            "purchase_price": 40,
            "selling_price": 60,
        })
        sale = service.sell_product(water.id, 2)
        print(f"    ✔ Sold {sale.quantity_sold} x {sale.product_name}, profit {sale.profit:.2f}")
        try:
            service.sell_product(water.id, 5)
        except BusinessRuleError as exc:
            print(f"    ✔ Oversell refused: {exc}")
        print()

        # 5) Freeze and statistics
        print("[5] Freezing subscriber and computing statistics...")
        service.freeze_subscriber(ali.id)
        pprint(service.statistics())
        print()

        # 6) Export / import round trip
        print("[6] Export -> import round trip...")
        exported = adapter.export(tmp_dir)
        before = service.list_subscribers()
        adapter.import_file(exported)
        same = before == service.list_subscribers()
        print(f"    ✔ Exported to {exported.name}; cache identical after import: {same}")
        print()

        print("[7] Monthly summary:")
        print(monthly_summary(service).to_string(index=False))
        print()

        adapter.shutdown()

    print("=== Smoke test complete ===")


if __name__ == "__main__":
    run_smoke_test()
