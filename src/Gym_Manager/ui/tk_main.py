"""
Gym_Manager.ui.tk_main

Tkinter desktop client for Gym Manager.

Main window:
- Subscribers list (status, expiry, attendance) for the selected month
- Add subscriber / Attendance / Freeze / Unfreeze / Renew / Delete
- Month statistics panel
- Database menu: Save now, Export, Import (destructive, confirmed),
  Export data (CSV / JSON), Monthly summary

The UI only talks to GymDataService and PersistenceAdapter; it never
runs SQL itself.
"""

from __future__ import annotations

import traceback
import tkinter as tk
from datetime import date
from pathlib import Path
from tkinter import filedialog, messagebox, simpledialog, ttk
from tkinter.scrolledtext import ScrolledText
from typing import Optional

from Gym_Manager.data.connection import DB_EXTENSION, default_export_filename
from Gym_Manager.data.persistence import PersistenceAdapter
from Gym_Manager.domain.errors import BusinessRuleError, StorageError, ValidationFailed
from Gym_Manager.main import build_services, configure_logging
from Gym_Manager.services.derived_views import days_until_expiry
from Gym_Manager.services.gym_data_service import GymDataService
from Gym_Manager.services.report_export_service import export_collection, monthly_summary

POLL_MS = 500

SUBSCRIBER_COLUMNS = (
    ("id", "ID", 50),
    ("name", "Name", 180),
    ("gender", "Gender", 70),
    ("status", "Status", 80),
    ("expiry", "Expires", 100),
    ("left", "Days left", 80),
    ("visits", "Visits", 60),
    ("debt", "Debt", 80),
    ("phone", "Phone", 120),
)


class GymManagerApp(tk.Tk):
    def __init__(self, adapter: PersistenceAdapter, service: GymDataService) -> None:
        super().__init__()
        self.title("Gym Manager")
        self.geometry("1080x760")

        self.adapter = adapter
        self.service = service
        self._changed = True

        self.month_var = tk.StringVar(value=service.current_month)
        self.status_var = tk.StringVar(value="")
        self.stats_var = tk.StringVar(value="")

        self._build_menu()
        self._build_toolbar()
        self._build_subscriber_list()
        self._build_add_panel()
        self._build_stats_panel()
        self._build_log_panel()

        # Background ticks (status refresh) only raise a flag; the Tk thread repaints
        self.service.add_change_listener(self._on_change)
        self.protocol("WM_DELETE_WINDOW", self._on_close)

        self._log("App started.")
        self.after(POLL_MS, self._poll)

    # ------------------------------------------------------------------
    # Base UI helpers
    # ------------------------------------------------------------------

    def _build_log_panel(self) -> None:
        self.log_box = ScrolledText(self, state=tk.NORMAL, height=8)
        self.log_box.pack(side=tk.BOTTOM, fill=tk.BOTH, expand=False, padx=10, pady=(0, 10))

    def _log(self, message: str) -> None:
        self.log_box.insert(tk.END, message + "\n")
        self.log_box.see(tk.END)

    def _safe_call(self, func):
        def wrapper():
            try:
                func()
            except ValidationFailed as exc:
                messagebox.showwarning("Invalid input", "\n".join(exc.errors), parent=self)
            except BusinessRuleError as exc:
                messagebox.showwarning("Not allowed", str(exc), parent=self)
                self._log(f"Refused: {exc}")
            except StorageError as exc:
                messagebox.showerror("Storage problem", str(exc), parent=self)
                self._log(f"STORAGE ERROR: {exc}")
            except Exception:
                self._log("ERROR:")
                self._log(traceback.format_exc())
        return wrapper

    def _on_change(self, change: str) -> None:
        self._changed = True

    def _poll(self) -> None:
        if self._changed:
            self._changed = False
            self.refresh()
        if self.adapter.is_degraded:
            self.status_var.set(f"⚠ Not saved: {self.adapter.degraded_reason}. Changes may be lost on exit.")
        elif self.adapter.last_saved_at is not None:
            self.status_var.set(f"Saved at {self.adapter.last_saved_at:%H:%M:%S}")
        self.after(POLL_MS, self._poll)

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def _build_menu(self) -> None:
        menubar = tk.Menu(self)

        db_menu = tk.Menu(menubar, tearoff=0)
        db_menu.add_command(label="Save now", command=self._safe_call(self._handle_save))
        db_menu.add_command(label="Export database...", command=self._safe_call(self._handle_export))
        db_menu.add_command(label="Import database...", command=self._safe_call(self._handle_import))
        db_menu.add_separator()
        db_menu.add_command(label="Exit", command=self._on_close)
        menubar.add_cascade(label="Database", menu=db_menu)

        data_menu = tk.Menu(menubar, tearoff=0)
        for name in ("subscribers", "products", "sales", "expenses", "classes"):
            data_menu.add_command(
                label=f"Export {name}...",
                command=self._safe_call(lambda n=name: self._handle_export_data(n)),
            )
        data_menu.add_separator()
        data_menu.add_command(label="Monthly summary (CSV)...", command=self._safe_call(self._handle_summary))
        menubar.add_cascade(label="Export Data", menu=data_menu)

        self.config(menu=menubar)

    def _build_toolbar(self) -> None:
        top = ttk.Frame(self, padding=10)
        top.pack(side=tk.TOP, fill=tk.X)

        ttk.Label(top, text="Gym Manager", font=("Segoe UI", 14, "bold")).pack(side=tk.LEFT)

        ttk.Label(top, textvariable=self.status_var).pack(side=tk.RIGHT)

        month_row = ttk.Frame(self, padding=(10, 0, 10, 6))
        month_row.pack(side=tk.TOP, fill=tk.X)
        ttk.Label(month_row, text="Month (YYYY-MM):").pack(side=tk.LEFT)
        ent = ttk.Entry(month_row, textvariable=self.month_var, width=10)
        ent.pack(side=tk.LEFT, padx=(8, 8))
        ent.bind("<Return>", lambda e: self._safe_call(self._apply_month)())
        ttk.Button(month_row, text="Show", command=self._safe_call(self._apply_month), width=10).pack(side=tk.LEFT)

        actions = ttk.Frame(month_row)
        actions.pack(side=tk.RIGHT)
        for text, handler in (
            ("Attendance", self._handle_attendance),
            ("Freeze", self._handle_freeze),
            ("Unfreeze", self._handle_unfreeze),
            ("Renew", self._handle_renew),
            ("Delete", self._handle_delete),
        ):
            ttk.Button(actions, text=text, command=self._safe_call(handler), width=11).pack(side=tk.LEFT, padx=2)

    def _build_subscriber_list(self) -> None:
        frame = ttk.Frame(self, padding=(10, 0, 10, 6))
        frame.pack(side=tk.TOP, fill=tk.BOTH, expand=True)

        self.tree = ttk.Treeview(frame, columns=[c for c, _, _ in SUBSCRIBER_COLUMNS], show="headings", height=14)
        for col, heading, width in SUBSCRIBER_COLUMNS:
            self.tree.heading(col, text=heading)
            self.tree.column(col, width=width, anchor=tk.W)

        scrollbar = ttk.Scrollbar(frame, orient=tk.VERTICAL, command=self.tree.yview)
        self.tree.configure(yscrollcommand=scrollbar.set)
        self.tree.grid(row=0, column=0, sticky="nsew")
        scrollbar.grid(row=0, column=1, sticky="ns")
        frame.rowconfigure(0, weight=1)
        frame.columnconfigure(0, weight=1)

    def _build_add_panel(self) -> None:
        panel = ttk.LabelFrame(self, text="Add Subscriber", padding=8)
        panel.pack(side=tk.TOP, fill=tk.X, padx=10, pady=(0, 6))

        self.add_vars = {
            "name": tk.StringVar(),
            "phone": tk.StringVar(),
            "gender": tk.StringVar(value="male"),
            "subscription_duration": tk.StringVar(value="30"),
            "price": tk.StringVar(),
            "height": tk.StringVar(),
            "weight": tk.StringVar(),
        }
        labels = (
            ("name", "Name", 20),
            ("phone", "Phone", 14),
            ("subscription_duration", "Days", 6),
            ("price", "Price", 8),
            ("height", "Height cm", 6),
            ("weight", "Weight kg", 6),
        )
        col = 0
        for key, text, width in labels:
            ttk.Label(panel, text=text).grid(row=0, column=col, sticky="w", padx=(0, 4))
            ttk.Entry(panel, textvariable=self.add_vars[key], width=width).grid(row=0, column=col + 1, padx=(0, 10))
            col += 2

        ttk.Combobox(
            panel, textvariable=self.add_vars["gender"], values=("male", "female"), width=8, state="readonly"
        ).grid(row=0, column=col, padx=(0, 10))
        ttk.Button(panel, text="Add", command=self._safe_call(self._handle_add), width=10).grid(row=0, column=col + 1)

    def _build_stats_panel(self) -> None:
        panel = ttk.LabelFrame(self, text="Statistics", padding=8)
        panel.pack(side=tk.TOP, fill=tk.X, padx=10, pady=(0, 6))
        ttk.Label(panel, textvariable=self.stats_var, justify=tk.LEFT, font=("Consolas", 10)).pack(anchor="w")

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self) -> None:
        today = self.service.today()
        self.tree.delete(*self.tree.get_children())
        for s in self.service.filtered_subscribers():
            self.tree.insert(
                "",
                tk.END,
                iid=str(s.id),
                values=(
                    s.id,
                    s.name,
                    s.gender,
                    s.status,
                    s.expiry_date,
                    days_until_expiry(s, today),
                    len(s.attendance),
                    f"{s.debt:.2f}",
                    s.phone or "",
                ),
            )

        st = self.service.statistics()
        self.stats_var.set(
            f"Active {st.active_count}   Frozen {st.frozen_count}   Expired {st.expired_count}   "
            f"Male {st.male_count}   Female {st.female_count}   Expiring soon {st.expiring_soon_count}\n"
            f"Subscriptions {st.subscription_revenue:.2f}   Sales profit {st.sales_profit:.2f}   "
            f"Classes {st.class_revenue:.2f}   Revenue {st.total_revenue:.2f}\n"
            f"Expenses {st.total_expenses:.2f}   Net profit {st.net_profit:.2f}   "
            f"Inventory value {st.inventory_value:.2f}   Avg attendance {st.average_attendance:.1f}"
        )

    def _selected_id(self) -> Optional[int]:
        sel = self.tree.selection()
        if not sel:
            self._log("Select a subscriber first.")
            return None
        return int(sel[0])

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _apply_month(self) -> None:
        self.service.current_month = (self.month_var.get() or "").strip() or None
        self.month_var.set(self.service.current_month)

    def _handle_add(self) -> None:
        fields = {key: (var.get() or "").strip() or None for key, var in self.add_vars.items()}
        sub = self.service.add_subscriber(fields)
        self._log(f"Added {sub.name} (id={sub.id}), expires {sub.expiry_date}.")
        for key in ("name", "phone", "price", "height", "weight"):
            self.add_vars[key].set("")

    def _handle_attendance(self) -> None:
        sid = self._selected_id()
        if sid is None:
            return
        raw = simpledialog.askstring("Attendance", "Training types (comma separated):", parent=self)
        if raw is None:
            return
        sub = self.service.record_attendance(sid, [t for t in raw.split(",") if t.strip()])
        self._log(f"Attendance recorded for {sub.name} ({len(sub.attendance)} visits).")

    def _handle_freeze(self) -> None:
        sid = self._selected_id()
        if sid is not None:
            self._log(f"Frozen: {self.service.freeze_subscriber(sid).name}")

    def _handle_unfreeze(self) -> None:
        sid = self._selected_id()
        if sid is not None:
            sub = self.service.unfreeze_subscriber(sid)
            self._log(f"Unfrozen: {sub.name} (now {sub.status})")

    def _handle_renew(self) -> None:
        sid = self._selected_id()
        if sid is None:
            return
        days = simpledialog.askinteger("Renew", "Subscription days:", initialvalue=30, minvalue=1, parent=self)
        if days is None:
            return
        sub = self.service.renew_subscriber(sid, subscription_duration=days)
        self._log(f"Renewed {sub.name} until {sub.expiry_date}.")

    def _handle_delete(self) -> None:
        sid = self._selected_id()
        if sid is None:
            return
        sub = self.service.get_subscriber(sid)
        if sub is None:
            return
        if not messagebox.askyesno("Delete", f"Delete {sub.name} and their attendance history?", parent=self):
            return
        self.service.delete_subscriber(sid)
        self._log(f"Deleted {sub.name}.")

    def _handle_save(self) -> None:
        if self.adapter.save():
            self._log("Database saved.")
        else:
            self._log(f"Save failed: {self.adapter.degraded_reason or 'storage unavailable'}")

    def _handle_export(self) -> None:
        path = filedialog.asksaveasfilename(
            parent=self,
            title="Export database",
            initialfile=default_export_filename(date.today()),
            defaultextension=f".{DB_EXTENSION}",
            filetypes=[("SQLite database", f"*.{DB_EXTENSION}"), ("All files", "*.*")],
        )
        if not path:
            return
        target = self.adapter.export(Path(path))
        self._log(f"Exported database to {target}")

    def _handle_import(self) -> None:
        path = filedialog.askopenfilename(
            parent=self,
            title="Import database",
            filetypes=[("SQLite database", f"*.{DB_EXTENSION}"), ("All files", "*.*")],
        )
        if not path:
            return
        if not messagebox.askyesno(
            "Import database",
            "This replaces ALL current data with the selected file and cannot be undone.\n\nContinue?",
            icon=messagebox.WARNING,
            parent=self,
        ):
            return
        self.adapter.import_file(Path(path))
        self.month_var.set(self.service.current_month)
        self._log(f"Imported database from {path}")

    def _handle_export_data(self, name: str) -> None:
        path = filedialog.asksaveasfilename(
            parent=self,
            title=f"Export {name}",
            initialfile=f"{name}_{date.today().isoformat()}.csv",
            defaultextension=".csv",
            filetypes=[("CSV Files", "*.csv"), ("JSON Files", "*.json")],
        )
        if not path:
            return
        target = export_collection(self.service, name, Path(path))
        self._log(f"Exported {name} to {target}")

    def _handle_summary(self) -> None:
        path = filedialog.asksaveasfilename(
            parent=self,
            title="Monthly summary",
            initialfile=f"monthly_summary_{date.today().isoformat()}.csv",
            defaultextension=".csv",
            filetypes=[("CSV Files", "*.csv")],
        )
        if not path:
            return
        monthly_summary(self.service).to_csv(path, index=False)
        self._log(f"Monthly summary written to {path}")

    def _on_close(self) -> None:
        self.service.remove_change_listener(self._on_change)
        self.service.shutdown()
        self.destroy()


def main() -> None:
    configure_logging()
    adapter, service = build_services()
    app = GymManagerApp(adapter, service)
    app.mainloop()


if __name__ == "__main__":
    main()
