from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Any

from commission_flow.models import (
    FallbackEntry,
    POItem,
    POStatus,
    PurchaseOrder,
    SaleOrder,
    SOItem,
    SOItemStatus,
    SOStatus,
)


def get_conn(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path) -> None:
    with get_conn(db_path) as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS purchase_orders (
                po_id TEXT PRIMARY KEY,
                vendor_id TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS po_items (
                po_id TEXT NOT NULL,
                sku_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                sku_name TEXT NOT NULL,
                po_qty INTEGER NOT NULL,
                labour_cost_per_box REAL NOT NULL,
                transport_cost_per_box REAL NOT NULL,
                e_pp REAL,
                tentative_a_pp REAL,
                actual_seller_patty_price REAL,
                PRIMARY KEY (po_id, sku_id),
                FOREIGN KEY (po_id) REFERENCES purchase_orders(po_id)
            );

            CREATE TABLE IF NOT EXISTS sale_orders (
                so_id TEXT PRIMARY KEY,
                po_id TEXT,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS so_items (
                so_id TEXT NOT NULL,
                sku_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                sku_name TEXT NOT NULL,
                so_qty INTEGER NOT NULL,
                e_sp REAL,
                a_sp REAL,
                status TEXT NOT NULL,
                PRIMARY KEY (so_id, sku_id),
                FOREIGN KEY (so_id) REFERENCES sale_orders(so_id)
            );

            CREATE TABLE IF NOT EXISTS fallback_entries (
                po_id TEXT NOT NULL,
                sku_id TEXT NOT NULL,
                fallback_qty INTEGER NOT NULL,
                fallback_a_sp_per_box REAL NOT NULL,
                PRIMARY KEY (po_id, sku_id)
            );

            CREATE INDEX IF NOT EXISTS idx_sale_orders_po_id ON sale_orders(po_id);
            """
        )


def _po_from_rows(row: sqlite3.Row, item_rows: list[sqlite3.Row]) -> PurchaseOrder:
    return PurchaseOrder(
        id=row["po_id"],
        vendor_id=row["vendor_id"],
        status=POStatus(row["status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        items=[
            POItem(
                sku_id=r["sku_id"],
                sku_name=r["sku_name"],
                po_qty=int(r["po_qty"]),
                labour_cost_per_box=float(r["labour_cost_per_box"]),
                transport_cost_per_box=float(r["transport_cost_per_box"]),
                e_pp=r["e_pp"],
                tentative_a_pp=r["tentative_a_pp"],
                actual_seller_patty_price=r["actual_seller_patty_price"],
            )
            for r in item_rows
        ],
    )


def _so_from_rows(row: sqlite3.Row, item_rows: list[sqlite3.Row]) -> SaleOrder:
    return SaleOrder(
        id=row["so_id"],
        po_id=row["po_id"],
        status=SOStatus(row["status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        items=[
            SOItem(
                sku_id=r["sku_id"],
                sku_name=r["sku_name"],
                so_qty=int(r["so_qty"]),
                e_sp=r["e_sp"],
                a_sp=r["a_sp"],
                status=SOItemStatus(r["status"]),
            )
            for r in item_rows
        ],
    )


class SqliteRepository:
    """Repository over one SQLite file. Schema is created on first use, not on construction."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._ready = False
        self._init_lock = threading.Lock()

    def _conn(self) -> sqlite3.Connection:
        if not self._ready:
            with self._init_lock:
                if not self._ready:
                    init_db(self.db_path)
                    self._ready = True
        return get_conn(self.db_path)

    def get_po(self, po_id: str) -> PurchaseOrder | None:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT po_id, vendor_id, status, created_at, updated_at FROM purchase_orders WHERE po_id = ?",
                (po_id,),
            ).fetchone()
            if row is None:
                return None
            items = conn.execute(
                "SELECT * FROM po_items WHERE po_id = ? ORDER BY position ASC",
                (po_id,),
            ).fetchall()
            return _po_from_rows(row, items)

    def list_pos(self) -> list[PurchaseOrder]:
        with self._conn() as conn:
            ids = [r["po_id"] for r in conn.execute("SELECT po_id FROM purchase_orders ORDER BY created_at, po_id")]
        return [po for po in (self.get_po(i) for i in ids) if po is not None]

    def save_po(self, po: PurchaseOrder) -> PurchaseOrder:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO purchase_orders(po_id, vendor_id, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(po_id) DO UPDATE SET
                    vendor_id=excluded.vendor_id,
                    status=excluded.status,
                    updated_at=excluded.updated_at
                """,
                (po.id, po.vendor_id, po.status.value, po.created_at, po.updated_at),
            )
            conn.execute("DELETE FROM po_items WHERE po_id = ?", (po.id,))
            for position, item in enumerate(po.items):
                conn.execute(
                    """
                    INSERT INTO po_items(
                        po_id, sku_id, position, sku_name, po_qty,
                        labour_cost_per_box, transport_cost_per_box,
                        e_pp, tentative_a_pp, actual_seller_patty_price
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        po.id,
                        item.sku_id,
                        position,
                        item.sku_name,
                        item.po_qty,
                        item.labour_cost_per_box,
                        item.transport_cost_per_box,
                        item.e_pp,
                        item.tentative_a_pp,
                        item.actual_seller_patty_price,
                    ),
                )
        return po

    def get_so(self, so_id: str) -> SaleOrder | None:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT so_id, po_id, status, created_at, updated_at FROM sale_orders WHERE so_id = ?",
                (so_id,),
            ).fetchone()
            if row is None:
                return None
            items = conn.execute(
                "SELECT * FROM so_items WHERE so_id = ? ORDER BY position ASC",
                (so_id,),
            ).fetchall()
            return _so_from_rows(row, items)

    def _list_so_ids(self, po_id: str | None = None) -> list[str]:
        with self._conn() as conn:
            if po_id is None:
                rows = conn.execute("SELECT so_id FROM sale_orders ORDER BY created_at, so_id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT so_id FROM sale_orders WHERE po_id = ? ORDER BY created_at, so_id",
                    (po_id,),
                ).fetchall()
            return [str(r["so_id"]) for r in rows]

    def list_sos(self) -> list[SaleOrder]:
        return [so for so in (self.get_so(i) for i in self._list_so_ids()) if so is not None]

    def list_sos_for_po(self, po_id: str) -> list[SaleOrder]:
        return [so for so in (self.get_so(i) for i in self._list_so_ids(po_id)) if so is not None]

    def save_so(self, so: SaleOrder) -> SaleOrder:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO sale_orders(so_id, po_id, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(so_id) DO UPDATE SET
                    po_id=excluded.po_id,
                    status=excluded.status,
                    updated_at=excluded.updated_at
                """,
                (so.id, so.po_id, so.status.value, so.created_at, so.updated_at),
            )
            conn.execute("DELETE FROM so_items WHERE so_id = ?", (so.id,))
            for position, item in enumerate(so.items):
                conn.execute(
                    """
                    INSERT INTO so_items(so_id, sku_id, position, sku_name, so_qty, e_sp, a_sp, status)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        so.id,
                        item.sku_id,
                        position,
                        item.sku_name,
                        item.so_qty,
                        item.e_sp,
                        item.a_sp,
                        item.status.value,
                    ),
                )
        return so

    def get_fallback(self, po_id: str, sku_id: str) -> FallbackEntry | None:
        with self._conn() as conn:
            row = conn.execute(
                """
                SELECT sku_id, fallback_qty, fallback_a_sp_per_box
                FROM fallback_entries
                WHERE po_id = ? AND sku_id = ?
                """,
                (po_id, sku_id),
            ).fetchone()
            return None if row is None else FallbackEntry.from_dict(dict(row))

    def list_fallbacks(self, po_id: str) -> list[FallbackEntry]:
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT sku_id, fallback_qty, fallback_a_sp_per_box
                FROM fallback_entries
                WHERE po_id = ?
                ORDER BY sku_id ASC
                """,
                (po_id,),
            ).fetchall()
            return [FallbackEntry.from_dict(dict(r)) for r in rows]

    def save_fallbacks(self, po_id: str, entries: list[FallbackEntry]) -> list[FallbackEntry]:
        # one transaction: the connection context manager commits or rolls back the batch
        with self._conn() as conn:
            for entry in entries:
                conn.execute(
                    """
                    INSERT INTO fallback_entries(po_id, sku_id, fallback_qty, fallback_a_sp_per_box)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(po_id, sku_id) DO UPDATE SET
                        fallback_qty=excluded.fallback_qty,
                        fallback_a_sp_per_box=excluded.fallback_a_sp_per_box
                    """,
                    (po_id, entry.sku_id, entry.fallback_qty, entry.fallback_a_sp_per_box),
                )
        return entries


def storage_counts(db_path: Path) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        row = conn.execute(
            """
            SELECT
                (SELECT COUNT(*) FROM purchase_orders) AS purchase_orders,
                (SELECT COUNT(*) FROM sale_orders) AS sale_orders,
                (SELECT COUNT(*) FROM fallback_entries) AS fallback_entries
            """
        ).fetchone()
        return {k: int(row[k] or 0) for k in row.keys()}
