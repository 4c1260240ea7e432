from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Protocol

from habitquest.db_constants import PURCHASE_TRANSACTION
from habitquest.db_converters import _row_to_equipment
from habitquest.db_models import EQUIPMENT_SLOTS, EquipmentItem, PurchaseResult, PurchaseStatus
from habitquest.db_repo.ledger import apply_gold_change


class DbProtocol(Protocol):
    def _connect(self) -> sqlite3.Connection: ...


class EquipmentMixin:
    def add_equipment(
        self: DbProtocol,
        item_id: str,
        name: str,
        slot: str,
        xp_multiplier: float,
        now: datetime,
        gold_cost: int = 0,
        level_required: int = 1,
        rarity: str | None = "common",
        description: str | None = None,
    ) -> EquipmentItem:
        if slot not in EQUIPMENT_SLOTS:
            raise ValueError(f"Unknown equipment slot: {slot}")
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO equipment_catalog(
                    id, name, type, description, xp_multiplier, gold_cost, level_required, rarity, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (item_id, name, slot, description, xp_multiplier, gold_cost, level_required, rarity, now.isoformat()),
            )
            row = conn.execute("SELECT * FROM equipment_catalog WHERE id = ?", (item_id,)).fetchone()
        item = _row_to_equipment(row)
        assert item is not None
        return item

    def get_equipment(self: DbProtocol, item_id: str) -> EquipmentItem | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM equipment_catalog WHERE id = ?", (item_id,)).fetchone()
        return _row_to_equipment(row) if row else None

    def owns_equipment(self: DbProtocol, user_id: str, item_id: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM user_equipment WHERE user_id = ? AND item_id = ?",
                (user_id, item_id),
            ).fetchone()
        return row is not None

    def list_owned_equipment(self: DbProtocol, user_id: str) -> list[EquipmentItem]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT c.* FROM user_equipment u
                JOIN equipment_catalog c ON c.id = u.item_id
                WHERE u.user_id = ?
                ORDER BY u.acquired_at ASC, c.id ASC
                """,
                (user_id,),
            ).fetchall()
        return [item for item in (_row_to_equipment(r) for r in rows) if item is not None]

    def purchase_equipment(self: DbProtocol, user_id: str, item_id: str, gold_cost: int, now: datetime) -> PurchaseResult:
        """Debit ``gold_cost`` and record ownership in one write-locked transaction.

        Nothing is written when the item is already owned or the balance is short.
        """
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            owned = conn.execute(
                "SELECT 1 FROM user_equipment WHERE user_id = ? AND item_id = ?",
                (user_id, item_id),
            ).fetchone()
            if owned is not None:
                row = conn.execute("SELECT gold FROM profiles WHERE id = ?", (user_id,)).fetchone()
                return PurchaseResult(PurchaseStatus.ALREADY_OWNED, int(row["gold"]) if row else 0, None)

            ledger = apply_gold_change(
                conn,
                user_id,
                -gold_cost,
                PURCHASE_TRANSACTION,
                item_id,
                {"item_id": item_id, "gold_cost": gold_cost},
                now,
            )
            if not ledger.success:
                exists = conn.execute("SELECT 1 FROM profiles WHERE id = ?", (user_id,)).fetchone()
                status = PurchaseStatus.INSUFFICIENT_GOLD if exists else PurchaseStatus.NO_PROFILE
                return PurchaseResult(status, ledger.new_balance, None)

            conn.execute(
                "INSERT INTO user_equipment(user_id, item_id, acquired_at) VALUES (?, ?, ?)",
                (user_id, item_id, now.isoformat()),
            )
        return PurchaseResult(PurchaseStatus.PURCHASED, ledger.new_balance, ledger.transaction_id)

    def equip_item(self: DbProtocol, user_id: str, item_id: str | None, slot: str, now: datetime) -> bool:
        if slot not in EQUIPMENT_SLOTS:
            raise ValueError(f"Unknown equipment slot: {slot}")
        with self._connect() as conn:
            if item_id is not None:
                row = conn.execute("SELECT type FROM equipment_catalog WHERE id = ?", (item_id,)).fetchone()
                if row is None or row["type"] != slot:
                    return False
            cur = conn.execute(
                f"UPDATE profiles SET equipped_{slot} = ?, updated_at = ? WHERE id = ?",
                (item_id, now.isoformat(), user_id),
            )
        return cur.rowcount > 0
