from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Any, Protocol

from habitquest.db_converters import _row_to_transaction
from habitquest.db_models import GoldTransaction, LedgerResult
from habitquest.db_repo.base import new_id


class DbProtocol(Protocol):
    def _connect(self) -> sqlite3.Connection: ...


def apply_gold_change(
    conn: sqlite3.Connection,
    user_id: str,
    amount: int,
    transaction_type: str,
    reference_id: str | None,
    metadata: dict[str, Any] | None,
    now: datetime,
) -> LedgerResult:
    """Balance update plus journal entry on an already write-locked connection."""
    row = conn.execute("SELECT gold FROM profiles WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        return LedgerResult(success=False, new_balance=0, transaction_id=None)
    current = int(row["gold"])
    new_balance = current + amount
    if new_balance < 0:
        return LedgerResult(success=False, new_balance=current, transaction_id=None)

    conn.execute(
        "UPDATE profiles SET gold = ?, updated_at = ? WHERE id = ?",
        (new_balance, now.isoformat(), user_id),
    )
    transaction_id = new_id()
    conn.execute(
        """
        INSERT INTO gold_transactions(id, user_id, amount, transaction_type, reference_id, metadata, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            transaction_id,
            user_id,
            amount,
            transaction_type,
            reference_id,
            json.dumps(metadata) if metadata is not None else None,
            now.isoformat(),
        ),
    )
    return LedgerResult(success=True, new_balance=new_balance, transaction_id=transaction_id)


class LedgerMixin:
    def adjust_currency(
        self: DbProtocol,
        user_id: str,
        amount: int,
        transaction_type: str,
        reference_id: str | None,
        metadata: dict[str, Any] | None,
        now: datetime,
    ) -> LedgerResult:
        """Apply a signed gold change and append its journal entry.

        The balance read, the floor check, the balance write and the entry
        insert share one write-locked transaction. A change that would take
        the balance below zero writes nothing.
        """
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            return apply_gold_change(conn, user_id, amount, transaction_type, reference_id, metadata, now)

    def list_transactions(self: DbProtocol, user_id: str, limit: int = 50) -> list[GoldTransaction]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM gold_transactions
                WHERE user_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()
        return [_row_to_transaction(r) for r in rows]

    def ledger_total(self: DbProtocol, user_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COALESCE(SUM(amount), 0) AS total FROM gold_transactions WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return int(row["total"]) if row else 0
