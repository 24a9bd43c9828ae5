"""SQLite credit ledger: per-user balances and an append-only transaction log."""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from bananalab.core.errors import InvalidPackError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditPack:
    id: str
    credits: int
    price_jpy: int
    bonus_percent: int = 0


# Larger packs include bonus credits on top of their base amount.
CREDIT_PACKS: dict[str, CreditPack] = {
    "small": CreditPack(id="small", credits=50, price_jpy=500),
    "pro": CreditPack(id="pro", credits=220, price_jpy=1800, bonus_percent=10),
    "studio": CreditPack(id="studio", credits=720, price_jpy=4800, bonus_percent=20),
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CreditLedger:
    """Manage credit balances using SQLite.

    Every balance change is written together with a row in
    ``credit_transactions`` inside one transaction, so the ledger always sums
    to the current balance.  Users are provisioned lazily with
    ``initial_credits`` the first time they are seen.
    """

    def __init__(self, db_path: Path, initial_credits: int = 25):
        """Initialize the ledger database.

        Args:
            db_path: Path to SQLite database file
            initial_credits: Balance granted to new users
        """
        self.db_path = Path(db_path)
        self.initial_credits = initial_credits
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()
        logger.info(f"Initialized credit ledger at {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=10)

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with self._connect() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    credits INTEGER NOT NULL CHECK (credits >= 0),
                    created_at TEXT NOT NULL
                )
                """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS credit_transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL REFERENCES users(id),
                    amount INTEGER NOT NULL,
                    reason TEXT NOT NULL,
                    reference TEXT,
                    created_at TEXT NOT NULL
                )
                """)

            # A generation can be charged at most once.
            cursor.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_generation_charge
                ON credit_transactions(reference) WHERE reason = 'generation'
                """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_transactions_user
                ON credit_transactions(user_id, id DESC)
                """)

            conn.commit()

    def _ensure_user(self, conn: sqlite3.Connection, user_id: str) -> None:
        cursor = conn.execute(
            "INSERT OR IGNORE INTO users (id, credits, created_at) VALUES (?, ?, ?)",
            (user_id, self.initial_credits, _now()),
        )
        if cursor.rowcount:
            conn.execute(
                "INSERT INTO credit_transactions (user_id, amount, reason, reference, created_at) "
                "VALUES (?, ?, 'signup', NULL, ?)",
                (user_id, self.initial_credits, _now()),
            )
            logger.info(f"Provisioned user {user_id} with {self.initial_credits} credits")

    def get_balance(self, user_id: str) -> int:
        """Return the user's balance, provisioning unknown users."""
        with self._connect() as conn:
            self._ensure_user(conn, user_id)
            row = conn.execute("SELECT credits FROM users WHERE id = ?", (user_id,)).fetchone()
            return row[0]

    def use_credits(self, user_id: str, amount: int, generation_id: str) -> bool:
        """Atomically debit credits for a generation.

        The debit is a single conditional ``UPDATE`` so two concurrent
        requests can never drive the balance below zero.  Charging the same
        ``generation_id`` twice is a no-op that reports success.

        Args:
            user_id: User to charge.
            amount: Credits to debit (must be positive).
            generation_id: Job id the charge belongs to.

        Returns:
            ``True`` if the credits were debited (or already had been),
            ``False`` if the balance is insufficient.
        """
        if amount <= 0:
            raise ValueError("amount must be positive")

        with self._connect() as conn:
            self._ensure_user(conn, user_id)

            already_charged = conn.execute(
                "SELECT 1 FROM credit_transactions WHERE reason = 'generation' AND reference = ?",
                (generation_id,),
            ).fetchone()
            if already_charged:
                logger.info(f"Generation {generation_id} already charged")
                return True

            cursor = conn.execute(
                "UPDATE users SET credits = credits - ? WHERE id = ? AND credits >= ?",
                (amount, user_id, amount),
            )
            if cursor.rowcount == 0:
                logger.info(f"Insufficient credits for {user_id}: {amount} required")
                return False

            conn.execute(
                "INSERT INTO credit_transactions (user_id, amount, reason, reference, created_at) "
                "VALUES (?, ?, 'generation', ?, ?)",
                (user_id, -amount, generation_id, _now()),
            )
            conn.commit()

        logger.info(f"Charged {amount} credits to {user_id} for {generation_id}")
        return True

    def purchase(self, user_id: str, pack: str) -> int:
        """Add a credit pack to the user's balance.

        Returns:
            The new balance.

        Raises:
            InvalidPackError: Unknown pack id.
        """
        credit_pack = CREDIT_PACKS.get(pack)
        if credit_pack is None:
            raise InvalidPackError(pack)

        with self._connect() as conn:
            self._ensure_user(conn, user_id)
            conn.execute(
                "UPDATE users SET credits = credits + ? WHERE id = ?",
                (credit_pack.credits, user_id),
            )
            conn.execute(
                "INSERT INTO credit_transactions (user_id, amount, reason, reference, created_at) "
                "VALUES (?, ?, 'purchase', ?, ?)",
                (user_id, credit_pack.credits, pack, _now()),
            )
            conn.commit()
            balance = conn.execute(
                "SELECT credits FROM users WHERE id = ?", (user_id,)
            ).fetchone()[0]

        logger.info(f"User {user_id} purchased pack {pack} (+{credit_pack.credits})")
        return balance

    def transactions(self, user_id: str, limit: int = 100) -> list[dict]:
        """Return the user's ledger rows, newest first."""
        with self._connect() as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                "SELECT id, amount, reason, reference, created_at FROM credit_transactions "
                "WHERE user_id = ? ORDER BY id DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
            return [dict(row) for row in rows]
