"""
SQLite persistence for FarmFlow ledger state.

Stores the emission schedule, pools, positions, lock buckets, running
totals and the event log so a ledger can be rebuilt after restart.
Amounts are u256 and exceed SQLite's 64-bit INTEGER, so they are kept as
decimal TEXT and converted back with ``int()`` on load.

Usage:
    store = LedgerStore("data/farmflow.db")
    store.save_ledger(ledger)
    ...
    snapshot = store.load_snapshot()
    ledger = StakingLedger.from_snapshot(snapshot, reward_token, stake_tokens)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

logger = logging.getLogger("farmflow_storage")

_EMISSION_INT_FIELDS = (
    "reward_per_block",
    "launch_block",
    "decay_epoch_blocks",
    "decay_rate_percent",
    "last_decay_block",
    "lock_period_seconds",
)


def _txt(value: int | None) -> str | None:
    return None if value is None else str(value)


def _int(value: str | None) -> int | None:
    return None if value is None else int(value)


class LedgerStore:
    """Thin SQLite wrapper for persisting ledger snapshots."""

    CURRENT_SCHEMA_VERSION = 1

    def __init__(self, db_path: str = "data/farmflow.db"):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout = 5000")
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_tables()
        self._ensure_schema_version()
        logger.info(f"Storage opened: {db_path}")

    # ── schema ───────────────────────────────────────────────────

    def _create_tables(self) -> None:
        c = self._conn
        c.execute("""
            CREATE TABLE IF NOT EXISTS meta (
                key   TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS emission (
                id                  INTEGER PRIMARY KEY CHECK (id = 1),
                reward_per_block    TEXT NOT NULL,
                launch_block        TEXT NOT NULL,
                decay_epoch_blocks  TEXT NOT NULL,
                decay_rate_percent  TEXT NOT NULL,
                last_decay_block    TEXT NOT NULL,
                lock_period_seconds TEXT NOT NULL,
                dev_address         TEXT NOT NULL,
                community_address   TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS pools (
                pid                         INTEGER PRIMARY KEY,
                stake_asset                 TEXT NOT NULL UNIQUE,
                weight                      TEXT NOT NULL,
                last_settled_block          TEXT NOT NULL,
                cumulative_reward_per_stake TEXT NOT NULL,
                total_staked                TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS positions (
                pid           INTEGER NOT NULL,
                account       TEXT NOT NULL,
                staked_amount TEXT NOT NULL,
                reward_debt   TEXT NOT NULL,
                PRIMARY KEY (pid, account)
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS locks (
                pid              INTEGER NOT NULL,
                account          TEXT NOT NULL,
                locked_amount    TEXT NOT NULL,
                last_unlock_time TEXT NOT NULL,
                PRIMARY KEY (pid, account)
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS totals (
                name  TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS events (
                seq          INTEGER PRIMARY KEY,
                kind         TEXT NOT NULL,
                pid          INTEGER,
                account      TEXT NOT NULL DEFAULT '',
                amount       TEXT NOT NULL,
                block        TEXT,
                timestamp    TEXT,
                details_json TEXT NOT NULL DEFAULT '{}'
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                id      INTEGER PRIMARY KEY CHECK (id = 1),
                version INTEGER NOT NULL
            )
        """)
        c.commit()

    def _ensure_schema_version(self) -> None:
        row = self._conn.execute(
            "SELECT version FROM schema_version WHERE id = 1"
        ).fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO schema_version (id, version) VALUES (1, ?)",
                (self.CURRENT_SCHEMA_VERSION,),
            )
            self._conn.commit()
        elif row["version"] > self.CURRENT_SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema v{row['version']} is newer than this software "
                f"(v{self.CURRENT_SCHEMA_VERSION}).  Upgrade FarmFlow."
            )

    def schema_version(self) -> int:
        row = self._conn.execute(
            "SELECT version FROM schema_version WHERE id = 1"
        ).fetchone()
        return row["version"]

    # ── save ─────────────────────────────────────────────────────

    def save_ledger(self, ledger: Any) -> None:
        """Persist a full ledger snapshot in one transaction.

        Pools, positions and locks are replaced wholesale; events are
        append-only and only new sequence numbers are inserted.
        """
        self.save_snapshot(ledger.snapshot())

    def save_snapshot(self, snap: dict[str, Any]) -> None:
        c = self._conn
        try:
            c.execute("BEGIN IMMEDIATE")

            meta = {
                "owner": snap["owner"],
                "custody": snap["custody"],
                "reward_scale": str(snap["reward_scale"]),
            }
            c.executemany(
                "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
                list(meta.items()),
            )

            em = snap["emission"]
            c.execute(
                """INSERT OR REPLACE INTO emission
                   (id, reward_per_block, launch_block, decay_epoch_blocks,
                    decay_rate_percent, last_decay_block, lock_period_seconds,
                    dev_address, community_address)
                   VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (*[str(em[k]) for k in _EMISSION_INT_FIELDS],
                 em["dev_address"], em["community_address"]),
            )

            c.execute("DELETE FROM pools")
            c.executemany(
                """INSERT INTO pools
                   (pid, stake_asset, weight, last_settled_block,
                    cumulative_reward_per_stake, total_staked)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                [
                    (pid, p["stake_asset"], str(p["weight"]), str(p["last_settled_block"]),
                     str(p["cumulative_reward_per_stake"]), str(p["total_staked"]))
                    for pid, p in enumerate(snap["pools"])
                ],
            )

            c.execute("DELETE FROM positions")
            c.executemany(
                "INSERT INTO positions (pid, account, staked_amount, reward_debt) VALUES (?, ?, ?, ?)",
                [(r["pid"], r["account"], str(r["staked_amount"]), str(r["reward_debt"]))
                 for r in snap["positions"]],
            )

            c.execute("DELETE FROM locks")
            c.executemany(
                "INSERT INTO locks (pid, account, locked_amount, last_unlock_time) VALUES (?, ?, ?, ?)",
                [(r["pid"], r["account"], str(r["locked_amount"]), str(r["last_unlock_time"]))
                 for r in snap["locks"]],
            )

            c.executemany(
                "INSERT OR REPLACE INTO totals (name, value) VALUES (?, ?)",
                [(k, str(v)) for k, v in snap.get("totals", {}).items()],
            )

            c.executemany(
                """INSERT OR IGNORE INTO events
                   (seq, kind, pid, account, amount, block, timestamp, details_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    (e["seq"], e["kind"], e.get("pid"), e.get("account", ""),
                     str(e.get("amount", 0)), _txt(e.get("block")),
                     _txt(e.get("timestamp")), json.dumps(e.get("details", {})))
                    for e in snap.get("events", [])
                ],
            )

            c.execute("COMMIT")
        except Exception:
            c.execute("ROLLBACK")
            raise
        logger.debug(
            f"Saved snapshot: {len(snap['pools'])} pools, "
            f"{len(snap['positions'])} positions, {len(snap.get('events', []))} events"
        )

    # ── load ─────────────────────────────────────────────────────

    def has_snapshot(self) -> bool:
        return self._conn.execute("SELECT 1 FROM emission WHERE id = 1").fetchone() is not None

    def load_snapshot(self) -> dict[str, Any] | None:
        """Return the stored snapshot, or None if nothing was saved yet."""
        c = self._conn
        em_row = c.execute("SELECT * FROM emission WHERE id = 1").fetchone()
        if em_row is None:
            return None
        meta = {r["key"]: r["value"] for r in c.execute("SELECT * FROM meta")}
        emission = {k: int(em_row[k]) for k in _EMISSION_INT_FIELDS}
        emission["dev_address"] = em_row["dev_address"]
        emission["community_address"] = em_row["community_address"]

        pools = [
            {
                "stake_asset": r["stake_asset"],
                "weight": int(r["weight"]),
                "last_settled_block": int(r["last_settled_block"]),
                "cumulative_reward_per_stake": int(r["cumulative_reward_per_stake"]),
                "total_staked": int(r["total_staked"]),
            }
            for r in c.execute("SELECT * FROM pools ORDER BY pid")
        ]
        positions = [
            {"pid": r["pid"], "account": r["account"],
             "staked_amount": int(r["staked_amount"]), "reward_debt": int(r["reward_debt"])}
            for r in c.execute("SELECT * FROM positions ORDER BY pid, account")
        ]
        locks = [
            {"pid": r["pid"], "account": r["account"],
             "locked_amount": int(r["locked_amount"]),
             "last_unlock_time": int(r["last_unlock_time"])}
            for r in c.execute("SELECT * FROM locks ORDER BY pid, account")
        ]
        totals = {r["name"]: int(r["value"]) for r in c.execute("SELECT * FROM totals")}
        events = []
        for r in c.execute("SELECT * FROM events ORDER BY seq"):
            event = {"seq": r["seq"], "kind": r["kind"], "amount": int(r["amount"])}
            if r["pid"] is not None:
                event["pid"] = r["pid"]
            if r["account"]:
                event["account"] = r["account"]
            if r["block"] is not None:
                event["block"] = _int(r["block"])
            if r["timestamp"] is not None:
                event["timestamp"] = _int(r["timestamp"])
            details = json.loads(r["details_json"])
            if details:
                event["details"] = details
            events.append(event)

        return {
            "owner": meta["owner"],
            "custody": meta["custody"],
            "reward_scale": int(meta["reward_scale"]),
            "emission": emission,
            "pools": pools,
            "positions": positions,
            "locks": locks,
            "totals": totals,
            "events": events,
        }

    # ── lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
