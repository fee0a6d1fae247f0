#!/usr/bin/env python3
"""
FarmFlow ledger runner.

Subcommands:
  serve   build (or restore) the ledger from config and serve the read-only API
  keygen  print a fresh secp256k1 keypair and its account address
  status  print the stored ledger status as JSON

Usage:
    python run_ledger.py serve --config farmflow.toml
    python run_ledger.py keygen
    python run_ledger.py status --db data/farmflow.db

Environment variables (alternative to config entries):
    FARMFLOW_OWNER, FARMFLOW_API_PORT, FARMFLOW_DB_PATH, FARMFLOW_LOG_LEVEL, ...
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys

PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from farmflow_core.api import APIServer, _json_dumps  # noqa: E402
from farmflow_core.assets import TokenLedger  # noqa: E402
from farmflow_core.config import FarmFlowConfig, load_config  # noqa: E402
from farmflow_core.crypto_utils import address_from_label, derive_address, generate_keypair  # noqa: E402
from farmflow_core.emission import EmissionState  # noqa: E402
from farmflow_core.logging_config import setup_logging  # noqa: E402
from farmflow_core.staking_ledger import StakingLedger  # noqa: E402
from farmflow_core.storage import LedgerStore  # noqa: E402

logger = logging.getLogger("farmflow_runner")


# ===================================================================
#  Ledger construction
# ===================================================================

def build_ledger(cfg: FarmFlowConfig, store: LedgerStore | None = None) -> StakingLedger:
    """Restore the ledger from *store* if it holds a snapshot, else bootstrap from *cfg*."""
    custody = address_from_label(cfg.ledger.custody_label)
    reward = TokenLedger(cfg.ledger.reward_asset, minters={custody})
    stake_tokens = {p.stake_asset: TokenLedger(p.stake_asset) for p in cfg.pools}

    snapshot = store.load_snapshot() if store is not None else None
    if snapshot is not None:
        for pool in snapshot["pools"]:
            stake_tokens.setdefault(pool["stake_asset"], TokenLedger(pool["stake_asset"]))
        ledger = StakingLedger.from_snapshot(
            snapshot, reward, stake_tokens, check_invariants=cfg.ledger.check_invariants,
        )
        logger.info(f"Ledger restored from {store.db_path}")
        return ledger

    em = cfg.emission
    ledger = StakingLedger(
        reward,
        cfg.ledger.owner,
        EmissionState(
            reward_per_block=em.reward_per_block,
            launch_block=em.launch_block,
            decay_epoch_blocks=em.decay_epoch_blocks,
            decay_rate_percent=em.decay_rate_percent,
            lock_period_seconds=em.lock_period_seconds,
            dev_address=em.dev_address,
            community_address=em.community_address,
        ),
        custody=custody,
        reward_scale=cfg.ledger.reward_scale,
        check_invariants=cfg.ledger.check_invariants,
    )
    for pool in cfg.pools:
        ledger.add_pool(
            cfg.ledger.owner, stake_tokens[pool.stake_asset], pool.weight, block=em.launch_block,
        )
    logger.info(f"Ledger bootstrapped with {ledger.pool_count} pool(s)")
    if store is not None:
        store.save_ledger(ledger)
    return ledger


# ===================================================================
#  Subcommands
# ===================================================================

async def serve(cfg: FarmFlowConfig) -> None:
    store = LedgerStore(cfg.storage.path) if cfg.storage.enabled else None
    ledger = build_ledger(cfg, store)
    api = APIServer(ledger, host=cfg.api.host, port=cfg.api.port, api_config=cfg.api)
    await api.start()
    try:
        while True:
            await asyncio.sleep(1)
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        await api.stop()
        if store is not None:
            store.save_ledger(ledger)
            store.close()


def keygen() -> dict:
    private_key, public_key = generate_keypair()
    return {
        "private_key": private_key.hex(),
        "public_key": public_key.hex(),
        "address": derive_address(public_key),
    }


def status(cfg: FarmFlowConfig) -> dict | None:
    with LedgerStore(cfg.storage.path) as store:
        if not store.has_snapshot():
            return None
        return build_ledger(cfg, store).status()


def parse_args(argv: list[str] | None = None):
    p = argparse.ArgumentParser(description="FarmFlow staking ledger")
    p.add_argument("--config", default=None, help="Path to farmflow.toml config file")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("serve", help="Serve the read-only API")
    s.add_argument("--host", default=None, help="API listen host")
    s.add_argument("--port", type=int, default=None, help="API listen port")

    sub.add_parser("keygen", help="Generate an account keypair")

    st = sub.add_parser("status", help="Print stored ledger status")
    st.add_argument("--db", default=None, help="SQLite database path")
    return p.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    if args.command == "keygen":
        print(json.dumps(keygen(), indent=2))
        return 0

    cfg = load_config(args.config)
    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)

    if args.command == "status":
        if args.db:
            cfg.storage.path = args.db
        result = status(cfg)
        if result is None:
            print(f"No ledger stored at {cfg.storage.path}", file=sys.stderr)
            return 1
        print(_json_dumps(result))
        return 0

    # serve: CLI flags override config
    if args.host:
        cfg.api.host = args.host
    if args.port:
        cfg.api.port = args.port
    await serve(cfg)
    return 0


def main_sync() -> int:
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        return asyncio.run(main())
    return 130


if __name__ == "__main__":
    raise SystemExit(main_sync())
