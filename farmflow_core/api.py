"""
Read-only HTTP API for a FarmFlow staking ledger.

Built on ``aiohttp``; it only observes the ledger and never calls a
state-changing operation.

Endpoints
---------
GET  /health                               Liveness and pool count
GET  /status                               Ledger summary and running totals
GET  /emission                             Emission schedule
GET  /pools                                All pools
GET  /pools/{pid}                          One pool
GET  /pools/{pid}/positions/{account}      Stake, reward debt and lock bucket
GET  /pools/{pid}/pending/{account}?block=N[&now=T]
                                           Pending reward preview
GET  /events?since=N[&pool=P][&account=A][&kind=K]
                                           Committed events after seq N

Integers above 2**53 are sent as decimal strings so JavaScript clients
don't lose precision.

Security
--------
- Per-IP token-bucket rate limiter (configurable RPM).
- CORS middleware (origins configurable via ``cors_origins``).
- Ledger errors are mapped to 400 / 404 / 409 without a traceback.

Usage:
    api = APIServer(ledger, host="127.0.0.1", port=8080)
    await api.start()    # call inside existing event loop
    ...
    await api.stop()
"""

from __future__ import annotations

import json
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from aiohttp import web

from farmflow_core.errors import StakingError
from farmflow_core.events import EventKind

if TYPE_CHECKING:
    from farmflow_core.config import APIConfig
    from farmflow_core.staking_ledger import StakingLedger

logger = logging.getLogger("farmflow_api")

JS_SAFE_INT = 2 ** 53

_STATUS_BY_KIND = {
    "InvalidAddress": 400,
    "InvalidAmount": 400,
    "UnknownPool": 404,
    "ArithmeticOverflow": 409,
    "ArithmeticUnderflow": 409,
    "DivisionByZero": 409,
}


# ═══════════════════════════════════════════════════════════════════
#  Input / output helpers
# ═══════════════════════════════════════════════════════════════════

def _safe_int(value: Any, name: str = "value") -> int:
    """Convert *value* to a non-negative int, rejecting anything else."""
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    if n < 0:
        raise web.HTTPBadRequest(text=f"{name} must be non-negative")
    return n


def _json_safe(obj: Any) -> Any:
    if isinstance(obj, bool) or obj is None:
        return obj
    if isinstance(obj, int):
        return str(obj) if abs(obj) > JS_SAFE_INT else obj
    if isinstance(obj, dict):
        return {k: _json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_json_safe(v) for v in obj]
    return obj


def _json_dumps(obj: Any) -> str:
    return json.dumps(_json_safe(obj), default=str)


def _reply(payload: Any, status: int = 200) -> web.Response:
    return web.json_response(payload, status=status, dumps=_json_dumps)


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Per-IP token bucket refilled at ``rpm / 60`` tokens per second."""

    __slots__ = ("_buckets", "_rpm")

    def __init__(self, rpm: int):
        self._rpm = rpm  # 0 = unlimited
        # ip -> [tokens, last_refill]
        self._buckets: dict[str, list[float]] = defaultdict(lambda: [float(rpm), time.monotonic()])

    def allow(self, ip: str) -> bool:
        if self._rpm <= 0:
            return True
        bucket = self._buckets[ip]
        now = time.monotonic()
        bucket[0] = min(float(self._rpm), bucket[0] + (now - bucket[1]) * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

def _make_rate_limit_middleware(bucket: _TokenBucket):
    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        ip = request.remote or "unknown"
        if not bucket.allow(ip):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_cors_middleware(origins: list[str]):
    """CORS headers for explicitly listed origins; ``*`` is ignored."""

    allowed = set(origins) if origins else set()
    allowed.discard("*")

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        origin = request.headers.get("Origin", "")
        if request.method == "OPTIONS":
            resp = web.Response(status=204)
        else:
            resp = await handler(request)

        if origin in allowed:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
            resp.headers["Access-Control-Max-Age"] = "3600"
        return resp

    return cors_middleware


def _make_error_middleware():
    """Turn ledger errors into JSON error responses."""

    @web.middleware
    async def error_middleware(request: web.Request, handler):
        try:
            return await handler(request)
        except StakingError as exc:
            status = _STATUS_BY_KIND.get(exc.kind, 409)
            logger.debug(f"{request.method} {request.path} -> {status} {exc.kind}")
            return _reply({"error": exc.kind, "message": str(exc)}, status=status)

    return error_middleware


class APIServer:
    """Thin aiohttp wrapper around a StakingLedger."""

    def __init__(
        self,
        ledger: StakingLedger,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        api_config: APIConfig | None = None,
    ):
        self.ledger = ledger
        self.host = host
        self.port = port
        self._api_config = api_config
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    # ── lifecycle ────────────────────────────────────────────────

    def build_app(self) -> web.Application:
        middlewares: list = []
        cfg = self._api_config
        if cfg is not None:
            if cfg.rate_limit_rpm > 0:
                middlewares.append(_make_rate_limit_middleware(_TokenBucket(cfg.rate_limit_rpm)))
            if cfg.cors_origins:
                middlewares.append(_make_cors_middleware(cfg.cors_origins))
        middlewares.append(_make_error_middleware())
        app = web.Application(middlewares=middlewares)
        self._register_routes(app)
        self._app = app
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/status", self._status)
        app.router.add_get("/emission", self._emission)
        app.router.add_get("/pools", self._pools)
        app.router.add_get("/pools/{pid}", self._pool)
        app.router.add_get("/pools/{pid}/positions/{account}", self._position)
        app.router.add_get("/pools/{pid}/pending/{account}", self._pending)
        app.router.add_get("/events", self._events)

    # ── handlers ─────────────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        return _reply({
            "ok": True,
            "pools": self.ledger.pool_count,
            "busy": self.ledger.in_operation,
        })

    async def _status(self, _request: web.Request) -> web.Response:
        return _reply(self.ledger.status())

    async def _emission(self, _request: web.Request) -> web.Response:
        return _reply(self.ledger.emission_info())

    async def _pools(self, _request: web.Request) -> web.Response:
        pools = [self.ledger.pool_info(pid) for pid in range(self.ledger.pool_count)]
        return _reply({"pools": pools, "count": len(pools)})

    async def _pool(self, request: web.Request) -> web.Response:
        pid = _safe_int(request.match_info["pid"], "pid")
        return _reply(self.ledger.pool_info(pid))

    async def _position(self, request: web.Request) -> web.Response:
        pid = _safe_int(request.match_info["pid"], "pid")
        account = request.match_info["account"]
        position = self.ledger.position(pid, account)
        return _reply({
            "pid": pid,
            "account": account,
            **position.to_dict(),
            "lock": self.ledger.lock_info(pid, account),
        })

    async def _pending(self, request: web.Request) -> web.Response:
        pid = _safe_int(request.match_info["pid"], "pid")
        account = request.match_info["account"]
        if "block" not in request.query:
            raise web.HTTPBadRequest(text="block query parameter required")
        block = _safe_int(request.query["block"], "block")
        if "now" in request.query:
            now = _safe_int(request.query["now"], "now")
            preview = self.ledger.reward_preview(pid, account, block=block, now=now)
        else:
            preview = {"pending": self.ledger.pending_reward(pid, account, block=block)}
        return _reply({"pid": pid, "account": account, "block": block, **preview})

    async def _events(self, request: web.Request) -> web.Response:
        since = _safe_int(request.query.get("since", "0"), "since")
        pid = _safe_int(request.query["pool"], "pool") if "pool" in request.query else None
        kind = None
        if "kind" in request.query:
            try:
                kind = EventKind(request.query["kind"])
            except ValueError:
                raise web.HTTPBadRequest(text=f"unknown event kind {request.query['kind']!r}")
        events = self.ledger.events.select(
            since, pid=pid, account=request.query.get("account") or None, kind=kind,
        )
        return _reply({"events": [e.to_dict() for e in events], "count": len(events)})
