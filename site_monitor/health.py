"""Health reporting for the site-monitor agent."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

from aiohttp import web

LOGGER = logging.getLogger(__name__)

Probe = Callable[[], Tuple[bool, Optional[str]]]


@dataclass(slots=True)
class ComponentStatus:
    name: str
    healthy: bool
    detail: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "healthy": self.healthy,
            "detail": self.detail,
            "updatedAt": self.updated_at.isoformat(timespec="seconds"),
        }


class HealthReporter:
    """Tracks component statuses and node facts for the running agent.

    Statuses are either pushed with ``update`` or pulled from a registered
    probe each time a snapshot is taken. A probe overrides a pushed status of
    the same name.
    """

    def __init__(self, device_id: str = "") -> None:
        self._device_id = device_id
        self._status: Dict[str, ComponentStatus] = {}
        self._probes: Dict[str, Probe] = {}
        self._facts: Dict[str, Callable[[], object]] = {}
        self._started = time.monotonic()
        self._lock = asyncio.Lock()

    async def update(
        self, name: str, healthy: bool, detail: Optional[str] = None
    ) -> None:
        async with self._lock:
            self._status[name] = ComponentStatus(
                name=name, healthy=healthy, detail=detail
            )

    def register_probe(self, name: str, probe: Probe) -> None:
        self._probes[name] = probe

    def register_fact(self, name: str, source: Callable[[], object]) -> None:
        self._facts[name] = source

    async def snapshot(self) -> Dict[str, object]:
        async with self._lock:
            statuses = dict(self._status)
            for name, probe in self._probes.items():
                healthy, detail = probe()
                previous = statuses.get(name)
                if (
                    previous is None
                    or previous.healthy != healthy
                    or previous.detail != detail
                ):
                    statuses[name] = ComponentStatus(name, healthy, detail)
            self._status = statuses
            components = [status.as_dict() for status in statuses.values()]

        facts = {name: source() for name, source in self._facts.items()}
        overall = "ok" if all(item["healthy"] for item in components) else "degraded"
        return {
            "status": overall,
            "deviceId": self._device_id,
            "uptimeSeconds": round(time.monotonic() - self._started, 1),
            "components": components,
            "node": facts,
        }


class HealthServer:
    """Minimal HTTP server exposing `/healthz` for status checks."""

    def __init__(self, reporter: HealthReporter, host: str, port: int) -> None:
        self._reporter = reporter
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    async def start(self) -> None:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)

        self._runner = web.AppRunner(app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        LOGGER.info(
            "Health endpoint listening on http://%s:%s/healthz", self._host, self._port
        )

    async def stop(self) -> None:
        with contextlib.suppress(Exception):
            if self._site is not None:
                await self._site.stop()
        if self._runner is not None:
            await self._runner.cleanup()
        self._site = None
        self._runner = None

    async def _handle_health(self, request: web.Request) -> web.Response:
        snapshot = await self._reporter.snapshot()
        status = 200 if snapshot["status"] == "ok" else 503
        return web.json_response(snapshot, status=status)
