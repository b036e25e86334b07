from __future__ import annotations

import asyncio
import logging
import os
import platform
import subprocess
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Protocol

from relaylink import __version__
from relaylink.services.errors import StoreUnavailable
from relaylink.services.identity import IdentityStore
from relaylink.services.node_config import ConfigStore
from relaylink.services.webhooks import HEARTBEAT_EVENT, WebhookDispatcher, WebhookEvent

__all__ = ["HealthReport", "HealthProbe", "LocalHealthProbe", "HeartbeatMonitor"]

_log = logging.getLogger("relaylink.heartbeat")


@dataclass(slots=True)
class HealthReport:
    os_version: str
    computer_id: str
    private_api_enabled: bool = False
    private_api_connected: bool = False
    proxy_service: str | None = None
    has_disk_access: bool = False
    messages_running: bool = False
    icloud_account: str | None = None
    imessage_account: str | None = None


class HealthProbe(Protocol):
    def collect(self) -> HealthReport: ...


class LocalHealthProbe:
    """Host facts available without the private helper."""

    def __init__(
        self,
        *,
        disk_access_path: Path | None = None,
        process_name: str = "Messages",
        proxy_service: str | None = None,
    ) -> None:
        self.disk_access_path = disk_access_path or Path.home() / "Library" / "Messages" / "chat.db"
        self.process_name = process_name
        self.proxy_service = proxy_service

    def _process_running(self) -> bool:
        try:
            proc = subprocess.run(
                ["pgrep", "-x", self.process_name],
                capture_output=True,
                timeout=5,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return proc.returncode == 0

    def collect(self) -> HealthReport:
        return HealthReport(
            os_version=platform.mac_ver()[0] or platform.release(),
            computer_id=f"{os.environ.get('USER', 'unknown')}@{platform.node()}",
            proxy_service=self.proxy_service,
            has_disk_access=os.access(self.disk_access_path, os.R_OK),
            messages_running=self._process_running(),
        )


class HeartbeatMonitor:
    """Periodically dispatches a ``heartbeat`` webhook event once onboarding is done.

    The first beat fires after ``initial_delay`` seconds, later ones every
    ``interval`` seconds. Ticks before setup is complete are skipped.
    """

    def __init__(
        self,
        dispatcher: WebhookDispatcher,
        config: ConfigStore,
        identity: IdentityStore,
        *,
        probe: HealthProbe | None = None,
        initial_delay: float | None = None,
        interval: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.dispatcher = dispatcher
        self.config = config
        self.identity = identity
        self.probe = probe or LocalHealthProbe()
        self.initial_delay = config.config.heartbeat.initial_delay if initial_delay is None else initial_delay
        self.interval = config.config.heartbeat.interval if interval is None else interval
        self._clock = clock
        self._started_at: float | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            _log.warning("heartbeat monitor is already running")
            return
        self._started_at = self._clock()
        self._task = asyncio.create_task(self._run(), name="relaylink-heartbeat")
        _log.info("heartbeat monitor started interval=%ss", self.interval)

    def stop(self) -> None:
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
        self._task = None
        _log.info("heartbeat monitor stopped")

    async def _run(self) -> None:
        try:
            await asyncio.sleep(self.initial_delay)
            await self._safe_tick()
            while True:
                await asyncio.sleep(self.interval)
                await self._safe_tick()
        except asyncio.CancelledError:
            pass

    async def _safe_tick(self) -> None:
        try:
            await self.tick()
        except Exception as exc:
            _log.error("failed to send heartbeat: %s", exc, exc_info=True)

    async def tick(self) -> bool:
        """Dispatch one heartbeat; returns ``False`` when skipped."""
        if not self.config.config.setup_complete:
            _log.debug("setup not complete, skipping heartbeat")
            return False
        # probe and keyring calls block
        snapshot = await asyncio.to_thread(self.snapshot)
        await self.dispatcher.dispatch(WebhookEvent(HEARTBEAT_EVENT, snapshot))
        _log.debug("heartbeat dispatched")
        return True

    def snapshot(self) -> dict[str, Any]:
        now = self._clock()
        started = self._started_at if self._started_at is not None else now
        report = self.probe.collect()

        try:
            device_id = self.identity.get_device_id()
        except StoreUnavailable:
            device_id = None

        server_id = (self.config.config.server_id or "").strip() or None

        return {
            "timestamp": int(now * 1000),
            "server_id": server_id,
            "device_id": device_id,
            "server_version": __version__,
            "os_version": report.os_version,
            "computer_id": report.computer_id or str(uuid.getnode()),
            "private_api": {
                "enabled": report.private_api_enabled,
                "connected": report.private_api_connected,
            },
            "proxy_service": report.proxy_service,
            "server_status": {
                "running": self.running,
                "uptime_seconds": int(now - started),
            },
            "health": {
                "has_disk_access": report.has_disk_access,
                "messages_running": report.messages_running,
                "icloud_account": report.icloud_account,
                "imessage_account": report.imessage_account,
            },
        }
