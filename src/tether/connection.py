"""Connect, disconnect and manage saved Wi-Fi profiles."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

from .scanner import NetworkScanner
from .scheduling import PeriodicTask
from .wifi import (
    WIRELESS_PROFILE_TYPE,
    AuthFailedError,
    ConnectionFailedError,
    DriverError,
    NetworkNotFoundError,
    NotConnectedError,
    WiFiConnection,
    WiFiDriver,
    WiFiError,
    WiFiNetworkConfig,
    WiFiNotInitializedError,
    WiFiTimeoutError,
    split_terse_line,
    unescape_terse_field,
)


logger = logging.getLogger(__name__)

DEVICE_FIELDS = ("GENERAL.CONNECTION", "IP4.ADDRESS", "GENERAL.HWADDR")
PROFILE_FIELDS = ("NAME", "TYPE", "AUTOCONNECT", "AUTOCONNECT-PRIORITY")
AUTH_FAILURE_MARKERS = ("Secrets were required", "802-11-wireless-security")

ConnectionCallback = Callable[[bool], None]


def parse_device_status(output: str) -> dict[str, str]:
    """Parse ``KEY:value`` records, splitting only on the first colon."""

    data: dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if sep and key:
            data[key.strip()] = value.strip()
    return data


class ConnectionManager:
    """Wrap the driver's connection and profile operations."""

    def __init__(
        self,
        driver: WiFiDriver,
        scanner: NetworkScanner,
        *,
        initialized: Callable[[], bool] | None = None,
        connection_timeout: float = 60.0,
        monitor_interval: float = 5.0,
    ) -> None:
        if connection_timeout <= 0:
            raise ValueError("connection_timeout must be positive")
        self._driver = driver
        self._scanner = scanner
        self._initialized = initialized or (lambda: True)
        self._connection_timeout = float(connection_timeout)
        self._monitor_interval = float(monitor_interval)
        self._callbacks: list[ConnectionCallback] = []
        self._monitor: PeriodicTask | None = None
        self._last_connected = False

    @property
    def connection_timeout(self) -> float:
        return self._connection_timeout

    def _require_initialized(self) -> None:
        if not self._initialized():
            raise WiFiNotInitializedError()

    # ------------------------------- queries -------------------------------
    async def get_current_connection(self) -> WiFiConnection | None:
        self._require_initialized()
        try:
            output = await asyncio.to_thread(self._driver.device_status, DEVICE_FIELDS)
        except DriverError as exc:
            logger.warning("Failed to read current connection: %s", exc)
            return None
        data = parse_device_status(output)
        name = data.get("GENERAL.CONNECTION", "")
        if not name or name == "--":
            logger.debug("Not connected to any Wi-Fi network")
            return None
        ssid = unescape_terse_field(name)

        ip_address = ""
        for key, value in data.items():
            if key.startswith("IP4.ADDRESS"):
                ip_address = value.split("/", 1)[0]
                break

        signal = await self._scanner.get_signal_strength(ssid)
        connection = WiFiConnection(
            ssid=ssid,
            ip_address=ip_address,
            mac_address=unescape_terse_field(data.get("GENERAL.HWADDR", "")),
            signal_strength=signal,
            connected_at=datetime.now(timezone.utc),
        )
        logger.debug(
            "Current connection %r (ip=%s, signal=%d%%)",
            connection.ssid,
            connection.ip_address,
            connection.signal_strength,
        )
        return connection

    async def is_connected(self) -> bool:
        return await self.get_current_connection() is not None

    # ------------------------------ connecting -----------------------------
    async def connect(self, ssid: str, password: str) -> None:
        """Create a WPA-PSK profile for ``ssid`` and bring it up."""

        self._require_initialized()
        logger.info("Connecting to %r (timeout %gs)", ssid, self._connection_timeout)
        if await asyncio.to_thread(self._driver.profile_exists, ssid):
            try:
                await asyncio.to_thread(self._driver.delete_profile, ssid)
            except DriverError as exc:
                logger.debug("Ignoring failure deleting stale profile %r: %s", ssid, exc)

        try:
            await asyncio.to_thread(self._driver.add_profile, ssid, password)
        except DriverError as exc:
            logger.error("Failed to create profile for %r: %s", ssid, exc)
            raise ConnectionFailedError(ssid, exc) from exc

        try:
            await asyncio.wait_for(
                asyncio.to_thread(
                    self._driver.activate_profile,
                    ssid,
                    # Outlive the race below so the subprocess is reaped.
                    timeout=self._connection_timeout + 5.0,
                ),
                timeout=self._connection_timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error(
                "Connection to %r timed out after %gs", ssid, self._connection_timeout
            )
            raise WiFiTimeoutError("connect", self._connection_timeout) from exc
        except DriverError as exc:
            message = str(exc)
            if any(marker in message for marker in AUTH_FAILURE_MARKERS):
                logger.error("Authentication failed for %r", ssid)
                raise AuthFailedError(ssid) from exc
            logger.error("Connection to %r failed: %s", ssid, message)
            raise ConnectionFailedError(ssid, exc) from exc
        logger.info("Connected to %r", ssid)

    async def disconnect(self) -> None:
        self._require_initialized()
        current = await self.get_current_connection()
        if current is None:
            raise NotConnectedError()
        try:
            await asyncio.to_thread(self._driver.disconnect)
        except DriverError as exc:
            logger.error("Failed to disconnect from %r: %s", current.ssid, exc)
            raise WiFiError(str(exc)) from exc
        logger.info("Disconnected from %r", current.ssid)

    async def activate_profile(self, name: str) -> None:
        """Bring up an existing profile using its stored secret."""

        await asyncio.to_thread(
            self._driver.activate_profile, name, timeout=self._connection_timeout
        )

    # ------------------------------- profiles ------------------------------
    async def save_network(self, config: WiFiNetworkConfig) -> None:
        self._require_initialized()
        try:
            if await asyncio.to_thread(self._driver.profile_exists, config.ssid):
                await asyncio.to_thread(self._driver.delete_profile, config.ssid)
            await asyncio.to_thread(
                self._driver.add_profile,
                config.ssid,
                config.password,
                auto_connect=config.auto_connect,
                priority=config.priority,
            )
        except DriverError as exc:
            logger.error("Failed to save network %r: %s", config.ssid, exc)
            raise WiFiError(str(exc)) from exc
        logger.info(
            "Saved network %r (auto-connect=%s, priority=%d)",
            config.ssid,
            config.auto_connect,
            config.priority,
        )

    async def get_saved_networks(self) -> list[WiFiNetworkConfig]:
        self._require_initialized()
        try:
            output = await asyncio.to_thread(self._driver.list_profiles, PROFILE_FIELDS)
        except DriverError as exc:
            logger.error("Failed to list saved networks: %s", exc)
            raise WiFiError(str(exc)) from exc
        networks: list[WiFiNetworkConfig] = []
        for line in output.splitlines():
            if not line.strip():
                continue
            parts = split_terse_line(line)
            while len(parts) < len(PROFILE_FIELDS):
                parts.append("")
            name, profile_type, auto_connect, priority = parts[:4]
            if profile_type != WIRELESS_PROFILE_TYPE:
                continue
            try:
                priority_value = int(priority)
            except ValueError:
                priority_value = 0
            networks.append(
                WiFiNetworkConfig(
                    ssid=name,
                    password="",
                    priority=priority_value,
                    auto_connect=auto_connect == "yes",
                )
            )
        return networks

    async def remove_network(self, ssid: str) -> None:
        self._require_initialized()
        if not await asyncio.to_thread(self._driver.profile_exists, ssid):
            raise NetworkNotFoundError(ssid)
        try:
            await asyncio.to_thread(self._driver.delete_profile, ssid)
        except DriverError as exc:
            logger.error("Failed to remove network %r: %s", ssid, exc)
            raise WiFiError(str(exc)) from exc
        logger.info("Removed network %r", ssid)

    # ------------------------------ monitoring -----------------------------
    def start_connection_monitoring(self) -> None:
        if self._monitor is not None:
            return
        self._last_connected = False
        self._monitor = PeriodicTask(
            self._check_connection,
            self._monitor_interval,
            name="connection-monitor",
            logger=logger,
        )
        self._monitor.start()
        logger.info("Connection monitoring started (%gs interval)", self._monitor_interval)

    def stop_connection_monitoring(self) -> None:
        monitor = self._monitor
        if monitor is None:
            return
        self._monitor = None
        monitor.stop()
        logger.info("Connection monitoring stopped")

    async def aclose(self) -> None:
        """Stop monitoring and wait for the in-flight check to unwind."""

        monitor = self._monitor
        if monitor is None:
            return
        self._monitor = None
        await monitor.aclose()
        logger.info("Connection monitoring stopped")

    async def _check_connection(self) -> None:
        try:
            connected = await self.is_connected()
        except WiFiError as exc:
            logger.debug("Connection check failed: %s", exc)
            return
        if connected == self._last_connected:
            return
        logger.info(
            "Wi-Fi connection changed: %s -> %s",
            "connected" if self._last_connected else "disconnected",
            "connected" if connected else "disconnected",
        )
        self._last_connected = connected
        self._notify(connected)

    def on_connection_change(self, callback: ConnectionCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def clear_callbacks(self) -> None:
        self._callbacks.clear()

    def _notify(self, connected: bool) -> None:
        for callback in list(self._callbacks):
            try:
                callback(connected)
            except Exception:
                logger.exception("Connection change callback failed")


__all__ = [
    "DEVICE_FIELDS",
    "PROFILE_FIELDS",
    "ConnectionManager",
    "parse_device_status",
]
