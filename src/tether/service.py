"""Facade wiring the Wi-Fi components together and owning their lifecycle."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from .config import ConfigStore, WiFiSettings, WiFiTimings
from .connection import ConnectionManager
from .event_log import EventLog, EventLogEntry
from .hotspot import HotspotManager
from .scanner import NetworkScanner
from .simulated import SimulatedNetwork, SimulatedProfile, SimulatedWiFiDriver
from .state_machine import StateCallback, WiFiStateMachine
from .wifi import (
    DriverUnavailableError,
    HotspotConfig,
    NMCLIDriver,
    WiFiConnection,
    WiFiDriver,
    WiFiError,
    WiFiMode,
    WiFiNetwork,
    WiFiNetworkConfig,
    WiFiState,
)


logger = logging.getLogger(__name__)


def build_driver(settings: WiFiSettings) -> WiFiDriver:
    """Return the driver selected by ``settings.driver``."""

    if settings.driver == "simulated":
        driver = SimulatedWiFiDriver(
            [
                SimulatedNetwork("Home-Network", signal=82, password="home-password"),
                SimulatedNetwork(
                    settings.primary_ssid,
                    signal=64,
                    password=settings.primary_password,
                ),
            ],
            interface=settings.interface,
        )
        driver.add_profile_record(SimulatedProfile("Home-Network", password="home-password"))
        driver.set_active("Home-Network")
        logger.info("Using simulated Wi-Fi driver")
        return driver
    return NMCLIDriver(settings.interface, use_sudo=settings.use_sudo)


class WiFiService:
    """Single entry point for Wi-Fi connectivity."""

    def __init__(
        self,
        settings: WiFiSettings | None = None,
        *,
        driver: WiFiDriver | None = None,
        store: ConfigStore | None = None,
        event_log: EventLog | None = None,
        timings: WiFiTimings | None = None,
    ) -> None:
        self._settings = settings or WiFiSettings()
        self._driver = driver or build_driver(self._settings)
        self._store = store or ConfigStore()
        self._event_log = event_log or EventLog()
        self._timings = timings or WiFiTimings()
        self._initialized = False

        timings = self._timings
        self._scanner = NetworkScanner(self._driver, initialized=self.is_initialized)
        self._connections = ConnectionManager(
            self._driver,
            self._scanner,
            initialized=self.is_initialized,
            connection_timeout=self._settings.connection_timeout,
            monitor_interval=timings.monitor_interval,
        )
        self._hotspot = HotspotManager(
            self._settings,
            self._store,
            self._scanner,
            self._connections,
            self._set_state,
            event_log=self._event_log,
            attempt_timeout=timings.attempt_timeout,
            settle_delay=timings.settle_delay,
            verify_retry_delay=timings.verify_retry_delay,
        )
        self._machine = WiFiStateMachine(
            self._store,
            self._scanner,
            self._connections,
            self._hotspot,
            event_log=self._event_log,
            poll_interval=timings.poll_interval,
            connect_delay=timings.connect_delay,
            grace_period=timings.grace_period,
        )
        logger.info(
            "Wi-Fi service created (hotspot %r, timeout %gs)",
            self._settings.primary_ssid,
            self._settings.connection_timeout,
        )

    def _set_state(self, state: WiFiState) -> None:
        self._machine.set_state(state)

    # ------------------------------ properties -----------------------------
    @property
    def settings(self) -> WiFiSettings:
        return self._settings

    @property
    def driver(self) -> WiFiDriver:
        return self._driver

    @property
    def config_store(self) -> ConfigStore:
        return self._store

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def state_machine(self) -> WiFiStateMachine:
        return self._machine

    @property
    def hotspot_manager(self) -> HotspotManager:
        return self._hotspot

    def is_initialized(self) -> bool:
        return self._initialized

    # ------------------------------- lifecycle -----------------------------
    async def initialize(self) -> None:
        if self._initialized:
            return
        if not await asyncio.to_thread(self._driver.is_available):
            logger.error("NetworkManager (nmcli) not found")
            raise DriverUnavailableError()
        self._initialized = True
        self._connections.start_connection_monitoring()
        self._machine.start_hotspot_polling()

        try:
            on_hotspot = await self._hotspot.is_connected_to_mobile_hotspot()
            connected = on_hotspot or await self._connections.is_connected()
        except WiFiError as exc:
            logger.warning("Unable to determine initial Wi-Fi state: %s", exc)
            on_hotspot = connected = False
        if on_hotspot:
            self._machine.set_state(WiFiState.CONNECTED)
        elif connected:
            self._machine.set_state(WiFiState.IDLE)
        else:
            self._machine.set_state(WiFiState.DISCONNECTED)
        logger.info("Wi-Fi service initialised (state=%s)", self._machine.get_state().value)

    async def dispose(self) -> None:
        self._hotspot.abort_connection_attempt()
        await self._connections.aclose()
        await self._machine.aclose()
        self._connections.clear_callbacks()
        self._machine.clear_callbacks()
        self._machine.reset()
        self._initialized = False
        logger.info("Wi-Fi service disposed")

    # --------------------------------- state -------------------------------
    def get_state(self) -> WiFiState:
        return self._machine.get_state()

    def on_state_change(self, callback: StateCallback) -> Callable[[], None]:
        return self._machine.on_state_change(callback)

    def on_connection_change(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        return self._connections.on_connection_change(callback)

    def set_web_socket_client_count(self, count: int) -> None:
        self._machine.set_web_socket_client_count(count)

    def get_mode(self) -> WiFiMode:
        return self._machine.get_mode()

    # ------------------------------- scanning ------------------------------
    async def scan_networks(self) -> list[WiFiNetwork]:
        return await self._scanner.scan_networks()

    async def is_network_visible(self, ssid: str) -> bool:
        return await self._scanner.is_network_visible(ssid)

    # ------------------------------ connections ----------------------------
    async def get_current_connection(self) -> WiFiConnection | None:
        return await self._connections.get_current_connection()

    async def is_connected(self) -> bool:
        return await self._connections.is_connected()

    async def connect(self, ssid: str, password: str) -> None:
        await self._connections.connect(ssid, password)

    async def disconnect(self) -> None:
        await self._connections.disconnect()

    async def save_network(self, config: WiFiNetworkConfig) -> None:
        await self._connections.save_network(config)

    async def get_saved_networks(self) -> list[WiFiNetworkConfig]:
        return await self._connections.get_saved_networks()

    async def remove_network(self, ssid: str) -> None:
        await self._connections.remove_network(ssid)

    # -------------------------------- hotspot ------------------------------
    async def is_connected_to_mobile_hotspot(self) -> bool:
        return await self._hotspot.is_connected_to_mobile_hotspot()

    async def attempt_mobile_hotspot_connection(self) -> None:
        await self._hotspot.attempt_mobile_hotspot_connection()

    def get_mobile_hotspot_ssid(self) -> str:
        return self._hotspot.get_mobile_hotspot_ssid()

    def get_hotspot_config(self) -> HotspotConfig:
        return self._hotspot.get_hotspot_config()

    async def set_hotspot_config(self, ssid: str, password: str) -> HotspotConfig:
        return await self._hotspot.set_hotspot_config(ssid, password)

    def notify_connected_screen_displayed(self) -> None:
        self._hotspot.notify_connected_screen_displayed()

    def is_onboarding_completed(self) -> bool:
        return self._store.is_onboarding_completed()

    def set_onboarding_completed(self, completed: bool = True) -> None:
        self._store.set_onboarding_completed(completed)

    # --------------------------------- log ---------------------------------
    def get_event_log(self, limit: int | None = None) -> list[EventLogEntry]:
        return self._event_log.tail(limit)


__all__ = ["WiFiService", "build_driver"]
