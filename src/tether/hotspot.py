"""Joining the configured mobile hotspot and returning to the previous network."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

from .config import ConfigStore, WiFiSettings
from .connection import ConnectionManager
from .event_log import EventLog
from .scanner import NetworkScanner
from .wifi import (
    AttemptInProgressError,
    ConnectionFailedError,
    DriverError,
    FallbackReconnectFailedError,
    HotspotConfig,
    HotspotConnectionTimeoutError,
    NetworkNotFoundError,
    NotConnectedError,
    WiFiError,
    WiFiState,
)


logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

_CONNECTED = "connected"
_ABORTED = "aborted"
_TIMED_OUT = "timed_out"


class HotspotManager:
    """Run single-flight hotspot connection attempts."""

    def __init__(
        self,
        settings: WiFiSettings,
        store: ConfigStore,
        scanner: NetworkScanner,
        connections: ConnectionManager,
        set_state: Callable[[WiFiState], None],
        *,
        event_log: EventLog | None = None,
        attempt_timeout: float = 60.0,
        settle_delay: float = 2.0,
        verify_retry_delay: float = 3.0,
    ) -> None:
        self._settings = settings
        self._store = store
        self._scanner = scanner
        self._connections = connections
        self._set_state = set_state
        self._event_log = event_log
        self._attempt_timeout = float(attempt_timeout)
        self._settle_delay = float(settle_delay)
        self._verify_retry_delay = float(verify_retry_delay)
        self._attempt_in_progress = False
        self._abort_event: asyncio.Event | None = None
        self._connected_screen_displayed = False

    # ------------------------------ identity ------------------------------
    def _resolve_hotspot_config(self) -> HotspotConfig | None:
        return self._store.get_hotspot()

    def get_effective_hotspot_ssid(self) -> str:
        saved = self._resolve_hotspot_config()
        return saved.ssid if saved is not None else self._settings.primary_ssid

    def get_effective_hotspot_password(self) -> str:
        saved = self._resolve_hotspot_config()
        return saved.password if saved is not None else self._settings.primary_password

    def get_mobile_hotspot_ssid(self) -> str:
        return self.get_effective_hotspot_ssid()

    def get_hotspot_config(self) -> HotspotConfig:
        saved = self._resolve_hotspot_config()
        if saved is not None:
            return saved
        return HotspotConfig(
            ssid=self._settings.primary_ssid,
            password=self._settings.primary_password,
            updated_at=datetime.now(timezone.utc).isoformat(),
        )

    async def set_hotspot_config(self, ssid: str, password: str) -> HotspotConfig:
        """Persist a new hotspot identity and drop the current link to renegotiate."""

        if not isinstance(ssid, str) or not ssid.strip():
            raise WiFiError("SSID cannot be empty")
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            raise WiFiError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters for WPA2"
            )
        config = self._store.set_hotspot(ssid.strip(), password)
        logger.info("Saved hotspot configuration for %r", config.ssid)

        fallback = self._store.get_fallback_network()
        if fallback is not None and fallback.ssid == config.ssid:
            self._store.clear_fallback_network()
        await self.save_fallback_network()

        try:
            await self._connections.disconnect()
        except NotConnectedError:
            logger.info("Not connected; nothing to drop before joining %r", config.ssid)
        except WiFiError as exc:
            logger.warning("Failed to drop current link before joining %r: %s", config.ssid, exc)

        self._set_state(WiFiState.WAITING_FOR_HOTSPOT)
        self.reset_connected_screen_displayed()
        self._record(
            "hotspot_config_changed",
            f"Hotspot set to {config.ssid!r}",
            {"ssid": config.ssid},
        )
        return config

    # -------------------------------- status -------------------------------
    async def is_connected_to_mobile_hotspot(self) -> bool:
        current = await self._connections.get_current_connection()
        if current is None:
            return False
        return current.ssid == self.get_effective_hotspot_ssid()

    def is_connection_attempt_in_progress(self) -> bool:
        return self._attempt_in_progress

    def abort_connection_attempt(self) -> None:
        if self._abort_event is not None and not self._abort_event.is_set():
            logger.info("Aborting in-progress hotspot connection attempt")
            self._abort_event.set()

    # ------------------------------- attempt -------------------------------
    async def attempt_mobile_hotspot_connection(self) -> None:
        if self._attempt_in_progress:
            logger.warning("Hotspot connection attempt already in progress")
            raise AttemptInProgressError()
        self._attempt_in_progress = True
        abort_event = asyncio.Event()
        self._abort_event = abort_event
        ssid = self.get_effective_hotspot_ssid()
        password = self.get_effective_hotspot_password()
        try:
            if not await self._scanner.is_network_visible(ssid):
                logger.info("Hotspot %r is not visible; skipping attempt", ssid)
                raise NetworkNotFoundError(ssid)

            self._set_state(WiFiState.CONNECTING)
            self._record("hotspot_attempt_started", f"Connecting to {ssid!r}", {"ssid": ssid})

            try:
                outcome = await self._race_connect(ssid, password, abort_event)
            except Exception as exc:
                logger.error("Failed to connect to hotspot %r: %s", ssid, exc)
                self._set_state(WiFiState.ERROR)
                self._record_failure(ssid, str(exc))
                raise ConnectionFailedError(ssid, exc) from exc

            if outcome == _ABORTED:
                logger.info("Hotspot connection attempt aborted")
                self._record_failure(ssid, "aborted")
                raise WiFiError("Connection attempt aborted")

            if outcome == _TIMED_OUT:
                await self._recover_from_timeout(ssid)

            if not await self._verify_connection(ssid):
                logger.warning("Could not verify connection to hotspot %r", ssid)
                self._set_state(WiFiState.WAITING_FOR_HOTSPOT)
                self._record_failure(ssid, "verification failed")
                raise ConnectionFailedError(ssid, "connection could not be verified")

            logger.info("Connected to mobile hotspot %r", ssid)
            self._set_state(WiFiState.CONNECTED)
            await self.clear_fallback_network()
            self._record("hotspot_attempt_succeeded", f"Connected to {ssid!r}", {"ssid": ssid})
        finally:
            self._attempt_in_progress = False
            self._abort_event = None

    async def _race_connect(self, ssid: str, password: str, abort_event: asyncio.Event) -> str:
        connect_task = asyncio.ensure_future(self._connections.connect(ssid, password))
        abort_task = asyncio.ensure_future(abort_event.wait())
        try:
            done, _ = await asyncio.wait(
                {connect_task, abort_task},
                timeout=self._attempt_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            leftovers = [task for task in (connect_task, abort_task) if not task.done()]
            for task in leftovers:
                task.cancel()
            if leftovers:
                await asyncio.gather(*leftovers, return_exceptions=True)
        if abort_task in done:
            if connect_task.done() and not connect_task.cancelled():
                connect_task.exception()
            return _ABORTED
        if connect_task in done:
            connect_task.result()
            return _CONNECTED
        return _TIMED_OUT

    async def _verify_connection(self, ssid: str) -> bool:
        await asyncio.sleep(self._settle_delay)
        if await self._check_hotspot_quietly():
            return True
        logger.info("Hotspot %r not verified yet; retrying in %gs", ssid, self._verify_retry_delay)
        await asyncio.sleep(self._verify_retry_delay)
        return await self._check_hotspot_quietly()

    async def _check_hotspot_quietly(self) -> bool:
        try:
            return await self.is_connected_to_mobile_hotspot()
        except WiFiError as exc:
            logger.debug("Hotspot verification failed: %s", exc)
            return False

    async def _recover_from_timeout(self, ssid: str) -> None:
        logger.warning(
            "Hotspot connection to %r timed out after %gs", ssid, self._attempt_timeout
        )
        self._set_state(WiFiState.RECONNECTING_FALLBACK)
        try:
            await self.reconnect_to_fallback()
        except FallbackReconnectFailedError as exc:
            logger.error("%s", exc)
            self._set_state(WiFiState.ERROR)
        else:
            self._set_state(WiFiState.DISCONNECTED)
        self._record_failure(ssid, "timeout")
        raise HotspotConnectionTimeoutError(ssid, self._attempt_timeout)

    # ------------------------------- fallback ------------------------------
    async def save_fallback_network(self) -> None:
        """Remember the current network so a failed attempt can return to it."""

        try:
            current = await self._connections.get_current_connection()
        except WiFiError as exc:
            logger.warning("Unable to read current connection for fallback: %s", exc)
            return
        if current is None:
            logger.debug("No current connection to save as fallback")
            return
        if current.ssid == self.get_effective_hotspot_ssid():
            logger.debug("Current connection is the hotspot; not saving as fallback")
            return
        self._store.set_fallback_network(current.ssid)
        logger.info("Saved fallback network %r", current.ssid)

    async def clear_fallback_network(self) -> None:
        self._store.clear_fallback_network()

    async def reconnect_to_fallback(self) -> None:
        """Re-activate the saved fallback profile.

        The profile must have been connected before so the driver still holds
        its secret; no password is supplied here.
        """

        fallback = self._store.get_fallback_network()
        if fallback is None:
            logger.info("No fallback network saved")
            return
        logger.info("Reconnecting to fallback network %r", fallback.ssid)
        try:
            await self._connections.disconnect()
        except WiFiError as exc:
            logger.info("Ignoring disconnect failure before fallback: %s", exc)
        try:
            await self._connections.activate_profile(fallback.ssid)
        except DriverError as exc:
            raise FallbackReconnectFailedError(fallback.ssid, exc) from exc
        logger.info("Reconnected to fallback network %r", fallback.ssid)

    # ---------------------------- screen tracking --------------------------
    def notify_connected_screen_displayed(self) -> None:
        self._connected_screen_displayed = True

    def has_connected_screen_been_displayed(self) -> bool:
        return self._connected_screen_displayed

    def reset_connected_screen_displayed(self) -> None:
        self._connected_screen_displayed = False

    # ------------------------------- logging -------------------------------
    def _record(self, event: str, message: str, metadata: dict[str, object | None]) -> None:
        if self._event_log is None:
            return
        self._event_log.record(event, message, metadata=metadata)

    def _record_failure(self, ssid: str, reason: str) -> None:
        self._record(
            "hotspot_attempt_failed",
            f"Attempt to join {ssid!r} failed: {reason}",
            {"ssid": ssid, "reason": reason},
        )


__all__ = ["HotspotManager", "MIN_PASSWORD_LENGTH"]
