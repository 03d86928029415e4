"""Top-level Wi-Fi state machine coordinating the hotspot workflow."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from .config import ConfigStore
from .connection import ConnectionManager
from .event_log import EventLog
from .hotspot import HotspotManager
from .scanner import NetworkScanner
from .scheduling import PeriodicTask
from .wifi import WiFiError, WiFiMode, WiFiState


logger = logging.getLogger(__name__)

StateCallback = Callable[[WiFiState, WiFiState], None]

_TRANSITIONAL_STATES = (WiFiState.CONNECTING, WiFiState.RECONNECTING_FALLBACK)


class WiFiStateMachine:
    """Own the authoritative :class:`WiFiState` and the hotspot poll loop.

    The mode is ``STOPPED`` while at least one UI client is attached and
    ``DRIVING`` otherwise.  Only stopped mode (or driving mode before
    onboarding has completed) ever initiates a hotspot attempt; driving mode
    merely keeps the state consistent with the current link.
    """

    def __init__(
        self,
        store: ConfigStore,
        scanner: NetworkScanner,
        connections: ConnectionManager,
        hotspot: HotspotManager,
        *,
        event_log: EventLog | None = None,
        poll_interval: float = 10.0,
        connect_delay: float = 5.0,
        grace_period: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._scanner = scanner
        self._connections = connections
        self._hotspot = hotspot
        self._event_log = event_log
        self._poll_interval = float(poll_interval)
        self._connect_delay = float(connect_delay)
        self._grace_period = float(grace_period)
        self._clock = clock
        self._state = WiFiState.IDLE
        self._client_count = 0
        self._connected_since: float | None = None
        self._callbacks: list[StateCallback] = []
        self._poller: PeriodicTask | None = None
        self._pending_attempt: asyncio.Task[None] | None = None

    # -------------------------------- state --------------------------------
    def get_state(self) -> WiFiState:
        return self._state

    def set_state(self, state: WiFiState) -> None:
        if state == self._state:
            return
        previous = self._state
        self._state = state
        if state == WiFiState.CONNECTED:
            self._connected_since = self._clock()
            self._hotspot.reset_connected_screen_displayed()
        else:
            self._connected_since = None
        logger.info("Wi-Fi state transition: %s -> %s", previous.value, state.value)
        if self._event_log is not None:
            self._event_log.record(
                "state_changed",
                f"{previous.value} -> {state.value}",
                state=state.value,
                previous_state=previous.value,
            )
        self._notify(state, previous)

    def on_state_change(self, callback: StateCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def clear_callbacks(self) -> None:
        self._callbacks.clear()

    def _notify(self, state: WiFiState, previous: WiFiState) -> None:
        for callback in list(self._callbacks):
            try:
                callback(state, previous)
            except Exception:
                logger.exception("State change callback failed")

    def reset(self) -> None:
        """Return to ``IDLE`` without notifying subscribers."""

        self._state = WiFiState.IDLE
        self._connected_since = None
        self._client_count = 0

    # --------------------------------- mode --------------------------------
    def get_mode(self) -> WiFiMode:
        return WiFiMode.STOPPED if self._client_count > 0 else WiFiMode.DRIVING

    def get_web_socket_client_count(self) -> int:
        return self._client_count

    def set_web_socket_client_count(self, count: int) -> None:
        previous = self._client_count
        self._client_count = max(0, int(count))
        logger.debug("UI client count %d -> %d", previous, self._client_count)

        if previous == 0 and self._client_count > 0:
            logger.info("Mode transition: driving -> stopped")
            if self._poller is not None:
                self._poller.trigger()

        if previous > 0 and self._client_count == 0:
            logger.info("Mode transition: stopped -> driving")
            if self._state in (WiFiState.WAITING_FOR_HOTSPOT, WiFiState.CONNECTING):
                self._hotspot.abort_connection_attempt()
                self.set_state(WiFiState.IDLE)

    # -------------------------------- polling ------------------------------
    def start_hotspot_polling(self) -> None:
        if self._poller is not None:
            return
        self._poller = PeriodicTask(
            self.poll_once, self._poll_interval, name="hotspot-poll", logger=logger
        )
        self._poller.start()
        logger.info("Hotspot polling started (%gs interval)", self._poll_interval)

    def stop_hotspot_polling(self) -> None:
        poller = self._poller
        self._poller = None
        if poller is not None:
            poller.stop()
            logger.info("Hotspot polling stopped")
        self._cancel_pending_attempt()

    async def aclose(self) -> None:
        """Stop polling and wait for the poll tick and pending attempt to finish."""

        poller = self._poller
        self._poller = None
        pending = self._pending_attempt
        self._cancel_pending_attempt()
        if poller is not None:
            await poller.aclose()
            logger.info("Hotspot polling stopped")
        if pending is not None:
            await asyncio.gather(pending, return_exceptions=True)

    async def poll_once(self) -> None:
        """Evaluate the hotspot link once and drive the state accordingly."""

        try:
            on_hotspot = await self._hotspot.is_connected_to_mobile_hotspot()
        except WiFiError as exc:
            logger.debug("Hotspot status unavailable: %s", exc)
            on_hotspot = False

        if on_hotspot:
            if self._state != WiFiState.CONNECTED:
                self.set_state(WiFiState.CONNECTED)
            elif (
                self._client_count == 0
                and not self._hotspot.has_connected_screen_been_displayed()
            ):
                # Nobody has seen the connected screen yet; nudge the UI again.
                self._notify(WiFiState.CONNECTED, WiFiState.CONNECTED)
            return

        if self._state == WiFiState.CONNECTED:
            since = self._connected_since
            elapsed = self._clock() - since if since is not None else float("inf")
            if elapsed < self._grace_period:
                logger.debug("Hotspot link missing %.1fs after connecting; ignoring", elapsed)
                return
            logger.info("Lost hotspot connection")
            self.set_state(WiFiState.WAITING_FOR_HOTSPOT)

        if self._client_count > 0:
            await self._seek_hotspot(require_clients=True)
        elif not self._store.is_onboarding_completed():
            await self._seek_hotspot(require_clients=False)
        else:
            await self._settle_driving_state()

    async def _seek_hotspot(self, *, require_clients: bool) -> None:
        if self._state == WiFiState.ERROR:
            self.set_state(WiFiState.IDLE)
        if self._state in _TRANSITIONAL_STATES:
            logger.debug("Attempt already underway (%s)", self._state.value)
            return

        ssid = self._hotspot.get_effective_hotspot_ssid()
        if not await self._scanner.is_network_visible(ssid):
            if self._state != WiFiState.WAITING_FOR_HOTSPOT:
                self.set_state(WiFiState.WAITING_FOR_HOTSPOT)
            return

        await self._hotspot.save_fallback_network()
        if self._state != WiFiState.WAITING_FOR_HOTSPOT:
            self.set_state(WiFiState.WAITING_FOR_HOTSPOT)
        self._schedule_attempt(require_clients=require_clients)

    async def _settle_driving_state(self) -> None:
        if self._state in (WiFiState.IDLE, WiFiState.DISCONNECTED):
            return
        try:
            connected = await self._connections.is_connected()
        except WiFiError as exc:
            logger.debug("Connection status unavailable in driving mode: %s", exc)
            return
        self.set_state(WiFiState.IDLE if connected else WiFiState.DISCONNECTED)

    # ------------------------------- attempts ------------------------------
    def _schedule_attempt(self, *, require_clients: bool) -> None:
        pending = self._pending_attempt
        if pending is not None and not pending.done():
            return
        loop = asyncio.get_running_loop()
        self._pending_attempt = loop.create_task(
            self._debounced_attempt(require_clients), name="hotspot-attempt"
        )
        logger.info("Hotspot attempt scheduled in %gs", self._connect_delay)

    async def _debounced_attempt(self, require_clients: bool) -> None:
        await asyncio.sleep(self._connect_delay)
        if self._state != WiFiState.WAITING_FOR_HOTSPOT or (
            require_clients and self._client_count == 0
        ):
            logger.info(
                "Skipping hotspot attempt (state=%s, clients=%d)",
                self._state.value,
                self._client_count,
            )
            return
        try:
            await self._hotspot.attempt_mobile_hotspot_connection()
        except WiFiError as exc:
            logger.warning("Hotspot connection attempt failed: %s", exc)

    def _cancel_pending_attempt(self) -> None:
        pending = self._pending_attempt
        self._pending_attempt = None
        if pending is not None and not pending.done():
            pending.cancel()


__all__ = ["WiFiStateMachine"]
