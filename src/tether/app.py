"""FastAPI application exposing the Tether Wi-Fi service."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from .api import router as wifi_router
from .config import ConfigStore, WiFiSettings, config_path_from_env, event_log_path_from_env
from .event_log import EventLog
from .service import WiFiService
from .version import APP_VERSION
from .wifi import WiFiError, WiFiState


logger = logging.getLogger(__name__)


class ClientRegistry:
    """Track attached UI clients and push state changes to them."""

    def __init__(self, service: WiFiService) -> None:
        self.active_connections: list[WebSocket] = []
        self._service = service
        self._pending: set[asyncio.Task[None]] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info("UI client connected. Total: %d", len(self.active_connections))
        self._service.set_web_socket_client_count(len(self.active_connections))

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        logger.info("UI client disconnected. Total: %d", len(self.active_connections))
        self._service.set_web_socket_client_count(len(self.active_connections))

    async def broadcast(self, message: dict[str, object]) -> None:
        stale: list[WebSocket] = []
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception:
                stale.append(connection)
        for connection in stale:
            self.disconnect(connection)

    def state_changed(self, state: WiFiState, previous: WiFiState) -> None:
        if not self.active_connections:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.broadcast(state_message(self._service, previous, state)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


def state_message(
    service: WiFiService,
    previous: WiFiState | None = None,
    state: WiFiState | None = None,
) -> dict[str, object]:
    current = state if state is not None else service.get_state()
    return {
        "type": "state",
        "state": current.value,
        "previous_state": previous.value if previous is not None else None,
        "mode": service.get_mode().value,
        "hotspot_ssid": service.get_mobile_hotspot_ssid(),
    }


def create_app(
    settings: WiFiSettings | None = None,
    *,
    service: WiFiService | None = None,
    config_path: Path | str | None = None,
    event_log_path: Path | str | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    When ``service`` is omitted one is created from ``settings`` (or the
    environment) with its configuration persisted at ``config_path``.
    """

    if service is None:
        settings = settings or WiFiSettings.from_env()
        store = ConfigStore(config_path if config_path is not None else config_path_from_env())
        log_path = event_log_path if event_log_path is not None else event_log_path_from_env()
        service = WiFiService(settings, store=store, event_log=EventLog(log_path))
    wifi_service = service
    registry = ClientRegistry(wifi_service)

    app = FastAPI(title="Tether", version=APP_VERSION)
    app.state.wifi_service = wifi_service
    app.state.client_registry = registry
    app.include_router(wifi_router)

    @app.on_event("startup")
    async def startup() -> None:  # pragma: no cover - framework hook
        wifi_service.event_log.record("startup", "Tether starting up.")
        wifi_service.on_state_change(registry.state_changed)
        if not wifi_service.settings.enabled:
            logger.info("Wi-Fi management disabled by configuration")
            return
        try:
            await wifi_service.initialize()
        except WiFiError as exc:
            logger.warning("Wi-Fi service unavailable: %s", exc)

    @app.on_event("shutdown")
    async def shutdown() -> None:  # pragma: no cover - framework hook
        await wifi_service.dispose()
        wifi_service.event_log.record("shutdown", "Tether shutdown complete.")

    @app.get("/api/health")
    def health() -> dict[str, object]:
        return {
            "version": APP_VERSION,
            "initialized": wifi_service.is_initialized(),
            "state": wifi_service.get_state().value,
        }

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await registry.connect(websocket)
        try:
            await websocket.send_json(state_message(wifi_service))
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except ValueError:
                    continue
                if isinstance(message, dict) and message.get("type") == "screen_displayed":
                    wifi_service.notify_connected_screen_displayed()
        except WebSocketDisconnect:
            pass
        finally:
            registry.disconnect(websocket)

    return app


__all__ = ["ClientRegistry", "create_app", "state_message"]
