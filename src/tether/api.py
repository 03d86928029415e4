from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from .service import WiFiService
from .wifi import (
    AttemptInProgressError,
    DriverUnavailableError,
    HotspotConnectionTimeoutError,
    NetworkNotFoundError,
    NotConnectedError,
    WiFiError,
    WiFiNetworkConfig,
    WiFiNotInitializedError,
    WiFiTimeoutError,
)

router = APIRouter(prefix="/api/wifi", tags=["wifi"])


class ConnectPayload(BaseModel):
    ssid: str = Field(..., min_length=1)
    password: str = ""


class SavedNetworkPayload(BaseModel):
    ssid: str = Field(..., min_length=1)
    password: str = ""
    priority: int = 0
    auto_connect: bool = True


class HotspotPayload(BaseModel):
    ssid: str
    password: str


def get_wifi_service(request: Request) -> WiFiService:
    return request.app.state.wifi_service


def _status_for(exc: WiFiError) -> int:
    if isinstance(exc, (WiFiNotInitializedError, DriverUnavailableError)):
        return 503
    if isinstance(exc, NetworkNotFoundError):
        return 404
    if isinstance(exc, (NotConnectedError, AttemptInProgressError)):
        return 409
    if isinstance(exc, (WiFiTimeoutError, HotspotConnectionTimeoutError)):
        return 504
    return 400


def _http_error(exc: WiFiError) -> HTTPException:
    return HTTPException(status_code=_status_for(exc), detail=str(exc))


def _state_payload(service: WiFiService) -> dict[str, object]:
    machine = service.state_machine
    return {
        "state": service.get_state().value,
        "mode": service.get_mode().value,
        "clients": machine.get_web_socket_client_count(),
        "hotspot_ssid": service.get_mobile_hotspot_ssid(),
        "attempt_in_progress": service.hotspot_manager.is_connection_attempt_in_progress(),
        "onboarding_completed": service.is_onboarding_completed(),
    }


@router.get("/state")
def get_state(service: WiFiService = Depends(get_wifi_service)) -> dict[str, object]:
    return _state_payload(service)


@router.get("/networks")
async def list_networks(service: WiFiService = Depends(get_wifi_service)) -> dict[str, object]:
    try:
        networks = await service.scan_networks()
    except WiFiError as exc:
        raise _http_error(exc) from exc
    return {"networks": [network.to_dict() for network in networks]}


@router.get("/connection")
async def get_connection(service: WiFiService = Depends(get_wifi_service)) -> dict[str, object]:
    try:
        connection = await service.get_current_connection()
    except WiFiError as exc:
        raise _http_error(exc) from exc
    return {
        "connected": connection is not None,
        "connection": connection.to_dict() if connection is not None else None,
    }


@router.post("/connect")
async def connect(
    payload: ConnectPayload, service: WiFiService = Depends(get_wifi_service)
) -> dict[str, object]:
    try:
        await service.connect(payload.ssid, payload.password)
        connection = await service.get_current_connection()
    except WiFiError as exc:
        raise _http_error(exc) from exc
    return {
        "connected": connection is not None,
        "connection": connection.to_dict() if connection is not None else None,
    }


@router.post("/disconnect")
async def disconnect(service: WiFiService = Depends(get_wifi_service)) -> dict[str, object]:
    try:
        await service.disconnect()
    except WiFiError as exc:
        raise _http_error(exc) from exc
    return {"connected": False, "connection": None}


@router.get("/saved")
async def list_saved(service: WiFiService = Depends(get_wifi_service)) -> dict[str, object]:
    try:
        networks = await service.get_saved_networks()
    except WiFiError as exc:
        raise _http_error(exc) from exc
    return {"networks": [network.to_dict() for network in networks]}


@router.post("/saved", status_code=201)
async def save_network(
    payload: SavedNetworkPayload, service: WiFiService = Depends(get_wifi_service)
) -> dict[str, object]:
    config = WiFiNetworkConfig(
        ssid=payload.ssid,
        password=payload.password,
        priority=payload.priority,
        auto_connect=payload.auto_connect,
    )
    try:
        await service.save_network(config)
    except WiFiError as exc:
        raise _http_error(exc) from exc
    return config.to_dict()


@router.delete("/saved/{ssid}")
async def remove_network(
    ssid: str, service: WiFiService = Depends(get_wifi_service)
) -> dict[str, object]:
    try:
        await service.remove_network(ssid)
    except WiFiError as exc:
        raise _http_error(exc) from exc
    return {"removed": ssid}


@router.get("/hotspot")
def get_hotspot(service: WiFiService = Depends(get_wifi_service)) -> dict[str, object]:
    return service.get_hotspot_config().to_dict()


@router.put("/hotspot")
async def update_hotspot(
    payload: HotspotPayload, service: WiFiService = Depends(get_wifi_service)
) -> dict[str, object]:
    try:
        config = await service.set_hotspot_config(payload.ssid, payload.password)
    except WiFiError as exc:
        raise _http_error(exc) from exc
    return config.to_dict()


@router.post("/hotspot/attempt")
async def attempt_hotspot(service: WiFiService = Depends(get_wifi_service)) -> dict[str, object]:
    try:
        await service.attempt_mobile_hotspot_connection()
    except WiFiError as exc:
        raise _http_error(exc) from exc
    return _state_payload(service)


@router.post("/hotspot/screen-displayed")
def screen_displayed(service: WiFiService = Depends(get_wifi_service)) -> dict[str, object]:
    service.notify_connected_screen_displayed()
    return {"displayed": True}


@router.get("/log")
def get_log(
    limit: int = 50, service: WiFiService = Depends(get_wifi_service)
) -> dict[str, object]:
    entries = service.get_event_log(limit)
    return {"entries": [entry.to_dict() for entry in reversed(entries)]}


__all__ = ["router", "get_wifi_service"]
