"""Wi-Fi types, error taxonomy and the NetworkManager driver."""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Sequence


logger = logging.getLogger(__name__)

WIRELESS_PROFILE_TYPE = "802-11-wireless"

_TERSE_SEPARATOR = re.compile(r"(?<!\\):")


class WiFiState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    WAITING_FOR_HOTSPOT = "waiting_for_hotspot"
    RECONNECTING_FALLBACK = "reconnecting_fallback"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class WiFiMode(str, Enum):
    DRIVING = "driving"
    STOPPED = "stopped"


# ------------------------------- errors --------------------------------
class WiFiError(RuntimeError):
    """Raised when Wi-Fi operations fail."""

    code = "WIFI_UNKNOWN"


class DriverError(WiFiError):
    """Raised by a driver when the underlying network tool fails."""

    code = "WIFI_DRIVER"


class DriverUnavailableError(WiFiError):
    code = "WIFI_DRIVER_UNAVAILABLE"

    def __init__(self, message: str = "NetworkManager (nmcli) is not available") -> None:
        super().__init__(message)


class WiFiNotInitializedError(WiFiError):
    code = "WIFI_NOT_INITIALIZED"

    def __init__(self) -> None:
        super().__init__("WiFi service not initialized")


class ScanFailedError(WiFiError):
    code = "WIFI_SCAN_FAILED"

    def __init__(self, cause: Exception) -> None:
        super().__init__(f"Failed to scan networks: {cause}")
        self.cause = cause


class NetworkNotFoundError(WiFiError):
    code = "WIFI_NETWORK_NOT_FOUND"

    def __init__(self, ssid: str) -> None:
        super().__init__(f'Network "{ssid}" not found')
        self.ssid = ssid


class AuthFailedError(WiFiError):
    code = "WIFI_AUTH_FAILED"

    def __init__(self, ssid: str) -> None:
        super().__init__(f'Authentication failed for "{ssid}"')
        self.ssid = ssid


class ConnectionFailedError(WiFiError):
    code = "WIFI_CONNECTION_FAILED"

    def __init__(self, ssid: str, cause: Exception | str) -> None:
        super().__init__(f'Failed to connect to "{ssid}": {cause}')
        self.ssid = ssid
        self.cause = cause


class WiFiTimeoutError(WiFiError):
    code = "WIFI_TIMEOUT"

    def __init__(self, operation: str, seconds: float) -> None:
        super().__init__(f"WiFi operation timed out after {seconds:g}s: {operation}")
        self.operation = operation
        self.seconds = seconds


class NotConnectedError(WiFiError):
    code = "WIFI_NOT_CONNECTED"

    def __init__(self) -> None:
        super().__init__("Not connected to any WiFi network")


class AttemptInProgressError(WiFiError):
    code = "WIFI_ATTEMPT_IN_PROGRESS"

    def __init__(self) -> None:
        super().__init__("Connection attempt already in progress")


class HotspotConnectionTimeoutError(WiFiError):
    code = "WIFI_HOTSPOT_TIMEOUT"

    def __init__(self, ssid: str, seconds: float) -> None:
        super().__init__(f'Connection to hotspot "{ssid}" timed out after {seconds:g}s')
        self.ssid = ssid
        self.seconds = seconds


class FallbackReconnectFailedError(WiFiError):
    code = "WIFI_FALLBACK_FAILED"

    def __init__(self, ssid: str, cause: Exception) -> None:
        super().__init__(f'Failed to reconnect to fallback network "{ssid}": {cause}')
        self.ssid = ssid
        self.cause = cause


# -------------------------------- types --------------------------------
@dataclass(slots=True)
class WiFiNetwork:
    """Represents a Wi-Fi network discovered during a scan."""

    ssid: str
    signal_strength: int = 0
    security: str = "Unknown"
    frequency: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "ssid": self.ssid,
            "signal_strength": self.signal_strength,
            "security": self.security,
            "frequency": self.frequency,
        }


@dataclass(slots=True)
class WiFiConnection:
    """Point-in-time snapshot of the active Wi-Fi connection."""

    ssid: str
    ip_address: str
    mac_address: str
    signal_strength: int
    connected_at: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "ssid": self.ssid,
            "ip_address": self.ip_address,
            "mac_address": self.mac_address,
            "signal_strength": self.signal_strength,
            "connected_at": self.connected_at.isoformat(),
        }


@dataclass(slots=True)
class WiFiNetworkConfig:
    """A saved network profile. The password is never read back from the driver."""

    ssid: str
    password: str = ""
    priority: int = 0
    auto_connect: bool = True

    def to_dict(self) -> dict[str, object]:
        return {
            "ssid": self.ssid,
            "priority": self.priority,
            "auto_connect": self.auto_connect,
        }


@dataclass(slots=True)
class HotspotConfig:
    ssid: str
    password: str
    updated_at: str

    def to_dict(self) -> dict[str, object]:
        return {
            "ssid": self.ssid,
            "has_password": bool(self.password),
            "updated_at": self.updated_at,
        }


@dataclass(slots=True)
class FallbackNetwork:
    ssid: str
    saved_at: str

    def to_dict(self) -> dict[str, object]:
        return {"ssid": self.ssid, "saved_at": self.saved_at}


# ---------------------------- terse parsing ----------------------------
def unescape_terse_field(value: str) -> str:
    """Best effort unescaping for nmcli's colon-delimited output."""

    if "\\" not in value:
        return value
    # nmcli escapes literal backslashes and colons only.
    return value.replace("\\\\", "\\").replace("\\:", ":")


def split_terse_line(line: str) -> list[str]:
    """Split a terse nmcli record on unescaped colons."""

    return [unescape_terse_field(part) for part in _TERSE_SEPARATOR.split(line)]


# -------------------------------- driver -------------------------------
class WiFiDriver:
    """Abstract interface over the host's network management tool."""

    def is_available(self) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    def scan(self, fields: Sequence[str]) -> str:  # pragma: no cover - interface only
        raise NotImplementedError

    def device_status(self, fields: Sequence[str]) -> str:  # pragma: no cover - interface only
        raise NotImplementedError

    def profile_exists(self, name: str) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    def add_profile(
        self,
        ssid: str,
        password: str,
        *,
        auto_connect: bool | None = None,
        priority: int | None = None,
    ) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def delete_profile(self, name: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def activate_profile(self, name: str, *, timeout: float | None = None) -> str:  # pragma: no cover
        raise NotImplementedError

    def list_profiles(self, fields: Sequence[str]) -> str:  # pragma: no cover - interface only
        raise NotImplementedError

    def disconnect(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError


class NMCLIDriver(WiFiDriver):
    """Interact with NetworkManager via nmcli commands."""

    def __init__(
        self,
        interface: str = "wlan0",
        *,
        timeout: float = 15.0,
        use_sudo: bool = False,
    ) -> None:
        self._interface = interface
        self._timeout = timeout
        self._prefix = ["sudo"] if use_sudo else []

    # ------------------------------- helpers -------------------------------
    def _run(self, args: Sequence[str], *, timeout: float | None = None) -> str:
        command = [*self._prefix, *args]
        try:
            completed = subprocess.run(
                command,
                check=True,
                capture_output=True,
                text=True,
                timeout=timeout if timeout is not None else self._timeout,
            )
        except FileNotFoundError as exc:  # pragma: no cover - environment specific
            raise DriverError("nmcli command unavailable") from exc
        except subprocess.TimeoutExpired as exc:  # pragma: no cover - environment specific
            raise DriverError("nmcli command timed out") from exc
        except subprocess.CalledProcessError as exc:
            error_output = exc.stderr.strip() or exc.stdout.strip() or str(exc)
            raise DriverError(error_output)
        return completed.stdout

    # ---------------------------- interface impl ---------------------------
    def is_available(self) -> bool:
        return shutil.which("nmcli") is not None

    def scan(self, fields: Sequence[str]) -> str:
        try:
            self._run(["nmcli", "device", "wifi", "rescan", "ifname", self._interface])
        except DriverError as exc:
            message = str(exc).lower()
            if "not authorized" in message or "not authorised" in message:
                raise
            # Rescan is refused while one is running; fall back to the cached list.
            logger.debug("Wi-Fi rescan refused: %s", exc)
        return self._run(
            [
                "nmcli",
                "-t",
                "-f",
                ",".join(fields),
                "device",
                "wifi",
                "list",
                "ifname",
                self._interface,
            ]
        )

    def device_status(self, fields: Sequence[str]) -> str:
        return self._run(
            ["nmcli", "-t", "-f", ",".join(fields), "device", "show", self._interface]
        )

    def profile_exists(self, name: str) -> bool:
        try:
            self._run(["nmcli", "connection", "show", name])
        except DriverError:
            return False
        return True

    def add_profile(
        self,
        ssid: str,
        password: str,
        *,
        auto_connect: bool | None = None,
        priority: int | None = None,
    ) -> None:
        args = [
            "nmcli",
            "connection",
            "add",
            "type",
            "wifi",
            "con-name",
            ssid,
            "ifname",
            self._interface,
            "ssid",
            ssid,
            "wifi-sec.key-mgmt",
            "wpa-psk",
            "wifi-sec.psk",
            password,
        ]
        if auto_connect is not None:
            args.extend(["connection.autoconnect", "yes" if auto_connect else "no"])
        if priority is not None:
            args.extend(["connection.autoconnect-priority", str(int(priority))])
        self._run(args)

    def delete_profile(self, name: str) -> None:
        self._run(["nmcli", "connection", "delete", name])

    def activate_profile(self, name: str, *, timeout: float | None = None) -> str:
        return self._run(["nmcli", "connection", "up", name], timeout=timeout)

    def list_profiles(self, fields: Sequence[str]) -> str:
        return self._run(["nmcli", "-t", "-f", ",".join(fields), "connection", "show"])

    def disconnect(self) -> None:
        try:
            self._run(["nmcli", "device", "disconnect", self._interface])
        except DriverError as exc:
            lowered = str(exc).lower()
            if "is not active" in lowered or "already disconnected" in lowered:
                return
            raise


__all__ = [
    "WIRELESS_PROFILE_TYPE",
    "WiFiState",
    "WiFiMode",
    "WiFiError",
    "DriverError",
    "DriverUnavailableError",
    "WiFiNotInitializedError",
    "ScanFailedError",
    "NetworkNotFoundError",
    "AuthFailedError",
    "ConnectionFailedError",
    "WiFiTimeoutError",
    "NotConnectedError",
    "AttemptInProgressError",
    "HotspotConnectionTimeoutError",
    "FallbackReconnectFailedError",
    "WiFiNetwork",
    "WiFiConnection",
    "WiFiNetworkConfig",
    "HotspotConfig",
    "FallbackNetwork",
    "unescape_terse_field",
    "split_terse_line",
    "WiFiDriver",
    "NMCLIDriver",
]
