"""In-memory Wi-Fi driver for development machines and tests."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Iterable, Sequence

from .wifi import WIRELESS_PROFILE_TYPE, DriverError, WiFiDriver


def escape_terse_field(value: str) -> str:
    return value.replace("\\", "\\\\").replace(":", "\\:")


@dataclass(slots=True)
class SimulatedNetwork:
    """A network the simulated radio can see."""

    ssid: str
    signal: int = 70
    security: str = "WPA2"
    frequency: int = 2437
    password: str | None = None


@dataclass(slots=True)
class SimulatedProfile:
    name: str
    password: str = ""
    type: str = WIRELESS_PROFILE_TYPE
    auto_connect: bool = True
    priority: int = 0


class SimulatedWiFiDriver(WiFiDriver):
    """Emulate nmcli's terse output on top of an in-memory network model."""

    def __init__(
        self,
        networks: Iterable[SimulatedNetwork] | None = None,
        *,
        interface: str = "wlan0",
        ip_address: str = "192.168.50.20",
        mac_address: str = "DC:A6:32:00:00:01",
        activation_delay: float = 0.0,
    ) -> None:
        self._lock = threading.Lock()
        self._networks: dict[str, SimulatedNetwork] = {
            network.ssid: network for network in networks or ()
        }
        self._profiles: dict[str, SimulatedProfile] = {}
        self._active: str | None = None
        self.interface = interface
        self.ip_address = ip_address
        self.mac_address = mac_address
        self.activation_delay = float(activation_delay)
        self.available = True
        self.scan_error: str | None = None
        self.activation_error: str | None = None
        self.activations: list[str] = []

    # ----------------------------- test controls ---------------------------
    def add_network(self, network: SimulatedNetwork) -> None:
        with self._lock:
            self._networks[network.ssid] = network

    def remove_network(self, ssid: str) -> None:
        """Take a network out of range, dropping the link if it was active."""

        with self._lock:
            self._networks.pop(ssid, None)
            if self._active == ssid:
                self._active = None

    def add_profile_record(self, profile: SimulatedProfile) -> None:
        with self._lock:
            self._profiles[profile.name] = profile

    def set_active(self, name: str | None) -> None:
        with self._lock:
            self._active = name

    @property
    def active(self) -> str | None:
        with self._lock:
            return self._active

    def profile(self, name: str) -> SimulatedProfile | None:
        with self._lock:
            return self._profiles.get(name)

    # ---------------------------- driver interface -------------------------
    def is_available(self) -> bool:
        return self.available

    def scan(self, fields: Sequence[str]) -> str:
        if self.scan_error:
            raise DriverError(self.scan_error)
        with self._lock:
            networks = sorted(self._networks.values(), key=lambda item: -item.signal)
        lines = []
        for network in networks:
            values = {
                "SSID": escape_terse_field(network.ssid),
                "SIGNAL": str(network.signal),
                "SECURITY": network.security or "--",
                "FREQ": f"{network.frequency} MHz",
            }
            lines.append(":".join(values.get(field, "") for field in fields))
        return "\n".join(lines) + ("\n" if lines else "")

    def device_status(self, fields: Sequence[str]) -> str:
        with self._lock:
            active = self._active
        values = {
            "GENERAL.CONNECTION": escape_terse_field(active) if active is not None else "--",
            "IP4.ADDRESS": f"{self.ip_address}/24" if active is not None else "",
            "GENERAL.HWADDR": escape_terse_field(self.mac_address),
        }
        lines = []
        for field in fields:
            value = values.get(field, "")
            if field == "IP4.ADDRESS":
                if value:
                    lines.append(f"IP4.ADDRESS[1]:{value}")
                continue
            lines.append(f"{field}:{value}")
        return "\n".join(lines) + "\n"

    def profile_exists(self, name: str) -> bool:
        with self._lock:
            return name in self._profiles

    def add_profile(
        self,
        ssid: str,
        password: str,
        *,
        auto_connect: bool | None = None,
        priority: int | None = None,
    ) -> None:
        profile = SimulatedProfile(
            name=ssid,
            password=password,
            auto_connect=True if auto_connect is None else bool(auto_connect),
            priority=0 if priority is None else int(priority),
        )
        with self._lock:
            self._profiles[ssid] = profile

    def delete_profile(self, name: str) -> None:
        with self._lock:
            if name not in self._profiles:
                raise DriverError(f"Error: unknown connection '{name}'.")
            del self._profiles[name]
            if self._active == name:
                self._active = None

    def activate_profile(self, name: str, *, timeout: float | None = None) -> str:
        if self.activation_delay > 0:
            time.sleep(self.activation_delay)
        if self.activation_error:
            raise DriverError(self.activation_error)
        with self._lock:
            self.activations.append(name)
            profile = self._profiles.get(name)
            if profile is None:
                raise DriverError(f"Error: unknown connection '{name}'.")
            network = self._networks.get(name)
            if network is None:
                raise DriverError(
                    "Error: Connection activation failed: "
                    f"No network with SSID '{name}' found."
                )
            if network.password is not None and network.password != profile.password:
                raise DriverError(
                    "Error: Connection activation failed: "
                    "Secrets were required, but not provided."
                )
            self._active = name
        return (
            "Connection successfully activated "
            "(D-Bus active path: /org/freedesktop/NetworkManager/ActiveConnection/1)"
        )

    def list_profiles(self, fields: Sequence[str]) -> str:
        with self._lock:
            profiles = list(self._profiles.values())
        lines = []
        for profile in profiles:
            values = {
                "NAME": escape_terse_field(profile.name),
                "TYPE": profile.type,
                "AUTOCONNECT": "yes" if profile.auto_connect else "no",
                "AUTOCONNECT-PRIORITY": str(profile.priority),
            }
            lines.append(":".join(values.get(field, "") for field in fields))
        return "\n".join(lines) + ("\n" if lines else "")

    def disconnect(self) -> None:
        with self._lock:
            self._active = None


__all__ = [
    "SimulatedNetwork",
    "SimulatedProfile",
    "SimulatedWiFiDriver",
    "escape_terse_field",
]
