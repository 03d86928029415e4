"""Wi-Fi network discovery built on the driver's scan listing."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Callable

from .wifi import (
    DriverError,
    ScanFailedError,
    WiFiDriver,
    WiFiNetwork,
    WiFiNotInitializedError,
    split_terse_line,
    unescape_terse_field,
)


logger = logging.getLogger(__name__)

SCAN_FIELDS = ("SSID", "SIGNAL", "SECURITY", "FREQ")
_LEADING_INT = re.compile(r"^\s*(-?\d+)")


def parse_security(value: str | None) -> str:
    """Collapse an nmcli security column to a single protocol name."""

    if not value or value.strip() in {"", "--"}:
        return "Open"
    if "WPA3" in value:
        return "WPA3"
    if "WPA2" in value:
        return "WPA2"
    if "WPA" in value:
        return "WPA"
    if "WEP" in value:
        return "WEP"
    return "Unknown"


def _parse_int(value: str | None) -> int:
    if not value:
        return 0
    match = _LEADING_INT.match(value)
    if match is None:
        return 0
    return int(match.group(1))


def parse_scan_output(output: str) -> list[WiFiNetwork]:
    """Parse ``SSID:SIGNAL:SECURITY:FREQ`` terse records, skipping hidden networks."""

    networks: list[WiFiNetwork] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = split_terse_line(line)
        while len(parts) < len(SCAN_FIELDS):
            parts.append("")
        ssid, signal, security, frequency = parts[:4]
        if not ssid:
            continue
        networks.append(
            WiFiNetwork(
                ssid=ssid,
                signal_strength=_parse_int(signal),
                security=parse_security(security),
                frequency=_parse_int(frequency),
            )
        )
    return networks


class NetworkScanner:
    """Answer what is visible and how strong it is."""

    def __init__(
        self,
        driver: WiFiDriver,
        *,
        initialized: Callable[[], bool] | None = None,
    ) -> None:
        self._driver = driver
        self._initialized = initialized or (lambda: True)

    async def scan_networks(self) -> list[WiFiNetwork]:
        if not self._initialized():
            raise WiFiNotInitializedError()
        try:
            output = await asyncio.to_thread(self._driver.scan, SCAN_FIELDS)
        except DriverError as exc:
            logger.error("Failed to scan networks: %s", exc)
            raise ScanFailedError(exc) from exc
        networks = parse_scan_output(output)
        logger.info("Found %d Wi-Fi networks", len(networks))
        for network in networks:
            logger.debug(
                "  %r (%d%%, %s, %d MHz)",
                network.ssid,
                network.signal_strength,
                network.security,
                network.frequency,
            )
        return networks

    async def is_network_visible(self, ssid: str) -> bool:
        """Return ``True`` when ``ssid`` appears verbatim in a fresh scan."""

        try:
            output = await asyncio.to_thread(self._driver.scan, ("SSID",))
        except DriverError as exc:
            logger.warning("Failed to scan for network %r: %s", ssid, exc)
            return False
        visible = any(
            unescape_terse_field(line.strip()) == ssid for line in output.splitlines()
        )
        logger.info("Network %r is %svisible", ssid, "" if visible else "NOT ")
        return visible

    async def get_signal_strength(self, ssid: str) -> int:
        try:
            output = await asyncio.to_thread(self._driver.scan, ("SSID", "SIGNAL"))
        except DriverError as exc:
            logger.debug("Could not read signal strength for %r: %s", ssid, exc)
            return 0
        for line in output.splitlines():
            parts = split_terse_line(line)
            if len(parts) >= 2 and parts[0] == ssid:
                return _parse_int(parts[1])
        return 0


__all__ = ["SCAN_FIELDS", "NetworkScanner", "parse_scan_output", "parse_security"]
