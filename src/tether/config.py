"""Configuration for the Tether Wi-Fi service."""
from __future__ import annotations

import json
import logging
import math
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from .wifi import FallbackNetwork, HotspotConfig


logger = logging.getLogger(__name__)

DEFAULT_PRIMARY_SSID = "Tether-Setup"
DEFAULT_PRIMARY_PASSWORD = "tether123"
DEFAULT_CONNECTION_TIMEOUT = 60.0
DEFAULT_INTERFACE = "wlan0"
DRIVER_CHOICES = ("nmcli", "simulated")
DEFAULT_CONFIG_PATH = Path("data/config.json")
DEFAULT_EVENT_LOG_PATH = Path("data/wifi_events.jsonl")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_flag(name: str, raw: str | None) -> bool | None:
    if not raw:
        return None
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    logger.warning("Invalid %s value %r; ignoring", name, raw)
    return None


@dataclass(frozen=True, slots=True)
class WiFiSettings:
    """Deployment settings for the Wi-Fi subsystem."""

    enabled: bool = True
    primary_ssid: str = DEFAULT_PRIMARY_SSID
    primary_password: str = DEFAULT_PRIMARY_PASSWORD
    connection_timeout: float = DEFAULT_CONNECTION_TIMEOUT
    interface: str = DEFAULT_INTERFACE
    driver: str = "nmcli"
    use_sudo: bool = False

    def __post_init__(self) -> None:
        ssid = self.primary_ssid.strip() if isinstance(self.primary_ssid, str) else ""
        if not ssid:
            raise ValueError("Primary hotspot SSID must be a non-empty string")
        if not isinstance(self.primary_password, str):
            raise ValueError("Primary hotspot password must be a string")
        try:
            timeout = float(self.connection_timeout)
        except (TypeError, ValueError) as exc:
            raise ValueError("Connection timeout must be numeric") from exc
        if not math.isfinite(timeout) or timeout <= 0:
            raise ValueError("Connection timeout must be a positive number of seconds")
        interface = self.interface.strip() if isinstance(self.interface, str) else ""
        if not interface:
            raise ValueError("Wi-Fi interface must be a non-empty string")
        driver = self.driver.strip().lower() if isinstance(self.driver, str) else ""
        if driver not in DRIVER_CHOICES:
            raise ValueError(f"Wi-Fi driver must be one of: {', '.join(DRIVER_CHOICES)}")
        object.__setattr__(self, "enabled", bool(self.enabled))
        object.__setattr__(self, "use_sudo", bool(self.use_sudo))
        object.__setattr__(self, "primary_ssid", ssid)
        object.__setattr__(self, "connection_timeout", timeout)
        object.__setattr__(self, "interface", interface)
        object.__setattr__(self, "driver", driver)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "WiFiSettings":
        """Build settings from ``TETHER_WIFI_*`` variables, ignoring bad values."""

        env = os.environ if environ is None else environ
        defaults = cls()
        values: dict[str, Any] = {}

        for name, field in (
            ("TETHER_WIFI_ENABLED", "enabled"),
            ("TETHER_WIFI_USE_SUDO", "use_sudo"),
        ):
            flag = _parse_flag(name, env.get(name))
            if flag is not None:
                values[field] = flag

        ssid_raw = env.get("TETHER_WIFI_PRIMARY_SSID")
        if ssid_raw is not None:
            if ssid_raw.strip():
                values["primary_ssid"] = ssid_raw.strip()
            else:
                logger.warning("Empty TETHER_WIFI_PRIMARY_SSID; using %r", defaults.primary_ssid)

        password_raw = env.get("TETHER_WIFI_PRIMARY_PASSWORD")
        if password_raw is not None:
            values["primary_password"] = password_raw

        timeout_raw = env.get("TETHER_WIFI_CONNECTION_TIMEOUT")
        if timeout_raw:
            try:
                timeout = float(timeout_raw)
            except ValueError:
                timeout = math.nan
            if math.isfinite(timeout) and timeout > 0:
                values["connection_timeout"] = timeout
            else:
                logger.warning(
                    "Invalid TETHER_WIFI_CONNECTION_TIMEOUT value %r; ignoring", timeout_raw
                )

        interface_raw = env.get("TETHER_WIFI_INTERFACE")
        if interface_raw and interface_raw.strip():
            values["interface"] = interface_raw.strip()

        driver_raw = env.get("TETHER_WIFI_DRIVER")
        if driver_raw:
            driver = driver_raw.strip().lower()
            if driver in DRIVER_CHOICES:
                values["driver"] = driver
            else:
                logger.warning("Invalid TETHER_WIFI_DRIVER value %r; ignoring", driver_raw)

        return cls(**values)

    def to_dict(self) -> dict[str, object]:
        return {
            "enabled": self.enabled,
            "primary_ssid": self.primary_ssid,
            "connection_timeout": self.connection_timeout,
            "interface": self.interface,
            "driver": self.driver,
            "use_sudo": self.use_sudo,
        }


@dataclass(frozen=True, slots=True)
class WiFiTimings:
    """Intervals and delays, in seconds, used by the Wi-Fi components."""

    poll_interval: float = 10.0
    monitor_interval: float = 5.0
    connect_delay: float = 5.0
    grace_period: float = 5.0
    attempt_timeout: float = 60.0
    settle_delay: float = 2.0
    verify_retry_delay: float = 3.0

    def __post_init__(self) -> None:
        for name in ("poll_interval", "monitor_interval", "attempt_timeout"):
            value = float(getattr(self, name))
            if not math.isfinite(value) or value <= 0:
                raise ValueError(f"{name} must be a positive number of seconds")
            object.__setattr__(self, name, value)
        for name in ("connect_delay", "grace_period", "settle_delay", "verify_retry_delay"):
            value = float(getattr(self, name))
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"{name} must not be negative")
            object.__setattr__(self, name, value)


def config_path_from_env(environ: Mapping[str, str] | None = None) -> Path:
    env = os.environ if environ is None else environ
    raw = env.get("TETHER_CONFIG_PATH")
    return Path(raw) if raw and raw.strip() else DEFAULT_CONFIG_PATH


def event_log_path_from_env(environ: Mapping[str, str] | None = None) -> Path | None:
    """Return the event log path; an explicit empty value disables persistence."""

    env = os.environ if environ is None else environ
    raw = env.get("TETHER_EVENT_LOG_PATH")
    if raw is None:
        return DEFAULT_EVENT_LOG_PATH
    return Path(raw) if raw.strip() else None


class ConfigStore:
    """Persist the hotspot override, fallback network and onboarding flag."""

    def __init__(self, path: Path | str = DEFAULT_CONFIG_PATH) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._hotspot: HotspotConfig | None = None
        self._fallback: FallbackNetwork | None = None
        self._onboarding_completed = False
        self._ensure_parent()
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_parent(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:  # pragma: no cover - filesystem errors are rare
            logger.warning("Unable to prepare configuration directory: %s", exc)

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError("Configuration file must contain a JSON object")
        except (OSError, ValueError) as exc:
            logger.warning("Unable to load configuration: %s", exc)
            return
        self._hotspot = _parse_hotspot(payload.get("hotspot"))
        self._fallback = _parse_fallback(payload.get("fallback_network"))
        self._onboarding_completed = payload.get("onboarding_completed") is True

    def _save_locked(self) -> None:
        payload: dict[str, Any] = {
            "hotspot": (
                {
                    "ssid": self._hotspot.ssid,
                    "password": self._hotspot.password,
                    "updated_at": self._hotspot.updated_at,
                }
                if self._hotspot is not None
                else None
            ),
            "fallback_network": self._fallback.to_dict() if self._fallback else None,
            "onboarding_completed": self._onboarding_completed,
        }
        try:
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("Unable to persist configuration: %s", exc)

    # ------------------------------- hotspot -------------------------------
    def get_hotspot(self) -> HotspotConfig | None:
        with self._lock:
            return self._hotspot

    def set_hotspot(self, ssid: str, password: str) -> HotspotConfig:
        config = HotspotConfig(ssid=ssid, password=password, updated_at=_utcnow())
        with self._lock:
            self._hotspot = config
            self._save_locked()
        return config

    # ------------------------------- fallback ------------------------------
    def get_fallback_network(self) -> FallbackNetwork | None:
        with self._lock:
            return self._fallback

    def set_fallback_network(self, ssid: str) -> FallbackNetwork:
        record = FallbackNetwork(ssid=ssid, saved_at=_utcnow())
        with self._lock:
            self._fallback = record
            self._save_locked()
        return record

    def clear_fallback_network(self) -> None:
        with self._lock:
            if self._fallback is None:
                return
            self._fallback = None
            self._save_locked()

    # ------------------------------ onboarding -----------------------------
    def is_onboarding_completed(self) -> bool:
        with self._lock:
            return self._onboarding_completed

    def set_onboarding_completed(self, completed: bool = True) -> None:
        with self._lock:
            self._onboarding_completed = bool(completed)
            self._save_locked()


def _parse_hotspot(payload: object) -> HotspotConfig | None:
    if not isinstance(payload, Mapping):
        return None
    ssid = payload.get("ssid")
    password = payload.get("password")
    if not isinstance(ssid, str) or not ssid.strip():
        return None
    if not isinstance(password, str):
        return None
    updated_at = payload.get("updated_at")
    if not isinstance(updated_at, str) or not updated_at:
        updated_at = _utcnow()
    return HotspotConfig(ssid=ssid.strip(), password=password, updated_at=updated_at)


def _parse_fallback(payload: object) -> FallbackNetwork | None:
    if not isinstance(payload, Mapping):
        return None
    ssid = payload.get("ssid")
    if not isinstance(ssid, str) or not ssid.strip():
        return None
    saved_at = payload.get("saved_at")
    if not isinstance(saved_at, str) or not saved_at:
        saved_at = _utcnow()
    return FallbackNetwork(ssid=ssid.strip(), saved_at=saved_at)


__all__ = [
    "DEFAULT_PRIMARY_SSID",
    "DEFAULT_PRIMARY_PASSWORD",
    "DEFAULT_CONNECTION_TIMEOUT",
    "DEFAULT_INTERFACE",
    "DRIVER_CHOICES",
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_EVENT_LOG_PATH",
    "WiFiSettings",
    "WiFiTimings",
    "ConfigStore",
    "config_path_from_env",
    "event_log_path_from_env",
]
