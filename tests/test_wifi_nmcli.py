import subprocess

import pytest

from tether import wifi
from tether.wifi import DriverError, NMCLIDriver, split_terse_line, unescape_terse_field


def _recording_driver(monkeypatch: pytest.MonkeyPatch, responses: dict | None = None):
    driver = NMCLIDriver(interface="wlan0")
    commands: list[list[str]] = []
    timeouts: list[float | None] = []

    def fake_run(args: list[str], *, timeout: float | None = None) -> str:
        commands.append(list(args))
        timeouts.append(timeout)
        response = (responses or {}).get(tuple(args), "")
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(driver, "_run", fake_run)
    return driver, commands, timeouts


def test_add_profile_builds_wpa_psk_command(monkeypatch: pytest.MonkeyPatch) -> None:
    driver, commands, _ = _recording_driver(monkeypatch)

    driver.add_profile("Home", "supersecret")

    assert commands == [
        [
            "nmcli",
            "connection",
            "add",
            "type",
            "wifi",
            "con-name",
            "Home",
            "ifname",
            "wlan0",
            "ssid",
            "Home",
            "wifi-sec.key-mgmt",
            "wpa-psk",
            "wifi-sec.psk",
            "supersecret",
        ]
    ]


def test_add_profile_appends_autoconnect_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    driver, commands, _ = _recording_driver(monkeypatch)

    driver.add_profile("Home", "supersecret", auto_connect=False, priority=5)

    assert commands[0][-4:] == [
        "connection.autoconnect",
        "no",
        "connection.autoconnect-priority",
        "5",
    ]


def test_scan_rescans_before_listing(monkeypatch: pytest.MonkeyPatch) -> None:
    listing = ["nmcli", "-t", "-f", "SSID,SIGNAL", "device", "wifi", "list", "ifname", "wlan0"]
    driver, commands, _ = _recording_driver(monkeypatch, {tuple(listing): "Home:80\n"})

    output = driver.scan(("SSID", "SIGNAL"))

    assert output == "Home:80\n"
    assert commands == [
        ["nmcli", "device", "wifi", "rescan", "ifname", "wlan0"],
        listing,
    ]


def test_scan_tolerates_busy_rescan(monkeypatch: pytest.MonkeyPatch) -> None:
    rescan = ("nmcli", "device", "wifi", "rescan", "ifname", "wlan0")
    driver, commands, _ = _recording_driver(
        monkeypatch, {rescan: DriverError("Error: Scanning not allowed while already scanning.")}
    )

    driver.scan(("SSID",))

    assert len(commands) == 2


def test_scan_propagates_authorisation_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    rescan = ("nmcli", "device", "wifi", "rescan", "ifname", "wlan0")
    driver, _, _ = _recording_driver(
        monkeypatch, {rescan: DriverError("Error: Not authorized to request a scan.")}
    )

    with pytest.raises(DriverError):
        driver.scan(("SSID",))


def test_profile_exists_reports_missing_profile(monkeypatch: pytest.MonkeyPatch) -> None:
    show = ("nmcli", "connection", "show", "Ghost")
    driver, _, _ = _recording_driver(
        monkeypatch, {show: DriverError("Error: Ghost - no such connection profile.")}
    )

    assert driver.profile_exists("Ghost") is False
    assert driver.profile_exists("Home") is True


def test_activate_profile_forwards_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    driver, commands, timeouts = _recording_driver(monkeypatch)

    driver.activate_profile("Home", timeout=42.0)

    assert commands == [["nmcli", "connection", "up", "Home"]]
    assert timeouts == [42.0]


def test_disconnect_ignores_inactive_device(monkeypatch: pytest.MonkeyPatch) -> None:
    disconnect = ("nmcli", "device", "disconnect", "wlan0")
    driver, commands, _ = _recording_driver(
        monkeypatch,
        {disconnect: DriverError("Error: Device 'wlan0' disconnecting failed: This device is not active")},
    )

    driver.disconnect()

    assert commands == [list(disconnect)]


def test_disconnect_propagates_other_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    disconnect = ("nmcli", "device", "disconnect", "wlan0")
    driver, _, _ = _recording_driver(
        monkeypatch, {disconnect: DriverError("Error: NetworkManager is not running.")}
    )

    with pytest.raises(DriverError):
        driver.disconnect()


def test_run_maps_process_failure_to_driver_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_subprocess_run(command, **kwargs):
        raise subprocess.CalledProcessError(10, command, output="", stderr="Error: boom\n")

    monkeypatch.setattr(wifi.subprocess, "run", fake_subprocess_run)
    driver = NMCLIDriver(interface="wlan0")

    with pytest.raises(DriverError, match="Error: boom"):
        driver.delete_profile("Home")


def test_sudo_prefix_is_applied(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[list[str]] = []

    def fake_subprocess_run(command, **kwargs):
        seen.append(list(command))
        return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

    monkeypatch.setattr(wifi.subprocess, "run", fake_subprocess_run)
    driver = NMCLIDriver(interface="wlan1", use_sudo=True)

    driver.disconnect()

    assert seen == [["sudo", "nmcli", "device", "disconnect", "wlan1"]]


def test_terse_helpers_handle_escaped_separators() -> None:
    assert unescape_terse_field(r"Cafe\:Net") == "Cafe:Net"
    assert unescape_terse_field(r"back\\slash") == "back\\slash"
    assert split_terse_line(r"Cafe\:Net:55:WPA2:2412 MHz") == ["Cafe:Net", "55", "WPA2", "2412 MHz"]
    assert split_terse_line("::") == ["", "", ""]
