import asyncio

import pytest

from tether.connection import ConnectionManager, parse_device_status
from tether.scanner import NetworkScanner
from tether.simulated import SimulatedNetwork, SimulatedProfile, SimulatedWiFiDriver
from tether.wifi import (
    AuthFailedError,
    ConnectionFailedError,
    DriverError,
    NetworkNotFoundError,
    NotConnectedError,
    WiFiNetworkConfig,
    WiFiNotInitializedError,
    WiFiTimeoutError,
)


def _manager(driver: SimulatedWiFiDriver, **kwargs) -> ConnectionManager:
    return ConnectionManager(driver, NetworkScanner(driver), **kwargs)


@pytest.fixture
def driver() -> SimulatedWiFiDriver:
    return SimulatedWiFiDriver(
        [
            SimulatedNetwork("Home", signal=72, password="homepass1"),
            SimulatedNetwork("Cafe", signal=40, password="cafepass1"),
        ]
    )


def test_parse_device_status_splits_on_first_colon() -> None:
    data = parse_device_status(
        "GENERAL.CONNECTION:Home\nIP4.ADDRESS[1]:10.0.0.5/24\nGENERAL.HWADDR:AA\\:BB\\:CC\n"
    )

    assert data == {
        "GENERAL.CONNECTION": "Home",
        "IP4.ADDRESS[1]": "10.0.0.5/24",
        "GENERAL.HWADDR": "AA\\:BB\\:CC",
    }


def test_connect_then_disconnect(driver: SimulatedWiFiDriver) -> None:
    manager = _manager(driver)

    async def runner():
        await manager.connect("Home", "homepass1")
        connected = await manager.get_current_connection()
        await manager.disconnect()
        return connected, await manager.is_connected(), await manager.get_current_connection()

    connected, still_connected, after = asyncio.run(runner())

    assert connected is not None
    assert connected.ssid == "Home"
    assert connected.ip_address == "192.168.50.20"
    assert connected.mac_address == "DC:A6:32:00:00:01"
    assert connected.signal_strength == 72
    assert still_connected is False
    assert after is None


def test_connect_replaces_existing_profile(driver: SimulatedWiFiDriver) -> None:
    driver.add_profile_record(SimulatedProfile("Home", password="outdated"))
    manager = _manager(driver)

    asyncio.run(manager.connect("Home", "homepass1"))

    profile = driver.profile("Home")
    assert profile is not None
    assert profile.password == "homepass1"
    assert driver.active == "Home"


def test_connect_reports_bad_password(driver: SimulatedWiFiDriver) -> None:
    manager = _manager(driver)

    with pytest.raises(AuthFailedError) as excinfo:
        asyncio.run(manager.connect("Home", "wrong-password"))

    assert excinfo.value.ssid == "Home"


def test_connect_reports_other_driver_failures(driver: SimulatedWiFiDriver) -> None:
    manager = _manager(driver)

    with pytest.raises(ConnectionFailedError) as excinfo:
        asyncio.run(manager.connect("Nowhere", "whatever1"))

    assert "No network with SSID" in str(excinfo.value)


def test_connect_times_out(driver: SimulatedWiFiDriver) -> None:
    driver.activation_delay = 0.3
    manager = _manager(driver, connection_timeout=0.05)

    with pytest.raises(WiFiTimeoutError) as excinfo:
        asyncio.run(manager.connect("Home", "homepass1"))

    assert excinfo.value.operation == "connect"
    assert excinfo.value.seconds == pytest.approx(0.05)


def test_disconnect_requires_connection(driver: SimulatedWiFiDriver) -> None:
    manager = _manager(driver)

    with pytest.raises(NotConnectedError):
        asyncio.run(manager.disconnect())


def test_operations_require_initialisation(driver: SimulatedWiFiDriver) -> None:
    manager = _manager(driver, initialized=lambda: False)

    with pytest.raises(WiFiNotInitializedError):
        asyncio.run(manager.get_current_connection())
    with pytest.raises(WiFiNotInitializedError):
        asyncio.run(manager.connect("Home", "homepass1"))
    with pytest.raises(WiFiNotInitializedError):
        asyncio.run(manager.get_saved_networks())


def test_current_connection_is_none_when_driver_fails() -> None:
    class BrokenStatusDriver(SimulatedWiFiDriver):
        def device_status(self, fields):
            raise DriverError("Error: NetworkManager is not running.")

    manager = _manager(BrokenStatusDriver())

    assert asyncio.run(manager.get_current_connection()) is None


def test_saved_networks_exclude_other_profile_types(driver: SimulatedWiFiDriver) -> None:
    driver.add_profile_record(SimulatedProfile("Wired connection 1", type="802-3-ethernet"))
    driver.add_profile_record(SimulatedProfile("br0", type="bridge"))
    manager = _manager(driver)

    async def runner():
        await manager.save_network(
            WiFiNetworkConfig(ssid="Cafe", password="cafepass1", priority=3, auto_connect=False)
        )
        return await manager.get_saved_networks()

    saved = asyncio.run(runner())

    assert saved == [WiFiNetworkConfig(ssid="Cafe", password="", priority=3, auto_connect=False)]


def test_remove_network(driver: SimulatedWiFiDriver) -> None:
    driver.add_profile_record(SimulatedProfile("Cafe", password="cafepass1"))
    manager = _manager(driver)

    asyncio.run(manager.remove_network("Cafe"))

    assert driver.profile("Cafe") is None
    with pytest.raises(NetworkNotFoundError):
        asyncio.run(manager.remove_network("Cafe"))


def test_connection_monitor_reports_changes(driver: SimulatedWiFiDriver) -> None:
    manager = _manager(driver, monitor_interval=0.02)
    seen: list[bool] = []
    also_seen: list[bool] = []

    def broken(connected: bool) -> None:
        raise RuntimeError("subscriber failure")

    manager.on_connection_change(broken)
    manager.on_connection_change(seen.append)
    unsubscribe = manager.on_connection_change(also_seen.append)

    async def runner() -> None:
        manager.start_connection_monitoring()
        await asyncio.sleep(0.1)
        driver.set_active("Home")
        await asyncio.sleep(0.2)
        unsubscribe()
        driver.set_active(None)
        await asyncio.sleep(0.2)
        manager.stop_connection_monitoring()

    asyncio.run(runner())

    assert seen == [True, False]
    assert also_seen == [True]


def test_clear_callbacks_drops_subscribers(driver: SimulatedWiFiDriver) -> None:
    manager = _manager(driver, monitor_interval=0.02)
    seen: list[bool] = []
    manager.on_connection_change(seen.append)
    manager.clear_callbacks()

    async def runner() -> None:
        manager.start_connection_monitoring()
        driver.set_active("Home")
        await asyncio.sleep(0.15)
        manager.stop_connection_monitoring()

    asyncio.run(runner())

    assert seen == []
