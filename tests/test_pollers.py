"""Device sources: coalescing, failure handling and policy changes."""

from __future__ import annotations

import asyncio

import pytest
from conftest import connected_device, usb_device

from device_hub.devices import (
    ConnectedDevicePoller,
    EmulatorPoller,
    PollPolicy,
    TcpConnection,
    Transport,
    UsbDevicePoller,
    WirelessDevicePoller,
)
from device_hub.devices.models import DiscoveredUsbDevice
from device_hub.exceptions import DiscoveryError


class MutablePolicy:
    def __init__(self, enabled: bool = True, interval: float = 60.0) -> None:
        self.enabled = enabled
        self.interval = interval

    def __call__(self) -> PollPolicy:
        return PollPolicy(self.enabled, self.interval)


async def test_concurrent_refreshes_share_one_fetch(backend):
    backend.usb_devices = [usb_device("ABC123")]
    gate = backend.gates["list_usb_discovered_devices"] = asyncio.Event()
    poller = UsbDevicePoller(backend, MutablePolicy())

    first = asyncio.create_task(poller.refresh())
    second = asyncio.create_task(poller.refresh())
    await asyncio.sleep(0)
    assert poller.in_flight

    gate.set()
    results = await asyncio.gather(first, second)

    assert backend.count("list_usb_discovered_devices") == 1
    assert results[0] == results[1]
    assert not poller.in_flight


async def test_refresh_after_completion_fetches_again(backend):
    poller = EmulatorPoller(backend, MutablePolicy())

    await poller.refresh()
    await poller.refresh()

    assert backend.count("list_emulator_images") == 2


async def test_cancelled_waiter_does_not_cancel_shared_fetch(backend):
    backend.emulator_images = ["Pixel_API_34"]
    gate = backend.gates["list_emulator_images"] = asyncio.Event()
    poller = EmulatorPoller(backend, MutablePolicy())

    waiter = asyncio.create_task(poller.refresh())
    other = asyncio.create_task(poller.refresh())
    await asyncio.sleep(0)
    waiter.cancel()
    gate.set()

    assert await other == ["Pixel_API_34"]
    assert poller.current_snapshot() == ["Pixel_API_34"]


async def test_discovery_failure_clears_snapshot(backend):
    backend.usb_devices = [usb_device("ABC123")]
    poller = UsbDevicePoller(backend, MutablePolicy())
    await poller.refresh()

    backend.fail.add("list_usb_discovered_devices")
    with pytest.raises(DiscoveryError) as exc_info:
        await poller.refresh()

    assert exc_info.value.source == "usb"
    assert poller.current_snapshot() == []
    assert poller.last_error is exc_info.value


async def test_connected_probe_failure_keeps_snapshot(backend):
    backend.connected_info = connected_device("ZX1", "Moto G")
    poller = ConnectedDevicePoller(backend, MutablePolicy())
    await poller.refresh()

    backend.fail.add("get_connected_device_info")
    with pytest.raises(DiscoveryError):
        await poller.refresh()

    assert [d.serial_no for d in poller.current_snapshot()] == ["ZX1"]


async def test_connected_probe_merges_by_serial(backend):
    poller = ConnectedDevicePoller(backend, MutablePolicy())
    poller.add(connected_device("10.0.0.2:5555", "Tablet", Transport.TCP))

    backend.connected_info = connected_device("ZX1", "Moto G")
    await poller.refresh()
    backend.connected_info = connected_device("ZX1", "Moto G Power")
    await poller.refresh()

    snapshot = poller.current_snapshot()
    assert [d.serial_no for d in snapshot] == ["10.0.0.2:5555", "ZX1"]
    assert snapshot[1].model == "Moto G Power"


async def test_prune_usb_keeps_tcp_devices(backend):
    poller = ConnectedDevicePoller(backend, MutablePolicy())
    poller.add(connected_device("ABC123"))
    poller.add(connected_device("10.0.0.2:5555", transport=Transport.TCP))

    removed = poller.prune_usb(set())

    assert removed == ["ABC123"]
    assert [d.serial_no for d in poller.current_snapshot()] == ["10.0.0.2:5555"]


async def test_usb_poller_ignores_tcp_transports(backend):
    backend.usb_devices = [
        usb_device("ABC123"),
        DiscoveredUsbDevice(connection_method=TcpConnection(socket_address="10.0.0.2:5555")),
    ]
    poller = UsbDevicePoller(backend, MutablePolicy())

    devices = await poller.refresh()

    assert [d.identity for d in devices] == ["ABC123"]


async def test_disabled_source_reports_empty_snapshot(backend):
    backend.usb_devices = [usb_device("ABC123")]
    policy = MutablePolicy()
    poller = UsbDevicePoller(backend, policy)
    await poller.refresh()

    policy.enabled = False

    assert poller.current_snapshot() == []


async def test_policy_changed_reports_resume(backend):
    policy = MutablePolicy(enabled=False)
    poller = WirelessDevicePoller(backend, policy)
    poller.start()
    try:
        assert poller.policy_changed() is False

        policy.enabled = True
        assert poller.policy_changed() is True

        policy.interval = 30.0
        assert poller.policy_changed() is False
    finally:
        await poller.stop()


async def test_listeners_flag_successful_fetches(backend):
    events: list[bool] = []
    poller = UsbDevicePoller(backend, MutablePolicy())
    poller.subscribe(lambda source, fetched: events.append(fetched))

    await poller.refresh()
    backend.fail.add("list_usb_discovered_devices")
    with pytest.raises(DiscoveryError):
        await poller.refresh()
    poller.policy_changed()

    assert events == [True, False, False]


async def test_background_polling_follows_interval(backend):
    policy = MutablePolicy(interval=0.01)
    poller = EmulatorPoller(backend, policy)
    poller.start()
    try:
        await asyncio.sleep(0.1)
    finally:
        await poller.stop()

    assert backend.count("list_emulator_images") >= 2


async def test_background_polling_stops_when_disabled(backend):
    policy = MutablePolicy(interval=0.01)
    poller = EmulatorPoller(backend, policy)
    poller.start()
    try:
        await asyncio.sleep(0.05)
        policy.enabled = False
        poller.policy_changed()
        await asyncio.sleep(0.02)
        calls = backend.count("list_emulator_images")
        await asyncio.sleep(0.05)
        assert backend.count("list_emulator_images") == calls
    finally:
        await poller.stop()


async def test_background_failures_keep_polling(backend):
    backend.fail.add("list_emulator_images")
    poller = EmulatorPoller(backend, MutablePolicy(interval=0.01))
    poller.start()
    try:
        await asyncio.sleep(0.1)
    finally:
        await poller.stop()

    assert backend.count("list_emulator_images") >= 2
    assert isinstance(poller.last_error, DiscoveryError)


async def test_unexpected_fetch_error_becomes_discovery_error(backend):
    backend.usb_devices = [usb_device("ABC123")]
    poller = UsbDevicePoller(backend, MutablePolicy())
    await poller.refresh()

    backend.raises["list_usb_discovered_devices"] = ValueError("malformed device record")
    with pytest.raises(DiscoveryError) as exc_info:
        await poller.refresh()

    assert isinstance(exc_info.value.cause, ValueError)
    assert poller.current_snapshot() == []


async def test_background_polling_survives_unexpected_errors(backend):
    backend.usb_devices = [usb_device("ABC123")]
    backend.raises["list_usb_discovered_devices"] = RuntimeError("boom")
    poller = UsbDevicePoller(backend, MutablePolicy(interval=0.01))
    poller.start()
    try:
        await asyncio.sleep(0.03)
        del backend.raises["list_usb_discovered_devices"]
        await asyncio.sleep(0.05)
    finally:
        await poller.stop()

    assert backend.count("list_usb_discovered_devices") >= 3
    assert [d.identity for d in poller.current_snapshot()] == ["ABC123"]
    assert poller.last_error is None


async def test_no_connected_device_is_an_empty_probe(backend):
    poller = ConnectedDevicePoller(backend, MutablePolicy())
    poller.add(connected_device("10.0.0.2:5555", transport=Transport.TCP))

    devices = await poller.refresh()

    assert [d.serial_no for d in devices] == ["10.0.0.2:5555"]
    assert poller.last_error is None


async def test_prune_usb_ignores_devices_added_after_enumeration_started(backend):
    backend.usb_devices = []
    usb = UsbDevicePoller(backend, MutablePolicy())
    connected = ConnectedDevicePoller(backend, MutablePolicy())
    gate = backend.gates["list_usb_discovered_devices"] = asyncio.Event()

    enumeration = asyncio.create_task(usb.refresh())
    await asyncio.sleep(0.01)
    assert backend.count("list_usb_discovered_devices") == 1
    connected.add(connected_device("ABC123"))
    gate.set()
    await enumeration

    assert connected.prune_usb(set(), since=usb.snapshot_tick) == []

    await usb.refresh()

    assert connected.prune_usb(set(), since=usb.snapshot_tick) == ["ABC123"]
