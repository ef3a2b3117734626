"""Settings store: validation, persistence and change notification."""

from __future__ import annotations

import asyncio

import pytest
import yaml

from device_hub.config import ConfigStore, DeviceSettings
from device_hub.exceptions import PersistenceError, UnknownCategoryError


async def test_missing_file_yields_defaults(config_store):
    await config_store.load()

    devices = config_store.get_category("devices")
    assert isinstance(devices, DeviceSettings)
    assert devices.polling_interval == 3
    assert devices.connection_timeout == 5000
    assert devices.auto_discover_usb is True
    assert devices.auto_reconnect_paired is False
    assert config_store.get_category("android-sdk").avd_refresh_interval == 30


async def test_update_persists_and_reloads(config_store):
    await config_store.load()

    result = await config_store.update_category("devices", {"pollingInterval": 5})

    assert result.success
    assert result.errors == []
    assert config_store.get_category("devices").polling_interval == 5

    reloaded = ConfigStore(config_store.path)
    await reloaded.load()
    assert reloaded.get_category("devices").polling_interval == 5


async def test_persisted_document_uses_category_and_field_names(config_store):
    await config_store.update_category("devices", {"autoDiscoverUSB": False})

    data = yaml.safe_load(config_store.path.read_text(encoding="utf-8"))
    assert data["devices"]["autoDiscoverUSB"] is False
    assert data["devices"]["pollingInterval"] == 3
    assert "android-sdk" in data


async def test_out_of_range_value_is_rejected(config_store):
    await config_store.load()

    result = await config_store.update_category("devices", {"pollingInterval": 999})

    assert not result.success
    assert [e.field for e in result.errors] == ["pollingInterval"]
    assert result.errors[0].category == "devices"
    assert config_store.get_category("devices").polling_interval == 3
    assert config_store.field_error("devices", "pollingInterval")
    assert not config_store.path.exists()


async def test_invalid_category_does_not_block_others(config_store):
    await config_store.update_category("devices", {"connectionTimeout": 10})

    result = await config_store.update_category("android-sdk", {"avdRefreshInterval": 60})

    assert result.success
    assert config_store.get_category("android-sdk").avd_refresh_interval == 60
    assert config_store.category_errors("devices")
    assert config_store.category_errors("android-sdk") == []


async def test_successful_update_clears_category_errors(config_store):
    await config_store.update_category("devices", {"pollingInterval": 0})
    assert config_store.errors

    await config_store.update_category("devices", {"pollingInterval": 2})

    assert config_store.errors == []


async def test_attribute_names_are_accepted(config_store):
    result = await config_store.update_category("devices", {"auto_reconnect_paired": True})

    assert result.success
    assert config_store.get_category("devices").auto_reconnect_paired is True


async def test_unknown_field_is_rejected(config_store):
    result = await config_store.update_category("devices", {"bogus": 1})

    assert not result.success
    assert result.errors[0].field == "bogus"


async def test_unknown_category(config_store):
    with pytest.raises(UnknownCategoryError):
        config_store.get_category("network")

    with pytest.raises(KeyError):
        await config_store.update_category("network", {})


async def test_corrupt_file_falls_back_to_defaults(config_store):
    config_store.path.parent.mkdir(parents=True, exist_ok=True)
    config_store.path.write_text("devices: [unclosed", encoding="utf-8")

    await config_store.load()

    assert config_store.get_category("devices").polling_interval == 3


async def test_invalid_stored_values_fall_back_to_defaults(config_store):
    config_store.path.parent.mkdir(parents=True, exist_ok=True)
    config_store.path.write_text(
        yaml.safe_dump({"devices": {"pollingInterval": 500}}), encoding="utf-8"
    )

    await config_store.load()

    assert config_store.get_category("devices").polling_interval == 3


async def test_validate_field(config_store):
    assert config_store.validate_field("devices", "pollingInterval", 4) is None
    assert config_store.validate_field("devices", "pollingInterval", 11) is not None
    assert config_store.validate_field("devices", "connection_timeout", 999) is not None


async def test_listeners_notified_on_success_only(config_store):
    changes: list[str] = []
    unsubscribe = config_store.subscribe(changes.append)

    await config_store.update_category("devices", {"pollingInterval": 999})
    await config_store.update_category("devices", {"pollingInterval": 4})
    unsubscribe()
    await config_store.update_category("devices", {"pollingInterval": 5})

    assert changes == ["devices"]


async def test_write_failure_keeps_previous_state(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    store = ConfigStore(blocker / "settings.yaml")
    await store.load()

    with pytest.raises(PersistenceError):
        await store.update_category("devices", {"pollingInterval": 7})

    assert store.get_category("devices").polling_interval == 3


async def test_reset_to_defaults(config_store):
    await config_store.update_category("devices", {"pollingInterval": 8})
    changes: list[str] = []
    config_store.subscribe(changes.append)

    await config_store.reset_to_defaults()

    assert config_store.get_category("devices").polling_interval == 3
    assert "devices" in changes
    data = yaml.safe_load(config_store.path.read_text(encoding="utf-8"))
    assert data["devices"]["pollingInterval"] == 3


async def test_get_category_returns_copy(config_store):
    devices = config_store.get_category("devices")
    devices.polling_interval = 9

    assert config_store.get_category("devices").polling_interval == 3


async def test_concurrent_updates_to_one_category_both_persist(config_store):
    await config_store.load()

    results = await asyncio.gather(
        config_store.update_category("devices", {"pollingInterval": 7}),
        config_store.update_category("devices", {"autoReconnectPaired": True}),
    )
    assert all(r.success for r in results)

    reloaded = ConfigStore(config_store.path)
    await reloaded.load()
    devices = reloaded.get_category("devices")
    assert devices.polling_interval == 7
    assert devices.auto_reconnect_paired is True
