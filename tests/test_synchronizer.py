"""Tests for the per-fan state synchronizer."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from discovery.models import DeviceState
from registry.models import FanRecord
from services.fan_synchronizer import (
    FanSynchronizer,
    percentage_to_speed,
    rotation_speed_step,
    speed_to_percentage,
)

from fakes import FakeFanClient, FakeRelayBus, fan_payload

IP = "192.168.1.40"


def _record(**overrides) -> FanRecord:
    values = dict(uuid="uuid-1", client_id="fan-1", ip=IP, light=True, switch_id=None)
    values.update(overrides)
    return FanRecord(**values)


def _synchronizer(client, debounce=0.05, **record_overrides) -> FanSynchronizer:
    return FanSynchronizer(_record(**record_overrides), client, polling_interval=3600,
                           debounce_seconds=debounce)


def test_speed_scaling():
    assert percentage_to_speed(50) == 3
    assert speed_to_percentage(3) == 50
    assert percentage_to_speed(0) == 0
    assert percentage_to_speed(100) == 6
    # half rounds up
    assert percentage_to_speed(75) == 5
    assert percentage_to_speed(25) == 2
    assert rotation_speed_step() == 16.666


def test_rotation_speed_setter_implies_power():
    async def scenario():
        sync = _synchronizer(FakeFanClient({IP: fan_payload("fan-1")}), debounce=60)
        sync.set_rotation_speed(50)
        on_after_50 = (sync.state.fan_on, sync.state.fan_speed)
        sync.set_rotation_speed(0)
        off_after_0 = (sync.state.fan_on, sync.state.fan_speed)
        await sync.stop()
        return on_after_50, off_after_0

    assert asyncio.run(scenario()) == ((True, 3), (False, 0))


def test_bursts_of_setters_coalesce_into_one_push():
    client = FakeFanClient({IP: fan_payload("fan-1")})

    async def scenario():
        sync = _synchronizer(client, debounce=0.2)
        sync.set_rotation_speed(50)
        await asyncio.sleep(0.05)
        sync.set_rotation_direction(1)
        await asyncio.sleep(0.05)
        sync.set_brightness(30)
        await asyncio.sleep(0.1)
        # the window restarted at the last setter
        sent_early = list(client.updates())
        phase = sync.phase
        await asyncio.sleep(0.3)
        await sync.stop()
        return sync, sent_early, phase

    sync, sent_early, phase = asyncio.run(scenario())

    assert sent_early == []
    assert phase == "staged"
    assert client.updates() == [(IP, {
        "fanOn": True,
        "fanSpeed": 3,
        "fanDirection": "reverse",
        "lightOn": True,
        "lightBrightness": 30,
    })]
    assert sync.state.light_brightness == 30
    assert sync.phase == "idle"


def test_poll_replaces_state_and_notifies_listeners():
    client = FakeFanClient({IP: fan_payload("fan-1", fanOn=True, fanSpeed=3, fanDirection="reverse",
                                            lightOn=True, lightBrightness=80)})
    changes = {}

    async def scenario():
        sync = _synchronizer(client)
        sync.add_listener(lambda name, value: changes.__setitem__(name, value))
        ok = await sync.poll()
        return sync, ok

    sync, ok = asyncio.run(scenario())

    assert ok is True
    assert sync.state == DeviceState(True, 3, "reverse", True, 80, "fan-1")
    assert changes == {
        "fan_on": True,
        "rotation_speed": 50,
        "rotation_direction": 1,
        "light_on": True,
        "brightness": 80,
    }


def test_failed_poll_leaves_state_untouched():
    client = FakeFanClient({IP: fan_payload("fan-1")})
    client.failing.add(IP)

    async def scenario():
        sync = _synchronizer(client, debounce=60)
        sync.set_rotation_speed(100)
        before = replace(sync.state)
        ok = await sync.poll()
        after = replace(sync.state)
        await sync.stop()
        return ok, before, after

    ok, before, after = asyncio.run(scenario())

    assert ok is False
    assert after == before


def test_malformed_poll_response_leaves_state_untouched():
    client = FakeFanClient({IP: fan_payload("fan-1", fanDirection="sideways")})

    async def scenario():
        sync = _synchronizer(client)
        before = replace(sync.state)
        ok = await sync.poll()
        return ok, before, sync.state

    ok, before, after = asyncio.run(scenario())

    assert ok is False
    assert after == before


def test_failed_push_keeps_optimistic_state():
    client = FakeFanClient({IP: fan_payload("fan-1")})
    client.failing.add(IP)

    async def scenario():
        sync = _synchronizer(client, debounce=0.01)
        sync.set_fan_on(True)
        await asyncio.sleep(0.05)
        await sync.stop()
        return sync

    sync = asyncio.run(scenario())

    assert len(client.updates()) == 1
    assert sync.state.fan_on is True


def test_poll_and_push_are_serialized():
    client = FakeFanClient({IP: fan_payload("fan-1")}, delay=0.02)

    async def scenario():
        sync = _synchronizer(client)
        await asyncio.gather(sync.poll(), sync.push(), sync.poll())

    asyncio.run(scenario())

    assert len(client.calls) == 3
    assert client.max_in_flight == 1


def test_start_polls_immediately_and_stop_cancels_pending_push():
    client = FakeFanClient({IP: fan_payload("fan-1", fanOn=True)})

    async def scenario():
        sync = _synchronizer(client, debounce=0.05)
        await sync.start()
        await asyncio.sleep(0.01)
        polled = sync.state.fan_on
        sync.set_fan_on(False)
        await sync.stop()
        await asyncio.sleep(0.1)
        return polled

    assert asyncio.run(scenario()) is True
    assert len(client.calls) == 1
    assert client.updates() == []


def test_seeded_from_persisted_state():
    last = DeviceState(True, 4, "reverse", True, 40, "stale-id")
    sync = FanSynchronizer(_record(last_state=last), FakeFanClient(), polling_interval=3600)

    assert sync.state == replace(last, client_id="fan-1")
    assert sync.characteristics()["rotation_speed"] == pytest.approx(66.666, rel=1e-3)


def test_fan_without_light_exposes_no_light_characteristics():
    sync = _synchronizer(FakeFanClient(), light=False)

    assert set(sync.characteristics()) == {"fan_on", "rotation_speed", "rotation_direction"}


def test_relay_single_press_toggles_fan_and_schedules_push():
    client = FakeFanClient({IP: fan_payload("fan-1")})
    bus = FakeRelayBus()

    async def scenario():
        sync = FanSynchronizer(_record(switch_id="plug1"), client, relay_bus=bus,
                               polling_interval=3600, debounce_seconds=0.05)
        await sync.start()
        await asyncio.sleep(0.01)
        assert "stat/plug1/RESULT" in bus.handlers

        bus.deliver("stat/plug1/RESULT", b'{"Button1":{"Action":"SINGLE"}}')
        toggled = sync.state.fan_on
        phase = sync.phase
        await asyncio.sleep(0.1)
        await sync.stop()
        return toggled, phase

    toggled, phase = asyncio.run(scenario())

    assert toggled is True
    assert phase == "staged"
    assert [payload["fanOn"] for _, payload in client.updates()] == [True]
    assert "stat/plug1/RESULT" not in bus.handlers


def test_relay_ignores_other_actions_and_bad_payloads():
    client = FakeFanClient({IP: fan_payload("fan-1")})
    bus = FakeRelayBus()

    async def scenario():
        sync = FanSynchronizer(_record(switch_id="plug1"), client, relay_bus=bus,
                               polling_interval=3600, debounce_seconds=0.01)
        sync._on_relay_message("stat/plug1/RESULT", b'{"Button1":{"Action":"DOUBLE"}}')
        sync._on_relay_message("stat/plug1/RESULT", b'not json')
        sync._on_relay_message("stat/plug1/RESULT", b'{"POWER":"ON"}')
        await asyncio.sleep(0.03)
        return sync

    sync = asyncio.run(scenario())

    assert sync.state.fan_on is False
    assert client.updates() == []


def test_successful_poll_mirrors_power_to_relay_led():
    client = FakeFanClient({IP: fan_payload("fan-1", fanOn=True)})
    bus = FakeRelayBus()

    async def scenario():
        sync = FanSynchronizer(_record(switch_id="plug1"), client, relay_bus=bus, polling_interval=3600)
        await sync.poll()
        client.fans[IP]["fanOn"] = False
        await sync.poll()
        client.failing.add(IP)
        await sync.poll()

    asyncio.run(scenario())

    assert bus.published == [("cmnd/plug1/LedPower", "ON"), ("cmnd/plug1/LedPower", "OFF")]


def test_relay_without_bus_is_best_effort():
    client = FakeFanClient({IP: fan_payload("fan-1", fanOn=True)})

    async def scenario():
        sync = FanSynchronizer(_record(switch_id="plug1"), client, polling_interval=3600)
        await sync.start()
        await asyncio.sleep(0.01)
        await sync.stop()
        return sync

    assert asyncio.run(scenario()).state.fan_on is True


def test_state_callback_receives_copies():
    client = FakeFanClient({IP: fan_payload("fan-1", fanSpeed=2)})
    received = []

    async def scenario():
        sync = FanSynchronizer(_record(), client, polling_interval=3600,
                               on_state=lambda uuid, state: received.append((uuid, state)))
        await sync.poll()
        return sync

    sync = asyncio.run(scenario())

    assert received == [("uuid-1", sync.state)]
    assert received[0][1] is not sync.state


def test_rebind_moves_address_and_relay_but_keeps_staged_push():
    client = FakeFanClient({IP: fan_payload("fan-1"), "192.168.1.41": fan_payload("fan-1")})
    bus = FakeRelayBus()

    async def scenario():
        sync = FanSynchronizer(_record(switch_id="plug1"), client, relay_bus=bus,
                               polling_interval=3600, debounce_seconds=0.1)
        await sync.start()
        await asyncio.sleep(0.01)
        sync.set_brightness(40)
        sync.rebind(_record(ip="192.168.1.41", switch_id="plug2"))
        phase = sync.phase
        topics = sorted(bus.handlers)
        await asyncio.sleep(0.2)
        await sync.stop()
        return sync, phase, topics

    sync, phase, topics = asyncio.run(scenario())

    assert phase == "staged"
    assert topics == ["stat/plug2/RESULT"]
    assert sync.ip == "192.168.1.41"
    assert [(ip, payload["lightBrightness"]) for ip, payload in client.updates()] == [("192.168.1.41", 40)]
    assert bus.handlers == {}


def test_out_of_range_snapshot_values_are_clamped():
    high = DeviceState.from_payload(fan_payload("fan-1", fanSpeed=9, lightBrightness=150))
    low = DeviceState.from_payload(fan_payload("fan-1", fanSpeed=-2, lightBrightness=-5))

    assert (high.fan_speed, high.light_brightness) == (6, 100)
    assert (low.fan_speed, low.light_brightness) == (0, 0)


def test_polled_speed_never_exceeds_full_rotation():
    client = FakeFanClient({IP: fan_payload("fan-1", fanOn=True, fanSpeed=12)})

    async def scenario():
        sync = _synchronizer(client)
        await sync.poll()
        return sync.characteristics()

    assert asyncio.run(scenario())["rotation_speed"] == 100
