import asyncio
import math

import pytest
from aiohttp import test_utils

from export_limiter.common.exceptions import WriteError
from export_limiter.services.control.service import LimiterService
from export_limiter.services.device.inverter_session import (
    REG_ACTIVE_POWER_LIMIT,
    REG_ADVANCED_POWER_CONTROL,
    REG_COMMIT_POWER_CONTROL,
    REG_MAX_ACTIVE_POWER,
    SessionState,
)
from export_limiter.services.meter.listener import FrameMailbox, MeterListener
from export_limiter.simulator.virtual_inverter import VirtualInverter
from export_limiter.simulator.virtual_meter import build_frame

from .conftest import make_config, make_frame


class LimitWriteFailingInverter(VirtualInverter):
    """Fails the power limit write while fail_limit_write is set"""

    fail_limit_write = False

    async def write_multiple_registers(self, address, values, slave_id=1):
        if address == REG_ACTIVE_POWER_LIMIT and self.fail_limit_write:
            self.operations.append(("write", address, list(values)))
            raise WriteError("Write timeout", register=address, value=values)
        return await super().write_multiple_registers(address, values, slave_id)


def _run(service, *export_values):
    async def run():
        return [await service.process_frame(make_frame(v)) for v in export_values]
    return asyncio.run(run())


def _service(inverter, **control) -> LimiterService:
    return LimiterService(make_config(**control), transport=inverter)


def test_first_actuation_switches_control_on(inverter, control_log):
    service = _service(inverter)

    (record,) = _run(service, 7100.0)

    # 600 W over the limit on a 7 kW inverter at full power -> 91%
    assert record.over_production_w == pytest.approx(600.0)
    assert record.limit_pct == 91
    assert record.control_enabled_now
    assert inverter.writes_to(REG_ADVANCED_POWER_CONTROL) == [[0, 1]]
    assert inverter.writes_to(REG_ACTIVE_POWER_LIMIT) == [[91]]
    assert inverter.writes_to(REG_COMMIT_POWER_CONTROL) == []
    assert service.control_state.last_commanded_pct == 91
    assert service.capacity_w == pytest.approx(7000.0)

    frame_lines = [r for r in control_log.records if hasattr(r, "frame_time")]
    assert len(frame_lines) == 1
    assert frame_lines[0].getMessage().endswith("\t91% *")


def test_enable_flag_is_only_written_once(inverter):
    service = _service(inverter)

    first, second = _run(service, 7100.0, 7100.0)

    assert first.control_enabled_now
    assert not second.control_enabled_now
    # Output now 6370 W, still 600 W over -> 82%
    assert second.limit_pct == 82
    assert inverter.writes_to(REG_ADVANCED_POWER_CONTROL) == [[0, 1]]
    assert service.stats.enable_writes == 1
    assert service.stats.actuations == 2


def test_one_log_line_per_frame_without_actuation(inverter, control_log):
    service = _service(inverter)

    records = _run(service, 500.0, 600.0, 700.0)

    assert all(r.limit_pct is None for r in records)
    assert inverter.writes_to(REG_ACTIVE_POWER_LIMIT) == []
    frame_lines = [r for r in control_log.records if hasattr(r, "frame_time")]
    assert len(frame_lines) == 3
    assert frame_lines[0].getMessage().endswith("\t")


def test_commit_after_limit(inverter):
    config = make_config()
    config.inverter.commit_after_limit = True
    service = LimiterService(config, transport=inverter)

    _run(service, 7100.0)

    assert inverter.writes_to(REG_COMMIT_POWER_CONTROL) == [[1]]


def test_failed_read_drops_the_decision(inverter):
    service = _service(inverter)
    _run(service, 7100.0)

    inverter.fail_next_operation = True
    (record,) = _run(service, 9000.0)

    assert record.limit_pct is None
    assert record.error is not None
    assert service.session.state == SessionState.DISCONNECTED
    assert service.stats.device_errors == 1
    assert service.control_state.last_commanded_pct == 91
    assert inverter.writes_to(REG_ACTIVE_POWER_LIMIT) == [[91]]


def test_failed_limit_write_reconnects_before_next_register_operation():
    inverter = LimitWriteFailingInverter(rated_power_w=7000.0, available_pv_w=7000.0)
    service = _service(inverter)
    _run(service, 7100.0)
    assert inverter.connect_calls == 1

    inverter.fail_limit_write = True
    (failed,) = _run(service, 7100.0)

    assert failed.limit_pct is None
    assert service.session.state == SessionState.DISCONNECTED
    # Not updated, the write never landed
    assert service.control_state.last_commanded_pct == 91

    inverter.fail_limit_write = False
    operations_before = len(inverter.operations)
    (recovered,) = _run(service, 7100.0)

    assert inverter.connect_calls == 2
    assert service.session.state == SessionState.CONNECTED
    assert inverter.operations[operations_before][0] == "read"
    assert recovered.limit_pct == 82
    assert service.control_state.last_commanded_pct == 82


def test_control_flag_is_rechecked_after_reconnect(inverter):
    service = _service(inverter)
    _run(service, 7100.0)

    # Inverter restarted: session lost and control switched off
    inverter.fail_next_operation = True
    _run(service, 7100.0)
    inverter.state.control_enabled = False
    inverter._holding_registers[REG_ADVANCED_POWER_CONTROL + 1] = 0

    (record,) = _run(service, 7100.0)

    assert record.control_enabled_now
    assert inverter.writes_to(REG_ADVANCED_POWER_CONTROL) == [[0, 1], [0, 1]]


def test_nothing_is_sent_while_the_inverter_is_unreachable(inverter):
    inverter.refuse_connect = True
    service = _service(inverter)

    records = _run(service, 7100.0, 7100.0)

    assert inverter.operations == []
    assert all(r.error == "inverter not connected" for r in records)
    assert service.stats.connect_failures == 2


def test_reconnect_attempts_are_spaced(inverter):
    now = [100.0]
    inverter.refuse_connect = True
    service = LimiterService(
        make_config(reconnect_delay_s=5.0),
        transport=inverter,
        clock=lambda: now[0],
    )

    _run(service, 7100.0, 7100.0)
    assert inverter.connect_calls == 1

    now[0] += 6.0
    inverter.refuse_connect = False
    (record,) = _run(service, 7100.0)

    assert inverter.connect_calls == 2
    assert record.limit_pct == 91


def test_unknown_capacity_suspends_limits(inverter):
    inverter.set_rated_power_register(math.nan)
    service = _service(inverter)

    (record,) = _run(service, 7100.0)

    assert math.isnan(service.capacity_w)
    assert record.decision_reason == "invalid_capacity"
    assert record.limit_pct is None
    assert inverter.writes_to(REG_ACTIVE_POWER_LIMIT) == []

    # Capacity becomes readable later
    inverter.set_rated_power_register(7000.0)
    (record,) = _run(service, 7100.0)
    assert record.limit_pct == 91


def test_configured_capacity_overrides_register(inverter):
    inverter.set_rated_power_register(math.nan)
    config = make_config()
    config.inverter.capacity_w = 7000.0
    service = LimiterService(config, transport=inverter)

    (record,) = _run(service, 7100.0)

    assert record.limit_pct == 91


def test_snapshot(inverter):
    service = _service(inverter)
    _run(service, 7100.0)

    snapshot = service.snapshot()

    assert snapshot["session"] == "connected"
    assert snapshot["capacity_w"] == pytest.approx(7000.0)
    assert snapshot["control_state"] == {"last_commanded_pct": 91, "control_enabled": True}
    assert snapshot["stats"]["frames_processed"] == 1
    assert snapshot["last_frame"]["limit_pct"] == 91


def test_mailbox_keeps_only_the_newest_frame():
    async def run():
        mailbox = FrameMailbox()
        for export_w in (1000.0, 2000.0, 3000.0):
            mailbox.put(make_frame(export_w))
        frame = await mailbox.get()
        return mailbox, frame

    mailbox, frame = asyncio.run(run())

    assert frame.export_w == 3000.0
    assert mailbox.coalesced == 2
    assert not mailbox.pending()


def test_listener_only_queues_target_meter_frames():
    async def run():
        config = make_config()
        mailbox = FrameMailbox()
        listener = MeterListener(config.meter, mailbox)
        listener.handle_datagram(build_frame(0.0, 500.0, meter_id=1))
        listener.handle_datagram(bytes(10))
        listener.handle_datagram(build_frame(0.0, 1500.0))
        return listener, mailbox

    listener, mailbox = asyncio.run(run())

    assert listener.datagrams_received == 3
    assert listener.frames_accepted == 1
    assert mailbox.pending()


def test_worker_processes_queued_frames(inverter):
    async def run():
        service = _service(inverter)
        service._running = True
        worker = asyncio.create_task(service._worker_loop())
        service.mailbox.put(make_frame(7100.0))
        for _ in range(20):
            await asyncio.sleep(0)
            if service.stats.frames_processed:
                break
        service._running = False
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass
        return service

    service = asyncio.run(run())

    assert service.stats.frames_processed == 1
    assert service.control_state.last_commanded_pct == 91


def test_fault_soon_after_connect_still_reconnects_on_next_frame(inverter):
    now = [100.0]
    service = LimiterService(
        make_config(reconnect_delay_s=1.0),
        transport=inverter,
        clock=lambda: now[0],
    )
    _run(service, 7100.0)
    assert inverter.connect_calls == 1

    inverter.fail_next_operation = True
    _run(service, 7100.0)
    assert service.session.state == SessionState.DISCONNECTED

    # Well inside reconnect_delay_s of the last successful connect
    now[0] += 0.5
    (record,) = _run(service, 7100.0)

    assert inverter.connect_calls == 2
    assert record.error is None
    assert record.limit_pct == 82


def test_capacity_is_read_once_per_cycle(inverter):
    inverter.set_rated_power_register(math.nan)
    service = _service(inverter)

    _run(service, 7100.0)

    reads = [op for op in inverter.operations if op == ("read", REG_MAX_ACTIVE_POWER, [])]
    assert len(reads) == 1


def test_health_and_state_endpoints(inverter):
    async def run():
        service = _service(inverter)
        await service.process_frame(make_frame(7100.0))
        service._running = True

        server = test_utils.TestServer(service.build_health_app())
        async with test_utils.TestClient(server) as client:
            health_response = await client.get("/health")
            health = await health_response.json()
            state_response = await client.get("/state")
            state = await state_response.json()
        return health_response.status, health, state_response.status, state

    health_status, health, state_status, state = asyncio.run(run())

    assert health_status == 200
    assert health["status"] == "healthy"
    assert health["service"] == "export_limiter"
    assert health["session"] == "connected"
    assert health["stats"]["frames_processed"] == 1
    assert health["stats"]["actuations"] == 1

    assert state_status == 200
    assert state["capacity_w"] == pytest.approx(7000.0)
    assert state["control_state"] == {"last_commanded_pct": 91, "control_enabled": True}
    assert state["last_frame"]["limit_pct"] == 91
    assert state["last_frame"]["control_enabled_now"] is True
