import asyncio

import pytest
from sqlalchemy import select

from app.exceptions import InvalidFormat, ScanInProgress, SegmentTooLarge
from app.models.system_event import SystemEvent
from app.services.ping_monitor import ProbeResult
from app.services.scan_coordinator import ScanCoordinator, ScanState


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event, message, **data):
        self.events.append((event, data))
        return True


def alive_probe(alive):
    async def probe(ip):
        await asyncio.sleep(0)
        return ProbeResult(ip=ip, status="online" if ip in alive else "offline", method="icmp")
    return probe


async def test_scan_finds_alive_hosts(session_factory):
    notifier = RecordingNotifier()
    coordinator = ScanCoordinator(
        probe=alive_probe({"10.5.0.10", "10.5.0.2"}), notifier=notifier, session_factory=session_factory,
    )
    status = await coordinator.start("10.5.0.0/27")
    assert status["state"] == "running"
    assert status["hosts_scanned"] == 30

    await coordinator.wait()
    final = coordinator.status()
    assert final["state"] == "idle"
    assert final["hosts_found"] == ["10.5.0.2", "10.5.0.10"]
    assert final["finished_at"] is not None
    assert notifier.events[0][0] == "scan_complete"

    async with session_factory() as db:
        events = (await db.execute(select(SystemEvent))).scalars().all()
    assert [(e.source, e.event_type) for e in events] == [("scan", "scan_complete")]


async def test_second_scan_is_rejected_while_running(session_factory):
    gate = asyncio.Event()

    async def slow_probe(ip):
        await gate.wait()
        return ProbeResult(ip=ip, status="offline")

    coordinator = ScanCoordinator(probe=slow_probe, session_factory=session_factory)
    await coordinator.start("10.6.0.0/30")
    with pytest.raises(ScanInProgress):
        await coordinator.start("10.7.0.0/30")
    assert coordinator.cidr == "10.6.0.0/30"

    gate.set()
    await coordinator.wait()
    assert coordinator.state == ScanState.idle
    # idle again, a new scan is accepted
    await coordinator.start("10.7.0.0/30")
    await coordinator.wait()
    assert coordinator.cidr == "10.7.0.0/30"


async def test_failed_scan_sets_error_state(session_factory, monkeypatch):
    from app.services import scan_coordinator as module

    async def exploding_batch(*args, **kwargs):
        raise RuntimeError("no route to host")

    monkeypatch.setattr(module, "smart_ping_batch", exploding_batch)
    notifier = RecordingNotifier()
    coordinator = ScanCoordinator(notifier=notifier, session_factory=session_factory)
    await coordinator.start("10.8.0.0/30")
    await coordinator.wait()

    assert coordinator.state == ScanState.error
    assert coordinator.status()["error"] == "no route to host"
    assert notifier.events[0][0] == "scan_failed"

    # error is not a lock-out
    monkeypatch.undo()
    coordinator._probe = alive_probe(set())
    await coordinator.start("10.8.0.0/30")
    await coordinator.wait()
    assert coordinator.state == ScanState.idle


async def test_invalid_ranges_leave_state_idle():
    coordinator = ScanCoordinator(probe=alive_probe(set()))
    with pytest.raises(InvalidFormat):
        await coordinator.start("not-a-cidr")
    with pytest.raises(SegmentTooLarge):
        await coordinator.start("10.0.0.0/16")
    assert coordinator.state == ScanState.idle
