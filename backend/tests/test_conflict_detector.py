from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from app.models.device import Device
from app.models.ip_address import IpAddress
from app.models.ping import PingHistory
from app.services import address_pool, conflict_detector
from app.services.ping_monitor import ProbeResult

MAC_A = "AA:AA:AA:00:00:01"
MAC_B = "BB:BB:BB:00:00:02"


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event, message, **data):
        self.events.append((event, data))
        return True


async def _ip(db, address):
    result = await db.execute(select(IpAddress).where(IpAddress.ip_address == address))
    return result.scalar_one()


async def _probe(db, ip, mac, at, status="online", notifier=None):
    result = ProbeResult(ip=ip.ip_address, status=status, response_time=1.0, method="icmp", mac=mac)
    checks = await conflict_detector.record_probe_results(db, [ip], {ip.ip_address: result}, now=at, notifier=notifier)
    return checks[ip.ip_address]


async def test_no_mac_means_no_conflict(db, segment):
    check = await conflict_detector.detect_conflict(db, "192.168.10.5", None, datetime.now(timezone.utc))
    assert not check.has_conflict
    assert check.previous_mac is None


async def test_mac_change_within_window_is_conflict(db, segment):
    ip = await _ip(db, "192.168.10.5")
    t0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    notifier = RecordingNotifier()

    first = await _probe(db, ip, MAC_A, t0, notifier=notifier)
    assert not first.has_conflict

    second = await _probe(db, ip, MAC_B, t0 + timedelta(minutes=3), notifier=notifier)
    assert second.has_conflict
    assert second.previous_mac == MAC_A
    assert notifier.events == [("conflict_detected", {"ip": "192.168.10.5", "mac": MAC_B, "previous_mac": MAC_A})]

    rows = (await db.execute(select(PingHistory).order_by(PingHistory.id))).scalars().all()
    assert [r.has_conflict for r in rows] == [False, True]
    # earlier history is left untouched
    assert rows[0].previous_mac is None


async def test_mac_change_outside_window_is_not_conflict(db, segment):
    ip = await _ip(db, "192.168.10.6")
    t0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    await _probe(db, ip, MAC_A, t0)
    later = await _probe(db, ip, MAC_B, t0 + timedelta(minutes=11))
    assert not later.has_conflict


async def test_same_mac_is_not_conflict(db, segment):
    ip = await _ip(db, "192.168.10.7")
    t0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    await _probe(db, ip, MAC_A, t0)
    assert not (await _probe(db, ip, MAC_A, t0 + timedelta(minutes=1))).has_conflict


async def test_observed_mac_is_pushed_to_address_and_device(db, segment):
    device = Device(name="ws-08", mac_address="00:00:00:00:00:08")
    db.add(device)
    await db.commit()
    ip = await _ip(db, "192.168.10.8")
    await address_pool.assign(db, ip.id, device_id=device.id)

    await _probe(db, ip, MAC_A, datetime.now(timezone.utc))

    refreshed = await address_pool.get_ip(db, ip.id)
    assert refreshed.mac_address == MAC_A
    device_mac = await db.execute(select(Device.mac_address).where(Device.id == device.id))
    assert device_mac.scalar_one() == MAC_A


async def test_history_stats_and_latest(db, segment):
    ip = await _ip(db, "192.168.10.9")
    t0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    await _probe(db, ip, None, t0, status="online")
    await _probe(db, ip, None, t0 + timedelta(minutes=5), status="offline")
    await _probe(db, ip, None, t0 + timedelta(minutes=10), status="online")

    history = await conflict_detector.get_ip_history(db, ip.id)
    assert len(history) == 3
    assert history[0].status == "online"
    stats = conflict_detector.history_stats(history)
    assert stats["total_checks"] == 3
    assert stats["online_checks"] == 2
    assert stats["uptime_percent"] == 66.67
    assert stats["avg_response_time"] == 1.0

    windowed = await conflict_detector.get_ip_history(
        db, ip.id, start=t0 + timedelta(minutes=1), end=t0 + timedelta(minutes=6),
    )
    assert [h.status for h in windowed] == ["offline"]

    latest = await conflict_detector.latest_status(db, ["192.168.10.9"])
    assert latest["192.168.10.9"].status == "online"
    assert await conflict_detector.latest_status(db, []) == {}


def test_history_stats_empty():
    assert conflict_detector.history_stats([])["uptime_percent"] is None


async def test_list_conflicts_groups_by_address(db, segment):
    ip = await _ip(db, "192.168.10.10")
    now = datetime.now(timezone.utc)
    await _probe(db, ip, MAC_A, now - timedelta(minutes=6))
    await _probe(db, ip, MAC_B, now - timedelta(minutes=4))
    await _probe(db, ip, MAC_A, now - timedelta(minutes=2))

    conflicts = await conflict_detector.list_conflicts(db, hours=1)
    assert len(conflicts) == 1
    assert conflicts[0]["ip_address"] == "192.168.10.10"
    assert conflicts[0]["occurrences"] == 2
    assert conflicts[0]["current_mac"] == MAC_A


async def test_cleanup_history(db, segment):
    ip = await _ip(db, "192.168.10.11")
    now = datetime.now(timezone.utc)
    await _probe(db, ip, None, now - timedelta(days=45))
    await _probe(db, ip, None, now - timedelta(days=1))

    assert await conflict_detector.cleanup_history(db, days=30) == 1
    remaining = (await db.execute(select(PingHistory))).scalars().all()
    assert len(remaining) == 1
