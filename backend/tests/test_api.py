import asyncio

import pytest
from sqlalchemy import select

from app.models.ip_address import IpAddress
from app.models.user import AuditLog
from app.routers import ping as ping_router
from app.services.ping_monitor import ProbeResult


async def _ip_id(db, address):
    result = await db.execute(select(IpAddress.id).where(IpAddress.ip_address == address))
    return result.scalar_one()


async def test_health(client):
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


async def test_calculate_cidr(client):
    resp = await client.get("/api/segments/calculate", params={"cidr": "10.0.0.0/22"})
    assert resp.status_code == 200
    assert resp.json()["usable_hosts"] == 1022

    resp = await client.get("/api/segments/calculate", params={"cidr": "10.0.0.0/99"})
    assert resp.status_code == 400
    assert "Invalid CIDR" in resp.json()["detail"]


async def test_segment_lifecycle(client, db):
    resp = await client.post("/api/segments/", json={
        "name": "Servers", "cidr": "10.20.0.0/24", "gateway": "10.20.0.1", "vlan_id": 20,
    })
    assert resp.status_code == 201
    body = resp.json()
    assert body["ips_generated"] == 254
    segment_id = body["id"]

    resp = await client.get(f"/api/segments/{segment_id}")
    assert resp.json()["stats"] == {"total": 254, "used": 0, "free": 253, "reserved": 0, "usage_percent": 0}

    resp = await client.post("/api/segments/", json={"name": "Again", "cidr": "10.20.0.0/24"})
    assert resp.status_code == 409

    resp = await client.post("/api/segments/", json={"name": "Huge", "cidr": "10.32.0.0/16"})
    assert resp.status_code == 400

    resp = await client.patch(f"/api/segments/{segment_id}", json={"description": "rack A"})
    assert resp.status_code == 200
    assert resp.json()["description"] == "rack A"

    ip_id = await _ip_id(db, "10.20.0.50")
    assert (await client.post(f"/api/ips/{ip_id}/assign", json={"hostname": "db-01"})).status_code == 200

    resp = await client.delete(f"/api/segments/{segment_id}")
    assert resp.status_code == 409

    assert (await client.post(f"/api/ips/{ip_id}/release")).status_code == 200
    resp = await client.delete(f"/api/segments/{segment_id}")
    assert resp.status_code == 200
    assert (await client.get(f"/api/segments/{segment_id}")).status_code == 404

    actions = (await db.execute(select(AuditLog.action).order_by(AuditLog.id))).scalars().all()
    assert "segment_created" in actions
    assert "segment_deleted" in actions


async def test_segment_list_and_stats(client, segment):
    resp = await client.get("/api/segments/")
    assert [s["cidr"] for s in resp.json()] == ["192.168.10.0/28"]
    assert resp.json()[0]["stats"]["free"] == 13

    resp = await client.get("/api/segments/stats")
    summary = resp.json()["summary"]
    assert summary["total_segments"] == 1
    assert summary["total_ips"] == 14


async def test_ip_transitions(client, db, segment):
    ip_id = await _ip_id(db, "192.168.10.5")

    resp = await client.post(f"/api/ips/{ip_id}/assign", json={"hostname": "ws-05", "mac_address": "aa-bb-cc-dd-ee-05"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "in_use"
    assert body["mac_address"] == "AA:BB:CC:DD:EE:05"
    assert body["segment"]["cidr"] == "192.168.10.0/28"

    resp = await client.post(f"/api/ips/{ip_id}/assign", json={"hostname": "other"})
    assert resp.status_code == 409

    resp = await client.post(f"/api/ips/{ip_id}/reserve", json={})
    assert resp.status_code == 400

    assert (await client.post(f"/api/ips/{ip_id}/release")).json()["status"] == "free"
    resp = await client.post(f"/api/ips/{ip_id}/release")
    assert resp.status_code == 400

    resp = await client.post(f"/api/ips/{ip_id}/reserve", json={"notes": "new hire"})
    assert resp.json()["reserved_by_user"]["username"] == "admin"


async def test_invalid_mac_rejected(client, db, segment):
    ip_id = await _ip_id(db, "192.168.10.6")
    resp = await client.post(f"/api/ips/{ip_id}/assign", json={"mac_address": "zz:zz"})
    assert resp.status_code == 422


async def test_list_ips_paginated(client, segment):
    resp = await client.get("/api/ips/", params={"segment_id": segment.id, "limit": 5, "page": 2})
    body = resp.json()
    assert body["pagination"] == {"page": 2, "limit": 5, "total": 14, "total_pages": 3}
    assert [r["ip_address"] for r in body["data"]] == [f"192.168.10.{i}" for i in range(6, 11)]


async def test_find_free(client, segment):
    resp = await client.get("/api/ips/find-free", params={"segment_id": segment.id, "count": 2})
    assert resp.status_code == 200
    body = resp.json()
    assert [r["ip_address"] for r in body] == ["192.168.10.2", "192.168.10.3"]
    assert body[0]["segment"]["cidr"] == "192.168.10.0/28"


async def test_readonly_cannot_modify(as_user, readonly_user, db, segment):
    ip_id = await _ip_id(db, "192.168.10.9")
    async with as_user(readonly_user) as client:
        assert (await client.get(f"/api/ips/{ip_id}")).status_code == 200
        assert (await client.post(f"/api/ips/{ip_id}/block", json={})).status_code == 403
        assert (await client.delete("/api/ping/cleanup")).status_code == 403


async def test_unauthenticated_is_rejected(as_user):
    async with as_user(None) as client:
        resp = await client.get("/api/segments/")
    assert resp.status_code in (401, 403)


@pytest.fixture
def fake_probes(monkeypatch):
    """Every address answers ICMP except .3, which only has RDP open."""
    async def fake_batch(ips, concurrency=None, **kwargs):
        results = {}
        for ip in ips:
            if ip.endswith(".3"):
                results[ip] = ProbeResult(ip=ip, status="blocked", method="tcp", open_ports=[3389])
            else:
                results[ip] = ProbeResult(ip=ip, status="online", method="icmp", response_time=1.0)
        return results

    async def fake_single(ip, probe_ports=None):
        return ProbeResult(ip=ip, status="online", method="icmp", response_time=2.0, mac="AA:AA:AA:00:00:01")

    monkeypatch.setattr(ping_router.ping_monitor, "smart_ping_batch", fake_batch)
    monkeypatch.setattr(ping_router.ping_monitor, "smart_ping", fake_single)


async def test_ping_segment_records_history(client, db, segment, fake_probes):
    resp = await client.post(f"/api/ping/segment/{segment.id}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["summary"]["total"] == 14
    assert body["summary"]["blocked"] == 1
    assert body["results"]["192.168.10.3"]["open_ports"] == [3389]
    assert body["results"]["192.168.10.1"]["ip_status"] == "gateway"

    latest = (await client.get(f"/api/ping/segment/{segment.id}/latest")).json()
    assert len(latest) == 14
    assert latest["192.168.10.3"]["status"] == "blocked"


async def test_ping_single_ip_and_history(client, db, segment, fake_probes):
    ip_id = await _ip_id(db, "192.168.10.4")
    resp = await client.post(f"/api/ping/ip/{ip_id}")
    assert resp.status_code == 200
    assert resp.json()["mac"] == "AA:AA:AA:00:00:01"

    resp = await client.get(f"/api/ping/ip/{ip_id}/history")
    body = resp.json()
    assert body["stats"]["total_checks"] == 1
    assert body["history"][0]["status"] == "online"

    assert (await client.get("/api/ping/conflicts")).json() == []
    assert (await client.delete("/api/ping/cleanup")).json()["deleted"] == 0


async def test_ping_unknown_segment(client):
    resp = await client.post("/api/ping/segment/999")
    assert resp.status_code == 404


async def test_scan_endpoints(client, monkeypatch, session_factory):
    from app.routers import scan as scan_router
    from app.services.scan_coordinator import ScanCoordinator

    # Hold the sweep until the request has committed its audit row: both share
    # the single in-memory SQLite connection
    request_done = asyncio.Event()

    async def probe(ip):
        await request_done.wait()
        return ProbeResult(ip=ip, status="online" if ip.endswith(".1") else "offline", method="icmp")

    coordinator = ScanCoordinator(probe=probe, session_factory=session_factory)
    monkeypatch.setattr(scan_router, "scan_coordinator", coordinator)

    resp = await client.post("/api/scan", json={"cidr": "10.44.0.0/29"})
    assert resp.status_code == 202
    assert resp.json()["state"] == "running"

    resp = await client.post("/api/scan", json={"cidr": "10.45.0.0/29"})
    assert resp.status_code == 409

    request_done.set()
    await coordinator.wait()

    resp = await client.get("/api/scan/status")
    body = resp.json()
    assert body["state"] == "idle"
    assert body["hosts_found"] == ["10.44.0.1"]

    events = (await client.get("/api/system-events/", params={"source": "scan", "resource_id": "10.44.0.0/29"})).json()
    assert [e["event_type"] for e in events] == ["scan_complete"]

    resp = await client.post("/api/scan", json={"cidr": "10.0.0.0/8"})
    assert resp.status_code == 400


async def test_login(as_user, make_user):
    await make_user("alice", "operator", password="correct-horse")
    async with as_user(None) as client:
        resp = await client.post("/api/auth/login", json={"username": "alice", "password": "correct-horse"})
        assert resp.status_code == 200
        assert resp.json()["role"] == "operator"

        resp = await client.post("/api/auth/login", json={"username": "alice", "password": "wrong"})
        assert resp.status_code == 401
