import asyncio

import pytest

from app.exceptions import ProbeError
from app.services import ping_monitor
from app.services.ping_monitor import (
    DEFAULT_PROBE_PORTS, IcmpResult, ProbeResult, get_summary, parse_ping_output, smart_ping, smart_ping_batch,
)

LINUX_REPLY = """PING 192.168.1.1 (192.168.1.1) 56(84) bytes of data.
64 bytes from 192.168.1.1: icmp_seq=1 ttl=64 time=0.456 ms

--- 192.168.1.1 ping statistics ---
1 packets transmitted, 1 received, 0% packet loss, time 0ms
"""

LINUX_UNREACHABLE = """PING 192.168.1.9 (192.168.1.9) 56(84) bytes of data.
From 192.168.1.20 icmp_seq=1 Destination Host Unreachable
"""

WINDOWS_UNREACHABLE = """Pinging 10.0.0.9 with 32 bytes of data:
Reply from 10.0.0.20: Destination host unreachable.
"""

WINDOWS_REPLY = "Reply from 10.0.0.1: bytes=32 time<1ms TTL=128"


def test_parse_linux_reply():
    result = parse_ping_output(LINUX_REPLY, 0)
    assert result.alive
    assert result.response_time == 0.456


def test_parse_windows_reply():
    result = parse_ping_output(WINDOWS_REPLY, 0)
    assert result.alive
    assert result.response_time == 1.0


def test_parse_unreachable():
    assert parse_ping_output(LINUX_UNREACHABLE, 1).unreachable
    # Windows exits 0 here
    windows = parse_ping_output(WINDOWS_UNREACHABLE, 0)
    assert not windows.alive
    assert windows.unreachable


def test_parse_timeout():
    result = parse_ping_output("1 packets transmitted, 0 received, 100% packet loss", 1)
    assert not result.alive
    assert not result.unreachable
    assert result.response_time is None


@pytest.fixture
def no_arp(monkeypatch):
    async def fake_arp(ip, timeout=None):
        return None
    monkeypatch.setattr(ping_monitor, "get_mac_from_arp", fake_arp)


async def test_icmp_reply_is_online_with_mac(monkeypatch):
    async def fake_icmp(ip, timeout=None):
        return IcmpResult(alive=True, response_time=1.5)

    async def fake_arp(ip, timeout=None):
        return "00:0C:29:AA:BB:CC"

    monkeypatch.setattr(ping_monitor, "icmp_ping", fake_icmp)
    monkeypatch.setattr(ping_monitor, "get_mac_from_arp", fake_arp)

    result = await smart_ping("10.0.0.5")
    assert result.status == "online"
    assert result.method == "icmp"
    assert result.response_time == 1.5
    assert result.mac == "00:0C:29:AA:BB:CC"
    assert result.vendor == "VMware"


async def test_unreachable_skips_tcp(monkeypatch, no_arp):
    async def fake_icmp(ip, timeout=None):
        return IcmpResult(alive=False, unreachable=True)

    async def fake_tcp(ip, ports, timeout=None):
        raise AssertionError("TCP fallback must not run for unreachable hosts")

    monkeypatch.setattr(ping_monitor, "icmp_ping", fake_icmp)
    monkeypatch.setattr(ping_monitor, "tcp_probe", fake_tcp)

    result = await smart_ping("10.0.0.6")
    assert result.status == "offline"
    assert result.method == "icmp"


async def test_timeout_with_open_port_is_blocked(monkeypatch, no_arp):
    async def fake_icmp(ip, timeout=None):
        return IcmpResult(alive=False)

    async def fake_port(ip, port, timeout=None):
        return port == 3389

    monkeypatch.setattr(ping_monitor, "icmp_ping", fake_icmp)
    monkeypatch.setattr(ping_monitor, "tcp_probe_port", fake_port)

    result = await smart_ping("10.0.0.7")
    assert result.status == "blocked"
    assert result.method == "tcp"
    assert result.open_ports == [3389]


async def test_timeout_with_closed_ports_tries_every_port(monkeypatch, no_arp):
    attempted = []

    async def fake_icmp(ip, timeout=None):
        return IcmpResult(alive=False)

    async def fake_port(ip, port, timeout=None):
        attempted.append(port)
        return False

    monkeypatch.setattr(ping_monitor, "icmp_ping", fake_icmp)
    monkeypatch.setattr(ping_monitor, "tcp_probe_port", fake_port)

    result = await smart_ping("10.0.0.8")
    assert result.status == "offline"
    assert result.method == "tcp"
    assert sorted(attempted) == sorted(DEFAULT_PROBE_PORTS)


async def test_missing_ping_binary_is_reported(monkeypatch):
    async def no_binary(*args, **kwargs):
        raise FileNotFoundError("No such file or directory: 'ping'")

    monkeypatch.setattr(ping_monitor.asyncio, "create_subprocess_exec", no_binary)

    with pytest.raises(ProbeError, match="cannot run ping"):
        await ping_monitor.icmp_ping("10.0.0.9")


async def test_probe_failure_becomes_error(monkeypatch):
    async def broken_icmp(ip, timeout=None):
        raise ProbeError("cannot run ping: command not found")

    monkeypatch.setattr(ping_monitor, "icmp_ping", broken_icmp)

    result = await smart_ping("10.0.0.9")
    assert result.status == "error"
    assert "command not found" in result.error


async def test_unexpected_failure_becomes_error(monkeypatch):
    async def broken_icmp(ip, timeout=None):
        raise RuntimeError("boom")

    monkeypatch.setattr(ping_monitor, "icmp_ping", broken_icmp)

    result = await smart_ping("10.0.0.9")
    assert result.status == "error"
    assert result.error == "boom"


async def test_mac_lookup_failure_does_not_fail_probe(monkeypatch):
    async def fake_icmp(ip, timeout=None):
        return IcmpResult(alive=True, response_time=2.0)

    async def broken_arp(ip, timeout=None):
        raise RuntimeError("neighbor table unavailable")

    monkeypatch.setattr(ping_monitor, "icmp_ping", fake_icmp)
    monkeypatch.setattr(ping_monitor, "get_mac_from_arp", broken_arp)

    result = await smart_ping("10.0.0.10")
    assert result.status == "online"
    assert result.mac is None


async def test_batch_runs_in_sequential_chunks():
    in_flight = 0
    peaks = []
    chunk_sizes = []
    current = []

    async def probe(ip):
        nonlocal in_flight
        in_flight += 1
        current.append(ip)
        peaks.append(in_flight)
        await asyncio.sleep(0)
        if in_flight == 1:
            chunk_sizes.append(len(current))
            current.clear()
        in_flight -= 1
        return ProbeResult(ip=ip, status="online", response_time=1.0)

    ips = [f"10.1.0.{i}" for i in range(1, 26)]
    results = await smart_ping_batch(ips, concurrency=10, probe=probe)

    assert len(results) == 25
    assert max(peaks) == 10
    assert chunk_sizes == [10, 10, 5]


async def test_batch_rejects_zero_concurrency():
    with pytest.raises(ValueError):
        await smart_ping_batch(["10.0.0.1"], concurrency=0)


async def test_batch_empty():
    assert await smart_ping_batch([], concurrency=5) == {}


def test_summary():
    results = {
        "a": ProbeResult(ip="a", status="online", response_time=2.0),
        "b": ProbeResult(ip="b", status="online", response_time=4.0),
        "c": ProbeResult(ip="c", status="blocked", method="tcp"),
        "d": ProbeResult(ip="d", status="offline"),
        "e": ProbeResult(ip="e", status="error", error="boom"),
    }
    assert get_summary(results) == {
        "total": 5, "online": 2, "offline": 1, "blocked": 1, "error": 1, "avg_response_time": 3.0,
    }
    assert get_summary({})["avg_response_time"] is None
