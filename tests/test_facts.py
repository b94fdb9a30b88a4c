from __future__ import annotations

import asyncio

from pathScope.enrichment import facts
from pathScope.enrichment.facts import ConnectionFacts, parse_netstat_routes, parse_proc_route

PROC_ROUTE = """Iface\tDestination\tGateway \tFlags\tRefCnt\tUse\tMetric\tMask\t\tMTU\tWindow\tIRTT
eth0\t0000A8C0\t00000000\t0001\t0\t0\t100\t00FFFFFF\t0\t0\t0
eth0\t00000000\t0101A8C0\t0003\t0\t0\t100\t00000000\t0\t0\t0
"""

NETSTAT_LINUX = """Kernel IP routing table
Destination     Gateway         Genmask         Flags   MSS Window  irtt Iface
0.0.0.0         10.0.0.1        0.0.0.0         UG        0 0          0 wlan0
10.0.0.0        0.0.0.0         255.255.255.0   U         0 0          0 wlan0
"""

NETSTAT_MACOS = """Routing tables

Internet:
Destination        Gateway            Flags        Netif Expire
default            192.168.0.254      UGScg          en0
127                127.0.0.1          UCS            lo0
"""


def test_parse_proc_route_finds_default_gateway() -> None:
    assert parse_proc_route(PROC_ROUTE) == ("eth0", "192.168.1.1")


def test_parse_proc_route_without_default() -> None:
    header = PROC_ROUTE.splitlines()[0]
    only_local = "\n".join([header, PROC_ROUTE.splitlines()[1]])

    assert parse_proc_route(only_local) is None
    assert parse_proc_route("") is None


def test_parse_netstat_layouts() -> None:
    assert parse_netstat_routes(NETSTAT_LINUX) == "10.0.0.1"
    assert parse_netstat_routes(NETSTAT_MACOS) == "192.168.0.254"
    assert parse_netstat_routes("default  link#4  UCS  en0") is None


def test_discovery_never_raises(monkeypatch) -> None:
    monkeypatch.setattr(facts, "get_local_ip", lambda probe_host="8.8.8.8": None)
    monkeypatch.setattr(facts, "get_default_gateway", lambda: (None, None))

    result = asyncio.run(facts.discover_connection_facts())

    assert isinstance(result, ConnectionFacts)
    assert result.local_ip is None
    assert result.gateway_ip is None
