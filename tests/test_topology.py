from __future__ import annotations

import pytest

from pathScope.collector.models import ROLE_ORDER, UNKNOWN, PublicIPMetadata, Role
from pathScope.enrichment.facts import ConnectionFacts
from pathScope.enrichment.topology import haversine_km, infer_topology, is_simple_path


def test_empty_facts_still_yield_every_role() -> None:
    topology = infer_topology(None, None)

    assert [n.role for n in topology.nodes] == ROLE_ORDER
    assert is_simple_path(topology)
    assert len(topology.edges) == len(topology.nodes) - 1
    assert all(n.provider_label == UNKNOWN for n in topology.nodes)
    client = topology.nodes[0]
    assert client.metadata["local_ip"] == UNKNOWN
    assert topology.redundancy == 0
    assert topology.anycast_likely is False


def test_backbone_can_be_disabled() -> None:
    topology = infer_topology(None, None, include_backbone=False)

    roles = [n.role for n in topology.nodes]
    assert Role.BACKBONE not in roles
    assert roles == [r for r in ROLE_ORDER if r != Role.BACKBONE]
    assert is_simple_path(topology)


def test_cdn_and_origin_labels_from_serving_ips() -> None:
    facts = ConnectionFacts(local_ip="192.168.1.20", gateway_ip="192.168.1.1", interface="eth0")
    public = PublicIPMetadata(address="203.0.113.7", org="Example ISP", city="Springfield", lat=1.5, lon=2.5)

    topology = infer_topology(
        facts,
        public,
        serving_ips=["185.199.108.153", "185.199.109.153", "185.199.108.153"],
        origin_name="example.github.io",
    )
    nodes = {n.id: n for n in topology.nodes}

    assert nodes["gateway"].address == "192.168.1.1"
    assert nodes["isp"].provider_label == "Example ISP"
    assert nodes["isp"].metadata["lat"] == "1.5"
    assert nodes["isp"].metadata["country"] == UNKNOWN
    assert nodes["cdn"].provider_label == "github"
    assert nodes["cdn"].address == "185.199.108.153"
    assert nodes["origin"].provider_label == "GitHub Pages"
    assert nodes["origin"].display_name == "example.github.io"
    assert topology.redundancy == 2
    assert topology.anycast_likely is True


def test_unmatched_serving_ip_keeps_cdn_node_with_unknown_label() -> None:
    topology = infer_topology(None, None, serving_ips=["93.184.216.34"])
    cdn = next(n for n in topology.nodes if n.role == Role.CDN)

    assert cdn.address == "93.184.216.34"
    assert cdn.provider_label == UNKNOWN


def test_anycast_window_is_configurable() -> None:
    ips = [f"198.51.100.{i}" for i in range(1, 7)]

    assert infer_topology(None, None, serving_ips=ips).anycast_likely is False
    assert infer_topology(None, None, serving_ips=ips, anycast_window=(1, 8)).anycast_likely is True


def test_metadata_values_are_strings() -> None:
    public = PublicIPMetadata(address="203.0.113.7", lat=10.0, lon=-20.25)

    topology = infer_topology(None, public)

    for node in topology.nodes:
        assert all(isinstance(v, str) for v in node.metadata.values())


def test_haversine_known_distance() -> None:
    # London to Paris
    assert haversine_km(51.5074, -0.1278, 48.8566, 2.3522) == pytest.approx(343.5, abs=1.0)
    assert haversine_km(10.0, 20.0, 10.0, 20.0) == 0.0


def test_origin_carries_route_distance_from_public_ip() -> None:
    public = PublicIPMetadata(address="203.0.113.7", lat=40.7128, lon=-74.0060)

    topology = infer_topology(None, public, origin_location=(37.7749, -122.4194))
    origin = next(n for n in topology.nodes if n.role == Role.ORIGIN)

    # New York to San Francisco
    assert int(origin.metadata["distance_km"]) == pytest.approx(4129, abs=5)


def test_route_distance_unknown_without_coordinates() -> None:
    no_location = infer_topology(None, PublicIPMetadata(address="203.0.113.7"), origin_location=(37.7749, -122.4194))
    no_origin = infer_topology(None, PublicIPMetadata(lat=40.7, lon=-74.0))

    for topology in (no_location, no_origin):
        origin = next(n for n in topology.nodes if n.role == Role.ORIGIN)
        assert origin.metadata["distance_km"] == UNKNOWN
