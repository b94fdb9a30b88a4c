"""Heuristic network path inference: client -> gateway -> ISP -> backbone -> CDN -> origin."""
from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence, Tuple

from pathScope.collector.models import (
    ROLE_ORDER,
    UNKNOWN,
    PublicIPMetadata,
    Role,
    Topology,
    TopologyEdge,
    TopologyNode,
)
from pathScope.enrichment.facts import ConnectionFacts
from pathScope.enrichment.providers import ProviderPrefixTable


def _meta(**values) -> Dict[str, str]:
    """Metadata map where every missing value reads as "unknown"."""
    return {key: UNKNOWN if value is None or value == "" else str(value) for key, value in values.items()}


EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points given in degrees."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def route_distance_km(public: PublicIPMetadata, origin_location: Optional[Tuple[float, float]]) -> Optional[int]:
    if public.lat is None or public.lon is None or origin_location is None:
        return None
    return round(haversine_km(public.lat, public.lon, origin_location[0], origin_location[1]))


def _dedupe(ips: Sequence[str]) -> List[str]:
    seen: List[str] = []
    for ip in ips:
        if ip and ip not in seen:
            seen.append(ip)
    return seen


def infer_topology(
    connection_facts: Optional[ConnectionFacts],
    public_ip: Optional[PublicIPMetadata],
    *,
    serving_ips: Sequence[str] = (),
    cdn_table: Optional[ProviderPrefixTable] = None,
    hosting_table: Optional[ProviderPrefixTable] = None,
    origin_name: Optional[str] = None,
    include_backbone: bool = True,
    origin_location: Optional[Tuple[float, float]] = None,
    anycast_window: Tuple[int, int] = (1, 4),
) -> Topology:
    """
    Best-guess path from the client to the serving origin.

    Every role is always present (backbone only when enabled); facts that
    could not be discovered show up as "unknown" metadata instead of
    missing nodes. This is not a traceroute, and the result is not
    ground truth.

    With `origin_location` (lat, lon) set, the origin node carries the
    great-circle distance from the public IP location as `distance_km`.
    """
    facts = connection_facts or ConnectionFacts()
    public = public_ip or PublicIPMetadata()
    cdn_table = cdn_table or ProviderPrefixTable.default_cdn()
    hosting_table = hosting_table or ProviderPrefixTable.default_hosting()
    ips = _dedupe(serving_ips)

    cdn_hit = cdn_table.first_match(ips)
    if cdn_hit is not None:
        cdn_ip, cdn_label = cdn_hit
    else:
        cdn_ip, cdn_label = (ips[0] if ips else None), UNKNOWN
    origin_ip = ips[0] if ips else None
    origin_label = hosting_table.match(origin_ip) or UNKNOWN

    nodes: List[TopologyNode] = [
        TopologyNode(
            id=Role.CLIENT.value,
            display_name="Your Device",
            role=Role.CLIENT,
            address=facts.local_ip,
            metadata=_meta(local_ip=facts.local_ip, hostname=facts.hostname, platform=facts.platform),
        ),
        TopologyNode(
            id=Role.GATEWAY.value,
            display_name="Router / Gateway",
            role=Role.GATEWAY,
            address=facts.gateway_ip,
            metadata=_meta(gateway_ip=facts.gateway_ip, interface=facts.interface),
        ),
        TopologyNode(
            id=Role.ISP.value,
            display_name=public.org or "ISP",
            role=Role.ISP,
            provider_label=public.org or UNKNOWN,
            address=public.address,
            metadata=_meta(
                public_ip=public.address,
                org=public.org,
                city=public.city,
                country=public.country,
                lat=public.lat,
                lon=public.lon,
            ),
        ),
    ]
    if include_backbone:
        nodes.append(
            TopologyNode(
                id=Role.BACKBONE.value,
                display_name="Internet Backbone",
                role=Role.BACKBONE,
                metadata=_meta(inferred="true"),
            )
        )
    nodes.append(
        TopologyNode(
            id=Role.CDN.value,
            display_name=f"{cdn_label} CDN" if cdn_label != UNKNOWN else "CDN / Edge",
            role=Role.CDN,
            provider_label=cdn_label,
            address=cdn_ip,
            metadata=_meta(edge_ip=cdn_ip, matched="true" if cdn_hit else "false"),
        )
    )
    nodes.append(
        TopologyNode(
            id=Role.ORIGIN.value,
            display_name=origin_name or "Origin Server",
            role=Role.ORIGIN,
            provider_label=origin_label,
            address=origin_ip,
            metadata=_meta(
                domain=origin_name,
                hosting=origin_label if origin_label != UNKNOWN else None,
                distance_km=route_distance_km(public, origin_location),
            ),
        )
    )

    edges = [TopologyEdge(from_id=a.id, to_id=b.id) for a, b in zip(nodes, nodes[1:])]
    low, high = anycast_window
    redundancy = len(ips)
    return Topology(
        nodes=nodes,
        edges=edges,
        redundancy=redundancy,
        anycast_likely=redundancy > 0 and low <= redundancy <= high,
    )


def is_simple_path(topology: Topology) -> bool:
    """True when edges chain consecutive nodes and roles follow the canonical order."""
    order = [ROLE_ORDER.index(node.role) for node in topology.nodes]
    if any(b <= a for a, b in zip(order, order[1:])):
        return False
    expected = [(a.id, b.id) for a, b in zip(topology.nodes, topology.nodes[1:])]
    return [(e.from_id, e.to_id) for e in topology.edges] == expected
