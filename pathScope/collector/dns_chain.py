"""DNS resolution chain reconstruction, infrastructure discovery and security checks."""
from __future__ import annotations

import asyncio
import random
import string
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from pathScope.collector.config import DNSConfig
from pathScope.collector.models import (
    ChainLevel,
    ChainLevelKind,
    DNSAnalysis,
    DNSInfrastructure,
    DNSPerformance,
    DNSRecord,
    DNSResponse,
    SecurityFinding,
    Severity,
)
from pathScope.collector.sources import Probe, bounded
from pathScope.enrichment.providers import ProviderPrefixTable, ns_provider
from pathScope.errors import PartialDNSFailure, ProbeError
from pathScope.logging_config import get_logger

logger = get_logger("dns_chain")

ROOT_SERVERS = [
    "198.41.0.4",      # a.root-servers.net
    "170.247.170.2",   # b
    "192.33.4.12",     # c
    "199.7.91.13",     # d
    "192.203.230.10",  # e
    "192.5.5.241",     # f
    "192.112.36.4",    # g
    "198.97.190.53",   # h
    "192.36.148.17",   # i
    "192.58.128.30",   # j
    "193.0.14.129",    # k
    "199.7.83.42",     # l
    "202.12.27.33",    # m
]


def normalize_domain(domain: str) -> str:
    return domain.strip().lower().rstrip(".")


def random_probe_name(domain: str) -> str:
    """Nonce subdomain used to detect wildcard records."""
    nonce = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"test-{nonce}.{domain}"


def _dedupe(items: Sequence[str]) -> List[str]:
    seen: List[str] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


class DNSChainReconstructor:
    """
    Rebuild root -> TLD -> authoritative -> CDN for a domain.

    Every record-type query and every security check is independent: a
    failure becomes a partial failure (or an unknown check) and never stops
    the rest of the run. Results are a fresh DNSAnalysis on every call.
    """

    def __init__(
        self,
        probe: Optional[Probe],
        config: Optional[DNSConfig] = None,
        *,
        timeout: float = 5.0,
        cdn_table: Optional[ProviderPrefixTable] = None,
        hosting_table: Optional[ProviderPrefixTable] = None,
        anycast_window: Tuple[int, int] = (1, 4),
    ) -> None:
        self.probe = probe
        self.config = config or DNSConfig()
        self.timeout = timeout
        self.cdn_table = cdn_table or ProviderPrefixTable.default_cdn()
        self.hosting_table = hosting_table or ProviderPrefixTable.default_hosting()
        self.anycast_window = anycast_window

    async def _query(self, name: str, record_type: str, server: Optional[str] = None) -> DNSResponse:
        probe = self.probe
        if probe is None:
            raise PartialDNSFailure(record_type, "probe released")
        try:
            return await bounded(
                probe.query_dns(name, record_type, timeout=self.timeout, server=server), self.timeout, "dns"
            )
        except ProbeError as exc:
            raise PartialDNSFailure(record_type, str(exc)) from exc

    async def _pause(self) -> None:
        if self.config.inter_query_delay_seconds:
            await asyncio.sleep(self.config.inter_query_delay_seconds)

    async def reconstruct(self, domain: str) -> DNSAnalysis:
        domain = normalize_domain(domain)
        if not domain:
            raise ValueError("domain must not be empty")
        start = time.perf_counter()
        records: Dict[str, List[DNSRecord]] = {}
        partial_failures: List[str] = []

        for index, record_type in enumerate(self.config.record_types):
            if index:
                await self._pause()
            rtype = record_type.upper()
            try:
                response = await self._query(domain, rtype)
            except PartialDNSFailure as exc:
                partial_failures.append(rtype)
                logger.warning(
                    f"DNS {rtype} query for {domain} failed: {exc.reason}",
                    extra={"domain": domain, "record_type": rtype, "outcome": "error", "error_type": "PartialDNSFailure"},
                )
                continue
            queried_at = datetime.now(timezone.utc)
            records[rtype] = [
                DNSRecord(
                    owner_name=a.name or domain,
                    record_type=a.record_type,
                    data=a.data,
                    source=response.source,
                    queried_at=queried_at,
                    ttl=a.ttl,
                )
                for a in response.answers_of(rtype)
            ]

        serving_ips = _dedupe([r.data for r in records.get("A", [])])
        chain = self.build_chain(domain, records, serving_ips)
        infrastructure = self.discover_infrastructure(records, serving_ips)
        findings, unknown_checks = await self.run_security_checks(domain, records)
        performance = await self.measure_performance(domain)

        analysis = DNSAnalysis(
            domain=domain,
            analyzed_at=datetime.now(timezone.utc),
            records=records,
            chain=chain,
            findings=findings,
            infrastructure=infrastructure,
            performance=performance,
            partial_failures=partial_failures,
            unknown_checks=unknown_checks,
        )
        logger.info(
            f"DNS chain reconstructed for {domain}",
            extra={
                "domain": domain,
                "duration": round((time.perf_counter() - start) * 1000, 2),
                "outcome": "success" if not partial_failures else "partial",
                "extra_fields": {
                    "chain_levels": len(chain),
                    "findings": len(findings),
                    "partial_failures": partial_failures,
                    "unknown_checks": unknown_checks,
                    "resolver_reliability": performance.reliability if performance else None,
                },
            },
        )
        return analysis

    # ── chain ───────────────────────────────────────────────────────────────

    def build_chain(
        self,
        domain: str,
        records: Dict[str, List[DNSRecord]],
        serving_ips: Sequence[str],
    ) -> List[ChainLevel]:
        tld = domain.rsplit(".", 1)[-1]
        chain = [
            ChainLevel(
                level=0,
                label="Root Servers (.)",
                kind=ChainLevelKind.ROOT,
                members=list(ROOT_SERVERS),
                description="DNS root name servers",
            ),
            ChainLevel(
                level=1,
                label=f".{tld} TLD Servers",
                kind=ChainLevelKind.TLD,
                members=[tld],
                description=f"Top Level Domain servers for .{tld}",
            ),
        ]

        ns_records: List[DNSRecord] = []
        seen_ns: List[str] = []
        for record in records.get("NS", []):
            if record.data not in seen_ns:
                seen_ns.append(record.data)
                ns_records.append(record)
        if ns_records:
            chain.append(
                ChainLevel(
                    level=2,
                    label="Authoritative Servers",
                    kind=ChainLevelKind.AUTHORITATIVE,
                    members=ns_records,
                    description=f"Authoritative name servers for {domain}",
                )
            )

        cdn = self.cdn_table.first_match(serving_ips)
        if cdn is not None:
            _, provider = cdn
            chain.append(
                ChainLevel(
                    level=3,
                    label=f"{provider} CDN",
                    kind=ChainLevelKind.CDN,
                    members=list(serving_ips),
                    description="Content Delivery Network layer",
                    provider=provider,
                )
            )
        return chain

    # ── infrastructure ──────────────────────────────────────────────────────

    def discover_infrastructure(
        self,
        records: Dict[str, List[DNSRecord]],
        serving_ips: Sequence[str],
    ) -> DNSInfrastructure:
        providers: Dict[str, str] = {}
        for ip in serving_ips:
            label = self.hosting_table.match(ip)
            if label:
                providers[ip] = label
        name_servers = _dedupe([r.data.rstrip(".") for r in records.get("NS", [])])
        ns_providers = _dedupe([p for p in (ns_provider(ns) for ns in name_servers) if p])
        low, high = self.anycast_window
        redundancy = len(serving_ips)
        return DNSInfrastructure(
            serving_ips=list(serving_ips),
            providers=providers,
            redundancy=redundancy,
            load_balancing=redundancy > 1,
            anycast_likely=low <= redundancy <= high and redundancy > 0,
            name_servers=name_servers,
            ns_providers=ns_providers,
        )

    # ── security ────────────────────────────────────────────────────────────

    async def run_security_checks(
        self,
        domain: str,
        records: Dict[str, List[DNSRecord]],
    ) -> Tuple[List[SecurityFinding], List[str]]:
        """Run every check; each yields at most one finding or lands in unknown."""
        findings: List[SecurityFinding] = []
        unknown: List[str] = []
        checks = [
            ("dnssec", self._check_dnssec),
            ("caa", self._check_caa),
            ("spf", self._check_spf),
            ("dmarc", self._check_dmarc),
            ("wildcard", self._check_wildcard),
            ("zone_transfer", self._check_zone_transfer),
            ("amplification", self._check_amplification),
        ]
        for name, check in checks:
            await self._pause()
            try:
                finding = await check(domain, records)
            except PartialDNSFailure as exc:
                unknown.append(name)
                logger.info(
                    f"Security check {name} for {domain} is unknown: {exc.reason}",
                    extra={"domain": domain, "check": name, "record_type": exc.record_type, "outcome": "unknown"},
                )
                continue
            if finding is not None:
                findings.append(finding)
        return findings, unknown

    async def _txt_answers(self, name: str, records: Dict[str, List[DNSRecord]], reuse: bool) -> List[str]:
        if reuse and "TXT" in records:
            return [r.data for r in records["TXT"]]
        response = await self._query(name, "TXT")
        return [a.data for a in response.answers_of("TXT")]

    async def _check_dnssec(self, domain: str, records: Dict[str, List[DNSRecord]]) -> Optional[SecurityFinding]:
        response = await self._query(domain, "DS")
        if response.answers_of("DS"):
            return None
        return SecurityFinding(
            category="dnssec",
            severity=Severity.MEDIUM,
            title="DNSSEC not enabled",
            detail=f"No DS record published for {domain}; responses cannot be validated.",
        )

    async def _check_caa(self, domain: str, records: Dict[str, List[DNSRecord]]) -> Optional[SecurityFinding]:
        response = await self._query(domain, "CAA")
        if response.answers_of("CAA"):
            return None
        return SecurityFinding(
            category="caa",
            severity=Severity.LOW,
            title="No CAA records",
            detail=f"Any certificate authority may issue certificates for {domain}.",
        )

    async def _check_spf(self, domain: str, records: Dict[str, List[DNSRecord]]) -> Optional[SecurityFinding]:
        txt = await self._txt_answers(domain, records, reuse=True)
        if any("v=spf1" in value for value in txt):
            return None
        return SecurityFinding(
            category="spf",
            severity=Severity.MEDIUM,
            title="No SPF record",
            detail=f"{domain} publishes no v=spf1 TXT record; mail can be spoofed.",
        )

    async def _check_dmarc(self, domain: str, records: Dict[str, List[DNSRecord]]) -> Optional[SecurityFinding]:
        sources_failed: List[PartialDNSFailure] = []
        for name, reuse in ((domain, True), (f"_dmarc.{domain}", False)):
            try:
                txt = await self._txt_answers(name, records, reuse=reuse)
            except PartialDNSFailure as exc:
                sources_failed.append(exc)
                continue
            if any("v=DMARC1" in value for value in txt):
                return None
        if sources_failed:
            raise sources_failed[0]
        return SecurityFinding(
            category="dmarc",
            severity=Severity.MEDIUM,
            title="No DMARC policy",
            detail=f"No v=DMARC1 record found for {domain} or _dmarc.{domain}.",
        )

    async def _check_wildcard(self, domain: str, records: Dict[str, List[DNSRecord]]) -> Optional[SecurityFinding]:
        probe_name = random_probe_name(domain)
        response = await self._query(probe_name, "A")
        if not response.answers_of("A"):
            return None
        return SecurityFinding(
            category="wildcard",
            severity=Severity.MEDIUM,
            title="Potential wildcard DNS configuration",
            detail=f"Random subdomain {probe_name} resolved; typos and stale names will resolve too.",
        )

    async def _check_zone_transfer(self, domain: str, records: Dict[str, List[DNSRecord]]) -> Optional[SecurityFinding]:
        response = await self._query(domain, "AXFR")
        if not response.answers:
            return None
        return SecurityFinding(
            category="zone_transfer",
            severity=Severity.HIGH,
            title="Zone transfer enabled",
            detail=f"AXFR for {domain} returned {len(response.answers)} records.",
        )

    async def _check_amplification(self, domain: str, records: Dict[str, List[DNSRecord]]) -> Optional[SecurityFinding]:
        response = await self._query(domain, "ANY")
        if len(response.answers) <= self.config.amplification_threshold:
            return None
        return SecurityFinding(
            category="amplification",
            severity=Severity.LOW,
            title="High DNS amplification potential",
            detail=f"ANY query for {domain} returned {len(response.answers)} answers.",
        )

    # ── resolver performance ────────────────────────────────────────────────

    async def measure_performance(self, domain: str) -> Optional[DNSPerformance]:
        """Time one A lookup per configured resolver; None when no resolver is configured."""
        resolvers = self.config.performance_resolvers
        if not resolvers:
            return None
        query_times: Dict[str, Optional[float]] = {}
        for index, server in enumerate(resolvers):
            if index:
                await self._pause()
            start = time.perf_counter()
            try:
                await self._query(domain, "A", server=server)
            except PartialDNSFailure as exc:
                query_times[server] = None
                logger.debug(
                    f"Resolver {server} failed timing lookup for {domain}: {exc.reason}",
                    extra={"domain": domain, "record_type": "A", "outcome": "error", "provider": server},
                )
                continue
            query_times[server] = round((time.perf_counter() - start) * 1000, 2)

        times = [t for t in query_times.values() if t is not None]
        if not times:
            return DNSPerformance(query_times_ms=query_times)
        return DNSPerformance(
            query_times_ms=query_times,
            mean_ms=sum(times) / len(times),
            fastest_ms=min(times),
            slowest_ms=max(times),
            reliability=len(times) / len(query_times) * 100,
        )
