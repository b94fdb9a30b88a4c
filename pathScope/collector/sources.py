"""Probe interface and the default aiohttp/dnspython probe."""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Dict, List, Optional, Protocol, Tuple
from urllib.parse import urlsplit

import aiohttp
import dns.asyncquery
import dns.asyncresolver
import dns.exception
import dns.message
import dns.rdatatype
import dns.resolver

from pathScope.collector.config import ProbeConfig
from pathScope.collector.models import DNSAnswer, DNSResponse, PublicIPMetadata, Target
from pathScope.errors import ProbeError, ProbeFailure, ProbeTimeout
from pathScope.logging_config import get_logger

logger = get_logger("probe")

# DNS RCODEs that mean the resolver could not answer at all
_FATAL_RCODES = {2: "SERVFAIL", 5: "REFUSED"}

_FALLBACK_NAMESERVER = "8.8.8.8"


class Probe(Protocol):
    """Transport for single measurements. Errors are ProbeFailure/ProbeTimeout."""

    async def measure_latency(self, target: Target, *, timeout: float) -> float:
        ...

    async def measure_bandwidth_sample(self, payload_size_hint: int, *, timeout: float) -> float:
        ...

    async def query_dns(
        self, name: str, record_type: str, *, timeout: float, server: Optional[str] = None
    ) -> DNSResponse:
        ...

    async def fetch_public_ip_metadata(self, *, timeout: float) -> PublicIPMetadata:
        ...


async def bounded(coro: Awaitable[Any], timeout: float, operation: str) -> Any:
    """Await one probe call under a deadline, normalising every error to ProbeError."""
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise ProbeTimeout(f"{operation} probe exceeded {timeout}s", operation=operation) from exc
    except ProbeError:
        raise
    except Exception as exc:
        raise ProbeFailure(f"{operation} probe failed: {exc}", operation=operation) from exc


def parse_host_port(address: str, default_port: int) -> Tuple[str, int]:
    """Split `host[:port]`, also accepting bracketed IPv6 (`[::1]:853`)."""
    address = address.strip()
    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        port = rest.lstrip(":")
        return host, int(port) if port else default_port
    if address.count(":") == 1:
        host, port = address.split(":")
        return host, int(port)
    return address, default_port


def is_url(address: str) -> bool:
    return urlsplit(address).scheme in {"http", "https"}


def normalize_record_type(record_type: str) -> str:
    """Canonical record type name; ValueError for unknown types."""
    try:
        return dns.rdatatype.to_text(dns.rdatatype.from_text(record_type.strip().upper()))
    except dns.rdatatype.UnknownRdatatype as exc:
        raise ValueError(f"Unknown DNS record type: {record_type}") from exc


def _type_name(raw: Any) -> str:
    if isinstance(raw, int):
        return dns.rdatatype.to_text(raw)
    return str(raw).upper()


def _doh_answers(rows: Optional[List[Dict[str, Any]]]) -> List[DNSAnswer]:
    answers: List[DNSAnswer] = []
    for row in rows or []:
        try:
            answers.append(
                DNSAnswer(
                    name=str(row.get("name", "")).rstrip("."),
                    record_type=_type_name(row.get("type")),
                    data=str(row.get("data", "")),
                    ttl=row.get("TTL"),
                )
            )
        except (TypeError, ValueError) as e:
            logger.debug(f"Skipping malformed DoH answer row: {e}")
    return answers


def _rrset_answers(rrsets) -> List[DNSAnswer]:
    answers: List[DNSAnswer] = []
    for rrset in rrsets:
        for rdata in rrset:
            answers.append(
                DNSAnswer(
                    name=rrset.name.to_text().rstrip("."),
                    record_type=dns.rdatatype.to_text(rrset.rdtype),
                    data=rdata.to_text(),
                    ttl=rrset.ttl,
                )
            )
    return answers


class HttpProbe:
    """Default probe: HTTP/TCP timing, Cloudflare downloads, DoH or UDP DNS, ipapi.co."""

    def __init__(self, cfg: Optional[ProbeConfig] = None) -> None:
        self.cfg = cfg or ProbeConfig()
        self.session: Optional[aiohttp.ClientSession] = None
        self._resolver: Optional[dns.asyncresolver.Resolver] = None

    async def _client(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=30)
            headers = {"User-Agent": self.cfg.user_agent}
            self.session = aiohttp.ClientSession(timeout=timeout, headers=headers)
        return self.session

    def _get_resolver(self) -> dns.asyncresolver.Resolver:
        if self._resolver is None:
            resolver = dns.asyncresolver.Resolver()
            if self.cfg.nameservers:
                resolver.nameservers = list(self.cfg.nameservers)
            self._resolver = resolver
        return self._resolver

    # ── latency ─────────────────────────────────────────────────────────────

    async def measure_latency(self, target: Target, *, timeout: float) -> float:
        """Round-trip time in ms: HTTP HEAD for URLs, TCP connect for host[:port]."""
        if is_url(target.address):
            return await self._http_latency(target.address, timeout)
        host, port = parse_host_port(target.address, self.cfg.tcp_default_port)
        return await self._tcp_latency(host, port, timeout)

    async def _http_latency(self, url: str, timeout: float) -> float:
        client = await self._client()
        # Cache-busting parameter so every probe reaches the server
        params = {"_": str(time.time_ns())}
        start = time.perf_counter()
        try:
            async with client.head(
                url,
                params=params,
                allow_redirects=False,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                await resp.release()
        except asyncio.TimeoutError as exc:
            raise ProbeTimeout(f"HEAD {url} timed out after {timeout}s", operation="latency") from exc
        except aiohttp.ClientError as exc:
            raise ProbeFailure(f"HEAD {url} failed: {exc}", operation="latency") from exc
        return (time.perf_counter() - start) * 1000

    async def _tcp_latency(self, host: str, port: int, timeout: float) -> float:
        start = time.perf_counter()
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ProbeTimeout(f"TCP {host}:{port} timed out after {timeout}s", operation="latency") from exc
        except OSError as exc:
            raise ProbeFailure(f"TCP {host}:{port} failed: {exc}", operation="latency") from exc
        elapsed = (time.perf_counter() - start) * 1000
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return elapsed

    # ── bandwidth ───────────────────────────────────────────────────────────

    async def measure_bandwidth_sample(self, payload_size_hint: int, *, timeout: float) -> float:
        """Download roughly `payload_size_hint` KB and return the bitrate in Kbps."""
        if payload_size_hint <= 0:
            raise ProbeFailure(f"Invalid payload size: {payload_size_hint}", operation="bandwidth")
        client = await self._client()
        params = {"bytes": str(payload_size_hint * 1024)}
        start = time.perf_counter()
        try:
            async with client.get(
                self.cfg.bandwidth_url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                resp.raise_for_status()
                body = await resp.read()
        except asyncio.TimeoutError as exc:
            raise ProbeTimeout(f"Bandwidth download timed out after {timeout}s", operation="bandwidth") from exc
        except aiohttp.ClientError as exc:
            raise ProbeFailure(f"Bandwidth download failed: {exc}", operation="bandwidth") from exc
        seconds = time.perf_counter() - start
        if not body or seconds <= 0:
            raise ProbeFailure("Bandwidth download returned no data", operation="bandwidth")
        return (len(body) / 1024) * 8 / seconds

    # ── DNS ─────────────────────────────────────────────────────────────────

    async def query_dns(
        self, name: str, record_type: str, *, timeout: float, server: Optional[str] = None
    ) -> DNSResponse:
        """Resolve through the configured transport, or through `server` (a DoH URL or nameserver IP)."""
        try:
            rtype = normalize_record_type(record_type)
        except ValueError as exc:
            raise ProbeFailure(str(exc), operation="dns") from exc
        if server:
            if is_url(server):
                return await self._query_doh(name, rtype, timeout, url=server)
            return await self._query_direct(name, dns.rdatatype.from_text(rtype), timeout, where=server)
        if self.cfg.dns_transport == "udp":
            return await self._query_udp(name, rtype, timeout)
        return await self._query_doh(name, rtype, timeout)

    async def _query_doh(self, name: str, rtype: str, timeout: float, url: Optional[str] = None) -> DNSResponse:
        url = url or self.cfg.doh_url
        client = await self._client()
        params = {"name": name, "type": rtype}
        headers = {"Accept": "application/dns-json"}
        try:
            async with client.get(
                url,
                params=params,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                resp.raise_for_status()
                payload = await resp.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise ProbeTimeout(f"DoH {rtype} {name} timed out after {timeout}s", operation="dns") from exc
        except (aiohttp.ClientError, ValueError) as exc:
            raise ProbeFailure(f"DoH {rtype} {name} failed: {exc}", operation="dns") from exc

        if not isinstance(payload, dict):
            raise ProbeFailure(f"DoH {rtype} {name} returned a non-object body", operation="dns")
        status = int(payload.get("Status", 0))
        if status in _FATAL_RCODES:
            raise ProbeFailure(f"DoH {rtype} {name} answered {_FATAL_RCODES[status]}", operation="dns")
        return DNSResponse(
            status=status,
            answers=_doh_answers(payload.get("Answer")),
            authority=_doh_answers(payload.get("Authority")),
            additional=_doh_answers(payload.get("Additional")),
            source=urlsplit(url).netloc or url,
        )

    async def _query_udp(self, name: str, rtype: str, timeout: float) -> DNSResponse:
        rdtype = dns.rdatatype.from_text(rtype)
        if dns.rdatatype.is_metatype(rdtype):
            # The stub resolver refuses ANY/AXFR; ask a nameserver directly
            return await self._query_direct(name, rdtype, timeout)
        resolver = self._get_resolver()
        resolver.lifetime = timeout
        try:
            answer = await resolver.resolve(name, rtype, raise_on_no_answer=False)
        except dns.resolver.NXDOMAIN:
            return DNSResponse(status=3, source="udp")
        except dns.exception.Timeout as exc:
            raise ProbeTimeout(f"UDP {rtype} {name} timed out after {timeout}s", operation="dns") from exc
        except dns.exception.DNSException as exc:
            raise ProbeFailure(f"UDP {rtype} {name} failed: {exc}", operation="dns") from exc
        response = answer.response
        return DNSResponse(
            status=response.rcode(),
            answers=_rrset_answers(response.answer),
            authority=_rrset_answers(response.authority),
            additional=_rrset_answers(response.additional),
            source="udp",
        )

    async def _query_direct(self, name: str, rdtype, timeout: float, where: Optional[str] = None) -> DNSResponse:
        if where is None:
            where = self.cfg.nameservers[0] if self.cfg.nameservers else _FALLBACK_NAMESERVER
        query = dns.message.make_query(name, rdtype)
        try:
            response = await dns.asyncquery.udp(query, where, timeout=timeout)
        except dns.exception.Timeout as exc:
            raise ProbeTimeout(f"UDP {rdtype} {name} timed out after {timeout}s", operation="dns") from exc
        except (dns.exception.DNSException, OSError) as exc:
            raise ProbeFailure(f"UDP {rdtype} {name} failed: {exc}", operation="dns") from exc
        status = response.rcode()
        if status in _FATAL_RCODES:
            raise ProbeFailure(f"UDP {name} answered {_FATAL_RCODES[status]}", operation="dns")
        return DNSResponse(
            status=status,
            answers=_rrset_answers(response.answer),
            authority=_rrset_answers(response.authority),
            additional=_rrset_answers(response.additional),
            source=where,
        )

    # ── public IP ───────────────────────────────────────────────────────────

    async def fetch_public_ip_metadata(self, *, timeout: float) -> PublicIPMetadata:
        client = await self._client()
        # ipapi.co paid plans authenticate with a `key` query parameter
        params = {"key": self.cfg.api_token} if self.cfg.api_token else None
        try:
            async with client.get(
                self.cfg.public_ip_url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                resp.raise_for_status()
                payload = await resp.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise ProbeTimeout(f"Public IP lookup timed out after {timeout}s", operation="public_ip") from exc
        except (aiohttp.ClientError, ValueError) as exc:
            raise ProbeFailure(f"Public IP lookup failed: {exc}", operation="public_ip") from exc

        if not isinstance(payload, dict) or payload.get("error"):
            reason = payload.get("reason") if isinstance(payload, dict) else "non-object body"
            raise ProbeFailure(f"Public IP lookup rejected: {reason}", operation="public_ip")
        return PublicIPMetadata(
            address=payload.get("ip"),
            org=payload.get("org"),
            city=payload.get("city"),
            country=payload.get("country_name"),
            lat=payload.get("latitude"),
            lon=payload.get("longitude"),
        )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
        self._resolver = None
