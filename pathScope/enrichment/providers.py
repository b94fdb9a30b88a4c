"""Table-driven provider detection from IP prefixes and name-server domains."""
from __future__ import annotations

import ipaddress
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from pathScope.logging_config import get_logger

logger = get_logger("providers")

_GITHUB_PAGES = ["185.199.108.", "185.199.109.", "185.199.110.", "185.199.111."]

DEFAULT_CDN_PREFIXES: Dict[str, List[str]] = {
    "cloudflare": ["104.16.", "104.17.", "172.64.", "104.18."],
    "amazonaws": ["54.", "52.", "34.", "3."],
    "fastly": ["151.101."],
    "akamai": ["23.", "104.74."],
    "cloudfront": ["54.230.", "54.239.", "52.84."],
    "github": list(_GITHUB_PAGES),
}

DEFAULT_HOSTING_PREFIXES: Dict[str, List[str]] = {
    "GitHub Pages": list(_GITHUB_PAGES),
    "Cloudflare": ["104.16.", "104.17.", "172.64."],
    "AWS": ["54.", "52.", "34.", "3."],
    "Google Cloud": ["35.", "34.102.", "34.118."],
    "Azure": ["52.", "40.", "168."],
}

# Name-server domain suffix -> DNS provider
DEFAULT_NS_PROVIDERS: Dict[str, str] = {
    "amazonaws.com": "AWS Route 53",
    "cloudflare.com": "Cloudflare",
    "googledomains.com": "Google Domains",
    "namecheap.com": "Namecheap",
    "godaddy.com": "GoDaddy",
    "github.io": "GitHub Pages",
}

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
_Entry = Tuple[str, Union[str, Network]]


class ProviderPrefixTable:
    """
    Ordered provider -> prefixes mapping.

    A prefix is either a literal string prefix ("185.199.108.") or a CIDR
    block ("104.16.0.0/13"). Matching walks providers in insertion order and
    each provider's prefixes in order; the first hit wins. Labels are for
    display only.
    """

    def __init__(self, table: Mapping[str, Sequence[str]]) -> None:
        self._entries: List[_Entry] = []
        for provider, prefixes in table.items():
            for prefix in prefixes:
                self._entries.append((provider, self._compile(provider, prefix)))

    @staticmethod
    def _compile(provider: str, prefix: str) -> Union[str, Network]:
        if "/" in prefix:
            try:
                return ipaddress.ip_network(prefix, strict=False)
            except ValueError as exc:
                raise ValueError(f"Invalid CIDR {prefix!r} for provider {provider}") from exc
        if not prefix:
            raise ValueError(f"Empty prefix for provider {provider}")
        return prefix

    @property
    def providers(self) -> List[str]:
        seen: List[str] = []
        for provider, _ in self._entries:
            if provider not in seen:
                seen.append(provider)
        return seen

    def __len__(self) -> int:
        return len(self._entries)

    def match(self, ip: Optional[str]) -> Optional[str]:
        """Provider label for `ip`, or None."""
        if not ip:
            return None
        parsed = None
        for provider, prefix in self._entries:
            if isinstance(prefix, str):
                if ip.startswith(prefix):
                    return provider
                continue
            if parsed is None:
                try:
                    parsed = ipaddress.ip_address(ip)
                except ValueError:
                    parsed = False
            if parsed and parsed.version == prefix.version and parsed in prefix:
                return provider
        return None

    def first_match(self, ips: Iterable[str]) -> Optional[Tuple[str, str]]:
        """(ip, provider) for the first IP that matches any prefix."""
        for ip in ips:
            provider = self.match(ip)
            if provider is not None:
                return ip, provider
        return None

    @classmethod
    def default_cdn(cls) -> "ProviderPrefixTable":
        return cls(DEFAULT_CDN_PREFIXES)

    @classmethod
    def default_hosting(cls) -> "ProviderPrefixTable":
        return cls(DEFAULT_HOSTING_PREFIXES)


def ns_provider(nameserver: str, table: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """DNS provider behind a name server host, from its domain suffix."""
    host = nameserver.lower().rstrip(".")
    for suffix, provider in (table or DEFAULT_NS_PROVIDERS).items():
        if host == suffix or host.endswith("." + suffix):
            return provider
    return None


def build_tables(
    cdn: Optional[Mapping[str, Sequence[str]]] = None,
    hosting: Optional[Mapping[str, Sequence[str]]] = None,
) -> Tuple[ProviderPrefixTable, ProviderPrefixTable]:
    """CDN and hosting tables, falling back to the built-in defaults."""
    cdn_table = ProviderPrefixTable(cdn) if cdn else ProviderPrefixTable.default_cdn()
    hosting_table = ProviderPrefixTable(hosting) if hosting else ProviderPrefixTable.default_hosting()
    logger.debug(
        "Provider tables loaded",
        extra={"extra_fields": {"cdn_prefixes": len(cdn_table), "hosting_prefixes": len(hosting_table)}},
    )
    return cdn_table, hosting_table
