"""DNS provider clients and propagation checks."""

from acmesync.dns.base import DnsProvider, DnsProviderError, DnsRecord
from acmesync.dns.propagation import PropagationChecker
from acmesync.dns.registry import build_providers, load_dns_provider

__all__ = [
    "DnsProvider",
    "DnsProviderError",
    "DnsRecord",
    "PropagationChecker",
    "build_providers",
    "load_dns_provider",
]
