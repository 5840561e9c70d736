"""TXT record propagation checks against public resolvers.

Each configured resolver is queried independently (no shared cache, no
system resolver configuration).  A record counts as propagated as soon
as one resolver returns a TXT string exactly equal to the expected
value.
"""

from __future__ import annotations

import logging

import dns.exception
import dns.resolver

log = logging.getLogger(__name__)

DEFAULT_RESOLVERS: tuple[str, ...] = ("1.1.1.1", "8.8.8.8")


class PropagationChecker:
    """Query public resolvers for a TXT record value.

    Parameters
    ----------
    resolvers:
        Resolver IP addresses, each queried on its own.
    timeout_seconds:
        Lifetime of a single query.

    """

    def __init__(
        self,
        resolvers: tuple[str, ...] = DEFAULT_RESOLVERS,
        timeout_seconds: float = 5.0,
    ) -> None:
        self.resolvers = tuple(resolvers) or DEFAULT_RESOLVERS
        self.timeout_seconds = timeout_seconds

    def _resolver_for(self, nameserver: str) -> dns.resolver.Resolver:
        resolver = dns.resolver.Resolver(configure=False)
        resolver.nameservers = [nameserver]
        resolver.lifetime = self.timeout_seconds
        # Propagation polling must never be answered from a local cache.
        resolver.cache = None
        return resolver

    def lookup(self, nameserver: str, name: str) -> set[str]:
        """Return every TXT string *nameserver* has for *name*.

        Lookup failures (NXDOMAIN, no answer, timeout) yield an empty set.
        """
        resolver = self._resolver_for(nameserver)
        try:
            answer = resolver.resolve(name, "TXT")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            log.debug("%s: no TXT record for %s yet", nameserver, name)
            return set()
        except dns.exception.DNSException as exc:
            log.debug("%s: TXT lookup for %s failed: %s", nameserver, name, exc)
            return set()

        values: set[str] = set()
        for rdata in answer:
            # Foreign records at the same name may hold arbitrary bytes.
            raw = b"".join(s if isinstance(s, bytes) else s.encode() for s in rdata.strings)
            values.add(raw.decode("utf-8", errors="replace"))
        return values

    def is_visible(self, name: str, expected: str) -> bool:
        """Return ``True`` if any resolver serves *expected* for *name*."""
        for nameserver in self.resolvers:
            if expected in self.lookup(nameserver, name):
                log.debug("TXT %s visible on %s", name, nameserver)
                return True
        return False
