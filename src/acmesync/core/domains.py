"""Domain name normalisation and DNS-01 record naming."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable

_LABEL_RE = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")

CHALLENGE_LABEL = "_acme-challenge"


def normalize_domain(domain: str) -> str:
    """Lower-case, strip whitespace and trailing dot, validate labels.

    A single leading ``*.`` wildcard label is allowed.
    """
    name = domain.strip().lower().rstrip(".")
    if not name:
        msg = "Empty domain name"
        raise ValueError(msg)
    labels = name.split(".")
    if labels[0] == "*":
        labels = labels[1:]
    if len(labels) < 2:  # noqa: PLR2004
        msg = f"Domain {domain!r} must contain at least two labels"
        raise ValueError(msg)
    for label in labels:
        if not _LABEL_RE.match(label):
            msg = f"Invalid label {label!r} in domain {domain!r}"
            raise ValueError(msg)
    return name


def normalize_domains(domains: Iterable[str]) -> tuple[str, ...]:
    """Normalise, deduplicate and sort a domain set."""
    result = tuple(sorted({normalize_domain(d) for d in domains}))
    if not result:
        msg = "At least one domain is required"
        raise ValueError(msg)
    return result


def base_domain(domain: str) -> str:
    """Return *domain* without a leading ``*.`` wildcard label."""
    return domain[2:] if domain.startswith("*.") else domain


def challenge_record_name(domain: str) -> str:
    """``_acme-challenge.<domain>`` with any wildcard label removed."""
    return f"{CHALLENGE_LABEL}.{base_domain(domain)}"


def in_zone(domain: str, zone: str) -> bool:
    name = base_domain(domain)
    zone = zone.lower().rstrip(".")
    return name == zone or name.endswith("." + zone)


def domain_key(domains: Iterable[str]) -> str:
    """Stable fingerprint of a normalised domain set.

    Used as the dedup key (together with the issuer name) that keeps at
    most one active request per certificate.
    """
    joined = ",".join(normalize_domains(domains))
    return hashlib.sha256(joined.encode("ascii")).hexdigest()
