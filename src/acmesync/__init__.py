"""acmesync: ACME DNS-01 certificate reconciliation controller."""

__version__ = "0.1.0"
