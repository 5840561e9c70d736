"""DNS-01 challenge solving.

Exports the solver and the ledger that scopes challenge cleanup to a
validation attempt.
"""

from acmesync.challenge.ledger import ChallengeLedger
from acmesync.challenge.solver import ChallengeSolver, provider_error

__all__ = [
    "ChallengeLedger",
    "ChallengeSolver",
    "provider_error",
]
