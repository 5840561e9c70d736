"""Allow ``python -m acmesync``."""

from acmesync.cli.main import main

main()
