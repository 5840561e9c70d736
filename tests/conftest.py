"""Root conftest for the acmesync test suite."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import yaml

# ---------------------------------------------------------------------------
# Make ``src/`` and the shared test helpers importable without installing
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

_TESTS = str(Path(__file__).resolve().parent)
if _TESTS not in sys.path:
    sys.path.insert(0, _TESTS)


# ---------------------------------------------------------------------------
# Minimal config data shared by multiple test modules
# ---------------------------------------------------------------------------


@pytest.fixture()
def minimal_config_data() -> dict:
    """Return a dict containing the minimum useful config."""
    return {
        "providers": [
            {
                "name": "cloudflare",
                "type": "cloudflare",
                "config": {"api_token": "test-token"},
            },
        ],
        "issuers": [
            {
                "name": "letsencrypt-staging",
                "email": "ops@example.com",
                "dns_provider": "cloudflare",
                "zone": "example.com",
            },
        ],
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, minimal_config_data: dict) -> Path:
    """Write *minimal_config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(minimal_config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


# ---------------------------------------------------------------------------
# ConfigKit singleton cleanup: autouse so every test gets a fresh slate
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the AcmesyncConfig singleton before and after every test."""
    from acmesync.config.acmesync_config import AcmesyncConfig

    AcmesyncConfig.reset()
    yield
    AcmesyncConfig.reset()
