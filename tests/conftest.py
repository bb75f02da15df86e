"""Root conftest for the dynauth test suite."""

from __future__ import annotations

import base64
import logging
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import yaml

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from dynauth.authority.ca import CAOptions  # noqa: E402
from dynauth.store import InMemoryResourceStore  # noqa: E402

NAMESPACE = "cert-manager"
SECRET_NAME = "cert-manager-webhook-ca"
T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> datetime:
        self.current += delta
        return self.current


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def unb64(value: str) -> bytes:
    return base64.b64decode(value)


# ---------------------------------------------------------------------------
# Config data shared by multiple test modules
# ---------------------------------------------------------------------------


@pytest.fixture()
def minimal_config_data() -> dict:
    """Return a small config overriding a few defaults."""
    return {
        "authority": {
            "namespace": NAMESPACE,
            "ca_secret": SECRET_NAME,
            "ca_duration_seconds": 7200,
            "key_curve": 256,
        },
        "server": {"enabled": False},
        "logging": {"level": "DEBUG", "format": "text"},
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
# Authority fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def store() -> InMemoryResourceStore:
    return InMemoryResourceStore()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def ca_options() -> CAOptions:
    """Short-lived P-256 CA so tests generate keys quickly."""
    return CAOptions(
        namespace=NAMESPACE,
        secret_name=SECRET_NAME,
        duration=timedelta(hours=3),
        key_curve=256,
    )


# ---------------------------------------------------------------------------
# ConfigKit singleton cleanup: autouse so every test gets a fresh slate
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def propagating_logger():
    """Undo ``configure_logging`` so caplog sees ``dynauth.*`` records."""
    yield
    logger = logging.getLogger("dynauth")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the DynauthConfig singleton before and after every test."""
    from dynauth.config.dynauth_config import DynauthConfig

    DynauthConfig.reset()
    yield
    DynauthConfig.reset()
