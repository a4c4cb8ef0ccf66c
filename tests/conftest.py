"""Fixtures compartidos para los tests del conector IQR ↔ ShipStation."""

import pytest

from app.core.config import Settings
from tests.factories import build_order, build_raw_order, build_settings


@pytest.fixture
def settings() -> Settings:
    return build_settings()


@pytest.fixture
def make_settings():
    return build_settings


@pytest.fixture
def make_raw_order():
    return build_raw_order


@pytest.fixture
def make_order():
    """Fábrica de IQROrder normalizadas."""
    return build_order
