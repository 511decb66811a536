from __future__ import annotations
import pytest

from asset_audit.base_data import ASSET_PROFILES
from asset_audit.config import Config
from asset_audit.db import ExcelConnection, InventoryRepository, NeedRepository


@pytest.fixture
def conn():
    return ExcelConnection(None)


@pytest.fixture
def cfg():
    return Config(
        default_tolerances_m={t.value: p.legacy_tolerance_m for t, p in ASSET_PROFILES.items()},
        project_error_radius_m={"placas": 500.0, "porticos": 500.0, "cilindros": 1000.0},
    )


@pytest.fixture
def needs_repo(conn):
    return NeedRepository(conn)


@pytest.fixture
def inventory_repo(conn):
    return InventoryRepository(conn)
