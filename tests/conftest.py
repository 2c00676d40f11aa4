# tests/conftest.py

import os

os.environ.setdefault("STORAGE_BACKEND", "memory")

import pytest
from decimal import Decimal

from salesrecon.config import Settings
from salesrecon.core import InMemoryStore, ReconciliationService
from salesrecon.models import CatalogItem

TENANT = "tenant-1"
OTHER_TENANT = "tenant-2"

BITOQUE = "item-bitoque"
FRANCESINHA = "item-francesinha"
SOPA = "item-sopa"


# ============================================
# Test Data
# ============================================

def make_item(id: str, name: str, price: str, aliases: list[str] = None, active: bool = True) -> CatalogItem:
    return CatalogItem(
        id=id,
        name=name,
        aliases=aliases or [],
        price=Decimal(price),
        active=active,
    )


def catalog_items() -> list[CatalogItem]:
    return [
        make_item(BITOQUE, "Bitoque", "8.00"),
        make_item(FRANCESINHA, "Francesinha", "12.50"),
        make_item(SOPA, "Sopa do Dia", "3.00"),
    ]


def raw_line(
    line_number: int,
    description: str,
    line_total,
    quantity=None,
    unit_price=None,
) -> dict:
    return {
        "line_number": line_number,
        "description": description,
        "quantity": quantity,
        "unit_price": unit_price,
        "line_total": line_total,
    }


def scenario_lines() -> list[dict]:
    """Exact match, typo, and a line with no catalog counterpart."""
    return [
        raw_line(1, "Bitoque", "16.00", quantity="2", unit_price="8.00"),
        raw_line(2, "bitok", "8.00", quantity="1", unit_price="8.00"),
        raw_line(3, "Taxa de servico", "1.50", quantity="1"),
    ]


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def settings() -> Settings:
    return Settings(
        storage_backend="memory",
        enable_match_history=True,
        approval_timeout_seconds=0.2,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore({TENANT: catalog_items()})


@pytest.fixture
def service(store, settings) -> ReconciliationService:
    return ReconciliationService(store, settings)


@pytest.fixture
def staged(service):
    """The three-line scenario, staged and waiting for review."""
    return service.stage_import(TENANT, scenario_lines(), source_filename="zreport.pdf")
