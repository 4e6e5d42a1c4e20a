"""
Pytest fixtures for the inventory test suite.

Provides:
- A property with a main stockroom, a kitchen and a bar
- Weight and count units (kg, g, pc)
- Owned items (flour, butter, eggs) and a consignment item (wine)
- A consignment supplier

All fixtures use the pytest-django ``db`` fixture, so each test runs in a
rolled-back transaction.
"""
from decimal import Decimal

import pytest
from django.core.cache import cache

from inventory.models import (
    Property, Warehouse, Supplier, StockUnit, StockCategory, StockItem,
)


@pytest.fixture(autouse=True)
def clear_cache():
    """Settings are cached between requests; start every test from the database."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def resort(db):
    return Property.objects.create(name="Seaside Resort", code="SEA")


@pytest.fixture
def stockroom(resort):
    return Warehouse.objects.create(
        property=resort, name="Main Stockroom", code="MS", type=Warehouse.WarehouseType.MAIN_STOCKROOM
    )


@pytest.fixture
def kitchen(resort):
    return Warehouse.objects.create(
        property=resort, name="Kitchen", code="KT", type=Warehouse.WarehouseType.KITCHEN
    )


@pytest.fixture
def bar(resort):
    return Warehouse.objects.create(
        property=resort, name="Pool Bar", code="BR", type=Warehouse.WarehouseType.BAR
    )


@pytest.fixture
def kg(db):
    return StockUnit.objects.create(
        name="Kilogram", abbreviation="kg", unit_type=StockUnit.UnitType.WEIGHT,
        is_base_unit=True, conversion_factor=Decimal("1"),
    )


@pytest.fixture
def gram(db):
    return StockUnit.objects.create(
        name="Gram", abbreviation="g", unit_type=StockUnit.UnitType.WEIGHT,
        conversion_factor=Decimal("0.001"),
    )


@pytest.fixture
def piece(db):
    return StockUnit.objects.create(
        name="Piece", abbreviation="pc", unit_type=StockUnit.UnitType.COUNT,
        is_base_unit=True, conversion_factor=Decimal("1"),
    )


@pytest.fixture
def dry_goods(db):
    return StockCategory.objects.create(name="Dry Goods", color="#c2a878")


@pytest.fixture
def beverages(db):
    return StockCategory.objects.create(name="Beverages", color="#7a1f3d")


@pytest.fixture
def supplier(db):
    return Supplier.objects.create(code="VIN01", name="Coastal Vintners", contact_person="M. Reyes")


@pytest.fixture
def flour(dry_goods, kg):
    return StockItem.objects.create(name="Flour", sku="DRY-FLOUR", category=dry_goods, primary_unit=kg)


@pytest.fixture
def butter(dry_goods, kg):
    return StockItem.objects.create(name="Butter", sku="DRY-BUTTER", category=dry_goods, primary_unit=kg)


@pytest.fixture
def eggs(dry_goods, piece):
    return StockItem.objects.create(name="Eggs", sku="DRY-EGGS", category=dry_goods, primary_unit=piece)


@pytest.fixture
def wine(beverages, piece, supplier):
    return StockItem.objects.create(
        name="House Red", sku="BEV-RED", category=beverages, primary_unit=piece,
        is_consignment=True, supplier=supplier,
    )
