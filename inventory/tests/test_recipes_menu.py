"""
Recipe costing and availability, menu food cost and COGS capture.
"""
from decimal import Decimal

import pytest
from django.utils import timezone

from inventory.models import COGSRecord, ImmutableRecordError, MenuItem
from inventory.services import (
    InventorySettingsService, MenuItemService, RecipeService, StockOperationService,
)
from inventory.tests.helpers import dec


@pytest.fixture
def stocked_kitchen(kitchen, flour, butter, eggs):
    StockOperationService.receive_stock(flour.id, kitchen.id, "1", "2.00")
    StockOperationService.receive_stock(butter.id, kitchen.id, "2", "10.00")
    StockOperationService.receive_stock(eggs.id, kitchen.id, "8", "0.50")
    return kitchen


@pytest.fixture
def omelette(eggs, butter):
    """3 eggs and 50 g of butter: 1.50 + 0.50 per portion."""
    result = RecipeService.create(
        name="Omelette",
        yield_quantity="1",
        ingredients=[
            {"stock_item_id": eggs.id, "quantity": "3"},
            {"stock_item_id": butter.id, "quantity": "0.05"},
        ],
    )
    assert result["success"], result
    return result["id"]


@pytest.fixture
def omelette_plate(omelette):
    result = MenuItemService.create(
        name="Garden Omelette", category="MAIN_COURSE", selling_price="5.00", recipe_id=omelette
    )
    assert result["success"], result
    return result["id"]


@pytest.mark.django_db
class TestRecipeDefinition:

    def test_ingredient_unit_defaults_to_primary(self, omelette, eggs):
        recipe = RecipeService.get(omelette)["recipe"]

        units = {ing["stock_item_id"]: ing["unit"] for ing in recipe["ingredients"]}
        assert units[eggs.id] == "pc"

    def test_incompatible_unit_is_rejected(self, flour, piece):
        result = RecipeService.create(
            name="Odd Bread", yield_quantity="1",
            ingredients=[{"stock_item_id": flour.id, "quantity": "2", "unit_id": piece.id}],
        )

        assert result["error_code"] == "VALIDATION_ERROR"
        assert "cannot be converted" in result["message"]

    def test_recipe_needs_ingredients(self):
        result = RecipeService.create(name="Air", yield_quantity="1", ingredients=[])

        assert result["error_code"] == "VALIDATION_ERROR"

    def test_duplicate_ingredient_is_rejected(self, flour):
        result = RecipeService.create(
            name="Double Flour", yield_quantity="1",
            ingredients=[
                {"stock_item_id": flour.id, "quantity": "1"},
                {"stock_item_id": flour.id, "quantity": "2"},
            ],
        )

        assert result["error_code"] == "VALIDATION_ERROR"

    def test_self_reference_is_rejected(self, omelette):
        result = RecipeService.set_sub_recipes(omelette, [{"recipe_id": omelette, "quantity": "1"}])

        assert result["error_code"] == "PRECONDITION_FAILED"
        assert result["details"]["rule"] == "recipe_cycle"

    def test_indirect_cycle_is_rejected(self, flour, butter):
        dough = RecipeService.create(
            name="Dough", yield_quantity="2", ingredients=[{"stock_item_id": flour.id, "quantity": "1"}]
        )["id"]
        pastry = RecipeService.create(
            name="Pastry", yield_quantity="1",
            ingredients=[{"stock_item_id": butter.id, "quantity": "0.1"}],
            sub_recipes=[{"recipe_id": dough, "quantity": "1"}],
        )["id"]

        result = RecipeService.set_sub_recipes(dough, [{"recipe_id": pastry, "quantity": "1"}])

        assert result["error_code"] == "PRECONDITION_FAILED"
        assert "Dough -> Pastry -> Dough" in result["message"]
        assert RecipeService.get(dough)["recipe"]["sub_recipes"] == []


@pytest.mark.django_db
class TestRecipeCost:

    def test_cost_converts_units(self, stocked_kitchen, flour, eggs, gram):
        bread = RecipeService.create(
            name="Egg Bread", yield_quantity="10",
            ingredients=[
                {"stock_item_id": flour.id, "quantity": "500", "unit_id": gram.id},
                {"stock_item_id": eggs.id, "quantity": "4"},
            ],
        )["id"]

        cost = RecipeService.calculate_cost(bread, stocked_kitchen.id)["cost"]

        # 0.5 kg x 2.00 + 4 x 0.50
        assert dec(cost["total_cost"]) == Decimal("3.00")
        assert dec(cost["cost_per_portion"]) == Decimal("0.30")

    def test_sub_recipe_cost_per_portion(self, stocked_kitchen, flour, butter):
        dough = RecipeService.create(
            name="Dough", yield_quantity="2", ingredients=[{"stock_item_id": flour.id, "quantity": "1"}]
        )["id"]
        pastry = RecipeService.create(
            name="Pastry", yield_quantity="1",
            ingredients=[{"stock_item_id": butter.id, "quantity": "0.1"}],
            sub_recipes=[{"recipe_id": dough, "quantity": "1"}],
        )["id"]

        cost = RecipeService.calculate_cost(pastry, stocked_kitchen.id)["cost"]

        # 0.1 kg butter at 10.00, plus half a batch of dough (2.00 / 2)
        assert dec(cost["total_cost"]) == Decimal("2.00")
        assert dec(cost["sub_recipe_costs"][0]["cost_per_portion"]) == Decimal("1")

    def test_missing_stock_costs_zero(self, omelette, bar):
        cost = RecipeService.calculate_cost(omelette, bar.id)["cost"]

        assert dec(cost["total_cost"]) == Decimal("0")

    def test_unknown_warehouse(self, omelette):
        assert RecipeService.calculate_cost(omelette, 9999)["error_code"] == "NOT_FOUND"


@pytest.mark.django_db
class TestRecipeAvailability:

    def test_portions_limited_by_scarcest_ingredient(self, stocked_kitchen, omelette):
        availability = RecipeService.check_availability(omelette, stocked_kitchen.id)["availability"]

        # 8 eggs / 3 per portion
        assert availability["is_available"] is True
        assert availability["portions_available"] == 2

    def test_shortfall_reports_deficit(self, stocked_kitchen, omelette, eggs):
        availability = RecipeService.check_availability(omelette, stocked_kitchen.id, portions=4)["availability"]

        assert availability["is_available"] is False
        missing = availability["unavailable_ingredients"]
        assert [row["stock_item_id"] for row in missing] == [eggs.id]
        assert dec(missing[0]["deficit"]) == Decimal("4")

    def test_portions_must_be_positive(self, stocked_kitchen, omelette):
        result = RecipeService.check_availability(omelette, stocked_kitchen.id, portions=0)

        assert result["error_code"] == "VALIDATION_ERROR"


@pytest.mark.django_db
class TestFoodCost:

    def test_food_cost_percentage(self, stocked_kitchen, omelette_plate):
        result = MenuItemService.calculate_food_cost_percentage(omelette_plate, stocked_kitchen.id, target="35")
        profitability = result["profitability"]

        assert dec(profitability["cost_per_portion"]) == Decimal("2")
        assert dec(profitability["food_cost_percentage"]) == Decimal("40")
        assert dec(profitability["gross_profit"]) == Decimal("3")
        assert profitability["is_above_target_cost"] is True

    def test_equal_to_target_is_not_above(self, stocked_kitchen, omelette_plate):
        result = MenuItemService.calculate_food_cost_percentage(omelette_plate, stocked_kitchen.id, target="40")

        assert result["profitability"]["is_above_target_cost"] is False

    def test_default_target_comes_from_settings(self, stocked_kitchen, omelette_plate):
        InventorySettingsService.update(target_food_cost_percentage="45")

        result = MenuItemService.calculate_food_cost_percentage(omelette_plate, stocked_kitchen.id)

        assert dec(result["profitability"]["target_percentage"]) == Decimal("45")
        assert result["profitability"]["is_above_target_cost"] is False

    def test_zero_price_gives_zero_percent(self, stocked_kitchen, omelette):
        free = MenuItemService.create(
            name="Staff Omelette", category="MAIN_COURSE", selling_price="0", recipe_id=omelette
        )["id"]

        result = MenuItemService.calculate_food_cost_percentage(free, stocked_kitchen.id, target="35")

        assert dec(result["profitability"]["food_cost_percentage"]) == Decimal("0")
        assert result["profitability"]["is_above_target_cost"] is False

    def test_menu_item_without_recipe(self, stocked_kitchen):
        item = MenuItemService.create(name="Sparkling Water", category="BEVERAGE", selling_price="3")["id"]

        result = MenuItemService.calculate_food_cost_percentage(item, stocked_kitchen.id)

        assert result["error_code"] == "PRECONDITION_FAILED"

    def test_invalid_category(self):
        result = MenuItemService.create(name="Mystery", category="SNACK", selling_price="3")

        assert result["error_code"] == "VALIDATION_ERROR"

    def test_profitability_sorted_by_food_cost(self, stocked_kitchen, omelette, omelette_plate):
        MenuItemService.create(name="Premium Omelette", category="MAIN_COURSE", selling_price="10.00", recipe_id=omelette)

        result = MenuItemService.get_profitability(stocked_kitchen.id, target="35")

        assert [row["menu_item_name"] for row in result["items"]] == ["Garden Omelette", "Premium Omelette"]
        assert result["above_target_count"] == 1


@pytest.mark.django_db
class TestCOGS:

    def test_sale_freezes_cost(self, stocked_kitchen, omelette_plate, eggs):
        first = MenuItemService.record_sale(omelette_plate, stocked_kitchen.id, "2")
        assert dec(first["cogs_record"]["unit_cost"]) == Decimal("2")
        assert dec(first["total_cost"]) == Decimal("4")

        # Eggs get dearer: 8 @ 0.50 + 8 @ 1.50 -> 1.00 average
        StockOperationService.receive_stock(eggs.id, stocked_kitchen.id, "8", "1.50")
        second = MenuItemService.record_sale(omelette_plate, stocked_kitchen.id, "1")

        assert COGSRecord.objects.get(id=first["cogs_record"]["id"]).unit_cost == Decimal("2")
        assert dec(second["cogs_record"]["unit_cost"]) == Decimal("3.5")

    def test_cogs_records_are_immutable(self, stocked_kitchen, omelette_plate):
        sale = MenuItemService.record_sale(omelette_plate, stocked_kitchen.id, "1")
        record = COGSRecord.objects.get(id=sale["cogs_record"]["id"])

        record.unit_cost = Decimal("0")
        with pytest.raises(ImmutableRecordError):
            record.save()

    def test_fractional_portions_are_rejected(self, stocked_kitchen, omelette_plate):
        result = MenuItemService.record_sale(omelette_plate, stocked_kitchen.id, "1.5")

        assert result["error_code"] == "VALIDATION_ERROR"

    def test_unavailable_item_cannot_be_sold(self, stocked_kitchen, omelette_plate):
        MenuItemService.set_unavailable(omelette_plate, "Out of eggs")

        result = MenuItemService.record_sale(omelette_plate, stocked_kitchen.id, "1")

        assert result["error_code"] == "PRECONDITION_FAILED"
        assert not COGSRecord.objects.exists()

    def test_unavailable_needs_reason(self, omelette_plate):
        result = MenuItemService.set_unavailable(omelette_plate, "")

        assert result["error_code"] == "VALIDATION_ERROR"

    def test_summary_uses_price_at_sale(self, stocked_kitchen, omelette_plate):
        MenuItemService.record_sale(omelette_plate, stocked_kitchen.id, "2")
        MenuItem.objects.filter(id=omelette_plate).update(selling_price=Decimal("6.00"))

        today = timezone.localdate().isoformat()
        summary = MenuItemService.get_cogs_summary(today, today)

        assert dec(summary["totals"]["total_revenue"]) == Decimal("10")
        assert dec(summary["totals"]["total_cogs"]) == Decimal("4")
        assert dec(summary["totals"]["overall_food_cost_percentage"]) == Decimal("40")


@pytest.mark.django_db
class TestMenuAvailability:

    def test_recompute_marks_item_unavailable(self, kitchen, omelette_plate):
        result = MenuItemService.update_availability_from_stock(omelette_plate, kitchen.id)

        assert result["is_available"] is False
        assert "Eggs" in result["reason"]
        assert MenuItem.objects.get(id=omelette_plate).is_available is False

    def test_recompute_restores_availability(self, stocked_kitchen, omelette_plate):
        MenuItemService.set_unavailable(omelette_plate, "Chef's day off")

        result = MenuItemService.update_availability_from_stock(omelette_plate, stocked_kitchen.id)

        assert result["is_available"] is True
        assert result["portions_available"] == 2
        assert MenuItem.objects.get(id=omelette_plate).unavailable_reason == ""
