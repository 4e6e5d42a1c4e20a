"""
Consignment: supplier-owned stock that is paid for only once it sells.
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from inventory.models import ConsignmentSale, StockLevel, StockMovement, Supplier
from inventory.services import ConsignmentService
from inventory.tests.helpers import dec


def receive(supplier, warehouse, item, quantity, supplier_cost, selling_price="80.00"):
    result = ConsignmentService.receive_consignment(
        supplier_id=supplier.id,
        warehouse_id=warehouse.id,
        items=[{
            "stock_item_id": item.id,
            "quantity": quantity,
            "selling_price": selling_price,
            "supplier_cost": supplier_cost,
        }],
    )
    assert result["success"], result
    return result


def on_hand(item, warehouse):
    level = StockLevel.objects.filter(stock_item=item, warehouse=warehouse).first()
    return level.quantity if level else Decimal("0")


def today():
    return timezone.localdate().isoformat()


@pytest.mark.django_db
class TestReceiveConsignment:

    def test_receipt_posts_stock_at_supplier_cost(self, supplier, bar, wine):
        result = receive(supplier, bar, wine, "100", "50.00")

        assert result["receipt_number"].startswith("CR-")
        assert dec(result["total_supplier_cost"]) == Decimal("5000")
        assert on_hand(wine, bar) == Decimal("100")
        assert StockLevel.objects.get(stock_item=wine, warehouse=bar).average_cost == Decimal("50")

        movement = StockMovement.objects.get(reference_type="CONSIGNMENT_RECEIPT")
        assert movement.reference_id == str(result["id"])

    def test_owned_item_is_rejected(self, supplier, bar, flour):
        result = ConsignmentService.receive_consignment(
            supplier_id=supplier.id, warehouse_id=bar.id,
            items=[{"stock_item_id": flour.id, "quantity": "1", "selling_price": "5", "supplier_cost": "2"}],
        )

        assert result["error_code"] == "PRECONDITION_FAILED"
        assert on_hand(flour, bar) == Decimal("0")

    def test_item_from_other_supplier_is_rejected(self, bar, wine):
        other = Supplier.objects.create(code="OTH", name="Other Wines")

        result = ConsignmentService.receive_consignment(
            supplier_id=other.id, warehouse_id=bar.id,
            items=[{"stock_item_id": wine.id, "quantity": "1", "selling_price": "5", "supplier_cost": "2"}],
        )

        assert result["error_code"] == "PRECONDITION_FAILED"

    def test_empty_items(self, supplier, bar):
        result = ConsignmentService.receive_consignment(supplier_id=supplier.id, warehouse_id=bar.id, items=[])

        assert result["error_code"] == "VALIDATION_ERROR"

    def test_missing_supplier_cost(self, supplier, bar, wine):
        result = ConsignmentService.receive_consignment(
            supplier_id=supplier.id, warehouse_id=bar.id,
            items=[{"stock_item_id": wine.id, "quantity": "1", "selling_price": "5"}],
        )

        assert result["error_code"] == "VALIDATION_ERROR"
        assert "Supplier cost is required" in result["message"]

    def test_inactive_supplier(self, supplier, bar, wine):
        supplier.is_active = False
        supplier.save()

        result = ConsignmentService.receive_consignment(
            supplier_id=supplier.id, warehouse_id=bar.id,
            items=[{"stock_item_id": wine.id, "quantity": "1", "selling_price": "5", "supplier_cost": "2"}],
        )

        assert result["error_code"] == "PRECONDITION_FAILED"


@pytest.mark.django_db
class TestConsignmentSale:

    def test_sale_records_supplier_due(self, supplier, bar, wine):
        receive(supplier, bar, wine, "100", "50.00", selling_price="80.00")

        result = ConsignmentService.record_sale(wine.id, supplier.id, "10")

        assert result["success"] is True
        assert dec(result["supplier_due"]) == Decimal("500")
        assert dec(result["sale"]["total_sales"]) == Decimal("800")
        assert result["sale"]["settlement_id"] is None
        assert on_hand(wine, bar) == Decimal("90")

    def test_sale_keeps_prices_after_later_receipt(self, supplier, bar, wine):
        receive(supplier, bar, wine, "100", "50.00", selling_price="80.00")
        sold = ConsignmentService.record_sale(wine.id, supplier.id, "10")

        receive(supplier, bar, wine, "10", "60.00", selling_price="95.00")

        sale = ConsignmentSale.objects.get(id=sold["sale"]["id"])
        assert sale.supplier_cost == Decimal("50")
        assert sale.selling_price == Decimal("80")

        unsettled = ConsignmentService.get_unsettled_sales(supplier.id)
        assert dec(unsettled["total_supplier_due"]) == Decimal("500")

    def test_next_sale_uses_latest_receipt(self, supplier, bar, wine):
        receive(supplier, bar, wine, "100", "50.00", selling_price="80.00")
        receive(supplier, bar, wine, "10", "60.00", selling_price="95.00")

        result = ConsignmentService.record_sale(wine.id, supplier.id, "1")

        assert dec(result["sale"]["supplier_cost"]) == Decimal("60")
        assert dec(result["sale"]["selling_price"]) == Decimal("95")

    def test_sale_draws_warehouses_in_id_order(self, supplier, stockroom, bar, wine):
        receive(supplier, stockroom, wine, "3", "50.00")
        receive(supplier, bar, wine, "10", "50.00")

        result = ConsignmentService.record_sale(wine.id, supplier.id, "5")

        assert [d["warehouse_id"] for d in result["deductions"]] == [stockroom.id, bar.id]
        assert on_hand(wine, stockroom) == Decimal("0")
        assert on_hand(wine, bar) == Decimal("8")
        assert StockMovement.objects.filter(reference_type="CONSIGNMENT_SALE").count() == 2

    def test_sale_beyond_stock_is_rejected(self, supplier, bar, wine):
        receive(supplier, bar, wine, "4", "50.00")

        result = ConsignmentService.record_sale(wine.id, supplier.id, "5")

        assert result["error_code"] == "INSUFFICIENT_STOCK"
        assert not ConsignmentSale.objects.exists()
        assert on_hand(wine, bar) == Decimal("4")

    def test_sale_without_receipt(self, supplier, wine):
        result = ConsignmentService.record_sale(wine.id, supplier.id, "1")

        assert result["error_code"] == "PRECONDITION_FAILED"

    def test_owned_item_cannot_be_sold_on_consignment(self, supplier, flour):
        result = ConsignmentService.record_sale(flour.id, supplier.id, "1")

        assert result["error_code"] == "PRECONDITION_FAILED"


@pytest.mark.django_db
class TestReturnToSupplier:

    def test_return_reduces_stock(self, supplier, bar, wine):
        receive(supplier, bar, wine, "10", "50.00")

        result = ConsignmentService.return_to_supplier(wine.id, bar.id, "4", reason="Corked")

        assert dec(result["previous_quantity"]) == Decimal("10")
        assert dec(result["new_quantity"]) == Decimal("6")
        assert result["movement"]["movement_type"] == "RETURN"
        assert result["movement"]["reason"] == "Corked"

    def test_return_more_than_on_hand(self, supplier, bar, wine):
        receive(supplier, bar, wine, "5", "50.00")

        result = ConsignmentService.return_to_supplier(wine.id, bar.id, "20")

        assert result["error_code"] == "INSUFFICIENT_STOCK"
        assert on_hand(wine, bar) == Decimal("5")

    def test_return_from_empty_warehouse(self, supplier, bar, wine):
        result = ConsignmentService.return_to_supplier(wine.id, bar.id, "1")

        assert result["error_code"] == "INSUFFICIENT_STOCK"
        assert result["message"] == "No stock available in this warehouse"


@pytest.mark.django_db
class TestSettlement:

    def test_settlement_totals_and_payment(self, supplier, bar, wine):
        receive(supplier, bar, wine, "100", "50.00", selling_price="80.00")
        ConsignmentService.record_sale(wine.id, supplier.id, "10")
        ConsignmentService.record_sale(wine.id, supplier.id, "2")

        generated = ConsignmentService.generate_settlement(supplier.id, today(), today())

        assert generated["success"] is True
        assert generated["sales_count"] == 2
        assert dec(generated["total_sales"]) == Decimal("960")
        assert dec(generated["total_supplier_due"]) == Decimal("600")
        settlement = generated["settlement"]
        assert settlement["settled_at"] is None
        assert settlement["is_paid"] is False
        assert ConsignmentSale.objects.filter(settlement__isnull=True).count() == 0

        paid = ConsignmentService.mark_settlement_paid(settlement["id"])

        assert paid["settlement"]["is_paid"] is True
        assert paid["sales_count"] == 2
        assert not ConsignmentSale.objects.filter(settled_at__isnull=True).exists()

    def test_sales_are_settled_once(self, supplier, bar, wine):
        receive(supplier, bar, wine, "10", "50.00")
        ConsignmentService.record_sale(wine.id, supplier.id, "1")
        ConsignmentService.generate_settlement(supplier.id, today(), today())

        again = ConsignmentService.generate_settlement(supplier.id, today(), today())

        assert again["error_code"] == "PRECONDITION_FAILED"

    def test_period_excludes_other_days(self, supplier, bar, wine):
        receive(supplier, bar, wine, "10", "50.00")
        last_week = (timezone.now() - timedelta(days=7)).isoformat()
        ConsignmentService.record_sale(wine.id, supplier.id, "1", sold_at=last_week)
        ConsignmentService.record_sale(wine.id, supplier.id, "2")

        generated = ConsignmentService.generate_settlement(supplier.id, today(), today())

        assert generated["sales_count"] == 1
        assert ConsignmentService.get_unsettled_sales(supplier.id)["count"] == 1

    def test_paying_twice_is_rejected(self, supplier, bar, wine):
        receive(supplier, bar, wine, "10", "50.00")
        ConsignmentService.record_sale(wine.id, supplier.id, "1")
        settlement_id = ConsignmentService.generate_settlement(supplier.id, today(), today())["settlement"]["id"]
        ConsignmentService.mark_settlement_paid(settlement_id)

        result = ConsignmentService.mark_settlement_paid(settlement_id)

        assert result["error_code"] == "PRECONDITION_FAILED"

    def test_inverted_period(self, supplier):
        result = ConsignmentService.generate_settlement(supplier.id, "2025-02-01", "2025-01-01")

        assert result["error_code"] == "VALIDATION_ERROR"

    def test_supplier_summary(self, supplier, bar, wine):
        receive(supplier, bar, wine, "10", "50.00")
        ConsignmentService.record_sale(wine.id, supplier.id, "2")
        ConsignmentService.generate_settlement(supplier.id, today(), today())
        ConsignmentService.record_sale(wine.id, supplier.id, "1")

        summary = ConsignmentService.get_supplier_settlement_summary(supplier.id)

        assert summary["pending_settlements"] == 1
        assert dec(summary["total_pending_amount"]) == Decimal("100")
        assert summary["unsettled_sales_count"] == 1
        assert dec(summary["unsettled_sales_amount"]) == Decimal("50")

    def test_consignment_stock_by_supplier(self, supplier, bar, wine):
        receive(supplier, bar, wine, "10", "50.00")

        result = ConsignmentService.get_consignment_stock_by_supplier(supplier.id)

        assert len(result["items"]) == 1
        assert dec(result["items"][0]["total_quantity"]) == Decimal("10")
        assert dec(result["total_value"]) == Decimal("500")


@pytest.mark.django_db
class TestConsignmentIdentifiers:

    def test_sale_with_malformed_supplier(self, supplier, bar, wine):
        receive(supplier, bar, wine, "6", "30.00")

        result = ConsignmentService.record_sale(wine.id, "x", "1")

        assert result["error_code"] == "VALIDATION_ERROR"
        assert result["details"]["field"] == "supplier_id"
        assert on_hand(wine, bar) == Decimal("6")

    def test_sale_with_supplier_as_digit_string(self, supplier, bar, wine):
        receive(supplier, bar, wine, "6", "30.00")

        result = ConsignmentService.record_sale(wine.id, str(supplier.id), "1")

        assert result["success"] is True
        assert on_hand(wine, bar) == Decimal("5")

    def test_return_with_malformed_supplier(self, supplier, bar, wine):
        receive(supplier, bar, wine, "6", "30.00")

        result = ConsignmentService.return_to_supplier(wine.id, bar.id, "1", supplier_id="x")

        assert result["error_code"] == "VALIDATION_ERROR"
        assert result["details"]["field"] == "supplier_id"

    def test_receipt_with_malformed_supplier(self, bar, wine):
        result = ConsignmentService.receive_consignment(
            supplier_id="abc",
            warehouse_id=bar.id,
            items=[{"stock_item_id": wine.id, "quantity": "1", "selling_price": "80", "supplier_cost": "30"}],
        )

        assert result["error_code"] == "VALIDATION_ERROR"
        assert result["details"]["field"] == "supplier_id"

    def test_receipt_line_with_malformed_item(self, supplier, bar):
        result = ConsignmentService.receive_consignment(
            supplier_id=supplier.id,
            warehouse_id=bar.id,
            items=[{"stock_item_id": "abc", "quantity": "1", "selling_price": "80", "supplier_cost": "30"}],
        )

        assert result["error_code"] == "VALIDATION_ERROR"
        assert result["details"]["field"] == "stock_item_id"

    def test_receipt_line_that_is_not_an_object(self, supplier, bar):
        result = ConsignmentService.receive_consignment(supplier_id=supplier.id, warehouse_id=bar.id, items=["wine"])

        assert result["error_code"] == "VALIDATION_ERROR"
        assert result["details"]["field"] == "items"

    def test_receipt_quantity_too_large(self, supplier, bar, wine):
        result = ConsignmentService.receive_consignment(
            supplier_id=supplier.id,
            warehouse_id=bar.id,
            items=[{"stock_item_id": wine.id, "quantity": "1e15", "selling_price": "80", "supplier_cost": "30"}],
        )

        assert result["error_code"] == "VALIDATION_ERROR"
        assert result["details"]["field"] == "quantity"
