"""
Stock levels and the movement ledger: receipts, transfers, consumption and
adjustments, and the replay check that ties the two together.
"""
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone
from hypothesis import HealthCheck, given, settings as hyp_settings, strategies as st

from inventory.models import ImmutableRecordError, StockBatch, StockItem, StockLevel, StockMovement
from inventory.services import StockLevelService, StockMovementService, StockOperationService
from inventory.tests.helpers import dec

MovementType = StockMovement.MovementType


def level_of(item, warehouse):
    return StockLevel.objects.get(stock_item=item, warehouse=warehouse)


def assert_replay_matches(item, warehouse):
    result = StockMovementService.verify_level(item.id, warehouse.id)
    assert result["is_consistent"], result


@pytest.mark.django_db
class TestReceiveStock:

    def test_first_receipt_sets_quantity_and_cost(self, flour, stockroom):
        result = StockOperationService.receive_stock(flour.id, stockroom.id, "100", "2.00")

        assert result["success"] is True
        assert dec(result["new_quantity"]) == Decimal("100")
        assert dec(result["new_average_cost"]) == Decimal("2")

        movement = StockMovement.objects.get(id=result["movement_id"])
        assert movement.movement_type == MovementType.RECEIPT
        assert movement.destination_warehouse_id == stockroom.id
        assert movement.source_warehouse_id is None
        assert movement.total_cost == Decimal("200.00")

    def test_second_receipt_moves_weighted_average(self, flour, stockroom):
        StockOperationService.receive_stock(flour.id, stockroom.id, "100", "2.00")
        result = StockOperationService.receive_stock(flour.id, stockroom.id, "50", "3.00")

        assert dec(result["new_quantity"]) == Decimal("150")
        assert dec(result["new_average_cost"]) == Decimal("2.3333")
        assert_replay_matches(flour, stockroom)

    def test_zero_quantity_is_rejected(self, flour, stockroom):
        result = StockOperationService.receive_stock(flour.id, stockroom.id, "0", "2.00")

        assert result["success"] is False
        assert result["error_code"] == "VALIDATION_ERROR"
        assert not StockMovement.objects.exists()

    def test_negative_cost_is_rejected(self, flour, stockroom):
        result = StockOperationService.receive_stock(flour.id, stockroom.id, "5", "-1")

        assert result["error_code"] == "VALIDATION_ERROR"
        assert result["details"]["field"] == "unit_cost"

    def test_inactive_warehouse_is_rejected(self, flour, stockroom):
        stockroom.is_active = False
        stockroom.save()

        result = StockOperationService.receive_stock(flour.id, stockroom.id, "5", "1")

        assert result["error_code"] == "PRECONDITION_FAILED"

    def test_unknown_item(self, stockroom):
        result = StockOperationService.receive_stock(9999, stockroom.id, "5", "1")

        assert result["error_code"] == "NOT_FOUND"

    def test_batch_is_created_with_expiration(self, flour, stockroom):
        result = StockOperationService.receive_stock(
            flour.id, stockroom.id, "20", "1.50", batch_number="LOT-1", expiration_date="2030-01-31"
        )

        batch = StockBatch.objects.get(id=result["batch_id"])
        assert batch.quantity == Decimal("20")
        assert batch.expiration_date.isoformat() == "2030-01-31"

    def test_duplicate_batch_number_rolls_back(self, flour, stockroom):
        StockOperationService.receive_stock(flour.id, stockroom.id, "20", "1.50", batch_number="LOT-1")
        result = StockOperationService.receive_stock(flour.id, stockroom.id, "5", "1.50", batch_number="LOT-1")

        assert result["error_code"] == "VALIDATION_ERROR"
        assert level_of(flour, stockroom).quantity == Decimal("20")
        assert StockMovement.objects.count() == 1


@pytest.mark.django_db
class TestTransferStock:

    def test_transfer_carries_source_cost(self, flour, stockroom, kitchen):
        StockOperationService.receive_stock(flour.id, stockroom.id, "100", "2.00")
        StockOperationService.receive_stock(flour.id, kitchen.id, "10", "4.00")

        result = StockOperationService.transfer_stock(flour.id, stockroom.id, kitchen.id, "10")

        assert result["success"] is True
        assert dec(result["source_new_quantity"]) == Decimal("90")
        assert dec(result["destination_new_quantity"]) == Decimal("20")
        # (10 x 4 + 10 x 2) / 20
        assert dec(result["destination_new_average_cost"]) == Decimal("3")
        assert dec(result["transfer_value"]) == Decimal("20")

        assert level_of(flour, stockroom).average_cost == Decimal("2")
        assert_replay_matches(flour, stockroom)
        assert_replay_matches(flour, kitchen)

    def test_transfer_posts_out_and_in_movements(self, flour, stockroom, kitchen):
        StockOperationService.receive_stock(flour.id, stockroom.id, "10", "2.00")
        result = StockOperationService.transfer_stock(flour.id, stockroom.id, kitchen.id, "4")

        out_movement = StockMovement.objects.get(id=result["transfer_out_movement_id"])
        in_movement = StockMovement.objects.get(id=result["transfer_in_movement_id"])
        assert out_movement.movement_type == MovementType.TRANSFER_OUT
        assert in_movement.movement_type == MovementType.TRANSFER_IN
        assert out_movement.quantity == in_movement.quantity == Decimal("4")

    def test_same_warehouse_is_rejected(self, flour, stockroom):
        result = StockOperationService.transfer_stock(flour.id, stockroom.id, stockroom.id, "1")

        assert result["error_code"] == "VALIDATION_ERROR"

    def test_insufficient_source_stock_changes_nothing(self, flour, stockroom, kitchen):
        StockOperationService.receive_stock(flour.id, stockroom.id, "5", "2.00")

        result = StockOperationService.transfer_stock(flour.id, stockroom.id, kitchen.id, "6")

        assert result["error_code"] == "INSUFFICIENT_STOCK"
        assert level_of(flour, stockroom).quantity == Decimal("5")
        assert StockLevelService.get_quantity(flour.id, kitchen.id) == Decimal("0")
        assert StockMovement.objects.count() == 1

    def test_empty_source(self, flour, stockroom, kitchen):
        result = StockOperationService.transfer_stock(flour.id, stockroom.id, kitchen.id, "1")

        assert result["error_code"] == "INSUFFICIENT_STOCK"


@pytest.mark.django_db
class TestConsumeStock:

    def test_consumption_values_at_average_cost(self, flour, kitchen):
        StockOperationService.receive_stock(flour.id, kitchen.id, "10", "2.00")
        StockOperationService.receive_stock(flour.id, kitchen.id, "10", "4.00")

        result = StockOperationService.consume_stock(flour.id, kitchen.id, "5")

        assert dec(result["new_quantity"]) == Decimal("15")
        assert dec(result["unit_cost"]) == Decimal("3")
        assert dec(result["total_cost"]) == Decimal("15")
        # Outflows never move the average
        assert level_of(flour, kitchen).average_cost == Decimal("3")

    def test_consume_entire_stock(self, flour, kitchen):
        StockOperationService.receive_stock(flour.id, kitchen.id, "3", "2.00")

        result = StockOperationService.consume_stock(flour.id, kitchen.id, "3")

        assert dec(result["new_quantity"]) == Decimal("0")
        assert_replay_matches(flour, kitchen)

    def test_overdraw_is_rejected(self, flour, kitchen):
        StockOperationService.receive_stock(flour.id, kitchen.id, "3", "2.00")

        result = StockOperationService.consume_stock(flour.id, kitchen.id, "3.001")

        assert result["error_code"] == "INSUFFICIENT_STOCK"
        assert dec(result["details"]["available"]) == Decimal("3")
        assert level_of(flour, kitchen).quantity == Decimal("3")

    def test_batch_deduction(self, flour, kitchen):
        received = StockOperationService.receive_stock(
            flour.id, kitchen.id, "10", "2.00", batch_number="LOT-9"
        )

        StockOperationService.consume_stock(flour.id, kitchen.id, "4", batch_id=received["batch_id"])

        assert StockBatch.objects.get(id=received["batch_id"]).quantity == Decimal("6")

    def test_batch_from_other_warehouse_is_rejected(self, flour, kitchen, stockroom):
        received = StockOperationService.receive_stock(
            flour.id, stockroom.id, "10", "2.00", batch_number="LOT-9"
        )
        StockOperationService.receive_stock(flour.id, kitchen.id, "10", "2.00")

        result = StockOperationService.consume_stock(flour.id, kitchen.id, "1", batch_id=received["batch_id"])

        assert result["error_code"] == "PRECONDITION_FAILED"
        assert level_of(flour, kitchen).quantity == Decimal("10")


@pytest.mark.django_db
class TestAdjustStock:

    def test_positive_adjustment_keeps_average(self, flour, stockroom):
        StockOperationService.receive_stock(flour.id, stockroom.id, "10", "2.50")

        result = StockOperationService.adjust_stock(flour.id, stockroom.id, "2", "Count correction")

        assert dec(result["previous_quantity"]) == Decimal("10")
        assert dec(result["new_quantity"]) == Decimal("12")
        assert level_of(flour, stockroom).average_cost == Decimal("2.5")

        movement = StockMovement.objects.get(id=result["movement_id"])
        assert movement.destination_warehouse_id == stockroom.id
        assert movement.source_warehouse_id is None
        assert_replay_matches(flour, stockroom)

    def test_negative_adjustment_posts_source_side(self, flour, stockroom):
        StockOperationService.receive_stock(flour.id, stockroom.id, "10", "2.50")

        result = StockOperationService.adjust_stock(flour.id, stockroom.id, "-4", "Spillage found at count")

        assert dec(result["new_quantity"]) == Decimal("6")
        assert dec(result["variance"]) == Decimal("-4")
        movement = StockMovement.objects.get(id=result["movement_id"])
        assert movement.quantity == Decimal("4")
        assert movement.source_warehouse_id == stockroom.id
        assert_replay_matches(flour, stockroom)

    def test_adjustment_below_zero_is_rejected(self, flour, stockroom):
        StockOperationService.receive_stock(flour.id, stockroom.id, "5", "2.00")

        result = StockOperationService.adjust_stock(flour.id, stockroom.id, "-6", "Recount")

        assert result["error_code"] == "INSUFFICIENT_STOCK"
        assert "negative stock" in result["message"]
        assert level_of(flour, stockroom).quantity == Decimal("5")

    def test_reason_is_required(self, flour, stockroom):
        result = StockOperationService.adjust_stock(flour.id, stockroom.id, "1", "  ")

        assert result["error_code"] == "VALIDATION_ERROR"
        assert result["details"]["field"] == "reason"

    def test_zero_adjustment_is_rejected(self, flour, stockroom):
        result = StockOperationService.adjust_stock(flour.id, stockroom.id, "0", "Nothing")

        assert result["error_code"] == "VALIDATION_ERROR"


@pytest.mark.django_db
class TestLedger:

    def test_replay_after_mixed_operations(self, flour, stockroom, kitchen):
        StockOperationService.receive_stock(flour.id, stockroom.id, "100", "2.00")
        StockOperationService.transfer_stock(flour.id, stockroom.id, kitchen.id, "30")
        StockOperationService.consume_stock(flour.id, kitchen.id, "12.5")
        StockOperationService.adjust_stock(flour.id, kitchen.id, "-0.5", "Recount")
        StockOperationService.adjust_stock(flour.id, stockroom.id, "1", "Recount")

        assert StockMovementService.replay_quantity(flour.id, stockroom.id) == Decimal("71")
        assert StockMovementService.replay_quantity(flour.id, kitchen.id) == Decimal("17")
        assert_replay_matches(flour, stockroom)
        assert_replay_matches(flour, kitchen)

    def test_tampered_level_is_reported(self, flour, stockroom):
        StockOperationService.receive_stock(flour.id, stockroom.id, "10", "2.00")
        StockLevel.objects.filter(stock_item=flour, warehouse=stockroom).update(quantity=Decimal("11"))

        result = StockMovementService.verify_level(flour.id, stockroom.id)

        assert result["is_consistent"] is False
        assert dec(result["replayed_quantity"]) == Decimal("10")

    def test_movements_are_append_only(self, flour, stockroom):
        result = StockOperationService.receive_stock(flour.id, stockroom.id, "10", "2.00")
        movement = StockMovement.objects.get(id=result["movement_id"])

        movement.notes = "edited"
        with pytest.raises(ImmutableRecordError):
            movement.save()
        with pytest.raises(ImmutableRecordError):
            movement.delete()

    def test_movement_history_filters(self, flour, butter, stockroom):
        StockOperationService.receive_stock(flour.id, stockroom.id, "10", "2.00")
        StockOperationService.receive_stock(butter.id, stockroom.id, "5", "6.00")
        StockOperationService.consume_stock(flour.id, stockroom.id, "1")

        result = StockMovementService.list(stock_item_id=flour.id)

        assert result["pagination"]["total_items"] == 2
        assert {m["movement_type"] for m in result["movements"]} == {"RECEIPT", "CONSUMPTION"}

    def test_unknown_movement_type_filter(self, stockroom):
        result = StockMovementService.list(movement_type="TELEPORT")

        assert result["error_code"] == "VALIDATION_ERROR"


def days_from_today(days):
    return (timezone.localdate() + timedelta(days=days)).isoformat()


def batch_quantity(item, warehouse, batch_number):
    batch = StockBatch.objects.filter(stock_item=item, warehouse=warehouse, batch_number=batch_number).first()
    return batch.quantity if batch else None


@pytest.mark.django_db
class TestBatchDraws:
    """Outflows without a batch draw lots first-expiry-first-out."""

    def test_consumption_takes_earliest_expiry_first(self, flour, kitchen):
        StockOperationService.receive_stock(
            flour.id, kitchen.id, "10", "2.00", batch_number="LATE", expiration_date=days_from_today(90)
        )
        StockOperationService.receive_stock(
            flour.id, kitchen.id, "10", "2.00", batch_number="EARLY", expiration_date=days_from_today(10)
        )

        result = StockOperationService.consume_stock(flour.id, kitchen.id, "12")

        assert result["success"] is True
        assert batch_quantity(flour, kitchen, "EARLY") == Decimal("0")
        assert batch_quantity(flour, kitchen, "LATE") == Decimal("8")

    def test_expired_lot_is_drawn_last(self, flour, kitchen):
        StockOperationService.receive_stock(
            flour.id, kitchen.id, "5", "2.00", batch_number="OLD", expiration_date=days_from_today(-1)
        )
        StockOperationService.receive_stock(
            flour.id, kitchen.id, "5", "2.00", batch_number="FRESH", expiration_date=days_from_today(30)
        )
        StockOperationService.receive_stock(flour.id, kitchen.id, "5", "2.00")

        StockOperationService.consume_stock(flour.id, kitchen.id, "8")

        assert batch_quantity(flour, kitchen, "FRESH") == Decimal("0")
        assert batch_quantity(flour, kitchen, "OLD") == Decimal("5")

        StockOperationService.consume_stock(flour.id, kitchen.id, "4")

        assert batch_quantity(flour, kitchen, "OLD") == Decimal("3")
        result = StockMovementService.verify_level(flour.id, kitchen.id)
        assert dec(result["batched_quantity"]) == dec(result["level_quantity"]) == Decimal("3")

    def test_transfer_carries_the_lot_to_the_destination(self, flour, stockroom, kitchen):
        expiry = days_from_today(20)
        StockOperationService.receive_stock(
            flour.id, stockroom.id, "10", "2.00", batch_number="LOT-1", expiration_date=expiry
        )

        StockOperationService.transfer_stock(flour.id, stockroom.id, kitchen.id, "4")

        assert batch_quantity(flour, stockroom, "LOT-1") == Decimal("6")
        moved = StockBatch.objects.get(stock_item=flour, warehouse=kitchen, batch_number="LOT-1")
        assert moved.quantity == Decimal("4")
        assert moved.expiration_date.isoformat() == expiry
        for warehouse in (stockroom, kitchen):
            result = StockMovementService.verify_level(flour.id, warehouse.id)
            assert result["is_consistent"] and result["batches_within_level"], result

    def test_transfer_back_merges_into_the_same_lot(self, flour, stockroom, kitchen):
        StockOperationService.receive_stock(flour.id, stockroom.id, "10", "2.00", batch_number="LOT-1")
        StockOperationService.transfer_stock(flour.id, stockroom.id, kitchen.id, "4")

        StockOperationService.transfer_stock(flour.id, kitchen.id, stockroom.id, "4")

        assert batch_quantity(flour, stockroom, "LOT-1") == Decimal("10")
        assert batch_quantity(flour, kitchen, "LOT-1") == Decimal("0")

    def test_unbatched_stock_is_left_for_after_usable_lots(self, flour, kitchen):
        StockOperationService.receive_stock(flour.id, kitchen.id, "6", "2.00")
        StockOperationService.receive_stock(flour.id, kitchen.id, "4", "2.00", batch_number="LOT-2")

        StockOperationService.consume_stock(flour.id, kitchen.id, "5")

        assert batch_quantity(flour, kitchen, "LOT-2") == Decimal("0")
        assert level_of(flour, kitchen).quantity == Decimal("5")


@pytest.mark.django_db
class TestAdjustStockBatches:

    def test_negative_adjustment_reduces_the_batch(self, flour, stockroom):
        received = StockOperationService.receive_stock(
            flour.id, stockroom.id, "10", "2.00", batch_number="LOT-9"
        )

        result = StockOperationService.adjust_stock(
            flour.id, stockroom.id, "-3", "Damaged sack", batch_id=received["batch_id"]
        )

        assert result["success"] is True
        assert StockBatch.objects.get(id=received["batch_id"]).quantity == Decimal("7")
        assert StockMovement.objects.get(id=result["movement_id"]).batch_id == received["batch_id"]

    def test_positive_adjustment_adds_to_the_batch(self, flour, stockroom):
        received = StockOperationService.receive_stock(
            flour.id, stockroom.id, "10", "2.00", batch_number="LOT-9"
        )

        StockOperationService.adjust_stock(flour.id, stockroom.id, "2", "Found", batch_id=received["batch_id"])

        assert StockBatch.objects.get(id=received["batch_id"]).quantity == Decimal("12")
        assert level_of(flour, stockroom).quantity == Decimal("12")

    def test_batch_from_other_warehouse_is_rejected(self, flour, stockroom, kitchen):
        received = StockOperationService.receive_stock(
            flour.id, stockroom.id, "10", "2.00", batch_number="LOT-9"
        )
        StockOperationService.receive_stock(flour.id, kitchen.id, "10", "2.00")

        result = StockOperationService.adjust_stock(
            flour.id, kitchen.id, "-1", "Recount", batch_id=received["batch_id"]
        )

        assert result["error_code"] == "PRECONDITION_FAILED"
        assert level_of(flour, kitchen).quantity == Decimal("10")

    def test_batch_of_other_item_is_rejected(self, flour, butter, stockroom):
        received = StockOperationService.receive_stock(
            butter.id, stockroom.id, "10", "6.00", batch_number="LOT-B"
        )
        StockOperationService.receive_stock(flour.id, stockroom.id, "10", "2.00")

        result = StockOperationService.adjust_stock(
            flour.id, stockroom.id, "1", "Recount", batch_id=received["batch_id"]
        )

        assert result["error_code"] == "PRECONDITION_FAILED"
        assert result["details"]["rule"] == "batch_item"

    def test_adjustment_beyond_batch_is_rejected(self, flour, stockroom):
        StockOperationService.receive_stock(flour.id, stockroom.id, "10", "2.00")
        received = StockOperationService.receive_stock(
            flour.id, stockroom.id, "2", "2.00", batch_number="LOT-9"
        )

        result = StockOperationService.adjust_stock(
            flour.id, stockroom.id, "-3", "Recount", batch_id=received["batch_id"]
        )

        assert result["error_code"] == "INSUFFICIENT_STOCK"
        assert level_of(flour, stockroom).quantity == Decimal("12")

    def test_malformed_batch_id(self, flour, stockroom):
        StockOperationService.receive_stock(flour.id, stockroom.id, "10", "2.00")

        result = StockOperationService.adjust_stock(flour.id, stockroom.id, "-1", "Recount", batch_id="lot")

        assert result["error_code"] == "VALIDATION_ERROR"
        assert result["details"]["field"] == "batch_id"


@pytest.mark.django_db
class TestIdentifiers:
    """Ids arrive from JSON and query strings as ints or digit strings."""

    def test_non_numeric_item_id(self, stockroom):
        result = StockOperationService.receive_stock("abc", stockroom.id, "5", "1")

        assert result["error_code"] == "VALIDATION_ERROR"
        assert result["details"]["field"] == "stock_item_id"

    def test_non_numeric_warehouse_id(self, flour):
        result = StockOperationService.consume_stock(flour.id, "kitchen", "1")

        assert result["error_code"] == "VALIDATION_ERROR"
        assert result["details"]["field"] == "warehouse_id"

    def test_boolean_id_is_rejected(self, flour, stockroom):
        result = StockOperationService.receive_stock(True, stockroom.id, "5", "1")

        assert result["error_code"] == "VALIDATION_ERROR"

    def test_digit_strings_are_accepted(self, flour, stockroom):
        result = StockOperationService.receive_stock(str(flour.id), str(stockroom.id), "5", "1")

        assert result["success"] is True
        assert level_of(flour, stockroom).quantity == Decimal("5")

    def test_same_warehouse_as_string_and_int(self, flour, stockroom):
        StockOperationService.receive_stock(flour.id, stockroom.id, "5", "1")

        result = StockOperationService.transfer_stock(flour.id, str(stockroom.id), stockroom.id, "1")

        assert result["error_code"] == "VALIDATION_ERROR"
        assert result["details"]["field"] == "destination_warehouse_id"
        assert level_of(flour, stockroom).quantity == Decimal("5")

    def test_transfer_with_mixed_id_types(self, flour, stockroom, kitchen):
        StockOperationService.receive_stock(flour.id, stockroom.id, "5", "1")

        result = StockOperationService.transfer_stock(str(flour.id), str(stockroom.id), kitchen.id, "2")

        assert result["success"] is True
        assert level_of(flour, kitchen).quantity == Decimal("2")

    def test_verify_level_with_bad_id(self, flour):
        result = StockMovementService.verify_level(flour.id, "x")

        assert result["error_code"] == "VALIDATION_ERROR"
        assert result["details"]["field"] == "warehouse_id"


@pytest.mark.django_db
class TestColumnLimits:

    def test_quantity_too_large(self, flour, stockroom):
        result = StockOperationService.receive_stock(flour.id, stockroom.id, "1e15", "1")

        assert result["error_code"] == "VALIDATION_ERROR"
        assert result["details"]["field"] == "quantity"
        assert not StockMovement.objects.exists()

    def test_unit_cost_too_large(self, flour, stockroom):
        result = StockOperationService.receive_stock(flour.id, stockroom.id, "1", "1e12")

        assert result["error_code"] == "VALIDATION_ERROR"
        assert result["details"]["field"] == "unit_cost"

    def test_receipt_pushing_level_past_column(self, flour, stockroom):
        first = StockOperationService.receive_stock(flour.id, stockroom.id, "999999999999", "0")
        assert first["success"] is True

        result = StockOperationService.receive_stock(flour.id, stockroom.id, "1", "0")

        assert result["error_code"] == "VALIDATION_ERROR"
        assert level_of(flour, stockroom).quantity == Decimal("999999999999")

    def test_adjustment_too_large(self, flour, stockroom):
        result = StockOperationService.adjust_stock(flour.id, stockroom.id, "-1e15", "Recount")

        assert result["error_code"] == "VALIDATION_ERROR"


steps = st.lists(
    st.tuples(
        st.sampled_from(["receive", "consume"]),
        st.decimals(min_value=Decimal("0.001"), max_value=Decimal("1000"), places=3),
        st.decimals(min_value=Decimal("0"), max_value=Decimal("100"), places=4),
    ),
    min_size=1,
    max_size=12,
)


@pytest.mark.django_db
class TestLedgerSequences:

    @given(sequence=steps)
    @hyp_settings(max_examples=30, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_level_follows_any_sequence(self, dry_goods, kg, kitchen, sequence):
        item = StockItem.objects.create(
            name="Semolina", sku=f"DRY-{uuid.uuid4().hex[:12]}", category=dry_goods, primary_unit=kg
        )
        expected = Decimal("0")
        received_quantity = Decimal("0")
        received_value = Decimal("0")
        consumed = False

        for operation, quantity, unit_cost in sequence:
            if operation == "receive":
                result = StockOperationService.receive_stock(item.id, kitchen.id, quantity, unit_cost)
                assert result["success"], result
                expected += quantity
                received_quantity += quantity
                received_value += quantity * unit_cost
            else:
                result = StockOperationService.consume_stock(item.id, kitchen.id, quantity)
                if quantity > expected:
                    assert result["error_code"] == "INSUFFICIENT_STOCK"
                else:
                    assert result["success"], result
                    expected -= quantity
                    consumed = True

            level = StockLevel.objects.filter(stock_item=item, warehouse=kitchen).first()
            on_hand = level.quantity if level else Decimal("0")
            assert on_hand >= 0
            assert on_hand == expected

        verified = StockMovementService.verify_level(item.id, kitchen.id)
        assert verified["is_consistent"], verified

        if received_quantity and not consumed:
            level = StockLevel.objects.get(stock_item=item, warehouse=kitchen)
            exact = received_value / received_quantity
            assert abs(level.average_cost - exact) <= Decimal("0.0001") * len(sequence)
