"""
Stock operations on owned stock: receive, transfer, consume, adjust.

Each public operation runs in one transaction that locks the affected
StockLevel rows, updates them and appends the matching StockMovement rows.
"""
import logging
from typing import Dict, Any
from decimal import Decimal
from datetime import date
from django.db import transaction

from inventory.models import StockItem, StockMovement
from inventory.services.base_service import (
    success_response, service_operation,
    ValidationError, NotFoundError, InsufficientStockError,
    parse_decimal, parse_id, round_quantity, line_total, QUANTITY_PLACES, COST_PLACES, ZERO,
)
from inventory.services.level_service import StockLevelService, StockMovementService
from inventory.services.warehouse_service import WarehouseService
from inventory.services.batch_service import StockBatchService

logger = logging.getLogger(__name__)

MovementType = StockMovement.MovementType


def get_stock_item_or_raise(stock_item_id: int) -> StockItem:
    stock_item_id = parse_id(stock_item_id, "stock_item_id")
    item = StockItem.objects.select_related("primary_unit").filter(id=stock_item_id).first()
    if not item:
        raise NotFoundError("Stock item", stock_item_id)
    return item


def parse_positive_quantity(quantity: Any, field: str = "quantity") -> Decimal:
    quantity = round_quantity(parse_decimal(quantity, field, places=QUANTITY_PLACES))
    if quantity <= 0:
        raise ValidationError("Quantity must be greater than zero", field)
    return quantity


class StockOperationService:

    @classmethod
    @service_operation
    @transaction.atomic
    def receive_stock(cls,
                      stock_item_id: int,
                      warehouse_id: int,
                      quantity: Any,
                      unit_cost: Any,
                      batch_number: str = None,
                      expiration_date: date = None,
                      reference_type: str = "",
                      reference_id: Any = "",
                      notes: str = "",
                      created_by_id: int = None) -> Dict[str, Any]:
        quantity = parse_positive_quantity(quantity)
        unit_cost = parse_decimal(unit_cost, "unit_cost", places=COST_PLACES)
        if unit_cost < 0:
            raise ValidationError("Unit cost cannot be negative", "unit_cost")

        item = get_stock_item_or_raise(stock_item_id)
        warehouse_id = WarehouseService.get_active_or_raise(
            warehouse_id, "Cannot receive stock into an inactive warehouse"
        ).id

        batch = None
        if batch_number:
            batch = StockBatchService.create_for_receipt(
                item.id, warehouse_id, batch_number, quantity, unit_cost, expiration_date
            )

        level = StockLevelService.apply_receipt(item.id, warehouse_id, quantity, unit_cost)
        movement = StockMovementService.record(
            stock_item_id=item.id,
            movement_type=MovementType.RECEIPT,
            quantity=quantity,
            unit_cost=unit_cost,
            destination_warehouse_id=warehouse_id,
            batch_id=batch.id if batch else None,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            created_by_id=created_by_id,
        )

        return success_response({
            "movement_id": movement.id,
            "stock_level_id": level.id,
            "batch_id": batch.id if batch else None,
            "new_quantity": str(level.quantity),
            "new_average_cost": str(level.average_cost),
        }, f"Received {quantity} {item.primary_unit.abbreviation} of {item.name}")

    @classmethod
    @service_operation
    @transaction.atomic
    def transfer_stock(cls,
                       stock_item_id: int,
                       source_warehouse_id: int,
                       destination_warehouse_id: int,
                       quantity: Any,
                       reference_type: str = "",
                       reference_id: Any = "",
                       notes: str = "",
                       created_by_id: int = None) -> Dict[str, Any]:
        quantity = parse_positive_quantity(quantity)
        source_warehouse_id = parse_id(source_warehouse_id, "source_warehouse_id")
        destination_warehouse_id = parse_id(destination_warehouse_id, "destination_warehouse_id")
        item = get_stock_item_or_raise(stock_item_id)

        result = cls.move_stock(
            item, source_warehouse_id, destination_warehouse_id, quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            created_by_id=created_by_id,
        )
        return success_response(result, f"Transferred {quantity} {item.primary_unit.abbreviation} of {item.name}")

    @classmethod
    def move_stock(cls,
                   item: StockItem,
                   source_warehouse_id: int,
                   destination_warehouse_id: int,
                   quantity: Decimal,
                   reference_type: str = "",
                   reference_id: Any = "",
                   notes: str = "",
                   created_by_id: int = None) -> Dict[str, Any]:
        """
        Move ``quantity`` of an item between warehouses at the source average
        cost. Raises on failure; the caller owns the transaction.
        """
        if source_warehouse_id == destination_warehouse_id:
            raise ValidationError(
                "Source and destination warehouses must be different", "destination_warehouse_id"
            )
        WarehouseService.get_active_or_raise(
            source_warehouse_id, "Cannot transfer from an inactive warehouse"
        )
        WarehouseService.get_active_or_raise(
            destination_warehouse_id, "Cannot transfer to an inactive warehouse"
        )

        # Lock both rows in id order so opposite transfers cannot deadlock
        for warehouse_id in sorted([source_warehouse_id, destination_warehouse_id]):
            StockLevelService.lock(item.id, warehouse_id, create=warehouse_id == destination_warehouse_id)

        source_level, transfer_cost = StockLevelService.apply_outflow(
            item.id, source_warehouse_id, quantity,
            empty_message="No stock available in source warehouse",
            destination_warehouse_id=destination_warehouse_id,
        )
        destination_level = StockLevelService.apply_receipt(
            item.id, destination_warehouse_id, quantity, transfer_cost
        )

        common = dict(
            stock_item_id=item.id,
            quantity=quantity,
            unit_cost=transfer_cost,
            source_warehouse_id=source_warehouse_id,
            destination_warehouse_id=destination_warehouse_id,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            created_by_id=created_by_id,
        )
        out_movement = StockMovementService.record(movement_type=MovementType.TRANSFER_OUT, **common)
        in_movement = StockMovementService.record(movement_type=MovementType.TRANSFER_IN, **common)

        return {
            "transfer_out_movement_id": out_movement.id,
            "transfer_in_movement_id": in_movement.id,
            "source_new_quantity": str(source_level.quantity),
            "destination_new_quantity": str(destination_level.quantity),
            "destination_new_average_cost": str(destination_level.average_cost),
            "transfer_value": str(line_total(quantity, transfer_cost)),
        }

    @classmethod
    @service_operation
    @transaction.atomic
    def consume_stock(cls,
                      stock_item_id: int,
                      warehouse_id: int,
                      quantity: Any,
                      batch_id: int = None,
                      reference_type: str = "",
                      reference_id: Any = "",
                      notes: str = "",
                      created_by_id: int = None) -> Dict[str, Any]:
        quantity = parse_positive_quantity(quantity)
        item = get_stock_item_or_raise(stock_item_id)
        warehouse_id = WarehouseService.get_active_or_raise(
            warehouse_id, "Cannot consume stock from an inactive warehouse"
        ).id

        batch = None
        if batch_id:
            batch = StockBatchService.lock_for_item(batch_id, item.id, warehouse_id)

        level, average_cost = StockLevelService.apply_outflow(
            item.id, warehouse_id, quantity,
            empty_message="No stock available in warehouse",
            batch=batch,
        )

        movement = StockMovementService.record(
            stock_item_id=item.id,
            movement_type=MovementType.CONSUMPTION,
            quantity=quantity,
            unit_cost=average_cost,
            source_warehouse_id=warehouse_id,
            batch_id=batch.id if batch else None,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            created_by_id=created_by_id,
        )

        return success_response({
            "movement_id": movement.id,
            "new_quantity": str(level.quantity),
            "unit_cost": str(average_cost),
            "total_cost": str(movement.total_cost),
        }, f"Consumed {quantity} {item.primary_unit.abbreviation} of {item.name}")

    @classmethod
    @service_operation
    @transaction.atomic
    def adjust_stock(cls,
                     stock_item_id: int,
                     warehouse_id: int,
                     quantity: Any,
                     reason: str,
                     batch_id: int = None,
                     reference_type: str = "",
                     reference_id: Any = "",
                     notes: str = "",
                     created_by_id: int = None) -> Dict[str, Any]:
        adjustment = round_quantity(parse_decimal(quantity, "quantity", places=QUANTITY_PLACES))
        item = get_stock_item_or_raise(stock_item_id)

        result = cls.apply_adjustment(
            item, warehouse_id, adjustment, reason,
            batch_id=batch_id,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            created_by_id=created_by_id,
        )
        return success_response(result, f"Stock adjusted: {adjustment:+} {item.primary_unit.abbreviation}")

    @classmethod
    def apply_adjustment(cls,
                         item: StockItem,
                         warehouse_id: int,
                         adjustment: Decimal,
                         reason: str,
                         batch_id: int = None,
                         reference_type: str = "",
                         reference_id: Any = "",
                         notes: str = "",
                         created_by_id: int = None) -> Dict[str, Any]:
        """
        Signed correction of the on-hand quantity. Positive adjustments enter
        at the current average cost, so the average is unchanged either way.
        A given batch moves by the same amount.
        """
        if adjustment == 0:
            raise ValidationError("Adjustment quantity cannot be zero", "quantity")
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError("Reason is required for stock adjustments", "reason")

        warehouse_id = WarehouseService.get_active_or_raise(
            warehouse_id, "Cannot adjust stock in an inactive warehouse"
        ).id

        batch = None
        if batch_id:
            batch = StockBatchService.lock_for_item(batch_id, item.id, warehouse_id)

        level = StockLevelService.lock(item.id, warehouse_id)
        previous_quantity = level.quantity
        average_cost = level.average_cost

        if adjustment < 0:
            if previous_quantity + adjustment < 0:
                raise InsufficientStockError(
                    item.name, -adjustment, previous_quantity,
                    f"Adjustment would result in negative stock. "
                    f"Current: {previous_quantity}, Adjustment: {adjustment}",
                )
            level, _ = StockLevelService.apply_outflow(item.id, warehouse_id, -adjustment, batch=batch)
        else:
            level = StockLevelService.apply_receipt(item.id, warehouse_id, adjustment, average_cost)
            if batch:
                StockBatchService.add(batch, adjustment)

        movement = StockMovementService.record(
            stock_item_id=item.id,
            movement_type=MovementType.ADJUSTMENT,
            quantity=abs(adjustment),
            unit_cost=average_cost,
            source_warehouse_id=warehouse_id if adjustment < 0 else None,
            destination_warehouse_id=warehouse_id if adjustment > 0 else None,
            batch_id=batch.id if batch else None,
            reference_type=reference_type,
            reference_id=reference_id,
            reason=reason.strip(),
            notes=notes,
            created_by_id=created_by_id,
        )

        return {
            "movement_id": movement.id,
            "previous_quantity": str(previous_quantity),
            "new_quantity": str(level.quantity),
            "variance": str(adjustment),
        }

    @classmethod
    def get_weighted_average_cost(cls, stock_item_id: int, warehouse_id: int) -> Decimal:
        return StockLevelService.get_average_cost(stock_item_id, warehouse_id) or ZERO
