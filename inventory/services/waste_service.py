import logging
from typing import Dict, Any
from datetime import date
from django.db import transaction

from inventory.models import WasteRecord, StockMovement
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset, service_operation,
    ValidationError, parse_id, round_cost, line_total, isoformat,
)
from inventory.services.level_service import StockLevelService, StockMovementService
from inventory.services.warehouse_service import WarehouseService
from inventory.services.batch_service import StockBatchService
from inventory.services.stock_service import get_stock_item_or_raise, parse_positive_quantity

logger = logging.getLogger(__name__)


class WasteService(BaseService):
    model = WasteRecord

    @classmethod
    def serialize(cls, record: WasteRecord) -> Dict[str, Any]:
        return {
            "id": record.id,
            "uuid": str(record.uuid),
            "stock_item_id": record.stock_item_id,
            "stock_item_name": record.stock_item.name,
            "warehouse_id": record.warehouse_id,
            "batch_id": record.batch_id,
            "waste_type": record.waste_type,
            "waste_type_display": record.get_waste_type_display(),
            "quantity": str(record.quantity),
            "unit_cost": str(record.unit_cost),
            "total_cost": str(record.total_cost),
            "reason": record.reason,
            "created_by_id": record.created_by_id,
            "created_at": isoformat(record.created_at),
        }

    @classmethod
    @service_operation
    @transaction.atomic
    def record_waste(cls,
                     stock_item_id: int,
                     warehouse_id: int,
                     waste_type: str,
                     quantity: Any,
                     batch_id: int = None,
                     reason: str = "",
                     created_by_id: int = None) -> Dict[str, Any]:
        """
        Write off stock. A batch, when given, must match the item and the
        warehouse, and its unit cost values the loss; otherwise the warehouse
        average cost does.
        """
        valid_types = [c[0] for c in WasteRecord.WasteType.choices]
        if not waste_type:
            raise ValidationError("Waste type is required", "waste_type")
        if waste_type not in valid_types:
            raise ValidationError(
                f"Invalid waste type. Must be one of: {', '.join(valid_types)}", "waste_type"
            )
        quantity = parse_positive_quantity(quantity)

        item = get_stock_item_or_raise(stock_item_id)
        warehouse_id = WarehouseService.get_active_or_raise(
            warehouse_id, "Cannot record waste in an inactive warehouse"
        ).id

        batch = None
        if batch_id:
            batch = StockBatchService.lock_for_item(batch_id, item.id, warehouse_id)

        level, average_cost = StockLevelService.apply_outflow(
            item.id, warehouse_id, quantity,
            empty_message="No stock available in warehouse",
            batch=batch,
        )
        previous_quantity = level.quantity + quantity

        unit_cost = round_cost(batch.unit_cost if batch else average_cost)

        record = cls.model.objects.create(
            stock_item=item,
            warehouse_id=warehouse_id,
            batch=batch,
            waste_type=waste_type,
            quantity=quantity,
            unit_cost=unit_cost,
            total_cost=line_total(quantity, unit_cost),
            reason=reason or "",
            created_by_id=created_by_id,
        )

        movement = StockMovementService.record(
            stock_item_id=item.id,
            movement_type=StockMovement.MovementType.WASTE,
            quantity=quantity,
            unit_cost=unit_cost,
            source_warehouse_id=warehouse_id,
            batch_id=batch.id if batch else None,
            reference_type="WASTE_RECORD",
            reference_id=record.id,
            reason=reason,
            created_by_id=created_by_id,
        )

        return success_response({
            "waste_record": cls.serialize(record),
            "movement_id": movement.id,
            "previous_quantity": str(previous_quantity),
            "new_quantity": str(level.quantity),
        }, f"Recorded {record.get_waste_type_display().lower()} of {quantity} {item.primary_unit.abbreviation} {item.name}")

    @classmethod
    @service_operation
    def get_history(cls,
                    warehouse_id: int = None,
                    stock_item_id: int = None,
                    waste_type: str = None,
                    date_from: date = None,
                    date_to: date = None,
                    page: int = 1,
                    per_page: int = 20) -> Dict[str, Any]:
        queryset = cls.model.objects.select_related("stock_item")
        warehouse_id = parse_id(warehouse_id, "warehouse_id", required=False)
        stock_item_id = parse_id(stock_item_id, "stock_item_id", required=False)

        if warehouse_id:
            queryset = queryset.filter(warehouse_id=warehouse_id)

        if stock_item_id:
            queryset = queryset.filter(stock_item_id=stock_item_id)

        if waste_type:
            queryset = queryset.filter(waste_type=waste_type)

        if date_from:
            queryset = queryset.filter(created_at__date__gte=date_from)

        if date_to:
            queryset = queryset.filter(created_at__date__lte=date_to)

        records, pagination = paginate_queryset(queryset.order_by("-created_at", "-id"), page, per_page)

        return success_response({
            "records": [cls.serialize(r) for r in records],
            "pagination": pagination,
        })
