import logging
from typing import Dict, Any, Optional, Tuple
from decimal import Decimal
from datetime import date
from django.db.models import Q, Sum, Count

from inventory.models import StockLevel, StockMovement, StockItem, StockBatch
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset, service_operation,
    ValidationError, NotFoundError, InsufficientStockError,
    to_decimal, round_quantity, round_cost, round_money, line_total, weighted_average,
    parse_id, check_limit, QUANTITY_PLACES, MONEY_PLACES, isoformat, ZERO,
)
from inventory.services.batch_service import StockBatchService

logger = logging.getLogger(__name__)

INBOUND_TYPES = (
    StockMovement.MovementType.RECEIPT,
    StockMovement.MovementType.TRANSFER_IN,
)
OUTBOUND_TYPES = (
    StockMovement.MovementType.CONSUMPTION,
    StockMovement.MovementType.TRANSFER_OUT,
    StockMovement.MovementType.RETURN,
    StockMovement.MovementType.WASTE,
)


class StockLevelService(BaseService):
    model = StockLevel

    @classmethod
    def serialize(cls, level: StockLevel) -> Dict[str, Any]:
        return {
            "id": level.id,
            "uuid": str(level.uuid),
            "stock_item_id": level.stock_item_id,
            "stock_item": {
                "id": level.stock_item.id,
                "name": level.stock_item.name,
                "sku": level.stock_item.sku,
                "unit": level.stock_item.primary_unit.abbreviation,
            },
            "warehouse_id": level.warehouse_id,
            "warehouse": {
                "id": level.warehouse.id,
                "name": level.warehouse.name,
                "type": level.warehouse.type,
            },
            "quantity": str(level.quantity),
            "average_cost": str(level.average_cost),
            "total_value": str(line_total(level.quantity, level.average_cost)),
            "updated_at": isoformat(level.updated_at),
        }

    @classmethod
    def find(cls, stock_item_id: int, warehouse_id: int) -> Optional[StockLevel]:
        return cls.model.objects.filter(
            stock_item_id=stock_item_id, warehouse_id=warehouse_id
        ).first()

    @classmethod
    def get_quantity(cls, stock_item_id: int, warehouse_id: int) -> Decimal:
        level = cls.find(stock_item_id, warehouse_id)
        return level.quantity if level else ZERO

    @classmethod
    def get_average_cost(cls, stock_item_id: int, warehouse_id: int) -> Decimal:
        level = cls.find(stock_item_id, warehouse_id)
        return level.average_cost if level else ZERO

    @classmethod
    def lock(cls, stock_item_id: int, warehouse_id: int, create: bool = True) -> Optional[StockLevel]:
        """
        Return the row locked for update. Must run inside transaction.atomic.
        Missing rows are created at (0, 0) when ``create`` is set.
        """
        if create:
            cls.model.objects.get_or_create(
                stock_item_id=stock_item_id,
                warehouse_id=warehouse_id,
                defaults={"quantity": ZERO, "average_cost": ZERO},
            )
        return cls.model.objects.select_for_update().filter(
            stock_item_id=stock_item_id, warehouse_id=warehouse_id
        ).first()

    @classmethod
    def apply_receipt(cls,
                      stock_item_id: int,
                      warehouse_id: int,
                      quantity: Decimal,
                      unit_cost: Decimal) -> StockLevel:
        quantity = round_quantity(to_decimal(quantity))
        unit_cost = to_decimal(unit_cost)
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero", "quantity")
        if unit_cost < 0:
            raise ValidationError("Unit cost cannot be negative", "unit_cost")

        level = cls.lock(stock_item_id, warehouse_id)
        new_quantity = round_quantity(level.quantity + quantity)
        check_limit(new_quantity, "quantity", QUANTITY_PLACES)
        level.average_cost = weighted_average(level.quantity, level.average_cost, quantity, unit_cost)
        level.quantity = new_quantity
        level.save(update_fields=["quantity", "average_cost", "updated_at"])
        return level

    @classmethod
    def apply_outflow(cls,
                      stock_item_id: int,
                      warehouse_id: int,
                      quantity: Decimal,
                      empty_message: str = None,
                      batch: StockBatch = None,
                      destination_warehouse_id: int = None) -> Tuple[StockLevel, Decimal]:
        """
        Deduct ``quantity`` from the level. The average cost is left as is and
        returned so the caller can value the outflow.

        The given ``batch`` is reduced by the same quantity; without one the
        batches are drawn FEFO. ``destination_warehouse_id`` moves the drawn
        lots along with a transfer.
        """
        quantity = round_quantity(to_decimal(quantity))
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero", "quantity")

        level = cls.lock(stock_item_id, warehouse_id, create=False)
        available = level.quantity if level else ZERO
        if level is None and empty_message:
            raise InsufficientStockError(
                cls._item_name(stock_item_id), quantity, available, empty_message
            )
        if level is None or quantity > level.quantity:
            raise InsufficientStockError(cls._item_name(stock_item_id), quantity, available)

        if batch is not None:
            StockBatchService.deduct(batch, quantity)
            if destination_warehouse_id:
                StockBatchService.receive_transfer(batch, quantity, destination_warehouse_id)
        else:
            StockBatchService.draw_fefo(
                stock_item_id, warehouse_id, quantity, level.quantity,
                destination_warehouse_id=destination_warehouse_id,
            )

        level.quantity = round_quantity(level.quantity - quantity)
        level.save(update_fields=["quantity", "updated_at"])
        return level, level.average_cost

    @classmethod
    def _item_name(cls, stock_item_id: int) -> str:
        item = StockItem.objects.filter(id=stock_item_id).only("name").first()
        return item.name if item else str(stock_item_id)

    @classmethod
    @service_operation
    def get_for_item(cls, stock_item_id: int) -> Dict[str, Any]:
        stock_item_id = parse_id(stock_item_id, "stock_item_id")
        levels = cls.model.objects.filter(
            stock_item_id=stock_item_id
        ).select_related("stock_item__primary_unit", "warehouse").order_by("warehouse__name")

        total_quantity = sum((lvl.quantity for lvl in levels), ZERO)
        total_value = sum((lvl.quantity * lvl.average_cost for lvl in levels), ZERO)

        return success_response({
            "levels": [cls.serialize(lvl) for lvl in levels],
            "total_quantity": str(total_quantity),
            "total_value": str(round_money(total_value)),
        })

    @classmethod
    @service_operation
    def get_for_warehouse(cls, warehouse_id: int, include_empty: bool = False) -> Dict[str, Any]:
        warehouse_id = parse_id(warehouse_id, "warehouse_id")
        levels = cls.model.objects.filter(
            warehouse_id=warehouse_id,
            stock_item__is_active=True,
        ).select_related("stock_item__primary_unit", "warehouse").order_by("stock_item__name")

        if not include_empty:
            levels = levels.filter(quantity__gt=0)

        return success_response({
            "levels": [cls.serialize(lvl) for lvl in levels],
            "count": levels.count(),
        })


class StockMovementService(BaseService):
    model = StockMovement

    @classmethod
    def serialize(cls, movement: StockMovement) -> Dict[str, Any]:
        return {
            "id": movement.id,
            "uuid": str(movement.uuid),
            "stock_item_id": movement.stock_item_id,
            "stock_item_name": movement.stock_item.name,
            "movement_type": movement.movement_type,
            "movement_type_display": movement.get_movement_type_display(),
            "quantity": str(movement.quantity),
            "unit_cost": str(movement.unit_cost),
            "total_cost": str(movement.total_cost),
            "source_warehouse_id": movement.source_warehouse_id,
            "destination_warehouse_id": movement.destination_warehouse_id,
            "batch_id": movement.batch_id,
            "reference_type": movement.reference_type,
            "reference_id": movement.reference_id,
            "reason": movement.reason,
            "notes": movement.notes,
            "created_by_id": movement.created_by_id,
            "created_at": isoformat(movement.created_at),
        }

    @classmethod
    def record(cls,
               stock_item_id: int,
               movement_type: str,
               quantity: Decimal,
               unit_cost: Decimal,
               source_warehouse_id: int = None,
               destination_warehouse_id: int = None,
               batch_id: int = None,
               reference_type: str = "",
               reference_id: Any = "",
               reason: str = "",
               notes: str = "",
               created_by_id: int = None) -> StockMovement:
        """Append one movement. Called inside the transaction that changed the level."""
        if source_warehouse_id is None and destination_warehouse_id is None:
            raise ValidationError("A movement needs a source or destination warehouse")

        quantity = round_quantity(to_decimal(quantity))
        unit_cost = round_cost(to_decimal(unit_cost))
        total_cost = check_limit(line_total(quantity, unit_cost), "total_cost", MONEY_PLACES)

        movement = cls.model.objects.create(
            stock_item_id=stock_item_id,
            movement_type=movement_type,
            quantity=quantity,
            unit_cost=unit_cost,
            total_cost=total_cost,
            source_warehouse_id=source_warehouse_id,
            destination_warehouse_id=destination_warehouse_id,
            batch_id=batch_id,
            reference_type=reference_type or "",
            reference_id=str(reference_id) if reference_id not in (None, "") else "",
            reason=reason or "",
            notes=notes or "",
            created_by_id=created_by_id,
        )
        logger.info(
            "Movement %s: item=%s qty=%s cost=%s from=%s to=%s ref=%s:%s",
            movement_type, stock_item_id, quantity, unit_cost,
            source_warehouse_id, destination_warehouse_id,
            movement.reference_type, movement.reference_id,
        )
        return movement

    @staticmethod
    def signed_quantity(movement: StockMovement, warehouse_id: int) -> Decimal:
        """Effect of ``movement`` on the on-hand quantity at ``warehouse_id``."""
        if movement.movement_type in INBOUND_TYPES:
            return movement.quantity if movement.destination_warehouse_id == warehouse_id else ZERO
        if movement.movement_type in OUTBOUND_TYPES:
            return -movement.quantity if movement.source_warehouse_id == warehouse_id else ZERO
        # Adjustments carry exactly one side
        if movement.destination_warehouse_id == warehouse_id:
            return movement.quantity
        if movement.source_warehouse_id == warehouse_id:
            return -movement.quantity
        return ZERO

    @classmethod
    def replay_quantity(cls, stock_item_id: int, warehouse_id: int) -> Decimal:
        movements = cls.model.objects.filter(
            Q(source_warehouse_id=warehouse_id) | Q(destination_warehouse_id=warehouse_id),
            stock_item_id=stock_item_id,
        ).only("movement_type", "quantity", "source_warehouse_id", "destination_warehouse_id")

        total = ZERO
        for movement in movements:
            total += cls.signed_quantity(movement, warehouse_id)
        return round_quantity(total)

    @classmethod
    @service_operation
    def verify_level(cls, stock_item_id: int, warehouse_id: int) -> Dict[str, Any]:
        """
        Replay the ledger against the stored level, and check that the
        batches at the warehouse do not hold more than the level.
        """
        stock_item_id = parse_id(stock_item_id, "stock_item_id")
        warehouse_id = parse_id(warehouse_id, "warehouse_id")

        replayed = cls.replay_quantity(stock_item_id, warehouse_id)
        current = StockLevelService.get_quantity(stock_item_id, warehouse_id)
        batched = StockBatchService.get_batched_quantity(stock_item_id, warehouse_id)
        consistent = replayed == current
        if not consistent:
            logger.error(
                "Ledger mismatch for item=%s warehouse=%s: level=%s replay=%s",
                stock_item_id, warehouse_id, current, replayed,
            )
        if batched > current:
            logger.error(
                "Batch overcount for item=%s warehouse=%s: level=%s batches=%s",
                stock_item_id, warehouse_id, current, batched,
            )
        return success_response({
            "stock_item_id": stock_item_id,
            "warehouse_id": warehouse_id,
            "level_quantity": str(current),
            "replayed_quantity": str(replayed),
            "batched_quantity": str(batched),
            "is_consistent": consistent,
            "batches_within_level": batched <= current,
        })

    @classmethod
    def filter_queryset(cls,
                        stock_item_id: int = None,
                        warehouse_id: int = None,
                        movement_type: str = None,
                        reference_type: str = None,
                        reference_id: str = None,
                        date_from: date = None,
                        date_to: date = None):
        queryset = cls.model.objects.select_related("stock_item")
        stock_item_id = parse_id(stock_item_id, "stock_item_id", required=False)
        warehouse_id = parse_id(warehouse_id, "warehouse_id", required=False)

        if stock_item_id:
            queryset = queryset.filter(stock_item_id=stock_item_id)

        if warehouse_id:
            queryset = queryset.filter(
                Q(source_warehouse_id=warehouse_id) | Q(destination_warehouse_id=warehouse_id)
            )

        if movement_type:
            valid_types = [c[0] for c in StockMovement.MovementType.choices]
            if movement_type not in valid_types:
                raise ValidationError(f"Invalid movement type. Valid: {valid_types}", "movement_type")
            queryset = queryset.filter(movement_type=movement_type)

        if reference_type:
            queryset = queryset.filter(reference_type=reference_type)

        if reference_id:
            queryset = queryset.filter(reference_id=str(reference_id))

        if date_from:
            queryset = queryset.filter(created_at__date__gte=date_from)

        if date_to:
            queryset = queryset.filter(created_at__date__lte=date_to)

        return queryset

    @classmethod
    @service_operation
    def list(cls, page: int = 1, per_page: int = 50, **filters) -> Dict[str, Any]:
        queryset = cls.filter_queryset(**filters).order_by("-created_at", "-id")
        movements, pagination = paginate_queryset(queryset, page, per_page)

        return success_response({
            "movements": [cls.serialize(m) for m in movements],
            "pagination": pagination,
        })

    @classmethod
    @service_operation
    def get(cls, movement_id: int) -> Dict[str, Any]:
        movement_id = parse_id(movement_id, "movement_id")
        movement = cls.model.objects.select_related("stock_item").filter(id=movement_id).first()
        if not movement:
            raise NotFoundError("Stock movement", movement_id)
        return success_response({"movement": cls.serialize(movement)})

    @classmethod
    @service_operation
    def get_item_history(cls, stock_item_id: int, warehouse_id: int = None, limit: int = 100) -> Dict[str, Any]:
        stock_item_id = parse_id(stock_item_id, "stock_item_id")
        if not StockItem.objects.filter(id=stock_item_id).exists():
            raise NotFoundError("Stock item", stock_item_id)

        queryset = cls.filter_queryset(stock_item_id=stock_item_id, warehouse_id=warehouse_id)
        summary = queryset.values("movement_type").annotate(
            count=Count("id"), quantity=Sum("quantity"), value=Sum("total_cost")
        ).order_by("movement_type")

        return success_response({
            "movements": [cls.serialize(m) for m in queryset.order_by("-created_at", "-id")[:limit]],
            "summary": [
                {
                    "movement_type": row["movement_type"],
                    "count": row["count"],
                    "quantity": str(row["quantity"] or ZERO),
                    "value": str(row["value"] or ZERO),
                }
                for row in summary
            ],
        })
