"""
Cycle Count Service - physical counts reconciled into ADJUSTMENT movements
"""
import logging
from typing import Dict, Any, List
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from inventory.models import CycleCount, CycleCountItem, StockItem
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset, service_operation,
    ValidationError, NotFoundError, PreconditionError,
    parse_id, parse_decimal, round_quantity, round_money, generate_number, isoformat,
    QUANTITY_PLACES, ZERO,
)
from inventory.services.level_service import StockLevelService
from inventory.services.warehouse_service import WarehouseService
from inventory.services.stock_service import StockOperationService

logger = logging.getLogger(__name__)

Status = CycleCount.Status


class CycleCountService(BaseService):
    model = CycleCount

    @classmethod
    def serialize_item(cls, line: CycleCountItem) -> Dict[str, Any]:
        return {
            "id": line.id,
            "stock_item_id": line.stock_item_id,
            "stock_item_name": line.stock_item.name,
            "system_quantity": str(line.system_quantity),
            "counted_quantity": str(line.counted_quantity) if line.counted_quantity is not None else None,
            "unit_cost": str(line.unit_cost),
            "variance": str(line.variance) if line.variance is not None else None,
            "variance_cost": str(line.variance_cost) if line.variance_cost is not None else None,
            "adjustment_movement_id": line.adjustment_movement_id,
            "counted_by_id": line.counted_by_id,
            "counted_at": isoformat(line.counted_at),
            "notes": line.notes,
        }

    @classmethod
    def serialize(cls, count: CycleCount, include_items: bool = True) -> Dict[str, Any]:
        data = {
            "id": count.id,
            "uuid": str(count.uuid),
            "count_number": count.count_number,
            "warehouse_id": count.warehouse_id,
            "warehouse_name": count.warehouse.name,
            "status": count.status,
            "status_display": count.get_status_display(),
            "started_at": isoformat(count.started_at),
            "submitted_at": isoformat(count.submitted_at),
            "completed_at": isoformat(count.completed_at),
            "created_by_id": count.created_by_id,
            "approved_by_id": count.approved_by_id,
            "notes": count.notes,
            "created_at": isoformat(count.created_at),
        }

        if include_items:
            items = count.items.select_related("stock_item").order_by("stock_item__name")
            counted = items.filter(counted_quantity__isnull=False)
            data["items"] = [cls.serialize_item(line) for line in items]
            data["summary"] = {
                "total_items": items.count(),
                "counted_items": counted.count(),
                "items_with_variance": counted.exclude(variance=0).count(),
                "total_variance_cost": str(
                    round_money(counted.aggregate(total=Sum("variance_cost"))["total"] or ZERO)
                ),
            }

        return data

    @classmethod
    def _lock(cls, count_id: Any) -> CycleCount:
        count_id = parse_id(count_id, "cycle_count_id")
        count = cls.model.objects.select_for_update().select_related(
            "warehouse"
        ).filter(id=count_id).first()
        if not count:
            raise NotFoundError("Cycle count", count_id)
        return count

    # ==================== CRUD ====================

    @classmethod
    @service_operation
    @transaction.atomic
    def create(cls,
               warehouse_id: int,
               stock_item_ids: List[int] = None,
               created_by_id: int = None,
               notes: str = "") -> Dict[str, Any]:
        """
        Open a count for a warehouse. Without ``stock_item_ids`` every active
        item with a level there is included.
        """
        warehouse = WarehouseService.get_active_or_raise(
            warehouse_id, "Cannot create cycle count for inactive warehouse"
        )

        if stock_item_ids:
            if not isinstance(stock_item_ids, list):
                raise ValidationError("Stock item IDs must be a list", "stock_item_ids")
            ids = [parse_id(i, "stock_item_id") for i in stock_item_ids]
            if len(set(ids)) != len(ids):
                raise ValidationError("Stock items are listed twice", "stock_item_ids")
            items = StockItem.objects.in_bulk(ids)
            missing = [str(i) for i in ids if i not in items]
            if missing:
                raise NotFoundError("Stock item", ", ".join(missing))
            stock_items = [items[i] for i in ids]
        else:
            stock_items = list(
                StockItem.objects.filter(
                    is_active=True, stock_levels__warehouse=warehouse
                ).order_by("name")
            )

        if not stock_items:
            raise PreconditionError("No stock items to count in this warehouse", "count_items")

        count = cls.model.objects.create(
            count_number=generate_number("CC", CycleCount, "count_number"),
            warehouse=warehouse,
            created_by_id=created_by_id,
            notes=(notes or "").strip(),
        )
        CycleCountItem.objects.bulk_create([
            CycleCountItem(cycle_count=count, stock_item=item) for item in stock_items
        ])

        return success_response({
            "id": count.id,
            "count": cls.serialize(count),
        }, f"Cycle count {count.count_number} created with {len(stock_items)} items")

    @classmethod
    @service_operation
    def get(cls, count_id: int) -> Dict[str, Any]:
        count_id = parse_id(count_id, "cycle_count_id")
        count = cls.model.objects.select_related("warehouse").filter(id=count_id).first()
        if not count:
            raise NotFoundError("Cycle count", count_id)
        return success_response({"count": cls.serialize(count)})

    @classmethod
    @service_operation
    def list(cls,
             warehouse_id: int = None,
             status: str = None,
             page: int = 1,
             per_page: int = 20) -> Dict[str, Any]:
        queryset = cls.model.objects.select_related("warehouse")
        warehouse_id = parse_id(warehouse_id, "warehouse_id", required=False)

        if warehouse_id:
            queryset = queryset.filter(warehouse_id=warehouse_id)

        if status:
            if status not in Status.values:
                raise ValidationError(f"Invalid status. Must be one of: {', '.join(Status.values)}", "status")
            queryset = queryset.filter(status=status)

        counts, pagination = paginate_queryset(queryset.order_by("-created_at", "-id"), page, per_page)

        return success_response({
            "counts": [cls.serialize(c, include_items=False) for c in counts],
            "pagination": pagination,
        })

    # ==================== WORKFLOW ====================

    @classmethod
    @service_operation
    @transaction.atomic
    def start(cls, count_id: int) -> Dict[str, Any]:
        """Freeze the system quantity and average cost of every line."""
        count = cls._lock(count_id)
        if count.status != Status.DRAFT:
            raise PreconditionError(
                f"Cannot start cycle count in {count.status} status. Only DRAFT counts can be started.",
                "count_status",
            )

        for line in count.items.select_for_update():
            level = StockLevelService.find(line.stock_item_id, count.warehouse_id)
            line.system_quantity = level.quantity if level else ZERO
            line.unit_cost = level.average_cost if level else ZERO
            line.save(update_fields=["system_quantity", "unit_cost"])

        count.status = Status.IN_PROGRESS
        count.started_at = timezone.now()
        count.save(update_fields=["status", "started_at", "updated_at"])

        return success_response({"count": cls.serialize(count)}, "Counting started")

    @classmethod
    @service_operation
    @transaction.atomic
    def record_count(cls,
                     count_id: int,
                     stock_item_id: int,
                     counted_quantity: Any,
                     counted_by_id: int = None,
                     notes: str = "") -> Dict[str, Any]:
        counted_quantity = round_quantity(
            parse_decimal(counted_quantity, "counted_quantity", places=QUANTITY_PLACES)
        )
        if counted_quantity < 0:
            raise ValidationError("Counted quantity cannot be negative", "counted_quantity")
        stock_item_id = parse_id(stock_item_id, "stock_item_id")

        count = cls._lock(count_id)
        if count.status != Status.IN_PROGRESS:
            raise PreconditionError(
                f"Cannot record counts for a {count.status} cycle count", "count_status"
            )

        line = count.items.select_related("stock_item").filter(stock_item_id=stock_item_id).first()
        if not line:
            raise NotFoundError("Cycle count item", stock_item_id)

        line.counted_quantity = counted_quantity
        line.variance = round_quantity(counted_quantity - line.system_quantity)
        line.variance_cost = round_money(line.variance * line.unit_cost)
        line.counted_by_id = counted_by_id
        line.counted_at = timezone.now()
        line.notes = (notes or "").strip()
        line.save()

        return success_response({"item": cls.serialize_item(line)}, "Count recorded")

    @classmethod
    @service_operation
    @transaction.atomic
    def submit(cls, count_id: int) -> Dict[str, Any]:
        count = cls._lock(count_id)
        if count.status != Status.IN_PROGRESS:
            raise PreconditionError("Can only submit IN_PROGRESS counts", "count_status")

        uncounted = count.items.filter(counted_quantity__isnull=True).count()
        if uncounted:
            raise PreconditionError(f"{uncounted} item(s) not yet counted", "count_incomplete")

        count.status = Status.PENDING_REVIEW
        count.submitted_at = timezone.now()
        count.save(update_fields=["status", "submitted_at", "updated_at"])

        return success_response({"count": cls.serialize(count)}, "Cycle count submitted for review")

    @classmethod
    @service_operation
    @transaction.atomic
    def approve(cls, count_id: int, approved_by_id: int = None) -> Dict[str, Any]:
        """
        Book every non-zero variance as an ADJUSTMENT movement referencing the
        count. A variance that can no longer be applied fails the approval.
        """
        count = cls._lock(count_id)
        if count.status != Status.PENDING_REVIEW:
            raise PreconditionError("Can only approve counts pending review", "count_status")

        adjustments = []
        lines = count.items.select_for_update().select_related("stock_item").exclude(variance=0)
        for line in lines.filter(adjustment_movement__isnull=True).order_by("id"):
            result = StockOperationService.apply_adjustment(
                line.stock_item,
                count.warehouse_id,
                line.variance,
                f"Cycle count {count.count_number}",
                reference_type="CYCLE_COUNT",
                reference_id=count.id,
                created_by_id=approved_by_id,
            )
            line.adjustment_movement_id = result["movement_id"]
            line.save(update_fields=["adjustment_movement"])
            adjustments.append({"stock_item_id": line.stock_item_id, **result})

        count.status = Status.COMPLETED
        count.approved_by_id = approved_by_id
        count.completed_at = timezone.now()
        count.save(update_fields=["status", "approved_by_id", "completed_at", "updated_at"])

        logger.info("Cycle count %s approved with %s adjustments", count.count_number, len(adjustments))

        return success_response({
            "count": cls.serialize(count),
            "adjustments": adjustments,
        }, f"Cycle count approved, {len(adjustments)} adjustment(s) made")

    @classmethod
    @service_operation
    @transaction.atomic
    def reject(cls, count_id: int, reason: str) -> Dict[str, Any]:
        """Send a submitted count back for recounting."""
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError("Rejection reason is required", "reason")

        count = cls._lock(count_id)
        if count.status != Status.PENDING_REVIEW:
            raise PreconditionError("Can only reject counts pending review", "count_status")

        count.status = Status.IN_PROGRESS
        count.submitted_at = None
        count.notes = f"{count.notes}\nRejected: {reason.strip()}".strip()
        count.save(update_fields=["status", "submitted_at", "notes", "updated_at"])

        return success_response({"count": cls.serialize(count)}, "Cycle count returned for recount")

    @classmethod
    @service_operation
    @transaction.atomic
    def cancel(cls, count_id: int, reason: str = "") -> Dict[str, Any]:
        count = cls._lock(count_id)
        if count.status == Status.COMPLETED:
            raise PreconditionError("Cannot cancel a completed cycle count", "count_status")
        if count.status == Status.CANCELLED:
            raise PreconditionError("Cycle count is already cancelled", "count_status")

        count.status = Status.CANCELLED
        if reason:
            count.notes = f"{count.notes}\nCancelled: {reason}".strip()
        count.save(update_fields=["status", "notes", "updated_at"])

        return success_response({"count": cls.serialize(count, include_items=False)}, "Cycle count cancelled")
