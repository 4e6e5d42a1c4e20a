"""
Requisition Service - internal stock requests between warehouses
"""
import logging
from typing import Dict, Any, List
from django.db import transaction
from django.utils import timezone

from inventory.models import Requisition, RequisitionItem, StockItem
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset, service_operation,
    ValidationError, NotFoundError, PreconditionError,
    parse_id, parse_decimal, round_quantity, generate_number, isoformat,
    QUANTITY_PLACES, ZERO,
)
from inventory.services.warehouse_service import WarehouseService
from inventory.services.stock_service import StockOperationService

logger = logging.getLogger(__name__)

Status = Requisition.Status


class RequisitionService(BaseService):
    model = Requisition

    @classmethod
    def serialize(cls, requisition: Requisition, include_items: bool = True) -> Dict[str, Any]:
        data = {
            "id": requisition.id,
            "uuid": str(requisition.uuid),
            "requisition_number": requisition.requisition_number,
            "requesting_warehouse_id": requisition.requesting_warehouse_id,
            "requesting_warehouse_name": requisition.requesting_warehouse.name,
            "source_warehouse_id": requisition.source_warehouse_id,
            "source_warehouse_name": requisition.source_warehouse.name,
            "status": requisition.status,
            "status_display": requisition.get_status_display(),
            "requested_by_id": requisition.requested_by_id,
            "approved_by_id": requisition.approved_by_id,
            "approved_at": isoformat(requisition.approved_at),
            "rejection_reason": requisition.rejection_reason,
            "notes": requisition.notes,
            "created_at": isoformat(requisition.created_at),
        }

        if include_items:
            data["items"] = [
                {
                    "id": line.id,
                    "stock_item_id": line.stock_item_id,
                    "stock_item_name": line.stock_item.name,
                    "requested_quantity": str(line.requested_quantity),
                    "fulfilled_quantity": str(line.fulfilled_quantity),
                    "remaining_quantity": str(line.remaining_quantity),
                }
                for line in requisition.items.select_related("stock_item").order_by("id")
            ]

        return data

    @classmethod
    def _lock(cls, requisition_id: Any) -> Requisition:
        requisition_id = parse_id(requisition_id, "requisition_id")
        requisition = cls.model.objects.select_for_update().select_related(
            "requesting_warehouse", "source_warehouse"
        ).filter(id=requisition_id).first()
        if not requisition:
            raise NotFoundError("Requisition", requisition_id)
        return requisition

    @classmethod
    def _parse_lines(cls, items: List[Dict[str, Any]], field: str, allow_zero: bool) -> Dict[int, Any]:
        if not items or not isinstance(items, list):
            raise ValidationError("At least one item is required", field)

        lines = {}
        for index, line in enumerate(items, start=1):
            if not isinstance(line, dict):
                raise ValidationError(f"Item {index}: Line must be an object", field)
            stock_item_id = parse_id(line.get("stock_item_id"), "stock_item_id")
            quantity = round_quantity(parse_decimal(line.get("quantity"), "quantity", places=QUANTITY_PLACES))
            if quantity < 0 or (quantity == 0 and not allow_zero):
                raise ValidationError(f"Item {index}: Quantity must be greater than zero", field)
            if stock_item_id in lines:
                raise ValidationError(f"Item {index}: Stock item {stock_item_id} is listed twice", field)
            lines[stock_item_id] = quantity
        return lines

    # ==================== CRUD ====================

    @classmethod
    @service_operation
    @transaction.atomic
    def create(cls,
               requesting_warehouse_id: int,
               source_warehouse_id: int,
               items: List[Dict[str, Any]],
               requested_by_id: int = None,
               notes: str = "") -> Dict[str, Any]:
        """items: [{"stock_item_id", "quantity"}]"""
        requesting_warehouse_id = parse_id(requesting_warehouse_id, "requesting_warehouse_id")
        source_warehouse_id = parse_id(source_warehouse_id, "source_warehouse_id")
        if requesting_warehouse_id == source_warehouse_id:
            raise ValidationError(
                "Requesting and source warehouses must be different", "source_warehouse_id"
            )

        lines = cls._parse_lines(items, "items", allow_zero=False)

        requesting = WarehouseService.get_active_or_raise(
            requesting_warehouse_id, "Requesting warehouse is not active"
        )
        source = WarehouseService.get_active_or_raise(
            source_warehouse_id, "Source warehouse is not active"
        )

        stock_items = StockItem.objects.in_bulk(list(lines))
        missing = [str(i) for i in lines if i not in stock_items]
        if missing:
            raise NotFoundError("Stock item", ", ".join(missing))

        requisition = cls.model.objects.create(
            requisition_number=generate_number("REQ", Requisition, "requisition_number"),
            requesting_warehouse=requesting,
            source_warehouse=source,
            requested_by_id=requested_by_id,
            notes=(notes or "").strip(),
        )
        RequisitionItem.objects.bulk_create([
            RequisitionItem(requisition=requisition, stock_item=stock_items[item_id], requested_quantity=quantity)
            for item_id, quantity in lines.items()
        ])

        logger.info(
            "Requisition %s: %s -> %s, %s lines",
            requisition.requisition_number, source.id, requesting.id, len(lines),
        )

        return success_response({
            "id": requisition.id,
            "requisition": cls.serialize(requisition),
        }, f"Requisition {requisition.requisition_number} created")

    @classmethod
    @service_operation
    def get(cls, requisition_id: int) -> Dict[str, Any]:
        requisition_id = parse_id(requisition_id, "requisition_id")
        requisition = cls.model.objects.select_related(
            "requesting_warehouse", "source_warehouse"
        ).filter(id=requisition_id).first()
        if not requisition:
            raise NotFoundError("Requisition", requisition_id)
        return success_response({"requisition": cls.serialize(requisition)})

    @classmethod
    @service_operation
    def list(cls,
             status: str = None,
             requesting_warehouse_id: int = None,
             source_warehouse_id: int = None,
             page: int = 1,
             per_page: int = 20) -> Dict[str, Any]:
        queryset = cls.model.objects.select_related("requesting_warehouse", "source_warehouse")
        requesting_warehouse_id = parse_id(requesting_warehouse_id, "requesting_warehouse_id", required=False)
        source_warehouse_id = parse_id(source_warehouse_id, "source_warehouse_id", required=False)

        if status:
            if status not in Status.values:
                raise ValidationError(f"Invalid status. Must be one of: {', '.join(Status.values)}", "status")
            queryset = queryset.filter(status=status)

        if requesting_warehouse_id:
            queryset = queryset.filter(requesting_warehouse_id=requesting_warehouse_id)

        if source_warehouse_id:
            queryset = queryset.filter(source_warehouse_id=source_warehouse_id)

        requisitions, pagination = paginate_queryset(queryset.order_by("-created_at", "-id"), page, per_page)

        return success_response({
            "requisitions": [cls.serialize(r, include_items=False) for r in requisitions],
            "pagination": pagination,
        })

    # ==================== WORKFLOW ====================

    @classmethod
    @service_operation
    @transaction.atomic
    def approve(cls, requisition_id: int, approved_by_id: int = None) -> Dict[str, Any]:
        requisition = cls._lock(requisition_id)
        if requisition.status != Status.PENDING:
            raise PreconditionError(
                f"Cannot approve requisition with status '{requisition.status}'. "
                f"Only PENDING requisitions can be approved.",
                "requisition_status",
            )

        requisition.status = Status.APPROVED
        requisition.approved_by_id = approved_by_id
        requisition.approved_at = timezone.now()
        requisition.save(update_fields=["status", "approved_by_id", "approved_at", "updated_at"])

        return success_response({"requisition": cls.serialize(requisition)}, "Requisition approved")

    @classmethod
    @service_operation
    @transaction.atomic
    def reject(cls, requisition_id: int, reason: str, approved_by_id: int = None) -> Dict[str, Any]:
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError("Rejection reason is required", "reason")

        requisition = cls._lock(requisition_id)
        if requisition.status != Status.PENDING:
            raise PreconditionError(
                f"Cannot reject requisition with status '{requisition.status}'. "
                f"Only PENDING requisitions can be rejected.",
                "requisition_status",
            )

        requisition.status = Status.REJECTED
        requisition.approved_by_id = approved_by_id
        requisition.approved_at = timezone.now()
        requisition.rejection_reason = reason.strip()
        requisition.save(update_fields=["status", "approved_by_id", "approved_at", "rejection_reason", "updated_at"])

        return success_response({"requisition": cls.serialize(requisition)}, "Requisition rejected")

    @classmethod
    @service_operation
    @transaction.atomic
    def fulfill(cls,
                requisition_id: int,
                items: List[Dict[str, Any]],
                fulfilled_by_id: int = None) -> Dict[str, Any]:
        """
        Ship some or all of the remaining quantities. Each line is an
        ordinary transfer from the source to the requesting warehouse, so a
        shortfall on any line rolls the whole round back.

        items: [{"stock_item_id", "quantity"}]; zero quantities are skipped.
        """
        lines = cls._parse_lines(items, "items", allow_zero=True)
        requisition = cls._lock(requisition_id)
        if requisition.status not in (Status.APPROVED, Status.PARTIALLY_FULFILLED):
            raise PreconditionError(
                f"Cannot fulfill requisition with status '{requisition.status}'. "
                f"Only APPROVED or PARTIALLY_FULFILLED requisitions can be fulfilled.",
                "requisition_status",
            )

        requisition_items = {
            line.stock_item_id: line
            for line in requisition.items.select_for_update().select_related("stock_item__primary_unit")
        }

        transfers = []
        for stock_item_id, quantity in lines.items():
            line = requisition_items.get(stock_item_id)
            if line is None:
                raise ValidationError(
                    f"Stock item {stock_item_id} is not part of this requisition", "items"
                )
            if quantity == 0:
                continue
            if quantity > line.remaining_quantity:
                raise PreconditionError(
                    f"Cannot fulfill {quantity} of '{line.stock_item.name}'. "
                    f"Only {line.remaining_quantity} remaining to fulfill.",
                    "requisition_remaining",
                )

            moved = StockOperationService.move_stock(
                line.stock_item,
                requisition.source_warehouse_id,
                requisition.requesting_warehouse_id,
                quantity,
                reference_type="REQUISITION",
                reference_id=requisition.id,
                created_by_id=fulfilled_by_id,
            )
            line.fulfilled_quantity = round_quantity(line.fulfilled_quantity + quantity)
            line.save(update_fields=["fulfilled_quantity"])
            transfers.append({"stock_item_id": stock_item_id, "quantity": str(quantity), **moved})

        if not transfers:
            raise ValidationError("At least one item must have a quantity to fulfill", "items")

        if all(line.remaining_quantity <= ZERO for line in requisition_items.values()):
            requisition.status = Status.FULFILLED
        else:
            requisition.status = Status.PARTIALLY_FULFILLED
        requisition.save(update_fields=["status", "updated_at"])

        logger.info("Requisition %s now %s", requisition.requisition_number, requisition.status)

        return success_response({
            "requisition": cls.serialize(requisition),
            "transfers": transfers,
        }, f"Requisition {requisition.requisition_number} {requisition.get_status_display().lower()}")
