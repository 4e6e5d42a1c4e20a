"""
Stock Batch Service - Batch tracking with expiry management
"""
from typing import Dict, Any, Optional, List, Tuple
from decimal import Decimal
from datetime import date, timedelta
from django.db import transaction
from django.db.models import Q, Sum, F
from django.utils import timezone

from inventory.models import StockBatch, InventorySettings
from inventory.services.base_service import (
    BaseService, success_response, service_operation,
    ValidationError, NotFoundError, PreconditionError, InsufficientStockError,
    parse_id, to_decimal, round_quantity, round_money, isoformat, parse_datetime_value, ZERO,
)


class StockBatchService(BaseService):
    """Manage stock batches"""

    model = StockBatch

    @classmethod
    def serialize(cls, batch: StockBatch) -> Dict[str, Any]:
        """Convert batch to dictionary"""
        return {
            "id": batch.id,
            "uuid": str(batch.uuid),
            "batch_number": batch.batch_number,
            "stock_item_id": batch.stock_item_id,
            "stock_item_name": batch.stock_item.name,
            "warehouse_id": batch.warehouse_id,
            "warehouse_name": batch.warehouse.name,
            "quantity": str(batch.quantity),
            "unit_cost": str(batch.unit_cost),
            "received_date": isoformat(batch.received_date),
            "expiration_date": isoformat(batch.expiration_date),
            "days_until_expiry": cls.days_until_expiry(batch),
            "is_expired": cls.is_expired(batch),
        }

    @staticmethod
    def days_until_expiry(batch: StockBatch, today: date = None) -> Optional[int]:
        if not batch.expiration_date:
            return None
        today = today or timezone.localdate()
        return (batch.expiration_date - today).days

    @classmethod
    def is_expired(cls, batch: StockBatch, today: date = None) -> bool:
        """Flagged batches and batches past their date are both expired."""
        if batch.is_expired:
            return True
        days = cls.days_until_expiry(batch, today)
        return days is not None and days < 0

    @classmethod
    def create_for_receipt(cls,
                           stock_item_id: int,
                           warehouse_id: int,
                           batch_number: str,
                           quantity: Decimal,
                           unit_cost: Decimal,
                           expiration_date: date = None) -> StockBatch:
        """Create the batch row for a receipt. Runs inside the receipt's transaction."""
        if isinstance(expiration_date, str):
            expiration_date = parse_datetime_value(expiration_date, "expiration_date").date() if expiration_date else None

        if cls.model.objects.filter(stock_item_id=stock_item_id, batch_number=batch_number).exists():
            raise ValidationError(
                "A batch with this number already exists for this item", "batch_number"
            )

        return cls.model.objects.create(
            stock_item_id=stock_item_id,
            warehouse_id=warehouse_id,
            batch_number=batch_number,
            quantity=round_quantity(quantity),
            unit_cost=to_decimal(unit_cost),
            received_date=timezone.localdate(),
            expiration_date=expiration_date,
        )

    @classmethod
    def lock_for_item(cls, batch_id: int, stock_item_id: int, warehouse_id: int) -> StockBatch:
        batch_id = parse_id(batch_id, "batch_id")
        batch = cls.model.objects.select_for_update().filter(id=batch_id).first()
        if not batch:
            raise NotFoundError("Batch", batch_id)
        if batch.stock_item_id != stock_item_id:
            raise PreconditionError("Batch does not belong to the specified stock item", "batch_item")
        if batch.warehouse_id != warehouse_id:
            raise PreconditionError("Batch does not belong to the specified warehouse", "batch_warehouse")
        return batch

    @classmethod
    def deduct(cls, batch: StockBatch, quantity: Decimal) -> StockBatch:
        quantity = round_quantity(quantity)
        if quantity > batch.quantity:
            raise InsufficientStockError(
                f"batch {batch.batch_number}", quantity, batch.quantity,
                f"Insufficient batch quantity. Available: {batch.quantity}, Requested: {quantity}",
            )
        batch.quantity = round_quantity(batch.quantity - quantity)
        batch.save(update_fields=["quantity", "updated_at"])
        return batch

    @classmethod
    def add(cls, batch: StockBatch, quantity: Decimal) -> StockBatch:
        batch.quantity = round_quantity(batch.quantity + quantity)
        batch.save(update_fields=["quantity", "updated_at"])
        return batch

    @classmethod
    def get_batched_quantity(cls, stock_item_id: int, warehouse_id: int) -> Decimal:
        result = cls.model.objects.filter(
            stock_item_id=stock_item_id, warehouse_id=warehouse_id
        ).aggregate(total=Sum("quantity"))
        return result["total"] or ZERO

    @classmethod
    def draw_fefo(cls,
                  stock_item_id: int,
                  warehouse_id: int,
                  quantity: Decimal,
                  on_hand: Decimal,
                  destination_warehouse_id: int = None) -> List[Tuple[StockBatch, Decimal]]:
        """
        Take ``quantity`` out of the batches of an item at a warehouse that
        held ``on_hand`` before the outflow.

        Usable batches go first, earliest expiry first, undated ones last.
        Unbatched stock covers what remains; expired batches are drawn only
        for the part it cannot cover. Batch totals therefore never exceed
        the level. With ``destination_warehouse_id`` the drawn quantities
        are moved into same-numbered batches there.
        """
        batches = list(
            cls.model.objects.select_for_update().filter(
                stock_item_id=stock_item_id, warehouse_id=warehouse_id, quantity__gt=0,
            ).order_by(F("expiration_date").asc(nulls_last=True), "received_date", "id")
        )
        if not batches:
            return []

        today = timezone.localdate()
        usable = [b for b in batches if not cls.is_expired(b, today)]
        expired = [b for b in batches if cls.is_expired(b, today)]
        unbatched = max(ZERO, round_quantity(on_hand) - sum((b.quantity for b in batches), ZERO))

        draws = []
        remaining = round_quantity(quantity)
        for batch in usable:
            if remaining <= 0:
                break
            take = min(batch.quantity, remaining)
            draws.append((batch, take))
            remaining -= take

        remaining -= min(remaining, unbatched)
        for batch in expired:
            if remaining <= 0:
                break
            take = min(batch.quantity, remaining)
            draws.append((batch, take))
            remaining -= take

        for batch, take in draws:
            cls.deduct(batch, take)
            if destination_warehouse_id:
                cls.receive_transfer(batch, take, destination_warehouse_id)
        return draws

    @classmethod
    def receive_transfer(cls, source: StockBatch, quantity: Decimal, warehouse_id: int) -> StockBatch:
        """Credit a transferred quantity to the same lot at the destination."""
        batch, created = cls.model.objects.select_for_update().get_or_create(
            stock_item_id=source.stock_item_id,
            warehouse_id=warehouse_id,
            batch_number=source.batch_number,
            defaults={
                "quantity": round_quantity(quantity),
                "unit_cost": source.unit_cost,
                "received_date": source.received_date,
                "expiration_date": source.expiration_date,
                "is_expired": source.is_expired,
            },
        )
        if not created:
            cls.add(batch, quantity)
        return batch

    @classmethod
    @service_operation
    def get_expiring_batches(cls, days: int = None, warehouse_id: int = None) -> Dict[str, Any]:
        """Get batches expiring soon"""
        warehouse_id = parse_id(warehouse_id, "warehouse_id", required=False)
        settings = InventorySettings.load()
        days = days or settings.expiry_warning_days

        today = timezone.localdate()
        batches = cls.model.objects.filter(
            expiration_date__isnull=False,
            expiration_date__gte=today,
            expiration_date__lte=today + timedelta(days=days),
            quantity__gt=0,
            is_expired=False,
        ).select_related("stock_item", "warehouse").order_by("expiration_date")

        if warehouse_id:
            batches = batches.filter(warehouse_id=warehouse_id)

        return success_response({
            "batches": [cls.serialize(b) for b in batches],
            "count": batches.count(),
            "alert_days": days
        })

    @classmethod
    @service_operation
    def get_expired_batches(cls, warehouse_id: int = None) -> Dict[str, Any]:
        """Get all expired batches with stock"""
        warehouse_id = parse_id(warehouse_id, "warehouse_id", required=False)
        batches = cls.model.objects.filter(
            Q(expiration_date__lt=timezone.localdate()) | Q(is_expired=True),
            quantity__gt=0,
        ).select_related("stock_item", "warehouse").order_by("expiration_date")

        if warehouse_id:
            batches = batches.filter(warehouse_id=warehouse_id)

        total_value = sum((b.quantity * b.unit_cost for b in batches), ZERO)

        return success_response({
            "batches": [cls.serialize(b) for b in batches],
            "count": batches.count(),
            "total_value": str(round_money(total_value))
        })

    @classmethod
    @service_operation
    @transaction.atomic
    def mark_expired(cls, batch_id: int) -> Dict[str, Any]:
        batch_id = parse_id(batch_id, "batch_id")
        batch = cls.model.objects.select_for_update().filter(id=batch_id).first()
        if not batch:
            raise NotFoundError("Batch", batch_id)
        if batch.is_expired:
            raise PreconditionError("Batch is already marked as expired")

        batch.is_expired = True
        batch.save(update_fields=["is_expired", "updated_at"])

        return success_response({"batch": cls.serialize(batch)}, "Batch marked as expired")
