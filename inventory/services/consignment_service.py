"""
Consignment subledger.

Consignment stock is owned by the supplier until it sells. Receipts and
returns move it through the normal stock ledger; each sale snapshots the
selling price and supplier cost from the latest receipt so that what the
supplier is owed never changes after the fact. Settlements group unsettled
sales for a supplier over a period and are paid once.
"""
import logging
from typing import Dict, Any, List
from django.db import transaction
from django.db.models import Q, Count
from django.utils import timezone

from inventory.models import (
    ConsignmentReceipt, ConsignmentReceiptItem, ConsignmentSale, ConsignmentSettlement,
    StockItem, StockLevel, StockMovement, Warehouse,
)
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset, service_operation,
    ValidationError, NotFoundError, PreconditionError, InsufficientStockError,
    to_decimal, parse_decimal, parse_id, round_quantity, round_cost, round_money, line_total,
    QUANTITY_PLACES, COST_PLACES, MONEY_PLACES,
    sum_decimals, generate_number, isoformat, parse_datetime_value, ZERO,
)
from inventory.services.level_service import StockLevelService, StockMovementService
from inventory.services.warehouse_service import WarehouseService
from inventory.services.supplier_service import SupplierService
from inventory.services.stock_service import get_stock_item_or_raise, parse_positive_quantity

logger = logging.getLogger(__name__)

MovementType = StockMovement.MovementType


class ConsignmentService(BaseService):
    model = ConsignmentSale

    # ==================== SERIALIZERS ====================

    @classmethod
    def serialize_receipt(cls, receipt: ConsignmentReceipt, include_items: bool = True) -> Dict[str, Any]:
        data = {
            "id": receipt.id,
            "uuid": str(receipt.uuid),
            "receipt_number": receipt.receipt_number,
            "supplier_id": receipt.supplier_id,
            "supplier_name": receipt.supplier.name,
            "warehouse_id": receipt.warehouse_id,
            "warehouse_name": receipt.warehouse.name,
            "received_at": isoformat(receipt.received_at),
            "notes": receipt.notes,
            "created_by_id": receipt.created_by_id,
        }

        if include_items:
            items = list(receipt.items.select_related("stock_item").order_by("id"))
            data["items"] = [
                {
                    "id": line.id,
                    "stock_item_id": line.stock_item_id,
                    "stock_item_name": line.stock_item.name,
                    "quantity": str(line.quantity),
                    "selling_price": str(line.selling_price),
                    "supplier_cost": str(line.supplier_cost),
                    "total_supplier_cost": str(line_total(line.quantity, line.supplier_cost)),
                }
                for line in items
            ]
            data["item_count"] = len(items)

        return data

    @classmethod
    def serialize_sale(cls, sale: ConsignmentSale) -> Dict[str, Any]:
        return {
            "id": sale.id,
            "uuid": str(sale.uuid),
            "stock_item_id": sale.stock_item_id,
            "stock_item_name": sale.stock_item.name,
            "supplier_id": sale.supplier_id,
            "quantity": str(sale.quantity),
            "selling_price": str(sale.selling_price),
            "supplier_cost": str(sale.supplier_cost),
            "total_sales": str(line_total(sale.quantity, sale.selling_price)),
            "supplier_due": str(line_total(sale.quantity, sale.supplier_cost)),
            "sold_at": isoformat(sale.sold_at),
            "settlement_id": sale.settlement_id,
            "settled_at": isoformat(sale.settled_at),
            "reference_type": sale.reference_type,
            "reference_id": sale.reference_id,
        }

    @classmethod
    def serialize_settlement(cls, settlement: ConsignmentSettlement, include_sales: bool = False) -> Dict[str, Any]:
        data = {
            "id": settlement.id,
            "uuid": str(settlement.uuid),
            "settlement_number": settlement.settlement_number,
            "supplier_id": settlement.supplier_id,
            "supplier_name": settlement.supplier.name,
            "period_start": isoformat(settlement.period_start),
            "period_end": isoformat(settlement.period_end),
            "total_sales": str(settlement.total_sales),
            "total_supplier_due": str(settlement.total_supplier_due),
            "settled_at": isoformat(settlement.settled_at),
            "is_paid": settlement.is_paid,
            "created_at": isoformat(settlement.created_at),
        }

        if include_sales:
            sales = settlement.sales.select_related("stock_item").order_by("sold_at", "id")
            data["sales"] = [cls.serialize_sale(s) for s in sales]

        return data

    # ==================== RECEIPTS ====================

    @classmethod
    def _validate_receipt_lines(cls, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not items:
            raise ValidationError("At least one item is required", "items")

        lines = []
        for index, line in enumerate(items, start=1):
            if not isinstance(line, dict):
                raise ValidationError(f"Item {index}: Line must be an object", "items")
            stock_item_id = parse_id(line.get("stock_item_id"), "stock_item_id")

            quantity = round_quantity(parse_decimal(line.get("quantity"), "quantity", places=QUANTITY_PLACES))
            if quantity <= 0:
                raise ValidationError(f"Item {index}: Quantity must be greater than zero", "items")

            selling_price = round_money(parse_decimal(line.get("selling_price"), "selling_price", places=MONEY_PLACES))
            if selling_price <= 0:
                raise ValidationError(f"Item {index}: Selling price must be greater than zero", "items")

            if line.get("supplier_cost") in (None, ""):
                raise ValidationError(f"Item {index}: Supplier cost is required", "items")
            supplier_cost = round_cost(parse_decimal(line.get("supplier_cost"), "supplier_cost", places=COST_PLACES))
            if supplier_cost < 0:
                raise ValidationError(f"Item {index}: Supplier cost cannot be negative", "items")

            lines.append({
                "stock_item_id": stock_item_id,
                "quantity": quantity,
                "selling_price": selling_price,
                "supplier_cost": supplier_cost,
            })

        return lines

    @classmethod
    @service_operation
    @transaction.atomic
    def receive_consignment(cls,
                            supplier_id: int,
                            warehouse_id: int,
                            items: List[Dict[str, Any]],
                            notes: str = "",
                            created_by_id: int = None) -> Dict[str, Any]:
        """
        Receive supplier-owned stock into a warehouse.

        items: [{"stock_item_id", "quantity", "selling_price", "supplier_cost"}]
        The supplier cost feeds the warehouse weighted average like any receipt.
        """
        supplier_id = parse_id(supplier_id, "supplier_id")
        warehouse_id = parse_id(warehouse_id, "warehouse_id")

        lines = cls._validate_receipt_lines(items)

        supplier = SupplierService.get_active_or_raise(
            supplier_id, "Cannot receive consignment from an inactive supplier"
        )
        warehouse = WarehouseService.get_active_or_raise(
            warehouse_id, "Cannot receive consignment into an inactive warehouse"
        )

        stock_items = {}
        for line in lines:
            item = StockItem.objects.filter(id=line["stock_item_id"]).first()
            if not item:
                raise NotFoundError("Stock item", line["stock_item_id"])
            if not item.is_consignment:
                raise PreconditionError(
                    f'Stock item "{item.name}" is not marked as a consignment item', "consignment_item"
                )
            if item.supplier_id != supplier.id:
                raise PreconditionError(
                    f'Stock item "{item.name}" does not belong to this supplier', "consignment_supplier"
                )
            stock_items[item.id] = item

        receipt = ConsignmentReceipt.objects.create(
            receipt_number=generate_number("CR", ConsignmentReceipt, "receipt_number"),
            supplier=supplier,
            warehouse=warehouse,
            received_at=timezone.now(),
            notes=(notes or "").strip(),
            created_by_id=created_by_id,
        )

        total_supplier_cost = ZERO
        for line in lines:
            item = stock_items[line["stock_item_id"]]
            ConsignmentReceiptItem.objects.create(
                receipt=receipt,
                stock_item=item,
                quantity=line["quantity"],
                selling_price=line["selling_price"],
                supplier_cost=line["supplier_cost"],
            )
            StockLevelService.apply_receipt(
                item.id, warehouse.id, line["quantity"], line["supplier_cost"]
            )
            movement = StockMovementService.record(
                stock_item_id=item.id,
                movement_type=MovementType.RECEIPT,
                quantity=line["quantity"],
                unit_cost=line["supplier_cost"],
                destination_warehouse_id=warehouse.id,
                reference_type="CONSIGNMENT_RECEIPT",
                reference_id=receipt.id,
                created_by_id=created_by_id,
            )
            total_supplier_cost += movement.total_cost

        logger.info(
            "Consignment receipt %s: supplier=%s warehouse=%s lines=%s",
            receipt.receipt_number, supplier.id, warehouse.id, len(lines),
        )

        return success_response({
            "id": receipt.id,
            "receipt_number": receipt.receipt_number,
            "total_supplier_cost": str(round_money(total_supplier_cost)),
            "receipt": cls.serialize_receipt(receipt),
        }, f"Consignment {receipt.receipt_number} received")

    @classmethod
    @service_operation
    def get_receipt(cls, receipt_id: int) -> Dict[str, Any]:
        receipt_id = parse_id(receipt_id, "receipt_id")
        receipt = ConsignmentReceipt.objects.select_related(
            "supplier", "warehouse"
        ).filter(id=receipt_id).first()
        if not receipt:
            raise NotFoundError("Consignment receipt", receipt_id)
        return success_response({"receipt": cls.serialize_receipt(receipt)})

    @classmethod
    @service_operation
    def list_receipts(cls,
                      supplier_id: int = None,
                      warehouse_id: int = None,
                      page: int = 1,
                      per_page: int = 20) -> Dict[str, Any]:
        queryset = ConsignmentReceipt.objects.select_related("supplier", "warehouse")
        supplier_id = parse_id(supplier_id, "supplier_id", required=False)
        warehouse_id = parse_id(warehouse_id, "warehouse_id", required=False)

        if supplier_id:
            queryset = queryset.filter(supplier_id=supplier_id)

        if warehouse_id:
            queryset = queryset.filter(warehouse_id=warehouse_id)

        receipts, pagination = paginate_queryset(queryset.order_by("-received_at", "-id"), page, per_page)

        return success_response({
            "receipts": [cls.serialize_receipt(r, include_items=False) for r in receipts],
            "pagination": pagination,
        })

    # ==================== SALES ====================

    @classmethod
    def get_latest_receipt_item(cls, stock_item_id: int, supplier_id: int):
        return ConsignmentReceiptItem.objects.filter(
            stock_item_id=stock_item_id,
            receipt__supplier_id=supplier_id,
        ).order_by("-receipt__received_at", "-receipt__id", "-id").first()

    @classmethod
    @service_operation
    @transaction.atomic
    def record_sale(cls,
                    stock_item_id: int,
                    supplier_id: int,
                    quantity: Any,
                    sold_at: Any = None,
                    reference_type: str = "",
                    reference_id: Any = "",
                    created_by_id: int = None) -> Dict[str, Any]:
        """
        Sell consignment stock. Prices come from the latest receipt of the
        item from its supplier; stock is drawn from active warehouses in
        ascending id order, emptying each before moving on.
        """
        quantity = parse_positive_quantity(quantity)
        supplier_id = parse_id(supplier_id, "supplier_id", required=False)
        item = get_stock_item_or_raise(stock_item_id)

        if not item.is_consignment:
            raise PreconditionError("Stock item is not a consignment item", "consignment_item")
        if not item.supplier_id:
            raise PreconditionError("Consignment item has no associated supplier", "consignment_supplier")
        if supplier_id and supplier_id != item.supplier_id:
            raise PreconditionError("Stock item does not belong to this supplier", "consignment_supplier")

        sold_at = parse_datetime_value(sold_at, "sold_at") if sold_at else timezone.now()

        latest = cls.get_latest_receipt_item(item.id, item.supplier_id)
        if not latest:
            raise PreconditionError("No consignment receipt found for this item", "consignment_receipt")

        levels = list(
            StockLevel.objects.select_for_update().filter(
                stock_item_id=item.id,
                warehouse__is_active=True,
                quantity__gt=0,
            ).order_by("warehouse_id")
        )
        available = sum_decimals(level.quantity for level in levels)
        if available < quantity:
            raise InsufficientStockError(
                item.name, quantity, available,
                f"Insufficient consignment stock. Available: {available}, Requested: {quantity}",
            )

        sale = ConsignmentSale.objects.create(
            stock_item=item,
            supplier_id=item.supplier_id,
            quantity=quantity,
            selling_price=latest.selling_price,
            supplier_cost=latest.supplier_cost,
            sold_at=sold_at,
            reference_type=reference_type or "",
            reference_id=str(reference_id) if reference_id not in (None, "") else "",
            created_by_id=created_by_id,
        )

        remaining = quantity
        deductions = []
        for level in levels:
            if remaining <= 0:
                break
            take = min(level.quantity, remaining)
            _, average_cost = StockLevelService.apply_outflow(item.id, level.warehouse_id, take)
            StockMovementService.record(
                stock_item_id=item.id,
                movement_type=MovementType.CONSUMPTION,
                quantity=take,
                unit_cost=average_cost,
                source_warehouse_id=level.warehouse_id,
                reference_type="CONSIGNMENT_SALE",
                reference_id=sale.id,
                created_by_id=created_by_id,
            )
            deductions.append({"warehouse_id": level.warehouse_id, "quantity": str(take)})
            remaining = round_quantity(remaining - take)

        return success_response({
            "sale": cls.serialize_sale(sale),
            "supplier_due": str(line_total(quantity, sale.supplier_cost)),
            "deductions": deductions,
        }, f"Consignment sale of {quantity} {item.primary_unit.abbreviation} {item.name} recorded")

    @classmethod
    @service_operation
    def get_unsettled_sales(cls, supplier_id: int) -> Dict[str, Any]:
        """Sales not yet attached to any settlement, oldest first."""
        supplier_id = parse_id(supplier_id, "supplier_id")
        sales = cls.model.objects.filter(
            supplier_id=supplier_id,
            settlement__isnull=True,
        ).select_related("stock_item").order_by("sold_at", "id")

        return success_response({
            "sales": [cls.serialize_sale(s) for s in sales],
            "count": len(sales),
            "total_supplier_due": str(round_money(
                sum_decimals(s.quantity * s.supplier_cost for s in sales)
            )),
        })

    # ==================== RETURNS ====================

    @classmethod
    @service_operation
    @transaction.atomic
    def return_to_supplier(cls,
                           stock_item_id: int,
                           warehouse_id: int,
                           quantity: Any,
                           reason: str = "",
                           supplier_id: int = None,
                           created_by_id: int = None) -> Dict[str, Any]:
        quantity = parse_positive_quantity(quantity)
        warehouse_id = parse_id(warehouse_id, "warehouse_id")
        supplier_id = parse_id(supplier_id, "supplier_id", required=False)

        item = get_stock_item_or_raise(stock_item_id)
        if not item.is_consignment:
            raise PreconditionError("Stock item is not a consignment item", "consignment_item")
        if supplier_id and supplier_id != item.supplier_id:
            raise PreconditionError("Stock item does not belong to this supplier", "consignment_supplier")

        if not Warehouse.objects.filter(id=warehouse_id).exists():
            raise NotFoundError("Warehouse", warehouse_id)

        level, average_cost = StockLevelService.apply_outflow(
            item.id, warehouse_id, quantity,
            empty_message="No stock available in this warehouse",
        )
        previous_quantity = round_quantity(level.quantity + quantity)

        movement = StockMovementService.record(
            stock_item_id=item.id,
            movement_type=MovementType.RETURN,
            quantity=quantity,
            unit_cost=average_cost,
            source_warehouse_id=warehouse_id,
            reference_type="CONSIGNMENT_RETURN",
            reason=(reason or "").strip() or "Returned to supplier",
            created_by_id=created_by_id,
        )

        return success_response({
            "movement": StockMovementService.serialize(movement),
            "previous_quantity": str(previous_quantity),
            "new_quantity": str(level.quantity),
            "returned_quantity": str(quantity),
        }, f"Returned {quantity} {item.primary_unit.abbreviation} {item.name} to supplier")

    # ==================== SETTLEMENTS ====================

    @classmethod
    @service_operation
    @transaction.atomic
    def generate_settlement(cls,
                            supplier_id: int,
                            period_start: Any,
                            period_end: Any,
                            notes: str = "",
                            created_by_id: int = None) -> Dict[str, Any]:
        supplier_id = parse_id(supplier_id, "supplier_id")

        period_start = parse_datetime_value(period_start, "period_start")
        period_end = parse_datetime_value(period_end, "period_end", end_of_day=True)
        if period_start > period_end:
            raise ValidationError("Period start date must be before end date", "period_start")

        supplier = SupplierService.get_or_404(supplier_id, "Supplier")

        sales = list(
            cls.model.objects.select_for_update().filter(
                supplier=supplier,
                settlement__isnull=True,
                sold_at__gte=period_start,
                sold_at__lte=period_end,
            ).order_by("id")
        )
        if not sales:
            raise PreconditionError("No unsettled sales found for this period", "unsettled_sales")

        total_sales = round_money(sum_decimals(s.quantity * s.selling_price for s in sales))
        total_supplier_due = round_money(sum_decimals(s.quantity * s.supplier_cost for s in sales))

        settlement = ConsignmentSettlement.objects.create(
            settlement_number=generate_number("CS", ConsignmentSettlement, "settlement_number"),
            supplier=supplier,
            period_start=period_start,
            period_end=period_end,
            total_sales=total_sales,
            total_supplier_due=total_supplier_due,
            notes=notes or "",
            created_by_id=created_by_id,
        )

        sale_ids = [s.id for s in sales]
        linked = cls.model.objects.filter(
            id__in=sale_ids, settlement__isnull=True
        ).update(settlement=settlement)
        if linked != len(sale_ids):
            raise PreconditionError(
                "Some sales were settled by another request, try again", "settlement_conflict"
            )

        logger.info(
            "Settlement %s: supplier=%s sales=%s total=%s due=%s",
            settlement.settlement_number, supplier.id, linked, total_sales, total_supplier_due,
        )

        return success_response({
            "settlement": cls.serialize_settlement(settlement),
            "sales_count": linked,
            "total_sales": str(total_sales),
            "total_supplier_due": str(total_supplier_due),
        }, f"Settlement {settlement.settlement_number} generated")

    @classmethod
    @service_operation
    @transaction.atomic
    def mark_settlement_paid(cls, settlement_id: int) -> Dict[str, Any]:
        settlement_id = parse_id(settlement_id, "settlement_id")

        settlement = ConsignmentSettlement.objects.select_for_update().select_related(
            "supplier"
        ).filter(id=settlement_id).first()
        if not settlement:
            raise NotFoundError("Settlement", settlement_id)
        if settlement.settled_at:
            raise PreconditionError("Settlement is already marked as paid", "settlement_paid")

        now = timezone.now()
        settlement.settled_at = now
        settlement.save(update_fields=["settled_at", "updated_at"])
        sales_count = cls.model.objects.filter(settlement=settlement).update(settled_at=now)

        logger.info("Settlement %s paid (%s sales)", settlement.settlement_number, sales_count)

        return success_response({
            "settlement": cls.serialize_settlement(settlement),
            "sales_count": sales_count,
        }, f"Settlement {settlement.settlement_number} marked as paid")

    @classmethod
    @service_operation
    def get_settlement(cls, settlement_id: int) -> Dict[str, Any]:
        settlement_id = parse_id(settlement_id, "settlement_id")
        settlement = ConsignmentSettlement.objects.select_related(
            "supplier"
        ).filter(id=settlement_id).first()
        if not settlement:
            raise NotFoundError("Settlement", settlement_id)
        return success_response({"settlement": cls.serialize_settlement(settlement, include_sales=True)})

    @classmethod
    @service_operation
    def list_settlements(cls,
                         supplier_id: int = None,
                         settled: bool = None,
                         page: int = 1,
                         per_page: int = 50) -> Dict[str, Any]:
        queryset = ConsignmentSettlement.objects.select_related("supplier").annotate(
            sales_count=Count("sales")
        )
        supplier_id = parse_id(supplier_id, "supplier_id", required=False)

        if supplier_id:
            queryset = queryset.filter(supplier_id=supplier_id)

        if settled is not None:
            queryset = queryset.filter(settled_at__isnull=not settled)

        settlements, pagination = paginate_queryset(queryset.order_by("-created_at", "-id"), page, per_page)

        rows = []
        for settlement in settlements:
            row = cls.serialize_settlement(settlement)
            row["sales_count"] = settlement.sales_count
            rows.append(row)

        return success_response({
            "settlements": rows,
            "pagination": pagination,
        })

    # ==================== SUMMARIES ====================

    @classmethod
    @service_operation
    def get_supplier_settlement_summary(cls, supplier_id: int) -> Dict[str, Any]:
        supplier = SupplierService.get_or_404(supplier_id, "Supplier")

        settlements = list(ConsignmentSettlement.objects.filter(supplier=supplier))
        paid = [s for s in settlements if s.is_paid]
        pending = [s for s in settlements if not s.is_paid]

        unsettled = list(cls.model.objects.filter(supplier=supplier, settlement__isnull=True))

        return success_response({
            "supplier_id": supplier.id,
            "supplier_name": supplier.name,
            "total_settlements": len(settlements),
            "settled_settlements": len(paid),
            "pending_settlements": len(pending),
            "total_settled_amount": str(round_money(sum_decimals(s.total_supplier_due for s in paid))),
            "total_pending_amount": str(round_money(sum_decimals(s.total_supplier_due for s in pending))),
            "unsettled_sales_count": len(unsettled),
            "unsettled_sales_amount": str(round_money(
                sum_decimals(s.quantity * s.supplier_cost for s in unsettled)
            )),
        })

    @classmethod
    @service_operation
    def get_consignment_stock_by_supplier(cls, supplier_id: int) -> Dict[str, Any]:
        supplier = SupplierService.get_or_404(supplier_id, "Supplier")

        items = StockItem.objects.filter(
            supplier=supplier, is_consignment=True, is_active=True
        ).select_related("primary_unit").order_by("name")

        levels = StockLevel.objects.filter(
            stock_item__in=items
        ).filter(
            Q(quantity__gt=0) | Q(average_cost__gt=0)
        ).select_related("warehouse").order_by("warehouse_id")

        levels_by_item: Dict[int, list] = {}
        for level in levels:
            levels_by_item.setdefault(level.stock_item_id, []).append(level)

        rows = []
        grand_total = ZERO
        for item in items:
            item_levels = levels_by_item.get(item.id, [])
            total_quantity = sum_decimals(lvl.quantity for lvl in item_levels)
            total_value = round_money(sum_decimals(lvl.quantity * lvl.average_cost for lvl in item_levels))
            grand_total += total_value
            rows.append({
                "stock_item_id": item.id,
                "stock_item_name": item.name,
                "sku": item.sku,
                "unit": item.primary_unit.abbreviation,
                "stock_levels": [
                    {
                        "warehouse_id": lvl.warehouse_id,
                        "warehouse_name": lvl.warehouse.name,
                        "warehouse_type": lvl.warehouse.type,
                        "quantity": str(lvl.quantity),
                        "average_cost": str(lvl.average_cost),
                        "total_value": str(line_total(lvl.quantity, lvl.average_cost)),
                    }
                    for lvl in item_levels
                ],
                "total_quantity": str(total_quantity),
                "total_value": str(total_value),
            })

        return success_response({
            "supplier_id": supplier.id,
            "items": rows,
            "total_value": str(round_money(grand_total)),
        })
