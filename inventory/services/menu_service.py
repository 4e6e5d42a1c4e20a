import logging
from typing import Dict, Any
from decimal import Decimal
from django.db import transaction
from django.db.models import Q, Sum, Avg
from django.utils import timezone

from inventory.models import MenuItem, COGSRecord, Recipe, Property
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset, service_operation,
    ValidationError, NotFoundError, PreconditionError,
    to_decimal, parse_decimal, parse_id, check_limit, round_cost, round_money, line_total, percentage,
    QUANTITY_PLACES, MONEY_PLACES,
    safe_divide, sum_decimals, isoformat, parse_datetime_value, stringify_decimals, ZERO, HUNDRED,
)
from inventory.services.recipe_service import RecipeService
from inventory.services.settings_service import InventorySettingsService
from inventory.services.warehouse_service import WarehouseService

logger = logging.getLogger(__name__)


class MenuItemService(BaseService):
    model = MenuItem

    @classmethod
    def serialize(cls, item: MenuItem) -> Dict[str, Any]:
        return {
            "id": item.id,
            "uuid": str(item.uuid),
            "name": item.name,
            "description": item.description,
            "property_id": item.property_id,
            "category": item.category,
            "category_display": item.get_category_display(),
            "selling_price": str(item.selling_price),
            "recipe_id": item.recipe_id,
            "recipe_name": item.recipe.name if item.recipe else None,
            "is_available": item.is_available,
            "unavailable_reason": item.unavailable_reason or None,
            "created_at": isoformat(item.created_at),
        }

    @classmethod
    def serialize_cogs(cls, record: COGSRecord) -> Dict[str, Any]:
        return {
            "id": record.id,
            "uuid": str(record.uuid),
            "menu_item_id": record.menu_item_id,
            "recipe_id": record.recipe_id,
            "warehouse_id": record.warehouse_id,
            "quantity": record.quantity,
            "unit_cost": str(record.unit_cost),
            "total_cost": str(record.total_cost),
            "selling_price": str(record.selling_price),
            "revenue": str(line_total(record.quantity, record.selling_price)),
            "sold_at": isoformat(record.sold_at),
            "reference_type": record.reference_type,
            "reference_id": record.reference_id,
        }

    @classmethod
    def _get_item(cls, menu_item_id: int) -> MenuItem:
        menu_item_id = parse_id(menu_item_id, "menu_item_id")
        item = cls.model.objects.select_related("recipe").filter(id=menu_item_id).first()
        if not item:
            raise NotFoundError("Menu item", menu_item_id)
        return item

    @classmethod
    def get_target(cls, target: Any = None) -> Decimal:
        if target is None or target == "":
            return to_decimal(InventorySettingsService.get_target_food_cost_percentage())
        return parse_decimal(target, "target")

    # ==================== CRUD ====================

    @classmethod
    @service_operation
    @transaction.atomic
    def create(cls,
               name: str,
               category: str,
               selling_price: Any,
               recipe_id: int = None,
               property_id: int = None,
               description: str = "") -> Dict[str, Any]:
        if not name or not name.strip():
            raise ValidationError("Menu item name is required", "name")

        valid_categories = [c[0] for c in MenuItem.Category.choices]
        if not category:
            raise ValidationError("Menu item category is required", "category")
        if category not in valid_categories:
            raise ValidationError(
                f"Invalid category. Must be one of: {', '.join(valid_categories)}", "category"
            )

        selling_price = round_money(parse_decimal(selling_price, "selling_price"))
        check_limit(selling_price, "selling_price", MONEY_PLACES, digits=12)
        if selling_price < 0:
            raise ValidationError("Selling price cannot be negative", "selling_price")

        property_id = parse_id(property_id, "property_id", required=False)
        recipe_id = parse_id(recipe_id, "recipe_id", required=False)
        if property_id and not Property.objects.filter(id=property_id).exists():
            raise NotFoundError("Property", property_id)

        recipe = None
        if recipe_id:
            recipe = Recipe.objects.filter(id=recipe_id).first()
            if not recipe:
                raise NotFoundError("Recipe", recipe_id)
            if not recipe.is_active:
                raise PreconditionError("Cannot associate with an inactive recipe", "recipe_active")

        item = cls.model.objects.create(
            name=name.strip(),
            description=(description or "").strip(),
            category=category,
            selling_price=selling_price,
            recipe=recipe,
            property_id=property_id,
        )

        return success_response({
            "id": item.id,
            "menu_item": cls.serialize(item),
        }, f"Menu item '{item.name}' created")

    @classmethod
    @service_operation
    def get(cls, menu_item_id: int) -> Dict[str, Any]:
        return success_response({"menu_item": cls.serialize(cls._get_item(menu_item_id))})

    @classmethod
    @service_operation
    def list(cls,
             page: int = 1,
             per_page: int = 50,
             property_id: int = None,
             category: str = None,
             available: bool = None,
             search: str = None) -> Dict[str, Any]:
        queryset = cls.model.objects.select_related("recipe")
        property_id = parse_id(property_id, "property_id", required=False)

        if property_id:
            queryset = queryset.filter(property_id=property_id)

        if category:
            queryset = queryset.filter(category=category)

        if available is not None:
            queryset = queryset.filter(is_available=available)

        if search:
            queryset = queryset.filter(Q(name__icontains=search) | Q(description__icontains=search))

        items, pagination = paginate_queryset(queryset.order_by("category", "name"), page, per_page)

        return success_response({
            "menu_items": [cls.serialize(i) for i in items],
            "pagination": pagination,
        })

    @classmethod
    @service_operation
    @transaction.atomic
    def set_unavailable(cls, menu_item_id: int, reason: str) -> Dict[str, Any]:
        if not reason or not reason.strip():
            raise ValidationError(
                "Unavailable reason is required when marking item unavailable", "reason"
            )

        item = cls._get_item(menu_item_id)
        item.is_available = False
        item.unavailable_reason = reason.strip()
        item.save(update_fields=["is_available", "unavailable_reason", "updated_at"])

        return success_response({"menu_item": cls.serialize(item)}, f"'{item.name}' marked unavailable")

    @classmethod
    @service_operation
    @transaction.atomic
    def set_available(cls, menu_item_id: int) -> Dict[str, Any]:
        item = cls._get_item(menu_item_id)
        item.is_available = True
        item.unavailable_reason = ""
        item.save(update_fields=["is_available", "unavailable_reason", "updated_at"])

        return success_response({"menu_item": cls.serialize(item)}, f"'{item.name}' marked available")

    # ==================== COSTING ====================

    @classmethod
    def compute_food_cost(cls, item: MenuItem, warehouse_id: int, target: Decimal) -> Dict[str, Any]:
        cost = RecipeService.compute_cost(RecipeService.load(item.recipe_id), warehouse_id)
        cost_per_portion = cost["cost_per_portion"]
        selling_price = to_decimal(item.selling_price)

        raw_percentage = safe_divide(cost_per_portion * HUNDRED, selling_price)
        food_cost_percentage = round_money(raw_percentage)

        return {
            "menu_item_id": item.id,
            "menu_item_name": item.name,
            "category": item.category,
            "selling_price": selling_price,
            "recipe_cost": cost["total_cost"],
            "cost_per_portion": cost_per_portion,
            "gross_profit": round_money(selling_price - cost_per_portion),
            "food_cost_percentage": food_cost_percentage,
            "target_percentage": target,
            "is_above_target_cost": raw_percentage > target,
        }

    @classmethod
    @service_operation
    def calculate_food_cost_percentage(cls, menu_item_id: int, warehouse_id: int, target: Any = None) -> Dict[str, Any]:
        """Food cost % = cost per portion / selling price x 100. A zero price gives 0%."""
        target = cls.get_target(target)
        item = cls._get_item(menu_item_id)
        if not item.recipe_id:
            raise PreconditionError("Menu item has no associated recipe", "menu_recipe")
        warehouse_id = WarehouseService.get_or_404(warehouse_id, "Warehouse").id

        result = cls.compute_food_cost(item, warehouse_id, target)
        return success_response({
            "profitability": stringify_decimals(result)
        })

    @classmethod
    @service_operation
    @transaction.atomic
    def record_sale(cls,
                    menu_item_id: int,
                    warehouse_id: int,
                    quantity: Any,
                    sold_at: Any = None,
                    reference_type: str = "",
                    reference_id: Any = "",
                    created_by_id: int = None) -> Dict[str, Any]:
        """
        Freeze the cost of a sale into a COGS record using the recipe cost
        at this moment. Later cost or price changes leave the record as is.
        """
        quantity = parse_decimal(quantity, "quantity", places=QUANTITY_PLACES)
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero", "quantity")
        if quantity != quantity.to_integral_value():
            raise ValidationError("Quantity must be a whole number of portions", "quantity")
        quantity = int(quantity)

        item = cls._get_item(menu_item_id)
        if not item.recipe_id:
            raise PreconditionError("Menu item has no associated recipe for COGS tracking", "menu_recipe")
        if not item.is_available:
            raise PreconditionError("Cannot record sale for unavailable menu item", "menu_available")

        warehouse = WarehouseService.get_or_404(warehouse_id, "Warehouse")

        cost = RecipeService.compute_cost(RecipeService.load(item.recipe_id), warehouse.id)
        unit_cost = round_cost(cost["cost_per_portion"])

        record = COGSRecord.objects.create(
            menu_item=item,
            recipe_id=item.recipe_id,
            warehouse=warehouse,
            quantity=quantity,
            unit_cost=unit_cost,
            total_cost=line_total(quantity, unit_cost),
            selling_price=item.selling_price,
            sold_at=parse_datetime_value(sold_at, "sold_at") if sold_at else timezone.now(),
            reference_type=reference_type or "",
            reference_id=str(reference_id) if reference_id not in (None, "") else "",
            created_by_id=created_by_id,
        )

        logger.info(
            "COGS recorded: menu_item=%s warehouse=%s qty=%s unit_cost=%s",
            item.id, warehouse.id, quantity, unit_cost,
        )

        return success_response({
            "cogs_record": cls.serialize_cogs(record),
            "total_cost": str(record.total_cost),
        }, f"Sale of {quantity} x {item.name} recorded")

    # ==================== AVAILABILITY ====================

    @classmethod
    def compute_availability(cls, item: MenuItem, warehouse_id: int) -> Dict[str, Any]:
        if not item.recipe_id:
            return {
                "menu_item_id": item.id,
                "is_available": item.is_available,
                "portions_available": None if item.is_available else 0,
                "reason": None if item.is_available else (item.unavailable_reason or "Manually set unavailable"),
            }

        availability = RecipeService.compute_availability(RecipeService.load(item.recipe_id), warehouse_id)
        reason = None
        if not availability["is_available"]:
            missing = ", ".join(i["stock_item_name"] for i in availability["unavailable_ingredients"])
            reason = f"Insufficient stock for: {missing}"

        return {
            "menu_item_id": item.id,
            "is_available": availability["is_available"],
            "portions_available": availability["portions_available"],
            "reason": reason,
        }

    @classmethod
    @service_operation
    def check_availability(cls, menu_item_id: int, warehouse_id: int) -> Dict[str, Any]:
        item = cls._get_item(menu_item_id)
        warehouse_id = WarehouseService.get_or_404(warehouse_id, "Warehouse").id
        return success_response(cls.compute_availability(item, warehouse_id))

    @classmethod
    @service_operation
    @transaction.atomic
    def update_availability_from_stock(cls, menu_item_id: int, warehouse_id: int) -> Dict[str, Any]:
        item = cls._get_item(menu_item_id)
        warehouse_id = WarehouseService.get_or_404(warehouse_id, "Warehouse").id

        availability = cls.compute_availability(item, warehouse_id)
        item.is_available = availability["is_available"]
        item.unavailable_reason = "" if item.is_available else (availability["reason"] or "Out of stock")
        item.save(update_fields=["is_available", "unavailable_reason", "updated_at"])

        return success_response(availability, f"Availability of '{item.name}' updated")

    # ==================== REPORTING ====================

    @classmethod
    @service_operation
    def get_profitability(cls, warehouse_id: int, property_id: int = None, target: Any = None) -> Dict[str, Any]:
        """Menu items with recipes, highest food cost first."""
        target = cls.get_target(target)
        property_id = parse_id(property_id, "property_id", required=False)
        warehouse_id = WarehouseService.get_or_404(warehouse_id, "Warehouse").id

        items = cls.model.objects.filter(recipe__isnull=False).select_related("recipe")
        if property_id:
            items = items.filter(property_id=property_id)

        rows = [cls.compute_food_cost(item, warehouse_id, target) for item in items]
        rows.sort(key=lambda r: r["food_cost_percentage"], reverse=True)

        return success_response({
            "items": stringify_decimals(rows),
            "count": len(rows),
            "above_target_count": sum(1 for r in rows if r["is_above_target_cost"]),
            "target_percentage": str(target),
        })

    @classmethod
    @service_operation
    def get_cogs_history(cls,
                         menu_item_id: int,
                         date_from: Any = None,
                         date_to: Any = None,
                         page: int = 1,
                         per_page: int = 50) -> Dict[str, Any]:
        item = cls._get_item(menu_item_id)
        queryset = COGSRecord.objects.filter(menu_item=item)

        if date_from:
            queryset = queryset.filter(sold_at__gte=parse_datetime_value(date_from, "date_from"))

        if date_to:
            queryset = queryset.filter(sold_at__lte=parse_datetime_value(date_to, "date_to", end_of_day=True))

        aggregates = queryset.aggregate(
            total_quantity=Sum("quantity"),
            total_cost=Sum("total_cost"),
            average_unit_cost=Avg("unit_cost"),
        )
        records, pagination = paginate_queryset(queryset.order_by("-sold_at", "-id"), page, per_page)

        return success_response({
            "records": [cls.serialize_cogs(r) for r in records],
            "pagination": pagination,
            "summary": {
                "total_quantity_sold": aggregates["total_quantity"] or 0,
                "total_cogs": str(round_money(aggregates["total_cost"] or ZERO)),
                "average_unit_cost": str(round_cost(aggregates["average_unit_cost"] or ZERO)),
            },
        })

    @classmethod
    def summarize_cogs(cls, start, end, property_id: int = None, target: Decimal = None) -> Dict[str, Any]:
        """
        Revenue is taken from the price frozen on each record, not the
        current menu price.
        """
        target = target if target is not None else cls.get_target()
        records = COGSRecord.objects.filter(sold_at__gte=start, sold_at__lte=end).select_related("menu_item")
        if property_id:
            records = records.filter(menu_item__property_id=property_id)

        by_item: Dict[int, Dict[str, Any]] = {}
        for record in records:
            row = by_item.setdefault(record.menu_item_id, {
                "menu_item_id": record.menu_item_id,
                "menu_item_name": record.menu_item.name,
                "category": record.menu_item.category,
                "quantity_sold": 0,
                "total_revenue": ZERO,
                "total_cogs": ZERO,
            })
            row["quantity_sold"] += record.quantity
            row["total_revenue"] += record.quantity * record.selling_price
            row["total_cogs"] += record.total_cost

        items = []
        for row in by_item.values():
            food_cost = percentage(row["total_cogs"], row["total_revenue"])
            items.append({
                **row,
                "total_revenue": round_money(row["total_revenue"]),
                "total_cogs": round_money(row["total_cogs"]),
                "gross_profit": round_money(row["total_revenue"] - row["total_cogs"]),
                "food_cost_percentage": food_cost,
                "is_above_target_cost": food_cost > target,
            })
        items.sort(key=lambda r: r["total_revenue"], reverse=True)

        total_revenue = sum_decimals(r["total_revenue"] for r in items)
        total_cogs = sum_decimals(r["total_cogs"] for r in items)

        return {
            "items": items,
            "totals": {
                "total_quantity_sold": sum(r["quantity_sold"] for r in items),
                "total_revenue": round_money(total_revenue),
                "total_cogs": round_money(total_cogs),
                "total_gross_profit": round_money(total_revenue - total_cogs),
                "overall_food_cost_percentage": percentage(total_cogs, total_revenue),
            },
            "period": {"start": isoformat(start), "end": isoformat(end)},
        }

    @classmethod
    @service_operation
    def get_cogs_summary(cls, start_date: Any, end_date: Any, property_id: int = None) -> Dict[str, Any]:
        start = parse_datetime_value(start_date, "start_date")
        end = parse_datetime_value(end_date, "end_date", end_of_day=True)
        if start > end:
            raise ValidationError("Start date must be before end date", "start_date")

        summary = cls.summarize_cogs(start, end, property_id)
        return success_response({
            "items": stringify_decimals(summary["items"]),
            "totals": stringify_decimals(summary["totals"]),
            "period": summary["period"],
        })
