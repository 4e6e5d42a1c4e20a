"""
Inventory Report Service - read-only projections over levels, ledger and sales

Every report takes an optional property filter. Amounts are computed in
Decimal and rendered as strings on the way out.
"""
import logging
from typing import Dict, Any, List, Optional
from datetime import timedelta
from django.db.models import Q, Sum, Count
from django.utils import timezone

from inventory.models import (
    StockLevel, StockMovement, StockParLevel, StockBatch, WasteRecord,
    Warehouse, Property,
)
from inventory.services.base_service import (
    success_response, paginate_queryset, service_operation,
    ValidationError, NotFoundError, parse_id,
    to_decimal, round_cost, round_money, line_total, percentage, safe_divide,
    sum_decimals, isoformat, parse_datetime_value, stringify_decimals, ZERO, HUNDRED,
)
from inventory.services.level_service import StockMovementService
from inventory.services.batch_service import StockBatchService
from inventory.services.recipe_service import RecipeService
from inventory.services.menu_service import MenuItemService
from inventory.services.settings_service import InventorySettingsService
from inventory.services.warehouse_service import WarehouseService

logger = logging.getLogger(__name__)

CRITICAL_DEFICIT = 75
WARNING_DEFICIT = 25
TOP_WASTED_ITEMS = 20


def _category_info(category) -> Dict[str, Any]:
    return {"id": category.id, "name": category.name, "color": category.color}


def _parse_period(start_date: Any, end_date: Any):
    start = parse_datetime_value(start_date, "start_date")
    end = parse_datetime_value(end_date, "end_date", end_of_day=True)
    if start > end:
        raise ValidationError("Start date must be before end date", "start_date")
    return start, end


class InventoryReportService:
    """Reports never write; each one is a plain read over the current tables."""

    @classmethod
    def _property_header(cls, property_id: Optional[int]) -> Dict[str, Any]:
        if not property_id:
            return {"property_id": None, "property_name": None}
        prop = Property.objects.filter(id=property_id).first()
        if not prop:
            raise NotFoundError("Property", property_id)
        return {"property_id": prop.id, "property_name": prop.name}

    # ==================== STOCK VALUATION ====================

    @classmethod
    @service_operation
    def stock_valuation(cls, property_id: int = None, warehouse_id: int = None) -> Dict[str, Any]:
        warehouse_id = parse_id(warehouse_id, "warehouse_id", required=False)
        property_id = parse_id(property_id, "property_id", required=False)
        header = cls._property_header(property_id)

        levels = StockLevel.objects.filter(
            warehouse__is_active=True,
            stock_item__is_active=True,
        ).select_related("stock_item__category", "stock_item__primary_unit", "warehouse")

        if property_id:
            levels = levels.filter(warehouse__property_id=property_id)
        if warehouse_id:
            levels = levels.filter(warehouse_id=warehouse_id)

        items = []
        by_warehouse: Dict[int, Dict[str, Any]] = {}
        by_category: Dict[int, Dict[str, Any]] = {}

        for level in levels:
            item = level.stock_item
            value = level.quantity * level.average_cost
            items.append({
                "stock_item_id": item.id,
                "stock_item_name": item.name,
                "stock_item_sku": item.sku,
                "category": _category_info(item.category),
                "warehouse_id": level.warehouse_id,
                "warehouse_name": level.warehouse.name,
                "quantity": level.quantity,
                "average_cost": level.average_cost,
                "total_value": round_money(value),
                "unit": item.primary_unit.abbreviation,
            })

            wh = by_warehouse.setdefault(level.warehouse_id, {
                "warehouse_id": level.warehouse_id,
                "warehouse_name": level.warehouse.name,
                "total_value": ZERO,
                "item_count": 0,
            })
            wh["total_value"] += value
            wh["item_count"] += 1

            cat = by_category.setdefault(item.category_id, {
                "category": _category_info(item.category),
                "total_value": ZERO,
                "item_count": 0,
            })
            cat["total_value"] += value
            cat["item_count"] += 1

        total_value = sum_decimals(row["total_value"] for row in by_warehouse.values())

        for row in list(by_warehouse.values()) + list(by_category.values()):
            row["total_value"] = round_money(row["total_value"])

        items.sort(key=lambda r: r["total_value"], reverse=True)

        return success_response({
            **header,
            "generated_at": isoformat(timezone.now()),
            "total_value": str(round_money(total_value)),
            "by_warehouse": stringify_decimals(
                sorted(by_warehouse.values(), key=lambda r: r["total_value"], reverse=True)
            ),
            "by_category": stringify_decimals(
                sorted(by_category.values(), key=lambda r: r["total_value"], reverse=True)
            ),
            "items": stringify_decimals(items),
        })

    # ==================== MOVEMENT HISTORY ====================

    @classmethod
    @service_operation
    def movement_history(cls,
                         start_date: Any,
                         end_date: Any,
                         property_id: int = None,
                         warehouse_id: int = None,
                         stock_item_id: int = None,
                         movement_type: str = None,
                         page: int = 1,
                         per_page: int = 50) -> Dict[str, Any]:
        property_id = parse_id(property_id, "property_id", required=False)
        start, end = _parse_period(start_date, end_date)

        queryset = StockMovementService.filter_queryset(
            stock_item_id=stock_item_id,
            warehouse_id=warehouse_id,
            movement_type=movement_type,
        ).filter(created_at__gte=start, created_at__lte=end)

        if property_id:
            queryset = queryset.filter(
                Q(source_warehouse__property_id=property_id) |
                Q(destination_warehouse__property_id=property_id)
            )

        by_type = [
            {
                "movement_type": row["movement_type"],
                "count": row["count"],
                "total_quantity": row["total_quantity"] or ZERO,
                "total_value": row["total_value"] or ZERO,
            }
            for row in queryset.order_by().values("movement_type").annotate(
                count=Count("id"),
                total_quantity=Sum("quantity"),
                total_value=Sum("total_cost"),
            )
        ]
        by_type.sort(key=lambda r: r["count"], reverse=True)

        movements, pagination = paginate_queryset(
            queryset.select_related("source_warehouse", "destination_warehouse", "batch")
            .order_by("-created_at", "-id"),
            page, per_page,
        )

        rows = []
        for m in movements:
            row = StockMovementService.serialize(m)
            row["source_warehouse_name"] = m.source_warehouse.name if m.source_warehouse else None
            row["destination_warehouse_name"] = m.destination_warehouse.name if m.destination_warehouse else None
            row["batch_number"] = m.batch.batch_number if m.batch else None
            rows.append(row)

        return success_response({
            "generated_at": isoformat(timezone.now()),
            "period": {"start": isoformat(start), "end": isoformat(end)},
            "total_movements": pagination["total_items"],
            "by_type": stringify_decimals(by_type),
            "movements": rows,
            "pagination": pagination,
        })

    # ==================== LOW STOCK ====================

    @staticmethod
    def alert_severity(current_quantity, deficit_percentage) -> str:
        """Empty or three quarters short is critical; a quarter short is a warning."""
        if current_quantity == 0 or deficit_percentage >= CRITICAL_DEFICIT:
            return "critical"
        if deficit_percentage >= WARNING_DEFICIT:
            return "warning"
        return "low"

    @classmethod
    @service_operation
    def low_stock_alerts(cls, property_id: int = None, warehouse_id: int = None) -> Dict[str, Any]:
        warehouse_id = parse_id(warehouse_id, "warehouse_id", required=False)
        property_id = parse_id(property_id, "property_id", required=False)
        header = cls._property_header(property_id)

        pars = StockParLevel.objects.filter(
            stock_item__is_active=True,
            warehouse__is_active=True,
        ).select_related("stock_item__category", "stock_item__primary_unit", "warehouse")

        if property_id:
            pars = pars.filter(warehouse__property_id=property_id)
        if warehouse_id:
            pars = pars.filter(warehouse_id=warehouse_id)

        pars = list(pars)
        quantities = {
            (item_id, wh_id): qty
            for item_id, wh_id, qty in StockLevel.objects.filter(
                stock_item_id__in={p.stock_item_id for p in pars},
                warehouse_id__in={p.warehouse_id for p in pars},
            ).values_list("stock_item_id", "warehouse_id", "quantity")
        }

        alerts = []
        for par in pars:
            current = quantities.get((par.stock_item_id, par.warehouse_id), ZERO)
            if current >= par.par_level:
                continue

            deficit = par.par_level - current
            deficit_pct = percentage(deficit, par.par_level) if par.par_level > 0 else HUNDRED
            alerts.append({
                "stock_item_id": par.stock_item_id,
                "stock_item_name": par.stock_item.name,
                "stock_item_sku": par.stock_item.sku,
                "category": _category_info(par.stock_item.category),
                "warehouse_id": par.warehouse_id,
                "warehouse_name": par.warehouse.name,
                "current_quantity": current,
                "par_level": par.par_level,
                "deficit": deficit,
                "deficit_percentage": deficit_pct,
                "severity": cls.alert_severity(current, deficit_pct),
                "unit": par.stock_item.primary_unit.abbreviation,
            })

        alerts.sort(key=lambda a: a["deficit_percentage"], reverse=True)

        return success_response({
            **header,
            "generated_at": isoformat(timezone.now()),
            "total_alerts": len(alerts),
            "critical_alerts": sum(1 for a in alerts if a["severity"] == "critical"),
            "warning_alerts": sum(1 for a in alerts if a["severity"] == "warning"),
            "alerts": stringify_decimals(alerts),
        })

    # ==================== BATCH EXPIRATION ====================

    @classmethod
    @service_operation
    def batch_expiration(cls, property_id: int = None, days_threshold: int = None) -> Dict[str, Any]:
        property_id = parse_id(property_id, "property_id", required=False)
        header = cls._property_header(property_id)
        settings = InventorySettingsService.load()

        if days_threshold is None:
            days_threshold = settings.expiry_warning_days
        try:
            days_threshold = int(days_threshold)
        except (TypeError, ValueError):
            raise ValidationError("Invalid number of days", "days_threshold")
        if days_threshold < 0:
            raise ValidationError("Days cannot be negative", "days_threshold")

        today = timezone.localdate()
        batches = StockBatch.objects.filter(
            warehouse__is_active=True,
            quantity__gt=0,
            expiration_date__isnull=False,
            expiration_date__lte=today + timedelta(days=days_threshold),
        ).select_related("stock_item__primary_unit", "warehouse").order_by("expiration_date", "id")

        if property_id:
            batches = batches.filter(warehouse__property_id=property_id)

        rows = []
        for batch in batches:
            days_left = StockBatchService.days_until_expiry(batch, today)
            if StockBatchService.is_expired(batch, today):
                status = "expired"
            elif days_left <= settings.expiry_critical_days:
                status = "critical"
            else:
                status = "warning"

            rows.append({
                "batch_id": batch.id,
                "batch_number": batch.batch_number,
                "stock_item_id": batch.stock_item_id,
                "stock_item_name": batch.stock_item.name,
                "stock_item_sku": batch.stock_item.sku,
                "warehouse_id": batch.warehouse_id,
                "warehouse_name": batch.warehouse.name,
                "quantity": batch.quantity,
                "unit_cost": batch.unit_cost,
                "total_value": line_total(batch.quantity, batch.unit_cost),
                "expiration_date": isoformat(batch.expiration_date),
                "days_until_expiration": days_left,
                "status": status,
                "unit": batch.stock_item.primary_unit.abbreviation,
            })

        return success_response({
            **header,
            "generated_at": isoformat(timezone.now()),
            "days_threshold": days_threshold,
            "critical_days": settings.expiry_critical_days,
            "total_batches": len(rows),
            "expired_batches": sum(1 for r in rows if r["status"] == "expired"),
            "critical_batches": sum(1 for r in rows if r["status"] == "critical"),
            "warning_batches": sum(1 for r in rows if r["status"] == "warning"),
            "total_at_risk_value": str(sum_decimals(r["total_value"] for r in rows)),
            "batches": stringify_decimals(rows),
        })

    # ==================== COGS ====================

    @classmethod
    @service_operation
    def cogs_report(cls, start_date: Any, end_date: Any, property_id: int = None) -> Dict[str, Any]:
        property_id = parse_id(property_id, "property_id", required=False)
        header = cls._property_header(property_id)
        start, end = _parse_period(start_date, end_date)

        summary = MenuItemService.summarize_cogs(start, end, property_id)
        items = summary["items"]

        by_category: Dict[str, Dict[str, Any]] = {}
        for row in items:
            row["gross_margin"] = percentage(row["gross_profit"], row["total_revenue"])
            row["average_unit_cost"] = round_cost(safe_divide(row["total_cogs"], row["quantity_sold"]))

            cat = by_category.setdefault(row["category"], {
                "category": row["category"],
                "total_revenue": ZERO,
                "total_cogs": ZERO,
                "item_count": 0,
            })
            cat["total_revenue"] += row["total_revenue"]
            cat["total_cogs"] += row["total_cogs"]
            cat["item_count"] += 1

        categories = []
        for cat in by_category.values():
            categories.append({
                **cat,
                "gross_profit": round_money(cat["total_revenue"] - cat["total_cogs"]),
                "food_cost_percentage": percentage(cat["total_cogs"], cat["total_revenue"]),
            })
        categories.sort(key=lambda r: r["total_revenue"], reverse=True)

        totals = summary["totals"]
        totals["overall_gross_margin"] = percentage(totals["total_gross_profit"], totals["total_revenue"])

        return success_response({
            **header,
            "generated_at": isoformat(timezone.now()),
            "period": summary["period"],
            "totals": stringify_decimals(totals),
            "by_category": stringify_decimals(categories),
            "items": stringify_decimals(items),
        })

    # ==================== RECIPE PROFITABILITY ====================

    @classmethod
    @service_operation
    def recipe_profitability(cls, warehouse_id: int, property_id: int = None, target: Any = None) -> Dict[str, Any]:
        """
        Cost every active recipe at one warehouse and set it against the
        price of its menu item. Recipes with no menu item sort last.
        """
        property_id = parse_id(property_id, "property_id", required=False)
        header = cls._property_header(property_id)
        warehouse = WarehouseService.get_or_404(warehouse_id, "Warehouse")
        target = MenuItemService.get_target(target)

        recipes = RecipeService._recipe_queryset().filter(is_active=True).prefetch_related("menu_items")

        rows: List[Dict[str, Any]] = []
        for recipe in recipes:
            cost = RecipeService.compute_cost(recipe, warehouse.id)
            menu_items = [m for m in recipe.menu_items.all()
                          if not property_id or m.property_id == property_id]
            menu_item = menu_items[0] if menu_items else None

            selling_price = to_decimal(menu_item.selling_price) if menu_item else None
            gross_profit = None
            food_cost = None
            above_target = False
            if selling_price is not None:
                raw = safe_divide(cost["cost_per_portion"] * HUNDRED, selling_price)
                gross_profit = round_money(selling_price - cost["cost_per_portion"])
                food_cost = round_money(raw)
                above_target = raw > target

            rows.append({
                "recipe_id": recipe.id,
                "recipe_name": recipe.name,
                "menu_item_id": menu_item.id if menu_item else None,
                "menu_item_name": menu_item.name if menu_item else None,
                "selling_price": selling_price,
                "recipe_cost": cost["total_cost"],
                "cost_per_portion": cost["cost_per_portion"],
                "yield_quantity": recipe.yield_quantity,
                "gross_profit": gross_profit,
                "food_cost_percentage": food_cost,
                "is_above_target_cost": above_target,
                "ingredient_count": len(cost["ingredient_costs"]),
            })

        rows.sort(key=lambda r: (r["food_cost_percentage"] is None, -(r["food_cost_percentage"] or ZERO)))

        priced = [r["food_cost_percentage"] for r in rows if r["food_cost_percentage"] is not None]

        return success_response({
            **header,
            "generated_at": isoformat(timezone.now()),
            "warehouse_id": warehouse.id,
            "warehouse_name": warehouse.name,
            "target_food_cost_percentage": str(target),
            "total_recipes": len(rows),
            "recipes_above_target": sum(1 for r in rows if r["is_above_target_cost"]),
            "average_food_cost_percentage": str(round_money(safe_divide(sum_decimals(priced), len(priced)))),
            "recipes": stringify_decimals(rows),
        })

    # ==================== WASTE ANALYSIS ====================

    @staticmethod
    def waste_trends(waste_records, movements, start, end) -> List[Dict[str, Any]]:
        """Weekly buckets counted from the period start."""
        week = timedelta(days=7)
        weeks = max(1, -(-(end - start) // week))
        buckets = [{"waste": ZERO, "consumption": ZERO} for _ in range(weeks)]

        for record in waste_records:
            index = min((record.created_at - start) // week, weeks - 1)
            buckets[index]["waste"] += record.total_cost
        for movement in movements:
            index = min((movement.created_at - start) // week, weeks - 1)
            buckets[index]["consumption"] += movement.total_cost

        trends = []
        for i, bucket in enumerate(buckets):
            week_start = start + i * week
            trends.append({
                "period": f"Week {i + 1} ({week_start.date().isoformat()})",
                "waste_cost": round_money(bucket["waste"]),
                "waste_percentage": percentage(bucket["waste"], bucket["consumption"]),
            })
        return trends

    @classmethod
    @service_operation
    def waste_analysis(cls, start_date: Any, end_date: Any, property_id: int = None) -> Dict[str, Any]:
        """
        Waste cost against the cost of everything that left stock through
        consumption or waste in the same warehouses and period.
        """
        property_id = parse_id(property_id, "property_id", required=False)
        header = cls._property_header(property_id)
        start, end = _parse_period(start_date, end_date)

        warehouses = Warehouse.objects.filter(is_active=True)
        if property_id:
            warehouses = warehouses.filter(property_id=property_id)
        warehouses = list(warehouses)
        warehouse_ids = [w.id for w in warehouses]

        records = list(
            WasteRecord.objects.filter(
                warehouse_id__in=warehouse_ids,
                created_at__gte=start,
                created_at__lte=end,
            ).select_related("stock_item__category", "stock_item__primary_unit")
        )
        movements = list(
            StockMovement.objects.filter(
                source_warehouse_id__in=warehouse_ids,
                movement_type__in=[StockMovement.MovementType.CONSUMPTION, StockMovement.MovementType.WASTE],
                created_at__gte=start,
                created_at__lte=end,
            )
        )

        total_waste = sum_decimals(r.total_cost for r in records)
        total_consumption = sum_decimals(m.total_cost for m in movements)

        by_warehouse = {w.id: {"warehouse_id": w.id, "warehouse_name": w.name,
                               "waste_cost": ZERO, "consumption_cost": ZERO} for w in warehouses}
        for record in records:
            by_warehouse[record.warehouse_id]["waste_cost"] += record.total_cost
        for movement in movements:
            by_warehouse[movement.source_warehouse_id]["consumption_cost"] += movement.total_cost

        warehouse_rows = [
            {
                "warehouse_id": row["warehouse_id"],
                "warehouse_name": row["warehouse_name"],
                "waste_cost": round_money(row["waste_cost"]),
                "waste_percentage": percentage(row["waste_cost"], row["consumption_cost"]),
            }
            for row in by_warehouse.values()
        ]
        warehouse_rows.sort(key=lambda r: r["waste_cost"], reverse=True)

        by_type: Dict[str, Dict[str, Any]] = {}
        by_item: Dict[int, Dict[str, Any]] = {}
        for record in records:
            t = by_type.setdefault(record.waste_type, {
                "waste_type": record.waste_type, "total_cost": ZERO, "total_quantity": ZERO,
            })
            t["total_cost"] += record.total_cost
            t["total_quantity"] += record.quantity

            item = by_item.setdefault(record.stock_item_id, {
                "stock_item_id": record.stock_item_id,
                "stock_item_name": record.stock_item.name,
                "stock_item_sku": record.stock_item.sku,
                "category": _category_info(record.stock_item.category),
                "unit": record.stock_item.primary_unit.abbreviation,
                "total_quantity_wasted": ZERO,
                "total_cost_wasted": ZERO,
                "by_type": {},
            })
            item["total_quantity_wasted"] += record.quantity
            item["total_cost_wasted"] += record.total_cost
            entry = item["by_type"].setdefault(record.waste_type, {
                "waste_type": record.waste_type, "quantity": ZERO, "cost": ZERO,
            })
            entry["quantity"] += record.quantity
            entry["cost"] += record.total_cost

        type_rows = [{**t, "percentage": percentage(t["total_cost"], total_waste)} for t in by_type.values()]
        type_rows.sort(key=lambda r: r["total_cost"], reverse=True)

        top_items = []
        for item in sorted(by_item.values(), key=lambda r: r["total_cost_wasted"], reverse=True)[:TOP_WASTED_ITEMS]:
            top_items.append({
                **item,
                "waste_percentage": percentage(item["total_cost_wasted"], total_waste),
                "by_type": list(item["by_type"].values()),
            })

        return success_response({
            **header,
            "generated_at": isoformat(timezone.now()),
            "period": {"start": isoformat(start), "end": isoformat(end)},
            "total_waste_cost": str(round_money(total_waste)),
            "total_consumption_cost": str(round_money(total_consumption)),
            "overall_waste_percentage": str(percentage(total_waste, total_consumption)),
            "by_warehouse": stringify_decimals(warehouse_rows),
            "by_type": stringify_decimals(type_rows),
            "top_wasted_items": stringify_decimals(top_items),
            "trends": stringify_decimals(cls.waste_trends(records, movements, start, end)),
        })
