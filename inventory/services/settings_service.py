from typing import Dict, Any
from django.db import transaction

from inventory.models import InventorySettings, StockParLevel
from inventory.services.base_service import (
    BaseService, success_response, service_operation,
    ValidationError, parse_decimal, round_quantity, QUANTITY_PLACES, HUNDRED,
)
from inventory.services.warehouse_service import WarehouseService
from inventory.services.stock_service import get_stock_item_or_raise


class InventorySettingsService(BaseService):
    model = InventorySettings

    @classmethod
    def load(cls) -> InventorySettings:
        return InventorySettings.load()

    @classmethod
    def get_target_food_cost_percentage(cls):
        return cls.load().target_food_cost_percentage

    @classmethod
    def get_all(cls) -> Dict[str, Any]:
        settings = cls.load()

        return {
            "target_food_cost_percentage": str(settings.target_food_cost_percentage),
            "expiry_warning_days": settings.expiry_warning_days,
            "expiry_critical_days": settings.expiry_critical_days,
        }

    @classmethod
    @service_operation
    @transaction.atomic
    def update(cls, **kwargs) -> Dict[str, Any]:
        settings = cls.load()
        valid_fields = {"target_food_cost_percentage", "expiry_warning_days", "expiry_critical_days"}
        unknown = sorted(set(kwargs) - valid_fields)
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(unknown)}", unknown[0])

        if "target_food_cost_percentage" in kwargs:
            target = parse_decimal(kwargs["target_food_cost_percentage"], "target_food_cost_percentage")
            if target <= 0 or target > HUNDRED:
                raise ValidationError(
                    "Target food cost percentage must be between 0 and 100",
                    "target_food_cost_percentage",
                )
            kwargs["target_food_cost_percentage"] = target

        for days_field in ["expiry_warning_days", "expiry_critical_days"]:
            if days_field in kwargs:
                try:
                    kwargs[days_field] = int(kwargs[days_field])
                except (TypeError, ValueError):
                    raise ValidationError("Invalid number of days", days_field)
                if kwargs[days_field] < 0:
                    raise ValidationError("Days cannot be negative", days_field)

        warning = kwargs.get("expiry_warning_days", settings.expiry_warning_days)
        critical = kwargs.get("expiry_critical_days", settings.expiry_critical_days)
        if critical > warning:
            raise ValidationError(
                "Critical expiry window cannot be longer than the warning window",
                "expiry_critical_days",
            )

        updated = []
        for field, value in kwargs.items():
            setattr(settings, field, value)
            updated.append(field)

        if updated:
            settings.save()

        return success_response({
            "updated_fields": updated,
            "settings": cls.get_all()
        }, f"Updated {len(updated)} setting(s)")


class StockParLevelService(BaseService):
    model = StockParLevel

    @classmethod
    def serialize(cls, par: StockParLevel) -> Dict[str, Any]:
        return {
            "id": par.id,
            "uuid": str(par.uuid),
            "stock_item_id": par.stock_item_id,
            "warehouse_id": par.warehouse_id,
            "par_level": str(par.par_level),
        }

    @classmethod
    @service_operation
    @transaction.atomic
    def set_par_level(cls, stock_item_id: int, warehouse_id: int, par_level: Any) -> Dict[str, Any]:
        par_level = round_quantity(parse_decimal(par_level, "par_level", places=QUANTITY_PLACES))
        if par_level < 0:
            raise ValidationError("Par level cannot be negative", "par_level")

        item = get_stock_item_or_raise(stock_item_id)
        warehouse_id = WarehouseService.get_active_or_raise(warehouse_id).id

        par, created = cls.model.objects.update_or_create(
            stock_item=item,
            warehouse_id=warehouse_id,
            defaults={"par_level": par_level},
        )

        return success_response({
            "par_level": cls.serialize(par),
            "created": created,
        }, f"Par level for {item.name} set to {par_level}")
