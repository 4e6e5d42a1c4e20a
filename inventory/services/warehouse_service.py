from typing import Dict, Any
from django.db import transaction
from django.db.models import Count, Sum, F

from inventory.models import Property, Warehouse, StockLevel
from inventory.services.base_service import (
    BaseService, success_response, service_operation,
    ValidationError, NotFoundError, PreconditionError,
    parse_id, round_money, ZERO,
)


class PropertyService(BaseService):
    model = Property

    @classmethod
    def serialize(cls, prop: Property) -> Dict[str, Any]:
        return {
            "id": prop.id,
            "uuid": str(prop.uuid),
            "name": prop.name,
            "code": prop.code,
            "is_active": prop.is_active,
        }

    @classmethod
    @service_operation
    @transaction.atomic
    def create(cls, name: str, code: str) -> Dict[str, Any]:
        if not name:
            raise ValidationError("Property name is required", "name")
        if not code:
            raise ValidationError("Property code is required", "code")
        if cls.model.objects.filter(code=code).exists():
            raise ValidationError(f"Property code '{code}' already exists", "code")

        prop = cls.model.objects.create(name=name, code=code)

        return success_response({
            "id": prop.id,
            "property": cls.serialize(prop),
        }, f"Property '{name}' created")


class WarehouseService(BaseService):
    model = Warehouse

    @classmethod
    def serialize(cls, warehouse: Warehouse, include_stats: bool = False) -> Dict[str, Any]:
        data = {
            "id": warehouse.id,
            "uuid": str(warehouse.uuid),
            "property_id": warehouse.property_id,
            "name": warehouse.name,
            "code": warehouse.code,
            "type": warehouse.type,
            "type_display": warehouse.get_type_display(),
            "is_active": warehouse.is_active,
            "created_at": warehouse.created_at.isoformat(),
        }

        if include_stats:
            stats = StockLevel.objects.filter(warehouse=warehouse, quantity__gt=0).aggregate(
                item_count=Count("id"),
                total_value=Sum(F("quantity") * F("average_cost")),
            )
            data["stats"] = {
                "item_count": stats["item_count"] or 0,
                "total_value": str(round_money(stats["total_value"] or ZERO)),
            }

        return data

    @classmethod
    def get_active_or_raise(cls, warehouse_id: int, message: str = "Warehouse is inactive") -> Warehouse:
        warehouse_id = parse_id(warehouse_id, "warehouse_id")
        warehouse = cls.get_by_id(warehouse_id)
        if not warehouse:
            raise NotFoundError("Warehouse", warehouse_id)
        if not warehouse.is_active:
            raise PreconditionError(message, "warehouse_active")
        return warehouse

    @classmethod
    @service_operation
    def list(cls,
             property_id: int = None,
             type_filter: str = None,
             include_inactive: bool = False,
             include_stats: bool = False) -> Dict[str, Any]:
        queryset = cls.model.objects.all()
        property_id = parse_id(property_id, "property_id", required=False)

        if property_id:
            queryset = queryset.filter(property_id=property_id)

        if type_filter:
            queryset = queryset.filter(type=type_filter)

        if not include_inactive:
            queryset = queryset.filter(is_active=True)

        warehouses = [
            cls.serialize(w, include_stats=include_stats)
            for w in queryset.order_by("name")
        ]

        return success_response({
            "warehouses": warehouses,
            "count": len(warehouses),
            "types": [
                {"value": c[0], "label": c[1]}
                for c in Warehouse.WarehouseType.choices
            ]
        })

    @classmethod
    @service_operation
    def get(cls, warehouse_id: int) -> Dict[str, Any]:
        warehouse = cls.get_or_404(warehouse_id, "Warehouse")
        return success_response({"warehouse": cls.serialize(warehouse, include_stats=True)})

    @classmethod
    @service_operation
    @transaction.atomic
    def create(cls,
               property_id: int,
               name: str,
               type: str = Warehouse.WarehouseType.MAIN_STOCKROOM,
               code: str = "") -> Dict[str, Any]:
        valid_types = [c[0] for c in Warehouse.WarehouseType.choices]
        if type not in valid_types:
            raise ValidationError(f"Invalid type. Valid: {valid_types}", "type")

        if not name:
            raise ValidationError("Warehouse name is required", "name")

        property_id = parse_id(property_id, "property_id")
        prop = Property.objects.filter(id=property_id).first()
        if not prop:
            raise NotFoundError("Property", property_id)

        if cls.model.objects.filter(property=prop, name__iexact=name).exists():
            raise ValidationError(f"Warehouse '{name}' already exists for this property", "name")

        warehouse = cls.model.objects.create(property=prop, name=name, type=type, code=code)

        return success_response({
            "id": warehouse.id,
            "warehouse": cls.serialize(warehouse),
        }, f"Warehouse '{name}' created")

    @classmethod
    @service_operation
    @transaction.atomic
    def deactivate(cls, warehouse_id: int) -> Dict[str, Any]:
        warehouse = cls.get_or_404(warehouse_id, "Warehouse")

        if not warehouse.is_active:
            raise PreconditionError("Warehouse is already inactive")

        warehouse.is_active = False
        warehouse.save(update_fields=["is_active", "updated_at"])

        return success_response({"warehouse": cls.serialize(warehouse)}, "Warehouse deactivated")

    @classmethod
    @service_operation
    @transaction.atomic
    def activate(cls, warehouse_id: int) -> Dict[str, Any]:
        warehouse = cls.get_or_404(warehouse_id, "Warehouse")

        warehouse.is_active = True
        warehouse.save(update_fields=["is_active", "updated_at"])

        return success_response({"warehouse": cls.serialize(warehouse)}, "Warehouse activated")
