from typing import Dict, Any
from django.db import transaction
from django.db.models import Q

from inventory.models import StockItem, StockCategory, StockUnit, Supplier
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset, service_operation,
    ValidationError, NotFoundError, PreconditionError, parse_id,
)


class StockCategoryService(BaseService):
    model = StockCategory

    @classmethod
    def serialize(cls, category: StockCategory) -> Dict[str, Any]:
        return {
            "id": category.id,
            "uuid": str(category.uuid),
            "name": category.name,
            "color": category.color,
            "is_active": category.is_active,
        }

    @classmethod
    @service_operation
    @transaction.atomic
    def create(cls, name: str, color: str = "") -> Dict[str, Any]:
        if not name:
            raise ValidationError("Category name is required", "name")
        if cls.model.objects.filter(name__iexact=name).exists():
            raise ValidationError(f"Category '{name}' already exists", "name")

        category = cls.model.objects.create(name=name, color=color)

        return success_response({
            "id": category.id,
            "category": cls.serialize(category),
        }, f"Category '{name}' created")


class StockItemService(BaseService):
    model = StockItem

    @classmethod
    def serialize(cls, item: StockItem) -> Dict[str, Any]:
        return {
            "id": item.id,
            "uuid": str(item.uuid),
            "name": item.name,
            "sku": item.sku,
            "category_id": item.category_id,
            "category_name": item.category.name,
            "primary_unit_id": item.primary_unit_id,
            "unit": item.primary_unit.abbreviation,
            "is_consignment": item.is_consignment,
            "supplier_id": item.supplier_id,
            "supplier_name": item.supplier.name if item.supplier else None,
            "is_active": item.is_active,
            "created_at": item.created_at.isoformat(),
        }

    @classmethod
    @service_operation
    def list(cls,
             page: int = 1,
             per_page: int = 20,
             search: str = None,
             category_id: int = None,
             supplier_id: int = None,
             consignment: bool = None,
             active_only: bool = True) -> Dict[str, Any]:
        queryset = cls.model.objects.select_related("category", "primary_unit", "supplier")
        category_id = parse_id(category_id, "category_id", required=False)
        supplier_id = parse_id(supplier_id, "supplier_id", required=False)

        if active_only:
            queryset = queryset.filter(is_active=True)

        if search:
            queryset = queryset.filter(Q(name__icontains=search) | Q(sku__icontains=search))

        if category_id:
            queryset = queryset.filter(category_id=category_id)

        if supplier_id:
            queryset = queryset.filter(supplier_id=supplier_id)

        if consignment is not None:
            queryset = queryset.filter(is_consignment=consignment)

        items, pagination = paginate_queryset(queryset.order_by("name"), page, per_page)

        return success_response({
            "items": [cls.serialize(i) for i in items],
            "pagination": pagination,
        })

    @classmethod
    @service_operation
    def get(cls, stock_item_id: int) -> Dict[str, Any]:
        stock_item_id = parse_id(stock_item_id, "stock_item_id")
        item = cls.model.objects.select_related(
            "category", "primary_unit", "supplier"
        ).filter(id=stock_item_id).first()
        if not item:
            raise NotFoundError("Stock item", stock_item_id)

        return success_response({"item": cls.serialize(item)})

    @classmethod
    @service_operation
    @transaction.atomic
    def create(cls,
               name: str,
               sku: str,
               category_id: int,
               primary_unit_id: int,
               is_consignment: bool = False,
               supplier_id: int = None) -> Dict[str, Any]:
        if not name:
            raise ValidationError("Item name is required", "name")
        if not sku:
            raise ValidationError("SKU is required", "sku")
        category_id = parse_id(category_id, "category_id")
        primary_unit_id = parse_id(primary_unit_id, "primary_unit_id")
        supplier_id = parse_id(supplier_id, "supplier_id", required=False)
        if is_consignment and not supplier_id:
            raise ValidationError("Consignment items require a supplier", "supplier_id")

        if cls.model.objects.filter(sku=sku).exists():
            raise ValidationError(f"SKU '{sku}' already exists", "sku")

        category = StockCategory.objects.filter(id=category_id).first()
        if not category:
            raise NotFoundError("Category", category_id)

        unit = StockUnit.objects.filter(id=primary_unit_id).first()
        if not unit:
            raise NotFoundError("Unit", primary_unit_id)

        supplier = None
        if supplier_id:
            supplier = Supplier.objects.filter(id=supplier_id).first()
            if not supplier:
                raise NotFoundError("Supplier", supplier_id)

        item = cls.model.objects.create(
            name=name,
            sku=sku,
            category=category,
            primary_unit=unit,
            is_consignment=is_consignment,
            supplier=supplier,
        )

        return success_response({
            "id": item.id,
            "item": cls.serialize(item),
        }, f"Stock item '{name}' created")

    @classmethod
    @service_operation
    @transaction.atomic
    def deactivate(cls, stock_item_id: int) -> Dict[str, Any]:
        item = cls.get_or_404(stock_item_id, "Stock item")
        if not item.is_active:
            raise PreconditionError("Stock item is already inactive")

        item.is_active = False
        item.save(update_fields=["is_active", "updated_at"])

        return success_response({"item": cls.serialize(item)}, "Stock item deactivated")
