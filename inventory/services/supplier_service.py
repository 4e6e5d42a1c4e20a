from typing import Dict, Any
from django.db import transaction
from django.db.models import Q, Count

from inventory.models import Supplier
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset, service_operation,
    ValidationError, NotFoundError, PreconditionError,
    parse_id,
)


class SupplierService(BaseService):
    model = Supplier

    @classmethod
    def serialize(cls, supplier: Supplier) -> Dict[str, Any]:
        return {
            "id": supplier.id,
            "uuid": str(supplier.uuid),
            "code": supplier.code,
            "name": supplier.name,
            "contact_person": supplier.contact_person,
            "email": supplier.email,
            "phone": supplier.phone,
            "address": supplier.address,
            "is_active": supplier.is_active,
            "notes": supplier.notes,
            "created_at": supplier.created_at.isoformat(),
        }

    @classmethod
    def get_active_or_raise(cls, supplier_id: int, message: str = "Supplier is inactive") -> Supplier:
        supplier_id = parse_id(supplier_id, "supplier_id")
        supplier = cls.get_by_id(supplier_id)
        if not supplier:
            raise NotFoundError("Supplier", supplier_id)
        if not supplier.is_active:
            raise PreconditionError(message, "supplier_active")
        return supplier

    @classmethod
    def list(cls,
             page: int = 1,
             per_page: int = 20,
             search: str = None,
             active_only: bool = True,
             consignment_only: bool = False) -> Dict[str, Any]:
        queryset = cls.model.objects.all()

        if active_only:
            queryset = queryset.filter(is_active=True)

        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) |
                Q(code__icontains=search) |
                Q(contact_person__icontains=search)
            )

        if consignment_only:
            queryset = queryset.annotate(
                consignment_items=Count("stock_items", filter=Q(stock_items__is_consignment=True))
            ).filter(consignment_items__gt=0)

        suppliers, pagination = paginate_queryset(queryset.order_by("name"), page, per_page)

        return success_response({
            "suppliers": [cls.serialize(s) for s in suppliers],
            "pagination": pagination
        })

    @classmethod
    @service_operation
    def get(cls, supplier_id: int) -> Dict[str, Any]:
        supplier = cls.get_or_404(supplier_id, "Supplier")
        return success_response({"supplier": cls.serialize(supplier)})

    @classmethod
    @service_operation
    @transaction.atomic
    def create(cls,
               name: str,
               code: str = None,
               contact_person: str = "",
               email: str = "",
               phone: str = "",
               address: str = "",
               notes: str = "") -> Dict[str, Any]:
        if not name:
            raise ValidationError("Supplier name is required", "name")

        if not code:
            code = cls._generate_code(name)

        if cls.model.objects.filter(code=code).exists():
            raise ValidationError(f"Supplier code '{code}' already exists", "code")

        supplier = cls.model.objects.create(
            code=code,
            name=name,
            contact_person=contact_person,
            email=email,
            phone=phone,
            address=address,
            notes=notes,
        )

        return success_response({
            "id": supplier.id,
            "code": supplier.code,
            "supplier": cls.serialize(supplier)
        }, f"Supplier '{name}' created")

    @classmethod
    def _generate_code(cls, name: str) -> str:
        prefix = "".join(c for c in name.upper() if c.isalnum())[:3]
        if len(prefix) < 3:
            prefix = prefix.ljust(3, "X")

        count = cls.model.objects.filter(code__startswith=prefix).count()
        return f"{prefix}{count + 1:03d}"

    @classmethod
    @service_operation
    @transaction.atomic
    def set_active(cls, supplier_id: int, is_active: bool) -> Dict[str, Any]:
        supplier = cls.get_or_404(supplier_id, "Supplier")
        supplier.is_active = is_active
        supplier.save(update_fields=["is_active", "updated_at"])

        state = "activated" if is_active else "deactivated"
        return success_response({"supplier": cls.serialize(supplier)}, f"Supplier {state}")
