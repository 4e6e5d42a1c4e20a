from typing import Dict, Any, Tuple
from decimal import Decimal
from django.db import transaction

from inventory.models import StockUnit
from inventory.services.base_service import (
    BaseService, success_response, service_operation,
    ValidationError, NotFoundError, PreconditionError,
    to_decimal, parse_decimal, parse_id, round_decimal, COST_PLACES,
)


class StockUnitService(BaseService):
    model = StockUnit

    @classmethod
    def serialize(cls, unit: StockUnit) -> Dict[str, Any]:
        return {
            "id": unit.id,
            "uuid": str(unit.uuid),
            "name": unit.name,
            "abbreviation": unit.abbreviation,
            "unit_type": unit.unit_type,
            "unit_type_display": unit.get_unit_type_display(),
            "is_base_unit": unit.is_base_unit,
            "conversion_factor": str(unit.conversion_factor),
        }

    @classmethod
    def list(cls, type_filter: str = None) -> Dict[str, Any]:
        queryset = cls.model.objects.all()
        if type_filter:
            queryset = queryset.filter(unit_type=type_filter)

        units = [cls.serialize(u) for u in queryset.order_by("unit_type", "name")]
        return success_response({"units": units, "count": len(units)})

    @classmethod
    @service_operation
    @transaction.atomic
    def create(cls,
               name: str,
               abbreviation: str,
               unit_type: str,
               is_base_unit: bool = False,
               conversion_factor: Decimal = Decimal("1")) -> Dict[str, Any]:
        valid_types = [c[0] for c in StockUnit.UnitType.choices]
        if unit_type not in valid_types:
            raise ValidationError(f"Invalid unit type. Valid: {valid_types}", "unit_type")

        if cls.model.objects.filter(abbreviation=abbreviation).exists():
            raise ValidationError(f"Unit '{abbreviation}' already exists", "abbreviation")

        conversion_factor = Decimal("1") if is_base_unit else parse_decimal(conversion_factor, "conversion_factor")
        if conversion_factor <= 0:
            raise ValidationError("Conversion factor must be greater than zero", "conversion_factor")

        unit = cls.model.objects.create(
            name=name,
            abbreviation=abbreviation,
            unit_type=unit_type,
            is_base_unit=is_base_unit,
            conversion_factor=conversion_factor,
        )

        return success_response({
            "id": unit.id,
            "unit": cls.serialize(unit),
        }, f"Unit '{name}' created")

    @classmethod
    def convert(cls,
                quantity: Decimal,
                from_unit_id: int,
                to_unit_id: int) -> Tuple[Decimal, Dict[str, Any]]:
        """
        Convert through the shared base unit. Returns the converted quantity
        (4 places) and a details dict for display.
        """
        quantity = to_decimal(quantity)
        if from_unit_id == to_unit_id:
            return quantity, {"from_quantity": str(quantity), "to_quantity": str(quantity)}

        from_unit = cls.get_by_id(from_unit_id)
        to_unit = cls.get_by_id(to_unit_id)

        if not from_unit:
            raise NotFoundError("From unit", from_unit_id)
        if not to_unit:
            raise NotFoundError("To unit", to_unit_id)

        if from_unit.unit_type != to_unit.unit_type:
            raise PreconditionError(
                f"Cannot convert between different types: {from_unit.unit_type} -> {to_unit.unit_type}",
                "unit_type_mismatch",
            )

        base_quantity = quantity * from_unit.conversion_factor
        result = round_decimal(base_quantity / to_unit.conversion_factor, 4)

        details = {
            "from_quantity": str(quantity),
            "from_unit": from_unit.abbreviation,
            "to_quantity": str(result),
            "to_unit": to_unit.abbreviation,
            "base_quantity": str(round_decimal(base_quantity, 4)),
        }

        return result, details

    @classmethod
    @service_operation
    def convert_quantity(cls, quantity: Any, from_unit_id: int, to_unit_id: int) -> Dict[str, Any]:
        result, details = cls.convert(
            parse_decimal(quantity, "quantity", places=COST_PLACES),
            parse_id(from_unit_id, "from_unit_id"),
            parse_id(to_unit_id, "to_unit_id"),
        )
        return success_response({"result": str(result), **details})
