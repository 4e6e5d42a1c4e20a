import functools
import logging
from typing import Dict, Any, Optional, List, Tuple, Iterable
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from datetime import date, datetime, time
from django.db import DatabaseError
from django.db.models import Model
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

logger = logging.getLogger(__name__)

QUANTITY_PLACES = 3
COST_PLACES = 4
MONEY_PLACES = 2

MAX_DIGITS = 15

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class ServiceError(Exception):
    def __init__(self, message: str, code: str = "ERROR", details: Dict = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)


class ValidationError(ServiceError):
    def __init__(self, message: str, field: str = None, details: Dict = None):
        details = dict(details or {})
        if field:
            details.setdefault("field", field)
        super().__init__(message, "VALIDATION_ERROR", details)
        self.field = field


class NotFoundError(ServiceError):
    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            f"{resource} not found: {identifier}",
            "NOT_FOUND",
            {"resource": resource, "identifier": str(identifier)}
        )


class PreconditionError(ServiceError):
    def __init__(self, message: str, rule: str = None):
        super().__init__(message, "PRECONDITION_FAILED", {"rule": rule} if rule else {})
        self.rule = rule


class InsufficientStockError(ServiceError):
    def __init__(self, item_name: str, required: Decimal, available: Decimal, message: str = None):
        super().__init__(
            message or f"Insufficient stock for {item_name}: required {required}, available {available}",
            "INSUFFICIENT_STOCK",
            {"item": item_name, "required": str(required), "available": str(available)}
        )


class PersistenceError(ServiceError):
    def __init__(self, message: str = "Operation failed"):
        super().__init__(message, "PERSISTENCE_ERROR")


def success_response(data: Any = None, message: str = "Success") -> Dict:
    response = {"success": True, "message": message}
    if data is not None:
        if isinstance(data, dict):
            response.update(data)
        else:
            response["data"] = data
    return response


def error_response(message: str, code: str = "ERROR", details: Dict = None) -> Dict:
    return {
        "success": False,
        "message": message,
        "error_code": code,
        "details": details or {}
    }


def service_operation(func):
    """
    Turn a raising service method into one that always returns a result dict.

    Apply outside ``transaction.atomic`` so the transaction has rolled back
    before the error dict is built.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ServiceError as e:
            logger.warning("%s rejected: [%s] %s", func.__qualname__, e.code, e.message)
            return error_response(e.message, e.code, e.details)
        except DatabaseError:
            logger.exception("%s failed in the database layer", func.__qualname__)
            error = PersistenceError()
            return error_response(error.message, error.code)

    return wrapper


def paginate_queryset(queryset, page: int = 1, per_page: int = 20) -> Tuple[List, Dict]:
    page = max(1, page)
    per_page = min(max(1, per_page), 100)

    total = queryset.count()
    total_pages = (total + per_page - 1) // per_page

    offset = (page - 1) * per_page
    items = list(queryset[offset:offset + per_page])

    return items, {
        "page": page,
        "per_page": per_page,
        "total_items": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1
    }


# ==================== DECIMAL ARITHMETIC ====================

def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default


def field_label(field: str) -> str:
    if field.endswith("_id"):
        return f"{field[:-3].replace('_', ' ').capitalize()} ID"
    return field.replace("_", " ").capitalize()


def check_limit(value: Decimal, field: str, places: int, digits: int = MAX_DIGITS) -> Decimal:
    """Reject values that would not fit a decimal column of ``digits`` with ``places`` decimals."""
    if abs(value) >= Decimal(10) ** (digits - places):
        raise ValidationError(f"{field_label(field)} is too large: {value}", field)
    return value


def parse_decimal(value: Any, field: str, places: int = None) -> Decimal:
    """
    Like to_decimal, but a value that is not a number is a validation error.
    With ``places`` the value must also fit the matching decimal column.
    """
    if value is None or value == "":
        raise ValidationError(f"{field_label(field)} is required", field)
    if isinstance(value, bool):
        raise ValidationError(f"Invalid number for {field}: {value}", field)
    if isinstance(value, float):
        value = str(value)
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Invalid number for {field}: {value}", field)
    if not result.is_finite():
        raise ValidationError(f"Invalid number for {field}: {value}", field)
    if places is not None:
        check_limit(result, field, places)
    return result


def parse_id(value: Any, field: str, required: bool = True) -> Optional[int]:
    """
    Coerce a caller-supplied primary key to int. Accepts ints and digit
    strings; anything else is a validation error rather than a lookup miss.
    """
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field_label(field)} is required", field)
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field_label(field)}: {value}", field)
    if isinstance(value, int):
        result = value
    elif isinstance(value, str) and value.strip().isdigit():
        result = int(value.strip())
    else:
        raise ValidationError(f"Invalid {field_label(field)}: {value}", field)
    if result <= 0:
        raise ValidationError(f"Invalid {field_label(field)}: {value}", field)
    return result


def round_decimal(value: Decimal, places: int = 4) -> Decimal:
    if value is None:
        return ZERO
    quantize_str = "0." + "0" * places if places > 0 else "1"
    return to_decimal(value).quantize(Decimal(quantize_str), rounding=ROUND_HALF_UP)


def round_quantity(value: Decimal) -> Decimal:
    return round_decimal(value, QUANTITY_PLACES)


def round_cost(value: Decimal) -> Decimal:
    return round_decimal(value, COST_PLACES)


def round_money(value: Decimal) -> Decimal:
    return round_decimal(value, MONEY_PLACES)


def safe_divide(numerator: Decimal, denominator: Decimal) -> Decimal:
    denominator = to_decimal(denominator)
    if denominator == 0:
        return ZERO
    return to_decimal(numerator) / denominator


def weighted_average(old_quantity: Decimal, old_cost: Decimal,
                     new_quantity: Decimal, new_cost: Decimal) -> Decimal:
    """
    Average cost after adding ``new_quantity`` at ``new_cost`` to a pool of
    ``old_quantity`` at ``old_cost``. An empty resulting pool takes the
    incoming cost.
    """
    total_quantity = to_decimal(old_quantity) + to_decimal(new_quantity)
    if total_quantity == 0:
        return round_cost(to_decimal(new_cost))
    total_value = to_decimal(old_quantity) * to_decimal(old_cost) + to_decimal(new_quantity) * to_decimal(new_cost)
    return round_cost(total_value / total_quantity)


def line_total(quantity: Decimal, unit_cost: Decimal) -> Decimal:
    return round_money(to_decimal(quantity) * to_decimal(unit_cost))


def percentage(part: Decimal, whole: Decimal) -> Decimal:
    return round_money(safe_divide(to_decimal(part) * HUNDRED, whole))


def sum_decimals(values: Iterable[Decimal]) -> Decimal:
    total = ZERO
    for value in values:
        total += to_decimal(value)
    return total


def generate_number(prefix: str, model_class: Model, field: str) -> str:
    today = timezone.now()
    date_part = today.strftime("%Y%m%d")
    filter_kwargs = {f"{field}__startswith": f"{prefix}-{date_part}"}
    last = model_class.objects.filter(**filter_kwargs).order_by(f"-{field}").first()

    seq = 1
    if last:
        try:
            seq = int(getattr(last, field).split("-")[-1]) + 1
        except ValueError:
            seq = 1

    return f"{prefix}-{date_part}-{seq:04d}"


def isoformat(value) -> Optional[str]:
    return value.isoformat() if value else None


def stringify_decimals(value: Any) -> Any:
    """Render Decimals inside nested dicts and lists as strings for callers."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, list):
        return [stringify_decimals(v) for v in value]
    if isinstance(value, dict):
        return {k: stringify_decimals(v) for k, v in value.items()}
    return value


def parse_datetime_value(value: Any, field: str, end_of_day: bool = False) -> datetime:
    """
    Accept a datetime, a date or an ISO string. Bare dates cover the whole
    day: midnight for a start bound, the last microsecond for an end bound.
    """
    if value is None or value == "":
        raise ValidationError(f"{field.replace('_', ' ').capitalize()} is required", field)

    if isinstance(value, str):
        try:
            parsed = parse_datetime(value) or parse_date(value)
        except ValueError:
            parsed = None
        if parsed is None:
            raise ValidationError(f"Invalid date for {field}: {value}", field)
        value = parsed

    if not isinstance(value, datetime):
        if not isinstance(value, date):
            raise ValidationError(f"Invalid date for {field}: {value}", field)
        value = datetime.combine(value, time.max if end_of_day else time.min)

    if timezone.is_naive(value):
        value = timezone.make_aware(value)
    return value


class BaseService:
    model = None

    @classmethod
    def get_by_id(cls, id: int) -> Optional[Model]:
        try:
            return cls.model.objects.get(id=id)
        except (cls.model.DoesNotExist, ValueError, TypeError):
            return None

    @classmethod
    def get_or_404(cls, id: int, resource: str = None) -> Model:
        resource = resource or cls.model._meta.verbose_name.capitalize()
        id = parse_id(id, f"{resource.lower().replace(' ', '_')}_id")
        obj = cls.get_by_id(id)
        if not obj:
            raise NotFoundError(resource, id)
        return obj

    @classmethod
    def exists(cls, id: int) -> bool:
        return cls.model.objects.filter(id=id).exists()

    @classmethod
    def get_active(cls):
        if hasattr(cls.model, 'is_active'):
            return cls.model.objects.filter(is_active=True)
        return cls.model.objects.all()
