"""
Recipe Service - recipe definitions, costing and availability.

A recipe yields ``yield_quantity`` portions from its ingredients and from
portions of other recipes. Costs are read from the warehouse weighted
average at the moment of the call, so the same recipe costs differently
per warehouse and over time.
"""
import logging
from typing import Dict, Any, List, Optional, Set
from decimal import Decimal, ROUND_FLOOR
from django.db import transaction
from django.db.models import Q, Prefetch

from inventory.models import (
    Recipe, RecipeIngredient, RecipeSubRecipe, StockItem, StockUnit, StockLevel, Property,
)
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset, service_operation,
    ValidationError, NotFoundError, PreconditionError,
    to_decimal, parse_decimal, parse_id, round_decimal, round_quantity, round_cost, round_money,
    check_limit, QUANTITY_PLACES, COST_PLACES,
    safe_divide, isoformat, stringify_decimals, ZERO,
)
from inventory.services.unit_service import StockUnitService
from inventory.services.warehouse_service import WarehouseService

logger = logging.getLogger(__name__)


class RecipeService(BaseService):
    model = Recipe

    @classmethod
    def _recipe_queryset(cls):
        return cls.model.objects.select_related("yield_unit").prefetch_related(
            Prefetch(
                "ingredients",
                queryset=RecipeIngredient.objects.select_related(
                    "stock_item__primary_unit", "unit"
                ).order_by("id"),
            ),
            Prefetch(
                "child_recipes",
                queryset=RecipeSubRecipe.objects.select_related("child_recipe").order_by("id"),
            ),
        )

    @classmethod
    def load(cls, recipe_id: int) -> Recipe:
        recipe_id = parse_id(recipe_id, "recipe_id")
        recipe = cls._recipe_queryset().filter(id=recipe_id).first()
        if not recipe:
            raise NotFoundError("Recipe", recipe_id)
        return recipe

    @classmethod
    def serialize(cls, recipe: Recipe, include_ingredients: bool = True) -> Dict[str, Any]:
        data = {
            "id": recipe.id,
            "uuid": str(recipe.uuid),
            "name": recipe.name,
            "description": recipe.description,
            "property_id": recipe.property_id,
            "yield_quantity": str(recipe.yield_quantity),
            "yield_unit": recipe.yield_unit.abbreviation if recipe.yield_unit else None,
            "is_active": recipe.is_active,
            "created_at": isoformat(recipe.created_at),
        }

        if include_ingredients:
            data["ingredients"] = [
                {
                    "id": ing.id,
                    "stock_item_id": ing.stock_item_id,
                    "stock_item_name": ing.stock_item.name,
                    "quantity": str(ing.quantity),
                    "unit_id": ing.unit_id,
                    "unit": ing.unit.abbreviation,
                }
                for ing in recipe.ingredients.all()
            ]
            data["sub_recipes"] = [
                {
                    "id": sub.id,
                    "recipe_id": sub.child_recipe_id,
                    "recipe_name": sub.child_recipe.name,
                    "quantity": str(sub.quantity),
                }
                for sub in recipe.child_recipes.all()
            ]

        return data

    # ==================== DEFINITION ====================

    @classmethod
    def _validate_ingredients(cls, ingredients: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        validated = []
        seen: Set[int] = set()

        for index, ing in enumerate(ingredients or [], start=1):
            if not isinstance(ing, dict):
                raise ValidationError(f"Ingredient {index}: Line must be an object", "ingredients")
            stock_item_id = parse_id(ing.get("stock_item_id"), "stock_item_id")

            quantity = parse_decimal(ing.get("quantity"), "quantity", places=COST_PLACES)
            if quantity <= 0:
                raise ValidationError(
                    f"Ingredient {index}: Quantity must be greater than zero", "ingredients"
                )

            item = StockItem.objects.select_related("primary_unit").filter(id=stock_item_id).first()
            if not item:
                raise NotFoundError("Stock item", stock_item_id)
            if item.id in seen:
                raise ValidationError(f"Ingredient {index}: {item.name} is listed twice", "ingredients")
            seen.add(item.id)

            unit = item.primary_unit
            unit_id = parse_id(ing.get("unit_id"), "unit_id", required=False)
            if unit_id:
                unit = StockUnit.objects.filter(id=unit_id).first()
                if not unit:
                    raise NotFoundError("Unit", unit_id)
            if unit.unit_type != item.primary_unit.unit_type:
                raise ValidationError(
                    f"Ingredient {index}: {unit.abbreviation} cannot be converted to "
                    f"{item.primary_unit.abbreviation} for {item.name}",
                    "ingredients",
                )

            validated.append({"stock_item": item, "quantity": round_decimal(quantity, 4), "unit": unit})

        return validated

    @classmethod
    def _validate_sub_recipes(cls, sub_recipes: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        validated = []

        for index, sub in enumerate(sub_recipes or [], start=1):
            if not isinstance(sub, dict):
                raise ValidationError(f"Sub-recipe {index}: Line must be an object", "sub_recipes")
            child_id = parse_id(sub.get("recipe_id"), "recipe_id")

            quantity = parse_decimal(sub.get("quantity"), "quantity")
            if quantity <= 0:
                raise ValidationError("Sub-recipe quantity must be greater than zero", "sub_recipes")

            child = cls.model.objects.filter(id=child_id, is_active=True).first()
            if not child:
                raise NotFoundError("Sub-recipe", child_id)

            quantity = round_quantity(quantity)
            check_limit(quantity, "quantity", QUANTITY_PLACES, digits=12)
            validated.append({"child_recipe": child, "quantity": quantity})

        return validated

    @classmethod
    def find_cycle(cls, parent_id: int, child_ids: List[int]) -> Optional[List[int]]:
        """
        Return the path that leads back to ``parent_id`` if linking
        ``child_ids`` under it would close a loop, else None.
        """
        stack = [(child_id, [child_id]) for child_id in child_ids]
        visited: Set[int] = set()

        while stack:
            recipe_id, path = stack.pop()
            if recipe_id == parent_id:
                return [parent_id] + path
            if recipe_id in visited:
                continue
            visited.add(recipe_id)

            grandchildren = RecipeSubRecipe.objects.filter(
                parent_recipe_id=recipe_id
            ).values_list("child_recipe_id", flat=True)
            for grandchild_id in grandchildren:
                stack.append((grandchild_id, path + [grandchild_id]))

        return None

    @classmethod
    @service_operation
    @transaction.atomic
    def create(cls,
               name: str,
               yield_quantity: Any,
               ingredients: List[Dict[str, Any]] = None,
               sub_recipes: List[Dict[str, Any]] = None,
               yield_unit_id: int = None,
               property_id: int = None,
               description: str = "") -> Dict[str, Any]:
        """
        ingredients: [{"stock_item_id", "quantity", "unit_id"}], unit defaults
        to the item's primary unit.
        sub_recipes: [{"recipe_id", "quantity"}], quantity in child portions.
        """
        if not name or not name.strip():
            raise ValidationError("Recipe name is required", "name")

        yield_quantity = round_quantity(parse_decimal(yield_quantity, "yield_quantity"))
        check_limit(yield_quantity, "yield_quantity", QUANTITY_PLACES, digits=12)
        if yield_quantity <= 0:
            raise ValidationError("Recipe yield must be greater than zero", "yield_quantity")

        if not ingredients and not sub_recipes:
            raise ValidationError("Recipe must have at least one ingredient", "ingredients")

        validated_ingredients = cls._validate_ingredients(ingredients)
        validated_subs = cls._validate_sub_recipes(sub_recipes)

        yield_unit = None
        yield_unit_id = parse_id(yield_unit_id, "yield_unit_id", required=False)
        property_id = parse_id(property_id, "property_id", required=False)
        if yield_unit_id:
            yield_unit = StockUnit.objects.filter(id=yield_unit_id).first()
            if not yield_unit:
                raise NotFoundError("Yield unit", yield_unit_id)

        if property_id and not Property.objects.filter(id=property_id).exists():
            raise NotFoundError("Property", property_id)

        recipe = cls.model.objects.create(
            name=name.strip(),
            description=(description or "").strip(),
            yield_quantity=yield_quantity,
            yield_unit=yield_unit,
            property_id=property_id,
        )

        RecipeIngredient.objects.bulk_create([
            RecipeIngredient(recipe=recipe, stock_item=ing["stock_item"], quantity=ing["quantity"], unit=ing["unit"])
            for ing in validated_ingredients
        ])
        RecipeSubRecipe.objects.bulk_create([
            RecipeSubRecipe(parent_recipe=recipe, child_recipe=sub["child_recipe"], quantity=sub["quantity"])
            for sub in validated_subs
        ])

        recipe = cls.load(recipe.id)
        return success_response({
            "id": recipe.id,
            "recipe": cls.serialize(recipe),
        }, f"Recipe '{recipe.name}' created")

    @classmethod
    @service_operation
    @transaction.atomic
    def set_sub_recipes(cls, recipe_id: int, sub_recipes: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Replace the sub-recipe list, refusing any link that would form a loop."""
        recipe = cls.get_or_404(recipe_id, "Recipe")

        if any(str(sub.get("recipe_id")) == str(recipe.id) for sub in sub_recipes or []):
            raise PreconditionError("Recipe cannot include itself as a sub-recipe", "recipe_cycle")

        validated = cls._validate_sub_recipes(sub_recipes)

        cycle = cls.find_cycle(recipe.id, [sub["child_recipe"].id for sub in validated])
        if cycle:
            names = dict(cls.model.objects.filter(id__in=cycle).values_list("id", "name"))
            raise PreconditionError(
                f"Circular dependency detected: {' -> '.join(names.get(i, str(i)) for i in cycle)}",
                "recipe_cycle",
            )

        if not validated and not recipe.ingredients.exists():
            raise ValidationError("Recipe must have at least one ingredient", "sub_recipes")

        RecipeSubRecipe.objects.filter(parent_recipe=recipe).delete()
        RecipeSubRecipe.objects.bulk_create([
            RecipeSubRecipe(parent_recipe=recipe, child_recipe=sub["child_recipe"], quantity=sub["quantity"])
            for sub in validated
        ])

        recipe = cls.load(recipe.id)
        return success_response({"recipe": cls.serialize(recipe)}, "Sub-recipes updated")

    @classmethod
    @service_operation
    def get(cls, recipe_id: int) -> Dict[str, Any]:
        return success_response({"recipe": cls.serialize(cls.load(recipe_id))})

    @classmethod
    @service_operation
    def list(cls,
             page: int = 1,
             per_page: int = 20,
             search: str = None,
             property_id: int = None,
             active_only: bool = True) -> Dict[str, Any]:
        queryset = cls.model.objects.select_related("yield_unit")
        property_id = parse_id(property_id, "property_id", required=False)

        if active_only:
            queryset = queryset.filter(is_active=True)

        if search:
            queryset = queryset.filter(Q(name__icontains=search) | Q(description__icontains=search))

        if property_id:
            queryset = queryset.filter(Q(property_id=property_id) | Q(property__isnull=True))

        recipes, pagination = paginate_queryset(queryset.order_by("name"), page, per_page)

        return success_response({
            "recipes": [cls.serialize(r, include_ingredients=False) for r in recipes],
            "pagination": pagination,
        })

    @classmethod
    @service_operation
    @transaction.atomic
    def set_active(cls, recipe_id: int, is_active: bool) -> Dict[str, Any]:
        recipe = cls.get_or_404(recipe_id, "Recipe")
        recipe.is_active = is_active
        recipe.save(update_fields=["is_active", "updated_at"])

        state = "reactivated" if is_active else "deactivated"
        return success_response({"recipe": cls.serialize(recipe, include_ingredients=False)}, f"Recipe {state}")

    # ==================== COSTING ====================

    @classmethod
    def quantity_in_primary_unit(cls, ingredient: RecipeIngredient) -> Decimal:
        primary_unit_id = ingredient.stock_item.primary_unit_id
        if ingredient.unit_id == primary_unit_id:
            return to_decimal(ingredient.quantity)
        result, _ = StockUnitService.convert(ingredient.quantity, ingredient.unit_id, primary_unit_id)
        return result

    @classmethod
    def compute_cost(cls, recipe: Recipe, warehouse_id: int, _path: tuple = ()) -> Dict[str, Any]:
        """
        Cost breakdown with Decimal values. Missing stock levels cost zero.
        Sub-recipes are costed per portion at the same warehouse.
        """
        if recipe.id in _path:
            raise PreconditionError(f"Circular sub-recipe dependency at '{recipe.name}'", "recipe_cycle")
        path = _path + (recipe.id,)

        costs = dict(
            StockLevel.objects.filter(
                warehouse_id=warehouse_id,
                stock_item_id__in=[ing.stock_item_id for ing in recipe.ingredients.all()],
            ).values_list("stock_item_id", "average_cost")
        )

        ingredient_costs = []
        total = ZERO
        for ing in recipe.ingredients.all():
            quantity = cls.quantity_in_primary_unit(ing)
            unit_cost = costs.get(ing.stock_item_id, ZERO)
            line = quantity * unit_cost
            total += line
            ingredient_costs.append({
                "stock_item_id": ing.stock_item_id,
                "stock_item_name": ing.stock_item.name,
                "quantity": ing.quantity,
                "unit": ing.unit.abbreviation,
                "quantity_in_primary_unit": quantity,
                "unit_cost": unit_cost,
                "total_cost": round_money(line),
            })

        sub_recipe_costs = []
        for sub in recipe.child_recipes.all():
            child_cost = cls.compute_cost(cls.load(sub.child_recipe_id), warehouse_id, path)
            line = child_cost["cost_per_portion"] * sub.quantity
            total += line
            sub_recipe_costs.append({
                "recipe_id": sub.child_recipe_id,
                "recipe_name": sub.child_recipe.name,
                "quantity": sub.quantity,
                "cost_per_portion": child_cost["cost_per_portion"],
                "total_cost": round_money(line),
            })

        return {
            "recipe_id": recipe.id,
            "recipe_name": recipe.name,
            "yield_quantity": recipe.yield_quantity,
            "total_cost": round_money(total),
            "cost_per_portion": round_cost(safe_divide(total, recipe.yield_quantity)),
            "ingredient_costs": ingredient_costs,
            "sub_recipe_costs": sub_recipe_costs,
        }

    @classmethod
    @service_operation
    def calculate_cost(cls, recipe_id: int, warehouse_id: int) -> Dict[str, Any]:
        recipe = cls.load(recipe_id)
        warehouse_id = WarehouseService.get_or_404(warehouse_id, "Warehouse").id

        cost = cls.compute_cost(recipe, warehouse_id)
        return success_response({"cost": stringify_decimals(cost)})

    # ==================== AVAILABILITY ====================

    @classmethod
    def collect_requirements(cls, recipe: Recipe, portions: Decimal,
                             requirements: Dict[int, Dict[str, Any]] = None,
                             _path: tuple = ()) -> Dict[int, Dict[str, Any]]:
        """
        Stock needed for ``portions`` of the recipe, in each item's primary
        unit, merged across sub-recipes.
        """
        if requirements is None:
            requirements = {}
        if recipe.id in _path:
            raise PreconditionError(f"Circular sub-recipe dependency at '{recipe.name}'", "recipe_cycle")
        path = _path + (recipe.id,)

        multiplier = safe_divide(portions, recipe.yield_quantity)

        for ing in recipe.ingredients.all():
            required = cls.quantity_in_primary_unit(ing) * multiplier
            entry = requirements.setdefault(ing.stock_item_id, {
                "stock_item_id": ing.stock_item_id,
                "stock_item_name": ing.stock_item.name,
                "unit": ing.stock_item.primary_unit.abbreviation,
                "required": ZERO,
            })
            entry["required"] += required

        for sub in recipe.child_recipes.all():
            cls.collect_requirements(
                cls.load(sub.child_recipe_id), sub.quantity * multiplier, requirements, path
            )

        return requirements

    @classmethod
    def compute_availability(cls, recipe: Recipe, warehouse_id: int, portions: Decimal = Decimal("1")) -> Dict[str, Any]:
        requirements = cls.collect_requirements(recipe, portions)

        on_hand = dict(
            StockLevel.objects.filter(
                warehouse_id=warehouse_id, stock_item_id__in=list(requirements)
            ).values_list("stock_item_id", "quantity")
        )

        ingredients = []
        unavailable = []
        portions_available = None
        for item_id, req in requirements.items():
            required = round_quantity(req["required"])
            available = on_hand.get(item_id, ZERO)
            is_available = available >= required

            if required > 0:
                possible = safe_divide(available * portions, required)
                portions_available = possible if portions_available is None else min(portions_available, possible)

            row = {
                "stock_item_id": item_id,
                "stock_item_name": req["stock_item_name"],
                "unit": req["unit"],
                "required_quantity": required,
                "available_quantity": available,
                "is_available": is_available,
                "deficit": ZERO if is_available else round_quantity(required - available),
            }
            ingredients.append(row)
            if not is_available:
                unavailable.append(row)

        portions_available = portions_available or ZERO

        return {
            "recipe_id": recipe.id,
            "recipe_name": recipe.name,
            "is_available": not unavailable,
            "requested_portions": portions,
            "portions_available": int(portions_available.to_integral_value(rounding=ROUND_FLOOR)),
            "ingredients": ingredients,
            "unavailable_ingredients": unavailable,
        }

    @classmethod
    @service_operation
    def check_availability(cls, recipe_id: int, warehouse_id: int, portions: Any = 1) -> Dict[str, Any]:
        portions = parse_decimal(portions, "portions")
        if portions <= 0:
            raise ValidationError("Portions must be greater than zero", "portions")

        recipe = cls.load(recipe_id)
        warehouse_id = WarehouseService.get_or_404(warehouse_id, "Warehouse").id

        availability = cls.compute_availability(recipe, warehouse_id, portions)
        return success_response({"availability": stringify_decimals(availability)})
