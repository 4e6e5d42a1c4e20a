from django.http import JsonResponse
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from django.utils.decorators import method_decorator
from django.utils.dateparse import parse_date
import inspect
import json

from inventory.services import (
    ServiceError, ValidationError, success_response, error_response,
    InventorySettingsService, StockParLevelService,
    WarehouseService, StockUnitService, SupplierService,
    StockCategoryService, StockItemService,
    StockLevelService, StockMovementService, StockBatchService,
    StockOperationService, WasteService,
    RequisitionService, CycleCountService,
    ConsignmentService, RecipeService, MenuItemService,
    InventoryReportService,
)

STATUS_BY_CODE = {
    "VALIDATION_ERROR": 400,
    "NOT_FOUND": 404,
    "PRECONDITION_FAILED": 409,
    "INSUFFICIENT_STOCK": 409,
    "PERSISTENCE_ERROR": 500,
}


class BaseInventoryView(View):
    @method_decorator(csrf_exempt)
    def dispatch(self, request, *args, **kwargs):
        try:
            return super().dispatch(request, *args, **kwargs)
        except ServiceError as e:
            return self.respond(error_response(e.message, e.code, e.details))

    def get_json_body(self, request):
        try:
            data = json.loads(request.body) if request.body else {}
        except json.JSONDecodeError:
            raise ValidationError("Request body is not valid JSON")
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        return data

    def call_with_body(self, handler, data):
        """
        Call a service with the body fields it accepts. Unknown fields are
        rejected; missing required ones arrive as None for the service to report.
        """
        params = inspect.signature(handler).parameters
        unknown = sorted(set(data) - set(params))
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(unknown)}")
        kwargs = {
            name: data.get(name)
            for name, param in params.items()
            if name in data or param.default is inspect.Parameter.empty
        }
        return handler(**kwargs)

    def get_user_id(self, request):
        if request.user.is_authenticated:
            return request.user.id
        return None

    def get_int(self, request, name, default=None):
        value = request.GET.get(name)
        if value in (None, ""):
            return default
        try:
            return int(value)
        except ValueError:
            raise ValidationError(f"Invalid integer for {name}: {value}", name)

    def get_bool(self, request, name, default=None):
        value = request.GET.get(name)
        if value in (None, ""):
            return default
        return value.lower() in ("1", "true", "yes")

    def get_date(self, request, name):
        value = request.GET.get(name)
        if not value:
            return None
        try:
            parsed = parse_date(value)
        except ValueError:
            parsed = None
        if parsed is None:
            raise ValidationError(f"Invalid date for {name}: {value}", name)
        return parsed

    def respond(self, result: dict, status: int = 200):
        if not result.get("success", False):
            status = STATUS_BY_CODE.get(result.get("error_code"), 400)
        return JsonResponse(result, status=status)


# ==================== SETTINGS ====================

class InventorySettingsView(BaseInventoryView):
    """GET/PUT /api/inventory/settings/"""

    def get(self, request):
        return self.respond(success_response({"settings": InventorySettingsService.get_all()}))

    def put(self, request):
        data = self.get_json_body(request)
        return self.respond(InventorySettingsService.update(**data))


class ParLevelView(BaseInventoryView):
    """POST /api/inventory/par-levels/"""

    def post(self, request):
        data = self.get_json_body(request)
        result = StockParLevelService.set_par_level(
            data.get("stock_item_id"), data.get("warehouse_id"), data.get("par_level")
        )
        return self.respond(result)


# ==================== REFERENCE DATA ====================

class WarehouseListView(BaseInventoryView):

    def get(self, request):
        result = WarehouseService.list(
            property_id=self.get_int(request, "property_id"),
            type_filter=request.GET.get("type"),
            include_inactive=self.get_bool(request, "include_inactive", False),
            include_stats=self.get_bool(request, "include_stats", False),
        )
        return self.respond(result)

    def post(self, request):
        data = self.get_json_body(request)
        result = WarehouseService.create(
            property_id=data.get("property_id"),
            name=data.get("name"),
            type=data.get("type", "MAIN_STOCKROOM"),
            code=data.get("code", ""),
        )
        return self.respond(result, 201)


class WarehouseDetailView(BaseInventoryView):

    def get(self, request, warehouse_id):
        return self.respond(WarehouseService.get(warehouse_id))


class WarehouseActionView(BaseInventoryView):
    """POST /api/inventory/warehouses/<id>/<activate|deactivate>/"""

    def post(self, request, warehouse_id, action):
        actions = {
            "activate": WarehouseService.activate,
            "deactivate": WarehouseService.deactivate,
        }
        if action not in actions:
            raise ValidationError(f"Unknown action: {action}", "action")
        return self.respond(actions[action](warehouse_id))


class UnitListView(BaseInventoryView):

    def get(self, request):
        return self.respond(StockUnitService.list(type_filter=request.GET.get("type")))

    def post(self, request):
        data = self.get_json_body(request)
        result = StockUnitService.create(
            name=data.get("name"),
            abbreviation=data.get("abbreviation"),
            unit_type=data.get("unit_type"),
            is_base_unit=data.get("is_base_unit", False),
            conversion_factor=data.get("conversion_factor", "1"),
        )
        return self.respond(result, 201)


class UnitConvertView(BaseInventoryView):

    def post(self, request):
        data = self.get_json_body(request)
        result = StockUnitService.convert_quantity(
            data.get("quantity"), data.get("from_unit_id"), data.get("to_unit_id")
        )
        return self.respond(result)


class SupplierListView(BaseInventoryView):

    def get(self, request):
        result = SupplierService.list(
            page=self.get_int(request, "page", 1),
            per_page=self.get_int(request, "per_page", 20),
            search=request.GET.get("search"),
            active_only=self.get_bool(request, "active_only", True),
            consignment_only=self.get_bool(request, "consignment_only", False),
        )
        return self.respond(result)

    def post(self, request):
        data = self.get_json_body(request)
        return self.respond(self.call_with_body(SupplierService.create, data), 201)


class SupplierDetailView(BaseInventoryView):

    def get(self, request, supplier_id):
        return self.respond(SupplierService.get(supplier_id))


class CategoryListView(BaseInventoryView):

    def post(self, request):
        data = self.get_json_body(request)
        return self.respond(StockCategoryService.create(data.get("name"), data.get("color", "")), 201)


class StockItemListView(BaseInventoryView):

    def get(self, request):
        result = StockItemService.list(
            page=self.get_int(request, "page", 1),
            per_page=self.get_int(request, "per_page", 20),
            search=request.GET.get("search"),
            category_id=self.get_int(request, "category_id"),
            supplier_id=self.get_int(request, "supplier_id"),
            consignment=self.get_bool(request, "consignment"),
            active_only=self.get_bool(request, "active_only", True),
        )
        return self.respond(result)

    def post(self, request):
        data = self.get_json_body(request)
        result = StockItemService.create(
            name=data.get("name"),
            sku=data.get("sku"),
            category_id=data.get("category_id"),
            primary_unit_id=data.get("primary_unit_id"),
            is_consignment=data.get("is_consignment", False),
            supplier_id=data.get("supplier_id"),
        )
        return self.respond(result, 201)


class StockItemDetailView(BaseInventoryView):

    def get(self, request, item_id):
        return self.respond(StockItemService.get(item_id))

    def delete(self, request, item_id):
        return self.respond(StockItemService.deactivate(item_id))


# ==================== LEVELS & LEDGER ====================

class StockLevelItemView(BaseInventoryView):
    """GET /api/inventory/levels/item/<id>/"""

    def get(self, request, item_id):
        return self.respond(StockLevelService.get_for_item(item_id))


class StockLevelWarehouseView(BaseInventoryView):
    """GET /api/inventory/levels/warehouse/<id>/"""

    def get(self, request, warehouse_id):
        result = StockLevelService.get_for_warehouse(
            warehouse_id, include_empty=self.get_bool(request, "include_empty", False)
        )
        return self.respond(result)


class StockOperationView(BaseInventoryView):
    """POST /api/inventory/stock/<receive|transfer|consume|adjust>/"""

    operations = {
        "receive": StockOperationService.receive_stock,
        "transfer": StockOperationService.transfer_stock,
        "consume": StockOperationService.consume_stock,
        "adjust": StockOperationService.adjust_stock,
    }

    def post(self, request, operation):
        if operation not in self.operations:
            raise ValidationError(f"Unknown stock operation: {operation}", "operation")
        data = self.get_json_body(request)
        data["created_by_id"] = self.get_user_id(request)
        result = self.call_with_body(self.operations[operation], data)
        return self.respond(result, 201)


class MovementListView(BaseInventoryView):
    """GET /api/inventory/movements/"""

    def get(self, request):
        result = StockMovementService.list(
            page=self.get_int(request, "page", 1),
            per_page=self.get_int(request, "per_page", 50),
            stock_item_id=self.get_int(request, "stock_item_id"),
            warehouse_id=self.get_int(request, "warehouse_id"),
            movement_type=request.GET.get("type"),
            reference_type=request.GET.get("reference_type"),
            reference_id=request.GET.get("reference_id"),
            date_from=self.get_date(request, "date_from"),
            date_to=self.get_date(request, "date_to"),
        )
        return self.respond(result)


class MovementDetailView(BaseInventoryView):

    def get(self, request, movement_id):
        return self.respond(StockMovementService.get(movement_id))


class LevelVerifyView(BaseInventoryView):
    """GET /api/inventory/levels/verify/?stock_item_id=&warehouse_id="""

    def get(self, request):
        result = StockMovementService.verify_level(
            self.get_int(request, "stock_item_id"), self.get_int(request, "warehouse_id")
        )
        return self.respond(result)


# ==================== BATCHES & WASTE ====================

class ExpiringBatchesView(BaseInventoryView):

    def get(self, request):
        result = StockBatchService.get_expiring_batches(
            days=self.get_int(request, "days"),
            warehouse_id=self.get_int(request, "warehouse_id"),
        )
        return self.respond(result)


class ExpiredBatchesView(BaseInventoryView):

    def get(self, request):
        return self.respond(StockBatchService.get_expired_batches(self.get_int(request, "warehouse_id")))


class BatchExpireView(BaseInventoryView):

    def post(self, request, batch_id):
        return self.respond(StockBatchService.mark_expired(batch_id))


class WasteView(BaseInventoryView):
    """GET/POST /api/inventory/waste/"""

    def get(self, request):
        result = WasteService.get_history(
            warehouse_id=self.get_int(request, "warehouse_id"),
            stock_item_id=self.get_int(request, "stock_item_id"),
            waste_type=request.GET.get("waste_type"),
            date_from=self.get_date(request, "date_from"),
            date_to=self.get_date(request, "date_to"),
            page=self.get_int(request, "page", 1),
            per_page=self.get_int(request, "per_page", 20),
        )
        return self.respond(result)

    def post(self, request):
        data = self.get_json_body(request)
        data["created_by_id"] = self.get_user_id(request)
        return self.respond(self.call_with_body(WasteService.record_waste, data), 201)


# ==================== REQUISITIONS & CYCLE COUNTS ====================

class RequisitionListView(BaseInventoryView):
    """GET/POST /api/inventory/requisitions/"""

    def get(self, request):
        result = RequisitionService.list(
            status=request.GET.get("status"),
            requesting_warehouse_id=self.get_int(request, "requesting_warehouse_id"),
            source_warehouse_id=self.get_int(request, "source_warehouse_id"),
            page=self.get_int(request, "page", 1),
            per_page=self.get_int(request, "per_page", 20),
        )
        return self.respond(result)

    def post(self, request):
        data = self.get_json_body(request)
        data["requested_by_id"] = self.get_user_id(request)
        return self.respond(self.call_with_body(RequisitionService.create, data), 201)


class RequisitionDetailView(BaseInventoryView):

    def get(self, request, requisition_id):
        return self.respond(RequisitionService.get(requisition_id))


class RequisitionActionView(BaseInventoryView):
    """POST /api/inventory/requisitions/<id>/<approve|reject|fulfill>/"""

    def post(self, request, requisition_id, action):
        data = self.get_json_body(request)
        user_id = self.get_user_id(request)
        if action == "approve":
            result = RequisitionService.approve(requisition_id, approved_by_id=user_id)
        elif action == "reject":
            result = RequisitionService.reject(requisition_id, data.get("reason"), approved_by_id=user_id)
        elif action == "fulfill":
            result = RequisitionService.fulfill(requisition_id, data.get("items"), fulfilled_by_id=user_id)
        else:
            raise ValidationError(f"Unknown requisition action: {action}", "action")
        return self.respond(result)


class CycleCountListView(BaseInventoryView):
    """GET/POST /api/inventory/cycle-counts/"""

    def get(self, request):
        result = CycleCountService.list(
            warehouse_id=self.get_int(request, "warehouse_id"),
            status=request.GET.get("status"),
            page=self.get_int(request, "page", 1),
            per_page=self.get_int(request, "per_page", 20),
        )
        return self.respond(result)

    def post(self, request):
        data = self.get_json_body(request)
        data["created_by_id"] = self.get_user_id(request)
        return self.respond(self.call_with_body(CycleCountService.create, data), 201)


class CycleCountDetailView(BaseInventoryView):

    def get(self, request, count_id):
        return self.respond(CycleCountService.get(count_id))


class CycleCountActionView(BaseInventoryView):
    """POST /api/inventory/cycle-counts/<id>/<start|count|submit|approve|reject|cancel>/"""

    def post(self, request, count_id, action):
        data = self.get_json_body(request)
        user_id = self.get_user_id(request)
        if action == "start":
            result = CycleCountService.start(count_id)
        elif action == "count":
            result = CycleCountService.record_count(
                count_id,
                data.get("stock_item_id"),
                data.get("counted_quantity"),
                counted_by_id=user_id,
                notes=data.get("notes", ""),
            )
        elif action == "submit":
            result = CycleCountService.submit(count_id)
        elif action == "approve":
            result = CycleCountService.approve(count_id, approved_by_id=user_id)
        elif action == "reject":
            result = CycleCountService.reject(count_id, data.get("reason"))
        elif action == "cancel":
            result = CycleCountService.cancel(count_id, data.get("reason", ""))
        else:
            raise ValidationError(f"Unknown cycle count action: {action}", "action")
        return self.respond(result)


# ==================== CONSIGNMENT ====================

class ConsignmentReceiptListView(BaseInventoryView):

    def get(self, request):
        result = ConsignmentService.list_receipts(
            supplier_id=self.get_int(request, "supplier_id"),
            warehouse_id=self.get_int(request, "warehouse_id"),
            page=self.get_int(request, "page", 1),
            per_page=self.get_int(request, "per_page", 20),
        )
        return self.respond(result)

    def post(self, request):
        data = self.get_json_body(request)
        result = ConsignmentService.receive_consignment(
            supplier_id=data.get("supplier_id"),
            warehouse_id=data.get("warehouse_id"),
            items=data.get("items") or [],
            notes=data.get("notes", ""),
            created_by_id=self.get_user_id(request),
        )
        return self.respond(result, 201)


class ConsignmentReceiptDetailView(BaseInventoryView):

    def get(self, request, receipt_id):
        return self.respond(ConsignmentService.get_receipt(receipt_id))


class ConsignmentSaleView(BaseInventoryView):
    """POST /api/inventory/consignment/sales/"""

    def post(self, request):
        data = self.get_json_body(request)
        result = ConsignmentService.record_sale(
            stock_item_id=data.get("stock_item_id"),
            supplier_id=data.get("supplier_id"),
            quantity=data.get("quantity"),
            sold_at=data.get("sold_at"),
            reference_type=data.get("reference_type", ""),
            reference_id=data.get("reference_id", ""),
            created_by_id=self.get_user_id(request),
        )
        return self.respond(result, 201)


class ConsignmentReturnView(BaseInventoryView):
    """POST /api/inventory/consignment/returns/"""

    def post(self, request):
        data = self.get_json_body(request)
        data["created_by_id"] = self.get_user_id(request)
        return self.respond(self.call_with_body(ConsignmentService.return_to_supplier, data), 201)


class UnsettledSalesView(BaseInventoryView):

    def get(self, request, supplier_id):
        return self.respond(ConsignmentService.get_unsettled_sales(supplier_id))


class SettlementListView(BaseInventoryView):

    def get(self, request):
        result = ConsignmentService.list_settlements(
            supplier_id=self.get_int(request, "supplier_id"),
            settled=self.get_bool(request, "settled"),
            page=self.get_int(request, "page", 1),
            per_page=self.get_int(request, "per_page", 50),
        )
        return self.respond(result)

    def post(self, request):
        data = self.get_json_body(request)
        result = ConsignmentService.generate_settlement(
            supplier_id=data.get("supplier_id"),
            period_start=data.get("period_start"),
            period_end=data.get("period_end"),
            notes=data.get("notes", ""),
            created_by_id=self.get_user_id(request),
        )
        return self.respond(result, 201)


class SettlementDetailView(BaseInventoryView):

    def get(self, request, settlement_id):
        return self.respond(ConsignmentService.get_settlement(settlement_id))


class SettlementPayView(BaseInventoryView):

    def post(self, request, settlement_id):
        return self.respond(ConsignmentService.mark_settlement_paid(settlement_id))


class SupplierConsignmentView(BaseInventoryView):
    """GET /api/inventory/consignment/suppliers/<id>/<summary|stock>/"""

    def get(self, request, supplier_id, view):
        views = {
            "summary": ConsignmentService.get_supplier_settlement_summary,
            "stock": ConsignmentService.get_consignment_stock_by_supplier,
        }
        if view not in views:
            raise ValidationError(f"Unknown consignment view: {view}", "view")
        return self.respond(views[view](supplier_id))


# ==================== RECIPES & MENU ====================

class RecipeListView(BaseInventoryView):

    def get(self, request):
        result = RecipeService.list(
            page=self.get_int(request, "page", 1),
            per_page=self.get_int(request, "per_page", 20),
            search=request.GET.get("search"),
            property_id=self.get_int(request, "property_id"),
            active_only=self.get_bool(request, "active_only", True),
        )
        return self.respond(result)

    def post(self, request):
        data = self.get_json_body(request)
        return self.respond(self.call_with_body(RecipeService.create, data), 201)


class RecipeDetailView(BaseInventoryView):

    def get(self, request, recipe_id):
        return self.respond(RecipeService.get(recipe_id))


class RecipeSubRecipesView(BaseInventoryView):

    def put(self, request, recipe_id):
        data = self.get_json_body(request)
        return self.respond(RecipeService.set_sub_recipes(recipe_id, data.get("sub_recipes") or []))


class RecipeCostView(BaseInventoryView):
    """GET /api/inventory/recipes/<id>/cost/?warehouse_id="""

    def get(self, request, recipe_id):
        return self.respond(RecipeService.calculate_cost(recipe_id, self.get_int(request, "warehouse_id")))


class RecipeAvailabilityView(BaseInventoryView):
    """GET /api/inventory/recipes/<id>/availability/?warehouse_id=&portions="""

    def get(self, request, recipe_id):
        result = RecipeService.check_availability(
            recipe_id,
            self.get_int(request, "warehouse_id"),
            request.GET.get("portions", "1"),
        )
        return self.respond(result)


class MenuItemListView(BaseInventoryView):

    def get(self, request):
        result = MenuItemService.list(
            page=self.get_int(request, "page", 1),
            per_page=self.get_int(request, "per_page", 50),
            property_id=self.get_int(request, "property_id"),
            category=request.GET.get("category"),
            available=self.get_bool(request, "available"),
            search=request.GET.get("search"),
        )
        return self.respond(result)

    def post(self, request):
        data = self.get_json_body(request)
        return self.respond(self.call_with_body(MenuItemService.create, data), 201)


class MenuItemDetailView(BaseInventoryView):

    def get(self, request, menu_item_id):
        return self.respond(MenuItemService.get(menu_item_id))


class MenuItemAvailabilityView(BaseInventoryView):
    """
    GET  checks stock for one warehouse.
    POST {"available": false, "reason": "..."} sets the flag by hand.
    PUT  {"warehouse_id": 1} recomputes the flag from stock.
    """

    def get(self, request, menu_item_id):
        return self.respond(MenuItemService.check_availability(menu_item_id, self.get_int(request, "warehouse_id")))

    def post(self, request, menu_item_id):
        data = self.get_json_body(request)
        if data.get("available", True):
            return self.respond(MenuItemService.set_available(menu_item_id))
        return self.respond(MenuItemService.set_unavailable(menu_item_id, data.get("reason", "")))

    def put(self, request, menu_item_id):
        data = self.get_json_body(request)
        return self.respond(MenuItemService.update_availability_from_stock(menu_item_id, data.get("warehouse_id")))


class MenuItemFoodCostView(BaseInventoryView):

    def get(self, request, menu_item_id):
        result = MenuItemService.calculate_food_cost_percentage(
            menu_item_id, self.get_int(request, "warehouse_id"), request.GET.get("target")
        )
        return self.respond(result)


class MenuItemSaleView(BaseInventoryView):
    """POST /api/inventory/menu-items/<id>/sales/"""

    def post(self, request, menu_item_id):
        data = self.get_json_body(request)
        result = MenuItemService.record_sale(
            menu_item_id,
            data.get("warehouse_id"),
            data.get("quantity"),
            sold_at=data.get("sold_at"),
            reference_type=data.get("reference_type", ""),
            reference_id=data.get("reference_id", ""),
            created_by_id=self.get_user_id(request),
        )
        return self.respond(result, 201)


class MenuItemCOGSView(BaseInventoryView):

    def get(self, request, menu_item_id):
        result = MenuItemService.get_cogs_history(
            menu_item_id,
            date_from=request.GET.get("date_from"),
            date_to=request.GET.get("date_to"),
            page=self.get_int(request, "page", 1),
            per_page=self.get_int(request, "per_page", 50),
        )
        return self.respond(result)


class MenuProfitabilityView(BaseInventoryView):

    def get(self, request):
        result = MenuItemService.get_profitability(
            self.get_int(request, "warehouse_id"),
            property_id=self.get_int(request, "property_id"),
            target=request.GET.get("target"),
        )
        return self.respond(result)


class COGSSummaryView(BaseInventoryView):

    def get(self, request):
        result = MenuItemService.get_cogs_summary(
            request.GET.get("start_date"),
            request.GET.get("end_date"),
            property_id=self.get_int(request, "property_id"),
        )
        return self.respond(result)


# ==================== REPORTS ====================

class ReportView(BaseInventoryView):
    """GET /api/inventory/reports/<name>/"""

    def get(self, request, name):
        property_id = self.get_int(request, "property_id")
        start_date = request.GET.get("start_date")
        end_date = request.GET.get("end_date")

        if name == "stock-valuation":
            result = InventoryReportService.stock_valuation(
                property_id, warehouse_id=self.get_int(request, "warehouse_id")
            )
        elif name == "movement-history":
            result = InventoryReportService.movement_history(
                start_date, end_date,
                property_id=property_id,
                warehouse_id=self.get_int(request, "warehouse_id"),
                stock_item_id=self.get_int(request, "stock_item_id"),
                movement_type=request.GET.get("type"),
                page=self.get_int(request, "page", 1),
                per_page=self.get_int(request, "per_page", 50),
            )
        elif name == "low-stock":
            result = InventoryReportService.low_stock_alerts(
                property_id, warehouse_id=self.get_int(request, "warehouse_id")
            )
        elif name == "batch-expiration":
            result = InventoryReportService.batch_expiration(
                property_id, days_threshold=self.get_int(request, "days")
            )
        elif name == "cogs":
            result = InventoryReportService.cogs_report(start_date, end_date, property_id)
        elif name == "recipe-profitability":
            result = InventoryReportService.recipe_profitability(
                self.get_int(request, "warehouse_id"), property_id, request.GET.get("target")
            )
        elif name == "waste-analysis":
            result = InventoryReportService.waste_analysis(start_date, end_date, property_id)
        else:
            result = error_response(f"Unknown report: {name}", "NOT_FOUND")

        return self.respond(result)
