"""
Inventory Services - stock ledger, consignment, recipe costing and reporting

Usage:
    from inventory.services import StockOperationService, ConsignmentService

    # Receive stock
    result = StockOperationService.receive_stock(stock_item_id=1, warehouse_id=1, quantity="100", unit_cost="2.50")

    # Sell a consignment item
    ConsignmentService.record_sale(stock_item_id=3, supplier_id=None, quantity="2")
"""

# Base utilities
from inventory.services.base_service import (
    ServiceError,
    ValidationError,
    NotFoundError,
    PreconditionError,
    InsufficientStockError,
    PersistenceError,
    success_response,
    error_response,
    service_operation,
    paginate_queryset,
    to_decimal,
    round_decimal,
    weighted_average,
    generate_number,
    BaseService,
)
# Settings
from .settings_service import InventorySettingsService, StockParLevelService

# Reference data
from .warehouse_service import PropertyService, WarehouseService
from .unit_service import StockUnitService
from .supplier_service import SupplierService
from .item_service import StockCategoryService, StockItemService

# Ledger and stock operations
from .level_service import StockLevelService, StockMovementService
from .batch_service import StockBatchService
from .stock_service import StockOperationService
from .waste_service import WasteService

# Internal workflows
from .requisition_service import RequisitionService
from .count_service import CycleCountService

# Consignment
from .consignment_service import ConsignmentService

# Recipes & Menu
from .recipe_service import RecipeService
from .menu_service import MenuItemService

# Reporting
from .report_service import InventoryReportService


__all__ = [
    # Base
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "PreconditionError",
    "InsufficientStockError",
    "PersistenceError",
    "success_response",
    "error_response",
    "service_operation",
    "paginate_queryset",
    "to_decimal",
    "round_decimal",
    "weighted_average",
    "generate_number",
    "BaseService",

    # Settings
    "InventorySettingsService",
    "StockParLevelService",

    # Reference data
    "PropertyService",
    "WarehouseService",
    "StockUnitService",
    "SupplierService",
    "StockCategoryService",
    "StockItemService",

    # Ledger and stock operations
    "StockLevelService",
    "StockMovementService",
    "StockBatchService",
    "StockOperationService",
    "WasteService",

    # Internal workflows
    "RequisitionService",
    "CycleCountService",

    # Consignment
    "ConsignmentService",

    # Recipes & Menu
    "RecipeService",
    "MenuItemService",

    # Reporting
    "InventoryReportService",
]
