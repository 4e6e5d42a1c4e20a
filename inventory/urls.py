from django.urls import path
from . import views

app_name = "inventory"

urlpatterns = [
    path("settings/", views.InventorySettingsView.as_view(), name="settings"),
    path("par-levels/", views.ParLevelView.as_view(), name="par-levels"),

    path("warehouses/", views.WarehouseListView.as_view(), name="warehouse-list"),
    path("warehouses/<int:warehouse_id>/", views.WarehouseDetailView.as_view(), name="warehouse-detail"),
    path("warehouses/<int:warehouse_id>/<str:action>/", views.WarehouseActionView.as_view(), name="warehouse-action"),

    path("units/", views.UnitListView.as_view(), name="unit-list"),
    path("units/convert/", views.UnitConvertView.as_view(), name="unit-convert"),

    path("suppliers/", views.SupplierListView.as_view(), name="supplier-list"),
    path("suppliers/<int:supplier_id>/", views.SupplierDetailView.as_view(), name="supplier-detail"),

    path("categories/", views.CategoryListView.as_view(), name="category-list"),

    path("items/", views.StockItemListView.as_view(), name="item-list"),
    path("items/<int:item_id>/", views.StockItemDetailView.as_view(), name="item-detail"),

    path("levels/item/<int:item_id>/", views.StockLevelItemView.as_view(), name="level-item"),
    path("levels/warehouse/<int:warehouse_id>/", views.StockLevelWarehouseView.as_view(), name="level-warehouse"),
    path("levels/verify/", views.LevelVerifyView.as_view(), name="level-verify"),

    path("stock/<str:operation>/", views.StockOperationView.as_view(), name="stock-operation"),

    path("movements/", views.MovementListView.as_view(), name="movement-list"),
    path("movements/<int:movement_id>/", views.MovementDetailView.as_view(), name="movement-detail"),

    path("batches/expiring/", views.ExpiringBatchesView.as_view(), name="batch-expiring"),
    path("batches/expired/", views.ExpiredBatchesView.as_view(), name="batch-expired"),
    path("batches/<int:batch_id>/expire/", views.BatchExpireView.as_view(), name="batch-expire"),

    path("waste/", views.WasteView.as_view(), name="waste"),

    path("requisitions/", views.RequisitionListView.as_view(), name="requisition-list"),
    path("requisitions/<int:requisition_id>/", views.RequisitionDetailView.as_view(), name="requisition-detail"),
    path("requisitions/<int:requisition_id>/<str:action>/", views.RequisitionActionView.as_view(), name="requisition-action"),

    path("cycle-counts/", views.CycleCountListView.as_view(), name="cycle-count-list"),
    path("cycle-counts/<int:count_id>/", views.CycleCountDetailView.as_view(), name="cycle-count-detail"),
    path("cycle-counts/<int:count_id>/<str:action>/", views.CycleCountActionView.as_view(), name="cycle-count-action"),

    path("consignment/receipts/", views.ConsignmentReceiptListView.as_view(), name="consignment-receipt-list"),
    path("consignment/receipts/<int:receipt_id>/", views.ConsignmentReceiptDetailView.as_view(), name="consignment-receipt-detail"),
    path("consignment/sales/", views.ConsignmentSaleView.as_view(), name="consignment-sale"),
    path("consignment/returns/", views.ConsignmentReturnView.as_view(), name="consignment-return"),
    path("consignment/unsettled/<int:supplier_id>/", views.UnsettledSalesView.as_view(), name="consignment-unsettled"),
    path("consignment/settlements/", views.SettlementListView.as_view(), name="settlement-list"),
    path("consignment/settlements/<int:settlement_id>/", views.SettlementDetailView.as_view(), name="settlement-detail"),
    path("consignment/settlements/<int:settlement_id>/pay/", views.SettlementPayView.as_view(), name="settlement-pay"),
    path("consignment/suppliers/<int:supplier_id>/<str:view>/", views.SupplierConsignmentView.as_view(), name="consignment-supplier"),

    path("recipes/", views.RecipeListView.as_view(), name="recipe-list"),
    path("recipes/<int:recipe_id>/", views.RecipeDetailView.as_view(), name="recipe-detail"),
    path("recipes/<int:recipe_id>/sub-recipes/", views.RecipeSubRecipesView.as_view(), name="recipe-sub-recipes"),
    path("recipes/<int:recipe_id>/cost/", views.RecipeCostView.as_view(), name="recipe-cost"),
    path("recipes/<int:recipe_id>/availability/", views.RecipeAvailabilityView.as_view(), name="recipe-availability"),

    path("menu-items/", views.MenuItemListView.as_view(), name="menu-item-list"),
    path("menu-items/profitability/", views.MenuProfitabilityView.as_view(), name="menu-profitability"),
    path("menu-items/<int:menu_item_id>/", views.MenuItemDetailView.as_view(), name="menu-item-detail"),
    path("menu-items/<int:menu_item_id>/availability/", views.MenuItemAvailabilityView.as_view(), name="menu-item-availability"),
    path("menu-items/<int:menu_item_id>/food-cost/", views.MenuItemFoodCostView.as_view(), name="menu-item-food-cost"),
    path("menu-items/<int:menu_item_id>/sales/", views.MenuItemSaleView.as_view(), name="menu-item-sale"),
    path("menu-items/<int:menu_item_id>/cogs/", views.MenuItemCOGSView.as_view(), name="menu-item-cogs"),
    path("cogs/summary/", views.COGSSummaryView.as_view(), name="cogs-summary"),

    path("reports/<str:name>/", views.ReportView.as_view(), name="report"),
]
