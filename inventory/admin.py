from django.contrib import admin
from django.db.models import Sum
from django.utils.html import format_html
from django.utils.translation import gettext_lazy as _
from django.urls import reverse
from unfold.admin import ModelAdmin, TabularInline
from unfold.decorators import display
from unfold.contrib.filters.admin import (
    RangeDateFilter,
    RangeDateTimeFilter,
    RangeNumericFilter,
)
from .models import (
    Property, Warehouse, Supplier, StockUnit, StockCategory, StockItem,
    StockLevel, StockBatch, StockMovement, StockParLevel, WasteRecord,
    Requisition, RequisitionItem, CycleCount, CycleCountItem,
    ConsignmentReceipt, ConsignmentReceiptItem, ConsignmentSale, ConsignmentSettlement,
    Recipe, RecipeIngredient, RecipeSubRecipe, MenuItem, COGSRecord, InventorySettings,
)


class ReadOnlyLedgerAdmin(ModelAdmin):
    """Ledger rows are posted by the services and never edited by hand."""

    list_filter_submit = True
    list_fullwidth = True

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


def item_link(stock_item):
    url = reverse('admin:inventory_stockitem_change', args=[stock_item.pk])
    return format_html('<a href="{}">{}</a>', url, stock_item.name)


# ==================== REFERENCE DATA ====================

class WarehouseInline(TabularInline):
    model = Warehouse
    extra = 0
    fields = ('name', 'code', 'type', 'is_active')


@admin.register(Property)
class PropertyAdmin(ModelAdmin):
    list_display = ['id', 'name', 'code', 'status_badge', 'warehouse_count', 'created_at']
    list_filter = ['is_active']
    search_fields = ['name', 'code']
    inlines = [WarehouseInline]

    @display(description=_("Status"), label=True)
    def status_badge(self, obj):
        if obj.is_active:
            return 'success', _("Active")
        return 'danger', _("Inactive")

    @display(description=_("Warehouses"))
    def warehouse_count(self, obj):
        return obj.warehouses.count()


@admin.register(Warehouse)
class WarehouseAdmin(ModelAdmin):
    list_display = ['id', 'name', 'property', 'type_badge', 'status_badge', 'stock_value']
    list_filter = ['type', 'is_active', 'property']
    search_fields = ['name', 'code', 'property__name']
    list_filter_submit = True

    @display(description=_("Type"), label=True)
    def type_badge(self, obj):
        colors = {
            'MAIN_STOCKROOM': 'primary',
            'KITCHEN': 'warning',
            'HOUSEKEEPING': 'info',
            'BAR': 'success',
            'MINIBAR': 'info',
        }
        return colors.get(obj.type, 'info'), obj.get_type_display()

    @display(description=_("Status"), label=True)
    def status_badge(self, obj):
        if obj.is_active:
            return 'success', _("Active")
        return 'danger', _("Inactive")

    @display(description=_("Stock Value"))
    def stock_value(self, obj):
        total = sum(level.total_value for level in obj.stock_levels.all())
        return f"${total:.2f}"


@admin.register(Supplier)
class SupplierAdmin(ModelAdmin):
    list_display = ['id', 'code', 'name', 'contact_person', 'email', 'phone', 'is_active']
    list_filter = ['is_active']
    search_fields = ['code', 'name', 'contact_person', 'email']

    fieldsets = (
        (_('Supplier'), {
            'fields': ('code', 'name', 'is_active')
        }),
        (_('Contact'), {
            'fields': ('contact_person', 'email', 'phone', 'address')
        }),
        (_('Notes'), {
            'fields': ('notes',)
        }),
    )


@admin.register(StockUnit)
class StockUnitAdmin(ModelAdmin):
    list_display = ['id', 'name', 'abbreviation', 'unit_type', 'is_base_unit', 'conversion_factor']
    list_filter = ['unit_type', 'is_base_unit']
    search_fields = ['name', 'abbreviation']


@admin.register(StockCategory)
class StockCategoryAdmin(ModelAdmin):
    list_display = ['id', 'name', 'color', 'is_active', 'item_count']
    list_filter = ['is_active']
    search_fields = ['name']

    @display(description=_("Items"))
    def item_count(self, obj):
        return obj.items.count()


@admin.register(StockItem)
class StockItemAdmin(ModelAdmin):
    list_display = ['id', 'sku', 'name', 'category', 'primary_unit', 'consignment_badge',
                    'total_quantity', 'is_active']
    list_filter = ['category', 'is_consignment', 'is_active']
    search_fields = ['sku', 'name', 'supplier__name']
    list_filter_submit = True
    list_fullwidth = True

    fieldsets = (
        (_('Item'), {
            'fields': ('sku', 'name', 'category', 'primary_unit', 'is_active'),
            'classes': ['tab'],
        }),
        (_('Consignment'), {
            'fields': ('is_consignment', 'supplier'),
            'classes': ['tab'],
            'description': _('Consignment items remain supplier property until sold.'),
        }),
    )

    @display(description=_("Consignment"), label=True)
    def consignment_badge(self, obj):
        if obj.is_consignment:
            return 'warning', obj.supplier.name if obj.supplier_id else _("Consignment")
        return 'info', _("Owned")

    @display(description=_("On Hand"))
    def total_quantity(self, obj):
        total = obj.stock_levels.aggregate(total=Sum('quantity'))['total'] or 0
        return f"{total} {obj.primary_unit.abbreviation}"


@admin.register(StockParLevel)
class StockParLevelAdmin(ModelAdmin):
    list_display = ['id', 'stock_item', 'warehouse', 'par_level', 'updated_at']
    list_filter = ['warehouse']
    search_fields = ['stock_item__name', 'stock_item__sku']


@admin.register(InventorySettings)
class InventorySettingsAdmin(ModelAdmin):
    list_display = ['id', 'target_food_cost_percentage', 'expiry_warning_days',
                    'expiry_critical_days', 'updated_at']

    def has_add_permission(self, request):
        return not InventorySettings.objects.exists()

    def has_delete_permission(self, request, obj=None):
        return False


# ==================== LEDGER ====================

@admin.register(StockLevel)
class StockLevelAdmin(ReadOnlyLedgerAdmin):
    list_display = ['id', 'stock_item_link', 'warehouse', 'quantity', 'average_cost',
                    'value_display', 'updated_at']
    list_filter = [
        'warehouse',
        ('quantity', RangeNumericFilter),
    ]
    search_fields = ['stock_item__name', 'stock_item__sku']

    @display(description=_("Stock Item"))
    def stock_item_link(self, obj):
        return item_link(obj.stock_item)

    @display(description=_("Value"))
    def value_display(self, obj):
        return f"${obj.total_value:.2f}"


@admin.register(StockMovement)
class StockMovementAdmin(ReadOnlyLedgerAdmin):
    list_display = ['id', 'stock_item_link', 'type_badge', 'quantity', 'unit_cost', 'total_cost',
                    'source_warehouse', 'destination_warehouse', 'reference_type', 'created_at']
    list_filter = [
        'movement_type',
        ('created_at', RangeDateTimeFilter),
        ('total_cost', RangeNumericFilter),
    ]
    search_fields = ['stock_item__name', 'stock_item__sku', 'reference_type', 'reference_id', 'reason']

    @display(description=_("Stock Item"))
    def stock_item_link(self, obj):
        return item_link(obj.stock_item)

    @display(description=_("Type"), label=True)
    def type_badge(self, obj):
        colors = {
            'RECEIPT': 'success',
            'TRANSFER_IN': 'info',
            'TRANSFER_OUT': 'info',
            'CONSUMPTION': 'warning',
            'ADJUSTMENT': 'primary',
            'RETURN': 'warning',
            'WASTE': 'danger',
        }
        return colors.get(obj.movement_type, 'info'), obj.get_movement_type_display()


@admin.register(StockBatch)
class StockBatchAdmin(ReadOnlyLedgerAdmin):
    list_display = ['id', 'batch_number', 'stock_item', 'warehouse', 'quantity',
                    'received_date', 'expiration_date', 'expired_badge']
    list_filter = [
        'is_expired',
        'warehouse',
        ('expiration_date', RangeDateFilter),
    ]
    search_fields = ['batch_number', 'stock_item__name']

    @display(description=_("Expired"), label=True)
    def expired_badge(self, obj):
        if obj.is_expired:
            return 'danger', _("Expired")
        return 'success', _("Fresh")


@admin.register(WasteRecord)
class WasteRecordAdmin(ReadOnlyLedgerAdmin):
    list_display = ['id', 'stock_item', 'warehouse', 'waste_type', 'quantity', 'total_cost', 'reason',
                    'created_at']
    list_filter = [
        'waste_type',
        'warehouse',
        ('created_at', RangeDateTimeFilter),
    ]
    search_fields = ['stock_item__name', 'reason']


# ==================== REQUISITIONS & CYCLE COUNTS ====================

class RequisitionItemInline(TabularInline):
    model = RequisitionItem
    extra = 0
    fields = ('stock_item', 'requested_quantity', 'fulfilled_quantity')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Requisition)
class RequisitionAdmin(ReadOnlyLedgerAdmin):
    list_display = ['requisition_number', 'source_warehouse', 'requesting_warehouse',
                    'status_badge', 'created_at']
    list_filter = [
        'status',
        'source_warehouse',
        ('created_at', RangeDateTimeFilter),
    ]
    search_fields = ['requisition_number', 'notes']
    inlines = [RequisitionItemInline]

    @display(description=_("Status"), label=True)
    def status_badge(self, obj):
        colours = {
            Requisition.Status.PARTIALLY_FULFILLED: 'warning',
            Requisition.Status.FULFILLED: 'success',
            Requisition.Status.REJECTED: 'danger',
        }
        return colours.get(obj.status, 'info'), obj.get_status_display()


class CycleCountItemInline(TabularInline):
    model = CycleCountItem
    extra = 0
    fields = ('stock_item', 'system_quantity', 'counted_quantity', 'variance', 'variance_cost')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(CycleCount)
class CycleCountAdmin(ReadOnlyLedgerAdmin):
    list_display = ['count_number', 'warehouse', 'status', 'started_at', 'completed_at']
    list_filter = [
        'status',
        'warehouse',
        ('created_at', RangeDateTimeFilter),
    ]
    search_fields = ['count_number']
    inlines = [CycleCountItemInline]


# ==================== CONSIGNMENT ====================

class ConsignmentReceiptItemInline(TabularInline):
    model = ConsignmentReceiptItem
    extra = 0
    fields = ('stock_item', 'quantity', 'selling_price', 'supplier_cost')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(ConsignmentReceipt)
class ConsignmentReceiptAdmin(ReadOnlyLedgerAdmin):
    list_display = ['receipt_number', 'supplier', 'warehouse', 'received_at']
    list_filter = [
        'supplier',
        ('received_at', RangeDateTimeFilter),
    ]
    search_fields = ['receipt_number', 'supplier__name']
    inlines = [ConsignmentReceiptItemInline]


@admin.register(ConsignmentSale)
class ConsignmentSaleAdmin(ReadOnlyLedgerAdmin):
    list_display = ['id', 'stock_item', 'supplier', 'quantity', 'selling_price', 'supplier_cost',
                    'supplier_due', 'sold_at', 'settled_badge']
    list_filter = [
        'supplier',
        ('sold_at', RangeDateTimeFilter),
    ]
    search_fields = ['stock_item__name', 'supplier__name', 'reference_id']

    @display(description=_("Supplier Due"))
    def supplier_due(self, obj):
        return f"${obj.quantity * obj.supplier_cost:.2f}"

    @display(description=_("Settlement"), label=True)
    def settled_badge(self, obj):
        if obj.settled_at:
            return 'success', _("Paid")
        if obj.settlement_id:
            return 'warning', obj.settlement.settlement_number
        return 'info', _("Unsettled")


@admin.register(ConsignmentSettlement)
class ConsignmentSettlementAdmin(ReadOnlyLedgerAdmin):
    list_display = ['settlement_number', 'supplier', 'period_start', 'period_end',
                    'total_sales', 'total_supplier_due', 'paid_badge']
    list_filter = [
        'supplier',
        ('created_at', RangeDateTimeFilter),
    ]
    search_fields = ['settlement_number', 'supplier__name']

    @display(description=_("Status"), label=True)
    def paid_badge(self, obj):
        if obj.is_paid:
            return 'success', _("Paid")
        return 'warning', _("Pending")


# ==================== RECIPES & MENU ====================

class RecipeIngredientInline(TabularInline):
    model = RecipeIngredient
    extra = 0
    fields = ('stock_item', 'quantity', 'unit')


class RecipeSubRecipeInline(TabularInline):
    model = RecipeSubRecipe
    fk_name = 'parent_recipe'
    extra = 0
    fields = ('child_recipe', 'quantity')


@admin.register(Recipe)
class RecipeAdmin(ModelAdmin):
    list_display = ['id', 'name', 'property', 'yield_quantity', 'ingredient_count', 'is_active']
    list_filter = ['is_active', 'property']
    search_fields = ['name', 'description']
    inlines = [RecipeIngredientInline, RecipeSubRecipeInline]

    @display(description=_("Ingredients"))
    def ingredient_count(self, obj):
        return obj.ingredients.count()


@admin.register(MenuItem)
class MenuItemAdmin(ModelAdmin):
    list_display = ['id', 'name', 'category', 'price_display', 'recipe', 'availability_badge']
    list_filter = [
        'category',
        'is_available',
        ('selling_price', RangeNumericFilter),
    ]
    search_fields = ['name', 'description']
    list_filter_submit = True

    @display(description=_("Price"), ordering='selling_price')
    def price_display(self, obj):
        return f"${obj.selling_price:.2f}"

    @display(description=_("Availability"), label=True)
    def availability_badge(self, obj):
        if obj.is_available:
            return 'success', _("Available")
        return 'danger', obj.unavailable_reason or _("Unavailable")


@admin.register(COGSRecord)
class COGSRecordAdmin(ReadOnlyLedgerAdmin):
    list_display = ['id', 'menu_item', 'warehouse', 'quantity', 'unit_cost', 'total_cost',
                    'selling_price', 'sold_at']
    list_filter = [
        'warehouse',
        ('sold_at', RangeDateTimeFilter),
    ]
    search_fields = ['menu_item__name', 'reference_id']
