import uuid as uuid_lib

from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.db import models

SETTINGS_CACHE_KEY = "inventory:settings"
SETTINGS_CACHE_TIMEOUT = 300


class Property(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    name = models.CharField(max_length=200)
    code = models.CharField(max_length=20, unique=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "properties"
        ordering = ["name"]

    def __str__(self):
        return self.name


class Warehouse(models.Model):
    class WarehouseType(models.TextChoices):
        MAIN_STOCKROOM = "MAIN_STOCKROOM", "Main Stockroom"
        KITCHEN = "KITCHEN", "Kitchen"
        HOUSEKEEPING = "HOUSEKEEPING", "Housekeeping"
        BAR = "BAR", "Bar"
        MINIBAR = "MINIBAR", "Minibar"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    property = models.ForeignKey(
        Property, on_delete=models.PROTECT, related_name="warehouses"
    )
    name = models.CharField(max_length=100)
    code = models.CharField(max_length=20, blank=True, default="")
    type = models.CharField(
        max_length=20,
        choices=WarehouseType.choices,
        default=WarehouseType.MAIN_STOCKROOM,
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["property", "name"]
        unique_together = [("property", "name")]

    def __str__(self):
        return f"{self.name} ({self.get_type_display()})"


class Supplier(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    code = models.CharField(max_length=20, unique=True)
    name = models.CharField(max_length=200)
    contact_person = models.CharField(max_length=100, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    phone = models.CharField(max_length=50, blank=True, default="")
    address = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class StockUnit(models.Model):
    class UnitType(models.TextChoices):
        WEIGHT = "WEIGHT", "Weight"
        VOLUME = "VOLUME", "Volume"
        COUNT = "COUNT", "Count"
        LENGTH = "LENGTH", "Length"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    name = models.CharField(max_length=50)
    abbreviation = models.CharField(max_length=10, unique=True)
    unit_type = models.CharField(max_length=20, choices=UnitType.choices)
    is_base_unit = models.BooleanField(default=False)
    conversion_factor = models.DecimalField(
        max_digits=15,
        decimal_places=6,
        default=1,
        help_text="Multiply by this factor to convert to the base unit of the same type",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["unit_type", "name"]

    def __str__(self):
        return f"{self.name} ({self.abbreviation})"


class StockCategory(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    name = models.CharField(max_length=100, unique=True)
    color = models.CharField(max_length=20, blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name_plural = "stock categories"
        ordering = ["name"]

    def __str__(self):
        return self.name


class StockItem(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    name = models.CharField(max_length=200)
    sku = models.CharField(max_length=50, unique=True)
    category = models.ForeignKey(
        StockCategory,
        on_delete=models.PROTECT,
        related_name="items",
    )
    primary_unit = models.ForeignKey(
        StockUnit,
        on_delete=models.PROTECT,
        related_name="stock_items",
    )
    is_consignment = models.BooleanField(default=False)
    supplier = models.ForeignKey(
        Supplier,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="stock_items",
        help_text="Owner of the stock when the item is held on consignment",
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def clean(self):
        if self.is_consignment and not self.supplier_id:
            raise ValidationError({"supplier": "Consignment items require a supplier"})

    def __str__(self):
        return self.name


class StockLevel(models.Model):
    """
    Current quantity and weighted-average cost per item per warehouse.
    Only mutated by the ledger services, always alongside a StockMovement.
    """

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    stock_item = models.ForeignKey(
        StockItem, on_delete=models.PROTECT, related_name="stock_levels"
    )
    warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, related_name="stock_levels"
    )
    quantity = models.DecimalField(max_digits=15, decimal_places=3, default=0)
    average_cost = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = [("stock_item", "warehouse")]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=0), name="stock_level_quantity_non_negative"
            ),
            models.CheckConstraint(
                condition=models.Q(average_cost__gte=0), name="stock_level_cost_non_negative"
            ),
        ]

    @property
    def total_value(self):
        return self.quantity * self.average_cost

    def __str__(self):
        return f"{self.stock_item.name} @ {self.warehouse.name}: {self.quantity}"


class ImmutableRecordError(Exception):
    pass


class AppendOnlyModel(models.Model):
    """Rows are written once; corrections are posted as new rows."""

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableRecordError(f"{type(self).__name__} records cannot be modified")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableRecordError(f"{type(self).__name__} records cannot be deleted")


class StockBatch(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    batch_number = models.CharField(max_length=100)
    stock_item = models.ForeignKey(
        StockItem, on_delete=models.PROTECT, related_name="batches"
    )
    warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, related_name="batches"
    )
    quantity = models.DecimalField(max_digits=15, decimal_places=3)
    unit_cost = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    received_date = models.DateField()
    expiration_date = models.DateField(null=True, blank=True, db_index=True)
    is_expired = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = [("batch_number", "stock_item", "warehouse")]
        verbose_name_plural = "stock batches"
        ordering = ["expiration_date", "received_date"]

    def __str__(self):
        return f"Batch {self.batch_number} - {self.stock_item.name}"


class StockMovement(AppendOnlyModel):
    class MovementType(models.TextChoices):
        RECEIPT = "RECEIPT", "Receipt"
        TRANSFER_IN = "TRANSFER_IN", "Transfer In"
        TRANSFER_OUT = "TRANSFER_OUT", "Transfer Out"
        CONSUMPTION = "CONSUMPTION", "Consumption"
        ADJUSTMENT = "ADJUSTMENT", "Adjustment"
        RETURN = "RETURN", "Return"
        WASTE = "WASTE", "Waste"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    stock_item = models.ForeignKey(
        StockItem, on_delete=models.PROTECT, related_name="movements"
    )
    movement_type = models.CharField(
        max_length=20, choices=MovementType.choices, db_index=True
    )
    quantity = models.DecimalField(max_digits=15, decimal_places=3)
    unit_cost = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    total_cost = models.DecimalField(max_digits=15, decimal_places=2, default=0)
    source_warehouse = models.ForeignKey(
        Warehouse,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="outgoing_movements",
    )
    destination_warehouse = models.ForeignKey(
        Warehouse,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="incoming_movements",
    )
    batch = models.ForeignKey(
        StockBatch,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="movements",
    )

    # Generic reference to the business event that caused the movement
    reference_type = models.CharField(max_length=50, blank=True, default="")
    reference_id = models.CharField(max_length=64, blank=True, default="")

    reason = models.CharField(max_length=255, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    # User id from the host application's auth store
    created_by_id = models.PositiveIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["stock_item", "created_at"]),
            models.Index(fields=["movement_type", "created_at"]),
            models.Index(fields=["reference_type", "reference_id"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(source_warehouse__isnull=False)
                | models.Q(destination_warehouse__isnull=False),
                name="stock_movement_has_warehouse",
            ),
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0), name="stock_movement_quantity_positive"
            ),
        ]

    def __str__(self):
        return f"{self.get_movement_type_display()} {self.quantity} x {self.stock_item.name}"


class StockParLevel(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    stock_item = models.ForeignKey(
        StockItem, on_delete=models.CASCADE, related_name="par_levels"
    )
    warehouse = models.ForeignKey(
        Warehouse, on_delete=models.CASCADE, related_name="par_levels"
    )
    par_level = models.DecimalField(max_digits=15, decimal_places=3)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = [("stock_item", "warehouse")]

    def __str__(self):
        return f"{self.stock_item.name} @ {self.warehouse.name}: par {self.par_level}"


class WasteRecord(AppendOnlyModel):
    class WasteType(models.TextChoices):
        SPOILAGE = "SPOILAGE", "Spoilage"
        EXPIRED = "EXPIRED", "Expired"
        DAMAGED = "DAMAGED", "Damaged"
        OVERPRODUCTION = "OVERPRODUCTION", "Overproduction"
        PREPARATION_WASTE = "PREPARATION_WASTE", "Preparation Waste"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    stock_item = models.ForeignKey(
        StockItem, on_delete=models.PROTECT, related_name="waste_records"
    )
    warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, related_name="waste_records"
    )
    batch = models.ForeignKey(
        StockBatch,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="waste_records",
    )
    waste_type = models.CharField(max_length=20, choices=WasteType.choices)
    quantity = models.DecimalField(max_digits=15, decimal_places=3)
    unit_cost = models.DecimalField(max_digits=15, decimal_places=4)
    total_cost = models.DecimalField(max_digits=15, decimal_places=2)
    reason = models.CharField(max_length=255, blank=True, default="")
    created_by_id = models.PositiveIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.get_waste_type_display()}: {self.quantity} x {self.stock_item.name}"


# ==================== CONSIGNMENT ====================


class Requisition(models.Model):
    """
    A request from one warehouse for stock held by another. Fulfillment
    moves stock as ordinary transfers and may happen in several rounds.
    """

    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        APPROVED = "APPROVED", "Approved"
        PARTIALLY_FULFILLED = "PARTIALLY_FULFILLED", "Partially Fulfilled"
        FULFILLED = "FULFILLED", "Fulfilled"
        REJECTED = "REJECTED", "Rejected"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    requisition_number = models.CharField(max_length=50, unique=True)
    requesting_warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, related_name="requisitions_out"
    )
    source_warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, related_name="requisitions_in"
    )
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True
    )
    requested_by_id = models.PositiveIntegerField(null=True, blank=True)
    approved_by_id = models.PositiveIntegerField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.CharField(max_length=255, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.requisition_number} | {self.source_warehouse.name} -> {self.requesting_warehouse.name}"


class RequisitionItem(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    requisition = models.ForeignKey(
        Requisition, on_delete=models.CASCADE, related_name="items"
    )
    stock_item = models.ForeignKey(
        StockItem, on_delete=models.PROTECT, related_name="+"
    )
    requested_quantity = models.DecimalField(max_digits=15, decimal_places=3)
    fulfilled_quantity = models.DecimalField(max_digits=15, decimal_places=3, default=0)

    class Meta:
        unique_together = [("requisition", "stock_item")]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(fulfilled_quantity__lte=models.F("requested_quantity")),
                name="requisition_item_not_overfulfilled",
            ),
        ]

    @property
    def remaining_quantity(self):
        return self.requested_quantity - self.fulfilled_quantity

    def __str__(self):
        return f"{self.requisition.requisition_number}: {self.requested_quantity} x {self.stock_item.name}"


class CycleCount(models.Model):
    class Status(models.TextChoices):
        DRAFT = "DRAFT", "Draft"
        IN_PROGRESS = "IN_PROGRESS", "In Progress"
        PENDING_REVIEW = "PENDING_REVIEW", "Pending Review"
        COMPLETED = "COMPLETED", "Completed"
        CANCELLED = "CANCELLED", "Cancelled"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    count_number = models.CharField(max_length=50, unique=True)
    warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, related_name="cycle_counts"
    )
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.DRAFT, db_index=True
    )
    started_at = models.DateTimeField(null=True, blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_by_id = models.PositiveIntegerField(null=True, blank=True)
    approved_by_id = models.PositiveIntegerField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.count_number} | {self.warehouse.name}"


class CycleCountItem(models.Model):
    """
    One item of a count. System quantity and unit cost are frozen when the
    count starts; variance is counted minus system.
    """

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    cycle_count = models.ForeignKey(
        CycleCount, on_delete=models.CASCADE, related_name="items"
    )
    stock_item = models.ForeignKey(
        StockItem, on_delete=models.PROTECT, related_name="+"
    )
    system_quantity = models.DecimalField(max_digits=15, decimal_places=3, default=0)
    counted_quantity = models.DecimalField(max_digits=15, decimal_places=3, null=True, blank=True)
    unit_cost = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    variance = models.DecimalField(max_digits=15, decimal_places=3, null=True, blank=True)
    variance_cost = models.DecimalField(max_digits=15, decimal_places=2, null=True, blank=True)
    adjustment_movement = models.ForeignKey(
        StockMovement, on_delete=models.PROTECT, null=True, blank=True, related_name="+"
    )
    counted_by_id = models.PositiveIntegerField(null=True, blank=True)
    counted_at = models.DateTimeField(null=True, blank=True)
    notes = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        unique_together = [("cycle_count", "stock_item")]

    def __str__(self):
        return f"{self.cycle_count.count_number}: {self.stock_item.name}"


class ConsignmentReceipt(AppendOnlyModel):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    receipt_number = models.CharField(max_length=50, unique=True)
    supplier = models.ForeignKey(
        Supplier, on_delete=models.PROTECT, related_name="consignment_receipts"
    )
    warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, related_name="consignment_receipts"
    )
    received_at = models.DateTimeField(db_index=True)
    notes = models.TextField(blank=True, default="")
    created_by_id = models.PositiveIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-received_at", "-id"]

    def __str__(self):
        return f"{self.receipt_number} | {self.supplier.name}"


class ConsignmentReceiptItem(AppendOnlyModel):
    receipt = models.ForeignKey(
        ConsignmentReceipt, on_delete=models.PROTECT, related_name="items"
    )
    stock_item = models.ForeignKey(
        StockItem, on_delete=models.PROTECT, related_name="consignment_receipt_items"
    )
    quantity = models.DecimalField(max_digits=15, decimal_places=3)
    selling_price = models.DecimalField(max_digits=15, decimal_places=2)
    supplier_cost = models.DecimalField(max_digits=15, decimal_places=4)

    def __str__(self):
        return f"{self.receipt.receipt_number}: {self.quantity} x {self.stock_item.name}"


class ConsignmentSettlement(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    settlement_number = models.CharField(max_length=50, unique=True)
    supplier = models.ForeignKey(
        Supplier, on_delete=models.PROTECT, related_name="consignment_settlements"
    )
    period_start = models.DateTimeField()
    period_end = models.DateTimeField()
    total_sales = models.DecimalField(max_digits=15, decimal_places=2)
    total_supplier_due = models.DecimalField(max_digits=15, decimal_places=2)
    settled_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    created_by_id = models.PositiveIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    @property
    def is_paid(self):
        return self.settled_at is not None

    def __str__(self):
        return f"{self.settlement_number} | {self.supplier.name}"


class ConsignmentSale(models.Model):
    """
    One sale of a consignment item. Prices are copied from the latest
    receipt at sale time; only the settlement link and settled_at change later.
    """

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    stock_item = models.ForeignKey(
        StockItem, on_delete=models.PROTECT, related_name="consignment_sales"
    )
    supplier = models.ForeignKey(
        Supplier, on_delete=models.PROTECT, related_name="consignment_sales"
    )
    quantity = models.DecimalField(max_digits=15, decimal_places=3)
    selling_price = models.DecimalField(max_digits=15, decimal_places=2)
    supplier_cost = models.DecimalField(max_digits=15, decimal_places=4)
    sold_at = models.DateTimeField(db_index=True)
    settlement = models.ForeignKey(
        ConsignmentSettlement,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="sales",
    )
    settled_at = models.DateTimeField(null=True, blank=True)
    reference_type = models.CharField(max_length=50, blank=True, default="")
    reference_id = models.CharField(max_length=64, blank=True, default="")
    created_by_id = models.PositiveIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-sold_at", "-id"]
        indexes = [
            models.Index(fields=["supplier", "settlement", "sold_at"]),
        ]

    def delete(self, *args, **kwargs):
        raise ImmutableRecordError("ConsignmentSale records cannot be deleted")

    def __str__(self):
        return f"{self.quantity} x {self.stock_item.name} @ {self.selling_price}"


# ==================== RECIPES & MENU ====================


class Recipe(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    property = models.ForeignKey(
        Property,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="recipes",
    )
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True, default="")
    yield_quantity = models.DecimalField(
        max_digits=12, decimal_places=3, help_text="Portions produced by one batch"
    )
    yield_unit = models.ForeignKey(
        StockUnit,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class RecipeIngredient(models.Model):
    recipe = models.ForeignKey(
        Recipe, on_delete=models.CASCADE, related_name="ingredients"
    )
    stock_item = models.ForeignKey(
        StockItem, on_delete=models.PROTECT, related_name="recipe_usages"
    )
    quantity = models.DecimalField(max_digits=15, decimal_places=4)
    unit = models.ForeignKey(StockUnit, on_delete=models.PROTECT, related_name="+")

    class Meta:
        unique_together = [("recipe", "stock_item")]
        ordering = ["id"]

    def __str__(self):
        return f"{self.quantity} {self.unit.abbreviation} {self.stock_item.name}"


class RecipeSubRecipe(models.Model):
    parent_recipe = models.ForeignKey(
        Recipe, on_delete=models.CASCADE, related_name="child_recipes"
    )
    child_recipe = models.ForeignKey(
        Recipe, on_delete=models.PROTECT, related_name="parent_recipes"
    )
    quantity = models.DecimalField(
        max_digits=12, decimal_places=3, help_text="Portions of the child recipe used"
    )

    class Meta:
        unique_together = [("parent_recipe", "child_recipe")]
        ordering = ["id"]

    def __str__(self):
        return f"{self.parent_recipe.name} <- {self.quantity} x {self.child_recipe.name}"


class MenuItem(models.Model):
    class Category(models.TextChoices):
        APPETIZER = "APPETIZER", "Appetizer"
        MAIN_COURSE = "MAIN_COURSE", "Main Course"
        DESSERT = "DESSERT", "Dessert"
        BEVERAGE = "BEVERAGE", "Beverage"
        SIDE_DISH = "SIDE_DISH", "Side Dish"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    property = models.ForeignKey(
        Property,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="menu_items",
    )
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True, default="")
    category = models.CharField(max_length=20, choices=Category.choices)
    selling_price = models.DecimalField(max_digits=12, decimal_places=2)
    recipe = models.ForeignKey(
        Recipe,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="menu_items",
    )
    is_available = models.BooleanField(default=True)
    unavailable_reason = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["category", "name"]

    def clean(self):
        if not self.is_available and not self.unavailable_reason:
            raise ValidationError(
                {"unavailable_reason": "A reason is required when the item is unavailable"}
            )

    def __str__(self):
        return self.name


class COGSRecord(AppendOnlyModel):
    """Cost of goods sold, frozen at the moment of sale."""

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    menu_item = models.ForeignKey(
        MenuItem, on_delete=models.PROTECT, related_name="cogs_records"
    )
    recipe = models.ForeignKey(
        Recipe, on_delete=models.PROTECT, related_name="cogs_records"
    )
    warehouse = models.ForeignKey(
        Warehouse, on_delete=models.PROTECT, related_name="cogs_records"
    )
    quantity = models.PositiveIntegerField()
    unit_cost = models.DecimalField(max_digits=15, decimal_places=4)
    total_cost = models.DecimalField(max_digits=15, decimal_places=2)
    selling_price = models.DecimalField(max_digits=12, decimal_places=2)
    sold_at = models.DateTimeField(db_index=True)
    reference_type = models.CharField(max_length=50, blank=True, default="")
    reference_id = models.CharField(max_length=64, blank=True, default="")
    created_by_id = models.PositiveIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "COGS record"
        ordering = ["-sold_at", "-id"]

    def __str__(self):
        return f"{self.menu_item.name} x{self.quantity} @ {self.unit_cost}"


class InventorySettings(models.Model):
    """
    Singleton settings table. Use InventorySettings.load() to get the instance.
    """

    target_food_cost_percentage = models.DecimalField(
        max_digits=5, decimal_places=2, default=35
    )
    expiry_warning_days = models.PositiveIntegerField(default=30)
    expiry_critical_days = models.PositiveIntegerField(default=3)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "inventory settings"
        verbose_name_plural = "inventory settings"

    def save(self, *args, **kwargs):
        self.pk = 1
        super().save(*args, **kwargs)
        cache.delete(SETTINGS_CACHE_KEY)

    @classmethod
    def load(cls):
        obj = cache.get(SETTINGS_CACHE_KEY)
        if obj is None:
            obj, _ = cls.objects.get_or_create(pk=1)
            cache.set(SETTINGS_CACHE_KEY, obj, SETTINGS_CACHE_TIMEOUT)
        return obj

    def __str__(self):
        return "Inventory Settings"
