from sqlmodel import SQLModel, Field, Relationship, Column, JSON
from pydantic import EmailStr, computed_field, field_validator, model_validator
from urllib.parse import urlparse
import datetime
import enum
from typing import Optional


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value):
    """Timestamps are kept timezone aware in UTC. Naive input is read as UTC."""
    if not isinstance(value, datetime.datetime):
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def is_rental_overdue(
    end_date: datetime.datetime,
    return_date: Optional[datetime.datetime] = None,
    now: Optional[datetime.datetime] = None,
) -> bool:
    if return_date:
        return False
    return as_utc(end_date) < (as_utc(now) or utcnow())


def is_rental_due_soon(
    end_date: datetime.datetime,
    return_date: Optional[datetime.datetime] = None,
    now: Optional[datetime.datetime] = None,
) -> bool:
    """True when an unreturned rental is due within the next 24 hours."""
    if return_date:
        return False
    remaining = as_utc(end_date) - (as_utc(now) or utcnow())
    hours_until_due = int(remaining.total_seconds() / 3600)
    return 0 < hours_until_due <= 24


def _blank_to_none(value):
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


#######
# ENUMS
#######


class RateType(str, enum.Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ItemCondition(str, enum.Enum):
    NEW = "new"
    GOOD = "good"
    FAIR = "fair"
    NEEDS_REPAIR = "needs_repair"


class ItemStatus(str, enum.Enum):
    AVAILABLE = "available"
    RENTED = "rented"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"


class RentalStatus(str, enum.Enum):
    DRAFT = "draft"
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    OVERDUE = "overdue"


# Rentals whose items are with the customer.
RENTED_OUT_STATUSES = (RentalStatus.ACTIVE, RentalStatus.OVERDUE)


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    OTHER = "other"


class SortOrder(str, enum.Enum):
    ASC = "asc"
    DESC = "desc"


class RentalSortField(str, enum.Enum):
    RENTAL_NUMBER = "rental_number"
    START_DATE = "start_date"
    TOTAL_AMOUNT = "total_amount"
    CREATED_AT = "created_at"


class CustomerSortField(str, enum.Enum):
    NAME = "name"
    CREATED_AT = "created_at"


class InventorySortField(str, enum.Enum):
    NAME = "name"
    CREATED_AT = "created_at"
    QUANTITY_TOTAL = "quantity_total"
    DAILY_RATE = "daily_rate"


################
# CATEGORY MODEL
################


class CategoryBase(SQLModel):
    name: str = Field(min_length=2, max_length=50)
    icon: Optional[str] = Field(default=None, max_length=10)
    sort_order: int = 0


class Category(CategoryBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(
        default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow}
    )


class CategoryCreate(CategoryBase):
    pass


class CategoryUpdate(SQLModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    icon: Optional[str] = Field(default=None, max_length=10)
    sort_order: Optional[int] = None


class CategoryRead(CategoryBase):
    id: int


#################
# INVENTORY MODEL
#################


class Pricing(SQLModel):
    hourly: Optional[float] = Field(default=None, gt=0)
    daily: Optional[float] = Field(default=None, gt=0)
    weekly: Optional[float] = Field(default=None, gt=0)
    monthly: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def at_least_one_rate(self):
        if not any(getattr(self, rate_type.value) for rate_type in RateType):
            raise ValueError("At least one pricing rate is required")
        return self


class InventoryItemBase(SQLModel):
    name: str = Field(min_length=2, max_length=100, index=True)
    description: Optional[str] = Field(default=None, max_length=500)
    category_id: Optional[int] = Field(default=None, foreign_key="category.id")
    quantity_total: int = Field(default=1, ge=1)
    condition: ItemCondition = ItemCondition.GOOD
    purchase_cost: Optional[float] = Field(default=None, ge=0)
    purchase_date: Optional[datetime.date] = None
    deposit_required: float = Field(default=0, ge=0)
    minimum_rental_period: int = Field(default=24, ge=1)  # hours
    status: ItemStatus = ItemStatus.AVAILABLE


class InventoryItem(InventoryItemBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    pricing: dict = Field(default_factory=dict, sa_column=Column(JSON))
    photos: list = Field(default_factory=list, sa_column=Column(JSON))
    specifications: dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(
        default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow}
    )

    category: Optional[Category] = Relationship()


def _check_photos(photos):
    if photos is None:
        return photos
    if len(photos) > 5:
        raise ValueError("Maximum 5 photos allowed")
    for url in photos:
        parsed = urlparse(url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(f"Invalid photo URL: {url}")
    return photos


class InventoryItemCreate(InventoryItemBase):
    pricing: Pricing
    photos: list[str] = []
    specifications: dict = {}

    check_photos = field_validator("photos")(_check_photos)


class InventoryItemUpdate(SQLModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    category_id: Optional[int] = None
    quantity_total: Optional[int] = Field(default=None, ge=1)
    condition: Optional[ItemCondition] = None
    purchase_cost: Optional[float] = Field(default=None, ge=0)
    purchase_date: Optional[datetime.date] = None
    pricing: Optional[Pricing] = None
    deposit_required: Optional[float] = Field(default=None, ge=0)
    minimum_rental_period: Optional[int] = Field(default=None, ge=1)
    photos: Optional[list[str]] = None
    specifications: Optional[dict] = None
    status: Optional[ItemStatus] = None

    check_photos = field_validator("photos")(_check_photos)


class InventoryItemRead(InventoryItemBase):
    id: int
    pricing: dict[str, Optional[float]]
    photos: list[str]
    specifications: dict
    created_at: datetime.datetime
    updated_at: datetime.datetime


class InventoryItemReadWithCategory(InventoryItemRead):
    category: Optional[CategoryRead] = None


class InventoryItemSummary(SQLModel):
    id: int
    name: str
    quantity_total: int
    photos: list[str] = []


class Availability(SQLModel):
    available_quantity: int
    booked_quantity: int


################
# CUSTOMER MODEL
################


class CustomerBase(SQLModel):
    name: str = Field(min_length=2, max_length=100, index=True)
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=20)
    address: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)


class Customer(CustomerBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    tags: list = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(
        default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow}
    )

    rentals: list["Rental"] = Relationship(back_populates="customer")


class CustomerCreate(CustomerBase):
    email: Optional[EmailStr] = None
    tags: list[str] = []

    check_blanks = field_validator("email", "phone", "address", "notes", mode="before")(
        _blank_to_none
    )


class CustomerRead(CustomerBase):
    id: int
    tags: list[str]
    created_at: datetime.datetime
    updated_at: datetime.datetime


class CustomerSummary(SQLModel):
    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None


###############
# PAYMENT MODEL
###############


class PaymentBase(SQLModel):
    rental_id: int = Field(foreign_key="rental.id", ondelete="CASCADE", index=True)
    amount: float = Field(gt=0)
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_date: datetime.date
    notes: Optional[str] = Field(default=None, max_length=500)


class Payment(PaymentBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    created_at: datetime.datetime = Field(default_factory=utcnow)

    rental: Optional["Rental"] = Relationship(back_populates="payments")


class PaymentCreate(PaymentBase):
    check_blanks = field_validator("notes", mode="before")(_blank_to_none)


class PaymentRead(PaymentBase):
    id: int
    created_at: datetime.datetime


class PaymentSummary(SQLModel):
    total_received: float
    total_outstanding: float
    payment_count: int


###################
# RENTAL ITEM MODEL
###################


class RentalItemBase(SQLModel):
    inventory_item_id: int = Field(foreign_key="inventoryitem.id", index=True)
    quantity: int = Field(default=1, ge=1)
    rate_type: RateType = RateType.DAILY
    condition_before: Optional[ItemCondition] = None
    condition_after: Optional[ItemCondition] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class RentalItem(RentalItemBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    rental_id: int = Field(foreign_key="rental.id", ondelete="CASCADE", index=True)
    rate_amount: float = 0
    subtotal: float = 0

    rental: Optional["Rental"] = Relationship(back_populates="items")
    inventory_item: Optional[InventoryItem] = Relationship()


class RentalItemCreate(RentalItemBase):
    # Taken from the inventory item's pricing when omitted.
    rate_amount: Optional[float] = Field(default=None, ge=0)
    # Computed from rate, quantity and the rental period when omitted.
    subtotal: Optional[float] = Field(default=None, ge=0)

    check_blanks = field_validator("notes", mode="before")(_blank_to_none)


class RentalItemRead(RentalItemBase):
    id: int
    rental_id: int
    rate_amount: float
    subtotal: float


class RentalItemReadWithItem(RentalItemRead):
    inventory_item: Optional[InventoryItemSummary] = None


##############
# RENTAL MODEL
##############


class RentalBase(SQLModel):
    customer_id: int = Field(foreign_key="customer.id", index=True)
    start_date: datetime.datetime
    end_date: datetime.datetime
    return_date: Optional[datetime.datetime] = None
    status: RentalStatus = RentalStatus.DRAFT
    deposit_amount: float = Field(default=0, ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)


class Rental(RentalBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    rental_number: str = Field(index=True)
    total_amount: float = 0
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(
        default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow}
    )

    customer: Optional[Customer] = Relationship(back_populates="rentals")
    items: list[RentalItem] = Relationship(
        back_populates="rental",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )
    payments: list[Payment] = Relationship(
        back_populates="rental",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


def _check_items(items):
    if items is not None and len(items) == 0:
        raise ValueError("At least one item is required")
    return items


class RentalCreate(RentalBase):
    # Sum of line subtotals when omitted.
    total_amount: Optional[float] = Field(default=None, ge=0)
    items: list[RentalItemCreate]

    check_dates = field_validator("start_date", "end_date", "return_date")(as_utc)
    check_blanks = field_validator("notes", mode="before")(_blank_to_none)
    check_items = field_validator("items")(_check_items)

    @model_validator(mode="after")
    def end_after_start(self):
        if self.end_date < self.start_date:
            raise ValueError("End date must be after or equal to start date")
        return self


class RentalUpdate(SQLModel):
    customer_id: Optional[int] = None
    start_date: Optional[datetime.datetime] = None
    end_date: Optional[datetime.datetime] = None
    return_date: Optional[datetime.datetime] = None
    status: Optional[RentalStatus] = None
    total_amount: Optional[float] = Field(default=None, ge=0)
    deposit_amount: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)
    items: Optional[list[RentalItemCreate]] = None

    check_dates = field_validator("start_date", "end_date", "return_date")(as_utc)
    check_blanks = field_validator("notes", mode="before")(_blank_to_none)
    check_items = field_validator("items")(_check_items)

    @model_validator(mode="after")
    def end_after_start(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("End date must be after or equal to start date")
        return self


class RentalRead(RentalBase):
    id: int
    rental_number: str
    total_amount: float
    created_at: datetime.datetime
    updated_at: datetime.datetime

    @computed_field
    @property
    def overdue(self) -> bool:
        if self.status not in RENTED_OUT_STATUSES:
            return False
        return is_rental_overdue(self.end_date, self.return_date)

    @computed_field
    @property
    def due_soon(self) -> bool:
        if self.status not in RENTED_OUT_STATUSES:
            return False
        return is_rental_due_soon(self.end_date, self.return_date)


class RentalReadWithCustomer(RentalRead):
    customer: Optional[CustomerSummary] = None


class RentalReadWithItems(RentalReadWithCustomer):
    items: list[RentalItemReadWithItem] = []


class RentalReadWithDetails(RentalReadWithItems):
    payments: list[PaymentRead] = []


class CustomerReadWithRentals(CustomerRead):
    rentals: list[RentalRead] = []


class RentalSummary(SQLModel):
    id: int
    rental_number: str
    customer: Optional[CustomerSummary] = None


class PaymentReadWithRental(PaymentRead):
    rental: Optional[RentalSummary] = None


class ReturnItem(SQLModel):
    rental_item_id: int
    condition_after: ItemCondition
    notes: Optional[str] = Field(default=None, max_length=500)

    check_blanks = field_validator("notes", mode="before")(_blank_to_none)


class ProcessReturn(SQLModel):
    return_date: datetime.datetime
    items: list[ReturnItem]
    additional_charges: float = Field(default=0, ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)

    check_dates = field_validator("return_date")(as_utc)
    check_blanks = field_validator("notes", mode="before")(_blank_to_none)
    check_items = field_validator("items")(_check_items)


#########
# PRICING
#########


class QuoteRequest(SQLModel):
    rate_amount: float = Field(gt=0)
    rate_type: RateType
    start_date: datetime.datetime
    end_date: datetime.datetime
    quantity: int = Field(default=1, ge=1)

    check_dates = field_validator("start_date", "end_date")(as_utc)

    @model_validator(mode="after")
    def end_after_start(self):
        if self.end_date < self.start_date:
            raise ValueError("End date must be after or equal to start date")
        return self


class Quote(SQLModel):
    duration: int
    unit_cost: float
    quantity: int
    subtotal: float


###########
# ANALYTICS
###########


class DashboardStats(SQLModel):
    total_revenue: float
    total_rentals: int
    active_rentals: int
    total_customers: int
    total_items: int
    available_items: int


class RevenuePoint(SQLModel):
    date: datetime.date
    amount: float


class TopItem(SQLModel):
    id: int
    name: str
    rental_count: int
    total_revenue: float


class MetricChange(SQLModel):
    value: str
    trend: str


class MetricsComparison(SQLModel):
    revenue: MetricChange
    total_rentals: MetricChange
    active_rentals: MetricChange
    customers: MetricChange
    utilization: MetricChange
