from contextlib import asynccontextmanager
from typing import Annotated
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from datetime import datetime
from sqlmodel import Session, SQLModel
from typing import Optional
import logging

from . import analytics, config, customers, inventory, payments, rentals
from .auth import CurrentUser, get_current_user
from .availability import check_availability
from .database import engine, get_session
from .errors import ServiceError, ValidationFailed
from .models import (
    Availability,
    CategoryCreate,
    CategoryRead,
    CategoryUpdate,
    CustomerCreate,
    CustomerRead,
    CustomerReadWithRentals,
    CustomerSortField,
    DashboardStats,
    InventoryItemCreate,
    InventoryItemRead,
    InventoryItemReadWithCategory,
    InventoryItemUpdate,
    InventorySortField,
    ItemCondition,
    ItemStatus,
    MetricsComparison,
    PaymentCreate,
    PaymentRead,
    PaymentReadWithRental,
    PaymentSummary,
    ProcessReturn,
    Quote,
    QuoteRequest,
    RentalCreate,
    RentalReadWithCustomer,
    RentalReadWithDetails,
    RentalReadWithItems,
    RentalSortField,
    RentalStatus,
    RentalUpdate,
    RevenuePoint,
    SortOrder,
    TopItem,
    as_utc,
)
from .pricing import line_subtotal, rental_duration

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

User = Annotated[CurrentUser, Depends(get_current_user)]


@asynccontextmanager
async def lifespan(app: FastAPI):
    SQLModel.metadata.create_all(engine)
    yield


app = FastAPI(
    lifespan=lifespan,
    title="RentalTool API",
    description="API to manage customers, inventory, rentals and payments for a rental business.",
    version="0.1.0",
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def _period(start_date: datetime, end_date: datetime) -> tuple[datetime, datetime]:
    start, end = as_utc(start_date), as_utc(end_date)
    if end < start:
        raise ValidationFailed("End date must be after or equal to start date")
    return start, end


@app.get("/health", summary="Health check", tags=["Health"])
def health():
    return {"status": "ok"}


# --- Pricing ---
@app.post(
    "/pricing/quote",
    response_model=Quote,
    summary="Quote a rental line",
    response_description="Billed duration and cost",
    tags=["Pricing"],
)
def quote(request: QuoteRequest, current_user: User):
    """
    Price one line: duration is counted in whole units of the rate type,
    rounded up, and never less than one unit.
    """
    return Quote(
        duration=rental_duration(request.rate_type, request.start_date, request.end_date),
        unit_cost=request.rate_amount,
        quantity=request.quantity,
        subtotal=line_subtotal(
            request.rate_amount,
            request.rate_type,
            request.quantity,
            request.start_date,
            request.end_date,
        ),
    )


# --- Categories ---
@app.get(
    "/categories",
    response_model=list[CategoryRead],
    summary="List categories",
    tags=["Categories"],
)
def list_categories(current_user: User, session: Session = Depends(get_session)):
    return inventory.list_categories(session, current_user.id)


@app.post(
    "/categories",
    response_model=CategoryRead,
    summary="Create category",
    tags=["Categories"],
)
def create_category(
    category: CategoryCreate, current_user: User, session: Session = Depends(get_session)
):
    return inventory.create_category(session, current_user.id, category)


@app.put(
    "/categories/{id}",
    response_model=CategoryRead,
    summary="Update category",
    tags=["Categories"],
)
def update_category(
    id: int,
    category: CategoryUpdate,
    current_user: User,
    session: Session = Depends(get_session),
):
    return inventory.update_category(session, current_user.id, id, category)


@app.delete("/categories/{id}", summary="Delete category", tags=["Categories"])
def delete_category(id: int, current_user: User, session: Session = Depends(get_session)):
    """Delete a category. Its items are kept, without a category."""
    inventory.delete_category(session, current_user.id, id)
    return {"ok": True}


# --- Inventory Management ---
@app.get(
    "/inventory",
    response_model=list[InventoryItemReadWithCategory],
    summary="List items in inventory",
    response_description="List of items",
    tags=["Inventory"],
)
def list_items(
    current_user: User,
    session: Session = Depends(get_session),
    search: Optional[str] = Query(None, description="Filter by item name (partial match)"),
    category_id: Optional[int] = Query(None, description="Filter by category"),
    status: Optional[ItemStatus] = Query(None, description="Filter by status"),
    condition: Optional[ItemCondition] = Query(None, description="Filter by condition"),
    sort_by: InventorySortField = Query(InventorySortField.CREATED_AT),
    sort_order: SortOrder = Query(SortOrder.DESC),
):
    """
    List inventory items with optional filtering.

    - **search**: Optional filter by item name (partial match)
    - **category_id**: Optional filter by category
    - **status**: Optional filter by lifecycle status
    - **condition**: Optional filter by condition
    """
    return inventory.list_inventory_items(
        session,
        current_user.id,
        search=search,
        category_id=category_id,
        status=status,
        condition=condition,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@app.post(
    "/inventory",
    response_model=InventoryItemRead,
    summary="Add new item to inventory",
    response_description="Item data",
    tags=["Inventory"],
)
def create_item(
    item: InventoryItemCreate, current_user: User, session: Session = Depends(get_session)
):
    """Add new item to inventory. At least one pricing rate is required."""
    return inventory.create_inventory_item(session, current_user.id, item)


@app.get(
    "/inventory/{id}",
    response_model=InventoryItemReadWithCategory,
    summary="Get inventory item",
    tags=["Inventory"],
)
def get_item(id: int, current_user: User, session: Session = Depends(get_session)):
    return inventory.get_inventory_item(session, current_user.id, id)


@app.put(
    "/inventory/{id}",
    response_model=InventoryItemRead,
    summary="Update item in inventory",
    response_description="Updated item data",
    tags=["Inventory"],
)
def update_item(
    id: int,
    updated_item: InventoryItemUpdate,
    current_user: User,
    session: Session = Depends(get_session),
):
    """
    Update item in inventory. Only the fields sent are changed.
    - **id**: Unique ID of item.
    """
    return inventory.update_inventory_item(session, current_user.id, id, updated_item)


@app.delete("/inventory/{id}", summary="Delete item in inventory", tags=["Inventory"])
def delete_item(id: int, current_user: User, session: Session = Depends(get_session)):
    """
    Delete item in inventory. Items referenced by rentals cannot be deleted.
    - **id**: Unique ID of item.
    """
    inventory.delete_inventory_item(session, current_user.id, id)
    return {"ok": True}


@app.get(
    "/inventory/{id}/availability",
    response_model=Availability,
    summary="Check item availability",
    response_description="Free and booked quantity for the period",
    tags=["Inventory"],
)
def item_availability(
    id: int,
    current_user: User,
    start_date: datetime = Query(..., description="Start of the period"),
    end_date: datetime = Query(..., description="End of the period"),
    exclude_rental_id: Optional[int] = Query(
        None, description="Rental whose own bookings are ignored"
    ),
    session: Session = Depends(get_session),
):
    """Units of the item free during the whole period, across overlapping rentals."""
    start, end = _period(start_date, end_date)
    return check_availability(session, current_user.id, id, start, end, exclude_rental_id)


# --- Customers ---
@app.get(
    "/customers",
    response_model=list[CustomerRead],
    summary="List customers",
    tags=["Customers"],
)
def list_customers(
    current_user: User,
    session: Session = Depends(get_session),
    search: Optional[str] = Query(None, description="Match name, email or phone"),
    tag: Optional[str] = Query(None, description="Only customers carrying this tag"),
    sort_by: CustomerSortField = Query(CustomerSortField.CREATED_AT),
    sort_order: SortOrder = Query(SortOrder.DESC),
):
    return customers.list_customers(
        session,
        current_user.id,
        search=search,
        tag=tag,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@app.get(
    "/customers/tags",
    response_model=list[str],
    summary="List customer tags",
    tags=["Customers"],
)
def list_customer_tags(current_user: User, session: Session = Depends(get_session)):
    return customers.list_customer_tags(session, current_user.id)


@app.post(
    "/customers",
    response_model=CustomerRead,
    summary="Create customer",
    tags=["Customers"],
)
def create_customer(
    customer: CustomerCreate, current_user: User, session: Session = Depends(get_session)
):
    return customers.create_customer(session, current_user.id, customer)


@app.get(
    "/customers/{id}",
    response_model=CustomerReadWithRentals,
    summary="Get customer with rentals",
    tags=["Customers"],
)
def get_customer(id: int, current_user: User, session: Session = Depends(get_session)):
    return customers.get_customer(session, current_user.id, id)


@app.put(
    "/customers/{id}",
    response_model=CustomerRead,
    summary="Update customer",
    tags=["Customers"],
)
def update_customer(
    id: int,
    customer: CustomerCreate,
    current_user: User,
    session: Session = Depends(get_session),
):
    return customers.update_customer(session, current_user.id, id, customer)


@app.delete("/customers/{id}", summary="Delete customer", tags=["Customers"])
def delete_customer(id: int, current_user: User, session: Session = Depends(get_session)):
    """Delete a customer. Customers with rentals cannot be deleted."""
    customers.delete_customer(session, current_user.id, id)
    return {"ok": True}


# --- Rentals ---
@app.get(
    "/rentals",
    response_model=list[RentalReadWithItems],
    summary="List rentals",
    response_description="List of rentals",
    tags=["Rentals"],
)
def list_rentals(
    current_user: User,
    session: Session = Depends(get_session),
    search: Optional[str] = Query(None, description="Match rental number or customer name"),
    customer_id: Optional[int] = Query(None, description="Filter by customer"),
    status: Optional[RentalStatus] = Query(None, description="Filter by status"),
    start_date_from: Optional[datetime] = Query(None, description="Earliest start date"),
    start_date_to: Optional[datetime] = Query(None, description="Latest start date"),
    sort_by: RentalSortField = Query(RentalSortField.CREATED_AT),
    sort_order: SortOrder = Query(SortOrder.DESC),
):
    """List rentals with their customer and line items."""
    return rentals.list_rentals(
        session,
        current_user.id,
        search=search,
        customer_id=customer_id,
        status=status,
        start_date_from=start_date_from,
        start_date_to=start_date_to,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@app.post(
    "/rentals",
    response_model=RentalReadWithItems,
    summary="Create new rental",
    response_description="Rental data",
    tags=["Rentals"],
)
def create_rental(
    rental: RentalCreate, current_user: User, session: Session = Depends(get_session)
):
    """
    Create a rental with its line items if every item is available for the period.
    - **customer_id**: Customer renting
    - **start_date** / **end_date**: Rental period, end not before start
    - **items**: At least one line; rate and subtotal are derived when omitted
    """
    return rentals.create_rental(session, current_user.id, rental)


@app.post(
    "/rentals/mark-overdue",
    summary="Mark overdue rentals",
    response_description="Number of rentals marked overdue",
    tags=["Rentals"],
)
def mark_overdue(current_user: User, session: Session = Depends(get_session)):
    """Move active rentals past their end date to overdue."""
    return {"updated": rentals.mark_overdue_rentals(session, current_user.id)}


@app.get(
    "/rentals/{id}",
    response_model=RentalReadWithDetails,
    summary="Get rental",
    response_description="Rental with customer, items and payments",
    tags=["Rentals"],
)
def get_rental(id: int, current_user: User, session: Session = Depends(get_session)):
    return rentals.get_rental(session, current_user.id, id)


@app.put(
    "/rentals/{id}",
    response_model=RentalReadWithItems,
    summary="Update existing rental",
    response_description="Updated rental data",
    tags=["Rentals"],
)
def update_rental(
    id: int,
    updated_rental: RentalUpdate,
    current_user: User,
    session: Session = Depends(get_session),
):
    """
    Update a rental. Only the fields sent are changed. Sending **items**
    replaces all existing line items.
    - **id**: Rental ID
    """
    return rentals.update_rental(session, current_user.id, id, updated_rental)


@app.delete("/rentals/{id}", summary="Delete rental", tags=["Rentals"])
def delete_rental(id: int, current_user: User, session: Session = Depends(get_session)):
    """
    Delete a rental together with its line items and payments.
    - **id**: Rental ID
    """
    rentals.delete_rental(session, current_user.id, id)
    return {"ok": True}


@app.post(
    "/rentals/{id}/return",
    response_model=RentalReadWithDetails,
    summary="Process rental return",
    response_description="Completed rental",
    tags=["Rentals"],
)
def process_return(
    id: int,
    data: ProcessReturn,
    current_user: User,
    session: Session = Depends(get_session),
):
    """
    Complete a rental, record each item's condition after return and, when
    **additional_charges** is above zero, record a payment for them.
    """
    return rentals.process_return(session, current_user.id, id, data)


@app.get(
    "/rentals/{id}/payments",
    response_model=list[PaymentRead],
    summary="List payments of a rental",
    tags=["Payments"],
)
def list_rental_payments(id: int, current_user: User, session: Session = Depends(get_session)):
    return payments.list_rental_payments(session, current_user.id, id)


# --- Payments ---
@app.get(
    "/payments",
    response_model=list[PaymentReadWithRental],
    summary="List payments",
    tags=["Payments"],
)
def list_payments(current_user: User, session: Session = Depends(get_session)):
    return payments.list_payments(session, current_user.id)


@app.get(
    "/payments/summary",
    response_model=PaymentSummary,
    summary="Payment totals",
    tags=["Payments"],
)
def get_payment_summary(current_user: User, session: Session = Depends(get_session)):
    return payments.payment_summary(session, current_user.id)


@app.post(
    "/payments",
    response_model=PaymentRead,
    summary="Record payment",
    tags=["Payments"],
)
def create_payment(
    payment: PaymentCreate, current_user: User, session: Session = Depends(get_session)
):
    return payments.create_payment(session, current_user.id, payment)


# --- Analytics ---
@app.get(
    "/analytics/dashboard",
    response_model=DashboardStats,
    summary="Dashboard statistics",
    tags=["Analytics"],
)
def dashboard(current_user: User, session: Session = Depends(get_session)):
    return analytics.dashboard_stats(session, current_user.id)


@app.get(
    "/analytics/revenue",
    response_model=list[RevenuePoint],
    summary="Revenue by day",
    tags=["Analytics"],
)
def revenue(
    current_user: User,
    start_date: datetime = Query(..., description="Start of the period"),
    end_date: datetime = Query(..., description="End of the period"),
    session: Session = Depends(get_session),
):
    start, end = _period(start_date, end_date)
    return analytics.revenue_by_date(session, current_user.id, start, end)


@app.get(
    "/analytics/top-items",
    response_model=list[TopItem],
    summary="Most rented items",
    tags=["Analytics"],
)
def top_items(
    current_user: User,
    limit: int = Query(5, ge=1, le=100),
    session: Session = Depends(get_session),
):
    return analytics.top_items(session, current_user.id, limit)


@app.get(
    "/analytics/recent-rentals",
    response_model=list[RentalReadWithCustomer],
    summary="Most recent rentals",
    tags=["Analytics"],
)
def recent_rentals(
    current_user: User,
    limit: int = Query(10, ge=1, le=100),
    session: Session = Depends(get_session),
):
    return analytics.recent_rentals(session, current_user.id, limit)


@app.get(
    "/analytics/comparison",
    response_model=MetricsComparison,
    summary="Change against the previous period",
    tags=["Analytics"],
)
def comparison(
    current_user: User,
    days: int = Query(30, ge=1, le=365),
    session: Session = Depends(get_session),
):
    return analytics.metrics_comparison(session, current_user.id, days)
