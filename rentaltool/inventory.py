import logging
from typing import Optional

from sqlmodel import Session, col, select

from .availability import get_owned_item
from .errors import ConflictError, NotFoundError
from .models import (
    Category,
    CategoryCreate,
    CategoryUpdate,
    InventoryItem,
    InventoryItemCreate,
    InventoryItemUpdate,
    InventorySortField,
    ItemCondition,
    ItemStatus,
    RentalItem,
    SortOrder,
)

logger = logging.getLogger(__name__)

NULLABLE_FIELDS = {"description", "category_id", "purchase_cost", "purchase_date"}


def _daily_rate(item: InventoryItem) -> float:
    return (item.pricing or {}).get("daily") or 0


def list_inventory_items(
    session: Session,
    user_id: str,
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    status: Optional[ItemStatus] = None,
    condition: Optional[ItemCondition] = None,
    sort_by: InventorySortField = InventorySortField.CREATED_AT,
    sort_order: SortOrder = SortOrder.DESC,
) -> list[InventoryItem]:
    query = select(InventoryItem).where(InventoryItem.user_id == user_id)

    if search:
        query = query.where(col(InventoryItem.name).ilike(f"%{search}%"))
    if category_id:
        query = query.where(InventoryItem.category_id == category_id)
    if status:
        query = query.where(InventoryItem.status == status)
    if condition:
        query = query.where(InventoryItem.condition == condition)

    sort_by = InventorySortField(sort_by)
    descending = sort_order == SortOrder.DESC
    if sort_by == InventorySortField.DAILY_RATE:
        # The daily rate sits inside the pricing JSON, so sort after the fetch.
        items = session.exec(query).all()
        return sorted(items, key=_daily_rate, reverse=descending)

    column = col(getattr(InventoryItem, sort_by.value))
    query = query.order_by(column.desc() if descending else column.asc())
    return list(session.exec(query).all())


def get_inventory_item(session: Session, user_id: str, item_id: int) -> InventoryItem:
    return get_owned_item(session, user_id, item_id)


def _check_category(session: Session, user_id: str, category_id: Optional[int]) -> None:
    if category_id is not None:
        get_category(session, user_id, category_id)


def create_inventory_item(
    session: Session, user_id: str, data: InventoryItemCreate
) -> InventoryItem:
    _check_category(session, user_id, data.category_id)
    item = InventoryItem(**data.model_dump(), user_id=user_id)
    session.add(item)
    session.commit()
    session.refresh(item)
    logger.info("Created inventory item %s", item.id)
    return item


def update_inventory_item(
    session: Session, user_id: str, item_id: int, data: InventoryItemUpdate
) -> InventoryItem:
    item = get_owned_item(session, user_id, item_id)
    changes = {
        key: value
        for key, value in data.model_dump(exclude_unset=True).items()
        if value is not None or key in NULLABLE_FIELDS
    }
    if "category_id" in changes:
        _check_category(session, user_id, changes["category_id"])
    for key, value in changes.items():
        setattr(item, key, value)
    session.add(item)
    session.commit()
    session.refresh(item)
    return item


def delete_inventory_item(session: Session, user_id: str, item_id: int) -> None:
    item = get_owned_item(session, user_id, item_id)
    in_use = session.exec(
        select(RentalItem.id).where(RentalItem.inventory_item_id == item_id)
    ).first()
    if in_use is not None:
        raise ConflictError("Inventory item is used by rentals and cannot be deleted")
    session.delete(item)
    session.commit()
    logger.info("Deleted inventory item %s", item_id)


############
# CATEGORIES
############


def list_categories(session: Session, user_id: str) -> list[Category]:
    return list(
        session.exec(
            select(Category)
            .where(Category.user_id == user_id)
            .order_by(col(Category.sort_order).asc())
        ).all()
    )


def get_category(session: Session, user_id: str, category_id: int) -> Category:
    category = session.get(Category, category_id)
    if not category or category.user_id != user_id:
        raise NotFoundError("Category not found")
    return category


def create_category(session: Session, user_id: str, data: CategoryCreate) -> Category:
    category = Category(**data.model_dump(), user_id=user_id)
    session.add(category)
    session.commit()
    session.refresh(category)
    return category


def update_category(
    session: Session, user_id: str, category_id: int, data: CategoryUpdate
) -> Category:
    category = get_category(session, user_id, category_id)
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(category, key, value)
    session.add(category)
    session.commit()
    session.refresh(category)
    return category


def delete_category(session: Session, user_id: str, category_id: int) -> None:
    """Delete a category; its items become uncategorised."""
    category = get_category(session, user_id, category_id)
    items = session.exec(
        select(InventoryItem).where(InventoryItem.category_id == category_id)
    ).all()
    for item in items:
        item.category_id = None
        session.add(item)
    session.delete(category)
    session.commit()
