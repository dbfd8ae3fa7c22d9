import pytest
from pydantic import ValidationError

from .conftest import OTHER_USER_ID, USER_ID
from .errors import ConflictError, NotFoundError
from .inventory import (
    create_category,
    create_inventory_item,
    delete_inventory_item,
    list_inventory_items,
    update_inventory_item,
)
from .models import (
    CategoryCreate,
    InventoryItemCreate,
    InventoryItemUpdate,
    InventorySortField,
    SortOrder,
)


def test_pricing_needs_at_least_one_rate():
    with pytest.raises(ValidationError):
        InventoryItemCreate(name="Kayak", pricing={})
    item = InventoryItemCreate(name="Kayak", pricing={"monthly": 900})
    assert item.pricing.monthly == 900


@pytest.mark.parametrize(
    "photos",
    [
        ["ftp://example.com/kayak.jpg"],
        ["not a url"],
        [f"https://example.com/{index}.jpg" for index in range(6)],
    ],
)
def test_photos_must_be_a_few_web_links(photos):
    with pytest.raises(ValidationError):
        InventoryItemCreate(name="Kayak", pricing={"daily": 10}, photos=photos)


def test_item_cannot_use_other_tenants_category(session):
    category = create_category(session, OTHER_USER_ID, CategoryCreate(name="Boats"))
    with pytest.raises(NotFoundError):
        create_inventory_item(
            session,
            USER_ID,
            InventoryItemCreate(name="Kayak", pricing={"daily": 10}, category_id=category.id),
        )


def test_update_ignores_nulls_for_required_fields(session, make_item):
    item = make_item(description="Two person tent")
    updated = update_inventory_item(
        session,
        USER_ID,
        item.id,
        InventoryItemUpdate(name=None, quantity_total=None, description=None),
    )
    assert updated.name == "Camping tent"
    assert updated.quantity_total == 3
    assert updated.description is None


def test_sort_by_daily_rate(session, make_item):
    make_item(name="Tent", pricing={"daily": 40.0})
    make_item(name="Kayak", pricing={"daily": 90.0})
    make_item(name="Lamp", pricing={"hourly": 2.0})

    ascending = list_inventory_items(
        session, USER_ID, sort_by=InventorySortField.DAILY_RATE, sort_order=SortOrder.ASC
    )
    assert [item.name for item in ascending] == ["Lamp", "Tent", "Kayak"]

    by_name = list_inventory_items(
        session, USER_ID, search="a", sort_by=InventorySortField.NAME, sort_order=SortOrder.ASC
    )
    assert [item.name for item in by_name] == ["Kayak", "Lamp"]


def test_rented_item_cannot_be_deleted(session, make_customer, make_item, make_rental):
    item = make_item()
    make_rental(make_customer(), [(item, 1)])
    with pytest.raises(ConflictError):
        delete_inventory_item(session, USER_ID, item.id)
