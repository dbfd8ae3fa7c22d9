import pytest

from .conftest import OTHER_USER_ID, USER_ID
from .customers import create_customer, delete_customer, list_customer_tags, list_customers
from .errors import NotFoundError
from .models import CustomerCreate, CustomerSortField, SortOrder


def test_customer_search_and_tags(session):
    create_customer(
        session, USER_ID, CustomerCreate(name="Alice Smith", phone="555-0101", tags=["vip"])
    )
    create_customer(
        session,
        USER_ID,
        CustomerCreate(name="Bob Jones", email="bob@example.com", tags=["vip", "school"]),
    )
    create_customer(session, OTHER_USER_ID, CustomerCreate(name="Carol", tags=["other"]))

    assert [c.name for c in list_customers(session, USER_ID, search="0101")] == ["Alice Smith"]
    assert [c.name for c in list_customers(session, USER_ID, tag="school")] == ["Bob Jones"]
    names = list_customers(
        session, USER_ID, sort_by=CustomerSortField.NAME, sort_order=SortOrder.ASC
    )
    assert [c.name for c in names] == ["Alice Smith", "Bob Jones"]
    assert list_customer_tags(session, USER_ID) == ["school", "vip"]


def test_blank_contact_fields_become_null():
    customer = CustomerCreate(name="Alice Smith", email="", phone="  ", notes="")
    assert customer.email is None
    assert customer.phone is None
    assert customer.notes is None


def test_other_tenants_customer_cannot_be_deleted(session, make_customer):
    customer = make_customer(user_id=OTHER_USER_ID)
    with pytest.raises(NotFoundError):
        delete_customer(session, USER_ID, customer.id)
