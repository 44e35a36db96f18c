"""
Shared fixtures.

The billing schema used throughout the tests:

- Invoice.customer is an embedded, required relation to Customer, stored
  as ``customerId`` in snapshots
- Customer.regionId is a scalar relation to Region
- Every entity is stored in the key-value backend unless a test builds its
  own parameters
"""

import copy

import pytest

from polystore.contract import UserToken
from polystore.schema import SchemaLoader


BILLING_SCHEMA = {
    "context": "billing",
    "version": "v1",
    "entities": {
        "Region": {
            "columns": [
                {"name": "regionId", "type": "string", "pk": True},
                {"name": "name", "type": "string"},
            ],
        },
        "Customer": {
            "columns": [
                {"name": "customerId", "type": "string", "pk": True},
                {"name": "name", "type": "string"},
                {"name": "regionId", "type": "string"},
            ],
            "indexes": [{"column": "name", "fulltext": True}],
        },
        "Invoice": {
            "columns": [
                {"name": "invoiceId", "type": "string", "pk": True},
                {"name": "customer", "datatype": "JSON", "reference": "customerId", "nn": True},
                {"name": "amount", "type": "number"},
                {"name": "status", "type": "string"},
            ],
            "indexes": ["status", "amount"],
        },
    },
    "relationships": [
        {"child": "Invoice.customer", "parent": "Customer.customerId", "cardinality": "one-to-one"},
        {"child": "Customer.regionId", "parent": "Region.regionId", "cardinality": "many-to-one"},
    ],
    "parameters": {
        "Region": {"store": {"read": "redis", "write": "redis", "list": "redis"}},
        "Customer": {"store": {"read": "redis", "write": "redis", "list": "redis"}},
        "Invoice": {"store": {"read": "redis", "write": "redis", "list": "redis"}},
    },
}


# Order.shipping embeds a value-type Address whose countryCode points at
# Country; Order.tags is a dictionary-valued recordset.
SHIPPING_SCHEMA = {
    "entities": {
        "Order": {
            "columns": [
                {"name": "orderId", "pk": True},
                {"name": "shipping", "datatype": "JSON", "nn": True},
                {"name": "tags", "datatype": "JSON", "default": "object()"},
            ],
        },
        "Address": {
            "columns": [
                {"name": "addressKey", "datatype": "JSON", "pk": True},
                {"name": "street"},
                {"name": "countryCode"},
            ],
        },
        "Country": {
            "columns": [
                {"name": "code", "pk": True},
                {"name": "name"},
                {"name": "continentCode"},
            ],
        },
        "Continent": {
            "columns": [{"name": "continentCode", "pk": True}],
        },
        "Tag": {
            "columns": [{"name": "tagId", "pk": True}, {"name": "label"}],
        },
    },
    "relationships": [
        {"child": "Order.shipping", "parent": "Address.addressKey", "cardinality": "many-to-one"},
        {"child": "Address.countryCode", "parent": "Country.code", "cardinality": "many-to-one"},
        {"child": "Country.continentCode", "parent": "Continent.continentCode", "cardinality": "many-to-one"},
        {"child": "Order.tags", "parent": "Tag.tagId", "cardinality": "many-to-many"},
    ],
}


# Invoice.customer points at a Customer that has no relations of its own.
INVOICE_SCHEMA = {
    "context": "billing",
    "version": "v1",
    "entities": {
        "Invoice": {
            "columns": [
                {"name": "invoiceId", "type": "string", "pk": True},
                {"name": "customer", "datatype": "JSON", "reference": "customerId", "nn": True},
                {"name": "amount", "type": "number"},
            ],
            "indexes": ["amount"],
        },
        "Customer": {
            "columns": [
                {"name": "customerId", "type": "string", "pk": True},
                {"name": "name", "type": "string"},
            ],
        },
    },
    "relationships": [
        {"child": "Invoice.customer", "parent": "Customer.customerId", "cardinality": "one-to-one"},
    ],
    "parameters": {
        "Invoice": {"store": {"read": "redis", "write": "redis", "list": "redis"}},
        "Customer": {"store": {"read": "redis", "write": "redis", "list": "redis"}},
    },
}


def build_schema(**parameters):
    """Billing schema with the ``parameters`` of the given entities replaced."""
    data = copy.deepcopy(BILLING_SCHEMA)
    data["parameters"].update(parameters)
    return SchemaLoader().from_dict(data)


@pytest.fixture
def schema_data():
    return copy.deepcopy(BILLING_SCHEMA)


@pytest.fixture
def schema():
    return build_schema()


@pytest.fixture
def user():
    return UserToken(sub="user-1", tenant="acme", preferred_username="alice")


@pytest.fixture
def other_user():
    return UserToken(sub="user-2", tenant="globex", preferred_username="bob")
