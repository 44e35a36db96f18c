"""
Tests for relationship resolution.

Covers classification of relation columns, nested tables of value-type
parents, the two-hop bound and the empty-relationship edge cases.
"""

import pytest

from polystore.resolver import (
    ObjectKind,
    RelationshipGraph,
    get_complex_objects,
    get_complex_relationships,
    get_special_columns,
    get_table_properties,
    get_unique_relationships,
)
from polystore.resolver.relationships import MAX_DEPTH, has_complex_hydration
from polystore.schema import Cardinality, Column, Entity, Schema, SchemaLoader

from conftest import INVOICE_SCHEMA, SHIPPING_SCHEMA, build_schema


@pytest.fixture
def shipping_schema():
    return SchemaLoader().from_dict(SHIPPING_SCHEMA)


class TestComplexObjects:
    """Tests for get_complex_objects."""

    def test_embedded_relation_with_related_parent_is_complex(self, schema):
        objects = get_complex_objects(schema, schema.entity("Invoice"))

        assert len(objects) == 1
        customer = objects[0]
        assert customer.kind == ObjectKind.COMPLEX
        assert customer.key == "customer"
        assert customer.table_name == "Customer"
        assert customer.accessor == "get_customer"
        assert customer.required is True
        assert customer.is_array is False
        assert customer.tables == ()

    def test_scalar_relation_is_simple(self, schema):
        objects = get_complex_objects(schema, schema.entity("Customer"))

        assert [(o.key, o.kind) for o in objects] == [("regionId", ObjectKind.SIMPLE)]

    def test_embedded_relation_to_leaf_parent_is_simple(self):
        schema = SchemaLoader().from_dict(INVOICE_SCHEMA)
        props = get_table_properties(schema, schema.entity("Invoice"))

        assert [(o.key, o.kind) for o in props.complex_objects] == [("customer", ObjectKind.SIMPLE)]
        assert [o.key for o in props.relation_columns] == ["customer"]
        assert props.relation_columns[0].required is True
        assert has_complex_hydration(schema, schema.entity("Invoice")) is True

    def test_dictionary_default_without_parent_relations_is_recordset(self, shipping_schema):
        objects = get_complex_objects(shipping_schema, shipping_schema.entity("Order"))
        tags = next(o for o in objects if o.key == "tags")

        assert tags.kind == ObjectKind.RECORDSET
        assert tags.is_array is True
        assert tags.accessor == "get_tags"

    def test_value_type_parent_gets_nested_tables(self, shipping_schema):
        objects = get_complex_objects(shipping_schema, shipping_schema.entity("Order"))
        shipping = next(o for o in objects if o.key == "shipping")

        assert shipping.kind == ObjectKind.COMPLEX
        assert len(shipping.tables) == 1
        nested = shipping.tables[0]
        assert nested.table_name == "Country"
        assert nested.child_column == "countryCode"
        assert nested.parent_column == "code"
        assert nested.cardinality == Cardinality.ONE
        assert nested.primary == "addressKey"

    def test_nesting_stops_two_hops_from_origin(self, shipping_schema):
        objects = get_complex_objects(shipping_schema, shipping_schema.entity("Order"))
        tables = [t.table_name for o in objects for t in o.tables]

        assert "Continent" not in tables

    def test_resolution_is_pure(self, shipping_schema):
        entity = shipping_schema.entity("Order")

        assert get_complex_objects(shipping_schema, entity) == get_complex_objects(shipping_schema, entity)

    def test_keys_are_unique_with_duplicate_edges(self, schema_data):
        schema_data["relationships"].append(
            {"child": "Invoice.customer", "parent": "Customer.customerId", "cardinality": "one-to-one"}
        )
        schema = SchemaLoader().from_dict(schema_data)

        keys = [o.key for o in get_complex_objects(schema, schema.entity("Invoice"))]
        assert keys == ["customer"]

    def test_objects_follow_declaration_order(self, shipping_schema):
        objects = get_complex_objects(shipping_schema, shipping_schema.entity("Order"))

        assert [o.key for o in objects] == ["shipping", "tags"]


class TestSpecialColumns:
    """Tests for get_special_columns."""

    def test_scalar_relation_across_non_relational_stores_is_special(self, schema):
        special = get_special_columns(schema, schema.entity("Customer"))

        assert len(special) == 1
        assert special[0].kind == ObjectKind.SPECIAL
        assert special[0].column.name == "regionId"
        assert special[0].accessor == "get_region"

    def test_native_join_is_not_special(self):
        sql = {"store": {"read": "sql", "write": "sql", "list": "sql"}}
        schema = build_schema(Customer=sql, Region=sql)

        assert get_special_columns(schema, schema.entity("Customer")) == []

    def test_embedded_columns_are_never_special(self, schema):
        assert get_special_columns(schema, schema.entity("Invoice")) == []


class TestEmptyRelationships:
    """Entities without relationships resolve to empty results."""

    @pytest.fixture
    def bare_schema(self):
        entity = Entity(name="Note", columns=(Column(name="noteId", pk=True), Column(name="body")))
        return Schema(entities={"Note": entity})

    def test_complex_objects_empty(self, bare_schema):
        assert get_complex_objects(bare_schema, bare_schema.entity("Note")) == []

    def test_special_columns_empty(self, bare_schema):
        assert get_special_columns(bare_schema, bare_schema.entity("Note")) == []

    def test_complex_relationships_empty(self, bare_schema):
        result = get_complex_relationships(bare_schema, bare_schema.entity("Note"))

        assert not result
        assert result.tables == {}
        assert result.relationships == ()

    def test_entity_without_edges_in_related_schema(self, schema):
        region = schema.entity("Region")

        assert get_complex_objects(schema, region) == []
        assert get_special_columns(schema, region) == []
        assert not get_complex_relationships(schema, region)


class TestComplexRelationships:
    """Tests for get_complex_relationships."""

    def test_collects_nested_edges(self, shipping_schema):
        result = get_complex_relationships(shipping_schema, shipping_schema.entity("Order"))

        assert "shipping" in result.tables
        assert any(r.parent_entity == "Country" for r in result.relationships)

    def test_folds_in_dictionary_defaults_with_roles_swapped(self):
        data = {**SHIPPING_SCHEMA, "entities": dict(SHIPPING_SCHEMA["entities"])}
        data["entities"]["Order"] = {
            "columns": [
                {"name": "orderId", "pk": True},
                {"name": "shipping", "datatype": "JSON", "default": "object()"},
            ],
        }
        data["relationships"] = SHIPPING_SCHEMA["relationships"][:2]
        schema = SchemaLoader().from_dict(data)

        result = get_complex_relationships(schema, schema.entity("Order"))
        swapped = [t for t in result.tables["shipping"] if t.swapped]

        assert len(swapped) == 1
        assert swapped[0].table_name == "Order"
        assert swapped[0].parent_column == "shipping"


class TestRelationshipGraph:
    """Tests for the bounded adjacency index."""

    def test_lookups_beyond_max_depth_are_empty(self, shipping_schema):
        graph = RelationshipGraph(shipping_schema)

        assert graph.incident("Address", depth=MAX_DEPTH)
        assert graph.incident("Address", depth=MAX_DEPTH + 1) == []

    def test_outgoing_only_returns_child_edges(self, shipping_schema):
        graph = RelationshipGraph(shipping_schema)

        assert [r.parent_entity for r in graph.outgoing("Address")] == ["Country"]


class TestTableProperties:
    """Tests for get_table_properties and accessor generation."""

    def test_invoice_properties(self, schema):
        props = get_table_properties(schema, schema.entity("Invoice"))

        assert props.class_name == "Invoice"
        assert props.primary_column.name == "invoiceId"
        assert [c.name for c in props.indexed_columns] == ["status", "amount"]
        assert [o.key for o in props.relation_columns] == ["customer"]

    def test_unique_relationships_one_per_parent(self, schema_data):
        schema_data["entities"]["Invoice"]["columns"].append({"name": "billingCustomerId"})
        schema_data["relationships"].append(
            {"child": "Invoice.billingCustomerId", "parent": "Customer.customerId"}
        )
        schema = SchemaLoader().from_dict(schema_data)

        unique = get_unique_relationships(schema, schema.entity("Invoice"))
        assert [r.parent_entity for r in unique] == ["Customer"]

    def test_has_complex_hydration(self, schema):
        assert has_complex_hydration(schema, schema.entity("Invoice")) is True
        assert has_complex_hydration(schema, schema.entity("Region")) is False
