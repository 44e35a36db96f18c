"""
Schema loader for YAML model definitions.

Expected layout::

    context: billing
    version: v1
    entities:
      Invoice:
        columns:
          - {name: invoiceId, type: string, pk: true}
          - {name: customer, datatype: JSON, reference: customerId, nn: true}
          - {name: status, type: string}
        indexes: [status, {column: reference, fulltext: true}]
    relationships:
      - child: Invoice.customer
        parent: Customer.customerId
        cardinality: one-to-one
    parameters:
      Invoice:
        store: {read: sql, write: sql, list: sql}
        cancel: {delete: true}

A directory of YAML files is merged in file name order.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from ..errors import SchemaError
from .models import (
    CancelSet,
    Cardinality,
    Column,
    Entity,
    EntityParameters,
    Index,
    Relationship,
    Schema,
    StoreAssignment,
)

logger = logging.getLogger(__name__)

_EMBEDDED_DATATYPES = {"json", "jsonb", "object"}


class SchemaLoader:
    """Load a ``Schema`` from YAML files or plain dictionaries."""

    def __init__(self, config_dir: Path | str | None = None):
        self.config_dir = Path(config_dir) if config_dir else None

    def _load_yaml(self, filepath: Path) -> dict[str, Any]:
        if not filepath.exists():
            logger.warning(f"Schema file not found: {filepath}")
            return {}

        with open(filepath, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if data is not None and not isinstance(data, dict):
            raise SchemaError(f"Schema file must contain a mapping: {filepath}")
        return data or {}

    def load(self, path: Path | str | None = None) -> Schema:
        """Load a single file, or every ``*.yaml``/``*.yml`` file of a directory."""
        target = Path(path) if path else self.config_dir
        if target is None:
            raise SchemaError("No schema path given")

        if target.is_dir():
            merged: dict[str, Any] = {}
            files = sorted([*target.glob("*.yaml"), *target.glob("*.yml")])
            for filepath in files:
                _merge(merged, self._load_yaml(filepath))
            schema = self.from_dict(merged)
        else:
            schema = self.from_dict(self._load_yaml(target))

        logger.info(
            f"Loaded schema with {len(schema.entities)} entities and "
            f"{len(schema.relationships)} relationships from {target}"
        )
        return schema

    # ===== Parsing =====

    def _parse_column(self, entity_name: str, data: dict[str, Any] | str) -> Column:
        if isinstance(data, str):
            return Column(name=data)
        if "name" not in data:
            raise SchemaError("Column without a name", entity=entity_name)

        datatype = str(data.get("datatype", "")).lower()
        nullable = data.get("nullable")
        if nullable is None:
            nullable = not data.get("nn", False)

        return Column(
            name=data["name"],
            type=data.get("type", "string"),
            pk=bool(data.get("pk", False)),
            nullable=bool(nullable),
            default=data.get("default", data.get("defaultvalue")),
            embedded=bool(data.get("embedded", datatype in _EMBEDDED_DATATYPES)),
            indexed=bool(data.get("index", data.get("indexed", False))),
            reference=data.get("reference"),
        )

    def _parse_index(self, data: dict[str, Any] | str) -> Index:
        if isinstance(data, str):
            return Index(column=data)
        return Index(column=data["column"], fulltext=bool(data.get("fulltext", False)))

    def _parse_entity(self, name: str, data: dict[str, Any]) -> Entity:
        columns = tuple(self._parse_column(name, c) for c in data.get("columns", []) or [])
        names = [c.name for c in columns]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise SchemaError(f"Duplicate columns: {sorted(duplicates)}", entity=name)

        indexes = tuple(self._parse_index(i) for i in data.get("indexes", []) or [])
        for idx in indexes:
            if idx.column not in names:
                raise SchemaError(f"Index on unknown column '{idx.column}'", entity=name)

        return Entity(
            name=name,
            columns=columns,
            indexes=indexes,
            tenant_column=data.get("tenant_column", "tenantId"),
        )

    def _parse_relationship(self, data: dict[str, Any]) -> Relationship:
        if "child" in data:
            child_entity, _, child_column = str(data["child"]).partition(".")
            parent_entity, _, parent_column = str(data["parent"]).partition(".")
        else:
            child_entity = data.get("child_entity") or data.get("childTable")
            child_column = data.get("child_column") or data.get("childCol")
            parent_entity = data.get("parent_entity") or data.get("parentTable")
            parent_column = data.get("parent_column") or data.get("parentCol")

        if not (child_entity and child_column and parent_entity and parent_column):
            raise SchemaError(f"Incomplete relationship definition: {data}")

        child_card, parent_card = Cardinality.MANY, Cardinality.ONE
        if "cardinality" in data:
            left, _, right = str(data["cardinality"]).lower().partition("-to-")
            child_card, parent_card = Cardinality(left), Cardinality(right)
        else:
            child_card = Cardinality(data.get("c_ch", child_card.value))
            parent_card = Cardinality(data.get("c_p", parent_card.value))

        return Relationship(
            child_entity=child_entity,
            child_column=child_column,
            parent_entity=parent_entity,
            parent_column=parent_column,
            child_cardinality=child_card,
            parent_cardinality=parent_card,
        )

    def _parse_parameters(self, data: dict[str, Any]) -> EntityParameters:
        store_data = data.get("store", {}) or {}
        cancel_data = data.get("cancel", {}) or {}
        if isinstance(cancel_data, list):
            cancel_data = {op: True for op in cancel_data}
        return EntityParameters(
            store=StoreAssignment(
                read=store_data.get("read"),
                write=store_data.get("write"),
                list=store_data.get("list"),
            ),
            cancel=CancelSet(**{k: bool(v) for k, v in cancel_data.items()}),
        )

    def from_dict(self, data: dict[str, Any]) -> Schema:
        entities = {
            name: self._parse_entity(name, entity_data or {})
            for name, entity_data in (data.get("entities", {}) or {}).items()
        }

        relationships = []
        for rel_data in data.get("relationships", []) or []:
            rel = self._parse_relationship(rel_data)
            for name, column in ((rel.child_entity, rel.child_column), (rel.parent_entity, rel.parent_column)):
                entity = entities.get(name)
                if entity is not None and entity.column(column) is None:
                    raise SchemaError(f"Relationship references unknown column '{column}'", entity=name)
            relationships.append(rel)

        try:
            parameters = {
                name: self._parse_parameters(params or {})
                for name, params in (data.get("parameters", {}) or {}).items()
            }
        except TypeError as e:
            raise SchemaError(f"Invalid entity parameters: {e}") from e

        return Schema(
            entities=entities,
            relationships=tuple(relationships),
            parameters=parameters,
            context=str(data.get("context", "app")),
            version=str(data.get("version", "v1")),
        )


def _merge(target: dict[str, Any], source: dict[str, Any]) -> None:
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            target[key].update(value)
        elif isinstance(value, list) and isinstance(target.get(key), list):
            target[key].extend(value)
        else:
            target[key] = value


def load_schema(path: Path | str) -> Schema:
    return SchemaLoader().load(path)
