"""
Red Zone Field Catalog

Builds the list of fields the rule builder can offer, grouped by entity:

- customer / customer_metrics: reflected from the local tables
- company: MySQL field mappings that land on the customers table
- subscription / invoice: Chargebee field mappings

Storage types are mapped by lookup; mapped external fields without a usable
declared type fall back to guessing from the field name. A source that
cannot be read leaves its category empty and the rest of the catalog is
still returned.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from redzone.models.field_mapping import ChargebeeFieldMapping, MySQLFieldMapping
from redzone.schemas.red_zone import (
    AvailableFields,
    EntityType,
    FieldDescriptor,
    FieldOperator,
    FieldType,
    OperatorDefinition,
)

logger = logging.getLogger(__name__)


# Reflected column type (first word, lowercased) -> field type
STORAGE_TYPE_MAP: Dict[str, FieldType] = {
    "integer": FieldType.NUMBER,
    "int": FieldType.NUMBER,
    "bigint": FieldType.NUMBER,
    "smallint": FieldType.NUMBER,
    "decimal": FieldType.NUMBER,
    "numeric": FieldType.NUMBER,
    "real": FieldType.NUMBER,
    "float": FieldType.NUMBER,
    "double": FieldType.NUMBER,
    "timestamp": FieldType.DATE,
    "datetime": FieldType.DATE,
    "date": FieldType.DATE,
    "time": FieldType.DATE,
    "boolean": FieldType.BOOLEAN,
}

# Declared MySQL mapping type -> field type
DECLARED_TYPE_MAP: Dict[str, FieldType] = {
    "integer": FieldType.NUMBER,
    "number": FieldType.NUMBER,
    "numeric": FieldType.NUMBER,
    "float": FieldType.NUMBER,
    "decimal": FieldType.NUMBER,
    "date": FieldType.DATE,
    "datetime": FieldType.DATE,
    "timestamp": FieldType.DATE,
    "boolean": FieldType.BOOLEAN,
    "bool": FieldType.BOOLEAN,
}

NUMERIC_NAME_HINTS = ("amount", "count", "total", "price", "revenue", "mrr", "arr")

CHARGEBEE_ENTITIES = (EntityType.SUBSCRIPTION, EntityType.INVOICE)

OPERATORS: List[OperatorDefinition] = [
    OperatorDefinition(name=FieldOperator.EQUALS, display="Equals", types=list(FieldType)),
    OperatorDefinition(name=FieldOperator.NOT_EQUALS, display="Does Not Equal", types=list(FieldType)),
    OperatorDefinition(
        name=FieldOperator.GREATER_THAN, display="Greater Than", types=[FieldType.NUMBER, FieldType.DATE]
    ),
    OperatorDefinition(name=FieldOperator.LESS_THAN, display="Less Than", types=[FieldType.NUMBER, FieldType.DATE]),
    OperatorDefinition(name=FieldOperator.CONTAINS, display="Contains", types=[FieldType.STRING]),
    OperatorDefinition(name=FieldOperator.STARTS_WITH, display="Starts With", types=[FieldType.STRING]),
    OperatorDefinition(name=FieldOperator.ENDS_WITH, display="Ends With", types=[FieldType.STRING]),
    OperatorDefinition(name=FieldOperator.IS_EMPTY, display="Is Empty", types=list(FieldType)),
    OperatorDefinition(name=FieldOperator.IS_NOT_EMPTY, display="Is Not Empty", types=list(FieldType)),
    OperatorDefinition(name=FieldOperator.IN_RANGE, display="In Range", types=[FieldType.NUMBER, FieldType.DATE]),
]


def get_available_operators(field_type: Optional[FieldType] = None) -> List[OperatorDefinition]:
    """Get available operators, optionally filtered by field type."""
    if field_type is None:
        return list(OPERATORS)
    return [op for op in OPERATORS if field_type in op.types]


def format_field_label(name: str) -> str:
    """``days_since_campaign`` -> ``Days Since Campaign``"""
    return " ".join(word[:1].upper() + word[1:] for word in name.split("_"))


def map_storage_type(storage_type: str) -> FieldType:
    base = storage_type.split("(", 1)[0].strip().lower()
    first_word = base.split(" ", 1)[0] if base else ""
    return STORAGE_TYPE_MAP.get(first_word, FieldType.STRING)


def map_declared_type(declared_type: str) -> FieldType:
    return DECLARED_TYPE_MAP.get(declared_type.strip().lower(), FieldType.STRING)


def infer_field_type_from_name(name: str) -> FieldType:
    """Best-effort guess for mapped fields with no declared type."""
    lowered = name.lower()
    if lowered.startswith(("is_", "has_")):
        return FieldType.BOOLEAN
    if "_at" in lowered or "date" in lowered:
        return FieldType.DATE
    if any(hint in lowered for hint in NUMERIC_NAME_HINTS):
        return FieldType.NUMBER
    if "enabled" in lowered or "active" in lowered:
        return FieldType.BOOLEAN
    return FieldType.STRING


class FieldCatalog:
    """Lookup over a built catalog, used to find a condition's declared field type."""

    def __init__(self, fields: AvailableFields):
        self.fields = fields
        self._by_entity: Dict[EntityType, Dict[str, FieldDescriptor]] = {}
        for entity in EntityType:
            by_path: Dict[str, FieldDescriptor] = {}
            for descriptor in getattr(fields, entity.value):
                by_path.setdefault(descriptor.path, descriptor)
            self._by_entity[entity] = by_path

    def find(self, path: str, entity_type: Optional[EntityType] = None) -> Optional[FieldDescriptor]:
        if entity_type is not None:
            return self._by_entity[entity_type].get(path)
        for entity in EntityType:
            descriptor = self._by_entity[entity].get(path)
            if descriptor is not None:
                return descriptor
        return None

    def field_type_for(self, path: str, entity_type: Optional[EntityType] = None) -> Optional[FieldType]:
        descriptor = self.find(path, entity_type)
        return descriptor.field_type if descriptor else None


def _dedupe(descriptors: Iterable[FieldDescriptor]) -> List[FieldDescriptor]:
    seen = set()
    result = []
    for descriptor in descriptors:
        if descriptor.path in seen:
            continue
        seen.add(descriptor.path)
        result.append(descriptor)
    return result


class FieldCatalogResolver:
    """Reads the local schema and the external field mappings into an AvailableFields catalog."""

    LOCAL_TABLES = {
        EntityType.CUSTOMER: "customers",
        EntityType.CUSTOMER_METRICS: "customer_metrics",
    }

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_available_fields(self) -> AvailableFields:
        fields = AvailableFields()

        for entity, table_name in self.LOCAL_TABLES.items():
            descriptors = await self._safely(table_name, self._table_fields(entity, table_name))
            setattr(fields, entity.value, descriptors)

        fields.company = await self._safely("mysql_field_mappings", self._company_fields())

        chargebee = await self._safely("chargebee_field_mappings", self._chargebee_fields(), default={})
        for entity in CHARGEBEE_ENTITIES:
            setattr(fields, entity.value, chargebee.get(entity, []))

        return fields

    async def get_catalog(self) -> FieldCatalog:
        return FieldCatalog(await self.get_available_fields())

    async def _safely(self, source: str, loader, default=None):
        try:
            return await loader
        except SQLAlchemyError as e:
            # A failed statement poisons the transaction on Postgres
            await self.db.rollback()
            logger.warning(f"Field catalog source {source} unavailable: {e}")
            return [] if default is None else default

    async def _table_fields(self, entity: EntityType, table_name: str) -> List[FieldDescriptor]:
        columns = await self.db.run_sync(
            lambda session: inspect(session.connection()).get_columns(table_name)
        )
        return _dedupe(
            FieldDescriptor(
                id=f"{entity.value}_{column['name']}",
                label=format_field_label(column["name"]),
                entity_type=entity,
                field_type=map_storage_type(str(column["type"])),
                path=column["name"],
            )
            for column in columns
        )

    async def _company_fields(self) -> List[FieldDescriptor]:
        result = await self.db.execute(
            select(MySQLFieldMapping)
            .where(MySQLFieldMapping.local_table == "customers")
            .order_by(MySQLFieldMapping.id)
        )
        descriptors = []
        for mapping in result.scalars().all():
            if mapping.field_type and mapping.field_type.strip():
                field_type = map_declared_type(mapping.field_type)
            else:
                field_type = infer_field_type_from_name(mapping.mysql_field)
            descriptors.append(
                FieldDescriptor(
                    id=f"company_{mapping.mysql_field}_{mapping.local_field}",
                    label=format_field_label(mapping.mysql_field),
                    entity_type=EntityType.COMPANY,
                    field_type=field_type,
                    path=mapping.local_field,
                )
            )
        return _dedupe(descriptors)

    async def _chargebee_fields(self) -> Dict[EntityType, List[FieldDescriptor]]:
        result = await self.db.execute(
            select(ChargebeeFieldMapping)
            .where(ChargebeeFieldMapping.chargebee_entity.in_([e.value for e in CHARGEBEE_ENTITIES]))
            .order_by(ChargebeeFieldMapping.id)
        )
        grouped: Dict[EntityType, List[FieldDescriptor]] = {entity: [] for entity in CHARGEBEE_ENTITIES}
        for mapping in result.scalars().all():
            entity = EntityType(mapping.chargebee_entity)
            grouped[entity].append(
                FieldDescriptor(
                    id=f"{entity.value}_{mapping.chargebee_field}_{mapping.local_field}",
                    label=format_field_label(mapping.chargebee_field),
                    entity_type=entity,
                    field_type=infer_field_type_from_name(mapping.chargebee_field),
                    path=mapping.local_field,
                )
            )
        return {entity: _dedupe(descriptors) for entity, descriptors in grouped.items()}
