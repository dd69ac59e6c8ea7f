"""Entities of the cellar, organised by business concept.

Each entity package holds:
- schema.py: the single declaration registered with the schema registry
- entity.py: validators (read/create/replace/update) derived from it
- table.py: the persistence model derived from it
- repository.py: data access for the table

Importing this package registers every entity with ``registry``.
"""

from .registry import (
    EntitySchema,
    FieldSpec,
    FieldType,
    SchemaDefinitionError,
    SchemaRegistry,
    registry,
)
from .service.product import Product, ProductRepository, ProductTable

__all__ = [
    "EntitySchema",
    "FieldSpec",
    "FieldType",
    "SchemaDefinitionError",
    "SchemaRegistry",
    "registry",
    "Product",
    "ProductRepository",
    "ProductTable",
]
