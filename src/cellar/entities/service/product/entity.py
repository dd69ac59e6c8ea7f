"""Entity: Product."""

from src.cellar.entities.registry import registry
from src.cellar.entities.service.product.schema import PRODUCT_SCHEMA

# Read model: the product as stored, including id and timestamps.
Product = registry.validator(PRODUCT_SCHEMA.name, "read")

# Input validators derived from the same declaration.
ProductCreate = registry.validator(PRODUCT_SCHEMA.name, "create")
ProductReplace = registry.validator(PRODUCT_SCHEMA.name, "replace")
ProductUpdate = registry.validator(PRODUCT_SCHEMA.name, "update")
