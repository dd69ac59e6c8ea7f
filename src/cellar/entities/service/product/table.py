"""Product database table model."""

from src.cellar.entities.registry import registry
from src.cellar.entities.service.product.schema import PRODUCT_SCHEMA

ProductTable = registry.table(PRODUCT_SCHEMA.name)
