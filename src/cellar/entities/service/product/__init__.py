"""Entity package: Product."""

from .entity import Product, ProductCreate, ProductReplace, ProductUpdate
from .repository import ProductRepository
from .schema import PRODUCT_SCHEMA, WINE_COLORS
from .table import ProductTable

__all__ = [
    "PRODUCT_SCHEMA",
    "WINE_COLORS",
    "Product",
    "ProductCreate",
    "ProductReplace",
    "ProductUpdate",
    "ProductRepository",
    "ProductTable",
]
