"""Product repository."""

from sqlmodel import Session

from src.cellar.entities.core.repository import EntityRepository
from src.cellar.entities.service.product.schema import PRODUCT_SCHEMA
from src.cellar.entities.service.product.table import ProductTable


class ProductRepository(EntityRepository):
    """Data-access layer for products."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, PRODUCT_SCHEMA, ProductTable)

    def get_by_sku(self, sku: str) -> ProductTable | None:
        return self.find_by("sku", sku)
