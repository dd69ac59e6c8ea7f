"""Tests for the resource service and the repository beneath it."""

import pytest

from src.cellar.core.results import Conflict, NotFound, Ok
from src.cellar.core.services.resource_service import ResourceService
from src.cellar.entities.core.repository import ListQuery
from src.cellar.entities.service.product import (
    ProductCreate,
    ProductReplace,
    ProductRepository,
    ProductUpdate,
)


@pytest.fixture
def service(session, registry) -> ResourceService:
    return ResourceService(session, registry, "product")


def _create(service: ResourceService, **data):
    result = service.create(ProductCreate(**{"name": "Barolo", **data}))
    assert isinstance(result, Ok), result
    return result.value


class TestResourceService:
    def test_create_and_get(self, service):
        """Should store the product and read back the same values."""
        created = _create(service, brand="Vietti", vintage=2016, sku="BAR-16")

        fetched = service.get(created.id)

        assert isinstance(fetched, Ok)
        assert fetched.value == created
        assert fetched.value.quantity == 0
        assert fetched.value.bottle_size_ml == 750
        assert fetched.value.created_at.tzinfo is not None

    def test_get_missing(self, service):
        assert service.get("missing") == NotFound("Product", "missing")

    def test_duplicate_unique_field_is_conflict(self, service):
        """Should classify a unique violation and keep the session usable."""
        _create(service, sku="DUP-1")

        result = service.create(ProductCreate(name="Other", sku="DUP-1"))

        assert isinstance(result, Conflict)
        assert result.field == "sku"
        assert isinstance(service.create(ProductCreate(name="Third", sku="DUP-2")), Ok)

    def test_update_changes_only_given_fields(self, service):
        created = _create(service, brand="Gaja", notes="cellar A")

        result = service.update(created.id, ProductUpdate(quantity=6))

        assert isinstance(result, Ok)
        assert result.value.quantity == 6
        assert result.value.brand == "Gaja"
        assert result.value.notes == "cellar A"
        assert result.value.updated_at >= created.updated_at

    def test_update_missing(self, service):
        assert isinstance(service.update("missing", ProductUpdate(quantity=1)), NotFound)

    def test_replace_resets_omitted_fields(self, service):
        """Should reset every field the replacement leaves out to its default."""
        created = _create(service, brand="Gaja", notes="cellar A", quantity=4)

        result = service.replace(created.id, ProductReplace(name="Barbaresco"))

        assert isinstance(result, Ok)
        assert result.value.name == "Barbaresco"
        assert result.value.brand is None
        assert result.value.notes is None
        assert result.value.quantity == 0

    def test_set_fields_writes_system_managed_fields(self, service):
        created = _create(service)

        result = service.set_fields(created.id, {"image_path": "images/label-abc.png"})

        assert isinstance(result, Ok)
        assert result.value.image_path == "images/label-abc.png"
        with pytest.raises(ValueError, match="unknown fields"):
            service.set_fields(created.id, {"owner": "me"})

    def test_delete(self, service):
        created = _create(service)

        assert service.delete(created.id) == Ok(None)
        assert isinstance(service.get(created.id), NotFound)
        assert isinstance(service.delete(created.id), NotFound)


class TestListing:
    @pytest.fixture(autouse=True)
    def _products(self, service):
        _create(service, name="Chablis", color="white", vintage=2019)
        _create(service, name="Barolo", color="red", vintage=2015)
        _create(service, name="Brunello", color="red", vintage=2017)

    def test_default_sort_is_by_name(self, service):
        page = service.list(ListQuery()).value

        assert page.total == 3
        assert [p.name for p in page.items] == ["Barolo", "Brunello", "Chablis"]

    def test_filter_sort_and_page(self, service):
        page = service.list(ListQuery(filters={"color": "red"}, sort="-vintage", limit=1)).value

        assert page.total == 2
        assert [p.name for p in page.items] == ["Brunello"]

        page = service.list(ListQuery(filters={"color": "red"}, sort="-vintage", limit=1, offset=1)).value
        assert [p.name for p in page.items] == ["Barolo"]

    def test_search_is_case_insensitive(self, service):
        page = service.list(ListQuery(search="BR")).value

        assert [p.name for p in page.items] == ["Brunello"]

    @pytest.mark.parametrize(("search", "expected"), [("%", ["100% Merlot"]), ("_", ["Vin_Santo"])])
    def test_search_wildcards_are_literal(self, service, search, expected):
        _create(service, name="100% Merlot")
        _create(service, name="Vin_Santo")

        page = service.list(ListQuery(search=search)).value

        assert page.total == 1
        assert [p.name for p in page.items] == expected


class TestProductRepository:
    def test_get_by_sku(self, session, service):
        created = _create(service, sku="LOOKUP-1")

        repository = ProductRepository(session)

        assert repository.get_by_sku("LOOKUP-1").id == created.id
        assert repository.get_by_sku("LOOKUP-2") is None
