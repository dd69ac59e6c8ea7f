"""Tests for turning validation errors into field violations."""

import pytest

from src.cellar.core.errors import FieldViolation, ValidationFailed
from src.cellar.core.results import Conflict, Invalid, NotFound, Ok, Unexpected, to_error, unwrap
from src.cellar.core.validation import classify, field_path, validate_payload
from src.cellar.entities.service.product import ProductCreate


class TestClassify:
    @pytest.mark.parametrize(
        ("error_type", "reason"),
        [
            ("missing", "required"),
            ("extra_forbidden", "unknown_field"),
            ("int_parsing", "wrong_type"),
            ("bool_parsing", "wrong_type"),
            ("string_type", "wrong_type"),
            ("int_from_float", "wrong_type"),
            ("greater_than_equal", "out_of_range"),
            ("string_too_long", "out_of_range"),
            ("literal_error", "invalid_value"),
            ("value_error", "invalid_value"),
        ],
    )
    def test_reason_mapping(self, error_type, reason):
        assert classify(error_type) == reason

    def test_field_path(self):
        """Should drop the request location prefix and join nested locations."""
        assert field_path(("body", "name")) == "name"
        assert field_path(("query", "limit")) == "limit"
        assert field_path(("tags", 0, "label")) == "tags.0.label"
        assert field_path(()) == "body"


class TestValidatePayload:
    def test_valid_payload(self):
        result = validate_payload(ProductCreate, {"name": "Sancerre", "vintage": "2019"})

        assert isinstance(result, Ok)
        assert result.value.vintage == 2019

    def test_reports_every_violation(self):
        """Should list all violated fields, not just the first one."""
        result = validate_payload(
            ProductCreate,
            {
                "name": "",
                "vintage": "old",
                "quantity": -1,
                "color": "blue",
                "bogus": 1,
            },
        )

        assert isinstance(result, Invalid)
        reasons = {v.field: v.reason for v in result.fields}
        assert reasons == {
            "name": "out_of_range",
            "vintage": "wrong_type",
            "quantity": "out_of_range",
            "color": "invalid_value",
            "bogus": "unknown_field",
        }
        assert all(v.message for v in result.fields)

    def test_out_of_range_bounds(self):
        result = validate_payload(ProductCreate, {"name": "x", "vintage": 1700, "bottle_size_ml": 10})

        assert isinstance(result, Invalid)
        assert sorted(v.field for v in result.fields) == ["bottle_size_ml", "vintage"]
        assert {v.reason for v in result.fields} == {"out_of_range"}

    def test_float_for_integer_is_wrong_type(self):
        result = validate_payload(ProductCreate, {"name": "x", "quantity": 2.5})

        assert isinstance(result, Invalid)
        assert result.fields == [FieldViolation("quantity", result.fields[0].message, "wrong_type")]


class TestResults:
    """Failed results map onto the error taxonomy."""

    def test_unwrap_ok(self):
        assert unwrap(Ok(5)) == 5

    @pytest.mark.parametrize(
        ("result", "status"),
        [
            (Invalid([FieldViolation("name", "Field required", "required")]), 400),
            (NotFound("Product", "abc"), 404),
            (Conflict("Product with this sku already exists", "sku"), 409),
            (Unexpected("create failed"), 500),
        ],
    )
    def test_failed_results(self, result, status):
        assert to_error(result).status_code == status

    def test_invalid_carries_fields(self):
        error = to_error(Invalid([FieldViolation("name", "Field required", "required")]))

        assert isinstance(error, ValidationFailed)
        assert error.to_envelope() == {
            "error": "Validation failed",
            "fields": [{"field": "name", "message": "Field required", "reason": "required"}],
        }

    def test_unexpected_message_is_generic(self):
        """Should never leak the internal failure into the client message."""
        assert to_error(Unexpected("insert into products failed")).message == "Internal Server Error"
