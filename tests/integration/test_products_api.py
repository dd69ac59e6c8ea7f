"""End-to-end tests for the generated product routes."""

from concurrent.futures import ThreadPoolExecutor

import pytest


@pytest.fixture
def products_url(api_prefix) -> str:
    return f"{api_prefix}/products"


class TestCreateAndRead:
    def test_round_trip(self, client, products_url, auth_headers):
        """Should return the stored product, identical to what create returned."""
        payload = {
            "name": "Barolo Castiglione",
            "brand": "Vietti",
            "vintage": 2016,
            "color": "red",
            "sku": "VIE-BAR-16",
            "quantity": 6,
            "price": 42.5,
            "purchased_at": "2021-03-01T09:30:00+01:00",
        }

        created = client.post(products_url, json=payload, headers=auth_headers)

        assert created.status_code == 201
        body = created.json()
        assert body["id"]
        assert body["purchased_at"].startswith("2021-03-01T08:30:00")
        assert body["bottle_size_ml"] == 750

        fetched = client.get(f"{products_url}/{body['id']}", headers=auth_headers)
        assert fetched.status_code == 200
        assert fetched.json() == body

    def test_every_violation_is_reported(self, client, products_url, auth_headers):
        """Should answer 400 listing all bad fields and store nothing."""
        response = client.post(
            products_url,
            json={"name": "", "vintage": "old", "quantity": -1, "color": "blue", "bogus": 1},
            headers=auth_headers,
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Validation failed"
        assert body["request_id"] == response.headers["X-Request-ID"]
        assert {f["field"]: f["reason"] for f in body["fields"]} == {
            "name": "out_of_range",
            "vintage": "wrong_type",
            "quantity": "out_of_range",
            "color": "invalid_value",
            "bogus": "unknown_field",
        }
        assert client.get(products_url, headers=auth_headers).json()["total"] == 0

    @pytest.mark.parametrize(
        ("content", "reason"),
        [(b"", "required"), (b"{not json", "malformed"), (b"[1, 2]", "malformed")],
    )
    def test_unusable_bodies(self, client, products_url, auth_headers, content, reason):
        response = client.post(
            products_url,
            content=content,
            headers={**auth_headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["fields"] == [
            {"field": "body", "message": response.json()["fields"][0]["message"], "reason": reason}
        ]

    def test_missing_required_field(self, client, products_url, auth_headers):
        response = client.post(products_url, json={"brand": "Gaja"}, headers=auth_headers)

        assert response.status_code == 400
        assert [(f["field"], f["reason"]) for f in response.json()["fields"]] == [("name", "required")]

    def test_duplicate_sku(self, client, products_url, auth_headers, create_product):
        create_product(sku="DUP-1")

        response = client.post(products_url, json={"name": "Other", "sku": "DUP-1"}, headers=auth_headers)

        assert response.status_code == 409
        assert "sku" in response.json()["error"]

    def test_get_missing(self, client, products_url, auth_headers):
        response = client.get(f"{products_url}/does-not-exist", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["error"] == "Product does-not-exist not found"

    def test_request_id_is_echoed(self, client, products_url, auth_headers):
        response = client.get(
            f"{products_url}/missing", headers={**auth_headers, "X-Request-ID": "trace-42"}
        )

        assert response.headers["X-Request-ID"] == "trace-42"
        assert response.json()["request_id"] == "trace-42"


class TestUpdateAndDelete:
    def test_patch_changes_only_given_fields(self, client, products_url, auth_headers, create_product):
        product = create_product(notes="rack 3")

        response = client.patch(
            f"{products_url}/{product['id']}", json={"quantity": 11}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["quantity"] == 11
        assert response.json()["notes"] == "rack 3"

    def test_patch_rejects_invalid_fields(self, client, products_url, auth_headers, create_product):
        product = create_product()

        response = client.patch(
            f"{products_url}/{product['id']}",
            json={"quantity": None, "image_path": "images/x.png"},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert {f["field"]: f["reason"] for f in response.json()["fields"]} == {
            "quantity": "wrong_type",
            "image_path": "unknown_field",
        }

    def test_put_replaces_every_field(self, client, products_url, auth_headers, create_product):
        product = create_product(notes="rack 3", quantity=5)

        response = client.put(
            f"{products_url}/{product['id']}", json={"name": "Barbaresco"}, headers=auth_headers
        )

        assert response.status_code == 200
        body = response.json()
        assert body["name"] == "Barbaresco"
        assert body["notes"] is None
        assert body["brand"] is None
        assert body["quantity"] == 0
        assert body["created_at"] == product["created_at"]

    def test_update_missing(self, client, products_url, auth_headers):
        response = client.patch(f"{products_url}/missing", json={"quantity": 1}, headers=auth_headers)

        assert response.status_code == 404

    def test_delete(self, client, products_url, auth_headers, create_product):
        product = create_product()

        deleted = client.delete(f"{products_url}/{product['id']}", headers=auth_headers)

        assert deleted.status_code == 204
        assert deleted.content == b""
        assert client.get(f"{products_url}/{product['id']}", headers=auth_headers).status_code == 404

    def test_delete_missing(self, client, products_url, auth_headers):
        response = client.delete(f"{products_url}/never-existed", headers=auth_headers)

        assert response.status_code == 404
        assert client.get(products_url, headers=auth_headers).json()["total"] == 0

    def test_concurrent_patches_last_write_wins(self, client, products_url, auth_headers, create_product):
        """Should end with exactly one of the two writes, never a mix of both."""
        product = create_product()
        url = f"{products_url}/{product['id']}"
        writes = [{"quantity": 5, "notes": "first"}, {"quantity": 9, "notes": "second"}]

        with ThreadPoolExecutor(max_workers=2) as pool:
            responses = list(pool.map(lambda body: client.patch(url, json=body, headers=auth_headers), writes))

        assert [r.status_code for r in responses] == [200, 200]
        final = client.get(url, headers=auth_headers).json()
        assert {"quantity": final["quantity"], "notes": final["notes"]} in writes


class TestListing:
    @pytest.fixture(autouse=True)
    def _products(self, create_product):
        create_product(name="Chablis", color="white", vintage=2019, brand="Raveneau")
        create_product(name="Barolo", color="red", vintage=2015)
        create_product(name="Brunello", color="red", vintage=2017)

    def test_default_page(self, client, products_url, auth_headers):
        body = client.get(products_url, headers=auth_headers).json()

        assert body["total"] == 3
        assert body["limit"] == 50
        assert body["offset"] == 0
        assert [p["name"] for p in body["items"]] == ["Barolo", "Brunello", "Chablis"]

    def test_filter_sort_page_and_search(self, client, products_url, auth_headers):
        body = client.get(
            products_url,
            params={"color": "red", "sort": "-vintage", "limit": 1},
            headers=auth_headers,
        ).json()
        assert body["total"] == 2
        assert [p["name"] for p in body["items"]] == ["Brunello"]

        body = client.get(products_url, params={"q": "chab"}, headers=auth_headers).json()
        assert [p["name"] for p in body["items"]] == ["Chablis"]

        body = client.get(products_url, params={"vintage": "2015"}, headers=auth_headers).json()
        assert [p["name"] for p in body["items"]] == ["Barolo"]

    @pytest.mark.parametrize(
        ("params", "field"),
        [
            ({"sort": "bogus"}, "sort"),
            ({"limit": 0}, "limit"),
            ({"limit": 1000}, "limit"),
            ({"vintage": "last-year"}, "vintage"),
            ({"color": "blue"}, "color"),
        ],
    )
    def test_bad_query_parameters(self, client, products_url, auth_headers, params, field):
        response = client.get(products_url, params=params, headers=auth_headers)

        assert response.status_code == 400
        assert [f["field"] for f in response.json()["fields"]] == [field]


class TestOpenApi:
    def test_request_bodies_are_documented(self, client, products_url):
        spec = client.get("/openapi.json").json()

        post = spec["paths"][products_url]["post"]
        schema = post["requestBody"]["content"]["application/json"]["schema"]
        assert "name" in schema["required"]
        assert "image_path" not in schema["properties"]
