"""Spreadsheet imports, image uploads and stored file retrieval over HTTP."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from src.cellar.core.results import NotFound
from src.cellar.core.services.resource_service import ResourceService
from tests.utils import csv_bytes, image_bytes, product_rows, xlsx_bytes

XLSX_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@pytest.fixture
def import_url(api_prefix) -> str:
    return f"{api_prefix}/products/import"


def _total(client, api_prefix, headers) -> int:
    return client.get(f"{api_prefix}/products", headers=headers).json()["total"]


class TestProductImport:
    def test_partial_import(self, client, api_prefix, import_url, auth_headers):
        """Should store 8 of 10 rows and report rows 3 and 7 by number and field."""
        rows = product_rows(10, {3: {"Year": "vintage?"}, 7: {"Name": ""}})

        response = client.post(
            import_url,
            files={"file": ("cellar.xlsx", xlsx_bytes(rows), XLSX_TYPE)},
            headers=auth_headers,
        )

        assert response.status_code == 200
        report = response.json()
        assert report["total_rows"] == 10
        assert report["imported"] == 8
        assert [r["row"] for r in report["rejected"]] == [3, 7]
        assert report["rejected"][0]["errors"][0]["field"] == "vintage"
        assert report["rejected"][1]["errors"][0] == {
            "field": "name",
            "message": "Field required",
            "reason": "required",
        }
        assert _total(client, api_prefix, auth_headers) == 8

    def test_dry_run(self, client, api_prefix, import_url, auth_headers):
        response = client.post(
            import_url,
            params={"dry_run": "true"},
            files={"file": ("cellar.csv", csv_bytes(product_rows(3)), "text/csv")},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["imported"] == 3
        assert response.json()["dry_run"] is True
        assert _total(client, api_prefix, auth_headers) == 0

    def test_missing_required_column(self, client, import_url, auth_headers):
        content = csv_bytes([["Producer", "Year"], ["Gaja", 2010]])

        response = client.post(
            import_url, files={"file": ("cellar.csv", content, "text/csv")}, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required column(s): name"

    def test_unsupported_file_type(self, client, import_url, auth_headers):
        response = client.post(
            import_url, files={"file": ("cellar.txt", b"name\nA\n", "text/plain")}, headers=auth_headers
        )

        assert response.status_code == 415

    def test_file_too_large(self, client, import_url, auth_headers, app_config):
        app_config.imports.max_bytes = 64

        response = client.post(
            import_url,
            files={"file": ("cellar.csv", csv_bytes(product_rows(10)), "text/csv")},
            headers=auth_headers,
        )

        assert response.status_code == 413

    def test_requires_authentication(self, client, api_prefix, import_url, auth_headers):
        response = client.post(
            import_url, files={"file": ("cellar.csv", csv_bytes(product_rows(2)), "text/csv")}
        )

        assert response.status_code == 401
        assert _total(client, api_prefix, auth_headers) == 0


class TestImageUploads:
    def test_same_name_uploads_get_distinct_files(self, client, api_prefix, auth_headers):
        """Should keep both files when two uploads share an original name at once."""
        contents = [image_bytes(color="red"), image_bytes(color="blue")]

        def upload(content: bytes):
            return client.post(
                f"{api_prefix}/uploads/images",
                files={"file": ("label.png", content, "image/png")},
                headers=auth_headers,
            )

        with ThreadPoolExecutor(max_workers=2) as pool:
            responses = list(pool.map(upload, contents))

        assert [r.status_code for r in responses] == [201, 201]
        references = [r.json()["reference"] for r in responses]
        assert len(set(references)) == 2
        for reference, content in zip(references, contents, strict=True):
            download = client.get(f"{api_prefix}/uploads/{reference}", headers=auth_headers)
            assert download.status_code == 200
            assert download.headers["content-type"] == "image/png"
            assert download.content == content

    def test_rejects_non_images(self, client, api_prefix, auth_headers):
        response = client.post(
            f"{api_prefix}/uploads/images",
            files={"file": ("label.png", b"<script>", "image/png")},
            headers=auth_headers,
        )

        assert response.status_code == 415

    def test_rejects_oversized_images(self, client, api_prefix, auth_headers, app_config):
        app_config.uploads.max_image_bytes = 16

        response = client.post(
            f"{api_prefix}/uploads/images",
            files={"file": ("label.png", image_bytes(), "image/png")},
            headers=auth_headers,
        )

        assert response.status_code == 413

    def test_download_outside_store(self, client, api_prefix, auth_headers):
        response = client.get(f"{api_prefix}/uploads/images/missing.png", headers=auth_headers)

        assert response.status_code == 404


class TestProductImage:
    def test_attach_and_replace_image(self, client, api_prefix, auth_headers, create_product):
        """Should store the label, link it to the product and drop the previous one."""
        product = create_product()
        url = f"{api_prefix}/products/{product['id']}/image"

        first = client.post(url, files={"file": ("front.png", image_bytes(), "image/png")}, headers=auth_headers)
        assert first.status_code == 200
        first_path = first.json()["image_path"]
        assert first_path.startswith("images/front-")

        second = client.post(
            url, files={"file": ("front.jpg", image_bytes("JPEG"), "image/jpeg")}, headers=auth_headers
        )
        assert second.status_code == 200
        second_path = second.json()["image_path"]
        assert second_path != first_path

        assert client.get(f"{api_prefix}/uploads/{first_path}", headers=auth_headers).status_code == 404
        assert client.get(f"{api_prefix}/uploads/{second_path}", headers=auth_headers).status_code == 200
        fetched = client.get(f"{api_prefix}/products/{product['id']}", headers=auth_headers).json()
        assert fetched["image_path"] == second_path

    def test_missing_product_stores_nothing(self, client, api_prefix, auth_headers, app_config):
        response = client.post(
            f"{api_prefix}/products/missing/image",
            files={"file": ("front.png", image_bytes(), "image/png")},
            headers=auth_headers,
        )

        assert response.status_code == 404
        images = client.app.state.app_dependencies.upload_store.root / "images"
        assert not images.exists() or not any(images.iterdir())

    def test_product_deleted_while_uploading_leaves_no_file(
        self, client, api_prefix, auth_headers, create_product, monkeypatch
    ):
        """Should remove the stored label when the product is gone before it can be linked."""
        product = create_product()
        monkeypatch.setattr(
            ResourceService, "set_fields", lambda self, item_id, data: NotFound("product", item_id)
        )

        response = client.post(
            f"{api_prefix}/products/{product['id']}/image",
            files={"file": ("front.png", image_bytes(), "image/png")},
            headers=auth_headers,
        )

        assert response.status_code == 404
        images = client.app.state.app_dependencies.upload_store.root / "images"
        assert not images.exists() or not any(images.iterdir())
