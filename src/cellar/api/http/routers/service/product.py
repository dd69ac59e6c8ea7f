"""Product routes: generated CRUD plus spreadsheet import and label images."""

from typing import Any

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from src.cellar.api.http.deps import get_current_principal, get_db_session, get_upload_store
from src.cellar.api.http.routers.resource import build_resource_router, result_to_response
from src.cellar.core.results import Ok
from src.cellar.core.services.imports import ImportPipeline, ImportReport, UploadStore, read_upload
from src.cellar.core.services.imports.uploads import check_file_type
from src.cellar.core.services.resource_service import ResourceService
from src.cellar.entities.registry import SchemaRegistry
from src.cellar.entities.service.product.schema import PRODUCT_SCHEMA
from src.cellar.runtime.config.config_data import ApiConfig
from src.cellar.runtime.context import get_config


def build_product_router(registry: SchemaRegistry, api_config: ApiConfig | None = None) -> APIRouter:
    entity = PRODUCT_SCHEMA.name
    read_model = registry.validator(entity, "read")

    base = f"/{PRODUCT_SCHEMA.route}"
    router = APIRouter(
        tags=[PRODUCT_SCHEMA.route],
        dependencies=[Depends(get_current_principal)],
    )

    @router.post(f"{base}/import", response_model=ImportReport)
    async def import_products(
        file: UploadFile = File(..., description=".xlsx or .csv with a header row"),
        dry_run: bool = Query(False, description="Validate only, store nothing"),
        session: Session = Depends(get_db_session),
    ) -> ImportReport:
        """Import products from a spreadsheet.

        Rows are validated like single creates; valid rows are stored and
        invalid ones are listed in the report with their row number. Partial
        success is still a 200.
        """
        config = get_config()
        check_file_type(
            file.filename,
            file.content_type,
            config.imports.extensions,
            config.imports.content_types,
        )
        content = await read_upload(file, config.imports.max_bytes, config.uploads.chunk_size)
        pipeline = ImportPipeline(session, registry, entity, config.imports)
        return await run_in_threadpool(
            pipeline.run, file.filename or "upload", content, dry_run=dry_run
        )

    @router.post(base + "/{item_id}/image", response_model=read_model)
    async def attach_image(
        item_id: str,
        file: UploadFile = File(...),
        session: Session = Depends(get_db_session),
        store: UploadStore = Depends(get_upload_store),
    ) -> Any:
        """Store a label image and attach it to the product."""
        service = ResourceService(session, registry, entity)
        current = result_to_response(await run_in_threadpool(service.get, item_id))

        check_file_type(
            file.filename,
            file.content_type,
            store.config.image_extensions,
            store.config.image_content_types,
        )
        content = await read_upload(file, store.config.max_image_bytes, store.config.chunk_size)
        stored = await run_in_threadpool(
            store.save_image, file.filename or "image", content, file.content_type
        )
        result = await run_in_threadpool(service.set_fields, item_id, {"image_path": stored.reference})
        if not isinstance(result, Ok):
            # Product vanished or could not be written after the file was stored
            await run_in_threadpool(store.delete, stored.reference)
        updated = result_to_response(result)
        if current.image_path and current.image_path != stored.reference:
            await run_in_threadpool(store.delete, current.image_path)
        return updated

    router.include_router(build_resource_router(registry, entity, api_config))
    return router
