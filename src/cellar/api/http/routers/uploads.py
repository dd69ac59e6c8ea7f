"""Image uploads and retrieval of stored files."""

import mimetypes

from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import FileResponse
from starlette.concurrency import run_in_threadpool

from src.cellar.api.http.deps import get_current_principal, get_upload_store
from src.cellar.core.services.imports import StoredFile, UploadStore, read_upload
from src.cellar.core.services.imports.uploads import check_file_type

router = APIRouter(
    prefix="/uploads",
    tags=["uploads"],
    dependencies=[Depends(get_current_principal)],
)


@router.post("/images", response_model=StoredFile, status_code=status.HTTP_201_CREATED)
async def upload_image(
    file: UploadFile = File(...),
    store: UploadStore = Depends(get_upload_store),
) -> StoredFile:
    check_file_type(
        file.filename,
        file.content_type,
        store.config.image_extensions,
        store.config.image_content_types,
    )
    content = await read_upload(file, store.config.max_image_bytes, store.config.chunk_size)
    return await run_in_threadpool(
        store.save_image, file.filename or "image", content, file.content_type
    )


@router.get("/{category}/{filename}", response_class=FileResponse)
def download(
    category: str,
    filename: str,
    store: UploadStore = Depends(get_upload_store),
) -> FileResponse:
    path = store.resolve(f"{category}/{filename}")
    media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    return FileResponse(path, media_type=media_type, filename=path.name)
