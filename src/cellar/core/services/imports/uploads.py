"""Bounded reading of multipart uploads and collision-free file storage."""

from __future__ import annotations

import io
import re
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePath

from fastapi import UploadFile
from loguru import logger
from PIL import Image, UnidentifiedImageError

from src.cellar.core.errors import (
    FieldViolation,
    ImportFileError,
    NotFoundError,
    PayloadTooLarge,
    UnsupportedMediaType,
    ValidationFailed,
)
from src.cellar.runtime.config.config_data import UploadConfig

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")
_CATEGORY = re.compile(r"^[a-z0-9_-]{1,40}$")
_MAX_ATTEMPTS = 5

# Pillow format name -> extensions it may be stored under
_IMAGE_FORMATS = {
    "JPEG": (".jpg", ".jpeg"),
    "PNG": (".png",),
    "WEBP": (".webp",),
    "GIF": (".gif",),
}


def check_file_type(
    filename: str | None,
    content_type: str | None,
    extensions: list[str],
    content_types: list[str],
) -> str:
    """Return the lower-cased extension or raise UnsupportedMediaType."""
    suffix = PurePath(filename or "").suffix.lower()
    if suffix not in extensions:
        raise UnsupportedMediaType(
            f"Unsupported file extension {suffix or '(none)'}; expected one of {', '.join(extensions)}"
        )
    media_type = (content_type or "").split(";")[0].strip().lower()
    if media_type and media_type not in content_types:
        raise UnsupportedMediaType(f"Unsupported content type {media_type}")
    return suffix


async def read_upload(upload: UploadFile, max_bytes: int, chunk_size: int = 64 * 1024) -> bytes:
    """Read an upload in chunks, aborting as soon as it exceeds ``max_bytes``."""
    buffer = bytearray()
    while True:
        chunk = await upload.read(chunk_size)
        if not chunk:
            break
        buffer.extend(chunk)
        if len(buffer) > max_bytes:
            raise PayloadTooLarge(f"File exceeds the {max_bytes} byte limit")
    if not buffer:
        raise ImportFileError("Uploaded file is empty")
    return bytes(buffer)


def safe_stem(filename: str) -> str:
    stem = _UNSAFE.sub("-", PurePath(filename).stem).strip("-.")
    return stem[:60] or "file"


@dataclass(frozen=True)
class StoredFile:
    """A file written by :class:`UploadStore`.

    ``reference`` is ``<category>/<filename>`` and is what gets persisted on
    entities and used to fetch the file back.
    """

    reference: str
    filename: str
    original_filename: str
    content_type: str
    size: int


class UploadStore:
    """Stores uploaded files below one root directory.

    Every stored name gets a random suffix and is written with exclusive
    create, so two uploads with the same original name never overwrite each
    other even when they arrive at the same time.
    """

    def __init__(self, config: UploadConfig) -> None:
        self._config = config
        self._root = Path(config.directory).resolve()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def config(self) -> UploadConfig:
        return self._config

    def ensure_root(self) -> None:
        self._root.mkdir(parents=True, exist_ok=True)

    def is_writable(self) -> bool:
        """Readiness probe: create and remove a scratch file under the root."""
        try:
            self.ensure_root()
            probe = self._root / f".probe-{uuid.uuid4().hex}"
            probe.write_bytes(b"")
            probe.unlink()
            return True
        except OSError as exc:
            logger.bind(directory=str(self._root), alert=True).error(
                "Upload directory not writable: {}", exc
            )
            return False

    def _category_dir(self, category: str) -> Path:
        if not _CATEGORY.match(category):
            raise ValidationFailed(
                [FieldViolation("category", "Invalid upload category", "invalid_value")]
            )
        return self._root / category

    def save(
        self,
        category: str,
        original_filename: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> StoredFile:
        directory = self._category_dir(category)
        directory.mkdir(parents=True, exist_ok=True)
        suffix = PurePath(original_filename).suffix.lower()
        stem = safe_stem(original_filename)

        for _ in range(_MAX_ATTEMPTS):
            name = f"{stem}-{uuid.uuid4().hex[:12]}{suffix}"
            try:
                with open(directory / name, "xb") as fh:
                    fh.write(content)
            except FileExistsError:
                continue
            stored = StoredFile(
                reference=f"{category}/{name}",
                filename=name,
                original_filename=original_filename,
                content_type=content_type,
                size=len(content),
            )
            logger.bind(reference=stored.reference, size=stored.size).info("upload.stored")
            return stored
        raise FileExistsError(f"Could not allocate a unique name for {original_filename}")

    def save_image(self, original_filename: str, content: bytes, content_type: str | None) -> StoredFile:
        """Validate an image (type, size, decodable by Pillow) and store it."""
        suffix = check_file_type(
            original_filename,
            content_type,
            self._config.image_extensions,
            self._config.image_content_types,
        )
        if len(content) > self._config.max_image_bytes:
            raise PayloadTooLarge(f"Image exceeds the {self._config.max_image_bytes} byte limit")
        image_format = verify_image(content)
        if suffix not in _IMAGE_FORMATS.get(image_format, ()):
            raise UnsupportedMediaType(
                f"File content is {image_format}, which does not match extension {suffix}"
            )
        media_type = Image.MIME.get(image_format, "application/octet-stream")
        return self.save("images", original_filename, content, media_type)

    def delete(self, reference: str) -> bool:
        try:
            path = self.resolve(reference)
        except NotFoundError:
            return False
        path.unlink(missing_ok=True)
        logger.bind(reference=reference).info("upload.deleted")
        return True

    def resolve(self, reference: str) -> Path:
        """Map a stored reference back to its path, refusing anything outside the root."""
        parts = PurePath(reference).parts
        if len(parts) != 2 or not _CATEGORY.match(parts[0]) or parts[1] in {"..", "."}:
            raise NotFoundError("File not found")
        path = (self._root / parts[0] / parts[1]).resolve()
        if not path.is_relative_to(self._root) or not path.is_file():
            raise NotFoundError("File not found")
        return path


def verify_image(content: bytes) -> str:
    """Return the Pillow format name of ``content`` or raise UnsupportedMediaType."""
    try:
        with Image.open(io.BytesIO(content)) as image:
            image.verify()
            image_format = image.format
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        raise UnsupportedMediaType("File is not a valid image") from exc
    if image_format not in _IMAGE_FORMATS:
        raise UnsupportedMediaType(f"Unsupported image format {image_format}")
    return image_format
