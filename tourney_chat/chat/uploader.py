"""File attachment uploader implementation."""

import mimetypes
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from ..backend.ports import IObjectStorage
from ..config import ChatSettings
from ..logging_config import get_logger
from ..models import MessageKind

logger = get_logger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")


class FileCategory(str, Enum):
    """Media categories a picker can restrict uploads to."""

    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


@dataclass
class LocalFile:
    """A file picked by the user, held in memory."""

    file_name: str
    data: bytes
    mime_type: str = DEFAULT_MIME_TYPE

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        suffix = Path(self.file_name).suffix.lstrip(".").lower()
        return suffix or "bin"

    @classmethod
    def from_path(cls, path: str | Path, mime_type: str | None = None) -> "LocalFile":
        path = Path(path)
        guessed, _ = mimetypes.guess_type(path.name)
        return cls(
            file_name=path.name,
            data=path.read_bytes(),
            mime_type=mime_type or guessed or DEFAULT_MIME_TYPE,
        )


@dataclass
class UploadResult:
    """Outcome of an upload. Never raised, always returned."""

    success: bool
    url: str | None = None
    path: str | None = None
    error: str | None = None


def kind_for_mime(mime_type: str) -> MessageKind:
    """Message kind for an uploaded file, from its MIME prefix."""
    mime_type = (mime_type or "").lower()
    if mime_type.startswith("image/"):
        return MessageKind.IMAGE
    if mime_type.startswith("video/"):
        return MessageKind.VIDEO
    if mime_type.startswith("audio/"):
        return MessageKind.AUDIO
    return MessageKind.FILE


def format_file_size(size: int) -> str:
    """Human-readable size, e.g. '1.5 MB'."""
    if size <= 0:
        return "0 Bytes"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 2):g} {_SIZE_UNITS[unit]}"


def _format_limit(limit: int) -> str:
    return format_file_size(limit).replace(" ", "")


class AttachmentUploader:
    """Validates and stores chat attachments, returning public URLs."""

    def __init__(
        self,
        storage: IObjectStorage,
        settings: ChatSettings | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._storage = storage
        self._settings = settings or ChatSettings()
        self._clock = clock

    @property
    def bucket(self) -> str:
        return self._settings.chat_bucket

    def validate(self, file: LocalFile, category: FileCategory | None = None) -> str | None:
        """Return an error message, or None if the file may be uploaded."""
        if file.size == 0:
            return "File is empty"
        if file.size > self._settings.max_upload_bytes:
            return f"File size must be less than {_format_limit(self._settings.max_upload_bytes)}"

        is_image = file.mime_type.lower().startswith("image/")
        if is_image and file.size > self._settings.max_image_bytes:
            return f"Image size must be less than {_format_limit(self._settings.max_image_bytes)}"

        if category is not None and not file.mime_type.lower().startswith(f"{category.value}/"):
            return f"File must be {'an' if category == FileCategory.IMAGE else 'a'} {category.value}"
        return None

    def object_key(self, file: LocalFile, folder: str = "") -> str:
        """`{folder}/{epoch_ms}-{random}.{ext}`"""
        name = f"{int(self._clock() * 1000)}-{secrets.token_hex(6)}.{file.extension}"
        folder = folder.strip("/")
        return f"{folder}/{name}" if folder else name

    async def upload(
        self,
        file: LocalFile,
        bucket: str | None = None,
        folder: str = "",
        category: FileCategory | None = None,
    ) -> UploadResult:
        error = self.validate(file, category)
        if error:
            logger.info("Rejected upload %s: %s", file.file_name, error)
            return UploadResult(success=False, error=error)

        bucket = bucket or self.bucket
        path = self.object_key(file, folder)
        try:
            stored_path = await self._storage.upload(bucket, path, file.data, file.mime_type)
            url = await self._storage.get_public_url(bucket, stored_path)
        except Exception as e:
            logger.error("Upload of %s to %s failed: %s", file.file_name, bucket, e, exc_info=True)
            return UploadResult(success=False, path=path, error=str(e))

        logger.info("Uploaded %s to %s/%s (%d bytes)", file.file_name, bucket, stored_path, file.size)
        return UploadResult(success=True, url=url, path=stored_path)
