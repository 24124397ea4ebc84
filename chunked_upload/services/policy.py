# services/policy.py
import time
from typing import Optional
from uuid import uuid4

from chunked_upload.models.errors import UploadValidationError
from chunked_upload.models.upload_models import FileKind

MIB = 1024 * 1024

FILE_TYPE_CONFIG = {
    FileKind.VIDEO: {
        "max_size_bytes": 500 * MIB,
        "allowed_content_types": (
            "video/mp4",
            "video/quicktime",
            "video/x-m4v",
            "video/webm",
        ),
    },
    FileKind.PHOTO: {
        "max_size_bytes": 20 * MIB,
        "allowed_content_types": (
            "image/jpeg",
            "image/png",
            "image/webp",
            "image/heic",
            "image/heif",
        ),
    },
}

EXTENSIONS = {
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/x-m4v": ".m4v",
    "video/webm": ".webm",
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/heic": ".heic",
    "image/heif": ".heif",
}

CHUNKED_UPLOAD_THRESHOLD = 10 * MIB


def parse_kind(kind) -> FileKind:
    try:
        return FileKind(kind)
    except ValueError:
        allowed = ", ".join(k.value for k in FileKind)
        raise UploadValidationError(
            f"Invalid file type. Must be one of: {allowed}", code="INVALID_FILE_TYPE"
        ) from None


def validate_file_for_upload(kind, file_size: int, content_type: str) -> None:
    """Raise UploadValidationError unless (kind, size, type) is within policy."""
    kind = parse_kind(kind)
    config = FILE_TYPE_CONFIG[kind]

    allowed = config["allowed_content_types"]
    if not content_type or content_type not in allowed:
        raise UploadValidationError(
            f"Invalid content type for {kind.value}. Allowed types: {', '.join(allowed)}",
            code="INVALID_CONTENT_TYPE",
        )

    if not file_size or file_size <= 0:
        raise UploadValidationError(
            "File size must be a positive number", code="INVALID_FILE_SIZE"
        )

    max_size = config["max_size_bytes"]
    if file_size > max_size:
        raise UploadValidationError(
            f"File size exceeds maximum allowed for {kind.value} ({max_size // MIB}MB)",
            code="FILE_TOO_LARGE",
        )


def should_use_chunked_upload(file_size: int) -> bool:
    return file_size > CHUNKED_UPLOAD_THRESHOLD


def extension_for(content_type: str, file_name: Optional[str] = None) -> str:
    if file_name:
        parts = file_name.split(".")
        if len(parts) > 1:
            return f".{parts[-1].lower()}"
    return EXTENSIONS.get(content_type, "")


def generate_object_key(user_id: str, kind, content_type: str, file_name: Optional[str] = None) -> str:
    # {kind}s/{user_id}/{timestamp_ms}-{uuid}{ext}
    kind = parse_kind(kind)
    timestamp = int(time.time() * 1000)
    return f"{kind.value}s/{user_id}/{timestamp}-{uuid4()}{extension_for(content_type, file_name)}"
