"""Resumable chunked uploads of large media files to S3-compatible storage.

Usage::

    orchestrator = build_orchestrator(settings, token_provider=get_access_token)
    controller = orchestrator.start(
        "/path/to/video.mp4",
        UploadOptions(kind="video", content_type="video/mp4", logical_id=entry_id),
    )
    result = await controller.result
"""

from chunked_upload.models.errors import (
    AuthenticationError,
    ControlPlaneError,
    FinalizationError,
    PartUploadFailed,
    ResumeMismatchError,
    TransientTransportError,
    UploadCancelledError,
    UploadError,
    UploadValidationError,
)
from chunked_upload.models.upload_models import (
    CompletedPart,
    FileKind,
    UploadOptions,
    UploadProgress,
    UploadResult,
    UploadSession,
    UploadState,
)
from chunked_upload.services.cleanup_service import CleanupService, build_cleanup_service, cleanup_scheduler
from chunked_upload.services.orchestrator import UploadController, UploadOrchestrator, build_orchestrator
from chunked_upload.services.policy import should_use_chunked_upload
from chunked_upload.services.session_store import FileSessionStateStore, RedisSessionStateStore, build_session_store

__all__ = [
    "AuthenticationError",
    "CleanupService",
    "CompletedPart",
    "ControlPlaneError",
    "FileKind",
    "FileSessionStateStore",
    "FinalizationError",
    "PartUploadFailed",
    "RedisSessionStateStore",
    "ResumeMismatchError",
    "TransientTransportError",
    "UploadCancelledError",
    "UploadController",
    "UploadError",
    "UploadOptions",
    "UploadOrchestrator",
    "UploadProgress",
    "UploadResult",
    "UploadSession",
    "UploadState",
    "UploadValidationError",
    "build_cleanup_service",
    "build_orchestrator",
    "build_session_store",
    "cleanup_scheduler",
    "should_use_chunked_upload",
]
