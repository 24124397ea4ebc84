# services/upload_service.py
import logging
from typing import Optional

import boto3
from botocore.config import Config

from chunked_upload.models.errors import ControlPlaneError
from chunked_upload.models.upload_models import (
    AbortRequest,
    CompleteRequest,
    CompleteResponse,
    GetPartUrlRequest,
    GetPartUrlResponse,
    InitiateRequest,
    InitiateResponse,
)
from chunked_upload.services.chunk_planner import MAX_PART_NUMBER
from chunked_upload.services.policy import generate_object_key, validate_file_for_upload

logger = logging.getLogger(__name__)


class UploadService:
    """Server side of the control plane: S3 multipart operations for authenticated users."""

    def __init__(self, s3_client=None, bucket_name: Optional[str] = None, url_expiration: int = 15 * 60):
        self.s3_client = s3_client
        self.bucket_name = bucket_name
        self.url_expiration = url_expiration

    @classmethod
    def from_settings(cls, settings) -> "UploadService":
        s3_client = boto3.client(
            "s3",
            region_name=settings.aws_region,
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.aws_access_key,
            aws_secret_access_key=settings.aws_secret_key,
            config=Config(signature_version="s3v4"),
        )
        return cls(s3_client, settings.bucket_name, settings.presigned_url_expiration)

    def _bucket(self) -> str:
        if not self.bucket_name:
            raise ControlPlaneError("BUCKET_NAME not configured", code="SERVER_ERROR", status_code=500)
        return self.bucket_name

    def initiate(self, user_id: str, request: InitiateRequest) -> InitiateResponse:
        """Create the multipart upload for a validated file."""
        validate_file_for_upload(request.fileType, request.fileSize, request.contentType)
        bucket = self._bucket()

        object_key = generate_object_key(user_id, request.fileType, request.contentType, request.fileName)
        response = self.s3_client.create_multipart_upload(
            Bucket=bucket,
            Key=object_key,
            ContentType=request.contentType,
        )
        upload_id = response.get("UploadId")
        if not upload_id:
            raise ControlPlaneError("Failed to create multipart upload", code="SERVER_ERROR", status_code=500)

        logger.info(f"Created multipart upload {upload_id} for {object_key}")
        return InitiateResponse(uploadId=upload_id, objectKey=object_key)

    def generate_part_url(self, request: GetPartUrlRequest) -> GetPartUrlResponse:
        if not 1 <= request.partNumber <= MAX_PART_NUMBER:
            raise ControlPlaneError(
                f"Part number must be between 1 and {MAX_PART_NUMBER}",
                code="INVALID_REQUEST",
                status_code=400,
            )
        url = self.s3_client.generate_presigned_url(
            "upload_part",
            Params={
                "Bucket": self._bucket(),
                "Key": request.objectKey,
                "UploadId": request.uploadId,
                "PartNumber": request.partNumber,
            },
            ExpiresIn=self.url_expiration,
            HttpMethod="PUT",
        )
        return GetPartUrlResponse(uploadUrl=url, partNumber=request.partNumber)

    def complete(self, request: CompleteRequest) -> CompleteResponse:
        if not request.parts:
            raise ControlPlaneError(
                "At least one part is required to complete the upload",
                code="INVALID_REQUEST",
                status_code=400,
            )
        bucket = self._bucket()

        sorted_parts = sorted(request.parts, key=lambda p: p.partNumber)
        self.s3_client.complete_multipart_upload(
            Bucket=bucket,
            Key=request.objectKey,
            UploadId=request.uploadId,
            MultipartUpload={"Parts": [{"PartNumber": p.partNumber, "ETag": p.etag} for p in sorted_parts]},
        )
        logger.info(f"Completed multipart upload {request.uploadId} ({len(sorted_parts)} parts)")
        return CompleteResponse(success=True, objectKey=request.objectKey)

    def abort(self, request: AbortRequest) -> None:
        self.s3_client.abort_multipart_upload(
            Bucket=self._bucket(),
            Key=request.objectKey,
            UploadId=request.uploadId,
        )
        logger.info(f"Aborted multipart upload {request.uploadId}")
