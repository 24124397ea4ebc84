# services/control_plane.py
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Union

import httpx
from pydantic import BaseModel, ValidationError

from chunked_upload.models.errors import AuthenticationError, ControlPlaneError
from chunked_upload.models.upload_models import (
    AbortRequest,
    CompletedPart,
    CompleteRequest,
    CompleteResponse,
    FileKind,
    GetPartUrlRequest,
    GetPartUrlResponse,
    InitiateRequest,
    InitiateResponse,
    WirePart,
)

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


class ControlPlaneClient(ABC):
    """The four remote operations that drive a server-side multipart upload."""

    @abstractmethod
    async def initiate(
        self, kind: FileKind, file_size: int, content_type: str, file_name: Optional[str] = None
    ) -> Tuple[str, str]:
        """Start a multipart upload, returning ``(session_id, object_key)``."""

    @abstractmethod
    async def get_part_destination(self, session_id: str, object_key: str, part_number: int) -> str:
        """Pre-signed URL the part's bytes must be PUT to."""

    @abstractmethod
    async def complete(self, session_id: str, object_key: str, parts: Sequence[CompletedPart]) -> str: ...

    @abstractmethod
    async def abort(self, session_id: str, object_key: str) -> None: ...


class HttpControlPlaneClient(ControlPlaneClient):
    """Client for the single multiplexed ``multipart-upload`` endpoint."""

    def __init__(
        self,
        endpoint_url: str,
        token_provider: TokenProvider,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        self.endpoint_url = endpoint_url
        self.token_provider = token_provider
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def _token(self) -> str:
        try:
            token = self.token_provider()
            if inspect.isawaitable(token):
                token = await token
        except AuthenticationError:
            raise
        except Exception as e:
            raise AuthenticationError(f"Not authenticated. Please sign in to upload files. ({e})") from e
        if not token:
            raise AuthenticationError("Not authenticated. Please sign in to upload files.")
        return token

    async def _call(self, request: BaseModel, response_model):
        token = await self._token()
        try:
            response = await self._client.post(
                self.endpoint_url,
                json=request.model_dump(exclude_none=True),
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise ControlPlaneError(
                f"Control plane request '{request.action}' failed: {e}", code="NETWORK_ERROR"
            ) from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if response.status_code == 401 or payload.get("code") == "UNAUTHORIZED":
            raise AuthenticationError(payload.get("error", "Invalid or expired token"))
        if response.status_code >= 400 or "error" in payload:
            raise ControlPlaneError(
                payload.get("error", f"Control plane returned status {response.status_code}"),
                code=payload.get("code", "SERVER_ERROR"),
                status_code=response.status_code,
            )

        try:
            return response_model.model_validate(payload)
        except ValidationError as e:
            raise ControlPlaneError(
                f"Invalid response from control plane for '{request.action}'",
                code="INVALID_RESPONSE",
                status_code=response.status_code,
            ) from e

    async def initiate(self, kind, file_size, content_type, file_name=None):
        data = await self._call(
            InitiateRequest(
                fileType=FileKind(kind).value,
                fileSize=file_size,
                contentType=content_type,
                fileName=file_name,
            ),
            InitiateResponse,
        )
        logger.info(f"Initiated multipart upload {data.uploadId} for {data.objectKey}")
        return data.uploadId, data.objectKey

    async def get_part_destination(self, session_id, object_key, part_number):
        data = await self._call(
            GetPartUrlRequest(uploadId=session_id, objectKey=object_key, partNumber=part_number),
            GetPartUrlResponse,
        )
        return data.uploadUrl

    async def complete(self, session_id, object_key, parts):
        wire_parts: List[WirePart] = [
            WirePart(partNumber=p.part_number, etag=p.integrity_tag)
            for p in sorted(parts, key=lambda p: p.part_number)
        ]
        data = await self._call(
            CompleteRequest(uploadId=session_id, objectKey=object_key, parts=wire_parts),
            CompleteResponse,
        )
        if not data.success:
            raise ControlPlaneError("Failed to complete multipart upload")
        return data.objectKey

    async def abort(self, session_id, object_key):
        await self._call(AbortRequest(uploadId=session_id, objectKey=object_key), _AbortResponse)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class _AbortResponse(BaseModel):
    success: bool = True
