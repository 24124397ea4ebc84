# services/part_transport.py
import logging
import time
from typing import Optional

import httpx

from chunked_upload.models.errors import TransientTransportError
from chunked_upload.services.cancellation import CancelToken

logger = logging.getLogger(__name__)


class PartTransport:
    """One HTTP PUT of a byte range to a pre-signed destination. No retries."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 60.0):
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def put(
        self,
        destination_url: str,
        data: bytes,
        content_type: str,
        cancel_token: Optional[CancelToken] = None,
    ) -> str:
        """PUT ``data`` and return the integrity tag (ETag without quotes)."""
        request = self._client.put(
            destination_url,
            content=data,
            headers={"Content-Type": content_type},
        )
        try:
            if cancel_token is not None:
                response = await cancel_token.run(request)
            else:
                response = await request
        except httpx.HTTPError as e:
            raise TransientTransportError(f"Chunk upload failed due to network error: {e}") from e

        if not 200 <= response.status_code < 300:
            raise TransientTransportError(
                f"Chunk upload failed with status {response.status_code}",
                status_code=response.status_code,
            )

        etag = response.headers.get("ETag")
        if etag:
            return etag.replace('"', "")
        # Some S3-compatible stores omit the ETag on part uploads
        placeholder = f"part-{int(time.time() * 1000)}"
        logger.warning(f"No ETag returned for part upload, using {placeholder}")
        return placeholder

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
