# services/retrying_uploader.py
import logging
from typing import Awaitable, Callable, Optional

from chunked_upload.models.errors import (
    PartUploadFailed,
    TransientTransportError,
    UploadCancelledError,
)
from chunked_upload.services.cancellation import CancelToken
from chunked_upload.services.part_transport import PartTransport

logger = logging.getLogger(__name__)

MAX_CHUNK_ATTEMPTS = 3
BASE_RETRY_DELAY = 1.0


def retry_delay(attempt: int, base_delay: float = BASE_RETRY_DELAY) -> float:
    """Backoff before retry number ``attempt`` (0-based): 1s, 2s, 4s, ..."""
    return base_delay * (2 ** attempt)


class RetryingPartUploader:
    """Bounded retry with exponential backoff around a PartTransport."""

    def __init__(
        self,
        transport: PartTransport,
        max_attempts: int = MAX_CHUNK_ATTEMPTS,
        base_delay: float = BASE_RETRY_DELAY,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.transport = transport
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

    async def upload(
        self,
        destination_url: str,
        data: bytes,
        content_type: str,
        cancel_token: CancelToken,
        part_number: int = 0,
    ) -> str:
        last_error: Optional[TransientTransportError] = None

        for attempt in range(self.max_attempts):
            cancel_token.raise_if_cancelled()
            if attempt > 0:
                await self._backoff(retry_delay(attempt - 1, self.base_delay), cancel_token)

            try:
                return await self.transport.put(destination_url, data, content_type, cancel_token)
            except UploadCancelledError:
                raise
            except TransientTransportError as e:
                last_error = e
                logger.warning(
                    f"Part {part_number} attempt {attempt + 1}/{self.max_attempts} failed: {e}"
                )

        raise PartUploadFailed(part_number, self.max_attempts, last_error) from last_error

    async def _backoff(self, delay: float, cancel_token: CancelToken) -> None:
        if self._sleep is None:
            await cancel_token.sleep(delay)
        else:
            await self._sleep(delay)
        cancel_token.raise_if_cancelled()
