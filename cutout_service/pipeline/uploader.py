"""
Streaming Uploader

Fetches a remote resource as a byte stream and pipes it straight into a
multipart upload. The payload is never held in memory as a whole: the
object store buffers at most part size x queue depth bytes.
"""

import io
import time
import asyncio
from datetime import datetime
from typing import Callable, Iterator, Optional

import httpx

from cutout_service.core.exceptions import FetchError
from cutout_service.core.logging import get_logger, LogContext
from cutout_service.core.metrics import record_uploaded_bytes
from cutout_service.core.storage import IObjectStore
from cutout_service.modules.cutout.models import UploadRequest, UploadResult
from cutout_service.pipeline.keys import resolve_key, resolve_content_type

logger = get_logger(__name__)

READ_CHUNK_SIZE = 64 * 1024


class ResponseStream(io.RawIOBase):
    """
    Non-seekable file object over an iterator of byte chunks.

    read(n) returns exactly n bytes until the source is exhausted, so that
    every multipart part but the last one has the full part size.

    wait_budget bounds the time spent blocked on the source only; time the
    consumer spends between reads (a slow object store) is not counted.
    """

    def __init__(
        self,
        chunks: Iterator[bytes],
        wait_budget: Optional[float] = None,
        url: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        super().__init__()
        self._chunks = chunks
        self._buffer = b""
        self._exhausted = False
        self._wait_budget = wait_budget
        self._url = url
        self._clock = clock
        self.bytes_read = 0
        self.waited = 0.0

    def readable(self) -> bool:
        return True

    def has_data(self) -> bool:
        """True unless the source is already exhausted."""
        return self._fill()

    def _fill(self) -> bool:
        while not self._buffer and not self._exhausted:
            started = self._clock()
            try:
                self._buffer = next(self._chunks)
            except StopIteration:
                self._exhausted = True
            finally:
                self.waited += self._clock() - started
            if self._wait_budget is not None and self.waited > self._wait_budget:
                raise FetchError("Fetch timeout exceeded while reading the body", url=self._url)
        return bool(self._buffer)

    def read(self, size: int = -1) -> bytes:
        pieces = []
        remaining = size if size is not None and size >= 0 else None
        while remaining is None or remaining > 0:
            if not self._fill():
                break
            take = len(self._buffer) if remaining is None else min(remaining, len(self._buffer))
            pieces.append(self._buffer[:take])
            self._buffer = self._buffer[take:]
            if remaining is not None:
                remaining -= take
        data = b"".join(pieces)
        self.bytes_read += len(data)
        return data

    def readinto(self, b) -> int:
        data = self.read(len(b))
        b[:len(data)] = data
        return len(data)


class StreamingUploader:
    """Stage a remote resource into object storage without buffering it."""

    def __init__(
        self,
        store: IObjectStore,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.store = store
        self._transport = transport
        self._clock = clock

    async def upload(self, request: UploadRequest) -> UploadResult:
        """Run the blocking transfer in a worker thread."""
        return await asyncio.to_thread(self.upload_sync, request)

    def upload_sync(self, request: UploadRequest) -> UploadResult:
        """
        Fetch request.url and stream it into request.bucket.

        Raises:
            FetchError: non-2xx response, empty body, network failure or timeout
            StorageError: the object store rejected the write
        """
        # Resolved once; never regenerated during the transfer
        key = request.key or resolve_key(request.url)
        start_time = datetime.utcnow()
        # Covers connecting and receiving headers; the body is bounded by blocked time only
        deadline = self._clock() + request.timeout_seconds

        with LogContext(stage="upload"):
            logger.info("upload_starting", url=request.url, bucket=request.bucket, key=key)

            with httpx.Client(
                timeout=request.timeout_seconds,
                follow_redirects=True,
                transport=self._transport
            ) as client:
                try:
                    with client.stream("GET", request.url) as response:
                        self._check_response(response, request.url)
                        remaining = deadline - self._clock()
                        if remaining <= 0:
                            raise FetchError(
                                "Fetch timed out before the response arrived",
                                url=request.url
                            )

                        content_type = resolve_content_type(
                            request.content_type,
                            response.headers.get("content-type"),
                            key
                        )
                        body = ResponseStream(
                            response.iter_bytes(chunk_size=READ_CHUNK_SIZE),
                            wait_budget=remaining,
                            url=request.url,
                            clock=self._clock
                        )
                        if not body.has_data():
                            raise FetchError(
                                "Fetch returned an empty body",
                                url=request.url,
                                http_status=response.status_code
                            )
                        storage_uri = self.store.upload_stream(
                            body,
                            request.bucket,
                            key,
                            content_type,
                            region=request.region,
                            public=request.public,
                            cache_seconds=request.cache_seconds,
                            sse=request.sse
                        )
                except httpx.TimeoutException as e:
                    logger.error("upload_fetch_timeout", url=request.url, error=str(e))
                    raise FetchError(f"Fetch timed out: {e}", url=request.url) from e
                except httpx.HTTPError as e:
                    logger.error("upload_fetch_failed", url=request.url, error=str(e))
                    raise FetchError(f"Fetch failed: {e}", url=request.url) from e

            public_url = None
            if request.public:
                public_url = self.store.public_url(request.bucket, key, request.region)

            presigned_url = None
            if request.presign_seconds > 0:
                presigned_url = self.store.presigned_url(
                    request.bucket, key, expires_in=request.presign_seconds, region=request.region
                )

            record_uploaded_bytes(body.bytes_read)
            duration_ms = int((datetime.utcnow() - start_time).total_seconds() * 1000)
            logger.info(
                "upload_completed",
                storage_uri=storage_uri,
                content_type=content_type,
                bytes_uploaded=body.bytes_read,
                duration_ms=duration_ms
            )

            return UploadResult(
                bucket=request.bucket,
                key=key,
                content_type=content_type,
                storage_uri=storage_uri,
                public_url=public_url,
                presigned_url=presigned_url,
                bytes_uploaded=body.bytes_read
            )

    @staticmethod
    def _check_response(response: httpx.Response, url: str):
        if not response.is_success:
            logger.error("upload_fetch_rejected", url=url, http_status=response.status_code)
            raise FetchError(
                f"Fetch failed: {response.status_code} {response.reason_phrase}",
                url=url,
                http_status=response.status_code
            )
