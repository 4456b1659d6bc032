"""
Storage Abstraction Layer - The Bridge Pattern

Provides a clean interface for streaming writes into object storage, with
S3ObjectStore (boto3, works with AWS S3 and S3-compatible endpoints) as the
implementation.
"""

from abc import ABC, abstractmethod
from typing import Optional, BinaryIO, Dict, Any
from urllib.parse import quote

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from cutout_service.core.exceptions import StorageError
from cutout_service.core.logging import get_logger
from cutout_service.modules.cutout.models import StorageCredentials

logger = get_logger(__name__)

DEFAULT_REGION = "us-east-1"
DEFAULT_PART_SIZE = 10 * 1024 * 1024
DEFAULT_QUEUE_SIZE = 4


class IObjectStore(ABC):
    """Interface for object storage operations - The Bridge"""

    @abstractmethod
    def upload_stream(
        self,
        stream: BinaryIO,
        bucket: str,
        key: str,
        content_type: str,
        region: Optional[str] = None,
        public: bool = False,
        cache_seconds: int = 0,
        sse: bool = False
    ) -> str:
        """
        Stream a file-like object into the store as one object.

        Args:
            stream: Readable, possibly non-seekable, byte stream
            bucket: Target bucket/container
            key: Target object key
            content_type: MIME type stored with the object
            region: Region override for this write
            public: Grant public read access
            cache_seconds: Cache lifetime; 0 leaves caching unset
            sse: Request server-side encryption

        Returns:
            Canonical storage URI of the written object
        """
        pass

    @abstractmethod
    def public_url(self, bucket: str, key: str, region: Optional[str] = None) -> Optional[str]:
        """Public URL of an object, or None when the store cannot express one."""
        pass

    @abstractmethod
    def presigned_url(
        self,
        bucket: str,
        key: str,
        expires_in: int = 3600,
        region: Optional[str] = None
    ) -> str:
        """Time-limited GET URL for an object."""
        pass


def build_extra_args(
    content_type: str,
    public: bool = False,
    cache_seconds: int = 0,
    sse: bool = False
) -> Dict[str, Any]:
    """Map upload flags onto S3 object settings. Unset flags add nothing."""
    extra_args: Dict[str, Any] = {"ContentType": content_type}
    if public:
        extra_args["ACL"] = "public-read"
    if sse:
        extra_args["ServerSideEncryption"] = "AES256"
    if cache_seconds and cache_seconds > 0:
        extra_args["CacheControl"] = f"public, max-age={cache_seconds}"
    return extra_args


def s3_public_url(bucket: str, key: str, region: Optional[str] = None) -> str:
    """Virtual-hosted public URL; the regional host is used outside us-east-1."""
    encoded_key = quote(key, safe="!~*'()")
    if region and region != DEFAULT_REGION:
        return f"https://{bucket}.s3.{region}.amazonaws.com/{encoded_key}"
    return f"https://{bucket}.s3.amazonaws.com/{encoded_key}"


class S3ObjectStore(IObjectStore):
    """S3 implementation using boto3 managed multipart transfers."""

    def __init__(
        self,
        credentials: StorageCredentials,
        part_size: int = DEFAULT_PART_SIZE,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        client_factory=None
    ):
        self.credentials = credentials
        self.default_region = credentials.region or DEFAULT_REGION
        self.transfer_config = TransferConfig(
            multipart_threshold=part_size,
            multipart_chunksize=part_size,
            max_concurrency=queue_size,
        )
        # Bounds buffered parts of non-seekable streams
        self.transfer_config.max_in_memory_upload_chunks = queue_size
        self._client_factory = client_factory or self._create_client
        self._clients: Dict[str, Any] = {}

    def _create_client(self, region: str):
        config = None
        if self.credentials.endpoint_url:
            config = Config(signature_version="s3v4", s3={"addressing_style": "path"})
        return boto3.client(
            "s3",
            region_name=region,
            endpoint_url=self.credentials.endpoint_url,
            aws_access_key_id=self.credentials.access_key_id,
            aws_secret_access_key=self.credentials.secret_access_key,
            config=config,
        )

    def client_for(self, region: Optional[str] = None):
        """Get (and cache) the S3 client for a region."""
        region = region or self.default_region
        if region not in self._clients:
            self._clients[region] = self._client_factory(region)
        return self._clients[region]

    def upload_stream(
        self,
        stream: BinaryIO,
        bucket: str,
        key: str,
        content_type: str,
        region: Optional[str] = None,
        public: bool = False,
        cache_seconds: int = 0,
        sse: bool = False
    ) -> str:
        extra_args = build_extra_args(content_type, public=public, cache_seconds=cache_seconds, sse=sse)

        logger.info(
            "s3_upload_starting",
            bucket=bucket,
            key=key,
            content_type=content_type,
            part_size=self.transfer_config.multipart_chunksize,
            queue_size=self.transfer_config.max_concurrency
        )

        try:
            self.client_for(region).upload_fileobj(
                stream,
                bucket,
                key,
                ExtraArgs=extra_args,
                Config=self.transfer_config
            )
        except ClientError as e:
            error = e.response.get("Error", {})
            logger.error(
                "s3_upload_failed",
                bucket=bucket,
                key=key,
                error_code=error.get("Code"),
                error=error.get("Message") or str(e)
            )
            raise StorageError(
                f"Object store rejected write: {error.get('Code') or str(e)}",
                bucket=bucket,
                key=key
            ) from e
        except BotoCoreError as e:
            logger.error("s3_upload_failed", bucket=bucket, key=key, error=str(e))
            raise StorageError(f"Object store write failed: {e}", bucket=bucket, key=key) from e

        return f"s3://{bucket}/{key}"

    def public_url(self, bucket: str, key: str, region: Optional[str] = None) -> Optional[str]:
        if self.credentials.public_base_url:
            base = self.credentials.public_base_url.rstrip("/")
            return f"{base}/{quote(key, safe='/!~*()')}"
        if self.credentials.endpoint_url:
            # Custom endpoints have no predictable public host
            return None
        return s3_public_url(bucket, key, region or self.default_region)

    def presigned_url(
        self,
        bucket: str,
        key: str,
        expires_in: int = 3600,
        region: Optional[str] = None
    ) -> str:
        try:
            return self.client_for(region).generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=expires_in
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to presign object URL: {e}", bucket=bucket, key=key) from e


def get_object_store(
    credentials: StorageCredentials,
    part_size: int = DEFAULT_PART_SIZE,
    queue_size: int = DEFAULT_QUEUE_SIZE
) -> IObjectStore:
    """Create the object store for one request."""
    return S3ObjectStore(credentials, part_size=part_size, queue_size=queue_size)
