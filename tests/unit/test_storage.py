import io

import pytest
from unittest.mock import MagicMock
from botocore.exceptions import ClientError, EndpointConnectionError

from cutout_service.core.exceptions import StorageError
from cutout_service.core.storage import S3ObjectStore, build_extra_args, s3_public_url
from cutout_service.modules.cutout.models import StorageCredentials


def make_store(client=None, **credentials):
    client = client or MagicMock()
    store = S3ObjectStore(
        StorageCredentials(**credentials),
        part_size=10 * 1024 * 1024,
        queue_size=4,
        client_factory=lambda region: client
    )
    return store, client


def test_extra_args_only_content_type_by_default():
    assert build_extra_args("image/png") == {"ContentType": "image/png"}


def test_extra_args_pass_through_flags():
    args = build_extra_args("image/png", public=True, cache_seconds=600, sse=True)
    assert args == {
        "ContentType": "image/png",
        "ACL": "public-read",
        "ServerSideEncryption": "AES256",
        "CacheControl": "public, max-age=600",
    }


def test_transfer_config_bounds_memory():
    store, _ = make_store()
    config = store.transfer_config
    assert config.multipart_chunksize == 10 * 1024 * 1024
    assert config.multipart_threshold == 10 * 1024 * 1024
    assert config.max_concurrency == 4
    assert config.max_in_memory_upload_chunks == 4


def test_upload_stream_returns_storage_uri():
    store, client = make_store()
    stream = io.BytesIO(b"png-bytes")

    uri = store.upload_stream(stream, "firefly-upload", "uploads/lamp.png", "image/png", public=True)

    assert uri == "s3://firefly-upload/uploads/lamp.png"
    client.upload_fileobj.assert_called_once()
    args, kwargs = client.upload_fileobj.call_args
    assert args == (stream, "firefly-upload", "uploads/lamp.png")
    assert kwargs["ExtraArgs"] == {"ContentType": "image/png", "ACL": "public-read"}
    assert kwargs["Config"] is store.transfer_config


def test_upload_stream_rejected_write_raises_storage_error():
    client = MagicMock()
    client.upload_fileobj.side_effect = ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "Access Denied"}},
        "PutObject"
    )
    store, _ = make_store(client)

    with pytest.raises(StorageError) as exc_info:
        store.upload_stream(io.BytesIO(b"x"), "bucket", "key.png", "image/png")

    assert "AccessDenied" in exc_info.value.message
    assert exc_info.value.stage == "upload"
    assert exc_info.value.details["bucket"] == "bucket"


def test_upload_stream_network_failure_raises_storage_error():
    client = MagicMock()
    client.upload_fileobj.side_effect = EndpointConnectionError(endpoint_url="https://s3.amazonaws.com")
    store, _ = make_store(client)

    with pytest.raises(StorageError):
        store.upload_stream(io.BytesIO(b"x"), "bucket", "key.png", "image/png")


def test_clients_are_cached_per_region():
    created = []

    def factory(region):
        created.append(region)
        return MagicMock()

    store = S3ObjectStore(StorageCredentials(region="us-west-2"), client_factory=factory)
    store.client_for()
    store.client_for("us-west-2")
    store.client_for("eu-west-1")

    assert created == ["us-west-2", "eu-west-1"]


def test_public_url_default_region_uses_generic_host():
    assert s3_public_url("bucket", "lamp.png", "us-east-1") == "https://bucket.s3.amazonaws.com/lamp.png"
    assert s3_public_url("bucket", "lamp.png", None) == "https://bucket.s3.amazonaws.com/lamp.png"


def test_public_url_other_region_uses_regional_host():
    assert s3_public_url("bucket", "lamp.png", "us-west-2") == "https://bucket.s3.us-west-2.amazonaws.com/lamp.png"


def test_public_url_encodes_key():
    assert s3_public_url("bucket", "uploads/my lamp.png") == "https://bucket.s3.amazonaws.com/uploads%2Fmy%20lamp.png"


def test_store_public_url_never_calls_client():
    store, client = make_store(region="eu-west-1")

    assert store.public_url("bucket", "lamp.png") == "https://bucket.s3.eu-west-1.amazonaws.com/lamp.png"
    assert client.method_calls == []


def test_store_public_url_custom_endpoint():
    store, _ = make_store(endpoint_url="https://r2.example.com")
    assert store.public_url("bucket", "lamp.png") is None

    store, _ = make_store(endpoint_url="https://r2.example.com", public_base_url="https://media.example.com/")
    assert store.public_url("bucket", "uploads/lamp.png") == "https://media.example.com/uploads/lamp.png"


def test_presigned_url_uses_get_object():
    store, client = make_store()
    client.generate_presigned_url.return_value = "https://bucket.s3.amazonaws.com/lamp.png?X-Amz-Signature=abc"

    url = store.presigned_url("bucket", "lamp.png", expires_in=900)

    assert url.endswith("X-Amz-Signature=abc")
    client.generate_presigned_url.assert_called_once_with(
        "get_object",
        Params={"Bucket": "bucket", "Key": "lamp.png"},
        ExpiresIn=900
    )
