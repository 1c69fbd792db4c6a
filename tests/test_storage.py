import io
from unittest.mock import MagicMock
from urllib.parse import urlparse

import pytest
from google.api_core import exceptions as gcs_exceptions

from twelveimg.core.config import configs
from twelveimg.core.exceptions import TransientStorageError, ValidationError
from twelveimg.domain.storage import get_storage_client
from twelveimg.domain.storage.gcs import GCSStorageService
from twelveimg.domain.storage.local import LocalStorageService


@pytest.fixture
def local_storage(tmp_path):
    return LocalStorageService("bucket", media_root=str(tmp_path))


async def chunks_of(*parts):
    for part in parts:
        yield part


@pytest.mark.asyncio
async def test_local_write_read_delete(local_storage):
    assert await local_storage.write_stream("g1/a.jpg", chunks_of(b"jp", b"eg")) == 4

    assert await local_storage.exists("g1/a.jpg")
    assert await local_storage.read_bytes("g1/a.jpg") == b"jpeg"
    assert await local_storage.delete_file("g1/a.jpg")
    assert not await local_storage.delete_file("g1/a.jpg")
    assert not await local_storage.exists("g1/a.jpg")


@pytest.mark.asyncio
async def test_local_write_stream_never_replaces(local_storage):
    await local_storage.write_stream("g1/a.jpg", chunks_of(b"first"))

    with pytest.raises(FileExistsError):
        await local_storage.write_stream("g1/a.jpg", chunks_of(b"second"))

    assert await local_storage.read_bytes("g1/a.jpg") == b"first"
    assert sorted(p.name for p in (local_storage.root / "g1").iterdir()) == ["a.jpg"]


@pytest.mark.asyncio
async def test_local_write_stream_enforces_size_cap(local_storage):
    with pytest.raises(ValidationError):
        await local_storage.write_stream("g1/big.jpg", chunks_of(b"x" * 6, b"x" * 6), max_bytes=10)

    assert not await local_storage.exists("g1/big.jpg")
    assert list((local_storage.root / "g1").iterdir()) == []


@pytest.mark.asyncio
async def test_local_read_missing_raises_file_not_found(local_storage):
    with pytest.raises(FileNotFoundError):
        await local_storage.read_bytes("nope.jpg")


@pytest.mark.asyncio
async def test_local_upload_fileobj(local_storage):
    written = await local_storage.upload_fileobj(io.BytesIO(b"x" * 200_000), "archives/1.zip", "application/zip")

    assert written == 200_000
    assert len(await local_storage.read_bytes("archives/1.zip")) == 200_000


def test_local_path_traversal_rejected(local_storage):
    with pytest.raises(ValueError):
        local_storage.resolve("../../etc/passwd")


def test_local_signed_urls(local_storage):
    url = urlparse(local_storage.generate_download_url("g1/a.jpg", 60, filename="a.jpg"))

    assert url.path == "/api/storage/bucket/g1/a.jpg"
    assert "signature=" in url.query
    assert "filename=a.jpg" in url.query


@pytest.mark.asyncio
async def test_local_storage_endpoint_roundtrip(client):
    storage = get_storage_client(configs.IMAGES_BUCKET)
    upload_url = storage.generate_upload_url("g9/photo.jpg", "image/jpeg", 60)

    put = await client.put(upload_url, content=b"photo-bytes")
    get = await client.get(storage.generate_download_url("g9/photo.jpg", 60))

    assert put.status_code == 200
    assert get.status_code == 200
    assert get.content == b"photo-bytes"


@pytest.mark.asyncio
async def test_local_storage_endpoint_rejects_bad_signature(client):
    storage = get_storage_client(configs.IMAGES_BUCKET)
    upload_url = storage.generate_upload_url("g9/other.jpg", "image/jpeg", 60)

    response = await client.put(upload_url.replace("signature=", "signature=0"), content=b"x")

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_local_storage_upload_url_is_single_use(client):
    storage = get_storage_client(configs.IMAGES_BUCKET)
    upload_url = storage.generate_upload_url("g9/once.jpg", "image/jpeg", 60)

    first = await client.put(upload_url, content=b"original")
    replay = await client.put(upload_url, content=b"replaced")

    assert first.status_code == 200
    assert replay.status_code == 403
    assert await storage.read_bytes("g9/once.jpg") == b"original"


@pytest.mark.asyncio
async def test_local_storage_rejects_oversized_upload(client, monkeypatch):
    monkeypatch.setattr(configs, "MAX_FILE_SIZE", 8)
    storage = get_storage_client(configs.IMAGES_BUCKET)
    upload_url = storage.generate_upload_url("g9/big.jpg", "image/jpeg", 60)

    response = await client.put(upload_url, content=b"x" * 9)

    assert response.status_code == 400
    assert not await storage.exists("g9/big.jpg")


@pytest.mark.asyncio
async def test_local_storage_endpoint_unknown_bucket(client):
    response = await client.get("/api/storage/secrets/a.jpg?expires=1&signature=x")

    assert response.status_code == 404


def gcs_service():
    client = MagicMock()
    service = GCSStorageService("gcs-bucket", client=client)
    return service, client.bucket.return_value.blob.return_value


@pytest.mark.asyncio
async def test_gcs_not_found_maps_to_file_not_found():
    service, blob = gcs_service()
    blob.download_as_bytes.side_effect = gcs_exceptions.NotFound("missing")

    with pytest.raises(FileNotFoundError):
        await service.read_bytes("a.jpg")


@pytest.mark.asyncio
async def test_gcs_api_error_is_transient():
    service, blob = gcs_service()
    blob.download_as_bytes.side_effect = gcs_exceptions.ServiceUnavailable("down")

    with pytest.raises(TransientStorageError):
        await service.read_bytes("a.jpg")


@pytest.mark.asyncio
async def test_gcs_upload_fileobj_reports_size():
    service, blob = gcs_service()

    size = await service.upload_fileobj(io.BytesIO(b"12345"), "archives/1.zip", "application/zip")

    assert size == 5
    assert blob.upload_from_file.call_args.kwargs["content_type"] == "application/zip"


def test_gcs_signed_urls():
    service, blob = gcs_service()
    blob.generate_signed_url.return_value = "https://signed"

    assert service.generate_upload_url("a.jpg", "image/jpeg", 300) == "https://signed"
    assert blob.generate_signed_url.call_args.kwargs["method"] == "PUT"
    assert blob.generate_signed_url.call_args.kwargs["content_type"] == "image/jpeg"

    service.generate_download_url("a.zip", 60, filename="Wedding.zip")
    assert blob.generate_signed_url.call_args.kwargs["response_disposition"] == 'attachment; filename="Wedding.zip"'
