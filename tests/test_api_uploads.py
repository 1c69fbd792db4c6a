import uuid
from unittest.mock import AsyncMock, patch

import pytest

from twelveimg.core.exceptions import QuotaExceededError
from twelveimg.schemas.upload import ConfirmUploadsResponse, UploadGrant
from twelveimg.services.rate_limit import InMemoryRateLimitStore, RateLimiter


def grant_payload(gallery_id, count=1):
    return {
        "galleryId": str(gallery_id),
        "files": [
            {"localId": f"local-{i}", "mimeType": "image/jpeg", "fileSizeBytes": 1000, "originalFilename": f"{i}.jpg"}
            for i in range(count)
        ],
    }


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["GET", "HEAD"])
async def test_warm_endpoint(client, method):
    response = await client.request(method, "/api/uploads/warm")

    assert response.status_code == 204
    assert "no-store" in response.headers["cache-control"]


@pytest.mark.asyncio
async def test_grants_require_auth(client):
    response = await client.post("/api/uploads/grants", json=grant_payload(uuid.uuid4()))

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_request_grants(client, as_user):
    gallery_id = uuid.uuid4()
    grant = UploadGrant(
        local_id="local-0",
        storage_path=f"{gallery_id}/x.jpg",
        signed_url="https://storage.test/x",
        token="1:abc",
        expires_at=1,
    )

    with patch("twelveimg.api.endpoints.uploads.UploadService") as MockService:
        MockService.return_value.request_upload_grants = AsyncMock(return_value=[grant])
        response = await client.post("/api/uploads/grants", json=grant_payload(gallery_id))

    assert response.status_code == 200
    assert response.json() == [
        {
            "localId": "local-0",
            "storagePath": f"{gallery_id}/x.jpg",
            "signedUrl": "https://storage.test/x",
            "token": "1:abc",
            "expiresAt": 1,
        }
    ]


@pytest.mark.asyncio
async def test_request_grants_quota_exceeded(client, as_user):
    with patch("twelveimg.api.endpoints.uploads.UploadService") as MockService:
        MockService.return_value.request_upload_grants = AsyncMock(
            side_effect=QuotaExceededError("Image limit exceeded. You have 150 of 150 images. Please upgrade your plan.")
        )
        response = await client.post("/api/uploads/grants", json=grant_payload(uuid.uuid4()))

    assert response.status_code == 403
    assert response.json()["detail"].startswith("Image limit exceeded")


@pytest.mark.asyncio
async def test_request_grants_rejects_empty_batch(client, as_user):
    response = await client.post("/api/uploads/grants", json={"galleryId": str(uuid.uuid4()), "files": []})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_request_grants_rate_limited(client, as_user):
    from twelveimg.api.deps import get_upload_rate_limiter
    from twelveimg.main import app

    limiter = RateLimiter(InMemoryRateLimitStore(), limit=1, window_seconds=60, scope="test")
    app.dependency_overrides[get_upload_rate_limiter] = lambda: limiter

    with patch("twelveimg.api.endpoints.uploads.UploadService") as MockService:
        MockService.return_value.request_upload_grants = AsyncMock(return_value=[])
        first = await client.post("/api/uploads/grants", json=grant_payload(uuid.uuid4()))
        second = await client.post("/api/uploads/grants", json=grant_payload(uuid.uuid4()))

    assert first.status_code == 200
    assert second.status_code == 429


@pytest.mark.asyncio
async def test_confirm_uploads(client, as_user):
    gallery_id = uuid.uuid4()
    image_id = str(uuid.uuid4())
    payload = {
        "galleryId": str(gallery_id),
        "uploads": [
            {
                "storagePath": f"{gallery_id}/x.jpg",
                "token": "1:abc",
                "originalFilename": "x.jpg",
                "fileSize": 1000,
                "mimeType": "image/jpeg",
                "width": 10,
                "height": 20,
            }
        ],
    }

    with patch("twelveimg.api.endpoints.uploads.UploadService") as MockService:
        MockService.return_value.confirm_uploads = AsyncMock(
            return_value=ConfirmUploadsResponse(image_ids=[image_id], failed=[])
        )
        response = await client.post("/api/uploads/confirm", json=payload)

    assert response.status_code == 200
    assert response.json() == {"imageIds": [image_id], "failed": []}
    item = MockService.return_value.confirm_uploads.call_args.args[2][0]
    assert item.storage_path == f"{gallery_id}/x.jpg"
    assert item.width == 10
