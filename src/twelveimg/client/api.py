import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """The gallery API answered with an error status."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500 or self.status_code == 429


class StorageUploadError(Exception):
    """A PUT to a signed storage URL failed."""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code
        self.body = body

    @property
    def grant_rejected(self) -> bool:
        # expired or tampered signature
        return self.status_code in (400, 401, 403)


@dataclass
class Grant:
    local_id: str
    storage_path: str
    signed_url: str
    token: str
    expires_at: int


@dataclass
class ConfirmResult:
    image_ids: List[str]
    failed: Dict[str, str] = field(default_factory=dict)


class GalleryApiClient:
    """
    HTTP client for the upload endpoints and for direct PUTs to signed URLs.

    One pooled ``httpx.AsyncClient`` serves both; the bearer token is only
    attached to requests against the API itself.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        max_connections: int = 24,
        timeout: float = 120.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0),
            limits=httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections),
        )

    async def __aenter__(self) -> "GalleryApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        response = await self.http.post(f"{self.base_url}{path}", json=payload, headers=self._headers())
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise ApiError(response.status_code, str(detail))
        return response

    async def warm(self) -> None:
        """Open a pooled connection to the API before the upload burst."""
        try:
            await self.http.head(f"{self.base_url}/api/uploads/warm")
        except httpx.HTTPError as e:
            logger.debug(f"Connection warm-up failed: {e}")

    async def request_grants(self, gallery_id: str, files: List[dict]) -> List[Grant]:
        response = await self._post("/api/uploads/grants", {"galleryId": gallery_id, "files": files})
        return [
            Grant(
                local_id=item["localId"],
                storage_path=item["storagePath"],
                signed_url=item["signedUrl"],
                token=item["token"],
                expires_at=int(item["expiresAt"]),
            )
            for item in response.json()
        ]

    async def confirm_uploads(self, gallery_id: str, uploads: List[dict]) -> ConfirmResult:
        response = await self._post("/api/uploads/confirm", {"galleryId": gallery_id, "uploads": uploads})
        body = response.json()
        return ConfirmResult(
            image_ids=list(body.get("imageIds", [])),
            failed={item["storagePath"]: item["error"] for item in body.get("failed", [])},
        )

    async def put_file(self, signed_url: str, content: bytes, content_type: str) -> None:
        response = await self.http.put(signed_url, content=content, headers={"Content-Type": content_type})
        if response.status_code >= 300:
            raise StorageUploadError(response.status_code, response.text[:200])
