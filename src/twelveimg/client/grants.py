import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, List, Protocol, Sequence

from twelveimg.client.api import ApiError, Grant, GalleryApiClient

logger = logging.getLogger(__name__)

SIGNED_URL_BATCH_SIZE = 50
EXPIRY_BUFFER_SECONDS = 60


class GrantRequest(Protocol):
    local_id: str

    def grant_metadata(self) -> dict:
        ...


class GrantPrefetcher:
    """
    Requests upload grants in batches ahead of the uploads that need them.

    Grants are cached by ``local_id`` and handed out once. A grant within
    ``expiry_buffer_seconds`` of its expiry is treated as expired and a fresh
    one is requested instead.
    """

    def __init__(
        self,
        api: GalleryApiClient,
        gallery_id: str,
        batch_size: int = SIGNED_URL_BATCH_SIZE,
        expiry_buffer_seconds: int = EXPIRY_BUFFER_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.api = api
        self.gallery_id = gallery_id
        self.batch_size = batch_size
        self.expiry_buffer_seconds = expiry_buffer_seconds
        self.clock = clock
        self._grants: Dict[str, Grant] = {}
        self._inflight: Dict[str, asyncio.Future] = {}

    def is_fresh(self, grant: Grant) -> bool:
        return grant.expires_at - self.clock() > self.expiry_buffer_seconds

    def has_valid(self, local_id: str) -> bool:
        grant = self._grants.get(local_id)
        return grant is not None and self.is_fresh(grant)

    def _needs_grant(self, request: GrantRequest) -> bool:
        return not self.has_valid(request.local_id) and request.local_id not in self._inflight

    async def _fetch(self, requests: Sequence[GrantRequest]) -> None:
        future = asyncio.get_running_loop().create_future()
        for request in requests:
            self._inflight[request.local_id] = future
        try:
            grants = await self.api.request_grants(self.gallery_id, [r.grant_metadata() for r in requests])
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # waiters re-raise it; nobody may be waiting
            future.exception()
            raise
        else:
            for grant in grants:
                self._grants[grant.local_id] = grant
            future.set_result(None)
            logger.debug(f"Fetched {len(grants)} upload grants")
        finally:
            for request in requests:
                self._inflight.pop(request.local_id, None)

    async def prefetch(self, requests: Iterable[GrantRequest]) -> None:
        """Fetch grants for every request that has no usable one, ``batch_size`` at a time."""
        missing = [r for r in requests if self._needs_grant(r)]
        for start in range(0, len(missing), self.batch_size):
            await self._fetch(missing[start:start + self.batch_size])

    async def acquire(self, request: GrantRequest, upcoming: Iterable[GrantRequest] = ()) -> Grant:
        """
        Take the grant for ``request``, fetching one if needed.

        A fetch also covers ``upcoming`` requests that lack a grant, up to the
        batch size. When the server rejects a shared batch outright, the grant
        is requested again for ``request`` alone, so one invalid file cannot
        fail its neighbours.
        """
        alone = False
        inflight = self._inflight.get(request.local_id)
        if inflight is not None:
            try:
                await inflight
            except ApiError as e:
                if e.retryable:
                    raise
                alone = True

        grant = self._grants.pop(request.local_id, None)
        if grant is not None and self.is_fresh(grant):
            return grant
        if grant is not None:
            logger.debug(f"Discarding grant for {request.local_id}: expires too soon")

        batch: List[GrantRequest] = [request]
        if not alone:
            for other in upcoming:
                if len(batch) >= self.batch_size:
                    break
                if other.local_id != request.local_id and self._needs_grant(other):
                    batch.append(other)
        try:
            await self._fetch(batch)
        except ApiError as e:
            if e.retryable or len(batch) == 1:
                raise
            logger.info(f"Grant batch of {len(batch)} rejected ({e.detail}), retrying {request.local_id} alone")
            await self._fetch([request])

        grant = self._grants.pop(request.local_id, None)
        if grant is None:
            raise LookupError(f"No upload grant returned for {request.local_id}")
        return grant

    def restore(self, grant: Grant) -> None:
        """Put back a grant that was not consumed, if it is still usable."""
        if self.is_fresh(grant):
            self._grants[grant.local_id] = grant
