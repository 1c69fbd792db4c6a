from .api import ApiError, GalleryApiClient, Grant, StorageUploadError
from .concurrency import AdaptiveConcurrencyController, ConcurrencyMetrics, ConcurrencyPolicy, ThroughputErrorPolicy
from .engine import UploadEngine, UploadReport, UploadStatus, UploadTask
from .grants import GrantPrefetcher

__all__ = [
    "AdaptiveConcurrencyController",
    "ApiError",
    "ConcurrencyMetrics",
    "ConcurrencyPolicy",
    "GalleryApiClient",
    "Grant",
    "GrantPrefetcher",
    "StorageUploadError",
    "ThroughputErrorPolicy",
    "UploadEngine",
    "UploadReport",
    "UploadStatus",
    "UploadTask",
]
