import hashlib
import hmac
import logging
import time
from typing import Optional

from jose import JWTError, jwt

from twelveimg.core.config import configs

logger = logging.getLogger(__name__)


def decode_access_token(token: str) -> Optional[dict]:
    """Decode a session JWT issued by the identity provider."""
    try:
        logger.debug("Decoding access token.")
        payload = jwt.decode(token, configs.SECRET_KEY, algorithms=[configs.ALGORITHM])
        return payload
    except JWTError as e:
        logger.warning(f"Error decoding access token: {e}")
        return None


def _sign(secret: str, message: str) -> str:
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_download_token(archive_id: str, timestamp_ms: Optional[int] = None) -> str:
    """Token for emailed archive links: ``timestamp:hexHmac(archiveId:timestamp)``."""
    timestamp = _now_ms() if timestamp_ms is None else timestamp_ms
    signature = _sign(configs.GALLERY_TOKEN_SECRET, f"{archive_id}:{timestamp}")
    return f"{timestamp}:{signature}"


def verify_download_token(
    archive_id: str,
    token: str,
    max_age_ms: Optional[int] = None,
    now_ms: Optional[int] = None,
) -> bool:
    """
    True iff the signature matches and the token is no older than ``max_age_ms``.
    Every failure returns False with no detail.
    """
    if max_age_ms is None:
        max_age_ms = configs.DOWNLOAD_TOKEN_MAX_AGE_SECONDS * 1000
    if not token or not configs.GALLERY_TOKEN_SECRET:
        return False

    timestamp_str, sep, signature = token.partition(":")
    if not sep or not (timestamp_str.isascii() and timestamp_str.isdigit()):
        return False

    timestamp = int(timestamp_str)
    now = _now_ms() if now_ms is None else now_ms
    if now - timestamp > max_age_ms:
        return False

    expected = _sign(configs.GALLERY_TOKEN_SECRET, f"{archive_id}:{timestamp_str}")
    return hmac.compare_digest(signature.encode(), expected.encode())


def generate_upload_token(storage_path: str, expires_at: int) -> str:
    """Grant token bound to one storage path: ``expiresAt:hexHmac(path:expiresAt)``."""
    signature = _sign(configs.UPLOAD_TOKEN_SECRET, f"{storage_path}:{expires_at}")
    return f"{expires_at}:{signature}"


def verify_upload_token(storage_path: str, token: str) -> bool:
    if not token or not configs.UPLOAD_TOKEN_SECRET:
        return False
    expires_str, sep, signature = token.partition(":")
    if not sep or not (expires_str.isascii() and expires_str.isdigit()):
        return False
    expected = _sign(configs.UPLOAD_TOKEN_SECRET, f"{storage_path}:{expires_str}")
    return hmac.compare_digest(signature.encode(), expected.encode())


def sign_storage_url(bucket: str, path: str, method: str, expires_at: int) -> str:
    return _sign(configs.STORAGE_SIGNING_SECRET, f"{method.upper()}:{bucket}/{path}:{expires_at}")


def verify_storage_signature(bucket: str, path: str, method: str, expires_at: int, signature: str) -> bool:
    if not configs.STORAGE_SIGNING_SECRET or expires_at < int(time.time()):
        return False
    expected = sign_storage_url(bucket, path, method, expires_at)
    return hmac.compare_digest(signature.encode(), expected.encode())


def secrets_match(provided: Optional[str], expected: str) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())
