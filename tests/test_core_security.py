import time
import uuid

import pytest
from jose import jwt

from twelveimg.core.config import configs
from twelveimg.core.security import (
    decode_access_token,
    generate_download_token,
    generate_upload_token,
    secrets_match,
    sign_storage_url,
    verify_download_token,
    verify_storage_signature,
    verify_upload_token,
)

MAX_AGE_MS = 7 * 24 * 60 * 60 * 1000


def _mutate(token: str, index: int) -> str:
    replacement = "1" if token[index] != "1" else "2"
    return token[:index] + replacement + token[index + 1:]


def test_download_token_roundtrip():
    archive_id = str(uuid.uuid4())
    token = generate_download_token(archive_id)

    assert verify_download_token(archive_id, token)


def test_download_token_bound_to_archive():
    token = generate_download_token(str(uuid.uuid4()))

    assert not verify_download_token(str(uuid.uuid4()), token)


def test_download_token_any_single_character_change_invalidates():
    archive_id = str(uuid.uuid4())
    now_ms = int(time.time() * 1000)
    token = generate_download_token(archive_id, timestamp_ms=now_ms - 1000)

    for index in range(len(token)):
        assert not verify_download_token(archive_id, _mutate(token, index), now_ms=now_ms), index


def test_download_token_expired_by_one_millisecond_is_rejected():
    archive_id = str(uuid.uuid4())
    now_ms = 1_800_000_000_000
    token = generate_download_token(archive_id, timestamp_ms=now_ms - MAX_AGE_MS - 1)

    assert not verify_download_token(archive_id, token, max_age_ms=MAX_AGE_MS, now_ms=now_ms)


def test_download_token_at_max_age_is_accepted():
    archive_id = str(uuid.uuid4())
    now_ms = 1_800_000_000_000
    token = generate_download_token(archive_id, timestamp_ms=now_ms - MAX_AGE_MS)

    assert verify_download_token(archive_id, token, max_age_ms=MAX_AGE_MS, now_ms=now_ms)


@pytest.mark.parametrize("token", ["", "no-separator", ":abc", "12a:deadbeef", "١٢:deadbeef"])
def test_download_token_malformed(token):
    assert not verify_download_token(str(uuid.uuid4()), token)


def test_download_token_rejected_without_secret(monkeypatch):
    archive_id = str(uuid.uuid4())
    token = generate_download_token(archive_id)
    monkeypatch.setattr(configs, "GALLERY_TOKEN_SECRET", "")

    assert not verify_download_token(archive_id, token)


def test_upload_token_bound_to_path():
    path = f"{uuid.uuid4()}/{uuid.uuid4()}.jpg"
    token = generate_upload_token(path, int(time.time()) + 300)

    assert verify_upload_token(path, token)
    assert not verify_upload_token(path.replace(".jpg", ".png"), token)
    assert not verify_upload_token(path, _mutate(token, len(token) - 1))


def test_storage_signature(monkeypatch):
    expires_at = int(time.time()) + 60
    signature = sign_storage_url("bucket", "a/b.jpg", "put", expires_at)

    assert verify_storage_signature("bucket", "a/b.jpg", "PUT", expires_at, signature)
    assert not verify_storage_signature("bucket", "a/b.jpg", "GET", expires_at, signature)
    assert not verify_storage_signature("bucket", "a/c.jpg", "PUT", expires_at, signature)


def test_storage_signature_expired():
    expires_at = int(time.time()) - 1
    signature = sign_storage_url("bucket", "a/b.jpg", "GET", expires_at)

    assert not verify_storage_signature("bucket", "a/b.jpg", "GET", expires_at, signature)


def test_secrets_match():
    assert secrets_match("s3cret", "s3cret")
    assert not secrets_match("s3cret", "other")
    assert not secrets_match(None, "s3cret")
    assert not secrets_match("", "")


def test_decode_access_token():
    token = jwt.encode({"sub": "user|1", "email": "a@b.c"}, configs.SECRET_KEY, algorithm=configs.ALGORITHM)

    payload = decode_access_token(token)

    assert payload["sub"] == "user|1"
    assert decode_access_token("not-a-jwt") is None
