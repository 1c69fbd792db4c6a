import logging
from typing import Optional

from fastapi import Depends, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from twelveimg.common.uow import UnitOfWork
from twelveimg.core.config import configs
from twelveimg.core.exceptions import UnauthorizedError
from twelveimg.core.security import decode_access_token, secrets_match
from twelveimg.db.database import get_db
from twelveimg.models.user import User
from twelveimg.services.rate_limit import RateLimiter, upload_rate_limiter

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_uow(db: AsyncSession = Depends(get_db)) -> UnitOfWork:
    return UnitOfWork(db)


async def _resolve_user(credentials: Optional[HTTPAuthorizationCredentials], uow: UnitOfWork) -> Optional[User]:
    if credentials is None:
        return None

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        logger.warning("Could not validate credentials: Token decoding failed.")
        return None

    subject = payload.get("sub")
    if subject is None:
        logger.warning("Could not validate credentials: Subject not in token payload.")
        return None

    user = await uow.users.get_or_create(subject, email=payload.get("email"))
    await uow.commit()
    logger.debug(f"Authenticated user {user.id} (subject {subject})")
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    uow: UnitOfWork = Depends(get_uow),
) -> User:
    user = await _resolve_user(credentials, uow)
    if user is None:
        raise UnauthorizedError("Could not validate credentials")
    return user


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    uow: UnitOfWork = Depends(get_uow),
) -> Optional[User]:
    return await _resolve_user(credentials, uow)


def verify_cron_secret(request: Request, secret: Optional[str] = Query(None)) -> None:
    """Bearer header or ``?secret=``; with no CRON_SECRET configured every request is rejected."""
    if not configs.CRON_SECRET:
        logger.warning("[Cron] CRON_SECRET not configured")
        raise UnauthorizedError("Unauthorized")

    auth_header = request.headers.get("authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() == "bearer" and secrets_match(token, configs.CRON_SECRET):
        return
    if secrets_match(secret, configs.CRON_SECRET):
        return
    raise UnauthorizedError("Unauthorized")


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def get_upload_rate_limiter() -> RateLimiter:
    return upload_rate_limiter


async def limit_upload_grants(
    client_ip: str = Depends(get_client_ip),
    limiter: RateLimiter = Depends(get_upload_rate_limiter),
) -> None:
    await limiter.check(client_ip)
