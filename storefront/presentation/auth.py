import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jwt import decode, InvalidTokenError

from storefront.config import settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Please authenticate",
        headers={"WWW-Authenticate": "Bearer"}
    )


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> str:
    """Проверяет Bearer JWT и возвращает id пользователя (claim id или sub)"""
    if credentials is None:
        raise _unauthorized()
    if not settings.JWT_SECRET:
        logger.error("JWT_SECRET не задан")
        raise _unauthorized()

    try:
        payload = decode(credentials.credentials, settings.JWT_SECRET, algorithms=[ALGORITHM])
    except InvalidTokenError as e:
        logger.info(f"Недействительный токен: {e}")
        raise _unauthorized()

    user_id = payload.get("id") or payload.get("sub")
    if not user_id:
        raise _unauthorized()
    return str(user_id)
