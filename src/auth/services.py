import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Union

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src import config
from src.database import storage_guard
from src.exceptions import ConfigurationError, NotFound, Unauthorized
from src.models.models import AdminUser, utcnow

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ALGORITHM: str = "HS256"
DEV_SECRET_KEY: str = "dev-secret-change-me"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


@dataclass
class SessionClaims:
    username: str
    expires_at: datetime
    issued_at: datetime | None = None


def get_secret_key() -> str:
    """
    Возвращает секрет для подписи сессий.

    Raises:
        ConfigurationError: секрет не задан в production.
    """
    if config.SECRET_KEY:
        return config.SECRET_KEY
    if config.is_production():
        raise ConfigurationError("SECRET_KEY не задан, выпуск сессий невозможен")
    return DEV_SECRET_KEY


def check_secret_configured() -> None:
    """Вызывается при старте приложения: в production без секрета не стартуем."""
    get_secret_key()
    if not config.SECRET_KEY:
        logger.warning("SECRET_KEY is not set, using the development fallback secret")


def get_password_hash(password: str) -> str:
    """Хеширует пароль.

    Args:
        password (str): Пароль для хеширования.

    Returns:
        str: Хешированный пароль.
    """
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Проверяет, соответствует ли пароль его хешу.
    Args:
        plain_password (str): Пароль для проверки.
        hashed_password (str): Хешированный пароль.

    Returns:
        bool: True, если пароль соответствует хешу, False в противном случае.
     """
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(username: str, expires_delta: timedelta | None = None) -> str:
    """
        Создает подписанный токен сессии.

        Args:
            username (str): Имя администратора (sub).
            expires_delta (timedelta): Время жизни, по умолчанию SESSION_TTL_SECONDS.

        Returns:
            str: JWT-токен с полями sub, iat, exp.
    """
    issued_at = datetime.now(timezone.utc)
    expire = issued_at + (expires_delta or timedelta(seconds=config.SESSION_TTL_SECONDS))
    to_encode = {"sub": username, "iat": issued_at, "exp": expire}
    return jwt.encode(to_encode, get_secret_key(), algorithm=ALGORITHM)


def verify_access_token(token: str | None) -> Union[SessionClaims, None]:
    """
    Проверяет подпись и срок действия токена.
    Любая ошибка (подпись, формат, истекший срок, нет sub, не задан секрет) дает None.
    """
    if not token:
        return None
    try:
        payload = jwt.decode(token, get_secret_key(), algorithms=[ALGORITHM])
    except ConfigurationError as e:
        logger.error("Session token rejected: %s", e)
        return None
    except JWTError:
        return None

    username = payload.get("sub")
    exp = payload.get("exp")
    if not username or not isinstance(exp, (int, float)):
        return None
    iat = payload.get("iat")
    return SessionClaims(
        username=username,
        expires_at=datetime.fromtimestamp(exp, timezone.utc),
        issued_at=datetime.fromtimestamp(iat, timezone.utc) if isinstance(iat, (int, float)) else None,
    )


def token_from_request(request: Request, bearer: str | None) -> str | None:
    return request.cookies.get(config.SESSION_COOKIE_NAME) or bearer


async def require_admin(request: Request, bearer: str | None = Depends(oauth2_scheme)) -> str:
    """
    Зависимость для административных эндпоинтов.
    Токен берется из cookie сессии или заголовка Authorization: Bearer.

    Returns:
        str: Имя администратора.
    """
    claims = verify_access_token(token_from_request(request, bearer))
    if claims is None:
        raise Unauthorized("Некорректный или истекший токен")
    return claims.username


async def get_admin_user(session: AsyncSession, username: str) -> Union[AdminUser, None]:
    async with storage_guard(session):
        result = await session.execute(select(AdminUser).filter_by(username=username))
        return result.scalars().first()


async def authenticate_user(session: AsyncSession, username: str, password: str) -> Union[AdminUser, None]:
    """
        Аутентифицирует администратора

        Args:
            session (Session): Сессия базы данных.
            username (str): Имя пользователя.
            password (str): Пароль пользователя.

        Returns:
            AdminUser: Аутентифицированный администратор или None.
    """
    user = await get_admin_user(session, username)
    if user and verify_password(password, user.hashed_password):
        return user
    return None


async def change_admin_password(session: AsyncSession, username: str, new_password: str) -> None:
    """Заменяет хеш пароля целиком."""
    user = await get_admin_user(session, username)
    if user is None:
        raise NotFound("Пользователь не найден")
    async with storage_guard(session):
        user.hashed_password = get_password_hash(new_password)
        user.updated_at = utcnow()
        await session.commit()
    logger.info("Password changed for %s", username)


async def ensure_default_admin(session: AsyncSession) -> None:
    """Создает администратора из ADMIN_USERNAME/ADMIN_PASSWORD, если его еще нет."""
    if await get_admin_user(session, config.ADMIN_USERNAME):
        return
    async with storage_guard(session):
        session.add(AdminUser(
            username=config.ADMIN_USERNAME,
            hashed_password=get_password_hash(config.ADMIN_PASSWORD),
        ))
        await session.commit()
    logger.info("Default admin account %s created", config.ADMIN_USERNAME)
