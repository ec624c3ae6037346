"""FastAPI dependency injection."""

import hmac
import uuid
from typing import AsyncGenerator

from fastapi import Depends, Header, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from calsync.config import Settings, get_settings
from calsync.repositories import SyncRepositories
from calsync.services.sync_services import SyncServices, build_sync_services

# Database engine and session factory (initialized in lifespan)
_engine = None
_session_factory = None

security = HTTPBearer()


def get_session_factory(settings: Settings | None = None):
    global _session_factory
    if _session_factory is None:
        init_db(settings or get_settings())
    return _session_factory


async def get_db(settings: Settings = Depends(get_settings)) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    factory = get_session_factory(settings)
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_repositories(db: AsyncSession = Depends(get_db)) -> SyncRepositories:
    return SyncRepositories.from_session(db)


async def get_sync_services(
    repos: SyncRepositories = Depends(get_repositories),
    settings: Settings = Depends(get_settings),
) -> SyncServices:
    return build_sync_services(settings, repos)


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    settings: Settings = Depends(get_settings),
) -> uuid.UUID:
    """Extract and validate user_id from JWT token."""
    token = credentials.credentials
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key.get_secret_value(),
            algorithms=[settings.jwt_algorithm],
        )
        user_id = payload.get("sub")
        token_type = payload.get("type", "access")
        if user_id is None or token_type != "access":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token payload",
            )
        return uuid.UUID(user_id)
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from e
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID in token",
        ) from e


async def get_current_agency_id(
    user_id: uuid.UUID = Depends(get_current_user_id),
    repos: SyncRepositories = Depends(get_repositories),
) -> uuid.UUID:
    """Resolve the agency the authenticated user belongs to."""
    user = await repos.records.get_user(user_id)
    if user is None or user.agency_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User has no agency")
    return user.agency_id


def _secret_matches(presented: str | None, expected: str) -> bool:
    if not presented or not expected:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


async def require_cron_secret(
    x_cron_secret: str | None = Header(default=None),
    key: str | None = Query(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Shared-secret guard for the scheduler entrypoint (header or ?key=)."""
    expected = settings.cron_secret.get_secret_value()
    if not (_secret_matches(x_cron_secret, expected) or _secret_matches(key, expected)):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def require_sync_secret(
    x_sync_secret: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Shared-secret guard for runner and internal upsert calls."""
    if not _secret_matches(x_sync_secret, settings.sync_runner_secret.get_secret_value()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def init_db(settings: Settings) -> tuple:
    """Initialize database engine and session factory. Called from lifespan."""
    global _engine, _session_factory
    _engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
    )
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine, _session_factory


async def shutdown_db():
    """Dispose of the database engine. Called from lifespan."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
    _engine = None
    _session_factory = None
