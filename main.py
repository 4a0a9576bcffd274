import uvicorn
import logging

from redis import asyncio as aioredis

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi_cache import FastAPICache
from fastapi_cache.backends.redis import RedisBackend
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src import config
from src.database import async_session, engine
from src.exceptions import ShortLinkError
from src.models.models import Base

from src.auth.routes import router as auth_router
from src.auth.services import check_secret_configured, ensure_default_admin
from src.analytics.routes import router as stats_router
from src.data.routes import router as data_router
from src.links.routes import router as links_router, redirect_router

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    check_secret_configured()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with async_session() as session:
        await ensure_default_admin(session)

    redis = aioredis.from_url(config.REDIS_URL, decode_responses=False)
    FastAPICache.init(RedisBackend(redis), prefix="fastapi-cache")
    yield
    await engine.dispose()


app = FastAPI(
    title="Short Links API",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if not config.is_production() else [],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)


@app.exception_handler(ShortLinkError)
async def short_link_error_handler(_: Request, exc: ShortLinkError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s: %s", exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.message},
    )


@app.get("/health")
async def health():
    return {"status": "ok", "env": config.ENVIRONMENT}


app.include_router(auth_router, prefix="/auth", tags=["Auth"])
app.include_router(links_router, prefix="/links", tags=["Links"])
app.include_router(stats_router, prefix="/stats", tags=["Stats"])
app.include_router(data_router, prefix="/data", tags=["Data"])
# Редирект по короткому коду подключается последним: он перехватывает любой путь /{code}
app.include_router(redirect_router, tags=["Redirect"])


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
