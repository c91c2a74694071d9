from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from storefront.presentation.api import router
from storefront.database import engine
from storefront.infrastructure.db_schema import metadata

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения"""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    logger.info("Таблицы проверены")

    yield

    await engine.dispose()
    logger.info("Приложение останавливается...")


app = FastAPI(
    title="Storefront Backbone",
    description="Заказы, купоны, склад и брошенные корзины dropship-магазина",
    version="1.0.0",
    lifespan=lifespan
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Ошибки формы запроса отдаются как 400 в том же виде, что и доменные"""
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "header")]
    detail = {"error": first.get("msg", "Invalid request")}
    if loc:
        detail["field"] = ".".join(loc)
    logger.warning(f"Некорректный запрос {request.method} {request.url.path}: {detail}")
    return JSONResponse(status_code=400, content={"detail": detail})


app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    return {"message": "Storefront backbone работает"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
