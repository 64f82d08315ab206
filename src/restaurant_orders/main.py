import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .api import health, ws
from .broadcast import BroadcastChannel
from .config import settings
from .exceptions import ServiceError
from .log import setup_logging
from restaurant_orders.api.routes.categories import router as categories_router
from restaurant_orders.api.routes.menu import router as menu_router
from restaurant_orders.api.routes.orders import router as orders_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    app.state.channel = BroadcastChannel(queue_size=settings.WS_QUEUE_SIZE)
    logger.info("Application started")
    yield
    app.state.channel.close()
    logger.info("Application stopped")


app = FastAPI(title=settings.APP_TITLE, lifespan=lifespan)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Database error"})


# Подключаем роуты
app.include_router(health.router)
app.include_router(categories_router)
app.include_router(menu_router)
app.include_router(orders_router)
app.include_router(ws.router)
