"""FastAPI application entry point."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

from orderflow.api.routes import api_router
from orderflow.core.config import settings
from orderflow.core.errors import FulfillmentError
from orderflow.core.logging_config import configure_logging
from orderflow.db.base import Base
from orderflow.db.session import SessionLocal, engine
from orderflow.services.notification_service import KITCHEN_CHANNEL, ws_manager, ws_publisher

configure_logging(settings)
logger = logging.getLogger(__name__)
request_logger = logging.getLogger("requests")

# HTTP status per error code; codes not listed map to 400
ERROR_STATUS_CODES = {
    "invalid_transition": 409,
    "insufficient_stock": 409,
    "unknown_order": 404,
    "unknown_product": 404,
    "unknown_inventory_item": 404,
    "invalid_order_data": 422,
    "incompatible_units": 422,
    "storage_unavailable": 503,
    "concurrent_modification": 503,
    "side_effect_failed": 502,
}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all HTTP requests and responses."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in ["/health", "/docs", "/openapi.json"]:
            return await call_next(request)

        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"
        request_logger.info(f"Request: {request.method} {request.url.path} - Client: {client_ip}")

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            request_logger.error(
                f"Error: {request.method} {request.url.path} - "
                f"Exception: {str(e)} - Time: {process_time:.3f}s - Client: {client_ip}"
            )
            raise

        process_time = time.time() - start_time
        log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
        request_logger.log(
            log_level,
            f"Response: {request.method} {request.url.path} - "
            f"Status: {response.status_code} - Time: {process_time:.3f}s - Client: {client_ip}"
        )
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting order fulfillment service")

    # Create tables if they don't exist (for SQLite dev)
    # In production with PostgreSQL, use Alembic migrations
    if settings.database_url.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created (SQLite mode)")

    ws_publisher.bind_loop(asyncio.get_running_loop())

    yield

    logger.info("Shutting down order fulfillment service")


app = FastAPI(
    title="Order Fulfillment Service",
    description="Order lifecycle, kitchen tickets and recipe-based inventory deduction",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


@app.exception_handler(FulfillmentError)
async def fulfillment_error_handler(request: Request, exc: FulfillmentError):
    status_code = ERROR_STATUS_CODES.get(exc.code, 400)
    if status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: [{exc.code}] {exc}")
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()}, headers=headers)


app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-User-Id"],
    max_age=600,
)

app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
def health_check():
    """Liveness plus a storage round trip."""
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        database = "healthy"
    except Exception as e:
        logger.warning(f"Health check could not reach storage: {e}")
        database = "unavailable"
    finally:
        db.close()
    return {
        "status": "healthy" if database == "healthy" else "degraded",
        "database": database,
        "websocket_connections": ws_manager.get_connection_count(),
        "version": "1.0.0",
    }


@app.websocket("/ws/kitchen")
async def websocket_kitchen(websocket: WebSocket, user_id: Optional[int] = Query(None)):
    """Real-time order events for kitchen displays."""
    if not await ws_manager.connect(websocket, KITCHEN_CHANNEL, user_id=user_id):
        return

    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        ws_manager.disconnect(websocket, KITCHEN_CHANNEL)
    except Exception as e:
        logger.error(f"WebSocket error in {KITCHEN_CHANNEL}: {e}", exc_info=True)
        ws_manager.disconnect(websocket, KITCHEN_CHANNEL)
