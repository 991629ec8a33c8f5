import logging

from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi

from core.config import settings, setup_logging
from core.db import init_db
from core.celery import celery_app
from core.errors import OrderError, order_error_handler
from core.realtime import registry
from routes.auth import router as auth_router
from routes.cart import router as cart_router
from routes.notifications import router as notifications_router
from routes.orders import router as orders_router
from routes.products import router as products_router
from routes.push import router as push_router
from routes.ws import router as ws_router

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
        }
    }
    openapi_schema["security"] = [{"BearerAuth": []}]
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi
app.add_exception_handler(OrderError, order_error_handler)
app.state.realtime = registry

# Ensure tables exist (for dev/test; in prod use migrations)
init_db()

app.include_router(auth_router)
app.include_router(products_router)
app.include_router(cart_router)
app.include_router(orders_router)
app.include_router(push_router)
app.include_router(notifications_router)
app.include_router(ws_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
    }


@app.get("/celery-health")
def celery_health_check():
    """Check that a worker is around to deliver push notifications"""
    try:
        stats = celery_app.control.inspect(timeout=1.0).stats()
        if stats:
            return {"status": "healthy", "workers": len(stats)}
        return {"status": "no_workers", "message": "No Celery workers running"}
    except Exception as e:
        logger.warning("Celery health check failed: %s", e)
        return {"status": "unhealthy", "error": "Broker unreachable"}


if __name__ == "__main__":
    import os
    import uvicorn

    port = int(os.getenv("PORT", 8000))

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=settings.DEBUG,
    )
