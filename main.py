import os

import structlog
from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi

from core.celery import celery_app
from core.config import settings
from core.db import init_db
from core.errors import register_exception_handlers
from core.logging import configure_logging
from routes.admin import router as admin_router
from routes.auth import router as auth_router
from routes.orders import router as orders_router
from routes.payments import router as payments_router

configure_logging()
log = structlog.get_logger(__name__)

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

init_db()

register_exception_handlers(app)

app.include_router(auth_router)
app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(admin_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": settings.APP_NAME}


@app.get("/celery-health")
def celery_health_check():
    """Check Celery worker status"""
    try:
        stats = celery_app.control.inspect(timeout=1.0).stats()
    except Exception as exc:
        log.warning("celery_health_failed", error=str(exc))
        return {"status": "unhealthy", "error": str(exc)}
    if stats:
        return {"status": "healthy", "workers": len(stats)}
    return {"status": "no_workers", "message": "No Celery workers running"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=settings.DEBUG,
    )
