from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from passcut.config import settings
from passcut.core.logging import configure_logging

# IMPORT ROUTERS
from passcut.routers.admin import router as admin_router
from passcut.routers.errors import register_exception_handlers
from passcut.routers.health import router as health_router
from passcut.routers.notifications import router as notifications_router
from passcut.routers.pass_cut import router as pass_cut_router
from passcut.routers.results import router as results_router
from passcut.routers.submissions import router as submissions_router

configure_logging(settings)


# SWAGGER UI: tag display order
_OPENAPI_TAGS = [
    {"name": "Root"},
    {"name": "Health"},
    {"name": "Submissions"},
    {"name": "Results"},
    {"name": "Pass-Cut"},
    {"name": "Notifications"},
    {"name": "Admin"},
]

# FASTAPI APPLICATION CONFIGURATION
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    openapi_tags=_OPENAPI_TAGS,
)

app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

# REGISTER EXCEPTION HANDLERS
register_exception_handlers(app)

# REGISTER ROUTERS (order matches _OPENAPI_TAGS / Swagger UI display order)
app.include_router(health_router)         # Health
app.include_router(submissions_router)    # Submissions
app.include_router(results_router)        # Results
app.include_router(pass_cut_router)       # Pass-Cut
app.include_router(notifications_router)  # Notifications
app.include_router(admin_router)          # Admin


# ROOT ENDPOINT
@app.get("/", tags=["Root"], summary="Root endpoint")
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": {
            "swagger": "/docs",
            "redoc": "/redoc"
        },
        "status": "running"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("passcut.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
