"""
FastAPI main application.
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import API_PREFIX, CORS_ORIGINS, LOG_LEVEL, PORT
from core.config_validator import config_validator
from api.routes import (
    admin_assessments,
    admin_content,
    auth,
    catalog,
    secure_images,
    student_content,
    student_downloads,
    subscriptions,
    uploads,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="EduVault API",
    description="Course content, secure assessments and subscriptions",
    version="1.0.0",
)


@app.on_event("startup")
async def validate_configuration():
    """Validate configuration on application startup."""
    logger.info("Validating configuration...")

    validation_result = config_validator.validate_all()

    for warning in validation_result["warnings"]:
        logger.warning(warning)

    if not validation_result["valid"]:
        for error in validation_result["errors"]:
            logger.error(error)
        logger.critical("Application startup aborted due to configuration errors")
        raise SystemExit(1)

    logger.info("Configuration validated successfully")


app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router, prefix=f"{API_PREFIX}/auth", tags=["auth"])
app.include_router(catalog.router, prefix=API_PREFIX, tags=["catalog"])
app.include_router(student_content.router, prefix=f"{API_PREFIX}/student", tags=["student"])
app.include_router(student_downloads.router, prefix=f"{API_PREFIX}/student-downloads", tags=["student"])
app.include_router(secure_images.router, prefix=f"{API_PREFIX}/secure-images", tags=["secure-images"])
app.include_router(subscriptions.router, prefix=f"{API_PREFIX}/subscription", tags=["subscriptions"])
app.include_router(admin_content.router, prefix=f"{API_PREFIX}/admin", tags=["admin"])
app.include_router(admin_assessments.router, prefix=f"{API_PREFIX}/admin", tags=["admin"])
app.include_router(uploads.router, prefix=f"{API_PREFIX}/upload", tags=["uploads"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "EduVault API", "version": "1.0.0"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
