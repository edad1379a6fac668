from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
import os
import logging

from app.api import auth, reference, issues, tenders, attachments, notifications, feedback
from app.config import settings
from app.database import engine, Base
from app.errors import WorkflowError
from app.utils.rate_limiter import limiter, rate_limit_exceeded_handler

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="CivicFlow API", version="1.0.0")

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}")

    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Local attachment storage when S3 is not configured
os.makedirs(settings.upload_dir, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")

# Include routers
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(reference.router, prefix="/api", tags=["Reference Data"])
app.include_router(issues.router, prefix="/api/issues", tags=["Issues"])
app.include_router(tenders.router, prefix="/api/tenders", tags=["Tenders"])
app.include_router(attachments.router, prefix="/api/attachments", tags=["Attachments"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["Notifications"])
app.include_router(feedback.router, prefix="/api/feedback", tags=["Feedback"])


@app.get("/")
async def root():
    return {"message": "CivicFlow API is running"}


@app.get("/api/health")
async def health_check():
    database_ok = True
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check: database unreachable: {e}")
        database_ok = False

    return {
        "status": "healthy" if database_ok else "degraded",
        "services": {
            "database": database_ok,
            "s3": bool(settings.aws_access_key_id),
            "push": bool(settings.firebase_service_account_path)
        }
    }
