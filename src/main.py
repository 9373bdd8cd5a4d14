"""
Main FastAPI application entry point.
Configures and initializes the Media Ingest API.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from src.core import config
from src.core.config import MB
from src.core.exception_handler import error_body, register_exception_handlers
from src.core.logger import get_logger
from src.api.routes import admin_routes, health_routes, progress_routes, upload_routes
from src.services.intake_service import policy_for

logger = get_logger(__name__)

# Multipart framing around the file part
MULTIPART_ALLOWANCE_BYTES = 1 * MB

# Create FastAPI application
app = FastAPI(
    title=config.settings.api_title,
    version=config.settings.api_version,
    description="Chunked media ingest with HLS transcoding and live upload progress"
)

# Register exception handlers
register_exception_handlers(app)

# Register routes
app.include_router(health_routes.router)
app.include_router(upload_routes.router)
app.include_router(progress_routes.router)
app.include_router(admin_routes.router)


def upload_ceiling(path: str):
    """Byte ceiling for a request to an upload endpoint, None for other paths."""
    parts = path.rstrip('/').split('/')
    if len(parts) < 2 or parts[-2] not in ('uploads', 'async') or '/v1/api/uploads/' not in path:
        return None
    kind = upload_routes.UPLOAD_PATHS.get(parts[-1])
    if kind is None:
        return None
    return policy_for(kind).max_size_bytes + MULTIPART_ALLOWANCE_BYTES


# Middleware to reject oversized uploads before the body is read
@app.middleware("http")
async def guard_upload_size(request: Request, call_next):
    if request.method == "POST":
        ceiling = upload_ceiling(request.url.path)
        content_length = request.headers.get("content-length")
        if ceiling is not None and content_length and content_length.isdigit() and int(content_length) > ceiling:
            logger.warning(f"Rejected {request.url.path}: Content-Length {content_length} over {ceiling}")
            return JSONResponse(
                status_code=413,
                content=error_body("File Too Large", "Upload exceeds the size limit for this endpoint")
            )
    return await call_next(request)


# Middleware to log request paths
@app.middleware("http")
async def log_request(request: Request, call_next):
    logger.info(f"Request path: {request.url.path}")
    response = await call_next(request)
    return response


# For local development
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
