from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database
from models import GateResult
from routes import plans, entitlements, properties, team, social, admin_entitlements
from services.entitlement_errors import (
    EntitlementServiceUnavailable, InvalidGateArgument, NotEntitledError,
)

import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SERVICE_UNAVAILABLE_MESSAGE = "We couldn't verify your plan right now. Please try again."

# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting PropFlow Entitlements API")
    await database.connect()
    yield
    logger.info("Shutting down PropFlow Entitlements API")
    await database.close()


# Engine error -> HTTP mapping
async def not_entitled_handler(request: Request, exc: NotEntitledError):
    result = exc.result
    content = {
        "error": exc.message,
        "code": exc.code,
        "planName": getattr(result, "plan_name", None),
        "upgradeRequired": getattr(result, "upgrade_required", True),
        "suggestedPlan": getattr(result, "suggested_plan", None),
    }
    if isinstance(result, GateResult):
        content["currentUsage"] = result.current_count
        content["limit"] = result.limit
        content["resourceKey"] = result.resource_key.value if result.resource_key else None
    else:
        content["featureKey"] = getattr(getattr(result, "feature_key", None), "value", None)
    return JSONResponse(status_code=403, content=content)


async def service_unavailable_handler(request: Request, exc: EntitlementServiceUnavailable):
    logger.error(f"Entitlement check unavailable on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": SERVICE_UNAVAILABLE_MESSAGE, "code": exc.code},
        headers={"Retry-After": str(exc.retry_after_seconds)},
    )


async def invalid_argument_handler(request: Request, exc: InvalidGateArgument):
    logger.warning(f"Invalid gate argument on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=400,
        content={"error": str(exc), "code": exc.code},
    )


def register_entitlement_handlers(app: FastAPI):
    app.add_exception_handler(NotEntitledError, not_entitled_handler)
    app.add_exception_handler(EntitlementServiceUnavailable, service_unavailable_handler)
    app.add_exception_handler(InvalidGateArgument, invalid_argument_handler)


# Create FastAPI app
app = FastAPI(
    title="PropFlow Entitlements API",
    description="Plan resolution and quota gating for PropFlow companies",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

register_entitlement_handlers(app)

# Include routers
app.include_router(plans.router)
app.include_router(entitlements.router)
app.include_router(properties.router)
app.include_router(team.router)
app.include_router(social.router)
app.include_router(admin_entitlements.router)

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "PropFlow Entitlements",
        "version": "1.0.0",
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }

# Validation error handler: log request_id + full errors (loc path)
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    logger.warning(
        "Validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_errors(errors), "request_id": request_id},
    )


def jsonable_errors(errors):
    # ctx may hold exception instances
    return [{k: v for k, v in e.items() if k != "ctx"} for e in errors]


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
