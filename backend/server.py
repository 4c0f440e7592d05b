from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from datetime import datetime, timezone
import uuid
from contextlib import asynccontextmanager
from database import database
from routes import auth, orders, menu, customers, calls, settings, reservations, voice, estate, billing, super_admin, live

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


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Merxus Portal API")
    if os.environ.get("PYTEST_RUNNING"):
        logger.info("PYTEST_RUNNING set - skipping Firebase initialisation")
    else:
        database.connect()

        stripe_key = (os.environ.get("STRIPE_SECRET_KEY") or os.environ.get("STRIPE_API_KEY") or "").strip()
        if not stripe_key:
            logger.error("STRIPE_API_KEY / STRIPE_SECRET_KEY is not set. Checkout and billing will fail.")
        else:
            logger.info("STRIPE_MODE = %s (from Stripe key prefix)", "test" if stripe_key.startswith("sk_test_") else "live")

    yield

    # Shutdown
    logger.info("Shutting down Merxus Portal API")
    database.close()


# Create FastAPI app
app = FastAPI(
    title="Merxus Portal API",
    description="Multi-tenant administration API for restaurant, voice and real-estate accounts",
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

# Include routers
app.include_router(auth.router)
app.include_router(orders.router)
app.include_router(menu.router)
app.include_router(customers.router)
app.include_router(calls.router)
app.include_router(settings.router)
app.include_router(reservations.router)
app.include_router(voice.router)
app.include_router(estate.router)
app.include_router(billing.router)
app.include_router(super_admin.router)
app.include_router(live.router)


# Health check
@app.get("/health")
async def health_check():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
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
        content={"detail": [{"loc": e.get("loc"), "msg": e.get("msg"), "type": e.get("type")} for e in errors],
                 "request_id": request_id},
    )


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
        port=int(os.getenv("PORT", "8001")),
        reload=os.getenv("ENVIRONMENT") == "development"
    )
