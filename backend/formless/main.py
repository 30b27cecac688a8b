"""
FastAPI application for the Formless PDF-to-form service.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
import logging

from formless.config import Config
from formless.models import HealthResponse, RateLimitStatus
from formless.routes.forms import router as forms_router
from formless.services.form_pipeline import FormExtractionPipeline, PDFFillEngine
from formless.services.form_store import InMemoryFormStore
from formless.utils.rate_limiter import RateLimiter

# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Formless API",
    description="API for turning PDF forms into digital forms and filling them back in",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(forms_router)

# Application-owned components; routes reach them through app.state
app.state.store = InMemoryFormStore()
app.state.pipeline = FormExtractionPipeline()
app.state.fill_engine = PDFFillEngine()
app.state.rate_limiter = (
    RateLimiter(limit=Config.RATE_LIMIT_REQUESTS, window_seconds=Config.RATE_LIMIT_WINDOW_SECONDS)
    if Config.ENABLE_RATE_LIMITING else None
)


@app.on_event("startup")
async def startup_event():
    """Initialize application on startup."""
    try:
        Config.validate()
        logger.info("Configuration validated successfully")
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise

    if app.state.rate_limiter is not None:
        app.state.rate_limiter.start_sweeper(Config.RATE_LIMIT_SWEEP_INTERVAL)


@app.on_event("shutdown")
async def shutdown_event():
    """Stop background work on shutdown."""
    if app.state.rate_limiter is not None:
        app.state.rate_limiter.stop_sweeper()


@app.get("/api/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now()
    )


@app.get("/api/rate-limit/status", response_model=RateLimitStatus)
async def get_rate_limit_status():
    """Get current rate limit status."""
    if app.state.rate_limiter is None:
        return RateLimitStatus(
            limit=0, window_seconds=0, active_keys=0, tracked_keys=0, rejected=0, sweeper_running=False
        )
    return RateLimitStatus(**app.state.rate_limiter.get_stats())


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "formless.main:app",
        host=Config.API_HOST,
        port=Config.API_PORT,
        reload=True
    )
