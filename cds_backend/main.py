from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from . import __version__, config
from .errors import DashboardError, dashboard_error_handler
from .fhir import router as fhir_router
from .oauth import router as auth_router
from .profile import router as profile_router
from .recommendations import router as ai_router

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="SMART on FHIR Clinical Dashboard", version=__version__)

# CORS middleware for frontend communication; cookies carry the session
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(DashboardError, dashboard_error_handler)

app.include_router(auth_router)
app.include_router(profile_router)
app.include_router(fhir_router)
app.include_router(ai_router)


@app.get("/")
async def root():
    return {"message": "SMART on FHIR Clinical Dashboard backend is running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


def run():
    import uvicorn

    logger.info(f"Server running on {config.BACKEND_URL}")
    logger.info(f"FHIR base: {config.FHIR_BASE_URL}")
    logger.info(f"LLM API key configured: {bool(config.PPLX_API_KEY)}")
    uvicorn.run(app, host="0.0.0.0", port=config.BACKEND_PORT)


if __name__ == "__main__":
    run()
