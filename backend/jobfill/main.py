"""
FastAPI application for the JobFill field classification service.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
import logging

from jobfill.config import Config
from jobfill.models import HealthResponse
from jobfill.routes.field_classification import router as field_classification_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="JobFill Field Classification API",
    description="Classifies job-application form fields and resolves answers from an applicant profile",
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

app.include_router(field_classification_router)


@app.on_event("startup")
async def startup_event():
    """Validate configuration on startup."""
    try:
        Config.validate()
        logger.info(
            f"Configuration validated successfully - learned patterns: {Config.LEARNED_PATTERNS_FILE}, "
            f"phase: {Config.LEARNING_PHASE}"
        )
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now()
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "jobfill.main:app",
        host=Config.API_HOST,
        port=Config.API_PORT,
        reload=False
    )
