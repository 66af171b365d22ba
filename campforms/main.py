"""Main FastAPI application entry point."""
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from campforms.database import engine, Base
from campforms.api.routes import router
# Import models to register them with SQLAlchemy Base
from campforms.models import domain  # noqa: F401
from campforms.models import audit  # noqa: F401

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

# Create database tables
Base.metadata.create_all(bind=engine)

# Create FastAPI app
app = FastAPI(
    title="Camp Forms - Form Definition & Submission Engine",
    description="Versioned camp forms: definitions, published snapshots, validated submissions and AI-proposed forms.",
    version="0.1.0"
)

# Enable CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api", tags=["Forms"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "Camp Forms"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
