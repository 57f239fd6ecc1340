"""
Hestia Policy Engine - FastAPI Application

Backend for rental guarantee policies.

Flow:
- Staff create a policy and add its actors (landlord, tenant, guarantors)
- Actors complete their information through expiring self-service links
- Staff review actors, run the investigation and approve the policy
- The signed contract activates the policy until its expiry date
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import LOG_LEVEL
from .database import init_db
from .routers import actors_router, auth_router, policies_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Hestia Policy Engine",
    description="""
    Hestia Policy Engine - Rental Guarantee Workflow

    ## Lifecycle
    DRAFT → COLLECTING_INFO → UNDER_INVESTIGATION → PENDING_APPROVAL →
    APPROVED → CONTRACT_PENDING → ACTIVE → EXPIRED

    ## Key Principles
    - Only the policy lifecycle changes policy status
    - Guard failures come back as typed results (409/410/422), never partial writes
    - Actor links expire and are re-issued, never extended
    - Every transition is recorded in an append-only activity log
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)
app.include_router(policies_router)
app.include_router(actors_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Hestia Policy Engine",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m hestia.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
