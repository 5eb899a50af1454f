import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from branched.api import branches, keys, sessions, usage
from branched.config import get_settings
from branched.core.errors import BranchedError
from branched.database import init_db

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger("branched").setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Branching chat sessions: conversation trees with asynchronous LLM responses",
    version="1.0.0",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sessions.router)
app.include_router(branches.router)
app.include_router(usage.router)
app.include_router(keys.router)


@app.exception_handler(BranchedError)
async def branched_error_handler(request: Request, exc: BranchedError):
    """Render domain errors as ``{"detail": ...}``."""
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)


@app.on_event("startup")
async def startup_event():
    """Initialize database on startup."""
    init_db()


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
