"""
Parley - FastAPI Application

Conversation ingestion and reconciliation engine.

Flow:
- ParsedConversation → fragment dedup → hashing → continuity check → user decision → messages
- messages → analysis collaborator → sanitizer → reconciliation applier
  → issues / profile notes / agreement override chain / conversation state
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import LOG_LEVEL
from .database import init_db
from .routers import agreements_router, conversations_router, imports_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

app = FastAPI(
    lifespan=lifespan,
    title="Parley",
    description="""
    Parley - Conversation Ingestion & Reconciliation Engine

    ## Import
    1. **Preview**: parsed conversation → dedup report, name resolutions, continuity signals
    2. **Commit**: append / create separate / cancel, as decided by the user

    ## Analysis
    - Untrusted analysis output is sanitized before anything is written
    - Reconciliation is idempotent: re-analysis never duplicates issues, links or notes
    - Agreement items form override chains; history is never deleted
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(imports_router)
app.include_router(conversations_router)
app.include_router(agreements_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Parley",
        "version": __version__,
        "description": "Conversation Ingestion & Reconciliation Engine",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
