"""Chatport FastAPI application entry point."""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatport.db.connection import Database
from chatport.gateway.sqlite import SqliteGateway
from chatport.importer.router import get_import_service
from chatport.importer.router import router as import_router
from chatport.importer.service import ImportService
from chatport.importer.store import ImportRunStore

# Load .env from backend/ directory before reading settings
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

logging.basicConfig(
    level=os.environ.get("CHATPORT_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

VERSION = "0.1.0"


def _cors_origins() -> list[str]:
    raw = os.environ.get("CHATPORT_CORS_ORIGINS", "http://localhost:5173")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage database lifecycle and service wiring."""
    db = await Database.connect(os.environ.get("CHATPORT_DB_PATH", "chatport.db"))

    import_svc = ImportService(SqliteGateway(db), ImportRunStore(db))
    app.dependency_overrides[get_import_service] = lambda: import_svc

    app.state.db = db
    yield

    await import_svc.shutdown()
    await db.close()


app = FastAPI(
    title="Chatport",
    description="Imports Discord, Slack and generic chat exports into a workspace",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(import_router)


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok", "version": VERSION}
