"""
Land Title Tracker FastAPI Application
REST API for municipalities, land titles and spreadsheet sync
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from app.core import session_manager
from app.models.database import init_db
from app.routers.municipalities import router as municipalities_router
from app.routers.sync import router as sync_router
from app.routers.titles import router as titles_router
from app.routers.users import router as users_router


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Database initialised")
    yield


app = FastAPI(title="Land Title Tracker", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()],
    allow_methods=["*"],
    allow_headers=["*"],
)


# sync must be registered before titles: /api/titles/batch would otherwise match /api/titles/{municipality_id}
app.include_router(sync_router)
app.include_router(municipalities_router)
app.include_router(titles_router)
app.include_router(users_router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "pendingPreviews": session_manager.session_count()}


if __name__ == "__main__":
    port = int(os.getenv("PORT", "5000"))
    host = os.getenv("HOST", "0.0.0.0")
    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=os.getenv("UVICORN_RELOAD", "0") == "1"
    )
