import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import settings
from database import db, ensure_indexes, utcnow
from event_service import EventAccessError, EventError
from jobs import start_background_jobs, stop_background_jobs
from pool_service import PoolError
from progress import ProgressError
from rating_engine import RatingError
from routers import (
    achievements,
    attributes,
    events,
    notifications,
    progress,
    team_invites,
    teams,
    training_pools,
    training_templates,
    users,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes()
    tasks = start_background_jobs() if settings.ENABLE_BACKGROUND_JOBS else []
    yield
    if tasks:
        await stop_background_jobs(tasks)


app = FastAPI(title="Volleyball Team Manager API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------------------
# Error handling
# -----------------------------
@app.exception_handler(EventAccessError)
async def access_error_handler(request: Request, exc: EventAccessError):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(RatingError)
@app.exception_handler(PoolError)
@app.exception_handler(EventError)
@app.exception_handler(ProgressError)
async def domain_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    detail = str(exc) if settings.ENVIRONMENT == "development" else None
    return JSONResponse(status_code=500, content={"message": "Serverfehler", "error": detail})


# -----------------------------
# Routes
# -----------------------------
app.include_router(users.router, prefix="/api/users", tags=["users"])
app.include_router(teams.router, prefix="/api/teams", tags=["teams"])
app.include_router(team_invites.router, prefix="/api/team-invites", tags=["team-invites"])
app.include_router(events.router, prefix="/api/events", tags=["events"])
app.include_router(attributes.router, prefix="/api/attributes", tags=["attributes"])
app.include_router(progress.router, prefix="/api/progress", tags=["progress"])
app.include_router(achievements.router, prefix="/api/achievements", tags=["achievements"])
app.include_router(training_pools.router, prefix="/api/training-pools", tags=["training-pools"])
app.include_router(training_templates.router, prefix="/api/training-templates", tags=["training-templates"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["notifications"])

# -----------------------------
# Health / Misc
# -----------------------------
@app.get("/")
def root():
    return {"message": "Volleyball Team Manager API running"}


@app.get("/api/health")
def health():
    return {"status": "OK", "timestamp": utcnow().isoformat(), "environment": settings.ENVIRONMENT}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["database"] = "✅ Available"
        response["connection_status"] = "Connected"
        collections = db.list_collection_names()
        response["collections"] = collections[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        response["connection_status"] = "Error"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
