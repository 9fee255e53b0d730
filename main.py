import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from routers.admin import router as admin_router

# Routers
from routers.analytics import router as analytics_router
from routers.health import router as health_router
from routers.live import router as live_router
from routers.sessions import router as sessions_router

logger = logging.getLogger("assessment-sessions")
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Proctored Assessments – Session API")

# Allow calls from the Next.js dev server and production site
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*", "x-api-key", "x-admin-token", "x-user-id"],
)


@app.get("/")
def health_root():
    return {"ok": True}


app.include_router(sessions_router)  # /sessions/...
app.include_router(live_router)  # /sessions/{id}/live (websocket)
app.include_router(analytics_router)  # /analytics/...
app.include_router(admin_router)  # /admin/...
app.include_router(health_router)  # /health/...
