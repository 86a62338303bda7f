import logging
import os
import subprocess
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tourney.database import init_db
from tourney.routes import runtime, schedule, tournaments

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Tourney Progression API")


def get_build_info():
    """Get git commit hash or build timestamp"""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            cwd=os.path.dirname(os.path.dirname(__file__)),
            capture_output=True,
            text=True,
            timeout=2,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (OSError, subprocess.SubprocessError):
        pass

    return datetime.now().strftime("%Y%m%d-%H%M%S")


BUILD_HASH = get_build_info()

_cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra = os.getenv("CORS_ORIGINS", "")
if _extra:
    _cors_origins.extend(o.strip() for o in _extra.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(tournaments.router, prefix="/api", tags=["tournaments"])
app.include_router(schedule.router, prefix="/api", tags=["schedule"])
# Match runtime (status transitions, finalize cascade)
app.include_router(runtime.router, prefix="/api", tags=["runtime"])


@app.on_event("startup")
def on_startup():
    init_db()
    logger.info("Tourney API started (build %s, %d routes)", BUILD_HASH, len(app.routes))


@app.get("/api/health")
def health_check():
    return {"app_name": "Tourney Progression API", "build_hash": BUILD_HASH, "status": "healthy"}
