import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from starlette.staticfiles import StaticFiles
from pathlib import Path
from starlette.responses import FileResponse
from fastapi.middleware.cors import CORSMiddleware

from .core.config import get_settings
from .core.hub import init_hub, close_hub
from .core.errors import register_exception_handlers
from .api.events import router as events_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
    init_hub(app)
    try:
        yield
    finally:
        # Shutdown
        await close_hub(app)


app = FastAPI(title="eventcast", lifespan=lifespan)
register_exception_handlers(app)

settings_for_cors = get_settings()
allow_origins = getattr(settings_for_cors, "cors_allow_origins", ["*"])
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=3600,
)


@app.middleware("http")
async def security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    env = getattr(get_settings(), "app_env", "development").lower()
    if env not in ("development", "dev", "test"):
        response.headers.setdefault(
            "Content-Security-Policy",
            "default-src 'self'; style-src 'self'; script-src 'self'; connect-src 'self'; object-src 'none'; frame-ancestors 'none'",
        )
    return response


@app.get("/health")
def health():
    return {"status": "ok"}


def _project_root_from_here() -> Path:
    here = Path(__file__).resolve()
    for anc in here.parents:
        if anc.name == 'src':
            return anc.parent
    return here.parents[3]

_PROJECT_ROOT = _project_root_from_here()
_FRONTEND_DIR = _PROJECT_ROOT / "src" / "frontend"

# Serve static frontend (css/js/pages). Paths stay as absolute '/src/frontend/...'
app.mount("/src/frontend", StaticFiles(directory=str(_FRONTEND_DIR)), name="frontend")

app.include_router(events_router)


@app.get("/")
def landing_page():
    return FileResponse(str(_FRONTEND_DIR / "pages" / "index.html"))
