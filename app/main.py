import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import analyze, history, insights, perspectives, results, similar
from app.config import settings
from app.services import logger as log_service
from app.services.analysis_store import StoreUnavailableError, close_store, get_store
from app.services.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    try:
        await get_store().ensure_schema()
    except StoreUnavailableError as e:
        logger.warning(f"Document store unavailable at startup: {e}")
    log_service.log_event(
        event_type="startup",
        message="How It Lands backend started",
        store_backend=settings.store_backend,
        agent_backend=settings.agent_backend,
        reviewer_configured=settings.reviewer_configured,
    )
    yield
    # Shutdown
    await close_store()


app = FastAPI(
    title="How It Lands",
    description="Simulated audience reactions for standup lines",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    log_service.log_request(
        request.method,
        request.url.path,
        response.status_code,
        int((time.perf_counter() - started) * 1000),
    )
    return response


# Routes
app.include_router(analyze.router)
app.include_router(results.router)
app.include_router(history.router)
app.include_router(similar.router)
app.include_router(insights.router)
app.include_router(perspectives.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "howitlands"}
