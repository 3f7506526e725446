from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mcqgen.routes.generate import router as generate_router
from mcqgen.routes.keys import router as keys_router
from mcqgen.routes.observability import router as observability_router
from mcqgen.services.registry import get_key_pool, seed_from_env
from mcqgen.utils.env import ensure_env_loaded

logger = logging.getLogger("server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_env_loaded()
    seed_from_env()
    yield


app = FastAPI(
    title="MCQ Generator",
    description="Batched multiple-choice question generation over a pool of rotating API keys. See `/docs` for OpenAPI UI.",
    version="0.3.0",
    lifespan=lifespan,
)

allowed_origins = os.getenv("CORS_ORIGINS", "*").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in allowed_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app.include_router(keys_router)
app.include_router(generate_router)
app.include_router(observability_router)


@app.get("/health")
def health_check():
    pool = get_key_pool()
    checks: dict[str, object] = {"status": "ok", "keys_total": len(pool), "keys_available": pool.available_count()}
    if len(pool) and not checks["keys_available"]:
        checks["status"] = "degraded"
    return checks
