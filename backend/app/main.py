import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import socketio

from app.config import get_settings
from app.db.database import engine, async_session, Base
import app.models  # noqa: F401  register all ORM models with Base.metadata
from app.services.record_store import init_record_store, close_record_store

settings = get_settings()
logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

from app.api.routes import auth, patients
from app.api.websocket.handler import sio

api = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Rate limiting (must be added before CORS so it runs after CORS in the middleware stack)
from app.api.middleware.rate_limit import RateLimitMiddleware
api.add_middleware(
    RateLimitMiddleware,
    max_requests=settings.RATE_LIMIT_REQUESTS,
    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
)

# CORS
api.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
api.include_router(auth.router, prefix=settings.API_PREFIX, tags=["Auth"])
api.include_router(patients.router, prefix=settings.API_PREFIX, tags=["Patients"])


@api.on_event("startup")
async def startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    init_record_store(async_session)
    logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)


@api.on_event("shutdown")
async def shutdown():
    close_record_store()
    await engine.dispose()


@api.get("/health")
async def health_check():
    return {"status": "healthy", "service": settings.APP_NAME}


# Socket.IO wraps the API; this is the ASGI entrypoint (uvicorn app.main:app)
app = socketio.ASGIApp(sio, other_asgi_app=api)
