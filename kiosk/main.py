import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kiosk.core.config import CORS_ORIGINS, DATABASE_URL, ENV
from kiosk.core.database import Base, engine
from kiosk.core.logging_setup import configure_logging
from kiosk.middleware.observability import ObservabilityMiddleware
import kiosk.models  # garante que os models são importados antes do create_all
import kiosk.services.event_handlers  # registra handlers do event bus

from kiosk.routers.kiosk import router as kiosk_router
from kiosk.routers.payments import router as payments_router

configure_logging()

logger = logging.getLogger(__name__)


def _startup_tasks() -> None:
    try:
        # Sem migrations: o schema é criado a partir dos models
        Base.metadata.create_all(bind=engine)
        logger.info("Startup complete env=%s database=%s", ENV, DATABASE_URL.split("://", 1)[0])
    except Exception:
        logger.exception("Startup failed")
        raise


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="Kiosk Order API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)

# Routers
app.include_router(kiosk_router)
app.include_router(payments_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
