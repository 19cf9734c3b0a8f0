import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from app import models  # noqa: F401
from app.api.routes import api_router
from app.core.config import get_settings
from app.core.errors import register_exception_handlers
from app.core.logging_setup import configure_logging
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.services.seed import seed_initial_data


settings = get_settings()
configure_logging()
logger = logging.getLogger(__name__)


def init_database(retries: int = 20) -> None:
    while retries > 0:
        try:
            Base.metadata.create_all(bind=engine)
            break
        except OperationalError:
            retries -= 1
            if retries == 0:
                raise
            logger.warning("Database not ready, retrying (%s attempts left)", retries)
            time.sleep(1)

    if not settings.seed_demo_data:
        return
    db = SessionLocal()
    try:
        seed_initial_data(db)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    init_database()
    logger.info("%s started (%s)", settings.app_name, settings.environment)
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)


@app.get("/")
def root() -> dict:
    return {
        "name": f"{settings.app_name} API",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
def health() -> dict:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "database": "connected", "environment": settings.environment}


app.include_router(api_router, prefix=settings.api_v1_prefix)
