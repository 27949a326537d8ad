"""
Stepflow - FastAPI Application
Stores workflows, converts editor and n8n graphs into step lists, runs them.
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stepflow.api.routes import health, n8n_import, workflows
from stepflow.config import settings
from stepflow.database import check_database_connection, init_db

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging() -> None:
    """Apply LOG_LEVEL to the root logger; module loggers inherit it."""
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    logging.getLogger().setLevel(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("Starting %s (%s)", settings.app_name, settings.app_env)

    try:
        init_db()
    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
    else:
        if check_database_connection():
            logger.info("Workflow storage ready")
        else:
            logger.warning("Workflow storage is unreachable; saved workflows will be unavailable")

    yield
    logger.info("Stopping %s", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    description="Workflow storage, conversion and execution API",
    version="1.0.0",
    debug=settings.app_debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ROUTERS = (
    (health.router, "", "Health"),
    (workflows.router, "/workflows", "Workflows"),
    (n8n_import.router, "/n8n", "n8n Import"),
)

for router, path, tag in ROUTERS:
    app.include_router(router, prefix=f"{settings.api_v1_prefix}{path}", tags=[tag])
