from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from .config import load_config, validate_config
from .database import create_db_and_tables, init_engine
from .exceptions import BackupManagerError, SubprocessError
from .logger import setup_logging, get_logger
from .routers import backups, connections, destinations, schedules, system, users
from .scheduler import BackupScheduler

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load settings, open the metadata store and start the scheduler; stop it on exit."""
    settings = load_config()
    validate_config(settings)
    app.state.settings = settings

    engine = init_engine(settings["database_url"])
    create_db_and_tables(engine)

    scheduler = BackupScheduler(engine, settings)
    app.state.scheduler = scheduler
    scheduler.register_schedules()
    logger.info("pgbackup-api started.")
    yield
    scheduler.stop()
    engine.dispose()
    logger.info("pgbackup-api stopped.")


app = FastAPI(title="pgbackup-api", lifespan=lifespan)
Instrumentator().instrument(app).expose(app)


@app.exception_handler(BackupManagerError)
async def backup_manager_error_handler(request: Request, exc: BackupManagerError):
    content = {"status": exc.status_code, "message": exc.message, "error": type(exc).__name__}
    if isinstance(exc, SubprocessError) and exc.summary:
        content["summary"] = exc.summary
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=content)


app.include_router(connections.router, prefix="/connections", tags=["connections"])
app.include_router(destinations.router, prefix="/destinations", tags=["destinations"])
app.include_router(backups.router, prefix="/backups", tags=["backups"])
app.include_router(schedules.router, prefix="/schedules", tags=["schedules"])
app.include_router(users.router, prefix="/users", tags=["users"])
app.include_router(system.router, prefix="/system", tags=["system"])


def run():
    import uvicorn

    uvicorn.run("pgbackup_api.main:app", host="0.0.0.0", port=8080)
