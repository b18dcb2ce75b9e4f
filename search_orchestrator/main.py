import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from search_orchestrator.config import Settings, get_settings
from search_orchestrator.dependencies import get_container
from search_orchestrator.routers.jobs import router as jobs_router

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO), format=LOG_FORMAT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    processor = get_container().processor
    if settings.processor_enabled:
        processor.start()
    try:
        yield
    finally:
        await processor.stop()


settings = get_settings()
configure_logging(settings)
app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
app.include_router(jobs_router)


@app.get('/health')
async def health() -> dict[str, str]:
    return {'status': 'ok'}
