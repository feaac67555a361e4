import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI

from .analysis import Analyzer
from .config import Settings, settings as default_settings
from .core import SensorCore, build_core
from .database import init_db, make_engine, make_session_factory
from .log import setup_logging
from .routes import router

logger = logging.getLogger(__name__)


async def liveness_sweep(core: SensorCore, timeout: float, interval: float) -> None:
    """Mark devices inactive once they stop reporting without closing their connection"""
    max_age = timedelta(seconds=timeout)
    while True:
        await asyncio.sleep(interval)
        if core.registry.expire_stale(max_age):
            core.broadcaster.broadcast_device_list()


def create_app(config: Optional[Settings] = None, analyzer: Optional[Analyzer] = None) -> FastAPI:
    config = config or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(app.state.engine)
        sweeper = None
        if config.LIVENESS_TIMEOUT_SECONDS > 0:
            sweeper = asyncio.create_task(
                liveness_sweep(app.state.core, config.LIVENESS_TIMEOUT_SECONDS, config.SWEEP_INTERVAL_SECONDS)
            )
        logger.info("%s started", config.APP_NAME)
        yield
        if sweeper is not None:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
        app.state.engine.dispose()

    app = FastAPI(title=config.APP_NAME, lifespan=lifespan)
    app.state.settings = config
    app.state.engine = make_engine(config.DATABASE_URL)
    app.state.SessionLocal = make_session_factory(app.state.engine)
    app.state.core = build_core(config, analyzer)
    app.include_router(router)
    return app


setup_logging()
app = create_app()
