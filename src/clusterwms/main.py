import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from clusterwms import __version__
from clusterwms.api.router import api_router
from clusterwms.config import Settings
from clusterwms.core.controller import Controller

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    logging.basicConfig(level=getattr(logging, settings.log_level.upper()))

    controller = app.state.controller
    controller_task = None
    if controller is not None and app.state.run_controller:
        controller_task = asyncio.create_task(controller.run())
        app.state.controller_task = controller_task

    logger.info("clusterwms v%s started", __version__)

    yield

    # Shutdown
    if controller_task is not None:
        controller_task.cancel()
        try:
            await controller_task
        except asyncio.CancelledError:
            pass
    logger.info("clusterwms shut down")


def create_app(
    controller: Optional[Controller] = None,
    settings: Optional[Settings] = None,
    *,
    run_controller: bool = False,
) -> FastAPI:
    """Build the monitoring app. With ``run_controller`` the loop runs for the app's lifetime."""
    settings = settings or (controller.settings if controller is not None else Settings())
    app = FastAPI(
        title="clusterwms",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.controller = controller
    app.state.run_controller = run_controller
    app.include_router(api_router, prefix=settings.api_prefix)
    return app
