from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable, Optional

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.poller import PollDriver, build_default_poller


def _lifespan(poller: Optional[PollDriver]) -> Callable[[FastAPI], AsyncContextManager[None]]:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        active = poller if poller is not None else build_default_poller()
        app.state.poller = active
        active.start()
        try:
            yield
        finally:
            active.shutdown()
            if poller is None:
                build_default_poller.cache_clear()

    return lifespan


def create_app(poller: Optional[PollDriver] = None) -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="ConBee Exporter",
        description="Prometheus exporter for deCONZ gateway sensors.",
        version="0.1.0",
        lifespan=_lifespan(poller),
    )
    app.include_router(router)
    return app

app = create_app()
