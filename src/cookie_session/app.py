# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .context import SessionContext
from .dependencies import initialise_session_context, set_session_context
from .router import router as session_router

logger = logging.getLogger(__name__)


def create_app(context: Optional[SessionContext] = None) -> FastAPI:
    """Build an API app whose requests all run under ``context``'s session provider."""
    if context is None:
        context = initialise_session_context()
    set_session_context(context)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await context.store.init()
        try:
            yield
        finally:
            await context.close()
            logger.info("Session store closed")

    app = FastAPI(
        title="Cookie Session API",
        description="Signed cookie sessions for ASGI applications",
        version="0.1.0",
        lifespan=lifespan,
        middleware=[context.provider()],
    )
    app.include_router(session_router)
    return app
