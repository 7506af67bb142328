#    Copyright 2025 FAO
#
#    Licensed under the Apache License, Version 2.0 (the "License");
#    you may not use this file except in compliance with the License.
#    You may obtain a copy of the License at
#
#        http://www.apache.org/licenses/LICENSE-2.0
#
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS,
#    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#    See the License for the specific language governing permissions and
#    limitations under the License.
#
#    Author: Carlo Cancellieri (ccancellieri@gmail.com)
#    Company: FAO, Viale delle Terme di Caracalla, 00100 Rome, Italy
#    Contact: copyright@fao.org - http://fao.org/contact-us/terms/en/

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from identify_sync.shared.config import Settings
from identify_sync.shared.database import create_engine, create_session_factory, create_tables
from identify_sync.shared.factory import build_service, prune_sessions
from identify_sync.shared.sessions import SessionStore
from identify_sync.shared.verifiers import AssertionVerifier
from identify_sync.fastapi_middleware.fastapi_identify import (
    IdentifyMiddleware,
    create_auth_router,
    register_exception_handlers,
)

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    verifier: Optional[AssertionVerifier] = None,
    session_store: Optional[SessionStore] = None,
) -> FastAPI:
    """
    Build the API. `verifier` and `session_store` override what `settings` would select.
    """
    settings = settings or Settings()
    settings.check()

    engine = create_engine(settings.database_url, echo=settings.database_echo)
    service = build_service(settings, create_session_factory(engine), verifier, session_store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.create_tables:
            await create_tables(engine)
        await prune_sessions(service)
        logger.info(f"identify-sync started ({settings.environment}, sessions: {settings.session_backend})")
        yield
        await engine.dispose()

    app = FastAPI(title="identify-sync", lifespan=lifespan)
    app.state.settings = settings
    app.state.identity_service = service

    # Added last, runs first.
    app.add_middleware(IdentifyMiddleware, sessions=service.sessions)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app, service.sessions)
    app.include_router(create_auth_router(), prefix="/api")
    return app


def main():
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
