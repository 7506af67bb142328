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

"""
FastAPI dependencies for endpoints that need the signed-in user.

They rely on IdentifyMiddleware having resolved the session cookie and on
`app.state.identity_service` (both installed by `create_app`).
"""

import logging
from typing import Optional

from fastapi import Depends, Request, Response

from identify_sync.shared.exceptions import NoBackendSession
from identify_sync.shared.models import UserRecord
from identify_sync.shared.service import IdentitySyncService

logger = logging.getLogger(__name__)


def get_identity_service(request: Request) -> IdentitySyncService:
    return request.app.state.identity_service


async def get_current_user(
    request: Request, response: Response, service: IdentitySyncService = Depends(get_identity_service)
) -> Optional[UserRecord]:
    """
    Returns the signed-in user or None, for endpoints that are public but
    have optional authenticated features.

    A cookie whose session is gone (expired, or its user was deleted) is
    cleared on the response. Endpoints that build their own Response object
    must clear it themselves.

    Usage:
        @app.get("/beaches")
        async def beaches(user: Optional[UserRecord] = Depends(get_current_user)):
            ...
    """
    session_id = getattr(request.state, "session_id", None)
    session = getattr(request.state, "session", None)
    if session is not None:
        try:
            return await service.current_user(session_id, session)
        except NoBackendSession as e:
            logger.info(f"Optional user unavailable: {e.detail}")
    if session_id:
        response.delete_cookie(**service.sessions.cookie.delete_cookie_kwargs())
    return None


async def require_auth(
    request: Request, service: IdentitySyncService = Depends(get_identity_service)
) -> UserRecord:
    """
    Requires a session whose user still exists; raises NoBackendSession (401) otherwise.

    Usage:
        @app.get("/favorites")
        async def favorites(user: UserRecord = Depends(require_auth)):
            ...
    """
    return await service.current_user(
        getattr(request.state, "session_id", None), getattr(request.state, "session", None)
    )


async def require_admin(
    request: Request, service: IdentitySyncService = Depends(get_identity_service)
) -> UserRecord:
    """Like require_auth, plus AuthorizationError (403) for non-admins."""
    return await service.require_admin(
        getattr(request.state, "session_id", None), getattr(request.state, "session", None)
    )
