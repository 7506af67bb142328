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
Flask decorators for endpoints that need the signed-in user.

They rely on FlaskIdentifyMiddleware having resolved the session cookie into
`g.session_id` / `g.session` and registered the service on the app.
"""

import logging
from functools import wraps

from asgiref.sync import async_to_sync
from flask import current_app, g

from identify_sync.shared.service import IdentitySyncService

logger = logging.getLogger(__name__)


def get_service() -> IdentitySyncService:
    return current_app.extensions["identify_sync"]


def flask_require_auth(f):
    """
    Flask decorator to require a session whose user still exists.

    Raises NoBackendSession (401) otherwise; on success `g.user` holds the
    fresh UserRecord.

    Usage:
        @app.route("/favorites")
        @flask_require_auth
        def favorites():
            return jsonify(owner=g.user.email)
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.user = async_to_sync(get_service().current_user)(g.get("session_id"), g.get("session"))
        return f(*args, **kwargs)
    return decorated_function


def flask_require_admin(f):
    """Like flask_require_auth, plus AuthorizationError (403) for non-admins."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.user = async_to_sync(get_service().require_admin)(g.get("session_id"), g.get("session"))
        return f(*args, **kwargs)
    return decorated_function
