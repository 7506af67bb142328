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
Error taxonomy shared by the server adapters and the client runtime.

Every error carries an HTTP status so the FastAPI and Flask adapters can
translate it without knowing the concrete subclass.
"""

from typing import Optional


class IdentityException(Exception):
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"[{status_code}] {detail}")


class InvalidAssertion(IdentityException):
    """Missing, malformed or rejected identity token. The user must sign in again."""

    def __init__(self, detail: str = "Invalid identity token", status_code: int = 400):
        super().__init__(status_code, detail)


class ExpiredAssertion(IdentityException):
    """The identity token expired; acquiring a fresh one and retrying is fine."""

    def __init__(self, detail: str = "Identity token expired"):
        super().__init__(401, detail)


class NoBackendSession(IdentityException):
    """No usable server session. Expected state on the client, triggers a sync."""

    def __init__(self, detail: str = "No backend session"):
        super().__init__(401, detail)


class SessionPersistenceFailure(IdentityException):
    def __init__(self, detail: str = "Could not persist session"):
        super().__init__(500, detail)


class AuthorizationError(IdentityException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(403, detail)


class UserNotFound(IdentityException):
    def __init__(self, detail: str = "User not found"):
        super().__init__(404, detail)


class SyncFailure(IdentityException):
    """The backend refused or failed the session synchronization request."""

    def __init__(self, detail: str = "Could not synchronize session", status_code: Optional[int] = None):
        super().__init__(status_code or 502, detail)


class ProviderError(IdentityException):
    """The identity provider could not produce a token or a user."""

    def __init__(self, detail: str = "Identity provider error", status_code: int = 401):
        super().__init__(status_code, detail)
