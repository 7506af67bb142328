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
from typing import Optional

import httpx

from identify_sync.shared.exceptions import IdentityException, NoBackendSession, SyncFailure
from identify_sync.shared.models import UserRecord

logger = logging.getLogger(__name__)


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and isinstance(body.get("detail"), str):
        return body["detail"]
    return response.reason_phrase


class BackendClient:
    """
    Calls the application API. The session cookie lives in the httpx cookie jar,
    so one BackendClient corresponds to one browser-like session.
    """

    def __init__(self, base_url: str, http_client: Optional[httpx.AsyncClient] = None, api_prefix: str = "/api"):
        self.http_client = http_client or httpx.AsyncClient(base_url=base_url, timeout=10)
        self.api_prefix = api_prefix

    def _url(self, path: str) -> str:
        return f"{self.api_prefix}{path}"

    async def fetch_current_user(self) -> UserRecord:
        """
        Raises NoBackendSession on 401; any other failure is an IdentityException
        carrying the response status (503 when the backend is unreachable).
        """
        try:
            response = await self.http_client.get(self._url("/auth/user"))
        except httpx.HTTPError as e:
            logger.error(f"Backend unreachable while fetching current user: {e}")
            raise IdentityException(status_code=503, detail="Backend unreachable") from e
        if response.status_code == 401:
            raise NoBackendSession(_detail(response))
        if response.is_error:
            raise IdentityException(status_code=response.status_code, detail=_detail(response))
        return UserRecord.model_validate(response.json())

    async def sync_session(self, id_token: str) -> UserRecord:
        try:
            response = await self.http_client.post(self._url("/auth/firebase-login"), json={"idToken": id_token})
        except httpx.HTTPError as e:
            logger.error(f"Backend unreachable during session sync: {e}")
            raise SyncFailure("Backend unreachable") from e
        if response.is_error:
            raise SyncFailure(_detail(response), status_code=response.status_code)
        return UserRecord.model_validate(response.json())

    async def logout(self) -> None:
        try:
            response = await self.http_client.post(self._url("/auth/logout"))
        except httpx.HTTPError as e:
            logger.error(f"Backend unreachable during logout: {e}")
            raise IdentityException(status_code=503, detail="Backend unreachable") from e
        if response.is_error:
            raise IdentityException(status_code=response.status_code, detail=_detail(response))

    async def aclose(self) -> None:
        await self.http_client.aclose()
