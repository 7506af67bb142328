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

import time
import logging
from typing import Mapping, Any, Optional

import httpx
from jose import jwt, exceptions

from identify_sync.shared.exceptions import (
    IdentityException,
    InvalidAssertion,
    ExpiredAssertion,
)

logger = logging.getLogger(__name__)

FIREBASE_PUBLIC_KEYS_URL = (
    "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
)


def firebase_issuer(project_id: str) -> str:
    return f"https://securetoken.google.com/{project_id}"


def require_id_token(id_token: Any) -> str:
    """
    Reject anything that cannot possibly be a JWT before any network call.
    Raises InvalidAssertion (400).
    """
    if not id_token or not isinstance(id_token, str):
        raise InvalidAssertion("idToken is required")
    token = id_token.strip()
    if token.count(".") != 2:
        raise InvalidAssertion("Malformed identity token")
    try:
        jwt.get_unverified_header(token)
    except exceptions.JWTError as e:
        raise InvalidAssertion("Malformed identity token") from e
    return token


def get_unverified_claims(token: str) -> dict:
    try:
        return jwt.get_unverified_claims(token)
    except exceptions.JWTError as e:
        raise InvalidAssertion("Malformed identity token") from e


def is_expired(decoded_jwt: Mapping[str, Any], threshold: int = 0) -> bool:
    expire_time = int(decoded_jwt.get("exp", -1))
    return expire_time != -1 and time.time() > expire_time - threshold


def check_token_expiration(decoded_jwt: Mapping[str, Any], threshold: int = 0):
    if int(decoded_jwt.get("exp", -1)) == -1:
        raise InvalidAssertion("Token does not have an expiration claim", status_code=401)
    if is_expired(decoded_jwt, threshold):
        raise ExpiredAssertion("Token expired or nearing expiration.")


async def fetch_public_keys(
    url: str = FIREBASE_PUBLIC_KEYS_URL, client: Optional[httpx.AsyncClient] = None
) -> dict:
    """Fetch a JWKS document. Network failures become a 500 IdentityException."""
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=10) as own_client:
                response = await own_client.get(url)
        else:
            response = await client.get(url)
        response.raise_for_status()
        jwks = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Error fetching identity provider public keys from {url}: {e}")
        raise IdentityException(status_code=500, detail="Could not fetch identity provider public keys.") from e
    if not isinstance(jwks, dict):
        raise IdentityException(status_code=500, detail="Identity provider returned an invalid key set.")
    if not jwks.get("keys"):
        logger.warning(f"JWKS document from {url} contains no keys.")
    return jwks
