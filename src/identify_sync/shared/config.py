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
Configuration loaded from the environment (prefix IDENTIFY_SYNC_) or a .env file.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from identify_sync.shared.sessions import CookieSettings, DEFAULT_SESSION_TTL, SESSION_COOKIE_NAME


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="IDENTIFY_SYNC_", env_file=".env", env_file_encoding="utf-8")

    environment: str = "development"

    # Firebase
    firebase_project_id: Optional[str] = None
    firebase_api_key: Optional[str] = None
    token_verifier: str = Field("jose", description="'jose' (local JWKS) or 'google-auth'.")
    token_leeway_seconds: int = 0

    # Storage
    database_url: str = "sqlite+aiosqlite:///./identify_sync.db"
    database_echo: bool = False
    create_tables: bool = True
    session_backend: str = Field("database", description="'memory', 'database' or 'redis'.")
    redis_url: str = "redis://localhost:6379/0"

    # Session cookie
    session_cookie_name: str = SESSION_COOKIE_NAME
    session_ttl_seconds: int = DEFAULT_SESSION_TTL
    cookie_domain: Optional[str] = None

    cors_origins: List[str] = ["http://localhost:5173"]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def allow_profile_reset(self) -> bool:
        return not self.is_production

    def cookie_settings(self) -> CookieSettings:
        return CookieSettings.for_environment(
            self.is_production,
            domain=self.cookie_domain,
            name=self.session_cookie_name,
            max_age=self.session_ttl_seconds,
        )

    def check(self) -> None:
        """Raise ValueError for configurations that must not start."""
        if not self.firebase_project_id:
            raise ValueError("IDENTIFY_SYNC_FIREBASE_PROJECT_ID is required")
        if self.is_production and not self.cookie_domain:
            raise ValueError("IDENTIFY_SYNC_COOKIE_DOMAIN is required in production")
        if self.session_backend not in ("memory", "database", "redis"):
            raise ValueError(f"Unknown session backend: {self.session_backend}")
        if self.token_verifier not in ("jose", "google-auth"):
            raise ValueError(f"Unknown token verifier: {self.token_verifier}")
